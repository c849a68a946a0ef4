from typing import Any, Dict, List, Optional


class VaultError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class AuthenticationError(VaultError):
    status_code = 401
    default_detail = "Authentication required"


class ValidationFailed(VaultError):
    status_code = 400
    default_detail = "Invalid request"

    def __init__(self, detail: Optional[str] = None, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(detail)
        self.errors = errors or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "errors": self.errors}


class PermissionDenied(VaultError):
    status_code = 403
    default_detail = "Not authorized"


class NotFound(VaultError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(VaultError):
    status_code = 409
    default_detail = "This file already exists in your vault."

    def __init__(self, file_id: str, detail: Optional[str] = None):
        super().__init__(detail)
        self.file_id = file_id

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "file_id": self.file_id}


class UpstreamError(VaultError):
    """A provider call (LLM, vector index, storage, payments) failed."""

    status_code = 500
    default_detail = "Upstream service failure"


class NotConfiguredError(UpstreamError):
    default_detail = "Service is not configured"
