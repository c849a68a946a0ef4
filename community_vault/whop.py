"""
Whop identity and commerce API client.

Whop proxies embedded-app requests and attaches a signed user token in the
`x-whop-user-token` header. The token is an ES256 JWT issued by the proxy
for our app id; its subject is the Whop user id.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping, Optional

import httpx
import jwt

from .errors import NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)

USER_TOKEN_HEADER = "x-whop-user-token"
TOKEN_ISSUER = "urn:whopcom:exp-proxy"
SIGNATURE_HEADER = "x-whop-signature"


class WhopClient:
    def __init__(
        self,
        app_id: str = "",
        api_key: str = "",
        public_key: str = "",
        api_base: str = "https://api.whop.com",
        timeout: float = 30.0,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.app_id = app_id
        self.api_key = api_key
        self.public_key = public_key
        self.api_base = api_base.rstrip("/")
        self._http = http or httpx.Client(timeout=timeout)
        if not app_id:
            logger.warning("WHOP_APP_ID is not set. Whop token auth is disabled.")

    @classmethod
    def from_settings(cls, settings) -> "WhopClient":
        return cls(
            app_id=settings.whop_app_id,
            api_key=settings.whop_api_key,
            public_key=settings.whop_public_key,
            api_base=settings.whop_api_base,
            timeout=settings.provider_timeout_seconds,
        )

    def verify_user_token(self, headers: Mapping[str, str]) -> Optional[str]:
        """Return the Whop user id from a valid header token, else None."""
        token = headers.get(USER_TOKEN_HEADER)
        if not token:
            return None
        if not self.app_id or not self.public_key:
            logger.warning("received a Whop user token but WHOP_APP_ID/WHOP_PUBLIC_KEY are not configured")
            return None
        try:
            claims = jwt.decode(
                token,
                self.public_key,
                algorithms=["ES256"],
                audience=self.app_id,
                issuer=TOKEN_ISSUER,
            )
        except jwt.PyJWTError as exc:
            logger.warning("failed to verify Whop token: %s", exc)
            return None
        user_id = claims.get("sub")
        return str(user_id) if user_id else None

    def get_user(self, user_id: str) -> Dict[str, Any]:
        if not self.api_key:
            raise NotConfiguredError("Whop API key not configured")
        try:
            response = self._http.get(
                f"{self.api_base}/api/v5/users/{user_id}",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError("Failed to retrieve Whop user profile") from exc


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(raw_body, secret), signature.strip())
