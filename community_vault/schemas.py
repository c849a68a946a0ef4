from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import FileType, NotificationType, UserRole


class UserResponse(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    success: bool = True
    authenticated: bool = True
    user: UserResponse


class ValidateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    username: Optional[str] = None
    email: Optional[str] = None


# --- Uploads ---

class PresignRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    content_type: str = Field(..., min_length=1)


class PresignResponse(BaseModel):
    url: str
    key: str
    public_url: str
    fields: Dict[str, str] = {}


class UploadComplete(BaseModel):
    key: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)
    title: str = Field(..., min_length=2)
    description: str = Field(..., min_length=10)
    category: str = Field(..., min_length=2)
    type: FileType
    project_id: Optional[str] = None
    is_premium: bool = False
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    original_content_type: Optional[str] = None


class LocalUploadResponse(BaseModel):
    success: bool = True
    key: str
    public_url: str


# --- Files ---

class FileUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = Field(default=None, min_length=10)
    category: Optional[str] = Field(default=None, min_length=2)
    is_premium: Optional[bool] = None
    price: Optional[Decimal] = Field(default=None, ge=0)


class ProjectRef(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True


class OwnerRef(BaseModel):
    id: str
    name: Optional[str] = None

    class Config:
        from_attributes = True


class FileResponse(BaseModel):
    id: str
    owner_id: str
    project_id: Optional[str] = None
    title: str
    description: str
    category: str
    type: FileType
    storage_key: str
    storage_url: str
    checksum: str
    summary: Optional[str] = None
    key_points: List[str] = []
    transcript: Optional[str] = None
    is_premium: bool
    price: float
    currency: str
    total_views: int
    total_purchases: int
    created_at: datetime
    project: Optional[ProjectRef] = None

    class Config:
        from_attributes = True


class FileDetail(FileResponse):
    owner: Optional[OwnerRef] = None
    can_access: bool = True


class FilePreview(BaseModel):
    """What a non-purchaser sees of a premium file."""
    id: str
    title: str
    description: str
    summary: Optional[str] = None
    category: str
    type: FileType
    is_premium: bool
    price: float
    can_access: bool = False

    class Config:
        from_attributes = True


# --- Projects ---

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=2)
    description: Optional[str] = None
    category: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = None
    category: Optional[str] = None


class ProjectResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    summary: Optional[str] = None
    created_at: datetime
    file_count: int = 0

    class Config:
        from_attributes = True


class ProjectDetail(ProjectResponse):
    files: List[FileResponse] = []


# --- Checkout / notifications / search ---

class CheckoutRequest(BaseModel):
    file_id: str = Field(..., min_length=1)


class CheckoutResponse(BaseModel):
    url: str
    id: str


class NotificationResponse(BaseModel):
    id: str
    type: NotificationType
    payload: Dict[str, Any] = {}
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationMarkRead(BaseModel):
    notification_id: str = Field(..., min_length=1)


class SearchResult(BaseModel):
    file_id: str
    score: float
    content: str
    metadata: Dict[str, Any] = {}

    class Config:
        from_attributes = True
