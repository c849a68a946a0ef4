import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    VIEWER = "VIEWER"
    CREATOR = "CREATOR"
    ADMIN = "ADMIN"


class FileType(str, enum.Enum):
    PDF = "PDF"
    TEXT = "TEXT"
    VIDEO = "VIDEO"


class NotificationType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    NEW_CONTENT = "NEW_CONTENT"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    whop_user_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.VIEWER)

    # Running total of creator shares credited by the webhook handler
    earnings = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    files = relationship("File", back_populates="owner", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="owner", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)

    # Rollup across every file in the project, regenerated on each upload
    summary = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_now)

    owner = relationship("User", back_populates="projects")
    files = relationship("File", back_populates="project")


class File(Base):
    """
    Uploaded content item.
    Unique per owner by checksum (SHA-256 of the raw bytes).
    """
    __tablename__ = "files"
    __table_args__ = (UniqueConstraint("owner_id", "checksum", name="uq_files_owner_checksum"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False)
    type = Column(Enum(FileType), nullable=False)

    storage_key = Column(String, nullable=False)
    storage_url = Column(String, nullable=False)
    checksum = Column(String(64), nullable=False)

    # AI OUTPUT
    summary = Column(Text, nullable=True)
    key_points = Column(JSON, nullable=False, default=list)
    transcript = Column(Text, nullable=True)

    # MONETIZATION
    is_premium = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="USD")

    # Cached counters; FileView and Transaction rows are authoritative
    total_views = Column(Integer, nullable=False, default=0)
    total_purchases = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_now)

    owner = relationship("User", back_populates="files")
    project = relationship("Project", back_populates="files")
    views = relationship("FileView", back_populates="file", cascade="all, delete-orphan")


class FileView(Base):
    """Append-only view log."""
    __tablename__ = "file_views"

    id = Column(String(36), primary_key=True, default=_uuid)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), index=True, nullable=False)
    viewer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    file = relationship("File", back_populates="views")


class Transaction(Base):
    """Immutable purchase ledger entry."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Nulled if the file is later deleted; the ledger row itself is kept
    file_id = Column(String(36), ForeignKey("files.id", ondelete="SET NULL"), index=True, nullable=True)
    purchaser_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    creator_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False)
    creator_share = Column(Numeric(12, 2), nullable=False)
    community_share = Column(Numeric(12, 2), nullable=False)
    platform_share = Column(Numeric(12, 2), nullable=False)

    external_reference = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    type = Column(Enum(NotificationType), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    user = relationship("User", back_populates="notifications")
