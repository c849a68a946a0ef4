"""
Upload completion pipeline.

checksum dedup -> text extraction -> summary -> embedding -> File row ->
vector upsert -> project rollup -> new-content broadcast

There is no retry and no partial-completion state: any failing step fails
the whole ingestion. The File commit and the vector upsert are separate
systems and are not atomic; a vector failure after commit leaves a File
without an index entry, which refresh_embedding() can repair.
"""

import io
import logging
from typing import List

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .ai import AIService, DocumentSummary
from .errors import ConflictError, PermissionDenied, UpstreamError, ValidationFailed
from .notifications import NotificationDispatcher
from .storage import StorageBackend
from .utils import calculate_hash
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)

EMBEDDING_TEXT_CHARS = 2000


def extract_pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except PdfReadError as exc:
        raise UpstreamError("Failed to parse PDF") from exc


def decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def embedding_input(title: str, description: str, summary: DocumentSummary, text: str) -> str:
    return "\n\n".join([
        title,
        description,
        summary.summary,
        "\n".join(summary.key_points),
        text[:EMBEDDING_TEXT_CHARS],
    ])


def find_by_checksum(db: Session, owner_id: str, checksum: str):
    return (
        db.query(models.File)
        .filter(models.File.owner_id == owner_id, models.File.checksum == checksum)
        .first()
    )


def vector_metadata(file: models.File) -> dict:
    return {
        "title": file.title,
        "category": file.category,
        "summary": file.summary,
        "type": file.type.value,
    }


class IngestionPipeline:
    def __init__(self, storage: StorageBackend, ai: AIService, vectors: VectorIndex,
                 notifications: NotificationDispatcher):
        self.storage = storage
        self.ai = ai
        self.vectors = vectors
        self.notifications = notifications

    def extract_text(self, data: bytes, file_type: models.FileType, filename: str) -> str:
        if file_type == models.FileType.PDF:
            return extract_pdf_text(data)
        if file_type == models.FileType.VIDEO:
            return self.ai.transcribe(data, filename or "video.mp4")
        return decode_text(data)

    def ingest(self, db: Session, owner: models.User, upload: schemas.UploadComplete) -> models.File:
        if upload.is_premium and upload.price <= 0:
            raise ValidationFailed(
                "Premium files must include a price greater than 0.",
                errors={"price": ["must be greater than 0 for premium files"]},
            )
        if upload.project_id:
            project = db.get(models.Project, upload.project_id)
            if project is None or project.owner_id != owner.id:
                raise PermissionDenied()
        # Keys are issued per user by presign_upload
        if not upload.key.startswith(f"{owner.id}/"):
            raise PermissionDenied()

        data = self.storage.read_object(upload.key)
        checksum = calculate_hash(data)

        existing = find_by_checksum(db, owner.id, checksum)
        if existing is not None:
            raise ConflictError(existing.id)

        text = self.extract_text(data, upload.type, upload.filename)
        summary = self.ai.summarize_content(text, upload.title, upload.type.value)
        embedding = self.ai.build_embedding(
            embedding_input(upload.title, upload.description, summary, text)
        )

        file = models.File(
            owner_id=owner.id,
            project_id=upload.project_id,
            title=upload.title,
            description=upload.description,
            category=upload.category,
            type=upload.type,
            storage_key=upload.key,
            storage_url=self.storage.public_url(upload.key),
            checksum=checksum,
            summary=summary.summary,
            key_points=summary.key_points,
            transcript=text if upload.type == models.FileType.VIDEO else None,
            is_premium=upload.is_premium,
            price=upload.price,
            currency=upload.currency,
            total_views=0,
        )
        db.add(file)
        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent upload of the same bytes
            db.rollback()
            existing = find_by_checksum(db, owner.id, checksum)
            if existing is None:
                raise
            raise ConflictError(existing.id)
        db.refresh(file)
        logger.info("stored file %s for owner %s checksum=%s", file.id, owner.id, checksum[:12])

        self.vectors.upsert_document(
            user_id=owner.id,
            file_id=file.id,
            embedding=embedding,
            content=text,
            metadata=vector_metadata(file),
        )

        if file.project_id:
            self.refresh_project_summary(db, file.project_id)

        self.broadcast_new_content(db, owner, file)
        return file

    def refresh_project_summary(self, db: Session, project_id: str) -> models.Project:
        project = db.get(models.Project, project_id)
        files = db.query(models.File).filter(models.File.project_id == project_id).all()
        rollup = self.ai.summarize_project(
            [{"title": f.title, "summary": f.summary or ""} for f in files]
        )
        project.summary = rollup.summary
        db.commit()
        db.refresh(project)
        return project

    def broadcast_new_content(self, db: Session, owner: models.User, file: models.File) -> List[models.Notification]:
        # TODO: replace the broadcast with an explicit follower list once subscriptions exist
        subscribers = (
            db.query(models.User)
            .filter(
                models.User.id != owner.id,
                models.User.role.in_([models.UserRole.VIEWER, models.UserRole.CREATOR]),
            )
            .all()
        )
        creator_name = owner.name or "A creator you follow"
        return [
            self.notifications.notify_new_content(
                db,
                subscriber_id=subscriber.id,
                file_title=file.title,
                category=file.category,
                creator_name=creator_name,
            )
            for subscriber in subscribers
        ]

    def refresh_embedding(self, file: models.File) -> None:
        """Re-embed an edited file and overwrite its vector record."""
        data = self.storage.read_object(file.storage_key)
        if file.type == models.FileType.TEXT:
            text = decode_text(data)
        elif file.type == models.FileType.PDF:
            text = extract_pdf_text(data)
        else:
            text = file.summary or ""

        combined = "\n\n".join(
            part for part in [file.title, file.description, file.summary or "", text[:EMBEDDING_TEXT_CHARS]] if part
        )
        embedding = self.ai.build_embedding(combined)
        self.vectors.upsert_document(
            user_id=file.owner_id,
            file_id=file.id,
            embedding=embedding,
            content=text,
            metadata=vector_metadata(file),
        )

    def delete_file(self, db: Session, file: models.File) -> None:
        """
        Delete the File row and its vector record together: the row delete
        is flushed, the vector removed, and only then is the delete committed.
        """
        owner_id, file_id = file.owner_id, file.id
        db.delete(file)
        db.flush()
        try:
            if self.vectors.configured:
                self.vectors.remove_document(owner_id, file_id)
            else:
                logger.warning("vector index not configured; skipping vector delete for %s", file_id)
        except Exception:
            db.rollback()
            raise
        db.commit()
        logger.info("deleted file %s for owner %s", file_id, owner_id)
