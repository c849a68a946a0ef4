from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .errors import NotFound, PermissionDenied, ValidationFailed


# --- Files ---

def list_files(
    db: Session,
    owner_id: str,
    project_id: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> List[models.File]:
    query = (
        db.query(models.File)
        .options(joinedload(models.File.project))
        .filter(models.File.owner_id == owner_id)
    )
    if project_id:
        query = query.filter(models.File.project_id == project_id)
    if category:
        query = query.filter(models.File.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.File.title.ilike(pattern),
            models.File.description.ilike(pattern),
            models.File.summary.ilike(pattern),
        ))
    return query.order_by(models.File.created_at.desc()).all()


def get_file(db: Session, file_id: str) -> models.File:
    file = db.get(models.File, file_id)
    if file is None:
        raise NotFound("File not found")
    return file


def get_owned_file(db: Session, file_id: str, user_id: str) -> models.File:
    file = get_file(db, file_id)
    if file.owner_id != user_id:
        raise PermissionDenied()
    return file


def has_purchased(db: Session, file_id: str, user_id: str) -> bool:
    purchase = (
        db.query(models.Transaction.id)
        .filter(models.Transaction.file_id == file_id, models.Transaction.purchaser_id == user_id)
        .first()
    )
    return purchase is not None


def record_view(db: Session, file: models.File, viewer_id: str) -> None:
    """Append to the view log and bump the cached counter in one commit."""
    db.add(models.FileView(file_id=file.id, viewer_id=viewer_id))
    file.total_views = models.File.total_views + 1
    db.commit()
    db.refresh(file)


def view_file(db: Session, file_id: str, viewer: models.User) -> Tuple[models.File, bool]:
    """
    Handles premium gating and view counting.
    Returns the file and whether the viewer may access its content.
    """
    file = get_file(db, file_id)

    is_owner = file.owner_id == viewer.id
    can_access = is_owner or not file.is_premium or has_purchased(db, file.id, viewer.id)

    record_view(db, file, viewer.id)
    return file, can_access


def count_views(db: Session, file_id: str) -> int:
    return db.query(func.count(models.FileView.id)).filter(models.FileView.file_id == file_id).scalar()


def update_file(db: Session, file_id: str, user_id: str, changes: schemas.FileUpdate) -> models.File:
    file = get_owned_file(db, file_id, user_id)
    data = changes.model_dump(exclude_unset=True)

    is_premium = data.get("is_premium", file.is_premium)
    price = data.get("price", file.price)
    if is_premium and price <= 0:
        raise ValidationFailed(
            "Premium files must include a price greater than 0.",
            errors={"price": ["must be greater than 0 for premium files"]},
        )

    for key, value in data.items():
        setattr(file, key, value)
    db.commit()
    db.refresh(file)
    return file


# --- Projects ---

def project_file_counts(db: Session, project_ids: List[str]) -> dict:
    if not project_ids:
        return {}
    rows = (
        db.query(models.File.project_id, func.count(models.File.id))
        .filter(models.File.project_id.in_(project_ids))
        .group_by(models.File.project_id)
        .all()
    )
    return dict(rows)


def list_projects(db: Session, owner_id: str) -> List[models.Project]:
    return (
        db.query(models.Project)
        .filter(models.Project.owner_id == owner_id)
        .order_by(models.Project.created_at.desc())
        .all()
    )


def create_project(db: Session, owner_id: str, project: schemas.ProjectCreate) -> models.Project:
    db_project = models.Project(
        owner_id=owner_id,
        name=project.name,
        description=project.description,
        category=project.category,
    )
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    return db_project


def get_owned_project(db: Session, project_id: str, user_id: str) -> models.Project:
    project = db.get(models.Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    if project.owner_id != user_id:
        raise PermissionDenied()
    return project


def project_files(db: Session, project_id: str) -> List[models.File]:
    return (
        db.query(models.File)
        .filter(models.File.project_id == project_id)
        .order_by(models.File.created_at.desc())
        .all()
    )


def update_project(db: Session, project_id: str, user_id: str, changes: schemas.ProjectUpdate) -> models.Project:
    project = get_owned_project(db, project_id, user_id)
    for key, value in changes.model_dump(exclude_unset=True).items():
        setattr(project, key, value)
    db.commit()
    db.refresh(project)
    return project


def delete_project(db: Session, project_id: str, user_id: str) -> None:
    # Files stay in the vault; their project_id is cleared
    project = get_owned_project(db, project_id, user_id)
    db.delete(project)
    db.commit()
