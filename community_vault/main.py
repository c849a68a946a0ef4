import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import analytics, crud, models, notifications, payments, schemas
from .ai import query_knowledge_base
from .auth import get_current_user, require_user, set_session_cookie, upsert_user
from .config import Settings, load_settings
from .database import build_engine, get_db, init_db
from .errors import NotFound, PermissionDenied, VaultError
from .logging_config import configure_logging
from .services import Services, build_services, get_services
from .storage import LocalStorage
from .utils import content_type_for
from .whop import SIGNATURE_HEADER

logger = logging.getLogger(__name__)


def _validation_errors(exc: RequestValidationError) -> dict:
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body"
        errors.setdefault(field, []).append(error.get("msg", "invalid"))
    return errors


def _log_disabled_providers(services: Services) -> None:
    disabled = [
        name for name, ok in (
            ("openai", services.ai.configured),
            ("pinecone", services.vectors.configured),
            ("sendgrid", services.email.configured),
            ("whop-webhooks", bool(services.settings.whop_signing_secret)),
        ) if not ok
    ]
    if disabled:
        logger.warning("providers not configured, calls will fail at use: %s", ", ".join(disabled))


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None, engine=None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(settings)
        if not app.state.db_ready:
            init_db(build_engine(settings.database_url))
            app.state.db_ready = True
        _log_disabled_providers(app.state.services)
        yield

    app = FastAPI(title="Community Vault API", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.state.db_ready = False
    if engine is not None:
        init_db(engine)
        app.state.db_ready = True

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": _validation_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    # --- Auth ---

    @app.post("/auth/session", response_model=schemas.SessionResponse)
    def establish_session(user: models.User = Depends(require_user)):
        logger.info("session established for user %s", user.id)
        return {"success": True, "authenticated": True, "user": schemas.UserResponse.model_validate(user)}

    @app.get("/auth/session")
    def check_session(user: Optional[models.User] = Depends(get_current_user)):
        if user is None:
            return JSONResponse(status_code=401, content={"authenticated": False})
        return {"authenticated": True, "user": schemas.UserResponse.model_validate(user).model_dump(mode="json")}

    @app.post("/auth/validate", response_model=schemas.SessionResponse)
    def validate_identity(
        body: schemas.ValidateRequest,
        response: Response,
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        """Trusts a caller-supplied Whop identity; meant for the embedded iframe only."""
        exists = db.query(models.User.id).filter(models.User.whop_user_id == body.user_id).first()
        name = body.username or body.email or (None if exists else "User")
        user = upsert_user(db, body.user_id, {"name": name, "email": body.email or None})
        set_session_cookie(response, user.id, services.settings.is_production)
        return {"success": True, "authenticated": True, "user": schemas.UserResponse.model_validate(user)}

    # --- Files ---

    @app.get("/files", response_model=List[schemas.FileResponse])
    def list_files(
        project_id: Optional[str] = Query(default=None, alias="projectId"),
        category: Optional[str] = None,
        q: Optional[str] = None,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        return crud.list_files(db, user.id, project_id=project_id, category=category, search=q)

    @app.get("/files/{file_id}")
    def get_file(file_id: str, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        """Counts the view and redacts premium content the viewer has not bought"""
        file, can_access = crud.view_file(db, file_id, user)
        if can_access:
            detail = schemas.FileDetail.model_validate(file)
            return detail.model_copy(update={"can_access": True}).model_dump(mode="json")
        return schemas.FilePreview.model_validate(file).model_dump(mode="json")

    @app.patch("/files/{file_id}", response_model=schemas.FileResponse)
    def update_file(
        file_id: str,
        changes: schemas.FileUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        file = crud.update_file(db, file_id, user.id, changes)
        services.ingestion.refresh_embedding(file)
        return file

    @app.delete("/files/{file_id}")
    def delete_file(
        file_id: str,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        file = crud.get_owned_file(db, file_id, user.id)
        services.ingestion.delete_file(db, file)
        return {"success": True}

    # --- Uploads ---

    @app.post("/upload/presign", response_model=schemas.PresignResponse)
    def presign_upload(
        body: schemas.PresignRequest,
        user: models.User = Depends(require_user),
        services: Services = Depends(get_services),
    ):
        return asdict(services.storage.presign_upload(user.id, body.filename, body.content_type))

    @app.post("/upload/complete", response_model=schemas.FileResponse, status_code=201)
    def complete_upload(
        body: schemas.UploadComplete,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        return services.ingestion.ingest(db, user, body)

    @app.post("/upload/local", response_model=schemas.LocalUploadResponse)
    def upload_local(
        file: UploadFile = File(...),
        key: str = Form(...),
        user: models.User = Depends(require_user),
        services: Services = Depends(get_services),
    ):
        storage = services.storage
        if not isinstance(storage, LocalStorage):
            raise NotFound("Local uploads are disabled")
        # Keys are issued per user by /upload/presign
        if not key.startswith(f"{user.id}/"):
            raise PermissionDenied()
        storage.save_object(key, file.file.read())
        return {"success": True, "key": key, "public_url": storage.public_url(key)}

    @app.get("/uploads/{path:path}")
    def serve_upload(path: str, services: Services = Depends(get_services)):
        storage = services.storage
        if not isinstance(storage, LocalStorage):
            raise NotFound("File not found")
        data = storage.read_object(path)
        return Response(
            content=data,
            media_type=content_type_for(path),
            headers={"Cache-Control": "public, max-age=31536000, immutable"},
        )

    # --- Projects ---

    def _project_out(project: models.Project, count: int) -> dict:
        out = schemas.ProjectResponse.model_validate(project)
        return out.model_copy(update={"file_count": count}).model_dump(mode="json")

    @app.get("/projects")
    def list_projects(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        projects = crud.list_projects(db, user.id)
        counts = crud.project_file_counts(db, [p.id for p in projects])
        return [_project_out(p, counts.get(p.id, 0)) for p in projects]

    @app.post("/projects", status_code=201)
    def create_project(
        body: schemas.ProjectCreate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        return _project_out(crud.create_project(db, user.id, body), 0)

    @app.get("/projects/{project_id}", response_model=schemas.ProjectDetail)
    def get_project(project_id: str, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        project = crud.get_owned_project(db, project_id, user.id)
        files = crud.project_files(db, project.id)
        detail = schemas.ProjectDetail.model_validate(project)
        return detail.model_copy(update={
            "file_count": len(files),
            "files": [schemas.FileResponse.model_validate(f) for f in files],
        })

    @app.patch("/projects/{project_id}")
    def update_project(
        project_id: str,
        body: schemas.ProjectUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        project = crud.update_project(db, project_id, user.id, body)
        counts = crud.project_file_counts(db, [project.id])
        return _project_out(project, counts.get(project.id, 0))

    @app.delete("/projects/{project_id}")
    def delete_project(project_id: str, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        crud.delete_project(db, project_id, user.id)
        return {"success": True}

    # --- Payments ---

    @app.post("/checkout", response_model=schemas.CheckoutResponse)
    def checkout(
        body: schemas.CheckoutRequest,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        settings = services.settings
        return payments.create_checkout_session(
            db,
            file_id=body.file_id,
            purchaser=user,
            checkout_url=settings.whop_checkout_url,
            app_url=settings.app_url,
        )

    @app.post("/whop/webhook")
    async def whop_webhook(
        request: Request,
        db: Session = Depends(get_db),
        services: Services = Depends(get_services),
    ):
        # Signature covers the exact bytes, so read the body before any parsing
        raw_body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)
        await run_in_threadpool(services.webhooks.handle, db, raw_body, signature)
        return {"received": True}

    # --- Notifications ---

    @app.get("/notifications", response_model=List[schemas.NotificationResponse])
    def list_notifications(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        return notifications.list_notifications(db, user.id)

    @app.patch("/notifications", response_model=schemas.NotificationResponse)
    def mark_notification_read(
        body: schemas.NotificationMarkRead,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        return notifications.mark_read(db, user.id, body.notification_id)

    # --- Analytics ---

    @app.get("/analytics")
    def get_analytics(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        return analytics.get_user_analytics(db, user.id)

    @app.get("/dashboard/data")
    def dashboard_data(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
        files = crud.list_files(db, user.id)
        projects = crud.list_projects(db, user.id)
        counts = crud.project_file_counts(db, [p.id for p in projects])
        stats = analytics.get_user_analytics(db, user.id)
        unread = (
            db.query(models.Notification)
            .filter(models.Notification.user_id == user.id, models.Notification.read_at.is_(None))
            .order_by(models.Notification.created_at.desc())
            .limit(10)
            .all()
        )

        categories = {}
        for file in files:
            categories[file.category] = categories.get(file.category, 0) + 1

        return {
            "user": {"id": user.id, "name": user.name or "Creator", "role": user.role.value},
            "files": [schemas.FileResponse.model_validate(f).model_dump(mode="json") for f in files],
            "projects": [
                {"id": p.id, "name": p.name, "summary": p.summary, "count": counts.get(p.id, 0)}
                for p in projects
            ],
            "categories": [{"name": name, "count": count} for name, count in categories.items()],
            "analytics": {
                "totals": stats["totals"],
                "top_viewed": stats["top_viewed"],
                "top_selling": stats["top_selling"],
                "recent_transactions": stats["recent_transactions"],
            },
            "notifications": [
                schemas.NotificationResponse.model_validate(n).model_dump(mode="json") for n in unread
            ],
        }

    @app.get("/search", response_model=List[schemas.SearchResult])
    def search(
        q: str,
        top_k: int = 6,
        user: models.User = Depends(require_user),
        services: Services = Depends(get_services),
    ):
        if not q.strip():
            return []
        matches = query_knowledge_base(services.ai, services.vectors, user.id, q, top_k=max(1, min(top_k, 20)))
        return [asdict(m) for m in matches]


app = create_app()
