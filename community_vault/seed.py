"""
Seed the local development user.

    python -m community_vault.seed
"""

import logging

from . import models
from .auth import upsert_user
from .config import load_settings
from .database import SessionLocal, build_engine, init_db
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def seed_test_user(db, whop_user_id: str) -> models.User:
    existing = db.query(models.User).filter(models.User.whop_user_id == whop_user_id).first()
    if existing is not None:
        return existing
    return upsert_user(
        db,
        whop_user_id,
        {"name": "Test User", "email": "test@comvault.local"},
        role=models.UserRole.ADMIN,
    )


def main() -> None:
    configure_logging()
    settings = load_settings()
    init_db(build_engine(settings.database_url))

    db = SessionLocal()
    try:
        user = seed_test_user(db, settings.dev_user_whop_id)
        logger.info("test user ready id=%s whop_user_id=%s", user.id, user.whop_user_id)
    finally:
        db.close()


if __name__ == "__main__":
    main()
