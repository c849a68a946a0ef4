from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Bound to an engine by init_db() when the application starts
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

# Base class for our models
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases only live as long as their single connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def init_db(engine: Engine) -> None:
    # Import models so every table is registered on Base.metadata
    from . import models  # noqa: F401

    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)


# Dependency for API routes
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
