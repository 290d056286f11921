import logging

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


# ======================================================
# DATABASE CONNECTION
# ======================================================

def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,       # drops stale connections after idle periods
        pool_size=5,
        max_overflow=2,
        pool_timeout=30,
        pool_recycle=300,
        connect_args={
            "sslmode": "prefer",
            "connect_timeout": 10,
        },
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
    )


# ======================================================
# DEPENDENCY
# ======================================================

def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


# ======================================================
# DATABASE BOOTSTRAP
# ======================================================

def init_database(engine: Engine) -> None:
    """
    Idempotent schema creation.

    Tables, CHECK constraints and indexes all come from the ORM metadata,
    so running this on every startup only creates what is missing.
    """
    import multimart.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

    logger.info("Database verified | dialect=%s", engine.dialect.name)
