"""Database configuration and session dependency."""

from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from exam_grading.config import DATABASE_URL, DB_TIMEOUT_SECONDS


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # timeout bounds how long a writer waits on a locked database
        return {"check_same_thread": False, "timeout": DB_TIMEOUT_SECONDS}
    return {"connect_timeout": int(DB_TIMEOUT_SECONDS)}


# echo=False to avoid noisy logs; toggle for debugging
engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args(DATABASE_URL))


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # Import models so their tables are registered on the metadata
    from exam_grading import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session
