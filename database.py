from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base

import config
from errors import StoreUnavailableError

if not config.DATABASE_URL:
    raise ValueError("❌ DATABASE_URL is missing! Check your .env file.")


def build_engine(url):
    # SQLite keeps its default pool; sizing only applies to server databases
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_recycle=3600,       # Recycle connections after 1 hour
        pool_pre_ping=True      # Verify connections before use
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_guard():
    """Translate connectivity failures from the driver into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailableError("Visit store is unavailable") from exc
