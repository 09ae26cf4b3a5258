from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from settlement.core_settings import get_settings
from settlement.domain.models import Base

settings = get_settings()
DATABASE_URL = settings.database_url

engine_options = {"echo": False, "future": True, "pool_pre_ping": True}
if DATABASE_URL.startswith("postgresql"):
    engine_options.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)

engine = create_engine(DATABASE_URL, **engine_options)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Unit of work: commit everything written inside the block or nothing."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise

def init_models():
    Base.metadata.create_all(engine)
