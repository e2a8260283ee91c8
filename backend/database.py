# backend/database.py
from contextlib import contextmanager
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session

from config import settings
from utils.errors import InternalError, WriteConflict

logger = logging.getLogger(__name__)

# 1. Address comes from the environment, falls back to a local SQLite file
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# 2. Heroku/Azure style URLs use postgres://, SQLAlchemy requires postgresql://
if SQLALCHEMY_DATABASE_URL and SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)

# 3. Driver specific connection options
if "sqlite" in SQLALCHEMY_DATABASE_URL:
    connect_args = {"check_same_thread": False} # SQLite only
else:
    connect_args = {}

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args=connect_args
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Largest value an INTEGER column holds on every supported backend
INT_MAX = 2**31 - 1

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # Register every model on Base.metadata before creating tables
    import models.users, models.category, models.supplier  # noqa: F401
    import models.product, models.stock, models.log  # noqa: F401
    Base.metadata.create_all(bind=engine)


# SQLSTATEs for serialization failure / deadlock
_CONFLICT_PGCODES = {"40001", "40P01"}


def is_write_conflict(exc: Exception) -> bool:
    """True when the store rejected a write because of a concurrent transaction."""
    orig = getattr(exc, "orig", None)
    message = str(orig or exc).lower()
    if isinstance(exc, IntegrityError):
        # Unique keys (snapshot per product, one reversal per movement) raced
        return "unique" in message or "duplicate" in message
    if getattr(orig, "pgcode", None) in _CONFLICT_PGCODES:
        return True
    return "locked" in message or "deadlock" in message or "could not serialize" in message


@contextmanager
def unit_of_work(db: Session):
    """Run a block of store calls as one transaction.

    Commits when the block finishes and rolls back on any exception, so a
    failed stock operation never leaves a partial write behind. Store errors
    are translated into ``WriteConflict`` (retryable) or ``InternalError``.
    """
    try:
        yield db
        db.commit()
    except (OperationalError, IntegrityError) as exc:
        db.rollback()
        if is_write_conflict(exc):
            logger.info("Write conflict, transaction rolled back: %s", exc.orig)
            raise WriteConflict("Concurrent update of the same stock, retry the operation") from exc
        logger.exception("Store failure, transaction rolled back")
        raise InternalError("Database operation failed") from exc
    except Exception:
        db.rollback()
        logger.debug("Transaction rolled back")
        raise
