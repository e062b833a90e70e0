from sqlalchemy.orm import sessionmaker
from sqlalchemy import create_engine
import logging

from ratingo.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def _engine_options(url: str) -> dict:
    # SQLite (tests, local runs) does not accept queue pool sizing
    if url.startswith("sqlite"):
        return {}
    # pool_recycle: recycle connections after N seconds to prevent stale connections
    # pool_pre_ping: verify connections before using them
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create every pipeline table that does not exist yet.

    Production schemas are migrated externally; this is used by local runs and tests.
    """
    from ratingo.models import Base

    target = bind if bind is not None else engine
    Base.metadata.create_all(bind=target)
    logger.info("Database tables ensured")
