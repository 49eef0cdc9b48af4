import logging
import time

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    if not database_url:
        raise RuntimeError("DATABASE_URL is empty")
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # handlers run in FastAPI's threadpool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def wait_for_db(engine: Engine, max_attempts: int = 30, sleep_s: float = 1.0) -> None:
    last_exc = None
    for attempt in range(1, max_attempts + 1):
        try:
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return
        except Exception as exc:
            last_exc = exc
            logger.warning("database not ready (attempt %d/%d): %s", attempt, max_attempts, exc)
            time.sleep(sleep_s)
    raise RuntimeError(f"Database not ready after {max_attempts} attempts: {last_exc}")
