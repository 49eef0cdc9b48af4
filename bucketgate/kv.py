"""Durable key/value primitives over a single SQLAlchemy table.

Every primitive runs in its own short session, so concurrent handlers only
contend on the database's own row locking.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import NotFoundError, UpstreamError
from .models import KVEntry

logger = logging.getLogger(__name__)


class KeyNotFoundError(NotFoundError):
    code = "KEY_NOT_FOUND"

    def __init__(self, key: str) -> None:
        super().__init__(f"key {key!r} not found")
        self.key = key


class KVStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str):
        db: Session = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("kv %s failed: %s", operation, exc)
            raise UpstreamError(f"kv store {operation} failed", {"operation": operation}) from exc
        finally:
            db.close()

    def get(self, key: str) -> bytes:
        with self._session("get") as db:
            entry = db.get(KVEntry, key)
            if entry is None:
                raise KeyNotFoundError(key)
            return bytes(entry.value)

    def put(self, key: str, value: bytes) -> None:
        with self._session("put") as db:
            db.merge(KVEntry(key=key, value=value))
            db.commit()

    def delete(self, key: str) -> None:
        with self._session("delete") as db:
            entry = db.get(KVEntry, key)
            if entry is None:
                raise KeyNotFoundError(key)
            db.delete(entry)
            db.commit()

    def scan_prefix(self, prefix: str) -> list[bytes]:
        with self._session("scan") as db:
            rows = db.scalars(
                select(KVEntry)
                .where(KVEntry.key.startswith(prefix, autoescape=True))
                .order_by(KVEntry.key)
            ).all()
            return [bytes(row.value) for row in rows]
