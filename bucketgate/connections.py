import logging

from pydantic import ValidationError as PydanticValidationError

from .errors import ConnectionNotFoundError, UpstreamError
from .kv import KeyNotFoundError, KVStore
from .schemas import BucketConnection

logger = logging.getLogger(__name__)

BUCKET_ID_PREFIX = "bucket-"


def connection_key(bucket_id: str) -> str:
    return BUCKET_ID_PREFIX + bucket_id


def _decode(raw: bytes) -> BucketConnection:
    try:
        return BucketConnection.model_validate_json(raw)
    except PydanticValidationError as exc:
        logger.error("corrupt bucket connection record: %s", exc)
        raise UpstreamError("stored bucket connection is unreadable") from exc


class ConnectionStore:
    """Registry of bucket connections, one KV entry per connection."""

    def __init__(self, kv: KVStore) -> None:
        self._kv = kv

    def upsert(self, conn: BucketConnection) -> None:
        # last writer wins
        self._kv.put(connection_key(conn.bucket_id), conn.model_dump_json().encode("utf-8"))
        logger.info("bucket connection %s saved", conn.bucket_id)

    def get(self, bucket_id: str) -> BucketConnection:
        try:
            raw = self._kv.get(connection_key(bucket_id))
        except KeyNotFoundError:
            raise ConnectionNotFoundError(bucket_id) from None
        return _decode(raw)

    def exists(self, bucket_id: str) -> bool:
        try:
            self._kv.get(connection_key(bucket_id))
        except KeyNotFoundError:
            return False
        return True

    def delete(self, bucket_id: str) -> None:
        try:
            self._kv.delete(connection_key(bucket_id))
        except KeyNotFoundError:
            raise ConnectionNotFoundError(bucket_id) from None
        logger.info("bucket connection %s deleted", bucket_id)

    def list_all(self) -> list[BucketConnection]:
        return [_decode(raw) for raw in self._kv.scan_prefix(BUCKET_ID_PREFIX)]
