import logging
import posixpath

from .access import BucketAccess
from .authz import Principal
from .errors import ValidationError
from .schemas import ObjectOut
from .storage import OCTET_STREAM, StoredObject, presign_ttl

logger = logging.getLogger(__name__)


def download_filename(key: str) -> str:
    name = posixpath.basename(key.rstrip("/"))
    if name in ("", ".", "/"):
        return "download"
    return name


def normalize_disposition(disposition: str | None) -> str:
    if (disposition or "").strip().lower() == "inline":
        return "inline"
    return "attachment"


def content_disposition(disposition: str | None, filename: str) -> str:
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f'{normalize_disposition(disposition)}; filename="{escaped}"'


class ObjectGateway:
    def __init__(self, access: BucketAccess) -> None:
        self.access = access

    def list_objects(self, principal: Principal, bucket_id: str, prefix: str = "") -> list[ObjectOut]:
        client = self.access.client(principal, bucket_id)
        objects = [
            ObjectOut(
                key=item["Key"],
                size=int(item.get("Size", 0)),
                content_type=item.get("ContentType", ""),
            )
            for item in client.iter_objects(prefix or "", recursive=True)
        ]
        logger.info("listed %d objects in %s under %r", len(objects), bucket_id, prefix)
        return objects

    def download(self, principal: Principal, bucket_id: str, key: str) -> StoredObject:
        """Open the object for streaming; the caller drains ``iter_chunks``."""
        if not key:
            raise ValidationError("filename is required")
        client = self.access.client(principal, bucket_id)
        obj = client.get(key)
        logger.info("streaming %s/%s (%d bytes)", bucket_id, key, obj.size)
        return obj

    def delete(self, principal: Principal, bucket_id: str, key: str) -> None:
        if not key:
            raise ValidationError("filename is required")
        client = self.access.client(principal, bucket_id)
        client.delete(key)
        logger.info("deleted %s/%s", bucket_id, key)

    def presign_download(
        self,
        principal: Principal,
        bucket_id: str,
        key: str,
        expires_seconds: int | None = None,
        disposition: str | None = None,
        filename: str | None = None,
    ) -> str:
        if not key:
            raise ValidationError("bucket and key are required")
        ttl = presign_ttl(expires_seconds)
        client = self.access.client(principal, bucket_id)
        name = (filename or "").strip() or download_filename(key)
        return client.presign(
            "GET",
            key,
            ttl,
            {
                "ResponseContentDisposition": content_disposition(disposition, name),
                "ResponseContentType": OCTET_STREAM,
            },
        )
