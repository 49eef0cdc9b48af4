import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ObjectNotFoundError, ValidationError, map_client_error
from .schemas import BucketConnection

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
CHUNK_SIZE = 1024 * 1024

PERMISSIVE_CORS_RULES = [
    {
        "AllowedOrigins": ["*"],
        "AllowedMethods": ["PUT", "POST", "GET", "HEAD", "DELETE"],
        "AllowedHeaders": ["*"],
        "ExposeHeaders": ["ETag"],
        "MaxAgeSeconds": 3600,
    }
]


def endpoint_url(endpoint: str, secure: bool) -> str:
    endpoint = endpoint.strip().rstrip("/")
    if "://" in endpoint:
        return endpoint
    scheme = "https" if secure else "http"
    return f"{scheme}://{endpoint}"


@dataclass
class StoredObject:
    key: str
    size: int
    content_type: str
    etag: str
    body: Any

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        try:
            for chunk in self.body.iter_chunks(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        finally:
            self.body.close()


class BucketClient:
    """Store primitives for the single bucket a connection points at."""

    def __init__(self, s3, bucket_name: str) -> None:
        self.s3 = s3
        self.bucket_name = bucket_name

    def _call(self, operation: str, fn: Callable, key: Optional[str] = None, **kwargs):
        try:
            return fn(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            logger.error("%s failed on bucket %s key %s: %s", operation, self.bucket_name, key, exc)
            raise map_client_error(exc, operation=operation, key=key) from exc

    def stat(self, key: str) -> dict:
        return self._call("stat", self.s3.head_object, key=key, Bucket=self.bucket_name, Key=key)

    def exists(self, key: str) -> bool:
        try:
            self.stat(key)
        except ObjectNotFoundError:
            return False
        return True

    def get(self, key: str) -> StoredObject:
        resp = self._call("get", self.s3.get_object, key=key, Bucket=self.bucket_name, Key=key)
        return StoredObject(
            key=key,
            size=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType") or OCTET_STREAM,
            etag=resp.get("ETag", ""),
            body=resp["Body"],
        )

    def iter_objects(self, prefix: str = "", recursive: bool = True) -> Iterator[dict]:
        params = {"Bucket": self.bucket_name, "Prefix": prefix}
        if not recursive:
            params["Delimiter"] = "/"
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(**params):
                yield from page.get("Contents", [])
        except (ClientError, BotoCoreError) as exc:
            logger.error("list failed on bucket %s prefix %r: %s", self.bucket_name, prefix, exc)
            raise map_client_error(exc, operation="list") from exc

    def delete(self, key: str) -> None:
        self._call("delete", self.s3.delete_object, key=key, Bucket=self.bucket_name, Key=key)

    def copy(self, from_key: str, to_key: str) -> None:
        # managed copy, switches to multipart copy for large objects
        self._call(
            "copy",
            self.s3.copy,
            key=from_key,
            CopySource={"Bucket": self.bucket_name, "Key": from_key},
            Bucket=self.bucket_name,
            Key=to_key,
        )

    def put_cors(self, rules: list[dict]) -> None:
        self._call(
            "put_cors",
            self.s3.put_bucket_cors,
            Bucket=self.bucket_name,
            CORSConfiguration={"CORSRules": rules},
        )

    def create_multipart_upload(self, key: str, content_type: str) -> str:
        resp = self._call(
            "initiate_multipart",
            self.s3.create_multipart_upload,
            key=key,
            Bucket=self.bucket_name,
            Key=key,
            ContentType=content_type,
        )
        return resp["UploadId"]

    def presign(self, method: str, key: str, expires_seconds: int, params: Optional[dict] = None) -> str:
        params = dict(params or {})
        method = method.upper()
        if method == "GET":
            client_method = "get_object"
        elif method == "PUT":
            client_method = "upload_part" if "UploadId" in params else "put_object"
        else:
            raise ValidationError(f"unsupported presign method {method}")
        params.update({"Bucket": self.bucket_name, "Key": key})
        return self._call(
            "presign",
            self.s3.generate_presigned_url,
            key=key,
            ClientMethod=client_method,
            Params=params,
            ExpiresIn=expires_seconds,
            HttpMethod=method,
        )

    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> dict:
        return self._call(
            "complete_multipart",
            self.s3.complete_multipart_upload,
            key=key,
            Bucket=self.bucket_name,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": [{"PartNumber": n, "ETag": etag} for n, etag in parts]},
        )

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._call(
            "abort_multipart",
            self.s3.abort_multipart_upload,
            key=key,
            Bucket=self.bucket_name,
            Key=key,
            UploadId=upload_id,
        )

    def list_multipart_uploads(self, prefix: str = "") -> list[dict]:
        resp = self._call(
            "list_multipart",
            self.s3.list_multipart_uploads,
            Bucket=self.bucket_name,
            Prefix=prefix,
        )
        return resp.get("Uploads", [])


class StorageClientFactory:
    """Builds a short-lived S3 client from a connection's own credentials."""

    def __init__(self, default_region: str = "us-east-1") -> None:
        self.default_region = default_region
        self.session = boto3.session.Session()
        # sessions are not thread-safe; handlers build clients from the threadpool
        self._lock = threading.Lock()

    def build(self, conn: BucketConnection) -> BucketClient:
        with self._lock:
            s3 = self.session.client(
                "s3",
                endpoint_url=endpoint_url(conn.endpoint, conn.secure),
                aws_access_key_id=conn.access_key_id,
                aws_secret_access_key=conn.secret_access_key,
                region_name=conn.location or self.default_region,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return BucketClient(s3, conn.bucket_name)


DEFAULT_PRESIGN_SECONDS = 900
MAX_PRESIGN_SECONDS = 7 * 24 * 3600


def presign_ttl(expires_seconds: Optional[int]) -> int:
    if not expires_seconds or expires_seconds <= 0:
        return DEFAULT_PRESIGN_SECONDS
    if expires_seconds > MAX_PRESIGN_SECONDS:
        raise ValidationError(
            "expires_seconds too large",
            {"max_expires_seconds": MAX_PRESIGN_SECONDS},
        )
    return expires_seconds
