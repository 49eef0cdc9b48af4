"""Shared fixtures.

Organization:
    - Fake object store: an in-memory stand-in for a boto3 S3 client that
      raises real botocore ``ClientError`` values
    - Persistence fixtures: SQLite-backed KV store in ``tmp_path``
    - Application fixtures: FastAPI app, TestClient and bearer tokens
"""

from __future__ import annotations

import hashlib
import io
import itertools
from urllib.parse import urlencode

import jwt
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from bucketgate.access import BucketAccess
from bucketgate.authz import AuthorizationGuard, Principal
from bucketgate.config import Settings
from bucketgate.connections import ConnectionStore
from bucketgate.db import create_db_engine, create_session_factory, init_schema
from bucketgate.kv import KVStore
from bucketgate.schemas import BucketConnection
from bucketgate.storage import BucketClient

JWT_SECRET = "unit-test-secret-that-is-long-enough-for-hs256"
ADMIN_GROUP = "storage-admins"


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


# ============================================================================
# Fake object store
# ============================================================================


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._stream = io.BytesIO(data)
        self.closed = False

    def iter_chunks(self, chunk_size: int = 1024):
        while True:
            chunk = self._stream.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakePaginator:
    def __init__(self, s3: "FakeS3") -> None:
        self.s3 = s3

    def paginate(self, Bucket, Prefix="", Delimiter=None, page_size=2):
        self.s3.calls.append(("list_objects_v2", Prefix))
        self.s3._maybe_fail("list_objects_v2")
        keys = sorted(k for (b, k) in self.s3.objects if b == Bucket and k.startswith(Prefix))
        if Delimiter:
            keys = [k for k in keys if Delimiter not in k[len(Prefix):]]
        contents = [
            {"Key": k, "Size": len(self.s3.objects[(Bucket, k)]["data"])}
            for k in keys
        ]
        if not contents:
            yield {"KeyCount": 0}
            return
        for i in range(0, len(contents), page_size):
            yield {"Contents": contents[i:i + page_size]}


class FakeS3:
    """Just enough of the boto3 S3 client surface used by ``BucketClient``."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], dict] = {}
        self.uploads: dict[str, dict] = {}
        self.cors: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, ClientError] = {}
        self._ids = itertools.count(1)

    # -- helpers for tests
    def put(self, bucket: str, key: str, data: bytes = b"data", content_type: str = "text/plain") -> None:
        self.objects[(bucket, key)] = {
            "data": data,
            "content_type": content_type,
            "etag": '"%s"' % hashlib.md5(data).hexdigest(),
        }

    def keys(self, bucket: str) -> list[str]:
        return sorted(k for (b, k) in self.objects if b == bucket)

    def fail(self, method: str, code: str = "InternalError", message: str = "") -> None:
        self.failures[method] = client_error(code, method, message)

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    def called(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    # -- boto3 surface
    def head_object(self, Bucket, Key):
        self.calls.append(("head_object", Key))
        self._maybe_fail("head_object")
        obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise client_error("404", "HeadObject", "Not Found")
        return {"ContentLength": len(obj["data"]), "ContentType": obj["content_type"], "ETag": obj["etag"]}

    def get_object(self, Bucket, Key):
        self.calls.append(("get_object", Key))
        self._maybe_fail("get_object")
        obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise client_error("NoSuchKey", "GetObject", "The specified key does not exist.")
        return {
            "Body": FakeBody(obj["data"]),
            "ContentLength": len(obj["data"]),
            "ContentType": obj["content_type"],
            "ETag": obj["etag"],
        }

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", Key))
        self._maybe_fail("delete_object")
        self.objects.pop((Bucket, Key), None)
        return {}

    def copy(self, CopySource, Bucket, Key):
        self.calls.append(("copy", CopySource["Key"], Key))
        self._maybe_fail("copy")
        src = self.objects.get((CopySource["Bucket"], CopySource["Key"]))
        if src is None:
            raise client_error("NoSuchKey", "CopyObject", "The specified key does not exist.")
        self.objects[(Bucket, Key)] = dict(src)

    def put_bucket_cors(self, Bucket, CORSConfiguration):
        self.calls.append(("put_bucket_cors", Bucket))
        self._maybe_fail("put_bucket_cors")
        self.cors[Bucket] = CORSConfiguration
        return {}

    def create_multipart_upload(self, Bucket, Key, ContentType):
        self.calls.append(("create_multipart_upload", Key))
        self._maybe_fail("create_multipart_upload")
        upload_id = f"upload-{next(self._ids)}"
        self.uploads[upload_id] = {"Bucket": Bucket, "Key": Key, "ContentType": ContentType}
        return {"Bucket": Bucket, "Key": Key, "UploadId": upload_id}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod):
        self.calls.append(("generate_presigned_url", ClientMethod, dict(Params), ExpiresIn, HttpMethod))
        self._maybe_fail("generate_presigned_url")
        query = {k: v for k, v in Params.items() if k not in ("Bucket", "Key")}
        query["X-Amz-Expires"] = ExpiresIn
        return f"http://store.test/{Params['Bucket']}/{Params['Key']}?{urlencode(query)}"

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        self.calls.append(("complete_multipart_upload", Key, UploadId, MultipartUpload["Parts"]))
        self._maybe_fail("complete_multipart_upload")
        upload = self.uploads.pop(UploadId, None)
        if upload is None:
            raise client_error("NoSuchUpload", "CompleteMultipartUpload")
        self.put(Bucket, Key, b"".join(p["ETag"].encode() for p in MultipartUpload["Parts"]), upload["ContentType"])
        return {"Bucket": Bucket, "Key": Key, "ETag": self.objects[(Bucket, Key)]["etag"]}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self.calls.append(("abort_multipart_upload", Key, UploadId))
        self._maybe_fail("abort_multipart_upload")
        if UploadId not in self.uploads:
            raise client_error("NoSuchUpload", "AbortMultipartUpload")
        del self.uploads[UploadId]
        return {}

    def list_multipart_uploads(self, Bucket, Prefix=""):
        self.calls.append(("list_multipart_uploads", Prefix))
        uploads = [
            {"Key": u["Key"], "UploadId": upload_id}
            for upload_id, u in self.uploads.items()
            if u["Bucket"] == Bucket and u["Key"].startswith(Prefix)
        ]
        return {"Uploads": uploads}


class FakeStorageFactory:
    def __init__(self, s3: FakeS3) -> None:
        self.s3 = s3
        self.built: list[str] = []

    def build(self, conn: BucketConnection) -> BucketClient:
        self.built.append(conn.bucket_id)
        return BucketClient(self.s3, conn.bucket_name)


@pytest.fixture
def s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def bucket_client(s3) -> BucketClient:
    return BucketClient(s3, "dev-bucket")


# ============================================================================
# Persistence fixtures
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'kv.db'}"


@pytest.fixture
def kv(database_url):
    engine = create_db_engine(database_url)
    init_schema(engine)
    yield KVStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def store(kv) -> ConnectionStore:
    return ConnectionStore(kv)


def make_connection(bucket_id: str = "dev", **overrides) -> BucketConnection:
    data = {
        "bucket_id": bucket_id,
        "endpoint": "minio.local:9000",
        "access_key_id": "AKIATEST",
        "secret_access_key": "s3cr3t",
        "secure": False,
        "bucket_name": "dev-bucket",
        "location": "us-east-1",
        "authorized_users": ["a@x.com"],
        "authorized_groups": [],
    }
    data.update(overrides)
    return BucketConnection(**data)


@pytest.fixture
def guard() -> AuthorizationGuard:
    return AuthorizationGuard(ADMIN_GROUP)


@pytest.fixture
def access(store, guard, s3) -> BucketAccess:
    store.upsert(make_connection())
    return BucketAccess(store, guard, FakeStorageFactory(s3))


@pytest.fixture
def alice() -> Principal:
    return Principal(id="alice", email="a@x.com")


@pytest.fixture
def bob() -> Principal:
    return Principal(id="bob", email="b@x.com")


# ============================================================================
# Application fixtures
# ============================================================================


def make_token(email: str, groups=(), administrator: bool = False, secret: str = JWT_SECRET) -> str:
    claims = {"sub": email.split("@")[0], "email": email, "groups": list(groups), "administrator": administrator}
    return jwt.encode(claims, secret, algorithm="HS256")


def bearer(email: str, groups=(), administrator: bool = False) -> dict:
    return {"Authorization": f"Bearer {make_token(email, groups, administrator)}"}


@pytest.fixture
def settings(database_url) -> Settings:
    return Settings(database_url=database_url, jwt_secret=JWT_SECRET, admin_group=ADMIN_GROUP)


@pytest.fixture
def app(settings, s3):
    from bucketgate.main import create_app

    return create_app(settings=settings, storage_factory=FakeStorageFactory(s3))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
