import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from .access import BucketAccess
from .auth import JWTPrincipalResolver, PrincipalResolver, current_principal
from .authz import AuthorizationGuard, Principal
from .config import Settings, configure_logging
from .connections import ConnectionStore
from .db import create_db_engine, create_session_factory, init_schema, wait_for_db
from .errors import ForbiddenError, GatewayError, ValidationError
from .kv import KVStore
from .move import MoveEngine, MoveResult
from .multipart import MultipartUploadCoordinator
from .objects import ObjectGateway, content_disposition, download_filename
from .schemas import (
    BucketConnection,
    ConnectionDeleteRequest,
    MessageOut,
    MoveOut,
    MoveRequest,
    MultipartAbortRequest,
    MultipartCompleteRequest,
    MultipartInitiateOut,
    MultipartInitiateRequest,
    MultipartPresignPartRequest,
    ObjectFileRequest,
    ObjectListRequest,
    ObjectOut,
    PresignDownloadRequest,
    PresignOut,
)
from .storage import OCTET_STREAM, StorageClientFactory, StoredObject

logger = logging.getLogger(__name__)


def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def move_failure_response(result: MoveResult) -> JSONResponse:
    failure = result.failure
    body = failure.error.to_body()
    body.update({"moved": result.moved, "from": failure.from_key, "to": failure.to_key})
    return JSONResponse(status_code=failure.error.status_code, content=body)


def stream_response(obj: StoredObject, disposition: Optional[str], filename: str, media_type: str) -> StreamingResponse:
    headers = {
        "Content-Length": str(obj.size),
        "Content-Disposition": content_disposition(disposition, filename),
    }
    if obj.etag:
        headers["ETag"] = obj.etag
    return StreamingResponse(obj.iter_chunks(), media_type=media_type, headers=headers)


def _state(request: Request):
    return request.app.state


buckets = APIRouter(prefix="/buckets", tags=["buckets"])


@buckets.post("/add_connection", response_model=MessageOut)
def add_connection(payload: BucketConnection, request: Request, principal: Principal = Depends(current_principal)):
    state = _state(request)
    if state.connections.exists(payload.bucket_id):
        existing = state.connections.get(payload.bucket_id)
        if not state.guard.authorize(principal, existing):
            raise ForbiddenError("not authorized to update this bucket connection", {"bucket": payload.bucket_id})
        if not payload.secret_access_key:
            # listings blank the secret for non-admins; keep the stored one
            payload = payload.model_copy(update={"secret_access_key": existing.secret_access_key})
    elif not payload.secret_access_key:
        raise ValidationError("secret_access_key is required")
    state.connections.upsert(payload)
    return MessageOut(message="Connection Added")


@buckets.get("/list_connections", response_model=list[BucketConnection])
def list_connections(request: Request, principal: Principal = Depends(current_principal)):
    state = _state(request)
    allowed = state.guard.filter(principal, state.connections.list_all())
    if state.guard.is_privileged(principal):
        return allowed
    return [conn.redacted() for conn in allowed]


@buckets.post("/delete_connection", response_model=MessageOut)
def delete_connection(
    payload: ConnectionDeleteRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    state = _state(request)
    state.access.connection(principal, payload.bucket_id)
    state.connections.delete(payload.bucket_id)
    return MessageOut(message="Bucket connection deleted successfully")


objects = APIRouter(prefix="/objects", tags=["objects"])


@objects.post("/list", response_model=list[ObjectOut])
def list_objects(payload: ObjectListRequest, request: Request, principal: Principal = Depends(current_principal)):
    return _state(request).objects.list_objects(principal, payload.bucket, payload.prefix)


@objects.post("/download")
def download_object(payload: ObjectFileRequest, request: Request, principal: Principal = Depends(current_principal)):
    obj = _state(request).objects.download(principal, payload.bucket, payload.filename)
    return stream_response(obj, "attachment", download_filename(payload.filename), OCTET_STREAM)


@objects.get("/download/{bucket}/{key:path}")
def download_native(
    bucket: str,
    key: str,
    request: Request,
    disposition: Optional[str] = None,
    principal: Principal = Depends(current_principal),
):
    obj = _state(request).objects.download(principal, bucket, key.lstrip("/"))
    return stream_response(obj, disposition, download_filename(obj.key), obj.content_type)


@objects.post("/presign_download", response_model=PresignOut)
def presign_download(
    payload: PresignDownloadRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    url = _state(request).objects.presign_download(
        principal,
        payload.bucket,
        payload.key,
        expires_seconds=payload.expires_seconds,
        disposition=payload.disposition,
        filename=payload.filename,
    )
    return PresignOut(url=url)


@objects.post("/delete", response_model=MessageOut)
def delete_object(payload: ObjectFileRequest, request: Request, principal: Principal = Depends(current_principal)):
    _state(request).objects.delete(principal, payload.bucket, payload.filename)
    return MessageOut(message="Object deleted successfully")


@objects.post("/upload", status_code=status.HTTP_410_GONE)
def upload_object(principal: Principal = Depends(current_principal)):
    return JSONResponse(
        status_code=status.HTTP_410_GONE,
        content={
            "error": "direct multipart upload required",
            "message": "use /api/v1/objects/multipart/initiate, /multipart/presign_part, /multipart/complete",
        },
    )


@objects.post("/move", response_model=MoveOut)
def move_objects(payload: MoveRequest, request: Request, principal: Principal = Depends(current_principal)):
    state = _state(request)
    client = state.access.client(principal, payload.bucket)
    result = state.mover.move(client, payload)
    if not result.ok:
        return move_failure_response(result)
    return MoveOut(moved=result.moved)


@objects.post("/multipart/initiate", response_model=MultipartInitiateOut)
def multipart_initiate(
    payload: MultipartInitiateRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    return _state(request).multipart.initiate(principal, payload.bucket, payload.key, payload.content_type)


@objects.post("/multipart/presign_part", response_model=PresignOut)
def multipart_presign_part(
    payload: MultipartPresignPartRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    url = _state(request).multipart.presign_part(
        principal,
        payload.bucket,
        payload.key,
        payload.upload_id,
        payload.part_number,
        payload.expires_seconds,
    )
    return PresignOut(url=url)


@objects.post("/multipart/complete", response_model=MessageOut)
def multipart_complete(
    payload: MultipartCompleteRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    _state(request).multipart.complete(principal, payload.bucket, payload.key, payload.upload_id, payload.parts)
    return MessageOut(message="Multipart upload completed")


@objects.post("/multipart/abort", response_model=MessageOut)
def multipart_abort(
    payload: MultipartAbortRequest,
    request: Request,
    principal: Principal = Depends(current_principal),
):
    _state(request).multipart.abort(principal, payload.bucket, payload.key, payload.upload_id)
    return MessageOut(message="Multipart upload aborted")


def create_app(
    settings: Optional[Settings] = None,
    storage_factory: Optional[StorageClientFactory] = None,
    principal_resolver: Optional[PrincipalResolver] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = create_db_engine(settings.database_url)
    kv = KVStore(create_session_factory(engine))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        wait_for_db(engine)
        init_schema(engine)
        yield
        engine.dispose()

    app = FastAPI(title="bucketgate", lifespan=lifespan)

    guard = AuthorizationGuard(settings.admin_group)
    connections = ConnectionStore(kv)
    access = BucketAccess(
        connections,
        guard,
        storage_factory or StorageClientFactory(settings.default_region),
    )

    app.state.settings = settings
    app.state.guard = guard
    app.state.connections = connections
    app.state.access = access
    app.state.objects = ObjectGateway(access)
    app.state.multipart = MultipartUploadCoordinator(access)
    app.state.mover = MoveEngine()
    app.state.principal_resolver = principal_resolver or JWTPrincipalResolver(
        settings.jwt_secret, settings.jwt_algorithms
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)

    @app.get("/api/v1/healthz")
    def health():
        return {"status": "ok"}

    api = APIRouter(prefix="/api/v1")
    api.include_router(buckets)
    api.include_router(objects)
    app.include_router(api)
    return app


app = create_app()
