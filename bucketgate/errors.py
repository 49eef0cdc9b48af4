"""Error taxonomy shared by every gateway operation."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError


class GatewayError(Exception):
    """Base class for request-scoped gateway failures."""

    status_code = 500
    code = "GATEWAY_ERROR"

    def __init__(self, message: str, metadata: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = metadata or {}

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationError(GatewayError):
    """Malformed or missing request fields. Always caller-fixable."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthenticatedError(GatewayError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(GatewayError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(GatewayError):
    status_code = 404
    code = "NOT_FOUND"


class ConnectionNotFoundError(NotFoundError):
    code = "CONNECTION_NOT_FOUND"

    def __init__(self, bucket_id: str) -> None:
        super().__init__(f"bucket connection {bucket_id!r} not found")
        self.bucket_id = bucket_id


class ObjectNotFoundError(NotFoundError):
    code = "OBJECT_NOT_FOUND"


class ConflictError(GatewayError):
    """Destination already exists and overwrite was not requested."""

    status_code = 409
    code = "CONFLICT"


class UpstreamError(GatewayError):
    """The object store or the KV store failed in an unclassified way."""

    status_code = 502
    code = "UPSTREAM_ERROR"


_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
# credential failures (InvalidAccessKeyId, SignatureDoesNotMatch) are a misconfigured
# connection, not a caller permission problem, so they fall through to UpstreamError
_FORBIDDEN_CODES = {"403", "AccessDenied"}


def map_client_error(
    exc: Exception,
    operation: str,
    key: str | None = None,
) -> GatewayError:
    """Translate a botocore failure into the gateway taxonomy."""
    metadata: dict[str, Any] = {"operation": operation}
    if key is not None:
        metadata["key"] = key

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or str(exc)
        if code in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"object {key!r} not found" if key else message, metadata)
        if code == "NoSuchUpload":
            return NotFoundError(message or "multipart upload not found", metadata)
        if code == "NoSuchBucket":
            return NotFoundError(message or "bucket not found", metadata)
        if code in _FORBIDDEN_CODES:
            return ForbiddenError(message, metadata)
        return UpstreamError(message, metadata)

    if isinstance(exc, BotoCoreError):
        return UpstreamError(str(exc), metadata)

    return UpstreamError(str(exc) or exc.__class__.__name__, metadata)
