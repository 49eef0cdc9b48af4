"""Direct-to-store multipart uploads.

Part bytes never pass through the gateway: the client PUTs each part to a
presigned URL and reports the returned ETags back on completion. The store
owns the upload state; ``upload_id`` is opaque and supplied by the client on
every call, so nothing is cached here.

Upload lifecycle as seen by the store::

    initiate -> presign_part (xN, client uploads) -> complete
                                                   \\-> abort
"""

import logging
from contextlib import contextmanager

from .access import BucketAccess
from .authz import Principal
from .errors import GatewayError, UpstreamError, ValidationError
from .schemas import CompletedPart, MultipartInitiateOut
from .storage import OCTET_STREAM, PERMISSIVE_CORS_RULES, BucketClient, presign_ttl

logger = logging.getLogger(__name__)

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000


def _require(key: str, upload_id: str | None = None, action: str = "multipart") -> None:
    if not key:
        raise ValidationError(f"{action} failed. key is required")
    if upload_id is not None and not upload_id:
        raise ValidationError(f"{action} failed. key and upload_id are required")


def valid_part_number(part_number: int) -> bool:
    return MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER


def sorted_parts(parts: list[CompletedPart]) -> list[CompletedPart]:
    if not parts:
        raise ValidationError("parts is required")
    for part in parts:
        if not valid_part_number(part.part_number) or not part.etag:
            raise ValidationError(
                "each part must have valid part_number and non-empty etag",
                {"part_number": part.part_number},
            )
    return sorted(parts, key=lambda p: p.part_number)


class MultipartUploadCoordinator:
    def __init__(self, access: BucketAccess) -> None:
        self.access = access

    def initiate(
        self,
        principal: Principal,
        bucket_id: str,
        key: str,
        content_type: str | None = None,
    ) -> MultipartInitiateOut:
        _require(key, action="multipart initiate")
        client = self.access.client(principal, bucket_id)

        # browsers PUT parts cross-origin and must be able to read the ETag
        logger.info("setting cors for bucket %s", client.bucket_name)
        client.put_cors(PERMISSIVE_CORS_RULES)

        upload_id = client.create_multipart_upload(key, content_type or OCTET_STREAM)
        logger.info("initiated multipart upload %s for %s/%s", upload_id, bucket_id, key)
        return MultipartInitiateOut(bucket=bucket_id, key=key, upload_id=upload_id)

    def presign_part(
        self,
        principal: Principal,
        bucket_id: str,
        key: str,
        upload_id: str,
        part_number: int,
        expires_seconds: int | None = None,
    ) -> str:
        _require(key, upload_id, action="multipart presign")
        if not valid_part_number(part_number):
            raise ValidationError(
                f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}",
                {"part_number": part_number},
            )
        ttl = presign_ttl(expires_seconds)
        client = self.access.client(principal, bucket_id)

        with self._abort_on_failure(client, key, upload_id):
            return client.presign(
                "PUT",
                key,
                ttl,
                {"UploadId": upload_id, "PartNumber": part_number},
            )

    def complete(
        self,
        principal: Principal,
        bucket_id: str,
        key: str,
        upload_id: str,
        parts: list[CompletedPart],
    ) -> dict:
        _require(key, upload_id, action="multipart complete")
        ordered = sorted_parts(parts)
        client = self.access.client(principal, bucket_id)

        with self._abort_on_failure(client, key, upload_id):
            result = client.complete_multipart_upload(
                key, upload_id, [(p.part_number, p.etag) for p in ordered]
            )
        logger.info("completed multipart upload %s for %s/%s (%d parts)", upload_id, bucket_id, key, len(ordered))
        return result

    def abort(self, principal: Principal, bucket_id: str, key: str, upload_id: str) -> None:
        _require(key, upload_id, action="multipart abort")
        client = self.access.client(principal, bucket_id)
        client.abort_multipart_upload(key, upload_id)
        logger.info("aborted multipart upload %s for %s/%s", upload_id, bucket_id, key)

    def list_uploads(self, principal: Principal, bucket_id: str, prefix: str = "") -> list[dict]:
        client = self.access.client(principal, bucket_id)
        return client.list_multipart_uploads(prefix)

    @contextmanager
    def _abort_on_failure(self, client: BucketClient, key: str, upload_id: str):
        """Abort the upload when a store call inside the block fails upstream.

        The original error is always re-raised; a failing abort is only logged.
        """
        try:
            yield
        except UpstreamError as exc:
            logger.warning("aborting multipart upload %s for %s after failure: %s", upload_id, key, exc)
            try:
                client.abort_multipart_upload(key, upload_id)
            except GatewayError as abort_exc:
                logger.error("compensating abort of %s failed: %s", upload_id, abort_exc)
            raise
