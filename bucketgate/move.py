"""Server-side object moves (copy, then delete the source).

The store has no multi-object transaction, so a move is never atomic:

* single-key moves never delete the source unless the copy succeeded; if the
  delete fails afterwards the object exists at both keys and the error names
  both paths;
* prefix moves stop at the first failing object and report how many objects
  were moved before it. Re-running the same request moves the remainder,
  since moved objects no longer exist under the source prefix.

The destination conflict check is a stat followed by a copy, so a concurrent
writer can still slip in between the two calls.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ConflictError, GatewayError, UpstreamError, ValidationError
from .schemas import MoveRequest
from .storage import BucketClient

logger = logging.getLogger(__name__)

SEPARATOR = "/"


@dataclass
class MoveFailure:
    from_key: str
    to_key: str
    error: GatewayError


@dataclass
class MoveResult:
    moved: int
    failure: Optional[MoveFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def normalize_prefix(prefix: Optional[str]) -> str:
    """``"a"``, ``"a/"`` and ``"a//"`` all become ``"a/"``; empty stays empty."""
    stripped = (prefix or "").rstrip(SEPARATOR)
    if not stripped:
        return ""
    return stripped + SEPARATOR


def _is_set(value: Optional[str]) -> bool:
    return value is not None and value != ""


def is_single_object_move(req: MoveRequest) -> bool:
    return _is_set(req.from_key) or _is_set(req.to_key)


def is_prefix_move(req: MoveRequest) -> bool:
    return req.from_prefix is not None or req.to_prefix is not None


def names_prefix(req: MoveRequest) -> bool:
    return _is_set(req.from_prefix) or _is_set(req.to_prefix)


def validate_single_move(req: MoveRequest) -> tuple[str, str]:
    if not req.from_key or not req.to_key:
        raise ValidationError("from_key and to_key are required for single object move")
    if req.from_key == req.to_key:
        raise ValidationError("from_key and to_key must be different")
    return req.from_key, req.to_key


def validate_prefix_move(req: MoveRequest) -> tuple[str, str]:
    if req.from_prefix is None or req.to_prefix is None:
        raise ValidationError("from_prefix and to_prefix are required for prefix move")
    from_prefix = normalize_prefix(req.from_prefix)
    to_prefix = normalize_prefix(req.to_prefix)
    if from_prefix == to_prefix:
        raise ValidationError("from_prefix and to_prefix must be different")
    if to_prefix.startswith(from_prefix):
        # the listing would pick the moved objects up again
        raise ValidationError(
            "to_prefix must not be inside from_prefix",
            {"from_prefix": from_prefix, "to_prefix": to_prefix},
        )
    return from_prefix, to_prefix


class MoveEngine:
    def move(self, client: BucketClient, req: MoveRequest) -> MoveResult:
        if is_single_object_move(req):
            # an empty prefix alongside the keys is just an unset field
            if names_prefix(req):
                raise ValidationError("either (from_key,to_key) or (from_prefix,to_prefix) must be provided, not both")
            return self.move_object(client, req)
        if is_prefix_move(req):
            return self.move_prefix(client, req)
        raise ValidationError("either (from_key,to_key) or (from_prefix,to_prefix) must be provided")

    def move_object(self, client: BucketClient, req: MoveRequest) -> MoveResult:
        from_key, to_key = validate_single_move(req)
        try:
            self._move_one(client, from_key, to_key, req.overwrite)
        except GatewayError as exc:
            return MoveResult(moved=0, failure=MoveFailure(from_key, to_key, exc))
        return MoveResult(moved=1)

    def move_prefix(self, client: BucketClient, req: MoveRequest) -> MoveResult:
        from_prefix, to_prefix = validate_prefix_move(req)

        moved = 0
        try:
            for item in client.iter_objects(from_prefix, recursive=True):
                from_key = item["Key"]
                rel = from_key[len(from_prefix):]
                if not rel:
                    continue
                to_key = to_prefix + rel
                try:
                    self._move_one(client, from_key, to_key, req.overwrite)
                except GatewayError as exc:
                    logger.warning("prefix move stopped after %d objects at %s: %s", moved, from_key, exc)
                    return MoveResult(moved=moved, failure=MoveFailure(from_key, to_key, exc))
                moved += 1
        except GatewayError as exc:
            # listing failed
            return MoveResult(moved=moved, failure=MoveFailure(from_prefix, to_prefix, exc))

        logger.info("moved %d objects from %r to %r in %s", moved, from_prefix, to_prefix, client.bucket_name)
        return MoveResult(moved=moved)

    def _move_one(self, client: BucketClient, from_key: str, to_key: str, overwrite: bool) -> None:
        if not overwrite and client.exists(to_key):
            raise ConflictError(
                "destination object already exists",
                {"object": to_key, "message": "set overwrite=true to replace existing objects"},
            )

        client.copy(from_key, to_key)

        try:
            client.delete(from_key)
        except GatewayError as exc:
            raise UpstreamError(
                f"object copied to {to_key!r} but source {from_key!r} could not be deleted: {exc.message}",
                {"from": from_key, "to": to_key},
            ) from exc
        logger.info("moved %s -> %s in %s", from_key, to_key, client.bucket_name)
