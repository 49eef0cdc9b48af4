import logging

from .authz import AuthorizationGuard, Principal
from .connections import ConnectionStore
from .errors import ForbiddenError, ValidationError
from .schemas import BucketConnection
from .storage import BucketClient, StorageClientFactory

logger = logging.getLogger(__name__)


class BucketAccess:
    """Resolves a connection id to an authorized, ready-to-use store client."""

    def __init__(
        self,
        store: ConnectionStore,
        guard: AuthorizationGuard,
        factory: StorageClientFactory,
    ) -> None:
        self.store = store
        self.guard = guard
        self.factory = factory

    def connection(self, principal: Principal, bucket_id: str) -> BucketConnection:
        bucket_id = (bucket_id or "").strip()
        if not bucket_id:
            raise ValidationError("bucket is required")
        conn = self.store.get(bucket_id)
        if not self.guard.authorize(principal, conn):
            logger.warning("principal %s denied on bucket connection %s", principal.email, bucket_id)
            raise ForbiddenError("not authorized for this bucket connection", {"bucket": bucket_id})
        return conn

    def client(self, principal: Principal, bucket_id: str) -> BucketClient:
        return self.factory.build(self.connection(principal, bucket_id))
