from dataclasses import dataclass, field

from .schemas import BucketConnection


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    groups: tuple[str, ...] = field(default_factory=tuple)
    is_admin: bool = False


class AuthorizationGuard:
    """The one allow/deny rule for bucket connections.

    A principal may act on a connection when it is an administrator, its
    email is allow-listed, it belongs to the configured admin group, or it
    shares a group with the connection's allow-list.
    """

    def __init__(self, admin_group: str = "") -> None:
        self.admin_group = admin_group

    def is_privileged(self, principal: Principal) -> bool:
        if principal.is_admin:
            return True
        return bool(self.admin_group) and self.admin_group in principal.groups

    def authorize(self, principal: Principal, conn: BucketConnection) -> bool:
        if self.is_privileged(principal):
            return True
        if principal.email and principal.email in conn.authorized_users:
            return True
        return not set(principal.groups).isdisjoint(conn.authorized_groups)

    def filter(self, principal: Principal, conns: list[BucketConnection]) -> list[BucketConnection]:
        return [conn for conn in conns if self.authorize(principal, conn)]
