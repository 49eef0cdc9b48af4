import logging
from typing import Optional, Protocol

import jwt
from fastapi import Header, Request

from .authz import Principal
from .errors import UnauthenticatedError

logger = logging.getLogger(__name__)


class PrincipalResolver(Protocol):
    def resolve(self, token: str) -> Principal: ...


def _groups_claim(value) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(g.strip() for g in value.split(",") if g.strip())
    return tuple(str(g) for g in value)


class JWTPrincipalResolver:
    """Turns a signed bearer token into a principal.

    Tokens are issued elsewhere (OIDC callback or local login); this only
    verifies the signature and expiry and reads the identity claims.
    """

    def __init__(self, secret: str, algorithms=("HS256",)) -> None:
        self._secret = secret
        self._algorithms = list(algorithms)

    def resolve(self, token: str) -> Principal:
        if not self._secret:
            raise UnauthenticatedError("server jwt secret is not configured")
        try:
            claims = jwt.decode(token, self._secret, algorithms=self._algorithms)
        except jwt.ExpiredSignatureError:
            raise UnauthenticatedError("token expired") from None
        except jwt.InvalidTokenError as exc:
            logger.info("rejected bearer token: %s", exc)
            raise UnauthenticatedError("invalid token") from None

        email = str(claims.get("email") or "").strip()
        if not email:
            raise UnauthenticatedError("token carries no email")

        return Principal(
            id=str(claims.get("sub") or claims.get("username") or email),
            email=email,
            groups=_groups_claim(claims.get("groups")),
            is_admin=bool(claims.get("administrator", False)),
        )


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise UnauthenticatedError("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("invalid authorization header")
    return token.strip()


def current_principal(request: Request, authorization: Optional[str] = Header(default=None)) -> Principal:
    resolver: PrincipalResolver = request.app.state.principal_resolver
    return resolver.resolve(bearer_token(authorization))
