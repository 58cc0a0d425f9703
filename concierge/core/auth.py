"""
Auth gate: password hashing, bearer token issuance/verification and route classification.

Tokens are HS256 JWTs signed with Settings.secret_key and valid for
Settings.token_ttl_days. Verification failures of any kind raise the same
AuthenticationFailed so callers cannot tell an expired token from a forged one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from concierge.config import Settings, get_settings
from concierge.core.errors import AuthenticationFailed

logger = logging.getLogger(__name__)

password_hasher = PasswordHasher()


class PrincipalKind(str, Enum):
    BUSINESS = "business"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    subject_id: UUID
    email: str
    kind: PrincipalKind = PrincipalKind.BUSINESS
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.kind is PrincipalKind.ADMIN

    @property
    def business_id(self) -> UUID | None:
        return self.subject_id if self.kind is PrincipalKind.BUSINESS else None


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return password_hasher.verify(hashed_password, plain_password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(
    principal: Principal,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> str:
    settings = settings or get_settings()
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(principal.subject_id),
        "email": principal.email,
        "kind": principal.kind.value,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(days=settings.token_ttl_days)).timestamp()),
    }
    if principal.is_admin:
        claims["is_admin"] = True
        claims["role"] = principal.role or "admin"
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(
    token: str,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> Principal:
    """
    Verify signature and expiry and return the principal.

    Expiry is checked against `now` (defaults to the current time) so the
    validity window can be evaluated at any instant.
    """
    settings = settings or get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": False, "require": ["sub", "exp", "iat"]},
        )
        moment = now or datetime.now(timezone.utc)
        if int(claims["exp"]) <= int(moment.timestamp()):
            raise AuthenticationFailed()
        kind = PrincipalKind(claims.get("kind", PrincipalKind.BUSINESS.value))
        return Principal(
            subject_id=UUID(str(claims["sub"])),
            email=str(claims.get("email", "")),
            kind=kind,
            role=claims.get("role") if kind is PrincipalKind.ADMIN else None,
        )
    except AuthenticationFailed:
        raise
    except (jwt.PyJWTError, ValueError, TypeError, KeyError) as e:
        logger.debug("Token rejected: %s", type(e).__name__)
        raise AuthenticationFailed() from None


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# --- Route classification ---


class RouteAccess(str, Enum):
    OPEN = "open"
    TENANT = "tenant"
    ADMIN = "admin"


TENANT_ROUTE_PREFIXES: tuple[str, ...] = (
    "/api/auth/me",
    "/api/channels/config",
    "/api/knowledge-base",
    "/api/subscription",
    "/api/features",
    "/api/guests",
)

ADMIN_ROUTE_PREFIXES: tuple[str, ...] = ("/api/admin",)


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def classify_route(path: str) -> RouteAccess:
    if any(_matches(path, p) for p in ADMIN_ROUTE_PREFIXES):
        return RouteAccess.ADMIN
    if any(_matches(path, p) for p in TENANT_ROUTE_PREFIXES):
        return RouteAccess.TENANT
    return RouteAccess.OPEN
