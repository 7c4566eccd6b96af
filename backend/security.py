import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from fastapi import Header

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY
from backend.errors import Forbidden, Unauthenticated

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    role: Role
    issued_at: int | None = None
    expires_at: int | None = None


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(
    user_id: int,
    role: Role | str,
    *,
    ttl_seconds: int | None = None,
) -> tuple[str, dict[str, Any]]:
    """Mint a signed bearer token for ``user_id`` acting as ``role``."""
    now = int(time.time())
    ttl = AUTH_TOKEN_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    payload = {
        "sub": str(int(user_id)),
        "role": Role(role).value,
        "iat": now,
        "exp": now + ttl,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    if not hmac.compare_digest(signature, expected):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int) or isinstance(exp, bool):
        return None
    if exp < int(time.time()):
        return None

    return payload


def admit(credential: str | None, allowed_roles: Iterable[Role] = ()) -> AuthenticatedUser:
    """
    Verify ``credential`` and admit its bearer if their role is allowed.

    An empty ``allowed_roles`` admits any authenticated user.
    """
    if not credential or not credential.strip():
        raise Unauthenticated("Missing bearer token.")

    payload = decode_session_token(credential.strip())
    if not payload:
        logger.debug("Rejected bearer token: bad signature, malformed or expired")
        raise Unauthenticated("Invalid or expired session token.")

    sub = payload["sub"].strip()
    try:
        role = Role(payload.get("role"))
    except ValueError:
        logger.debug("Rejected bearer token with unknown role %r", payload.get("role"))
        raise Unauthenticated("Invalid or expired session token.")
    if not sub.isdigit():
        raise Unauthenticated("Invalid or expired session token.")

    allowed = frozenset(allowed_roles)
    if allowed and role not in allowed:
        logger.debug("Role %s not permitted (allowed: %s)", role.value, sorted(r.value for r in allowed))
        raise Forbidden("Access denied for this role.")

    iat = payload.get("iat")
    return AuthenticatedUser(
        id=int(sub),
        role=role,
        issued_at=iat if isinstance(iat, int) else None,
        expires_at=payload["exp"],
    )


def _bearer_credential(authorization: str | None) -> str:
    if not authorization:
        raise Unauthenticated("Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Invalid authorization scheme.")
    return token.strip()


def require_roles(*roles: Role) -> Callable[..., AuthenticatedUser]:
    """FastAPI dependency admitting only ``roles`` (any role when none are given)."""
    allowed = frozenset(roles)

    def dependency(authorization: str | None = Header(default=None)) -> AuthenticatedUser:
        return admit(_bearer_credential(authorization), allowed)

    return dependency
