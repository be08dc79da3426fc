from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any

from flask import current_app, g, request
from jose import JWTError, jwt

from app.hrms.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Identity decoded from the bearer token."""

    user_id: int | None
    role: str | None
    branch_id: int | None

    @property
    def is_superadmin(self) -> bool:
        return self.role == "superadmin"

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Caller":
        return cls(
            user_id=_as_int(claims.get("userId")),
            role=claims.get("role"),
            branch_id=_as_int(claims.get("branchId")),
        )


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def read_bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    parts = header.split(" ", 1)
    if len(parts) != 2 or not parts[1].strip():
        return None
    return parts[1].strip()


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature + expiry. Raises Forbidden on any JWT problem."""
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=current_app.config.get("JWT_ALGORITHMS", ["HS256"]),
        )
    except JWTError as e:
        logger.warning("JWT verification error (request_id=%s): %s", getattr(g, "request_id", None), e)
        raise Forbidden("Invalid or expired token")


def issue_token(
    secret: str,
    *,
    user_id: int,
    role: str,
    branch_id: int | None,
    expires_in: timedelta = timedelta(hours=8),
) -> str:
    """Mint a token with the claims this service reads. Tokens are normally issued by the auth service."""
    now = datetime.now(timezone.utc)
    claims = {
        "userId": user_id,
        "role": role,
        "branchId": branch_id,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def load_request_id() -> None:
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex


def require_token(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Authenticate the request from `Authorization: Bearer <jwt>` and expose it as g.caller.
    """

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        token = read_bearer_token()
        if not token:
            raise Unauthorized("Access token required")
        claims = decode_token(token)
        g.caller = Caller.from_claims(claims)
        logger.debug("Authenticated caller user_id=%s role=%s branch_id=%s", g.caller.user_id, g.caller.role, g.caller.branch_id)
        return fn(*args, **kwargs)

    return wrapped


def current_caller() -> Caller:
    caller = getattr(g, "caller", None)
    if caller is None:
        raise RuntimeError("No authenticated caller")
    return caller
