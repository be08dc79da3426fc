from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g
from sqlalchemy import false

from app.hrms.auth import Caller
from app.hrms.errors import Forbidden

TEMPLATE_READ_ROLES = ("admin", "hr", "teacher", "staff", "superadmin")
TEMPLATE_WRITE_ROLES = ("admin", "hr", "superadmin")


def user_has_role(caller: Caller | None, roles: tuple[str, ...]) -> bool:
    if not caller or not caller.role:
        return False
    return caller.role in roles


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Must be applied inside (after) require_token."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            caller: Caller | None = getattr(g, "caller", None)
            if not user_has_role(caller, roles):
                g.missing_role = roles
                raise Forbidden("Insufficient permissions")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def can_access_branch(caller: Caller, branch_id: int | None) -> bool:
    """
    Single branch-scoping rule: superadmin sees every branch, everyone else only their own.
    A non-superadmin without a branch claim sees nothing.
    """
    if caller.is_superadmin:
        return True
    if caller.branch_id is None:
        return False
    return branch_id == caller.branch_id


def scope_to_caller(q: Any, branch_column: Any, caller: Caller) -> Any:
    """Query form of can_access_branch()."""
    if caller.is_superadmin:
        return q
    if caller.branch_id is None:
        return q.filter(false())
    return q.filter(branch_column == caller.branch_id)
