from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from flask import current_app, g, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.hrms.errors import AuditFailure
from app.hrms.models import AuditLog

if TYPE_CHECKING:
    from app.hrms.auth import Caller

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    user_id: int | None
    action: str
    details: str
    status: str = "success"
    created_at: datetime = field(default_factory=datetime.utcnow)


class AuditSink(Protocol):
    def write(self, s: Session, entry: AuditEntry) -> None: ...


class DatabaseAuditSink:
    """
    Writes to audit_logs inside a SAVEPOINT, so a failed insert (missing table, bad column)
    is undone on its own and the caller's transaction stays usable.
    """

    def write(self, s: Session, entry: AuditEntry) -> None:
        try:
            with s.begin_nested():
                s.add(
                    AuditLog(
                        user_id=entry.user_id,
                        action=entry.action,
                        details=entry.details,
                        status=entry.status,
                        created_at=entry.created_at,
                    )
                )
        except SQLAlchemyError as e:
            raise AuditFailure(str(e)) from e


def get_audit_sink() -> AuditSink:
    if has_app_context():
        sink = current_app.extensions.get("audit_sink")
        if sink is not None:
            return sink
    return DatabaseAuditSink()


def record_event(
    s: Session,
    *,
    actor: "Caller | None",
    action: str,
    details: str,
    status: str = "success",
    sink: AuditSink | None = None,
) -> bool:
    """
    Best-effort audit helper. Never raises; returns whether the entry was written.
    """
    entry = AuditEntry(
        user_id=actor.user_id if actor else None,
        action=action,
        details=details,
        status=status,
    )
    sink = sink or get_audit_sink()
    try:
        sink.write(s, entry)
    except Exception as e:
        rid = getattr(g, "request_id", None) if has_app_context() else None
        logger.warning("Audit logging skipped (action=%s request_id=%s): %s", action, rid, e)
        return False
    logger.debug("Audit event logged (action=%s)", action)
    return True
