from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Shared users table (owned by the auth service). Only read here for creator identity.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AuditLog(Base):
    """
    Append-only audit trail entry. Written best-effort; see app.hrms.audit.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (Index("idx_audit_logs_user", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # no FK: audit rows must survive user cleanup
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "create_deduction_template"
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="success")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.hrms.modules.deductions.models import (  # noqa: E402,F401
    DeductionTemplate,
    DeductionTemplateItem,
    DeductionType,
)
