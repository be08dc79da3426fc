from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.hrms.db import BRANCH_SCHEMA
from app.hrms.models import Base, User

EMPLOYEE_TYPES = ("teacher", "staff", "driver")


class DeductionType(Base):
    """Reference data (tax, insurance, provident fund...). Read-only for this service."""

    __tablename__ = "deduction_types"
    __table_args__ = (
        Index("idx_deduction_types_name", "name"),
        {"schema": BRANCH_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    calculation_method: Mapped[str] = mapped_column(String(32), nullable=False, default="fixed")  # fixed, percentage
    default_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_tax_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class DeductionTemplate(Base):
    __tablename__ = "deduction_templates"
    __table_args__ = (
        Index("idx_deduction_templates_branch", "branch_id"),
        Index("idx_deduction_templates_type_name", "employee_type", "template_name"),
        CheckConstraint(
            "employee_type IN ('teacher', 'staff', 'driver')",
            name="ck_deduction_templates_employee_type",
        ),
        {"schema": BRANCH_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    employee_type: Mapped[str] = mapped_column(String(32), nullable=False)  # teacher, staff, driver
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False)  # e.g. "2024-25"

    # Soft delete flag; inactive templates are invisible to every API path
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["DeductionTemplateItem"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeductionTemplateItem.id",
    )
    creator: Mapped[User | None] = relationship(User, lazy="joined")


class DeductionTemplateItem(Base):
    __tablename__ = "deduction_template_items"
    __table_args__ = (
        Index("idx_deduction_template_items_template", "template_id"),
        {"schema": BRANCH_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey(f"{BRANCH_SCHEMA}.deduction_templates.id", ondelete="CASCADE"), nullable=False
    )
    deduction_type_id: Mapped[int] = mapped_column(
        ForeignKey(f"{BRANCH_SCHEMA}.deduction_types.id", ondelete="RESTRICT"), nullable=False
    )
    calculation_type: Mapped[str] = mapped_column(String(32), nullable=False)  # fixed, percentage
    calculation_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    template: Mapped[DeductionTemplate] = relationship(back_populates="items")
    deduction_type: Mapped[DeductionType] = relationship(lazy="joined")
