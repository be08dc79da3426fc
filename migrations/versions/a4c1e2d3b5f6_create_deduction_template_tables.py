"""create deduction template tables

Revision ID: a4c1e2d3b5f6
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a4c1e2d3b5f6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "branch"


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    schema = SCHEMA if is_postgres else None
    if is_postgres:
        op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")

    insp = inspect(bind)
    existing_public = set(insp.get_table_names())
    existing_branch = set(insp.get_table_names(schema=schema))
    fk_prefix = f"{schema}." if schema else ""

    # users is shared with the auth service and usually already exists
    if "users" not in existing_public:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("email"),
        )

    if "audit_logs" not in existing_public:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="success"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_audit_logs_user", "audit_logs", ["user_id"])

    if "deduction_types" not in existing_branch:
        op.create_table(
            "deduction_types",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("code", sa.String(32), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("calculation_method", sa.String(32), nullable=False, server_default="fixed"),
            sa.Column("default_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("is_tax_deductible", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("code"),
            schema=schema,
        )
        op.create_index("idx_deduction_types_name", "deduction_types", ["name"], schema=schema)

    if "deduction_templates" not in existing_branch:
        op.create_table(
            "deduction_templates",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("template_name", sa.String(255), nullable=False),
            sa.Column("employee_type", sa.String(32), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("branch_id", sa.Integer(), nullable=False),
            sa.Column("academic_year", sa.String(16), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.CheckConstraint(
                "employee_type IN ('teacher', 'staff', 'driver')",
                name="ck_deduction_templates_employee_type",
            ),
            schema=schema,
        )
        op.create_index("idx_deduction_templates_branch", "deduction_templates", ["branch_id"], schema=schema)
        op.create_index(
            "idx_deduction_templates_type_name",
            "deduction_templates",
            ["employee_type", "template_name"],
            schema=schema,
        )

    if "deduction_template_items" not in existing_branch:
        op.create_table(
            "deduction_template_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("deduction_type_id", sa.Integer(), nullable=False),
            sa.Column("calculation_type", sa.String(32), nullable=False),
            sa.Column("calculation_value", sa.Numeric(12, 2), nullable=False),
            sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.ForeignKeyConstraint(["template_id"], [f"{fk_prefix}deduction_templates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["deduction_type_id"], [f"{fk_prefix}deduction_types.id"], ondelete="RESTRICT"),
            schema=schema,
        )
        op.create_index(
            "idx_deduction_template_items_template",
            "deduction_template_items",
            ["template_id"],
            schema=schema,
        )


def downgrade() -> None:
    """Downgrade schema. Leaves users/audit_logs alone (shared tables)."""
    bind = op.get_bind()
    schema = SCHEMA if bind.dialect.name == "postgresql" else None
    op.drop_index("idx_deduction_template_items_template", table_name="deduction_template_items", schema=schema)
    op.drop_table("deduction_template_items", schema=schema)
    op.drop_index("idx_deduction_templates_type_name", table_name="deduction_templates", schema=schema)
    op.drop_index("idx_deduction_templates_branch", table_name="deduction_templates", schema=schema)
    op.drop_table("deduction_templates", schema=schema)
    op.drop_index("idx_deduction_types_name", table_name="deduction_types", schema=schema)
    op.drop_table("deduction_types", schema=schema)
