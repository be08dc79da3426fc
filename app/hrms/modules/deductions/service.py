from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from app.hrms.audit import record_event
from app.hrms.db import atomic
from app.hrms.errors import DataAccessError, Forbidden, NotFound, ValidationError
from app.hrms.modules.deductions.models import (
    EMPLOYEE_TYPES,
    DeductionTemplate,
    DeductionTemplateItem,
    DeductionType,
)
from app.hrms.rbac import can_access_branch, scope_to_caller

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.hrms.auth import Caller

logger = logging.getLogger(__name__)

CREATE_REQUIRED_FIELDS = ("template_name", "employee_type", "branch_id", "academic_year", "deductions")
UPDATE_REQUIRED_FIELDS = ("template_name", "employee_type", "deductions")
ITEM_REQUIRED_FIELDS = ("deduction_type_id", "calculation_type", "calculation_value")

# calculation_value is stored as numeric(12, 2)
VALUE_MAX_DIGITS = 12
VALUE_SCALE = 2


# ---------- Validation ----------
def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _as_int(value: Any) -> int | None:
    """Integers and digit strings only; 1.9 is rejected, never truncated."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"[+-]?[0-9]+", value.strip()):
        return int(value.strip())
    return None


def _as_decimal(value: Any) -> Decimal | None:
    """Finite number or numeric string, else None (NaN and Infinity included)."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _fits_value_column(d: Decimal) -> bool:
    limit = Decimal(10) ** (VALUE_MAX_DIGITS - VALUE_SCALE)
    return abs(d) < limit and d.normalize().as_tuple().exponent >= -VALUE_SCALE


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _validate_item(position: int, item: Any) -> list[str]:
    if not isinstance(item, dict):
        return [f"Deduction #{position} must be an object."]
    errors = []
    missing = [k for k in ITEM_REQUIRED_FIELDS if _is_missing(item.get(k))]
    if missing:
        errors.append(f"Deduction #{position} is missing: {', '.join(missing)}")
    if not _is_missing(item.get("deduction_type_id")) and _as_int(item.get("deduction_type_id")) is None:
        errors.append(f"Deduction #{position}: deduction_type_id must be an integer.")
    value = item.get("calculation_value")
    if not _is_missing(value):
        d = _as_decimal(value)
        if d is None:
            errors.append(f"Deduction #{position}: calculation_value must be a number.")
        elif not _fits_value_column(d):
            errors.append(
                f"Deduction #{position}: calculation_value must be below "
                f"{10 ** (VALUE_MAX_DIGITS - VALUE_SCALE)} with at most {VALUE_SCALE} decimal places."
            )
    if item.get("is_mandatory") is not None and not isinstance(item.get("is_mandatory"), bool):
        errors.append(f"Deduction #{position}: is_mandatory must be true or false.")
    return errors


def validate_template_payload(payload: Any, required: tuple[str, ...]) -> list[str]:
    """Validate template create/update payload. Returns list of errors."""
    if not isinstance(payload, dict):
        return ["Invalid request body"]

    errors = []
    missing = [k for k in required if _is_missing(payload.get(k))]
    if missing:
        errors.append(f"Missing required fields: {', '.join(missing)}")

    employee_type = payload.get("employee_type")
    if not _is_missing(employee_type) and employee_type not in EMPLOYEE_TYPES:
        errors.append(f"Invalid employee_type. Must be one of: {', '.join(EMPLOYEE_TYPES)}")

    if "branch_id" in required and not _is_missing(payload.get("branch_id")) and _as_int(payload.get("branch_id")) is None:
        errors.append("branch_id must be an integer.")

    deductions = payload.get("deductions")
    if not _is_missing(deductions):
        if not isinstance(deductions, list):
            errors.append("deductions must be a list.")
        else:
            for position, item in enumerate(deductions, start=1):
                errors.extend(_validate_item(position, item))
    return errors


def _raise_if_invalid(errors: list[str]) -> None:
    if errors:
        raise ValidationError("; ".join(errors))


# ---------- Serialization ----------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _num(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def serialize_deduction_type(t: DeductionType) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "code": t.code,
        "description": t.description,
        "calculation_method": t.calculation_method,
        "default_amount": _num(t.default_amount),
        "is_tax_deductible": t.is_tax_deductible,
        "is_mandatory": t.is_mandatory,
        "is_active": t.is_active,
        "created_at": _iso(t.created_at),
    }


def serialize_item(item: DeductionTemplateItem) -> dict:
    dtype = item.deduction_type
    return {
        "id": item.id,
        "deduction_type_id": item.deduction_type_id,
        "calculation_type": item.calculation_type,
        "calculation_value": _num(item.calculation_value),
        "is_mandatory": item.is_mandatory,
        "deduction_types": {
            "id": dtype.id,
            "name": dtype.name,
            "code": dtype.code,
            "calculation_method": dtype.calculation_method,
            "default_amount": _num(dtype.default_amount),
            "is_tax_deductible": dtype.is_tax_deductible,
            "is_mandatory": dtype.is_mandatory,
        }
        if dtype
        else None,
    }


def serialize_template(t: DeductionTemplate) -> dict:
    creator = t.creator
    return {
        "id": t.id,
        "template_name": t.template_name,
        "employee_type": t.employee_type,
        "description": t.description,
        "branch_id": t.branch_id,
        "academic_year": t.academic_year,
        "is_active": t.is_active,
        "created_by": t.created_by,
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
        "deductions": [serialize_item(i) for i in t.items],
        "created_by_user": {
            "id": creator.id if creator else None,
            "name": creator.name if creator else None,
            "email": creator.email if creator else None,
        },
    }


# ---------- Reads ----------
def list_deduction_types(s: "Session") -> list[dict]:
    try:
        types = s.query(DeductionType).filter(DeductionType.is_active.is_(True)).order_by(DeductionType.name.asc()).all()
    except SQLAlchemyError as e:
        logger.exception("Error fetching deduction types")
        raise DataAccessError("Failed to fetch deduction types") from e
    logger.info("Found %s deduction types", len(types))
    return [serialize_deduction_type(t) for t in types]


def _active_templates_query(s: "Session", caller: "Caller"):
    q = s.query(DeductionTemplate).filter(DeductionTemplate.is_active.is_(True))
    return scope_to_caller(q, DeductionTemplate.branch_id, caller)


def find_active_template(s: "Session", template_id: int, caller: "Caller") -> DeductionTemplate | None:
    """Active template with this id that the caller's branch may see, else None."""
    return _active_templates_query(s, caller).filter(DeductionTemplate.id == template_id).one_or_none()


def list_templates(s: "Session", caller: "Caller") -> list[dict]:
    try:
        templates = (
            _active_templates_query(s, caller)
            .order_by(DeductionTemplate.employee_type.asc(), DeductionTemplate.template_name.asc())
            .all()
        )
        data = [serialize_template(t) for t in templates]
    except SQLAlchemyError as e:
        logger.exception("Error fetching deduction templates")
        raise DataAccessError("Failed to fetch deduction templates") from e
    logger.info("Found %s deduction templates (branch_id=%s role=%s)", len(data), caller.branch_id, caller.role)
    return data


def get_template(s: "Session", template_id: int, caller: "Caller") -> dict:
    try:
        template = find_active_template(s, template_id, caller)
        data = serialize_template(template) if template else None
    except SQLAlchemyError as e:
        logger.exception("Error fetching deduction template %s", template_id)
        raise DataAccessError("Failed to fetch deduction template") from e
    if data is None:
        raise NotFound("Deduction template not found")
    return data


# ---------- Writes ----------
def _append_items(s: "Session", template: DeductionTemplate, deductions: list[dict]) -> None:
    for deduction in deductions:
        is_mandatory = deduction.get("is_mandatory")
        template.items.append(
            DeductionTemplateItem(
                deduction_type_id=_as_int(deduction["deduction_type_id"]),
                calculation_type=str(deduction["calculation_type"]).strip(),
                calculation_value=_as_decimal(deduction["calculation_value"]),
                is_mandatory=True if is_mandatory is None else is_mandatory,
            )
        )
        # flush per item so a bad row fails here, not at commit
        s.flush()


def create_template(s: "Session", payload: Any, caller: "Caller") -> dict:
    """Create a template and all of its items in one transaction."""
    _raise_if_invalid(validate_template_payload(payload, CREATE_REQUIRED_FIELDS))

    branch_id = _as_int(payload["branch_id"])
    if not can_access_branch(caller, branch_id):
        raise Forbidden("Cannot create deduction templates for another branch")

    template_name = str(payload["template_name"]).strip()
    employee_type = payload["employee_type"]
    deductions = payload["deductions"]
    logger.info(
        "Template creation request: template_name=%s employee_type=%s deductions_count=%s created_by=%s",
        template_name,
        employee_type,
        len(deductions),
        caller.user_id,
    )

    now = datetime.utcnow()
    with atomic(s, action="create deduction template"):
        template = DeductionTemplate(
            template_name=template_name,
            employee_type=employee_type,
            description=_clean(payload.get("description")),
            branch_id=branch_id,
            academic_year=str(payload["academic_year"]).strip(),
            is_active=True,
            created_by=caller.user_id,
            created_at=now,
            updated_at=now,
        )
        s.add(template)
        s.flush()
        _append_items(s, template, deductions)
        record_event(
            s,
            actor=caller,
            action="create_deduction_template",
            details=f"Created deduction template: {template_name} ({employee_type}) with {len(deductions)} deductions",
        )

    logger.info("Template created with ID %s (%s items)", template.id, len(deductions))
    return {
        "templateId": template.id,
        "template_name": template.template_name,
        "employee_type": template.employee_type,
        "description": template.description,
        "branch_id": template.branch_id,
        "academic_year": template.academic_year,
        "deductions_count": len(deductions),
    }


def update_template(s: "Session", template_id: int, payload: Any, caller: "Caller") -> dict:
    """
    Update template fields and replace its item set.

    Items are never diffed: every update deletes all existing items and reinserts the
    submitted list. Concurrent updates are last-writer-wins.
    """
    _raise_if_invalid(validate_template_payload(payload, UPDATE_REQUIRED_FIELDS))

    template_name = str(payload["template_name"]).strip()
    employee_type = payload["employee_type"]
    deductions = payload["deductions"]

    with atomic(s, action="update deduction template"):
        template = find_active_template(s, template_id, caller)
        if template is None:
            raise NotFound("Deduction template not found")

        logger.info(
            "Template update request: id=%s template_name=%s employee_type=%s deductions_count=%s",
            template_id,
            template_name,
            employee_type,
            len(deductions),
        )
        template.template_name = template_name
        template.employee_type = employee_type
        template.description = _clean(payload.get("description"))
        template.updated_at = datetime.utcnow()

        template.items.clear()
        s.flush()
        _append_items(s, template, deductions)
        record_event(
            s,
            actor=caller,
            action="update_deduction_template",
            details=f"Updated deduction template: {template_name} ({employee_type}) with {len(deductions)} deductions",
        )

    return {
        "templateId": template.id,
        "template_name": template.template_name,
        "employee_type": template.employee_type,
        "description": template.description,
        "deductions_count": len(deductions),
    }


def delete_template(s: "Session", template_id: int, caller: "Caller") -> dict:
    """Soft-delete: the row and its items stay, is_active goes false."""
    with atomic(s, action="delete deduction template"):
        template = find_active_template(s, template_id, caller)
        if template is None:
            raise NotFound("Deduction template not found")
        template.is_active = False
        template.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=caller,
            action="delete_deduction_template",
            details=f"Soft deleted deduction template: {template.template_name}",
        )

    logger.info('Template "%s" soft deleted', template.template_name)
    return {"templateId": template.id, "template_name": template.template_name}
