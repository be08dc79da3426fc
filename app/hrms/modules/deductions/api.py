from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.hrms.auth import current_caller, require_token
from app.hrms.db import db_session
from app.hrms.modules.deductions.service import (
    create_template,
    delete_template,
    get_template,
    list_deduction_types,
    list_templates,
    update_template,
)
from app.hrms.rbac import TEMPLATE_READ_ROLES, TEMPLATE_WRITE_ROLES, require_role

bp = Blueprint("deductions", __name__)


# ---------- Deduction types ----------
@bp.get("/deduction-types")
@require_token
def deduction_types_list():
    s = db_session()
    return {"success": True, "data": list_deduction_types(s)}


# ---------- Templates ----------
@bp.get("/deduction-templates")
@require_token
@require_role(*TEMPLATE_READ_ROLES)
def templates_list():
    s = db_session()
    return {"success": True, "data": list_templates(s, current_caller())}


@bp.post("/deduction-templates")
@require_token
@require_role(*TEMPLATE_WRITE_ROLES)
def templates_create():
    s = db_session()
    payload = request.get_json(silent=True)
    current_app.logger.info("Creating deduction template (request_id=%s)", getattr(g, "request_id", None))
    data = create_template(s, payload, current_caller())
    return {"success": True, "message": "Deduction template created successfully", "data": data}


@bp.get("/deduction-templates/<int:template_id>")
@require_token
@require_role(*TEMPLATE_READ_ROLES)
def templates_detail(template_id: int):
    s = db_session()
    return {"success": True, "data": get_template(s, template_id, current_caller())}


@bp.put("/deduction-templates/<int:template_id>")
@require_token
@require_role(*TEMPLATE_WRITE_ROLES)
def templates_update(template_id: int):
    s = db_session()
    payload = request.get_json(silent=True)
    current_app.logger.info("Updating deduction template %s (request_id=%s)", template_id, getattr(g, "request_id", None))
    data = update_template(s, template_id, payload, current_caller())
    return {"success": True, "message": "Deduction template updated successfully", "data": data}


@bp.delete("/deduction-templates/<int:template_id>")
@require_token
@require_role(*TEMPLATE_WRITE_ROLES)
def templates_delete(template_id: int):
    s = db_session()
    current_app.logger.info("Soft deleting deduction template %s (request_id=%s)", template_id, getattr(g, "request_id", None))
    data = delete_template(s, template_id, current_caller())
    return {"success": True, "message": "Deduction template deleted successfully", "data": data}
