from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.cvms.api import current_user, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.companies.service import document_type_codes
from app.cvms.modules.projects.models import ValidationProject
from app.cvms.modules.systems.models import System
from app.cvms.modules.templates.models import DocumentTemplate, TemplateVersion
from app.cvms.modules.templates.service import (
    clone_template,
    create_template,
    delete_template,
    list_templates,
    load_default_templates,
    render_template,
    template_to_dict,
    update_template,
    validate_template_payload,
    version_to_dict,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company, current_company_id, get_scoped_optional, get_scoped_or_404
from app.cvms.utils import parse_bool, utcnow

bp = Blueprint("templates", __name__)


@bp.get("")
@require_permission("templates.view")
def templates_list():
    s = db_session()
    filters = {
        "q": request.args.get("q"),
        "document_type": (request.args.get("document_type") or "").strip(),
        "gamp_category": (request.args.get("gamp_category") or "").strip(),
        "active_only": parse_bool(request.args.get("active_only")),
    }
    return jsonify({"templates": [template_to_dict(t) for t in list_templates(s, current_company_id(), filters)]})


@bp.post("")
@require_permission("templates.edit")
def templates_create():
    s = db_session()
    payload = request_payload()
    errors = validate_template_payload(payload, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    t = create_template(s, current_company_id(), payload, current_user())
    s.commit()
    return jsonify({"template": template_to_dict(t)}), 201


@bp.post("/load-defaults")
@require_permission("templates.edit")
def templates_load_defaults():
    s = db_session()
    created = load_default_templates(s, current_company_id(), current_user())
    s.commit()
    return jsonify({"created": [template_to_dict(t) for t in created]})


@bp.get("/<int:template_id>")
@require_permission("templates.view")
def templates_detail(template_id: int):
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    return jsonify({"template": template_to_dict(t)})


@bp.post("/<int:template_id>")
@require_permission("templates.edit")
def templates_update(template_id: int):
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    payload = request_payload()
    errors = validate_template_payload(payload, partial=True, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    update_template(
        s,
        t,
        payload,
        current_user(),
        create_version=parse_bool(payload.get("create_version")),
        change_summary=(str(payload.get("change_summary") or "")).strip() or None,
        reason=reason_from(payload),
    )
    s.commit()
    return jsonify({"template": template_to_dict(t)})


@bp.post("/<int:template_id>/delete")
@require_permission("templates.edit")
def templates_delete(template_id: int):
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    delete_template(s, t, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


@bp.post("/<int:template_id>/clone")
@require_permission("templates.edit")
def templates_clone(template_id: int):
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    payload = request_payload()
    clone = clone_template(s, t, t.company_id, current_user(), new_name=payload.get("name"))
    s.commit()
    return jsonify({"template": template_to_dict(clone)}), 201


@bp.get("/<int:template_id>/versions")
@require_permission("templates.view")
def templates_versions(template_id: int):
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    versions = (
        s.query(TemplateVersion)
        .filter(TemplateVersion.template_id == t.id)
        .order_by(TemplateVersion.created_at.desc(), TemplateVersion.id.desc())
        .all()
    )
    return jsonify({"versions": [version_to_dict(v) for v in versions]})


@bp.post("/<int:template_id>/preview")
@require_permission("templates.view")
def templates_preview(template_id: int):
    """Fill the template for a system/project without saving anything."""
    s = db_session()
    t = get_scoped_or_404(s, DocumentTemplate, template_id)
    payload = request_payload()
    values = payload.get("values")
    rendered = render_template(
        t,
        now=utcnow(),
        system=get_scoped_optional(s, System, payload.get("system_id")),
        project=get_scoped_optional(s, ValidationProject, payload.get("project_id")),
        user=current_user(),
        company=current_company(),
        manual_values=values if isinstance(values, dict) else None,
    )
    return jsonify(rendered)
