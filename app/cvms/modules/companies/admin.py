from __future__ import annotations

from flask import Blueprint, abort, jsonify

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.models import Company, User
from app.cvms.modules.companies.service import (
    add_document_type,
    add_user_to_company,
    companies_for_user,
    company_to_dict,
    create_company,
    delete_document_type,
    document_types_for,
    find_document_type,
    remove_user_from_company,
    update_company,
    update_company_settings,
    update_document_type,
    validate_company_payload,
    validate_document_type_payload,
    validate_settings_payload,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company, default_company_for
from app.cvms.utils import parse_bool

bp = Blueprint("companies", __name__)


def _company_or_404(s, company_id: int) -> Company:
    company = s.get(Company, company_id)
    if company is None:
        abort(404)
    return company


@bp.get("")
@require_permission("systems.view")
def companies_list():
    """Companies the signed-in user may switch to."""
    s = db_session()
    user = current_user()
    active = current_company()
    default = default_company_for(s, user)
    return jsonify(
        {
            "companies": [company_to_dict(c) for c in companies_for_user(s, user)],
            "active_company_id": active.id,
            "default_company_id": default.id if default else None,
        }
    )


@bp.post("")
@require_permission("companies.manage")
def companies_create():
    s = db_session()
    payload = request_payload()
    errors = validate_company_payload(s, payload)
    if errors:
        return errors_response(errors)
    company = create_company(s, payload, current_user())
    s.commit()
    return jsonify({"company": company_to_dict(company)}), 201


@bp.get("/<int:company_id>")
@require_permission("companies.manage")
def companies_detail(company_id: int):
    s = db_session()
    return jsonify({"company": company_to_dict(_company_or_404(s, company_id), with_members=True)})


@bp.post("/<int:company_id>")
@require_permission("companies.manage")
def companies_update(company_id: int):
    s = db_session()
    company = _company_or_404(s, company_id)
    payload = request_payload()
    errors = validate_company_payload(s, payload, company=company, partial=True)
    if errors:
        return errors_response(errors)
    update_company(s, company, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"company": company_to_dict(company)})


def _target_user(s, payload: dict) -> User | None:
    raw = payload.get("user_id")
    if raw not in (None, ""):
        try:
            return s.get(User, int(raw))
        except (TypeError, ValueError):
            return None
    email = (str(payload.get("email") or "")).strip().lower()
    if email:
        return s.query(User).filter(User.email == email).one_or_none()
    return None


@bp.post("/<int:company_id>/users")
@require_permission("companies.manage")
def companies_add_user(company_id: int):
    s = db_session()
    company = _company_or_404(s, company_id)
    payload = request_payload()
    user = _target_user(s, payload)
    if user is None:
        return error_response("User not found.", 404)
    is_default = parse_bool(payload.get("is_default")) if "is_default" in payload else None
    add_user_to_company(s, company, user, current_user(), is_default=is_default)
    s.commit()
    return jsonify({"company": company_to_dict(company, with_members=True)}), 201


@bp.post("/<int:company_id>/users/<int:user_id>/delete")
@require_permission("companies.manage")
def companies_remove_user(company_id: int, user_id: int):
    s = db_session()
    company = _company_or_404(s, company_id)
    user = s.get(User, user_id)
    if user is None or not remove_user_from_company(s, company, user, current_user()):
        abort(404)
    s.commit()
    return jsonify({"company": company_to_dict(company, with_members=True)})


# ---------- Active company: settings and document types (company admins) ----------
@bp.get("/current/settings")
@require_permission("admin.view")
def current_settings():
    return jsonify({"company": company_to_dict(current_company())})


@bp.post("/current/settings")
@require_permission("admin.edit")
def current_settings_update():
    s = db_session()
    company = current_company()
    payload = request_payload()
    errors = validate_settings_payload(s, company, payload)
    if errors:
        return errors_response(errors)
    update_company_settings(s, company, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"company": company_to_dict(company)})


@bp.get("/current/document-types")
@require_permission("documents.view")
def document_types_list():
    return jsonify({"document_types": document_types_for(current_company())})


@bp.post("/current/document-types")
@require_permission("admin.edit")
def document_types_create():
    s = db_session()
    company = current_company()
    payload = request_payload()
    errors = validate_document_type_payload(company, payload)
    if errors:
        return errors_response(errors)
    entry = add_document_type(s, company, payload, current_user())
    s.commit()
    return jsonify({"document_type": entry}), 201


@bp.post("/current/document-types/<type_id>")
@require_permission("admin.edit")
def document_types_update(type_id: str):
    s = db_session()
    company = current_company()
    if find_document_type(company, type_id) is None:
        abort(404)
    payload = request_payload()
    errors = validate_document_type_payload(company, payload, type_id=type_id, partial=True)
    if errors:
        return errors_response(errors)
    entry = update_document_type(s, company, type_id, payload, current_user())
    s.commit()
    return jsonify({"document_type": entry})


@bp.post("/current/document-types/<type_id>/delete")
@require_permission("admin.edit")
def document_types_delete(type_id: str):
    s = db_session()
    company = current_company()
    if find_document_type(company, type_id) is None:
        abort(404)
    delete_document_type(s, company, type_id, current_user())
    s.commit()
    return jsonify({"document_types": document_types_for(company)})
