from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.constants import ACTIVATION_STATUSES
from app.cvms.db import db_session
from app.cvms.modules.packages.models import TemplatePackage, TemplatePackageActivation, TemplatePackageItem
from app.cvms.modules.packages.service import (
    activation_status_for,
    activation_to_dict,
    add_item,
    approve_activation,
    create_package,
    delete_package,
    list_activations,
    list_packages,
    marketplace,
    package_to_dict,
    package_visible_to,
    reject_activation,
    remove_item,
    request_activation,
    set_published,
    update_package,
    validate_package_payload,
)
from app.cvms.modules.templates.models import DocumentTemplate
from app.cvms.modules.templates.service import template_to_dict
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company_id, get_scoped_or_404
from app.cvms.utils import WorkflowError

bp = Blueprint("packages", __name__)


def _filters() -> dict:
    return {
        "q": request.args.get("q"),
        "gamp_category": (request.args.get("gamp_category") or "").strip(),
    }


def _visible_package_or_404(s, package_id: int) -> TemplatePackage:
    p = s.get(TemplatePackage, package_id)
    if p is None or not package_visible_to(p, current_company_id()):
        abort(404)
    return p


@bp.get("")
@require_permission("templates.view")
def packages_list():
    s = db_session()
    packages = list_packages(s, current_company_id(), _filters())
    return jsonify({"packages": [package_to_dict(p) for p in packages]})


@bp.get("/marketplace")
@require_permission("templates.view")
def packages_marketplace():
    s = db_session()
    company_id = current_company_id()
    out = []
    for p in marketplace(s, _filters()):
        data = package_to_dict(p)
        data["activation_status"] = activation_status_for(s, p, company_id)
        out.append(data)
    return jsonify({"packages": out})


@bp.post("")
@require_permission("templates.edit")
def packages_create():
    s = db_session()
    payload = request_payload()
    errors = validate_package_payload(payload)
    if errors:
        return errors_response(errors)
    p = create_package(s, current_company_id(), payload, current_user())
    s.commit()
    return jsonify({"package": package_to_dict(p, with_items=True)}), 201


@bp.get("/<int:package_id>")
@require_permission("templates.view")
def packages_detail(package_id: int):
    s = db_session()
    p = _visible_package_or_404(s, package_id)
    data = package_to_dict(p, with_items=True)
    data["activation_status"] = activation_status_for(s, p, current_company_id())
    return jsonify({"package": data})


@bp.post("/<int:package_id>")
@require_permission("templates.edit")
def packages_update(package_id: int):
    s = db_session()
    p = get_scoped_or_404(s, TemplatePackage, package_id)
    payload = request_payload()
    errors = validate_package_payload(payload, partial=True)
    if errors:
        return errors_response(errors)
    update_package(s, p, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"package": package_to_dict(p, with_items=True)})


@bp.post("/<int:package_id>/delete")
@require_permission("templates.edit")
def packages_delete(package_id: int):
    s = db_session()
    p = get_scoped_or_404(s, TemplatePackage, package_id)
    delete_package(s, p, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


@bp.post("/<int:package_id>/<any(publish, unpublish):verb>")
@require_permission("templates.edit")
def packages_publish(package_id: int, verb: str):
    s = db_session()
    p = get_scoped_or_404(s, TemplatePackage, package_id)
    set_published(s, p, verb == "publish", current_user())
    s.commit()
    return jsonify({"package": package_to_dict(p)})


@bp.post("/<int:package_id>/items")
@require_permission("templates.edit")
def packages_add_item(package_id: int):
    s = db_session()
    p = get_scoped_or_404(s, TemplatePackage, package_id)
    raw = request_payload().get("template_id")
    if raw in (None, ""):
        return error_response("template_id is required", 400)
    try:
        template = get_scoped_or_404(s, DocumentTemplate, int(raw))
    except (TypeError, ValueError):
        return error_response("template_id must be an id", 400)
    try:
        add_item(s, p, template, current_user())
    except WorkflowError:
        raise
    except ValueError as e:
        return error_response(str(e), 400)
    s.commit()
    return jsonify({"package": package_to_dict(p, with_items=True)}), 201


@bp.post("/<int:package_id>/items/<int:item_id>/delete")
@require_permission("templates.edit")
def packages_remove_item(package_id: int, item_id: int):
    s = db_session()
    p = get_scoped_or_404(s, TemplatePackage, package_id)
    item = s.get(TemplatePackageItem, item_id)
    if item is None or item.package_id != p.id:
        abort(404)
    remove_item(s, p, item, current_user())
    s.commit()
    return jsonify({"package": package_to_dict(p, with_items=True)})


# ---------- Activations ----------
@bp.post("/<int:package_id>/activate")
@require_permission("templates.edit")
def packages_request_activation(package_id: int):
    s = db_session()
    p = _visible_package_or_404(s, package_id)
    a = request_activation(s, p, current_company_id(), current_user(), notes=request_payload().get("notes"))
    s.commit()
    return jsonify({"activation": activation_to_dict(a)}), 201


@bp.get("/activations")
@require_permission("templates.view")
def activations_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if status and status not in ACTIVATION_STATUSES:
        return error_response(f"status must be one of: {', '.join(ACTIVATION_STATUSES)}", 400)
    activations = list_activations(s, current_user(), current_company_id(), status)
    return jsonify({"activations": [activation_to_dict(a) for a in activations]})


def _activation_or_404(s, activation_id: int) -> TemplatePackageActivation:
    # Deciding is cross-tenant: the approver is not a member of the requesting company.
    a = s.get(TemplatePackageActivation, activation_id)
    if a is None:
        abort(404)
    return a


@bp.post("/activations/<int:activation_id>/approve")
@require_permission("packages.approve")
def activations_approve(activation_id: int):
    s = db_session()
    a = _activation_or_404(s, activation_id)
    clones = approve_activation(s, a, current_user(), notes=request_payload().get("notes"))
    s.commit()
    return jsonify({"activation": activation_to_dict(a), "templates": [template_to_dict(t) for t in clones]})


@bp.post("/activations/<int:activation_id>/reject")
@require_permission("packages.approve")
def activations_reject(activation_id: int):
    s = db_session()
    a = _activation_or_404(s, activation_id)
    reject_activation(s, a, current_user(), notes=request_payload().get("notes"))
    s.commit()
    return jsonify({"activation": activation_to_dict(a)})
