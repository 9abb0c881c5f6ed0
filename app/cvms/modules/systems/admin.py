from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.systems.models import System
from app.cvms.modules.systems.parsers import (
    TEMPLATE_FILENAME,
    ImportFileError,
    parse_systems_csv,
    parse_systems_xlsx,
    template_csv,
)
from app.cvms.modules.systems.service import (
    create_system,
    delete_system,
    import_systems,
    list_systems,
    system_to_dict,
    systems_with_ira_status,
    upcoming_revalidations,
    update_system,
    validate_system_payload,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company_id, get_scoped_or_404

bp = Blueprint("systems", __name__)


# ---------- List / create ----------
@bp.get("")
@require_permission("systems.view")
def systems_list():
    s = db_session()
    filters = {
        "q": request.args.get("q"),
        "gamp_category": (request.args.get("gamp_category") or "").strip(),
        "validation_status": (request.args.get("validation_status") or "").strip(),
        "criticality": (request.args.get("criticality") or "").strip(),
    }
    systems = list_systems(s, current_company_id(), filters)
    return jsonify({"systems": [system_to_dict(x) for x in systems]})


@bp.post("")
@require_permission("systems.edit")
def systems_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_system_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    system = create_system(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"system": system_to_dict(system)}), 201


@bp.get("/ira-status")
@require_permission("systems.view")
def systems_ira_status():
    s = db_session()
    return jsonify({"systems": systems_with_ira_status(s, current_company_id())})


@bp.get("/upcoming-revalidations")
@require_permission("systems.view")
def systems_upcoming_revalidations():
    s = db_session()
    limit = request.args.get("limit", 5, type=int)
    systems = upcoming_revalidations(s, current_company_id(), limit=max(1, min(limit, 100)))
    return jsonify({"systems": [system_to_dict(x) for x in systems]})


# ---------- Bulk import ----------
@bp.get("/import/template")
@require_permission("systems.view")
def systems_import_template():
    return Response(
        template_csv(),
        mimetype="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@bp.post("/import")
@require_permission("systems.edit")
def systems_import():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        return error_response("A CSV or XLSX file is required.", 400)

    file_bytes = f.read()
    filename = f.filename.lower()
    try:
        if filename.endswith(".xlsx"):
            parsed = parse_systems_xlsx(file_bytes)
        else:
            parsed = parse_systems_csv(file_bytes)
    except ImportFileError as e:
        return error_response(str(e), 400)

    result = import_systems(s, current_company_id(), parsed, current_user())
    s.commit()
    return jsonify(
        {
            "created": result["created"],
            "errors": result["errors"],
            "systems": [system_to_dict(x) for x in result["systems"]],
        }
    )


# ---------- Detail / edit / delete ----------
@bp.get("/<int:system_id>")
@require_permission("systems.view")
def systems_detail(system_id: int):
    s = db_session()
    system = get_scoped_or_404(s, System, system_id)
    return jsonify({"system": system_to_dict(system)})


@bp.post("/<int:system_id>")
@require_permission("systems.edit")
def systems_update(system_id: int):
    s = db_session()
    system = get_scoped_or_404(s, System, system_id)
    payload = request_payload()
    errors = validate_system_payload(s, system.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_system(s, system, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"system": system_to_dict(system)})


@bp.post("/<int:system_id>/delete")
@require_permission("systems.edit")
def systems_delete(system_id: int):
    s = db_session()
    system = get_scoped_or_404(s, System, system_id)
    delete_system(s, system, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})
