from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.cvms.api import current_user, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.changes.models import ChangeRequest
from app.cvms.modules.changes.service import (
    approve_change,
    change_stats,
    change_to_dict,
    create_change,
    delete_change,
    implement_change,
    list_changes,
    reject_change,
    submit_change,
    update_change,
    validate_change_payload,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company_id, get_scoped_or_404

bp = Blueprint("changes", __name__)


@bp.get("")
@require_permission("changes.view")
def changes_list():
    s = db_session()
    filters = {
        "q": request.args.get("q"),
        "status": (request.args.get("status") or "").strip(),
        "priority": (request.args.get("priority") or "").strip(),
        "change_type": (request.args.get("change_type") or "").strip(),
        "system_id": request.args.get("system_id", type=int),
    }
    changes = list_changes(s, current_company_id(), filters)
    return jsonify({"changes": [change_to_dict(c) for c in changes], "stats": change_stats(changes)})


@bp.post("")
@require_permission("changes.edit")
def changes_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_change_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    cr = create_change(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"change": change_to_dict(cr)}), 201


@bp.get("/<int:change_id>")
@require_permission("changes.view")
def changes_detail(change_id: int):
    s = db_session()
    return jsonify({"change": change_to_dict(get_scoped_or_404(s, ChangeRequest, change_id))})


@bp.post("/<int:change_id>")
@require_permission("changes.edit")
def changes_update(change_id: int):
    s = db_session()
    cr = get_scoped_or_404(s, ChangeRequest, change_id)
    payload = request_payload()
    errors = validate_change_payload(s, cr.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_change(s, cr, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"change": change_to_dict(cr)})


@bp.post("/<int:change_id>/delete")
@require_permission("changes.edit")
def changes_delete(change_id: int):
    s = db_session()
    cr = get_scoped_or_404(s, ChangeRequest, change_id)
    delete_change(s, cr, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


_TRANSITIONS = {
    "submit": submit_change,
    "approve": approve_change,
    "implement": implement_change,
    "reject": reject_change,
}


@bp.post("/<int:change_id>/<any(submit, approve, implement, reject):verb>")
@require_permission("changes.edit")
def changes_transition(change_id: int, verb: str):
    s = db_session()
    cr = get_scoped_or_404(s, ChangeRequest, change_id)
    _TRANSITIONS[verb](s, cr, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"change": change_to_dict(cr)})
