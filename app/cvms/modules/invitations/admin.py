from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.cvms.api import current_user, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.invitations.models import Invitation
from app.cvms.modules.invitations.service import (
    cancel_invitation,
    create_invitation,
    invitation_to_dict,
    list_invitations,
    resend_invitation,
    validate_invitation_payload,
    validate_status_filter,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company, current_company_id, get_scoped_or_404

bp = Blueprint("invitations", __name__)


@bp.get("")
@require_permission("admin.view")
def invitations_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    errors = validate_status_filter(status)
    if errors:
        return errors_response(errors)
    rows = list_invitations(s, current_company_id(), status)
    return jsonify({"invitations": [invitation_to_dict(inv) for inv in rows]})


@bp.post("")
@require_permission("admin.edit")
def invitations_create():
    s = db_session()
    company = current_company()
    payload = request_payload()
    errors = validate_invitation_payload(s, company, payload)
    if errors:
        return errors_response(errors)
    inv = create_invitation(s, company, payload, current_user())
    s.commit()
    return jsonify({"invitation": invitation_to_dict(inv)}), 201


@bp.post("/<int:invitation_id>/cancel")
@require_permission("admin.edit")
def invitations_cancel(invitation_id: int):
    s = db_session()
    inv = get_scoped_or_404(s, Invitation, invitation_id)
    cancel_invitation(s, inv, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"invitation": invitation_to_dict(inv)})


@bp.post("/<int:invitation_id>/resend")
@require_permission("admin.edit")
def invitations_resend(invitation_id: int):
    s = db_session()
    inv = get_scoped_or_404(s, Invitation, invitation_id)
    fresh = resend_invitation(s, inv, current_user())
    s.commit()
    return jsonify({"invitation": invitation_to_dict(fresh)}), 201
