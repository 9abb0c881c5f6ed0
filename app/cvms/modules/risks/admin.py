from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.changes.models import ChangeRequest
from app.cvms.modules.projects.models import ValidationProject
from app.cvms.modules.risks.models import MitigationAction, RiskAssessment
from app.cvms.modules.risks.scoring import classify
from app.cvms.modules.risks.service import (
    action_to_dict,
    add_tag,
    change_tag,
    complete_mitigation_action,
    create_mitigation_action,
    create_risk,
    delete_mitigation_action,
    delete_risk,
    link_requirement,
    link_test_case,
    list_risks,
    project_tag,
    risk_summary,
    risk_to_dict,
    risk_traceability,
    system_tag,
    unlink_requirement,
    unlink_test_case,
    update_mitigation_action,
    update_risk,
    validate_action_payload,
    validate_risk_payload,
)
from app.cvms.modules.rtm.models import Requirement, TestCase
from app.cvms.modules.systems.models import System
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company_id, get_scoped_optional, get_scoped_or_404

bp = Blueprint("risks", __name__)


def _list_filters() -> dict:
    return {
        "q": request.args.get("q"),
        "risk_level": (request.args.get("risk_level") or "").strip(),
        "status": (request.args.get("status") or "").strip(),
        "assessment_type": (request.args.get("assessment_type") or "").strip(),
        "system_id": request.args.get("system_id", type=int),
        "tag": request.args.get("tag"),
    }


# ---------- Risk assessments ----------
@bp.get("")
@require_permission("risks.view")
def risks_list():
    s = db_session()
    risks = list_risks(s, current_company_id(), _list_filters())
    return jsonify({"risks": [risk_to_dict(r) for r in risks], "summary": risk_summary(risks)})


@bp.get("/summary")
@require_permission("risks.view")
def risks_summary():
    s = db_session()
    return jsonify(risk_summary(list_risks(s, current_company_id())))


@bp.get("/score")
@require_permission("risks.view")
def risks_score_preview():
    """RPN/level preview for a (probability, severity, detectability) triple."""
    try:
        score = classify(
            request.args.get("probability", type=int),
            request.args.get("severity", type=int),
            request.args.get("detectability", type=int),
        )
    except ValueError as e:
        return error_response(str(e), 400)
    return jsonify({"rpn": score.rpn, "risk_level": score.level})


@bp.post("")
@require_permission("risks.edit")
def risks_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_risk_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    risk = create_risk(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"risk": risk_to_dict(risk)}), 201


@bp.get("/<int:risk_id>")
@require_permission("risks.view")
def risks_detail(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    data = risk_to_dict(risk)
    data["mitigation_actions"] = [action_to_dict(a) for a in risk.mitigation_actions]
    return jsonify({"risk": data})


@bp.post("/<int:risk_id>")
@require_permission("risks.edit")
def risks_update(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    payload = request_payload()
    errors = validate_risk_payload(s, risk.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_risk(s, risk, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"risk": risk_to_dict(risk)})


@bp.post("/<int:risk_id>/delete")
@require_permission("risks.edit")
def risks_delete(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    delete_risk(s, risk, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


@bp.post("/<int:risk_id>/tags")
@require_permission("risks.edit")
def risks_add_tag(risk_id: int):
    """Add a free tag or a system/project/change tag to the risk."""
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    payload = request_payload()

    if payload.get("system_id"):
        tag = system_tag(get_scoped_optional(s, System, payload.get("system_id")).name)
    elif payload.get("project_id"):
        tag = project_tag(get_scoped_optional(s, ValidationProject, payload.get("project_id")).name)
    elif payload.get("change_id"):
        tag = change_tag(get_scoped_optional(s, ChangeRequest, payload.get("change_id")).title)
    else:
        tag = (str(payload.get("tag") or "")).strip()
    if not tag:
        return error_response("A tag is required.", 400)

    update_risk(s, risk, {"tags": add_tag(risk.tags, tag)}, current_user())
    s.commit()
    return jsonify({"risk": risk_to_dict(risk)})


@bp.get("/<int:risk_id>/traceability")
@require_permission("risks.view")
def risks_traceability(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    return jsonify(risk_traceability(risk))


# ---------- Mitigation actions ----------
@bp.get("/<int:risk_id>/actions")
@require_permission("risks.view")
def actions_list(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    return jsonify({"mitigation_actions": [action_to_dict(a) for a in risk.mitigation_actions]})


@bp.post("/<int:risk_id>/actions")
@require_permission("risks.edit")
def actions_create(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    payload = request_payload()
    errors = validate_action_payload(s, risk.company_id, payload)
    if errors:
        return errors_response(errors)
    action = create_mitigation_action(s, risk, payload, current_user())
    s.commit()
    return jsonify({"mitigation_action": action_to_dict(action)}), 201


@bp.post("/actions/<int:action_id>")
@require_permission("risks.edit")
def actions_update(action_id: int):
    s = db_session()
    action = get_scoped_or_404(s, MitigationAction, action_id)
    payload = request_payload()
    errors = validate_action_payload(s, action.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_mitigation_action(s, action, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"mitigation_action": action_to_dict(action)})


@bp.post("/actions/<int:action_id>/complete")
@require_permission("risks.edit")
def actions_complete(action_id: int):
    s = db_session()
    action = get_scoped_or_404(s, MitigationAction, action_id)
    complete_mitigation_action(s, action, current_user())
    s.commit()
    return jsonify({"mitigation_action": action_to_dict(action)})


@bp.post("/actions/<int:action_id>/delete")
@require_permission("risks.edit")
def actions_delete(action_id: int):
    s = db_session()
    action = get_scoped_or_404(s, MitigationAction, action_id)
    delete_mitigation_action(s, action, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


# ---------- Requirement / test case links ----------
@bp.post("/<int:risk_id>/requirements")
@require_permission("risks.edit")
def risks_link_requirement(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    requirement = get_scoped_optional(s, Requirement, request_payload().get("requirement_id"))
    if requirement is None:
        return error_response("requirement_id is required.", 400)
    link_requirement(s, risk, requirement, current_user())
    s.commit()
    return jsonify(risk_traceability(risk)), 201


@bp.post("/<int:risk_id>/requirements/<int:requirement_id>/delete")
@require_permission("risks.edit")
def risks_unlink_requirement(risk_id: int, requirement_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    if not unlink_requirement(s, risk, requirement_id, current_user()):
        return error_response("Not found", 404)
    s.commit()
    return jsonify(risk_traceability(risk))


@bp.post("/<int:risk_id>/test-cases")
@require_permission("risks.edit")
def risks_link_test_case(risk_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    test_case = get_scoped_optional(s, TestCase, request_payload().get("test_case_id"))
    if test_case is None:
        return error_response("test_case_id is required.", 400)
    link_test_case(s, risk, test_case, current_user())
    s.commit()
    return jsonify(risk_traceability(risk)), 201


@bp.post("/<int:risk_id>/test-cases/<int:test_case_id>/delete")
@require_permission("risks.edit")
def risks_unlink_test_case(risk_id: int, test_case_id: int):
    s = db_session()
    risk = get_scoped_or_404(s, RiskAssessment, risk_id)
    if not unlink_test_case(s, risk, test_case_id, current_user()):
        return error_response("Not found", 404)
    s.commit()
    return jsonify(risk_traceability(risk))
