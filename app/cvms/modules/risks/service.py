from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

from app.cvms.audit import record_event
from app.cvms.constants import ASSESSMENT_TYPES, RISK_LEVELS, STATUS_TYPES, WORK_ITEM_STATUSES
from app.cvms.modules.risks.models import MitigationAction, RiskAssessment, RiskRequirementLink, RiskTestCaseLink
from app.cvms.modules.risks.scoring import DEFAULT_FACTOR, FACTOR_MAX, FACTOR_MIN, classify
from app.cvms.modules.systems.models import System
from app.cvms.tenancy import validate_member_refs, validate_scoped_ref
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_date,
    parse_int,
    utcnow,
    validate_choice,
    validate_date_field,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User
    from app.cvms.modules.rtm.models import Requirement, TestCase


SYSTEM_TAG_PREFIX = "sistema:"
PROJECT_TAG_PREFIX = "projeto:"
CHANGE_TAG_PREFIX = "mudança:"

OPEN_RISK_EXCLUDED_STATUSES = ("approved", "completed")

RISK_FIELDS = (
    "id",
    "company_id",
    "title",
    "description",
    "assessment_type",
    "system_id",
    "probability",
    "severity",
    "detectability",
    "risk_level",
    "residual_risk",
    "controls",
    "status",
    "assessor_id",
    "reviewer_id",
    "approver_id",
    "tags",
    "created_at",
    "updated_at",
)

ACTION_FIELDS = (
    "id",
    "risk_id",
    "title",
    "description",
    "responsible_id",
    "status",
    "due_date",
    "completed_at",
    "created_at",
    "updated_at",
)

USER_REF_FIELDS = ("assessor_id", "reviewer_id", "approver_id")


# ---------- Tags ----------
def normalize_tags(tags: Any) -> list[str]:
    """Trimmed, non-empty, de-duplicated, first-seen order."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    out: list[str] = []
    for t in tags:
        t = str(t or "").strip()
        if t and t not in out:
            out.append(t)
    return out


def add_tag(tags: list[str] | None, tag: str) -> list[str]:
    return normalize_tags([*(tags or []), tag])


def system_tag(system_name: str) -> str:
    return f"{SYSTEM_TAG_PREFIX}{system_name}"


def project_tag(project_name: str) -> str:
    return f"{PROJECT_TAG_PREFIX}{project_name}"


def change_tag(change_title: str) -> str:
    return f"{CHANGE_TAG_PREFIX}{change_title}"


# ---------- Serialization ----------
def risk_to_dict(risk: RiskAssessment) -> dict:
    data = model_to_dict(risk, RISK_FIELDS)
    data["rpn"] = risk.rpn
    data["tags"] = list(risk.tags or [])
    data["system_name"] = risk.system.name if risk.system else None
    return data


def action_to_dict(action: MitigationAction) -> dict:
    return model_to_dict(action, ACTION_FIELDS)


# ---------- Validation ----------
def _validate_factor(errors: list[ValidationError], payload: dict, field: str) -> None:
    if field not in payload or payload.get(field) in (None, ""):
        return
    try:
        v = parse_int(payload.get(field))
    except (TypeError, ValueError):
        v = None
    if v is None or not FACTOR_MIN <= v <= FACTOR_MAX:
        errors.append(ValidationError(field, f"{field} must be an integer between {FACTOR_MIN} and {FACTOR_MAX}."))


def validate_risk_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "title" in payload:
        if not (str(payload.get("title") or "")).strip():
            errors.append(ValidationError("title", "Title is required."))
    if not partial or "assessment_type" in payload:
        at = (str(payload.get("assessment_type") or "")).strip()
        if not at:
            errors.append(ValidationError("assessment_type", "Assessment type is required."))
        else:
            validate_choice(errors, "assessment_type", at, ASSESSMENT_TYPES)
    for factor in ("probability", "severity", "detectability"):
        _validate_factor(errors, payload, factor)
    validate_choice(errors, "residual_risk", optional_text(payload.get("residual_risk")), RISK_LEVELS)
    validate_choice(errors, "status", optional_text(payload.get("status")), STATUS_TYPES)
    validate_scoped_ref(s, System, company_id, payload, "system_id", errors)
    validate_member_refs(s, company_id, payload, USER_REF_FIELDS, errors)
    return errors


def _factor(v: Any) -> int:
    parsed = parse_int(v)
    return DEFAULT_FACTOR if parsed is None else parsed


_CONVERTERS = {
    "title": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "assessment_type": lambda v: (str(v or "")).strip(),
    "system_id": parse_int,
    "probability": _factor,
    "severity": _factor,
    "detectability": _factor,
    "residual_risk": lambda v: optional_text(v) or "low",
    "controls": optional_text,
    "status": lambda v: optional_text(v) or "draft",
    "assessor_id": parse_int,
    "reviewer_id": parse_int,
    "approver_id": parse_int,
    "tags": normalize_tags,
}


def _rescore(risk: RiskAssessment) -> None:
    # risk_level is never taken from the client.
    risk.risk_level = classify(risk.probability, risk.severity, risk.detectability).level


# ---------- Risk assessments ----------
def create_risk(s: "Session", company_id: int, payload: dict, user: "User") -> RiskAssessment:
    now = utcnow()
    risk = RiskAssessment(company_id=company_id, created_at=now, updated_at=now)
    defaults = {
        "probability": None,
        "severity": None,
        "detectability": None,
        "residual_risk": None,
        "status": None,
        "tags": None,
    }
    apply_changes(risk, {**defaults, **payload}, _CONVERTERS)
    if risk.assessor_id is None:
        risk.assessor_id = user.id
    _rescore(risk)
    s.add(risk)
    s.flush()

    record_event(
        s,
        actor=user,
        action="risk.create",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=company_id,
        metadata={
            "title": risk.title,
            "assessment_type": risk.assessment_type,
            "rpn": risk.rpn,
            "risk_level": risk.risk_level,
        },
    )
    return risk


def update_risk(
    s: "Session", risk: RiskAssessment, payload: dict, user: "User", reason: str | None = None
) -> RiskAssessment:
    old_level = risk.risk_level
    changes = apply_changes(risk, payload, _CONVERTERS)
    _rescore(risk)
    if risk.risk_level != old_level:
        changes["risk_level"] = {"old": old_level, "new": risk.risk_level}
    risk.updated_at = utcnow()

    record_event(
        s,
        actor=user,
        action="risk.update",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        reason=reason,
        metadata={"title": risk.title, "changes": changes},
    )
    return risk


def delete_risk(s: "Session", risk: RiskAssessment, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="risk.delete",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        reason=reason,
        metadata={
            "title": risk.title,
            "mitigation_actions": len(risk.mitigation_actions),
            "requirement_links": len(risk.requirement_links),
            "test_case_links": len(risk.test_case_links),
        },
    )
    s.delete(risk)


def list_risks(s: "Session", company_id: int, filters: dict | None = None) -> list[RiskAssessment]:
    filters = filters or {}
    q = s.query(RiskAssessment).filter(RiskAssessment.company_id == company_id)
    if filters.get("risk_level"):
        q = q.filter(RiskAssessment.risk_level == filters["risk_level"])
    if filters.get("status"):
        q = q.filter(RiskAssessment.status == filters["status"])
    if filters.get("assessment_type"):
        q = q.filter(RiskAssessment.assessment_type == filters["assessment_type"])
    if filters.get("system_id"):
        q = q.filter(RiskAssessment.system_id == filters["system_id"])
    search = (filters.get("q") or "").strip()
    if search:
        q = q.filter(RiskAssessment.title.ilike(f"%{search}%"))
    risks = q.order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc()).all()

    tag = (filters.get("tag") or "").strip()
    if tag:
        # JSON containment differs across dialects; filter in Python.
        risks = [r for r in risks if tag in (r.tags or [])]
    return risks


def is_open_high_risk(risk: RiskAssessment) -> bool:
    return risk.risk_level in ("high", "critical") and risk.status not in OPEN_RISK_EXCLUDED_STATUSES


def risk_summary(risks: list[RiskAssessment]) -> dict:
    by_level = Counter(r.risk_level for r in risks)
    return {
        "total": len(risks),
        "by_level": {level: by_level.get(level, 0) for level in RISK_LEVELS},
        "open_high": sum(1 for r in risks if is_open_high_risk(r)),
    }


# ---------- Mitigation actions ----------
def validate_action_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "title" in payload:
        if not (str(payload.get("title") or "")).strip():
            errors.append(ValidationError("title", "Title is required."))
    validate_choice(errors, "status", optional_text(payload.get("status")), WORK_ITEM_STATUSES)
    validate_date_field(errors, payload, "due_date")
    validate_member_refs(s, company_id, payload, ("responsible_id",), errors)
    return errors


_ACTION_CONVERTERS = {
    "title": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "responsible_id": parse_int,
    "status": lambda v: optional_text(v) or "pending",
    "due_date": parse_date,
}


def _stamp_completion(action: MitigationAction) -> None:
    if action.status == "completed":
        if action.completed_at is None:
            action.completed_at = utcnow()
    else:
        action.completed_at = None


def create_mitigation_action(s: "Session", risk: RiskAssessment, payload: dict, user: "User") -> MitigationAction:
    now = utcnow()
    action = MitigationAction(company_id=risk.company_id, risk_id=risk.id, created_at=now, updated_at=now)
    apply_changes(action, {"status": None, **payload}, _ACTION_CONVERTERS)
    _stamp_completion(action)
    s.add(action)
    s.flush()
    record_event(
        s,
        actor=user,
        action="mitigation_action.create",
        entity_type="MitigationAction",
        entity_id=str(action.id),
        company_id=risk.company_id,
        metadata={"risk_id": risk.id, "title": action.title, "status": action.status},
    )
    return action


def update_mitigation_action(
    s: "Session", action: MitigationAction, payload: dict, user: "User", reason: str | None = None
) -> MitigationAction:
    changes = apply_changes(action, payload, _ACTION_CONVERTERS)
    _stamp_completion(action)
    action.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="mitigation_action.update",
        entity_type="MitigationAction",
        entity_id=str(action.id),
        company_id=action.company_id,
        reason=reason,
        metadata={"risk_id": action.risk_id, "changes": changes},
    )
    return action


def complete_mitigation_action(s: "Session", action: MitigationAction, user: "User") -> MitigationAction:
    if action.status == "completed":
        raise WorkflowError("Mitigation action is already completed.")
    return update_mitigation_action(s, action, {"status": "completed"}, user)


def delete_mitigation_action(s: "Session", action: MitigationAction, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="mitigation_action.delete",
        entity_type="MitigationAction",
        entity_id=str(action.id),
        company_id=action.company_id,
        reason=reason,
        metadata={"risk_id": action.risk_id, "title": action.title},
    )
    s.delete(action)


# ---------- Links ----------
def link_requirement(
    s: "Session", risk: RiskAssessment, requirement: "Requirement", user: "User"
) -> RiskRequirementLink:
    if requirement.company_id != risk.company_id:
        raise ValueError("Requirement belongs to another company.")
    if any(link.requirement_id == requirement.id for link in risk.requirement_links):
        raise WorkflowError("Requirement is already linked to this risk.")
    link = RiskRequirementLink(company_id=risk.company_id, risk_id=risk.id, requirement_id=requirement.id)
    risk.requirement_links.append(link)
    s.flush()
    record_event(
        s,
        actor=user,
        action="risk.link_requirement",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        metadata={"requirement_id": requirement.id, "requirement_code": requirement.code},
    )
    return link


def unlink_requirement(s: "Session", risk: RiskAssessment, requirement_id: int, user: "User") -> bool:
    link = next((lk for lk in risk.requirement_links if lk.requirement_id == requirement_id), None)
    if link is None:
        return False
    risk.requirement_links.remove(link)
    record_event(
        s,
        actor=user,
        action="risk.unlink_requirement",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        metadata={"requirement_id": requirement_id},
    )
    return True


def link_test_case(s: "Session", risk: RiskAssessment, test_case: "TestCase", user: "User") -> RiskTestCaseLink:
    if test_case.company_id != risk.company_id:
        raise ValueError("Test case belongs to another company.")
    if any(link.test_case_id == test_case.id for link in risk.test_case_links):
        raise WorkflowError("Test case is already linked to this risk.")
    link = RiskTestCaseLink(company_id=risk.company_id, risk_id=risk.id, test_case_id=test_case.id)
    risk.test_case_links.append(link)
    s.flush()
    record_event(
        s,
        actor=user,
        action="risk.link_test_case",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        metadata={"test_case_id": test_case.id, "test_case_code": test_case.code},
    )
    return link


def unlink_test_case(s: "Session", risk: RiskAssessment, test_case_id: int, user: "User") -> bool:
    link = next((lk for lk in risk.test_case_links if lk.test_case_id == test_case_id), None)
    if link is None:
        return False
    risk.test_case_links.remove(link)
    record_event(
        s,
        actor=user,
        action="risk.unlink_test_case",
        entity_type="RiskAssessment",
        entity_id=str(risk.id),
        company_id=risk.company_id,
        metadata={"test_case_id": test_case_id},
    )
    return True


def risk_traceability(risk: RiskAssessment) -> dict:
    """Requirement -> risk -> mitigation -> test -> evidence chain for one risk."""
    requirements = [link.requirement for link in risk.requirement_links]
    test_cases = [link.test_case for link in risk.test_case_links]
    actions = list(risk.mitigation_actions)
    evidence_count = sum(len(tc.evidence or []) for tc in test_cases)
    return {
        "summary": {
            "requirements": len(requirements),
            "risk_level": risk.risk_level,
            "rpn": risk.rpn,
            "mitigations_total": len(actions),
            "mitigations_completed": sum(1 for a in actions if a.status == "completed"),
            "test_cases": len(test_cases),
            "test_cases_passed": sum(1 for tc in test_cases if tc.status == "passed"),
            "evidence": evidence_count,
        },
        "requirements": [
            model_to_dict(r, ("id", "code", "title", "type", "priority", "status")) for r in requirements
        ],
        "mitigation_actions": [action_to_dict(a) for a in actions],
        "test_cases": [model_to_dict(tc, ("id", "code", "title", "status", "result")) for tc in test_cases],
    }
