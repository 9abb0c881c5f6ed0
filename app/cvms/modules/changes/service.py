from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import PRIORITIES
from app.cvms.modules.changes.models import ChangeRequest
from app.cvms.modules.systems.models import System
from app.cvms.tenancy import validate_scoped_ref
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_bool,
    parse_int,
    utcnow,
    validate_choice,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User


TITLE_MIN_LENGTH = 3

CHANGE_FIELDS = (
    "id",
    "company_id",
    "title",
    "description",
    "system_id",
    "change_type",
    "priority",
    "gxp_impact",
    "validation_required",
    "status",
    "requester_id",
    "approver_id",
    "approved_at",
    "implemented_at",
    "created_at",
    "updated_at",
)

_CONVERTERS = {
    "title": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "system_id": parse_int,
    "change_type": lambda v: (str(v or "")).strip(),
    "priority": lambda v: optional_text(v) or "medium",
    "gxp_impact": parse_bool,
    "validation_required": parse_bool,
}


def change_to_dict(cr: ChangeRequest) -> dict:
    data = model_to_dict(cr, CHANGE_FIELDS)
    data["system_name"] = cr.system.name if cr.system else None
    data["requester_name"] = cr.requester.display_name if cr.requester else None
    data["approver_name"] = cr.approver.display_name if cr.approver else None
    return data


def validate_change_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "title" in payload:
        if len((str(payload.get("title") or "")).strip()) < TITLE_MIN_LENGTH:
            errors.append(ValidationError("title", f"Title must be at least {TITLE_MIN_LENGTH} characters."))
    if not partial or "change_type" in payload:
        if not (str(payload.get("change_type") or "")).strip():
            errors.append(ValidationError("change_type", "Change type is required."))
    validate_choice(errors, "priority", optional_text(payload.get("priority")), PRIORITIES)
    validate_scoped_ref(s, System, company_id, payload, "system_id", errors)
    return errors


def create_change(s: "Session", company_id: int, payload: dict, user: "User") -> ChangeRequest:
    now = utcnow()
    cr = ChangeRequest(company_id=company_id, status="draft", requester_id=user.id, created_at=now, updated_at=now)
    apply_changes(cr, {"priority": None, **payload}, _CONVERTERS)
    s.add(cr)
    s.flush()
    record_event(
        s,
        actor=user,
        action="change.create",
        entity_type="ChangeRequest",
        entity_id=str(cr.id),
        company_id=company_id,
        metadata={"title": cr.title, "change_type": cr.change_type, "system_id": cr.system_id},
    )
    return cr


def update_change(s: "Session", cr: ChangeRequest, payload: dict, user: "User", reason: str | None = None) -> ChangeRequest:
    changes = apply_changes(cr, payload, _CONVERTERS)
    cr.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="change.update",
        entity_type="ChangeRequest",
        entity_id=str(cr.id),
        company_id=cr.company_id,
        reason=reason,
        metadata={"title": cr.title, "changes": changes},
    )
    return cr


def delete_change(s: "Session", cr: ChangeRequest, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="change.delete",
        entity_type="ChangeRequest",
        entity_id=str(cr.id),
        company_id=cr.company_id,
        reason=reason,
        metadata={"title": cr.title, "status": cr.status},
    )
    s.delete(cr)


def _move(
    s: "Session",
    cr: ChangeRequest,
    user: "User",
    *,
    allowed_from: tuple[str, ...],
    to_status: str,
    verb: str,
    reason: str | None,
) -> ChangeRequest:
    if cr.status not in allowed_from:
        raise WorkflowError(f"Cannot {verb} a change request in status {cr.status!r}.")
    old = cr.status
    cr.status = to_status
    cr.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action=f"change.{verb}",
        entity_type="ChangeRequest",
        entity_id=str(cr.id),
        company_id=cr.company_id,
        reason=reason,
        metadata={"title": cr.title, "before": {"status": old}, "after": {"status": to_status}},
    )
    return cr


def submit_change(s: "Session", cr: ChangeRequest, user: "User", reason: str | None = None) -> ChangeRequest:
    return _move(s, cr, user, allowed_from=("draft", "rejected"), to_status="pending", verb="submit", reason=reason)


def approve_change(s: "Session", cr: ChangeRequest, user: "User", reason: str | None = None) -> ChangeRequest:
    _move(s, cr, user, allowed_from=("draft", "pending"), to_status="approved", verb="approve", reason=reason)
    cr.approver_id = user.id
    cr.approved_at = utcnow()
    return cr


def implement_change(s: "Session", cr: ChangeRequest, user: "User", reason: str | None = None) -> ChangeRequest:
    _move(s, cr, user, allowed_from=("approved",), to_status="completed", verb="implement", reason=reason)
    cr.implemented_at = utcnow()
    return cr


def reject_change(s: "Session", cr: ChangeRequest, user: "User", reason: str | None = None) -> ChangeRequest:
    return _move(s, cr, user, allowed_from=("draft", "pending"), to_status="rejected", verb="reject", reason=reason)


def list_changes(s: "Session", company_id: int, filters: dict | None = None) -> list[ChangeRequest]:
    filters = filters or {}
    q = s.query(ChangeRequest).filter(ChangeRequest.company_id == company_id)
    for key in ("status", "priority", "change_type", "system_id"):
        if filters.get(key):
            q = q.filter(getattr(ChangeRequest, key) == filters[key])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(ChangeRequest.title.ilike(like), ChangeRequest.description.ilike(like)))
    return q.order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc()).all()


def change_stats(changes: list[ChangeRequest]) -> dict[str, int]:
    return {
        "total": len(changes),
        "pending": sum(1 for c in changes if c.status in ("draft", "pending")),
        "approved": sum(1 for c in changes if c.status == "approved"),
        "completed": sum(1 for c in changes if c.status == "completed"),
        "rejected": sum(1 for c in changes if c.status == "rejected"),
    }
