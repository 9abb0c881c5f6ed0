"""
Active-company (tenant) resolution and tenant-scoped lookups.

The active company lives in the signed session cookie as ``company_id`` and is
loaded into ``g.current_company`` after the current user. Domain rows from a
company other than the active one are reported as 404.
"""
from __future__ import annotations

from typing import Any, TypeVar

from flask import abort, current_app, g, session
from sqlalchemy.orm import Session

from app.cvms.db import db_session
from app.cvms.models import Company, User, UserCompany
from app.cvms.utils import ValidationError

T = TypeVar("T")


def user_can_access_company(user: User | None, company_id: int) -> bool:
    if not user or not user.is_active:
        return False
    if user.is_super_admin:
        return True
    return any(link.company_id == company_id for link in user.company_links or [])


def default_company_for(s: Session, user: User) -> Company | None:
    links = sorted(user.company_links or [], key=lambda link: (not link.is_default, link.id))
    if links:
        return links[0].company
    if user.is_super_admin:
        return s.query(Company).order_by(Company.id.asc()).first()
    return None


def load_current_company() -> None:
    user: User | None = getattr(g, "current_user", None)
    if not user:
        g.current_company = None
        return

    s = db_session()
    company: Company | None = None
    raw = session.get("company_id")
    if raw:
        try:
            company = s.get(Company, int(raw))
        except (TypeError, ValueError):
            company = None
        if company and not user_can_access_company(user, company.id):
            current_app.logger.warning("Dropping inaccessible company_id=%s for user=%s", raw, user.email)
            company = None

    if company is None:
        company = default_company_for(s, user)
        if company:
            session["company_id"] = company.id
        else:
            session.pop("company_id", None)
    g.current_company = company


def current_company() -> Company:
    company: Company | None = getattr(g, "current_company", None)
    if company is None:
        abort(409, description="No active company selected.")
    return company


def current_company_id() -> int:
    return current_company().id


def get_scoped_or_404(s: Session, model: type[T], obj_id: Any) -> T:
    obj = s.get(model, obj_id)
    if obj is None or getattr(obj, "company_id", None) != current_company_id():
        abort(404)
    return obj


def get_scoped_optional(s: Session, model: type[T], obj_id: Any) -> T | None:
    """Resolve an optional foreign id from a payload; unknown/foreign ids -> 404."""
    if obj_id in (None, ""):
        return None
    try:
        obj_id = int(obj_id)
    except (TypeError, ValueError):
        abort(400, description=f"Invalid id: {obj_id!r}")
    return get_scoped_or_404(s, model, obj_id)


def company_member_ids(s: Session, company_id: int) -> set[int]:
    rows = s.query(UserCompany.user_id).filter(UserCompany.company_id == company_id).all()
    return {r[0] for r in rows}


def validate_member_refs(
    s: Session,
    company_id: int,
    payload: dict,
    fields: tuple[str, ...],
    errors: list[ValidationError],
) -> None:
    """User-id fields (owner, assignee...) must point at members of the company."""
    members: set[int] | None = None
    for field in fields:
        raw = payload.get(field)
        if raw in (None, ""):
            continue
        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            errors.append(ValidationError(field, f"{field} must be a user id."))
            continue
        if members is None:
            members = company_member_ids(s, company_id)
        if user_id not in members:
            errors.append(ValidationError(field, f"{field} is not a member of this company."))


def validate_scoped_ref(
    s: Session,
    model: type,
    company_id: int,
    payload: dict,
    field: str,
    errors: list[ValidationError],
) -> None:
    """Foreign row ids (system_id, project_id...) must belong to the same company."""
    raw = payload.get(field)
    if raw in (None, ""):
        return
    try:
        obj = s.get(model, int(raw))
    except (TypeError, ValueError):
        errors.append(ValidationError(field, f"{field} must be an id."))
        return
    if obj is None or getattr(obj, "company_id", None) != company_id:
        errors.append(ValidationError(field, f"{field} not found."))
