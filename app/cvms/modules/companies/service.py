from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING

from app.cvms.audit import record_event
from app.cvms.constants import DOCUMENT_TYPE_LABELS
from app.cvms.models import Company, User, UserCompany
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_bool,
    parse_int,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


COMPANY_FIELDS = ("id", "name", "cnpj", "logo_url", "settings", "created_at", "updated_at")

_NON_DIGITS = re.compile(r"\D+")


def normalize_cnpj(value) -> str | None:
    """Keep digits only; empty -> None."""
    digits = _NON_DIGITS.sub("", str(value or ""))
    return digits or None


_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "cnpj": normalize_cnpj,
    "logo_url": optional_text,
    "settings": lambda v: dict(v) if isinstance(v, dict) else {},
}


def company_to_dict(c: Company, *, with_members: bool = False) -> dict:
    data = model_to_dict(c, COMPANY_FIELDS)
    data["settings"] = c.settings or {}
    if with_members:
        data["members"] = [
            {
                "user_id": link.user_id,
                "email": link.user.email if link.user else None,
                "full_name": link.user.full_name if link.user else None,
                "is_default": link.is_default,
            }
            for link in sorted(c.user_links or [], key=lambda link: link.id)
        ]
    return data


def validate_company_payload(
    s: "Session", payload: dict, *, company: Company | None = None, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    if "settings" in payload and payload["settings"] not in (None, "") and not isinstance(payload["settings"], dict):
        errors.append(ValidationError("settings", "settings must be an object."))
    cnpj = normalize_cnpj(payload.get("cnpj"))
    if cnpj:
        q = s.query(Company).filter(Company.cnpj == cnpj)
        if company is not None:
            q = q.filter(Company.id != company.id)
        if q.first() is not None:
            errors.append(ValidationError("cnpj", "A company with this CNPJ already exists."))
    return errors


def create_company(s: "Session", payload: dict, actor: User) -> Company:
    now = utcnow()
    company = Company(settings={}, created_at=now, updated_at=now)
    apply_changes(company, payload, _CONVERTERS)
    s.add(company)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="company.create",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"name": company.name, "cnpj": company.cnpj},
    )
    return company


def update_company(s: "Session", company: Company, payload: dict, actor: User, reason: str | None = None) -> Company:
    changes = apply_changes(company, payload, _CONVERTERS)
    company.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="company.update",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        reason=reason,
        metadata={"name": company.name, "changes": changes},
    )
    return company


def membership(s: "Session", company: Company, user: User) -> UserCompany | None:
    return (
        s.query(UserCompany)
        .filter(UserCompany.company_id == company.id, UserCompany.user_id == user.id)
        .one_or_none()
    )


def add_user_to_company(
    s: "Session", company: Company, user: User, actor: User, *, is_default: bool | None = None
) -> UserCompany:
    """Link user to company; the first membership becomes the default one."""
    link = membership(s, company, user)
    if link is not None:
        return link
    if is_default is None:
        is_default = not user.company_links
    if is_default:
        for other in user.company_links or []:
            other.is_default = False
    link = UserCompany(user_id=user.id, company_id=company.id, is_default=is_default, created_at=utcnow())
    s.add(link)
    s.flush()
    s.refresh(user)
    s.refresh(company)
    record_event(
        s,
        actor=actor,
        action="company.add_user",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"user_id": user.id, "email": user.email, "is_default": is_default},
    )
    return link


def remove_user_from_company(s: "Session", company: Company, user: User, actor: User) -> bool:
    link = membership(s, company, user)
    if link is None:
        return False
    was_default = link.is_default
    s.delete(link)
    s.flush()
    s.refresh(user)
    s.refresh(company)
    if was_default and user.company_links:
        sorted(user.company_links, key=lambda other: other.id)[0].is_default = True
    record_event(
        s,
        actor=actor,
        action="company.remove_user",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"user_id": user.id, "email": user.email},
    )
    return True


def companies_for_user(s: "Session", user: User) -> list[Company]:
    """Every company for a super admin, otherwise the user's memberships."""
    if user.is_super_admin:
        return s.query(Company).order_by(Company.name.asc(), Company.id.asc()).all()
    return sorted((link.company for link in user.company_links or []), key=lambda c: (c.name.lower(), c.id))


# ---------- Company settings (company admins) ----------
TEXT_SETTINGS = ("address", "phone")
FLAG_SETTINGS = ("auto_revalidation", "notify_high_risks", "require_dual_approval")
# key -> minimum value
COUNT_SETTINGS = {
    "risk_threshold": 1,
    "critical_revalidation_months": 1,
    "non_critical_revalidation_months": 1,
    "revalidation_alert_days": 0,
    "document_expiration_days": 0,
}
PROFILE_FIELDS = ("name", "cnpj", "logo_url")


def validate_settings_payload(s: "Session", company: Company, payload: dict) -> list[ValidationError]:
    """Profile fields are optional; ``settings`` may only carry known keys."""
    errors = validate_company_payload(s, payload, company=company, partial=True)
    raw = payload.get("settings")
    if not isinstance(raw, dict):
        return errors
    known = set(TEXT_SETTINGS) | set(FLAG_SETTINGS) | set(COUNT_SETTINGS)
    unknown = sorted(k for k in raw if k not in known)
    if unknown:
        errors.append(ValidationError("settings", f"Unknown setting(s): {', '.join(unknown)}"))
    for key, minimum in COUNT_SETTINGS.items():
        if raw.get(key) in (None, ""):
            continue
        try:
            value = parse_int(raw[key])
        except (TypeError, ValueError):
            value = None
        if value is None or value < minimum:
            errors.append(ValidationError(f"settings.{key}", f"{key} must be an integer >= {minimum}."))
    return errors


def _clean_settings(raw: dict) -> dict:
    cleaned: dict = {}
    for key in TEXT_SETTINGS:
        if key in raw:
            cleaned[key] = optional_text(raw[key])
    for key in FLAG_SETTINGS:
        if key in raw:
            cleaned[key] = parse_bool(raw[key])
    for key in COUNT_SETTINGS:
        if key in raw:
            cleaned[key] = parse_int(raw[key]) if raw[key] not in (None, "") else None
    return cleaned


def update_company_settings(
    s: "Session", company: Company, payload: dict, actor: User, reason: str | None = None
) -> Company:
    """Update the profile and merge known settings keys; other keys (document types) are kept."""
    changes = apply_changes(company, {k: payload[k] for k in PROFILE_FIELDS if k in payload}, _CONVERTERS)
    if isinstance(payload.get("settings"), dict):
        before = dict(company.settings or {})
        updates = _clean_settings(payload["settings"])
        company.settings = {**before, **updates}
        for key, value in updates.items():
            if before.get(key) != value:
                changes[f"settings.{key}"] = {"old": before.get(key), "new": value}
    company.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="company.settings_update",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        reason=reason,
        metadata={"changes": changes},
    )
    return company


# ---------- Document types ----------
def default_document_types() -> list[dict]:
    return [
        {"id": code.lower(), "code": code, "name": name, "description": None, "color": None}
        for code, name in DOCUMENT_TYPE_LABELS.items()
    ]


def document_types_for(company: Company | None) -> list[dict]:
    """The company's own types, or the built-in catalogue when none were saved."""
    saved = (company.settings or {}).get("document_types") if company is not None else None
    if isinstance(saved, list) and saved:
        return [dict(t) for t in saved if isinstance(t, dict) and t.get("code")]
    return default_document_types()


def document_type_codes(company: Company | None) -> tuple[str, ...]:
    return tuple(t["code"] for t in document_types_for(company))


def document_type_label(company: Company | None, code: str) -> str:
    for t in document_types_for(company):
        if t["code"] == code:
            return t.get("name") or code
    return DOCUMENT_TYPE_LABELS.get(code, code)


def _save_document_types(company: Company, types: list[dict]) -> None:
    # reassign so the JSON column is flagged dirty
    company.settings = {**(company.settings or {}), "document_types": types}
    company.updated_at = utcnow()


def validate_document_type_payload(
    company: Company, payload: dict, *, type_id: str | None = None, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    code = (str(payload.get("code") or "")).strip().upper()
    if not partial or "code" in payload:
        if not code:
            errors.append(ValidationError("code", "Code is required."))
        elif any(t["code"].upper() == code and t["id"] != type_id for t in document_types_for(company)):
            errors.append(ValidationError("code", "A document type with this code already exists."))
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    return errors


def _document_type_fields(payload: dict) -> dict:
    fields: dict = {}
    if "code" in payload:
        fields["code"] = (str(payload.get("code") or "")).strip().upper()
    if "name" in payload:
        fields["name"] = (str(payload.get("name") or "")).strip()
    for key in ("description", "color"):
        if key in payload:
            fields[key] = optional_text(payload.get(key))
    return fields


def add_document_type(s: "Session", company: Company, payload: dict, actor: User) -> dict:
    entry = {"id": uuid.uuid4().hex, "description": None, "color": None, **_document_type_fields(payload)}
    _save_document_types(company, [*document_types_for(company), entry])
    record_event(
        s,
        actor=actor,
        action="document_type.create",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"code": entry["code"], "name": entry["name"]},
    )
    return entry


def find_document_type(company: Company, type_id: str) -> dict | None:
    return next((t for t in document_types_for(company) if t["id"] == type_id), None)


def update_document_type(s: "Session", company: Company, type_id: str, payload: dict, actor: User) -> dict:
    types = document_types_for(company)
    entry = next(t for t in types if t["id"] == type_id)
    before = dict(entry)
    entry.update(_document_type_fields(payload))
    _save_document_types(company, types)
    record_event(
        s,
        actor=actor,
        action="document_type.update",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"id": type_id, "old": before, "new": entry},
    )
    return entry


def delete_document_type(s: "Session", company: Company, type_id: str, actor: User) -> None:
    types = document_types_for(company)
    removed = next(t for t in types if t["id"] == type_id)
    remaining = [t for t in types if t["id"] != type_id]
    if not remaining:
        raise WorkflowError("At least one document type must remain.")
    _save_document_types(company, remaining)
    record_event(
        s,
        actor=actor,
        action="document_type.delete",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
        metadata={"id": type_id, "code": removed["code"]},
    )
