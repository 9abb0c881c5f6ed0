from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import GAMP_CATEGORIES, GAMP_LABELS, INSTALLATION_LOCATIONS, RISK_LEVELS, VALIDATION_STATUSES
from app.cvms.modules.risks.models import RiskAssessment
from app.cvms.modules.systems.models import System
from app.cvms.tenancy import validate_member_refs
from app.cvms.utils import (
    ValidationError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_bool,
    parse_date,
    parse_int,
    utcnow,
    validate_choice,
    validate_date_field,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User
    from app.cvms.modules.systems.parsers import ImportResult


SYSTEM_FIELDS = (
    "id",
    "company_id",
    "name",
    "description",
    "vendor",
    "version",
    "gamp_category",
    "criticality",
    "gxp_impact",
    "data_integrity_impact",
    "bpx_relevant",
    "validation_status",
    "installation_location",
    "last_validation_date",
    "next_revalidation_date",
    "responsible_id",
    "system_owner_id",
    "process_owner_id",
    "created_at",
    "updated_at",
)

USER_REF_FIELDS = ("responsible_id", "system_owner_id", "process_owner_id")

_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "vendor": optional_text,
    "version": optional_text,
    "gamp_category": lambda v: (str(v or "")).strip(),
    "criticality": optional_text,
    "gxp_impact": parse_bool,
    "data_integrity_impact": parse_bool,
    "bpx_relevant": parse_bool,
    "validation_status": lambda v: optional_text(v) or "not_started",
    "installation_location": optional_text,
    "last_validation_date": parse_date,
    "next_revalidation_date": parse_date,
    "responsible_id": parse_int,
    "system_owner_id": parse_int,
    "process_owner_id": parse_int,
}


def system_to_dict(system: System) -> dict:
    data = model_to_dict(system, SYSTEM_FIELDS)
    data["gamp_label"] = GAMP_LABELS.get(system.gamp_category or "")
    return data


def validate_system_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    if not partial or "gamp_category" in payload:
        gamp = (str(payload.get("gamp_category") or "")).strip()
        if not gamp:
            errors.append(ValidationError("gamp_category", "GAMP category is required."))
        else:
            validate_choice(errors, "gamp_category", gamp, GAMP_CATEGORIES)
    validate_choice(errors, "criticality", optional_text(payload.get("criticality")), RISK_LEVELS)
    validate_choice(errors, "validation_status", optional_text(payload.get("validation_status")), VALIDATION_STATUSES)
    validate_choice(
        errors, "installation_location", optional_text(payload.get("installation_location")), INSTALLATION_LOCATIONS
    )
    validate_date_field(errors, payload, "last_validation_date")
    validate_date_field(errors, payload, "next_revalidation_date")
    validate_member_refs(s, company_id, payload, USER_REF_FIELDS, errors)
    return errors


def create_system(s: "Session", company_id: int, payload: dict, user: "User") -> System:
    now = utcnow()
    system = System(company_id=company_id, created_at=now, updated_at=now)
    apply_changes(system, {"validation_status": None, **payload}, _CONVERTERS)
    s.add(system)
    s.flush()

    record_event(
        s,
        actor=user,
        action="system.create",
        entity_type="System",
        entity_id=str(system.id),
        company_id=company_id,
        metadata={"name": system.name, "gamp_category": system.gamp_category},
    )
    return system


def update_system(s: "Session", system: System, payload: dict, user: "User", reason: str | None = None) -> System:
    changes = apply_changes(system, payload, _CONVERTERS)
    system.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="system.update",
        entity_type="System",
        entity_id=str(system.id),
        company_id=system.company_id,
        reason=reason,
        metadata={"name": system.name, "changes": changes},
    )
    return system


def delete_system(s: "Session", system: System, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="system.delete",
        entity_type="System",
        entity_id=str(system.id),
        company_id=system.company_id,
        reason=reason,
        metadata={"name": system.name},
    )
    s.delete(system)


def list_systems(s: "Session", company_id: int, filters: dict | None = None) -> list[System]:
    filters = filters or {}
    q = s.query(System).filter(System.company_id == company_id)

    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(System.name.ilike(like), System.vendor.ilike(like), System.description.ilike(like)))
    if filters.get("gamp_category"):
        q = q.filter(System.gamp_category == filters["gamp_category"])
    if filters.get("validation_status"):
        q = q.filter(System.validation_status == filters["validation_status"])
    if filters.get("criticality"):
        q = q.filter(System.criticality == filters["criticality"])

    return q.order_by(System.name.asc(), System.id.asc()).all()


def systems_with_ira_status(s: "Session", company_id: int) -> list[dict]:
    """Each system with its first IRA (by created_at) and a has_ira flag."""
    systems = list_systems(s, company_id)
    iras = (
        s.query(RiskAssessment)
        .filter(RiskAssessment.company_id == company_id, RiskAssessment.assessment_type == "IRA")
        .order_by(RiskAssessment.created_at.asc(), RiskAssessment.id.asc())
        .all()
    )
    first_ira: dict[int, RiskAssessment] = {}
    for ira in iras:
        if ira.system_id is not None and ira.system_id not in first_ira:
            first_ira[ira.system_id] = ira

    out: list[dict] = []
    for system in systems:
        ira = first_ira.get(system.id)
        row = system_to_dict(system)
        row["has_ira"] = ira is not None
        row["ira"] = (
            model_to_dict(ira, ("id", "title", "status", "risk_level", "created_at")) if ira is not None else None
        )
        out.append(row)
    return out


def upcoming_revalidations(s: "Session", company_id: int, limit: int = 5) -> list[System]:
    return (
        s.query(System)
        .filter(System.company_id == company_id, System.next_revalidation_date.isnot(None))
        .order_by(System.next_revalidation_date.asc(), System.id.asc())
        .limit(limit)
        .all()
    )


def import_systems(s: "Session", company_id: int, parsed: "ImportResult", user: "User") -> dict:
    """
    Insert every parsed system; row-level parse errors are passed through.
    """
    created: list[System] = []
    now = utcnow()
    for item in parsed.systems:
        system = System(company_id=company_id, created_at=now, updated_at=now)
        apply_changes(system, {"validation_status": None, **item.as_payload()}, _CONVERTERS)
        s.add(system)
        created.append(system)
    s.flush()

    record_event(
        s,
        actor=user,
        action="system.import",
        entity_type="System",
        company_id=company_id,
        metadata={
            "created": len(created),
            "errors": len(parsed.errors),
            "system_ids": [sys_.id for sys_ in created],
        },
    )
    return {"created": len(created), "errors": list(parsed.errors), "systems": created}
