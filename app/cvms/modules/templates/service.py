from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import DOCUMENT_TYPES, GAMP_CATEGORIES
from app.cvms.modules.templates.defaults import DEFAULT_TEMPLATES
from app.cvms.modules.templates.models import DocumentTemplate, TemplateVersion
from app.cvms.modules.templates.placeholders import (
    auto_fill_values,
    evaluate_conditional_blocks,
    extract_placeholders,
    fill_placeholders,
    manual_placeholders,
    merge_values,
)
from app.cvms.utils import (
    ValidationError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_bool,
    utcnow,
    validate_choice,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User


TEMPLATE_FIELDS = (
    "id",
    "company_id",
    "name",
    "description",
    "document_type",
    "gamp_category",
    "system_name",
    "content",
    "version",
    "is_active",
    "is_default",
    "parent_template_id",
    "placeholders",
    "conditional_blocks",
    "created_by_user_id",
    "created_at",
    "updated_at",
)

VERSION_FIELDS = ("id", "template_id", "version", "content", "change_summary", "created_by_user_id", "created_at")


def _json_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "document_type": lambda v: (str(v or "")).strip(),
    "gamp_category": optional_text,
    "system_name": optional_text,
    "content": lambda v: None if v is None else str(v),
    "version": lambda v: optional_text(v) or "1.0",
    "is_active": lambda v: parse_bool(v, default=True),
    "is_default": parse_bool,
    "placeholders": _json_list,
    "conditional_blocks": _json_list,
}


def template_to_dict(t: DocumentTemplate) -> dict:
    data = model_to_dict(t, TEMPLATE_FIELDS)
    data["placeholders"] = t.placeholders or []
    data["conditional_blocks"] = t.conditional_blocks or []
    data["content_placeholders"] = extract_placeholders(t.content)
    return data


def version_to_dict(v: TemplateVersion) -> dict:
    return model_to_dict(v, VERSION_FIELDS)


def _validate_json_lists(payload: dict, errors: list[ValidationError]) -> None:
    for item in _json_list(payload.get("placeholders")):
        if not isinstance(item, dict) or not str(item.get("key") or "").strip():
            errors.append(ValidationError("placeholders", "Each placeholder needs a key."))
            break
    for item in _json_list(payload.get("conditional_blocks")):
        if not isinstance(item, dict) or not str(item.get("condition") or "").strip():
            errors.append(ValidationError("conditional_blocks", "Each conditional block needs a condition."))
            break


def validate_template_payload(
    payload: dict, *, partial: bool = False, document_types: Iterable[str] = DOCUMENT_TYPES
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    if not partial or "document_type" in payload:
        doc_type = (str(payload.get("document_type") or "")).strip()
        if not doc_type:
            errors.append(ValidationError("document_type", "Document type is required."))
        else:
            validate_choice(errors, "document_type", doc_type, document_types)
    validate_choice(errors, "gamp_category", optional_text(payload.get("gamp_category")), GAMP_CATEGORIES)
    _validate_json_lists(payload, errors)
    return errors


def create_template(s: "Session", company_id: int, payload: dict, user: "User") -> DocumentTemplate:
    now = utcnow()
    t = DocumentTemplate(company_id=company_id, created_by_user_id=user.id, created_at=now, updated_at=now)
    apply_changes(t, {"version": None, "is_active": None, **payload}, _CONVERTERS)
    s.add(t)
    s.flush()
    record_event(
        s,
        actor=user,
        action="template.create",
        entity_type="DocumentTemplate",
        entity_id=str(t.id),
        company_id=company_id,
        metadata={"name": t.name, "document_type": t.document_type},
    )
    return t


def update_template(
    s: "Session",
    t: DocumentTemplate,
    payload: dict,
    user: "User",
    *,
    create_version: bool = False,
    change_summary: str | None = None,
    reason: str | None = None,
) -> DocumentTemplate:
    """When create_version is set, the pre-update version/content is kept as a TemplateVersion."""
    snapshot: TemplateVersion | None = None
    if create_version:
        snapshot = TemplateVersion(
            company_id=t.company_id,
            template_id=t.id,
            version=t.version,
            content=t.content,
            change_summary=change_summary,
            created_by_user_id=user.id,
            created_at=utcnow(),
        )
        s.add(snapshot)

    changes = apply_changes(t, payload, _CONVERTERS)
    t.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="template.update",
        entity_type="DocumentTemplate",
        entity_id=str(t.id),
        company_id=t.company_id,
        reason=reason or change_summary,
        metadata={
            "name": t.name,
            "changes": changes,
            "snapshot_version": snapshot.version if snapshot else None,
        },
    )
    return t


def delete_template(s: "Session", t: DocumentTemplate, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="template.delete",
        entity_type="DocumentTemplate",
        entity_id=str(t.id),
        company_id=t.company_id,
        reason=reason,
        metadata={"name": t.name, "document_type": t.document_type},
    )
    s.delete(t)


def clone_template(
    s: "Session",
    source: DocumentTemplate,
    company_id: int,
    user: "User",
    new_name: str | None = None,
) -> DocumentTemplate:
    """Copy a template into company_id as a fresh 1.0 that remembers where it came from."""
    now = utcnow()
    clone = DocumentTemplate(
        company_id=company_id,
        name=(new_name or "").strip() or source.name,
        description=source.description,
        document_type=source.document_type,
        gamp_category=source.gamp_category,
        system_name=source.system_name,
        content=source.content,
        version="1.0",
        is_active=True,
        is_default=False,
        parent_template_id=source.id,
        placeholders=list(source.placeholders or []),
        conditional_blocks=list(source.conditional_blocks or []),
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(clone)
    s.flush()
    record_event(
        s,
        actor=user,
        action="template.clone",
        entity_type="DocumentTemplate",
        entity_id=str(clone.id),
        company_id=company_id,
        metadata={"name": clone.name, "source_template_id": source.id, "source_company_id": source.company_id},
    )
    return clone


def load_default_templates(s: "Session", company_id: int, user: "User") -> list[DocumentTemplate]:
    existing = {
        name
        for (name,) in s.query(DocumentTemplate.name).filter(DocumentTemplate.company_id == company_id).all()
    }
    created: list[DocumentTemplate] = []
    now = utcnow()
    for entry in DEFAULT_TEMPLATES:
        if entry["name"] in existing:
            continue
        t = DocumentTemplate(
            company_id=company_id,
            name=entry["name"],
            description=entry.get("description"),
            document_type=entry["document_type"],
            content=entry["content"],
            version="1.0",
            is_active=True,
            is_default=True,
            placeholders=list(entry.get("placeholders") or []),
            conditional_blocks=[],
            created_by_user_id=user.id,
            created_at=now,
            updated_at=now,
        )
        s.add(t)
        created.append(t)
    s.flush()
    record_event(
        s,
        actor=user,
        action="template.load_defaults",
        entity_type="DocumentTemplate",
        company_id=company_id,
        metadata={"created": [t.name for t in created]},
    )
    return created


def list_templates(s: "Session", company_id: int, filters: dict | None = None) -> list[DocumentTemplate]:
    filters = filters or {}
    q = s.query(DocumentTemplate).filter(DocumentTemplate.company_id == company_id)
    if filters.get("document_type"):
        q = q.filter(DocumentTemplate.document_type == filters["document_type"])
    if filters.get("gamp_category"):
        q = q.filter(DocumentTemplate.gamp_category == filters["gamp_category"])
    if filters.get("active_only"):
        q = q.filter(DocumentTemplate.is_active.is_(True))
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(DocumentTemplate.name.ilike(like), DocumentTemplate.description.ilike(like)))
    return q.order_by(DocumentTemplate.document_type.asc(), DocumentTemplate.name.asc()).all()


def render_template(
    t: DocumentTemplate,
    *,
    now,
    system: Any = None,
    project: Any = None,
    user: Any = None,
    company: Any = None,
    manual_values: dict | None = None,
) -> dict[str, Any]:
    """
    Fill a template for preview or document generation.

    Conditional blocks whose condition key has a value are appended to the
    body before substitution, so placeholders inside them are filled too.
    """
    auto = auto_fill_values(now, system=system, project=project, user=user, company=company)
    values = merge_values(auto, manual_values)
    body = t.content or ""
    blocks = evaluate_conditional_blocks(t.conditional_blocks, values)
    if blocks:
        body = "\n\n".join([body.rstrip("\n"), *blocks])
    return {
        "content": fill_placeholders(body, values),
        "auto_values": auto,
        "manual_placeholders": manual_placeholders(body, auto),
    }
