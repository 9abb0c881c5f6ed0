from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import GAMP_CATEGORIES
from app.cvms.modules.packages.models import TemplatePackage, TemplatePackageActivation, TemplatePackageItem
from app.cvms.modules.templates.models import DocumentTemplate
from app.cvms.modules.templates.service import clone_template
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    utcnow,
    validate_choice,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User


logger = logging.getLogger(__name__)

DUPLICATE_ACTIVATION_MESSAGE = "An activation request already exists for this package"

PACKAGE_FIELDS = (
    "id",
    "company_id",
    "name",
    "description",
    "system_name",
    "gamp_category",
    "application",
    "price",
    "document_count",
    "is_published",
    "cover_image_url",
    "created_by_user_id",
    "created_at",
    "updated_at",
)

ACTIVATION_FIELDS = (
    "id",
    "package_id",
    "company_id",
    "requested_by_user_id",
    "approved_by_user_id",
    "status",
    "notes",
    "requested_at",
    "approved_at",
)


def _price(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    return Decimal(str(value).strip().replace(",", "."))


_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "system_name": optional_text,
    "gamp_category": optional_text,
    "application": optional_text,
    "price": _price,
    "cover_image_url": optional_text,
}


def package_to_dict(p: TemplatePackage, *, with_items: bool = False) -> dict:
    data = model_to_dict(p, PACKAGE_FIELDS)
    data["company_name"] = p.company.name if p.company else None
    if with_items:
        data["items"] = [
            {
                "id": item.id,
                "template_id": item.template_id,
                "sort_order": item.sort_order,
                "template_name": item.template.name if item.template else None,
                "document_type": item.template.document_type if item.template else None,
            }
            for item in p.items
        ]
    return data


def activation_to_dict(a: TemplatePackageActivation) -> dict:
    data = model_to_dict(a, ACTIVATION_FIELDS)
    data["package_name"] = a.package.name if a.package else None
    data["company_name"] = a.company.name if a.company else None
    return data


def validate_package_payload(payload: dict, *, partial: bool = False) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    validate_choice(errors, "gamp_category", optional_text(payload.get("gamp_category")), GAMP_CATEGORIES)
    if "price" in payload:
        try:
            if _price(payload.get("price")) < 0:
                errors.append(ValidationError("price", "Price cannot be negative."))
        except InvalidOperation:
            errors.append(ValidationError("price", "Price must be a number."))
    return errors


def create_package(s: "Session", company_id: int, payload: dict, user: "User") -> TemplatePackage:
    now = utcnow()
    p = TemplatePackage(
        company_id=company_id,
        price=Decimal("0"),
        document_count=0,
        is_published=False,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    apply_changes(p, payload, _CONVERTERS)
    s.add(p)
    s.flush()
    record_event(
        s,
        actor=user,
        action="package.create",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=company_id,
        metadata={"name": p.name},
    )
    return p


def update_package(s: "Session", p: TemplatePackage, payload: dict, user: "User", reason: str | None = None) -> TemplatePackage:
    changes = apply_changes(p, payload, _CONVERTERS)
    p.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="package.update",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=p.company_id,
        reason=reason,
        metadata={"name": p.name, "changes": changes},
    )
    return p


def delete_package(s: "Session", p: TemplatePackage, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="package.delete",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=p.company_id,
        reason=reason,
        metadata={"name": p.name, "document_count": p.document_count},
    )
    s.delete(p)


def set_published(s: "Session", p: TemplatePackage, published: bool, user: "User") -> TemplatePackage:
    if p.is_published == published:
        return p
    p.is_published = published
    p.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="package.publish" if published else "package.unpublish",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=p.company_id,
        metadata={"name": p.name},
    )
    return p


def list_packages(s: "Session", company_id: int, filters: dict | None = None) -> list[TemplatePackage]:
    """Packages owned by the company."""
    filters = filters or {}
    q = s.query(TemplatePackage).filter(TemplatePackage.company_id == company_id)
    if filters.get("gamp_category"):
        q = q.filter(TemplatePackage.gamp_category == filters["gamp_category"])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                TemplatePackage.name.ilike(like),
                TemplatePackage.system_name.ilike(like),
                TemplatePackage.application.ilike(like),
            )
        )
    return q.order_by(TemplatePackage.created_at.desc(), TemplatePackage.id.desc()).all()


def marketplace(s: "Session", filters: dict | None = None) -> list[TemplatePackage]:
    """Published packages from every company, newest first."""
    filters = filters or {}
    q = s.query(TemplatePackage).filter(TemplatePackage.is_published.is_(True))
    if filters.get("gamp_category"):
        q = q.filter(TemplatePackage.gamp_category == filters["gamp_category"])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(TemplatePackage.name.ilike(like), TemplatePackage.description.ilike(like)))
    return q.order_by(TemplatePackage.created_at.desc(), TemplatePackage.id.desc()).all()


def package_visible_to(p: TemplatePackage, company_id: int) -> bool:
    return p.company_id == company_id or p.is_published


# ---------- Items ----------
def _sync_document_count(p: TemplatePackage) -> None:
    p.document_count = len(p.items)
    p.updated_at = utcnow()


def add_item(s: "Session", p: TemplatePackage, template: DocumentTemplate, user: "User") -> TemplatePackageItem:
    if template.company_id != p.company_id:
        raise ValueError("Template does not belong to the package owner.")
    if any(item.template_id == template.id for item in p.items):
        raise WorkflowError("Template is already part of this package.")
    next_order = max((item.sort_order for item in p.items), default=-1) + 1
    item = TemplatePackageItem(package_id=p.id, template_id=template.id, sort_order=next_order, created_at=utcnow())
    p.items.append(item)
    s.flush()
    _sync_document_count(p)
    record_event(
        s,
        actor=user,
        action="package.add_item",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=p.company_id,
        metadata={"template_id": template.id, "template_name": template.name, "sort_order": next_order},
    )
    return item


def remove_item(s: "Session", p: TemplatePackage, item: TemplatePackageItem, user: "User") -> None:
    template_id = item.template_id
    p.items.remove(item)
    s.flush()
    _sync_document_count(p)
    record_event(
        s,
        actor=user,
        action="package.remove_item",
        entity_type="TemplatePackage",
        entity_id=str(p.id),
        company_id=p.company_id,
        metadata={"template_id": template_id},
    )


# ---------- Activations ----------
def activation_for(s: "Session", p: TemplatePackage, company_id: int) -> TemplatePackageActivation | None:
    return (
        s.query(TemplatePackageActivation)
        .filter(TemplatePackageActivation.package_id == p.id, TemplatePackageActivation.company_id == company_id)
        .one_or_none()
    )


def activation_status_for(s: "Session", p: TemplatePackage, company_id: int) -> str | None:
    a = activation_for(s, p, company_id)
    return a.status if a else None


def request_activation(
    s: "Session", p: TemplatePackage, company_id: int, user: "User", notes: str | None = None
) -> TemplatePackageActivation:
    if not p.is_published:
        raise WorkflowError("Only published packages can be activated.")
    if p.company_id == company_id:
        raise WorkflowError("The package already belongs to this company.")
    if activation_for(s, p, company_id) is not None:
        raise WorkflowError(DUPLICATE_ACTIVATION_MESSAGE)
    a = TemplatePackageActivation(
        package_id=p.id,
        company_id=company_id,
        requested_by_user_id=user.id,
        status="pending",
        notes=optional_text(notes),
        requested_at=utcnow(),
    )
    s.add(a)
    s.flush()
    record_event(
        s,
        actor=user,
        action="package.request_activation",
        entity_type="TemplatePackageActivation",
        entity_id=str(a.id),
        company_id=company_id,
        metadata={"package_id": p.id, "package_name": p.name},
    )
    return a


def _decide(
    s: "Session", a: TemplatePackageActivation, status: str, user: "User", notes: str | None
) -> TemplatePackageActivation:
    if a.status != "pending":
        raise WorkflowError(f"Activation request is already {a.status}.")
    a.status = status
    a.approved_by_user_id = user.id
    a.approved_at = utcnow()
    if notes is not None:
        a.notes = optional_text(notes)
    return a


def approve_activation(
    s: "Session", a: TemplatePackageActivation, user: "User", notes: str | None = None
) -> list[DocumentTemplate]:
    """Approve the request and clone every package template into the requesting company."""
    _decide(s, a, "approved", user, notes)
    clones = [clone_template(s, item.template, a.company_id, user) for item in a.package.items if item.template]
    logger.info("Package activation approved: package=%s company=%s templates=%s", a.package_id, a.company_id, len(clones))
    record_event(
        s,
        actor=user,
        action="package.approve_activation",
        entity_type="TemplatePackageActivation",
        entity_id=str(a.id),
        company_id=a.company_id,
        metadata={"package_id": a.package_id, "cloned_template_ids": [c.id for c in clones]},
    )
    return clones


def reject_activation(
    s: "Session", a: TemplatePackageActivation, user: "User", notes: str | None = None
) -> TemplatePackageActivation:
    _decide(s, a, "rejected", user, notes)
    record_event(
        s,
        actor=user,
        action="package.reject_activation",
        entity_type="TemplatePackageActivation",
        entity_id=str(a.id),
        company_id=a.company_id,
        reason=a.notes,
        metadata={"package_id": a.package_id},
    )
    return a


def list_activations(
    s: "Session", user: "User", company_id: int, status: str | None = None
) -> list[TemplatePackageActivation]:
    q = s.query(TemplatePackageActivation)
    if not user.is_super_admin:
        q = q.filter(TemplatePackageActivation.company_id == company_id)
    if status:
        q = q.filter(TemplatePackageActivation.status == status)
    return q.order_by(TemplatePackageActivation.requested_at.desc(), TemplatePackageActivation.id.desc()).all()
