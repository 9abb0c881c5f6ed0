from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import func, or_

from app.cvms.audit import record_event
from app.cvms.constants import DOCUMENT_TYPES, STATUS_TYPES
from app.cvms.models import Company
from app.cvms.modules.companies.service import document_type_label
from app.cvms.modules.documents.diff import diff_lines, diff_summary
from app.cvms.modules.documents.models import Document, DocumentVersion
from app.cvms.modules.documents.pdf import PdfDocument, pdf_filename, render_document_pdf
from app.cvms.modules.systems.models import System
from app.cvms.storage import build_storage_key, file_digest_and_bytes, sanitize_upload_filename, storage_from_config
from app.cvms.tenancy import validate_scoped_ref
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_int,
    utcnow,
    validate_choice,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User
    from app.cvms.modules.templates.models import DocumentTemplate


DOCUMENT_FIELDS = (
    "id",
    "company_id",
    "title",
    "document_type",
    "content",
    "version",
    "status",
    "system_id",
    "project_id",
    "template_id",
    "author_id",
    "approved_by_user_id",
    "approved_at",
    "filename",
    "content_type",
    "sha256",
    "size_bytes",
    "created_at",
    "updated_at",
)

VERSION_FIELDS = (
    "id",
    "document_id",
    "version",
    "title",
    "content",
    "filename",
    "change_summary",
    "created_by_user_id",
    "created_at",
)

# Editing any of these keeps the previous state as a DocumentVersion.
VERSIONED_FIELDS = ("title", "content", "version")

APPROVABLE_STATUSES = ("draft", "pending")
SUBMITTABLE_STATUSES = ("draft", "rejected")

_CONVERTERS = {
    "title": lambda v: (str(v or "")).strip(),
    "document_type": lambda v: (str(v or "")).strip(),
    "content": lambda v: None if v is None else str(v),
    "version": lambda v: optional_text(v) or "1.0",
    "status": lambda v: optional_text(v) or "draft",
    "system_id": parse_int,
    "project_id": parse_int,
}


def document_to_dict(doc: Document, *, with_content: bool = True) -> dict:
    data = model_to_dict(doc, DOCUMENT_FIELDS)
    if not with_content:
        data.pop("content")
    data["has_file"] = bool(doc.storage_key)
    data["system_name"] = doc.system.name if doc.system else None
    data["author_name"] = doc.author.display_name if doc.author else None
    data["approved_by_name"] = doc.approved_by.display_name if doc.approved_by else None
    return data


def version_to_dict(v: DocumentVersion) -> dict:
    return model_to_dict(v, VERSION_FIELDS)


def _project_model():
    from app.cvms.modules.projects.models import ValidationProject

    return ValidationProject


def validate_document_payload(
    s: "Session",
    company_id: int,
    payload: dict,
    *,
    partial: bool = False,
    document_types: Iterable[str] = DOCUMENT_TYPES,
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "title" in payload:
        if not (str(payload.get("title") or "")).strip():
            errors.append(ValidationError("title", "Title is required."))
    if not partial or "document_type" in payload:
        doc_type = (str(payload.get("document_type") or "")).strip()
        if not doc_type:
            errors.append(ValidationError("document_type", "Document type is required."))
        else:
            validate_choice(errors, "document_type", doc_type, document_types)
    validate_choice(errors, "status", optional_text(payload.get("status")), STATUS_TYPES)
    validate_scoped_ref(s, System, company_id, payload, "system_id", errors)
    validate_scoped_ref(s, _project_model(), company_id, payload, "project_id", errors)
    return errors


def create_document(
    s: "Session",
    company_id: int,
    payload: dict,
    user: "User",
    *,
    template_id: int | None = None,
) -> Document:
    now = utcnow()
    doc = Document(
        company_id=company_id,
        author_id=user.id,
        template_id=template_id,
        created_at=now,
        updated_at=now,
    )
    apply_changes(doc, {"version": None, "status": None, **payload}, _CONVERTERS)
    s.add(doc)
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.create",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=company_id,
        metadata={"title": doc.title, "document_type": doc.document_type, "template_id": template_id},
    )
    return doc


def _snapshot(s: "Session", doc: Document, user: "User", change_summary: str | None) -> DocumentVersion:
    snap = DocumentVersion(
        company_id=doc.company_id,
        document_id=doc.id,
        version=doc.version,
        title=doc.title,
        content=doc.content,
        storage_key=doc.storage_key,
        filename=doc.filename,
        change_summary=change_summary,
        created_by_user_id=user.id,
        created_at=utcnow(),
    )
    s.add(snap)
    doc.versions.insert(0, snap)
    return snap


def update_document(
    s: "Session",
    doc: Document,
    payload: dict,
    user: "User",
    *,
    change_summary: str | None = None,
    reason: str | None = None,
) -> Document:
    touches_versioned = any(
        f in payload and _CONVERTERS[f](payload.get(f)) != getattr(doc, f) for f in VERSIONED_FIELDS
    )
    snapshot = _snapshot(s, doc, user, change_summary or reason) if touches_versioned else None

    changes = apply_changes(doc, payload, _CONVERTERS)
    doc.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="document.update",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        reason=reason,
        metadata={
            "title": doc.title,
            "changes": changes,
            "snapshot_version": snapshot.version if snapshot else None,
        },
    )
    return doc


def delete_document(
    s: "Session", doc: Document, user: "User", *, reason: str | None = None, app_config: dict | None = None
) -> None:
    record_event(
        s,
        actor=user,
        action="document.delete",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        reason=reason,
        metadata={"title": doc.title, "version": doc.version, "versions": len(doc.versions)},
    )
    if doc.storage_key:
        storage_from_config(app_config or {}).delete(doc.storage_key)
    s.delete(doc)


def _set_status(s: "Session", doc: Document, new_status: str, user: "User", action: str, reason: str | None) -> None:
    old = doc.status
    doc.status = new_status
    doc.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action=action,
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        reason=reason,
        metadata={"title": doc.title, "version": doc.version, "before": {"status": old}, "after": {"status": new_status}},
    )


def submit_document(s: "Session", doc: Document, user: "User", reason: str | None = None) -> Document:
    if doc.status not in SUBMITTABLE_STATUSES:
        raise WorkflowError(f"Only draft or rejected documents can be submitted for review (status is {doc.status}).")
    _set_status(s, doc, "pending", user, "document.submit", reason)
    return doc


def approve_document(s: "Session", doc: Document, user: "User", reason: str | None = None) -> Document:
    if doc.status not in APPROVABLE_STATUSES:
        raise WorkflowError(f"Only draft or pending documents can be approved (status is {doc.status}).")
    doc.approved_by_user_id = user.id
    doc.approved_at = utcnow()
    _set_status(s, doc, "approved", user, "document.approve", reason)
    return doc


def reject_document(s: "Session", doc: Document, user: "User", reason: str | None = None) -> Document:
    if doc.status not in APPROVABLE_STATUSES:
        raise WorkflowError(f"Only draft or pending documents can be rejected (status is {doc.status}).")
    _set_status(s, doc, "rejected", user, "document.reject", reason)
    return doc


def list_documents(s: "Session", company_id: int, filters: dict | None = None) -> list[Document]:
    filters = filters or {}
    q = s.query(Document).filter(Document.company_id == company_id)
    for key in ("document_type", "status", "system_id", "project_id"):
        if filters.get(key):
            q = q.filter(getattr(Document, key) == filters[key])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Document.title.ilike(like), Document.content.ilike(like)))
    return q.order_by(Document.updated_at.desc(), Document.id.desc()).all()


def document_stats(s: "Session", company_id: int) -> dict[str, int]:
    rows = (
        s.query(Document.status, func.count(Document.id))
        .filter(Document.company_id == company_id)
        .group_by(Document.status)
        .all()
    )
    by_status = {status: count for status, count in rows}
    return {
        "total": sum(by_status.values()),
        "approved": by_status.get("approved", 0),
        "in_review": by_status.get("pending", 0),
        "draft": by_status.get("draft", 0),
    }


# ---------- Versions / comparison ----------
def compare_versions(doc: Document, version_a: Any, version_b: Any = "current") -> dict[str, Any]:
    """
    Diff two states of a document. Either side is a DocumentVersion id or
    "current" for the live document. Unknown ids raise LookupError.
    """

    def _resolve(ref: Any) -> tuple[str, str | None]:
        if ref in (None, "", "current"):
            return doc.version, doc.content
        try:
            ref_id = int(ref)
        except (TypeError, ValueError):
            raise LookupError(f"Unknown version: {ref!r}") from None
        for v in doc.versions:
            if v.id == ref_id:
                return v.version, v.content
        raise LookupError(f"Unknown version: {ref!r}")

    old_label, old_content = _resolve(version_a)
    new_label, new_content = _resolve(version_b)
    lines = diff_lines(old_content, new_content)
    return {
        "from_version": old_label,
        "to_version": new_label,
        "lines": [asdict(ln) for ln in lines],
        "summary": diff_summary(lines),
    }


# ---------- Generation from template ----------
def generate_from_template(
    s: "Session",
    company_id: int,
    template: "DocumentTemplate",
    user: "User",
    *,
    system: System | None = None,
    project: Any = None,
    company: Any = None,
    manual_values: dict | None = None,
    title: str | None = None,
    now: datetime | None = None,
) -> Document:
    from app.cvms.modules.templates.service import render_template

    rendered = render_template(
        template,
        now=now or utcnow(),
        system=system,
        project=project,
        user=user,
        company=company,
        manual_values=manual_values,
    )
    if not (title or "").strip():
        title = f"{template.document_type} - {system.name}" if system else template.name
    payload = {
        "title": title,
        "document_type": template.document_type,
        "content": rendered["content"],
        "system_id": system.id if system else None,
        "project_id": getattr(project, "id", None),
    }
    return create_document(s, company_id, payload, user, template_id=template.id)


# ---------- Files ----------
def upload_document_file(
    s: "Session",
    doc: Document,
    user: "User",
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    app_config: dict | None = None,
) -> Document:
    """Attach a file. A previously stored file stays reachable through a version snapshot."""
    if doc.storage_key:
        _snapshot(s, doc, user, f"File replaced: {doc.filename}")
    sha256, size = file_digest_and_bytes(file_bytes)
    key = build_storage_key("documents", doc.company_id, doc.id, filename)
    storage_from_config(app_config or {}).put_bytes(key, file_bytes, content_type=content_type)
    doc.storage_key = key
    doc.filename = sanitize_upload_filename(filename)
    doc.content_type = content_type or "application/octet-stream"
    doc.sha256 = sha256
    doc.size_bytes = size
    doc.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="document.upload",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        metadata={"filename": doc.filename, "storage_key": key, "sha256": sha256, "size_bytes": size},
    )
    return doc


# ---------- PDF ----------
def document_pdf(s: "Session", doc: Document, user: "User", *, footer_text: str) -> tuple[bytes, str]:
    pdf_bytes = render_document_pdf(
        PdfDocument(
            title=doc.title,
            document_type=doc.document_type,
            document_type_label=document_type_label(s.get(Company, doc.company_id), doc.document_type),
            version=doc.version,
            status=doc.status,
            content=doc.content,
            created_at=doc.created_at,
            approved_at=doc.approved_at,
            system_name=doc.system.name if doc.system else None,
            author_name=doc.author.display_name if doc.author else None,
            approver_name=doc.approved_by.display_name if doc.approved_by else None,
        ),
        footer_text=footer_text,
    )
    filename = pdf_filename(doc.document_type, doc.title, doc.version)
    sha256, size = file_digest_and_bytes(pdf_bytes)
    record_event(
        s,
        actor=user,
        action="document.export_pdf",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        metadata={"filename": filename, "sha256": sha256, "size_bytes": size, "version": doc.version},
    )
    return pdf_bytes, filename
