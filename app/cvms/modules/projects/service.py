from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import (
    DOCUMENT_TYPES,
    GAMP_CATEGORIES,
    PRIORITIES,
    TASK_STATUSES,
    WORK_ITEM_STATUSES,
)
from app.cvms.modules.projects.models import (
    DeliverableTemplate,
    ProjectDeliverable,
    ProjectTask,
    TaskTemplate,
    ValidationProject,
)
from app.cvms.modules.systems.models import System
from app.cvms.tenancy import validate_member_refs, validate_scoped_ref
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    apply_changes,
    model_to_dict,
    optional_text,
    parse_bool,
    parse_date,
    parse_float,
    parse_int,
    percentage,
    utcnow,
    validate_choice,
    validate_date_field,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.cvms.models import User
    from app.cvms.modules.documents.models import Document

# E-mail delivery is out of scope; status notifications go to this logger.
notify_logger = logging.getLogger("projects.notify")

NO_TEMPLATES_MESSAGE = "No templates found for this category"

PROJECT_FIELDS = (
    "id",
    "company_id",
    "name",
    "description",
    "project_type",
    "system_id",
    "manager_id",
    "status",
    "progress",
    "start_date",
    "target_date",
    "completion_date",
    "approved_by_user_id",
    "approved_at",
    "rejection_reason",
    "created_by_user_id",
    "created_at",
    "updated_at",
)

DELIVERABLE_FIELDS = (
    "id",
    "project_id",
    "name",
    "description",
    "document_type",
    "is_mandatory",
    "status",
    "document_id",
    "due_date",
    "completed_at",
    "sort_order",
    "created_at",
    "updated_at",
)

TASK_FIELDS = (
    "id",
    "project_id",
    "name",
    "description",
    "phase",
    "status",
    "priority",
    "assigned_to",
    "estimated_hours",
    "actual_hours",
    "due_date",
    "completed_at",
    "sort_order",
    "created_at",
    "updated_at",
)

DELIVERABLE_TEMPLATE_FIELDS = (
    "id",
    "gamp_category",
    "name",
    "description",
    "document_type",
    "is_mandatory",
    "sort_order",
)

TASK_TEMPLATE_FIELDS = ("id", "gamp_category", "name", "description", "phase", "estimated_hours", "sort_order")


def project_to_dict(p: ValidationProject) -> dict:
    data = model_to_dict(p, PROJECT_FIELDS)
    data["system_name"] = p.system.name if p.system else None
    data["deliverable_count"] = len(p.deliverables)
    data["task_count"] = len(p.tasks)
    return data


def deliverable_to_dict(d: ProjectDeliverable) -> dict:
    return model_to_dict(d, DELIVERABLE_FIELDS)


def task_to_dict(t: ProjectTask) -> dict:
    return model_to_dict(t, TASK_FIELDS)


def deliverable_template_to_dict(t: DeliverableTemplate) -> dict:
    return model_to_dict(t, DELIVERABLE_TEMPLATE_FIELDS)


def task_template_to_dict(t: TaskTemplate) -> dict:
    return model_to_dict(t, TASK_TEMPLATE_FIELDS)


def _validate_progress(payload: dict, errors: list[ValidationError]) -> None:
    if "progress" not in payload:
        return
    try:
        value = parse_int(payload.get("progress"))
    except ValueError:
        value = -1
    if value is not None and not 0 <= value <= 100:
        errors.append(ValidationError("progress", "progress must be an integer between 0 and 100."))


def _validate_hours(payload: dict, fields: tuple[str, ...], errors: list[ValidationError]) -> None:
    for field in fields:
        try:
            value = parse_float(payload.get(field))
        except ValueError:
            errors.append(ValidationError(field, f"{field} must be a number."))
            continue
        if value is not None and value < 0:
            errors.append(ValidationError(field, f"{field} cannot be negative."))


# ---------- Projects ----------
_PROJECT_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "project_type": optional_text,
    "system_id": parse_int,
    "manager_id": parse_int,
    "progress": lambda v: parse_int(v) or 0,
    "start_date": parse_date,
    "target_date": parse_date,
}


def validate_project_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    _validate_progress(payload, errors)
    validate_date_field(errors, payload, "start_date")
    validate_date_field(errors, payload, "target_date")
    validate_scoped_ref(s, System, company_id, payload, "system_id", errors)
    validate_member_refs(s, company_id, payload, ("manager_id",), errors)
    return errors


def create_project(s: "Session", company_id: int, payload: dict, user: "User") -> ValidationProject:
    now = utcnow()
    project = ValidationProject(
        company_id=company_id,
        status="draft",
        progress=0,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    apply_changes(project, payload, _PROJECT_CONVERTERS)
    s.add(project)
    s.flush()
    record_event(
        s,
        actor=user,
        action="project.create",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=company_id,
        metadata={"name": project.name, "system_id": project.system_id},
    )
    return project


def update_project(
    s: "Session", project: ValidationProject, payload: dict, user: "User", reason: str | None = None
) -> ValidationProject:
    """Field edits only; status moves through the workflow functions below."""
    changes = apply_changes(project, payload, _PROJECT_CONVERTERS)
    project.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="project.update",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=project.company_id,
        reason=reason,
        metadata={"name": project.name, "changes": changes},
    )
    return project


def delete_project(s: "Session", project: ValidationProject, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="project.delete",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=project.company_id,
        reason=reason,
        metadata={"name": project.name, "status": project.status},
    )
    s.delete(project)


def list_projects(s: "Session", company_id: int, filters: dict | None = None) -> list[ValidationProject]:
    filters = filters or {}
    q = s.query(ValidationProject).filter(ValidationProject.company_id == company_id)
    if filters.get("status"):
        q = q.filter(ValidationProject.status == filters["status"])
    if filters.get("system_id"):
        q = q.filter(ValidationProject.system_id == filters["system_id"])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(ValidationProject.name.ilike(like), ValidationProject.description.ilike(like)))
    return q.order_by(ValidationProject.created_at.desc(), ValidationProject.id.desc()).all()


# ---------- Workflow ----------
def _notify(project: ValidationProject, event: str, user: "User", reason: str | None = None) -> None:
    notify_logger.info(
        "project=%s name=%r event=%s by=%s manager_id=%s reason=%r",
        project.id,
        project.name,
        event,
        user.email,
        project.manager_id,
        reason,
    )


def _transition(
    s: "Session",
    project: ValidationProject,
    user: "User",
    *,
    allowed_from: tuple[str, ...],
    to_status: str,
    event: str,
    reason: str | None = None,
) -> ValidationProject:
    if project.status not in allowed_from:
        raise WorkflowError(
            f"Cannot {event} a project in status {project.status!r} (allowed from: {', '.join(allowed_from)})."
        )
    old = project.status
    project.status = to_status
    project.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action=f"project.{event}",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=project.company_id,
        reason=reason,
        metadata={"name": project.name, "before": {"status": old}, "after": {"status": to_status}},
    )
    _notify(project, event, user, reason)
    return project


def submit_project(s: "Session", project: ValidationProject, user: "User") -> ValidationProject:
    return _transition(s, project, user, allowed_from=("draft", "rejected"), to_status="pending", event="submit")


def approve_project(s: "Session", project: ValidationProject, user: "User", reason: str | None = None) -> ValidationProject:
    _transition(s, project, user, allowed_from=("pending",), to_status="approved", event="approve", reason=reason)
    project.approved_by_user_id = user.id
    project.approved_at = utcnow()
    project.rejection_reason = None
    return project


def reject_project(s: "Session", project: ValidationProject, user: "User", reason: str | None) -> ValidationProject:
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A rejection reason is required.")
    _transition(s, project, user, allowed_from=("pending",), to_status="rejected", event="reject", reason=reason)
    project.approved_by_user_id = user.id
    project.approved_at = utcnow()
    project.rejection_reason = reason
    return project


def complete_project(s: "Session", project: ValidationProject, user: "User") -> ValidationProject:
    _transition(s, project, user, allowed_from=("approved",), to_status="completed", event="complete")
    project.progress = 100
    project.completion_date = utcnow().date()
    return project


# ---------- Progress ----------
def project_progress(project: ValidationProject) -> int:
    items = [t.status for t in project.tasks] + [d.status for d in project.deliverables]
    done = sum(1 for status in items if status == "completed")
    return percentage(done, len(items))


def refresh_progress(project: ValidationProject) -> int:
    """Recompute progress from tasks and deliverables (completed projects stay at 100)."""
    if project.status != "completed":
        project.progress = project_progress(project)
    return project.progress


# ---------- Deliverables ----------
_DELIVERABLE_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "document_type": optional_text,
    "is_mandatory": lambda v: parse_bool(v, default=True),
    "due_date": parse_date,
    "sort_order": lambda v: parse_int(v) or 0,
}


def validate_deliverable_payload(
    payload: dict, *, partial: bool = False, document_types: Iterable[str] = DOCUMENT_TYPES
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    validate_choice(errors, "document_type", optional_text(payload.get("document_type")), document_types)
    validate_choice(errors, "status", optional_text(payload.get("status")), WORK_ITEM_STATUSES)
    validate_date_field(errors, payload, "due_date")
    return errors


def _next_sort_order(items: list[Any]) -> int:
    return max((i.sort_order for i in items), default=-1) + 1


def _stamp_completion(item: ProjectDeliverable | ProjectTask, status: str | None) -> dict[str, Any]:
    """Status completed stamps completed_at when absent; any other status clears it."""
    if not status or status == item.status:
        return {}
    old_status = item.status
    item.status = status
    if status == "completed":
        item.completed_at = item.completed_at or utcnow()
    else:
        item.completed_at = None
    return {"status": {"old": old_status, "new": status}}


def create_deliverable(s: "Session", project: ValidationProject, payload: dict, user: "User") -> ProjectDeliverable:
    now = utcnow()
    d = ProjectDeliverable(
        company_id=project.company_id,
        project_id=project.id,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    apply_changes(d, {"is_mandatory": None, **payload}, _DELIVERABLE_CONVERTERS)
    if "sort_order" not in payload:
        d.sort_order = _next_sort_order(project.deliverables)
    _stamp_completion(d, optional_text(payload.get("status")))
    project.deliverables.append(d)
    s.flush()
    refresh_progress(project)
    record_event(
        s,
        actor=user,
        action="deliverable.create",
        entity_type="ProjectDeliverable",
        entity_id=str(d.id),
        company_id=project.company_id,
        metadata={"project_id": project.id, "name": d.name},
    )
    return d


def update_deliverable(
    s: "Session", d: ProjectDeliverable, payload: dict, user: "User", reason: str | None = None
) -> ProjectDeliverable:
    changes = apply_changes(d, payload, _DELIVERABLE_CONVERTERS)
    changes.update(_stamp_completion(d, optional_text(payload.get("status"))))
    d.updated_at = utcnow()
    refresh_progress(d.project)
    record_event(
        s,
        actor=user,
        action="deliverable.update",
        entity_type="ProjectDeliverable",
        entity_id=str(d.id),
        company_id=d.company_id,
        reason=reason,
        metadata={"project_id": d.project_id, "name": d.name, "changes": changes},
    )
    return d


def link_document(
    s: "Session", d: ProjectDeliverable, document: "Document | None", user: "User"
) -> ProjectDeliverable:
    """Linking a document completes the deliverable; unlinking puts it back to pending."""
    old = {"document_id": d.document_id, "status": d.status}
    if document is not None:
        d.document_id = document.id
        d.status = "completed"
        d.completed_at = utcnow()
    else:
        d.document_id = None
        d.status = "pending"
        d.completed_at = None
    d.updated_at = utcnow()
    refresh_progress(d.project)
    record_event(
        s,
        actor=user,
        action="deliverable.link_document" if document is not None else "deliverable.unlink_document",
        entity_type="ProjectDeliverable",
        entity_id=str(d.id),
        company_id=d.company_id,
        metadata={"before": old, "after": {"document_id": d.document_id, "status": d.status}},
    )
    return d


def delete_deliverable(s: "Session", d: ProjectDeliverable, user: "User", reason: str | None = None) -> None:
    project = d.project
    record_event(
        s,
        actor=user,
        action="deliverable.delete",
        entity_type="ProjectDeliverable",
        entity_id=str(d.id),
        company_id=d.company_id,
        reason=reason,
        metadata={"project_id": d.project_id, "name": d.name},
    )
    project.deliverables.remove(d)
    s.delete(d)
    refresh_progress(project)


# ---------- Tasks ----------
_TASK_CONVERTERS = {
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "phase": optional_text,
    "priority": lambda v: optional_text(v) or "medium",
    "assigned_to": parse_int,
    "estimated_hours": parse_float,
    "actual_hours": parse_float,
    "due_date": parse_date,
    "sort_order": lambda v: parse_int(v) or 0,
}


def validate_task_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "name" in payload:
        if not (str(payload.get("name") or "")).strip():
            errors.append(ValidationError("name", "Name is required."))
    validate_choice(errors, "status", optional_text(payload.get("status")), TASK_STATUSES)
    validate_choice(errors, "priority", optional_text(payload.get("priority")), PRIORITIES)
    validate_date_field(errors, payload, "due_date")
    _validate_hours(payload, ("estimated_hours", "actual_hours"), errors)
    validate_member_refs(s, company_id, payload, ("assigned_to",), errors)
    return errors


def create_task(s: "Session", project: ValidationProject, payload: dict, user: "User") -> ProjectTask:
    now = utcnow()
    t = ProjectTask(
        company_id=project.company_id,
        project_id=project.id,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    apply_changes(t, {"priority": None, **payload}, _TASK_CONVERTERS)
    if "sort_order" not in payload:
        t.sort_order = _next_sort_order(project.tasks)
    _stamp_completion(t, optional_text(payload.get("status")))
    project.tasks.append(t)
    s.flush()
    refresh_progress(project)
    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="ProjectTask",
        entity_id=str(t.id),
        company_id=project.company_id,
        metadata={"project_id": project.id, "name": t.name},
    )
    return t


def update_task(s: "Session", t: ProjectTask, payload: dict, user: "User", reason: str | None = None) -> ProjectTask:
    changes = apply_changes(t, payload, _TASK_CONVERTERS)
    changes.update(_stamp_completion(t, optional_text(payload.get("status"))))
    t.updated_at = utcnow()
    refresh_progress(t.project)
    record_event(
        s,
        actor=user,
        action="task.update",
        entity_type="ProjectTask",
        entity_id=str(t.id),
        company_id=t.company_id,
        reason=reason,
        metadata={"project_id": t.project_id, "name": t.name, "changes": changes},
    )
    return t


def delete_task(s: "Session", t: ProjectTask, user: "User", reason: str | None = None) -> None:
    project = t.project
    record_event(
        s,
        actor=user,
        action="task.delete",
        entity_type="ProjectTask",
        entity_id=str(t.id),
        company_id=t.company_id,
        reason=reason,
        metadata={"project_id": t.project_id, "name": t.name},
    )
    project.tasks.remove(t)
    s.delete(t)
    refresh_progress(project)


# ---------- Deliverable / task templates ----------
def validate_work_template_payload(
    payload: dict, *, partial: bool = False, document_types: Iterable[str] = DOCUMENT_TYPES
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
    validate_choice(errors, "document_type", optional_text(payload.get("document_type")), document_types)
    _validate_hours(payload, ("estimated_hours",), errors)
    return errors


_DELIVERABLE_TEMPLATE_CONVERTERS = {
    "gamp_category": lambda v: (str(v or "")).strip(),
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "document_type": optional_text,
    "is_mandatory": lambda v: parse_bool(v, default=True),
    "sort_order": lambda v: parse_int(v) or 0,
}

_TASK_TEMPLATE_CONVERTERS = {
    "gamp_category": lambda v: (str(v or "")).strip(),
    "name": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "phase": optional_text,
    "estimated_hours": parse_float,
    "sort_order": lambda v: parse_int(v) or 0,
}

WORK_TEMPLATE_KINDS = {
    "deliverable": (DeliverableTemplate, _DELIVERABLE_TEMPLATE_CONVERTERS, deliverable_template_to_dict),
    "task": (TaskTemplate, _TASK_TEMPLATE_CONVERTERS, task_template_to_dict),
}


def create_work_template(s: "Session", kind: str, company_id: int, payload: dict, user: "User"):
    model, converters, _ = WORK_TEMPLATE_KINDS[kind]
    now = utcnow()
    t = model(company_id=company_id, created_at=now, updated_at=now)
    defaults = {"is_mandatory": None} if kind == "deliverable" else {}
    apply_changes(t, {**defaults, "sort_order": None, **payload}, converters)
    s.add(t)
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{kind}_template.create",
        entity_type=model.__name__,
        entity_id=str(t.id),
        company_id=company_id,
        metadata={"name": t.name, "gamp_category": t.gamp_category},
    )
    return t


def update_work_template(s: "Session", kind: str, t: Any, payload: dict, user: "User"):
    model, converters, _ = WORK_TEMPLATE_KINDS[kind]
    changes = apply_changes(t, payload, converters)
    t.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action=f"{kind}_template.update",
        entity_type=model.__name__,
        entity_id=str(t.id),
        company_id=t.company_id,
        metadata={"name": t.name, "changes": changes},
    )
    return t


def delete_work_template(s: "Session", kind: str, t: Any, user: "User") -> None:
    model, _, _ = WORK_TEMPLATE_KINDS[kind]
    record_event(
        s,
        actor=user,
        action=f"{kind}_template.delete",
        entity_type=model.__name__,
        entity_id=str(t.id),
        company_id=t.company_id,
        metadata={"name": t.name, "gamp_category": t.gamp_category},
    )
    s.delete(t)


def list_work_templates(s: "Session", kind: str, company_id: int, gamp_category: str | None = None) -> list[Any]:
    model, _, _ = WORK_TEMPLATE_KINDS[kind]
    q = s.query(model).filter(model.company_id == company_id)
    if gamp_category:
        q = q.filter(model.gamp_category == gamp_category)
    return q.order_by(model.gamp_category.asc(), model.sort_order.asc(), model.id.asc()).all()


def apply_deliverable_templates(
    s: "Session", project: ValidationProject, gamp_category: str, user: "User"
) -> list[ProjectDeliverable]:
    templates = list_work_templates(s, "deliverable", project.company_id, gamp_category)
    if not templates:
        raise ValueError(NO_TEMPLATES_MESSAGE)
    start = _next_sort_order(project.deliverables)
    now = utcnow()
    created = []
    for index, tpl in enumerate(templates):
        d = ProjectDeliverable(
            company_id=project.company_id,
            project_id=project.id,
            name=tpl.name,
            description=tpl.description,
            document_type=tpl.document_type,
            is_mandatory=tpl.is_mandatory,
            status="pending",
            sort_order=start + index,
            created_at=now,
            updated_at=now,
        )
        project.deliverables.append(d)
        created.append(d)
    s.flush()
    refresh_progress(project)
    record_event(
        s,
        actor=user,
        action="project.apply_deliverable_templates",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=project.company_id,
        metadata={"gamp_category": gamp_category, "created": len(created)},
    )
    return created


def apply_task_templates(s: "Session", project: ValidationProject, gamp_category: str, user: "User") -> list[ProjectTask]:
    templates = list_work_templates(s, "task", project.company_id, gamp_category)
    if not templates:
        raise ValueError(NO_TEMPLATES_MESSAGE)
    start = _next_sort_order(project.tasks)
    now = utcnow()
    created = []
    for index, tpl in enumerate(templates):
        t = ProjectTask(
            company_id=project.company_id,
            project_id=project.id,
            name=tpl.name,
            description=tpl.description,
            phase=tpl.phase,
            estimated_hours=tpl.estimated_hours,
            status="pending",
            priority="medium",
            sort_order=start + index,
            created_at=now,
            updated_at=now,
        )
        project.tasks.append(t)
        created.append(t)
    s.flush()
    refresh_progress(project)
    record_event(
        s,
        actor=user,
        action="project.apply_task_templates",
        entity_type="ValidationProject",
        entity_id=str(project.id),
        company_id=project.company_id,
        metadata={"gamp_category": gamp_category, "created": len(created)},
    )
    return created


def project_overview(project: ValidationProject) -> dict[str, Any]:
    data = project_to_dict(project)
    data["deliverables"] = [deliverable_to_dict(d) for d in project.deliverables]
    data["tasks"] = [task_to_dict(t) for t in project.tasks]
    data["computed_progress"] = project_progress(project)
    return data
