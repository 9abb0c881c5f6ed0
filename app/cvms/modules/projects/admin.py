from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.db import db_session
from app.cvms.modules.companies.service import document_type_codes
from app.cvms.modules.documents.models import Document
from app.cvms.modules.projects.models import ProjectDeliverable, ProjectTask, ValidationProject
from app.cvms.modules.projects.service import (
    WORK_TEMPLATE_KINDS,
    apply_deliverable_templates,
    apply_task_templates,
    approve_project,
    complete_project,
    create_deliverable,
    create_project,
    create_task,
    create_work_template,
    delete_deliverable,
    delete_project,
    delete_task,
    delete_work_template,
    deliverable_to_dict,
    link_document,
    list_projects,
    list_work_templates,
    project_overview,
    project_to_dict,
    refresh_progress,
    reject_project,
    submit_project,
    task_to_dict,
    update_deliverable,
    update_project,
    update_task,
    update_work_template,
    validate_deliverable_payload,
    validate_project_payload,
    validate_task_payload,
    validate_work_template_payload,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company, current_company_id, get_scoped_optional, get_scoped_or_404
from app.cvms.utils import WorkflowError

bp = Blueprint("projects", __name__)


# ---------- Projects ----------
@bp.get("")
@require_permission("projects.view")
def projects_list():
    s = db_session()
    filters = {
        "q": request.args.get("q"),
        "status": (request.args.get("status") or "").strip(),
        "system_id": request.args.get("system_id", type=int),
    }
    return jsonify({"projects": [project_to_dict(p) for p in list_projects(s, current_company_id(), filters)]})


@bp.post("")
@require_permission("projects.edit")
def projects_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_project_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    project = create_project(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"project": project_to_dict(project)}), 201


@bp.get("/<int:project_id>")
@require_permission("projects.view")
def projects_detail(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    return jsonify({"project": project_overview(project)})


@bp.post("/<int:project_id>")
@require_permission("projects.edit")
def projects_update(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    payload = request_payload()
    errors = validate_project_payload(s, project.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_project(s, project, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/delete")
@require_permission("projects.edit")
def projects_delete(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    delete_project(s, project, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


@bp.post("/<int:project_id>/submit")
@require_permission("projects.edit")
def projects_submit(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    submit_project(s, project, current_user())
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/approve")
@require_permission("projects.approve")
def projects_approve(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    approve_project(s, project, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/reject")
@require_permission("projects.approve")
def projects_reject(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    try:
        reject_project(s, project, current_user(), reason_from(request_payload()))
    except WorkflowError:
        raise
    except ValueError as e:
        return error_response(str(e), 400)
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/complete")
@require_permission("projects.edit")
def projects_complete(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    complete_project(s, project, current_user())
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/progress")
@require_permission("projects.edit")
def projects_recalculate_progress(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    refresh_progress(project)
    s.commit()
    return jsonify({"project": project_to_dict(project)})


@bp.post("/<int:project_id>/apply-templates")
@require_permission("projects.edit")
def projects_apply_templates(project_id: int):
    """Copy the deliverable or task templates of a GAMP category into the project."""
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    payload = request_payload()
    kind = (str(payload.get("kind") or "")).strip()
    gamp_category = (str(payload.get("gamp_category") or "")).strip()
    if kind not in WORK_TEMPLATE_KINDS:
        return error_response("kind must be one of: deliverable, task", 400)
    try:
        if kind == "deliverable":
            created = [deliverable_to_dict(d) for d in apply_deliverable_templates(s, project, gamp_category, current_user())]
        else:
            created = [task_to_dict(t) for t in apply_task_templates(s, project, gamp_category, current_user())]
    except ValueError as e:
        return error_response(str(e), 400)
    s.commit()
    return jsonify({"created": created}), 201


# ---------- Deliverables ----------
@bp.get("/<int:project_id>/deliverables")
@require_permission("projects.view")
def deliverables_list(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    return jsonify({"deliverables": [deliverable_to_dict(d) for d in project.deliverables]})


@bp.post("/<int:project_id>/deliverables")
@require_permission("projects.edit")
def deliverables_create(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    payload = request_payload()
    errors = validate_deliverable_payload(payload, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    d = create_deliverable(s, project, payload, current_user())
    s.commit()
    return jsonify({"deliverable": deliverable_to_dict(d)}), 201


@bp.post("/deliverables/<int:deliverable_id>")
@require_permission("projects.edit")
def deliverables_update(deliverable_id: int):
    s = db_session()
    d = get_scoped_or_404(s, ProjectDeliverable, deliverable_id)
    payload = request_payload()
    errors = validate_deliverable_payload(payload, partial=True, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    update_deliverable(s, d, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"deliverable": deliverable_to_dict(d)})


@bp.post("/deliverables/<int:deliverable_id>/document")
@require_permission("projects.edit")
def deliverables_link_document(deliverable_id: int):
    """Link (document_id) or unlink (empty document_id) the deliverable's document."""
    s = db_session()
    d = get_scoped_or_404(s, ProjectDeliverable, deliverable_id)
    document = get_scoped_optional(s, Document, request_payload().get("document_id"))
    link_document(s, d, document, current_user())
    s.commit()
    return jsonify({"deliverable": deliverable_to_dict(d)})


@bp.post("/deliverables/<int:deliverable_id>/delete")
@require_permission("projects.edit")
def deliverables_delete(deliverable_id: int):
    s = db_session()
    d = get_scoped_or_404(s, ProjectDeliverable, deliverable_id)
    delete_deliverable(s, d, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


# ---------- Tasks ----------
@bp.get("/<int:project_id>/tasks")
@require_permission("projects.view")
def tasks_list(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    return jsonify({"tasks": [task_to_dict(t) for t in project.tasks]})


@bp.post("/<int:project_id>/tasks")
@require_permission("projects.edit")
def tasks_create(project_id: int):
    s = db_session()
    project = get_scoped_or_404(s, ValidationProject, project_id)
    payload = request_payload()
    errors = validate_task_payload(s, project.company_id, payload)
    if errors:
        return errors_response(errors)
    t = create_task(s, project, payload, current_user())
    s.commit()
    return jsonify({"task": task_to_dict(t)}), 201


@bp.post("/tasks/<int:task_id>")
@require_permission("projects.edit")
def tasks_update(task_id: int):
    s = db_session()
    t = get_scoped_or_404(s, ProjectTask, task_id)
    payload = request_payload()
    errors = validate_task_payload(s, t.company_id, payload, partial=True)
    if errors:
        return errors_response(errors)
    update_task(s, t, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"task": task_to_dict(t)})


@bp.post("/tasks/<int:task_id>/delete")
@require_permission("projects.edit")
def tasks_delete(task_id: int):
    s = db_session()
    t = get_scoped_or_404(s, ProjectTask, task_id)
    delete_task(s, t, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


# ---------- Deliverable / task templates ----------
def _kind_or_404(kind: str):
    if kind not in WORK_TEMPLATE_KINDS:
        abort(404)
    return WORK_TEMPLATE_KINDS[kind]


@bp.get("/templates/<kind>")
@require_permission("projects.view")
def work_templates_list(kind: str):
    _, _, to_dict = _kind_or_404(kind)
    s = db_session()
    gamp = (request.args.get("gamp_category") or "").strip() or None
    return jsonify({"templates": [to_dict(t) for t in list_work_templates(s, kind, current_company_id(), gamp)]})


@bp.post("/templates/<kind>")
@require_permission("projects.edit")
def work_templates_create(kind: str):
    _, _, to_dict = _kind_or_404(kind)
    s = db_session()
    payload = request_payload()
    errors = validate_work_template_payload(payload, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    t = create_work_template(s, kind, current_company_id(), payload, current_user())
    s.commit()
    return jsonify({"template": to_dict(t)}), 201


@bp.post("/templates/<kind>/<int:template_id>")
@require_permission("projects.edit")
def work_templates_update(kind: str, template_id: int):
    model, _, to_dict = _kind_or_404(kind)
    s = db_session()
    t = get_scoped_or_404(s, model, template_id)
    payload = request_payload()
    errors = validate_work_template_payload(
        payload, partial=True, document_types=document_type_codes(current_company())
    )
    if errors:
        return errors_response(errors)
    update_work_template(s, kind, t, payload, current_user())
    s.commit()
    return jsonify({"template": to_dict(t)})


@bp.post("/templates/<kind>/<int:template_id>/delete")
@require_permission("projects.edit")
def work_templates_delete(kind: str, template_id: int):
    model, _, _ = _kind_or_404(kind)
    s = db_session()
    t = get_scoped_or_404(s, model, template_id)
    delete_work_template(s, kind, t, current_user())
    s.commit()
    return jsonify({"ok": True})
