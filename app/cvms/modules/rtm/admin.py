from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.audit import record_event
from app.cvms.db import db_session
from app.cvms.modules.rtm.models import Requirement, RTMLink, TestCase, TestEvidence
from app.cvms.modules.rtm.service import (
    add_test_evidence,
    case_to_dict,
    coverage_dashboard,
    create_link,
    create_requirement,
    create_test_case,
    delete_link,
    delete_requirement,
    delete_test_case,
    delete_test_evidence,
    evidence_to_dict,
    export_rtm_csv,
    link_to_dict,
    list_links,
    list_requirements,
    list_test_cases,
    record_test_execution,
    requirement_to_dict,
    update_requirement,
    update_test_case,
    validate_evidence_payload,
    validate_requirement_payload,
    validate_test_case_payload,
)
from app.cvms.rbac import require_permission
from app.cvms.storage import storage_from_config
from app.cvms.tenancy import current_company_id, get_scoped_optional, get_scoped_or_404
from app.cvms.utils import utcnow

bp = Blueprint("rtm", __name__)


def _filters(*keys: str) -> dict:
    out: dict = {"q": request.args.get("q")}
    for key in keys:
        if key.endswith("_id"):
            out[key] = request.args.get(key, type=int)
        else:
            out[key] = (request.args.get(key) or "").strip()
    return out


# ---------- Requirements ----------
@bp.get("/requirements")
@require_permission("rtm.view")
def requirements_list():
    s = db_session()
    reqs = list_requirements(s, current_company_id(), _filters("type", "priority", "status", "system_id", "project_id"))
    return jsonify({"requirements": [requirement_to_dict(r) for r in reqs]})


@bp.post("/requirements")
@require_permission("rtm.edit")
def requirements_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_requirement_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    req = create_requirement(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"requirement": requirement_to_dict(req)}), 201


@bp.get("/requirements/<int:requirement_id>")
@require_permission("rtm.view")
def requirements_detail(requirement_id: int):
    s = db_session()
    req = get_scoped_or_404(s, Requirement, requirement_id)
    return jsonify({"requirement": requirement_to_dict(req)})


@bp.post("/requirements/<int:requirement_id>")
@require_permission("rtm.edit")
def requirements_update(requirement_id: int):
    s = db_session()
    req = get_scoped_or_404(s, Requirement, requirement_id)
    payload = request_payload()
    errors = validate_requirement_payload(s, req.company_id, payload, partial=True, exclude_id=req.id)
    if errors:
        return errors_response(errors)
    update_requirement(s, req, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"requirement": requirement_to_dict(req)})


@bp.post("/requirements/<int:requirement_id>/delete")
@require_permission("rtm.edit")
def requirements_delete(requirement_id: int):
    s = db_session()
    req = get_scoped_or_404(s, Requirement, requirement_id)
    delete_requirement(s, req, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


# ---------- Test cases ----------
@bp.get("/test-cases")
@require_permission("rtm.view")
def test_cases_list():
    s = db_session()
    cases = list_test_cases(s, current_company_id(), _filters("status", "result", "system_id", "project_id"))
    return jsonify({"test_cases": [case_to_dict(tc) for tc in cases]})


@bp.post("/test-cases")
@require_permission("rtm.edit")
def test_cases_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_test_case_payload(s, company_id, payload)
    if errors:
        return errors_response(errors)
    tc = create_test_case(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"test_case": case_to_dict(tc)}), 201


@bp.get("/test-cases/<int:test_case_id>")
@require_permission("rtm.view")
def test_cases_detail(test_case_id: int):
    s = db_session()
    tc = get_scoped_or_404(s, TestCase, test_case_id)
    data = case_to_dict(tc)
    data["evidence"] = [evidence_to_dict(ev) for ev in tc.evidence]
    return jsonify({"test_case": data})


@bp.post("/test-cases/<int:test_case_id>")
@require_permission("rtm.edit")
def test_cases_update(test_case_id: int):
    s = db_session()
    tc = get_scoped_or_404(s, TestCase, test_case_id)
    payload = request_payload()
    errors = validate_test_case_payload(s, tc.company_id, payload, partial=True, exclude_id=tc.id)
    if errors:
        return errors_response(errors)
    update_test_case(s, tc, payload, current_user(), reason=reason_from(payload))
    s.commit()
    return jsonify({"test_case": case_to_dict(tc)})


@bp.post("/test-cases/<int:test_case_id>/execute")
@require_permission("rtm.edit")
def test_cases_execute(test_case_id: int):
    s = db_session()
    tc = get_scoped_or_404(s, TestCase, test_case_id)
    payload = request_payload()
    try:
        record_test_execution(s, tc, (str(payload.get("result") or "")).strip(), current_user(), reason_from(payload))
    except ValueError as e:
        return error_response(str(e), 400)
    s.commit()
    return jsonify({"test_case": case_to_dict(tc)})


@bp.post("/test-cases/<int:test_case_id>/delete")
@require_permission("rtm.edit")
def test_cases_delete(test_case_id: int):
    s = db_session()
    tc = get_scoped_or_404(s, TestCase, test_case_id)
    delete_test_case(s, tc, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"ok": True})


# ---------- Evidence ----------
@bp.post("/test-cases/<int:test_case_id>/evidence")
@require_permission("rtm.edit")
def evidence_create(test_case_id: int):
    s = db_session()
    tc = get_scoped_or_404(s, TestCase, test_case_id)
    payload = request_payload()
    errors = validate_evidence_payload(payload)
    if errors:
        return errors_response(errors)

    f = request.files.get("file")
    file_kwargs: dict = {}
    if f and f.filename:
        file_kwargs = {
            "file_bytes": f.read(),
            "filename": f.filename,
            "content_type": f.mimetype or "application/octet-stream",
        }
    ev = add_test_evidence(s, tc, payload, current_user(), app_config=current_app.config, **file_kwargs)
    s.commit()
    return jsonify({"evidence": evidence_to_dict(ev)}), 201


@bp.get("/evidence/<int:evidence_id>/download")
@require_permission("rtm.view")
def evidence_download(evidence_id: int):
    s = db_session()
    ev = get_scoped_or_404(s, TestEvidence, evidence_id)
    if not ev.storage_key:
        return error_response("This evidence has no stored file.", 404)
    fobj = storage_from_config(current_app.config).open(ev.storage_key)
    record_event(
        s,
        actor=current_user(),
        action="test_evidence.download",
        entity_type="TestEvidence",
        entity_id=str(ev.id),
        company_id=ev.company_id,
        metadata={"storage_key": ev.storage_key},
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=ev.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=ev.original_filename or "evidence.bin",
        max_age=0,
    )


@bp.post("/evidence/<int:evidence_id>/delete")
@require_permission("rtm.edit")
def evidence_delete(evidence_id: int):
    s = db_session()
    ev = get_scoped_or_404(s, TestEvidence, evidence_id)
    delete_test_evidence(s, ev, current_user(), app_config=current_app.config)
    s.commit()
    return jsonify({"ok": True})


# ---------- Links ----------
@bp.get("/links")
@require_permission("rtm.view")
def links_list():
    s = db_session()
    return jsonify({"links": [link_to_dict(lk) for lk in list_links(s, current_company_id())]})


@bp.post("/links")
@require_permission("rtm.edit")
def links_create():
    s = db_session()
    payload = request_payload()
    req = get_scoped_optional(s, Requirement, payload.get("requirement_id"))
    tc = get_scoped_optional(s, TestCase, payload.get("test_case_id"))
    if req is None or tc is None:
        return error_response("requirement_id and test_case_id are required.", 400)
    link = create_link(s, req, tc, current_user())
    s.commit()
    return jsonify({"link": link_to_dict(link)}), 201


@bp.post("/links/<int:link_id>/delete")
@require_permission("rtm.edit")
def links_delete(link_id: int):
    s = db_session()
    link = get_scoped_or_404(s, RTMLink, link_id)
    delete_link(s, link, current_user())
    s.commit()
    return jsonify({"ok": True})


# ---------- Coverage / export ----------
@bp.get("/coverage")
@require_permission("rtm.view")
def coverage():
    s = db_session()
    return jsonify(coverage_dashboard(s, current_company_id()))


@bp.get("/export.csv")
@require_permission("rtm.view")
def export_csv():
    s = db_session()
    csv_bytes = export_rtm_csv(s, current_company_id(), current_user())
    s.commit()
    filename = f"rtm_{utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        csv_bytes,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
