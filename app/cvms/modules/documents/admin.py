from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, jsonify, request, send_file

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.audit import record_event
from app.cvms.db import db_session
from app.cvms.modules.companies.service import document_type_codes
from app.cvms.modules.documents.models import Document, DocumentVersion
from app.cvms.modules.documents.service import (
    approve_document,
    compare_versions,
    create_document,
    delete_document,
    document_pdf,
    document_stats,
    document_to_dict,
    generate_from_template,
    list_documents,
    reject_document,
    submit_document,
    update_document,
    upload_document_file,
    validate_document_payload,
    version_to_dict,
)
from app.cvms.modules.projects.models import ValidationProject
from app.cvms.modules.systems.models import System
from app.cvms.modules.templates.models import DocumentTemplate
from app.cvms.rbac import require_permission
from app.cvms.storage import storage_from_config
from app.cvms.tenancy import current_company, current_company_id, get_scoped_optional, get_scoped_or_404

bp = Blueprint("documents", __name__)


@bp.get("")
@require_permission("documents.view")
def documents_list():
    s = db_session()
    filters = {
        "q": request.args.get("q"),
        "document_type": (request.args.get("document_type") or "").strip(),
        "status": (request.args.get("status") or "").strip(),
        "system_id": request.args.get("system_id", type=int),
        "project_id": request.args.get("project_id", type=int),
    }
    docs = list_documents(s, current_company_id(), filters)
    return jsonify({"documents": [document_to_dict(d, with_content=False) for d in docs]})


@bp.get("/stats")
@require_permission("documents.view")
def documents_stats():
    s = db_session()
    return jsonify(document_stats(s, current_company_id()))


@bp.post("")
@require_permission("documents.edit")
def documents_create():
    s = db_session()
    company_id = current_company_id()
    payload = request_payload()
    errors = validate_document_payload(s, company_id, payload, document_types=document_type_codes(current_company()))
    if errors:
        return errors_response(errors)
    doc = create_document(s, company_id, payload, current_user())
    s.commit()
    return jsonify({"document": document_to_dict(doc)}), 201


@bp.post("/generate")
@require_permission("documents.edit")
def documents_generate():
    """Create a draft document from a template, a system and/or project and manual placeholder values."""
    s = db_session()
    payload = request_payload()
    template = get_scoped_optional(s, DocumentTemplate, payload.get("template_id"))
    if template is None:
        return error_response("template_id is required.", 400)
    values = payload.get("values")
    doc = generate_from_template(
        s,
        current_company_id(),
        template,
        current_user(),
        system=get_scoped_optional(s, System, payload.get("system_id")),
        project=get_scoped_optional(s, ValidationProject, payload.get("project_id")),
        company=current_company(),
        manual_values=values if isinstance(values, dict) else None,
        title=payload.get("title"),
    )
    s.commit()
    return jsonify({"document": document_to_dict(doc)}), 201


@bp.get("/<int:document_id>")
@require_permission("documents.view")
def documents_detail(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    data = document_to_dict(doc)
    data["versions"] = [version_to_dict(v) for v in doc.versions]
    return jsonify({"document": data})


@bp.post("/<int:document_id>")
@require_permission("documents.edit")
def documents_update(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    payload = request_payload()
    errors = validate_document_payload(
        s, doc.company_id, payload, partial=True, document_types=document_type_codes(current_company())
    )
    if errors:
        return errors_response(errors)
    update_document(
        s,
        doc,
        payload,
        current_user(),
        change_summary=(str(payload.get("change_summary") or "")).strip() or None,
        reason=reason_from(payload),
    )
    s.commit()
    return jsonify({"document": document_to_dict(doc)})


@bp.post("/<int:document_id>/delete")
@require_permission("documents.edit")
def documents_delete(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    delete_document(s, doc, current_user(), reason=reason_from(request_payload()), app_config=current_app.config)
    s.commit()
    return jsonify({"ok": True})


@bp.post("/<int:document_id>/submit")
@require_permission("documents.edit")
def documents_submit(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    submit_document(s, doc, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"document": document_to_dict(doc)})


@bp.post("/<int:document_id>/approve")
@require_permission("documents.approve")
def documents_approve(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    approve_document(s, doc, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"document": document_to_dict(doc)})


@bp.post("/<int:document_id>/reject")
@require_permission("documents.approve")
def documents_reject(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    reject_document(s, doc, current_user(), reason=reason_from(request_payload()))
    s.commit()
    return jsonify({"document": document_to_dict(doc)})


@bp.get("/<int:document_id>/versions")
@require_permission("documents.view")
def documents_versions(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    return jsonify({"versions": [version_to_dict(v) for v in doc.versions]})


@bp.get("/<int:document_id>/compare")
@require_permission("documents.view")
def documents_compare(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    try:
        result = compare_versions(doc, request.args.get("from"), request.args.get("to", "current"))
    except LookupError as e:
        return error_response(str(e), 404)
    return jsonify(result)


@bp.get("/<int:document_id>/pdf")
@require_permission("documents.view")
def documents_pdf(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    pdf_bytes, filename = document_pdf(s, doc, current_user(), footer_text=current_app.config.get("PDF_FOOTER_TEXT", ""))
    s.commit()
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.post("/<int:document_id>/file")
@require_permission("documents.edit")
def documents_upload(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    f = request.files.get("file")
    if not f or not f.filename:
        return error_response("A file is required.", 400)
    upload_document_file(
        s,
        doc,
        current_user(),
        file_bytes=f.read(),
        filename=f.filename,
        content_type=f.mimetype,
        app_config=current_app.config,
    )
    s.commit()
    return jsonify({"document": document_to_dict(doc)})


@bp.get("/<int:document_id>/file")
@require_permission("documents.view")
def documents_download(document_id: int):
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    if not doc.storage_key:
        return error_response("This document has no stored file.", 404)
    fobj = storage_from_config(current_app.config).open(doc.storage_key)
    record_event(
        s,
        actor=current_user(),
        action="document.download",
        entity_type="Document",
        entity_id=str(doc.id),
        company_id=doc.company_id,
        metadata={"storage_key": doc.storage_key},
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=doc.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=doc.filename or "document.bin",
        max_age=0,
    )


@bp.get("/<int:document_id>/versions/<int:version_id>/file")
@require_permission("documents.view")
def documents_version_download(document_id: int, version_id: int):
    """The file as it was stored when the version was snapshotted."""
    s = db_session()
    doc = get_scoped_or_404(s, Document, document_id)
    version = s.get(DocumentVersion, version_id)
    if version is None or version.document_id != doc.id:
        abort(404)
    if not version.storage_key:
        return error_response("This version has no stored file.", 404)
    fobj = storage_from_config(current_app.config).open(version.storage_key)
    record_event(
        s,
        actor=current_user(),
        action="document_version.download",
        entity_type="DocumentVersion",
        entity_id=str(version.id),
        company_id=doc.company_id,
        metadata={"document_id": doc.id, "version": version.version, "storage_key": version.storage_key},
    )
    s.commit()
    # mimetype is guessed from the stored filename
    return send_file(fobj, as_attachment=True, download_name=version.filename or "document.bin", max_age=0)
