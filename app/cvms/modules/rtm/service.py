from __future__ import annotations

import csv
import io
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.cvms.audit import record_event
from app.cvms.constants import PRIORITIES, REQUIREMENT_TYPES, TEST_RESULTS, TEST_STATUSES
from app.cvms.modules.rtm.coverage import coverage_stats, execution_stats, link_stats
from app.cvms.modules.rtm.models import Requirement, RTMLink, TestCase, TestEvidence
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


REQUIREMENT_FIELDS = (
    "id",
    "code",
    "title",
    "description",
    "type",
    "priority",
    "source",
    "status",
    "system_id",
    "project_id",
    "created_at",
    "updated_at",
)

TEST_CASE_FIELDS = (
    "id",
    "code",
    "title",
    "description",
    "preconditions",
    "steps",
    "expected_results",
    "status",
    "result",
    "executed_at",
    "executed_by_user_id",
    "system_id",
    "project_id",
    "created_at",
    "updated_at",
)

EVIDENCE_FIELDS = (
    "id",
    "test_case_id",
    "title",
    "description",
    "evidence_type",
    "original_filename",
    "content_type",
    "sha256",
    "size_bytes",
    "uploaded_by_user_id",
    "created_at",
)

EXPORT_HEADERS = [
    "Requirement Code",
    "Requirement Title",
    "Type",
    "Priority",
    "Test Case Code",
    "Test Case Title",
    "Test Status",
    "Test Result",
    "Executed At",
]


def requirement_to_dict(r: Requirement) -> dict:
    data = model_to_dict(r, REQUIREMENT_FIELDS)
    data["test_case_ids"] = [lk.test_case_id for lk in r.links]
    return data


def case_to_dict(tc: TestCase) -> dict:
    data = model_to_dict(tc, TEST_CASE_FIELDS)
    data["requirement_ids"] = [lk.requirement_id for lk in tc.links]
    data["evidence_count"] = len(tc.evidence or [])
    return data


def evidence_to_dict(ev: TestEvidence) -> dict:
    data = model_to_dict(ev, EVIDENCE_FIELDS)
    data["has_file"] = bool(ev.storage_key)
    return data


def link_to_dict(lk: RTMLink) -> dict:
    return {
        "id": lk.id,
        "requirement_id": lk.requirement_id,
        "test_case_id": lk.test_case_id,
        "requirement_code": lk.requirement.code if lk.requirement else None,
        "test_case_code": lk.test_case.code if lk.test_case else None,
        "test_case_status": lk.test_case.status if lk.test_case else None,
        "test_case_result": lk.test_case.result if lk.test_case else None,
    }


def _project_model():
    from app.cvms.modules.projects.models import ValidationProject

    return ValidationProject


def _code_taken(s: "Session", model: type, company_id: int, code: str, exclude_id: int | None = None) -> bool:
    q = s.query(model.id).filter(model.company_id == company_id, model.code == code)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    return q.first() is not None


def _validate_common(
    s: "Session",
    model: type,
    company_id: int,
    payload: dict,
    errors: list[ValidationError],
    *,
    partial: bool,
    exclude_id: int | None,
) -> None:
    if not partial or "code" in payload:
        code = (str(payload.get("code") or "")).strip()
        if not code:
            errors.append(ValidationError("code", "Code is required."))
        elif _code_taken(s, model, company_id, code, exclude_id):
            errors.append(ValidationError("code", f"Code {code!r} is already in use."))
    if not partial or "title" in payload:
        if not (str(payload.get("title") or "")).strip():
            errors.append(ValidationError("title", "Title is required."))
    validate_scoped_ref(s, System, company_id, payload, "system_id", errors)
    validate_scoped_ref(s, _project_model(), company_id, payload, "project_id", errors)


# ---------- Requirements ----------
def validate_requirement_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False, exclude_id: int | None = None
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    _validate_common(s, Requirement, company_id, payload, errors, partial=partial, exclude_id=exclude_id)
    validate_choice(errors, "type", optional_text(payload.get("type")), REQUIREMENT_TYPES)
    validate_choice(errors, "priority", optional_text(payload.get("priority")), PRIORITIES)
    return errors


_REQUIREMENT_CONVERTERS = {
    "code": lambda v: (str(v or "")).strip(),
    "title": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "type": optional_text,
    "priority": lambda v: optional_text(v) or "medium",
    "source": optional_text,
    "status": lambda v: optional_text(v) or "draft",
    "system_id": parse_int,
    "project_id": parse_int,
}


def create_requirement(s: "Session", company_id: int, payload: dict, user: "User") -> Requirement:
    now = utcnow()
    req = Requirement(company_id=company_id, created_by_user_id=user.id, created_at=now, updated_at=now)
    apply_changes(req, {"priority": None, "status": None, **payload}, _REQUIREMENT_CONVERTERS)
    s.add(req)
    s.flush()
    record_event(
        s,
        actor=user,
        action="requirement.create",
        entity_type="Requirement",
        entity_id=str(req.id),
        company_id=company_id,
        metadata={"code": req.code, "title": req.title},
    )
    return req


def update_requirement(s: "Session", req: Requirement, payload: dict, user: "User", reason: str | None = None) -> Requirement:
    changes = apply_changes(req, payload, _REQUIREMENT_CONVERTERS)
    req.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="requirement.update",
        entity_type="Requirement",
        entity_id=str(req.id),
        company_id=req.company_id,
        reason=reason,
        metadata={"code": req.code, "changes": changes},
    )
    return req


def delete_requirement(s: "Session", req: Requirement, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="requirement.delete",
        entity_type="Requirement",
        entity_id=str(req.id),
        company_id=req.company_id,
        reason=reason,
        metadata={"code": req.code, "links": len(req.links)},
    )
    s.delete(req)


def list_requirements(s: "Session", company_id: int, filters: dict | None = None) -> list[Requirement]:
    filters = filters or {}
    q = s.query(Requirement).filter(Requirement.company_id == company_id)
    for key in ("type", "priority", "status", "system_id", "project_id"):
        if filters.get(key):
            q = q.filter(getattr(Requirement, key) == filters[key])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Requirement.code.ilike(like), Requirement.title.ilike(like)))
    return q.order_by(Requirement.code.asc(), Requirement.id.asc()).all()


# ---------- Test cases ----------
def validate_test_case_payload(
    s: "Session", company_id: int, payload: dict, *, partial: bool = False, exclude_id: int | None = None
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    _validate_common(s, TestCase, company_id, payload, errors, partial=partial, exclude_id=exclude_id)
    validate_choice(errors, "status", optional_text(payload.get("status")), TEST_STATUSES)
    validate_choice(errors, "result", optional_text(payload.get("result")), TEST_RESULTS)
    return errors


_TEST_CASE_CONVERTERS = {
    "code": lambda v: (str(v or "")).strip(),
    "title": lambda v: (str(v or "")).strip(),
    "description": optional_text,
    "preconditions": optional_text,
    "steps": optional_text,
    "expected_results": optional_text,
    "status": lambda v: optional_text(v) or "pending",
    "result": optional_text,
    "system_id": parse_int,
    "project_id": parse_int,
}


def create_test_case(s: "Session", company_id: int, payload: dict, user: "User") -> TestCase:
    now = utcnow()
    tc = TestCase(company_id=company_id, created_at=now, updated_at=now)
    apply_changes(tc, {"status": None, **payload}, _TEST_CASE_CONVERTERS)
    s.add(tc)
    s.flush()
    record_event(
        s,
        actor=user,
        action="test_case.create",
        entity_type="TestCase",
        entity_id=str(tc.id),
        company_id=company_id,
        metadata={"code": tc.code, "title": tc.title},
    )
    return tc


def update_test_case(s: "Session", tc: TestCase, payload: dict, user: "User", reason: str | None = None) -> TestCase:
    changes = apply_changes(tc, payload, _TEST_CASE_CONVERTERS)
    tc.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="test_case.update",
        entity_type="TestCase",
        entity_id=str(tc.id),
        company_id=tc.company_id,
        reason=reason,
        metadata={"code": tc.code, "changes": changes},
    )
    return tc


def record_test_execution(s: "Session", tc: TestCase, result: str, user: "User", notes: str | None = None) -> TestCase:
    """Record an execution: result drives status, executor and timestamp are stamped."""
    if result not in TEST_RESULTS:
        raise ValueError(f"result must be one of: {', '.join(TEST_RESULTS)}")
    old = {"status": tc.status, "result": tc.result}
    tc.result = result
    tc.status = result
    tc.executed_at = utcnow()
    tc.executed_by_user_id = user.id
    tc.updated_at = tc.executed_at
    record_event(
        s,
        actor=user,
        action="test_case.execute",
        entity_type="TestCase",
        entity_id=str(tc.id),
        company_id=tc.company_id,
        reason=notes,
        metadata={"code": tc.code, "before": old, "after": {"status": tc.status, "result": tc.result}},
    )
    return tc


def delete_test_case(s: "Session", tc: TestCase, user: "User", reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="test_case.delete",
        entity_type="TestCase",
        entity_id=str(tc.id),
        company_id=tc.company_id,
        reason=reason,
        metadata={"code": tc.code, "links": len(tc.links), "evidence": len(tc.evidence or [])},
    )
    s.delete(tc)


def list_test_cases(s: "Session", company_id: int, filters: dict | None = None) -> list[TestCase]:
    filters = filters or {}
    q = s.query(TestCase).filter(TestCase.company_id == company_id)
    for key in ("status", "result", "system_id", "project_id"):
        if filters.get(key):
            q = q.filter(getattr(TestCase, key) == filters[key])
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(TestCase.code.ilike(like), TestCase.title.ilike(like)))
    return q.order_by(TestCase.code.asc(), TestCase.id.asc()).all()


# ---------- Links ----------
def create_link(s: "Session", req: Requirement, tc: TestCase, user: "User") -> RTMLink:
    if req.company_id != tc.company_id:
        raise ValueError("Requirement and test case belong to different companies.")
    exists = (
        s.query(RTMLink.id)
        .filter(RTMLink.requirement_id == req.id, RTMLink.test_case_id == tc.id)
        .first()
    )
    if exists:
        raise WorkflowError("This requirement is already linked to this test case.")
    link = RTMLink(company_id=req.company_id, requirement_id=req.id, test_case_id=tc.id, created_at=utcnow())
    s.add(link)
    s.flush()
    record_event(
        s,
        actor=user,
        action="rtm_link.create",
        entity_type="RTMLink",
        entity_id=str(link.id),
        company_id=req.company_id,
        metadata={"requirement_code": req.code, "test_case_code": tc.code},
    )
    return link


def delete_link(s: "Session", link: RTMLink, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="rtm_link.delete",
        entity_type="RTMLink",
        entity_id=str(link.id),
        company_id=link.company_id,
        metadata={"requirement_id": link.requirement_id, "test_case_id": link.test_case_id},
    )
    s.delete(link)


def list_links(s: "Session", company_id: int) -> list[RTMLink]:
    return s.query(RTMLink).filter(RTMLink.company_id == company_id).order_by(RTMLink.id.asc()).all()


# ---------- Evidence ----------
def validate_evidence_payload(payload: dict) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not (str(payload.get("title") or "")).strip():
        errors.append(ValidationError("title", "Title is required."))
    return errors


def add_test_evidence(
    s: "Session",
    tc: TestCase,
    payload: dict,
    user: "User",
    *,
    file_bytes: bytes | None = None,
    filename: str | None = None,
    content_type: str | None = None,
    app_config: dict | None = None,
) -> TestEvidence:
    ev = TestEvidence(
        company_id=tc.company_id,
        test_case_id=tc.id,
        title=(str(payload.get("title") or "")).strip(),
        description=optional_text(payload.get("description")),
        evidence_type=optional_text(payload.get("evidence_type")) or "screenshot",
        uploaded_by_user_id=user.id,
        created_at=utcnow(),
    )
    if file_bytes is not None:
        sha256, size = file_digest_and_bytes(file_bytes)
        key = build_storage_key("evidence", tc.company_id, tc.code, filename or "evidence.bin")
        storage_from_config(app_config or {}).put_bytes(key, file_bytes, content_type=content_type)
        ev.storage_key = key
        ev.original_filename = sanitize_upload_filename(filename or "")
        ev.content_type = content_type
        ev.sha256 = sha256
        ev.size_bytes = size
    s.add(ev)
    s.flush()
    record_event(
        s,
        actor=user,
        action="test_evidence.create",
        entity_type="TestEvidence",
        entity_id=str(ev.id),
        company_id=tc.company_id,
        metadata={"test_case_code": tc.code, "title": ev.title, "storage_key": ev.storage_key, "sha256": ev.sha256},
    )
    return ev


def delete_test_evidence(s: "Session", ev: TestEvidence, user: "User", app_config: dict | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="test_evidence.delete",
        entity_type="TestEvidence",
        entity_id=str(ev.id),
        company_id=ev.company_id,
        metadata={"test_case_id": ev.test_case_id, "storage_key": ev.storage_key},
    )
    if ev.storage_key:
        storage_from_config(app_config or {}).delete(ev.storage_key)
    s.delete(ev)


# ---------- Coverage / export ----------
def coverage_inputs(s: "Session", company_id: int) -> tuple[list[dict], list[dict], list[dict]]:
    requirements = [
        {"id": r.id, "code": r.code, "title": r.title, "priority": r.priority}
        for r in list_requirements(s, company_id)
    ]
    test_cases = [{"id": t.id, "status": t.status, "result": t.result} for t in list_test_cases(s, company_id)]
    links = [{"requirement_id": lk.requirement_id, "test_case_id": lk.test_case_id} for lk in list_links(s, company_id)]
    return requirements, test_cases, links


def coverage_dashboard(s: "Session", company_id: int) -> dict[str, Any]:
    requirements, test_cases, links = coverage_inputs(s, company_id)
    cov = coverage_stats(requirements, test_cases, links)
    return {
        "coverage": cov.as_dict(),
        "test_execution": asdict(execution_stats(test_cases)),
        "links": asdict(link_stats(links, test_cases)),
    }


def export_rtm_csv(s: "Session", company_id: int, user: "User") -> bytes:
    """One row per link, then one row per requirement without any link."""
    requirements = list_requirements(s, company_id)
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(EXPORT_HEADERS)
    row_count = 0
    uncovered: list[Requirement] = []
    for req in requirements:
        links = sorted(req.links, key=lambda lk: lk.test_case.code if lk.test_case else "")
        if not links:
            uncovered.append(req)
            continue
        for lk in links:
            tc = lk.test_case
            w.writerow(
                [
                    req.code,
                    req.title,
                    req.type or "",
                    req.priority or "",
                    tc.code,
                    tc.title,
                    tc.status,
                    tc.result or "",
                    tc.executed_at.isoformat() if tc.executed_at else "",
                ]
            )
            row_count += 1
    for req in uncovered:
        w.writerow([req.code, req.title, req.type or "", req.priority or "", "", "", "", "", ""])
        row_count += 1

    csv_bytes = out.getvalue().encode("utf-8")
    sha256, _ = file_digest_and_bytes(csv_bytes)
    record_event(
        s,
        actor=user,
        action="rtm.export",
        entity_type="RTM",
        company_id=company_id,
        metadata={"row_count": row_count, "sha256": sha256},
    )
    return csv_bytes
