"""Company-wide figures for the landing dashboard."""
from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Iterable

from sqlalchemy import func

from app.cvms.constants import GAMP_CATEGORIES, RISK_LEVELS, STATUS_TYPES
from app.cvms.modules.changes.models import ChangeRequest
from app.cvms.modules.documents.models import Document
from app.cvms.modules.projects.models import ValidationProject
from app.cvms.modules.risks.models import RiskAssessment
from app.cvms.modules.systems.models import System
from app.cvms.modules.systems.service import upcoming_revalidations as systems_due_for_revalidation
from app.cvms.utils import to_json_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


OPEN_RISK_EXCLUDED_STATUSES = ("approved", "completed")
PENDING_CHANGE_STATUSES = ("pending", "approved")
ACTIVE_PROJECT_STATUSES = ("pending", "approved")


def summarize(
    systems: Iterable[tuple[str, str]],
    risks: Iterable[tuple[str, str]],
    change_statuses: Iterable[str],
    project_statuses: Iterable[str],
    document_count: int,
) -> dict:
    """
    Fold raw (gamp_category, validation_status), (risk_level, status) and status
    rows into the dashboard counters.
    """
    systems = list(systems)
    risks = list(risks)
    change_statuses = list(change_statuses)
    project_statuses = Counter(project_statuses)

    gamp = Counter(cat for cat, _ in systems)
    levels = Counter(level for level, _ in risks)
    return {
        "total_systems": len(systems),
        "validated_systems": sum(1 for _, status in systems if status == "validated"),
        "high_risks": sum(
            1
            for level, status in risks
            if level in ("high", "critical") and status not in OPEN_RISK_EXCLUDED_STATUSES
        ),
        "pending_changes": sum(1 for status in change_statuses if status in PENDING_CHANGE_STATUSES),
        "total_documents": document_count,
        "active_projects": sum(project_statuses[st] for st in ACTIVE_PROJECT_STATUSES),
        "gamp_distribution": {f"gamp{cat}": gamp.get(cat, 0) for cat in GAMP_CATEGORIES},
        "project_status": {
            st: project_statuses.get(st, 0) for st in STATUS_TYPES if st != "rejected"
        },
        "risks_by_level": {level: levels.get(level, 0) for level in RISK_LEVELS},
    }


def dashboard_stats(s: "Session", company_id: int) -> dict:
    systems = s.query(System.gamp_category, System.validation_status).filter(System.company_id == company_id).all()
    risks = (
        s.query(RiskAssessment.risk_level, RiskAssessment.status)
        .filter(RiskAssessment.company_id == company_id)
        .all()
    )
    changes = [r[0] for r in s.query(ChangeRequest.status).filter(ChangeRequest.company_id == company_id)]
    projects = [r[0] for r in s.query(ValidationProject.status).filter(ValidationProject.company_id == company_id)]
    documents = s.query(func.count(Document.id)).filter(Document.company_id == company_id).scalar() or 0
    return summarize(systems, risks, changes, projects, documents)


def _system_name(obj) -> str | None:
    return obj.system.name if getattr(obj, "system", None) else None


def upcoming_revalidations(s: "Session", company_id: int, limit: int = 5) -> list[dict]:
    rows = systems_due_for_revalidation(s, company_id, limit=limit)
    return [
        {
            "id": row.id,
            "name": row.name,
            "gamp_category": row.gamp_category,
            "validation_status": row.validation_status,
            "last_validation_date": to_json_value(row.last_validation_date),
            "next_revalidation_date": to_json_value(row.next_revalidation_date),
        }
        for row in rows
    ]


def recent_risks(s: "Session", company_id: int, limit: int = 5) -> list[dict]:
    rows = (
        s.query(RiskAssessment)
        .filter(RiskAssessment.company_id == company_id, RiskAssessment.status.in_(("draft", "pending")))
        .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "title": row.title,
            "risk_level": row.risk_level,
            "assessment_type": row.assessment_type,
            "status": row.status,
            "system_name": _system_name(row),
        }
        for row in rows
    ]


def active_projects(s: "Session", company_id: int, limit: int = 4) -> list[dict]:
    rows = (
        s.query(ValidationProject)
        .filter(
            ValidationProject.company_id == company_id,
            ValidationProject.status.in_(("draft", "pending", "approved")),
        )
        .order_by(ValidationProject.updated_at.desc(), ValidationProject.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "name": row.name,
            "status": row.status,
            "progress": row.progress,
            "system_name": _system_name(row),
        }
        for row in rows
    ]


def recent_changes(s: "Session", company_id: int, limit: int = 5) -> list[dict]:
    rows = (
        s.query(ChangeRequest)
        .filter(ChangeRequest.company_id == company_id, ChangeRequest.status.in_(PENDING_CHANGE_STATUSES))
        .order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "title": row.title,
            "status": row.status,
            "priority": row.priority,
            "system_name": _system_name(row),
        }
        for row in rows
    ]
