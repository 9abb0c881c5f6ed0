from __future__ import annotations

from flask import Blueprint, jsonify

from app.cvms.db import db_session
from app.cvms.modules.dashboard.service import (
    active_projects,
    dashboard_stats,
    recent_changes,
    recent_risks,
    upcoming_revalidations,
)
from app.cvms.rbac import require_permission
from app.cvms.tenancy import current_company_id

bp = Blueprint("dashboard", __name__)


@bp.get("")
@require_permission("systems.view")
def dashboard_index():
    s = db_session()
    company_id = current_company_id()
    return jsonify(
        {
            "stats": dashboard_stats(s, company_id),
            "upcoming_revalidations": upcoming_revalidations(s, company_id),
            "recent_risks": recent_risks(s, company_id),
            "active_projects": active_projects(s, company_id),
            "recent_changes": recent_changes(s, company_id),
        }
    )


@bp.get("/stats")
@require_permission("systems.view")
def dashboard_stats_only():
    s = db_session()
    return jsonify({"stats": dashboard_stats(s, current_company_id())})
