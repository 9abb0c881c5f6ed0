from __future__ import annotations

import os
from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from werkzeug.security import generate_password_hash

from app.cvms.api import current_user, error_response, errors_response, reason_from, request_payload
from app.cvms.audit import record_event
from app.cvms.config import missing_s3_settings
from app.cvms.constants import APP_ROLES, MIN_PASSWORD_LENGTH
from app.cvms.db import db_session
from app.cvms.models import AuditEvent, Role, User, UserCompany
from app.cvms.rbac import require_permission, user_permission_keys
from app.cvms.tenancy import company_member_ids, current_company
from app.cvms.utils import ValidationError, is_valid_email, model_to_dict, utcnow

bp = Blueprint("admin", __name__)

AUDIT_LIMIT = 200


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _account_json(user: User) -> dict:
    data = model_to_dict(user, ("id", "email", "full_name", "department", "position", "is_active", "created_at"))
    data["roles"] = user.role_keys
    return data


def _event_json(ev: AuditEvent) -> dict:
    return model_to_dict(
        ev,
        (
            "id",
            "created_at",
            "request_id",
            "actor_user_id",
            "actor_user_email",
            "action",
            "entity_type",
            "entity_id",
            "reason",
            "metadata_json",
            "client_ip",
        ),
    )


def _roles_from_payload(s, payload: dict, errors: list[ValidationError]) -> list[Role] | None:
    raw = payload.get("roles")
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = [r.strip() for r in raw.split(",") if r.strip()]
    keys = list(dict.fromkeys(raw))
    bad = [k for k in keys if k not in APP_ROLES]
    if bad:
        errors.append(ValidationError("roles", f"Unknown role(s): {', '.join(bad)}"))
        return None
    if "super_admin" in keys and not current_user().is_super_admin:
        errors.append(ValidationError("roles", "Only a super admin can grant super_admin."))
        return None
    return s.query(Role).filter(Role.key.in_(keys)).all() if keys else []


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": None,
        "storage_configured": False,
        "storage_error": None,
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        status["db_error"] = str(e)

    # Storage config (no network calls)
    storage_backend = (current_app.config.get("STORAGE_BACKEND") or "local").strip().lower()
    status["storage_backend"] = storage_backend
    missing = missing_s3_settings(current_app.config)
    status["storage_configured"] = not missing
    if missing:
        status["storage_error"] = f"Missing: {', '.join(missing)}"

    status["app_version"] = os.environ.get("APP_VERSION", "dev")
    return jsonify({"system_status": status})


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = current_user()
    return jsonify({"user": _account_json(user), "permissions": user_permission_keys(user)})


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail (last 200 events of the active company) with simple filters:
    - action (contains)
    - actor_email (contains)
    - entity_type (exact)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    company = current_company()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    raw_from = (request.args.get("date_from") or "").strip()
    raw_to = (request.args.get("date_to") or "").strip()
    date_from = _parse_date(raw_from)
    date_to = _parse_date(raw_to)

    errors: list[ValidationError] = []
    if raw_from and not date_from:
        errors.append(ValidationError("date_from", "date_from must be YYYY-MM-DD"))
    if raw_to and not date_to:
        errors.append(ValidationError("date_to", "date_to must be YYYY-MM-DD"))
    if errors:
        return errors_response(errors)

    q = s.query(AuditEvent).filter(AuditEvent.company_id == company.id)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(AUDIT_LIMIT).all()
    return jsonify({"events": [_event_json(ev) for ev in events]})


@bp.get("/accounts")
@require_permission("admin.view")
def accounts_list():
    s = db_session()
    company = current_company()
    member_ids = company_member_ids(s, company.id)
    users = s.query(User).filter(User.id.in_(member_ids)).order_by(User.email.asc()).all() if member_ids else []
    return jsonify({"accounts": [_account_json(u) for u in users]})


@bp.post("/accounts")
@require_permission("admin.edit")
def accounts_create():
    s = db_session()
    actor = current_user()
    company = current_company()
    payload = request_payload()

    email = (str(payload.get("email") or "")).strip().lower()
    password = str(payload.get("password") or "")
    errors: list[ValidationError] = []
    if not is_valid_email(email):
        errors.append(ValidationError("email", "A valid email is required."))
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters."))
    roles = _roles_from_payload(s, payload, errors)
    if errors:
        return errors_response(errors)

    user = s.query(User).filter(User.email == email).one_or_none()
    if user is not None:
        if user.id in company_member_ids(s, company.id):
            return errors_response([ValidationError("email", "An account with this email already exists.")])
        # Existing account elsewhere: just link it to this company.
        s.add(UserCompany(user_id=user.id, company_id=company.id, is_default=not user.company_links))
        record_event(
            s,
            actor=actor,
            action="user.link_company",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"email": email, "company_id": company.id},
        )
        s.commit()
        return jsonify({"account": _account_json(user)}), 200

    now = utcnow()
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=(str(payload.get("full_name") or "")).strip() or None,
        department=(str(payload.get("department") or "")).strip() or None,
        position=(str(payload.get("position") or "")).strip() or None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    user.roles = roles if roles is not None else s.query(Role).filter(Role.key == "reader").all()
    s.add(user)
    s.flush()
    s.add(UserCompany(user_id=user.id, company_id=company.id, is_default=True))
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "roles": sorted(r.key for r in user.roles)},
    )
    s.commit()
    return jsonify({"account": _account_json(user)}), 201


def _member_or_404(s, user_id: int) -> User | None:
    company = current_company()
    user = s.get(User, user_id)
    if not user or user.id not in company_member_ids(s, company.id):
        return None
    return user


@bp.post("/accounts/<int:user_id>")
@require_permission("admin.edit")
def accounts_update(user_id: int):
    s = db_session()
    actor = current_user()
    user = _member_or_404(s, user_id)
    if user is None:
        return error_response("Not found", 404)
    if user.id == actor.id:
        return error_response("You cannot edit your own account here.", 400)

    payload = request_payload()
    errors: list[ValidationError] = []
    roles = _roles_from_payload(s, payload, errors)
    if errors:
        return errors_response(errors)

    changes: dict[str, dict] = {}
    for field in ("full_name", "department", "position"):
        if field in payload:
            new = (str(payload.get(field) or "")).strip() or None
            if new != getattr(user, field):
                changes[field] = {"old": getattr(user, field), "new": new}
                setattr(user, field, new)
    if "is_active" in payload:
        new_active = str(payload.get("is_active")).strip().lower() in ("1", "true", "yes", "on")
        if new_active != user.is_active:
            changes["is_active"] = {"old": user.is_active, "new": new_active}
            user.is_active = new_active
    if roles is not None:
        old_keys = user.role_keys
        user.roles = roles
        new_keys = sorted(r.key for r in roles)
        if old_keys != new_keys:
            changes["roles"] = {"old": old_keys, "new": new_keys}

    user.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason_from(payload),
        metadata={"email": user.email, "changes": changes},
    )
    s.commit()
    return jsonify({"account": _account_json(user)})


@bp.post("/accounts/<int:user_id>/reset-password")
@require_permission("admin.edit")
def accounts_reset_password(user_id: int):
    s = db_session()
    actor = current_user()
    user = _member_or_404(s, user_id)
    if user is None:
        return error_response("Not found", 404)
    if user.id == actor.id:
        return error_response("You cannot edit your own account here.", 400)

    payload = request_payload()
    password = str(payload.get("password") or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        return errors_response(
            [ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")]
        )
    user.password_hash = generate_password_hash(password)
    user.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="user.reset_password",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason_from(payload),
        metadata={"email": user.email},
    )
    s.commit()
    return jsonify({"ok": True})
