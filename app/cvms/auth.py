from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.cvms.api import error_response, errors_response, request_payload
from app.cvms.audit import record_event
from app.cvms.db import db_session
from app.cvms.models import Company, User
from app.cvms.modules.invitations.service import (
    accept_invitation,
    open_invitation,
    public_invitation_dict,
    register_invited_user,
    validate_signup_payload,
)
from app.cvms.rbac import user_permission_keys
from app.cvms.security import ensure_csrf_token, validate_csrf
from app.cvms.tenancy import user_can_access_company
from app.cvms.utils import utcnow

bp = Blueprint("auth", __name__)
# In-memory per-process throttle keyed by client IP.
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


def _check_rate_limit(ip: str) -> bool:
    window = int(current_app.config.get("LOGIN_WINDOW_SECONDS", 300))
    cutoff = utcnow() - timedelta(seconds=window)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= int(current_app.config.get("LOGIN_MAX_ATTEMPTS", 5))


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _user_json(user: User) -> dict:
    company = getattr(g, "current_company", None)
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "roles": user.role_keys,
        "permissions": user_permission_keys(user),
        "company": {"id": company.id, "name": company.name} if company else None,
        "companies": [{"id": link.company_id, "name": link.company.name, "is_default": link.is_default} for link in user.company_links],
    }


@bp.get("/csrf")
def csrf():
    return {"csrf_token": ensure_csrf_token()}


@bp.post("/login")
def login_post():
    payload = request_payload()
    email = (str(payload.get("email") or "")).strip().lower()
    password = str(payload.get("password") or "")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        minutes = max(1, int(current_app.config.get("LOGIN_WINDOW_SECONDS", 300)) // 60)
        return error_response(f"Too many login attempts. Please wait {minutes} minutes.", 429)

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return error_response("Invalid credentials.", 401)

        session["user_id"] = user.id
        session.pop("company_id", None)
        _login_attempts[ip].clear()
        g.current_user = user

        from app.cvms.tenancy import load_current_company

        load_current_company()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return {"ok": True, "user": _user_json(user), "csrf_token": ensure_csrf_token()}
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    session.pop("company_id", None)
    return {"ok": True}


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return error_response("Not authenticated.", 401)
    return {"user": _user_json(user)}


@bp.post("/company")
def switch_company():
    """Switch the active company for this session."""
    user = getattr(g, "current_user", None)
    if not user:
        return error_response("Not authenticated.", 401)
    payload = request_payload()
    try:
        company_id = int(payload.get("company_id"))
    except (TypeError, ValueError):
        return error_response("company_id is required.", 400)

    s = db_session()
    company = s.get(Company, company_id)
    if not company or not user_can_access_company(user, company.id):
        return error_response("Company not found.", 404)

    session["company_id"] = company.id
    g.current_company = company
    record_event(
        s,
        actor=user,
        action="auth.switch_company",
        entity_type="Company",
        entity_id=str(company.id),
        company_id=company.id,
    )
    s.commit()
    return jsonify({"ok": True, "company": {"id": company.id, "name": company.name}})


@bp.get("/invitations/<token>")
def invitation_lookup(token: str):
    inv = open_invitation(db_session(), token)
    if inv is None:
        return error_response("Invitation not found or expired.", 404)
    return {"invitation": public_invitation_dict(inv)}


@bp.post("/invitations/<token>/accept")
def invitation_accept(token: str):
    """
    Redeem an invitation. A signed-in user joins with their account (CSRF
    checked, the blueprint is otherwise exempt); anyone else creates the
    invited account here and is signed in.
    """
    s = db_session()
    inv = open_invitation(s, token)
    if inv is None:
        return error_response("Invitation not found or expired.", 404)
    payload = request_payload()
    user = getattr(g, "current_user", None)
    if user is not None:
        if not validate_csrf(request):
            return error_response("CSRF token missing or invalid.", 400)
    else:
        if s.query(User).filter(User.email == inv.email).one_or_none() is not None:
            return error_response("Sign in to accept this invitation.", 401)
        errors = validate_signup_payload(payload)
        if errors:
            return errors_response(errors)
        user = register_invited_user(s, inv, payload)

    accept_invitation(s, inv, user)
    session["user_id"] = user.id
    session["company_id"] = inv.company_id
    g.current_user = user
    g.current_company = inv.company
    s.commit()
    return {"ok": True, "user": _user_json(user), "csrf_token": ensure_csrf_token()}
