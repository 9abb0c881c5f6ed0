from __future__ import annotations

from typing import Any

from flask import g, jsonify, request

from app.cvms.models import User
from app.cvms.utils import ValidationError


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # RBAC decorator should prevent this
        raise RuntimeError("No current user")
    return u


def request_payload() -> dict[str, Any]:
    """JSON body for API clients, form fields for plain HTML forms."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def errors_response(errors: list[ValidationError], status: int = 400):
    return jsonify({"errors": [{"field": e.field, "message": e.message} for e in errors]}), status


def error_response(message: str, status: int):
    return jsonify({"error": message}), status


def reason_from(payload: dict[str, Any]) -> str | None:
    return (str(payload.get("reason") or "")).strip() or None
