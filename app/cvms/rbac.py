from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, g

from app.cvms.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_permission_keys(user: User | None) -> list[str]:
    if not user:
        return []
    keys = set()
    for role in user.roles or []:
        for perm in role.permissions or []:
            keys.add(perm.key)
    return sorted(keys)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401 (JSON API, no login page to redirect to)
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                current_app.logger.info("Permission denied: user=%s permission=%s", user.email, permission_key)
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
