import secrets

from flask import Request, session

CSRF_HEADER = "X-CSRF-Token"
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")
# Login, logout, company switch and invitation redemption can run before the client holds a token.
CSRF_EXEMPT_BLUEPRINTS = ("auth",)


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def csrf_required(req: Request) -> bool:
    if req.method not in MUTATING_METHODS:
        return False
    return req.blueprint not in CSRF_EXEMPT_BLUEPRINTS


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("csrf_token")
    return token


def validate_csrf(req: Request) -> bool:
    token = _submitted_token(req)
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
