import os

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.cvms.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {
        "name": "cvms",
        "env": current_app.config.get("ENV"),
        "version": os.environ.get("APP_VERSION", "dev"),
    }


@bp.get("/health")
def health():
    """Readiness: the app is up and the database answers."""
    try:
        db_session().execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        current_app.logger.error("Health check DB failure: %s", e)
        return {"ok": False, "db": "error"}, 503
    return {"ok": True, "db": "ok"}


@bp.get("/healthz")
def healthz():
    """Liveness check. No DB access."""
    return "ok", 200
