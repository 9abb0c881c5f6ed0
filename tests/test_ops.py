import re

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session

from app.cvms.config import load_config, missing_s3_settings
from app.cvms.models import User
from app.cvms.storage import LocalStorage, StorageError, build_storage_key, storage_from_config
from scripts.release import release_database_url, run_release
from scripts.start import gunicorn_argv, parse_port


def test_missing_s3_settings():
    assert missing_s3_settings({"STORAGE_BACKEND": "local"}) == []
    missing = missing_s3_settings({"STORAGE_BACKEND": "s3", "S3_BUCKET": "evidence"})
    assert missing == ["S3_ENDPOINT", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"]


def test_integer_settings(monkeypatch):
    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("MAX_UPLOAD_MB", "10")
    monkeypatch.setenv("SESSION_HOURS", "1")
    cfg = load_config()
    assert cfg["LOGIN_MAX_ATTEMPTS"] == 3
    assert cfg["MAX_CONTENT_LENGTH"] == 10 * 1024 * 1024
    assert cfg["PERMANENT_SESSION_LIFETIME"].total_seconds() == 3600

    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "many")
    with pytest.raises(RuntimeError, match="LOGIN_MAX_ATTEMPTS"):
        load_config()


def test_login_throttle_follows_config(app, client):
    app.config["LOGIN_MAX_ATTEMPTS"] = 2
    for _ in range(2):
        assert client.post("/auth/login", json={"email": "x@y.z", "password": "nope"}).status_code == 401
    r = client.post("/auth/login", json={"email": "admin@acme.test", "password": "password123"})
    assert r.status_code == 429


def test_local_storage(tmp_path):
    store = LocalStorage(root=tmp_path)
    store.put_bytes("documents/1/7/file.txt", b"hello")
    assert store.exists("documents/1/7/file.txt")
    with store.open("documents/1/7/file.txt") as f:
        assert f.read() == b"hello"
    store.delete("documents/1/7/file.txt")
    assert not store.exists("documents/1/7/file.txt")

    with pytest.raises(StorageError):
        store.open("documents/1/7/file.txt")
    with pytest.raises(StorageError):
        store.put_bytes("../outside.txt", b"x")


def test_storage_root_from_config(tmp_path):
    store = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path / "files")})
    assert store.root == tmp_path / "files"


def test_build_storage_key_is_tenant_prefixed():
    key = build_storage_key("evidence", 3, "TC/001", "screen shot.png")
    assert re.fullmatch(r"evidence/3/TC_001/\d{4}-\d\d-\d\dT\d\d-\d\d-\d\d_[0-9a-f]{32}_screen_shot\.png", key)
    assert build_storage_key("evidence", 3, "TC/001", "screen shot.png") != key


def test_parse_port_and_argv():
    assert parse_port(None) == 8080
    assert parse_port(" 5000 ") == 5000
    with pytest.raises(ValueError):
        parse_port("70000")
    argv = gunicorn_argv(5000, 3)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:5000"
    assert argv[argv.index("--workers") + 1] == "3"


def test_release_guardrails(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release_database_url()
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="sqlite"):
        release_database_url()


def test_release_migrates_and_seeds(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "owner@cvms.test")
    monkeypatch.setenv("ADMIN_PASSWORD", "owner-password")

    run_release()
    run_release()

    engine = create_engine(url)
    tables = set(inspect(engine).get_table_names())
    assert {"companies", "systems", "risk_assessments", "rtm_links", "audit_events", "invitations", "alembic_version"} <= tables
    with Session(engine) as s:
        assert s.query(User).filter(User.email == "owner@cvms.test").count() == 1
