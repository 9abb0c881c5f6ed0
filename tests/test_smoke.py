from app.cvms.db import session_scope
from app.cvms.models import AuditEvent


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").status_code == 200


def test_login_me_and_logout(client, login):
    r = client.get("/auth/me")
    assert r.status_code == 401

    user = login(client)
    assert user["email"] == "admin@acme.test"
    assert user["company"]["name"] == "Acme"
    assert "systems.edit" in user["permissions"]
    assert "companies.manage" not in user["permissions"]

    r = client.get("/auth/me")
    assert r.status_code == 200

    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert client.get("/systems").status_code == 401


def test_failed_login_is_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@acme.test", "password": "wrong"})
    assert r.status_code == 401
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "admin@acme.test"


def test_login_rate_limit(client):
    for _ in range(5):
        assert client.post("/auth/login", json={"email": "x@y.z", "password": "nope"}).status_code == 401
    r = client.post("/auth/login", json={"email": "admin@acme.test", "password": "password123"})
    assert r.status_code == 429


def test_mutations_require_csrf_token(client, login):
    login(client)
    token = client.environ_base.pop("HTTP_X_CSRF_TOKEN")

    r = client.post("/systems", json={"name": "LIMS", "gamp_category": "4"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = client.post("/systems", json={"name": "LIMS", "gamp_category": "4"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 201


def test_reader_cannot_edit(client, login):
    login(client, "reader@acme.test")
    assert client.get("/systems").status_code == 200
    r = client.post("/systems", json={"name": "LIMS", "gamp_category": "4"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "systems.edit"


def test_unknown_route_is_json_404(admin_client):
    r = admin_client.get("/systems/9999")
    assert r.status_code == 404
    assert r.json == {"error": "Not found"}
