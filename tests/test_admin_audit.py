def test_system_status(admin_client):
    r = admin_client.get("/admin/")
    assert r.status_code == 200
    status = r.json["system_status"]
    assert status["db_connected"] is True
    assert status["storage_backend"] == "local"
    assert status["storage_configured"] is True


def test_validator_has_no_admin_access(client, login):
    login(client, "validator@acme.test")
    assert client.get("/admin/accounts").status_code == 403
    assert client.get("/admin/audit").status_code == 200


def test_accounts_are_scoped_to_the_company(admin_client):
    emails = [a["email"] for a in admin_client.get("/admin/accounts").json["accounts"]]
    assert emails == ["admin@acme.test", "reader@acme.test", "super@cvms.test", "validator@acme.test"]


def test_create_account_defaults_to_reader(admin_client, app, login):
    r = admin_client.post("/admin/accounts", json={"email": "New@Acme.test", "password": "longenough"})
    assert r.status_code == 201
    account = r.json["account"]
    assert account["email"] == "new@acme.test"
    assert account["roles"] == ["reader"]

    fresh = app.test_client()
    user = login(fresh, "new@acme.test", "longenough")
    assert user["company"]["name"] == "Acme"

    r = admin_client.post("/admin/accounts", json={"email": "new@acme.test", "password": "longenough"})
    assert r.status_code == 400


def test_create_account_validation(admin_client):
    r = admin_client.post("/admin/accounts", json={"email": "bad", "password": "short", "roles": ["wizard"]})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"email", "password", "roles"}

    r = admin_client.post(
        "/admin/accounts", json={"email": "x@acme.test", "password": "longenough", "roles": ["super_admin"]}
    )
    assert r.status_code == 400
    assert r.json["errors"][0]["message"] == "Only a super admin can grant super_admin."


def test_existing_account_is_linked(admin_client):
    r = admin_client.post("/admin/accounts", json={"email": "admin@globex.test", "password": "whatever1"})
    assert r.status_code == 200
    emails = [a["email"] for a in admin_client.get("/admin/accounts").json["accounts"]]
    assert "admin@globex.test" in emails


def test_update_and_reset_password(admin_client, app, login):
    reader = next(a for a in admin_client.get("/admin/accounts").json["accounts"] if a["email"] == "reader@acme.test")
    r = admin_client.post(
        f"/admin/accounts/{reader['id']}", json={"roles": ["validator"], "department": "QA", "reason": "Promotion"}
    )
    assert r.status_code == 200
    assert r.json["account"]["roles"] == ["validator"]
    assert r.json["account"]["department"] == "QA"

    r = admin_client.post(f"/admin/accounts/{reader['id']}/reset-password", json={"password": "newpassword"})
    assert r.json == {"ok": True}
    login(app.test_client(), "reader@acme.test", "newpassword")

    me = admin_client.get("/auth/me").json["user"]
    assert admin_client.post(f"/admin/accounts/{me['id']}", json={"department": "x"}).status_code == 400


def test_deactivated_account_cannot_log_in(admin_client, app):
    reader = next(a for a in admin_client.get("/admin/accounts").json["accounts"] if a["email"] == "reader@acme.test")
    admin_client.post(f"/admin/accounts/{reader['id']}", json={"is_active": False})
    other = app.test_client()
    r = other.post("/auth/login", json={"email": "reader@acme.test", "password": "password123"})
    assert r.status_code == 401


def test_audit_filters(admin_client):
    admin_client.post("/systems", json={"name": "LIMS", "gamp_category": "4"})
    admin_client.post("/changes", json={"title": "Upgrade LIMS", "change_type": "upgrade"})

    events = admin_client.get("/admin/audit", query_string={"entity_type": "System"}).json["events"]
    assert [e["action"] for e in events] == ["system.create"]
    assert events[0]["actor_user_email"] == "admin@acme.test"

    events = admin_client.get("/admin/audit", query_string={"action": "change."}).json["events"]
    assert [e["action"] for e in events] == ["change.create"]

    assert admin_client.get("/admin/audit", query_string={"date_from": "yesterday"}).status_code == 400
    assert admin_client.get("/admin/audit", query_string={"date_to": "2000-01-01"}).json["events"] == []


def test_audit_is_company_scoped(admin_client, app, login):
    other = app.test_client()
    login(other, "admin@globex.test")
    other.post("/systems", json={"name": "ERP", "gamp_category": "4"})
    events = admin_client.get("/admin/audit", query_string={"entity_type": "System"}).json["events"]
    assert events == []
