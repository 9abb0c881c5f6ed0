from app.cvms.constants import DOCUMENT_TYPES


def test_company_admin_updates_own_settings(admin_client):
    r = admin_client.post(
        "/companies/current/settings",
        json={
            "logo_url": "https://cdn.test/acme.png",
            "settings": {"address": " Rua A, 100 ", "revalidation_alert_days": "30", "require_dual_approval": "true"},
        },
    )
    assert r.status_code == 200, r.get_json()
    company = r.json["company"]
    assert company["name"] == "Acme"
    assert company["logo_url"] == "https://cdn.test/acme.png"
    assert company["settings"] == {
        "address": "Rua A, 100",
        "revalidation_alert_days": 30,
        "require_dual_approval": True,
    }

    r = admin_client.post("/companies/current/settings", json={"settings": {"phone": "+55 11 5555-0000"}})
    assert r.json["company"]["settings"]["address"] == "Rua A, 100"
    assert r.json["company"]["settings"]["phone"] == "+55 11 5555-0000"

    r = admin_client.post(
        "/companies/current/settings",
        json={"name": "", "settings": {"critical_revalidation_months": 0, "theme": "dark"}},
    )
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"name", "settings", "settings.critical_revalidation_months"}

    events = admin_client.get("/admin/audit?action=company.settings_update").json["events"]
    assert len(events) == 2


def test_settings_need_company_admin(client, login):
    login(client, "validator@acme.test")
    assert client.get("/companies/current/settings").status_code == 403
    assert client.post("/companies/current/settings", json={"settings": {"phone": "1"}}).status_code == 403
    assert client.get("/companies/current/document-types").status_code == 200
    assert client.post("/companies/current/document-types", json={"code": "GMP", "name": "GMP"}).status_code == 403


def test_default_document_types(admin_client):
    types = admin_client.get("/companies/current/document-types").json["document_types"]
    assert tuple(t["code"] for t in types) == DOCUMENT_TYPES
    assert types[0]["name"] == "User Requirements Specification"


def test_document_type_crud_drives_validation(admin_client):
    r = admin_client.post("/companies/current/document-types", json={"code": " gmp ", "name": "GMP Assessment"})
    assert r.status_code == 201, r.get_json()
    gmp = r.json["document_type"]
    assert gmp["code"] == "GMP"

    r = admin_client.post("/companies/current/document-types", json={"code": "Gmp", "name": "Again"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "code"

    codes = [t["code"] for t in admin_client.get("/companies/current/document-types").json["document_types"]]
    assert codes[-1] == "GMP"
    assert len(codes) == len(DOCUMENT_TYPES) + 1

    assert admin_client.post("/documents", json={"title": "GMP check", "document_type": "GMP"}).status_code == 201
    r = admin_client.post("/templates", json={"name": "GMP base", "document_type": "GMP", "gamp_category": "4"})
    assert r.status_code == 201

    r = admin_client.post(f"/companies/current/document-types/{gmp['id']}", json={"name": "GMP Review"})
    assert r.json["document_type"]["name"] == "GMP Review"
    r = admin_client.post(f"/companies/current/document-types/{gmp['id']}", json={"code": "urs"})
    assert r.status_code == 400

    r = admin_client.post(f"/companies/current/document-types/{gmp['id']}/delete")
    assert "GMP" not in [t["code"] for t in r.json["document_types"]]
    r = admin_client.post("/documents", json={"title": "GMP check", "document_type": "GMP"})
    assert r.status_code == 400
    assert admin_client.post(f"/companies/current/document-types/{gmp['id']}/delete").status_code == 404


def test_settings_update_keeps_document_types(admin_client):
    admin_client.post("/companies/current/document-types", json={"code": "GMP", "name": "GMP Assessment"})
    admin_client.post("/companies/current/settings", json={"settings": {"notify_high_risks": True}})
    codes = [t["code"] for t in admin_client.get("/companies/current/document-types").json["document_types"]]
    assert "GMP" in codes


def test_document_types_are_per_company(admin_client, app, login):
    admin_client.post("/companies/current/document-types", json={"code": "GMP", "name": "GMP Assessment"})

    globex = app.test_client()
    login(globex, "admin@globex.test")
    r = globex.post("/documents", json={"title": "GMP check", "document_type": "GMP"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "document_type"
    assert globex.post("/documents", json={"title": "URS", "document_type": "URS"}).status_code == 201
