import pytest


@pytest.fixture()
def superuser(app, login):
    c = app.test_client()
    login(c, "super@cvms.test")
    return c


def test_member_sees_own_companies(admin_client):
    r = admin_client.get("/companies")
    assert [c["name"] for c in r.json["companies"]] == ["Acme"]
    assert r.json["active_company_id"] == r.json["default_company_id"]


def test_super_admin_sees_all(superuser):
    r = superuser.get("/companies")
    assert sorted(c["name"] for c in r.json["companies"]) == ["Acme", "Globex"]


def test_create_normalizes_cnpj_and_rejects_duplicates(superuser):
    r = superuser.post("/companies", json={"name": "Initech", "cnpj": "12.345.678/0001-95"})
    assert r.status_code == 201
    assert r.json["company"]["cnpj"] == "12345678000195"
    assert r.json["company"]["settings"] == {}

    r = superuser.post("/companies", json={"name": "Clone", "cnpj": "11.222.333/0001-81"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "cnpj"

    r = superuser.post("/companies", json={"name": "", "settings": "dark"})
    assert {e["field"] for e in r.json["errors"]} == {"name", "settings"}


def test_membership_management(superuser, client, login):
    company = superuser.post("/companies", json={"name": "Initech"}).json["company"]

    r = superuser.post(f"/companies/{company['id']}/users", json={"email": "reader@acme.test"})
    assert r.status_code == 201
    members = r.json["company"]["members"]
    assert [(m["email"], m["is_default"]) for m in members] == [("reader@acme.test", False)]

    login(client, "reader@acme.test")
    names = [c["name"] for c in client.get("/companies").json["companies"]]
    assert sorted(names) == ["Acme", "Initech"]
    assert client.post("/auth/company", json={"company_id": company["id"]}).status_code == 200

    reader_id = members[0]["user_id"]
    r = superuser.post(f"/companies/{company['id']}/users/{reader_id}/delete")
    assert r.json["company"]["members"] == []
    assert superuser.post(f"/companies/{company['id']}/users/{reader_id}/delete").status_code == 404

    assert superuser.post(f"/companies/{company['id']}/users", json={"email": "nobody@x.test"}).status_code == 404


def test_update(superuser):
    company = superuser.post("/companies", json={"name": "Initech"}).json["company"]
    r = superuser.post(f"/companies/{company['id']}", json={"logo_url": "https://cdn.test/logo.png"})
    assert r.json["company"]["logo_url"] == "https://cdn.test/logo.png"
    assert superuser.get("/companies/99999").status_code == 404


def test_company_admin_cannot_manage(admin_client):
    r = admin_client.post("/companies", json={"name": "Rogue"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "companies.manage"
