def _create_system(client, name="LIMS"):
    r = client.post("/systems", json={"name": name, "gamp_category": "4"})
    assert r.status_code == 201, r.json
    return r.json["system"]["id"]


def test_rows_of_another_company_are_not_found(app, login):
    acme = app.test_client()
    login(acme, "admin@acme.test")
    system_id = _create_system(acme)

    globex = app.test_client()
    login(globex, "admin@globex.test")
    assert globex.get(f"/systems/{system_id}").status_code == 404
    assert globex.post(f"/systems/{system_id}", json={"name": "Hijack"}).status_code == 404
    assert globex.get("/systems").json["systems"] == []


def test_foreign_reference_in_payload_is_rejected(app, login):
    acme = app.test_client()
    login(acme, "admin@acme.test")
    system_id = _create_system(acme)

    globex = app.test_client()
    login(globex, "admin@globex.test")
    r = globex.post(
        "/risks",
        json={"title": "Foreign", "assessment_type": "IRA", "system_id": system_id},
    )
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "system_id"


def test_switch_company(app, login):
    client = app.test_client()
    user = login(client, "super@cvms.test")
    assert user["company"]["name"] == "Acme"
    _create_system(client, "Acme system")

    globex_id = next(c["id"] for c in user["companies"] if c["name"] == "Globex")
    r = client.post("/auth/company", json={"company_id": globex_id})
    assert r.status_code == 200
    assert client.get("/systems").json["systems"] == []


def test_switch_to_non_member_company_fails(app, login):
    client = app.test_client()
    login(client, "admin@globex.test")
    acme = app.test_client()
    user = login(acme, "admin@acme.test")
    r = client.post("/auth/company", json={"company_id": user["company"]["id"]})
    assert r.status_code == 404
