def _template(client, **overrides):
    payload = {"name": "IQ base", "document_type": "IQ", "gamp_category": "4", "content": "Hello {{empresa.nome}}"}
    payload.update(overrides)
    r = client.post("/templates", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.json["template"]


def test_create_and_validate(admin_client):
    t = _template(admin_client)
    assert t["version"] == "1.0"
    assert t["is_active"] is True
    assert t["is_default"] is False

    r = admin_client.post("/templates", json={"name": "", "document_type": "IQ"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "name"

    r = admin_client.post(
        "/templates", json={"name": "x", "document_type": "IQ", "placeholders": [{"label": "no key"}]}
    )
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "placeholders"


def test_load_defaults_is_idempotent(admin_client):
    r = admin_client.post("/templates/load-defaults")
    assert r.status_code == 200
    created = r.json["created"]
    assert len(created) == 5
    assert all(t["is_default"] for t in created)
    assert {t["document_type"] for t in created} == {"URS", "IQ", "OQ", "PQ", "RA"}

    r = admin_client.post("/templates/load-defaults")
    assert r.json["created"] == []
    assert len(admin_client.get("/templates").json["templates"]) == 5


def test_versioned_update(admin_client):
    t = _template(admin_client)
    r = admin_client.post(
        f"/templates/{t['id']}",
        json={"content": "v2 body", "version": "2.0", "create_version": True, "change_summary": "Rewrite"},
    )
    assert r.status_code == 200
    assert r.json["template"]["version"] == "2.0"

    admin_client.post(f"/templates/{t['id']}", json={"description": "no snapshot"})

    versions = admin_client.get(f"/templates/{t['id']}/versions").json["versions"]
    assert len(versions) == 1
    assert versions[0]["version"] == "1.0"
    assert versions[0]["content"] == "Hello {{empresa.nome}}"
    assert versions[0]["change_summary"] == "Rewrite"


def test_clone(admin_client):
    t = _template(admin_client, version="3.2")
    r = admin_client.post(f"/templates/{t['id']}/clone", json={"name": "IQ copy"})
    assert r.status_code == 201
    clone = r.json["template"]
    assert clone["name"] == "IQ copy"
    assert clone["version"] == "1.0"
    assert clone["parent_template_id"] == t["id"]
    assert clone["content"] == t["content"]


def test_preview_fills_and_lists_manual_placeholders(admin_client):
    system = admin_client.post("/systems", json={"name": "MES", "gamp_category": "5", "version": "2.1"}).json["system"]
    t = _template(
        admin_client,
        content="{{sistema.nome}} {{sistema.versao}} for {{empresa.nome}}; signed by {{aprovador}}",
        conditional_blocks=[{"condition": "anexo", "content": "Annex: {{anexo}}"}],
    )

    r = admin_client.post(f"/templates/{t['id']}/preview", json={"system_id": system["id"]})
    assert r.status_code == 200
    assert r.json["content"] == "MES 2.1 for Acme; signed by {{aprovador}}"
    assert r.json["manual_placeholders"] == ["aprovador"]
    assert r.json["auto_values"]["sistema.categoria_gamp"] == "5"

    r = admin_client.post(
        f"/templates/{t['id']}/preview",
        json={"system_id": system["id"], "values": {"aprovador": "QA Lead", "anexo": "A1"}},
    )
    assert r.json["content"] == "MES 2.1 for Acme; signed by QA Lead\n\nAnnex: A1"


def test_list_filters(admin_client):
    _template(admin_client)
    _template(admin_client, name="OQ base", document_type="OQ", gamp_category="5", is_active=False)
    r = admin_client.get("/templates", query_string={"document_type": "OQ"})
    assert [t["name"] for t in r.json["templates"]] == ["OQ base"]
    r = admin_client.get("/templates", query_string={"active_only": "1"})
    assert [t["name"] for t in r.json["templates"]] == ["IQ base"]


def test_delete(admin_client):
    t = _template(admin_client)
    assert admin_client.post(f"/templates/{t['id']}/delete").status_code == 200
    assert admin_client.get(f"/templates/{t['id']}").status_code == 404
