def _change(client, **overrides):
    payload = {"title": "Upgrade LIMS to 8.2", "change_type": "upgrade", "priority": "high", "gxp_impact": True}
    payload.update(overrides)
    r = client.post("/changes", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.json["change"]


def test_create_and_validate(admin_client):
    cr = _change(admin_client)
    assert cr["status"] == "draft"
    assert cr["requester_id"] is not None
    assert cr["gxp_impact"] is True
    assert cr["validation_required"] is False

    r = admin_client.post("/changes", json={"title": "ab", "priority": "urgent"})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"title", "change_type", "priority"}


def test_lifecycle(admin_client):
    cr = _change(admin_client)
    cid = cr["id"]

    assert admin_client.post(f"/changes/{cid}/implement").status_code == 409
    assert admin_client.post(f"/changes/{cid}/submit").json["change"]["status"] == "pending"

    r = admin_client.post(f"/changes/{cid}/approve", json={"reason": "CAB 2025-02"})
    approved = r.json["change"]
    assert approved["status"] == "approved"
    assert approved["approver_id"] == approved["requester_id"]
    assert approved["approved_at"] is not None
    assert admin_client.post(f"/changes/{cid}/reject").status_code == 409

    r = admin_client.post(f"/changes/{cid}/implement")
    assert r.json["change"]["status"] == "completed"
    assert r.json["change"]["implemented_at"] is not None


def test_rejected_change_can_be_resubmitted(admin_client):
    cid = _change(admin_client)["id"]
    admin_client.post(f"/changes/{cid}/submit")
    assert admin_client.post(f"/changes/{cid}/reject").json["change"]["status"] == "rejected"
    assert admin_client.post(f"/changes/{cid}/submit").json["change"]["status"] == "pending"


def test_list_filters_and_stats(admin_client):
    system = admin_client.post("/systems", json={"name": "LIMS", "gamp_category": "4"}).json["system"]
    _change(admin_client, system_id=system["id"])
    low = _change(admin_client, title="Patch OS", change_type="patch", priority="low")
    admin_client.post(f"/changes/{low['id']}/approve")

    r = admin_client.get("/changes", query_string={"system_id": system["id"]})
    assert [c["system_name"] for c in r.json["changes"]] == ["LIMS"]

    r = admin_client.get("/changes")
    assert r.json["stats"] == {"total": 2, "pending": 1, "approved": 1, "completed": 0, "rejected": 0}

    r = admin_client.get("/changes", query_string={"q": "patch"})
    assert [c["title"] for c in r.json["changes"]] == ["Patch OS"]


def test_foreign_system_is_rejected(app, admin_client, login):
    other = app.test_client()
    login(other, "admin@globex.test")
    foreign = other.post("/systems", json={"name": "ERP", "gamp_category": "4"}).json["system"]
    r = admin_client.post("/changes", json={"title": "Touch ERP", "change_type": "config", "system_id": foreign["id"]})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "system_id"


def test_delete(admin_client):
    cid = _change(admin_client)["id"]
    assert admin_client.post(f"/changes/{cid}/delete", json={"reason": "Duplicate"}).status_code == 200
    assert admin_client.get(f"/changes/{cid}").status_code == 404
