def _risk(client, **overrides):
    payload = {
        "title": "Audit trail gaps",
        "assessment_type": "FMEA",
        "probability": 5,
        "severity": 5,
        "detectability": 2,
    }
    payload.update(overrides)
    r = client.post("/risks", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.json["risk"]


def test_create_scores_and_rescores(admin_client):
    risk = _risk(admin_client)
    assert risk["rpn"] == 50
    assert risk["risk_level"] == "medium"
    assert risk["status"] == "draft"

    r = admin_client.post(f"/risks/{risk['id']}", json={"severity": 10, "probability": 10, "detectability": 5})
    assert r.status_code == 200
    assert r.json["risk"]["rpn"] == 500
    assert r.json["risk"]["risk_level"] == "critical"

    r = admin_client.get("/risks")
    assert r.json["summary"]["total"] == 1
    assert r.json["summary"]["by_level"]["critical"] == 1
    assert r.json["summary"]["open_high"] == 1


def test_defaults_apply_when_factors_are_missing(admin_client):
    risk = _risk(admin_client, probability=None, severity=None, detectability=None)
    assert (risk["probability"], risk["severity"], risk["detectability"]) == (5, 5, 5)
    assert risk["risk_level"] == "medium"


def test_factor_out_of_range_is_rejected(admin_client):
    r = admin_client.post("/risks", json={"title": "X", "assessment_type": "IRA", "severity": 11})
    assert r.status_code == 400
    assert [e["field"] for e in r.json["errors"]] == ["severity"]

    r = admin_client.post("/risks", json={"title": "X", "assessment_type": "HAZOP"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "assessment_type"


def test_score_preview(admin_client):
    r = admin_client.get("/risks/score", query_string={"probability": 8, "severity": 5, "detectability": 5})
    assert r.json == {"rpn": 200, "risk_level": "high"}

    r = admin_client.get("/risks/score", query_string={"probability": 0, "severity": 5, "detectability": 5})
    assert r.status_code == 400


def test_tags(admin_client):
    risk = _risk(admin_client)
    system = admin_client.post("/systems", json={"name": "ERP", "gamp_category": "4"}).json["system"]

    admin_client.post(f"/risks/{risk['id']}/tags", json={"tag": "data-integrity"})
    r = admin_client.post(f"/risks/{risk['id']}/tags", json={"system_id": system["id"]})
    assert r.json["risk"]["tags"] == ["data-integrity", "sistema:ERP"]

    # adding an existing tag is a no-op
    r = admin_client.post(f"/risks/{risk['id']}/tags", json={"tag": "data-integrity"})
    assert r.json["risk"]["tags"] == ["data-integrity", "sistema:ERP"]

    assert admin_client.post(f"/risks/{risk['id']}/tags", json={}).status_code == 400

    r = admin_client.get("/risks", query_string={"tag": "sistema:ERP"})
    assert [x["id"] for x in r.json["risks"]] == [risk["id"]]


def test_mitigation_actions(admin_client):
    risk = _risk(admin_client)
    r = admin_client.post(f"/risks/{risk['id']}/actions", json={"title": "Enable audit trail", "due_date": "2025-01-31"})
    assert r.status_code == 201
    action = r.json["mitigation_action"]
    assert action["status"] == "pending"
    assert action["completed_at"] is None

    r = admin_client.post(f"/risks/actions/{action['id']}/complete")
    assert r.status_code == 200
    assert r.json["mitigation_action"]["status"] == "completed"
    assert r.json["mitigation_action"]["completed_at"] is not None

    r = admin_client.post(f"/risks/actions/{action['id']}/complete")
    assert r.status_code == 409

    r = admin_client.get(f"/risks/{risk['id']}/actions")
    assert len(r.json["mitigation_actions"]) == 1

    assert admin_client.post(f"/risks/actions/{action['id']}/delete").status_code == 200
    assert admin_client.get(f"/risks/{risk['id']}/actions").json["mitigation_actions"] == []


def test_action_requires_title(admin_client):
    risk = _risk(admin_client)
    r = admin_client.post(f"/risks/{risk['id']}/actions", json={"description": "no title"})
    assert r.status_code == 400


def test_traceability_chain(admin_client):
    risk = _risk(admin_client)
    req = admin_client.post("/rtm/requirements", json={"code": "URS-001", "title": "Audit trail", "type": "URS"}).json[
        "requirement"
    ]
    tc = admin_client.post("/rtm/test-cases", json={"code": "TC-001", "title": "Audit trail on"}).json["test_case"]
    admin_client.post(f"/rtm/test-cases/{tc['id']}/execute", json={"result": "passed"})
    admin_client.post(f"/risks/{risk['id']}/actions", json={"title": "Configure audit trail"})

    r = admin_client.post(f"/risks/{risk['id']}/requirements", json={"requirement_id": req["id"]})
    assert r.status_code == 201
    r = admin_client.post(f"/risks/{risk['id']}/requirements", json={"requirement_id": req["id"]})
    assert r.status_code == 409
    assert admin_client.post(f"/risks/{risk['id']}/test-cases", json={"test_case_id": tc["id"]}).status_code == 201

    r = admin_client.get(f"/risks/{risk['id']}/traceability")
    summary = r.json["summary"]
    assert summary == {
        "requirements": 1,
        "risk_level": "medium",
        "rpn": 50,
        "mitigations_total": 1,
        "mitigations_completed": 0,
        "test_cases": 1,
        "test_cases_passed": 1,
        "evidence": 0,
    }
    assert r.json["requirements"][0]["code"] == "URS-001"

    r = admin_client.post(f"/risks/{risk['id']}/requirements/{req['id']}/delete")
    assert r.json["summary"]["requirements"] == 0
    assert admin_client.post(f"/risks/{risk['id']}/requirements/{req['id']}/delete").status_code == 404


def test_link_requires_an_id(admin_client):
    risk = _risk(admin_client)
    assert admin_client.post(f"/risks/{risk['id']}/test-cases", json={}).status_code == 400


def test_reader_cannot_edit(client, login):
    login(client, "reader@acme.test")
    assert client.get("/risks").status_code == 200
    r = client.post("/risks", json={"title": "X", "assessment_type": "IRA"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "risks.edit"
