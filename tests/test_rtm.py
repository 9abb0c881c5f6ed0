import csv
import io


def _requirement(client, code, **extra):
    r = client.post("/rtm/requirements", json={"code": code, "title": f"Requirement {code}", **extra})
    assert r.status_code == 201, r.get_json()
    return r.json["requirement"]


def _test_case(client, code, **extra):
    r = client.post("/rtm/test-cases", json={"code": code, "title": f"Test {code}", **extra})
    assert r.status_code == 201, r.get_json()
    return r.json["test_case"]


def test_codes_are_unique_per_company(app, admin_client, login):
    _requirement(admin_client, "URS-001")
    r = admin_client.post("/rtm/requirements", json={"code": "URS-001", "title": "dup"})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "code"

    other = app.test_client()
    login(other, "admin@globex.test")
    assert other.post("/rtm/requirements", json={"code": "URS-001", "title": "Globex"}).status_code == 201


def test_requirement_choice_validation(admin_client):
    r = admin_client.post("/rtm/requirements", json={"code": "X-1", "title": "x", "type": "SRS", "priority": "urgent"})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"type", "priority"}


def test_execute_sets_status_and_executor(admin_client):
    tc = _test_case(admin_client, "TC-001")
    assert tc["status"] == "pending"

    r = admin_client.post(f"/rtm/test-cases/{tc['id']}/execute", json={"result": "failed"})
    assert r.status_code == 200
    executed = r.json["test_case"]
    assert executed["status"] == "failed"
    assert executed["result"] == "failed"
    assert executed["executed_at"] is not None
    assert executed["executed_by_user_id"] is not None

    r = admin_client.post(f"/rtm/test-cases/{tc['id']}/execute", json={"result": "skipped"})
    assert r.status_code == 400


def test_links_and_coverage(admin_client):
    high = _requirement(admin_client, "URS-001", priority="high")
    medium = _requirement(admin_client, "URS-002", priority="medium")
    _requirement(admin_client, "URS-003", priority="low")
    tc1 = _test_case(admin_client, "TC-001")
    tc2 = _test_case(admin_client, "TC-002")

    r = admin_client.post("/rtm/links", json={"requirement_id": high["id"], "test_case_id": tc1["id"]})
    assert r.status_code == 201
    r = admin_client.post("/rtm/links", json={"requirement_id": high["id"], "test_case_id": tc1["id"]})
    assert r.status_code == 409
    admin_client.post("/rtm/links", json={"requirement_id": medium["id"], "test_case_id": tc2["id"]})
    admin_client.post(f"/rtm/test-cases/{tc1['id']}/execute", json={"result": "passed"})

    r = admin_client.get("/rtm/coverage")
    cov = r.json["coverage"]
    assert cov["total_requirements"] == 3
    assert cov["covered_requirements"] == 2
    assert cov["coverage_percentage"] == 67
    assert cov["passed_requirements"] == 1
    assert cov["pending_requirements"] == 1
    assert cov["execution_percentage"] == 50
    assert cov["pass_rate"] == 100
    assert [u["code"] for u in cov["uncovered_requirements"]] == ["URS-003"]
    assert cov["by_priority"]["high"] == {"total": 1, "covered": 1, "passed": 1}

    assert r.json["test_execution"] == {"passed": 1, "failed": 0, "blocked": 0, "pending": 1}
    assert r.json["links"]["total_links"] == 2
    assert r.json["links"]["passed_links"] == 1


def test_link_requires_both_ids(admin_client):
    req = _requirement(admin_client, "URS-001")
    assert admin_client.post("/rtm/links", json={"requirement_id": req["id"]}).status_code == 400


def test_export_csv(admin_client):
    covered = _requirement(admin_client, "URS-001", type="URS")
    _requirement(admin_client, "URS-002")
    tc = _test_case(admin_client, "TC-001")
    admin_client.post("/rtm/links", json={"requirement_id": covered["id"], "test_case_id": tc["id"]})

    r = admin_client.get("/rtm/export.csv")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "attachment" in r.headers["Content-Disposition"]
    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8"))))
    assert rows[0][0] == "Requirement Code"
    assert rows[1][:5] == ["URS-001", "Requirement URS-001", "URS", "medium", "TC-001"]
    assert rows[2][0] == "URS-002"
    assert rows[2][4] == ""


def test_evidence_upload_download_delete(admin_client):
    tc = _test_case(admin_client, "TC-001")
    r = admin_client.post(
        f"/rtm/test-cases/{tc['id']}/evidence",
        data={"title": "Screenshot", "file": (io.BytesIO(b"png-bytes"), "shot.png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    evidence = r.json["evidence"]
    assert evidence["original_filename"] == "shot.png"
    assert evidence["size_bytes"] == len(b"png-bytes")

    r = admin_client.get(f"/rtm/evidence/{evidence['id']}/download")
    assert r.status_code == 200
    assert r.data == b"png-bytes"

    detail = admin_client.get(f"/rtm/test-cases/{tc['id']}").json["test_case"]
    assert [e["title"] for e in detail["evidence"]] == ["Screenshot"]

    assert admin_client.post(f"/rtm/evidence/{evidence['id']}/delete").status_code == 200
    assert admin_client.get(f"/rtm/evidence/{evidence['id']}/download").status_code == 404


def test_evidence_without_file(admin_client):
    tc = _test_case(admin_client, "TC-001")
    r = admin_client.post(f"/rtm/test-cases/{tc['id']}/evidence", json={"title": "Manual note"})
    assert r.status_code == 201
    evidence = r.json["evidence"]
    r = admin_client.get(f"/rtm/evidence/{evidence['id']}/download")
    assert r.status_code == 404
    assert admin_client.post(f"/rtm/test-cases/{tc['id']}/evidence", json={}).status_code == 400


def test_evidence_with_same_filename_is_stored_separately(admin_client):
    tc = _test_case(admin_client, "TC-001")
    ids = []
    for body in (b"one", b"two"):
        r = admin_client.post(
            f"/rtm/test-cases/{tc['id']}/evidence",
            data={"title": "Screenshot", "file": (io.BytesIO(body), "shot.png")},
            content_type="multipart/form-data",
        )
        assert r.status_code == 201
        ids.append(r.json["evidence"]["id"])

    assert admin_client.post(f"/rtm/evidence/{ids[0]}/delete").status_code == 200
    r = admin_client.get(f"/rtm/evidence/{ids[1]}/download")
    assert r.status_code == 200
    assert r.data == b"two"
