import logging


def _project(client, **overrides):
    payload = {"name": "LIMS validation", "project_type": "initial", "start_date": "2025-01-06"}
    payload.update(overrides)
    r = client.post("/projects", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.json["project"]


def test_create_and_validate(admin_client):
    project = _project(admin_client)
    assert project["status"] == "draft"
    assert project["progress"] == 0
    assert project["start_date"] == "2025-01-06"

    r = admin_client.post("/projects", json={"name": "", "progress": 150})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"name", "progress"}


def test_workflow(admin_client, caplog):
    project = _project(admin_client)
    pid = project["id"]

    assert admin_client.post(f"/projects/{pid}/approve").status_code == 409
    with caplog.at_level(logging.INFO):
        r = admin_client.post(f"/projects/{pid}/submit")
    assert r.json["project"]["status"] == "pending"
    assert "event=submit" in caplog.text

    r = admin_client.post(f"/projects/{pid}/reject")
    assert r.status_code == 400
    assert r.json["error"] == "A rejection reason is required."

    r = admin_client.post(f"/projects/{pid}/reject", json={"reason": "Scope unclear"})
    rejected = r.json["project"]
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Scope unclear"
    assert rejected["approved_at"] is not None

    admin_client.post(f"/projects/{pid}/submit")
    r = admin_client.post(f"/projects/{pid}/approve")
    assert r.json["project"]["status"] == "approved"
    assert r.json["project"]["rejection_reason"] is None

    r = admin_client.post(f"/projects/{pid}/complete")
    completed = r.json["project"]
    assert completed["status"] == "completed"
    assert completed["progress"] == 100
    assert completed["completion_date"] is not None
    assert admin_client.post(f"/projects/{pid}/complete").status_code == 409


def test_progress_follows_tasks_and_deliverables(admin_client):
    pid = _project(admin_client)["id"]
    t1 = admin_client.post(f"/projects/{pid}/tasks", json={"name": "Write IQ"}).json["task"]
    admin_client.post(f"/projects/{pid}/tasks", json={"name": "Run IQ"})
    d = admin_client.post(f"/projects/{pid}/deliverables", json={"name": "IQ report", "document_type": "IQ"}).json[
        "deliverable"
    ]
    assert d["sort_order"] == 0

    r = admin_client.post(f"/projects/tasks/{t1['id']}", json={"status": "completed"})
    assert r.json["task"]["completed_at"] is not None
    assert admin_client.get(f"/projects/{pid}").json["project"]["progress"] == 33

    r = admin_client.post(f"/projects/tasks/{t1['id']}", json={"status": "in_progress"})
    assert r.json["task"]["completed_at"] is None
    assert admin_client.get(f"/projects/{pid}").json["project"]["progress"] == 0

    doc = admin_client.post("/documents", json={"title": "IQ report", "document_type": "IQ"}).json["document"]
    r = admin_client.post(f"/projects/deliverables/{d['id']}/document", json={"document_id": doc["id"]})
    assert r.json["deliverable"]["status"] == "completed"
    assert r.json["deliverable"]["document_id"] == doc["id"]

    overview = admin_client.get(f"/projects/{pid}").json["project"]
    assert overview["progress"] == 33
    assert overview["computed_progress"] == 33
    assert len(overview["tasks"]) == 2

    r = admin_client.post(f"/projects/deliverables/{d['id']}/document", json={"document_id": ""})
    assert r.json["deliverable"]["status"] == "pending"
    assert r.json["deliverable"]["document_id"] is None


def test_task_validation(admin_client):
    pid = _project(admin_client)["id"]
    r = admin_client.post(f"/projects/{pid}/tasks", json={"name": "x", "status": "done", "estimated_hours": -2})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"status", "estimated_hours"}


def test_apply_templates(admin_client):
    pid = _project(admin_client)["id"]
    admin_client.post(f"/projects/{pid}/deliverables", json={"name": "Existing"})

    r = admin_client.post(f"/projects/{pid}/apply-templates", json={"kind": "deliverable", "gamp_category": "4"})
    assert r.status_code == 400
    assert r.json["error"] == "No templates found for this category"

    for i, name in enumerate(("URS", "IQ")):
        r = admin_client.post(
            "/projects/templates/deliverable",
            json={"gamp_category": "4", "name": name, "document_type": name, "sort_order": i},
        )
        assert r.status_code == 201
    admin_client.post("/projects/templates/deliverable", json={"gamp_category": "5", "name": "DS"})

    r = admin_client.post(f"/projects/{pid}/apply-templates", json={"kind": "deliverable", "gamp_category": "4"})
    assert r.status_code == 201
    assert [(d["name"], d["sort_order"]) for d in r.json["created"]] == [("URS", 1), ("IQ", 2)]

    admin_client.post("/projects/templates/task", json={"gamp_category": "4", "name": "Kick-off", "estimated_hours": 2})
    r = admin_client.post(f"/projects/{pid}/apply-templates", json={"kind": "task", "gamp_category": "4"})
    assert [t["name"] for t in r.json["created"]] == ["Kick-off"]
    assert r.json["created"][0]["estimated_hours"] == 2.0

    assert admin_client.post(f"/projects/{pid}/apply-templates", json={"kind": "other"}).status_code == 400


def test_work_template_crud(admin_client):
    r = admin_client.post("/projects/templates/task", json={"name": "Kick-off"})
    assert r.status_code == 400
    t = admin_client.post("/projects/templates/task", json={"name": "Kick-off", "gamp_category": "3"}).json[
        "template"
    ]
    r = admin_client.post(f"/projects/templates/task/{t['id']}", json={"phase": "Planning"})
    assert r.json["template"]["phase"] == "Planning"
    assert [x["name"] for x in admin_client.get("/projects/templates/task").json["templates"]] == ["Kick-off"]
    assert admin_client.post(f"/projects/templates/task/{t['id']}/delete").status_code == 200
    assert admin_client.get("/projects/templates/unknown").status_code == 404


def test_delete_cascades(admin_client):
    pid = _project(admin_client)["id"]
    task = admin_client.post(f"/projects/{pid}/tasks", json={"name": "Write IQ"}).json["task"]
    assert admin_client.post(f"/projects/{pid}/delete", json={"reason": "Duplicate"}).status_code == 200
    assert admin_client.get(f"/projects/{pid}").status_code == 404
    assert admin_client.post(f"/projects/tasks/{task['id']}").status_code == 404


def test_deleting_last_work_item_resets_progress(admin_client):
    pid = _project(admin_client)["id"]
    task = admin_client.post(f"/projects/{pid}/tasks", json={"name": "Write IQ", "status": "completed"}).json["task"]
    admin_client.post(f"/projects/tasks/{task['id']}", json={"status": "completed"})
    assert admin_client.get(f"/projects/{pid}").json["project"]["progress"] == 100

    assert admin_client.post(f"/projects/tasks/{task['id']}/delete").status_code == 200
    project = admin_client.get(f"/projects/{pid}").json["project"]
    assert project["progress"] == 0
    assert project["computed_progress"] == 0

    d = admin_client.post(f"/projects/{pid}/deliverables", json={"name": "IQ report"}).json["deliverable"]
    doc = admin_client.post("/documents", json={"title": "IQ report", "document_type": "IQ"}).json["document"]
    admin_client.post(f"/projects/deliverables/{d['id']}/document", json={"document_id": doc["id"]})
    assert admin_client.get(f"/projects/{pid}").json["project"]["progress"] == 100
    admin_client.post(f"/projects/deliverables/{d['id']}/delete")
    assert admin_client.get(f"/projects/{pid}").json["project"]["progress"] == 0
