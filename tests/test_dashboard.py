from datetime import date, timedelta


def test_empty_dashboard(admin_client):
    r = admin_client.get("/dashboard")
    assert r.status_code == 200
    stats = r.json["stats"]
    assert stats["total_systems"] == 0
    assert stats["gamp_distribution"] == {"gamp1": 0, "gamp3": 0, "gamp4": 0, "gamp5": 0}
    assert "rejected" not in stats["project_status"]
    assert r.json["recent_risks"] == []
    assert r.json["upcoming_revalidations"] == []


def test_dashboard_aggregates_company_data(app, admin_client, login):
    soon = (date.today() + timedelta(days=10)).isoformat()
    lims = admin_client.post(
        "/systems",
        json={"name": "LIMS", "gamp_category": "4", "validation_status": "validated", "next_revalidation_date": soon},
    ).json["system"]
    admin_client.post("/systems", json={"name": "MES", "gamp_category": "5"})

    admin_client.post(
        "/risks",
        json={
            "title": "Data loss",
            "assessment_type": "FMEA",
            "system_id": lims["id"],
            "probability": 10,
            "severity": 10,
            "detectability": 5,
        },
    )
    admin_client.post("/risks", json={"title": "Minor", "assessment_type": "IRA", "probability": 1})

    cid = admin_client.post("/changes", json={"title": "Upgrade LIMS", "change_type": "upgrade"}).json["change"]["id"]
    admin_client.post(f"/changes/{cid}/submit")
    pid = admin_client.post("/projects", json={"name": "LIMS IQ/OQ", "system_id": lims["id"]}).json["project"]["id"]
    admin_client.post(f"/projects/{pid}/submit")
    admin_client.post("/documents", json={"title": "URS", "document_type": "URS"})

    # another company's data never leaks in
    other = app.test_client()
    login(other, "admin@globex.test")
    other.post("/systems", json={"name": "ERP", "gamp_category": "4"})

    r = admin_client.get("/dashboard")
    stats = r.json["stats"]
    assert stats["total_systems"] == 2
    assert stats["validated_systems"] == 1
    assert stats["high_risks"] == 1
    assert stats["pending_changes"] == 1
    assert stats["active_projects"] == 1
    assert stats["total_documents"] == 1
    assert stats["gamp_distribution"] == {"gamp1": 0, "gamp3": 0, "gamp4": 1, "gamp5": 1}
    assert stats["project_status"]["pending"] == 1
    assert stats["risks_by_level"]["critical"] == 1

    assert [s["name"] for s in r.json["upcoming_revalidations"]] == ["LIMS"]
    assert {x["title"] for x in r.json["recent_risks"]} == {"Data loss", "Minor"}
    assert r.json["active_projects"][0]["system_name"] == "LIMS"
    assert [c["title"] for c in r.json["recent_changes"]] == ["Upgrade LIMS"]

    assert admin_client.get("/dashboard/stats").json["stats"] == stats
