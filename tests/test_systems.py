import io

from app.cvms.db import session_scope
from app.cvms.models import AuditEvent


def test_system_crud_and_audit(app, admin_client):
    r = admin_client.post(
        "/systems",
        json={
            "name": "LIMS",
            "gamp_category": "4",
            "vendor": "LabWare",
            "criticality": "high",
            "gxp_impact": True,
            "next_revalidation_date": "2025-06-30",
        },
    )
    assert r.status_code == 201
    system = r.json["system"]
    assert system["validation_status"] == "not_started"
    assert system["gamp_label"] == "Configured"
    assert system["gxp_impact"] is True

    r = admin_client.post(f"/systems/{system['id']}", json={"version": "8.1", "reason": "Upgrade"})
    assert r.status_code == 200
    assert r.json["system"]["version"] == "8.1"

    r = admin_client.get("/systems", query_string={"q": "labware"})
    assert [x["name"] for x in r.json["systems"]] == ["LIMS"]

    r = admin_client.get("/systems/upcoming-revalidations")
    assert r.json["systems"][0]["next_revalidation_date"] == "2025-06-30"

    assert admin_client.post(f"/systems/{system['id']}/delete").status_code == 200
    assert admin_client.get(f"/systems/{system['id']}").status_code == 404

    with session_scope(app) as s:
        events = s.query(AuditEvent).filter(AuditEvent.entity_type == "System").order_by(AuditEvent.id).all()
        actions = [e.action for e in events]
        update = s.query(AuditEvent).filter(AuditEvent.action == "system.update").one()
        assert update.reason == "Upgrade"
        assert '"version"' in update.metadata_json
    assert actions == ["system.create", "system.update", "system.delete"]


def test_system_validation_errors(admin_client):
    r = admin_client.post("/systems", json={"gamp_category": "2", "installation_location": "moon"})
    assert r.status_code == 400
    fields = {e["field"] for e in r.json["errors"]}
    assert fields == {"name", "gamp_category", "installation_location"}


def test_system_owner_must_be_company_member(admin_client):
    r = admin_client.post("/systems", json={"name": "MES", "gamp_category": "5", "system_owner_id": 99999})
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "system_owner_id"


def test_import_csv(admin_client):
    r = admin_client.get("/systems/import/template")
    assert r.status_code == 200
    assert "template_sistemas.csv" in r.headers["Content-Disposition"]

    content = r.data + b"\n;SemNome;;;;;;;;;\nMES;Siemens;1.0;3;Baixa;;;Nao;;;Nuvem\n"
    r = admin_client.post(
        "/systems/import",
        data={"file": (io.BytesIO(content), "systems.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["created"] == 2
    assert r.json["errors"] == ["Line 3: system name is required"]
    mes = next(x for x in r.json["systems"] if x["name"] == "MES")
    assert mes["gamp_category"] == "3"
    assert mes["gamp_label"] == "COTS"
    assert mes["criticality"] == "low"
    assert mes["installation_location"] == "cloud"


def test_import_without_name_column(admin_client):
    r = admin_client.post(
        "/systems/import",
        data={"file": (io.BytesIO(b"Vendor\nAcme\n"), "x.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


def test_ira_status(admin_client):
    sid = admin_client.post("/systems", json={"name": "ERP", "gamp_category": "5"}).json["system"]["id"]
    admin_client.post("/systems", json={"name": "CDS", "gamp_category": "4"})
    admin_client.post("/risks", json={"title": "ERP IRA", "assessment_type": "IRA", "system_id": sid})

    rows = {row["name"]: row for row in admin_client.get("/systems/ira-status").json["systems"]}
    assert rows["ERP"]["has_ira"] is True
    assert rows["ERP"]["ira"]["title"] == "ERP IRA"
    assert rows["CDS"]["has_ira"] is False
