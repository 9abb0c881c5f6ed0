import pytest

from app.cvms.modules.packages.service import DUPLICATE_ACTIVATION_MESSAGE


@pytest.fixture()
def globex(app, login):
    c = app.test_client()
    login(c, "admin@globex.test")
    return c


@pytest.fixture()
def published_package(admin_client):
    """An Acme package with one template, published to the marketplace."""
    template = admin_client.post(
        "/templates", json={"name": "IQ base", "document_type": "IQ", "content": "IQ for {{sistema.nome}}"}
    ).json["template"]
    r = admin_client.post("/packages", json={"name": "GAMP 4 starter", "gamp_category": "4", "price": "199.90"})
    assert r.status_code == 201
    package = r.json["package"]
    assert package["is_published"] is False
    assert package["price"] == 199.9

    r = admin_client.post(f"/packages/{package['id']}/items", json={"template_id": template["id"]})
    assert r.status_code == 201
    assert r.json["package"]["document_count"] == 1
    assert r.json["package"]["items"][0]["template_name"] == "IQ base"

    r = admin_client.post(f"/packages/{package['id']}/publish")
    assert r.json["package"]["is_published"] is True
    return package


def test_package_validation(admin_client):
    r = admin_client.post("/packages", json={"name": "", "price": "-1"})
    assert r.status_code == 400
    assert {e["field"] for e in r.json["errors"]} == {"name", "price"}
    r = admin_client.post("/packages", json={"name": "x", "price": "abc"})
    assert r.json["errors"][0]["message"] == "Price must be a number."


def test_duplicate_item_conflicts(admin_client, published_package):
    detail = admin_client.get(f"/packages/{published_package['id']}").json["package"]
    template_id = detail["items"][0]["template_id"]
    r = admin_client.post(f"/packages/{published_package['id']}/items", json={"template_id": template_id})
    assert r.status_code == 409


def test_unpublished_package_is_hidden_from_other_companies(admin_client, globex):
    package = admin_client.post("/packages", json={"name": "Draft pack"}).json["package"]
    assert globex.get(f"/packages/{package['id']}").status_code == 404
    assert globex.get("/packages/marketplace").json["packages"] == []
    assert globex.post(f"/packages/{package['id']}/activate").status_code == 404


def test_activation_flow(app, admin_client, globex, login, published_package):
    pid = published_package["id"]

    market = globex.get("/packages/marketplace").json["packages"]
    assert [(p["id"], p["activation_status"]) for p in market] == [(pid, None)]

    r = globex.post(f"/packages/{pid}/activate", json={"notes": "Please"})
    assert r.status_code == 201
    activation = r.json["activation"]
    assert activation["status"] == "pending"

    r = globex.post(f"/packages/{pid}/activate")
    assert r.status_code == 409
    assert r.json["error"] == DUPLICATE_ACTIVATION_MESSAGE

    # the owner cannot activate its own package
    assert admin_client.post(f"/packages/{pid}/activate").status_code == 409

    # company admins cannot decide
    assert globex.post(f"/packages/activations/{activation['id']}/approve").status_code == 403

    superuser = app.test_client()
    login(superuser, "super@cvms.test")
    pending = superuser.get("/packages/activations", query_string={"status": "pending"}).json["activations"]
    assert [a["id"] for a in pending] == [activation["id"]]

    r = superuser.post(f"/packages/activations/{activation['id']}/approve")
    assert r.status_code == 200
    assert r.json["activation"]["status"] == "approved"
    assert r.json["activation"]["approved_at"] is not None
    cloned = r.json["templates"]
    assert [t["name"] for t in cloned] == ["IQ base"]
    assert cloned[0]["parent_template_id"] is not None

    templates = globex.get("/templates").json["templates"]
    assert [t["name"] for t in templates] == ["IQ base"]
    assert templates[0]["company_id"] == r.json["activation"]["company_id"]

    market = globex.get("/packages/marketplace").json["packages"]
    assert market[0]["activation_status"] == "approved"

    # a decided activation cannot be decided again
    assert superuser.post(f"/packages/activations/{activation['id']}/reject").status_code == 409


def test_reject_activation(app, globex, login, published_package):
    activation = globex.post(f"/packages/{published_package['id']}/activate").json["activation"]
    superuser = app.test_client()
    login(superuser, "super@cvms.test")
    r = superuser.post(f"/packages/activations/{activation['id']}/reject", json={"notes": "Not licensed"})
    assert r.json["activation"]["status"] == "rejected"
    assert globex.get("/templates").json["templates"] == []
    assert globex.get("/packages/activations").json["activations"][0]["status"] == "rejected"


def test_remove_item_and_unpublish(admin_client, published_package):
    pid = published_package["id"]
    item_id = admin_client.get(f"/packages/{pid}").json["package"]["items"][0]["id"]
    r = admin_client.post(f"/packages/{pid}/items/{item_id}/delete")
    assert r.json["package"]["document_count"] == 0
    r = admin_client.post(f"/packages/{pid}/unpublish")
    assert r.json["package"]["is_published"] is False
    assert admin_client.get("/packages/marketplace").json["packages"] == []
