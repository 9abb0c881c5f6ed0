from datetime import timedelta

from app.cvms.db import session_scope
from app.cvms.models import Invitation
from app.cvms.utils import utcnow


def _invite(client, email="new.person@acme.test", role="validator"):
    r = client.post("/invitations", json={"email": email, "role": role})
    assert r.status_code == 201, r.get_json()
    return r.json["invitation"]


def test_create_validates_and_defaults(admin_client):
    inv = _invite(admin_client, email="New.Person@acme.test")
    assert inv["email"] == "new.person@acme.test"
    assert inv["status"] == "pending"
    assert inv["invited_by_email"] == "admin@acme.test"
    assert len(inv["token"]) >= 32

    r = admin_client.post("/invitations", json={"email": "new.person@acme.test", "role": "reader"})
    assert r.status_code == 400
    assert "pending invitation" in r.json["errors"][0]["message"]

    r = admin_client.post("/invitations", json={"email": "reader@acme.test"})
    assert r.status_code == 400
    assert "already part of the company" in r.json["errors"][0]["message"]

    r = admin_client.post("/invitations", json={"email": "not-an-email", "role": "super_admin"})
    assert {e["field"] for e in r.json["errors"]} == {"email", "role"}

    assert _invite(admin_client, email="quiet@acme.test", role="")["role"] == "reader"


def test_new_account_accepts_invitation(admin_client, app):
    inv = _invite(admin_client)
    guest = app.test_client()

    r = guest.get(f"/auth/invitations/{inv['token']}")
    assert r.status_code == 200
    assert r.json["invitation"] == {
        "email": "new.person@acme.test",
        "role": "validator",
        "company_name": "Acme",
        "expires_at": inv["expires_at"],
    }
    assert guest.get("/auth/invitations/not-a-token").status_code == 404

    r = guest.post(f"/auth/invitations/{inv['token']}/accept", json={"password": "short"})
    assert r.status_code == 400
    r = guest.post(
        f"/auth/invitations/{inv['token']}/accept",
        json={"password": "long-enough-password", "full_name": "New Person"},
    )
    assert r.status_code == 200, r.get_json()
    user = r.json["user"]
    assert user["roles"] == ["validator"]
    assert user["company"]["name"] == "Acme"
    assert guest.get("/systems").status_code == 200

    assert guest.post(f"/auth/invitations/{inv['token']}/accept", json={}).status_code == 404
    listed = admin_client.get("/invitations").json["invitations"]
    assert listed[0]["status"] == "accepted"
    assert listed[0]["accepted_by_user_id"] == user["id"]


def test_signed_in_user_joins_another_company(app, client, login):
    globex = app.test_client()
    login(globex, "admin@globex.test")
    inv = _invite(globex, email="reader@acme.test", role="reader")

    # an existing account must sign in first
    assert client.post(f"/auth/invitations/{inv['token']}/accept", json={"password": "whatever1"}).status_code == 401

    login(client, "validator@acme.test")
    r = client.post(f"/auth/invitations/{inv['token']}/accept", json={})
    assert r.status_code == 409

    other = app.test_client()
    login(other, "reader@acme.test")
    r = other.post(f"/auth/invitations/{inv['token']}/accept", json={})
    assert r.status_code == 200, r.get_json()
    assert r.json["user"]["company"]["name"] == "Globex"
    assert sorted(c["name"] for c in r.json["user"]["companies"]) == ["Acme", "Globex"]
    assert r.json["user"]["roles"] == ["reader"]


def test_signed_in_accept_checks_csrf(app, admin_client, login):
    inv = _invite(admin_client, email="admin@globex.test", role="reader")
    other = app.test_client()
    login(other, "admin@globex.test")
    other.environ_base.pop("HTTP_X_CSRF_TOKEN")
    assert other.post(f"/auth/invitations/{inv['token']}/accept", json={}).status_code == 400


def test_cancel_and_resend(admin_client):
    inv = _invite(admin_client)
    r = admin_client.post(f"/invitations/{inv['id']}/cancel", json={"reason": "Wrong role"})
    assert r.json["invitation"]["status"] == "cancelled"
    assert admin_client.post(f"/invitations/{inv['id']}/cancel").status_code == 409
    assert admin_client.get(f"/auth/invitations/{inv['token']}").status_code == 404
    assert admin_client.post(f"/invitations/{inv['id']}/resend").status_code == 409

    second = _invite(admin_client)
    r = admin_client.post(f"/invitations/{second['id']}/resend")
    assert r.status_code == 201
    fresh = r.json["invitation"]
    assert fresh["token"] != second["token"]
    assert fresh["role"] == "validator"

    listed = admin_client.get("/invitations").json["invitations"]
    assert [i["id"] for i in listed] == [fresh["id"], second["id"], inv["id"]]
    assert [i["status"] for i in listed] == ["pending", "cancelled", "cancelled"]
    assert [i["id"] for i in admin_client.get("/invitations?status=pending").json["invitations"]] == [fresh["id"]]
    assert admin_client.get("/invitations?status=lost").status_code == 400


def test_expired_invitation(admin_client, app):
    inv = _invite(admin_client)
    with session_scope(app) as s:
        s.get(Invitation, inv["id"]).expires_at = utcnow() - timedelta(minutes=1)

    assert [i["id"] for i in admin_client.get("/invitations?status=expired").json["invitations"]] == [inv["id"]]
    assert admin_client.get(f"/auth/invitations/{inv['token']}").status_code == 404
    guest = app.test_client()
    r = guest.post(f"/auth/invitations/{inv['token']}/accept", json={"password": "long-enough-password"})
    assert r.status_code == 404
    assert admin_client.post(f"/invitations/{inv['id']}/cancel").status_code == 409

    # expired invitations do not block a new one, and can be reissued
    r = admin_client.post(f"/invitations/{inv['id']}/resend")
    assert r.status_code == 201
    assert r.json["invitation"]["status"] == "pending"


def test_invitations_are_admin_only_and_scoped(admin_client, app, login):
    inv = _invite(admin_client)

    validator = app.test_client()
    login(validator, "validator@acme.test")
    assert validator.get("/invitations").status_code == 403
    assert validator.post("/invitations", json={"email": "x@acme.test"}).status_code == 403

    globex = app.test_client()
    login(globex, "admin@globex.test")
    assert globex.get("/invitations").json["invitations"] == []
    assert globex.post(f"/invitations/{inv['id']}/cancel").status_code == 404
