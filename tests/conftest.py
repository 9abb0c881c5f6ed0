import pytest
from werkzeug.security import generate_password_hash

from app.cvms import auth as auth_module
from app.cvms import create_app
from app.cvms.constants import APP_ROLES, PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS
from app.cvms.db import session_scope
from app.cvms.models import Base, Company, Permission, Role, User, UserCompany

PASSWORD = "password123"

# email -> (role, companies; the first one is the default)
ACCOUNTS = {
    "admin@acme.test": ("admin", ("Acme",)),
    "validator@acme.test": ("validator", ("Acme",)),
    "reader@acme.test": ("reader", ("Acme",)),
    "admin@globex.test": ("admin", ("Globex",)),
    "super@cvms.test": ("super_admin", ("Acme", "Globex")),
}


def _seed(s) -> None:
    perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS.items()}
    s.add_all(perms.values())
    roles = {}
    for key in APP_ROLES:
        role = Role(key=key, name=ROLE_NAMES[key])
        role.permissions.extend(perms[k] for k in ROLE_PERMISSIONS[key])
        roles[key] = role
    s.add_all(roles.values())

    companies = {
        "Acme": Company(name="Acme", cnpj="11222333000181", settings={}),
        "Globex": Company(name="Globex", settings={}),
    }
    s.add_all(companies.values())
    s.flush()

    for email, (role_key, company_names) in ACCOUNTS.items():
        u = User(email=email, password_hash=generate_password_hash(PASSWORD), is_active=True)
        u.roles.append(roles[role_key])
        s.add(u)
        s.flush()
        for i, name in enumerate(company_names):
            s.add(UserCompany(user_id=u.id, company_id=companies[name].id, is_default=i == 0))


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth_module._login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        _seed(s)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login():
    """Log a test client in and make it send the session's CSRF token on every request."""

    def _login(client, email="admin@acme.test", password=PASSWORD):
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.get_json()
        client.environ_base["HTTP_X_CSRF_TOKEN"] = r.get_json()["csrf_token"]
        return r.get_json()["user"]

    return _login


@pytest.fixture()
def admin_client(client, login):
    login(client)
    return client
