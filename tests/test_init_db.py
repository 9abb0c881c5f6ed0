from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.cvms.constants import APP_ROLES, PERMISSIONS
from app.cvms.models import Base, Company, Permission, Role, User, UserCompany
from scripts.init_db import seed_only


def test_seed_is_idempotent(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    Base.metadata.create_all(bind=create_engine(url))
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.test")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    monkeypatch.setenv("DEFAULT_COMPANY_NAME", "Pharma Co")

    seed_only(database_url=url)
    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    seed_only(database_url=url)

    with Session(create_engine(url)) as s:
        assert s.query(Permission).count() == len(PERMISSIONS)
        assert sorted(r.key for r in s.query(Role).all()) == sorted(APP_ROLES)
        assert [c.name for c in s.query(Company).all()] == ["Pharma Co"]

        admin = s.query(User).filter(User.email == "root@example.test").one()
        assert admin.is_super_admin
        assert check_password_hash(admin.password_hash, "first-password")
        links = s.query(UserCompany).filter(UserCompany.user_id == admin.id).all()
        assert len(links) == 1
        assert links[0].is_default is True

        super_admin = s.query(Role).filter(Role.key == "super_admin").one()
        assert {p.key for p in super_admin.permissions} == set(PERMISSIONS)
