import os
import sys
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.cvms.constants import APP_ROLES, PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS
from app.cvms.db import url_session_scope
from app.cvms.models import Company, Permission, Role, User, UserCompany


def seed_roles(s: Session) -> dict[str, Role]:
    """Create missing permissions and roles, and grant each role its default permissions."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key in APP_ROLES:
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=ROLE_NAMES[key])
            s.add(role)
        for perm_key in ROLE_PERMISSIONS[key]:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role
    return roles


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles, a default company and the super admin in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@cvms.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    company_name = (os.environ.get("DEFAULT_COMPANY_NAME") or "Default Company").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///cvms.db").strip()

    # No app factory here: release runs this before the web process exists.
    with url_session_scope(db_url) as s:
        roles = seed_roles(s)

        company = s.query(Company).order_by(Company.id.asc()).first()
        if not company:
            company = Company(name=company_name, settings={})
            s.add(company)
            s.flush()

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
            s.flush()
        if roles["super_admin"] not in user.roles:
            user.roles.append(roles["super_admin"])
        if not any(link.company_id == company.id for link in user.company_links or []):
            s.add(UserCompany(user_id=user.id, company_id=company.id, is_default=not user.company_links))

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
