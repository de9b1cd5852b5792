import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.corhub.models import Company, Permission, Role, User

# (key, name) pairs; every role listed in ROLE_PERMISSIONS must use keys from here.
PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("docs.view", "Docs: view registry"),
    ("docs.create", "Docs: create"),
    ("docs.edit", "Docs: edit details and create new versions"),
    ("docs.transition", "Docs: change lifecycle status"),
)

ROLE_PERMISSIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "admin": ("Administrator", ("docs.view", "docs.create", "docs.edit", "docs.transition")),
    "safety_manager": ("Safety Manager", ("docs.view", "docs.create", "docs.edit", "docs.transition")),
    "worker": ("Worker", ("docs.view",)),
}


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed company/permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    company_name = (os.environ.get("COMPANY_NAME") or "Demo Safety Co").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@corhub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///corhub.db").strip()

    # Direct engine/session so this can run in release without building the Flask app.
    with _session_scope(db_url) as s:
        company = s.query(Company).filter(Company.name == company_name).one_or_none()
        if not company:
            company = Company(name=company_name, is_active=True)
            s.add(company)

        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for role_key, (role_name, keys) in ROLE_PERMISSIONS.items():
            role = s.query(Role).filter(Role.key == role_key).one_or_none()
            if not role:
                role = Role(key=role_key, name=role_name)
                s.add(role)
            for key in keys:
                if perms[key] not in role.permissions:
                    role.permissions.append(perms[key])
            roles[role_key] = role

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                company=company,
                email=admin_email,
                full_name="Administrator",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Company: {company_name}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
