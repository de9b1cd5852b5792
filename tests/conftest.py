import pytest
from werkzeug.security import generate_password_hash

from app.corhub import auth, create_app
from app.corhub.db import session_scope
from app.corhub.models import Base, Company, Permission, Role, User

DOC_PERMISSIONS = ("docs.view", "docs.create", "docs.edit", "docs.transition")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.delenv("REVIEW_DUE_WINDOW_DAYS", raising=False)
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=key) for key in DOC_PERMISSIONS}
        manager = Role(key="safety_manager", name="Safety Manager")
        manager.permissions.extend(perms.values())
        worker = Role(key="worker", name="Worker")
        worker.permissions.append(perms["docs.view"])

        ncci = Company(name="North Coast Concrete Inc")
        other = Company(name="Other Builders")

        admin = User(company=ncci, email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(manager)
        reader = User(company=ncci, email="worker@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        reader.roles.append(worker)
        outsider = User(company=other, email="other@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        outsider.roles.append(manager)

        s.add_all(list(perms.values()) + [manager, worker, ncci, other, admin, reader, outsider])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email: str = "admin@example.com", password: str = "pw") -> str:
    """Log in over the JSON API and return the session's CSRF token."""
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r.json["csrf_token"]


def create_doc(client, token: str, **fields) -> dict:
    payload = {"title": "Fall Protection Policy", "document_type_code": "POL"} | fields
    r = client.post("/api/documents", json=payload, headers={"X-CSRF-Token": token})
    assert r.status_code == 201, r.json
    return r.json


def set_status(client, token: str, doc_id: int, version_id: int, new_status: str):
    return client.post(
        f"/api/documents/{doc_id}/status",
        json={"version_id": version_id, "new_status": new_status},
        headers={"X-CSRF-Token": token},
    )


def walk(client, token: str, doc: dict, *statuses: str) -> dict:
    """Apply a sequence of transitions to the current version and return the reloaded document."""
    for st in statuses:
        r = set_status(client, token, doc["id"], doc["current_version"]["id"], st)
        assert r.status_code == 200, r.json
    return client.get(f"/api/documents/{doc['id']}").json
