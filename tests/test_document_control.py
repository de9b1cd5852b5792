from app.corhub.db import session_scope
from app.corhub.models import AuditEvent
from app.corhub.modules.document_control.models import DocumentVersion

from conftest import create_doc, login, set_status, walk


def test_document_lifecycle_end_to_end_over_json_api(client):
    token = login(client)

    doc = create_doc(client, token, department="Operations", next_review_date="2027-01-15")
    assert doc["control_number"] == "NCCI-POL-001"
    assert doc["status"] == "draft"
    assert doc["version"] == "1.0"
    assert doc["available_transitions"] == [{"label": "Submit for Review", "status": "pending_review", "color": "amber"}]

    doc = walk(client, token, doc, "pending_review", "under_review", "approved")
    assert doc["status"] == "approved"
    assert [t["status"] for t in doc["available_transitions"]] == ["active", "draft"]
    assert doc["current_version"]["approved_at"] is not None
    assert doc["effective_date"] is None

    doc = walk(client, token, doc, "active")
    assert doc["status"] == "active"
    assert doc["effective_date"] is not None
    assert doc["current_version"]["published_at"] is not None

    doc = walk(client, token, doc, "obsolete")
    assert doc["status"] == "obsolete"
    assert doc["available_transitions"] == []


def test_status_endpoint_returns_updated_version(client):
    token = login(client)
    doc = create_doc(client, token)
    vid = doc["current_version"]["id"]

    r = set_status(client, token, doc["id"], vid, "pending_review")
    assert r.status_code == 200
    v = r.json["version"]
    assert v["id"] == vid
    assert v["status"] == "pending_review"
    assert v["is_current"] is True
    assert v["prepared_at"] is not None
    assert v["reviewed_at"] is None


def test_only_status_and_its_timestamp_change_on_transition(client):
    token = login(client)
    doc = create_doc(client, token)
    before = doc["current_version"]

    r = set_status(client, token, doc["id"], before["id"], "pending_review")
    after = r.json["version"]

    changed = {k for k in before if before[k] != after[k]}
    assert changed == {"status", "prepared_at"}


def test_illegal_transition_is_rejected_and_row_untouched(client):
    token = login(client)
    doc = create_doc(client, token)
    vid = doc["current_version"]["id"]

    r = set_status(client, token, doc["id"], vid, "active")
    assert r.status_code == 409
    assert "Cannot move from Draft to Active" in r.json["error"]

    with session_scope(client.application) as s:
        v = s.get(DocumentVersion, vid)
        assert v.status == "draft"
        assert v.is_current is True
        assert v.published_at is None
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_id == str(doc["id"]))]
        assert "doc.status_change" not in actions


def test_terminal_document_accepts_no_transition(client):
    token = login(client)
    doc = create_doc(client, token)
    doc = walk(client, token, doc, "pending_review", "under_review", "approved", "active", "obsolete")

    for target in ("active", "draft", "archived", "under_revision"):
        r = set_status(client, token, doc["id"], doc["current_version"]["id"], target)
        assert r.status_code == 409, target

    assert client.get(f"/api/documents/{doc['id']}").json["status"] == "obsolete"


def test_status_request_validation(client):
    token = login(client)
    doc = create_doc(client, token)
    vid = doc["current_version"]["id"]
    headers = {"X-CSRF-Token": token}

    r = client.post(f"/api/documents/{doc['id']}/status", json={"new_status": "pending_review"}, headers=headers)
    assert r.status_code == 400

    r = client.post(f"/api/documents/{doc['id']}/status", json={"version_id": "abc", "new_status": "draft"}, headers=headers)
    assert r.status_code == 400

    r = set_status(client, token, doc["id"], vid, "published")
    assert r.status_code == 400
    assert "Unknown document status" in r.json["error"]

    r = set_status(client, token, doc["id"], 999999, "pending_review")
    assert r.status_code == 404

    r = set_status(client, token, 999999, vid, "pending_review")
    assert r.status_code == 404


def test_status_change_requires_csrf_token(client):
    token = login(client)
    doc = create_doc(client, token)

    r = client.post(
        f"/api/documents/{doc['id']}/status",
        json={"version_id": doc["current_version"]["id"], "new_status": "pending_review"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."
    assert client.get(f"/api/documents/{doc['id']}").json["status"] == "draft"


def test_transition_requires_permission_and_login(client, app):
    token = login(client)
    doc = create_doc(client, token)
    client.get("/auth/logout")

    anon = app.test_client()
    r = anon.get(f"/api/documents/{doc['id']}")
    assert r.status_code == 401

    worker = app.test_client()
    wtoken = login(worker, "worker@example.com")
    assert worker.get(f"/api/documents/{doc['id']}").status_code == 200
    r = set_status(worker, wtoken, doc["id"], doc["current_version"]["id"], "pending_review")
    assert r.status_code == 403
    assert r.json["error"] == "Missing permission: docs.transition"


def test_documents_are_scoped_to_company(client, app):
    token = login(client)
    doc = create_doc(client, token)

    other = app.test_client()
    otoken = login(other, "other@example.com")
    assert other.get(f"/api/documents/{doc['id']}").status_code == 404
    r = set_status(other, otoken, doc["id"], doc["current_version"]["id"], "pending_review")
    assert r.status_code == 404
    assert other.get("/api/documents").json["total"] == 0

    theirs = create_doc(other, otoken)
    assert theirs["control_number"] == "OB-POL-001"


def test_new_version_supersedes_current(client):
    token = login(client)
    headers = {"X-CSRF-Token": token}
    doc = create_doc(client, token)

    r = client.post(
        f"/api/documents/{doc['id']}/versions",
        json={"change_summary": "too early", "change_reason": "n/a"},
        headers=headers,
    )
    assert r.status_code == 409

    doc = walk(client, token, doc, "pending_review", "under_review", "approved", "active")
    first_id = doc["current_version"]["id"]

    r = client.post(
        f"/api/documents/{doc['id']}/versions",
        json={"change_summary": "Add harness inspection step", "change_reason": "Incident review"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["version"] == "1.1"
    assert r.json["status"] == "draft"
    assert r.json["current_version"]["id"] == r.json["created_version_id"]
    old = next(v for v in r.json["versions"] if v["id"] == first_id)
    assert old["is_current"] is False
    assert old["status"] == "active"

    # stale version id from before the supersede
    r = set_status(client, token, doc["id"], first_id, "under_revision")
    assert r.status_code == 409


def test_list_filters_stats_and_reviews_due(client):
    token = login(client)
    a = create_doc(client, token, title="Working at Heights", next_review_date="2000-01-01")
    create_doc(client, token, title="Site Inspection", document_type_code="CHK")
    c = create_doc(client, token, title="Old Manual", document_type_code="MAN")
    walk(client, token, a, "pending_review", "under_review", "approved", "active")
    walk(client, token, c, "pending_review", "under_review", "approved", "active", "obsolete")

    r = client.get("/api/documents")
    assert r.json["total"] == 2
    assert {d["title"] for d in r.json["documents"]} == {"Working at Heights", "Site Inspection"}

    r = client.get("/api/documents", query_string={"status": "obsolete"})
    assert [d["control_number"] for d in r.json["documents"]] == ["NCCI-MAN-001"]

    r = client.get("/api/documents", query_string={"type": "chk"})
    assert [d["title"] for d in r.json["documents"]] == ["Site Inspection"]

    r = client.get("/api/documents", query_string={"q": "heights"})
    assert [d["title"] for d in r.json["documents"]] == ["Working at Heights"]

    r = client.get("/api/documents", query_string={"q": "100%"})
    assert r.json["total"] == 0

    r = client.get("/api/documents", query_string={"status": "bogus"})
    assert r.status_code == 400

    r = client.get("/api/documents", query_string={"action": "stats"})
    assert r.json["by_status"]["active"] == 1
    assert r.json["by_status"]["obsolete"] == 1
    assert r.json["by_status"]["draft"] == 1
    assert r.json["reviews_due"] == 1

    r = client.get("/api/documents", query_string={"action": "reviews_due"})
    assert [d["title"] for d in r.json["documents"]] == ["Working at Heights"]


def test_history_lists_status_changes_newest_first(client):
    token = login(client)
    doc = create_doc(client, token)
    walk(client, token, doc, "pending_review", "draft")

    r = client.get(f"/api/documents/{doc['id']}", query_string={"history": "true"})
    history = r.json["history"]
    assert [h["action"] for h in history] == ["doc.status_change", "doc.status_change", "doc.create"]
    assert (history[0]["from_status"], history[0]["to_status"]) == ("pending_review", "draft")
    assert history[0]["by"] == "admin@example.com"
    assert history[0]["version"] == "1.0"

    assert "history" not in client.get(f"/api/documents/{doc['id']}").json


def test_create_document_validation_error(client):
    token = login(client)
    r = client.post("/api/documents", json={"title": "", "document_type_code": "XYZ"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 400
    assert "Title is required." in r.json["error"]


def test_statuses_vocabulary_endpoint(client):
    r = client.get("/api/statuses")
    assert r.status_code == 200
    assert len(r.json["statuses"]) == 8
    assert r.json["transitions"]["obsolete"] == []


# ---- HTML pages ----


def test_detail_page_renders_one_button_per_transition(client):
    token = login(client)
    doc = create_doc(client, token)
    doc = walk(client, token, doc, "pending_review", "under_review", "approved")

    r = client.get(f"/admin/documents/{doc['id']}")
    assert r.status_code == 200
    html = r.get_data(as_text=True)
    assert html.count("data-transition=") == 2
    assert 'data-transition="active"' in html and ">Publish<" in html
    assert 'data-transition="draft"' in html and ">Return to Draft<" in html
    assert "btn-emerald" in html
    assert f'name="version_id" value="{doc["current_version"]["id"]}"' in html


def test_detail_page_for_obsolete_document_has_no_actions(client):
    token = login(client)
    doc = create_doc(client, token)
    walk(client, token, doc, "pending_review", "under_review", "approved", "active", "obsolete")

    html = client.get(f"/admin/documents/{doc['id']}").get_data(as_text=True)
    assert "data-transition=" not in html
    assert "No further actions: this document is Obsolete." in html


def test_html_status_change_success_and_failure_are_reported(client):
    token = login(client)
    doc = create_doc(client, token)
    vid = doc["current_version"]["id"]
    url = f"/admin/documents/{doc['id']}/status"

    r = client.post(url, data={"csrf_token": token, "version_id": vid, "new_status": "active"}, follow_redirects=True)
    assert r.status_code == 200
    html = r.get_data(as_text=True)
    assert "Status change failed: Cannot move from Draft to Active." in html
    assert 'data-status="draft"' in html

    r = client.post(url, data={"csrf_token": token, "version_id": vid, "new_status": "pending_review"}, follow_redirects=True)
    html = r.get_data(as_text=True)
    assert "Version 1.0 is now Pending Review." in html
    assert 'data-status="pending_review"' in html


def test_html_registry_and_create_flow(client):
    token = login(client)
    r = client.post(
        "/admin/documents/new",
        data={"csrf_token": token, "title": "Ladder Safety", "document_type_code": "SWP"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert "Document NCCI-SWP-001 created (Draft)." in r.get_data(as_text=True)

    r = client.get("/admin/documents/")
    assert r.status_code == 200
    assert "NCCI-SWP-001" in r.get_data(as_text=True)

    r = client.get("/admin/documents/999999")
    assert r.status_code == 404


def test_status_change_on_new_version_keeps_old_version_active(client):
    token = login(client)
    doc = walk(client, token, create_doc(client, token), "pending_review", "under_review", "approved", "active")
    first_id = doc["current_version"]["id"]

    r = client.post(
        f"/api/documents/{doc['id']}/versions",
        json={"change_summary": "New anchor points", "change_reason": "Site change"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201
    doc = walk(client, token, r.json, "pending_review")

    versions = {v["version_number"]: v for v in doc["versions"]}
    assert (versions["1.0"]["id"], versions["1.0"]["is_current"], versions["1.0"]["status"]) == (first_id, False, "active")
    assert (versions["1.1"]["is_current"], versions["1.1"]["status"]) == (True, "pending_review")
    assert doc["status"] == "pending_review"


def test_list_reports_effective_paging(client):
    token = login(client)
    create_doc(client, token)

    r = client.get("/api/documents", query_string={"limit": 5000, "offset": -4})
    assert (r.json["limit"], r.json["offset"]) == (200, 0)
    r = client.get("/api/documents", query_string={"limit": 0})
    assert r.json["limit"] == 1
    assert len(r.json["documents"]) == 1
    assert client.get("/api/documents", query_string={"limit": "ten"}).status_code == 400


def test_list_department_review_date_and_archived(client, app):
    token = login(client)
    yard = create_doc(client, token, title="Yard Traffic", department="Yard", next_review_date="2026-02-01")
    create_doc(client, token, title="Office Ergonomics", department="Office", next_review_date="2026-09-01")
    old = create_doc(client, token, title="Retired Form", document_type_code="FRM")
    with session_scope(app) as s:
        s.query(DocumentVersion).filter(DocumentVersion.id == old["current_version"]["id"]).update(
            {DocumentVersion.status: "archived"}
        )

    r = client.get("/api/documents", query_string={"department": "Yard"})
    assert [d["id"] for d in r.json["documents"]] == [yard["id"]]

    r = client.get("/api/documents", query_string={"review_due_before": "2026-03-01"})
    assert [d["title"] for d in r.json["documents"]] == ["Yard Traffic"]
    assert client.get("/api/documents", query_string={"review_due_before": "March"}).status_code == 400

    assert "Retired Form" not in {d["title"] for d in client.get("/api/documents").json["documents"]}
    r = client.get("/api/documents", query_string={"action": "archived"})
    assert r.json["total"] == 1
    assert [d["status"] for d in r.json["documents"]] == ["archived"]

    html = client.get("/admin/documents/", query_string={"department": "Office"}).get_data(as_text=True)
    assert "Office Ergonomics" in html and "Yard Traffic" not in html


def test_patch_updates_metadata_and_is_audited(client, app):
    token = login(client)
    doc = create_doc(client, token)
    url = f"/api/documents/{doc['id']}"

    r = client.patch(
        url,
        json={"title": "Fall Protection Program", "department": "Field Ops", "next_review_date": "2027-03-01"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 200
    assert r.json["changed"] == ["title", "department", "next_review_date"]
    assert r.json["title"] == "Fall Protection Program"
    assert r.json["next_review_date"] == "2027-03-01"
    assert r.json["status"] == "draft"
    assert r.json["control_number"] == doc["control_number"]

    history = client.get(url, query_string={"history": "true"}).json["history"]
    assert history[0]["action"] == "doc.update"

    r = client.patch(url, json={"title": " "}, headers={"X-CSRF-Token": token})
    assert r.status_code == 400
    assert client.patch(url, json={"title": "x"}).status_code == 400

    worker = app.test_client()
    wtoken = login(worker, "worker@example.com")
    r = worker.patch(url, json={"title": "Hijacked"}, headers={"X-CSRF-Token": wtoken})
    assert r.status_code == 403

    other = app.test_client()
    otoken = login(other, "other@example.com")
    assert other.patch(url, json={"title": "Hijacked"}, headers={"X-CSRF-Token": otoken}).status_code == 404

    assert client.get(url).json["title"] == "Fall Protection Program"


def test_html_edit_form(client, app):
    token = login(client)
    doc = create_doc(client, token, department="Yard")
    url = f"/admin/documents/{doc['id']}/edit"

    assert f'href="{url}"' in client.get(f"/admin/documents/{doc['id']}").get_data(as_text=True)
    html = client.get(url).get_data(as_text=True)
    assert 'value="Fall Protection Policy"' in html
    assert 'value="Yard"' in html

    form = {"csrf_token": token, "title": "Fall Protection Policy", "description": "", "department": "Shop", "next_review_date": ""}
    r = client.post(url, data=form, follow_redirects=True)
    assert r.status_code == 200
    assert "Document details updated." in r.get_data(as_text=True)
    assert client.get(f"/api/documents/{doc['id']}").json["department"] == "Shop"

    r = client.post(url, data=form, follow_redirects=True)
    assert "No changes to save." in r.get_data(as_text=True)

    r = client.post(url, data=form | {"title": ""}, follow_redirects=True)
    assert "Title is required." in r.get_data(as_text=True)

    worker = app.test_client()
    login(worker, "worker@example.com")
    assert worker.get(url).status_code == 403
    assert "Edit Details" not in worker.get(f"/admin/documents/{doc['id']}").get_data(as_text=True)


def test_unrecognised_stored_status_does_not_break_pages(client, app):
    token = login(client)
    doc = create_doc(client, token)
    with session_scope(app) as s:
        s.query(DocumentVersion).filter(DocumentVersion.id == doc["current_version"]["id"]).update(
            {DocumentVersion.status: "imported_legacy"}
        )

    r = client.get(f"/api/documents/{doc['id']}")
    assert r.status_code == 200
    assert r.json["status"] == "imported_legacy"
    assert r.json["available_transitions"] == []

    r = client.get(f"/admin/documents/{doc['id']}")
    assert r.status_code == 200
    html = r.get_data(as_text=True)
    assert 'data-status="imported_legacy"' in html
    assert "data-transition=" not in html
    assert client.get("/admin/documents/").status_code == 200

    r = set_status(client, token, doc["id"], doc["current_version"]["id"], "pending_review")
    assert r.status_code == 409
