from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.corhub.db import db_session
from app.corhub.models import User
from app.corhub.modules.document_control.lifecycle import DocumentStatus, available_transitions
from app.corhub.modules.document_control.service import (
    DOCUMENT_TYPES,
    EDITABLE_FIELDS,
    DocumentControlError,
    DocumentNotFound,
    create_document,
    create_version,
    document_history,
    get_document,
    list_documents as query_documents,
    parse_bool,
    registry_stats,
    transition_status,
    update_document,
)
from app.corhub.rbac import require_permission

bp = Blueprint("doc_control", __name__)

_TABS = ("details", "versions", "history")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # RBAC decorator should prevent this.
        raise RuntimeError("No current user")
    return u


def _get_doc_or_404(doc_id: int):
    u = _current_user()
    try:
        return get_document(db_session(), doc_id, u.company_id)
    except DocumentNotFound:
        abort(404)


@bp.get("/")
@require_permission("docs.view")
def list_documents():
    s = db_session()
    u = _current_user()
    status = (request.args.get("status") or "").strip() or None
    type_code = (request.args.get("type") or "").strip() or None
    q = (request.args.get("q") or "").strip() or None
    department = (request.args.get("department") or "").strip() or None
    due_before = (request.args.get("review_due_before") or "").strip() or None
    try:
        docs, total = query_documents(
            s,
            u.company_id,
            status=status,
            type_code=type_code,
            query=q,
            department=department,
            review_due_before=due_before,
        )
    except (DocumentControlError, ValueError) as e:
        flash(f"Invalid filter: {e}", "danger")
        return redirect(url_for("doc_control.list_documents"))
    window = int(current_app.config.get("REVIEW_DUE_WINDOW_DAYS", 30))
    return render_template(
        "admin/modules/document_control/list.html",
        documents=docs,
        total=total,
        stats=registry_stats(s, u.company_id, window_days=window),
        statuses=list(DocumentStatus),
        document_types=DOCUMENT_TYPES,
        filters={
            "status": status or "",
            "type": type_code or "",
            "q": q or "",
            "department": department or "",
            "review_due_before": due_before or "",
        },
    )


@bp.get("/new")
@require_permission("docs.create")
def new_document_get():
    return render_template("admin/modules/document_control/new.html", document_types=DOCUMENT_TYPES)


@bp.post("/new")
@require_permission("docs.create")
def new_document_post():
    s = db_session()
    u = _current_user()
    try:
        doc = create_document(s, request.form.to_dict(), u)
    except DocumentControlError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("doc_control.new_document_get"))
    s.commit()
    flash(f"Document {doc.control_number} created (Draft).", "success")
    return redirect(url_for("doc_control.document_detail", doc_id=doc.id))


@bp.get("/<int:doc_id>")
@require_permission("docs.view")
def document_detail(doc_id: int):
    s = db_session()
    d = _get_doc_or_404(doc_id)
    tab = (request.args.get("tab") or "details").strip().lower()
    if tab not in _TABS:
        tab = "details"
    status = d.status
    return render_template(
        "admin/modules/document_control/detail.html",
        document=d,
        current_version=d.current_version,
        transitions=available_transitions(status) if status else (),
        history=document_history(s, d) if tab == "history" else [],
        document_types=DOCUMENT_TYPES,
        tab=tab,
    )


@bp.get("/<int:doc_id>/edit")
@require_permission("docs.edit")
def edit_document_get(doc_id: int):
    d = _get_doc_or_404(doc_id)
    return render_template("admin/modules/document_control/edit.html", document=d)


@bp.post("/<int:doc_id>/edit")
@require_permission("docs.edit")
def edit_document_post(doc_id: int):
    s = db_session()
    u = _current_user()
    d = _get_doc_or_404(doc_id)
    form = {k: request.form.get(k, "") for k in EDITABLE_FIELDS}
    try:
        changed = update_document(s, d, form, u)
    except DocumentControlError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("doc_control.edit_document_get", doc_id=d.id))
    s.commit()
    if changed:
        flash("Document details updated.", "success")
    else:
        flash("No changes to save.", "info")
    return redirect(url_for("doc_control.document_detail", doc_id=d.id))


@bp.post("/<int:doc_id>/status")
@require_permission("docs.transition")
def change_status(doc_id: int):
    s = db_session()
    u = _current_user()
    d = _get_doc_or_404(doc_id)

    new_status = (request.form.get("new_status") or "").strip()
    try:
        version_id = int(request.form.get("version_id") or "")
    except ValueError:
        flash("Missing document version.", "danger")
        return redirect(url_for("doc_control.document_detail", doc_id=d.id))

    try:
        v = transition_status(s, d, version_id, new_status, u)
    except (DocumentControlError, ValueError) as e:
        s.rollback()
        flash(f"Status change failed: {e}", "danger")
        return redirect(url_for("doc_control.document_detail", doc_id=d.id))
    s.commit()
    flash(f"Version {v.version_number} is now {v.lifecycle_status.label}.", "success")
    return redirect(url_for("doc_control.document_detail", doc_id=d.id))


@bp.post("/<int:doc_id>/versions")
@require_permission("docs.edit")
def create_next_version(doc_id: int):
    s = db_session()
    u = _current_user()
    d = _get_doc_or_404(doc_id)
    try:
        v = create_version(
            s,
            d,
            u,
            change_summary=request.form.get("change_summary") or "",
            change_reason=request.form.get("change_reason") or "",
            is_major=parse_bool(request.form.get("is_major")),
        )
    except DocumentControlError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("doc_control.document_detail", doc_id=d.id, tab="versions"))
    s.commit()
    flash(f"Created draft version {v.version_number}.", "success")
    return redirect(url_for("doc_control.document_detail", doc_id=d.id, tab="versions"))
