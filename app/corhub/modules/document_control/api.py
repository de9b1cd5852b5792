"""
JSON endpoints for the document registry.

The detail page and the HTTP client (client.py) drive the lifecycle through
POST /api/documents/<id>/status and reload with GET /api/documents/<id>?history=true.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.corhub.db import db_session
from app.corhub.models import User
from app.corhub.modules.document_control.lifecycle import DocumentStatus
from app.corhub.modules.document_control.service import (
    DEFAULT_LIST_LIMIT,
    DocumentControlError,
    DocumentNotFound,
    IllegalTransition,
    ValidationError,
    VersionNotCurrent,
    VersionNotFound,
    create_document,
    create_version,
    document_history,
    document_to_dict,
    get_document,
    list_documents,
    page_bounds,
    parse_bool,
    registry_stats,
    reviews_due,
    transition_status,
    update_document,
    version_to_dict,
)
from app.corhub.rbac import require_permission

bp = Blueprint("documents_api", __name__)

_ERROR_STATUS: dict[type[DocumentControlError], int] = {
    ValidationError: 400,
    DocumentNotFound: 404,
    VersionNotFound: 404,
    IllegalTransition: 409,
    VersionNotCurrent: 409,
}


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _int_arg(name: str, default: int) -> int:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.") from None


@bp.errorhandler(DocumentControlError)
def _handle_document_error(e: DocumentControlError):
    db_session().rollback()
    code = _ERROR_STATUS.get(type(e), 400)
    current_app.logger.info(
        "Document API error %s: %s (request_id=%s)", code, e, getattr(g, "request_id", None)
    )
    return jsonify({"error": str(e)}), code


@bp.get("")
@require_permission("docs.view")
def list_or_stats():
    s = db_session()
    u = _current_user()
    window = int(current_app.config.get("REVIEW_DUE_WINDOW_DAYS", 30))
    action = (request.args.get("action") or "").strip().lower()

    if action == "stats" or parse_bool(request.args.get("stats")):
        return jsonify(registry_stats(s, u.company_id, window_days=window))

    if action == "reviews_due":
        docs = reviews_due(s, u.company_id, window_days=window)
        return jsonify({"documents": [document_to_dict(d) for d in docs]})

    status = (request.args.get("status") or "").strip() or None
    if action == "archived":
        status = DocumentStatus.ARCHIVED.value
    limit, offset = page_bounds(_int_arg("limit", DEFAULT_LIST_LIMIT), _int_arg("offset", 0))
    try:
        docs, total = list_documents(
            s,
            u.company_id,
            status=status,
            type_code=(request.args.get("type") or "").strip() or None,
            query=(request.args.get("q") or request.args.get("query") or "").strip() or None,
            department=(request.args.get("department") or "").strip() or None,
            review_due_before=(request.args.get("review_due_before") or "").strip() or None,
            limit=limit,
            offset=offset,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return jsonify({"documents": [document_to_dict(d) for d in docs], "total": total, "limit": limit, "offset": offset})


@bp.post("")
@require_permission("docs.create")
def create():
    s = db_session()
    u = _current_user()
    doc = create_document(s, _json_body(), u)
    s.commit()
    return jsonify(document_to_dict(doc, include_versions=True)), 201


@bp.get("/<int:doc_id>")
@require_permission("docs.view")
def detail(doc_id: int):
    s = db_session()
    u = _current_user()
    doc = get_document(s, doc_id, u.company_id)
    history = document_history(s, doc) if parse_bool(request.args.get("history")) else None
    return jsonify(document_to_dict(doc, include_versions=True, history=history))


@bp.patch("/<int:doc_id>")
@require_permission("docs.edit")
def update(doc_id: int):
    s = db_session()
    u = _current_user()
    body = _json_body()
    doc = get_document(s, doc_id, u.company_id)
    changed = update_document(s, doc, body, u)
    s.commit()
    return jsonify(document_to_dict(doc, include_versions=True) | {"changed": changed})


@bp.post("/<int:doc_id>/status")
@require_permission("docs.transition")
def change_status(doc_id: int):
    s = db_session()
    u = _current_user()
    body = _json_body()

    raw_version_id = body.get("version_id")
    new_status = body.get("new_status")
    if raw_version_id is None or not new_status:
        raise ValidationError("version_id and new_status are required.")
    try:
        version_id = int(raw_version_id)
    except (TypeError, ValueError):
        raise ValidationError("version_id must be an integer.") from None

    doc = get_document(s, doc_id, u.company_id)
    try:
        version = transition_status(s, doc, version_id, str(new_status), u)
    except ValueError as e:
        # unknown status string
        raise ValidationError(str(e)) from e
    s.commit()

    return jsonify({"version": version_to_dict(version)})


@bp.post("/<int:doc_id>/versions")
@require_permission("docs.edit")
def new_version(doc_id: int):
    s = db_session()
    u = _current_user()
    body = _json_body()
    doc = get_document(s, doc_id, u.company_id)
    version = create_version(
        s,
        doc,
        u,
        change_summary=str(body.get("change_summary") or ""),
        change_reason=str(body.get("change_reason") or ""),
        is_major=parse_bool(body.get("is_major")),
        file_path=body.get("file_path"),
        file_name=body.get("file_name"),
    )
    s.commit()
    return jsonify(document_to_dict(doc, include_versions=True) | {"created_version_id": version.id}), 201
