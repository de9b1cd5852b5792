from flask import Blueprint, g, jsonify, redirect, render_template, url_for

from app.corhub.modules.document_control.lifecycle import vocabulary

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    if getattr(g, "current_user", None):
        return redirect(url_for("doc_control.list_documents"))
    return render_template("public/index.html")


@bp.get("/health")
def health():
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Container probe. No DB access."""
    return "ok", 200


@bp.get("/api/statuses")
def statuses():
    """Lifecycle vocabulary and transition table, so clients never re-declare them."""
    return jsonify(vocabulary())
