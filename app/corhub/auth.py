from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash

from app.corhub.audit import record_event
from app.corhub.db import db_session
from app.corhub.models import User
from app.corhub.security import ensure_csrf_token

bp = Blueprint("auth", __name__)

_SKIP_USER_PATHS = ("/static/", "/health", "/healthz")
_THROTTLED_MSG = "Too many login attempts. Please wait 5 minutes."


class LoginThrottle:
    """In-process failed-login counter per client IP (sliding window)."""

    def __init__(self, limit: int = 5, window_seconds: int = 300) -> None:
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._attempts: dict[str, list[datetime]] = defaultdict(list)

    def blocked(self, ip: str) -> bool:
        cutoff = datetime.utcnow() - self.window
        self._attempts[ip] = [t for t in self._attempts[ip] if t > cutoff]
        return len(self._attempts[ip]) >= self.limit

    def record(self, ip: str) -> None:
        self._attempts[ip].append(datetime.utcnow())

    def reset(self, ip: str) -> None:
        self._attempts.pop(ip, None)

    def clear(self) -> None:
        self._attempts.clear()


_login_attempts = LoginThrottle()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation); an
    incoming X-Request-ID header is reused.
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(_SKIP_USER_PATHS):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        user = db_session().get(User, int(user_id))
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


def _login_payload() -> tuple[str, str, str]:
    """(email, password, next) from a JSON body or the login form."""
    if request.is_json:
        data = request.get_json(silent=True) or {}
        return str(data.get("email") or "").strip().lower(), str(data.get("password") or ""), ""
    return (
        (request.form.get("email") or "").strip().lower(),
        request.form.get("password") or "",
        (request.form.get("next") or "").strip(),
    )


def _login_failed(message: str, code: int):
    if request.is_json:
        return jsonify({"error": message}), code
    flash(message, "danger")
    return redirect(url_for("auth.login_get"))


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email, password, nxt = _login_payload()
    ip = request.remote_addr or "unknown"

    if _login_attempts.blocked(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s)", ip)
        return _login_failed(_THROTTLED_MSG, 429)
    _login_attempts.record(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
            company_id=user.company_id if user else None,
        )
        s.commit()
        current_app.logger.info("Login failed (email=%s ip=%s)", email, ip)
        return _login_failed("Invalid credentials.", 401)

    # New session on privilege change; the CSRF token is re-minted below.
    session.clear()
    session.permanent = True
    session["user_id"] = user.id
    _login_attempts.reset(ip)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()

    if request.is_json:
        return jsonify({"ok": True, "user_id": user.id, "csrf_token": ensure_csrf_token()})
    # Only allow local "next" paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return redirect(nxt)
    return redirect(url_for("doc_control.list_documents"))


@bp.get("/csrf")
def csrf_token():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return redirect(url_for("routes.index"))
