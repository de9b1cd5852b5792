from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify, redirect, request, url_for

from app.corhub.models import User


def user_permission_keys(user: User | None) -> frozenset[str]:
    """Effective permission keys; empty for anonymous, disabled users and users of a disabled company."""
    if not user or not user.is_active:
        return frozenset()
    if user.company is not None and not user.company.is_active:
        return frozenset()
    return frozenset(perm.key for role in user.roles for perm in role.permissions)


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in user_permission_keys(user)


def _login_redirect():
    nxt = request.full_path or request.path
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Guard a view. Pages redirect anonymous users to login and 403 otherwise;
    /api/ views answer 401/403 with a JSON error body instead.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            is_api = request.path.startswith("/api/")
            if not user or not user.is_active:
                if is_api:
                    return jsonify({"error": "Unauthorized"}), 401
                return _login_redirect()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                if is_api:
                    return jsonify({"error": f"Missing permission: {permission_key}"}), 403
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
