import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

# Endpoints that never mutate tenant data or run before a session exists.
_EXEMPT_ENDPOINT_PREFIXES = ("auth.", "static")
_EXEMPT_PATH_PREFIXES = ("/static/", "/health", "/healthz")


def ensure_csrf_token() -> str:
    """Return the session's CSRF token, minting one on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def is_csrf_exempt(req: Request) -> bool:
    if req.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return True
    if req.path.startswith(_EXEMPT_PATH_PREFIXES):
        return True
    return (req.endpoint or "").startswith(_EXEMPT_ENDPOINT_PREFIXES)


def submitted_csrf_token(req: Request) -> str | None:
    """Token from the header (JSON clients), the form field (HTML forms) or a JSON body key."""
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get(CSRF_SESSION_KEY)
    return str(token) if token else None


def validate_csrf(req: Request) -> bool:
    token = submitted_csrf_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and secrets.compare_digest(token, str(expected)))
