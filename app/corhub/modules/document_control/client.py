"""
HTTP client for the document registry API, plus the transition executor.

The executor applies one lifecycle transition to a document's current version
and then reloads the full document. A failed request is raised to the caller
(nothing is swallowed) and the executor is immediately usable again.
"""

from __future__ import annotations

import http.cookiejar
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.corhub.modules.document_control.lifecycle import (
    DocumentStatus,
    Transition,
    available_transitions,
    parse_status,
)

logger = logging.getLogger(__name__)


class DocumentsClientError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransitionFailed(DocumentsClientError):
    """A status change that did not complete. ``applied`` is True when the server saved it but the reload failed."""

    def __init__(self, message: str, *, status_code: int | None = None, applied: bool = False) -> None:
        super().__init__(message, status_code=status_code)
        self.applied = applied


class TransitionInFlight(DocumentsClientError):
    pass


class DocumentsAPI(Protocol):
    def get_document(self, doc_id: int, *, history: bool = True) -> dict[str, Any]: ...

    def update_status(self, doc_id: int, version_id: int, new_status: str) -> dict[str, Any]: ...


@dataclass
class DocumentsClient:
    base_url: str
    timeout_seconds: int = 30
    csrf_token: str | None = None
    _opener: urllib.request.OpenerDirector = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._opener = urllib.request.build_opener(urllib.request.HTTPCookieProcessor(http.cookiejar.CookieJar()))

    @classmethod
    def from_config(cls, config: dict) -> "DocumentsClient":
        return cls(
            base_url=str(config.get("CORHUB_API_BASE_URL") or "http://localhost:8080"),
            timeout_seconds=int(config.get("CORHUB_API_TIMEOUT_SECONDS") or 30),
        )

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if query:
            url += "?" + urllib.parse.urlencode(query)

        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(url, data=data, method=method)
        req.add_header("Accept", "application/json")
        if data is not None:
            req.add_header("Content-Type", "application/json")
        if self.csrf_token and method.upper() != "GET":
            req.add_header("X-CSRF-Token", self.csrf_token)

        try:
            with self._opener.open(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                payload = json.loads(e.read().decode("utf-8", errors="ignore") or "{}")
            except json.JSONDecodeError:
                payload = {}
            msg = payload.get("error") if isinstance(payload, dict) else None
            raise DocumentsClientError(msg or f"HTTP {e.code} from {path}", status_code=e.code) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise DocumentsClientError(f"Request to {path} failed: {e}") from e

        try:
            out = json.loads(raw.decode("utf-8")) if raw else {}
        except json.JSONDecodeError as e:
            raise DocumentsClientError(f"Invalid JSON from {path}") from e
        return out if isinstance(out, dict) else {}

    def login(self, email: str, password: str) -> None:
        j = self.request_json("POST", "/auth/login", body={"email": email, "password": password})
        self.csrf_token = j.get("csrf_token")

    def get_document(self, doc_id: int, *, history: bool = True) -> dict[str, Any]:
        return self.request_json("GET", f"/api/documents/{int(doc_id)}", params={"history": "true" if history else None})

    def update_status(self, doc_id: int, version_id: int, new_status: str) -> dict[str, Any]:
        return self.request_json(
            "POST",
            f"/api/documents/{int(doc_id)}/status",
            body={"version_id": int(version_id), "new_status": new_status},
        )


class TransitionExecutor:
    """Applies lifecycle transitions for one document and keeps its last loaded state."""

    def __init__(self, api: DocumentsAPI, document_id: int) -> None:
        self.api = api
        self.document_id = document_id
        self.document: dict[str, Any] | None = None
        self.in_flight = False
        self.last_error: DocumentsClientError | None = None

    def load(self) -> dict[str, Any]:
        self.document = self.api.get_document(self.document_id, history=True)
        return self.document

    @property
    def status(self) -> DocumentStatus | None:
        if not self.document or not self.document.get("status"):
            return None
        try:
            return parse_status(self.document["status"])
        except ValueError:
            return None

    def available_transitions(self) -> tuple[Transition, ...]:
        """Actions to offer for the loaded document; empty for terminal states or nothing loaded."""
        st = self.status
        if st is None or self.in_flight:
            return ()
        return available_transitions(st)

    def apply(self, new_status: str | DocumentStatus) -> dict[str, Any]:
        """
        Send {version_id, new_status} for the current version, then reload.

        Raises TransitionFailed on any failed request. If the update itself
        failed, the previously loaded document is kept so callers can show the
        error and let the user retry. If the update was saved but the reload
        failed, the error has ``applied=True`` and the cached document is
        dropped; call load() before offering further actions.
        """
        if self.in_flight:
            raise TransitionInFlight("A status change is already in progress.")
        target = parse_status(new_status).value
        if self.document is None:
            self.load()
        current = (self.document or {}).get("current_version") or {}
        version_id = current.get("id")
        if version_id is None:
            raise TransitionFailed("Document has no current version.")

        self.in_flight = True
        self.last_error = None
        try:
            try:
                self.api.update_status(self.document_id, int(version_id), target)
            except DocumentsClientError as e:
                self.last_error = e
                logger.warning(
                    "Status change to %s failed for document %s (status_code=%s): %s",
                    target,
                    self.document_id,
                    e.status_code,
                    e.message,
                )
                raise TransitionFailed(e.message, status_code=e.status_code) from e
            try:
                return self.load()
            except DocumentsClientError as e:
                # The server state moved; the cached copy no longer describes it.
                self.document = None
                self.last_error = e
                logger.warning(
                    "Status change to %s saved for document %s but reload failed (status_code=%s): %s",
                    target,
                    self.document_id,
                    e.status_code,
                    e.message,
                )
                raise TransitionFailed(
                    f"Status changed to {target} but reloading the document failed: {e.message}",
                    status_code=e.status_code,
                    applied=True,
                ) from e
        finally:
            self.in_flight = False
