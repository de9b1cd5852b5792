from __future__ import annotations

import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.corhub.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    company_id: int | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.

    Works inside and outside a request (scripts pass request_id explicitly or leave it empty).
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    if company_id is None and actor is not None:
        company_id = actor.company_id
    ev = AuditEvent(
        request_id=rid,
        company_id=company_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def event_metadata(ev: AuditEvent) -> dict[str, Any]:
    if not ev.metadata_json:
        return {}
    try:
        data = json.loads(ev.metadata_json)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}
