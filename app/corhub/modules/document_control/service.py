from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_

from app.corhub.audit import event_metadata, record_event
from app.corhub.modules.document_control.lifecycle import (
    DocumentStatus,
    available_transitions,
    is_transition_allowed,
    parse_status,
    status_label,
)
from app.corhub.modules.document_control.models import Document, DocumentControlSequence, DocumentVersion

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.corhub.models import Company, User

logger = logging.getLogger(__name__)


DOCUMENT_TYPES: dict[str, str] = {
    "POL": "Policy",
    "SWP": "Safe Work Procedure",
    "SJP": "Safe Job Procedure",
    "FRM": "Form",
    "CHK": "Checklist",
    "WI": "Work Instruction",
    "PRC": "Process",
    "MAN": "Manual",
    "PLN": "Plan",
    "REG": "Register",
    "TRN": "Training Material",
    "RPT": "Report",
    "MIN": "Minutes",
    "CRT": "Certificate",
    "DWG": "Drawing",
    "AUD": "Audit Document",
}

CHANGE_TYPES = ("initial", "minor_edit", "major_revision")

# A new version may only be drafted from these statuses of the current version.
REVISABLE_STATUSES = frozenset({DocumentStatus.ACTIVE, DocumentStatus.UNDER_REVISION})

# Listing hides these unless a status filter asks for them explicitly.
HIDDEN_BY_DEFAULT = (DocumentStatus.OBSOLETE.value, DocumentStatus.ARCHIVED.value)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


class DocumentControlError(RuntimeError):
    pass


class ValidationError(DocumentControlError):
    pass


class DocumentNotFound(DocumentControlError):
    pass


class VersionNotFound(DocumentControlError):
    pass


class IllegalTransition(DocumentControlError):
    pass


class VersionNotCurrent(DocumentControlError):
    pass


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string (HTML <input type="date"> format)."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Invalid date {s!r}; expected YYYY-MM-DD.") from None


def parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


def company_initials(name: str) -> str:
    """First letter of each word, up to 4 characters. "North Coast Concrete Inc" -> "NCCI"."""
    letters = "".join(w[0] for w in re.split(r"\s+", (name or "").strip()) if w and w[0].isalnum())
    return letters[:4].upper() or "DOC"


def format_control_number(initials: str, type_code: str, sequence: int) -> str:
    return f"{initials}-{type_code}-{sequence:03d}"


def next_version_number(current: str | None, *, is_major: bool) -> str:
    """
    Bump a "major.minor" version.

    - minor: "1.0" -> "1.1", "1.9" -> "1.10"
    - major: "1.3" -> "2.0"
    Missing parts default to 1 (major) and 0 (minor).
    """
    cur = (current or "").strip() or "1.0"
    if not re.fullmatch(r"\d+(\.\d+)?", cur):
        raise ValueError(f"Unsupported version format: {current!r}")
    parts = cur.split(".")
    major = int(parts[0])
    minor = int(parts[1]) if len(parts) > 1 else 0
    if is_major:
        return f"{major + 1}.0"
    return f"{major}.{minor + 1}"


def validate_document_payload(payload: dict) -> list[str]:
    """Validate document creation payload. Returns list of errors."""
    errors = []
    title = (payload.get("title") or "").strip()
    if not title:
        errors.append("Title is required.")
    elif len(title) > 255:
        errors.append("Title must be 255 characters or fewer.")
    type_code = (payload.get("document_type_code") or "").strip().upper()
    if not type_code:
        errors.append("Document type is required.")
    elif type_code not in DOCUMENT_TYPES:
        errors.append(f"Invalid document type. Must be one of: {', '.join(DOCUMENT_TYPES)}")
    return errors


def _issue_control_number(s: "Session", company: "Company", type_code: str) -> tuple[str, int]:
    seq = (
        s.query(DocumentControlSequence)
        .filter(
            DocumentControlSequence.company_id == company.id,
            DocumentControlSequence.document_type_code == type_code,
        )
        .with_for_update()
        .one_or_none()
    )
    if seq is None:
        seq = DocumentControlSequence(company_id=company.id, document_type_code=type_code, current_sequence=0)
        s.add(seq)
    seq.current_sequence += 1
    seq.updated_at = datetime.utcnow()
    s.flush()
    return format_control_number(company_initials(company.name), type_code, seq.current_sequence), seq.current_sequence


def create_document(s: "Session", payload: dict, user: "User") -> Document:
    """Register a new document with an initial draft version 1.0."""
    errors = validate_document_payload(payload)
    if errors:
        raise ValidationError(" ".join(errors))

    type_code = (payload.get("document_type_code") or "").strip().upper()
    next_review = parse_date(payload.get("next_review_date"))
    control_number, sequence = _issue_control_number(s, user.company, type_code)

    now = datetime.utcnow()
    doc = Document(
        company_id=user.company_id,
        control_number=control_number,
        document_type_code=type_code,
        sequence_number=sequence,
        title=(payload.get("title") or "").strip(),
        description=(payload.get("description") or "").strip() or None,
        department=(payload.get("department") or "").strip() or None,
        next_review_date=next_review,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(doc)
    s.flush()

    version = DocumentVersion(
        document_id=doc.id,
        version_number="1.0",
        revision_number=1,
        previous_version=None,
        status=DocumentStatus.DRAFT.value,
        is_current=True,
        file_path=(payload.get("file_path") or "").strip() or None,
        file_name=(payload.get("file_name") or "").strip() or None,
        change_type="initial",
        change_summary="Initial version",
        created_at=now,
        created_by_user_id=user.id,
    )
    doc.versions.append(version)
    s.flush()

    record_event(
        s,
        actor=user,
        action="doc.create",
        entity_type="Document",
        entity_id=str(doc.id),
        metadata={"control_number": doc.control_number, "version": version.version_number},
    )
    logger.info("Document created: %s (id=%s company_id=%s)", doc.control_number, doc.id, doc.company_id)
    return doc


def get_document(s: "Session", doc_id: int, company_id: int) -> Document:
    """Fetch a document scoped to the caller's company. Other tenants' ids look like missing ids."""
    doc = s.get(Document, doc_id)
    if doc is None or doc.company_id != company_id:
        raise DocumentNotFound(f"Document {doc_id} not found.")
    return doc


def _like_pattern(q: str) -> str:
    escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def page_bounds(limit: int, offset: int) -> tuple[int, int]:
    """Clamp paging to 1..MAX_LIST_LIMIT rows and a non-negative offset."""
    return max(1, min(int(limit), MAX_LIST_LIMIT)), max(0, int(offset))


def list_documents(
    s: "Session",
    company_id: int,
    *,
    status: str | None = None,
    type_code: str | None = None,
    query: str | None = None,
    department: str | None = None,
    review_due_before: date | str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> tuple[list[Document], int]:
    """
    Current-version listing for one company, newest change first.

    ``review_due_before`` keeps documents whose next review is on or before that date.
    Obsolete and archived documents only appear when ``status`` names them.
    """
    if isinstance(review_due_before, str):
        review_due_before = parse_date(review_due_before)
    q = (
        s.query(Document)
        .join(
            DocumentVersion,
            and_(DocumentVersion.document_id == Document.id, DocumentVersion.is_current.is_(True)),
        )
        .filter(Document.company_id == company_id)
    )
    if status:
        q = q.filter(DocumentVersion.status == parse_status(status).value)
    else:
        q = q.filter(DocumentVersion.status.notin_(HIDDEN_BY_DEFAULT))
    if type_code:
        q = q.filter(Document.document_type_code == type_code.strip().upper())
    if department and department.strip():
        q = q.filter(Document.department == department.strip())
    if review_due_before is not None:
        q = q.filter(Document.next_review_date.isnot(None), Document.next_review_date <= review_due_before)
    if query and query.strip():
        pattern = _like_pattern(query.strip())
        q = q.filter(
            or_(
                Document.title.ilike(pattern, escape="\\"),
                Document.control_number.ilike(pattern, escape="\\"),
            )
        )

    total = q.count()
    limit, offset = page_bounds(limit, offset)
    docs = q.order_by(Document.updated_at.desc(), Document.id.desc()).offset(offset).limit(limit).all()
    return docs, total


EDITABLE_FIELDS = ("title", "description", "department", "next_review_date")


def _clean_metadata(payload: dict) -> dict[str, Any]:
    """Normalised values for the editable fields present in ``payload``."""
    out: dict[str, Any] = {}
    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required.")
        if len(title) > 255:
            raise ValidationError("Title must be 255 characters or fewer.")
        out["title"] = title
    for key in ("description", "department"):
        if key in payload:
            out[key] = str(payload.get(key) or "").strip() or None
    if "next_review_date" in payload:
        out["next_review_date"] = parse_date(payload.get("next_review_date"))
    return out


def update_document(s: "Session", doc: Document, payload: dict, user: "User") -> list[str]:
    """
    Edit registry metadata (title, description, department, next review date).

    Only keys present in ``payload`` are considered; status and versions are
    never touched. Returns the names of the fields that actually changed.
    """
    values = _clean_metadata(payload)
    changes: dict[str, dict[str, Any]] = {}
    for field, new in values.items():
        old = getattr(doc, field)
        if old == new:
            continue
        changes[field] = {"from": old, "to": new}
        setattr(doc, field, new)

    if not changes:
        return []

    doc.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="doc.update",
        entity_type="Document",
        entity_id=str(doc.id),
        metadata={"control_number": doc.control_number, "changes": changes},
    )
    logger.info("Document %s metadata updated: %s", doc.control_number, ", ".join(changes))
    return list(changes)


def create_version(
    s: "Session",
    doc: Document,
    user: "User",
    *,
    change_summary: str,
    change_reason: str,
    is_major: bool = False,
    file_path: str | None = None,
    file_name: str | None = None,
) -> DocumentVersion:
    """Draft the next version. The previous current version is superseded (kept, no longer current)."""
    change_summary = (change_summary or "").strip()
    change_reason = (change_reason or "").strip()
    if not change_summary or not change_reason:
        raise ValidationError("Change summary and change reason are required.")

    current = doc.current_version
    if current is None:
        raise VersionNotFound(f"Document {doc.control_number} has no current version.")
    if current.lifecycle_status not in REVISABLE_STATUSES:
        raise IllegalTransition(
            f"A new version can only be created from an Active or Under Revision document "
            f"(current status: {status_label(current.status)})."
        )

    try:
        new_number = next_version_number(current.version_number, is_major=is_major)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    next_rev = max((v.revision_number for v in doc.versions), default=0) + 1
    now = datetime.utcnow()

    current.is_current = False
    version = DocumentVersion(
        document_id=doc.id,
        version_number=new_number,
        revision_number=next_rev,
        previous_version=current.version_number,
        status=DocumentStatus.DRAFT.value,
        is_current=True,
        file_path=(file_path or "").strip() or current.file_path,
        file_name=(file_name or "").strip() or current.file_name,
        change_type="major_revision" if is_major else "minor_edit",
        change_summary=change_summary,
        change_reason=change_reason,
        created_at=now,
        created_by_user_id=user.id,
    )
    doc.versions.append(version)
    doc.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="doc.version_create",
        entity_type="Document",
        entity_id=str(doc.id),
        reason=change_reason,
        metadata={
            "control_number": doc.control_number,
            "from": current.version_number,
            "to": new_number,
            "change_type": version.change_type,
        },
    )
    logger.info("Document %s: drafted version %s (from %s)", doc.control_number, new_number, current.version_number)
    return version


def _stamp_transition(version: DocumentVersion, doc: Document, target: DocumentStatus, user: "User", now: datetime) -> None:
    if target is DocumentStatus.PENDING_REVIEW:
        version.prepared_at = now
    elif target is DocumentStatus.UNDER_REVIEW:
        version.reviewed_at = now
    elif target is DocumentStatus.APPROVED:
        version.approved_at = now
        version.approved_by_user_id = user.id
    elif target is DocumentStatus.ACTIVE:
        version.published_at = now
        if doc.effective_date is None:
            doc.effective_date = now.date()


def transition_status(
    s: "Session",
    doc: Document,
    version_id: int,
    new_status: str | DocumentStatus,
    user: "User",
    *,
    now: datetime | None = None,
) -> DocumentVersion:
    """
    Move the document's current version to ``new_status``.

    Only the targeted version row changes (status plus its workflow timestamp);
    ``is_current`` flags are never touched here.
    """
    target = parse_status(new_status)

    version = next((v for v in doc.versions if v.id == version_id), None)
    if version is None:
        raise VersionNotFound(f"Version {version_id} does not belong to document {doc.control_number}.")
    if not version.is_current:
        raise VersionNotCurrent(f"Version {version.version_number} has been superseded; reload the document.")

    current = version.lifecycle_status
    if current is None:
        raise IllegalTransition(f"Cannot move from unrecognised status {version.status!r}; fix the stored value first.")
    if not is_transition_allowed(current, target):
        allowed = ", ".join(t.target.value for t in available_transitions(current)) or "none"
        logger.warning(
            "Rejected transition %s -> %s on %s v%s (allowed: %s)",
            current.value,
            target.value,
            doc.control_number,
            version.version_number,
            allowed,
        )
        raise IllegalTransition(f"Cannot move from {current.label} to {target.label}.")

    now = now or datetime.utcnow()
    version.status = target.value
    _stamp_transition(version, doc, target, user, now)
    doc.updated_at = now

    record_event(
        s,
        actor=user,
        action="doc.status_change",
        entity_type="Document",
        entity_id=str(doc.id),
        metadata={
            "control_number": doc.control_number,
            "version_id": version.id,
            "version": version.version_number,
            "from_status": current.value,
            "to_status": target.value,
        },
    )
    logger.info(
        "Document %s v%s: %s -> %s (user_id=%s)",
        doc.control_number,
        version.version_number,
        current.value,
        target.value,
        user.id,
    )
    return version


def reviews_due(s: "Session", company_id: int, *, today: date | None = None, window_days: int = 30) -> list[Document]:
    """Active/approved documents whose next review falls within the window (overdue included)."""
    today = today or date.today()
    cutoff = today + timedelta(days=window_days)
    return (
        s.query(Document)
        .join(
            DocumentVersion,
            and_(DocumentVersion.document_id == Document.id, DocumentVersion.is_current.is_(True)),
        )
        .filter(
            Document.company_id == company_id,
            DocumentVersion.status.in_((DocumentStatus.ACTIVE.value, DocumentStatus.APPROVED.value)),
            Document.next_review_date.isnot(None),
            Document.next_review_date < cutoff,
        )
        .order_by(Document.next_review_date.asc())
        .all()
    )


def registry_stats(s: "Session", company_id: int, *, today: date | None = None, window_days: int = 30) -> dict:
    by_status = {st.value: 0 for st in DocumentStatus}
    rows = (
        s.query(DocumentVersion.status, func.count(DocumentVersion.id))
        .join(Document, Document.id == DocumentVersion.document_id)
        .filter(Document.company_id == company_id, DocumentVersion.is_current.is_(True))
        .group_by(DocumentVersion.status)
        .all()
    )
    for status, n in rows:
        if status in by_status:
            by_status[status] += n
        else:
            logger.warning("Unknown document status in registry: %r", status)

    by_type: dict[str, int] = {}
    for code, n in (
        s.query(Document.document_type_code, func.count(Document.id))
        .filter(Document.company_id == company_id)
        .group_by(Document.document_type_code)
        .all()
    ):
        by_type[code] = n

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "reviews_due": len(reviews_due(s, company_id, today=today, window_days=window_days)),
    }


def document_history(s: "Session", doc: Document) -> list[dict]:
    """Audit trail for a document, newest first."""
    from app.corhub.models import AuditEvent

    events = (
        s.query(AuditEvent)
        .filter(AuditEvent.entity_type == "Document", AuditEvent.entity_id == str(doc.id))
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .all()
    )
    out = []
    for ev in events:
        meta = event_metadata(ev)
        out.append(
            {
                "id": ev.id,
                "action": ev.action,
                "at": ev.created_at.isoformat(),
                "by": ev.actor_user_email,
                "reason": ev.reason,
                "from_status": meta.get("from_status"),
                "to_status": meta.get("to_status"),
                "version": meta.get("version") or meta.get("to"),
            }
        )
    return out


def _iso(v: date | datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


def version_to_dict(v: DocumentVersion) -> dict:
    return {
        "id": v.id,
        "document_id": v.document_id,
        "version_number": v.version_number,
        "revision_number": v.revision_number,
        "previous_version": v.previous_version,
        "status": v.status,
        "is_current": v.is_current,
        "file_path": v.file_path,
        "file_name": v.file_name,
        "change_type": v.change_type,
        "change_summary": v.change_summary,
        "change_reason": v.change_reason,
        "created_at": _iso(v.created_at),
        "created_by_user_id": v.created_by_user_id,
        "prepared_at": _iso(v.prepared_at),
        "reviewed_at": _iso(v.reviewed_at),
        "approved_at": _iso(v.approved_at),
        "approved_by_user_id": v.approved_by_user_id,
        "published_at": _iso(v.published_at),
    }


def document_to_dict(doc: Document, *, include_versions: bool = False, history: list[dict] | None = None) -> dict:
    current = doc.current_version
    status = doc.status
    out: dict[str, Any] = {
        "id": doc.id,
        "company_id": doc.company_id,
        "control_number": doc.control_number,
        "document_type_code": doc.document_type_code,
        "document_type": DOCUMENT_TYPES.get(doc.document_type_code, doc.document_type_code),
        "title": doc.title,
        "description": doc.description,
        "department": doc.department,
        "status": doc.stored_status,
        "version": doc.version_number,
        "effective_date": _iso(doc.effective_date),
        "next_review_date": _iso(doc.next_review_date),
        "created_at": _iso(doc.created_at),
        "updated_at": _iso(doc.updated_at),
    }
    if include_versions:
        out["versions"] = [version_to_dict(v) for v in doc.versions]
        out["current_version"] = version_to_dict(current) if current else None
        out["available_transitions"] = [t.to_dict() for t in available_transitions(status)] if status else []
    if history is not None:
        out["history"] = history
    return out
