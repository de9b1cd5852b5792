"""
Document lifecycle vocabulary and the status transition table.

The table is built once at import time and is read-only. Templates, the JSON
API, the service layer and the HTTP client all read it from here.

Open item: nothing in the table leads to ``archived``. It is a valid status
(imported records may carry it) but no action produces it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


class DocumentStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    ACTIVE = "active"
    UNDER_REVISION = "under_revision"
    OBSOLETE = "obsolete"
    ARCHIVED = "archived"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def color(self) -> str:
        return STATUS_COLORS[self]


STATUS_LABELS: Mapping[DocumentStatus, str] = MappingProxyType(
    {
        DocumentStatus.DRAFT: "Draft",
        DocumentStatus.PENDING_REVIEW: "Pending Review",
        DocumentStatus.UNDER_REVIEW: "Under Review",
        DocumentStatus.APPROVED: "Approved",
        DocumentStatus.ACTIVE: "Active",
        DocumentStatus.UNDER_REVISION: "Under Revision",
        DocumentStatus.OBSOLETE: "Obsolete",
        DocumentStatus.ARCHIVED: "Archived",
    }
)

# Badge colors for the status pill.
STATUS_COLORS: Mapping[DocumentStatus, str] = MappingProxyType(
    {
        DocumentStatus.DRAFT: "slate",
        DocumentStatus.PENDING_REVIEW: "amber",
        DocumentStatus.UNDER_REVIEW: "blue",
        DocumentStatus.APPROVED: "indigo",
        DocumentStatus.ACTIVE: "emerald",
        DocumentStatus.UNDER_REVISION: "orange",
        DocumentStatus.OBSOLETE: "rose",
        DocumentStatus.ARCHIVED: "gray",
    }
)

TERMINAL_STATUSES = frozenset({DocumentStatus.OBSOLETE, DocumentStatus.ARCHIVED})


@dataclass(frozen=True)
class Transition:
    label: str
    target: DocumentStatus
    color: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "status": self.target.value, "color": self.color}


def _t(label: str, target: DocumentStatus, color: str) -> Transition:
    return Transition(label=label, target=target, color=color)


S = DocumentStatus

TRANSITIONS: Mapping[DocumentStatus, tuple[Transition, ...]] = MappingProxyType(
    {
        S.DRAFT: (_t("Submit for Review", S.PENDING_REVIEW, "amber"),),
        S.PENDING_REVIEW: (
            _t("Start Review", S.UNDER_REVIEW, "blue"),
            _t("Return to Draft", S.DRAFT, "slate"),
        ),
        S.UNDER_REVIEW: (
            _t("Approve", S.APPROVED, "emerald"),
            _t("Return to Draft", S.DRAFT, "slate"),
        ),
        S.APPROVED: (
            _t("Publish", S.ACTIVE, "emerald"),
            _t("Return to Draft", S.DRAFT, "slate"),
        ),
        S.ACTIVE: (
            _t("Start Revision", S.UNDER_REVISION, "amber"),
            _t("Mark Obsolete", S.OBSOLETE, "rose"),
        ),
        S.UNDER_REVISION: (_t("Submit for Review", S.PENDING_REVIEW, "amber"),),
        S.OBSOLETE: (),
        S.ARCHIVED: (),
    }
)

del S


def parse_status(value: str | DocumentStatus) -> DocumentStatus:
    """Return the DocumentStatus for a raw value. Raises ValueError for anything unknown."""
    if isinstance(value, DocumentStatus):
        return value
    raw = (value or "").strip().lower()
    try:
        return DocumentStatus(raw)
    except ValueError:
        raise ValueError(f"Unknown document status: {value!r}") from None


def available_transitions(status: DocumentStatus) -> tuple[Transition, ...]:
    return TRANSITIONS[status]


def is_transition_allowed(current: DocumentStatus, target: DocumentStatus) -> bool:
    return any(t.target is target for t in TRANSITIONS[current])


def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_label(value: str | DocumentStatus) -> str:
    """Template-friendly label lookup; unknown values are shown as-is."""
    try:
        return parse_status(value).label
    except ValueError:
        return str(value)


def status_color(value: str | DocumentStatus) -> str:
    try:
        return parse_status(value).color
    except ValueError:
        return "gray"


def vocabulary() -> dict:
    """Serializable view of the statuses and the transition table (served by /api/statuses)."""
    return {
        "statuses": [
            {"status": st.value, "label": st.label, "color": st.color, "terminal": is_terminal(st)}
            for st in DocumentStatus
        ],
        "transitions": {st.value: [t.to_dict() for t in TRANSITIONS[st]] for st in DocumentStatus},
    }
