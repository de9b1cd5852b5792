import pytest

from app.corhub.modules.document_control.lifecycle import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    DocumentStatus,
    available_transitions,
    is_terminal,
    is_transition_allowed,
    parse_status,
    status_color,
    status_label,
    vocabulary,
)

S = DocumentStatus

EXPECTED = {
    "draft": [("Submit for Review", "pending_review", "amber")],
    "pending_review": [("Start Review", "under_review", "blue"), ("Return to Draft", "draft", "slate")],
    "under_review": [("Approve", "approved", "emerald"), ("Return to Draft", "draft", "slate")],
    "approved": [("Publish", "active", "emerald"), ("Return to Draft", "draft", "slate")],
    "active": [("Start Revision", "under_revision", "amber"), ("Mark Obsolete", "obsolete", "rose")],
    "under_revision": [("Submit for Review", "pending_review", "amber")],
    "obsolete": [],
    "archived": [],
}


def test_table_covers_every_status_exactly():
    assert set(TRANSITIONS) == set(DocumentStatus)
    for st in DocumentStatus:
        got = [(t.label, t.target.value, t.color) for t in available_transitions(st)]
        assert got == EXPECTED[st.value], st


def test_terminal_statuses_have_no_actions():
    assert TERMINAL_STATUSES == {S.OBSOLETE, S.ARCHIVED}
    for st in DocumentStatus:
        assert is_terminal(st) == (available_transitions(st) == ())


def test_nothing_leads_to_archived():
    targets = {t.target for ts in TRANSITIONS.values() for t in ts}
    assert S.ARCHIVED not in targets
    assert targets == set(DocumentStatus) - {S.ARCHIVED}


def test_table_is_read_only():
    with pytest.raises(TypeError):
        TRANSITIONS[S.DRAFT] = ()  # type: ignore[index]


def test_is_transition_allowed():
    assert is_transition_allowed(S.APPROVED, S.ACTIVE)
    assert is_transition_allowed(S.UNDER_REVISION, S.PENDING_REVIEW)
    assert not is_transition_allowed(S.DRAFT, S.ACTIVE)
    assert not is_transition_allowed(S.OBSOLETE, S.ACTIVE)
    assert not is_transition_allowed(S.ACTIVE, S.ACTIVE)


def test_parse_status():
    assert parse_status("pending_review") is S.PENDING_REVIEW
    assert parse_status(" Active ") is S.ACTIVE
    assert parse_status(S.OBSOLETE) is S.OBSOLETE
    with pytest.raises(ValueError):
        parse_status("published")
    with pytest.raises(ValueError):
        parse_status("")


def test_labels_and_colors_for_templates():
    assert status_label("under_revision") == "Under Revision"
    assert status_label("bogus") == "bogus"
    assert status_color(S.ACTIVE) == "emerald"
    assert status_color("bogus") == "gray"
    assert str(S.DRAFT) == "draft"


def test_vocabulary_is_serializable_view_of_table():
    v = vocabulary()
    assert [row["status"] for row in v["statuses"]] == [st.value for st in DocumentStatus]
    assert {row["status"] for row in v["statuses"] if row["terminal"]} == {"obsolete", "archived"}
    assert v["transitions"]["approved"] == [
        {"label": "Publish", "status": "active", "color": "emerald"},
        {"label": "Return to Draft", "status": "draft", "color": "slate"},
    ]
    assert v["transitions"]["archived"] == []
