import pytest

from multivote.errors import ElectionNotActive, IllegalTransition, StructureLocked
from multivote.lifecycle import (
    Action, allowed_actions, capabilities, is_ended, next_status,
    require_structure_editable, require_voting_open,
)
from multivote.models import ElectionStatus as S


@pytest.mark.parametrize("status, action, expected", [
    (S.DRAFT, Action.START, S.ACTIVE),
    (S.ACTIVE, Action.PAUSE, S.PAUSED),
    (S.PAUSED, Action.START, S.ACTIVE),
    (S.ACTIVE, Action.END, S.COMPLETED),
    (S.PAUSED, Action.END, S.COMPLETED),
    (S.COMPLETED, Action.ARCHIVE, S.ARCHIVED),
])
def test_legal_transitions(status, action, expected):
    assert next_status(status, action) == expected


@pytest.mark.parametrize("status, action", [
    (S.COMPLETED, Action.START),
    (S.DRAFT, Action.END),
    (S.DRAFT, Action.PAUSE),
    (S.ACTIVE, Action.ARCHIVE),
    (S.ARCHIVED, Action.START),
    (S.ARCHIVED, Action.ARCHIVE),
])
def test_illegal_transitions(status, action):
    with pytest.raises(IllegalTransition) as exc:
        next_status(status, action)
    assert exc.value.status == status.value
    assert exc.value.action == action.value
    assert exc.value.status_code == 409


def test_accepts_plain_strings():
    assert next_status("draft", "start") == S.ACTIVE


def test_allowed_actions():
    assert allowed_actions(S.DRAFT) == [Action.START]
    assert set(allowed_actions(S.ACTIVE)) == {Action.PAUSE, Action.END}
    assert set(allowed_actions(S.PAUSED)) == {Action.START, Action.END}
    assert allowed_actions(S.COMPLETED) == [Action.ARCHIVE]
    assert allowed_actions(S.ARCHIVED) == []


def test_only_draft_allows_structure_edits():
    require_structure_editable(S.DRAFT, "categories")
    for status in (S.ACTIVE, S.PAUSED, S.COMPLETED, S.ARCHIVED):
        for what in ("categories", "candidates", "voters"):
            with pytest.raises(StructureLocked):
                require_structure_editable(status, what)


def test_structure_locked_is_an_illegal_transition():
    with pytest.raises(IllegalTransition) as exc:
        require_structure_editable(S.ACTIVE, "voters")
    assert exc.value.code == "structure_locked"


def test_only_active_allows_voting():
    require_voting_open(S.ACTIVE)
    for status in (S.DRAFT, S.PAUSED, S.COMPLETED, S.ARCHIVED):
        with pytest.raises(ElectionNotActive) as exc:
            require_voting_open(status)
        assert exc.value.status == status.value


def test_capabilities_per_status():
    assert capabilities(S.DRAFT).can_edit_voters
    assert not capabilities(S.DRAFT).can_vote
    assert capabilities(S.ACTIVE).can_request_code
    assert not capabilities(S.PAUSED).can_request_code
    assert capabilities(S.COMPLETED).voters_can_view_results
    assert not capabilities(S.ACTIVE).voters_can_view_results


def test_is_ended():
    assert is_ended(S.COMPLETED)
    assert is_ended(S.ARCHIVED)
    assert not is_ended(S.PAUSED)
