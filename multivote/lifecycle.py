"""
Election lifecycle gate.

    draft ──start──▶ active ──pause──▶ paused
                       ▲                 │
                       └─────start───────┘
    active | paused ──end──▶ completed ──archive──▶ archived

The gate is pure: a transition table plus the capability set each status
grants. It never touches storage; callers load the instance, consult the
gate, then write. Every structural mutation and every vote goes through
``require`` (or one of its helpers) first.
"""
from dataclasses import dataclass
from enum import Enum

from multivote.errors import ElectionNotActive, IllegalTransition, StructureLocked
from multivote.models import ElectionStatus


class Action(str, Enum):
    START = "start"
    PAUSE = "pause"
    END = "end"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class Capabilities:
    can_edit_categories: bool = False
    can_edit_candidates: bool = False
    can_edit_voters: bool = False
    can_vote: bool = False
    can_request_code: bool = False
    voters_can_view_results: bool = False


TRANSITIONS: dict[tuple[ElectionStatus, Action], ElectionStatus] = {
    (ElectionStatus.DRAFT, Action.START): ElectionStatus.ACTIVE,
    (ElectionStatus.PAUSED, Action.START): ElectionStatus.ACTIVE,
    (ElectionStatus.ACTIVE, Action.PAUSE): ElectionStatus.PAUSED,
    (ElectionStatus.ACTIVE, Action.END): ElectionStatus.COMPLETED,
    (ElectionStatus.PAUSED, Action.END): ElectionStatus.COMPLETED,
    (ElectionStatus.COMPLETED, Action.ARCHIVE): ElectionStatus.ARCHIVED,
}

_EDITABLE = Capabilities(can_edit_categories=True, can_edit_candidates=True,
                         can_edit_voters=True)

CAPABILITIES: dict[ElectionStatus, Capabilities] = {
    ElectionStatus.DRAFT: _EDITABLE,
    ElectionStatus.ACTIVE: Capabilities(can_vote=True, can_request_code=True),
    ElectionStatus.PAUSED: Capabilities(),
    ElectionStatus.COMPLETED: Capabilities(voters_can_view_results=True),
    ElectionStatus.ARCHIVED: Capabilities(voters_can_view_results=True),
}

# Statuses in which the last issued login code stays valid without expiry.
ENDED_STATUSES = frozenset({ElectionStatus.COMPLETED, ElectionStatus.ARCHIVED})


def capabilities(status: ElectionStatus) -> Capabilities:
    return CAPABILITIES[ElectionStatus(status)]


def next_status(status: ElectionStatus, action: Action) -> ElectionStatus:
    """Target status for ``action`` or ``IllegalTransition``."""
    status, action = ElectionStatus(status), Action(action)
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise IllegalTransition(status.value, action.value)


def allowed_actions(status: ElectionStatus) -> list[Action]:
    status = ElectionStatus(status)
    return [action for (src, action) in TRANSITIONS if src == status]


def is_ended(status: ElectionStatus) -> bool:
    return ElectionStatus(status) in ENDED_STATUSES


def require_structure_editable(status: ElectionStatus, what: str = "structure") -> None:
    """Categories, candidates and voters are writable only in ``draft``."""
    caps = capabilities(status)
    allowed = {
        "categories": caps.can_edit_categories,
        "candidates": caps.can_edit_candidates,
        "voters": caps.can_edit_voters,
    }.get(what, caps.can_edit_categories and caps.can_edit_candidates and caps.can_edit_voters)
    if not allowed:
        raise StructureLocked(ElectionStatus(status).value, f"edit {what}")


def require_voting_open(status: ElectionStatus) -> None:
    if not capabilities(status).can_vote:
        raise ElectionNotActive(ElectionStatus(status).value)
