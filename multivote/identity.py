"""
Identity directory: what does an email resolve to?

Resolution order: a role assignment (super-admin, admin, observer) wins over
a voter record. Voters are looked up by normalized email; an email may be
listed in several instances, in which case the instance most relevant to a
login right now is chosen (active first, then paused, draft, completed,
archived; newest record on ties).

Read-only and safe to call unauthenticated.
"""
from dataclasses import dataclass
from uuid import UUID

from multivote.models import ElectionInstance, ElectionStatus, Role, Voter

_LOGIN_PRIORITY = {
    ElectionStatus.ACTIVE: 0,
    ElectionStatus.PAUSED: 1,
    ElectionStatus.DRAFT: 2,
    ElectionStatus.COMPLETED: 3,
    ElectionStatus.ARCHIVED: 4,
}


@dataclass(frozen=True)
class NoIdentity:
    kind = "none"


@dataclass(frozen=True)
class AdminOrObserver:
    role: Role
    instance_id: UUID | None
    user_id: UUID
    kind = "admin_or_observer"


@dataclass(frozen=True)
class VoterIdentity:
    voter_id: UUID
    instance_id: UUID
    status: ElectionStatus
    instance_name: str
    full_name: str
    kind = "voter"


Identity = NoIdentity | AdminOrObserver | VoterIdentity


def normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityDirectory:

    def __init__(self, store):
        self.store = store

    async def resolve(self, email: str) -> Identity:
        email = normalize_email(email)
        role = await self.store.find_role_by_email(email)
        if role is not None:
            return AdminOrObserver(role=role.role, instance_id=role.instance_id,
                                   user_id=role.user_id)

        match = await self.find_voter(email)
        if match is None:
            return NoIdentity()
        voter, instance = match
        return VoterIdentity(
            voter_id=voter.id,
            instance_id=instance.id,
            status=instance.status,
            instance_name=instance.name,
            full_name=voter.full_name,
        )

    async def find_voter(self, email: str) -> tuple[Voter, ElectionInstance] | None:
        """The voter record a login for ``email`` should use, with its instance."""
        rows = await self.store.find_voters_by_email(normalize_email(email))
        if not rows:
            return None
        # rows arrive newest first; min() keeps the first of equal keys
        return min(rows, key=lambda row: _LOGIN_PRIORITY[row[1].status])
