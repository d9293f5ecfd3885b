"""
In-process store: same contract as PostgresStore, kept in dictionaries.

Used by the test-suite and for local runs (``STORE_BACKEND=memory``).
Reads yield to the event loop so concurrent requests interleave the way they
would against a real database; every uniqueness check and its write happen
without an intervening ``await``, which makes them atomic on the loop just
like the unique constraints they stand for.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from multivote.errors import AlreadyVoted, Conflict, InvalidTarget, NotFound
from multivote.models import (
    Account, AccountRole, Candidate, Category, ElectionInstance, ElectionStatus,
    InstanceCounts, Role, RoleAssignment, SendSlot, Vote, VoteExportRow, Voter,
)

_CATEGORY_FIELDS = {"name", "description", "display_order"}
_CANDIDATE_FIELDS = {"full_name", "description", "photo_url", "program_url"}
_VOTER_FIELDS = {"full_name", "email"}
_ROLE_RANK = {Role.SUPER_ADMIN: 0, Role.ADMIN: 1, Role.OBSERVER: 2}


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _io() -> None:
    await asyncio.sleep(0)


class MemoryStore:

    def __init__(self):
        self.instances: dict[UUID, ElectionInstance] = {}
        self.accounts: dict[UUID, Account] = {}
        self.roles: dict[UUID, RoleAssignment] = {}
        self.voters: dict[UUID, Voter] = {}
        self.categories: dict[UUID, Category] = {}
        self.candidates: dict[UUID, Candidate] = {}
        self.votes: dict[UUID, Vote] = {}
        self.send_log: dict[str, datetime] = {}
        self._vote_keys: set[tuple[UUID, UUID]] = set()

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # ── Election instances ──────────────────────────────────────────────────

    def _insert_instance(self, name, created_by, colors) -> ElectionInstance:
        now = _now()
        colors = {k: v for k, v in (colors or {}).items() if v}
        inst = ElectionInstance(id=uuid4(), name=name, created_by=created_by,
                                created_at=now, updated_at=now, **colors)
        self.instances[inst.id] = inst
        return inst

    async def create_instance(self, name, created_by=None, colors=None):
        await _io()
        return self._insert_instance(name, created_by, colors)

    async def create_instance_for_admin(self, role_id, name, colors=None):
        await _io()
        role = self.roles.get(role_id)
        if role is None or role.role != Role.ADMIN:
            raise NotFound("Admin role not found")
        if role.instance_id is not None:
            raise Conflict("You are already assigned to an instance")
        inst = self._insert_instance(name, role.user_id, colors)
        self.roles[role_id] = role.model_copy(update={"instance_id": inst.id})
        return inst

    async def get_instance(self, instance_id):
        await _io()
        return self.instances.get(instance_id)

    async def list_instances(self, ids=None):
        await _io()
        rows = [i for i in self.instances.values() if ids is None or i.id in ids]
        return sorted(rows, key=lambda i: i.created_at, reverse=True)

    async def rename_instance(self, instance_id, name, now):
        await _io()
        inst = self.instances.get(instance_id)
        if inst is None:
            return None
        inst = inst.model_copy(update={"name": name, "updated_at": now})
        self.instances[instance_id] = inst
        return inst

    async def transition_instance(self, instance_id, from_status, to_status, now):
        await _io()
        inst = self.instances.get(instance_id)
        if inst is None or inst.status != from_status:
            return None
        update = {"status": to_status, "updated_at": now}
        if to_status == ElectionStatus.ACTIVE and inst.started_at is None:
            update["started_at"] = now
        if to_status == ElectionStatus.COMPLETED:
            update["ended_at"] = now
        inst = inst.model_copy(update=update)
        self.instances[instance_id] = inst
        return inst

    async def delete_instance(self, instance_id):
        await _io()
        if self.instances.pop(instance_id, None) is None:
            return False
        category_ids = {c.id for c in self.categories.values() if c.instance_id == instance_id}
        voter_ids = {v.id for v in self.voters.values() if v.instance_id == instance_id}
        for vote in [v for v in self.votes.values() if v.instance_id == instance_id]:
            self._drop_vote(vote)
        for cid in [c.id for c in self.candidates.values() if c.category_id in category_ids]:
            del self.candidates[cid]
        for cid in category_ids:
            del self.categories[cid]
        for vid in voter_ids:
            del self.voters[vid]
        for rid in [r.id for r in self.roles.values() if r.instance_id == instance_id]:
            del self.roles[rid]
        return True

    # ── Accounts ────────────────────────────────────────────────────────────

    async def create_account(self, email, secret_hash):
        await _io()
        if any(a.email == email for a in self.accounts.values()):
            raise Conflict("An account already exists for this email")
        now = _now()
        account = Account(id=uuid4(), email=email, secret_hash=secret_hash,
                          created_at=now, updated_at=now)
        self.accounts[account.id] = account
        return account

    async def get_account(self, account_id):
        await _io()
        return self.accounts.get(account_id)

    async def get_account_by_email(self, email):
        await _io()
        return next((a for a in self.accounts.values() if a.email == email), None)

    async def set_account_secret(self, account_id, secret_hash, now):
        await _io()
        account = self.accounts.get(account_id)
        if account is None:
            return False
        self.accounts[account_id] = account.model_copy(
            update={"secret_hash": secret_hash, "updated_at": now}
        )
        return True

    # ── Role assignments ────────────────────────────────────────────────────

    async def add_role(self, user_id, role, instance_id):
        await _io()
        if user_id not in self.accounts or (
            instance_id is not None and instance_id not in self.instances
        ):
            raise NotFound("Account or instance not found")
        for existing in self.roles.values():
            same_user = existing.user_id == user_id
            if same_user and instance_id is not None and existing.instance_id == instance_id:
                raise Conflict("This role assignment conflicts with an existing one")
            if role in (Role.ADMIN, Role.SUPER_ADMIN) and same_user and existing.role == role:
                raise Conflict("This role assignment conflicts with an existing one")
            if (role == Role.ADMIN and instance_id is not None
                    and existing.role == Role.ADMIN and existing.instance_id == instance_id):
                raise Conflict("This instance already has an admin")
        assignment = RoleAssignment(id=uuid4(), user_id=user_id, role=role,
                                    instance_id=instance_id, created_at=_now())
        self.roles[assignment.id] = assignment
        return assignment

    async def get_role(self, role_id):
        await _io()
        return self.roles.get(role_id)

    async def get_roles_for_user(self, user_id):
        await _io()
        rows = [r for r in self.roles.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.created_at)

    async def find_role_by_email(self, email):
        await _io()
        account = next((a for a in self.accounts.values() if a.email == email), None)
        if account is None:
            return None
        rows = [r for r in self.roles.values() if r.user_id == account.id]
        rows.sort(key=lambda r: (_ROLE_RANK[r.role], r.created_at))
        return rows[0] if rows else None

    async def list_roles(self, instance_id=None, role=None):
        await _io()
        rows = []
        for r in self.roles.values():
            if instance_id is not None and r.instance_id != instance_id:
                continue
            if role is not None and r.role != role:
                continue
            inst = self.instances.get(r.instance_id) if r.instance_id else None
            rows.append(AccountRole(**r.model_dump(), email=self.accounts[r.user_id].email,
                                    instance_name=inst.name if inst else None))
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def delete_role(self, role_id):
        await _io()
        return self.roles.pop(role_id, None) is not None

    # ── Voters ──────────────────────────────────────────────────────────────

    def _email_taken(self, instance_id, email, exclude=None) -> bool:
        return any(
            v.instance_id == instance_id and v.email == email and v.id != exclude
            for v in self.voters.values()
        )

    async def add_voter(self, instance_id, full_name, email):
        await _io()
        if instance_id not in self.instances:
            raise NotFound("Election not found")
        if self._email_taken(instance_id, email):
            raise Conflict("Voter already exists for this election")
        voter = Voter(id=uuid4(), instance_id=instance_id, full_name=full_name,
                      email=email, created_at=_now())
        self.voters[voter.id] = voter
        return voter

    async def get_voter(self, voter_id):
        await _io()
        return self.voters.get(voter_id)

    async def list_voters(self, instance_id):
        await _io()
        rows = [v for v in self.voters.values() if v.instance_id == instance_id]
        return sorted(rows, key=lambda v: v.created_at, reverse=True)

    async def find_voters_by_email(self, email):
        await _io()
        rows = [v for v in self.voters.values() if v.email == email]
        rows.sort(key=lambda v: v.created_at, reverse=True)
        return [(v, self.instances[v.instance_id]) for v in rows]

    async def update_voter(self, voter_id, fields):
        await _io()
        voter = self.voters.get(voter_id)
        if voter is None:
            return None
        update = {k: v for k, v in fields.items() if k in _VOTER_FIELDS}
        if "email" in update and self._email_taken(voter.instance_id, update["email"], voter_id):
            raise Conflict("Another voter already uses this email")
        voter = voter.model_copy(update=update)
        self.voters[voter_id] = voter
        return voter

    async def delete_voters(self, instance_id, voter_ids):
        await _io()
        deleted = 0
        for vid in voter_ids:
            voter = self.voters.get(vid)
            if voter is None or voter.instance_id != instance_id:
                continue
            for vote in [v for v in self.votes.values() if v.voter_id == vid]:
                self._drop_vote(vote)
            del self.voters[vid]
            deleted += 1
        return deleted

    async def link_voter_account(self, voter_id, account_id, now):
        await _io()
        voter = self.voters.get(voter_id)
        if voter is None:
            return None
        voter = voter.model_copy(update={
            "account_id": account_id,
            "is_registered": True,
            "registered_at": voter.registered_at or now,
        })
        self.voters[voter_id] = voter
        return voter

    # ── Login-code slot ─────────────────────────────────────────────────────

    async def claim_send_slot(self, email, now, cooldown: timedelta):
        await _io()
        last = self.send_log.get(email)
        if last is not None and last > now - cooldown:
            return SendSlot(allowed=False, last_sent_at=last)
        self.send_log[email] = now
        return SendSlot(allowed=True, last_sent_at=now)

    async def set_login_code(self, voter_id, code, expires_at):
        await _io()
        voter = self.voters.get(voter_id)
        if voter is not None:
            self.voters[voter_id] = voter.model_copy(
                update={"login_code": code, "login_code_expires_at": expires_at}
            )

    async def consume_login_code(self, voter_id, code):
        await _io()
        voter = self.voters.get(voter_id)
        if voter is None or voter.login_code != code:
            return False
        self.voters[voter_id] = voter.model_copy(
            update={"login_code": None, "login_code_expires_at": None}
        )
        return True

    # ── Categories ──────────────────────────────────────────────────────────

    async def add_category(self, instance_id, name, description, display_order):
        await _io()
        if instance_id not in self.instances:
            raise NotFound("Election not found")
        category = Category(id=uuid4(), instance_id=instance_id, name=name,
                            description=description, display_order=display_order,
                            created_at=_now())
        self.categories[category.id] = category
        return category

    async def get_category(self, category_id):
        await _io()
        return self.categories.get(category_id)

    async def list_categories(self, instance_id):
        await _io()
        rows = [c for c in self.categories.values() if c.instance_id == instance_id]
        return sorted(rows, key=lambda c: (c.display_order, c.created_at))

    async def update_category(self, category_id, fields):
        await _io()
        category = self.categories.get(category_id)
        if category is None:
            return None
        category = category.model_copy(
            update={k: v for k, v in fields.items() if k in _CATEGORY_FIELDS}
        )
        self.categories[category_id] = category
        return category

    async def delete_category(self, category_id):
        await _io()
        if self.categories.pop(category_id, None) is None:
            return False
        for vote in [v for v in self.votes.values() if v.category_id == category_id]:
            self._drop_vote(vote)
        for cid in [c.id for c in self.candidates.values() if c.category_id == category_id]:
            del self.candidates[cid]
        return True

    # ── Candidates ──────────────────────────────────────────────────────────

    async def add_candidate(self, category_id, full_name, description, photo_url, program_url):
        await _io()
        if category_id not in self.categories:
            raise NotFound("Category not found")
        candidate = Candidate(id=uuid4(), category_id=category_id, full_name=full_name,
                              description=description, photo_url=photo_url,
                              program_url=program_url, created_at=_now())
        self.candidates[candidate.id] = candidate
        return candidate

    async def get_candidate(self, candidate_id):
        await _io()
        return self.candidates.get(candidate_id)

    async def list_candidates(self, category_id):
        await _io()
        rows = [c for c in self.candidates.values() if c.category_id == category_id]
        return sorted(rows, key=lambda c: c.created_at)

    async def update_candidate(self, candidate_id, fields):
        await _io()
        candidate = self.candidates.get(candidate_id)
        if candidate is None:
            return None
        candidate = candidate.model_copy(
            update={k: v for k, v in fields.items() if k in _CANDIDATE_FIELDS}
        )
        self.candidates[candidate_id] = candidate
        return candidate

    async def delete_candidate(self, candidate_id):
        await _io()
        if self.candidates.pop(candidate_id, None) is None:
            return False
        for vote in [v for v in self.votes.values() if v.candidate_id == candidate_id]:
            self._drop_vote(vote)
        return True

    # ── Votes ───────────────────────────────────────────────────────────────

    def _drop_vote(self, vote: Vote) -> None:
        self.votes.pop(vote.id, None)
        self._vote_keys.discard((vote.voter_id, vote.category_id))

    async def insert_vote(self, voter_id, candidate_id, category_id, instance_id, now):
        await _io()
        if (voter_id not in self.voters or candidate_id not in self.candidates
                or category_id not in self.categories or instance_id not in self.instances):
            raise InvalidTarget()
        key = (voter_id, category_id)
        if key in self._vote_keys:
            raise AlreadyVoted()
        self._vote_keys.add(key)
        vote = Vote(id=uuid4(), voter_id=voter_id, candidate_id=candidate_id,
                    category_id=category_id, instance_id=instance_id, created_at=now)
        self.votes[vote.id] = vote
        return vote

    async def list_votes_for_voter(self, voter_id):
        await _io()
        rows = [v for v in self.votes.values() if v.voter_id == voter_id]
        return sorted(rows, key=lambda v: v.created_at)

    async def count_votes_by_candidate(self, category_id):
        await _io()
        counts = {c.id: 0 for c in self.candidates.values() if c.category_id == category_id}
        for vote in self.votes.values():
            if vote.candidate_id in counts:
                counts[vote.candidate_id] += 1
        return counts

    async def instance_counts(self, instance_id):
        await _io()
        voters = [v for v in self.voters.values() if v.instance_id == instance_id]
        category_ids = {c.id for c in self.categories.values() if c.instance_id == instance_id}
        return InstanceCounts(
            total_voters=len(voters),
            registered_voters=sum(1 for v in voters if v.is_registered),
            votes_cast=sum(1 for v in self.votes.values() if v.instance_id == instance_id),
            categories_count=len(category_ids),
            candidates_count=sum(
                1 for c in self.candidates.values() if c.category_id in category_ids
            ),
        )

    async def list_vote_times(self, instance_id):
        await _io()
        return sorted(v.created_at for v in self.votes.values() if v.instance_id == instance_id)

    async def export_votes(self, instance_id):
        await _io()
        rows = []
        for vote in sorted(self.votes.values(), key=lambda v: v.created_at):
            if vote.instance_id != instance_id:
                continue
            voter = self.voters[vote.voter_id]
            category = self.categories[vote.category_id]
            rows.append((category.display_order, VoteExportRow(
                created_at=vote.created_at,
                voter_name=voter.full_name,
                voter_email=voter.email,
                category_name=category.name,
                candidate_name=self.candidates[vote.candidate_id].full_name,
            )))
        rows.sort(key=lambda r: r[0])
        return [r[1] for r in rows]
