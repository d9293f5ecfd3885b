"""
PostgreSQL store: raw SQL over the shared asyncpg pool.

Invariants that must hold under concurrent requests from several processes
are delegated to the database itself:
  - one vote per (voter, category): unique constraint, translated to AlreadyVoted
  - one admin per instance / one admin role per account: partial unique indexes
  - single-use login codes: conditional UPDATE ... WHERE login_code = $2
  - OTP cooldown: conditional upsert on otp_send_log
"""
import logging
from datetime import datetime, timedelta
from uuid import UUID

import asyncpg

from multivote.database import Database
from multivote.errors import AlreadyVoted, Conflict, InvalidTarget, NotFound
from multivote.models import (
    Account, AccountRole, Candidate, Category, ElectionInstance, ElectionStatus,
    InstanceCounts, Role, RoleAssignment, SendSlot, Vote, VoteExportRow, Voter,
)

logger = logging.getLogger(__name__)

_CATEGORY_FIELDS = {"name", "description", "display_order"}
_CANDIDATE_FIELDS = {"full_name", "description", "photo_url", "program_url"}
_VOTER_FIELDS = {"full_name", "email"}


def _set_clause(fields: dict, allowed: set, start: int) -> tuple[str, list]:
    """Build ``col = $n`` pairs for a whitelisted partial update."""
    cols = [k for k in fields if k in allowed]
    clause = ", ".join(f"{col} = ${start + i}" for i, col in enumerate(cols))
    return clause, [fields[c] for c in cols]


class PostgresStore:
    """Store backend used in deployment."""

    async def open(self) -> None:
        await Database.get_pool()
        await Database.ensure_schema()

    async def close(self) -> None:
        await Database.close()

    # ── Election instances ──────────────────────────────────────────────────

    async def create_instance(self, name: str, created_by: UUID | None = None,
                              colors: dict | None = None) -> ElectionInstance:
        colors = colors or {}
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """INSERT INTO election_instances
                       (name, created_by, primary_color, secondary_color, accent_color)
                   VALUES ($1, $2,
                           COALESCE($3, '#22c55e'), COALESCE($4, '#1f2937'),
                           COALESCE($5, '#eab308'))
                   RETURNING *""",
                name, created_by, colors.get("primary_color"),
                colors.get("secondary_color"), colors.get("accent_color"),
            )
        return ElectionInstance(**dict(row))

    async def create_instance_for_admin(self, role_id: UUID, name: str,
                                        colors: dict | None = None) -> ElectionInstance:
        colors = colors or {}
        async with Database.transaction() as conn:
            role = await conn.fetchrow(
                "SELECT * FROM users_roles WHERE id = $1 AND role = 'admin' FOR UPDATE",
                role_id,
            )
            if role is None:
                raise NotFound("Admin role not found")
            if role["instance_id"] is not None:
                raise Conflict("You are already assigned to an instance")
            row = await conn.fetchrow(
                """INSERT INTO election_instances
                       (name, created_by, primary_color, secondary_color, accent_color)
                   VALUES ($1, $2,
                           COALESCE($3, '#22c55e'), COALESCE($4, '#1f2937'),
                           COALESCE($5, '#eab308'))
                   RETURNING *""",
                name, role["user_id"], colors.get("primary_color"),
                colors.get("secondary_color"), colors.get("accent_color"),
            )
            await conn.execute(
                "UPDATE users_roles SET instance_id = $2 WHERE id = $1",
                role_id, row["id"],
            )
        return ElectionInstance(**dict(row))

    async def get_instance(self, instance_id: UUID) -> ElectionInstance | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM election_instances WHERE id = $1", instance_id
            )
        return ElectionInstance(**dict(row)) if row else None

    async def list_instances(self, ids: list[UUID] | None = None) -> list[ElectionInstance]:
        async with Database.connection() as conn:
            if ids is None:
                rows = await conn.fetch(
                    "SELECT * FROM election_instances ORDER BY created_at DESC"
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM election_instances WHERE id = ANY($1::uuid[]) "
                    "ORDER BY created_at DESC",
                    ids,
                )
        return [ElectionInstance(**dict(r)) for r in rows]

    async def rename_instance(self, instance_id: UUID, name: str,
                              now: datetime) -> ElectionInstance | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                "UPDATE election_instances SET name = $2, updated_at = $3 "
                "WHERE id = $1 RETURNING *",
                instance_id, name, now,
            )
        return ElectionInstance(**dict(row)) if row else None

    async def transition_instance(self, instance_id: UUID, from_status: ElectionStatus,
                                  to_status: ElectionStatus,
                                  now: datetime) -> ElectionInstance | None:
        """Compare-and-set the status; ``None`` when the status moved underneath us."""
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """UPDATE election_instances
                   SET status = $3::text,
                       updated_at = $4,
                       started_at = CASE WHEN $3::text = 'active' AND started_at IS NULL
                                         THEN $4 ELSE started_at END,
                       ended_at = CASE WHEN $3::text = 'completed' THEN $4 ELSE ended_at END
                   WHERE id = $1 AND status = $2::text
                   RETURNING *""",
                instance_id, from_status.value, to_status.value, now,
            )
        return ElectionInstance(**dict(row)) if row else None

    async def delete_instance(self, instance_id: UUID) -> bool:
        async with Database.connection() as conn:
            result = await conn.execute(
                "DELETE FROM election_instances WHERE id = $1", instance_id
            )
        return result != "DELETE 0"

    # ── Accounts ────────────────────────────────────────────────────────────

    async def create_account(self, email: str, secret_hash: str) -> Account:
        try:
            async with Database.connection() as conn:
                row = await conn.fetchrow(
                    "INSERT INTO accounts (email, secret_hash) VALUES ($1, $2) RETURNING *",
                    email, secret_hash,
                )
        except asyncpg.UniqueViolationError:
            raise Conflict("An account already exists for this email")
        return Account(**dict(row))

    async def get_account(self, account_id: UUID) -> Account | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM accounts WHERE id = $1", account_id)
        return Account(**dict(row)) if row else None

    async def get_account_by_email(self, email: str) -> Account | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM accounts WHERE email = $1", email)
        return Account(**dict(row)) if row else None

    async def set_account_secret(self, account_id: UUID, secret_hash: str,
                                 now: datetime) -> bool:
        async with Database.connection() as conn:
            result = await conn.execute(
                "UPDATE accounts SET secret_hash = $2, updated_at = $3 WHERE id = $1",
                account_id, secret_hash, now,
            )
        return result != "UPDATE 0"

    # ── Role assignments ────────────────────────────────────────────────────

    async def add_role(self, user_id: UUID, role: Role,
                       instance_id: UUID | None) -> RoleAssignment:
        try:
            async with Database.connection() as conn:
                row = await conn.fetchrow(
                    "INSERT INTO users_roles (user_id, role, instance_id) "
                    "VALUES ($1, $2, $3) RETURNING *",
                    user_id, role.value, instance_id,
                )
        except asyncpg.UniqueViolationError:
            raise Conflict("This role assignment conflicts with an existing one")
        except asyncpg.ForeignKeyViolationError:
            raise NotFound("Account or instance not found")
        return RoleAssignment(**dict(row))

    async def get_role(self, role_id: UUID) -> RoleAssignment | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM users_roles WHERE id = $1", role_id)
        return RoleAssignment(**dict(row)) if row else None

    async def get_roles_for_user(self, user_id: UUID) -> list[RoleAssignment]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM users_roles WHERE user_id = $1 ORDER BY created_at",
                user_id,
            )
        return [RoleAssignment(**dict(r)) for r in rows]

    async def find_role_by_email(self, email: str) -> RoleAssignment | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """SELECT r.* FROM users_roles r
                   JOIN accounts a ON a.id = r.user_id
                   WHERE a.email = $1
                   ORDER BY CASE r.role WHEN 'super_admin' THEN 0
                                        WHEN 'admin' THEN 1 ELSE 2 END,
                            r.created_at
                   LIMIT 1""",
                email,
            )
        return RoleAssignment(**dict(row)) if row else None

    async def list_roles(self, instance_id: UUID | None = None,
                         role: Role | None = None) -> list[AccountRole]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                """SELECT r.*, a.email, e.name AS instance_name
                   FROM users_roles r
                   JOIN accounts a ON a.id = r.user_id
                   LEFT JOIN election_instances e ON e.id = r.instance_id
                   WHERE ($1::uuid IS NULL OR r.instance_id = $1)
                     AND ($2::text IS NULL OR r.role = $2)
                   ORDER BY r.created_at DESC""",
                instance_id, role.value if role else None,
            )
        return [AccountRole(**dict(r)) for r in rows]

    async def delete_role(self, role_id: UUID) -> bool:
        async with Database.connection() as conn:
            result = await conn.execute("DELETE FROM users_roles WHERE id = $1", role_id)
        return result != "DELETE 0"

    # ── Voters ──────────────────────────────────────────────────────────────

    async def add_voter(self, instance_id: UUID, full_name: str, email: str) -> Voter:
        try:
            async with Database.connection() as conn:
                row = await conn.fetchrow(
                    "INSERT INTO voters (instance_id, full_name, email) "
                    "VALUES ($1, $2, $3) RETURNING *",
                    instance_id, full_name, email,
                )
        except asyncpg.UniqueViolationError:
            raise Conflict("Voter already exists for this election")
        return Voter(**dict(row))

    async def get_voter(self, voter_id: UUID) -> Voter | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM voters WHERE id = $1", voter_id)
        return Voter(**dict(row)) if row else None

    async def list_voters(self, instance_id: UUID) -> list[Voter]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM voters WHERE instance_id = $1 ORDER BY created_at DESC",
                instance_id,
            )
        return [Voter(**dict(r)) for r in rows]

    async def find_voters_by_email(self, email: str) -> list[tuple[Voter, ElectionInstance]]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM voters WHERE email = $1 ORDER BY created_at DESC", email
            )
            if not rows:
                return []
            instances = await conn.fetch(
                "SELECT * FROM election_instances WHERE id = ANY($1::uuid[])",
                [r["instance_id"] for r in rows],
            )
        by_id = {i["id"]: ElectionInstance(**dict(i)) for i in instances}
        return [(Voter(**dict(r)), by_id[r["instance_id"]]) for r in rows]

    async def update_voter(self, voter_id: UUID, fields: dict) -> Voter | None:
        clause, values = _set_clause(fields, _VOTER_FIELDS, 2)
        if not clause:
            return await self.get_voter(voter_id)
        try:
            async with Database.connection() as conn:
                row = await conn.fetchrow(
                    f"UPDATE voters SET {clause} WHERE id = $1 RETURNING *",
                    voter_id, *values,
                )
        except asyncpg.UniqueViolationError:
            raise Conflict("Another voter already uses this email")
        return Voter(**dict(row)) if row else None

    async def delete_voters(self, instance_id: UUID, voter_ids: list[UUID]) -> int:
        async with Database.connection() as conn:
            result = await conn.execute(
                "DELETE FROM voters WHERE instance_id = $1 AND id = ANY($2::uuid[])",
                instance_id, voter_ids,
            )
        return int(result.split()[-1])

    async def link_voter_account(self, voter_id: UUID, account_id: UUID,
                                 now: datetime) -> Voter | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """UPDATE voters
                   SET account_id = $2,
                       is_registered = TRUE,
                       registered_at = COALESCE(registered_at, $3)
                   WHERE id = $1 RETURNING *""",
                voter_id, account_id, now,
            )
        return Voter(**dict(row)) if row else None

    # ── Login-code slot ─────────────────────────────────────────────────────

    async def claim_send_slot(self, email: str, now: datetime,
                              cooldown: timedelta) -> SendSlot:
        """Atomically record a send for ``email`` unless one happened within ``cooldown``."""
        async with Database.connection() as conn:
            claimed = await conn.fetchval(
                """INSERT INTO otp_send_log (email, last_sent_at) VALUES ($1, $2)
                   ON CONFLICT (email) DO UPDATE SET last_sent_at = EXCLUDED.last_sent_at
                   WHERE otp_send_log.last_sent_at <= $3
                   RETURNING last_sent_at""",
                email, now, now - cooldown,
            )
            if claimed is not None:
                return SendSlot(allowed=True, last_sent_at=claimed)
            last = await conn.fetchval(
                "SELECT last_sent_at FROM otp_send_log WHERE email = $1", email
            )
        return SendSlot(allowed=False, last_sent_at=last)

    async def set_login_code(self, voter_id: UUID, code: str, expires_at: datetime) -> None:
        async with Database.connection() as conn:
            await conn.execute(
                "UPDATE voters SET login_code = $2, login_code_expires_at = $3 WHERE id = $1",
                voter_id, code, expires_at,
            )

    async def consume_login_code(self, voter_id: UUID, code: str) -> bool:
        """Clear the slot only if it still holds ``code``; False if someone beat us to it."""
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """UPDATE voters SET login_code = NULL, login_code_expires_at = NULL
                   WHERE id = $1 AND login_code = $2 RETURNING id""",
                voter_id, code,
            )
        return row is not None

    # ── Categories ──────────────────────────────────────────────────────────

    async def add_category(self, instance_id: UUID, name: str, description: str | None,
                           display_order: int) -> Category:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                "INSERT INTO categories (instance_id, name, description, display_order) "
                "VALUES ($1, $2, $3, $4) RETURNING *",
                instance_id, name, description, display_order,
            )
        return Category(**dict(row))

    async def get_category(self, category_id: UUID) -> Category | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM categories WHERE id = $1", category_id)
        return Category(**dict(row)) if row else None

    async def list_categories(self, instance_id: UUID) -> list[Category]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM categories WHERE instance_id = $1 "
                "ORDER BY display_order, created_at",
                instance_id,
            )
        return [Category(**dict(r)) for r in rows]

    async def update_category(self, category_id: UUID, fields: dict) -> Category | None:
        clause, values = _set_clause(fields, _CATEGORY_FIELDS, 2)
        if not clause:
            return await self.get_category(category_id)
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                f"UPDATE categories SET {clause} WHERE id = $1 RETURNING *",
                category_id, *values,
            )
        return Category(**dict(row)) if row else None

    async def delete_category(self, category_id: UUID) -> bool:
        async with Database.connection() as conn:
            result = await conn.execute("DELETE FROM categories WHERE id = $1", category_id)
        return result != "DELETE 0"

    # ── Candidates ──────────────────────────────────────────────────────────

    async def add_candidate(self, category_id: UUID, full_name: str, description: str | None,
                            photo_url: str | None, program_url: str | None) -> Candidate:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """INSERT INTO candidates (category_id, full_name, description, photo_url, program_url)
                   VALUES ($1, $2, $3, $4, $5) RETURNING *""",
                category_id, full_name, description, photo_url, program_url,
            )
        return Candidate(**dict(row))

    async def get_candidate(self, candidate_id: UUID) -> Candidate | None:
        async with Database.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM candidates WHERE id = $1", candidate_id)
        return Candidate(**dict(row)) if row else None

    async def list_candidates(self, category_id: UUID) -> list[Candidate]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM candidates WHERE category_id = $1 ORDER BY created_at",
                category_id,
            )
        return [Candidate(**dict(r)) for r in rows]

    async def update_candidate(self, candidate_id: UUID, fields: dict) -> Candidate | None:
        clause, values = _set_clause(fields, _CANDIDATE_FIELDS, 2)
        if not clause:
            return await self.get_candidate(candidate_id)
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                f"UPDATE candidates SET {clause} WHERE id = $1 RETURNING *",
                candidate_id, *values,
            )
        return Candidate(**dict(row)) if row else None

    async def delete_candidate(self, candidate_id: UUID) -> bool:
        async with Database.connection() as conn:
            result = await conn.execute("DELETE FROM candidates WHERE id = $1", candidate_id)
        return result != "DELETE 0"

    # ── Votes ───────────────────────────────────────────────────────────────

    async def insert_vote(self, voter_id: UUID, candidate_id: UUID, category_id: UUID,
                          instance_id: UUID, now: datetime) -> Vote:
        try:
            async with Database.connection() as conn:
                row = await conn.fetchrow(
                    """INSERT INTO votes (voter_id, candidate_id, category_id, instance_id, created_at)
                       VALUES ($1, $2, $3, $4, $5) RETURNING *""",
                    voter_id, candidate_id, category_id, instance_id, now,
                )
        except asyncpg.UniqueViolationError:
            raise AlreadyVoted()
        except asyncpg.ForeignKeyViolationError:
            raise InvalidTarget()
        return Vote(**dict(row))

    async def list_votes_for_voter(self, voter_id: UUID) -> list[Vote]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM votes WHERE voter_id = $1 ORDER BY created_at", voter_id
            )
        return [Vote(**dict(r)) for r in rows]

    async def count_votes_by_candidate(self, category_id: UUID) -> dict[UUID, int]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                """SELECT c.id, COUNT(v.id) AS votes
                   FROM candidates c
                   LEFT JOIN votes v ON v.candidate_id = c.id
                   WHERE c.category_id = $1
                   GROUP BY c.id""",
                category_id,
            )
        return {r["id"]: r["votes"] for r in rows}

    async def instance_counts(self, instance_id: UUID) -> InstanceCounts:
        async with Database.connection() as conn:
            row = await conn.fetchrow(
                """SELECT
                     (SELECT COUNT(*) FROM voters WHERE instance_id = $1) AS total_voters,
                     (SELECT COUNT(*) FROM voters
                        WHERE instance_id = $1 AND is_registered) AS registered_voters,
                     (SELECT COUNT(*) FROM votes WHERE instance_id = $1) AS votes_cast,
                     (SELECT COUNT(*) FROM categories WHERE instance_id = $1) AS categories_count,
                     (SELECT COUNT(*) FROM candidates c
                        JOIN categories g ON g.id = c.category_id
                        WHERE g.instance_id = $1) AS candidates_count""",
                instance_id,
            )
        return InstanceCounts(**dict(row))

    async def list_vote_times(self, instance_id: UUID) -> list[datetime]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                "SELECT created_at FROM votes WHERE instance_id = $1 ORDER BY created_at",
                instance_id,
            )
        return [r["created_at"] for r in rows]

    async def export_votes(self, instance_id: UUID) -> list[VoteExportRow]:
        async with Database.connection() as conn:
            rows = await conn.fetch(
                """SELECT v.created_at, vo.full_name AS voter_name, vo.email AS voter_email,
                          g.name AS category_name, c.full_name AS candidate_name
                   FROM votes v
                   JOIN voters vo ON vo.id = v.voter_id
                   JOIN categories g ON g.id = v.category_id
                   JOIN candidates c ON c.id = v.candidate_id
                   WHERE v.instance_id = $1
                   ORDER BY g.display_order, v.created_at""",
                instance_id,
            )
        return [VoteExportRow(**dict(r)) for r in rows]
