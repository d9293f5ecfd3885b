"""
Ballot structure: categories, candidates and the voter roll.

Every write loads the owning election and passes the lifecycle gate first,
so structure can only change while the election is in draft.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from uuid import UUID

from email_validator import EmailNotValidError, validate_email

from multivote.errors import Conflict, NotFound
from multivote.identity import normalize_email
from multivote.lifecycle import require_structure_editable
from multivote.models import Candidate, Category, ElectionInstance, Voter

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    added: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class Catalog:

    def __init__(self, store):
        self.store = store

    async def _editable(self, instance_id: UUID, what: str) -> ElectionInstance:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFound("Election not found")
        require_structure_editable(instance.status, what)
        return instance

    async def category(self, category_id: UUID) -> Category:
        category = await self.store.get_category(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    async def candidate(self, candidate_id: UUID) -> Candidate:
        candidate = await self.store.get_candidate(candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found")
        return candidate

    async def voter(self, voter_id: UUID) -> Voter:
        voter = await self.store.get_voter(voter_id)
        if voter is None:
            raise NotFound("Voter not found")
        return voter

    # ── Categories ──────────────────────────────────────────────────────────

    async def list_categories(self, instance_id: UUID) -> list[Category]:
        return await self.store.list_categories(instance_id)

    async def add_category(self, instance_id: UUID, name: str, description: str | None = None,
                           display_order: int | None = None) -> Category:
        await self._editable(instance_id, "categories")
        if display_order is None:
            display_order = len(await self.store.list_categories(instance_id))
        category = await self.store.add_category(instance_id, name, description, display_order)
        logger.info(f"Category {category.id} added to election {instance_id}")
        return category

    async def update_category(self, category_id: UUID, fields: dict) -> Category:
        category = await self.category(category_id)
        await self._editable(category.instance_id, "categories")
        return await self.store.update_category(category_id, fields) or category

    async def delete_category(self, category_id: UUID) -> None:
        category = await self.category(category_id)
        await self._editable(category.instance_id, "categories")
        await self.store.delete_category(category_id)
        logger.info(f"Category {category_id} deleted")

    # ── Candidates ──────────────────────────────────────────────────────────

    async def list_candidates(self, category_id: UUID) -> list[Candidate]:
        return await self.store.list_candidates(category_id)

    async def add_candidate(self, category_id: UUID, full_name: str,
                            description: str | None = None, photo_url: str | None = None,
                            program_url: str | None = None) -> Candidate:
        category = await self.category(category_id)
        await self._editable(category.instance_id, "candidates")
        candidate = await self.store.add_candidate(category_id, full_name, description,
                                                   photo_url, program_url)
        logger.info(f"Candidate {candidate.id} added to category {category_id}")
        return candidate

    async def update_candidate(self, candidate_id: UUID, fields: dict) -> Candidate:
        candidate = await self.candidate(candidate_id)
        category = await self.category(candidate.category_id)
        await self._editable(category.instance_id, "candidates")
        return await self.store.update_candidate(candidate_id, fields) or candidate

    async def delete_candidate(self, candidate_id: UUID) -> None:
        candidate = await self.candidate(candidate_id)
        category = await self.category(candidate.category_id)
        await self._editable(category.instance_id, "candidates")
        await self.store.delete_candidate(candidate_id)
        logger.info(f"Candidate {candidate_id} deleted")

    # ── Voters ──────────────────────────────────────────────────────────────

    async def list_voters(self, instance_id: UUID) -> list[Voter]:
        return await self.store.list_voters(instance_id)

    async def add_voter(self, instance_id: UUID, full_name: str, email: str) -> Voter:
        await self._editable(instance_id, "voters")
        return await self.store.add_voter(instance_id, full_name.strip(), normalize_email(email))

    async def update_voter(self, voter_id: UUID, fields: dict) -> Voter:
        voter = await self.voter(voter_id)
        await self._editable(voter.instance_id, "voters")
        if fields.get("email"):
            fields = {**fields, "email": normalize_email(fields["email"])}
        return await self.store.update_voter(voter_id, fields) or voter

    async def delete_voters(self, instance_id: UUID, voter_ids: list[UUID]) -> int:
        await self._editable(instance_id, "voters")
        deleted = await self.store.delete_voters(instance_id, voter_ids)
        logger.info(f"Deleted {deleted} voter(s) from election {instance_id}")
        return deleted

    async def import_voters(self, instance_id: UUID, text: str) -> ImportReport:
        """Add voters from CSV text with ``full_name`` and ``email`` columns.

        Rows with a missing name, an invalid email, or an email already on the
        roll are skipped and reported; the rest are added.
        """
        await self._editable(instance_id, "voters")
        report = ImportReport()
        reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
        reader.fieldnames = [(f or "").strip().lower() for f in reader.fieldnames or []]
        if "email" not in reader.fieldnames or "full_name" not in reader.fieldnames:
            report.errors.append("CSV must have 'full_name' and 'email' columns")
            return report

        for line, row in enumerate(reader, start=2):
            full_name = (row.get("full_name") or "").strip()
            email = (row.get("email") or "").strip()
            if not full_name or not email:
                report.skipped += 1
                report.errors.append(f"Line {line}: missing name or email")
                continue
            try:
                email = validate_email(email, check_deliverability=False).normalized
            except EmailNotValidError:
                report.skipped += 1
                report.errors.append(f"Line {line}: invalid email '{email}'")
                continue
            try:
                await self.store.add_voter(instance_id, full_name, normalize_email(email))
                report.added += 1
            except Conflict:
                report.skipped += 1
                report.errors.append(f"Line {line}: '{email}' is already on the voter roll")

        logger.info(f"Imported voters into election {instance_id}: "
                    f"{report.added} added, {report.skipped} skipped")
        return report
