"""
Results aggregator: read-only tallies and participation figures.

Nothing here writes. Every ratio is defined as 0 when its denominator is 0.
"""
import csv
import io
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from multivote.errors import NotFound
from multivote.models import Candidate, Category, ElectionInstance


@dataclass(frozen=True)
class CandidateTally:
    candidate: Candidate
    votes: int
    percentage: float


@dataclass(frozen=True)
class CategoryResults:
    category: Category
    total_votes: int
    candidates: list[CandidateTally]


@dataclass(frozen=True)
class InstanceStats:
    total_voters: int
    registered_voters: int
    votes_cast: int
    participation_rate: float
    categories_count: int
    candidates_count: int


@dataclass(frozen=True)
class InstanceResults:
    instance: ElectionInstance
    stats: InstanceStats
    categories: list[CategoryResults]


def percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


class ResultsAggregator:

    def __init__(self, store):
        self.store = store

    async def _instance(self, instance_id: UUID) -> ElectionInstance:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFound("Election not found")
        return instance

    async def category_results(self, category_id: UUID) -> CategoryResults:
        category = await self.store.get_category(category_id)
        if category is None:
            raise NotFound("Category not found")
        return await self._tally(category)

    async def _tally(self, category: Category) -> CategoryResults:
        candidates = await self.store.list_candidates(category.id)
        counts = await self.store.count_votes_by_candidate(category.id)
        total = sum(counts.values())
        tallies = [
            CandidateTally(c, counts.get(c.id, 0), percentage(counts.get(c.id, 0), total))
            for c in candidates
        ]
        # stable: ties keep candidate creation order
        tallies.sort(key=lambda t: t.votes, reverse=True)
        return CategoryResults(category=category, total_votes=total, candidates=tallies)

    async def instance_stats(self, instance_id: UUID) -> InstanceStats:
        await self._instance(instance_id)
        counts = await self.store.instance_counts(instance_id)
        return InstanceStats(
            total_voters=counts.total_voters,
            registered_voters=counts.registered_voters,
            votes_cast=counts.votes_cast,
            participation_rate=percentage(counts.votes_cast, counts.registered_voters),
            categories_count=counts.categories_count,
            candidates_count=counts.candidates_count,
        )

    async def instance_results(self, instance_id: UUID) -> InstanceResults:
        instance = await self._instance(instance_id)
        stats = await self.instance_stats(instance_id)
        categories = [await self._tally(c)
                      for c in await self.store.list_categories(instance_id)]
        return InstanceResults(instance=instance, stats=stats, categories=categories)

    async def vote_timeline(self, instance_id: UUID) -> list[tuple[datetime, int]]:
        """Votes per hour, oldest hour first; hours without votes are omitted."""
        await self._instance(instance_id)
        times = await self.store.list_vote_times(instance_id)
        buckets = Counter(t.replace(minute=0, second=0, microsecond=0) for t in times)
        return sorted(buckets.items())

    async def export_csv(self, instance_id: UUID) -> str:
        await self._instance(instance_id)
        rows = await self.store.export_votes(instance_id)
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["timestamp", "voter_name", "voter_email", "category", "candidate"])
        for row in rows:
            writer.writerow([row.created_at.isoformat(), row.voter_name, row.voter_email,
                             row.category_name, row.candidate_name])
        return buf.getvalue()
