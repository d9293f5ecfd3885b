import csv
import io
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from conftest import seed_election

from multivote.errors import NotFound
from multivote.ledger import VoteLedger
from multivote.models import ElectionStatus
from multivote.results import ResultsAggregator, percentage

VOTERS = ("ada@example.com", "bob@example.com", "cy@example.com")


@pytest.fixture
def aggregator(store):
    return ResultsAggregator(store)


async def test_zero_votes(store, aggregator):
    e = await seed_election(store)
    results = await aggregator.category_results(e.category.id)
    assert results.total_votes == 0
    assert [(t.votes, t.percentage) for t in results.candidates] == [(0, 0), (0, 0)]


async def test_category_without_candidates(store, aggregator):
    e = await seed_election(store)
    empty = await store.add_category(e.instance.id, "Empty", None, 1)
    results = await aggregator.category_results(empty.id)
    assert results.candidates == []
    assert results.total_votes == 0


async def test_percentages_and_order(store, aggregator, clock):
    e = await seed_election(store, status=ElectionStatus.ACTIVE, voters=VOTERS)
    first, second = e.candidates
    ledger = VoteLedger(store, clock=clock)
    await ledger.cast_vote(e.voters[0].id, second.id, e.category.id, e.instance.id)
    await ledger.cast_vote(e.voters[1].id, second.id, e.category.id, e.instance.id)
    await ledger.cast_vote(e.voters[2].id, first.id, e.category.id, e.instance.id)

    results = await aggregator.category_results(e.category.id)
    assert results.total_votes == 3
    assert [(t.candidate.id, t.votes, t.percentage) for t in results.candidates] == [
        (second.id, 2, 66.67),
        (first.id, 1, 33.33),
    ]


async def test_stats_participation(store, aggregator, clock):
    e = await seed_election(store, status=ElectionStatus.ACTIVE, voters=VOTERS)
    for voter in e.voters:
        await store.link_voter_account(voter.id, uuid4(), clock.now)
    ledger = VoteLedger(store, clock=clock)
    await ledger.cast_vote(e.voters[0].id, e.candidates[0].id, e.category.id, e.instance.id)
    await ledger.cast_vote(e.voters[1].id, e.candidates[1].id, e.category.id, e.instance.id)

    stats = await aggregator.instance_stats(e.instance.id)
    assert stats.total_voters == 3
    assert stats.registered_voters == 3
    assert stats.votes_cast == 2
    assert stats.participation_rate == 66.67
    assert stats.categories_count == 1
    assert stats.candidates_count == 2


async def test_stats_without_registered_voters(store, aggregator):
    e = await seed_election(store)
    stats = await aggregator.instance_stats(e.instance.id)
    assert stats.registered_voters == 0
    assert stats.participation_rate == 0


async def test_instance_results_cover_every_category(store, aggregator):
    e = await seed_election(store)
    await store.add_category(e.instance.id, "Treasurer", None, 1)
    results = await aggregator.instance_results(e.instance.id)
    assert results.instance.id == e.instance.id
    assert [c.category.name for c in results.categories] == ["President", "Treasurer"]


async def test_hourly_timeline(store, aggregator, clock):
    e = await seed_election(store, status=ElectionStatus.ACTIVE, voters=VOTERS)
    ledger = VoteLedger(store, clock=clock)
    clock.now = datetime(2026, 3, 2, 9, 10, tzinfo=timezone.utc)
    await ledger.cast_vote(e.voters[0].id, e.candidates[0].id, e.category.id, e.instance.id)
    clock.advance(minutes=40)
    await ledger.cast_vote(e.voters[1].id, e.candidates[0].id, e.category.id, e.instance.id)
    clock.advance(hours=1, minutes=15)
    await ledger.cast_vote(e.voters[2].id, e.candidates[1].id, e.category.id, e.instance.id)

    assert await aggregator.vote_timeline(e.instance.id) == [
        (datetime(2026, 3, 2, 9, tzinfo=timezone.utc), 2),
        (datetime(2026, 3, 2, 11, tzinfo=timezone.utc), 1),
    ]


async def test_csv_export(store, aggregator, clock):
    e = await seed_election(store, status=ElectionStatus.ACTIVE)
    await VoteLedger(store, clock=clock).cast_vote(
        e.voter.id, e.candidates[0].id, e.category.id, e.instance.id)

    rows = list(csv.reader(io.StringIO(await aggregator.export_csv(e.instance.id))))
    assert rows[0] == ["timestamp", "voter_name", "voter_email", "category", "candidate"]
    assert rows[1] == [clock.now.isoformat(), "Voter 0", "ada@example.com", "President",
                       "Grace Hopper"]


async def test_unknown_targets(aggregator):
    with pytest.raises(NotFound):
        await aggregator.category_results(uuid4())
    with pytest.raises(NotFound):
        await aggregator.instance_stats(uuid4())


def test_percentage_helper():
    assert percentage(1, 3) == 33.33
    assert percentage(5, 0) == 0
    assert isinstance(percentage(5, 0), float)
