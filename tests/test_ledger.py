import asyncio
from uuid import uuid4

import pytest
from conftest import seed_election, set_status

from multivote.errors import AlreadyVoted, ElectionNotActive, InvalidTarget, NotFound
from multivote.ledger import VoteLedger
from multivote.models import ElectionStatus
from multivote.results import ResultsAggregator


@pytest.fixture
def ledger(store, clock):
    return VoteLedger(store, clock=clock)


async def test_second_vote_in_same_category_rejected(store, ledger):
    e = await seed_election(store, status=ElectionStatus.ACTIVE)
    c1, c2 = e.candidates

    vote = await ledger.cast_vote(e.voter.id, c1.id, e.category.id, e.instance.id)
    assert vote.candidate_id == c1.id

    with pytest.raises(AlreadyVoted):
        await ledger.cast_vote(e.voter.id, c2.id, e.category.id, e.instance.id)

    results = await ResultsAggregator(store).category_results(e.category.id)
    assert results.total_votes == 1
    by_candidate = {t.candidate.id: t.votes for t in results.candidates}
    assert by_candidate == {c1.id: 1, c2.id: 0}


async def test_concurrent_identical_casts(store, ledger):
    e = await seed_election(store, status=ElectionStatus.ACTIVE)
    candidate = e.candidates[0]
    attempts = 10

    results = await asyncio.gather(
        *[ledger.cast_vote(e.voter.id, candidate.id, e.category.id, e.instance.id)
          for _ in range(attempts)],
        return_exceptions=True,
    )
    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert sum(isinstance(r, AlreadyVoted) for r in results) == attempts - 1
    assert len(store.votes) == 1


@pytest.mark.parametrize("status", [
    ElectionStatus.DRAFT, ElectionStatus.PAUSED,
    ElectionStatus.COMPLETED, ElectionStatus.ARCHIVED,
])
async def test_voting_needs_active_election(store, ledger, status):
    e = await seed_election(store, status=status)
    with pytest.raises(ElectionNotActive) as exc:
        await ledger.cast_vote(e.voter.id, e.candidates[0].id, e.category.id, e.instance.id)
    assert exc.value.status == status.value
    assert store.votes == {}


async def test_pause_then_resume(store, ledger):
    e = await seed_election(store, status=ElectionStatus.PAUSED)
    with pytest.raises(ElectionNotActive):
        await ledger.cast_vote(e.voter.id, e.candidates[0].id, e.category.id, e.instance.id)
    set_status(store, e.instance.id, ElectionStatus.ACTIVE)
    await ledger.cast_vote(e.voter.id, e.candidates[0].id, e.category.id, e.instance.id)


async def test_cross_tenant_targets_rejected(store, ledger):
    mine = await seed_election(store, name="Mine", status=ElectionStatus.ACTIVE)
    other = await seed_election(store, name="Other", status=ElectionStatus.ACTIVE,
                                voters=("bob@example.com",))

    # candidate from another election
    with pytest.raises(InvalidTarget):
        await ledger.cast_vote(mine.voter.id, other.candidates[0].id, mine.category.id,
                               mine.instance.id)
    # category from another election
    with pytest.raises(InvalidTarget):
        await ledger.cast_vote(mine.voter.id, other.candidates[0].id, other.category.id,
                               mine.instance.id)
    # voter from another election
    with pytest.raises(InvalidTarget):
        await ledger.cast_vote(other.voter.id, mine.candidates[0].id, mine.category.id,
                               mine.instance.id)
    # unknown candidate
    with pytest.raises(InvalidTarget):
        await ledger.cast_vote(mine.voter.id, uuid4(), mine.category.id, mine.instance.id)
    assert store.votes == {}


async def test_unknown_election(store, ledger):
    with pytest.raises(NotFound):
        await ledger.cast_vote(uuid4(), uuid4(), uuid4(), uuid4())


async def test_vote_timestamp_from_clock(store, ledger, clock):
    e = await seed_election(store, status=ElectionStatus.ACTIVE)
    vote = await ledger.cast_vote(e.voter.id, e.candidates[0].id, e.category.id, e.instance.id)
    assert vote.created_at == clock.now


async def test_ballot_marks_voted_categories(store, ledger):
    e = await seed_election(store, status=ElectionStatus.ACTIVE)
    second = await store.add_category(e.instance.id, "Treasurer", None, 1)
    await store.add_candidate(second.id, "Ada Lovelace", None, None, None)

    await ledger.cast_vote(e.voter.id, e.candidates[1].id, e.category.id, e.instance.id)
    ballot = await ledger.ballot(e.voter.id)

    assert [entry.category.name for entry in ballot.categories] == ["President", "Treasurer"]
    president, treasurer = ballot.categories
    assert president.has_voted
    assert president.voted_candidate_id == e.candidates[1].id
    assert len(president.candidates) == 2
    assert not treasurer.has_voted
    assert treasurer.voted_candidate_id is None
