"""
Vote ledger.

Votes are append-only. One vote per (voter, category) is enforced by the
store's unique constraint, so concurrent submissions resolve to one row and
``AlreadyVoted`` for everyone else, whichever process they come from.
"""
import logging
from dataclasses import dataclass
from uuid import UUID

from multivote.errors import InvalidTarget, NotFound
from multivote.lifecycle import require_voting_open
from multivote.models import Candidate, Category, ElectionInstance, Vote, Voter
from multivote.security import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BallotCategory:
    category: Category
    candidates: list[Candidate]
    voted_candidate_id: UUID | None

    @property
    def has_voted(self) -> bool:
        return self.voted_candidate_id is not None


@dataclass(frozen=True)
class Ballot:
    instance: ElectionInstance
    voter: Voter
    categories: list[BallotCategory]


class VoteLedger:

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    async def cast_vote(self, voter_id: UUID, candidate_id: UUID, category_id: UUID,
                        instance_id: UUID) -> Vote:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFound("Election not found")
        require_voting_open(instance.status)

        category = await self.store.get_category(category_id)
        candidate = await self.store.get_candidate(candidate_id)
        voter = await self.store.get_voter(voter_id)
        if (category is None or candidate is None or voter is None
                or category.instance_id != instance_id
                or candidate.category_id != category_id
                or voter.instance_id != instance_id):
            logger.info(
                f"Rejected vote: voter {voter_id}, candidate {candidate_id}, "
                f"category {category_id} do not match election {instance_id}"
            )
            raise InvalidTarget()

        vote = await self.store.insert_vote(voter_id, candidate_id, category_id,
                                            instance_id, self.clock())
        logger.info(f"Vote {vote.id} cast: voter {voter_id}, category {category_id}")
        return vote

    async def ballot(self, voter_id: UUID) -> Ballot:
        """Categories in display order with the voter's choice in each."""
        voter = await self.store.get_voter(voter_id)
        if voter is None:
            raise NotFound("Voter not found")
        instance = await self.store.get_instance(voter.instance_id)
        if instance is None:
            raise NotFound("Election not found")

        voted = {v.category_id: v.candidate_id
                 for v in await self.store.list_votes_for_voter(voter_id)}
        categories = []
        for category in await self.store.list_categories(instance.id):
            candidates = await self.store.list_candidates(category.id)
            categories.append(BallotCategory(category, candidates, voted.get(category.id)))
        return Ballot(instance=instance, voter=voter, categories=categories)
