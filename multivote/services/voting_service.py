"""
Voting Service — ballot view and vote casting for signed-in voters.

The voter and election come from the session, never from the request body,
so a voter can only vote as themselves and only in their own election.
"""
import logging

from fastapi import Depends

from multivote.access import Principal
from multivote.errors import Forbidden
from multivote.ledger import VoteLedger
from multivote.lifecycle import capabilities
from multivote.schemas import (
    BallotCategory, BallotResponse, CandidateOut, CastVoteRequest, VoteResponse,
)
from multivote.services.common import create_app, current_principal, vote_ledger

logger = logging.getLogger(__name__)

app = create_app(
    "voting",
    title="Voting Service",
    description="Ballot view and one-vote-per-category casting",
)


def _require_voter(principal: Principal) -> None:
    if not principal.is_voter:
        raise Forbidden("Only voters can vote")


@app.get("/ballot", response_model=BallotResponse)
async def get_ballot(principal: Principal = Depends(current_principal),
                     ledger: VoteLedger = Depends(vote_ledger)):
    _require_voter(principal)
    ballot = await ledger.ballot(principal.voter_id)
    return BallotResponse(
        instance_id=ballot.instance.id,
        instance_name=ballot.instance.name,
        status=ballot.instance.status,
        can_vote=capabilities(ballot.instance.status).can_vote,
        full_name=ballot.voter.full_name,
        categories=[
            BallotCategory(
                id=entry.category.id,
                name=entry.category.name,
                description=entry.category.description,
                display_order=entry.category.display_order,
                candidates=[CandidateOut(**c.model_dump()) for c in entry.candidates],
                has_voted=entry.has_voted,
                voted_candidate_id=entry.voted_candidate_id,
            )
            for entry in ballot.categories
        ],
    )


@app.post("/vote", response_model=VoteResponse, status_code=201)
async def cast_vote(data: CastVoteRequest, principal: Principal = Depends(current_principal),
                    ledger: VoteLedger = Depends(vote_ledger)):
    _require_voter(principal)
    vote = await ledger.cast_vote(principal.voter_id, data.candidate_id, data.category_id,
                                  principal.instance_id)
    return VoteResponse(
        message="Vote recorded",
        vote_id=vote.id,
        category_id=vote.category_id,
        candidate_id=vote.candidate_id,
        created_at=vote.created_at,
    )
