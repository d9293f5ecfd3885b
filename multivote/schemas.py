"""
Pydantic schemas — request validation and response serialisation.

Organised by bounded context:
    1. Auth        — identity resolution, login codes, sessions, accounts
    2. Election    — instances, lifecycle, categories, candidates, staff roles
    3. Voter       — voter roll, CSV import
    4. Voting      — ballot, vote casting
    5. Results     — tallies, statistics, timeline
    6. Common      — health, errors
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from multivote.models import ElectionStatus, Role


# ══════════════════════════════════════════════════════════════════════════════
# 1. AUTH SERVICE
# ══════════════════════════════════════════════════════════════════════════════

class EmailRequest(BaseModel):
    email: EmailStr


class ResolveResponse(BaseModel):
    kind: str  # none | admin_or_observer | voter
    role: Role | None = None
    instance_id: UUID | None = None
    status: ElectionStatus | None = None


class RequestCodeResponse(BaseModel):
    outcome: str
    user_type: str  # voter | admin
    message: str
    expires_in: int | None = None
    minutes_remaining: int | None = None
    instance_name: str | None = None
    status: ElectionStatus | None = None
    has_existing_code: bool | None = None


class VerifyCodeRequest(BaseModel):
    email: EmailStr
    # format is checked by the OTP engine so malformed codes get their own error
    code: str


class CredentialResponse(BaseModel):
    """Durable credential to exchange at ``/login`` right away."""

    email: str
    secret: str
    account_id: UUID
    voter_id: UUID
    instance_id: UUID
    full_name: str
    view_only: bool


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    token: str
    kind: str
    account_id: UUID
    role_id: UUID | None = None
    instance_id: UUID | None = None
    voter_id: UUID | None = None


class TokenVerifyRequest(BaseModel):
    token: str


class TokenVerifyResponse(BaseModel):
    valid: bool
    kind: str | None = None
    account_id: UUID | None = None
    email: str | None = None
    instance_id: UUID | None = None
    voter_id: UUID | None = None


class MeResponse(BaseModel):
    account_id: UUID
    email: str
    kind: str
    role_id: UUID | None = None
    instance_id: UUID | None = None
    instance_name: str | None = None
    instance_status: ElectionStatus | None = None
    voter_id: UUID | None = None
    full_name: str | None = None


class RegisterResponse(BaseModel):
    message: str
    instance_name: str
    code: RequestCodeResponse | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


# ══════════════════════════════════════════════════════════════════════════════
# 2. ELECTION SERVICE
# ══════════════════════════════════════════════════════════════════════════════

class InstanceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    primary_color: str | None = None
    secondary_color: str | None = None
    accent_color: str | None = None

    def colors(self) -> dict:
        return self.model_dump(exclude={"name"}, exclude_none=True)


class InstanceUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class InstanceOut(BaseModel):
    id: UUID
    name: str
    status: ElectionStatus
    primary_color: str
    secondary_color: str
    accent_color: str
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    allowed_actions: list[str] = []
    can_edit_structure: bool = False
    can_vote: bool = False


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    display_order: int | None = Field(default=None, ge=0)


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    display_order: int | None = Field(default=None, ge=0)


class CategoryOut(BaseModel):
    id: UUID
    instance_id: UUID
    name: str
    description: str | None = None
    display_order: int


class CandidateCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    photo_url: str | None = None
    program_url: str | None = None


class CandidateUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    photo_url: str | None = None
    program_url: str | None = None


class CandidateOut(BaseModel):
    id: UUID
    category_id: UUID
    full_name: str
    description: str | None = None
    photo_url: str | None = None
    program_url: str | None = None


class AccountCreate(BaseModel):
    email: EmailStr
    role: Role
    instance_id: UUID | None = None


class ObserverCreate(BaseModel):
    email: EmailStr


class AccountOut(BaseModel):
    id: UUID
    user_id: UUID
    email: str
    role: Role
    instance_id: UUID | None = None
    instance_name: str | None = None
    created_at: datetime


class InvitationOut(BaseModel):
    role_id: UUID
    user_id: UUID
    role: Role
    instance_id: UUID | None = None
    created_account: bool
    email_sent: bool
    # only present when the email could not be delivered
    password: str | None = None
    warning: str | None = None


# ══════════════════════════════════════════════════════════════════════════════
# 3. VOTER SERVICE
# ══════════════════════════════════════════════════════════════════════════════

class VoterCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: EmailStr


class VoterUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None


class VoterBulkDelete(BaseModel):
    voter_ids: list[UUID] = Field(min_length=1)


class VoterOut(BaseModel):
    id: UUID
    instance_id: UUID
    full_name: str
    email: str
    is_registered: bool
    registered_at: datetime | None = None
    created_at: datetime


class ImportResponse(BaseModel):
    message: str
    voters_added: int
    voters_skipped: int
    errors: list[str] = []


# ══════════════════════════════════════════════════════════════════════════════
# 4. VOTING SERVICE
# ══════════════════════════════════════════════════════════════════════════════

class CastVoteRequest(BaseModel):
    category_id: UUID
    candidate_id: UUID


class VoteResponse(BaseModel):
    message: str
    vote_id: UUID
    category_id: UUID
    candidate_id: UUID
    created_at: datetime


class BallotCategory(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    display_order: int
    candidates: list[CandidateOut]
    has_voted: bool
    voted_candidate_id: UUID | None = None


class BallotResponse(BaseModel):
    instance_id: UUID
    instance_name: str
    status: ElectionStatus
    can_vote: bool
    full_name: str
    categories: list[BallotCategory]


# ══════════════════════════════════════════════════════════════════════════════
# 5. RESULTS SERVICE
# ══════════════════════════════════════════════════════════════════════════════

class CandidateResult(BaseModel):
    candidate_id: UUID
    full_name: str
    photo_url: str | None = None
    votes: int
    percentage: float


class CategoryResult(BaseModel):
    category_id: UUID
    name: str
    display_order: int
    total_votes: int
    candidates: list[CandidateResult]


class InstanceStatsOut(BaseModel):
    total_voters: int
    registered_voters: int
    votes_cast: int
    participation_rate: float
    categories_count: int
    candidates_count: int


class InstanceResultsOut(BaseModel):
    instance: InstanceOut
    stats: InstanceStatsOut
    categories: list[CategoryResult]


class TimelinePoint(BaseModel):
    hour: datetime
    count: int


# ══════════════════════════════════════════════════════════════════════════════
# 6. COMMON
# ══════════════════════════════════════════════════════════════════════════════

class HealthResponse(BaseModel):
    status: str
    service: str


class ErrorResponse(BaseModel):
    error: str
    code: str


class MessageResponse(BaseModel):
    message: str
