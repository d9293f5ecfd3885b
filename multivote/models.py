"""
Domain records as stored by the persistence layer.

Both store backends return these models; rows coming from asyncpg are
converted with ``Model(**dict(row))``.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class ElectionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    OBSERVER = "observer"


class ElectionInstance(BaseModel):
    id: UUID
    name: str
    status: ElectionStatus = ElectionStatus.DRAFT
    primary_color: str = "#22c55e"
    secondary_color: str = "#1f2937"
    accent_color: str = "#eab308"
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None


class Account(BaseModel):
    """Durable credential: the identity a session is minted for."""

    id: UUID
    email: str
    secret_hash: str
    created_at: datetime
    updated_at: datetime


class RoleAssignment(BaseModel):
    id: UUID
    user_id: UUID
    role: Role
    instance_id: UUID | None = None
    created_at: datetime


class Voter(BaseModel):
    id: UUID
    instance_id: UUID
    full_name: str
    email: str
    is_registered: bool = False
    registered_at: datetime | None = None
    account_id: UUID | None = None
    login_code: str | None = None
    login_code_expires_at: datetime | None = None
    created_at: datetime


class Category(BaseModel):
    id: UUID
    instance_id: UUID
    name: str
    description: str | None = None
    display_order: int = 0
    created_at: datetime


class Candidate(BaseModel):
    id: UUID
    category_id: UUID
    full_name: str
    description: str | None = None
    photo_url: str | None = None
    program_url: str | None = None
    created_at: datetime


class Vote(BaseModel):
    id: UUID
    voter_id: UUID
    candidate_id: UUID
    category_id: UUID
    instance_id: UUID
    created_at: datetime


class InstanceCounts(BaseModel):
    total_voters: int = 0
    registered_voters: int = 0
    votes_cast: int = 0
    categories_count: int = 0
    candidates_count: int = 0


class SendSlot(BaseModel):
    """Outcome of an atomic rate-limit claim for one email."""

    allowed: bool
    last_sent_at: datetime | None = None


class AccountRole(RoleAssignment):
    """Role assignment joined with its account email and instance name."""

    email: str
    instance_name: str | None = None


class VoteExportRow(BaseModel):
    created_at: datetime
    voter_name: str
    voter_email: str
    category_name: str
    candidate_name: str
