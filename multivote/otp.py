"""
One-time login codes for voters.

Per voter there is a single code slot (``voters.login_code`` plus expiry):

    NoCode ──issue──▶ Issued ──verify──▶ Consumed (slot cleared)
                        │
                        └──time──▶ Expired (slot kept, rejected lazily)

Issuing is serialized per email twice over: an in-process lock covers
requests landing on this worker, and the store's atomic send-slot claim
covers requests landing on other workers. Verification clears the slot
with a compare-and-set, so a code can be redeemed at most once.

Once an election is completed or archived, the last issued code becomes a
standing view-only credential: it is accepted even after expiry and is not
consumed, and no new codes are minted.
"""
import asyncio
import logging
import math
import os
import re
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from multivote import email_util
from multivote.accounts import STAFF_ACCOUNT_MESSAGE, AccountLinker, Credential
from multivote.errors import (
    Conflict, DeliveryFailed, ElectionNotActive, InvalidCode, MalformedCode,
    NotFound, RateLimited,
)
from multivote.identity import (
    AdminOrObserver, IdentityDirectory, NoIdentity, VoterIdentity, normalize_email,
)
from multivote.lifecycle import capabilities, is_ended
from multivote.models import ElectionStatus, Role
from multivote.security import codes_match, generate_login_code, utcnow

logger = logging.getLogger(__name__)

OTP_TTL_HOURS = int(os.getenv("OTP_TTL_HOURS", "5"))
OTP_COOLDOWN_SECONDS = int(os.getenv("OTP_COOLDOWN_SECONDS", "60"))

CODE_PATTERN = re.compile(r"[0-9]{6}")


# ── Outcomes ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PasswordRequired:
    """The email belongs to an admin/observer; they sign in with a password."""

    role: Role
    outcome = "password_required"


@dataclass(frozen=True)
class CodeIssued:
    expires_at: datetime
    expires_in: int
    outcome = "issued"


@dataclass(frozen=True)
class CodeAlreadyValid:
    minutes_remaining: int
    outcome = "already_valid"


@dataclass(frozen=True)
class ElectionNotStarted:
    instance_name: str
    status: ElectionStatus
    outcome = "election_not_started"


@dataclass(frozen=True)
class ElectionEnded:
    instance_name: str
    has_existing_code: bool
    outcome = "election_ended"


RequestOutcome = PasswordRequired | CodeIssued | CodeAlreadyValid | ElectionNotStarted | ElectionEnded


@dataclass(frozen=True)
class VerifiedLogin:
    voter_id: UUID
    instance_id: UUID
    full_name: str
    credential: Credential
    view_only: bool


@dataclass(frozen=True)
class Registration:
    instance_name: str
    code: RequestOutcome | None


# ── Engine ───────────────────────────────────────────────────────────────────

class OtpEngine:

    def __init__(self, store, linker: AccountLinker | None = None, send_code=None,
                 clock=utcnow, ttl: timedelta | None = None,
                 cooldown: timedelta | None = None):
        self.store = store
        self.clock = clock
        self.directory = IdentityDirectory(store)
        self.linker = linker or AccountLinker(store, clock=clock)
        self.send_code = send_code or email_util.send_otp_email
        self.ttl = ttl or timedelta(hours=OTP_TTL_HOURS)
        self.cooldown = cooldown if cooldown is not None else timedelta(seconds=OTP_COOLDOWN_SECONDS)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, email: str) -> asyncio.Lock:
        lock = self._locks.get(email)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[email] = lock
        return lock

    async def request_code(self, email: str) -> RequestOutcome:
        """Issue a login code for ``email`` if the election and rate limit allow it."""
        email = normalize_email(email)
        identity = await self.directory.resolve(email)

        if isinstance(identity, AdminOrObserver):
            return PasswordRequired(role=identity.role)
        if isinstance(identity, NoIdentity):
            raise NotFound("Email not found")

        if is_ended(identity.status):
            voter = await self.store.get_voter(identity.voter_id)
            return ElectionEnded(
                instance_name=identity.instance_name,
                has_existing_code=bool(voter and voter.login_code),
            )
        if not capabilities(identity.status).can_request_code:
            return ElectionNotStarted(instance_name=identity.instance_name,
                                      status=identity.status)

        async with self._lock_for(email):
            return await self._issue(email, identity)

    async def _issue(self, email: str, identity: VoterIdentity) -> RequestOutcome:
        now = self.clock()
        slot = await self.store.claim_send_slot(email, now, self.cooldown)
        if not slot.allowed:
            last = slot.last_sent_at or now
            wait = math.ceil((last + self.cooldown - now).total_seconds())
            logger.info(f"Code request for {email} rate limited ({wait}s left)")
            raise RateLimited(wait)

        voter = await self.store.get_voter(identity.voter_id)
        if voter is None:
            raise NotFound("Email not found")
        if voter.login_code and voter.login_code_expires_at and voter.login_code_expires_at > now:
            remaining = math.ceil((voter.login_code_expires_at - now).total_seconds() / 60)
            return CodeAlreadyValid(minutes_remaining=remaining)

        code = generate_login_code()
        expires_at = now + self.ttl
        await self.store.set_login_code(voter.id, code, expires_at)
        logger.info(f"Issued login code for voter {voter.id} ({email}), expires {expires_at.isoformat()}")

        try:
            await self.send_code(email, voter.full_name, code, identity.instance_name,
                                 int(self.ttl.total_seconds() // 3600))
        except Exception as e:
            # an unsent code must not block the next request as "already valid"
            await self.store.consume_login_code(voter.id, code)
            logger.error(f"Login code for voter {voter.id} not delivered: {e}")
            raise DeliveryFailed()

        return CodeIssued(expires_at=expires_at, expires_in=int(self.ttl.total_seconds()))

    async def verify_code(self, email: str, code: str) -> VerifiedLogin:
        """Redeem a login code and rotate the voter's durable credential."""
        if not isinstance(code, str) or not CODE_PATTERN.fullmatch(code):
            raise MalformedCode()

        if isinstance(await self.directory.resolve(email), AdminOrObserver):
            # staff sign in with their password; a code never opens their account
            logger.info("Rejected login code for a staff email")
            raise InvalidCode()
        match = await self.directory.find_voter(email)
        if match is None:
            raise InvalidCode()
        voter, instance = match
        now = self.clock()

        if not codes_match(code, voter.login_code):
            logger.info(f"Rejected login code for voter {voter.id}: mismatch or no code")
            raise InvalidCode()

        view_only = is_ended(instance.status)
        if not view_only:
            expires_at = voter.login_code_expires_at
            if expires_at is None or expires_at <= now:
                logger.info(f"Rejected login code for voter {voter.id}: expired")
                raise InvalidCode()
            if not await self.store.consume_login_code(voter.id, voter.login_code):
                logger.info(f"Rejected login code for voter {voter.id}: already consumed")
                raise InvalidCode()

        credential = await self.linker.link(voter)
        logger.info(f"Voter {voter.id} verified (view_only={view_only})")
        return VerifiedLogin(
            voter_id=voter.id,
            instance_id=instance.id,
            full_name=voter.full_name,
            credential=credential,
            view_only=view_only,
        )

    async def register(self, email: str) -> Registration:
        """Self-registration of a listed voter; sends a code when voting is open."""
        if isinstance(await self.directory.resolve(email), AdminOrObserver):
            raise Conflict(STAFF_ACCOUNT_MESSAGE)
        match = await self.directory.find_voter(email)
        if match is None:
            raise NotFound("Email not found in the list of authorised voters")
        voter, instance = match
        if voter.is_registered:
            raise Conflict("This account is already registered. Use the login page.")
        if is_ended(instance.status):
            raise ElectionNotActive(instance.status.value,
                                    "This election is no longer open for registration")

        await self.linker.link(voter)
        code = None
        if capabilities(instance.status).can_request_code:
            code = await self.request_code(email)
        return Registration(instance_name=instance.name, code=code)
