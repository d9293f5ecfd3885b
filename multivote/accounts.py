"""
Account linker and durable credentials.

A voter never signs in with a login code directly. Each successful code
check rotates a separate random secret on the voter's durable account and
hands the (email, secret) pair back once, to be exchanged immediately for a
session. The secret is stored only as a bcrypt hash and is never logged.

Admins and observers hold durable accounts too; theirs carry a password
they chose (or were invited with) instead of a rotating secret.
"""
import logging
from dataclasses import dataclass, field
from uuid import UUID

from multivote.errors import Conflict, NotFound, Unauthorized
from multivote.identity import normalize_email
from multivote.models import Account, Role, Voter
from multivote.security import (
    generate_account_secret, generate_initial_password,
    hash_password, utcnow, verify_password,
)

logger = logging.getLogger(__name__)

STAFF_ACCOUNT_MESSAGE = "This email belongs to a staff account. Sign in with your password."


@dataclass(frozen=True)
class Credential:
    """Freshly rotated durable credential; single-use by convention."""

    account_id: UUID
    email: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class StaffAccount:
    account: Account
    created: bool
    # set when the account needs a fresh password to be sent to its owner
    password: str | None = field(default=None, repr=False)


class AccountLinker:

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    async def link(self, voter: Voter) -> Credential:
        """Create or rotate the durable credential behind ``voter``.

        First use creates the account (adopting an existing one when a
        concurrent first login created it already) and marks the voter
        registered. Later uses only rotate the secret. An account that holds
        a staff role is never touched: its password belongs to its owner.
        """
        email = normalize_email(voter.email)
        secret = generate_account_secret()
        secret_hash = hash_password(secret)
        now = self.clock()

        if voter.account_id is not None:
            await self._refuse_staff(voter.account_id)
            if await self.store.set_account_secret(voter.account_id, secret_hash, now):
                if not voter.is_registered:
                    await self.store.link_voter_account(voter.id, voter.account_id, now)
                logger.info(f"Rotated credential for account {voter.account_id}")
                return Credential(account_id=voter.account_id, email=email, secret=secret)
            logger.warning(f"Voter {voter.id} linked to missing account {voter.account_id}")

        account = await self._create_or_adopt(email, secret_hash, now)
        await self.store.link_voter_account(voter.id, account.id, now)
        logger.info(f"Linked voter {voter.id} to account {account.id}")
        return Credential(account_id=account.id, email=email, secret=secret)

    async def _refuse_staff(self, account_id: UUID) -> None:
        if await self.store.get_roles_for_user(account_id):
            logger.warning(f"Refused to rotate the secret of staff account {account_id}")
            raise Conflict(STAFF_ACCOUNT_MESSAGE)

    async def _create_or_adopt(self, email: str, secret_hash: str, now) -> Account:
        try:
            return await self.store.create_account(email, secret_hash)
        except Conflict:
            existing = await self.store.get_account_by_email(email)
            if existing is None:
                raise
            await self._refuse_staff(existing.id)
            await self.store.set_account_secret(existing.id, secret_hash, now)
            logger.info(f"Adopted existing account {existing.id} for {email}")
            return existing


async def authenticate(store, email: str, password: str) -> Account:
    """Password sign-in for any durable account; same error for every failure."""
    account = await store.get_account_by_email(normalize_email(email))
    if account is None or not verify_password(password, account.secret_hash):
        raise Unauthorized("Invalid credentials")
    return account


async def change_password(store, account_id: UUID, current: str, new: str) -> None:
    account = await store.get_account(account_id)
    if account is None:
        raise NotFound("Account not found")
    if not verify_password(current, account.secret_hash):
        raise Unauthorized("Current password is incorrect")
    await store.set_account_secret(account_id, hash_password(new), utcnow())
    logger.info(f"Password changed for account {account_id}")


async def ensure_staff_account(store, email: str) -> StaffAccount:
    """Return the account for ``email``, creating it with an initial password.

    A password is generated when the account is created here, and also when
    an existing account holds no staff role yet (a voter account's only
    secret is the rotating one, which its owner never sees). The caller
    sends it in the invitation email.
    """
    email = normalize_email(email)
    existing = await store.get_account_by_email(email)
    if existing is not None:
        return await _reuse_account(store, existing)
    password = generate_initial_password()
    try:
        account = await store.create_account(email, hash_password(password))
    except Conflict:
        account = await store.get_account_by_email(email)
        if account is None:
            raise
        return await _reuse_account(store, account)
    logger.info(f"Created staff account {account.id}")
    return StaffAccount(account=account, created=True, password=password)


async def _reuse_account(store, account: Account) -> StaffAccount:
    if await store.get_roles_for_user(account.id):
        return StaffAccount(account=account, created=False)
    password = generate_initial_password()
    await store.set_account_secret(account.id, hash_password(password), utcnow())
    logger.info(f"Issued an initial password to existing account {account.id}")
    return StaffAccount(account=account, created=False, password=password)


async def ensure_super_admin(store, email: str, password: str) -> Account:
    """Bootstrap the platform super-admin; idempotent across restarts."""
    account = (await ensure_staff_account(store, email)).account
    roles = await store.get_roles_for_user(account.id)
    if not any(r.role == Role.SUPER_ADMIN for r in roles):
        await store.set_account_secret(account.id, hash_password(password), utcnow())
        try:
            await store.add_role(account.id, Role.SUPER_ADMIN, None)
        except Conflict:
            pass  # granted concurrently by another worker
        logger.info(f"Super-admin role granted to account {account.id}")
    return account
