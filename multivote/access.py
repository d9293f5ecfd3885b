"""
Sessions and access control.

A session token names the account and the identity it was minted for (a
role assignment or a voter record). Every request reloads that record, so
revoking a role or deleting a voter ends the session immediately and an
admin who binds themselves to a new instance sees it without signing in
again.
"""
import logging
from dataclasses import dataclass
from uuid import UUID

from multivote.accounts import authenticate
from multivote.errors import Forbidden, Unauthorized
from multivote.identity import IdentityDirectory
from multivote.lifecycle import capabilities
from multivote.models import ElectionInstance, Role
from multivote.security import create_session_token, decode_session_token

logger = logging.getLogger(__name__)

VOTER = "voter"
_ROLE_RANK = {Role.SUPER_ADMIN: 0, Role.ADMIN: 1, Role.OBSERVER: 2}


@dataclass(frozen=True)
class Principal:
    account_id: UUID
    email: str
    kind: str
    role_id: UUID | None = None
    instance_id: UUID | None = None
    voter_id: UUID | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.kind == Role.SUPER_ADMIN.value

    @property
    def is_admin(self) -> bool:
        return self.kind == Role.ADMIN.value

    @property
    def is_observer(self) -> bool:
        return self.kind == Role.OBSERVER.value

    @property
    def is_voter(self) -> bool:
        return self.kind == VOTER


def issue_token(principal: Principal) -> str:
    return create_session_token({
        "sub": principal.account_id,
        "email": principal.email,
        "kind": principal.kind,
        "role_id": principal.role_id,
        "voter_id": principal.voter_id,
    })


async def sign_in(store, email: str, password: str) -> Principal:
    """Password (or rotated voter secret) sign-in; staff roles win over voter records."""
    account = await authenticate(store, email, password)

    roles = await store.get_roles_for_user(account.id)
    if roles:
        role = min(roles, key=lambda r: (_ROLE_RANK[r.role], r.created_at))
        logger.info(f"Account {account.id} signed in as {role.role.value}")
        return Principal(account_id=account.id, email=account.email, kind=role.role.value,
                         role_id=role.id, instance_id=role.instance_id)

    match = await IdentityDirectory(store).find_voter(account.email)
    if match is not None and match[0].account_id == account.id:
        voter, instance = match
        logger.info(f"Account {account.id} signed in as voter {voter.id}")
        return Principal(account_id=account.id, email=account.email, kind=VOTER,
                         instance_id=instance.id, voter_id=voter.id)

    logger.warning(f"Account {account.id} has no role and no voter record")
    raise Unauthorized("No role is assigned to this account")


async def load_principal(store, token: str) -> Principal:
    """Decode a session token and reload the identity it names."""
    claims = decode_session_token(token)
    try:
        account_id = UUID(claims["sub"])
        kind = claims["kind"]
    except (KeyError, TypeError, ValueError):
        raise Unauthorized("Invalid session")
    email = claims.get("email") or ""

    if kind == VOTER:
        voter = await store.get_voter(UUID(claims["voter_id"])) if claims.get("voter_id") else None
        if voter is None or voter.account_id != account_id:
            raise Unauthorized("Invalid session")
        return Principal(account_id=account_id, email=email, kind=VOTER,
                         instance_id=voter.instance_id, voter_id=voter.id)

    role = await store.get_role(UUID(claims["role_id"])) if claims.get("role_id") else None
    if role is None or role.user_id != account_id or role.role.value != kind:
        raise Unauthorized("Invalid session")
    return Principal(account_id=account_id, email=email, kind=kind,
                     role_id=role.id, instance_id=role.instance_id)


# ── Checks ───────────────────────────────────────────────────────────────────

def require_super_admin(principal: Principal) -> None:
    if not principal.is_super_admin:
        raise Forbidden()


def require_staff(principal: Principal) -> None:
    if principal.is_voter:
        raise Forbidden()


def require_instance_read(principal: Principal, instance_id: UUID) -> None:
    """Super-admins see everything; everyone else only their own instance."""
    if principal.is_super_admin:
        return
    if principal.instance_id != instance_id:
        raise Forbidden()


def require_instance_write(principal: Principal, instance_id: UUID) -> None:
    """Only the instance's admin (or a super-admin) may change it."""
    if principal.is_super_admin:
        return
    if not principal.is_admin or principal.instance_id != instance_id:
        raise Forbidden()


def require_results_access(principal: Principal, instance: ElectionInstance) -> None:
    require_instance_read(principal, instance.id)
    if principal.is_voter and not capabilities(instance.status).voters_can_view_results:
        raise Forbidden("Results are available once the election has ended")
