"""
Election administration: instances, lifecycle transitions and staff roles.
"""
import logging
from dataclasses import dataclass
from uuid import UUID

from multivote import email_util
from multivote.access import Principal
from multivote.accounts import ensure_staff_account
from multivote.errors import Conflict, Forbidden, IllegalTransition, InvalidRequest, NotFound
from multivote.identity import normalize_email
from multivote.lifecycle import Action, next_status
from multivote.models import AccountRole, ElectionInstance, Role, RoleAssignment
from multivote.security import generate_initial_password, hash_password, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invitation:
    """A role granted to an account, and what happened to the invite email."""

    role: RoleAssignment
    created_account: bool
    email_sent: bool
    # set only when a new password could not be emailed
    password: str | None = None


class ElectionAdmin:

    def __init__(self, store, clock=utcnow, send_invite=None, send_reset=None):
        self.store = store
        self.clock = clock
        self.send_invite = send_invite or email_util.send_account_invite_email
        self.send_reset = send_reset or email_util.send_password_reset_email

    # ── Instances ───────────────────────────────────────────────────────────

    async def get_instance(self, instance_id: UUID) -> ElectionInstance:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFound("Election not found")
        return instance

    async def list_instances(self, principal: Principal) -> list[ElectionInstance]:
        if principal.is_super_admin:
            return await self.store.list_instances()
        if principal.instance_id is None:
            return []
        return await self.store.list_instances(ids=[principal.instance_id])

    async def create_instance(self, name: str, created_by: UUID | None = None,
                              colors: dict | None = None) -> ElectionInstance:
        instance = await self.store.create_instance(name, created_by, colors)
        logger.info(f"Election {instance.id} '{name}' created")
        return instance

    async def create_own_instance(self, principal: Principal, name: str,
                                  colors: dict | None = None) -> ElectionInstance:
        """An unassigned admin creates a draft instance and is bound to it."""
        if not principal.is_admin:
            raise Forbidden("Only an admin can create their own election")
        if principal.instance_id is not None:
            raise Conflict("You are already assigned to an instance")
        instance = await self.store.create_instance_for_admin(principal.role_id, name, colors)
        logger.info(f"Admin {principal.account_id} created and took election {instance.id}")
        return instance

    async def rename_instance(self, instance_id: UUID, name: str) -> ElectionInstance:
        instance = await self.store.rename_instance(instance_id, name, self.clock())
        if instance is None:
            raise NotFound("Election not found")
        return instance

    async def delete_instance(self, instance_id: UUID) -> None:
        if not await self.store.delete_instance(instance_id):
            raise NotFound("Election not found")
        logger.info(f"Election {instance_id} deleted with all its data")

    async def transition(self, instance_id: UUID, action: Action) -> ElectionInstance:
        instance = await self.get_instance(instance_id)
        target = next_status(instance.status, action)
        updated = await self.store.transition_instance(instance_id, instance.status, target,
                                                       self.clock())
        if updated is None:
            # status moved underneath us; report against the current one
            current = await self.get_instance(instance_id)
            raise IllegalTransition(current.status.value, Action(action).value)
        logger.info(f"Election {instance_id}: {instance.status.value} -> {target.value}")
        return updated

    # ── Roles and accounts ──────────────────────────────────────────────────

    async def list_accounts(self) -> list[AccountRole]:
        return await self.store.list_roles()

    async def list_observers(self, instance_id: UUID) -> list[AccountRole]:
        await self.get_instance(instance_id)
        return await self.store.list_roles(instance_id=instance_id, role=Role.OBSERVER)

    async def invite(self, email: str, role: Role, instance_id: UUID | None) -> Invitation:
        """Grant ``role`` to the account for ``email``, creating it if needed."""
        role = Role(role)
        if role == Role.SUPER_ADMIN:
            raise Forbidden("Super-admin accounts cannot be created here")
        if role == Role.OBSERVER and instance_id is None:
            raise InvalidRequest("An observer must be attached to an election")
        instance = await self.get_instance(instance_id) if instance_id else None

        staff = await ensure_staff_account(self.store, email)
        account = staff.account
        assignment = await self.store.add_role(account.id, role, instance_id)
        logger.info(f"Granted {role.value} on {instance_id} to account {account.id}")

        if staff.password is None:
            return Invitation(role=assignment, created_account=False, email_sent=False)
        try:
            await self.send_invite(account.email, staff.password, role.value,
                                   instance.name if instance else None)
        except Exception as e:
            logger.error(f"Invite email for account {account.id} not delivered: {e}")
            return Invitation(role=assignment, created_account=staff.created, email_sent=False,
                              password=staff.password)
        return Invitation(role=assignment, created_account=staff.created, email_sent=True)

    async def get_role(self, role_id: UUID) -> RoleAssignment:
        role = await self.store.get_role(role_id)
        if role is None:
            raise NotFound("Account not found")
        return role

    async def remove_role(self, role_id: UUID) -> RoleAssignment:
        role = await self.get_role(role_id)
        if role.role == Role.SUPER_ADMIN:
            raise Forbidden("Super-admin roles cannot be removed")
        await self.store.delete_role(role_id)
        logger.info(f"Removed {role.role.value} role {role_id}")
        return role

    async def remove_observer(self, instance_id: UUID, role_id: UUID) -> None:
        role = await self.get_role(role_id)
        if role.role != Role.OBSERVER or role.instance_id != instance_id:
            raise NotFound("Observer not found for this election")
        await self.store.delete_role(role_id)
        logger.info(f"Removed observer {role_id} from election {instance_id}")

    async def reset_password(self, role_id: UUID) -> Invitation:
        """Give an admin/observer a fresh password and email it to them."""
        role = await self.get_role(role_id)
        if role.role == Role.SUPER_ADMIN:
            raise Forbidden("A super-admin password cannot be reset here")
        account = await self.store.get_account(role.user_id)
        if account is None:
            raise NotFound("Account not found")

        password = generate_initial_password()
        await self.store.set_account_secret(account.id, hash_password(password), self.clock())
        logger.info(f"Password reset for account {account.id}")

        instance = await self.store.get_instance(role.instance_id) if role.instance_id else None
        try:
            await self.send_reset(normalize_email(account.email), password, role.role.value,
                                  instance.name if instance else None)
        except Exception as e:
            logger.error(f"Reset email for account {account.id} not delivered: {e}")
            return Invitation(role=role, created_account=False, email_sent=False,
                              password=password)
        return Invitation(role=role, created_account=False, email_sent=True)
