"""
Election Service — instances, lifecycle, ballot structure and staff roles.

This service owns the election bounded context:
    - Instance CRUD and lifecycle transitions (start, pause, end, archive)
    - Categories and candidates (writable only while the election is a draft)
    - Staff accounts: admins and observers, invitations, password resets
    - Self-service instance creation for an admin without an election

Read access: super-admins see every instance, everyone else their own.
Write access: the instance's admin or a super-admin.
"""
import logging
from uuid import UUID

from fastapi import Depends

from multivote.access import (
    Principal, require_instance_read, require_instance_write, require_staff,
    require_super_admin,
)
from multivote.catalog import Catalog
from multivote.elections import ElectionAdmin, Invitation
from multivote.lifecycle import Action
from multivote.models import Role
from multivote.schemas import (
    AccountCreate, AccountOut, CandidateCreate, CandidateOut, CandidateUpdate,
    CategoryCreate, CategoryOut, CategoryUpdate, InstanceCreate, InstanceOut, InstanceUpdate,
    InvitationOut, MessageResponse, ObserverCreate,
)
from multivote.services.common import (
    catalog, create_app, current_principal, election_admin, instance_out,
)

logger = logging.getLogger(__name__)

app = create_app(
    "election",
    title="Election Service",
    description="Election instances, lifecycle, categories, candidates and staff roles",
)


def invitation_out(invitation: Invitation) -> InvitationOut:
    warning = None
    if invitation.password is not None:
        warning = "The email could not be sent; pass this password on yourself"
    return InvitationOut(
        role_id=invitation.role.id,
        user_id=invitation.role.user_id,
        role=invitation.role.role,
        instance_id=invitation.role.instance_id,
        created_account=invitation.created_account,
        email_sent=invitation.email_sent,
        password=invitation.password,
        warning=warning,
    )


# ==========================================================================
# 1. INSTANCES AND LIFECYCLE
# ==========================================================================

@app.get("/elections", response_model=list[InstanceOut])
async def list_elections(principal: Principal = Depends(current_principal),
                         admin: ElectionAdmin = Depends(election_admin)):
    require_staff(principal)
    return [instance_out(i) for i in await admin.list_instances(principal)]


@app.post("/elections", response_model=InstanceOut, status_code=201)
async def create_election(data: InstanceCreate,
                          principal: Principal = Depends(current_principal),
                          admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    instance = await admin.create_instance(data.name, principal.account_id, data.colors())
    return instance_out(instance)


@app.post("/admin/create-instance", response_model=InstanceOut, status_code=201)
async def create_own_election(data: InstanceCreate,
                              principal: Principal = Depends(current_principal),
                              admin: ElectionAdmin = Depends(election_admin)):
    instance = await admin.create_own_instance(principal, data.name, data.colors())
    return instance_out(instance)


@app.get("/elections/{instance_id}", response_model=InstanceOut)
async def get_election(instance_id: UUID, principal: Principal = Depends(current_principal),
                       admin: ElectionAdmin = Depends(election_admin)):
    require_instance_read(principal, instance_id)
    return instance_out(await admin.get_instance(instance_id))


@app.patch("/elections/{instance_id}", response_model=InstanceOut)
async def rename_election(instance_id: UUID, data: InstanceUpdate,
                          principal: Principal = Depends(current_principal),
                          admin: ElectionAdmin = Depends(election_admin)):
    require_instance_write(principal, instance_id)
    return instance_out(await admin.rename_instance(instance_id, data.name))


@app.delete("/elections/{instance_id}", response_model=MessageResponse)
async def delete_election(instance_id: UUID, principal: Principal = Depends(current_principal),
                          admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    await admin.delete_instance(instance_id)
    return {"message": "Election deleted"}


@app.post("/elections/{instance_id}/status/{action}", response_model=InstanceOut)
async def transition_election(instance_id: UUID, action: Action,
                              principal: Principal = Depends(current_principal),
                              admin: ElectionAdmin = Depends(election_admin)):
    require_instance_write(principal, instance_id)
    return instance_out(await admin.transition(instance_id, action))


# ==========================================================================
# 2. CATEGORIES AND CANDIDATES
# ==========================================================================

@app.get("/elections/{instance_id}/categories", response_model=list[CategoryOut])
async def list_categories(instance_id: UUID, principal: Principal = Depends(current_principal),
                          cat: Catalog = Depends(catalog)):
    require_instance_read(principal, instance_id)
    return await cat.list_categories(instance_id)


@app.post("/elections/{instance_id}/categories", response_model=CategoryOut, status_code=201)
async def add_category(instance_id: UUID, data: CategoryCreate,
                       principal: Principal = Depends(current_principal),
                       cat: Catalog = Depends(catalog)):
    require_instance_write(principal, instance_id)
    return await cat.add_category(instance_id, data.name, data.description, data.display_order)


@app.patch("/categories/{category_id}", response_model=CategoryOut)
async def update_category(category_id: UUID, data: CategoryUpdate,
                          principal: Principal = Depends(current_principal),
                          cat: Catalog = Depends(catalog)):
    category = await cat.category(category_id)
    require_instance_write(principal, category.instance_id)
    return await cat.update_category(category_id, data.model_dump(exclude_unset=True))


@app.delete("/categories/{category_id}", response_model=MessageResponse)
async def delete_category(category_id: UUID, principal: Principal = Depends(current_principal),
                          cat: Catalog = Depends(catalog)):
    category = await cat.category(category_id)
    require_instance_write(principal, category.instance_id)
    await cat.delete_category(category_id)
    return {"message": "Category deleted"}


@app.get("/categories/{category_id}/candidates", response_model=list[CandidateOut])
async def list_candidates(category_id: UUID, principal: Principal = Depends(current_principal),
                          cat: Catalog = Depends(catalog)):
    category = await cat.category(category_id)
    require_instance_read(principal, category.instance_id)
    return await cat.list_candidates(category_id)


@app.post("/categories/{category_id}/candidates", response_model=CandidateOut, status_code=201)
async def add_candidate(category_id: UUID, data: CandidateCreate,
                        principal: Principal = Depends(current_principal),
                        cat: Catalog = Depends(catalog)):
    category = await cat.category(category_id)
    require_instance_write(principal, category.instance_id)
    return await cat.add_candidate(category_id, data.full_name, data.description,
                                   data.photo_url, data.program_url)


@app.patch("/candidates/{candidate_id}", response_model=CandidateOut)
async def update_candidate(candidate_id: UUID, data: CandidateUpdate,
                           principal: Principal = Depends(current_principal),
                           cat: Catalog = Depends(catalog)):
    candidate = await cat.candidate(candidate_id)
    category = await cat.category(candidate.category_id)
    require_instance_write(principal, category.instance_id)
    return await cat.update_candidate(candidate_id, data.model_dump(exclude_unset=True))


@app.delete("/candidates/{candidate_id}", response_model=MessageResponse)
async def delete_candidate(candidate_id: UUID, principal: Principal = Depends(current_principal),
                           cat: Catalog = Depends(catalog)):
    candidate = await cat.candidate(candidate_id)
    category = await cat.category(candidate.category_id)
    require_instance_write(principal, category.instance_id)
    await cat.delete_candidate(candidate_id)
    return {"message": "Candidate deleted"}


# ==========================================================================
# 3. STAFF ACCOUNTS
# ==========================================================================

@app.get("/accounts", response_model=list[AccountOut])
async def list_accounts(principal: Principal = Depends(current_principal),
                        admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    return await admin.list_accounts()


@app.post("/accounts", response_model=InvitationOut, status_code=201)
async def create_account(data: AccountCreate, principal: Principal = Depends(current_principal),
                         admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    return invitation_out(await admin.invite(data.email, data.role, data.instance_id))


@app.delete("/accounts/{role_id}", response_model=MessageResponse)
async def delete_account(role_id: UUID, principal: Principal = Depends(current_principal),
                         admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    await admin.remove_role(role_id)
    return {"message": "Role removed"}


@app.post("/accounts/{role_id}/reset-password", response_model=InvitationOut)
async def reset_password(role_id: UUID, principal: Principal = Depends(current_principal),
                         admin: ElectionAdmin = Depends(election_admin)):
    require_super_admin(principal)
    return invitation_out(await admin.reset_password(role_id))


@app.get("/elections/{instance_id}/observers", response_model=list[AccountOut])
async def list_observers(instance_id: UUID, principal: Principal = Depends(current_principal),
                         admin: ElectionAdmin = Depends(election_admin)):
    require_instance_write(principal, instance_id)
    return await admin.list_observers(instance_id)


@app.post("/elections/{instance_id}/observers", response_model=InvitationOut, status_code=201)
async def add_observer(instance_id: UUID, data: ObserverCreate,
                       principal: Principal = Depends(current_principal),
                       admin: ElectionAdmin = Depends(election_admin)):
    require_instance_write(principal, instance_id)
    return invitation_out(await admin.invite(data.email, Role.OBSERVER, instance_id))


@app.delete("/elections/{instance_id}/observers/{role_id}", response_model=MessageResponse)
async def remove_observer(instance_id: UUID, role_id: UUID,
                          principal: Principal = Depends(current_principal),
                          admin: ElectionAdmin = Depends(election_admin)):
    require_instance_write(principal, instance_id)
    await admin.remove_observer(instance_id, role_id)
    return {"message": "Observer removed"}
