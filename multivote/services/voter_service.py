"""
Voter Service — the voter roll of each election.

Voters can be added, edited, removed and imported from CSV only while the
election is a draft; once it starts the roll is frozen.
"""
import logging
from uuid import UUID

from fastapi import Depends, File, UploadFile

from multivote.access import Principal, require_instance_read, require_instance_write, require_staff
from multivote.catalog import Catalog
from multivote.errors import InvalidRequest
from multivote.schemas import (
    ImportResponse, MessageResponse, VoterBulkDelete, VoterCreate, VoterOut, VoterUpdate,
)
from multivote.services.common import catalog, create_app, current_principal

logger = logging.getLogger(__name__)

app = create_app(
    "voter",
    title="Voter Service",
    description="Voter roll management and CSV import",
)


@app.get("/elections/{instance_id}/voters", response_model=list[VoterOut])
async def list_voters(instance_id: UUID, principal: Principal = Depends(current_principal),
                      cat: Catalog = Depends(catalog)):
    require_staff(principal)
    require_instance_read(principal, instance_id)
    return await cat.list_voters(instance_id)


@app.post("/elections/{instance_id}/voters", response_model=VoterOut, status_code=201)
async def add_voter(instance_id: UUID, data: VoterCreate,
                    principal: Principal = Depends(current_principal),
                    cat: Catalog = Depends(catalog)):
    require_instance_write(principal, instance_id)
    return await cat.add_voter(instance_id, data.full_name, data.email)


@app.post("/elections/{instance_id}/voters/upload", response_model=ImportResponse,
          status_code=201)
async def upload_voters(instance_id: UUID, file: UploadFile = File(...),
                        principal: Principal = Depends(current_principal),
                        cat: Catalog = Depends(catalog)):
    require_instance_write(principal, instance_id)
    contents = await file.read()
    try:
        text = contents.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidRequest("The file must be UTF-8 encoded CSV")

    report = await cat.import_voters(instance_id, text)
    return ImportResponse(
        message="Voters uploaded",
        voters_added=report.added,
        voters_skipped=report.skipped,
        errors=report.errors,
    )


@app.post("/elections/{instance_id}/voters/delete", response_model=MessageResponse)
async def delete_voters(instance_id: UUID, data: VoterBulkDelete,
                        principal: Principal = Depends(current_principal),
                        cat: Catalog = Depends(catalog)):
    require_instance_write(principal, instance_id)
    deleted = await cat.delete_voters(instance_id, data.voter_ids)
    return {"message": f"{deleted} voter(s) deleted"}


@app.patch("/voters/{voter_id}", response_model=VoterOut)
async def update_voter(voter_id: UUID, data: VoterUpdate,
                       principal: Principal = Depends(current_principal),
                       cat: Catalog = Depends(catalog)):
    voter = await cat.voter(voter_id)
    require_instance_write(principal, voter.instance_id)
    return await cat.update_voter(voter_id, data.model_dump(exclude_unset=True, exclude_none=True))


@app.delete("/voters/{voter_id}", response_model=MessageResponse)
async def delete_voter(voter_id: UUID, principal: Principal = Depends(current_principal),
                       cat: Catalog = Depends(catalog)):
    voter = await cat.voter(voter_id)
    require_instance_write(principal, voter.instance_id)
    await cat.delete_voters(voter.instance_id, [voter_id])
    return {"message": "Voter deleted"}
