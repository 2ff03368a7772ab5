from typing import Optional

from fastapi import APIRouter, Body, Query, Response

import crud
import participation
from db import SessionDep
from models import DriveCategory, DriveStatus
from schemas import (
    DriveCreate,
    DriveRead,
    DriveUpdate,
    Message,
    Page,
    VolunteerPayload,
)
from .auth import CurrentActorDep

router = APIRouter(tags=["drives"])


@router.get("/", response_model=Page[DriveRead])
def list_drives(
    session: SessionDep,
    status: Optional[DriveStatus] = None,
    category: Optional[DriveCategory] = None,
    is_emergency: Optional[bool] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
):
    filters = {"status": status, "category": category, "is_emergency": is_emergency}
    items, total = crud.drives.list(session, filters, page, limit)
    return crud.to_page(DriveRead, items, total, page, limit)


@router.get("/{drive_id}", response_model=DriveRead)
def get_drive(drive_id: int, session: SessionDep):
    """
    Get a single drive together with its volunteers.
    """
    drive = crud.drives.get(session, drive_id)
    return participation.drive_read(session, drive)


@router.post("/", response_model=DriveRead, status_code=201)
def create_drive(drive_in: DriveCreate, session: SessionDep, actor: CurrentActorDep):
    drive = crud.create_drive(session, actor, drive_in)
    return participation.drive_read(session, drive)


@router.put("/{drive_id}", response_model=DriveRead)
def update_drive(
    drive_id: int,
    update: DriveUpdate,
    session: SessionDep,
    actor: CurrentActorDep,
):
    drive = crud.update_drive(session, actor, drive_id, update)
    return participation.drive_read(session, drive)


@router.delete("/{drive_id}", status_code=204)
def delete_drive(drive_id: int, session: SessionDep, actor: CurrentActorDep):
    crud.delete_drive(session, actor, drive_id)
    return Response(status_code=204)


@router.post("/{drive_id}/volunteer", response_model=Message)
def join_drive(
    drive_id: int,
    session: SessionDep,
    actor: CurrentActorDep,
    payload: Optional[VolunteerPayload] = Body(default=None),
):
    """
    Join a drive as a volunteer. Any logged-in user may join any drive once.
    """
    role_label = payload.role if payload else None
    participation.join_as_volunteer(session, actor, drive_id, role_label)
    return Message(message="Successfully joined as volunteer")
