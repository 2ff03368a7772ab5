from typing import List, Optional

from fastapi import APIRouter, Query, Response

import crud
import matching
from db import SessionDep
from models import Category, DonationStatus
from schemas import (
    DonationCreate,
    DonationRead,
    DonationStatusChange,
    DonationUpdate,
    Page,
)
from .auth import CurrentActorDep

router = APIRouter(tags=["donations"])


@router.get("/", response_model=Page[DonationRead])
def list_donations(
    session: SessionDep,
    category: Optional[Category] = None,
    status: Optional[DonationStatus] = None,
    location: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
):
    """
    List donations, newest first, optionally filtered by category, status
    and city (case-insensitive substring).
    """
    filters = {"category": category, "status": status, "location": location}
    items, total = crud.donations.list(session, filters, page, limit)
    return crud.to_page(DonationRead, items, total, page, limit)


@router.get("/mine", response_model=List[DonationRead])
def my_donations(session: SessionDep, actor: CurrentActorDep):
    return [DonationRead.model_validate(d) for d in crud.list_own_donations(session, actor)]


@router.get("/{donation_id}", response_model=DonationRead)
def get_donation(donation_id: int, session: SessionDep):
    return DonationRead.model_validate(crud.donations.get(session, donation_id))


@router.post("/", response_model=DonationRead, status_code=201)
def create_donation(donation_in: DonationCreate, session: SessionDep, actor: CurrentActorDep):
    """
    Create a donation owned by the calling donor.
    """
    donation = crud.create_donation(session, actor, donation_in)
    return DonationRead.model_validate(donation)


@router.put("/{donation_id}", response_model=DonationRead)
def update_donation(
    donation_id: int,
    update: DonationUpdate,
    session: SessionDep,
    actor: CurrentActorDep,
):
    donation = crud.update_donation(session, actor, donation_id, update)
    return DonationRead.model_validate(donation)


@router.delete("/{donation_id}", status_code=204)
def delete_donation(donation_id: int, session: SessionDep, actor: CurrentActorDep):
    crud.delete_donation(session, actor, donation_id)
    return Response(status_code=204)


@router.post("/{donation_id}/status", response_model=DonationRead)
def change_donation_status(
    donation_id: int,
    change: DonationStatusChange,
    session: SessionDep,
    actor: CurrentActorDep,
):
    """
    Move a donation to reserved, donated or expired.
    """
    donation = matching.set_donation_status(
        session,
        actor,
        donation_id,
        DonationStatus(change.status),
        recipient_id=change.recipient_id,
        logistics_id=change.logistics_id,
    )
    return DonationRead.model_validate(donation)
