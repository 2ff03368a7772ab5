from typing import List, Optional

from fastapi import APIRouter, Query, Response

import crud
import matching
from db import SessionDep
from models import Category, Priority, RequestStatus, Urgency
from schemas import (
    MatchPayload,
    Page,
    RequestCreate,
    RequestRead,
    RequestStatusChange,
    RequestUpdate,
)
from .auth import CurrentActorDep

router = APIRouter(tags=["requests"])


@router.get("/", response_model=Page[RequestRead])
def list_requests(
    session: SessionDep,
    category: Optional[Category] = None,
    status: Optional[RequestStatus] = None,
    priority: Optional[Priority] = None,
    urgency: Optional[Urgency] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
):
    """
    List requests, most urgent first: by priority, then urgency, then newest.
    """
    filters = {
        "category": category,
        "status": status,
        "priority": priority,
        "urgency": urgency,
    }
    items, total = crud.requests.list(session, filters, page, limit)
    return crud.to_page(RequestRead, items, total, page, limit)


@router.get("/mine", response_model=List[RequestRead])
def my_requests(session: SessionDep, actor: CurrentActorDep):
    return [RequestRead.model_validate(r) for r in crud.list_own_requests(session, actor)]


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: int, session: SessionDep):
    return RequestRead.model_validate(crud.requests.get(session, request_id))


@router.post("/", response_model=RequestRead, status_code=201)
def create_request(request_data: RequestCreate, session: SessionDep, actor: CurrentActorDep):
    req = crud.create_request(session, actor, request_data)
    return RequestRead.model_validate(req)


@router.put("/{request_id}", response_model=RequestRead)
def update_request(
    request_id: int,
    update: RequestUpdate,
    session: SessionDep,
    actor: CurrentActorDep,
):
    req = crud.update_request(session, actor, request_id, update)
    return RequestRead.model_validate(req)


@router.delete("/{request_id}", status_code=204)
def delete_request(request_id: int, session: SessionDep, actor: CurrentActorDep):
    crud.delete_request(session, actor, request_id)
    return Response(status_code=204)


@router.post("/{request_id}/match", response_model=RequestRead)
def match_request(
    request_id: int,
    payload: MatchPayload,
    session: SessionDep,
    actor: CurrentActorDep,
):
    """
    Match a pending request with a donation (admin or logistics only).
    """
    req = matching.match_request(session, actor, request_id, payload.donation_id)
    return RequestRead.model_validate(req)


@router.post("/{request_id}/status", response_model=RequestRead)
def change_request_status(
    request_id: int,
    change: RequestStatusChange,
    session: SessionDep,
    actor: CurrentActorDep,
):
    req = matching.set_request_status(
        session, actor, request_id, RequestStatus(change.status)
    )
    return RequestRead.model_validate(req)
