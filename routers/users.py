# routers/users.py
from typing import Optional

from fastapi import APIRouter, Query, Response

import crud
from db import SessionDep
from models import Role
from schemas import Page, UserRead, UserUpdate
from .auth import CurrentActorDep

router = APIRouter(tags=["users"])


@router.get("/", response_model=Page[UserRead])
def list_users(
    session: SessionDep,
    actor: CurrentActorDep,
    role: Optional[Role] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
):
    """
    List users, newest first (admin only).
    """
    items, total = crud.list_users(session, actor, {"role": role}, page, limit)
    return crud.to_page(UserRead, items, total, page, limit)


@router.get("/role/{role}", response_model=Page[UserRead])
def list_users_by_role(
    role: Role,
    session: SessionDep,
    actor: CurrentActorDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
):
    """
    List users with one role, e.g. to pick a logistics handler.
    """
    items, total = crud.users.list(session, {"role": role}, page, limit)
    return crud.to_page(UserRead, items, total, page, limit)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep, actor: CurrentActorDep):
    """
    Get a single user. Users may read their own profile, admins any profile.
    """
    return UserRead.model_validate(crud.get_user(session, actor, user_id))


@router.put("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    update: UserUpdate,
    session: SessionDep,
    actor: CurrentActorDep,
):
    """
    Update a profile. Password, role and verification are never changed here.
    """
    user = crud.update_user(session, actor, user_id, update)
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=204)
def delete_user(user_id: int, session: SessionDep, actor: CurrentActorDep):
    crud.delete_user(session, actor, user_id)
    return Response(status_code=204)
