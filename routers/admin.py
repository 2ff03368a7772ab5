# routers/admin.py
from fastapi import APIRouter, Query, Response

import crud
import reports
from db import SessionDep
from schemas import ActivityReport, Page, PlatformStats, RoleChange, UserRead
from .auth import CurrentActorDep

router = APIRouter(tags=["admin"])


@router.get("/users", response_model=Page[UserRead])
def search_users(
    session: SessionDep,
    actor: CurrentActorDep,
    q: str = "",
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=crud.MAX_PAGE_SIZE),
):
    """
    Search users by name or email (case-insensitive substring).
    """
    items, total = crud.list_users(session, actor, {"q": q.strip()}, page, per_page)
    return crud.to_page(UserRead, items, total, page, per_page)


@router.put("/users/{user_id}/role", response_model=UserRead)
def change_role(
    user_id: int,
    change: RoleChange,
    session: SessionDep,
    actor: CurrentActorDep,
):
    user = crud.change_role(session, actor, user_id, change.role)
    return UserRead.model_validate(user)


@router.delete("/users/{user_id}", status_code=204)
def remove_user(user_id: int, session: SessionDep, actor: CurrentActorDep):
    crud.delete_user(session, actor, user_id)
    return Response(status_code=204)


@router.get("/stats", response_model=PlatformStats)
def get_stats(session: SessionDep, actor: CurrentActorDep):
    return reports.platform_stats(session, actor)


@router.get("/reports", response_model=ActivityReport)
def get_reports(session: SessionDep, actor: CurrentActorDep):
    """
    Recent donations and requests, newest first, at most 100 entries.
    """
    return ActivityReport(reports=reports.recent_activity(session, actor))
