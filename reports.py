import logging
from typing import Dict, List

from sqlalchemy import func
from sqlmodel import Session, select

from models import (
    Donation,
    DonationDrive,
    DonationStatus,
    DriveStatus,
    Request,
    RequestStatus,
    Role,
    User,
)
from permissions import Actor, Operation, require
from schemas import ActivityEntry, PlatformStats, RecentDrive, as_utc

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 100
RECENT_DRIVES = 5


def _count(session: Session, model, *clauses) -> int:
    return session.exec(select(func.count()).select_from(model).where(*clauses)).one()


def platform_stats(session: Session, actor: Actor) -> PlatformStats:
    require(actor, Operation.view_reports)

    totals: Dict[str, int] = {role.value: 0 for role in Role}
    for role, count in session.exec(select(User.role, func.count()).group_by(User.role)).all():
        totals[Role(role).value] = count
    totals["users"] = _count(session, User)
    totals["donations"] = _count(session, Donation)
    totals["requests"] = _count(session, Request)
    totals["active_drives"] = _count(
        session,
        DonationDrive,
        DonationDrive.status.in_([DriveStatus.active, DriveStatus.upcoming]),
    )

    recent = session.exec(
        select(DonationDrive)
        .order_by(DonationDrive.created_at.desc(), DonationDrive.id.desc())
        .limit(RECENT_DRIVES)
    ).all()

    return PlatformStats(
        totals=totals,
        pending_requests=_count(session, Request, Request.status == RequestStatus.pending),
        available_donations=_count(
            session, Donation, Donation.status == DonationStatus.available
        ),
        recent_drives=[RecentDrive.model_validate(d) for d in recent],
    )


def recent_activity(session: Session, actor: Actor, limit: int = ACTIVITY_LIMIT) -> List[ActivityEntry]:
    """Newest donations and requests, interleaved by creation time."""
    require(actor, Operation.view_reports)

    donations = session.exec(
        select(Donation).order_by(Donation.created_at.desc(), Donation.id.desc()).limit(limit)
    ).all()
    requests = session.exec(
        select(Request).order_by(Request.created_at.desc(), Request.id.desc()).limit(limit)
    ).all()

    entries = [
        ActivityEntry(
            type="donation", id=d.id, title=d.title, summary=d.description, created_at=d.created_at
        )
        for d in donations
    ] + [
        ActivityEntry(
            type="request", id=r.id, title=r.title, summary=r.description, created_at=r.created_at
        )
        for r in requests
    ]
    entries.sort(key=lambda e: as_utc(e.created_at), reverse=True)
    return entries[:limit]
