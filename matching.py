"""
Request and donation lifecycles.

Request:  pending -> matched -> fulfilled, pending|matched -> cancelled
Donation: available -> reserved -> donated, available|reserved -> expired

Every transition is written as a conditional UPDATE on the current status,
so of two concurrent callers acting on the same record only one can win;
the loser sees InvalidState instead of overwriting the winner.
"""
import logging
from typing import Any, Dict, Optional, Type

from sqlalchemy import update
from sqlmodel import Session, SQLModel

from errors import InvalidState, NotFound
from models import Donation, DonationStatus, Request, RequestStatus, Role, User, utcnow
from participation import refresh_drive_progress
from permissions import Actor, Operation, require

logger = logging.getLogger(__name__)

REQUEST_TRANSITIONS = {
    RequestStatus.pending: {RequestStatus.matched, RequestStatus.cancelled},
    RequestStatus.matched: {RequestStatus.fulfilled, RequestStatus.cancelled},
    RequestStatus.fulfilled: set(),
    RequestStatus.cancelled: set(),
}

DONATION_TRANSITIONS = {
    DonationStatus.available: {DonationStatus.reserved, DonationStatus.expired},
    DonationStatus.reserved: {DonationStatus.donated, DonationStatus.expired},
    DonationStatus.donated: set(),
    DonationStatus.expired: set(),
}


def _compare_and_set(
    session: Session,
    model: Type[SQLModel],
    obj_id: int,
    expected_status: Any,
    values: Dict[str, Any],
) -> bool:
    """Apply ``values`` only if the row still has ``expected_status``."""
    statement = (
        update(model)
        .where(model.id == obj_id, model.status == expected_status)
        .values(**values, updated_at=utcnow())
    )
    result = session.connection().execute(statement)
    if result.rowcount != 1:
        session.rollback()
        return False
    session.commit()
    return True


def _lost_race(session: Session, model: Type[SQLModel], obj_id: int, label: str) -> InvalidState:
    current = session.get(model, obj_id)
    if current is None:
        raise NotFound(f"{label} not found")
    return InvalidState(f"{label} is already {current.status.value}")


def match_request(session: Session, actor: Actor, request_id: int, donation_id: int) -> Request:
    """Attach a donation to a pending request and make the actor its logistics handler."""
    require(actor, Operation.match_request)

    if session.get(Request, request_id) is None:
        raise NotFound("Request not found")
    if session.get(Donation, donation_id) is None:
        raise NotFound("Donation not found")

    # TODO: confirm with stakeholders whether matching should also move the
    # donation to "reserved"; for now only the request changes state.
    matched = _compare_and_set(
        session,
        Request,
        request_id,
        RequestStatus.pending,
        {
            "status": RequestStatus.matched,
            "matched_donation_id": donation_id,
            "logistics_id": actor.id,
        },
    )
    if not matched:
        raise _lost_race(session, Request, request_id, "Request")

    logger.info(
        "User %s matched request %s with donation %s", actor.id, request_id, donation_id
    )
    return session.get(Request, request_id)


def set_request_status(
    session: Session, actor: Actor, request_id: int, target: RequestStatus
) -> Request:
    request = session.get(Request, request_id)
    if request is None:
        raise NotFound("Request not found")

    operation = (
        Operation.fulfill_request
        if target == RequestStatus.fulfilled
        else Operation.cancel_request
    )
    require(actor, operation, request)

    current = RequestStatus(request.status)
    if target not in REQUEST_TRANSITIONS[current]:
        raise InvalidState(f"Cannot move a {current.value} request to {target.value}")

    if not _compare_and_set(session, Request, request_id, current, {"status": target}):
        raise _lost_race(session, Request, request_id, "Request")

    logger.info("User %s moved request %s to %s", actor.id, request_id, target.value)
    return session.get(Request, request_id)


def set_donation_status(
    session: Session,
    actor: Actor,
    donation_id: int,
    target: DonationStatus,
    recipient_id: Optional[int] = None,
    logistics_id: Optional[int] = None,
) -> Donation:
    """Move a donation along its own lifecycle.

    Reserving may name the recipient and the logistics handler; when the
    actor is a logistics user and no handler is given, the actor takes it.
    """
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFound("Donation not found")
    require(actor, Operation.set_donation_status, donation)

    current = DonationStatus(donation.status)
    if target not in DONATION_TRANSITIONS[current]:
        raise InvalidState(f"Cannot move a {current.value} donation to {target.value}")

    values: Dict[str, Any] = {"status": target}
    if target == DonationStatus.reserved:
        if logistics_id is None and actor.role == Role.logistics:
            logistics_id = actor.id
        for user_id in (recipient_id, logistics_id):
            if user_id is not None and session.get(User, user_id) is None:
                raise NotFound("User not found")
        values.update(recipient_id=recipient_id, logistics_id=logistics_id)

    if not _compare_and_set(session, Donation, donation_id, current, values):
        raise _lost_race(session, Donation, donation_id, "Donation")

    donation = session.get(Donation, donation_id)
    if donation.drive_id is not None:
        refresh_drive_progress(session, donation.drive_id)
    logger.info("User %s moved donation %s to %s", actor.id, donation_id, target.value)
    return donation
