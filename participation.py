import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import Conflict, NotFound
from models import Donation, DonationDrive, DonationStatus, DriveVolunteer, utcnow
from permissions import Actor, Operation, require
from schemas import DriveRead, VolunteerRead

logger = logging.getLogger(__name__)

DEFAULT_VOLUNTEER_ROLE = "volunteer"


def _get_drive(session: Session, drive_id: int) -> DonationDrive:
    drive = session.get(DonationDrive, drive_id)
    if drive is None:
        raise NotFound("Donation drive not found")
    return drive


def join_as_volunteer(
    session: Session, actor: Actor, drive_id: int, role_label: Optional[str] = None
) -> DriveVolunteer:
    """Add the actor to the drive's volunteers.

    Membership is enforced by the unique (drive_id, user_id) constraint, so
    two concurrent joins by the same user cannot both land.
    """
    require(actor, Operation.join_drive)
    _get_drive(session, drive_id)

    volunteer = DriveVolunteer(
        drive_id=drive_id,
        user_id=actor.id,
        role=role_label or DEFAULT_VOLUNTEER_ROLE,
    )
    session.add(volunteer)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("Already a volunteer for this drive")
    session.refresh(volunteer)
    logger.info("User %s joined drive %s as %s", actor.id, drive_id, volunteer.role)
    return volunteer


def list_volunteers(session: Session, drive_id: int) -> List[DriveVolunteer]:
    statement = (
        select(DriveVolunteer)
        .where(DriveVolunteer.drive_id == drive_id)
        .order_by(DriveVolunteer.joined_at, DriveVolunteer.id)
    )
    return list(session.exec(statement).all())


def drive_read(session: Session, drive: DonationDrive) -> DriveRead:
    volunteers = [
        VolunteerRead.model_validate(v) for v in list_volunteers(session, drive.id)
    ]
    return DriveRead.model_validate(drive).model_copy(update={"volunteers": volunteers})


def refresh_drive_progress(session: Session, drive_id: int) -> Optional[DonationDrive]:
    """Recompute the drive's donation set and collected items.

    Expired donations stay linked but do not count towards progress.
    ``total_value`` is maintained by hand and left untouched.
    """
    drive = session.get(DonationDrive, drive_id)
    if drive is None:
        # the link outlived the drive
        return None

    linked = session.exec(
        select(Donation).where(Donation.drive_id == drive_id).order_by(Donation.id)
    ).all()
    counted = [d for d in linked if d.status != DonationStatus.expired]

    collected: Dict[Tuple[str, str], int] = {}
    for donation in counted:
        key = (donation.subcategory, donation.unit)
        collected[key] = collected.get(key, 0) + donation.quantity

    progress = dict(drive.progress or {})
    progress["total_donations"] = len(counted)
    progress.setdefault("total_value", 0)
    progress["items_collected"] = [
        {"item": item, "quantity": quantity, "unit": unit}
        for (item, unit), quantity in sorted(collected.items())
    ]

    drive.current_donations = [d.id for d in linked]
    drive.progress = progress
    drive.updated_at = utcnow()
    session.add(drive)
    session.commit()
    session.refresh(drive)
    return drive
