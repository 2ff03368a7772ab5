import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import String, case, func, or_
from sqlmodel import Session, SQLModel, select

from errors import Conflict, InvalidState, NotFound, ValidationFailed
from models import (
    Donation,
    DonationDrive,
    DonationStatus,
    DriveVolunteer,
    Priority,
    Request,
    Role,
    Urgency,
    User,
    to_utc,
    utcnow,
)
from participation import refresh_drive_progress
from permissions import Actor, Operation, require, strip_protected_fields
from schemas import (
    DonationCreate,
    DonationUpdate,
    DriveCreate,
    DriveUpdate,
    Page,
    Progress,
    RequestCreate,
    RequestUpdate,
    UserUpdate,
    as_utc,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# lower rank sorts first
PRIORITY_RANK = {Priority.urgent: 0, Priority.high: 1, Priority.medium: 2, Priority.low: 3}
URGENCY_RANK = {Urgency.critical: 0, Urgency.emergency: 1, Urgency.normal: 2}

# a donor may not change these once the donation has left "available"
FROZEN_DONATION_FIELDS = frozenset({"quantity", "category", "condition"})


def _contains(column, value: str):
    """Case-insensitive substring match."""
    return func.lower(column, type_=String).contains(value.lower(), autoescape=True)


class Store(Generic[ModelT]):
    """create / get / list / update / delete for one table.

    ``filters`` is the allow-list of list filters: each key maps to a function
    building the WHERE clause for a value. Keys outside it are ignored.
    """

    def __init__(
        self,
        model: Type[ModelT],
        label: str,
        filters: Dict[str, Callable[[Any], Any]],
        order_by: Callable[[], Tuple[Any, ...]],
        nullable: Iterable[str] = (),
    ):
        self.model = model
        self.label = label
        self.filters = filters
        self.order_by = order_by
        self.nullable = frozenset(nullable)

    def get(self, session: Session, obj_id: int) -> ModelT:
        obj = session.get(self.model, obj_id)
        if obj is None:
            raise NotFound(f"{self.label} not found")
        return obj

    def create(self, session: Session, obj: ModelT) -> ModelT:
        session.add(obj)
        session.commit()
        session.refresh(obj)
        return obj

    def where(self, filters: Dict[str, Any]) -> List[Any]:
        clauses = []
        for key, value in filters.items():
            if value is None or value == "" or key not in self.filters:
                continue
            clauses.append(self.filters[key](value))
        return clauses

    def list(
        self,
        session: Session,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[ModelT], int]:
        """Return one page of matches plus the total number of matches."""
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        clauses = self.where(filters or {})

        total = session.exec(
            select(func.count()).select_from(self.model).where(*clauses)
        ).one()
        statement = (
            select(self.model)
            .where(*clauses)
            .order_by(*self.order_by())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(session.exec(statement).all()), total

    def update(self, session: Session, obj: ModelT, patch: Dict[str, Any]) -> ModelT:
        for key, value in patch.items():
            if value is None and key not in self.nullable:
                raise ValidationFailed(f"{key} may not be null", fields=[key])
        for key, value in patch.items():
            setattr(obj, key, value)
        obj.updated_at = utcnow()
        session.add(obj)
        session.commit()
        session.refresh(obj)
        return obj

    def delete(self, session: Session, obj: ModelT) -> None:
        session.delete(obj)
        session.commit()


def _newest_first(model) -> Callable[[], Tuple[Any, ...]]:
    return lambda: (model.created_at.desc(), model.id.desc())


def _request_order() -> Tuple[Any, ...]:
    return (
        case(PRIORITY_RANK, value=Request.priority, else_=len(PRIORITY_RANK)),
        case(URGENCY_RANK, value=Request.urgency, else_=len(URGENCY_RANK)),
        Request.created_at.desc(),
        Request.id.desc(),
    )


donations = Store(
    Donation,
    "Donation",
    filters={
        "category": lambda v: Donation.category == v,
        "status": lambda v: Donation.status == v,
        "location": lambda v: _contains(Donation.location["city"].as_string(), v),
        "donor_id": lambda v: Donation.donor_id == v,
    },
    order_by=_newest_first(Donation),
    nullable=("location", "drive_id", "delivery_date", "feedback", "expiry_date"),
)

requests = Store(
    Request,
    "Request",
    filters={
        "category": lambda v: Request.category == v,
        "status": lambda v: Request.status == v,
        "priority": lambda v: Request.priority == v,
        "urgency": lambda v: Request.urgency == v,
        "recipient_id": lambda v: Request.recipient_id == v,
    },
    order_by=_request_order,
    nullable=(
        "location", "drive_id", "delivery_date", "feedback",
        "emergency_type", "required_by",
    ),
)

drives = Store(
    DonationDrive,
    "Donation drive",
    filters={
        "status": lambda v: DonationDrive.status == v,
        "category": lambda v: DonationDrive.category == v,
        "is_emergency": lambda v: DonationDrive.is_emergency == v,
    },
    order_by=_newest_first(DonationDrive),
    nullable=("location", "emergency_type"),
)

users = Store(
    User,
    "User",
    filters={
        "role": lambda v: User.role == v,
        "q": lambda v: or_(_contains(User.name, v), _contains(User.email, v)),
    },
    order_by=_newest_first(User),
    nullable=("phone", "organization", "address"),
)


def to_page(read_model: Type[BaseModel], items: List[Any], total: int, page: int, page_size: int) -> Page:
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    return Page(
        items=[read_model.model_validate(item) for item in items],
        total=total,
        total_pages=math.ceil(total / page_size),
        current_page=max(page, 1),
    )


def _columns(payload: BaseModel, json_fields: Iterable[str], **dump_kwargs) -> Dict[str, Any]:
    """Dump a payload for the table, with JSON-column values made JSON-safe."""
    data = payload.model_dump(**dump_kwargs)
    json_keys = set(json_fields) & data.keys()
    if json_keys:
        data.update(payload.model_dump(mode="json", include=json_keys, **dump_kwargs))
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = to_utc(value)
    return data


def _ensure_drive(session: Session, drive_id: Optional[int]) -> None:
    if drive_id is not None:
        drives.get(session, drive_id)


def _refresh_drives(session: Session, *drive_ids: Optional[int]) -> None:
    for drive_id in sorted({d for d in drive_ids if d is not None}):
        refresh_drive_progress(session, drive_id)


# ---------- Donations ----------

DONATION_JSON_FIELDS = ("images", "location", "feedback", "tags")


def create_donation(session: Session, actor: Actor, payload: DonationCreate) -> Donation:
    require(actor, Operation.create_donation)
    _ensure_drive(session, payload.drive_id)

    donation = Donation(**_columns(payload, DONATION_JSON_FIELDS), donor_id=actor.id)
    donations.create(session, donation)
    _refresh_drives(session, donation.drive_id)
    logger.info("User %s created donation %s", actor.id, donation.id)
    return donation


def update_donation(
    session: Session, actor: Actor, donation_id: int, payload: DonationUpdate
) -> Donation:
    donation = donations.get(session, donation_id)
    require(actor, Operation.update_donation, donation)

    patch = _columns(payload, DONATION_JSON_FIELDS, exclude_unset=True)
    frozen = FROZEN_DONATION_FIELDS & patch.keys()
    if frozen and actor.role != Role.admin and donation.status != DonationStatus.available:
        raise InvalidState(
            f"Cannot change {', '.join(sorted(frozen))} of a donation that is "
            f"{DonationStatus(donation.status).value}"
        )
    if "drive_id" in patch:
        _ensure_drive(session, patch["drive_id"])

    old_drive_id = donation.drive_id
    donations.update(session, donation, patch)
    _refresh_drives(session, old_drive_id, donation.drive_id)
    logger.info("User %s updated donation %s", actor.id, donation.id)
    return donation


def delete_donation(session: Session, actor: Actor, donation_id: int) -> None:
    donation = donations.get(session, donation_id)
    require(actor, Operation.delete_donation, donation)

    drive_id = donation.drive_id
    donations.delete(session, donation)
    _refresh_drives(session, drive_id)
    logger.info("User %s deleted donation %s", actor.id, donation_id)


def list_own_donations(session: Session, actor: Actor) -> List[Donation]:
    statement = (
        select(Donation)
        .where(Donation.donor_id == actor.id)
        .order_by(*donations.order_by())
    )
    return list(session.exec(statement).all())


# ---------- Requests ----------

REQUEST_JSON_FIELDS = ("images", "location", "feedback", "tags")


def create_request(session: Session, actor: Actor, payload: RequestCreate) -> Request:
    require(actor, Operation.create_request)
    _ensure_drive(session, payload.drive_id)

    request = Request(**_columns(payload, REQUEST_JSON_FIELDS), recipient_id=actor.id)
    requests.create(session, request)
    logger.info("User %s created request %s", actor.id, request.id)
    return request


def update_request(
    session: Session, actor: Actor, request_id: int, payload: RequestUpdate
) -> Request:
    request = requests.get(session, request_id)
    require(actor, Operation.update_request, request)

    patch = _columns(payload, REQUEST_JSON_FIELDS, exclude_unset=True)
    if "drive_id" in patch:
        _ensure_drive(session, patch["drive_id"])

    requests.update(session, request, patch)
    logger.info("User %s updated request %s", actor.id, request.id)
    return request


def delete_request(session: Session, actor: Actor, request_id: int) -> None:
    request = requests.get(session, request_id)
    require(actor, Operation.delete_request, request)

    requests.delete(session, request)
    logger.info("User %s deleted request %s", actor.id, request_id)


def list_own_requests(session: Session, actor: Actor) -> List[Request]:
    statement = (
        select(Request)
        .where(Request.recipient_id == actor.id)
        .order_by(Request.created_at.desc(), Request.id.desc())
    )
    return list(session.exec(statement).all())


# ---------- Drives ----------

DRIVE_JSON_FIELDS = ("target_items", "location", "requirements", "images", "tags")


def create_drive(session: Session, actor: Actor, payload: DriveCreate) -> DonationDrive:
    require(actor, Operation.create_drive)

    drive = DonationDrive(
        **_columns(payload, DRIVE_JSON_FIELDS),
        organizer_id=actor.id,
        progress=Progress().model_dump(mode="json"),
    )
    drives.create(session, drive)
    logger.info("User %s created drive %s", actor.id, drive.id)
    return drive


def update_drive(
    session: Session, actor: Actor, drive_id: int, payload: DriveUpdate
) -> DonationDrive:
    drive = drives.get(session, drive_id)
    require(actor, Operation.update_drive, drive)

    patch = _columns(payload, DRIVE_JSON_FIELDS, exclude_unset=True)

    start = patch.get("start_date") or drive.start_date
    end = patch.get("end_date") or drive.end_date
    if as_utc(end) < as_utc(start):
        raise ValidationFailed("end_date must not be before start_date", fields=["end_date"])
    is_emergency = patch.get("is_emergency", drive.is_emergency)
    emergency_type = patch["emergency_type"] if "emergency_type" in patch else drive.emergency_type
    if is_emergency and emergency_type is None:
        raise ValidationFailed(
            "emergency_type is required for emergency drives", fields=["emergency_type"]
        )

    if "total_value" in patch:
        total_value = patch.pop("total_value")
        if total_value is not None:
            patch["progress"] = {**(drive.progress or {}), "total_value": total_value}

    drives.update(session, drive, patch)
    logger.info("User %s updated drive %s", actor.id, drive.id)
    return drive


def delete_drive(session: Session, actor: Actor, drive_id: int) -> None:
    drive = drives.get(session, drive_id)
    require(actor, Operation.delete_drive, drive)

    volunteers = session.exec(
        select(DriveVolunteer).where(DriveVolunteer.drive_id == drive_id)
    ).all()
    for volunteer in volunteers:
        session.delete(volunteer)
    drives.delete(session, drive)
    logger.info("User %s deleted drive %s", actor.id, drive_id)


# ---------- Users ----------

def get_user(session: Session, actor: Actor, user_id: int) -> User:
    user = users.get(session, user_id)
    require(actor, Operation.read_user, user)
    return user


def list_users(
    session: Session,
    actor: Actor,
    filters: Dict[str, Any],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Tuple[List[User], int]:
    require(actor, Operation.list_users)
    return users.list(session, filters, page, page_size)


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


def register_user(session: Session, user: User) -> User:
    if get_user_by_email(session, user.email) is not None:
        raise Conflict("Email already registered")
    users.create(session, user)
    logger.info("Registered user %s as %s", user.id, Role(user.role).value)
    return user


def update_user(session: Session, actor: Actor, user_id: int, payload: UserUpdate) -> User:
    user = users.get(session, user_id)
    require(actor, Operation.update_user, user)

    patch = strip_protected_fields(_columns(payload, ("address",), exclude_unset=True))
    if patch.get("email") and patch["email"] != user.email:
        existing = get_user_by_email(session, patch["email"])
        if existing is not None and existing.id != user.id:
            raise Conflict("Email already registered")

    users.update(session, user, patch)
    logger.info("User %s updated profile %s", actor.id, user.id)
    return user


def change_role(session: Session, actor: Actor, user_id: int, role: Role) -> User:
    user = users.get(session, user_id)
    require(actor, Operation.change_role, user)

    users.update(session, user, {"role": role})
    logger.info("User %s set role of user %s to %s", actor.id, user.id, role.value)
    return user


def delete_user(session: Session, actor: Actor, user_id: int) -> None:
    """Hard-delete a user and their volunteer entries.

    Donations, requests and drives the user owns are kept; their owner id
    is left dangling.
    """
    user = users.get(session, user_id)
    require(actor, Operation.delete_user, user)

    for volunteer in session.exec(
        select(DriveVolunteer).where(DriveVolunteer.user_id == user_id)
    ).all():
        session.delete(volunteer)

    session.delete(user)
    session.commit()
    logger.info("User %s deleted user %s", actor.id, user_id)
