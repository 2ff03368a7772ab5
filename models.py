from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

UTC_DATETIME = DateTime(timezone=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Aware UTC; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Role(str, Enum):
    admin = "admin"
    donor = "donor"
    recipient = "recipient"
    logistics = "logistics"


class Category(str, Enum):
    food = "food"
    clothing = "clothing"
    medical = "medical"
    shelter = "shelter"
    education = "education"
    other = "other"


class DriveCategory(str, Enum):
    food = "food"
    clothing = "clothing"
    medical = "medical"
    shelter = "shelter"
    education = "education"
    mixed = "mixed"


class Condition(str, Enum):
    new = "new"
    like_new = "like_new"
    good = "good"
    fair = "fair"
    poor = "poor"


class DonationStatus(str, Enum):
    available = "available"
    reserved = "reserved"
    donated = "donated"
    expired = "expired"


class RequestStatus(str, Enum):
    pending = "pending"
    matched = "matched"
    fulfilled = "fulfilled"
    cancelled = "cancelled"


class DriveStatus(str, Enum):
    upcoming = "upcoming"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class DeliveryStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    in_transit = "in_transit"
    delivered = "delivered"
    failed = "failed"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class Urgency(str, Enum):
    normal = "normal"
    emergency = "emergency"
    critical = "critical"


class EmergencyType(str, Enum):
    natural_disaster = "natural_disaster"
    pandemic = "pandemic"
    conflict = "conflict"
    economic_crisis = "economic_crisis"
    other = "other"


class User(SQLModel, table=True):
    # ids are never reused, so a soft reference to a deleted row stays dangling
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: Role = Field(default=Role.donor, index=True)
    phone: Optional[str] = None
    organization: Optional[str] = None
    address: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    is_verified: bool = False

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME)


class Donation(SQLModel, table=True):
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(index=True)

    title: str
    description: str
    category: Category = Field(index=True)
    subcategory: str
    quantity: int
    unit: str
    condition: Condition
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    location: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    status: DonationStatus = Field(default=DonationStatus.available, index=True)

    # plain references: a hard delete on the other side may leave them dangling
    drive_id: Optional[int] = Field(default=None, index=True)
    recipient_id: Optional[int] = None
    logistics_id: Optional[int] = None

    delivery_date: Optional[datetime] = Field(default=None, sa_type=UTC_DATETIME)
    delivery_status: DeliveryStatus = DeliveryStatus.pending
    feedback: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    is_emergency: bool = False
    expiry_date: Optional[datetime] = Field(default=None, sa_type=UTC_DATETIME)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME)


class Request(SQLModel, table=True):
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_id: int = Field(index=True)

    title: str
    description: str
    category: Category = Field(index=True)
    subcategory: str
    quantity: int
    unit: str
    priority: Priority = Field(default=Priority.medium, index=True)
    urgency: Urgency = Field(default=Urgency.normal, index=True)
    location: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    status: RequestStatus = Field(default=RequestStatus.pending, index=True)

    matched_donation_id: Optional[int] = None
    drive_id: Optional[int] = Field(default=None, index=True)
    logistics_id: Optional[int] = None

    delivery_date: Optional[datetime] = Field(default=None, sa_type=UTC_DATETIME)
    delivery_status: DeliveryStatus = DeliveryStatus.pending
    feedback: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    is_emergency: bool = False
    emergency_type: Optional[EmergencyType] = None
    required_by: Optional[datetime] = Field(default=None, sa_type=UTC_DATETIME)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME)


class DonationDrive(SQLModel, table=True):
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    organizer_id: int = Field(index=True)

    title: str
    description: str
    category: DriveCategory = Field(index=True)
    target_items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    location: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    start_date: datetime = Field(sa_type=UTC_DATETIME)
    end_date: datetime = Field(sa_type=UTC_DATETIME)
    status: DriveStatus = Field(default=DriveStatus.upcoming, index=True)
    is_emergency: bool = Field(default=False, index=True)
    emergency_type: Optional[EmergencyType] = None
    target_recipients: int = 0

    # sets of ids, kept sorted and duplicate-free
    current_donations: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    logistics: List[int] = Field(default_factory=list, sa_column=Column(JSON))

    progress: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    requirements: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_public: bool = True

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME)


class DriveVolunteer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("drive_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    drive_id: int = Field(foreign_key="donationdrive.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    role: str = "volunteer"
    joined_at: datetime = Field(default_factory=utcnow, sa_type=UTC_DATETIME)
