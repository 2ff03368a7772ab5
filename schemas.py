from datetime import datetime, timezone
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from models import (
    Category,
    Condition,
    DeliveryStatus,
    DonationStatus,
    DriveCategory,
    DriveStatus,
    EmergencyType,
    Priority,
    RequestStatus,
    Role,
    Urgency,
)

T = TypeVar("T")


def as_utc(value: datetime) -> datetime:
    """Normalize to naive UTC so aware and naive inputs can be compared."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ---------- Nested documents ----------

class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Location(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class DriveLocation(Location):
    name: Optional[str] = None


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class Feedback(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    date: Optional[datetime] = None


class TargetItem(BaseModel):
    item: str
    quantity: int = Field(ge=0)
    unit: Optional[str] = None
    description: Optional[str] = None


class CollectedItem(BaseModel):
    item: str
    quantity: int
    unit: Optional[str] = None


class Progress(BaseModel):
    total_donations: int = 0
    total_value: float = 0
    items_collected: List[CollectedItem] = []


class Requirements(BaseModel):
    min_age: int = Field(default=0, ge=0)
    documentation: List[str] = []
    special_instructions: Optional[str] = None


# ---------- Users ----------

class UserCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Literal["donor", "recipient", "logistics"] = "donor"
    phone: Optional[str] = None
    organization: Optional[str] = None
    address: Optional[Address] = None


class UserUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    organization: Optional[str] = None
    address: Optional[Address] = None


class UserRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: Role
    phone: Optional[str] = None
    organization: Optional[str] = None
    address: Optional[Address] = None
    is_verified: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleChange(BaseModel):
    role: Role


class LoginData(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# ---------- Donations ----------

class DonationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: Category
    subcategory: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit: str = Field(min_length=1)
    condition: Condition
    images: List[str] = []
    location: Optional[Location] = None
    drive_id: Optional[int] = None
    is_emergency: bool = False
    expiry_date: Optional[datetime] = None
    tags: List[str] = []


class DonationUpdate(BaseModel):
    """Descriptive fields only; status moves through the status operation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = Field(default=None, min_length=10)
    category: Optional[Category] = None
    subcategory: Optional[str] = Field(default=None, min_length=1)
    quantity: Optional[int] = Field(default=None, ge=1)
    unit: Optional[str] = Field(default=None, min_length=1)
    condition: Optional[Condition] = None
    images: Optional[List[str]] = None
    location: Optional[Location] = None
    drive_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    delivery_status: Optional[DeliveryStatus] = None
    feedback: Optional[Feedback] = None
    is_emergency: Optional[bool] = None
    expiry_date: Optional[datetime] = None
    tags: Optional[List[str]] = None


class DonationStatusChange(BaseModel):
    status: Literal["reserved", "donated", "expired"]
    recipient_id: Optional[int] = None
    logistics_id: Optional[int] = None

    @model_validator(mode="after")
    def _parties_only_on_reserve(self):
        if self.status != "reserved" and (
            self.recipient_id is not None or self.logistics_id is not None
        ):
            raise ValueError("recipient_id and logistics_id are only accepted when reserving")
        return self


class DonationRead(BaseModel):
    id: int
    donor_id: int
    title: str
    description: str
    category: Category
    subcategory: str
    quantity: int
    unit: str
    condition: Condition
    images: List[str] = []
    location: Optional[Location] = None
    status: DonationStatus
    drive_id: Optional[int] = None
    recipient_id: Optional[int] = None
    logistics_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    delivery_status: DeliveryStatus
    feedback: Optional[Feedback] = None
    is_emergency: bool
    expiry_date: Optional[datetime] = None
    tags: List[str] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Requests ----------

class RequestCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: Category
    subcategory: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit: str = Field(min_length=1)
    priority: Priority = Priority.medium
    urgency: Urgency = Urgency.normal
    location: Optional[Location] = None
    drive_id: Optional[int] = None
    is_emergency: bool = False
    emergency_type: Optional[EmergencyType] = None
    required_by: Optional[datetime] = None
    tags: List[str] = []
    images: List[str] = []


class RequestUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = Field(default=None, min_length=10)
    category: Optional[Category] = None
    subcategory: Optional[str] = Field(default=None, min_length=1)
    quantity: Optional[int] = Field(default=None, ge=1)
    unit: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[Priority] = None
    urgency: Optional[Urgency] = None
    location: Optional[Location] = None
    drive_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    delivery_status: Optional[DeliveryStatus] = None
    feedback: Optional[Feedback] = None
    is_emergency: Optional[bool] = None
    emergency_type: Optional[EmergencyType] = None
    required_by: Optional[datetime] = None
    tags: Optional[List[str]] = None
    images: Optional[List[str]] = None


class RequestStatusChange(BaseModel):
    status: Literal["fulfilled", "cancelled"]


class MatchPayload(BaseModel):
    donation_id: int = Field(validation_alias=AliasChoices("donation_id", "donationId"))


class RequestRead(BaseModel):
    id: int
    recipient_id: int
    title: str
    description: str
    category: Category
    subcategory: str
    quantity: int
    unit: str
    priority: Priority
    urgency: Urgency
    location: Optional[Location] = None
    status: RequestStatus
    matched_donation_id: Optional[int] = None
    drive_id: Optional[int] = None
    logistics_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    delivery_status: DeliveryStatus
    feedback: Optional[Feedback] = None
    is_emergency: bool
    emergency_type: Optional[EmergencyType] = None
    required_by: Optional[datetime] = None
    tags: List[str] = []
    images: List[str] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Drives ----------

def _check_drive_window(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and as_utc(end) < as_utc(start):
        raise ValueError("end_date must not be before start_date")


class DriveCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: DriveCategory
    target_items: List[TargetItem] = []
    location: Optional[DriveLocation] = None
    start_date: datetime
    end_date: datetime
    status: DriveStatus = DriveStatus.upcoming
    is_emergency: bool = False
    emergency_type: Optional[EmergencyType] = None
    target_recipients: int = Field(default=0, ge=0)
    logistics: List[int] = []
    requirements: Requirements = Requirements()
    images: List[str] = []
    tags: List[str] = []
    is_public: bool = True

    @field_validator("logistics")
    @classmethod
    def _unique_ids(cls, v: List[int]) -> List[int]:
        return sorted(set(v))

    @model_validator(mode="after")
    def _check_dates_and_emergency(self):
        _check_drive_window(self.start_date, self.end_date)
        if self.is_emergency and self.emergency_type is None:
            raise ValueError("emergency_type is required for emergency drives")
        return self


class DriveUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = Field(default=None, min_length=10)
    category: Optional[DriveCategory] = None
    target_items: Optional[List[TargetItem]] = None
    location: Optional[DriveLocation] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[DriveStatus] = None
    is_emergency: Optional[bool] = None
    emergency_type: Optional[EmergencyType] = None
    target_recipients: Optional[int] = Field(default=None, ge=0)
    logistics: Optional[List[int]] = None
    requirements: Optional[Requirements] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    total_value: Optional[float] = Field(default=None, ge=0)

    @field_validator("logistics")
    @classmethod
    def _unique_ids(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return sorted(set(v)) if v is not None else v


class VolunteerPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    role: Optional[str] = Field(default=None, max_length=50)


class VolunteerRead(BaseModel):
    user_id: int
    role: str
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DriveRead(BaseModel):
    id: int
    organizer_id: int
    title: str
    description: str
    category: DriveCategory
    target_items: List[TargetItem] = []
    location: Optional[DriveLocation] = None
    start_date: datetime
    end_date: datetime
    status: DriveStatus
    is_emergency: bool
    emergency_type: Optional[EmergencyType] = None
    target_recipients: int
    current_donations: List[int] = []
    logistics: List[int] = []
    progress: Progress = Progress()
    requirements: Requirements = Requirements()
    images: List[str] = []
    tags: List[str] = []
    is_public: bool
    volunteers: List[VolunteerRead] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Listing / admin ----------

class Page(BaseModel, Generic[T]):
    model_config = ConfigDict(populate_by_name=True)

    items: List[T]
    total: int
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")


class RecentDrive(BaseModel):
    id: int
    title: str
    start_date: datetime
    end_date: datetime

    model_config = ConfigDict(from_attributes=True)


class PlatformStats(BaseModel):
    totals: dict
    pending_requests: int
    available_donations: int
    recent_drives: List[RecentDrive]


class ActivityEntry(BaseModel):
    type: Literal["donation", "request"]
    id: int
    title: str
    summary: str
    created_at: datetime


class ActivityReport(BaseModel):
    reports: List[ActivityEntry]


class Message(BaseModel):
    message: str
