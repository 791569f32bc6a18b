from datetime import datetime, timedelta, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional

class AppConfig(BaseModel):
    username: str
    password: str
    client_id: str
    io_base_url: str
    co_base_url: str
    auth_url: str
    booking_class_id_field: str = "classId"
    timeout: float = 10.0
    token_ttl: int = 3600

class Credentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(alias="USERNAME")
    password: str = Field(alias="PASSWORD")

class AuthenticateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auth_parameters: Credentials = Field(alias="AuthParameters")
    auth_flow: str = Field(default="USER_PASSWORD_AUTH", alias="AuthFlow")
    client_id: str = Field(alias="ClientId")

class AuthResult(BaseModel):
    """Bearer token plus the window it is trusted for."""
    token: str
    issued_at: datetime
    expires_in: int

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    def expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

class WireModel(BaseModel):
    """Upstream payload shape. Null fields fall back to their defaults."""

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

def _blank_to_none(value):
    return None if value == "" else value

# Studio directory

class StudioLocation(WireModel):
    model_config = ConfigDict(populate_by_name=True)

    physical_address: str = Field(default="", alias="physicalAddress")
    physical_address2: Optional[str] = Field(default=None, alias="physicalAddress2")
    physical_city: str = Field(default="", alias="physicalCity")
    physical_state: str = Field(default="", alias="physicalState")
    physical_country: str = Field(default="", alias="physicalCountry")
    latitude: float = 0.0
    longitude: float = 0.0
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

class Studio(WireModel):
    model_config = ConfigDict(populate_by_name=True)

    studio_uuid: str = Field(alias="studioUUId")
    studio_name: str = Field(alias="studioName")
    studio_location: StudioLocation = Field(default_factory=StudioLocation, alias="studioLocation")
    distance: float = 0.0

class Pagination(WireModel):
    model_config = ConfigDict(populate_by_name=True)

    page_index: int = Field(default=0, alias="pageIndex")
    page_size: int = Field(default=0, alias="pageSize")
    total_count: int = Field(default=0, alias="totalCount")
    total_pages: int = Field(default=0, alias="totalPages")

class StudioList(WireModel):
    studios: List[Studio] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)

class StudioListResult(WireModel):
    data: StudioList = Field(default_factory=StudioList)

class ListStudiosRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    distance: float = Field(gt=0)

# Class schedules

class Address(WireModel):
    line1: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""

class ClassStudio(WireModel):
    id: str
    name: str = ""
    phone_number: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0
    address: Address = Field(default_factory=Address)

class ScheduledClass(WireModel):
    id: str
    name: str
    starts_at: datetime
    ends_at: datetime
    max_capacity: int = 0
    booking_capacity: int = 0
    waitlist_size: int = 0
    waitlist_available: bool = False
    canceled: bool = False
    studio: ClassStudio

    @property
    def is_full(self) -> bool:
        return self.booking_capacity <= 0

class ScheduleResult(WireModel):
    items: List[ScheduledClass] = Field(default_factory=list)

class FilterValue(WireModel):
    value: str
    display_name: str = ""
    icon_url: Optional[str] = None

class ClassTypeFilter(WireModel):
    name: str
    display_name: str = ""
    class_field_type: Optional[str] = None
    values: List[FilterValue] = Field(default_factory=list)

class FilterResult(WireModel):
    items: List[ClassTypeFilter] = Field(default_factory=list)

# Bookings

class BookingStudio(WireModel):
    id: str
    name: str = ""
    mbo_studio_id: Optional[str] = None
    time_zone: Optional[str] = None
    email: Optional[str] = None
    address: Address = Field(default_factory=Address)
    currency_code: Optional[str] = None
    phone_number: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0

class Coach(WireModel):
    first_name: str = ""
    image_url: Optional[str] = None

class BookedClass(WireModel):
    id: str
    name: str = ""
    type: Optional[str] = None
    starts_at_local: Optional[str] = None
    starts_at: Optional[datetime] = None
    studio: BookingStudio
    coach: Coach = Field(default_factory=Coach)

    @field_validator("starts_at", mode="before")
    @classmethod
    def blank_start(cls, value):
        return _blank_to_none(value)

class Booking(WireModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    paying_studio_id: Optional[str] = None
    person_id: Optional[str] = None
    member_id: Optional[str] = None
    service_name: Optional[str] = None
    checked_in: bool = False
    cross_regional: bool = False
    late_canceled: bool = False
    intro: bool = False
    canceled: bool = False
    ratable: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    booked_class: BookedClass = Field(alias="class")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def blank_timestamps(cls, value):
        return _blank_to_none(value)

    @property
    def status(self) -> str:
        if self.canceled:
            return "Canceled"
        if self.late_canceled:
            return "Late Canceled"
        return "Booked"

class BookingList(WireModel):
    items: List[Booking] = Field(default_factory=list)

class BookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    confirmed: bool = False
    class_id: str = Field(alias="classId")
    waitlist: bool = False

    def to_payload(self, class_id_field: str = "classId") -> dict:
        payload = self.model_dump(by_alias=True)
        if class_id_field != "classId":
            payload[class_id_field] = payload.pop("classId")
        return payload

    @classmethod
    def from_payload(cls, payload: dict, class_id_field: str = "classId") -> "BookingRequest":
        data = dict(payload)
        if class_id_field != "classId":
            data["classId"] = data.pop(class_id_field)
        return cls.model_validate(data)

# Local preferences

class Preferences(BaseModel):
    preferred_studio_ids: List[str] = Field(default_factory=list)
    timezone: str = ""
