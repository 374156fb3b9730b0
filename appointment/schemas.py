from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .models import Appointment, Slot
from .utils.time import LOCAL_TZ, utc_naive_to_local

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class AppointmentSubmission(BaseModel):
    """Structural constraints on the identity part of a booking."""

    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)


class AppointmentCreate(BaseModel):
    slot_id: int
    email: Optional[str] = None
    confirm_email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    nb_booked_seats: Optional[str] = None
    responses: dict[int, list[str]] = Field(default_factory=dict)


class AppointmentUpdate(BaseModel):
    email: Optional[str] = None
    confirm_email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    nb_booked_seats: Optional[str] = None
    responses: dict[int, list[str]] = Field(default_factory=dict)


class ValidationErrorRead(BaseModel):
    key: str
    message: str


class AppointmentRead(BaseModel):
    appointment_id: int
    slot_id: int
    form_id: int
    user_id: int
    nb_booked_seats: int
    is_cancelled: bool
    starts_at: datetime
    ends_at: datetime
    remaining_places: int

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(LOCAL_TZ).isoformat()

    @classmethod
    def from_db(cls, *, appointment: Appointment, slot: Slot) -> "AppointmentRead":
        return cls(
            appointment_id=appointment.id,
            slot_id=appointment.slot_id,
            form_id=slot.form_id,
            user_id=appointment.user_id,
            nb_booked_seats=appointment.nb_booked_seats,
            is_cancelled=appointment.is_cancelled,
            starts_at=utc_naive_to_local(slot.starts_at),
            ends_at=utc_naive_to_local(slot.ends_at),
            remaining_places=slot.remaining_places,
        )


class ResponseRecapRead(BaseModel):
    entry_id: int
    title: str
    value: str


class AppointmentRecapRead(BaseModel):
    appointment_id: int
    # one item per entry position, None where the appointment has no answer
    items: list[Optional[ResponseRecapRead]]


class ReportRead(BaseModel):
    filename: str
    rows: list[list[Optional[str]]]
