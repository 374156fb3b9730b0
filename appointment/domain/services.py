from dataclasses import dataclass, field

from ..models import Slot
from .errors import CapacityError, LedgerError, StateError


@dataclass(frozen=True)
class SlotSnapshot:
    slot_id: int
    capacity: int
    remaining: int

    @classmethod
    def of(cls, slot: Slot) -> "SlotSnapshot":
        return cls(slot_id=slot.id, capacity=slot.capacity, remaining=slot.remaining_places)


@dataclass
class AppointmentRequest:
    """Raw values of one booking attempt, as submitted."""

    slot_id: int
    email: str | None = None
    confirm_email: str | None = None
    first_name: str = ""
    last_name: str = ""
    nb_booked_seats: str | None = None
    appointment_id: int = 0
    responses: dict[int, list[str]] = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        return self.appointment_id == 0


def reserve(snapshot: SlotSnapshot, seats: int) -> int:
    """
    Pure seat arithmetic for a new appointment.
    Returns remaining places after booking. Raises CapacityError if the slot cannot hold `seats`.
    """
    if seats <= 0:
        raise CapacityError("seats must be positive")
    if seats > snapshot.remaining:
        raise CapacityError("capacity exceeded")
    return snapshot.remaining - seats


def amend(snapshot: SlotSnapshot, *, current_seats: int, new_seats: int) -> int:
    """Returns remaining places after resizing an appointment from `current_seats` to `new_seats`."""
    if new_seats <= 0:
        raise CapacityError("seats must be positive")
    delta = new_seats - current_seats
    if delta > snapshot.remaining:
        raise CapacityError("capacity exceeded")
    remaining = snapshot.remaining - delta
    if remaining > snapshot.capacity:
        raise LedgerError("remaining places would exceed slot capacity")
    return remaining


def release(snapshot: SlotSnapshot, *, seats: int, is_cancelled: bool) -> int:
    if is_cancelled:
        raise StateError("appointment already cancelled")
    remaining = snapshot.remaining + seats
    if remaining > snapshot.capacity:
        raise LedgerError("remaining places would exceed slot capacity")
    return remaining
