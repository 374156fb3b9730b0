from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from ..models import Appointment, Entry, Form, Response, Slot, User


class FormRepository(Protocol):
    async def get(self, form_id: int) -> Form | None: ...


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> Slot | None: ...

    async def get_for_update(self, slot_id: int) -> Slot | None: ...

    async def update_remaining(self, slot_id: int, *, expected: int, remaining: int) -> bool:
        """Set remaining places only if they still equal `expected`. Returns False when the row changed."""
        ...


class UserRepository(Protocol):
    async def get(self, user_id: int) -> User | None: ...

    async def find_by_email(self, email: str) -> User | None: ...

    async def create(self, *, email: str | None, first_name: str, last_name: str) -> User: ...


class AppointmentRepository(Protocol):
    async def get(self, appointment_id: int) -> tuple[Appointment, Slot] | None: ...

    async def get_for_update(self, appointment_id: int) -> tuple[Appointment, Slot] | None:
        """Lock the appointment row only. The slot row is left to the seat ledger."""
        ...

    async def list_by_user(
        self,
        user_id: int,
        *,
        include_cancelled: bool = False,
    ) -> list[tuple[Appointment, Slot]]: ...

    async def list_by_form(self, form_id: int) -> list[tuple[Appointment, Slot, User]]: ...

    async def create(self, *, slot_id: int, user_id: int, nb_booked_seats: int) -> Appointment: ...

    async def save(self, appointment: Appointment) -> Appointment: ...


class EntryRepository(Protocol):
    async def list_by_form(self, form_id: int) -> list[Entry]: ...

    async def list_responses(self, appointment_ids: Sequence[int]) -> list[Response]: ...

    async def replace_responses(self, appointment_id: int, responses: Sequence[Response]) -> None: ...


class Localizer(Protocol):
    def localize(self, key: str, locale: Optional[str] = None, **params: Any) -> str: ...


class ReportExporter(Protocol):
    def write(self, rows: Sequence[Sequence[str | None]], filename: str) -> None: ...
