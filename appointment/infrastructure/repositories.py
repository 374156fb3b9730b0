from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, cast

from sqlalchemy import Select, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..domain.repositories import (
    AppointmentRepository,
    EntryRepository,
    FormRepository,
    SlotRepository,
    UserRepository,
)
from ..models import Appointment, Entry, Form, Response, Slot, User
from ..utils.time import utc_now_naive


class SqlAlchemyFormRepository(FormRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, form_id: int) -> Form | None:
        return await self.session.get(Form, form_id)


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> Slot | None:
        return await self.session.get(Slot, slot_id)

    async def get_for_update(self, slot_id: int) -> Slot | None:
        stmt = (
            select(Slot)
            .where(Slot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Slot) else None

    async def update_remaining(self, slot_id: int, *, expected: int, remaining: int) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.remaining_places == expected)
            .values(remaining_places=remaining)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1  # type: ignore[attr-defined]


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def find_by_email(self, email: str) -> User | None:
        result = await self.session.scalar(select(User).where(User.email == email))
        return result if isinstance(result, User) else None

    async def create(self, *, email: str | None, first_name: str, last_name: str) -> User:
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            created_at=utc_now_naive(),
        )
        self.session.add(user)
        await self.session.flush()
        return user


class SqlAlchemyAppointmentRepository(AppointmentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, appointment_id: int) -> Optional[Tuple[Appointment, Slot]]:
        stmt: Select[Tuple[Appointment, Slot]] = (
            select(Appointment, Slot)
            .join(Slot, Appointment.slot_id == Slot.id)
            .where(Appointment.id == appointment_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Appointment, Slot]], row)

    async def get_for_update(self, appointment_id: int) -> Optional[Tuple[Appointment, Slot]]:
        # Appointment row only: SeatLedger locks the slot row after its per-slot asyncio lock.
        stmt = (
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        appointment = await self.session.scalar(stmt)
        if not isinstance(appointment, Appointment):
            return None
        slot = await self.session.get(Slot, appointment.slot_id)
        if slot is None:
            return None
        return appointment, slot

    async def list_by_user(
        self,
        user_id: int,
        *,
        include_cancelled: bool = False,
    ) -> List[Tuple[Appointment, Slot]]:
        stmt: Select[Tuple[Appointment, Slot]] = (
            select(Appointment, Slot)
            .join(Slot, Appointment.slot_id == Slot.id)
            .where(Appointment.user_id == user_id)
        )
        if not include_cancelled:
            stmt = stmt.where(Appointment.is_cancelled.is_(False))
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Appointment, Slot]], list(rows.all()))

    async def list_by_form(self, form_id: int) -> List[Tuple[Appointment, Slot, User]]:
        stmt: Select[Tuple[Appointment, Slot, User]] = (
            select(Appointment, Slot, User)
            .join(Slot, Appointment.slot_id == Slot.id)
            .join(User, Appointment.user_id == User.id)
            .where(Slot.form_id == form_id)
            .order_by(Slot.starts_at, Appointment.id)
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Appointment, Slot, User]], list(rows.all()))

    async def create(self, *, slot_id: int, user_id: int, nb_booked_seats: int) -> Appointment:
        now = utc_now_naive()
        appointment = Appointment(
            slot_id=slot_id,
            user_id=user_id,
            nb_booked_seats=nb_booked_seats,
            is_cancelled=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(appointment)
        await self.session.flush()
        return appointment

    async def save(self, appointment: Appointment) -> Appointment:
        self.session.add(appointment)
        await self.session.flush()
        return appointment


class SqlAlchemyEntryRepository(EntryRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_by_form(self, form_id: int) -> List[Entry]:
        stmt = (
            select(Entry)
            .options(selectinload(Entry.fields))
            .where(Entry.form_id == form_id)
            .order_by(Entry.position)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_responses(self, appointment_ids: Sequence[int]) -> List[Response]:
        if not appointment_ids:
            return []
        stmt = (
            select(Response)
            .where(Response.appointment_id.in_(appointment_ids))
            .order_by(Response.appointment_id, Response.id)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def replace_responses(self, appointment_id: int, responses: Sequence[Response]) -> None:
        await self.session.execute(delete(Response).where(Response.appointment_id == appointment_id))
        for response in responses:
            response.appointment_id = appointment_id
            self.session.add(response)
        await self.session.flush()
