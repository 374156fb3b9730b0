import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
from appointment.domain.errors import CapacityError, InputError, LedgerError, NotFoundError, StateError
from appointment.domain.services import AppointmentRequest
from appointment.models import Appointment, Entry, EntryType, Form, Response, Slot, User
from appointment.usecases import appointments as uc
from appointment.usecases.seats import SeatLedger
from appointment.utils.i18n import MessageCatalog

STARTS = datetime(2026, 3, 10, 9, 0)
localizer = MessageCatalog(default_locale="en")


class FakeStore:
    """One in-memory store behind every repository protocol."""

    def __init__(self, form: Form, slots: List[Slot], entries: Optional[List[Entry]] = None) -> None:
        self.form = form
        self.slots: Dict[int, Slot] = {s.id: s for s in slots}
        self.entries = entries or []
        self.users: Dict[int, User] = {}
        self.appointments: Dict[int, Appointment] = {}
        self.responses: Dict[int, List[Response]] = {}
        self.saved: List[int] = []


class FakeFormRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, form_id: int) -> Optional[Form]:
        return self.store.form if self.store.form.id == form_id else None


class FakeSlotRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, slot_id: int) -> Optional[Slot]:
        return self.store.slots.get(slot_id)

    async def get_for_update(self, slot_id: int) -> Optional[Slot]:
        return self.store.slots.get(slot_id)

    async def update_remaining(self, slot_id: int, *, expected: int, remaining: int) -> bool:
        slot = self.store.slots[slot_id]
        if slot.remaining_places != expected:
            return False
        slot.remaining_places = remaining
        return True


class FakeUserRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, user_id: int) -> Optional[User]:
        return self.store.users.get(user_id)

    async def find_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.store.users.values() if u.email == email), None)

    async def create(self, *, email: str | None, first_name: str, last_name: str) -> User:
        user = User(
            id=len(self.store.users) + 1,
            email=email,
            first_name=first_name,
            last_name=last_name,
            created_at=STARTS,
        )
        self.store.users[user.id] = user
        return user


class FakeAppointmentRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, appointment_id: int) -> Optional[Tuple[Appointment, Slot]]:
        return await self.get_for_update(appointment_id)

    async def get_for_update(self, appointment_id: int) -> Optional[Tuple[Appointment, Slot]]:
        appointment = self.store.appointments.get(appointment_id)
        if appointment is None:
            return None
        return appointment, self.store.slots[appointment.slot_id]

    async def list_by_user(self, user_id: int, *, include_cancelled: bool = False) -> List[Tuple[Appointment, Slot]]:
        return [
            (a, self.store.slots[a.slot_id])
            for a in self.store.appointments.values()
            if a.user_id == user_id and (include_cancelled or not a.is_cancelled)
        ]

    async def list_by_form(self, form_id: int) -> List[Tuple[Appointment, Slot, User]]:
        return [
            (a, self.store.slots[a.slot_id], self.store.users[a.user_id])
            for a in self.store.appointments.values()
            if self.store.slots[a.slot_id].form_id == form_id
        ]

    async def create(self, *, slot_id: int, user_id: int, nb_booked_seats: int) -> Appointment:
        appointment = Appointment(
            id=len(self.store.appointments) + 100,
            slot_id=slot_id,
            user_id=user_id,
            nb_booked_seats=nb_booked_seats,
            is_cancelled=False,
            created_at=STARTS,
            updated_at=STARTS,
        )
        self.store.appointments[appointment.id] = appointment
        return appointment

    async def save(self, appointment: Appointment) -> Appointment:
        self.store.saved.append(appointment.id)
        return appointment


class FakeEntryRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def list_by_form(self, form_id: int) -> List[Entry]:
        return [e for e in self.store.entries if e.form_id == form_id]

    async def list_responses(self, appointment_ids: Sequence[int]) -> List[Response]:
        return [r for appointment_id in appointment_ids for r in self.store.responses.get(appointment_id, [])]

    async def replace_responses(self, appointment_id: int, responses: Sequence[Response]) -> None:
        for response in responses:
            response.appointment_id = appointment_id
        self.store.responses[appointment_id] = list(responses)


def _form(*, max_people: int = 5, nb_days: int = 0) -> Form:
    return Form(
        id=1,
        title="Passport",
        enable_mandatory_email=True,
        nb_days_before_new_appointment=nb_days,
        max_people_per_appointment=max_people,
    )


def _slot(slot_id: int = 1, *, remaining: int = 3, capacity: int = 5, starts_at: datetime = STARTS) -> Slot:
    return Slot(
        id=slot_id,
        form_id=1,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=30),
        capacity=capacity,
        remaining_places=remaining,
    )


def _request(**overrides: object) -> AppointmentRequest:
    values: dict = {
        "slot_id": 1,
        "email": "jane@example.org",
        "confirm_email": "jane@example.org",
        "first_name": "Jane",
        "last_name": "Doe",
        "nb_booked_seats": "2",
    }
    values.update(overrides)
    return AppointmentRequest(**values)


def _repos(store: FakeStore) -> tuple:
    return (
        FakeFormRepo(store),
        FakeSlotRepo(store),
        FakeUserRepo(store),
        FakeAppointmentRepo(store),
        FakeEntryRepo(store),
    )


async def _create(store: FakeStore, request: AppointmentRequest, form_id: int = 1):  # type: ignore[no-untyped-def]
    return await uc.create_appointment(
        *_repos(store),
        form_id=form_id,
        request=request,
        localizer=localizer,
        ledger=SeatLedger(FakeSlotRepo(store), locks={}),
    )


@pytest.mark.asyncio
async def test_create_reserves_seats_and_persists() -> None:
    entry = Entry(
        id=7,
        form_id=1,
        title="Reason",
        entry_type=EntryType.TEXT,
        position=1,
        mandatory=True,
        max_size=50,
        only_display_in_back=False,
    )
    store = FakeStore(_form(), [_slot(remaining=3)], [entry])

    appointment, slot, errors = await _create(store, _request(responses={7: ["renewal"]}))

    assert errors == []
    assert appointment is not None
    assert appointment.nb_booked_seats == 2
    assert slot.remaining_places == 1
    assert store.users[appointment.user_id].email == "jane@example.org"
    assert [r.value for r in store.responses[appointment.id]] == ["renewal"]


@pytest.mark.asyncio
async def test_create_accumulates_every_error_and_keeps_capacity() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])

    appointment, slot, errors = await _create(
        store,
        _request(confirm_email="other@example.org", nb_booked_seats="4", first_name=""),
    )

    assert appointment is None
    assert [e.message_key for e in errors] == [
        "appointment.message.error.confirmEmail",
        "appointment.validation.appointment.NbBookedSeat.error",
        "appointment.validation.appointment.FirstName.notEmpty",
    ]
    assert slot.remaining_places == 3
    assert store.appointments == {}


@pytest.mark.asyncio
async def test_create_reports_cooldown_violation() -> None:
    store = FakeStore(_form(nb_days=3), [_slot(1), _slot(2, starts_at=STARTS + timedelta(days=2))])
    first, _, errors = await _create(store, _request(nb_booked_seats="1"))
    assert errors == [] and first is not None

    second, _, errors = await _create(store, _request(slot_id=2, nb_booked_seats="1"))

    assert second is None
    assert [e.message_key for e in errors] == [
        "appointment.validation.appointment.NbDaysBeforeNewAppointment.error"
    ]
    assert errors[0].message == "You must wait 3 day(s) between two appointments."


@pytest.mark.asyncio
async def test_create_reuses_existing_user() -> None:
    store = FakeStore(_form(), [_slot(remaining=5)])
    first, _, _ = await _create(store, _request(nb_booked_seats="1"))
    second, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert first is not None and second is not None
    assert first.user_id == second.user_id
    assert len(store.users) == 1


@pytest.mark.asyncio
async def test_create_with_unparseable_seats_raises_input_error() -> None:
    store = FakeStore(_form(), [_slot()])
    with pytest.raises(InputError):
        await _create(store, _request(nb_booked_seats="lots"))


@pytest.mark.asyncio
async def test_create_on_slot_of_another_form_is_not_found() -> None:
    store = FakeStore(_form(), [_slot()])
    with pytest.raises(NotFoundError):
        await _create(store, _request(), form_id=2)


@pytest.mark.asyncio
async def test_create_surfaces_lost_race_as_capacity_error() -> None:
    store = FakeStore(_form(), [_slot(remaining=2)])

    class DrainingSlotRepo(FakeSlotRepo):
        async def get_for_update(self, slot_id: int) -> Optional[Slot]:
            slot = await super().get_for_update(slot_id)
            assert slot is not None
            slot.remaining_places = 0  # another booking committed meanwhile
            return slot

    with pytest.raises(CapacityError):
        await uc.create_appointment(
            *_repos(store),
            form_id=1,
            request=_request(),
            localizer=localizer,
            ledger=SeatLedger(DrainingSlotRepo(store), locks={}),
        )
    assert store.appointments == {}


@pytest.mark.asyncio
async def test_update_resizes_within_own_seats() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="2"))
    assert appointment is not None
    assert store.slots[1].remaining_places == 1

    updated, slot, errors = await uc.update_appointment(
        *_repos(store),
        request=_request(nb_booked_seats="3", appointment_id=appointment.id),
        localizer=localizer,
        ledger=SeatLedger(FakeSlotRepo(store), locks={}),
    )

    assert errors == []
    assert updated.nb_booked_seats == 3
    assert slot.remaining_places == 0
    assert appointment.id in store.saved


@pytest.mark.asyncio
async def test_update_does_not_trip_cooldown_on_itself() -> None:
    store = FakeStore(_form(nb_days=3), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert appointment is not None

    _, _, errors = await uc.update_appointment(
        *_repos(store),
        request=_request(nb_booked_seats="1", appointment_id=appointment.id),
        localizer=localizer,
        ledger=SeatLedger(FakeSlotRepo(store), locks={}),
    )
    assert errors == []


@pytest.mark.asyncio
async def test_update_of_cancelled_appointment_is_a_state_error() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert appointment is not None
    appointment.is_cancelled = True

    with pytest.raises(StateError):
        await uc.update_appointment(
            *_repos(store),
            request=_request(appointment_id=appointment.id),
            localizer=localizer,
        )


@pytest.mark.asyncio
async def test_cancel_twice_releases_once() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="2"))
    assert appointment is not None
    ledger = SeatLedger(FakeSlotRepo(store), locks={})

    cancelled, slot = await uc.cancel_appointment(
        FakeSlotRepo(store), FakeAppointmentRepo(store), appointment_id=appointment.id, ledger=ledger
    )
    assert cancelled.is_cancelled is True
    assert slot.remaining_places == 3

    again, slot = await uc.cancel_appointment(
        FakeSlotRepo(store), FakeAppointmentRepo(store), appointment_id=appointment.id, ledger=ledger
    )
    assert again is cancelled
    assert slot.remaining_places == 3
    assert store.saved == [appointment.id]


@pytest.mark.asyncio
async def test_cancel_unknown_appointment_is_not_found() -> None:
    store = FakeStore(_form(), [_slot()])
    with pytest.raises(NotFoundError):
        await uc.cancel_appointment(FakeSlotRepo(store), FakeAppointmentRepo(store), appointment_id=1)


@pytest.mark.asyncio
async def test_update_moves_appointment_to_new_email_owner() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert appointment is not None
    original_owner = appointment.user_id

    updated, _, errors = await uc.update_appointment(
        *_repos(store),
        request=_request(
            nb_booked_seats="1",
            appointment_id=appointment.id,
            email="janet@example.org",
            confirm_email="janet@example.org",
            first_name="Janet",
            last_name="Smith",
        ),
        localizer=localizer,
        ledger=SeatLedger(FakeSlotRepo(store), locks={}),
    )

    assert errors == []
    owner = store.users[updated.user_id]
    assert updated.user_id != original_owner
    assert (owner.email, owner.first_name, owner.last_name) == ("janet@example.org", "Janet", "Smith")
    assert store.users[original_owner].email == "jane@example.org"


@pytest.mark.asyncio
async def test_update_with_same_email_renames_owner() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert appointment is not None

    updated, _, errors = await uc.update_appointment(
        *_repos(store),
        request=_request(nb_booked_seats="1", appointment_id=appointment.id, first_name="Janet", last_name="Smith"),
        localizer=localizer,
        ledger=SeatLedger(FakeSlotRepo(store), locks={}),
    )

    assert errors == []
    assert updated.user_id == appointment.user_id
    owner = store.users[updated.user_id]
    assert (owner.email, owner.first_name, owner.last_name) == ("jane@example.org", "Janet", "Smith")
    assert len(store.users) == 1


@pytest.mark.asyncio
async def test_update_with_errors_keeps_owner_untouched() -> None:
    store = FakeStore(_form(), [_slot(remaining=3)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="1"))
    assert appointment is not None

    _, _, errors = await uc.update_appointment(
        *_repos(store),
        request=_request(
            nb_booked_seats="1",
            appointment_id=appointment.id,
            email="janet@example.org",
            confirm_email="other@example.org",
            first_name="Janet",
        ),
        localizer=localizer,
    )

    assert [e.message_key for e in errors] == ["appointment.message.error.confirmEmail"]
    owner = store.users[appointment.user_id]
    assert (owner.email, owner.first_name) == ("jane@example.org", "Jane")


@pytest.mark.asyncio
async def test_cancel_overflowing_slot_is_not_treated_as_already_cancelled() -> None:
    store = FakeStore(_form(), [_slot(remaining=3, capacity=5)])
    appointment, _, _ = await _create(store, _request(nb_booked_seats="2"))
    assert appointment is not None
    # stored counts drifted: the slot already shows every place free
    store.slots[1].remaining_places = 5

    with pytest.raises(LedgerError):
        await uc.cancel_appointment(
            FakeSlotRepo(store),
            FakeAppointmentRepo(store),
            appointment_id=appointment.id,
            ledger=SeatLedger(FakeSlotRepo(store), locks={}),
        )
    assert appointment.is_cancelled is False
    assert store.saved == []


class RowLocks:
    """Database row locks, held until the owning transaction ends."""

    def __init__(self) -> None:
        self.locks: Dict[Tuple[str, int], asyncio.Lock] = {}

    async def acquire(self, key: Tuple[str, int], held: Set[Tuple[str, int]]) -> None:
        if key in held:
            return
        lock = self.locks.setdefault(key, asyncio.Lock())
        await lock.acquire()
        held.add(key)

    def release(self, held: Set[Tuple[str, int]]) -> None:
        for key in held:
            self.locks[key].release()
        held.clear()


class RowLockingSlotRepo(FakeSlotRepo):
    def __init__(self, store: FakeStore, rows: RowLocks, held: Set[Tuple[str, int]]) -> None:
        super().__init__(store)
        self.rows = rows
        self.held = held

    async def get_for_update(self, slot_id: int) -> Optional[Slot]:
        await self.rows.acquire(("slot", slot_id), self.held)
        await asyncio.sleep(0)
        return await super().get_for_update(slot_id)


class RowLockingAppointmentRepo(FakeAppointmentRepo):
    def __init__(self, store: FakeStore, rows: RowLocks, held: Set[Tuple[str, int]]) -> None:
        super().__init__(store)
        self.rows = rows
        self.held = held

    async def get_for_update(self, appointment_id: int) -> Optional[Tuple[Appointment, Slot]]:
        await self.rows.acquire(("appointment", appointment_id), self.held)
        await asyncio.sleep(0)
        return await super().get_for_update(appointment_id)


@pytest.mark.asyncio
async def test_concurrent_cancel_and_create_on_one_slot_both_complete() -> None:
    store = FakeStore(_form(), [_slot(remaining=3, capacity=5)])
    existing, _, _ = await _create(store, _request(nb_booked_seats="2"))
    assert existing is not None
    rows = RowLocks()
    locks: dict = {}

    async def booking():  # type: ignore[no-untyped-def]
        held: Set[Tuple[str, int]] = set()
        slot_repo = RowLockingSlotRepo(store, rows, held)
        try:
            appointment, _, errors = await uc.create_appointment(
                FakeFormRepo(store),
                slot_repo,
                FakeUserRepo(store),
                RowLockingAppointmentRepo(store, rows, held),
                FakeEntryRepo(store),
                form_id=1,
                request=_request(email="max@example.org", confirm_email="max@example.org", nb_booked_seats="1"),
                localizer=localizer,
                ledger=SeatLedger(slot_repo, locks=locks),
            )
            await asyncio.sleep(0)
            return appointment, errors
        finally:
            rows.release(held)

    async def cancelling():  # type: ignore[no-untyped-def]
        held: Set[Tuple[str, int]] = set()
        slot_repo = RowLockingSlotRepo(store, rows, held)
        try:
            appointment, _ = await uc.cancel_appointment(
                slot_repo,
                RowLockingAppointmentRepo(store, rows, held),
                appointment_id=existing.id,
                ledger=SeatLedger(slot_repo, locks=locks),
            )
            await asyncio.sleep(0)
            return appointment
        finally:
            rows.release(held)

    (booked, errors), cancelled = await asyncio.wait_for(asyncio.gather(booking(), cancelling()), timeout=2)

    assert errors == []
    assert booked is not None
    assert cancelled.is_cancelled is True
    # 1 left after the first booking, minus 1 booked, plus 2 released
    assert store.slots[1].remaining_places == 2
