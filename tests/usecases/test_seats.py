import asyncio
import gc
import logging
import weakref
from datetime import datetime, timedelta
from typing import Dict, Optional

import pytest
from appointment.domain.errors import CapacityError, LedgerError, NotFoundError, StateError
from appointment.models import Appointment, Slot
from appointment.usecases import seats
from appointment.usecases.seats import SeatLedger

STARTS = datetime(2026, 3, 10, 9, 0)


class FakeSlotRepo:
    """Stores remaining places per slot and yields to the loop between read and write."""

    def __init__(self, slot: Slot) -> None:
        self.slots: Dict[int, Slot] = {slot.id: slot}
        self.remaining: Dict[int, int] = {slot.id: slot.remaining_places}
        self.writes = 0

    async def get(self, slot_id: int) -> Optional[Slot]:
        return self.slots.get(slot_id)

    async def get_for_update(self, slot_id: int) -> Optional[Slot]:
        slot = self.slots.get(slot_id)
        if slot is None:
            return None
        await asyncio.sleep(0)
        # a fresh row, as a SELECT ... FOR UPDATE would return
        return Slot(
            id=slot.id,
            form_id=slot.form_id,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            capacity=slot.capacity,
            remaining_places=self.remaining[slot_id],
        )

    async def update_remaining(self, slot_id: int, *, expected: int, remaining: int) -> bool:
        await asyncio.sleep(0)
        if self.remaining[slot_id] != expected:
            return False
        self.remaining[slot_id] = remaining
        self.writes += 1
        return True


class RacingSlotRepo(FakeSlotRepo):
    """Another writer changes the row between our read and our conditional write."""

    async def update_remaining(self, slot_id: int, *, expected: int, remaining: int) -> bool:
        self.remaining[slot_id] -= 1
        return await super().update_remaining(slot_id, expected=expected, remaining=remaining)


def _slot(*, capacity: int = 5, remaining: int = 5) -> Slot:
    return Slot(
        id=1,
        form_id=1,
        starts_at=STARTS,
        ends_at=STARTS + timedelta(minutes=30),
        capacity=capacity,
        remaining_places=remaining,
    )


def _appointment(seats: int, *, cancelled: bool = False) -> Appointment:
    return Appointment(
        id=42,
        slot_id=1,
        user_id=1,
        nb_booked_seats=seats,
        is_cancelled=cancelled,
        created_at=STARTS,
        updated_at=STARTS,
    )


def _ledger(repo: FakeSlotRepo) -> SeatLedger:
    return SeatLedger(repo, locks={})


@pytest.mark.asyncio
async def test_reserve_all_then_one_more_fails() -> None:
    repo = FakeSlotRepo(_slot(remaining=5))
    ledger = _ledger(repo)

    slot = await ledger.reserve(1, 5)
    assert slot.remaining_places == 0
    assert repo.remaining[1] == 0

    with pytest.raises(CapacityError):
        await ledger.reserve(1, 1)
    assert repo.remaining[1] == 0


@pytest.mark.asyncio
async def test_concurrent_reservations_for_last_place() -> None:
    repo = FakeSlotRepo(_slot(capacity=4, remaining=1))
    ledger = _ledger(repo)

    results = await asyncio.gather(ledger.reserve(1, 1), ledger.reserve(1, 1), return_exceptions=True)

    successes = [r for r in results if isinstance(r, Slot)]
    failures = [r for r in results if isinstance(r, CapacityError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert repo.remaining[1] == 0


@pytest.mark.asyncio
async def test_many_concurrent_reservations_never_overbook() -> None:
    repo = FakeSlotRepo(_slot(capacity=3, remaining=3))
    # two ledgers, as two requests would build them, sharing the process-wide locks
    locks: dict = {}
    ledgers = [SeatLedger(repo, locks=locks) for _ in range(2)]

    results = await asyncio.gather(
        *(ledgers[i % 2].reserve(1, 1) for i in range(10)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, Slot) for r in results) == 3
    assert sum(isinstance(r, CapacityError) for r in results) == 7
    assert repo.remaining[1] == 0


@pytest.mark.asyncio
async def test_lost_conditional_update_is_a_capacity_error() -> None:
    repo = RacingSlotRepo(_slot(remaining=5))
    with pytest.raises(CapacityError):
        await _ledger(repo).reserve(1, 2)
    assert repo.writes == 0


@pytest.mark.asyncio
async def test_amend_applies_delta_and_updates_appointment() -> None:
    repo = FakeSlotRepo(_slot(capacity=5, remaining=3))
    appointment = _appointment(2)

    slot = await _ledger(repo).amend(1, appointment, 4)

    assert slot.remaining_places == 1
    assert appointment.nb_booked_seats == 4


@pytest.mark.asyncio
async def test_amend_over_capacity_leaves_appointment_untouched() -> None:
    repo = FakeSlotRepo(_slot(capacity=5, remaining=1))
    appointment = _appointment(2)

    with pytest.raises(CapacityError):
        await _ledger(repo).amend(1, appointment, 4)

    assert appointment.nb_booked_seats == 2
    assert repo.remaining[1] == 1


@pytest.mark.asyncio
async def test_release_twice_credits_once(caplog: pytest.LogCaptureFixture) -> None:
    repo = FakeSlotRepo(_slot(capacity=5, remaining=2))
    ledger = _ledger(repo)
    appointment = _appointment(3)

    slot = await ledger.release(1, appointment)
    assert slot.remaining_places == 5
    assert appointment.is_cancelled is True

    with caplog.at_level(logging.WARNING, logger="appointment.usecases.seats"):
        with pytest.raises(StateError):
            await ledger.release(1, appointment)

    assert repo.remaining[1] == 5
    assert repo.writes == 1
    assert "already cancelled" in caplog.text


@pytest.mark.asyncio
async def test_unknown_slot_is_not_found() -> None:
    repo = FakeSlotRepo(_slot())
    with pytest.raises(NotFoundError):
        await _ledger(repo).reserve(99, 1)


@pytest.mark.asyncio
async def test_release_overflowing_capacity_is_logged_as_inconsistency(caplog: pytest.LogCaptureFixture) -> None:
    repo = FakeSlotRepo(_slot(capacity=5, remaining=4))
    appointment = _appointment(3)

    with caplog.at_level(logging.ERROR, logger="appointment.usecases.seats"):
        with pytest.raises(LedgerError):
            await _ledger(repo).release(1, appointment)

    assert appointment.is_cancelled is False
    assert repo.writes == 0
    assert "inconsistent seat count" in caplog.text


def test_default_lock_registry_holds_locks_weakly() -> None:
    assert isinstance(seats._slot_locks, weakref.WeakValueDictionary)


@pytest.mark.asyncio
async def test_unused_slot_locks_are_dropped() -> None:
    repo = FakeSlotRepo(_slot(remaining=5))
    locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
    ledger = SeatLedger(repo, locks=locks)

    await asyncio.gather(ledger.reserve(1, 1), ledger.reserve(1, 1))
    gc.collect()

    assert repo.remaining[1] == 3
    assert len(locks) == 0
