from __future__ import annotations

import asyncio
import logging
import weakref
from typing import MutableMapping, Optional

from ..domain import services
from ..domain.errors import CapacityError, LedgerError, NotFoundError, StateError
from ..domain.repositories import SlotRepository
from ..domain.services import SlotSnapshot
from ..models import Appointment, Slot
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

# Shared by every ledger of the process so concurrent requests on one slot serialize.
# A lock lives only while some request holds or waits on it.
_slot_locks: MutableMapping[int, asyncio.Lock] = weakref.WeakValueDictionary()


class SeatLedger:
    """
    The only writer of `Slot.remaining_places`.

    Each operation reads the slot, computes the new remaining count and writes it back under a
    per-slot lock, and the write is conditional on the value read. Losing that race raises
    CapacityError, the same as an ordinary shortage.

    The in-process lock is always taken before the slot row lock. Callers must not hold a row
    lock on the slot when they call into the ledger.
    """

    def __init__(
        self,
        slot_repo: SlotRepository,
        *,
        locks: Optional[MutableMapping[int, asyncio.Lock]] = None,
    ) -> None:
        self.slot_repo = slot_repo
        self._locks = locks if locks is not None else _slot_locks

    async def reserve(self, slot_id: int, seats: int) -> Slot:
        async with self._lock(slot_id):
            slot = await self._load(slot_id)
            remaining = services.reserve(SlotSnapshot.of(slot), seats)
            await self._write(slot, remaining)
            return slot

    async def amend(self, slot_id: int, appointment: Appointment, new_seats: int) -> Slot:
        async with self._lock(slot_id):
            slot = await self._load(slot_id)
            try:
                remaining = services.amend(
                    SlotSnapshot.of(slot),
                    current_seats=appointment.nb_booked_seats,
                    new_seats=new_seats,
                )
            except LedgerError:
                logger.error(
                    "inconsistent seat count: resizing appointment %s from %s to %s overflows slot %s",
                    appointment.id,
                    appointment.nb_booked_seats,
                    new_seats,
                    slot_id,
                )
                raise
            await self._write(slot, remaining)
            appointment.nb_booked_seats = new_seats
            appointment.updated_at = utc_now_naive()
            return slot

    async def release(self, slot_id: int, appointment: Appointment) -> Slot:
        async with self._lock(slot_id):
            slot = await self._load(slot_id)
            try:
                remaining = services.release(
                    SlotSnapshot.of(slot),
                    seats=appointment.nb_booked_seats,
                    is_cancelled=appointment.is_cancelled,
                )
            except StateError:
                logger.warning(
                    "release ignored for appointment %s on slot %s: already cancelled",
                    appointment.id,
                    slot_id,
                )
                raise
            except LedgerError:
                logger.error(
                    "inconsistent seat count: releasing %s seats of appointment %s overflows slot %s (%s/%s)",
                    appointment.nb_booked_seats,
                    appointment.id,
                    slot_id,
                    slot.remaining_places,
                    slot.capacity,
                )
                raise
            await self._write(slot, remaining)
            appointment.is_cancelled = True
            appointment.updated_at = utc_now_naive()
            return slot

    def _lock(self, slot_id: int) -> asyncio.Lock:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[slot_id] = lock
        return lock

    async def _load(self, slot_id: int) -> Slot:
        slot = await self.slot_repo.get_for_update(slot_id)
        if slot is None:
            raise NotFoundError("slot not found")
        return slot

    async def _write(self, slot: Slot, remaining: int) -> None:
        updated = await self.slot_repo.update_remaining(
            slot.id,
            expected=slot.remaining_places,
            remaining=remaining,
        )
        if not updated:
            raise CapacityError("slot changed concurrently")
        slot.remaining_places = remaining
