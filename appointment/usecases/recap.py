from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, TypeVar

from ..domain.entries import get_entry_type
from ..domain.errors import NotFoundError
from ..domain.repositories import AppointmentRepository, EntryRepository
from ..models import Entry, Response

T = TypeVar("T")


@dataclass(frozen=True)
class ResponseRecap:
    entry_id: int
    title: str
    value: str


def add_in_position(position: int, item: T, items: list[Optional[T]]) -> None:
    """Put `item` at 1-based `position`, padding `items` with None when it is too short."""
    if position < 1:
        raise ValueError("position must be >= 1")
    while len(items) < position:
        items.append(None)
    items[position - 1] = item


def build_list_response(
    responses: Sequence[Response],
    entries_by_id: Mapping[int, Entry],
) -> list[Optional[ResponseRecap]]:
    """Recap of a submitted appointment, one slot per entry display position."""
    recap: list[Optional[ResponseRecap]] = []
    for response in responses:
        entry = entries_by_id.get(response.entry_id)
        if entry is None:
            continue
        value = get_entry_type(entry).recap_value(entry, response)
        add_in_position(entry.position, ResponseRecap(entry_id=entry.id, title=entry.title, value=value), recap)
    return recap


async def get_appointment_recap(
    appointment_repo: AppointmentRepository,
    entry_repo: EntryRepository,
    *,
    appointment_id: int,
) -> list[Optional[ResponseRecap]]:
    row = await appointment_repo.get(appointment_id)
    if row is None:
        raise NotFoundError("appointment not found")
    _, slot = row
    entries = await entry_repo.list_by_form(slot.form_id)
    responses = await entry_repo.list_responses([appointment_id])
    return build_list_response(responses, {entry.id: entry for entry in entries})
