"""
Entry types of the custom fields a form can carry.

Each entry type validates the raw values submitted for an entry, turns them into
`Response` rows and renders a stored response for the recap. Dispatch goes through
`get_entry_type`, keyed by `Entry.entry_type`.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence

from ..models import Entry, EntryField, EntryType, Response
from .errors import ValidationError
from .repositories import Localizer

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NUMBER_RE = re.compile(r"^[+-]?\d+([.,]\d+)?$")


def _clean(values: Iterable[str] | None) -> list[str]:
    return [v.strip() for v in values or () if v is not None and v.strip()]


class TextEntryType:
    def validate(
        self,
        entry: Entry,
        values: Sequence[str] | None,
        localizer: Localizer,
        locale: Optional[str] = None,
    ) -> list[ValidationError]:
        cleaned = _clean(values)
        if not cleaned:
            if entry.mandatory:
                return [_entry_error("appointment.validation.entry.mandatory", entry, localizer, locale)]
            return []
        errors: list[ValidationError] = []
        for value in cleaned:
            error = self.check_value(entry, value, localizer, locale)
            if error is not None:
                errors.append(error)
                # one message per entry is enough
                break
        return errors

    def check_value(
        self,
        entry: Entry,
        value: str,
        localizer: Localizer,
        locale: Optional[str],
    ) -> ValidationError | None:
        if entry.max_size is not None and len(value) > entry.max_size:
            return _entry_error(
                "appointment.validation.entry.size", entry, localizer, locale, max_size=entry.max_size
            )
        return None

    def build_responses(self, entry: Entry, values: Sequence[str] | None) -> list[Response]:
        return [Response(entry_id=entry.id, value=value) for value in _clean(values)]

    def recap_value(self, entry: Entry, response: Response) -> str:
        return response.value or ""


class EmailEntryType(TextEntryType):
    def check_value(self, entry, value, localizer, locale):
        if not _EMAIL_RE.match(value):
            return _entry_error("appointment.validation.entry.email", entry, localizer, locale)
        return super().check_value(entry, value, localizer, locale)


class NumericEntryType(TextEntryType):
    def check_value(self, entry, value, localizer, locale):
        if not _NUMBER_RE.match(value):
            return _entry_error("appointment.validation.entry.numeric", entry, localizer, locale)
        return super().check_value(entry, value, localizer, locale)


class ChoiceEntryType(TextEntryType):
    """Values are ids of the entry's fields."""

    def check_value(self, entry, value, localizer, locale):
        if _find_field(entry, value) is None:
            return _entry_error("appointment.validation.entry.choice", entry, localizer, locale)
        return None

    def build_responses(self, entry: Entry, values: Sequence[str] | None) -> list[Response]:
        responses: list[Response] = []
        for value in _clean(values):
            field = _find_field(entry, value)
            if field is not None:
                responses.append(Response(entry_id=entry.id, field_id=field.id, value=field.value))
        return responses

    def recap_value(self, entry: Entry, response: Response) -> str:
        field = _find_field(entry, str(response.field_id)) if response.field_id is not None else None
        return field.title if field is not None else (response.value or "")


_ENTRY_TYPES: dict[EntryType, TextEntryType] = {
    EntryType.TEXT: TextEntryType(),
    EntryType.EMAIL: EmailEntryType(),
    EntryType.NUMERIC: NumericEntryType(),
    EntryType.CHOICE: ChoiceEntryType(),
}


def get_entry_type(entry: Entry) -> TextEntryType:
    return _ENTRY_TYPES.get(EntryType(entry.entry_type), _ENTRY_TYPES[EntryType.TEXT])


def validate_entries(
    entries: Sequence[Entry],
    raw_inputs: dict[int, list[str]],
    localizer: Localizer,
    locale: Optional[str] = None,
) -> list[ValidationError]:
    """Validate the front-office entries of a form. Back-office-only entries are skipped."""
    errors: list[ValidationError] = []
    for entry in entries:
        if entry.only_display_in_back:
            continue
        errors.extend(get_entry_type(entry).validate(entry, raw_inputs.get(entry.id), localizer, locale))
    return errors


def build_responses(entries: Sequence[Entry], raw_inputs: dict[int, list[str]]) -> list[Response]:
    responses: list[Response] = []
    for entry in entries:
        if entry.only_display_in_back:
            continue
        responses.extend(get_entry_type(entry).build_responses(entry, raw_inputs.get(entry.id)))
    return responses


def _find_field(entry: Entry, raw_id: str) -> EntryField | None:
    try:
        field_id = int(raw_id)
    except ValueError:
        return None
    for field in entry.fields or ():
        if field.id == field_id:
            return field
    return None


def _entry_error(
    key: str,
    entry: Entry,
    localizer: Localizer,
    locale: Optional[str],
    **params: object,
) -> ValidationError:
    return ValidationError(message_key=key, message=localizer.localize(key, locale, title=entry.title, **params))
