"""
Eligibility checks run before an appointment is committed.

Every check appends to the caller's error list instead of raising, so the user
sees all problems at once. Only unparseable input raises (`InputError`).
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..models import Entry, Form
from ..schemas import AppointmentSubmission
from ..utils.time import local_date
from .entries import validate_entries
from .errors import InputError, ValidationError
from .repositories import AppointmentRepository, Localizer, UserRepository

ERROR_MESSAGE_EMPTY_EMAIL = "appointment.validation.appointment.Email.notEmpty"
ERROR_MESSAGE_EMPTY_CONFIRM_EMAIL = "appointment.validation.appointment.EmailConfirmation.email"
ERROR_MESSAGE_CONFIRM_EMAIL = "appointment.message.error.confirmEmail"
ERROR_MESSAGE_EMPTY_NB_BOOKED_SEAT = "appointment.validation.appointment.NbBookedSeat.notEmpty"
ERROR_MESSAGE_ERROR_NB_BOOKED_SEAT = "appointment.validation.appointment.NbBookedSeat.error"
ERROR_MESSAGE_NB_DAYS_BETWEEN_APPOINTMENTS = "appointment.validation.appointment.NbDaysBeforeNewAppointment.error"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

_SUBMISSION_FIELD_NAMES = {
    "first_name": "FirstName",
    "last_name": "LastName",
    "email": "Email",
}
_SUBMISSION_RULES = {
    "missing": "notEmpty",
    "string_too_short": "notEmpty",
    "string_too_long": "size",
    "string_pattern_mismatch": "email",
}


def localized_error(key: str, localizer: Localizer, locale: Optional[str] = None, **params: Any) -> ValidationError:
    return ValidationError(message_key=key, message=localizer.localize(key, locale, **params))


def check_email(
    email: str | None,
    confirm_email: str | None,
    form: Form,
    errors: list[ValidationError],
    *,
    localizer: Localizer,
    locale: Optional[str] = None,
) -> None:
    if form.enable_mandatory_email:
        if not email:
            errors.append(localized_error(ERROR_MESSAGE_EMPTY_EMAIL, localizer, locale))
        if not confirm_email:
            errors.append(localized_error(ERROR_MESSAGE_EMPTY_CONFIRM_EMAIL, localizer, locale))
    # The confirmation must match even when the email is optional; None and "" count as equal.
    if (email or "") != (confirm_email or ""):
        errors.append(localized_error(ERROR_MESSAGE_CONFIRM_EMAIL, localizer, locale))


async def check_user_and_appointment(
    user_repo: UserRepository,
    appointment_repo: AppointmentRepository,
    *,
    slot_start: datetime,
    email: str | None,
    form: Form,
    appointment_id: int = 0,
) -> bool:
    """
    Return False when the user already has an appointment on this form whose date is on or
    before the requested date and no more than `nb_days_before_new_appointment` days earlier.
    """
    nb_days = form.nb_days_before_new_appointment
    if nb_days == 0 or not email:
        return True

    user = await user_repo.find_by_email(email)
    if user is None:
        return True

    rows = await appointment_repo.list_by_user(user.id)
    starts = [
        slot.starts_at
        for appointment, slot in rows
        if slot.form_id == form.id and (appointment_id == 0 or appointment.id != appointment_id)
    ]
    if not starts:
        return True

    last_date = local_date(max(starts))
    requested_date = local_date(slot_start)
    if last_date <= requested_date and (requested_date - last_date).days <= nb_days:
        return False
    return True


def check_and_return_nb_booked_seats(
    raw_nb_booked_seats: str | None,
    form: Form,
    errors: list[ValidationError],
    *,
    remaining_places: int,
    current_seats: int = 0,
    is_new: bool = True,
    localizer: Localizer,
    locale: Optional[str] = None,
) -> int:
    """
    Resolve the requested seat count and check it against the slot.

    A blank value defaults to 1 and is only an error when the form allows more than one person.
    When editing, the appointment's own seats are added back to the ceiling.
    Raises InputError when the value is not an integer.
    """
    nb_booked_seats = 1
    raw = (raw_nb_booked_seats or "").strip()
    if not raw and form.max_people_per_appointment > 1:
        errors.append(localized_error(ERROR_MESSAGE_EMPTY_NB_BOOKED_SEAT, localizer, locale))
    if raw:
        if not _INTEGER_RE.fullmatch(raw):
            raise InputError(f"invalid number of booked seats: {raw_nb_booked_seats!r}")
        nb_booked_seats = int(raw)

    ceiling = remaining_places if is_new else remaining_places + current_seats
    if nb_booked_seats > ceiling or nb_booked_seats < 0:
        errors.append(localized_error(ERROR_MESSAGE_ERROR_NB_BOOKED_SEAT, localizer, locale))
    if nb_booked_seats == 0:
        errors.append(localized_error(ERROR_MESSAGE_EMPTY_NB_BOOKED_SEAT, localizer, locale))
    return nb_booked_seats


def validate_form_and_entries(
    submission: dict[str, Any],
    entries: Sequence[Entry],
    raw_inputs: dict[int, list[str]],
    errors: list[ValidationError],
    *,
    localizer: Localizer,
    locale: Optional[str] = None,
) -> None:
    """Structural constraints on the identity fields, then per-entry validation of custom fields."""
    data = dict(submission)
    if not data.get("email"):
        data["email"] = None
    try:
        AppointmentSubmission.model_validate(data)
    except PydanticValidationError as exc:
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else ""
            name = _SUBMISSION_FIELD_NAMES.get(field, field)
            rule = _SUBMISSION_RULES.get(err["type"], "error")
            errors.append(localized_error(f"appointment.validation.appointment.{name}.{rule}", localizer, locale))
    errors.extend(validate_entries(entries, raw_inputs, localizer, locale))
