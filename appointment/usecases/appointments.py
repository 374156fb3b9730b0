from __future__ import annotations

from typing import Optional, Sequence

from ..domain.eligibility import (
    ERROR_MESSAGE_NB_DAYS_BETWEEN_APPOINTMENTS,
    check_and_return_nb_booked_seats,
    check_email,
    check_user_and_appointment,
    localized_error,
    validate_form_and_entries,
)
from ..domain.entries import build_responses
from ..domain.errors import NotFoundError, StateError, ValidationError
from ..domain.repositories import (
    AppointmentRepository,
    EntryRepository,
    FormRepository,
    Localizer,
    SlotRepository,
    UserRepository,
)
from ..domain.services import AppointmentRequest
from ..models import Appointment, Entry, Form, Slot, User
from .seats import SeatLedger


async def validate_appointment(
    user_repo: UserRepository,
    appointment_repo: AppointmentRepository,
    *,
    request: AppointmentRequest,
    form: Form,
    slot: Slot,
    entries: Sequence[Entry],
    current_seats: int = 0,
    localizer: Localizer,
    locale: Optional[str] = None,
) -> tuple[int, list[ValidationError]]:
    """Run every eligibility check and return the resolved seat count with all errors found."""
    errors: list[ValidationError] = []
    check_email(request.email, request.confirm_email, form, errors, localizer=localizer, locale=locale)
    nb_booked_seats = check_and_return_nb_booked_seats(
        request.nb_booked_seats,
        form,
        errors,
        remaining_places=slot.remaining_places,
        current_seats=current_seats,
        is_new=request.is_new,
        localizer=localizer,
        locale=locale,
    )
    validate_form_and_entries(
        {"first_name": request.first_name, "last_name": request.last_name, "email": request.email},
        entries,
        request.responses,
        errors,
        localizer=localizer,
        locale=locale,
    )
    passed = await check_user_and_appointment(
        user_repo,
        appointment_repo,
        slot_start=slot.starts_at,
        email=request.email,
        form=form,
        appointment_id=request.appointment_id,
    )
    if not passed:
        errors.append(
            localized_error(
                ERROR_MESSAGE_NB_DAYS_BETWEEN_APPOINTMENTS,
                localizer,
                locale,
                days=form.nb_days_before_new_appointment,
            )
        )
    return nb_booked_seats, errors


async def create_appointment(
    form_repo: FormRepository,
    slot_repo: SlotRepository,
    user_repo: UserRepository,
    appointment_repo: AppointmentRepository,
    entry_repo: EntryRepository,
    *,
    form_id: int,
    request: AppointmentRequest,
    localizer: Localizer,
    locale: Optional[str] = None,
    ledger: Optional[SeatLedger] = None,
) -> tuple[Optional[Appointment], Slot, list[ValidationError]]:
    slot = await slot_repo.get(request.slot_id)
    if slot is None or slot.form_id != form_id:
        raise NotFoundError("slot not found")
    form = await form_repo.get(form_id)
    if form is None:
        raise NotFoundError("form not found")
    entries = await entry_repo.list_by_form(form.id)

    nb_booked_seats, errors = await validate_appointment(
        user_repo,
        appointment_repo,
        request=request,
        form=form,
        slot=slot,
        entries=entries,
        localizer=localizer,
        locale=locale,
    )
    if errors:
        return None, slot, errors

    # Capacity is checked again under the slot lock; a lost race surfaces as CapacityError.
    ledger = ledger or SeatLedger(slot_repo)
    slot = await ledger.reserve(slot.id, nb_booked_seats)

    user = await _find_or_create_user(user_repo, request)
    appointment = await appointment_repo.create(
        slot_id=slot.id,
        user_id=user.id,
        nb_booked_seats=nb_booked_seats,
    )
    await entry_repo.replace_responses(appointment.id, build_responses(entries, request.responses))
    return appointment, slot, []


async def update_appointment(
    form_repo: FormRepository,
    slot_repo: SlotRepository,
    user_repo: UserRepository,
    appointment_repo: AppointmentRepository,
    entry_repo: EntryRepository,
    *,
    request: AppointmentRequest,
    localizer: Localizer,
    locale: Optional[str] = None,
    ledger: Optional[SeatLedger] = None,
) -> tuple[Appointment, Slot, list[ValidationError]]:
    row = await appointment_repo.get_for_update(request.appointment_id)
    if row is None:
        raise NotFoundError("appointment not found")
    appointment, slot = row
    if appointment.is_cancelled:
        raise StateError("appointment is cancelled")
    form = await form_repo.get(slot.form_id)
    if form is None:
        raise NotFoundError("form not found")
    entries = await entry_repo.list_by_form(form.id)

    nb_booked_seats, errors = await validate_appointment(
        user_repo,
        appointment_repo,
        request=request,
        form=form,
        slot=slot,
        entries=entries,
        current_seats=appointment.nb_booked_seats,
        localizer=localizer,
        locale=locale,
    )
    if errors:
        return appointment, slot, errors

    if nb_booked_seats != appointment.nb_booked_seats:
        ledger = ledger or SeatLedger(slot_repo)
        slot = await ledger.amend(slot.id, appointment, nb_booked_seats)

    await _apply_identity(user_repo, appointment, request)
    await entry_repo.replace_responses(appointment.id, build_responses(entries, request.responses))
    appointment = await appointment_repo.save(appointment)
    return appointment, slot, []


async def cancel_appointment(
    slot_repo: SlotRepository,
    appointment_repo: AppointmentRepository,
    *,
    appointment_id: int,
    ledger: Optional[SeatLedger] = None,
) -> tuple[Appointment, Slot]:
    row = await appointment_repo.get_for_update(appointment_id)
    if row is None:
        raise NotFoundError("appointment not found")
    appointment, slot = row

    ledger = ledger or SeatLedger(slot_repo)
    try:
        slot = await ledger.release(slot.id, appointment)
    except StateError:
        # Already cancelled: returned unchanged. A LedgerError is left to propagate.
        return appointment, slot
    updated = await appointment_repo.save(appointment)
    return updated, slot


async def _find_or_create_user(user_repo: UserRepository, request: AppointmentRequest) -> User:
    if request.email:
        user = await user_repo.find_by_email(request.email)
        if user is not None:
            return user
    return await user_repo.create(
        email=request.email or None,
        first_name=request.first_name,
        last_name=request.last_name,
    )


async def _apply_identity(user_repo: UserRepository, appointment: Appointment, request: AppointmentRequest) -> None:
    """
    Carry the edited identity over to the appointment.

    A new email moves the appointment to the user owning that email, created if needed.
    A blank email keeps the current owner. The submitted names are set on the owner.
    """
    owner = await user_repo.get(appointment.user_id)
    if owner is None or (request.email and owner.email != request.email):
        owner = await _find_or_create_user(user_repo, request)
        appointment.user_id = owner.id
    owner.first_name = request.first_name
    owner.last_name = request.last_name
