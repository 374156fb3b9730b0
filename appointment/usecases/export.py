from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from ..domain.errors import ExportError, NotFoundError
from ..domain.repositories import (
    AppointmentRepository,
    EntryRepository,
    FormRepository,
    Localizer,
    ReportExporter,
)
from ..models import Appointment, Entry, Form, Response, Slot, User
from ..utils.time import DATE_FORMAT, LOCAL_TZ, TIME_FORMAT, utc_naive_to_local

logger = logging.getLogger(__name__)

KEY_RESOURCE_TYPE = "appointment.permission.label.resourceType"
HEADER_KEYS = (
    "appointment.manage_appointments.columnLastName",
    "appointment.manage_appointments.columnFirstName",
    "appointment.manage_appointments.columnEmail",
    "appointment.manage_appointments.columnDateAppointment",
    "appointment.model.entity.appointmentform.attribute.timeStart",
    "appointment.model.entity.appointmentform.attribute.timeEnd",
    "appointment.manage_appointments.columnStatus",
    "appointment.manage_appointments.columnLogin",
    "appointment.manage_appointments.columnState",
    "appointment.manage_appointments.columnNumberOfBookedseatsPerAppointment",
)
KEY_STATUS_RESERVED = "appointment.message.labelStatusReserved"
KEY_STATUS_UNRESERVED = "appointment.message.labelStatusUnreserved"

EXCEL_FILE_EXTENSION = ".xlsx"
SEPARATOR = ","

Row = list[Optional[str]]


@dataclass
class ExportItem:
    """An appointment with everything one report row needs already resolved."""

    appointment: Appointment
    slot: Slot
    user: User
    responses: list[Response] = field(default_factory=list)
    state_name: Optional[str] = None


def build_default_values(entries: Sequence[Entry]) -> dict[int, str]:
    """Back-office default of each back-office-only entry."""
    defaults: dict[int, str] = {}
    for entry in entries:
        if not entry.only_display_in_back:
            continue
        fields = entry.fields or []
        if len(fields) == 1 and fields[0].value:
            defaults[entry.id] = fields[0].value
            continue
        for entry_field in fields:
            if entry_field.is_default and entry_field.value is not None:
                defaults[entry.id] = entry_field.value
    return defaults


def build_export_rows(
    form: Form,
    entries: Sequence[Entry],
    items: Sequence[ExportItem],
    *,
    localizer: Localizer,
    locale: Optional[str] = None,
) -> list[Row]:
    """
    Rows of the appointment report: the form title, the header, then one row per appointment.
    Entry columns hold the comma-joined answers, the back-office default, or None.
    """
    defaults = build_default_values(entries)
    field_titles = {f.id: f.title for entry in entries for f in entry.fields or []}
    reserved = localizer.localize(KEY_STATUS_RESERVED, locale)
    unreserved = localizer.localize(KEY_STATUS_UNRESERVED, locale)

    rows: list[Row] = [[form.title]]
    header: Row = [localizer.localize(key, locale) for key in HEADER_KEYS]
    header.extend(entry.title for entry in entries)
    rows.append(header)

    for item in items:
        starts_at = utc_naive_to_local(item.slot.starts_at)
        ends_at = utc_naive_to_local(item.slot.ends_at)
        row: Row = [
            item.user.last_name,
            item.user.first_name,
            item.user.email,
            starts_at.strftime(DATE_FORMAT),
            starts_at.strftime(TIME_FORMAT),
            ends_at.strftime(TIME_FORMAT),
            unreserved if item.appointment.is_cancelled else reserved,
            str(item.user.id),
            item.state_name or "",
            str(item.appointment.nb_booked_seats),
        ]
        for entry in entries:
            values = []
            for response in item.responses:
                if response.entry_id != entry.id:
                    continue
                if response.field_id is not None:
                    value = field_titles.get(response.field_id, "")
                else:
                    value = response.value or ""
                if value:
                    values.append(value)
            joined = SEPARATOR.join(values) or defaults.get(entry.id, "")
            row.append(joined or None)
        rows.append(row)
    return rows


def build_export_filename(now: datetime, *, localizer: Localizer, locale: Optional[str] = None) -> str:
    # 12-hour clock, as the legacy back office names its exports
    return f"{now.strftime('%Y%m%d-%I%M')}_{localizer.localize(KEY_RESOURCE_TYPE, locale)}{EXCEL_FILE_EXTENSION}"


def export_appointments(exporter: ReportExporter, rows: Sequence[Row], filename: str) -> None:
    try:
        exporter.write(rows, filename)
    except OSError as exc:
        logger.exception("failed to export appointments to %s", filename)
        raise ExportError("export failed") from exc


async def export_form_report(
    form_repo: FormRepository,
    appointment_repo: AppointmentRepository,
    entry_repo: EntryRepository,
    exporter: ReportExporter,
    *,
    form_id: int,
    localizer: Localizer,
    locale: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build the report of every appointment of a form, hand it to `exporter` and return its file name."""
    form = await form_repo.get(form_id)
    if form is None:
        raise NotFoundError("form not found")
    entries = await entry_repo.list_by_form(form_id)
    booked = await appointment_repo.list_by_form(form_id)
    responses = await entry_repo.list_responses([appointment.id for appointment, _, _ in booked])

    by_appointment: dict[int, list[Response]] = {}
    for response in responses:
        if response.appointment_id is not None:
            by_appointment.setdefault(response.appointment_id, []).append(response)
    items = [
        ExportItem(appointment=appointment, slot=slot, user=user, responses=by_appointment.get(appointment.id, []))
        for appointment, slot, user in booked
    ]

    rows = build_export_rows(form, entries, items, localizer=localizer, locale=locale)
    filename = build_export_filename(now or datetime.now(LOCAL_TZ), localizer=localizer, locale=locale)
    export_appointments(exporter, rows, filename)
    return filename
