from typing import Sequence

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_locale, get_localizer, get_session
from ..domain.errors import CapacityError, ExportError, InputError, NotFoundError, StateError, ValidationError
from ..domain.services import AppointmentRequest
from ..infrastructure.exporters import InMemoryReportExporter
from ..infrastructure.repositories import (
    SqlAlchemyAppointmentRepository,
    SqlAlchemyEntryRepository,
    SqlAlchemyFormRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyUserRepository,
)
from ..schemas import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentRecapRead,
    AppointmentUpdate,
    ReportRead,
    ResponseRecapRead,
    ValidationErrorRead,
)
from ..usecases import appointments as appointment_usecase
from ..usecases import export as export_usecase
from ..usecases import recap as recap_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.i18n import MessageCatalog

router = APIRouter(prefix="", tags=["appointments"])


def _unprocessable(errors: Sequence[ValidationError]) -> HTTPException:
    detail = [ValidationErrorRead(key=e.message_key, message=e.message).model_dump() for e in errors]
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


@router.post(
    "/forms/{form_id}/appointments",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    payload: AppointmentCreate,
    form_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    locale: str = Depends(get_locale),
    localizer: MessageCatalog = Depends(get_localizer),
) -> AppointmentRead:
    request = AppointmentRequest(
        slot_id=payload.slot_id,
        email=payload.email,
        confirm_email=payload.confirm_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        nb_booked_seats=payload.nb_booked_seats,
        responses=payload.responses,
    )
    async with session.begin():
        try:
            appointment, slot, errors = await appointment_usecase.create_appointment(
                SqlAlchemyFormRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyUserRepository(session),
                SqlAlchemyAppointmentRepository(session),
                SqlAlchemyEntryRepository(session),
                form_id=form_id,
                request=request,
                localizer=localizer,
                locale=locale,
            )
        except InputError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid input")
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not available")
        except CapacityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot no longer available")
        if errors or appointment is None:
            raise _unprocessable(errors)

    emit_audit_log(
        action="appointment.created",
        appointment_id=appointment.id,
        slot_id=slot.id,
        form_id=slot.form_id,
        user_id=appointment.user_id,
        nb_booked_seats=appointment.nb_booked_seats,
        remaining_places=slot.remaining_places,
    )
    return AppointmentRead.from_db(appointment=appointment, slot=slot)


@router.put("/appointments/{appointment_id}", response_model=AppointmentRead)
async def update_appointment(
    payload: AppointmentUpdate,
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    locale: str = Depends(get_locale),
    localizer: MessageCatalog = Depends(get_localizer),
) -> AppointmentRead:
    async with session.begin():
        try:
            # slot_id is resolved from the stored appointment
            request = AppointmentRequest(
                slot_id=0,
                email=payload.email,
                confirm_email=payload.confirm_email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                nb_booked_seats=payload.nb_booked_seats,
                appointment_id=appointment_id,
                responses=payload.responses,
            )
            appointment, slot, errors = await appointment_usecase.update_appointment(
                SqlAlchemyFormRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyUserRepository(session),
                SqlAlchemyAppointmentRepository(session),
                SqlAlchemyEntryRepository(session),
                request=request,
                localizer=localizer,
                locale=locale,
            )
        except InputError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid input")
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
        except StateError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="appointment is cancelled")
        except CapacityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot no longer available")
        if errors:
            raise _unprocessable(errors)

    emit_audit_log(
        action="appointment.modified",
        appointment_id=appointment.id,
        slot_id=slot.id,
        form_id=slot.form_id,
        user_id=appointment.user_id,
        nb_booked_seats=appointment.nb_booked_seats,
        remaining_places=slot.remaining_places,
    )
    return AppointmentRead.from_db(appointment=appointment, slot=slot)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_appointment(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> AppointmentRead:
    async with session.begin():
        try:
            appointment, slot = await appointment_usecase.cancel_appointment(
                SqlAlchemySlotRepository(session),
                SqlAlchemyAppointmentRepository(session),
                appointment_id=appointment_id,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")

    emit_audit_log(
        action="appointment.cancelled",
        appointment_id=appointment.id,
        slot_id=slot.id,
        form_id=slot.form_id,
        user_id=appointment.user_id,
        nb_booked_seats=appointment.nb_booked_seats,
        remaining_places=slot.remaining_places,
    )
    return AppointmentRead.from_db(appointment=appointment, slot=slot)


@router.get("/appointments/{appointment_id}/recap", response_model=AppointmentRecapRead)
async def get_appointment_recap(
    appointment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> AppointmentRecapRead:
    async with session.begin():
        try:
            recap = await recap_usecase.get_appointment_recap(
                SqlAlchemyAppointmentRepository(session),
                SqlAlchemyEntryRepository(session),
                appointment_id=appointment_id,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")

    items = [
        ResponseRecapRead(entry_id=item.entry_id, title=item.title, value=item.value) if item is not None else None
        for item in recap
    ]
    return AppointmentRecapRead(appointment_id=appointment_id, items=items)


@router.get("/forms/{form_id}/appointments/report", response_model=ReportRead)
async def get_appointments_report(
    form_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    locale: str = Depends(get_locale),
    localizer: MessageCatalog = Depends(get_localizer),
) -> ReportRead:
    exporter = InMemoryReportExporter()
    async with session.begin():
        try:
            filename = await export_usecase.export_form_report(
                SqlAlchemyFormRepository(session),
                SqlAlchemyAppointmentRepository(session),
                SqlAlchemyEntryRepository(session),
                exporter,
                form_id=form_id,
                localizer=localizer,
                locale=locale,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="form not found")
        except ExportError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="export failed")

    return ReportRead(filename=filename, rows=exporter.rows)
