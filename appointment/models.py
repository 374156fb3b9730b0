from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String, Text


class Base(DeclarativeBase):
    pass


class EntryType(StrEnum):
    TEXT = "text"
    EMAIL = "email"
    NUMERIC = "numeric"
    CHOICE = "choice"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Form(Base):
    __tablename__ = "forms"
    __table_args__ = (
        CheckConstraint("max_people_per_appointment >= 1", name="chk_forms_max_people"),
        CheckConstraint("nb_days_before_new_appointment >= 0", name="chk_forms_nb_days"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    enable_mandatory_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    nb_days_before_new_appointment: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_people_per_appointment: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    workflow_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    slots: Mapped[list["Slot"]] = relationship(back_populates="form")
    entries: Mapped[list["Entry"]] = relationship(back_populates="form")


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="chk_slots_time"),
        CheckConstraint("capacity >= 1", name="chk_slots_capacity"),
        CheckConstraint(
            "remaining_places >= 0 AND remaining_places <= capacity",
            name="chk_slots_remaining",
        ),
        Index("idx_slots_form", "form_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_places: Mapped[int] = mapped_column(Integer, nullable=False)

    form: Mapped["Form"] = relationship(back_populates="slots")
    appointments: Mapped[list["Appointment"]] = relationship(back_populates="slot")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("nb_booked_seats >= 1", name="chk_appointments_seats"),
        Index("idx_appointments_slot", "slot_id"),
        Index("idx_appointments_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    nb_booked_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["Slot"] = relationship(back_populates="appointments")
    responses: Mapped[list["Response"]] = relationship(back_populates="appointment")


class Entry(Base):
    __tablename__ = "entries"
    __table_args__ = (
        CheckConstraint("position >= 1", name="chk_entries_position"),
        Index("idx_entries_form", "form_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    entry_type: Mapped[EntryType] = mapped_column(
        Enum(
            EntryType,
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=EntryType.TEXT,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    only_display_in_back: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    form: Mapped["Form"] = relationship(back_populates="entries")
    fields: Mapped[list["EntryField"]] = relationship(back_populates="entry")


class EntryField(Base):
    __tablename__ = "entry_fields"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("entries.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    entry: Mapped["Entry"] = relationship(back_populates="fields")


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (Index("idx_responses_appointment", "appointment_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("entries.id"), nullable=False)
    field_id: Mapped[Optional[int]] = mapped_column(ForeignKey("entry_fields.id"), nullable=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    appointment: Mapped[Optional["Appointment"]] = relationship(back_populates="responses")
