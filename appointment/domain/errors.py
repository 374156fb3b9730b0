from dataclasses import dataclass


class AppointmentError(Exception):
    """Base class for appointment domain errors."""


class InputError(AppointmentError):
    """Raised when a raw request value cannot be parsed (e.g. a non-numeric seat count)."""


class CapacityError(AppointmentError):
    """Raised when a slot has not enough remaining places, including a lost concurrent update."""


class StateError(AppointmentError):
    """Raised when an operation does not apply to the current state (e.g. releasing a cancelled appointment)."""


class LedgerError(AppointmentError):
    """Raised when stored seat counts contradict each other (e.g. a release would overflow the slot)."""


class NotFoundError(AppointmentError):
    pass


class ExportError(AppointmentError):
    pass


@dataclass(frozen=True)
class ValidationError:
    """A business-rule violation, accumulated and shown to the user."""

    message_key: str
    message: str
