from __future__ import annotations

from typing import Any, Mapping, Optional

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "appointment.validation.appointment.Email.notEmpty": "The email is mandatory.",
        "appointment.validation.appointment.EmailConfirmation.email": "The email confirmation is mandatory.",
        "appointment.message.error.confirmEmail": "The email and its confirmation do not match.",
        "appointment.validation.appointment.NbBookedSeat.notEmpty": "The number of booked seats is mandatory.",
        "appointment.validation.appointment.NbBookedSeat.error": (
            "The number of booked seats exceeds the number of remaining places."
        ),
        "appointment.validation.appointment.NbDaysBeforeNewAppointment.error": (
            "You must wait {days} day(s) between two appointments."
        ),
        "appointment.validation.appointment.FirstName.notEmpty": "The first name is mandatory.",
        "appointment.validation.appointment.FirstName.size": "The first name is too long.",
        "appointment.validation.appointment.LastName.notEmpty": "The last name is mandatory.",
        "appointment.validation.appointment.LastName.size": "The last name is too long.",
        "appointment.validation.appointment.Email.email": "The email is not valid.",
        "appointment.validation.appointment.Email.size": "The email is too long.",
        "appointment.validation.entry.mandatory": "The field \"{title}\" is mandatory.",
        "appointment.validation.entry.size": "The field \"{title}\" must not exceed {max_size} characters.",
        "appointment.validation.entry.email": "The field \"{title}\" must be a valid email.",
        "appointment.validation.entry.numeric": "The field \"{title}\" must be a number.",
        "appointment.validation.entry.choice": "The value of the field \"{title}\" is not an allowed choice.",
        "appointment.permission.label.resourceType": "Appointments",
        "appointment.manage_appointments.columnLastName": "Last name",
        "appointment.manage_appointments.columnFirstName": "First name",
        "appointment.manage_appointments.columnEmail": "Email",
        "appointment.manage_appointments.columnDateAppointment": "Appointment date",
        "appointment.model.entity.appointmentform.attribute.timeStart": "Start time",
        "appointment.model.entity.appointmentform.attribute.timeEnd": "End time",
        "appointment.manage_appointments.columnStatus": "Status",
        "appointment.manage_appointments.columnLogin": "User login",
        "appointment.manage_appointments.columnState": "State",
        "appointment.manage_appointments.columnNumberOfBookedseatsPerAppointment": "Number of booked seats",
        "appointment.message.labelStatusReserved": "Reserved",
        "appointment.message.labelStatusUnreserved": "Cancelled",
    },
    "fr": {
        "appointment.validation.appointment.Email.notEmpty": "L'adresse email est obligatoire.",
        "appointment.validation.appointment.EmailConfirmation.email": (
            "La confirmation de l'adresse email est obligatoire."
        ),
        "appointment.message.error.confirmEmail": "L'adresse email et sa confirmation ne correspondent pas.",
        "appointment.validation.appointment.NbBookedSeat.notEmpty": "Le nombre de places est obligatoire.",
        "appointment.validation.appointment.NbBookedSeat.error": (
            "Le nombre de places demandé dépasse le nombre de places restantes."
        ),
        "appointment.validation.appointment.NbDaysBeforeNewAppointment.error": (
            "Vous devez respecter un délai de {days} jour(s) entre deux rendez-vous."
        ),
        "appointment.validation.appointment.FirstName.notEmpty": "Le prénom est obligatoire.",
        "appointment.validation.appointment.FirstName.size": "Le prénom est trop long.",
        "appointment.validation.appointment.LastName.notEmpty": "Le nom est obligatoire.",
        "appointment.validation.appointment.LastName.size": "Le nom est trop long.",
        "appointment.validation.appointment.Email.email": "L'adresse email n'est pas valide.",
        "appointment.validation.appointment.Email.size": "L'adresse email est trop longue.",
        "appointment.validation.entry.mandatory": "Le champ \"{title}\" est obligatoire.",
        "appointment.validation.entry.size": "Le champ \"{title}\" ne doit pas dépasser {max_size} caractères.",
        "appointment.validation.entry.email": "Le champ \"{title}\" doit être une adresse email valide.",
        "appointment.validation.entry.numeric": "Le champ \"{title}\" doit être un nombre.",
        "appointment.validation.entry.choice": "La valeur du champ \"{title}\" n'est pas un choix autorisé.",
        "appointment.permission.label.resourceType": "Rendez-vous",
        "appointment.manage_appointments.columnLastName": "Nom",
        "appointment.manage_appointments.columnFirstName": "Prénom",
        "appointment.manage_appointments.columnEmail": "Email",
        "appointment.manage_appointments.columnDateAppointment": "Date du rendez-vous",
        "appointment.model.entity.appointmentform.attribute.timeStart": "Heure de début",
        "appointment.model.entity.appointmentform.attribute.timeEnd": "Heure de fin",
        "appointment.manage_appointments.columnStatus": "Statut",
        "appointment.manage_appointments.columnLogin": "Identifiant",
        "appointment.manage_appointments.columnState": "Etat",
        "appointment.manage_appointments.columnNumberOfBookedseatsPerAppointment": "Nombre de places réservées",
        "appointment.message.labelStatusReserved": "Réservé",
        "appointment.message.labelStatusUnreserved": "Annulé",
    },
}


class MessageCatalog:
    """Dictionary-backed localizer.

    Unknown locales fall back to `default_locale`, unknown keys to the key itself.
    """

    def __init__(
        self,
        messages: Optional[Mapping[str, Mapping[str, str]]] = None,
        *,
        default_locale: str = "fr",
    ) -> None:
        self.messages = messages if messages is not None else MESSAGES
        self.default_locale = default_locale

    def localize(self, key: str, locale: Optional[str] = None, **params: Any) -> str:
        bundle = self.messages.get(_language(locale)) or self.messages.get(self.default_locale, {})
        template = bundle.get(key, key)
        if not params:
            return template
        try:
            return template.format(**params)
        except (KeyError, IndexError):
            return template


def _language(locale: Optional[str]) -> str:
    # "fr-FR", "fr_FR" -> "fr"
    if not locale:
        return ""
    return locale.replace("_", "-").split("-", 1)[0].lower()
