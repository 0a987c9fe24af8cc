"""Patient notifications carrying token links.

The message builders render plain-text instructions and hand them to a
PatientNotifier. Two notifiers exist:

- ConsoleNotifier: logs the message (development and tests)
- ResendNotifier: HTTP POST to the Resend API

Delivery failures raise DeliveryError; they are never swallowed.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from patient_portal.core.config import settings
from patient_portal.core.errors import DeliveryError
from patient_portal.models.patient import Patient

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

_RULE = "=============================="


@dataclass(frozen=True)
class Notification:
    """A rendered message ready for delivery."""

    recipient: str
    subject: str
    body: str


class PatientNotifier(Protocol):
    """Anything that can deliver a rendered notification."""

    async def deliver(self, notification: Notification) -> None: ...


class ConsoleNotifier:
    """Writes notifications to the log instead of sending them."""

    async def deliver(self, notification: Notification) -> None:
        logger.info(
            "Notification to %s: %s\n%s",
            notification.recipient,
            notification.subject,
            notification.body,
        )


class ResendNotifier:
    """Sends notifications as plain-text email through Resend.

    Args:
        api_key: Resend API key. Defaults to the configured key.
        sender: From address. Defaults to the configured sender.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or settings.resend_api_key.get_secret_value()
        self._sender = sender or settings.email_from
        self._transport = transport

    async def deliver(self, notification: Notification) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._sender,
                        "to": notification.recipient,
                        "subject": notification.subject,
                        "text": notification.body,
                    },
                    timeout=_RESEND_TIMEOUT,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to send %r email", notification.subject, exc_info=True)
            raise DeliveryError() from exc


def get_notifier() -> PatientNotifier:
    """Build the notifier selected by EMAIL_BACKEND."""
    if settings.email_backend == "resend":
        return ResendNotifier()
    return ConsoleNotifier()


def _render(greeting_to: str, instruction: str, url: str, footer: str) -> str:
    return (
        f"\n{_RULE}\n\n"
        f"Hi {greeting_to},\n\n"
        f"{instruction}\n\n"
        f"{url}\n\n"
        f"{footer}\n\n"
        f"{_RULE}\n"
    )


async def deliver_confirmation_instructions(
    notifier: PatientNotifier, patient: Patient, url: str
) -> Notification:
    """Send the account confirmation link to the patient's email."""
    notification = Notification(
        recipient=patient.email,
        subject="Confirmation instructions",
        body=_render(
            patient.email,
            "You can confirm your account by visiting the URL below:",
            url,
            "If you didn't create an account with us, please ignore this.",
        ),
    )
    await notifier.deliver(notification)
    return notification


async def deliver_reset_password_instructions(
    notifier: PatientNotifier, patient: Patient, url: str
) -> Notification:
    """Send the password reset link to the patient's email."""
    notification = Notification(
        recipient=patient.email,
        subject="Reset password instructions",
        body=_render(
            patient.email,
            "You can reset your password by visiting the URL below:",
            url,
            "If you didn't request this change, please ignore this.",
        ),
    )
    await notifier.deliver(notification)
    return notification


async def deliver_update_email_instructions(
    notifier: PatientNotifier, new_email: str, url: str
) -> Notification:
    """Send the email change link to the new address."""
    notification = Notification(
        recipient=new_email,
        subject="Update email instructions",
        body=_render(
            new_email,
            "You can change your email by visiting the URL below:",
            url,
            "If you didn't request this change, please ignore this.",
        ),
    )
    await notifier.deliver(notification)
    return notification


async def deliver_update_phone_number_instructions(
    notifier: PatientNotifier, patient: Patient, new_phone_number: str, url: str
) -> Notification:
    """Send the phone number change link to the account's email.

    The link stops working if the phone number changes before it is used.
    """
    notification = Notification(
        recipient=patient.email,
        subject="Update phone number instructions",
        body=_render(
            patient.email,
            f"You can change your phone number to {new_phone_number} "
            "by visiting the URL below:",
            url,
            "If you didn't request this change, please ignore this.",
        ),
    )
    await notifier.deliver(notification)
    return notification
