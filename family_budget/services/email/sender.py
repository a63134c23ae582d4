"""
Outbound Email

The transport itself is outside this package. Callers depend on
EmailSenderInterface; the default LoggingEmailSender only writes the
message to the structured log.

CRITICAL: A failed send never affects stored data. Callers record
the failure and move on.
"""

from abc import ABC, abstractmethod
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel, Field

from family_budget.config import EmailSettings


class EmailMessage(BaseModel):
    """A single plain-text email."""

    to: str
    subject: str = Field(..., max_length=300)
    body: str
    sender: str


class EmailSenderInterface(ABC):
    """Anything that can deliver an EmailMessage."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        """
        Deliver a message.

        Returns:
            True if the transport accepted it

        Raises:
            ExternalServiceError: If the transport failed
        """
        pass


class LoggingEmailSender(EmailSenderInterface):
    """Writes messages to the log instead of sending them."""

    def __init__(self):
        self._logger = structlog.get_logger(__name__)
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> bool:
        self.sent.append(message)
        self._logger.info(
            "email_logged",
            to=message.to,
            subject=message.subject,
        )
        return True


def build_invitation_email(
    settings: EmailSettings,
    to: str,
    inviter_name: str,
    family_name: str,
) -> EmailMessage:
    """Invitation to join a family, with an accept link."""
    accept_url = f"{settings.app_url}/auth/accept-invite?{urlencode({'email': to})}"
    body = (
        f"You're invited to join {family_name}!\n\n"
        f"{inviter_name} has invited you to join their family budget. "
        f"Open the link below to accept the invitation and create your account:\n\n"
        f"{accept_url}\n\n"
        f"If you don't know {inviter_name}, you can safely ignore this email."
    )
    return EmailMessage(
        to=to,
        subject=f"{inviter_name} invited you to join {family_name} on Family Budget",
        body=body,
        sender=settings.from_address,
    )


def build_verification_email(settings: EmailSettings, to: str, token: str) -> EmailMessage:
    verify_url = f"{settings.app_url}/auth/verify-email?{urlencode({'token': token})}"
    body = (
        "Verify your email address\n\n"
        "Thank you for signing up! Open the link below to verify your email "
        "address and activate your account:\n\n"
        f"{verify_url}\n\n"
        f"This link will expire in {settings.verification_token_ttl_hours} hours. "
        "If you didn't create an account, you can safely ignore this email."
    )
    return EmailMessage(
        to=to,
        subject="Verify your Family Budget account",
        body=body,
        sender=settings.from_address,
    )


def build_password_reset_email(settings: EmailSettings, to: str, token: str) -> EmailMessage:
    reset_url = f"{settings.app_url}/auth/reset-password?{urlencode({'token': token})}"
    minutes = settings.reset_token_ttl_minutes
    lifetime = "1 hour" if minutes == 60 else f"{minutes} minutes"
    body = (
        "Reset your password\n\n"
        "We received a request to reset your password. Open the link below "
        "to create a new password:\n\n"
        f"{reset_url}\n\n"
        f"This link will expire in {lifetime}. "
        "If you didn't request a password reset, you can safely ignore this email."
    )
    return EmailMessage(
        to=to,
        subject="Reset your Family Budget password",
        body=body,
        sender=settings.from_address,
    )
