"""Email services package."""

from family_budget.services.email.sender import (
    EmailMessage,
    EmailSenderInterface,
    LoggingEmailSender,
    build_invitation_email,
    build_password_reset_email,
    build_verification_email,
)

__all__ = [
    "EmailMessage",
    "EmailSenderInterface",
    "LoggingEmailSender",
    "build_invitation_email",
    "build_password_reset_email",
    "build_verification_email",
]
