"""
Family / Membership Store

Families, their members and invitations.

An invited member exists immediately as an unverified placeholder
without a password, so income and expenses can be assigned to them
before they ever sign in. Accepting the invitation sets the password
and marks them verified.

CRITICAL: The invitation email is sent after the member is committed.
A failed send is logged and audited; it never removes the member.

Password reset and email verification links carry a random token.
Only its SHA-256 is stored, and a token is deleted in the same
transaction that uses it.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import bcrypt
import structlog
from pydantic import ValidationError

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer, require_identity
from family_budget.categories.migration import DEFAULT_CATEGORIES
from family_budget.config import AppSettings, EmailSettings
from family_budget.errors import BudgetValidationError, ExternalServiceError, NotFoundError
from family_budget.models.audit import AuditEventType
from family_budget.models.budget import Income, IncomeFrequency, IncomeType, ResourceType
from family_budget.models.family import (
    EmailToken,
    Family,
    FamilyMember,
    InvitationResult,
    RequestIdentity,
    TokenPurpose,
)
from family_budget.services.email import (
    EmailSenderInterface,
    LoggingEmailSender,
    build_invitation_email,
    build_password_reset_email,
    build_verification_email,
)
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class FamilyMembershipService:
    """
    Registration, invitations and member management.

    Usage:
        service = FamilyMembershipService(storage, email_sender, audit_logger)
        owner = await service.register_family("Alex", "alex@example.com", "secret1")
        result = await service.invite_member(identity, "sam@example.com", "Sam")
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        email_sender: Optional[EmailSenderInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        email_settings: Optional[EmailSettings] = None,
        password_rounds: int = 12,
    ):
        self._storage = storage
        self._email = email_sender or LoggingEmailSender()
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)
        self._app_settings = app_settings or AppSettings()
        self._email_settings = email_settings or EmailSettings()
        self._password_rounds = password_rounds

    def _check_new_password(self, password: str, confirm_password: Optional[str]) -> None:
        minimum = self._app_settings.min_password_length
        if not password or len(password) < minimum:
            raise BudgetValidationError(f"Password must be at least {minimum} characters")
        if confirm_password is not None and confirm_password != password:
            raise BudgetValidationError("Passwords do not match")

    @staticmethod
    def _build_member(**fields) -> FamilyMember:
        try:
            return FamilyMember(**fields)
        except ValidationError as e:
            first = e.errors()[0]
            raise BudgetValidationError(f"{first['loc'][0]}: {first['msg']}")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def register_family(
        self,
        name: str,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
    ) -> FamilyMember:
        """
        Sign up: a new family, its verified owner and the default categories.

        Raises:
            BudgetValidationError: Missing fields, short password or taken email
        """
        if not name or not name.strip() or not email:
            raise BudgetValidationError("Name, email and password are required")
        self._check_new_password(password, confirm_password)

        if await self._storage.get_member_by_email(email):
            raise BudgetValidationError("User already exists")

        family = Family(name=f"{name.strip()}'s Family")
        now = datetime.utcnow()
        owner = self._build_member(
            family_id=family.id,
            email=email,
            name=name,
            is_verified=True,
            verified_at=now,
            password_hash=hash_password(password, self._password_rounds),
        )

        await self._storage.create_family_with_owner(family, owner, DEFAULT_CATEGORIES)
        logger.info("family_registered", family_id=str(family.id), user_id=str(owner.id))
        await self._audit.log_member_event(
            AuditEventType.FAMILY_REGISTERED,
            family_id=family.id,
            actor_id=owner.id,
            member_id=owner.id,
            email=owner.email,
        )
        return owner

    async def verify_credentials(self, email: str, password: str) -> Optional[FamilyMember]:
        """
        Check an email/password pair for the session provider.

        Unverified placeholders never match.
        """
        member = await self._storage.get_member_by_email(email)
        if member is None or not member.is_verified:
            return None
        return member if check_password(password, member.password_hash) else None

    # -------------------------------------------------------------------------
    # Invitations
    # -------------------------------------------------------------------------

    async def _send_invitation(self, inviter: FamilyMember, family: Family, member: FamilyMember) -> bool:
        message = build_invitation_email(
            self._email_settings,
            to=member.email,
            inviter_name=inviter.name,
            family_name=family.name,
        )
        try:
            sent = await self._email.send(message)
        except Exception as e:
            logger.warning("invitation_email_failed", email=member.email, error=str(e))
            await self._audit.log_external_service_error(
                service="email",
                error_message=str(e),
                family_id=family.id,
            )
            return False

        if not sent:
            logger.warning("invitation_email_not_sent", email=member.email)
            await self._audit.log_external_service_error(
                service="email",
                error_message=f"Invitation to {member.email} was not accepted by the transport",
                family_id=family.id,
            )
        return sent

    async def invite_member(
        self,
        identity: RequestIdentity,
        email: str,
        name: str,
    ) -> InvitationResult:
        """
        Add a placeholder member and email them an invitation.

        The placeholder gets a zero monthly income in the active
        overview, when there is one.

        Raises:
            BudgetValidationError: If the email belongs to an existing user
        """
        family = await self._auth.require_family(identity)
        if not email:
            raise BudgetValidationError("Email is required")

        existing = await self._storage.get_member_by_email(email)
        if existing is not None:
            if existing.family_id == family.id:
                raise BudgetValidationError("User is already a member of your family")
            raise BudgetValidationError("User already exists with another family")

        inviter = await self._storage.get_member(family.id, identity.user_id)
        if inviter is None:
            raise NotFoundError("Inviting user not found")

        member = self._build_member(
            family_id=family.id,
            email=email,
            name=name or email.split("@")[0],
            is_verified=False,
            invited_by=inviter.id,
            invited_at=datetime.utcnow(),
        )

        seed_income = None
        active = await self._storage.get_active_overview(family.id)
        if active is not None:
            seed_income = Income(
                overview_id=active.id,
                user_id=member.id,
                name="Salary",
                income_type=IncomeType.SALARY,
                amount=0,
                frequency=IncomeFrequency.MONTHLY,
                notes="Invited family member",
            )

        await self._storage.add_member(member, seed_income=seed_income)
        await self._audit.log_member_event(
            AuditEventType.MEMBER_INVITED,
            family_id=family.id,
            actor_id=identity.user_id,
            member_id=member.id,
            email=member.email,
        )

        email_sent = await self._send_invitation(inviter, family, member)
        return InvitationResult(member=member, email_sent=email_sent)

    async def resend_invite(self, identity: RequestIdentity, user_id: UUID) -> bool:
        """
        Send the invitation again to a member who hasn't accepted yet.

        Raises:
            NotFoundError: If the member is not in the caller's family
            BudgetValidationError: If they already accepted
        """
        family = await self._auth.require_family(identity)
        await self._auth.require_owned(identity, ResourceType.USER, user_id)
        member = await self._storage.get_member(family.id, user_id)
        if member.is_verified:
            raise BudgetValidationError("This member has already accepted the invitation")

        inviter = await self._storage.get_member(family.id, identity.user_id)
        if inviter is None:
            raise NotFoundError("Inviting user not found")
        return await self._send_invitation(inviter, family, member)

    async def accept_invitation(
        self,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
        name: Optional[str] = None,
    ) -> FamilyMember:
        """
        Turn a placeholder into a verified member with a password.

        Raises:
            BudgetValidationError: Unknown or already accepted invitation,
                short password or mismatched confirmation
        """
        self._check_new_password(password, confirm_password)
        member = await self._storage.get_member_by_email(email or "")
        if member is None or member.is_verified:
            raise BudgetValidationError("Invalid invitation")

        now = datetime.utcnow()
        updated = member.model_copy(update={
            "name": name.strip() if name and name.strip() else member.name,
            "is_verified": True,
            "verified_at": now,
            "password_hash": hash_password(password, self._password_rounds),
        })
        await self._storage.update_member(updated)
        await self._audit.log_member_event(
            AuditEventType.MEMBER_JOINED,
            family_id=updated.family_id,
            actor_id=updated.id,
            member_id=updated.id,
            email=updated.email,
        )
        return updated

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def list_members(self, identity: RequestIdentity) -> list[FamilyMember]:
        family = await self._auth.require_family(identity)
        return await self._storage.list_members(family.id)

    async def update_profile(
        self,
        identity: RequestIdentity,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> FamilyMember:
        """
        Change the caller's own name and/or email.

        Raises:
            BudgetValidationError: If the new email is taken
        """
        identity = require_identity(identity)
        member = await self._storage.get_member(identity.family_id, identity.user_id)
        if member is None:
            raise NotFoundError("User not found")

        data = member.model_dump()
        if name is not None:
            data["name"] = name
        if email is not None:
            data["email"] = email
        updated = self._build_member(**data)

        await self._storage.update_member(updated)
        await self._audit.log_member_event(
            AuditEventType.PROFILE_UPDATED,
            family_id=updated.family_id,
            actor_id=identity.user_id,
            member_id=updated.id,
            email=updated.email,
        )
        return updated

    async def remove_member(self, identity: RequestIdentity, user_id: UUID) -> None:
        """
        Remove a member together with their income and expense rows,
        saved conversations and email tokens.

        Raises:
            BudgetValidationError: Removing yourself or the last verified member
            NotFoundError: If the member is not in the caller's family
        """
        identity = require_identity(identity)
        if user_id == identity.user_id:
            raise BudgetValidationError("You cannot remove yourself from the family")
        await self._auth.require_owned(identity, ResourceType.USER, user_id)
        member = await self._storage.get_member(identity.family_id, user_id)

        await self._storage.remove_member(identity.family_id, user_id)
        logger.info("member_removed", family_id=str(identity.family_id), user_id=str(user_id))
        await self._audit.log_member_event(
            AuditEventType.MEMBER_REMOVED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            member_id=user_id,
            email=member.email,
        )

    # -------------------------------------------------------------------------
    # Email tokens
    # -------------------------------------------------------------------------

    async def _issue_token(
        self,
        member: FamilyMember,
        purpose: TokenPurpose,
        lifetime: timedelta,
    ) -> None:
        """Store a fresh token and email its link. The token is dropped if the email fails."""
        raw = secrets.token_hex(32)
        token = EmailToken(
            email=member.email,
            token_hash=hash_token(raw),
            purpose=purpose,
            expires_at=datetime.utcnow() + lifetime,
        )
        await self._storage.add_email_token(token)

        if purpose == TokenPurpose.PASSWORD_RESET:
            message = build_password_reset_email(self._email_settings, member.email, raw)
        else:
            message = build_verification_email(self._email_settings, member.email, raw)

        try:
            sent = await self._email.send(message)
            error = None if sent else "Message was not accepted by the transport"
        except Exception as e:
            sent, error = False, str(e)

        if not sent:
            await self._storage.delete_email_token(token.id)
            logger.warning("token_email_failed", purpose=purpose.value, email=member.email, error=error)
            await self._audit.log_external_service_error(
                service="email",
                error_message=error,
                family_id=member.family_id,
            )
            raise ExternalServiceError("email", "Failed to send email")

    async def _redeem(self, raw_token: str, purpose: TokenPurpose) -> tuple[EmailToken, FamilyMember]:
        token = await self._storage.get_email_token(hash_token(raw_token or ""))
        if token is None or token.purpose != purpose:
            raise BudgetValidationError("Invalid token")
        if token.is_expired():
            await self._storage.delete_email_token(token.id)
            raise BudgetValidationError("Token expired")

        member = await self._storage.get_member_by_email(token.email)
        if member is None:
            await self._storage.delete_email_token(token.id)
            raise BudgetValidationError("Invalid token")
        return token, member

    async def request_password_reset(self, email: str) -> bool:
        """
        Email a one-hour password reset link.

        Unknown emails and invited members who never set a password get
        nothing, and the caller can't tell them apart from a sent email.
        While a link is still live no second one is issued.

        Returns:
            True if a new link was emailed

        Raises:
            BudgetValidationError: If email is empty
            ExternalServiceError: If the email could not be sent
        """
        if not email:
            raise BudgetValidationError("Email is required")
        member = await self._storage.get_member_by_email(email)
        if member is None or member.password_hash is None:
            logger.info("password_reset_skipped", reason="no_account")
            return False

        live = await self._storage.find_live_email_token(
            member.email, TokenPurpose.PASSWORD_RESET, datetime.utcnow()
        )
        if live is not None:
            logger.info("password_reset_skipped", reason="already_sent", user_id=str(member.id))
            return False

        await self._issue_token(
            member,
            TokenPurpose.PASSWORD_RESET,
            timedelta(minutes=self._email_settings.reset_token_ttl_minutes),
        )
        await self._audit.log_member_event(
            AuditEventType.PASSWORD_RESET_REQUESTED,
            family_id=member.family_id,
            actor_id=member.id,
            member_id=member.id,
            email=member.email,
        )
        return True

    async def reset_password(
        self,
        token: str,
        password: str,
        confirm_password: Optional[str] = None,
    ) -> FamilyMember:
        """
        Set a new password from a reset link. The link is used up.

        Raises:
            BudgetValidationError: Invalid or expired token, short password
                or mismatched confirmation
        """
        self._check_new_password(password, confirm_password)
        email_token, member = await self._redeem(token, TokenPurpose.PASSWORD_RESET)

        updated = member.model_copy(update={
            "password_hash": hash_password(password, self._password_rounds),
        })
        try:
            updated = await self._storage.redeem_email_token(email_token.id, updated)
        except NotFoundError:
            raise BudgetValidationError("Invalid token")

        await self._audit.log_member_event(
            AuditEventType.PASSWORD_RESET,
            family_id=updated.family_id,
            actor_id=updated.id,
            member_id=updated.id,
            email=updated.email,
        )
        return updated

    async def send_verification(self, email: str) -> bool:
        """
        Email a 24-hour verification link to a signed-up member.

        Returns:
            False if the member is already verified, True if a link was sent

        Raises:
            NotFoundError: If no member has this email
            BudgetValidationError: If the member still has to accept an invitation
            ExternalServiceError: If the email could not be sent
        """
        member = await self._storage.get_member_by_email(email or "")
        if member is None:
            raise NotFoundError("User not found")
        if member.is_verified:
            return False
        if member.password_hash is None:
            raise BudgetValidationError("Accept your invitation to join the family first")

        await self._issue_token(
            member,
            TokenPurpose.VERIFICATION,
            timedelta(hours=self._email_settings.verification_token_ttl_hours),
        )
        await self._audit.log_member_event(
            AuditEventType.VERIFICATION_SENT,
            family_id=member.family_id,
            actor_id=member.id,
            member_id=member.id,
            email=member.email,
        )
        return True

    async def verify_email(self, token: str) -> FamilyMember:
        """
        Mark the member behind a verification link as verified.

        Raises:
            BudgetValidationError: Invalid or expired token
        """
        email_token, member = await self._redeem(token, TokenPurpose.VERIFICATION)

        updated = member.model_copy(update={
            "is_verified": True,
            "verified_at": datetime.utcnow(),
        })
        try:
            updated = await self._storage.redeem_email_token(email_token.id, updated)
        except NotFoundError:
            raise BudgetValidationError("Invalid token")

        await self._audit.log_member_event(
            AuditEventType.EMAIL_VERIFIED,
            family_id=updated.family_id,
            actor_id=updated.id,
            member_id=updated.id,
            email=updated.email,
        )
        return updated
