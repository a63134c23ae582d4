"""Tests for registration, invitations, account emails and member management."""

import asyncio
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from family_budget.errors import BudgetValidationError, ExternalServiceError, NotFoundError
from family_budget.family import FamilyMembershipService, check_password, hash_password
from family_budget.family.membership import hash_token
from family_budget.ledger import BudgetLedger
from family_budget.models import EmailToken, FamilyMember, RequestIdentity, TokenPurpose
from family_budget.models.audit import AuditEventType
from family_budget.scenarios import ScenarioLifecycleManager
from family_budget.services.email import EmailSenderInterface, LoggingEmailSender


class FailingEmailSender(EmailSenderInterface):
    """Transport that always blows up."""

    async def send(self, message):
        raise ConnectionError("SMTP unreachable")


@pytest.fixture
def email_sender():
    return LoggingEmailSender()


@pytest.fixture
def service(storage, audit_logger, email_sender):
    return FamilyMembershipService(
        storage,
        email_sender=email_sender,
        audit_logger=audit_logger,
        password_rounds=4,
    )


@pytest.fixture
def owner(service):
    member = asyncio.run(service.register_family("Alex", "Alex@Example.com", "secret1", "secret1"))
    return RequestIdentity(user_id=member.id, family_id=member.family_id, user_name=member.name)


class TestPasswords:
    def test_hash_and_check(self):
        hashed = hash_password("secret1", rounds=4)
        assert hashed != "secret1"
        assert check_password("secret1", hashed)
        assert not check_password("wrong", hashed)
        assert not check_password("secret1", None)


class TestRegistration:
    """Tests for signing up."""

    def test_register_creates_family_and_defaults(self, service, storage):
        member = asyncio.run(service.register_family("Alex", "alex@example.com", "secret1"))

        family = asyncio.run(storage.get_family(member.family_id))
        assert family.name == "Alex's Family"
        assert member.is_verified
        assert len(asyncio.run(storage.list_categories(family.id))) == 12

    def test_register_duplicate_email(self, service, owner):
        with pytest.raises(BudgetValidationError, match="User already exists"):
            asyncio.run(service.register_family("Other", "ALEX@example.com", "secret1"))

    def test_register_short_password(self, service):
        with pytest.raises(BudgetValidationError, match="at least 6"):
            asyncio.run(service.register_family("Alex", "alex@example.com", "abc"))

    def test_register_mismatched_confirmation(self, service):
        with pytest.raises(BudgetValidationError, match="do not match"):
            asyncio.run(service.register_family("Alex", "alex@example.com", "secret1", "secret2"))

    def test_verify_credentials(self, service, owner):
        assert asyncio.run(service.verify_credentials("alex@example.com", "secret1")).id == owner.user_id
        assert asyncio.run(service.verify_credentials("alex@example.com", "nope")) is None
        assert asyncio.run(service.verify_credentials("ghost@example.com", "secret1")) is None


class TestInvitations:
    """Tests for inviting members."""

    def test_invite_creates_placeholder_and_sends_email(self, service, storage, email_sender, owner):
        result = asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))

        assert result.email_sent
        assert not result.member.is_verified
        assert result.member.password_hash is None
        assert result.member.invited_by == owner.user_id
        assert len(asyncio.run(storage.list_members(owner.family_id))) == 2

        message = email_sender.sent[0]
        assert message.to == "sam@example.com"
        assert "Alex's Family" in message.subject
        assert "/auth/accept-invite?email=sam%40example.com" in message.body

    def test_invite_seeds_income_in_active_overview(self, service, storage, owner):
        overview = asyncio.run(ScenarioLifecycleManager(storage).create(owner, "Current"))

        result = asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))

        incomes = asyncio.run(storage.list_incomes(overview.id))
        seeded = [income for income in incomes if income.user_id == result.member.id]
        assert len(seeded) == 1
        assert seeded[0].amount == Decimal("0")
        assert seeded[0].notes == "Invited family member"

    def test_invite_existing_member(self, service, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        with pytest.raises(BudgetValidationError, match="already a member of your family"):
            asyncio.run(service.invite_member(owner, "SAM@example.com", "Sam"))

    def test_invite_user_of_another_family(self, service, owner):
        asyncio.run(service.register_family("Robin", "robin@example.com", "secret1"))
        with pytest.raises(BudgetValidationError, match="another family"):
            asyncio.run(service.invite_member(owner, "robin@example.com", "Robin"))

    def test_email_failure_keeps_member(self, storage, audit_logger, audit_storage):
        """Test a broken transport never undoes the invitation."""
        service = FamilyMembershipService(
            storage,
            email_sender=FailingEmailSender(),
            audit_logger=audit_logger,
            password_rounds=4,
        )
        member = asyncio.run(service.register_family("Alex", "alex@example.com", "secret1"))
        identity = RequestIdentity(user_id=member.id, family_id=member.family_id)

        result = asyncio.run(service.invite_member(identity, "sam@example.com", "Sam"))

        assert result.email_sent is False
        assert asyncio.run(storage.get_member_by_email("sam@example.com")) is not None
        events = asyncio.run(audit_storage.get_recent_events(member.family_id))
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in {e.event_type for e in events}

    def test_accept_invitation(self, service, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))

        member = asyncio.run(service.accept_invitation("sam@example.com", "secret9", "secret9", "Samantha"))

        assert member.is_verified
        assert member.name == "Samantha"
        assert asyncio.run(service.verify_credentials("sam@example.com", "secret9")).id == member.id

    def test_accept_twice_is_invalid(self, service, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        asyncio.run(service.accept_invitation("sam@example.com", "secret9"))
        with pytest.raises(BudgetValidationError, match="Invalid invitation"):
            asyncio.run(service.accept_invitation("sam@example.com", "secret9"))

    def test_accept_unknown_email(self, service):
        with pytest.raises(BudgetValidationError, match="Invalid invitation"):
            asyncio.run(service.accept_invitation("ghost@example.com", "secret9"))

    def test_resend_invite(self, service, email_sender, owner):
        result = asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        assert asyncio.run(service.resend_invite(owner, result.member.id))
        assert len(email_sender.sent) == 2


class TestMembers:
    """Tests for profile updates and removal."""

    def test_update_profile(self, service, owner):
        updated = asyncio.run(service.update_profile(owner, name="Alexandra", email="ALEXANDRA@example.com"))
        assert updated.name == "Alexandra"
        assert updated.email == "alexandra@example.com"

    def test_update_profile_to_taken_email(self, service, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        with pytest.raises(BudgetValidationError):
            asyncio.run(service.update_profile(owner, email="sam@example.com"))

    def test_cannot_remove_yourself(self, service, owner):
        with pytest.raises(BudgetValidationError, match="yourself"):
            asyncio.run(service.remove_member(owner, owner.user_id))

    def test_remove_member_cascades_rows(self, service, storage, owner):
        asyncio.run(ScenarioLifecycleManager(storage).create(owner, "Current"))
        sam = asyncio.run(service.invite_member(owner, "sam@example.com", "Sam")).member
        housing = asyncio.run(storage.find_category_by_name(owner.family_id, "Housing"))
        expense = asyncio.run(BudgetLedger(storage).add_expense(owner, sam.id, housing.id, "Rent", 800))

        asyncio.run(service.remove_member(owner, sam.id))

        assert asyncio.run(storage.get_member(owner.family_id, sam.id)) is None
        assert asyncio.run(storage.get_expense(expense.id)) is None
        active = asyncio.run(storage.get_active_overview(owner.family_id))
        incomes = asyncio.run(storage.list_incomes(active.id))
        assert all(income.user_id != sam.id for income in incomes)

    def test_remove_last_verified_member(self, service, storage, owner):
        """Test a family keeps at least one member who can sign in."""
        sam = asyncio.run(service.invite_member(owner, "sam@example.com", "Sam")).member
        sam_identity = RequestIdentity(user_id=sam.id, family_id=owner.family_id)
        with pytest.raises(BudgetValidationError, match="last verified member"):
            asyncio.run(service.remove_member(sam_identity, owner.user_id))

    def test_remove_foreign_member(self, service, owner):
        other = asyncio.run(service.register_family("Robin", "robin@example.com", "secret1"))
        with pytest.raises(NotFoundError):
            asyncio.run(service.remove_member(owner, other.id))


def link_token(message):
    return re.search(r"token=([0-9a-f]{64})", message.body).group(1)


@pytest.fixture
def unverified(storage, owner):
    """A member who has a password but never verified their email."""
    member = FamilyMember(
        family_id=owner.family_id,
        email="jo@example.com",
        name="Jo",
        password_hash=hash_password("secret1", rounds=4),
    )
    return asyncio.run(storage.add_member(member))


class TestPasswordReset:
    """Tests for forgotten passwords."""

    def test_request_emails_link(self, service, email_sender, owner):
        assert asyncio.run(service.request_password_reset("ALEX@example.com")) is True

        message = email_sender.sent[-1]
        assert message.to == "alex@example.com"
        assert message.subject == "Reset your Family Budget password"
        assert "/auth/reset-password?token=" in message.body
        assert "expire in 1 hour" in message.body

    def test_unknown_email_sends_nothing(self, service, email_sender):
        assert asyncio.run(service.request_password_reset("nobody@example.com")) is False
        assert email_sender.sent == []

    def test_live_link_is_not_reissued(self, service, storage, email_sender, owner):
        asyncio.run(service.request_password_reset("alex@example.com"))
        first = link_token(email_sender.sent[-1])

        assert asyncio.run(service.request_password_reset("alex@example.com")) is False

        assert len(email_sender.sent) == 1
        live = asyncio.run(storage.find_live_email_token(
            "alex@example.com", TokenPurpose.PASSWORD_RESET, datetime.utcnow()
        ))
        assert live.token_hash == hash_token(first)

    def test_reset_password(self, service, email_sender, audit_storage, owner):
        asyncio.run(service.request_password_reset("alex@example.com"))
        token = link_token(email_sender.sent[-1])

        asyncio.run(service.reset_password(token, "newpass1", "newpass1"))

        assert asyncio.run(service.verify_credentials("alex@example.com", "newpass1")) is not None
        assert asyncio.run(service.verify_credentials("alex@example.com", "secret1")) is None
        with pytest.raises(BudgetValidationError, match="Invalid token"):
            asyncio.run(service.reset_password(token, "another1"))

        events = asyncio.run(audit_storage.get_recent_events(owner.family_id))
        assert events[0].event_type == AuditEventType.PASSWORD_RESET

    def test_expired_token_is_deleted(self, service, storage, owner):
        raw = "ab" * 32
        asyncio.run(storage.add_email_token(EmailToken(
            email="alex@example.com",
            token_hash=hash_token(raw),
            purpose=TokenPurpose.PASSWORD_RESET,
            expires_at=datetime.utcnow() - timedelta(minutes=1),
        )))

        with pytest.raises(BudgetValidationError, match="Token expired"):
            asyncio.run(service.reset_password(raw, "newpass1"))
        assert asyncio.run(storage.get_email_token(hash_token(raw))) is None

    def test_short_password_keeps_token(self, service, storage, email_sender, owner):
        asyncio.run(service.request_password_reset("alex@example.com"))
        token = link_token(email_sender.sent[-1])

        with pytest.raises(BudgetValidationError):
            asyncio.run(service.reset_password(token, "abc"))

        asyncio.run(service.reset_password(token, "newpass1"))

    def test_unknown_token(self, service):
        with pytest.raises(BudgetValidationError, match="Invalid token"):
            asyncio.run(service.reset_password("deadbeef", "newpass1"))

    def test_placeholder_gets_no_link(self, service, email_sender, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        email_sender.sent.clear()

        assert asyncio.run(service.request_password_reset("sam@example.com")) is False
        assert email_sender.sent == []

    def test_email_failure_drops_token(self, storage, audit_logger, owner):
        service = FamilyMembershipService(
            storage,
            email_sender=FailingEmailSender(),
            audit_logger=audit_logger,
            password_rounds=4,
        )

        with pytest.raises(ExternalServiceError):
            asyncio.run(service.request_password_reset("alex@example.com"))

        live = asyncio.run(storage.find_live_email_token(
            "alex@example.com", TokenPurpose.PASSWORD_RESET, datetime.utcnow()
        ))
        assert live is None


class TestEmailVerification:
    """Tests for verifying an email address."""

    def test_send_and_verify(self, service, storage, email_sender, unverified):
        assert asyncio.run(service.send_verification("jo@example.com")) is True
        message = email_sender.sent[-1]
        assert message.subject == "Verify your Family Budget account"
        assert "/auth/verify-email?token=" in message.body
        assert "expire in 24 hours" in message.body

        member = asyncio.run(service.verify_email(link_token(message)))

        assert member.is_verified
        assert member.verified_at is not None
        stored = asyncio.run(storage.get_member(unverified.family_id, unverified.id))
        assert stored.is_verified
        assert asyncio.run(service.verify_credentials("jo@example.com", "secret1")) is not None

    def test_token_is_single_use(self, service, email_sender, unverified):
        asyncio.run(service.send_verification("jo@example.com"))
        token = link_token(email_sender.sent[-1])
        asyncio.run(service.verify_email(token))

        with pytest.raises(BudgetValidationError, match="Invalid token"):
            asyncio.run(service.verify_email(token))

    def test_already_verified(self, service, email_sender, owner):
        assert asyncio.run(service.send_verification("alex@example.com")) is False
        assert email_sender.sent == []

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            asyncio.run(service.send_verification("nobody@example.com"))

    def test_placeholder_must_accept_invitation(self, service, owner):
        asyncio.run(service.invite_member(owner, "sam@example.com", "Sam"))
        with pytest.raises(BudgetValidationError):
            asyncio.run(service.send_verification("sam@example.com"))

    def test_tokens_are_not_interchangeable(self, service, email_sender, owner, unverified):
        asyncio.run(service.request_password_reset("alex@example.com"))
        reset_token = link_token(email_sender.sent[-1])
        asyncio.run(service.send_verification("jo@example.com"))
        verify_token = link_token(email_sender.sent[-1])

        with pytest.raises(BudgetValidationError, match="Invalid token"):
            asyncio.run(service.verify_email(reset_token))
        with pytest.raises(BudgetValidationError, match="Invalid token"):
            asyncio.run(service.reset_password(verify_token, "newpass1"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
