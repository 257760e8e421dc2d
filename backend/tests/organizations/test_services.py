"""
Tests for organization services: tenancy, membership and invitations.
"""

import uuid
from datetime import timedelta

import pytest
from django.core import mail
from django.utils import timezone

from apps.accounts.models import Member, User
from apps.billing.models import (
    BillingEvent,
    Invoice,
    InvoiceLineItem,
    OrganizationUsage,
    Payment,
    PaymentMethod,
    Plan,
    Subscription,
)
from apps.billing.services import create_subscription
from apps.billing.usage import get_current_usage
from apps.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from apps.organizations.models import Invitation, Organization
from apps.organizations.services import (
    accept_invitation,
    cancel_invitation,
    create_organization,
    delete_organization,
    expire_invitations,
    generate_invitation_token,
    invite_member,
    list_members,
    list_organizations,
    list_pending_invitations,
    remove_member,
    update_member_role,
    update_organization,
)
from tests.accounts.factories import MemberFactory, OrganizationFactory, UserFactory
from tests.billing.factories import (
    InvoiceFactory,
    InvoiceLineItemFactory,
    PaymentFactory,
    PaymentMethodFactory,
    PlanFactory,
)

from .factories import InvitationFactory


def test_invitation_tokens_are_random_and_url_safe() -> None:
    tokens = {generate_invitation_token() for _ in range(20)}
    assert len(tokens) == 20
    for token in tokens:
        assert len(token) >= 43
        assert all(c.isalnum() or c in "-_" for c in token)


@pytest.mark.django_db
class TestCreateOrganization:
    def test_creator_becomes_owner(self) -> None:
        user = UserFactory()

        org, owner = create_organization("Acme Corp", created_by=user)

        assert org.slug == "acme-corp"
        assert org.created_by == user
        assert owner.role == Member.Role.OWNER
        assert owner.status == Member.Status.JOINED
        assert owner.joined_at is not None
        assert get_current_usage(org).users_count == 1

    def test_explicit_slug(self) -> None:
        org, _ = create_organization("Acme", created_by=UserFactory(), slug="Acme HQ")
        assert org.slug == "acme-hq"

    def test_duplicate_slug(self) -> None:
        create_organization("Acme", created_by=UserFactory())

        with pytest.raises(ValidationError, match="already taken"):
            create_organization("Acme", created_by=UserFactory())

    def test_blank_name(self) -> None:
        with pytest.raises(ValidationError):
            create_organization("   ", created_by=UserFactory())


@pytest.mark.django_db
class TestInviteMember:
    def test_creates_pending_invitation_and_sends_email(
        self, django_capture_on_commit_callbacks
    ) -> None:
        admin = MemberFactory(role="admin")

        with django_capture_on_commit_callbacks(execute=True):
            invitation = invite_member(admin.organization, admin, "New.Person@Example.com")

        assert invitation.status == Invitation.Status.PENDING
        assert invitation.email == "new.person@example.com"
        assert invitation.role == "member"
        assert invitation.invited_by == admin.user
        assert invitation.expires_at > timezone.now() + timedelta(days=6)
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ["new.person@example.com"]
        assert invitation.token in mail.outbox[0].body

    def test_member_cannot_invite(self) -> None:
        member = MemberFactory(role="member")

        with pytest.raises(AccessDeniedError):
            invite_member(member.organization, member, "x@example.com")

    def test_owner_role_not_invitable(self) -> None:
        admin = MemberFactory(role="admin")

        with pytest.raises(ValidationError, match="Role"):
            invite_member(admin.organization, admin, "x@example.com", role="owner")

    def test_existing_member_rejected(self) -> None:
        admin = MemberFactory(role="admin")
        existing = MemberFactory(organization=admin.organization)

        with pytest.raises(ValidationError, match="already a member"):
            invite_member(admin.organization, admin, existing.user.email)

    def test_duplicate_pending_invitation_rejected(self) -> None:
        admin = MemberFactory(role="admin")
        invite_member(admin.organization, admin, "x@example.com")

        with pytest.raises(ValidationError, match="already pending"):
            invite_member(admin.organization, admin, "X@example.com")

    def test_expired_invitation_can_be_reissued(self) -> None:
        admin = MemberFactory(role="admin")
        InvitationFactory(
            organization=admin.organization,
            email="x@example.com",
            expires_at=timezone.now() - timedelta(days=1),
        )

        invitation = invite_member(admin.organization, admin, "x@example.com")

        assert invitation.status == Invitation.Status.PENDING

    def test_admin_of_other_org_denied(self) -> None:
        admin = MemberFactory(role="admin")

        with pytest.raises(AccessDeniedError):
            invite_member(OrganizationFactory(), admin, "x@example.com")


@pytest.mark.django_db
class TestAcceptInvitation:
    def test_invite_accept_and_reuse(self, django_capture_on_commit_callbacks) -> None:
        """An invitation joins the invitee once; the token cannot be used again."""
        admin = MemberFactory(role="admin")
        org = admin.organization
        invitation = invite_member(org, admin, "carol@example.com", role="admin")

        with django_capture_on_commit_callbacks(execute=True):
            member = accept_invitation(invitation.token, name="Carol")

        assert member.user.email == "carol@example.com"
        assert member.user.name == "Carol"
        assert member.role == "admin"
        assert member.status == Member.Status.JOINED
        assert member.joined_at is not None
        assert member.invited_by == admin.user
        invitation.refresh_from_db()
        assert invitation.status == Invitation.Status.ACCEPTED
        assert invitation.used_at is not None
        assert get_current_usage(org).users_count == 2
        assert [m.to for m in mail.outbox] == [["carol@example.com"]]

        with pytest.raises(NotFoundError, match="Invitation not found"):
            accept_invitation(invitation.token)
        assert Member.objects.filter(organization=org, user=member.user).count() == 1

    def test_existing_user_is_reused(self) -> None:
        user = UserFactory(email="dave@example.com")
        invitation = InvitationFactory(email="dave@example.com")

        member = accept_invitation(invitation.token, user=user)

        assert member.user == user
        assert User.objects.filter(email="dave@example.com").count() == 1

    def test_wrong_user_denied(self) -> None:
        invitation = InvitationFactory(email="erin@example.com")

        with pytest.raises(AccessDeniedError):
            accept_invitation(invitation.token, user=UserFactory(email="mallory@example.com"))

        invitation.refresh_from_db()
        assert invitation.status == Invitation.Status.PENDING

    def test_expired_invitation(self) -> None:
        invitation = InvitationFactory(expires_at=timezone.now() - timedelta(seconds=1))

        with pytest.raises(ValidationError, match="Invitation has expired"):
            accept_invitation(invitation.token)

        invitation.refresh_from_db()
        assert invitation.status == Invitation.Status.EXPIRED

    def test_unknown_token(self) -> None:
        with pytest.raises(NotFoundError):
            accept_invitation("does-not-exist")

    def test_cancelled_invitation(self) -> None:
        invitation = InvitationFactory(status=Invitation.Status.CANCELLED)

        with pytest.raises(NotFoundError):
            accept_invitation(invitation.token)

    def test_former_member_rejoins(self) -> None:
        former = MemberFactory(status=Member.Status.LEFT)
        invitation = InvitationFactory(
            organization=former.organization, email=former.user.email, role="member"
        )

        member = accept_invitation(invitation.token)

        assert member.pk == former.pk
        assert member.status == Member.Status.JOINED


@pytest.mark.django_db
class TestInvitationListing:
    def test_pending_only(self) -> None:
        org = OrganizationFactory()
        pending = InvitationFactory(organization=org)
        InvitationFactory(organization=org, status=Invitation.Status.ACCEPTED)
        InvitationFactory()

        assert list_pending_invitations(org) == [pending]

    def test_cancel(self) -> None:
        invitation = InvitationFactory()

        cancel_invitation(invitation.organization, invitation.id)

        invitation.refresh_from_db()
        assert invitation.status == Invitation.Status.CANCELLED
        with pytest.raises(NotFoundError):
            accept_invitation(invitation.token)

    def test_cancel_other_orgs_invitation(self) -> None:
        invitation = InvitationFactory()

        with pytest.raises(NotFoundError):
            cancel_invitation(OrganizationFactory(), invitation.id)

    def test_cancel_unknown(self) -> None:
        with pytest.raises(NotFoundError):
            cancel_invitation(OrganizationFactory(), uuid.uuid4())


@pytest.mark.django_db
class TestMemberManagement:
    def test_list_members_joined_only(self) -> None:
        org = OrganizationFactory()
        joined = MemberFactory(organization=org)
        MemberFactory(organization=org, status=Member.Status.LEFT)
        MemberFactory(organization=org, status=Member.Status.INVITED)

        assert list_members(org) == [joined]

    def test_update_role(self) -> None:
        admin = MemberFactory(role="admin")
        target = MemberFactory(organization=admin.organization)

        updated = update_member_role(admin.organization, admin, target.user_id, "admin")

        assert updated.role == "admin"

    def test_cannot_change_own_role(self) -> None:
        admin = MemberFactory(role="admin")

        with pytest.raises(ValidationError, match="You cannot change your own role"):
            update_member_role(admin.organization, admin, admin.user_id, "member")

    def test_admin_cannot_demote_owner(self) -> None:
        admin = MemberFactory(role="admin")
        owner = MemberFactory(organization=admin.organization, role="owner")

        with pytest.raises(AccessDeniedError):
            update_member_role(admin.organization, admin, owner.user_id, "member")

    def test_member_cannot_change_roles(self) -> None:
        member = MemberFactory(role="member")
        other = MemberFactory(organization=member.organization)

        with pytest.raises(AccessDeniedError):
            update_member_role(member.organization, member, other.user_id, "admin")

    def test_unknown_target(self) -> None:
        admin = MemberFactory(role="admin")

        with pytest.raises(ValidationError, match="not a member"):
            update_member_role(admin.organization, admin, uuid.uuid4(), "admin")

    def test_remove_member(self) -> None:
        org, owner = create_organization("Acme", created_by=UserFactory())
        target = MemberFactory(organization=org)

        removed = remove_member(org, owner, target.user_id)

        assert removed.status == Member.Status.LEFT
        assert list_members(org) == [owner]
        assert get_current_usage(org).users_count == 1

    def test_removal_in_fresh_period_records_head_count(self) -> None:
        org, owner = create_organization("Acme", created_by=UserFactory())
        first = MemberFactory(organization=org)
        MemberFactory(organization=org)
        OrganizationUsage.objects.filter(organization=org).delete()

        remove_member(org, owner, first.user_id)

        assert get_current_usage(org).users_count == 2

    def test_join_in_fresh_period_counts_existing_members(self) -> None:
        admin = MemberFactory(role="admin")
        org = admin.organization
        MemberFactory(organization=org)
        invitation = InvitationFactory(organization=org, invited_by=admin.user)

        accept_invitation(invitation.token)

        assert get_current_usage(org).users_count == 3

    def test_cannot_remove_self(self) -> None:
        owner = MemberFactory(role="owner")

        with pytest.raises(ValidationError, match="You cannot remove yourself"):
            remove_member(owner.organization, owner, owner.user_id)

    def test_admin_cannot_remove_owner(self) -> None:
        admin = MemberFactory(role="admin")
        owner = MemberFactory(organization=admin.organization, role="owner")

        with pytest.raises(AccessDeniedError):
            remove_member(admin.organization, admin, owner.user_id)


@pytest.mark.django_db
class TestOrganizationProfile:
    def test_lists_joined_organizations_only(self) -> None:
        user = UserFactory()
        mine, _ = create_organization("Mine", created_by=user)
        joined = MemberFactory(user=user)
        MemberFactory(user=user, status=Member.Status.LEFT)
        OrganizationFactory()

        organizations, total = list_organizations(user)

        assert total == 2
        assert {o.pk for o in organizations} == {mine.pk, joined.organization_id}

    def test_partial_update_leaves_omitted_fields(self) -> None:
        org = OrganizationFactory(name="Acme", description="Widgets")

        update_organization(org, logo_url="https://cdn.example.com/acme.png")

        org.refresh_from_db()
        assert org.name == "Acme"
        assert org.description == "Widgets"
        assert org.logo_url == "https://cdn.example.com/acme.png"

    def test_update_name_and_description(self) -> None:
        org = OrganizationFactory(name="Acme", description="Widgets")

        update_organization(org, name="  Acme Labs ", description="")

        org.refresh_from_db()
        assert org.name == "Acme Labs"
        assert org.description == ""

    def test_blank_name_rejected(self) -> None:
        org = OrganizationFactory(name="Acme")

        with pytest.raises(ValidationError, match="name is required"):
            update_organization(org, name="   ")


@pytest.mark.django_db
class TestDeleteOrganization:
    def test_removes_everything_the_organization_owns(self) -> None:
        org, owner = create_organization("Doomed", created_by=UserFactory())
        plan = PlanFactory()
        subscription = create_subscription(org, plan.id, "monthly")
        invoice = InvoiceFactory(organization=org, subscription=subscription)
        InvoiceLineItemFactory(invoice=invoice)
        PaymentFactory(organization=org, invoice=invoice, subscription=subscription)
        PaymentMethodFactory(organization=org)
        InvitationFactory(organization=org, invited_by=owner.user)
        survivor = InvoiceFactory()

        delete_organization(org, owner)

        assert not Organization.objects.filter(pk=org.pk).exists()
        for model in (
            Member,
            Invitation,
            Subscription,
            OrganizationUsage,
            Invoice,
            Payment,
            PaymentMethod,
            BillingEvent,
        ):
            assert not model.objects.filter(organization_id=org.pk).exists(), model.__name__
        assert not InvoiceLineItem.objects.filter(invoice_id=invoice.pk).exists()
        assert Invoice.objects.filter(pk=survivor.pk).exists()
        assert Plan.objects.filter(pk=plan.pk).exists()
        assert User.objects.filter(pk=owner.user_id).exists()

    def test_admin_cannot_delete(self) -> None:
        admin = MemberFactory(role="admin")

        with pytest.raises(AccessDeniedError, match="Owner access required"):
            delete_organization(admin.organization, admin)
        assert Organization.objects.filter(pk=admin.organization_id).exists()

    def test_owner_of_another_organization_denied(self) -> None:
        owner = MemberFactory(role="owner")
        other = OrganizationFactory()

        with pytest.raises(AccessDeniedError):
            delete_organization(other, owner)
        assert Organization.objects.filter(pk=other.pk).exists()


@pytest.mark.django_db
class TestExpireInvitations:
    def test_expires_stale_pending_only(self) -> None:
        stale = InvitationFactory(expires_at=timezone.now() - timedelta(hours=1))
        fresh = InvitationFactory()
        accepted = InvitationFactory(
            expires_at=timezone.now() - timedelta(hours=1), status=Invitation.Status.ACCEPTED
        )

        assert expire_invitations(dry_run=True) == 1
        assert expire_invitations() == 1

        stale.refresh_from_db()
        fresh.refresh_from_db()
        accepted.refresh_from_db()
        assert stale.status == Invitation.Status.EXPIRED
        assert fresh.status == Invitation.Status.PENDING
        assert accepted.status == Invitation.Status.ACCEPTED
