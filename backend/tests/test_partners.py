# Overview: Pytest coverage for partner isolation, membership and the last-admin guard.

"""
Partner Isolation & Membership Tests

SECURITY TESTS: a partner-scoped caller never reaches another partner's
rows, and a partner never loses its last administrator.
"""

import pytest

from portal.models import PartnerUser, SecurityEvent, User
from portal.permissions import Role
from portal.services import partner_service
from portal.services.permission_service import PermissionDeniedError
from portal.validation import ConflictError, NotFoundError, ValidationError
from conftest import make_user


class TestResolution:

    def test_membership_resolves_partner(self, db_session, partner_a, seller_a):
        assert partner_service.get_user_partner_id(seller_a.id) == partner_a.id

    def test_inactive_partner_resolves_to_none(self, db_session, partner_a, seller_a):
        partner_a.is_active = False
        db_session.commit()
        assert partner_service.get_user_partner_id(seller_a.id) is None

    def test_scope(self, db_session, partner_a, super_admin, seller_a):
        assert partner_service.partner_scope(super_admin, None) is None
        assert partner_service.partner_scope(seller_a, partner_a.id) == partner_a.id

    def test_unlinked_partner_role_sees_nothing(self, db_session, partner_a):
        orphan = make_user(db_session, "orphan", Role.PARTNER_USER)
        with pytest.raises(PermissionDeniedError):
            partner_service.partner_scope(orphan, None)

    def test_cross_partner_access_logged(self, db_session, partner_a, partner_b, seller_a):
        with pytest.raises(NotFoundError):
            partner_service.require_partner_access(seller_a, partner_a.id, partner_b.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="PARTNER_ACCESS_DENIED").one()
        assert event.user_id == seller_a.id
        assert event.partner_id == partner_a.id


class TestPartnerCrud:

    def test_create_uppercases_code(self, db_session):
        partner = partner_service.create_partner({"name": "Gamma", "code": "gmm", "discount_rate": "7.5"})
        assert partner.code == "GMM"
        assert float(partner.discount_rate) == 7.5

    def test_duplicate_code(self, db_session, partner_a):
        with pytest.raises(ConflictError):
            partner_service.create_partner({"name": "Other", "code": "acme"})

    def test_bad_discount(self, db_session):
        with pytest.raises(ValidationError):
            partner_service.create_partner({"name": "Delta", "code": "DLT", "discount_rate": 150})

    def test_unknown_field(self, db_session, partner_a):
        with pytest.raises(ValidationError):
            partner_service.update_partner(partner_a.id, {"is_active": False})

    def test_deactivate_hides_from_list(self, db_session, partner_a, partner_b, super_admin):
        partner_service.deactivate_partner(partner_b.id)
        assert [p.id for p in partner_service.list_partners(super_admin, None)] == [partner_a.id]
        assert len(partner_service.list_partners(super_admin, None, include_inactive=True)) == 2

    def test_partner_roles_list_only_own(self, db_session, partner_a, partner_b, seller_a):
        assert [p.id for p in partner_service.list_partners(seller_a, partner_a.id)] == [partner_a.id]


class TestMembership:

    def test_add_member_syncs_role(self, db_session, partner_a, admin_a, end_user):
        link = partner_service.add_member(admin_a, partner_a.id, partner_a.id, end_user.id, "partner_customer")
        assert link.role == "partner_customer"
        assert db_session.get(User, end_user.id).role == "partner_customer"

    def test_single_active_membership(self, db_session, partner_a, partner_b, super_admin, seller_a):
        with pytest.raises(ConflictError, match="another partner"):
            partner_service.add_member(super_admin, None, partner_b.id, seller_a.id, "partner_user")

    def test_provider_accounts_cannot_join(self, db_session, partner_a, super_admin, provider_user):
        with pytest.raises(ValidationError):
            partner_service.add_member(super_admin, None, partner_a.id, provider_user.id, "partner_user")

    def test_partner_admin_limited_to_own_partner(self, db_session, partner_a, partner_b, admin_a, end_user):
        with pytest.raises(NotFoundError):
            partner_service.add_member(admin_a, partner_a.id, partner_b.id, end_user.id, "partner_user")

    def test_partner_user_cannot_manage_members(self, db_session, partner_a, seller_a, end_user):
        with pytest.raises(PermissionDeniedError):
            partner_service.add_member(seller_a, partner_a.id, partner_a.id, end_user.id, "partner_user")

    def test_invalid_member_role(self, db_session, partner_a, admin_a, end_user):
        with pytest.raises(ValidationError):
            partner_service.add_member(admin_a, partner_a.id, partner_a.id, end_user.id, "super_admin")

    def test_remove_member_soft_deletes(self, db_session, partner_a, admin_a, seller_a):
        link = partner_service.remove_member(admin_a, partner_a.id, partner_a.id, seller_a.id)
        assert link.is_active is False
        assert link.removed_at is not None
        assert partner_service.get_user_partner_id(seller_a.id) is None

    def test_cannot_remove_self(self, db_session, partner_a, admin_a):
        with pytest.raises(PermissionDeniedError, match="yourself"):
            partner_service.remove_member(admin_a, partner_a.id, partner_a.id, admin_a.id)

    def test_rejoin_after_removal(self, db_session, partner_a, partner_b, super_admin, seller_a):
        partner_service.remove_member(super_admin, None, partner_a.id, seller_a.id)
        link = partner_service.add_member(super_admin, None, partner_b.id, seller_a.id, "partner_user")
        assert link.partner_id == partner_b.id
        assert partner_service.get_user_partner_id(seller_a.id) == partner_b.id


class TestLastPartnerAdmin:

    def test_demoting_last_admin_rejected_then_allowed(self, db_session, partner_a, super_admin, admin_a, seller_a):
        """Scenario E."""
        with pytest.raises(PermissionDeniedError, match="last partner admin"):
            partner_service.change_member_role(super_admin, None, partner_a.id, admin_a.id, "partner_user")

        partner_service.change_member_role(super_admin, None, partner_a.id, seller_a.id, "partner_admin")
        link = partner_service.change_member_role(super_admin, None, partner_a.id, admin_a.id, "partner_user")

        assert link.role == "partner_user"
        assert db_session.get(User, admin_a.id).role == "partner_user"
        assert partner_service.count_active_admins(partner_a.id) == 1

    def test_removing_last_admin_rejected(self, db_session, partner_a, super_admin, admin_a):
        with pytest.raises(PermissionDeniedError):
            partner_service.remove_member(super_admin, None, partner_a.id, admin_a.id)
        assert db_session.query(PartnerUser).filter_by(user_id=admin_a.id, is_active=True).count() == 1

    def test_same_role_is_noop(self, db_session, partner_a, super_admin, admin_a):
        link = partner_service.change_member_role(super_admin, None, partner_a.id, admin_a.id, "partner_admin")
        assert link.role == "partner_admin"


class TestPartnerCustomers:

    def test_admin_lists_customers(self, db_session, partner_a, admin_a, customer_a, seller_a):
        links = partner_service.list_partner_customers(admin_a, partner_a.id)
        assert [link.user_id for link in links] == [customer_a.id]

    def test_other_roles_refused(self, db_session, partner_a, seller_a):
        with pytest.raises(PermissionDeniedError):
            partner_service.list_partner_customers(seller_a, partner_a.id)
