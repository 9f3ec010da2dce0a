# Overview: Pytest coverage for registration, sessions and user administration guards.

from datetime import timedelta

import pytest

from portal.models import PartnerUser, SessionToken, User
from portal.permissions import Role
from portal.services import auth_service, session_service, user_service
from portal.services.auth_service import PasswordValidationError
from portal.services.permission_service import PermissionDeniedError
from portal.time_utils import utcnow
from portal.validation import ConflictError, NotFoundError, ValidationError
from conftest import PASSWORD


def _register(actor, actor_partner_id=None, **overrides):
    data = {
        "username": "newbie",
        "email": "newbie@example.com",
        "password": PASSWORD,
        "role": "partner_user",
    }
    data.update(overrides)
    return auth_service.register_user(actor, actor_partner_id=actor_partner_id, **data)


class TestPasswords:

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_roundtrip(self, app):
        hashed = auth_service.hash_password(PASSWORD)
        assert hashed != PASSWORD
        assert auth_service.verify_password(PASSWORD, hashed)
        assert not auth_service.verify_password("Wrong123!", hashed)
        assert not auth_service.verify_password(PASSWORD, "not-a-hash")


class TestRegistration:

    def test_super_admin_links_partner_role(self, db_session, partner_a, super_admin):
        user, link = _register(super_admin, partner_id=partner_a.id)
        assert user.role == "partner_user"
        assert link.partner_id == partner_a.id

    def test_super_admin_creates_provider_user(self, db_session, super_admin):
        user, link = _register(super_admin, role="provider_user")
        assert user.role == "provider_user"
        assert link is None

    def test_provider_role_cannot_be_linked(self, db_session, partner_a, super_admin):
        with pytest.raises(ValidationError):
            _register(super_admin, role="provider_user", partner_id=partner_a.id)

    def test_partner_admin_registers_into_own_partner(self, db_session, partner_a, admin_a):
        user, link = _register(admin_a, actor_partner_id=partner_a.id, role="partner_customer")
        assert link.partner_id == partner_a.id
        assert user.role == "partner_customer"

    def test_partner_admin_cannot_create_admins(self, db_session, partner_a, admin_a):
        with pytest.raises(PermissionDeniedError):
            _register(admin_a, actor_partner_id=partner_a.id, role="partner_admin")

    def test_partner_admin_cannot_target_other_partner(self, db_session, partner_a, partner_b, admin_a):
        with pytest.raises(PermissionDeniedError):
            _register(admin_a, actor_partner_id=partner_a.id, partner_id=partner_b.id)

    def test_duplicate_username(self, db_session, super_admin, seller_a):
        with pytest.raises(ConflictError):
            _register(super_admin, username="seller_a", email="fresh@example.com")

    def test_failed_registration_leaves_no_user(self, db_session, partner_a, super_admin):
        with pytest.raises(PasswordValidationError):
            _register(super_admin, partner_id=partner_a.id, password="weak")
        assert db_session.query(User).filter_by(username="newbie").count() == 0
        assert db_session.query(PartnerUser).count() == 0

    def test_partner_user_cannot_register(self, db_session, partner_a, seller_a):
        with pytest.raises(PermissionDeniedError):
            _register(seller_a, actor_partner_id=partner_a.id)


class TestSessions:

    def test_login_session_resolves_partner(self, db_session, partner_a, seller_a):
        session, token = session_service.create_session(seller_a.id)
        context = session_service.validate_session(token)
        assert context.user.id == seller_a.id
        assert context.role == Role.PARTNER_USER
        assert context.partner_id == partner_a.id

    def test_revoked_token_rejected(self, db_session, seller_a):
        _, token = session_service.create_session(seller_a.id)
        assert session_service.revoke_session(token)
        assert session_service.validate_session(token) is None

    def test_only_hash_is_stored(self, db_session, seller_a):
        _, token = session_service.create_session(seller_a.id)
        stored = db_session.query(SessionToken).one()
        assert stored.token_hash != token
        assert stored.token_hash == session_service.hash_token(token)

    def test_authenticate_by_email(self, db_session, seller_a):
        assert auth_service.authenticate("seller_a@example.com", PASSWORD).id == seller_a.id
        assert auth_service.authenticate("seller_a", "Wrong123!") is None

    def test_idle_session_revoked(self, db_session, seller_a):
        session, token = session_service.create_session(seller_a.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert session.revoked_reason == "Idle timeout"

    def test_purge_expired_sessions(self, db_session, seller_a, customer_a):
        stale, _ = session_service.create_session(seller_a.id)
        _, live_token = session_service.create_session(customer_a.id)
        stale.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert session_service.purge_expired_sessions() == 1
        assert stale.is_revoked is True
        assert session_service.validate_session(live_token) is not None


class TestUserAdministration:

    def test_last_super_admin_cannot_be_demoted(self, db_session, super_admin):
        with pytest.raises(PermissionDeniedError, match="last super admin"):
            user_service.change_role(super_admin, super_admin.id, "provider_user")

        other = User(username="ops", email="ops@example.com", password_hash="x", role="super_admin", is_active=True)
        db_session.add(other)
        db_session.commit()
        assert user_service.change_role(super_admin, other.id, "provider_user").role == "provider_user"

    def test_cannot_delete_self(self, db_session, super_admin):
        with pytest.raises(PermissionDeniedError):
            user_service.delete_user(super_admin, super_admin.id)

    def test_linked_user_cannot_be_deleted(self, db_session, super_admin, seller_a):
        with pytest.raises(ConflictError):
            user_service.delete_user(super_admin, seller_a.id)

    def test_delete_deactivates_and_revokes_sessions(self, db_session, super_admin, end_user):
        _, token = session_service.create_session(end_user.id)
        user = user_service.delete_user(super_admin, end_user.id)

        assert user.is_active is False
        assert session_service.validate_session(token) is None
        with pytest.raises(NotFoundError):
            user_service.delete_user(super_admin, end_user.id)

    def test_role_change_syncs_partner_link(self, db_session, partner_a, super_admin, admin_a, seller_a):
        user_service.change_role(super_admin, seller_a.id, "partner_customer")
        link = db_session.query(PartnerUser).filter_by(user_id=seller_a.id, is_active=True).one()
        assert link.role == "partner_customer"

    def test_linked_user_cannot_become_provider(self, db_session, partner_a, super_admin, seller_a):
        with pytest.raises(ValidationError):
            user_service.change_role(super_admin, seller_a.id, "provider_user")

    def test_last_partner_admin_guard_applies(self, db_session, partner_a, super_admin, admin_a):
        with pytest.raises(PermissionDeniedError):
            user_service.change_role(super_admin, admin_a.id, "partner_user")

    def test_orphaned_users(self, db_session, partner_a, super_admin, seller_a):
        orphan, _ = _register(super_admin, role="partner_customer")
        assert [u.id for u in user_service.list_orphaned_users()] == [orphan.id]

    def test_partner_roles_list_own_members(self, db_session, partner_a, partner_b, admin_a, seller_a, seller_b):
        names = [u.username for u in user_service.list_users(admin_a, partner_a.id)]
        assert names == ["admin_a", "seller_a"]
