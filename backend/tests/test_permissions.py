# Overview: Pytest coverage for the static role/permission table and its enforcement.

"""
Permission table tests.

Verifies:
- Role parsing is case-insensitive and closed
- Each role carries exactly the documented grants
- Inactive users hold no permissions
- Denials raise and are written to security_events
"""

import pytest

from portal.models import SecurityEvent
from portal.permissions import (
    Role,
    can_bypass_partner_isolation,
    can_manage_role,
    get_all_permission_codes,
    get_permissions_by_category,
    has_permission,
    permissions_for_role,
    validate_permission_code,
)
from portal.services import permission_service
from portal.services.permission_service import PermissionDeniedError


class TestRoleParsing:

    def test_case_insensitive(self):
        assert Role.parse("Partner_Admin") == Role.PARTNER_ADMIN
        assert Role.parse(" super_admin ") == Role.SUPER_ADMIN

    @pytest.mark.parametrize("value", ["admin", "", None, 3, "cashier"])
    def test_unknown_roles(self, value):
        assert Role.parse(value) is None


class TestPermissionTable:
    """Role grants match the published matrix."""

    def test_super_admin_has_everything(self):
        assert permissions_for_role(Role.SUPER_ADMIN) == frozenset(get_all_permission_codes())

    def test_provider_user(self):
        granted = permissions_for_role("provider_user")
        assert {"product:manage", "quote:manage", "order:manage", "analytics:view"} <= granted
        assert "partner:manage" not in granted
        assert "user:manage" not in granted
        assert "system:admin" not in granted

    def test_partner_admin(self):
        granted = permissions_for_role("partner_admin")
        assert {"user:create", "user:manage_partner", "quote:manage", "analytics:view"} <= granted
        assert "order:manage" not in granted
        assert "product:manage" not in granted

    def test_partner_user(self):
        granted = permissions_for_role("partner_user")
        assert "quote:create" in granted
        assert "quote:manage" not in granted
        assert "analytics:view" not in granted

    def test_partner_customer(self):
        assert permissions_for_role("partner_customer") == frozenset({
            "product:view", "quote:view", "quote:accept", "quote:reject", "order:view",
        })

    def test_end_user_catalog_only(self):
        assert permissions_for_role(Role.END_USER) == frozenset({"product:view"})

    def test_exact_match_only(self):
        assert has_permission("partner_user", "quote:create")
        assert not has_permission("partner_user", "quote:*")
        assert not has_permission("bogus", "product:view")
        assert not has_permission("super_admin", "product:delete")

    def test_codes_and_categories(self):
        assert validate_permission_code("order:manage")
        assert not validate_permission_code("order:delete")
        codes = [p[0] for p in get_permissions_by_category("QUOTES")]
        assert codes == ["quote:view", "quote:create", "quote:manage", "quote:accept", "quote:reject"]


class TestHierarchy:

    def test_strictly_greater(self):
        assert can_manage_role("super_admin", "provider_user")
        assert can_manage_role("partner_admin", "partner_customer")
        assert not can_manage_role("partner_user", "partner_user")
        assert not can_manage_role("partner_customer", "end_user")

    def test_bypass_isolation(self):
        assert can_bypass_partner_isolation("super_admin")
        assert can_bypass_partner_isolation("provider_user")
        assert not can_bypass_partner_isolation("partner_admin")
        assert not can_bypass_partner_isolation(None)


class TestEnforcement:

    def test_inactive_user_has_no_permissions(self, db_session, seller_a):
        seller_a.is_active = False
        db_session.commit()
        assert permission_service.get_user_permissions(seller_a) == set()
        assert not permission_service.user_has_permission(seller_a, "product:view")

    def test_denial_is_logged(self, db_session, customer_a, partner_a):
        with pytest.raises(PermissionDeniedError):
            permission_service.require_permission(
                user=customer_a,
                permission_code="order:manage",
                resource="/api/orders/convert",
                partner_id=partner_a.id,
            )

        event = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == customer_a.id
        assert event.partner_id == partner_a.id
        assert event.success is False
        assert "order:manage" in event.reason

    def test_recent_events_newest_first(self, db_session, seller_a):
        for action in ("A", "B"):
            permission_service.log_security_event(
                user_id=seller_a.id, event_type="PERMISSION_DENIED", success=False, action=action,
            )
        events = permission_service.get_recent_security_events(limit=5, event_type="PERMISSION_DENIED")
        assert [e.action for e in events] == ["B", "A"]
