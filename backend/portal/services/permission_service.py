# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and create audit trail.
Every denial is logged for security monitoring.

Permissions come from the static role table in portal.permissions; there
are no per-user grants. This module adds the audit side: who was denied
what, where.

DESIGN PRINCIPLES:
- Fail closed: unknown role or inactive user has no permissions
- Log denials only: Permission grants are not logged
"""

import logging

from ..extensions import db
from ..models import User, SecurityEvent
from ..permissions import permissions_for_role, has_permission
from portal.time_utils import utcnow


logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission (403)."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    partner_id: int | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - PARTNER_ACCESS_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCESS
    - LOGOUT

    commit=False lets a caller record the event inside its own
    transaction; the default commits immediately so denials survive the
    rollback of the request that triggered them.
    """
    event = SecurityEvent(
        user_id=user_id,
        partner_id=partner_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    if commit:
        db.session.commit()

    if not success:
        logger.warning("Security event %s user=%s action=%s reason=%s", event_type, user_id, action, reason)

    return event


def get_user_permissions(user: User | None) -> set[str]:
    """
    Get all permission codes for a user.

    Returns set of permission codes (e.g., {"quote:view", "order:view"}).
    Inactive users have none.
    """
    if user is None or not user.is_active:
        return set()
    return set(permissions_for_role(user.role))


def user_has_permission(user: User | None, permission_code: str) -> bool:
    """
    Check if user has a specific permission.

    WHY: Core permission check function. Used by decorators and services.
    """
    if user is None or not user.is_active:
        return False
    return has_permission(user.role, permission_code)


def require_permission(
    user: User,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    partner_id: int | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Denials are written to security_events.

    Usage:
        require_permission(g.current_user, "quote:manage", resource=request.path)
    """
    if not user_has_permission(user, permission_code):
        # Log only denials (policy: no granted logs)
        log_security_event(
            user_id=user.id if user else None,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=permission_code,
            reason=f"Missing permission: {permission_code}",
            ip_address=ip_address,
            user_agent=user_agent,
            partner_id=partner_id,
        )
        raise PermissionDeniedError(f"Permission denied: {permission_code}")


def get_recent_security_events(limit: int = 100, event_type: str | None = None) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    return query.order_by(SecurityEvent.id.desc()).limit(limit).all()
