# Overview: Service-layer operations for user administration.

"""
User administration: listing, role changes and deactivation

GUARDS:
- The last active super_admin can be neither demoted nor deleted
- Nobody deletes their own account
- The sole partner_admin of an active partner keeps that role (see
  partner_service.ensure_not_last_partner_admin)
- Users still linked to a partner, or with quotes/orders to their name,
  are not deleted; unlink them first

Deletion is a soft delete (is_active=False) and revokes live sessions.
"""

import logging

from ..extensions import db
from ..models import Order, PartnerUser, Quote, User
from ..permissions import Role, PARTNER_MEMBER_ROLES, PRIVILEGED_ROLES, can_bypass_partner_isolation
from ..validation import ValidationError, ConflictError, NotFoundError
from . import partner_service, session_service
from .permission_service import PermissionDeniedError, user_has_permission


logger = logging.getLogger(__name__)


def count_active_super_admins() -> int:
    return db.session.query(User).filter(
        User.role == Role.SUPER_ADMIN.value,
        User.is_active.is_(True),
    ).count()


def _get_active_user(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id, is_active=True).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(actor: User, actor_partner_id: int | None, include_inactive: bool = False) -> list[User]:
    if not user_has_permission(actor, "user:view"):
        raise PermissionDeniedError("Permission denied: user:view")

    query = db.session.query(User)
    if not can_bypass_partner_isolation(actor.role):
        scope = partner_service.partner_scope(actor, actor_partner_id)
        member_ids = db.session.query(PartnerUser.user_id).filter(
            PartnerUser.partner_id == scope,
            PartnerUser.is_active.is_(True),
        )
        query = query.filter(User.id.in_(member_ids))
        include_inactive = False

    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.username.asc()).all()


def list_orphaned_users() -> list[User]:
    """Active users with a partner-scoped role but no active partner link."""
    linked = db.session.query(PartnerUser.user_id).filter(PartnerUser.is_active.is_(True))
    return (
        db.session.query(User)
        .filter(
            User.is_active.is_(True),
            User.role.in_([role.value for role in PARTNER_MEMBER_ROLES]),
            User.id.notin_(linked),
        )
        .order_by(User.username.asc())
        .all()
    )


def change_role(actor: User, user_id: int, role) -> User:
    if not user_has_permission(actor, "user:manage"):
        raise PermissionDeniedError("Permission denied: user:manage")

    new_role = Role.parse(role)
    if new_role is None:
        raise ValidationError(f"Invalid role: {role}")

    user = _get_active_user(user_id)
    if user.role == new_role.value:
        return user

    if user.role == Role.SUPER_ADMIN.value and count_active_super_admins() <= 1:
        logger.warning("Refused to demote last super admin user=%s", user.id)
        raise PermissionDeniedError("Cannot demote the last super admin")

    link = partner_service.get_user_membership(user.id)
    if link is not None:
        if new_role in PRIVILEGED_ROLES or new_role not in PARTNER_MEMBER_ROLES:
            raise ValidationError("Remove the user from their partner before assigning a non-partner role")
        partner_service.ensure_not_last_partner_admin(link, new_role)
        link.role = new_role.value

    previous = user.role
    user.role = new_role.value
    db.session.commit()

    logger.info("User %s role changed %s -> %s by user %s", user.id, previous, new_role.value, actor.id)
    return user


def delete_user(actor: User, user_id: int) -> User:
    if not user_has_permission(actor, "user:manage"):
        raise PermissionDeniedError("Permission denied: user:manage")

    if user_id == actor.id:
        raise PermissionDeniedError("You cannot delete your own account")

    user = _get_active_user(user_id)

    if user.role == Role.SUPER_ADMIN.value and count_active_super_admins() <= 1:
        logger.warning("Refused to delete last super admin user=%s", user.id)
        raise PermissionDeniedError("Cannot delete the last super admin")

    if db.session.query(PartnerUser.id).filter_by(user_id=user.id, is_active=True).first():
        raise ConflictError("User is still linked to a partner; remove the membership first")

    has_quotes = db.session.query(Quote.id).filter(
        db.or_(Quote.created_by_user_id == user.id, Quote.customer_user_id == user.id)
    ).first()
    has_orders = db.session.query(Order.id).filter(
        db.or_(Order.created_by_user_id == user.id, Order.customer_user_id == user.id)
    ).first()
    if has_quotes or has_orders:
        raise ConflictError("User has quotes or orders and cannot be deleted")

    user.is_active = False
    session_service.revoke_all_user_sessions(user.id, reason="Account deactivated")
    db.session.commit()

    logger.info("User %s deactivated by user %s", user.id, actor.id)
    return user
