# Overview: Service-layer operations for partners; encapsulates business logic and database work.

"""
Partner Service: partner resolution, isolation helpers and membership

WHY: Every partner-scoped read and write funnels through here, so a
partner role can never see or touch another partner's rows.

SECURITY INVARIANTS:
1. A user belongs to at most one active partner. New links are refused
   while another active link exists; resolution takes the lowest active
   link id if legacy data carries duplicates.
2. Only super_admin and provider_user bypass partner isolation.
3. An active partner always retains at least one active partner_admin.
4. Rows outside the caller's partner are reported as not found, never as
   forbidden, so their existence is not revealed.

USAGE:
    from portal.services import partner_service

    partner_id = partner_service.get_user_partner_id(user.id)
    scope = partner_service.partner_scope(user, partner_id)  # None = all partners
"""

import logging

from flask import has_request_context, request

from ..extensions import db
from ..models import Partner, PartnerUser, User
from ..money import validate_discount_pct
from ..permissions import (
    Role,
    PARTNER_MEMBER_ROLES,
    PRIVILEGED_ROLES,
    can_bypass_partner_isolation,
)
from ..validation import ValidationError, ConflictError, NotFoundError, clean_str
from .permission_service import PermissionDeniedError, log_security_event, user_has_permission
from portal.time_utils import utcnow


logger = logging.getLogger(__name__)


PARTNER_WRITABLE_FIELDS = (
    "name",
    "code",
    "contact_name",
    "contact_email",
    "contact_phone",
    "address",
    "discount_rate",
)


# =============================================================================
# RESOLUTION
# =============================================================================

def get_user_membership(user_id: int) -> PartnerUser | None:
    """First active link (lowest id) to an active partner, or None."""
    return (
        db.session.query(PartnerUser)
        .join(Partner, Partner.id == PartnerUser.partner_id)
        .filter(
            PartnerUser.user_id == user_id,
            PartnerUser.is_active.is_(True),
            Partner.is_active.is_(True),
        )
        .order_by(PartnerUser.id.asc())
        .first()
    )


def get_user_partner_id(user_id: int) -> int | None:
    membership = get_user_membership(user_id)
    return membership.partner_id if membership else None


def get_active_partner(partner_id: int) -> Partner | None:
    return db.session.query(Partner).filter_by(id=partner_id, is_active=True).first()


def partner_scope(user: User, user_partner_id: int | None) -> int | None:
    """
    Partner filter to apply for this caller.

    Returns None when the caller may see every partner. Raises
    PermissionDeniedError for a partner-scoped caller with no active
    membership: such a caller sees nothing rather than everything.
    """
    if can_bypass_partner_isolation(user.role):
        return None
    if user_partner_id is None:
        raise PermissionDeniedError("User is not linked to an active partner")
    return user_partner_id


def _log_partner_access_denied(user: User, user_partner_id: int | None, reason: str) -> None:
    resource = request.path if has_request_context() else None
    ip_address = request.remote_addr if has_request_context() else None
    log_security_event(
        user_id=user.id,
        event_type="PARTNER_ACCESS_DENIED",
        success=False,
        resource=resource,
        reason=reason,
        ip_address=ip_address,
        partner_id=user_partner_id,
    )


def require_partner_access(user: User, user_partner_id: int | None, partner_id: int) -> Partner:
    """
    Load an active partner the caller may act on.

    Raises NotFoundError if it does not exist, is inactive or belongs to a
    different partner than the caller's.
    """
    scope = partner_scope(user, user_partner_id)
    partner = get_active_partner(partner_id)
    if partner is None:
        raise NotFoundError("Partner not found")
    if scope is not None and partner.id != scope:
        _log_partner_access_denied(
            user, user_partner_id, f"Partner {partner_id} is outside caller partner {scope}"
        )
        raise NotFoundError("Partner not found")
    return partner


def ensure_row_in_scope(user: User, user_partner_id: int | None, row_partner_id: int, what: str) -> None:
    """Raise NotFoundError (and log) if a row belongs to another partner."""
    scope = partner_scope(user, user_partner_id)
    if scope is not None and row_partner_id != scope:
        _log_partner_access_denied(
            user, user_partner_id, f"{what} of partner {row_partner_id} is outside caller partner {scope}"
        )
        raise NotFoundError(f"{what} not found")


# =============================================================================
# PARTNERS
# =============================================================================

def _apply_partner_fields(partner: Partner, data: dict) -> None:
    for key in data:
        if key not in PARTNER_WRITABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

    if "name" in data:
        partner.name = clean_str(data["name"], "name", max_length=128, required=True)
    if "code" in data:
        code = clean_str(data["code"], "code", max_length=32, required=True).upper()
        clash = db.session.query(Partner).filter(Partner.code == code)
        if partner.id is not None:
            clash = clash.filter(Partner.id != partner.id)
        if clash.first():
            raise ConflictError(f"Partner code already exists: {code}")
        partner.code = code
    if "contact_name" in data:
        partner.contact_name = clean_str(data["contact_name"], "contact_name", max_length=128)
    if "contact_email" in data:
        partner.contact_email = clean_str(data["contact_email"], "contact_email", max_length=255)
    if "contact_phone" in data:
        partner.contact_phone = clean_str(data["contact_phone"], "contact_phone", max_length=32)
    if "address" in data:
        partner.address = clean_str(data["address"], "address")
    if "discount_rate" in data:
        raw = data["discount_rate"]
        partner.discount_rate = None if raw in (None, "") else validate_discount_pct(raw)


def list_partners(user: User, user_partner_id: int | None, include_inactive: bool = False) -> list[Partner]:
    scope = partner_scope(user, user_partner_id)
    query = db.session.query(Partner)
    if scope is not None:
        query = query.filter(Partner.id == scope)
    if not include_inactive or scope is not None:
        query = query.filter(Partner.is_active.is_(True))
    return query.order_by(Partner.name.asc()).all()


def create_partner(data: dict) -> Partner:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    if not data.get("name") or not data.get("code"):
        raise ValidationError("name and code are required")

    partner = Partner(is_active=True)
    _apply_partner_fields(partner, data)
    db.session.add(partner)
    db.session.commit()

    logger.info("Partner %s (%s) created", partner.id, partner.code)
    return partner


def update_partner(partner_id: int, data: dict) -> Partner:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    partner = get_active_partner(partner_id)
    if partner is None:
        raise NotFoundError("Partner not found")

    _apply_partner_fields(partner, data)
    db.session.commit()
    return partner


def deactivate_partner(partner_id: int) -> Partner:
    """Soft delete. Members lose partner resolution while it is inactive."""
    partner = get_active_partner(partner_id)
    if partner is None:
        raise NotFoundError("Partner not found")
    partner.is_active = False
    db.session.commit()

    logger.info("Partner %s deactivated", partner.id)
    return partner


# =============================================================================
# MEMBERSHIP
# =============================================================================

def _parse_member_role(role) -> Role:
    parsed = Role.parse(role)
    if parsed not in PARTNER_MEMBER_ROLES:
        raise ValidationError("role must be one of: partner_admin, partner_user, partner_customer")
    return parsed


def list_members(partner_id: int, include_inactive: bool = False) -> list[PartnerUser]:
    query = db.session.query(PartnerUser).filter(PartnerUser.partner_id == partner_id)
    if not include_inactive:
        query = query.filter(PartnerUser.is_active.is_(True))
    return query.order_by(PartnerUser.id.asc()).all()


def get_active_link(partner_id: int, user_id: int) -> PartnerUser | None:
    return db.session.query(PartnerUser).filter_by(
        partner_id=partner_id, user_id=user_id, is_active=True
    ).order_by(PartnerUser.id.asc()).first()


def count_active_admins(partner_id: int) -> int:
    return (
        db.session.query(PartnerUser)
        .join(User, User.id == PartnerUser.user_id)
        .filter(
            PartnerUser.partner_id == partner_id,
            PartnerUser.role == Role.PARTNER_ADMIN.value,
            PartnerUser.is_active.is_(True),
            User.is_active.is_(True),
        )
        .count()
    )


def ensure_not_last_partner_admin(link: PartnerUser, new_role: Role | None = None) -> None:
    """
    Refuse to take away the only partner_admin of an active partner.

    new_role=None means the link is being removed.
    """
    if link.role != Role.PARTNER_ADMIN.value:
        return
    if new_role == Role.PARTNER_ADMIN:
        return
    partner = db.session.get(Partner, link.partner_id)
    if partner is None or not partner.is_active:
        return
    if count_active_admins(link.partner_id) <= 1:
        logger.warning(
            "Refused to %s last partner admin user=%s partner=%s",
            "remove" if new_role is None else "demote", link.user_id, link.partner_id,
        )
        raise PermissionDeniedError(
            "Cannot remove or demote the last partner admin. Add another partner admin first."
        )


def create_membership(partner_id: int, user: User, role) -> PartnerUser:
    """
    Link a user to a partner and align the user's role with the link role.

    Does not commit; callers own the transaction.
    """
    member_role = _parse_member_role(role)

    if not user.is_active:
        raise ValidationError("User is not active")
    if user.role_enum in PRIVILEGED_ROLES:
        raise ValidationError("Provider accounts cannot be partner members")

    existing = db.session.query(PartnerUser).filter_by(user_id=user.id, is_active=True).first()
    if existing:
        if existing.partner_id == partner_id:
            raise ConflictError("User is already a member of this partner")
        raise ConflictError("User already belongs to another partner")

    link = PartnerUser(partner_id=partner_id, user_id=user.id, role=member_role.value, is_active=True)
    db.session.add(link)
    user.role = member_role.value
    db.session.flush()
    return link


def _require_member_manager(actor: User, actor_partner_id: int | None, partner_id: int) -> Partner:
    if not user_has_permission(actor, "user:manage_partner"):
        raise PermissionDeniedError("Permission denied: user:manage_partner")
    return require_partner_access(actor, actor_partner_id, partner_id)


def add_member(actor: User, actor_partner_id: int | None, partner_id: int, user_id: int, role) -> PartnerUser:
    _require_member_manager(actor, actor_partner_id, partner_id)

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found")

    try:
        link = create_membership(partner_id, user, role)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("User %s added to partner %s as %s by user %s", user.id, partner_id, link.role, actor.id)
    return link


def change_member_role(
    actor: User, actor_partner_id: int | None, partner_id: int, user_id: int, role
) -> PartnerUser:
    _require_member_manager(actor, actor_partner_id, partner_id)
    new_role = _parse_member_role(role)

    link = get_active_link(partner_id, user_id)
    if link is None:
        raise NotFoundError("Partner member not found")
    if link.role == new_role.value:
        return link

    ensure_not_last_partner_admin(link, new_role)

    link.role = new_role.value
    if link.user is not None:
        link.user.role = new_role.value
    db.session.commit()

    logger.info("Partner %s member %s role changed to %s by user %s", partner_id, user_id, new_role.value, actor.id)
    return link


def remove_member(actor: User, actor_partner_id: int | None, partner_id: int, user_id: int) -> PartnerUser:
    _require_member_manager(actor, actor_partner_id, partner_id)

    if user_id == actor.id:
        raise PermissionDeniedError("You cannot remove yourself from a partner")

    link = get_active_link(partner_id, user_id)
    if link is None:
        raise NotFoundError("Partner member not found")

    ensure_not_last_partner_admin(link)

    link.is_active = False
    link.removed_at = utcnow()
    db.session.commit()

    logger.info("User %s removed from partner %s by user %s", user_id, partner_id, actor.id)
    return link


def list_partner_customers(actor: User, actor_partner_id: int | None) -> list[PartnerUser]:
    """Active partner_customer members of the caller's own partner (partner_admin only)."""
    if actor.role_enum != Role.PARTNER_ADMIN:
        raise PermissionDeniedError("Only partner admins can list their customers")
    if actor_partner_id is None:
        raise PermissionDeniedError("User is not linked to an active partner")

    return (
        db.session.query(PartnerUser)
        .join(User, User.id == PartnerUser.user_id)
        .filter(
            PartnerUser.partner_id == actor_partner_id,
            PartnerUser.role == Role.PARTNER_CUSTOMER.value,
            PartnerUser.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(User.username.asc())
        .all()
    )
