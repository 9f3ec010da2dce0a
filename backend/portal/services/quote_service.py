# Overview: Service-layer operations for quotes; encapsulates business logic and database work.

"""
Quote Service: authoring, visibility and the quote state machine

States: draft -> sent -> approved | rejected

- approved and rejected are terminal; conversion to an order is a
  separate one-way step (order_service.convert_quote)
- moving to approved/rejected needs quote:manage, or the caller is the
  quote's designated customer holding quote:accept / quote:reject
- moving to draft/sent needs quote:manage or being the quote's creator
- only drafts can be deleted, by a privileged role or the creator

Visibility:
- super_admin / provider_user: every active quote
- partner_customer: non-draft quotes addressed to them
- other partner roles: their partner's quotes, except drafts authored
  outside the partner (e.g. provider drafts not yet sent)

Quote header and items are written in one transaction.
"""

import logging
import secrets

from ..extensions import db
from ..models import Partner, Quote, QuoteItem, PartnerUser, User
from ..models.quotes import QUOTE_STATUSES
from ..permissions import Role, can_bypass_partner_isolation
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    clean_str,
    coerce_datetime,
    coerce_optional_int,
)
from . import pricing_service
from .partner_service import ensure_row_in_scope, get_active_partner, partner_scope
from .permission_service import PermissionDeniedError, user_has_permission
from portal.time_utils import utcnow


logger = logging.getLogger(__name__)

TERMINAL_QUOTE_STATUSES = frozenset({"approved", "rejected"})

# Permission a designated customer needs for each self-service decision
CUSTOMER_DECISION_PERMISSIONS = {
    "approved": "quote:accept",
    "rejected": "quote:reject",
}

_NUMBER_ATTEMPTS = 20


def parse_quote_status(value) -> str:
    """Case-insensitive; returns the stored lowercase value."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required")
    status = value.strip().lower()
    if status not in QUOTE_STATUSES:
        raise ValidationError(f"Invalid status: {value}. Must be one of: {', '.join(QUOTE_STATUSES)}")
    return status


def generate_quote_number() -> str:
    """Q-YYYYMMDD-XXXX, re-rolled until unused."""
    today = utcnow().strftime("%Y%m%d")
    for _ in range(_NUMBER_ATTEMPTS):
        candidate = f"Q-{today}-{secrets.randbelow(10000):04d}"
        if not db.session.query(Quote.id).filter_by(quote_number=candidate).first():
            return candidate
    raise ConflictError("Could not allocate a unique quote number, try again")


# =============================================================================
# VISIBILITY
# =============================================================================

def _partner_member_ids(partner_id: int):
    return db.session.query(PartnerUser.user_id).filter(PartnerUser.partner_id == partner_id)


def visible_quotes_query(user: User, user_partner_id: int | None):
    query = db.session.query(Quote).filter(Quote.is_active.is_(True))

    if can_bypass_partner_isolation(user.role):
        return query

    if user.role_enum == Role.PARTNER_CUSTOMER:
        return query.filter(Quote.customer_user_id == user.id, Quote.status != "draft")

    scope = partner_scope(user, user_partner_id)
    return query.filter(
        Quote.partner_id == scope,
        db.or_(
            Quote.status != "draft",
            Quote.created_by_user_id == user.id,
            Quote.created_by_user_id.in_(_partner_member_ids(scope)),
        ),
    )


def list_quotes(user: User, user_partner_id: int | None, status: str | None = None) -> list[Quote]:
    query = visible_quotes_query(user, user_partner_id)
    if status:
        query = query.filter(Quote.status == parse_quote_status(status))
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).all()


def get_quote(user: User, user_partner_id: int | None, quote_id: int) -> Quote:
    quote = visible_quotes_query(user, user_partner_id).filter(Quote.id == quote_id).first()
    if quote is None:
        # Cross-partner probes are recorded before the 404
        other = db.session.query(Quote).filter_by(id=quote_id, is_active=True).first()
        if other is not None:
            ensure_row_in_scope(user, user_partner_id, other.partner_id, "Quote")
        raise NotFoundError("Quote not found")
    return quote


# =============================================================================
# AUTHORING
# =============================================================================

def _resolve_quote_partner(user: User, user_partner_id: int | None, requested_partner_id) -> Partner:
    requested = coerce_optional_int(requested_partner_id, "partner_id")

    if can_bypass_partner_isolation(user.role):
        if requested is not None:
            partner = get_active_partner(requested)
            if partner is None:
                raise NotFoundError("Partner not found")
            return partner
        partner = (
            db.session.query(Partner)
            .filter(Partner.is_active.is_(True))
            .order_by(Partner.id.asc())
            .first()
        )
        if partner is None:
            raise ValidationError("No active partner available")
        return partner

    scope = partner_scope(user, user_partner_id)
    if requested is not None and requested != scope:
        raise PermissionDeniedError("Partner users can only create quotes for their own partner")
    partner = get_active_partner(scope)
    if partner is None:
        raise PermissionDeniedError("User is not linked to an active partner")
    return partner


def _validate_customer(partner: Partner, raw_customer_id) -> int | None:
    customer_id = coerce_optional_int(raw_customer_id, "customer_user_id")
    if customer_id is None:
        return None

    link = (
        db.session.query(PartnerUser)
        .join(User, User.id == PartnerUser.user_id)
        .filter(
            PartnerUser.partner_id == partner.id,
            PartnerUser.user_id == customer_id,
            PartnerUser.role == Role.PARTNER_CUSTOMER.value,
            PartnerUser.is_active.is_(True),
            User.is_active.is_(True),
        )
        .first()
    )
    if link is None:
        raise ValidationError("customer_user_id must be an active customer of the quote's partner")
    return customer_id


def create_quote(user: User, user_partner_id: int | None, data: dict) -> Quote:
    """
    Create a draft quote with its priced items.

    data keys: items (required), valid_until (required), partner_id,
    customer_user_id, notes.
    """
    if not user_has_permission(user, "quote:create"):
        raise PermissionDeniedError("Permission denied: quote:create")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    if data.get("valid_until") in (None, ""):
        raise ValidationError("valid_until is required")
    valid_until = coerce_datetime(data["valid_until"], "valid_until")

    partner = _resolve_quote_partner(user, user_partner_id, data.get("partner_id"))
    customer_id = _validate_customer(partner, data.get("customer_user_id"))
    lines, totals = pricing_service.price_quote(user.role, partner, items)

    try:
        quote = Quote(
            quote_number=generate_quote_number(),
            partner_id=partner.id,
            created_by_user_id=user.id,
            customer_user_id=customer_id,
            status="draft",
            partner_subtotal_cents=totals.partner_subtotal_cents,
            customer_subtotal_cents=totals.customer_subtotal_cents,
            discount_cents=totals.discount_cents,
            customer_total_cents=totals.customer_total_cents,
            partner_total_cents=totals.partner_total_cents,
            notes=clean_str(data.get("notes"), "notes"),
            valid_until=valid_until,
            is_active=True,
        )
        db.session.add(quote)
        db.session.flush()

        for line in lines:
            db.session.add(QuoteItem(
                quote_id=quote.id,
                product_id=line.product.id,
                quantity=line.quantity,
                partner_unit_price_cents=line.partner_unit_price_cents,
                customer_unit_price_cents=line.customer_unit_price_cents,
                partner_line_total_cents=line.partner_line_total_cents,
                customer_line_total_cents=line.customer_line_total_cents,
                notes=line.notes,
            ))

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Quote %s created by user %s for partner %s: %d items, customer total %d",
        quote.quote_number, user.id, partner.id, len(lines), quote.customer_total_cents,
    )
    return quote


# =============================================================================
# STATE MACHINE
# =============================================================================

def _require_transition_rights(user: User, quote: Quote, new_status: str) -> None:
    if user_has_permission(user, "quote:manage"):
        return

    if new_status in TERMINAL_QUOTE_STATUSES:
        required = CUSTOMER_DECISION_PERMISSIONS[new_status]
        if quote.customer_user_id == user.id and user_has_permission(user, required):
            return
        raise PermissionDeniedError(
            f"Only quote managers or the quote's customer can set status to {new_status}"
        )

    if quote.created_by_user_id == user.id:
        return
    raise PermissionDeniedError("Only quote managers or the quote's creator can change this status")


def update_status(
    user: User,
    user_partner_id: int | None,
    quote_id: int,
    status,
    notes: str | None = None,
) -> Quote:
    new_status = parse_quote_status(status)
    quote = get_quote(user, user_partner_id, quote_id)

    if quote.status == new_status:
        raise ConflictError(f"Quote is already {new_status}")
    if quote.status in TERMINAL_QUOTE_STATUSES:
        raise ConflictError(f"Quote is {quote.status} and can no longer change status")

    _require_transition_rights(user, quote, new_status)

    previous = quote.status
    quote.status = new_status
    if notes is not None:
        quote.notes = clean_str(notes, "notes")
    quote.updated_at = utcnow()
    db.session.commit()

    logger.info("Quote %s: %s -> %s by user %s", quote.quote_number, previous, new_status, user.id)
    return quote


def delete_quote(user: User, user_partner_id: int | None, quote_id: int) -> None:
    """Hard delete of a draft: items first, then the quote."""
    quote = get_quote(user, user_partner_id, quote_id)

    if quote.status != "draft":
        raise ConflictError("Only draft quotes can be deleted")
    if not can_bypass_partner_isolation(user.role) and quote.created_by_user_id != user.id:
        raise PermissionDeniedError("Only the quote's creator or provider staff can delete it")

    number = quote.quote_number
    try:
        for item in list(quote.items):
            db.session.delete(item)
        db.session.flush()
        db.session.delete(quote)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Draft quote %s deleted by user %s", number, user.id)
