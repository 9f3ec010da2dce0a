# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Service: quote conversion and the order state machine

Orders only come from converting an approved, active quote that has no
order yet. Conversion writes the order, its items (snapshotted from the
quote items at customer prices) and the first history row in one
transaction. orders.quote_id is unique, so a concurrent second conversion
fails at commit and is reported as a conflict.

Statuses:
    pending -> confirmed -> processing -> provisioning -> testing
            -> ready -> shipped -> delivered
    cancelled from anything except delivered / cancelled

ORDER_STRICT_TRANSITIONS (default on) allows only the next status in the
sequence or cancelled. With it off, any different valid status is
accepted.

Every status change appends one OrderStatusHistory row.
"""

import logging

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory, Quote, User
from ..models.orders import ORDER_STATUSES, ORDER_STATUS_SEQUENCE
from ..permissions import Role, can_bypass_partner_isolation
from ..validation import ValidationError, ConflictError, NotFoundError, clean_str, coerce_datetime
from . import notification_service
from .partner_service import ensure_row_in_scope, partner_scope
from .permission_service import PermissionDeniedError, user_has_permission
from portal.time_utils import epoch_millis, utcnow


logger = logging.getLogger(__name__)

CONVERSION_NOTE = "Order created from approved quote"

CLOSED_ORDER_STATUSES = frozenset({"delivered", "cancelled"})


def parse_order_status(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required")
    status = value.strip().lower()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {value}. Must be one of: {', '.join(ORDER_STATUSES)}")
    return status


def strict_transitions_enabled() -> bool:
    if has_app_context():
        return bool(current_app.config.get("ORDER_STRICT_TRANSITIONS", True))
    return True


def allowed_next_statuses(current: str, strict: bool = True) -> list[str]:
    """Statuses an order in `current` may move to."""
    if not strict:
        return [s for s in ORDER_STATUSES if s != current]
    if current in CLOSED_ORDER_STATUSES:
        return []
    allowed = []
    position = ORDER_STATUS_SEQUENCE.index(current)
    if position + 1 < len(ORDER_STATUS_SEQUENCE):
        allowed.append(ORDER_STATUS_SEQUENCE[position + 1])
    allowed.append("cancelled")
    return allowed


def generate_order_number() -> str:
    """ORD-<epoch millis>, bumped past any number already taken."""
    millis = epoch_millis()
    while db.session.query(Order.id).filter_by(order_number=f"ORD-{millis}").first():
        millis += 1
    return f"ORD-{millis}"


# =============================================================================
# VISIBILITY
# =============================================================================

def visible_orders_query(user: User, user_partner_id: int | None):
    query = db.session.query(Order).filter(Order.is_active.is_(True))

    if can_bypass_partner_isolation(user.role):
        return query
    if user.role_enum == Role.PARTNER_CUSTOMER:
        return query.filter(Order.customer_user_id == user.id)

    scope = partner_scope(user, user_partner_id)
    return query.filter(Order.partner_id == scope)


def visible_notifications(user: User, user_partner_id: int | None, limit: int | None = None) -> list:
    """
    Order events the caller may read, newest first.

    Same partition as visible_orders_query: provider staff see every
    event, partner roles only their partner's, and a partner_customer
    only events for orders addressed to them.
    """
    events = notification_service.get_sink().recent()

    if user.role_enum == Role.PARTNER_CUSTOMER:
        events = [e for e in events if e.payload.get("customer_user_id") == user.id]
    elif not can_bypass_partner_isolation(user.role):
        scope = partner_scope(user, user_partner_id)
        events = [e for e in events if e.payload.get("partner_id") == scope]

    if limit is not None:
        events = events[:max(limit, 0)]
    return events


def list_orders(user: User, user_partner_id: int | None, status: str | None = None) -> list[Order]:
    query = visible_orders_query(user, user_partner_id)
    if status:
        query = query.filter(Order.status == parse_order_status(status))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order(user: User, user_partner_id: int | None, order_id: int) -> Order:
    order = visible_orders_query(user, user_partner_id).filter(Order.id == order_id).first()
    if order is None:
        other = db.session.query(Order).filter_by(id=order_id, is_active=True).first()
        if other is not None:
            ensure_row_in_scope(user, user_partner_id, other.partner_id, "Order")
        raise NotFoundError("Order not found")
    return order


def get_history(user: User, user_partner_id: int | None, order_id: int) -> list[OrderStatusHistory]:
    order = get_order(user, user_partner_id, order_id)
    return (
        db.session.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order.id)
        .order_by(OrderStatusHistory.id.asc())
        .all()
    )


# =============================================================================
# CONVERSION
# =============================================================================

def convert_quote(
    user: User,
    user_partner_id: int | None,
    quote_id: int,
    shipping_address: str | None = None,
    billing_address: str | None = None,
    notes: str | None = None,
    expected_delivery=None,
) -> Order:
    """
    Turn an approved quote into a pending order.

    Raises:
        PermissionDeniedError: caller lacks order:manage
        NotFoundError: quote missing, inactive or outside the caller's partner
        ValidationError: quote not approved
        ConflictError: quote already converted
    """
    if not user_has_permission(user, "order:manage"):
        raise PermissionDeniedError("Permission denied: order:manage")

    quote = db.session.query(Quote).filter_by(id=quote_id, is_active=True).first()
    if quote is None:
        raise NotFoundError("Quote not found")
    scope = partner_scope(user, user_partner_id)
    if scope is not None and quote.partner_id != scope:
        raise NotFoundError("Quote not found")

    if quote.status != "approved":
        raise ValidationError(f"Only approved quotes can be converted (quote is {quote.status})")
    if db.session.query(Order.id).filter(Order.quote_id == quote.id).first():
        raise ConflictError("An order already exists for this quote")

    delivery = None
    if expected_delivery not in (None, ""):
        delivery = coerce_datetime(expected_delivery, "expected_delivery")

    try:
        order = Order(
            order_number=generate_order_number(),
            quote_id=quote.id,
            partner_id=quote.partner_id,
            created_by_user_id=user.id,
            customer_user_id=quote.customer_user_id,
            status="pending",
            subtotal_cents=quote.customer_subtotal_cents,
            discount_cents=quote.discount_cents,
            total_cents=quote.customer_total_cents,
            shipping_address=clean_str(shipping_address, "shipping_address"),
            billing_address=clean_str(billing_address, "billing_address"),
            notes=clean_str(notes, "notes") or quote.notes,
            expected_delivery=delivery,
            is_active=True,
        )
        db.session.add(order)
        db.session.flush()

        for item in quote.items:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=item.customer_unit_price_cents,
                line_total_cents=item.customer_line_total_cents,
                notes=item.notes,
            ))

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            status="pending",
            notes=CONVERSION_NOTE,
            updated_by_user_id=user.id,
        ))

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Duplicate conversion of quote %s rejected at commit", quote_id)
        raise ConflictError("An order already exists for this quote")
    except Exception:
        db.session.rollback()
        raise

    logger.info("Quote %s converted to order %s by user %s", quote.quote_number, order.order_number, user.id)

    payload = {
        "order_id": order.id,
        "order_number": order.order_number,
        "quote_id": quote.id,
        "quote_number": quote.quote_number,
        "partner_id": order.partner_id,
        "customer_user_id": order.customer_user_id,
        "total_cents": order.total_cents,
    }
    notification_service.emit(notification_service.QUOTE_CONVERTED, payload)
    notification_service.emit(notification_service.ORDER_CREATED, payload)
    return order


# =============================================================================
# STATE MACHINE
# =============================================================================

def update_status(
    user: User,
    user_partner_id: int | None,
    order_id: int,
    status,
    notes: str | None = None,
) -> Order:
    if not user_has_permission(user, "order:manage"):
        raise PermissionDeniedError("Permission denied: order:manage")

    new_status = parse_order_status(status)
    order = get_order(user, user_partner_id, order_id)

    if order.status == new_status:
        raise ConflictError(f"Order is already {new_status}")

    strict = strict_transitions_enabled()
    if new_status not in allowed_next_statuses(order.status, strict=strict):
        raise ConflictError(f"Cannot move order from {order.status} to {new_status}")

    previous = order.status
    note = clean_str(notes, "notes") or f"Status updated to {new_status}"

    try:
        order.status = new_status
        order.updated_at = utcnow()
        db.session.add(OrderStatusHistory(
            order_id=order.id,
            status=new_status,
            notes=note,
            updated_by_user_id=user.id,
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s: %s -> %s by user %s", order.order_number, previous, new_status, user.id)

    notification_service.emit(notification_service.ORDER_STATUS_CHANGED, {
        "order_id": order.id,
        "order_number": order.order_number,
        "partner_id": order.partner_id,
        "customer_user_id": order.customer_user_id,
        "previous_status": previous,
        "status": new_status,
        "notes": note,
    })
    return order
