from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z, utcnow


# Fulfilment sequence; "cancelled" sits outside it
ORDER_STATUS_SEQUENCE = (
    "pending",
    "confirmed",
    "processing",
    "provisioning",
    "testing",
    "ready",
    "shipped",
    "delivered",
)
ORDER_STATUSES = ORDER_STATUS_SEQUENCE + ("cancelled",)


class Order(db.Model):
    """
    Commercial commitment created by converting an approved quote.

    Financials mirror the quote's customer-facing amounts at conversion
    and never change afterwards; only status, notes and delivery details
    are mutable.

    quote_id is unique: at most one order per quote.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("quote_id", name="uq_orders_quote_id"),
        db.Index("ix_orders_partner_status", "partner_id", "status"),
        db.Index("ix_orders_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    shipping_address = db.Column(db.Text, nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    expected_delivery = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    quote = db.relationship("Quote", backref=db.backref("order", uselist=False))
    partner = db.relationship("Partner", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    history = db.relationship(
        "OrderStatusHistory", backref="order", lazy=True, order_by="OrderStatusHistory.id"
    )

    def to_dict(self, include_items: bool = False, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "quote_id": self.quote_id,
            "quote_number": self.quote.quote_number if self.quote else None,
            "partner_id": self.partner_id,
            "partner_name": self.partner.name if self.partner else None,
            "created_by_user_id": self.created_by_user_id,
            "customer_user_id": self.customer_user_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "notes": self.notes,
            "expected_delivery": to_utc_z(self.expected_delivery) if self.expected_delivery else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data


class OrderItem(db.Model):
    """Line snapshotted from a QuoteItem at conversion. Never recalculated."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
        }


class OrderStatusHistory(db.Model):
    """
    One row per order status transition, oldest first.

    IMMUTABLE: Never update or delete. Append-only.
    """
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    updated_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "notes": self.notes,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_by": self.updated_by.username if self.updated_by else None,
            "created_at": to_utc_z(self.created_at),
        }
