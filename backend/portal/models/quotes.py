from __future__ import annotations

from ..extensions import db
from ..money import margin_pct
from portal.time_utils import to_utc_z, utcnow


QUOTE_STATUSES = ("draft", "sent", "approved", "rejected")


class Quote(db.Model):
    """
    Priced proposal from a partner to one of its customers.

    Aggregates (all cents):
    - partner_subtotal_cents: sum of partner line totals (owed to provider)
    - customer_subtotal_cents: sum of customer line totals
    - customer_total_cents = customer_subtotal_cents - discount_cents
    - partner_total_cents = partner_subtotal_cents - discount_cents

    Written once at creation by pricing_service; afterwards only status,
    notes and updated_at change.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.Index("ix_quotes_partner_status", "partner_id", "status"),
        db.Index("ix_quotes_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quote_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="draft")

    partner_subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    customer_subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    customer_total_cents = db.Column(db.Integer, nullable=False, default=0)
    partner_total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    partner = db.relationship("Partner", backref=db.backref("quotes", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    customer = db.relationship("User", foreign_keys=[customer_user_id])
    items = db.relationship("QuoteItem", backref="quote", lazy=True, order_by="QuoteItem.id")

    @property
    def profit_margin_pct(self) -> float:
        return margin_pct(self.customer_total_cents, self.partner_total_cents)

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "quote_number": self.quote_number,
            "partner_id": self.partner_id,
            "partner_name": self.partner.name if self.partner else None,
            "created_by_user_id": self.created_by_user_id,
            "customer_user_id": self.customer_user_id,
            "status": self.status,
            "partner_subtotal_cents": self.partner_subtotal_cents,
            "customer_subtotal_cents": self.customer_subtotal_cents,
            "discount_cents": self.discount_cents,
            "customer_total_cents": self.customer_total_cents,
            "partner_total_cents": self.partner_total_cents,
            "profit_margin_pct": self.profit_margin_pct,
            "notes": self.notes,
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QuoteItem(db.Model):
    """One priced line of a quote."""
    __tablename__ = "quote_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    partner_unit_price_cents = db.Column(db.Integer, nullable=False)
    customer_unit_price_cents = db.Column(db.Integer, nullable=False)
    partner_line_total_cents = db.Column(db.Integer, nullable=False)
    customer_line_total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "partner_unit_price_cents": self.partner_unit_price_cents,
            "customer_unit_price_cents": self.customer_unit_price_cents,
            "partner_line_total_cents": self.partner_line_total_cents,
            "customer_line_total_cents": self.customer_line_total_cents,
            "notes": self.notes,
        }
