from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z, utcnow


class Partner(db.Model):
    """
    Reseller organization buying from the provider.

    discount_rate (percent) is the fallback for partner prices when no
    PartnerPrice override exists. NULL means the product's own
    partner_price_cents applies.
    """
    __tablename__ = "partners"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    contact_name = db.Column(db.String(128), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    discount_rate = db.Column(db.Numeric(5, 2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "discount_rate": float(self.discount_rate) if self.discount_rate is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PartnerUser(db.Model):
    """
    Membership of a user in a partner, with a partner-scoped role.

    One active link per user is enforced by partner_service when links are
    created; resolution still takes the lowest active id if older data
    carries duplicates. Removal is a soft delete.
    """
    __tablename__ = "partner_users"
    __table_args__ = (
        db.Index("ix_partner_users_user_active", "user_id", "is_active"),
        db.Index("ix_partner_users_partner_role", "partner_id", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    role = db.Column(db.String(32), nullable=False)  # partner_admin | partner_user | partner_customer

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    partner = db.relationship("Partner", backref=db.backref("memberships", lazy=True))
    user = db.relationship("User", backref=db.backref("partner_links", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "display_name": self.user.display_name if self.user else None,
            "email": self.user.email if self.user else None,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "removed_at": to_utc_z(self.removed_at) if self.removed_at else None,
        }


class PartnerPrice(db.Model):
    """Per-partner override of a product's partner price (upsert semantics)."""
    __tablename__ = "partner_prices"
    __table_args__ = (
        db.UniqueConstraint("partner_id", "product_id", name="uq_partner_prices_partner_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    partner = db.relationship("Partner", backref=db.backref("prices", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }
