from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog product.

    dependency_id names a product that must accompany this one. Following
    dependency_id from any product never revisits a node (checked by
    catalog_service.check_circular_dependency before every write).

    stock_quantity NULL means unlimited.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(64), nullable=False)

    base_price_cents = db.Column(db.Integer, nullable=False)
    partner_price_cents = db.Column(db.Integer, nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=True)

    dependency_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    dependency = db.relationship("Product", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "base_price_cents": self.base_price_cents,
            "partner_price_cents": self.partner_price_cents,
            "stock_quantity": self.stock_quantity,
            "dependency_id": self.dependency_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
