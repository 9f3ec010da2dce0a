# Overview: Service-layer operations for the catalog; encapsulates business logic and database work.

"""
Catalog Service: products, dependency graph and partner prices

WHY: Products carry two prices (base and partner) plus an optional single
dependency on another product. The dependency graph must stay acyclic, so
every write that touches dependency_id walks the chain first.

DESIGN:
- Prices are integer cents
- partner_price_cents defaults to 90% of base (rounded half-up) and is
  re-derived when base changes without an explicit partner price
- Deleting a referenced product soft-deletes it; unreferenced products
  are removed outright
"""

import logging

from ..extensions import db
from ..models import Product, PartnerPrice, Partner, QuoteItem, OrderItem
from ..money import apply_discount_pct, derive_partner_price_cents
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    clean_str,
    coerce_int,
    coerce_optional_int,
    coerce_price_cents,
)
from portal.time_utils import epoch_millis


logger = logging.getLogger(__name__)


PRODUCT_WRITABLE_FIELDS = (
    "code",
    "name",
    "description",
    "category",
    "base_price_cents",
    "partner_price_cents",
    "stock_quantity",
    "dependency_id",
)

PRODUCT_REQUIRED_FIELDS = ("name", "description", "base_price_cents", "category")


# =============================================================================
# DEPENDENCY GRAPH
# =============================================================================

def check_circular_dependency(product_id: int | None, candidate_dependency_id: int) -> bool:
    """
    True if pointing product_id at candidate_dependency_id would be invalid.

    Walks candidate -> candidate.dependency_id -> ... with a visited set.
    Invalid when the walk reaches product_id, revisits a node (a cycle
    already exists further down) or hits an id that does not resolve.
    product_id=None is a product not yet saved: nothing can point back
    to it, so only the chain itself is checked.
    """
    if product_id is not None and candidate_dependency_id == product_id:
        return True

    visited: set[int] = set()
    current = candidate_dependency_id
    while current is not None:
        if product_id is not None and current == product_id:
            return True
        if current in visited:
            return True
        visited.add(current)

        node = db.session.get(Product, current)
        if node is None:
            return True
        current = node.dependency_id

    return False


def get_dependency_chain(product_id: int) -> list[Product]:
    """Products required by product_id, nearest first."""
    product = get_active_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")

    chain: list[Product] = []
    seen = {product.id}
    current = product.dependency_id
    while current is not None and current not in seen:
        node = db.session.get(Product, current)
        if node is None:
            break
        chain.append(node)
        seen.add(node.id)
        current = node.dependency_id
    return chain


def _validate_dependency(product_id: int | None, raw) -> int | None:
    dependency_id = coerce_optional_int(raw, "dependency_id")
    if dependency_id is None:
        return None

    target = get_active_product(dependency_id)
    if target is None:
        raise NotFoundError(f"Dependency product {dependency_id} not found")

    if check_circular_dependency(product_id, dependency_id):
        logger.warning("Rejected circular dependency product=%s -> %s", product_id, dependency_id)
        raise ConflictError("Circular dependency detected: a product cannot depend on itself, directly or transitively")
    return dependency_id


# =============================================================================
# PRODUCTS
# =============================================================================

def get_active_product(product_id: int) -> Product | None:
    return db.session.query(Product).filter_by(id=product_id, is_active=True).first()


def list_products(category: str | None = None, search: str | None = None) -> list[Product]:
    query = db.session.query(Product).filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))
    return query.order_by(Product.name.asc()).all()


def _generate_product_code() -> str:
    base = f"PROD_{epoch_millis()}"
    code = base
    suffix = 1
    while db.session.query(Product.id).filter_by(code=code).first():
        suffix += 1
        code = f"{base}_{suffix}"
    return code


def _check_fields(data: dict) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    for key in data:
        if key not in PRODUCT_WRITABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")


def _coerce_stock(raw) -> int | None:
    stock = coerce_optional_int(raw, "stock_quantity")
    if stock is not None and stock < 0:
        raise ValidationError("stock_quantity cannot be negative")
    return stock


def create_product(data: dict) -> Product:
    _check_fields(data)
    missing = [f for f in PRODUCT_REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    base_price = coerce_price_cents(data["base_price_cents"], "base_price_cents")
    if data.get("partner_price_cents") is not None:
        partner_price = coerce_price_cents(data["partner_price_cents"], "partner_price_cents")
    else:
        partner_price = derive_partner_price_cents(base_price)

    code = clean_str(data.get("code"), "code", max_length=64)
    if code:
        if db.session.query(Product.id).filter_by(code=code).first():
            raise ConflictError(f"Product code already exists: {code}")
    else:
        code = _generate_product_code()

    product = Product(
        code=code,
        name=clean_str(data["name"], "name", max_length=255, required=True),
        description=clean_str(data["description"], "description", required=True),
        category=clean_str(data["category"], "category", max_length=64, required=True),
        base_price_cents=base_price,
        partner_price_cents=partner_price,
        stock_quantity=_coerce_stock(data.get("stock_quantity")),
        dependency_id=_validate_dependency(None, data.get("dependency_id")),
        is_active=True,
    )

    db.session.add(product)
    db.session.commit()

    logger.info("Product %s (%s) created", product.id, product.code)
    return product


def update_product(product_id: int, data: dict) -> Product:
    _check_fields(data)
    product = get_active_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")

    if "code" in data:
        code = clean_str(data["code"], "code", max_length=64, required=True)
        clash = db.session.query(Product.id).filter(Product.code == code, Product.id != product.id).first()
        if clash:
            raise ConflictError(f"Product code already exists: {code}")
        product.code = code
    if "name" in data:
        product.name = clean_str(data["name"], "name", max_length=255, required=True)
    if "description" in data:
        product.description = clean_str(data["description"], "description", required=True)
    if "category" in data:
        product.category = clean_str(data["category"], "category", max_length=64, required=True)

    if "base_price_cents" in data:
        product.base_price_cents = coerce_price_cents(data["base_price_cents"], "base_price_cents")
        if data.get("partner_price_cents") is None:
            product.partner_price_cents = derive_partner_price_cents(product.base_price_cents)
    if data.get("partner_price_cents") is not None:
        product.partner_price_cents = coerce_price_cents(data["partner_price_cents"], "partner_price_cents")

    if "stock_quantity" in data:
        product.stock_quantity = _coerce_stock(data["stock_quantity"])
    if "dependency_id" in data:
        product.dependency_id = _validate_dependency(product.id, data["dependency_id"])

    db.session.commit()
    return product


def set_dependency(product_id: int, dependency_id: int | None) -> Product:
    return update_product(product_id, {"dependency_id": dependency_id})


def is_product_referenced(product_id: int) -> bool:
    checks = (
        db.session.query(QuoteItem.id).filter(QuoteItem.product_id == product_id),
        db.session.query(OrderItem.id).filter(OrderItem.product_id == product_id),
        db.session.query(PartnerPrice.id).filter(PartnerPrice.product_id == product_id),
        db.session.query(Product.id).filter(Product.dependency_id == product_id),
    )
    return any(query.first() is not None for query in checks)


def delete_product(product_id: int) -> str:
    """
    Remove a product.

    Returns "deleted" when the row was removed, "deactivated" when it is
    still referenced and was soft-deleted instead.
    """
    product = get_active_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")

    if is_product_referenced(product_id):
        product.is_active = False
        db.session.commit()
        logger.info("Product %s deactivated (still referenced)", product_id)
        return "deactivated"

    db.session.delete(product)
    db.session.commit()
    logger.info("Product %s deleted", product_id)
    return "deleted"


# =============================================================================
# PARTNER PRICES
# =============================================================================

def set_partner_price(partner_id: int, product_id: int, price_cents, commit: bool = True) -> PartnerPrice:
    """Insert or update the single override row for (partner, product)."""
    price = coerce_price_cents(price_cents, "price_cents")

    row = db.session.query(PartnerPrice).filter_by(partner_id=partner_id, product_id=product_id).first()
    if row is None:
        row = PartnerPrice(partner_id=partner_id, product_id=product_id, price_cents=price, is_active=True)
        db.session.add(row)
    else:
        row.price_cents = price
        row.is_active = True

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return row


def set_partner_prices(partner_id: int, entries) -> tuple[list[PartnerPrice], list[dict]]:
    """
    Bulk upsert. Unknown or inactive products are skipped and reported.

    Returns (saved_rows, skipped). Any invalid price aborts the whole batch.
    """
    if not isinstance(entries, list):
        raise ValidationError("prices must be a list")

    # Validate everything before the first write
    parsed = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f"prices[{index}] must be an object")
        product_id = coerce_int(entry.get("product_id"), f"prices[{index}].product_id")
        price = coerce_price_cents(entry.get("price_cents"), f"prices[{index}].price_cents")
        parsed.append((product_id, price))

    saved: list[PartnerPrice] = []
    skipped: list[dict] = []
    try:
        for product_id, price in parsed:
            if get_active_product(product_id) is None:
                skipped.append({"product_id": product_id, "reason": "Product not found"})
                continue
            saved.append(set_partner_price(partner_id, product_id, price, commit=False))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Partner %s prices upserted: %d saved, %d skipped", partner_id, len(saved), len(skipped))
    return saved, skipped


def list_partner_prices(partner_id: int) -> list[PartnerPrice]:
    return (
        db.session.query(PartnerPrice)
        .filter_by(partner_id=partner_id, is_active=True)
        .order_by(PartnerPrice.product_id.asc())
        .all()
    )


def resolve_partner_price_cents(partner: Partner | None, product: Product) -> int:
    """
    Price the provider charges this partner for one unit.

    Order: active PartnerPrice override, then the partner's discount_rate
    applied to base, then the product's own partner_price_cents.
    """
    if partner is not None:
        override = db.session.query(PartnerPrice).filter_by(
            partner_id=partner.id, product_id=product.id, is_active=True
        ).first()
        if override is not None:
            return override.price_cents
        if partner.discount_rate is not None:
            return apply_discount_pct(product.base_price_cents, partner.discount_rate)
    return product.partner_price_cents
