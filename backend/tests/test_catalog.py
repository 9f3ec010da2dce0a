# Overview: Pytest coverage for products, the dependency graph and partner prices.

import pytest

from portal.models import Product, PartnerPrice
from portal.services import catalog_service
from portal.validation import ConflictError, NotFoundError, ValidationError


def _product(**overrides):
    data = {
        "name": "Widget",
        "description": "A widget",
        "category": "hardware",
        "base_price_cents": 10000,
    }
    data.update(overrides)
    return catalog_service.create_product(data)


class TestProductCreation:

    def test_partner_price_defaults_to_ninety_percent(self, db_session):
        product = _product(base_price_cents=10005)
        assert product.partner_price_cents == 9005
        assert product.code.startswith("PROD_")

    def test_explicit_partner_price_kept(self, db_session):
        product = _product(partner_price_cents=7000)
        assert product.partner_price_cents == 7000

    def test_missing_fields(self, db_session):
        with pytest.raises(ValidationError, match="description"):
            catalog_service.create_product({"name": "X", "base_price_cents": 1, "category": "c"})

    def test_unknown_field_rejected(self, db_session):
        with pytest.raises(ValidationError, match="Field not allowed"):
            _product(color="red")

    def test_negative_price_and_stock(self, db_session):
        with pytest.raises(ValidationError):
            _product(base_price_cents=-1)
        with pytest.raises(ValidationError):
            _product(stock_quantity=-5)

    def test_duplicate_code(self, db_session):
        _product(code="DUP-1")
        with pytest.raises(ConflictError):
            _product(code="DUP-1")

    def test_generated_codes_are_unique(self, db_session):
        first = _product()
        second = _product()
        assert first.code != second.code

    def test_base_change_rederives_partner_price(self, db_session):
        product = _product()
        catalog_service.update_product(product.id, {"base_price_cents": 20000})
        assert product.partner_price_cents == 18000

        catalog_service.update_product(product.id, {"base_price_cents": 30000, "partner_price_cents": 25000})
        assert product.partner_price_cents == 25000


class TestDependencies:
    """Scenario A and friends: the dependency graph stays acyclic."""

    def test_two_node_cycle_rejected(self, db_session):
        p1 = _product(name="P1")
        p2 = _product(name="P2", dependency_id=p1.id)
        assert p2.dependency_id == p1.id

        with pytest.raises(ConflictError, match="Circular"):
            catalog_service.set_dependency(p1.id, p2.id)

        db_session.refresh(p1)
        assert p1.dependency_id is None

    def test_self_dependency_rejected(self, db_session):
        p1 = _product()
        with pytest.raises(ConflictError):
            catalog_service.update_product(p1.id, {"dependency_id": p1.id})

    def test_long_cycle_rejected(self, db_session):
        a = _product(name="A")
        b = _product(name="B", dependency_id=a.id)
        c = _product(name="C", dependency_id=b.id)
        with pytest.raises(ConflictError):
            catalog_service.set_dependency(a.id, c.id)

    def test_check_circular_on_unsaved_product(self, db_session):
        a = _product(name="A")
        assert catalog_service.check_circular_dependency(None, a.id) is False
        assert catalog_service.check_circular_dependency(None, 999999) is True

    def test_missing_dependency(self, db_session):
        with pytest.raises(NotFoundError):
            _product(dependency_id=424242)

    def test_chain_nearest_first(self, db_session):
        a = _product(name="A")
        b = _product(name="B", dependency_id=a.id)
        c = _product(name="C", dependency_id=b.id)
        assert [p.id for p in catalog_service.get_dependency_chain(c.id)] == [b.id, a.id]

    def test_clearing_dependency(self, db_session):
        a = _product(name="A")
        b = _product(name="B", dependency_id=a.id)
        catalog_service.set_dependency(b.id, None)
        assert b.dependency_id is None


class TestDeletion:

    def test_unreferenced_product_is_removed(self, db_session):
        product = _product()
        product_id = product.id
        assert catalog_service.delete_product(product_id) == "deleted"
        assert db_session.get(Product, product_id) is None

    def test_referenced_product_is_deactivated(self, db_session):
        a = _product(name="A")
        _product(name="B", dependency_id=a.id)
        assert catalog_service.delete_product(a.id) == "deactivated"
        assert db_session.get(Product, a.id).is_active is False

    def test_listing_filters(self, db_session):
        _product(name="Edge Router", category="network", code="RTR-1")
        _product(name="Support", category="services", code="SUP-1")
        assert [p.name for p in catalog_service.list_products(category="network")] == ["Edge Router"]
        assert [p.code for p in catalog_service.list_products(search="sup")] == ["SUP-1"]


class TestPartnerPrices:
    """Override, then discount rate, then product partner price."""

    def test_resolution_order(self, db_session, partner_a, product_router):
        assert catalog_service.resolve_partner_price_cents(partner_a, product_router) == 9000

        partner_a.discount_rate = 20
        db_session.commit()
        assert catalog_service.resolve_partner_price_cents(partner_a, product_router) == 8000

        catalog_service.set_partner_price(partner_a.id, product_router.id, 8500)
        assert catalog_service.resolve_partner_price_cents(partner_a, product_router) == 8500

    def test_upsert_keeps_single_row(self, db_session, partner_a, product_router):
        catalog_service.set_partner_price(partner_a.id, product_router.id, 8500)
        catalog_service.set_partner_price(partner_a.id, product_router.id, 8100)
        rows = db_session.query(PartnerPrice).filter_by(partner_id=partner_a.id).all()
        assert len(rows) == 1
        assert rows[0].price_cents == 8100

    def test_bulk_skips_unknown_products(self, db_session, partner_a, product_router):
        saved, skipped = catalog_service.set_partner_prices(partner_a.id, [
            {"product_id": product_router.id, "price_cents": 8800},
            {"product_id": 999999, "price_cents": 100},
        ])
        assert [row.product_id for row in saved] == [product_router.id]
        assert skipped == [{"product_id": 999999, "reason": "Product not found"}]

    def test_bulk_invalid_price_writes_nothing(self, db_session, partner_a, product_router):
        with pytest.raises(ValidationError):
            catalog_service.set_partner_prices(partner_a.id, [
                {"product_id": product_router.id, "price_cents": 8800},
                {"product_id": product_router.id, "price_cents": -1},
            ])
        assert catalog_service.list_partner_prices(partner_a.id) == []
