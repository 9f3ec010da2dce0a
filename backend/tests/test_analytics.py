# Overview: Pytest coverage for provider and partner sales reports.

import pytest

from portal.services import analytics_service, order_service, quote_service
from portal.services.permission_service import PermissionDeniedError
from portal.time_utils import month_keys
from portal.validation import ValidationError


def _ordered_quote(seller, approver, partner, product, customer_price, quantity=1):
    quote = quote_service.create_quote(seller, partner.id, {
        "valid_until": "2030-12-31",
        "items": [{"product_id": product.id, "quantity": quantity, "customer_unit_price_cents": customer_price}],
    })
    quote_service.update_status(approver, partner.id, quote.id, "sent")
    quote_service.update_status(approver, partner.id, quote.id, "approved")
    return quote


@pytest.fixture
def sales(db_session, partner_a, partner_b, seller_a, admin_a, seller_b, admin_b, provider_user,
          product_router, product_license):
    """Two orders for partner A, one for partner B."""
    orders = []
    for seller, admin, partner, product, price, qty in (
        (seller_a, admin_a, partner_a, product_router, 12000, 1),
        (seller_a, admin_a, partner_a, product_license, 2500, 4),
        (seller_b, admin_b, partner_b, product_router, 9000, 1),
    ):
        quote = _ordered_quote(seller, admin, partner, product, price, qty)
        orders.append(order_service.convert_quote(provider_user, None, quote.id))
    return orders


class TestProviderReport:

    def test_totals_across_partners(self, sales, provider_user):
        report = analytics_service.report_for(provider_user, None)

        assert report["scope"] == "provider"
        assert report["total_orders"] == 3
        assert report["total_revenue_cents"] == 12000 + 10000 + 9000
        assert report["total_partner_revenue_cents"] == 9000 + 8000 + 9000
        assert report["average_order_value_cents"] == 10333
        assert report["quotes_by_status"]["approved"] == 3

    def test_sales_by_partner_ordered_by_revenue(self, sales, partner_a, partner_b):
        report = analytics_service.provider_report()
        assert [row["partner_id"] for row in report["sales_by_partner"]] == [partner_a.id, partner_b.id]
        assert report["sales_by_partner"][0]["revenue_cents"] == 22000

    def test_top_products(self, sales, product_router, product_license):
        top = analytics_service.provider_report()["top_products"]
        assert [row["product_id"] for row in top] == [product_router.id, product_license.id]
        assert top[0]["quantity"] == 2
        assert top[1]["revenue_cents"] == 10000

    def test_cancelled_orders_carry_no_revenue(self, sales, provider_user):
        order_service.update_status(provider_user, None, sales[2].id, "cancelled")
        report = analytics_service.provider_report()
        assert report["total_orders"] == 2
        assert report["total_revenue_cents"] == 22000

    def test_monthly_trend_covers_twelve_months(self, sales):
        trend = analytics_service.provider_report()["monthly_trend"]
        assert [row["month"] for row in trend] == month_keys(12)
        assert trend[-1]["order_count"] == 3
        assert sum(row["revenue_cents"] for row in trend[:-1]) == 0

    def test_empty_database(self, db_session):
        report = analytics_service.provider_report()
        assert report["total_orders"] == 0
        assert report["average_order_value_cents"] == 0
        assert report["sales_by_partner"] == []
        assert len(report["monthly_trend"]) == 12


class TestPartnerReport:

    def test_partner_admin_sees_own_partner_only(self, sales, partner_a, admin_a):
        report = analytics_service.report_for(admin_a, partner_a.id)

        assert report["scope"] == "partner"
        assert report["partner_id"] == partner_a.id
        assert report["total_orders"] == 2
        assert report["total_revenue_cents"] == 22000
        assert report["total_partner_revenue_cents"] == 17000
        # (22000 - 17000) / 22000
        assert report["profit_margin_pct"] == 22.73
        assert len(report["sales_by_partner"]) == 1

    def test_customer_breakdown_groups_unassigned_orders(self, sales, partner_a):
        breakdown = analytics_service.partner_report(partner_a.id)["customer_breakdown"]
        assert breakdown == [{
            "customer_user_id": None,
            "customer_name": None,
            "order_count": 2,
            "revenue_cents": 22000,
        }]

    def test_customers_refused(self, db_session, partner_a, customer_a):
        with pytest.raises(PermissionDeniedError):
            analytics_service.report_for(customer_a, partner_a.id)

    def test_partner_user_lacks_permission(self, db_session, partner_a, seller_a):
        with pytest.raises(PermissionDeniedError):
            analytics_service.report_for(seller_a, partner_a.id)


class TestPeriod:

    def test_default(self):
        assert analytics_service.parse_period(None) == 30
        assert analytics_service.parse_period("", default=90) == 90

    def test_parses_string(self):
        assert analytics_service.parse_period("365") == 365

    @pytest.mark.parametrize("value", ["0", "-5", "3651", "month"])
    def test_rejects_out_of_range(self, value):
        with pytest.raises(ValidationError):
            analytics_service.parse_period(value)
