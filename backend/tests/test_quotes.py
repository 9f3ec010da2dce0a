# Overview: Pytest coverage for quote authoring, visibility and the quote state machine.

import re

import pytest

from portal.models import Quote, QuoteItem, SecurityEvent
from portal.services import quote_service
from portal.services.permission_service import PermissionDeniedError
from portal.validation import ConflictError, NotFoundError, ValidationError


VALID_UNTIL = "2030-12-31"


def _seller_quote(user, partner, product, customer=None, **overrides):
    data = {
        "valid_until": VALID_UNTIL,
        "items": [{"product_id": product.id, "quantity": 2, "customer_unit_price_cents": 12000}],
    }
    if customer is not None:
        data["customer_user_id"] = customer.id
    data.update(overrides)
    return quote_service.create_quote(user, partner.id, data)


class TestQuoteCreation:

    def test_partner_user_creates_draft(self, db_session, partner_a, seller_a, customer_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router, customer_a)

        assert quote.status == "draft"
        assert quote.partner_id == partner_a.id
        assert quote.customer_user_id == customer_a.id
        assert quote.partner_subtotal_cents == 18000
        assert quote.customer_total_cents == 24000
        assert quote.profit_margin_pct == 25.0
        assert re.fullmatch(r"Q-\d{8}-\d{4}", quote.quote_number)
        assert len(quote.items) == 1

    def test_provider_quote_defaults_to_first_partner(self, db_session, partner_a, partner_b, super_admin, product_router):
        quote = quote_service.create_quote(super_admin, None, {
            "valid_until": VALID_UNTIL,
            "items": [{"product_id": product_router.id, "quantity": 2, "unit_price_cents": 5000}],
        })
        assert quote.partner_id == partner_a.id
        assert quote.partner_subtotal_cents == 10000
        assert quote.customer_total_cents == 10000

    def test_provider_quote_without_partners(self, db_session, super_admin, product_router):
        with pytest.raises(ValidationError, match="No active partner"):
            quote_service.create_quote(super_admin, None, {
                "valid_until": VALID_UNTIL,
                "items": [{"product_id": product_router.id, "quantity": 1}],
            })

    def test_partner_user_cannot_target_other_partner(self, db_session, partner_a, partner_b, seller_a, product_router):
        with pytest.raises(PermissionDeniedError):
            _seller_quote(seller_a, partner_a, product_router, partner_id=partner_b.id)

    def test_customer_must_belong_to_partner(self, db_session, partner_a, partner_b, seller_b, customer_a, product_router):
        with pytest.raises(ValidationError, match="customer_user_id"):
            _seller_quote(seller_b, partner_b, product_router, customer_a)

    def test_valid_until_required(self, db_session, partner_a, seller_a, product_router):
        with pytest.raises(ValidationError, match="valid_until"):
            _seller_quote(seller_a, partner_a, product_router, valid_until=None)

    def test_bad_line_writes_nothing(self, db_session, partner_a, seller_a, product_router, product_license):
        with pytest.raises(ValidationError):
            quote_service.create_quote(seller_a, partner_a.id, {
                "valid_until": VALID_UNTIL,
                "items": [
                    {"product_id": product_router.id, "quantity": 1, "customer_unit_price_cents": 9500},
                    {"product_id": product_license.id, "quantity": 1, "customer_unit_price_cents": 100},
                ],
            })
        assert db_session.query(Quote).count() == 0
        assert db_session.query(QuoteItem).count() == 0

    def test_customer_cannot_create(self, db_session, partner_a, customer_a, product_router):
        with pytest.raises(PermissionDeniedError):
            _seller_quote(customer_a, partner_a, product_router)


class TestQuoteVisibility:

    def test_other_partner_gets_not_found_and_event(self, db_session, partner_a, partner_b, seller_a, seller_b, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(seller_a, partner_a.id, quote.id, "sent")

        with pytest.raises(NotFoundError):
            quote_service.get_quote(seller_b, partner_b.id, quote.id)
        assert quote_service.list_quotes(seller_b, partner_b.id) == []

        event = db_session.query(SecurityEvent).filter_by(event_type="PARTNER_ACCESS_DENIED").one()
        assert event.user_id == seller_b.id

    def test_customer_sees_only_sent_quotes_addressed_to_them(
        self, db_session, partner_a, seller_a, customer_a, product_router
    ):
        addressed = _seller_quote(seller_a, partner_a, product_router, customer_a)
        _seller_quote(seller_a, partner_a, product_router)

        assert quote_service.list_quotes(customer_a, partner_a.id) == []

        quote_service.update_status(seller_a, partner_a.id, addressed.id, "sent")
        visible = quote_service.list_quotes(customer_a, partner_a.id)
        assert [q.id for q in visible] == [addressed.id]

    def test_provider_sees_everything(self, db_session, partner_a, partner_b, seller_a, seller_b, provider_user, product_router):
        _seller_quote(seller_a, partner_a, product_router)
        _seller_quote(seller_b, partner_b, product_router)
        assert len(quote_service.list_quotes(provider_user, None)) == 2

    def test_status_filter(self, db_session, partner_a, seller_a, product_router):
        first = _seller_quote(seller_a, partner_a, product_router)
        _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(seller_a, partner_a.id, first.id, "sent")

        assert [q.id for q in quote_service.list_quotes(seller_a, partner_a.id, status="SENT")] == [first.id]
        with pytest.raises(ValidationError):
            quote_service.list_quotes(seller_a, partner_a.id, status="pending")


class TestQuoteStateMachine:

    def test_customer_approves_quote_addressed_to_them(self, db_session, partner_a, seller_a, customer_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router, customer_a)
        quote_service.update_status(seller_a, partner_a.id, quote.id, "sent")

        approved = quote_service.update_status(customer_a, partner_a.id, quote.id, "approved")
        assert approved.status == "approved"

    def test_customer_rejects(self, db_session, partner_a, seller_a, customer_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router, customer_a)
        quote_service.update_status(seller_a, partner_a.id, quote.id, "sent")
        assert quote_service.update_status(customer_a, partner_a.id, quote.id, "rejected").status == "rejected"

    def test_seller_cannot_approve(self, db_session, partner_a, seller_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(seller_a, partner_a.id, quote.id, "sent")
        with pytest.raises(PermissionDeniedError):
            quote_service.update_status(seller_a, partner_a.id, quote.id, "approved")

    def test_partner_admin_manages(self, db_session, partner_a, seller_a, admin_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(admin_a, partner_a.id, quote.id, "sent")
        assert quote_service.update_status(admin_a, partner_a.id, quote.id, "approved").status == "approved"

    def test_terminal_states_are_final(self, db_session, partner_a, seller_a, admin_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(admin_a, partner_a.id, quote.id, "approved")

        for target in ("draft", "sent", "rejected"):
            with pytest.raises(ConflictError):
                quote_service.update_status(admin_a, partner_a.id, quote.id, target)

    def test_same_status_conflict(self, db_session, partner_a, seller_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        with pytest.raises(ConflictError, match="already draft"):
            quote_service.update_status(seller_a, partner_a.id, quote.id, "draft")

    def test_notes_update(self, db_session, partner_a, seller_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        updated = quote_service.update_status(seller_a, partner_a.id, quote.id, "sent", notes="Sent by email")
        assert updated.notes == "Sent by email"


class TestQuoteDeletion:

    def test_creator_deletes_draft(self, db_session, partner_a, seller_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.delete_quote(seller_a, partner_a.id, quote.id)
        assert db_session.query(Quote).count() == 0
        assert db_session.query(QuoteItem).count() == 0

    def test_sent_quote_cannot_be_deleted(self, db_session, partner_a, seller_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.update_status(seller_a, partner_a.id, quote.id, "sent")
        with pytest.raises(ConflictError):
            quote_service.delete_quote(seller_a, partner_a.id, quote.id)

    def test_non_creator_partner_member_cannot_delete(self, db_session, partner_a, seller_a, admin_a, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        with pytest.raises(PermissionDeniedError):
            quote_service.delete_quote(admin_a, partner_a.id, quote.id)

    def test_provider_can_delete_any_draft(self, db_session, partner_a, seller_a, provider_user, product_router):
        quote = _seller_quote(seller_a, partner_a, product_router)
        quote_service.delete_quote(provider_user, None, quote.id)
        assert db_session.query(Quote).count() == 0
