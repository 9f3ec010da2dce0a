# Overview: Service-layer operations for analytics; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func

from portal.extensions import db
from portal.models import Order, OrderItem, Partner, Product, Quote, User
from portal.money import average_cents, margin_pct
from portal.permissions import Role, can_bypass_partner_isolation
from portal.services.permission_service import PermissionDeniedError, user_has_permission
from portal.time_utils import days_ago, month_keys, month_start, utcnow
from portal.validation import ValidationError


logger = logging.getLogger(__name__)

MAX_PERIOD_DAYS = 3650
TOP_PRODUCT_LIMIT = 10
TREND_MONTHS = 12

# Orders in these states carry no revenue
NON_REVENUE_ORDER_STATUSES = ("cancelled",)


class AnalyticsError(Exception):
    """Raised when a report cannot be produced."""
    pass


def parse_period(value, default: int = 30) -> int:
    if value in (None, ""):
        return default
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError("period must be an integer number of days")
    if days < 1 or days > MAX_PERIOD_DAYS:
        raise ValidationError(f"period must be between 1 and {MAX_PERIOD_DAYS} days")
    return days


def _revenue_orders(partner_id: int | None):
    query = db.session.query(Order).filter(
        Order.is_active.is_(True),
        Order.status.notin_(NON_REVENUE_ORDER_STATUSES),
    )
    if partner_id is not None:
        query = query.filter(Order.partner_id == partner_id)
    return query


def _quote_counts(partner_id: int | None, since: datetime) -> tuple[int, dict]:
    query = db.session.query(Quote.status, func.count(Quote.id)).filter(
        Quote.is_active.is_(True),
        Quote.created_at >= since,
    )
    if partner_id is not None:
        query = query.filter(Quote.partner_id == partner_id)
    by_status = {status: 0 for status in ("draft", "sent", "approved", "rejected")}
    for status, count in query.group_by(Quote.status).all():
        by_status[status] = int(count)
    return sum(by_status.values()), by_status


def _order_totals(partner_id: int | None, since: datetime) -> dict:
    orders = _revenue_orders(partner_id).filter(Order.created_at >= since)

    count, revenue = orders.with_entities(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_cents), 0),
    ).one()

    partner_cost = (
        orders.outerjoin(Quote, Quote.id == Order.quote_id)
        .with_entities(func.coalesce(func.sum(Quote.partner_total_cents), 0))
        .scalar()
    )

    count = int(count or 0)
    revenue = int(revenue or 0)
    return {
        "total_orders": count,
        "total_revenue_cents": revenue,
        "total_partner_revenue_cents": int(partner_cost or 0),
        "average_order_value_cents": average_cents(revenue, count),
    }


def _sales_by_partner(since: datetime) -> list[dict]:
    rows = (
        _revenue_orders(None)
        .filter(Order.created_at >= since)
        .join(Partner, Partner.id == Order.partner_id)
        .with_entities(
            Partner.id,
            Partner.name,
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .group_by(Partner.id, Partner.name)
        .order_by(func.sum(Order.total_cents).desc(), Partner.id.asc())
        .all()
    )
    return [
        {
            "partner_id": row[0],
            "partner_name": row[1],
            "order_count": int(row.order_count or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def _top_products(partner_id: int | None, since: datetime) -> list[dict]:
    revenue = func.coalesce(func.sum(OrderItem.line_total_cents), 0)
    query = (
        db.session.query(
            Product.id,
            Product.name,
            func.coalesce(func.sum(OrderItem.quantity), 0).label("quantity"),
            revenue.label("revenue_cents"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.is_active.is_(True),
            Order.status.notin_(NON_REVENUE_ORDER_STATUSES),
            Order.created_at >= since,
        )
    )
    if partner_id is not None:
        query = query.filter(Order.partner_id == partner_id)

    rows = (
        query.group_by(Product.id, Product.name)
        .order_by(revenue.desc(), Product.id.asc())
        .limit(TOP_PRODUCT_LIMIT)
        .all()
    )
    return [
        {
            "product_id": row[0],
            "product_name": row[1],
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def _monthly_trend(partner_id: int | None, now: datetime) -> list[dict]:
    keys = month_keys(TREND_MONTHS, now)
    period_expr = func.strftime("%Y-%m", Order.created_at)

    rows = (
        _revenue_orders(partner_id)
        .filter(Order.created_at >= month_start(keys[0]))
        .with_entities(
            period_expr.label("period"),
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .group_by("period")
        .all()
    )
    by_period = {row.period: row for row in rows}

    trend = []
    for key in keys:
        row = by_period.get(key)
        trend.append({
            "month": key,
            "order_count": int(row.order_count) if row else 0,
            "revenue_cents": int(row.revenue_cents or 0) if row else 0,
        })
    return trend


def _customer_breakdown(partner_id: int, since: datetime) -> list[dict]:
    rows = (
        _revenue_orders(partner_id)
        .filter(Order.created_at >= since)
        .outerjoin(User, User.id == Order.customer_user_id)
        .with_entities(
            Order.customer_user_id,
            User.username,
            User.display_name,
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .group_by(Order.customer_user_id, User.username, User.display_name)
        .order_by(func.sum(Order.total_cents).desc())
        .all()
    )
    return [
        {
            "customer_user_id": row[0],
            "customer_name": (row[2] or row[1]) if row[0] is not None else None,
            "order_count": int(row.order_count or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def provider_report(period_days: int = 30, now: datetime | None = None) -> dict:
    now = now or utcnow()
    since = days_ago(period_days, now)

    total_quotes, quotes_by_status = _quote_counts(None, since)
    report = {
        "scope": "provider",
        "period_days": period_days,
        "total_quotes": total_quotes,
        "quotes_by_status": quotes_by_status,
    }
    report.update(_order_totals(None, since))
    report["sales_by_partner"] = _sales_by_partner(since)
    report["top_products"] = _top_products(None, since)
    report["monthly_trend"] = _monthly_trend(None, now)
    return report


def partner_report(partner_id: int, period_days: int = 30, now: datetime | None = None) -> dict:
    now = now or utcnow()
    since = days_ago(period_days, now)

    partner = db.session.get(Partner, partner_id)
    if partner is None:
        raise AnalyticsError("Partner not found")

    total_quotes, quotes_by_status = _quote_counts(partner_id, since)
    totals = _order_totals(partner_id, since)

    report = {
        "scope": "partner",
        "partner_id": partner_id,
        "partner_name": partner.name,
        "period_days": period_days,
        "total_quotes": total_quotes,
        "quotes_by_status": quotes_by_status,
    }
    report.update(totals)
    report["sales_by_partner"] = [
        {
            "partner_id": partner.id,
            "partner_name": partner.name,
            "order_count": totals["total_orders"],
            "revenue_cents": totals["total_revenue_cents"],
        }
    ]
    report["top_products"] = _top_products(partner_id, since)
    report["monthly_trend"] = _monthly_trend(partner_id, now)
    report["customer_breakdown"] = _customer_breakdown(partner_id, since)
    report["profit_margin_pct"] = margin_pct(
        totals["total_revenue_cents"], totals["total_partner_revenue_cents"]
    )
    return report


def report_for(user: User, user_partner_id: int | None, period_days: int = 30) -> dict:
    """Pick the report shape for the caller's role."""
    if user.role_enum == Role.PARTNER_CUSTOMER:
        raise PermissionDeniedError("Analytics are not available to customers")
    if not user_has_permission(user, "analytics:view"):
        raise PermissionDeniedError("Permission denied: analytics:view")

    if can_bypass_partner_isolation(user.role):
        return provider_report(period_days)

    if user_partner_id is None:
        raise PermissionDeniedError("User is not linked to an active partner")
    return partner_report(user_partner_id, period_days)
