# Overview: Flask API routes for analytics reports; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import analytics_service
from ..services.analytics_service import AnalyticsError
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("")
@require_auth
@require_permission("analytics:view")
def analytics_route():
    """
    Sales analytics for the caller's scope.

    Requires: analytics:view
    Query: period (days, default ANALYTICS_DEFAULT_PERIOD_DAYS)
    Provider staff get the provider-wide report, partner roles get their
    partner's report. Customers are refused.
    """
    try:
        period = analytics_service.parse_period(
            request.args.get("period"),
            default=current_app.config.get("ANALYTICS_DEFAULT_PERIOD_DAYS", 30),
        )
        report = analytics_service.report_for(g.current_user, g.partner_id, period)
        return jsonify(report), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except AnalyticsError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to build analytics report")
        return jsonify({"error": "Internal server error"}), 500
