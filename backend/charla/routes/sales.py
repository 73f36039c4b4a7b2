# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/charla/routes/sales.py
"""
Sales API routes.

Direct (non-conversational) access to the transaction writer: list,
inspect, edit and cancel sales. Creation only happens through
conversation turns.

MULTI-TENANT: every route is scoped to g.tenant_id; sales of another
tenant are reported as not found.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant
from ..errors import AlreadyCancelledError, EngineError, NotFoundError, SaleVoidedError, ValidationError
from ..extensions import db
from ..services import sales_service
from charla.time_utils import parse_iso_date

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error_response(e: EngineError):
    db.session.rollback()
    if isinstance(e, AlreadyCancelledError):
        return jsonify({"error": e.message, "details": e.details}), 400
    if isinstance(e, NotFoundError):
        return jsonify({"error": e.message}), 404
    if isinstance(e, (ValidationError, SaleVoidedError)):
        return jsonify({"error": e.message, "details": e.details}), 400
    return jsonify({"error": e.message, "code": e.code, "details": e.details}), 422


@sales_bp.get("")
@require_tenant
def list_sales_route():
    """
    List sales.

    Query params:
    - date: YYYY-MM-DD (optional) - tenant-local day, ordered by daily number.
      Defaults to today.
    - recent: int (optional) - instead of a day, the N most recent sales.
    - include_voided: bool (optional, default false)
    """
    include_voided = request.args.get("include_voided", "false").lower() in {"1", "true", "yes"}
    recent = request.args.get("recent", type=int)

    try:
        if recent:
            limit = max(1, min(recent, 100))
            sales = sales_service.list_recent_sales(g.tenant_id, limit, include_voided=include_voided)
            return jsonify({"sales": [s.to_dict() for s in sales]}), 200

        try:
            day = parse_iso_date(request.args.get("date"))
        except ValueError:
            return jsonify({"error": "date must be YYYY-MM-DD"}), 400
        day = day or sales_service.tenant_today(g.tenant_id)

        sales = sales_service.list_sales_for_day(g.tenant_id, day, include_voided=include_voided)
        return jsonify({
            "date": day.isoformat(),
            "sales": [s.to_dict(include_children=True) for s in sales],
        }), 200

    except EngineError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_tenant
def get_sale_route(sale_id: int):
    """Get sale with lines and payments."""
    try:
        sale = sales_service.get_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict(include_children=True)}), 200
    except EngineError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/<int:sale_id>")
@require_tenant
def edit_sale_route(sale_id: int):
    """
    Edit header fields of a non-voided sale.

    Body: any of total_cents, customer_id, customer_name, note,
    occurred_at (ISO-8601), is_incomplete. Lines and payments are not
    editable.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object body required"}), 400

    try:
        sale = sales_service.edit_sale(g.tenant_id, sale_id, data)
        return jsonify({"sale": sale.to_dict(include_children=True)}), 200
    except EngineError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to edit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_tenant
def cancel_sale_route(sale_id: int):
    """
    Cancel (void) a sale. The row is kept with is_voided=true.

    Returns 400 if the sale is already cancelled.
    """
    try:
        sale = sales_service.cancel_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except EngineError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
