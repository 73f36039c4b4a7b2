# Overview: Flask API routes for products and their price history.

# backend/charla/routes/products.py
"""
Product catalog routes.

MULTI-TENANT: products are scoped to g.tenant_id (set by @require_tenant).
Prices are never edited in place: PUT /<id>/price closes the open price
entry and opens a new one.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..services import catalog_service, price_service
from ..services.extraction_validator import MAX_AMOUNT_CENTS

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _tenant_product_or_404(product_id: int):
    product = catalog_service.get_product(g.tenant_id, product_id)
    if not product:
        return None, (jsonify({"error": "Product not found"}), 404)
    return product, None


@products_bp.get("")
@require_tenant
def list_products_route():
    """
    List products with their current price.

    Query params:
    - all: bool (optional) - include unavailable products
    """
    include_all = request.args.get("all", "false").lower() in {"1", "true", "yes"}
    products = catalog_service.list_products(g.tenant_id, available_only=not include_all)
    snapshot = catalog_service.catalog_snapshot(g.tenant_id, products)
    prices = {p["id"]: p["current_price_cents"] for p in snapshot.products}

    return jsonify({
        "products": [
            {**product.to_dict(), "current_price_cents": prices.get(product.id)}
            for product in products
        ]
    }), 200


@products_bp.post("")
@require_tenant
def create_product_route():
    """
    Register a product explicitly.

    Body: name (required), description, price_cents (optional, > 0)
    """
    data = request.get_json(silent=True) or {}
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return jsonify({"error": "name required"}), 400

    price_cents = data.get("price_cents")
    if price_cents is not None and (
        isinstance(price_cents, bool) or not isinstance(price_cents, int)
        or not 0 < price_cents <= MAX_AMOUNT_CENTS
    ):
        return jsonify({"error": "price_cents must be a positive integer within range"}), 400

    try:
        product = catalog_service.create_product(g.tenant_id, name, data.get("description"))
        if price_cents is not None:
            price_service.record_price_if_changed(product.id, price_cents)
        db.session.commit()
        return jsonify({
            "product": {**product.to_dict(), "current_price_cents": price_cents}
        }), 201
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/price-history")
@require_tenant
def price_history_route(product_id: int):
    """Price history, newest first."""
    product, error = _tenant_product_or_404(product_id)
    if error:
        return error

    history = price_service.get_price_history(product.id)
    return jsonify({
        "product": product.to_dict(),
        "history": [entry.to_dict() for entry in history],
    }), 200


@products_bp.get("/<int:product_id>/current-price")
@require_tenant
def current_price_route(product_id: int):
    product, error = _tenant_product_or_404(product_id)
    if error:
        return error

    return jsonify({
        "product_id": product.id,
        "unit_price_cents": price_service.get_current_price(product.id),
    }), 200


@products_bp.put("/<int:product_id>/price")
@require_tenant
def set_price_route(product_id: int):
    """
    Change a product's catalog price.

    Body: price_cents (int > 0)
    Returns changed=false when the price is already current.
    """
    data = request.get_json(silent=True) or {}
    price_cents = data.get("price_cents")
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        return jsonify({"error": "price_cents must be an integer"}), 400

    try:
        entry = price_service.set_price(g.tenant_id, product_id, price_cents)
        return jsonify({
            "product_id": product_id,
            "changed": entry is not None,
            "unit_price_cents": price_service.get_current_price(product_id),
        }), 200
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": e.message}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": e.message}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set product price")
        return jsonify({"error": "Internal server error"}), 500
