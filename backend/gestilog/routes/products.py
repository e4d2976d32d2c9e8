# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product management routes.

All product operations are scoped to the store in g.store_id (set by
@require_context). stock_quantity is read-only here; use /api/stock.
"""
from flask import Blueprint, request, jsonify, g

from ..exceptions import GestilogError
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import require_context

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "reference", "barcode", "description", "unit",
        "purchase_price", "sale_price", "min_stock_threshold", "is_active",
    },
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


@products_bp.get("/")
@require_context
def list_products_route():
    """
    Query params:
    - search: name, reference or barcode contains
    - active: true/false
    - low_stock: true to keep products at or under their threshold
    - page, limit
    """
    result = products_service.list_products(
        g.store_id,
        search=request.args.get("search"),
        active=_flag("active"),
        low_stock=bool(_flag("low_stock")),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 50, type=int),
    )
    result["items"] = [p.to_dict() for p in result["items"]]
    return jsonify(result), 200


@products_bp.get("/low-stock")
@require_context
def low_stock_route():
    products = products_service.list_low_stock(g.store_id)
    return jsonify({"items": [p.to_dict() for p in products]}), 200


@products_bp.post("/")
@require_context
def create_product_route():
    """Create a product. An optional initial_quantity is booked as a stock entry."""
    payload = request.get_json(silent=True) or {}
    initial_quantity = payload.pop("initial_quantity", None)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(
            g.store_id, patch, initial_quantity=initial_quantity, user_id=g.user_id
        )
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/<int:product_id>")
@require_context
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(g.store_id, product_id)
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
@require_context
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(g.store_id, product_id, patch, user_id=g.user_id)
    except GestilogError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"product": product.to_dict()}), 200
