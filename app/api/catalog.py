"""
Catalog lookup API for the pricing rule editor.

Search results always come back with HTTP 200. When Shopify is unavailable
the list is empty and `unavailable` is true. Search endpoints echo the
caller's `seq` so the browser can drop responses to superseded queries.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.shop_auth import require_shop_auth
from ..services.catalog_service import CatalogService

catalog_bp = Blueprint('catalog', __name__)


def _respond(result, key: str):
    body = result.to_dict()
    body[key] = body.pop('items')
    seq = request.args.get('seq')
    if seq is not None:
        body['seq'] = seq
    return jsonify(body), 200


def _query() -> str:
    return request.args.get('q', '')


@catalog_bp.route('/products', methods=['GET'])
@require_shop_auth
def search_products():
    """Search products. Query params: q, seq."""
    return _respond(CatalogService(g.tenant_id).search_products(_query()), 'products')


@catalog_bp.route('/customers', methods=['GET'])
@require_shop_auth
def search_customers():
    """Search customers by name, email or phone. Query params: q, seq."""
    return _respond(CatalogService(g.tenant_id).search_customers(_query()), 'customers')


@catalog_bp.route('/collections', methods=['GET'])
@require_shop_auth
def search_collections():
    """Search collections by title. Query params: q, seq."""
    return _respond(CatalogService(g.tenant_id).search_collections(_query()), 'collections')


@catalog_bp.route('/customer-tags', methods=['GET'])
@require_shop_auth
def customer_tags():
    return _respond(CatalogService(g.tenant_id).list_customer_tags(), 'tags')


@catalog_bp.route('/product-tags', methods=['GET'])
@require_shop_auth
def product_tags():
    return _respond(CatalogService(g.tenant_id).list_product_tags(), 'tags')


@catalog_bp.route('/segments', methods=['GET'])
@require_shop_auth
def segments():
    """Customer segments. Query param discountId flags segments already assigned to it."""
    discount_id = request.args.get('discountId') or None
    return _respond(CatalogService(g.tenant_id).list_segments(discount_id), 'segments')
