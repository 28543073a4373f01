"""
Shopify App Proxy endpoints.

Handles requests from store.myshopify.com/apps/pricing. The theme app
extension falls back to these when the shop metafield is missing.

App proxy documentation: https://shopify.dev/docs/apps/build/online-store/display-dynamic-store-data/app-proxies
"""
import hashlib
import hmac
import logging
import os

from flask import Blueprint, request, jsonify, current_app, Response

from ..models.tenant import Tenant
from ..services.rule_repository import RuleRepository

logger = logging.getLogger(__name__)

proxy_bp = Blueprint('proxy', __name__)


def verify_proxy_signature():
    """
    Verify the Shopify proxy request signature.

    Shopify signs all app proxy requests with the app's API secret.
    https://shopify.dev/docs/apps/build/online-store/display-dynamic-store-data/app-proxies#calculate-a-digital-signature

    Returns:
        Tuple of (is_valid, shop_domain)
    """
    signature = request.args.get('signature', '')

    # Build the query string without signature
    query_params = []
    for key in sorted(request.args.keys()):
        if key != 'signature':
            value = ','.join(request.args.getlist(key))
            query_params.append(f'{key}={value}')

    # Shopify joins the sorted params with no separator
    query_string = ''.join(query_params)

    api_secret = current_app.config.get('SHOPIFY_API_SECRET', '')
    expected_signature = hmac.new(
        api_secret.encode('utf-8'),
        query_string.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()

    is_valid = hmac.compare_digest(signature, expected_signature)
    shop = request.args.get('shop', '')

    return is_valid, shop


def check_proxy_auth():
    """
    Verify proxy signature and return shop domain.

    Returns:
        Tuple of (error_response, shop_domain)
        If error_response is not None, return it immediately.
    """
    # Allow bypassing signature verification for development/testing
    skip_signature = os.getenv('SKIP_PROXY_SIGNATURE', '').lower() == 'true'

    if current_app.config.get('VERIFY_PROXY_SIGNATURE') and not skip_signature:
        is_valid, shop = verify_proxy_signature()
        if not is_valid:
            logger.warning("Proxy signature verification failed. Params: %s", list(request.args.keys()))
            return Response('Invalid signature', status=401), None
        return None, shop
    return None, request.args.get('shop', '')


@proxy_bp.route('/pricing-rules/storefront', methods=['GET'])
def storefront_rules():
    """Active pricing rules in the shape the theme app extension reads."""
    error, shop = check_proxy_auth()
    if error is not None:
        return error

    tenant = Tenant.query.filter_by(shopify_domain=shop).first() if shop else None
    if not tenant or not tenant.is_active:
        return jsonify({'rules': []}), 200

    rules = RuleRepository(tenant.id).active_rules()
    response = jsonify({'rules': [rule.to_storefront_dict() for rule in rules]})
    response.headers['Cache-Control'] = 'public, max-age=60'
    return response, 200
