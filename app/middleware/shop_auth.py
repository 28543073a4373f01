"""
Shop Authentication Middleware.

Simplified auth decorator for embedded Shopify app requests.
Extracts shop domain from query params, headers, or the embedded app referer.
"""
import logging
import os
from functools import wraps
from urllib.parse import urlparse

from flask import request, g

from ..extensions import db
from ..models import Tenant
from ..utils.errors import error_response, ErrorCode

logger = logging.getLogger(__name__)

# Development mode - auto-create tenants
DEV_MODE = os.getenv('FLASK_ENV') == 'development' or os.getenv('SHOPIFY_AUTH_DEV_MODE') == 'true'


def get_shop_from_request() -> str | None:
    """
    Get shop domain from request using multiple methods.

    Priority:
    1. shop query parameter
    2. X-Shop-Domain header
    3. Referer header (extract shop from embedded app URL)

    Returns:
        Shop domain or None
    """
    # Method 1: Query parameter (most common for embedded apps)
    shop = request.args.get('shop')
    if shop:
        return shop

    # Method 2: Custom header
    shop = request.headers.get('X-Shop-Domain')
    if shop:
        return shop

    # Method 3: Try to extract from referer
    referer = request.headers.get('Referer', '')
    if 'myshopify.com' in referer:
        # Extract shop from URL like https://shop.myshopify.com/admin/apps/...
        parsed = urlparse(referer)
        if parsed.netloc.endswith('myshopify.com'):
            return parsed.netloc

    return None


def get_or_create_tenant(shop: str) -> Tenant | None:
    """
    Get existing tenant or create a new one in dev mode.

    Args:
        shop: Shop domain (e.g., 'mystore.myshopify.com')

    Returns:
        Tenant object or None
    """
    tenant = Tenant.query.filter_by(shopify_domain=shop).first()

    if not tenant and DEV_MODE:
        # Auto-create tenant in dev mode
        shop_slug = shop.replace('.myshopify.com', '').lower()
        tenant = Tenant(
            shop_name=shop_slug.replace('-', ' ').title(),
            shop_slug=shop_slug,
            shopify_domain=shop,
            shopify_access_token=os.getenv('SHOPIFY_ACCESS_TOKEN'),
            is_active=True,
        )
        db.session.add(tenant)
        db.session.commit()
        logger.info('Auto-created dev tenant for %s', shop)

    return tenant


def require_shop_auth(f):
    """
    Decorator to require shop authentication for admin API endpoints.

    Sets g.shop, g.tenant and g.tenant_id if authenticated.

    In production: Requires shop domain and valid tenant
    In development: Auto-creates tenant if needed

    Usage:
        @require_shop_auth
        def my_endpoint():
            tenant_id = g.tenant_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop = get_shop_from_request()

        if not shop:
            return error_response('Missing shop domain', ErrorCode.AUTH_REQUIRED, 401, log_error=False)

        tenant = get_or_create_tenant(shop)

        if not tenant:
            return error_response('This shop has not installed the app', ErrorCode.SHOP_NOT_FOUND, 404,
                                  log_error=False)

        if not tenant.is_active:
            return error_response("This shop's access has been disabled", ErrorCode.PERMISSION_DENIED, 403,
                                  log_error=False)

        g.shop = shop
        g.tenant_id = tenant.id
        g.tenant = tenant

        return f(*args, **kwargs)

    return decorated_function
