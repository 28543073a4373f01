"""
Middleware package for the pricing rule service.
"""
from .shop_auth import require_shop_auth, get_shop_from_request

__all__ = ['require_shop_auth', 'get_shop_from_request']
