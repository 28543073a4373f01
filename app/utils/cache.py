"""
Cache utilities for the pricing service.

Redis-backed caching with fallback to simple in-memory caching, through
Flask-Caching. Used for catalog lists that change rarely (tag lists).

Usage:
    from app.utils.cache import cache, cache_key

    key = cache_key('customer_tags', tenant_id=3)
    tags = cache.get(key)
    if tags is None:
        tags = load_tags()
        cache.set(key, tags, timeout=300)

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set or unavailable.
"""
import os
import logging
from ..extensions import cache

logger = logging.getLogger(__name__)


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to simple cache.

    Args:
        app: Flask application instance

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    redis_url = os.getenv('REDIS_URL')
    timeout = app.config.get('CACHE_DEFAULT_TIMEOUT', 300)

    if redis_url and not app.config.get('TESTING'):
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_DEFAULT_TIMEOUT'] = timeout
            app.config['CACHE_KEY_PREFIX'] = 'pricing:'

            cache.init_app(app)
            logger.info('Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except Exception as e:
            logger.warning('Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config['CACHE_DEFAULT_TIMEOUT'] = timeout

    cache.init_app(app)
    logger.info('Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from function arguments.

        key = cache_key('product_tags', tenant_id=123)
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)
