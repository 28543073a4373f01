"""
Catalog lookups for the pricing rule editor.

Read-only search over products, customers, collections, tags and segments.
Lookups never fail the editor: Shopify failures come back as an empty
result flagged `unavailable`, and results for a cancelled token come back
flagged `superseded` so callers can drop them.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from ..utils.cache import cache, cache_key
from ..utils.cancellation import CancellationToken, RequestSequencer
from ..utils.exceptions import CatalogUnavailable, ConfigurationError, ShopifyError
from .shopify_client import ShopifyClient, client_for_tenant, extract_id

logger = logging.getLogger(__name__)


@dataclass
class CatalogResult:
    items: List[Any] = field(default_factory=list)
    unavailable: bool = False
    superseded: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'items': self.items, 'unavailable': self.unavailable}
        if self.message:
            data['message'] = self.message
        return data


class CatalogService:
    """
    Search adapter over the tenant's Shopify catalog.

    Each lookup takes an optional CancellationToken; when none is given and
    the service owns a RequestSequencer, a token is issued on the lookup's
    channel so a newer lookup of the same kind supersedes an older one.
    """

    def __init__(self, tenant_id: int, client: ShopifyClient = None, sequencer: RequestSequencer = None):
        self.tenant_id = tenant_id
        self._client = client
        self.sequencer = sequencer

    @property
    def client(self) -> ShopifyClient:
        if self._client is None:
            self._client = client_for_tenant(self.tenant_id)
        return self._client

    @property
    def search_limit(self) -> int:
        return current_app.config.get('CATALOG_SEARCH_LIMIT', 25)

    def _token(self, channel: str, token: Optional[CancellationToken]) -> Optional[CancellationToken]:
        if token is None and self.sequencer is not None:
            return self.sequencer.next(channel)
        return token

    def _run(self, channel: str, fetch: Callable[[], List[Any]],
             token: Optional[CancellationToken] = None) -> CatalogResult:
        token = self._token(channel, token)
        if token is not None and token.cancelled:
            return CatalogResult(superseded=True)

        try:
            items = self._fetch(channel, fetch)
        except CatalogUnavailable as e:
            logger.warning("Catalog lookup %s unavailable for tenant %s: %s", channel, self.tenant_id,
                           e.original_error or e.message)
            result = CatalogResult(unavailable=True, message=e.message)
        else:
            result = CatalogResult(items=items)

        if token is not None and token.cancelled:
            logger.debug("Dropping superseded %s result for tenant %s", channel, self.tenant_id)
            return CatalogResult(superseded=True)
        return result

    def _fetch(self, resource: str, fetch: Callable[[], List[Any]]) -> List[Any]:
        """Run a Shopify read, converting failures to CatalogUnavailable."""
        try:
            return fetch() or []
        except (ShopifyError, ConfigurationError) as e:
            raise CatalogUnavailable(resource.replace('_', ' '), e)

    # ==================== Search ====================

    def search_products(self, query: str, token: CancellationToken = None) -> CatalogResult:
        query = (query or '').strip()
        return self._run('products', lambda: self.client.search_products(query, self.search_limit), token)

    def search_customers(self, query: str, token: CancellationToken = None) -> CatalogResult:
        query = (query or '').strip()
        if not query:
            # An empty customer search would list the whole customer base
            return CatalogResult()
        return self._run('customers', lambda: self.client.search_customers(query, self.search_limit), token)

    def search_collections(self, query: str, token: CancellationToken = None) -> CatalogResult:
        query = (query or '').strip()
        return self._run('collections', lambda: self.client.search_collections(query, self.search_limit), token)

    # ==================== Lists ====================

    def list_customer_tags(self, token: CancellationToken = None) -> CatalogResult:
        return self._run('customer_tags', lambda: self._cached_tags('customer_tags'), token)

    def list_product_tags(self, token: CancellationToken = None) -> CatalogResult:
        return self._run('product_tags', lambda: self._cached_tags('product_tags'), token)

    def _cached_tags(self, kind: str) -> List[str]:
        key = cache_key(kind, tenant_id=self.tenant_id)
        tags = cache.get(key)
        if tags is not None:
            return tags

        pages = current_app.config.get('CATALOG_TAG_PAGES', 5)
        if kind == 'customer_tags':
            tags = self.client.get_customer_tags(max_pages=pages)
        else:
            tags = self.client.get_product_tags(max_pages=pages)
        cache.set(key, tags)
        return tags

    def list_segments(self, discount_context_id: str = None, token: CancellationToken = None) -> CatalogResult:
        """
        List customer segments.

        With a discount id, each segment is flagged `assigned` when it is
        already bound to that discount.
        """
        def fetch():
            segments = self.client.get_segments()
            if not discount_context_id:
                return segments
            discount = self.client.get_automatic_discount(discount_context_id)
            assigned = {s.get('id') for s in discount.get('segments', [])}
            return [dict(s, assigned=s.get('id') in assigned) for s in segments]

        return self._run('segments', fetch, token)

    # ==================== Prices ====================

    def product_prices(self, product_ids: List[str], token: CancellationToken = None) -> Dict[str, Decimal]:
        """Current prices for the given products; empty when Shopify is unavailable."""
        ids = [extract_id(pid) for pid in product_ids if pid]
        if not ids:
            return {}
        result = self._run('product_prices', lambda: [self.client.get_product_prices(ids)], token)
        if result.unavailable or result.superseded or not result.items:
            return {}
        return result.items[0]
