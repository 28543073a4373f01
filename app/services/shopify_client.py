"""
Shopify Admin API client.
Handles catalog lookups, automatic discounts and shop metafields.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Iterable

import httpx
from flask import current_app, has_app_context

from ..utils.exceptions import (
    ShopifyError,
    ShopifyUnavailableError,
    ShopifyUserError,
    DiscountNotFoundError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = '2025-07'

# Shopify caps `first:` at 250 per connection page
MAX_PAGE_SIZE = 250


def to_gid(resource: str, value) -> str:
    """Return a Shopify GID for a numeric id, leaving GIDs untouched."""
    value = str(value)
    if value.startswith('gid://'):
        return value
    return f'gid://shopify/{resource}/{value}'


def extract_id(gid) -> Optional[str]:
    """Extract the numeric id from a GID (gid://shopify/Product/123 -> 123)."""
    if gid is None:
        return None
    return str(gid).split('/')[-1]


def _money(value) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


class ShopifyClient:
    """
    Client for Shopify Admin GraphQL API.

    Supports:
    - Product, customer and collection search
    - Customer and product tags, customer segments
    - Automatic discount create/update/read/activation
    - Shop metafields
    """

    def __init__(self, tenant_id_or_domain, access_token: str = None, api_version: str = None,
                 timeout: float = None):
        """
        Initialize Shopify client.

        Can be initialized either with:
        - tenant_id (int): Will fetch credentials from database
        - shop_domain + access_token: Direct initialization
        """
        if isinstance(tenant_id_or_domain, int):
            # Initialize from tenant ID
            from ..extensions import db
            from ..models.tenant import Tenant
            tenant = db.session.get(Tenant, tenant_id_or_domain)
            if not tenant:
                raise ValueError(f"Tenant {tenant_id_or_domain} not found")
            if not tenant.shopify_domain or not tenant.shopify_access_token:
                raise ValueError(f"Tenant {tenant_id_or_domain} missing Shopify credentials")

            self.shop_domain = tenant.shopify_domain.replace('https://', '').replace('http://', '').rstrip('/')
            self.access_token = tenant.shopify_access_token
        else:
            # Direct initialization
            self.shop_domain = tenant_id_or_domain.replace('https://', '').replace('http://', '').rstrip('/')
            self.access_token = access_token

        if has_app_context():
            api_version = api_version or current_app.config.get('SHOPIFY_API_VERSION')
            timeout = timeout or current_app.config.get('SHOPIFY_HTTP_TIMEOUT')

        self.api_version = api_version or DEFAULT_API_VERSION
        self.timeout = timeout or 30.0
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json'

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query.

        Raises:
            ShopifyUnavailableError: network failure, timeout, throttling or 5xx
            ShopifyError: any other HTTP or GraphQL error
        """
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client() as client:
                response = client.post(
                    self.graphql_url,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise ShopifyUnavailableError(f"Shopify returned HTTP {status}", e)
            raise ShopifyError(f"Shopify returned HTTP {status}", e)
        except httpx.TransportError as e:
            raise ShopifyUnavailableError(f"Could not reach Shopify: {e}", e)
        except ValueError as e:
            raise ShopifyError("Shopify returned an invalid response", e)

        if result.get('errors'):
            errors = result['errors']
            codes = [(err.get('extensions') or {}).get('code') for err in errors if isinstance(err, dict)]
            if 'THROTTLED' in codes:
                logger.warning("Shopify throttled request to %s", self.shop_domain)
                raise ShopifyUnavailableError("Shopify throttled the request")
            raise ShopifyError(f"GraphQL errors: {errors}")

        return result.get('data') or {}

    @staticmethod
    def _check_user_errors(data: Dict[str, Any], operation: str, discount_id: str = None) -> None:
        """Raise a typed error for mutation userErrors."""
        user_errors = data.get('userErrors') or []
        if not user_errors:
            return
        if discount_id:
            for err in user_errors:
                message = (err.get('message') or '').lower()
                if 'does not exist' in message or 'not found' in message:
                    raise DiscountNotFoundError(discount_id)
        raise ShopifyUserError(user_errors, operation)

    def _paginate(self, query: str, root: str, max_pages: int = None, page_size: int = 100,
                  variables: Optional[Dict] = None) -> Iterable[Dict[str, Any]]:
        """Yield nodes across cursor pages of a connection."""
        has_next_page = True
        cursor = None
        pages = 0

        while has_next_page and (max_pages is None or pages < max_pages):
            page_vars = dict(variables or {})
            page_vars['first'] = page_size
            if cursor:
                page_vars['after'] = cursor

            result = self._execute_query(query, page_vars)
            connection = result.get(root) or {}

            for edge in connection.get('edges', []):
                yield edge.get('node') or {}

            page_info = connection.get('pageInfo', {})
            has_next_page = page_info.get('hasNextPage', False)
            cursor = page_info.get('endCursor')
            pages += 1

    # ==================== Catalog ====================

    def search_products(self, query: str, limit: int = 25) -> List[Dict[str, Any]]:
        """
        Search products by title, SKU or handle.

        Args:
            query: Free-text search
            limit: Maximum results to return

        Returns:
            List of product dicts with id, gid, title, handle, price
        """
        gql_query = """
        query searchProducts($query: String!, $first: Int!) {
            products(first: $first, query: $query) {
                edges {
                    node {
                        id
                        title
                        handle
                        status
                        featuredImage {
                            url
                        }
                        priceRangeV2 {
                            minVariantPrice {
                                amount
                                currencyCode
                            }
                        }
                    }
                }
            }
        }
        """

        result = self._execute_query(gql_query, {'query': query.strip(), 'first': limit})

        products = []
        for edge in result.get('products', {}).get('edges', []):
            products.append(self._product_summary(edge.get('node', {})))
        return products

    @staticmethod
    def _product_summary(node: Dict[str, Any]) -> Dict[str, Any]:
        min_price = (node.get('priceRangeV2') or {}).get('minVariantPrice') or {}
        gid = node.get('id', '')
        return {
            'id': extract_id(gid),
            'gid': gid,
            'title': node.get('title'),
            'handle': node.get('handle'),
            'status': node.get('status'),
            'price': min_price.get('amount'),
            'currencyCode': min_price.get('currencyCode'),
            'image': (node.get('featuredImage') or {}).get('url'),
        }

    def search_customers(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Search for customers by name, email, or phone.

        Args:
            query: Search query (name, email, or phone)
            limit: Maximum results to return

        Returns:
            List of matching customer dicts
        """
        # Shopify search supports: email:, phone:, or just text
        search_query = query.strip()

        # If it looks like an email, search by email
        if '@' in search_query:
            shopify_query = f'email:{search_query}'
        # If it looks like a phone number (mostly digits), search by phone
        elif search_query.replace('-', '').replace(' ', '').replace('(', '').replace(')', '').replace('+', '').isdigit():
            digits = ''.join(c for c in search_query if c.isdigit())
            shopify_query = f'phone:*{digits}*'
        # Otherwise, search by name
        else:
            shopify_query = search_query

        gql_query = """
        query searchCustomers($query: String!, $first: Int!) {
            customers(first: $first, query: $query) {
                edges {
                    node {
                        id
                        email
                        firstName
                        lastName
                        displayName
                        phone
                        tags
                    }
                }
            }
        }
        """

        result = self._execute_query(gql_query, {'query': shopify_query, 'first': limit})

        customers = []
        for edge in result.get('customers', {}).get('edges', []):
            node = edge.get('node', {})
            gid = node.get('id', '')
            customers.append({
                'id': extract_id(gid),
                'gid': gid,
                'email': node.get('email'),
                'firstName': node.get('firstName'),
                'lastName': node.get('lastName'),
                'displayName': node.get('displayName') or f"{node.get('firstName') or ''} {node.get('lastName') or ''}".strip(),
                'phone': node.get('phone'),
                'tags': node.get('tags', []),
            })

        return customers

    def search_collections(self, query: str, limit: int = 25) -> List[Dict[str, Any]]:
        """
        Search collections by title.

        Returns:
            List of collection dicts with id, gid, title, handle, productsCount, isSmart
        """
        gql_query = """
        query searchCollections($query: String!, $first: Int!) {
            collections(first: $first, query: $query) {
                edges {
                    node {
                        id
                        title
                        handle
                        productsCount {
                            count
                        }
                        ruleSet {
                            appliedDisjunctively
                        }
                    }
                }
            }
        }
        """

        search = query.strip()
        shopify_query = f'title:*{search}*' if search else ''
        result = self._execute_query(gql_query, {'query': shopify_query, 'first': limit})

        collections = []
        for edge in result.get('collections', {}).get('edges', []):
            node = edge.get('node', {})
            gid = node.get('id', '')
            collections.append({
                'id': extract_id(gid),
                'gid': gid,
                'title': node.get('title'),
                'handle': node.get('handle'),
                'productsCount': (node.get('productsCount') or {}).get('count', 0),
                # ruleSet being non-null indicates a smart collection
                'isSmart': node.get('ruleSet') is not None,
            })

        return sorted(collections, key=lambda x: (x['title'] or '').lower())

    def get_product_tags(self, max_pages: int = 5) -> List[str]:
        """
        Get all unique product tags from Shopify.

        Args:
            max_pages: Pages of 100 products to scan

        Returns:
            List of unique tag strings
        """
        query = """
        query getProductTags($first: Int!, $after: String) {
            products(first: $first, after: $after) {
                pageInfo {
                    hasNextPage
                    endCursor
                }
                edges {
                    node {
                        tags
                    }
                }
            }
        }
        """

        all_tags = set()
        for node in self._paginate(query, 'products', max_pages=max_pages):
            all_tags.update(node.get('tags', []))
        return sorted(all_tags)

    def get_customer_tags(self, max_pages: int = 5) -> List[str]:
        """
        Get all unique customer tags from Shopify.

        Args:
            max_pages: Pages of 100 customers to scan

        Returns:
            List of unique tag strings
        """
        query = """
        query getCustomerTags($first: Int!, $after: String) {
            customers(first: $first, after: $after) {
                pageInfo {
                    hasNextPage
                    endCursor
                }
                edges {
                    node {
                        tags
                    }
                }
            }
        }
        """

        all_tags = set()
        for node in self._paginate(query, 'customers', max_pages=max_pages):
            all_tags.update(node.get('tags', []))
        return sorted(all_tags)

    def get_segments(self, max_pages: int = None) -> List[Dict[str, Any]]:
        """
        Get all customer segments from Shopify.

        Returns:
            List of segment dicts with id, name, query
        """
        query = """
        query getSegments($first: Int!, $after: String) {
            segments(first: $first, after: $after) {
                pageInfo {
                    hasNextPage
                    endCursor
                }
                edges {
                    node {
                        id
                        name
                        query
                        creationDate
                        lastEditDate
                    }
                }
            }
        }
        """

        segments = []
        for node in self._paginate(query, 'segments', max_pages=max_pages, page_size=50):
            segments.append({
                'id': node.get('id'),
                'name': node.get('name'),
                'query': node.get('query'),
                'creationDate': node.get('creationDate'),
                'lastEditDate': node.get('lastEditDate')
            })
        return segments

    def get_product_prices(self, product_ids: List[str]) -> Dict[str, Decimal]:
        """
        Get the lowest variant price for each product.

        Args:
            product_ids: Numeric ids or GIDs

        Returns:
            Dict of numeric product id -> price; unknown products are omitted
        """
        if not product_ids:
            return {}

        query = """
        query getProductPrices($ids: [ID!]!) {
            nodes(ids: $ids) {
                ... on Product {
                    id
                    priceRangeV2 {
                        minVariantPrice {
                            amount
                        }
                    }
                }
            }
        }
        """

        gids = [to_gid('Product', pid) for pid in product_ids]
        prices = {}
        for start in range(0, len(gids), MAX_PAGE_SIZE):
            result = self._execute_query(query, {'ids': gids[start:start + MAX_PAGE_SIZE]})
            for node in result.get('nodes') or []:
                if not node or not node.get('id'):
                    continue
                amount = ((node.get('priceRangeV2') or {}).get('minVariantPrice') or {}).get('amount')
                price = _money(amount)
                if price is not None:
                    prices[extract_id(node['id'])] = price
        return prices

    def get_products(self, search: str = '', max_pages: int = 10) -> List[Dict[str, Any]]:
        """
        Get every product matching a Shopify product search.

        Args:
            search: Shopify search syntax; empty matches the whole catalog
            max_pages: Pages of 250 products to read

        Returns:
            List of product dicts with id, gid, title, handle, price, tags
        """
        query = """
        query getProducts($query: String!, $first: Int!, $after: String) {
            products(first: $first, after: $after, query: $query) {
                pageInfo {
                    hasNextPage
                    endCursor
                }
                edges {
                    node {
                        id
                        title
                        handle
                        status
                        tags
                        priceRangeV2 {
                            minVariantPrice {
                                amount
                                currencyCode
                            }
                        }
                    }
                }
            }
        }
        """

        products = []
        seen = set()
        for node in self._paginate(query, 'products', max_pages=max_pages, page_size=MAX_PAGE_SIZE,
                                   variables={'query': search}):
            product = self._product_summary(node)
            if product['id'] in seen:
                continue
            seen.add(product['id'])
            product['tags'] = node.get('tags', [])
            products.append(product)
        return products

    def get_products_by_tags(self, tags: Iterable[str], max_pages: int = 10) -> List[Dict[str, Any]]:
        """Get products that carry any of the given tags (OR)."""
        tags = sorted({t for t in tags if t})
        if not tags:
            return []
        search = ' OR '.join('tag:"{}"'.format(t.replace('"', '\\"')) for t in tags)
        return self.get_products(search, max_pages=max_pages)

    def get_products_in_collections(self, collection_ids: Iterable[str], max_pages: int = 10) -> List[Dict[str, Any]]:
        """Get products that belong to any of the given collections."""
        ids = sorted({extract_id(c) for c in collection_ids if c})
        if not ids:
            return []
        search = ' OR '.join(f'collection_id:{i}' for i in ids)
        return self.get_products(search, max_pages=max_pages)

    # ==================== Automatic discounts ====================

    def create_automatic_discount(self, discount_input: Dict[str, Any]) -> str:
        """
        Create a basic automatic discount.

        Args:
            discount_input: DiscountAutomaticBasicInput

        Returns:
            The new discount GID
        """
        mutation = """
        mutation discountAutomaticBasicCreate($automaticBasicDiscount: DiscountAutomaticBasicInput!) {
            discountAutomaticBasicCreate(automaticBasicDiscount: $automaticBasicDiscount) {
                automaticDiscountNode {
                    id
                }
                userErrors {
                    field
                    code
                    message
                }
            }
        }
        """

        result = self._execute_query(mutation, {'automaticBasicDiscount': discount_input})
        data = result.get('discountAutomaticBasicCreate') or {}
        self._check_user_errors(data, 'discountAutomaticBasicCreate')

        discount_id = (data.get('automaticDiscountNode') or {}).get('id')
        if not discount_id:
            raise ShopifyError("discountAutomaticBasicCreate returned no discount id")
        return discount_id

    def update_automatic_discount(self, discount_id: str, discount_input: Dict[str, Any]) -> str:
        """
        Update a basic automatic discount in place.

        Raises:
            DiscountNotFoundError: the discount no longer exists
        """
        mutation = """
        mutation discountAutomaticBasicUpdate($id: ID!, $automaticBasicDiscount: DiscountAutomaticBasicInput!) {
            discountAutomaticBasicUpdate(id: $id, automaticBasicDiscount: $automaticBasicDiscount) {
                automaticDiscountNode {
                    id
                }
                userErrors {
                    field
                    code
                    message
                }
            }
        }
        """

        result = self._execute_query(mutation, {'id': discount_id, 'automaticBasicDiscount': discount_input})
        data = result.get('discountAutomaticBasicUpdate') or {}
        self._check_user_errors(data, 'discountAutomaticBasicUpdate', discount_id)
        return (data.get('automaticDiscountNode') or {}).get('id') or discount_id

    def get_automatic_discount(self, discount_id: str) -> Dict[str, Any]:
        """
        Read a basic automatic discount with its eligibility and items.

        Returns:
            Dict with title, status, context ('all', 'customers' or 'segments'),
            customers, segments, all_items, products, collections,
            minimum_requirement and combines_with

        Raises:
            DiscountNotFoundError: the discount no longer exists
        """
        query = """
        query getAutomaticDiscount($id: ID!) {
            automaticDiscountNode(id: $id) {
                id
                automaticDiscount {
                    ... on DiscountAutomaticBasic {
                        title
                        status
                        context {
                            ... on DiscountBuyerSelectionAll {
                                all
                            }
                            ... on DiscountCustomers {
                                customers {
                                    id
                                    displayName
                                    email
                                }
                            }
                            ... on DiscountCustomerSegments {
                                segments {
                                    id
                                    name
                                }
                            }
                        }
                        customerGets {
                            items {
                                ... on AllDiscountItems {
                                    allItems
                                }
                                ... on DiscountProducts {
                                    products(first: 250) {
                                        edges {
                                            node {
                                                id
                                                title
                                                handle
                                            }
                                        }
                                    }
                                }
                                ... on DiscountCollections {
                                    collections(first: 250) {
                                        edges {
                                            node {
                                                id
                                                title
                                            }
                                        }
                                    }
                                }
                            }
                        }
                        minimumRequirement {
                            ... on DiscountMinimumQuantity {
                                greaterThanOrEqualToQuantity
                            }
                            ... on DiscountMinimumSubtotal {
                                greaterThanOrEqualToSubtotal {
                                    amount
                                    currencyCode
                                }
                            }
                        }
                        combinesWith {
                            productDiscounts
                            orderDiscounts
                            shippingDiscounts
                        }
                    }
                }
            }
        }
        """

        result = self._execute_query(query, {'id': discount_id})
        node = result.get('automaticDiscountNode')
        if not node:
            raise DiscountNotFoundError(discount_id)

        discount = node.get('automaticDiscount') or {}
        context = discount.get('context') or {}
        items = (discount.get('customerGets') or {}).get('items') or {}

        if 'customers' in context:
            context_type = 'customers'
        elif 'segments' in context:
            context_type = 'segments'
        else:
            context_type = 'all'

        products = []
        for edge in (items.get('products') or {}).get('edges', []):
            p = edge.get('node', {})
            products.append({'id': extract_id(p.get('id')), 'gid': p.get('id'),
                             'title': p.get('title'), 'handle': p.get('handle')})

        collections = []
        for edge in (items.get('collections') or {}).get('edges', []):
            c = edge.get('node', {})
            collections.append({'id': extract_id(c.get('id')), 'gid': c.get('id'), 'title': c.get('title')})

        return {
            'id': node.get('id'),
            'title': discount.get('title'),
            'status': discount.get('status'),
            'context': context_type,
            'customers': context.get('customers') or [],
            'segments': context.get('segments') or [],
            'all_items': bool(items.get('allItems')),
            'products': products,
            'collections': collections,
            'minimum_requirement': self._parse_minimum_requirement(discount.get('minimumRequirement')),
            'combines_with': discount.get('combinesWith') or {},
        }

    @staticmethod
    def _parse_minimum_requirement(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not data:
            return {'type': 'none'}
        if data.get('greaterThanOrEqualToQuantity') is not None:
            return {'type': 'quantity', 'quantity': int(data['greaterThanOrEqualToQuantity'])}
        subtotal = data.get('greaterThanOrEqualToSubtotal')
        if subtotal:
            return {'type': 'subtotal', 'amount': float(subtotal.get('amount', 0)),
                    'currencyCode': subtotal.get('currencyCode')}
        return {'type': 'none'}

    def set_automatic_discount_active(self, discount_id: str, active: bool) -> str:
        """
        Activate or deactivate an automatic discount.

        Returns:
            The discount status reported by Shopify
        """
        operation = 'discountAutomaticActivate' if active else 'discountAutomaticDeactivate'
        mutation = """
        mutation %s($id: ID!) {
            %s(id: $id) {
                automaticDiscountNode {
                    automaticDiscount {
                        ... on DiscountAutomaticBasic {
                            status
                        }
                    }
                }
                userErrors {
                    field
                    code
                    message
                }
            }
        }
        """ % (operation, operation)

        result = self._execute_query(mutation, {'id': discount_id})
        data = result.get(operation) or {}
        self._check_user_errors(data, operation, discount_id)
        node = data.get('automaticDiscountNode') or {}
        return (node.get('automaticDiscount') or {}).get('status')

    # ==================== Metafields ====================

    def get_shop_id(self) -> str:
        """Get the shop GID (owner of shop-level metafields)."""
        result = self._execute_query("query { shop { id } }")
        shop_id = (result.get('shop') or {}).get('id')
        if not shop_id:
            raise ShopifyError("Could not read shop id")
        return shop_id

    def set_metafields(self, metafields: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Set metafields in one metafieldsSet call.

        Args:
            metafields: List of metafield dicts with:
                - ownerId: GID of the owning resource
                - namespace: string (e.g., 'custom_pricing')
                - key: string (e.g., 'pricing_rules')
                - value: string
                - type: string (e.g., 'json')

        Returns:
            The metafields as stored by Shopify
        """
        mutation = """
        mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
            metafieldsSet(metafields: $metafields) {
                metafields {
                    id
                    namespace
                    key
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """

        inputs = []
        for mf in metafields:
            inputs.append({
                'ownerId': mf['ownerId'],
                'namespace': mf['namespace'],
                'key': mf['key'],
                'value': str(mf['value']),
                'type': mf.get('type', 'json')
            })

        result = self._execute_query(mutation, {'metafields': inputs})
        data = result.get('metafieldsSet') or {}
        self._check_user_errors(data, 'metafieldsSet')
        return data.get('metafields') or []


def client_for_tenant(tenant_id: int) -> ShopifyClient:
    """Build a client from the tenant's stored credentials."""
    try:
        return ShopifyClient(tenant_id)
    except ValueError as e:
        raise ConfigurationError(str(e))
