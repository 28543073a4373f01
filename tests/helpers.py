"""
Builders for Shopify-shaped test data and the mocked Shopify client.
"""
from unittest.mock import MagicMock

DISCOUNT_GID = 'gid://shopify/DiscountAutomaticNode/9001'


def remote_discount(**overrides):
    """Discount dict in the shape returned by ShopifyClient.get_automatic_discount."""
    discount = {
        'id': DISCOUNT_GID,
        'title': 'VIP 10%',
        'status': 'ACTIVE',
        'context': 'all',
        'customers': [],
        'segments': [],
        'all_items': False,
        'products': [],
        'collections': [],
        'minimum_requirement': {'type': 'none'},
        'combines_with': {'productDiscounts': True, 'orderDiscounts': False, 'shippingDiscounts': False},
    }
    discount.update(overrides)
    return discount


def shopify_products(*ids):
    return [
        {'id': str(i), 'gid': f'gid://shopify/Product/{i}', 'title': f'Product {i}', 'handle': f'product-{i}'}
        for i in ids
    ]


def make_shopify_mock():
    """MagicMock ShopifyClient with return values for every call the services make."""
    client = MagicMock()
    client.create_automatic_discount.return_value = DISCOUNT_GID
    client.update_automatic_discount.return_value = DISCOUNT_GID
    client.get_automatic_discount.return_value = remote_discount()
    client.set_automatic_discount_active.return_value = 'ACTIVE'
    client.get_products.return_value = []
    client.get_products_by_tags.return_value = []
    client.get_products_in_collections.return_value = []
    client.get_product_prices.return_value = {}
    client.search_products.return_value = []
    client.search_customers.return_value = []
    client.search_collections.return_value = []
    client.get_customer_tags.return_value = []
    client.get_product_tags.return_value = []
    client.get_segments.return_value = []
    client.get_shop_id.return_value = 'gid://shopify/Shop/1'
    client.set_metafields.return_value = []
    return client
