"""
Tests for the catalog lookup API.
"""
from app.utils.exceptions import ShopifyUnavailableError


class TestCatalogSearch:

    def test_products(self, client, auth_headers, mock_shopify):
        mock_shopify.search_products.return_value = [{'id': '1', 'title': 'Hoodie'}]

        response = client.get('/api/catalog/products?q=hood&seq=7', headers=auth_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body['products'] == [{'id': '1', 'title': 'Hoodie'}]
        assert body['unavailable'] is False
        assert body['seq'] == '7'

    def test_unavailable_is_still_ok(self, client, auth_headers, mock_shopify):
        mock_shopify.search_collections.side_effect = ShopifyUnavailableError('HTTP 503')

        response = client.get('/api/catalog/collections?q=summer', headers=auth_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body['collections'] == []
        assert body['unavailable'] is True
        assert 'message' in body

    def test_customers(self, client, auth_headers, mock_shopify):
        mock_shopify.search_customers.return_value = [{'id': '5', 'email': 'ann@example.com'}]

        body = client.get('/api/catalog/customers?q=ann@example.com', headers=auth_headers).get_json()

        assert body['customers'][0]['id'] == '5'
        mock_shopify.search_customers.assert_called_once_with('ann@example.com', 25)

    def test_requires_shop(self, client, app):
        assert client.get('/api/catalog/products?q=x').status_code == 401


class TestCatalogLists:

    def test_customer_tags(self, client, auth_headers, mock_shopify):
        mock_shopify.get_customer_tags.return_value = ['vip']
        body = client.get('/api/catalog/customer-tags', headers=auth_headers).get_json()
        assert body['tags'] == ['vip']

    def test_product_tags(self, client, auth_headers, mock_shopify):
        mock_shopify.get_product_tags.return_value = ['sale', 'summer']
        body = client.get('/api/catalog/product-tags', headers=auth_headers).get_json()
        assert body['tags'] == ['sale', 'summer']

    def test_segments(self, client, auth_headers, mock_shopify):
        mock_shopify.get_segments.return_value = [{'id': 'gid://shopify/Segment/1', 'name': 'VIP'}]
        body = client.get('/api/catalog/segments', headers=auth_headers).get_json()
        assert body['segments'][0]['name'] == 'VIP'
