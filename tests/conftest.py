"""
Shared pytest fixtures.

Every test gets a fresh app on in-memory SQLite. Shopify is never called:
tests that go through the HTTP layer use `mock_shopify`, and service tests
hand a MagicMock client straight to the service under test.
"""
import pytest
from unittest.mock import patch

from app import create_app
from app.extensions import db
from app.models import Tenant

from helpers import make_shopify_mock


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sample_tenant(app):
    """Create a test tenant with Shopify credentials."""
    tenant = Tenant(
        shop_name='Test Shop',
        shop_slug='test-shop',
        shopify_domain='test-shop.myshopify.com',
        shopify_access_token='shpat_test',
        currency_code='USD',
        is_active=True,
    )
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def auth_headers(sample_tenant):
    return {
        'X-Shop-Domain': sample_tenant.shopify_domain,
        'Content-Type': 'application/json',
    }


@pytest.fixture
def shopify():
    """A bare mocked Shopify client for service-level tests."""
    return make_shopify_mock()


@pytest.fixture
def mock_shopify():
    """Patch the Shopify client class used by every service that builds one per tenant."""
    with patch('app.services.shopify_client.ShopifyClient') as mock_class:
        mock_class.return_value = make_shopify_mock()
        yield mock_class.return_value
