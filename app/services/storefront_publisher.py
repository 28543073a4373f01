"""
Storefront publication of pricing rules.

Active rules are written as JSON to a shop metafield that the theme app
extension reads to show rule prices on product pages. This is the only
place rules that Shopify discounts cannot express (customer tags,
non-logged-in buyers, new prices) take effect.
"""
import json
import logging
from typing import Any, Dict, List

from flask import current_app

from .rule_repository import RuleRepository
from .shopify_client import ShopifyClient, client_for_tenant

logger = logging.getLogger(__name__)


class StorefrontPublisher:
    """Publishes a tenant's active rules to the shop metafield."""

    def __init__(self, tenant_id: int, client: ShopifyClient = None, repository: RuleRepository = None):
        self.tenant_id = tenant_id
        self._client = client
        self.repository = repository or RuleRepository(tenant_id)

    @property
    def client(self) -> ShopifyClient:
        if self._client is None:
            self._client = client_for_tenant(self.tenant_id)
        return self._client

    def rules_payload(self) -> List[Dict[str, Any]]:
        return [rule.to_storefront_dict() for rule in self.repository.active_rules()]

    def publish(self) -> int:
        """
        Write the active rules to the shop metafield.

        Returns:
            Number of rules published
        """
        rules = self.rules_payload()
        metafield = {
            'ownerId': self.client.get_shop_id(),
            'namespace': current_app.config['STOREFRONT_METAFIELD_NAMESPACE'],
            'key': current_app.config['STOREFRONT_METAFIELD_KEY'],
            'type': 'json',
            'value': json.dumps(rules),
        }
        self.client.set_metafields([metafield])
        logger.info("Published %d pricing rules to storefront for tenant %s", len(rules), self.tenant_id)
        return len(rules)
