"""
Business logic services for pricing rule sync.
"""
from .shopify_client import ShopifyClient
from .catalog_service import CatalogService, CatalogResult
from .discount_sync import DiscountSyncClient, FullReplaceTargeting
from .product_diff import ProductDiff, diff_products
from .rule_repository import RuleRepository, RuleFilter, SaveResult
from .rule_validator import PriceCeilingWarning, ValidationResult, validate
from .segment_assignment import SegmentAssignmentManager
from .storefront_publisher import StorefrontPublisher
from .rule_editor import RuleEditSession, SaveOutcome, EditState

__all__ = [
    'ShopifyClient',
    'CatalogService',
    'CatalogResult',
    'DiscountSyncClient',
    'FullReplaceTargeting',
    'ProductDiff',
    'diff_products',
    'RuleRepository',
    'RuleFilter',
    'SaveResult',
    'PriceCeilingWarning',
    'ValidationResult',
    'validate',
    'SegmentAssignmentManager',
    'StorefrontPublisher',
    'RuleEditSession',
    'SaveOutcome',
    'EditState',
]
