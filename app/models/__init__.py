"""
Database models for the pricing rule service.
"""
from .tenant import Tenant
from .pricing_rule import PricingRule
from .targeting import (
    # Enums
    RuleStatus,
    CustomerScope,
    ProductScope,
    PriceType,
    SyncStatus,
    # Conditions
    AllCustomers,
    LoggedInCustomers,
    NonLoggedInCustomers,
    SpecificCustomers,
    TaggedCustomers,
    AllProducts,
    SpecificProducts,
    InCollections,
    TaggedProducts,
    # Segment binding
    NoMinimum,
    MinimumQuantity,
    MinimumSubtotal,
    CombinesWith,
    SegmentAssignment,
)

__all__ = [
    'Tenant',
    'PricingRule',
    'RuleStatus',
    'CustomerScope',
    'ProductScope',
    'PriceType',
    'SyncStatus',
    'AllCustomers',
    'LoggedInCustomers',
    'NonLoggedInCustomers',
    'SpecificCustomers',
    'TaggedCustomers',
    'AllProducts',
    'SpecificProducts',
    'InCollections',
    'TaggedProducts',
    'NoMinimum',
    'MinimumQuantity',
    'MinimumSubtotal',
    'CombinesWith',
    'SegmentAssignment',
]
