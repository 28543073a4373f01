"""
Targeting vocabulary for pricing rules.

Rule scopes are closed enums, and each scope maps to exactly one condition
variant that carries only the data that scope needs (a SpecificProducts
condition cannot exist without product ids, an AllProducts one has none).
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple, Union

from ..utils.exceptions import ValidationError


# ==================== Enums ====================

class RuleStatus(str, Enum):
    """Whether a rule is live."""
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class CustomerScope(str, Enum):
    """Who a rule applies to."""
    ALL = 'all'
    LOGGED_IN = 'logged_in'
    NON_LOGGED_IN = 'non_logged_in'
    SPECIFIC = 'specific'
    CUSTOMER_TAGS = 'customer_tags'


class ProductScope(str, Enum):
    """Which products a rule applies to."""
    ALL = 'all'
    SPECIFIC_PRODUCTS = 'specific_products'
    COLLECTIONS = 'collections'
    PRODUCT_TAGS = 'product_tags'


class PriceType(str, Enum):
    """How the discount value is interpreted."""
    PERCENT_OFF = 'percent_off'   # discount_value is a percentage (0-100)
    AMOUNT_OFF = 'amount_off'     # discount_value is a fixed amount per item
    NEW_PRICE = 'new_price'       # discount_value is the target price


class SyncStatus(str, Enum):
    """State of the rule's linked Shopify discount."""
    NOT_REQUIRED = 'not_required'
    PENDING = 'pending'
    SYNCED = 'synced'
    FAILED = 'failed'


def _unique(values: Iterable[Any]) -> Tuple[str, ...]:
    """Stringify and de-duplicate, keeping first-seen order."""
    seen = []
    for value in values:
        value = str(value)
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)


# ==================== Customer conditions ====================

@dataclass(frozen=True)
class AllCustomers:
    scope = CustomerScope.ALL


@dataclass(frozen=True)
class LoggedInCustomers:
    scope = CustomerScope.LOGGED_IN


@dataclass(frozen=True)
class NonLoggedInCustomers:
    scope = CustomerScope.NON_LOGGED_IN


@dataclass(frozen=True)
class SpecificCustomers:
    customer_ids: Tuple[str, ...]
    scope = CustomerScope.SPECIFIC


@dataclass(frozen=True)
class TaggedCustomers:
    tags: FrozenSet[str]
    scope = CustomerScope.CUSTOMER_TAGS


CustomerCondition = Union[AllCustomers, LoggedInCustomers, NonLoggedInCustomers, SpecificCustomers, TaggedCustomers]


def customer_condition_from(scope, customer_tags=None, specific_customers=None) -> CustomerCondition:
    """Build the customer condition for a scope and its selections."""
    scope = CustomerScope(scope)
    if scope == CustomerScope.SPECIFIC:
        ids = _unique(c.get('id') for c in (specific_customers or []))
        if not ids:
            raise ValidationError('Select at least one customer', 'specificCustomers')
        return SpecificCustomers(ids)
    if scope == CustomerScope.CUSTOMER_TAGS:
        tags = frozenset(t.strip() for t in (customer_tags or []) if t and t.strip())
        if not tags:
            raise ValidationError('Select at least one customer tag', 'customerTags')
        return TaggedCustomers(tags)
    if scope == CustomerScope.LOGGED_IN:
        return LoggedInCustomers()
    if scope == CustomerScope.NON_LOGGED_IN:
        return NonLoggedInCustomers()
    return AllCustomers()


# ==================== Product conditions ====================

@dataclass(frozen=True)
class AllProducts:
    scope = ProductScope.ALL


@dataclass(frozen=True)
class SpecificProducts:
    product_ids: Tuple[str, ...]
    scope = ProductScope.SPECIFIC_PRODUCTS


@dataclass(frozen=True)
class InCollections:
    collection_ids: Tuple[str, ...]
    scope = ProductScope.COLLECTIONS


@dataclass(frozen=True)
class TaggedProducts:
    tags: FrozenSet[str]
    scope = ProductScope.PRODUCT_TAGS


ProductCondition = Union[AllProducts, SpecificProducts, InCollections, TaggedProducts]


def product_condition_from(scope, specific_products=None, collections=None, product_tags=None) -> ProductCondition:
    """Build the product condition for a scope and its selections."""
    scope = ProductScope(scope)
    if scope == ProductScope.SPECIFIC_PRODUCTS:
        ids = _unique(p.get('id') for p in (specific_products or []))
        if not ids:
            raise ValidationError('Select at least one product', 'specificProducts')
        return SpecificProducts(ids)
    if scope == ProductScope.COLLECTIONS:
        ids = _unique(c.get('id') for c in (collections or []))
        if not ids:
            raise ValidationError('Select at least one collection', 'collections')
        return InCollections(ids)
    if scope == ProductScope.PRODUCT_TAGS:
        tags = frozenset(t.strip() for t in (product_tags or []) if t and t.strip())
        if not tags:
            raise ValidationError('Select at least one product tag', 'productTags')
        return TaggedProducts(tags)
    return AllProducts()


# ==================== Minimum requirements ====================

@dataclass(frozen=True)
class NoMinimum:
    kind = 'none'

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind}


@dataclass(frozen=True)
class MinimumQuantity:
    quantity: int
    kind = 'quantity'

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind, 'quantity': self.quantity}


@dataclass(frozen=True)
class MinimumSubtotal:
    amount: Decimal
    currency_code: str
    kind = 'subtotal'

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind, 'amount': float(self.amount), 'currencyCode': self.currency_code}


MinimumRequirement = Union[NoMinimum, MinimumQuantity, MinimumSubtotal]


def minimum_requirement_from_dict(data: Optional[Dict[str, Any]], default_currency: str = 'USD') -> MinimumRequirement:
    """
    Parse a minimum requirement payload.

    Accepts {"type": "none"}, {"type": "quantity", "quantity": 2} or
    {"type": "subtotal", "amount": 50, "currencyCode": "GBP"}.
    """
    if not data:
        return NoMinimum()

    kind = data.get('type', 'none')
    if kind == 'none':
        return NoMinimum()

    if kind == 'quantity':
        try:
            quantity = int(data.get('quantity'))
        except (TypeError, ValueError):
            raise ValidationError('Minimum quantity must be a whole number', 'minimumRequirement')
        if quantity < 1:
            raise ValidationError('Minimum quantity must be at least 1', 'minimumRequirement')
        return MinimumQuantity(quantity)

    if kind == 'subtotal':
        try:
            amount = Decimal(str(data.get('amount')))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError('Minimum subtotal must be a number', 'minimumRequirement')
        if not amount.is_finite() or amount <= 0:
            raise ValidationError('Minimum subtotal must be greater than 0', 'minimumRequirement')
        currency = (data.get('currencyCode') or default_currency).upper()
        return MinimumSubtotal(amount, currency)

    raise ValidationError(f"Unknown minimum requirement type '{kind}'", 'minimumRequirement')


# ==================== Combination policy ====================

@dataclass(frozen=True)
class CombinesWith:
    """Which other discount classes may stack with this one."""
    product_discounts: bool = True
    order_discounts: bool = False
    shipping_discounts: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CombinesWith':
        if not data:
            return cls()
        return cls(
            product_discounts=bool(data.get('productDiscounts', True)),
            order_discounts=bool(data.get('orderDiscounts', False)),
            shipping_discounts=bool(data.get('shippingDiscounts', False)),
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            'productDiscounts': self.product_discounts,
            'orderDiscounts': self.order_discounts,
            'shippingDiscounts': self.shipping_discounts,
        }


@dataclass(frozen=True)
class SegmentAssignment:
    """A customer segment bound to a Shopify discount."""
    id: str
    name: str
    minimum_requirement: MinimumRequirement = field(default_factory=NoMinimum)
    combines_with: CombinesWith = field(default_factory=CombinesWith)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'minimumRequirement': self.minimum_requirement.to_dict(),
            'combinesWith': self.combines_with.to_dict(),
        }
