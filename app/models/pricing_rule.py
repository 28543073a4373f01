"""
Pricing rule model.

A pricing rule describes who gets a discount, on which products and how
much. Rules whose shape Shopify can enforce at checkout are linked to one
Shopify automatic discount through external_discount_id. new_price rules
need one amount-off discount per product; the extra discounts are kept in
product_discount_ids next to that primary link.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import validates

from ..extensions import db
from ..utils.exceptions import ExternalIdImmutableError
from .targeting import (
    CustomerScope,
    PriceType,
    ProductScope,
    RuleStatus,
    SyncStatus,
    AllCustomers,
    LoggedInCustomers,
    SpecificCustomers,
    customer_condition_from,
    product_condition_from,
)


# Customer conditions Shopify can enforce on an automatic discount
REMOTE_CUSTOMER_CONDITIONS = (AllCustomers, LoggedInCustomers, SpecificCustomers)


class PricingRule(db.Model):
    """
    Merchant-authored pricing rule.

    JSON list columns are always reassigned, never mutated in place, so
    SQLAlchemy picks up the change.
    """
    __tablename__ = 'pricing_rules'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RuleStatus.ACTIVE.value)
    discount_title = db.Column(db.String(255), default='')

    # Customer targeting
    apply_to_customers = db.Column(db.String(30), nullable=False, default=CustomerScope.ALL.value)
    customer_tags = db.Column(db.JSON, default=list)
    specific_customers = db.Column(db.JSON, default=list)  # [{id, email, displayName}]

    # Product targeting
    apply_to_products = db.Column(db.String(30), nullable=False, default=ProductScope.ALL.value)
    specific_products = db.Column(db.JSON, default=list)  # [{id, title, handle, price}]
    collections = db.Column(db.JSON, default=list)  # [{id, title}]
    product_tags = db.Column(db.JSON, default=list)

    # Pricing
    price_type = db.Column(db.String(20), nullable=False, default=PriceType.PERCENT_OFF.value)
    discount_value = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    # Shopify link
    external_discount_id = db.Column(db.String(255), index=True)
    # Discount id -> product id it prices; None marks a deactivated spare.
    # Only new_price rules own more than the primary discount.
    product_discount_ids = db.Column(db.JSON, default=dict)
    sync_status = db.Column(db.String(20), nullable=False, default=SyncStatus.PENDING.value)
    sync_error = db.Column(db.Text)
    last_synced_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<PricingRule {self.id} {self.name!r}>'

    @validates('external_discount_id')
    def _guard_external_discount_id(self, key, value):
        current = self.external_discount_id
        if current and value != current:
            raise ExternalIdImmutableError(current, value)
        return value

    # ==================== Targeting ====================

    @property
    def title(self) -> str:
        """Customer-facing discount title."""
        return (self.discount_title or '').strip() or self.name

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE.value

    def customer_condition(self):
        return customer_condition_from(
            self.apply_to_customers, self.customer_tags, self.specific_customers
        )

    def product_condition(self):
        return product_condition_from(
            self.apply_to_products, self.specific_products, self.collections, self.product_tags
        )

    def supports_remote_discount(self) -> bool:
        """Whether Shopify can enforce this rule's shape at checkout."""
        return isinstance(self.customer_condition(), REMOTE_CUSTOMER_CONDITIONS)

    def requires_remote_discount(self) -> bool:
        """Whether this rule must be backed by a Shopify discount right now."""
        return self.is_active and self.supports_remote_discount()

    def linked_discount_ids(self) -> List[str]:
        """Discounts that follow the rule's status: the primary plus any in use per product."""
        if not self.external_discount_id:
            return []
        pool = self.product_discount_ids or {}
        ids = []
        if self.external_discount_id not in pool or pool[self.external_discount_id] is not None:
            ids.append(self.external_discount_id)
        ids.extend(gid for gid, product_id in pool.items()
                   if product_id is not None and gid != self.external_discount_id)
        return ids

    # ==================== Serialization ====================

    def apply_changes(self, data: Dict[str, Any]) -> None:
        """Copy a validated camelCase payload onto the rule."""
        if 'name' in data:
            self.name = data['name'].strip()
        if 'status' in data:
            self.status = RuleStatus(data['status'] or RuleStatus.ACTIVE.value).value
        if 'discountTitle' in data:
            self.discount_title = (data.get('discountTitle') or '').strip()

        if 'applyToCustomers' in data:
            self.apply_to_customers = CustomerScope(data['applyToCustomers'] or 'all').value
        if 'customerTags' in data:
            self.customer_tags = list(data.get('customerTags') or [])
        if 'specificCustomers' in data:
            self.specific_customers = [
                {'id': str(c.get('id')), 'email': c.get('email'), 'displayName': c.get('displayName') or c.get('name')}
                for c in (data.get('specificCustomers') or [])
            ]

        if 'applyToProducts' in data:
            self.apply_to_products = ProductScope(data['applyToProducts'] or 'all').value
        if 'specificProducts' in data:
            self.specific_products = [_product_entry(p) for p in (data.get('specificProducts') or [])]
        if 'collections' in data:
            self.collections = [
                {'id': str(c.get('id')), 'title': c.get('title')}
                for c in (data.get('collections') or [])
            ]
        if 'productTags' in data:
            self.product_tags = list(data.get('productTags') or [])

        if 'priceType' in data:
            self.price_type = PriceType(data['priceType'] or 'percent_off').value
        if 'discountValue' in data:
            self.discount_value = Decimal(str(data['discountValue']))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize rule to dictionary."""
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'discountTitle': self.discount_title or '',
            'applyToCustomers': self.apply_to_customers,
            'customerTags': self.customer_tags or [],
            'specificCustomers': self.specific_customers or [],
            'applyToProducts': self.apply_to_products,
            'specificProducts': self.specific_products or [],
            'collections': self.collections or [],
            'productTags': self.product_tags or [],
            'priceType': self.price_type,
            'discountValue': float(self.discount_value) if self.discount_value is not None else None,
            'externalDiscountId': self.external_discount_id,
            'productDiscountIds': self.product_discount_ids or {},
            'syncStatus': self.sync_status,
            'syncError': self.sync_error,
            'lastSyncedAt': self.last_synced_at.isoformat() if self.last_synced_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_storefront_dict(self) -> Dict[str, Any]:
        """Minimal shape read by the theme app extension."""
        return {
            'id': str(self.id),
            'name': self.name,
            'status': self.status,
            'discountTitle': self.title,
            'applyToCustomers': self.apply_to_customers,
            'customerTags': self.customer_tags or [],
            'specificCustomers': [{'id': c.get('id')} for c in (self.specific_customers or [])],
            'applyToProducts': self.apply_to_products,
            'specificProducts': [{'id': p.get('id')} for p in (self.specific_products or [])],
            'collections': [{'id': c.get('id')} for c in (self.collections or [])],
            'productTags': self.product_tags or [],
            'priceType': self.price_type,
            'discountValue': float(self.discount_value) if self.discount_value is not None else None,
        }


def _product_entry(product: Dict[str, Any]) -> Dict[str, Any]:
    entry = {
        'id': str(product.get('id')),
        'title': product.get('title'),
        'handle': product.get('handle'),
    }
    if product.get('price') is not None:
        entry['price'] = product.get('price')
    return entry
