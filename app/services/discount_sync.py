"""
Pricing rule -> Shopify automatic discount synchronization.

Every sync is a full replace. FullReplaceTargeting carries the complete
desired customer and product membership; there is no way to express a
partial add or remove with it. The client reads what Shopify currently
has and writes `add = desired, remove = remote - desired`, so sending the
same payload twice leaves Shopify in the same state.

A new_price rule cannot be one discount: each product needs its own
`current price - new price` off. Those rules own one amount-off discount
per product priced above the new price. Products already at or below it
are skipped, since a discount can only lower a price. The rule's pool of
discounts is reused across syncs: a discount whose product dropped out is
retargeted or deactivated, never deleted.

Failures surface as SyncFailure with one of three reasons:
    discount_not_found  the linked discount was deleted in Shopify; the
                        rule has to be re-linked, retrying will not help
    remote_rejected     Shopify refused the input (userErrors)
    remote_unavailable  network error, throttling or 5xx; retry with the
                        same payload
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Union

from ..models.pricing_rule import PricingRule
from ..models.targeting import (
    AllCustomers,
    AllProducts,
    CombinesWith,
    InCollections,
    LoggedInCustomers,
    PriceType,
    SpecificCustomers,
    SpecificProducts,
    TaggedProducts,
)
from ..utils.exceptions import RemoteFailureReason, ShopifyError, SyncFailure
from .shopify_client import ShopifyClient, extract_id, to_gid

logger = logging.getLogger(__name__)

RemoteCustomers = Union[AllCustomers, LoggedInCustomers, SpecificCustomers]
RemoteProducts = Union[AllProducts, SpecificProducts, InCollections]


@dataclass(frozen=True)
class FullReplaceTargeting:
    """Complete desired state of one automatic discount."""
    title: str
    price_type: PriceType
    value: Decimal
    customers: RemoteCustomers
    products: RemoteProducts

    def __post_init__(self):
        if self.price_type not in (PriceType.PERCENT_OFF, PriceType.AMOUNT_OFF):
            raise ValueError(f"{self.price_type.value} cannot be expressed as an automatic discount")
        if not isinstance(self.customers, (AllCustomers, LoggedInCustomers, SpecificCustomers)):
            raise ValueError(f"Customer scope {self.customers.scope.value} cannot be enforced at checkout")
        if not isinstance(self.products, (AllProducts, SpecificProducts, InCollections)):
            raise ValueError("Product condition must be resolved to products or collections")

    @property
    def product_ids(self) -> Tuple[str, ...]:
        if isinstance(self.products, SpecificProducts):
            return self.products.product_ids
        return ()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'title': self.title,
            'priceType': self.price_type.value,
            'value': float(self.value),
            'customers': self.customers.scope.value,
            'products': self.products.scope.value,
        }
        if isinstance(self.customers, SpecificCustomers):
            data['customerIds'] = list(self.customers.customer_ids)
        if isinstance(self.products, SpecificProducts):
            data['productIds'] = list(self.products.product_ids)
        if isinstance(self.products, InCollections):
            data['collectionIds'] = list(self.products.collection_ids)
        return data


def _gids(resource: str, ids) -> List[str]:
    return [to_gid(resource, i) for i in ids]


def _stale(remote_ids, desired_ids) -> List[str]:
    desired = {extract_id(i) for i in desired_ids}
    return [i for i in remote_ids if extract_id(i) not in desired]


def _price(value) -> Optional[Decimal]:
    try:
        return Decimal(str(value)) if value is not None else None
    except (InvalidOperation, ValueError):
        return None


@dataclass(frozen=True)
class ProductPriceTarget:
    """One product of a new_price rule and the discount that brings it to the new price."""
    product_id: str
    current_price: Decimal
    payload: FullReplaceTargeting


class DiscountSyncClient:
    """Creates and updates the automatic discounts linked to a pricing rule."""

    def __init__(self, client: ShopifyClient):
        self.client = client

    # ==================== Payload ====================

    def _remote_customers(self, rule: PricingRule) -> RemoteCustomers:
        if not rule.supports_remote_discount():
            raise SyncFailure(
                RemoteFailureReason.REMOTE_REJECTED,
                f"Rule {rule.id} cannot be enforced by a Shopify automatic discount"
            )
        customers = rule.customer_condition()
        if isinstance(customers, LoggedInCustomers):
            logger.warning(
                "Rule %s targets logged-in customers; Shopify applies it to every buyer at checkout", rule.id
            )
        return customers

    def build_payload(self, rule: PricingRule) -> FullReplaceTargeting:
        """
        Resolve a percent_off or amount_off rule into the complete targeting to send.

        Product tags are expanded to the full set of tagged products.
        """
        if rule.price_type == PriceType.NEW_PRICE.value:
            raise SyncFailure(
                RemoteFailureReason.REMOTE_REJECTED,
                f"Rule {rule.id} sets a new price; it is synced as one discount per product"
            )
        customers = self._remote_customers(rule)

        products = rule.product_condition()
        if isinstance(products, TaggedProducts):
            products = self._resolve_tags(products)

        return FullReplaceTargeting(
            title=rule.title,
            price_type=PriceType(rule.price_type),
            value=Decimal(str(rule.discount_value)),
            customers=customers,
            products=products,
        )

    def new_price_targets(self, rule: PricingRule) -> Tuple[List[ProductPriceTarget], List[str]]:
        """
        Amount-off payloads for a new_price rule, one per product.

        Returns:
            (targets, skipped): skipped holds the ids of products whose
            current price is already at or below the new price
        """
        customers = self._remote_customers(rule)
        new_price = Decimal(str(rule.discount_value))

        targets, skipped = [], []
        for product_id, current_price in self._current_prices(rule.product_condition()).items():
            if current_price <= new_price:
                skipped.append(product_id)
                continue
            targets.append(ProductPriceTarget(product_id, current_price, FullReplaceTargeting(
                title=rule.title,
                price_type=PriceType.AMOUNT_OFF,
                value=current_price - new_price,
                customers=customers,
                products=SpecificProducts((product_id,)),
            )))

        if skipped:
            logger.info("Rule %s: %s product(s) already cost %s or less and get no discount",
                        rule.id, len(skipped), new_price)
        return targets, skipped

    def _current_prices(self, condition) -> Dict[str, Decimal]:
        """Current price of every product the condition selects, keyed by numeric id."""
        try:
            if isinstance(condition, SpecificProducts):
                ids = [extract_id(pid) for pid in condition.product_ids]
                prices = self.client.get_product_prices(ids)
                return {pid: prices[pid] for pid in ids if pid in prices}
            if isinstance(condition, TaggedProducts):
                products = self.client.get_products_by_tags(condition.tags)
            elif isinstance(condition, InCollections):
                products = self.client.get_products_in_collections(condition.collection_ids)
            else:
                products = self.client.get_products()
        except ShopifyError as e:
            raise SyncFailure.from_error(e)

        prices = {}
        for product in products:
            current_price = _price(product.get('price'))
            if current_price is not None:
                prices.setdefault(extract_id(product['id']), current_price)
        return prices

    def _resolve_tags(self, condition: TaggedProducts) -> SpecificProducts:
        try:
            tagged = self.client.get_products_by_tags(condition.tags)
        except ShopifyError as e:
            raise SyncFailure.from_error(e)

        ids = []
        for product in tagged:
            if product['id'] not in ids:
                ids.append(product['id'])
        if not ids:
            tags = ', '.join(sorted(condition.tags))
            raise SyncFailure(RemoteFailureReason.REMOTE_REJECTED, f"No products are tagged {tags}")
        return SpecificProducts(tuple(ids))

    def _value_input(self, payload: FullReplaceTargeting) -> Dict[str, Any]:
        if payload.price_type == PriceType.PERCENT_OFF:
            # Shopify wants decimal (0.20 for 20%)
            return {'percentage': float(payload.value / 100)}
        return {
            'discountAmount': {
                'amount': str(payload.value),
                # Must be false when the discount targets all items
                'appliesOnEachItem': not isinstance(payload.products, AllProducts),
            }
        }

    def _items_input(self, payload: FullReplaceTargeting, remote: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        products = payload.products
        if isinstance(products, AllProducts):
            return {'all': True}

        if isinstance(products, SpecificProducts):
            remote_ids = [p['gid'] for p in (remote or {}).get('products', [])]
            return {
                'products': {
                    'productsToAdd': _gids('Product', products.product_ids),
                    'productsToRemove': _stale(remote_ids, products.product_ids),
                }
            }

        remote_ids = [c['gid'] for c in (remote or {}).get('collections', [])]
        return {
            'collections': {
                'add': _gids('Collection', products.collection_ids),
                'remove': _stale(remote_ids, products.collection_ids),
            }
        }

    def _context_input(self, payload: FullReplaceTargeting, remote: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        customers = payload.customers
        remote_context = (remote or {}).get('context')

        if isinstance(customers, SpecificCustomers):
            if remote_context == 'segments':
                logger.warning("Replacing segment eligibility on %s with specific customers", remote.get('id'))
            remote_ids = [c['id'] for c in (remote or {}).get('customers', [])]
            return {
                'customers': {
                    'add': _gids('Customer', customers.customer_ids),
                    'remove': _stale(remote_ids, customers.customer_ids),
                }
            }

        if remote is None or remote_context == 'customers':
            return {'all': 'ALL'}
        # Segment eligibility is owned by SegmentAssignmentManager
        return None

    def discount_input(self, payload: FullReplaceTargeting, remote: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        DiscountAutomaticBasicInput for a payload.

        Args:
            payload: Desired targeting
            remote: Current discount as read from Shopify, or None on create
        """
        discount_input = {
            'title': payload.title,
            'customerGets': {
                'value': self._value_input(payload),
                'items': self._items_input(payload, remote),
            },
        }
        context = self._context_input(payload, remote)
        if context is not None:
            discount_input['context'] = context
        return discount_input

    # ==================== Remote operations ====================

    def create_discount(self, payload: FullReplaceTargeting, combines_with: CombinesWith = None) -> str:
        """Mint a new automatic discount and return its id."""
        discount_input = self.discount_input(payload)
        discount_input['startsAt'] = datetime.now(timezone.utc).isoformat()
        discount_input['combinesWith'] = (combines_with or CombinesWith()).to_dict()

        try:
            discount_id = self.client.create_automatic_discount(discount_input)
        except ShopifyError as e:
            logger.error("Creating discount %r failed: %s", payload.title, e.message)
            raise SyncFailure.from_error(e)

        logger.info("Created automatic discount %s for %r", discount_id, payload.title)
        return discount_id

    def mint(self, rule: PricingRule) -> Optional[str]:
        """
        Create the rule's primary discount.

        Returns None for a new_price rule with no product priced above the
        new price; there is nothing to discount yet.
        """
        if rule.price_type != PriceType.NEW_PRICE.value:
            return self.create_discount(self.build_payload(rule))

        targets, _ = self.new_price_targets(rule)
        if not targets:
            logger.info("Rule %s: no product is priced above the new price, no discount minted", rule.id)
            return None
        return self.create_discount(targets[0].payload)

    def sync_targeting(self, external_discount_id: str, payload: FullReplaceTargeting) -> bool:
        """
        Overwrite the discount's customers and products with the payload.

        Raises:
            SyncFailure: with reason discount_not_found, remote_rejected or
                remote_unavailable
        """
        if not isinstance(payload, FullReplaceTargeting):
            raise TypeError("sync_targeting requires a FullReplaceTargeting payload")

        try:
            remote = self.client.get_automatic_discount(external_discount_id)
            self.client.update_automatic_discount(external_discount_id, self.discount_input(payload, remote))
        except ShopifyError as e:
            failure = SyncFailure.from_error(e)
            logger.warning("Sync of discount %s failed (%s): %s",
                           external_discount_id, failure.reason.value, e.message)
            raise failure

        logger.info("Synced discount %s (%s products)", external_discount_id,
                    len(payload.product_ids) if payload.product_ids else payload.products.scope.value)
        return True

    def sync_rule(self, rule: PricingRule) -> List[str]:
        """
        Bring every discount the rule owns in line with the rule.

        Updates rule.product_discount_ids as discounts are created,
        retargeted or parked; the caller commits.

        Returns:
            Ids of new_price products left undiscounted (already at or
            below the new price)
        """
        if rule.price_type == PriceType.NEW_PRICE.value:
            return self._sync_new_price(rule)

        primary = rule.external_discount_id
        pool = dict(rule.product_discount_ids or {})
        self.sync_targeting(primary, self.build_payload(rule))
        if pool.get(primary, primary) is None:
            self.set_active(primary, True)
        pool.pop(primary, None)

        # Per-product discounts left over from a new_price version of the rule
        for discount_id, product_id in list(pool.items()):
            if product_id is not None:
                self.set_active(discount_id, False)
                pool[discount_id] = None
        rule.product_discount_ids = pool
        return []

    def _sync_new_price(self, rule: PricingRule) -> List[str]:
        targets, skipped = self.new_price_targets(rule)
        wanted = {t.product_id: t for t in targets}

        primary = rule.external_discount_id
        pool = dict(rule.product_discount_ids or {})
        owned = [primary] + [gid for gid in pool if gid != primary]
        parked = {gid for gid in owned if gid in pool and pool[gid] is None}

        # Keep discounts on products they already price, then hand the
        # rest out in order, primary first
        assignment = {}
        for gid in owned:
            product_id = pool.get(gid)
            if product_id in wanted and product_id not in assignment.values():
                assignment[gid] = product_id
        free = [gid for gid in owned if gid not in assignment]
        for target in targets:
            if target.product_id not in assignment.values() and free:
                assignment[free.pop(0)] = target.product_id

        def record(discount_id, product_id):
            pool[discount_id] = product_id
            rule.product_discount_ids = dict(pool)

        for gid, product_id in assignment.items():
            self.sync_targeting(gid, wanted[product_id].payload)
            if gid in parked:
                self.set_active(gid, True)
            record(gid, product_id)

        assigned = set(assignment.values())
        for target in targets:
            if target.product_id not in assigned:
                record(self.create_discount(target.payload), target.product_id)

        for gid in free:
            if gid not in parked:
                self.set_active(gid, False)
            record(gid, None)

        logger.info("Rule %s: %s product discount(s) in use, %s spare",
                    rule.id, len(targets), len(free))
        return skipped

    def get_synced_products(self, external_discount_id: str) -> List[Dict[str, Any]]:
        """Products currently attached to the discount in Shopify."""
        try:
            return self.client.get_automatic_discount(external_discount_id)['products']
        except ShopifyError as e:
            raise SyncFailure.from_error(e)

    def set_active(self, external_discount_id: str, active: bool) -> str:
        """Activate or deactivate the discount. Never deletes it."""
        try:
            status = self.client.set_automatic_discount_active(external_discount_id, active)
        except ShopifyError as e:
            logger.warning("%s of discount %s failed: %s",
                           'Activation' if active else 'Deactivation', external_discount_id, e.message)
            raise SyncFailure.from_error(e)

        logger.info("Discount %s is now %s", external_discount_id, status or ('active' if active else 'inactive'))
        return status

    def set_rule_active(self, rule: PricingRule, active: bool) -> None:
        """Activate or deactivate every discount in use by the rule."""
        for discount_id in rule.linked_discount_ids():
            self.set_active(discount_id, active)
