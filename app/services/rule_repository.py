"""
Pricing rule persistence.

Owns the link between a local rule and its Shopify automatic discount.
Rules that Shopify can enforce at checkout get their discount minted as
part of the same save; the link, once set, never changes. sync() then
pushes the complete targeting as a separate step.

Usage:
    repo = RuleRepository(tenant_id)
    result = repo.create({'name': 'VIP 10%', 'priceType': 'percent_off', 'discountValue': 10})
    repo.sync(result.rule)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..extensions import db
from ..models.pricing_rule import PricingRule
from ..models.targeting import CustomerScope, PriceType, ProductScope, RuleStatus, SyncStatus
from ..utils.exceptions import (
    ExternalIdImmutableError,
    RemoteOperationFailure,
    RuleNotFoundError,
    SyncFailure,
    ValidationError,
)
from .discount_sync import DiscountSyncClient
from .rule_validator import validate
from .shopify_client import client_for_tenant

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    rule: PricingRule
    external_discount_id: Optional[str] = None
    minted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ruleId': self.rule.id,
            'externalDiscountId': self.external_discount_id,
            'minted': self.minted,
        }


@dataclass
class RuleFilter:
    status: Optional[str] = None
    query: Optional[str] = None
    linked: Optional[bool] = None


class RuleRepository:
    """
    CRUD over a tenant's pricing rules.

    All reads and writes are scoped to tenant_id.
    """

    def __init__(self, tenant_id: int, sync_client: DiscountSyncClient = None):
        self.tenant_id = tenant_id
        self._sync_client = sync_client

    @property
    def sync_client(self) -> DiscountSyncClient:
        if self._sync_client is None:
            self._sync_client = DiscountSyncClient(client_for_tenant(self.tenant_id))
        return self._sync_client

    # ==================== Reads ====================

    def get(self, rule_id: int) -> PricingRule:
        rule = PricingRule.query.filter_by(id=rule_id, tenant_id=self.tenant_id).first()
        if not rule:
            raise RuleNotFoundError(rule_id)
        return rule

    def get_by_discount(self, external_discount_id: str) -> Optional[PricingRule]:
        return PricingRule.query.filter_by(
            tenant_id=self.tenant_id, external_discount_id=external_discount_id
        ).first()

    def list(self, rule_filter: RuleFilter = None) -> List[PricingRule]:
        rule_filter = rule_filter or RuleFilter()
        query = PricingRule.query.filter_by(tenant_id=self.tenant_id)

        if rule_filter.status:
            query = query.filter(PricingRule.status == RuleStatus(rule_filter.status).value)
        if rule_filter.query:
            query = query.filter(PricingRule.name.ilike(f'%{rule_filter.query.strip()}%'))
        if rule_filter.linked is True:
            query = query.filter(PricingRule.external_discount_id.isnot(None))
        elif rule_filter.linked is False:
            query = query.filter(PricingRule.external_discount_id.is_(None))

        return query.order_by(PricingRule.created_at.desc(), PricingRule.id.desc()).all()

    def active_rules(self) -> List[PricingRule]:
        return self.list(RuleFilter(status=RuleStatus.ACTIVE.value))

    # ==================== Writes ====================

    def create(self, data: Dict[str, Any]) -> SaveResult:
        """
        Insert a rule, minting its Shopify discount when the shape needs one.

        The rule is left with sync_status 'pending' when a discount was
        minted; sync() completes it.

        Raises:
            RuleValidationError: the draft has blocking errors
            SyncFailure: the discount could not be minted; nothing was saved
        """
        validate(data).raise_for_errors()
        if data.get('externalDiscountId'):
            raise ValidationError('The linked discount is assigned by the first save', 'externalDiscountId')

        rule = PricingRule(
            tenant_id=self.tenant_id,
            status=RuleStatus.ACTIVE.value,
            apply_to_customers=CustomerScope.ALL.value,
            apply_to_products=ProductScope.ALL.value,
            price_type=PriceType.PERCENT_OFF.value,
        )
        rule.apply_changes(data)
        db.session.add(rule)
        db.session.flush()

        minted = False
        if rule.requires_remote_discount():
            try:
                discount_id = self.sync_client.mint(rule)
            except SyncFailure as e:
                db.session.rollback()
                e.step = 'mint'
                logger.warning("Rule %r not saved: discount could not be minted", data.get('name'))
                raise
            minted = self._link(rule, discount_id)
        else:
            self._mark(rule, SyncStatus.NOT_REQUIRED)

        db.session.commit()
        logger.info("Created pricing rule %s for tenant %s (discount %s)",
                    rule.id, self.tenant_id, rule.external_discount_id)
        return SaveResult(rule, rule.external_discount_id, minted)

    def update(self, rule_id: int, data: Dict[str, Any]) -> SaveResult:
        """
        Apply changes to a rule, reusing its linked discount.

        The local change is committed first. Minting on first need and
        activation changes follow; if those fail the rule stays saved with
        sync_status 'failed' and SyncFailure is raised.

        Raises:
            RuleNotFoundError: no such rule for this tenant
            ExternalIdImmutableError: the payload tries to change the link
            RuleValidationError: the merged draft has blocking errors
            SyncFailure: remote step failed after the local save
        """
        rule = self.get(rule_id)

        if 'externalDiscountId' in data and data['externalDiscountId'] != rule.external_discount_id:
            raise ExternalIdImmutableError(rule.external_discount_id, data['externalDiscountId'])

        merged = rule.to_dict()
        merged.update(data)
        validate(merged).raise_for_errors()

        was_remote_active = rule.requires_remote_discount()
        previously_failed = rule.sync_status == SyncStatus.FAILED.value
        rule.apply_changes(data)
        if not rule.requires_remote_discount():
            self._mark(rule, SyncStatus.NOT_REQUIRED if not rule.external_discount_id else SyncStatus.PENDING)
        elif rule.external_discount_id:
            self._mark(rule, SyncStatus.PENDING)
        db.session.commit()

        minted = False
        step = None
        try:
            if rule.requires_remote_discount() and not rule.external_discount_id:
                step = 'mint'
                minted = self._link(rule, self.sync_client.mint(rule))
                db.session.commit()
            elif rule.external_discount_id:
                step = 'activate'
                self._sync_activation(rule, was_remote_active, previously_failed)
        except SyncFailure as e:
            e.step = step
            self.record_sync(rule, e)
            raise

        return SaveResult(rule, rule.external_discount_id, minted)

    def _sync_activation(self, rule: PricingRule, was_remote_active: bool, previously_failed: bool = False) -> None:
        # After a failed attempt the remote activation state is unknown, so
        # it is set again
        should_be_active = rule.requires_remote_discount()
        if should_be_active and (previously_failed or not was_remote_active):
            self.sync_client.set_rule_active(rule, True)
        elif not should_be_active:
            # Inactive rules, and shapes Shopify can no longer enforce, keep
            # their discounts but switch them off
            if was_remote_active or previously_failed:
                self.sync_client.set_rule_active(rule, False)
            self.record_sync(rule)

    def sync(self, rule: PricingRule) -> List[str]:
        """
        Push the rule's complete targeting to its linked discounts.

        Returns:
            Ids of new_price products left undiscounted

        Raises:
            SyncFailure: with step 'sync'; the rule keeps its local changes
                and sync_status 'failed'
        """
        try:
            skipped = self.sync_client.sync_rule(rule)
        except SyncFailure as e:
            e.step = 'sync'
            self.record_sync(rule, e)
            raise
        self.record_sync(rule)
        return skipped

    def _link(self, rule: PricingRule, discount_id: Optional[str]) -> bool:
        if discount_id is None:
            # new_price rule with nothing priced above the new price
            self._mark(rule, SyncStatus.NOT_REQUIRED)
            return False
        rule.external_discount_id = discount_id
        self._mark(rule, SyncStatus.PENDING)
        return True

    def delete(self, rule_id: int) -> None:
        """
        Remove a rule. Its Shopify discount is deactivated, never deleted.
        """
        rule = self.get(rule_id)
        if rule.external_discount_id and rule.requires_remote_discount():
            try:
                self.sync_client.set_rule_active(rule, False)
            except SyncFailure as e:
                # The rule is removed regardless; the merchant can still
                # switch the discount off in Shopify admin
                logger.warning("Could not deactivate discount %s of deleted rule %s: %s",
                               rule.external_discount_id, rule.id, e.message)

        db.session.delete(rule)
        db.session.commit()
        logger.info("Deleted pricing rule %s for tenant %s", rule_id, self.tenant_id)

    def record_sync(self, rule: PricingRule, error: RemoteOperationFailure = None) -> PricingRule:
        """Persist the outcome of a remote sync step."""
        if error is None:
            if rule.requires_remote_discount() or rule.external_discount_id:
                self._mark(rule, SyncStatus.SYNCED)
            else:
                self._mark(rule, SyncStatus.NOT_REQUIRED)
        else:
            rule.sync_status = SyncStatus.FAILED.value
            rule.sync_error = error.message
            logger.warning("Rule %s sync failed (%s): %s", rule.id, error.reason.value, error.message)
        db.session.commit()
        return rule

    @staticmethod
    def _mark(rule: PricingRule, status: SyncStatus) -> None:
        rule.sync_status = status.value
        if status in (SyncStatus.SYNCED, SyncStatus.NOT_REQUIRED):
            rule.sync_error = None
        if status == SyncStatus.SYNCED:
            rule.last_synced_at = datetime.utcnow()
