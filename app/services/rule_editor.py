"""
Rule edit session.

Drives one merchant editing one rule through

    DRAFT -> VALIDATING -> SAVING -> SYNCED
                 |            |   -> SYNC_FAILED
                 v            v
               DRAFT        DRAFT

Saving is a strict sequence: local save (minting the discount on first
need, or switching linked discounts on and off with the rule's status),
then the full-replace targeting sync. The outcome names the step that
failed ('mint', 'activate' or 'sync'), so a sync failure never reads as a
failed save.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models.pricing_rule import PricingRule
from ..models.targeting import PriceType, ProductScope
from ..utils.exceptions import (
    ConfigurationError,
    ExternalIdImmutableError,
    InvalidStatusTransitionError,
    RemoteOperationFailure,
    RuleValidationError,
    ShopifyError,
    SyncFailure,
    ValidationError,
)
from .catalog_service import CatalogService
from .rule_repository import RuleRepository
from .rule_validator import PriceCeilingWarning, ValidationResult, validate
from .shopify_client import extract_id
from .storefront_publisher import StorefrontPublisher

logger = logging.getLogger(__name__)


class EditState(str, Enum):
    DRAFT = 'draft'
    VALIDATING = 'validating'
    SAVING = 'saving'
    SYNCED = 'synced'
    SYNC_FAILED = 'sync_failed'


class EditEvent(str, Enum):
    EDIT = 'edit'
    SUBMIT = 'submit'
    INVALID = 'invalid'
    VALID = 'valid'
    REJECTED = 'rejected'
    SYNCED = 'synced'
    FAILED = 'failed'
    RETRY = 'retry'


S, E = EditState, EditEvent

TRANSITIONS = {
    (S.DRAFT, E.EDIT): S.DRAFT,
    (S.DRAFT, E.SUBMIT): S.VALIDATING,
    (S.VALIDATING, E.INVALID): S.DRAFT,
    (S.VALIDATING, E.VALID): S.SAVING,
    (S.SAVING, E.REJECTED): S.DRAFT,
    (S.SAVING, E.SYNCED): S.SYNCED,
    (S.SAVING, E.FAILED): S.SYNC_FAILED,
    (S.SYNCED, E.EDIT): S.DRAFT,
    (S.SYNCED, E.SUBMIT): S.VALIDATING,
    (S.SYNC_FAILED, E.EDIT): S.DRAFT,
    (S.SYNC_FAILED, E.SUBMIT): S.VALIDATING,
    (S.SYNC_FAILED, E.RETRY): S.SAVING,
}


@dataclass
class SaveOutcome:
    state: EditState
    rule: Optional[PricingRule] = None
    saved: bool = False
    minted: bool = False
    failed_step: Optional[str] = None   # 'validate', 'save', 'mint', 'activate', 'sync'
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[PriceCeilingWarning] = field(default_factory=list)
    failure: Optional[RemoteOperationFailure] = None
    storefront_published: Optional[bool] = None

    @property
    def synced(self) -> bool:
        return self.state == EditState.SYNCED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'state': self.state.value,
            'saved': self.saved,
            'ruleId': self.rule.id if self.rule is not None else None,
            'externalDiscountId': self.rule.external_discount_id if self.rule is not None else None,
            'syncStatus': self.rule.sync_status if self.rule is not None else None,
            'minted': self.minted,
            'failedStep': self.failed_step,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
        }
        if self.failure is not None:
            data['syncError'] = self.failure.to_dict()
        if self.storefront_published is not None:
            data['storefrontPublished'] = self.storefront_published
        if self.rule is not None:
            data['rule'] = self.rule.to_dict()
        return data


class RuleEditSession:
    """
    One editing session for a new or existing rule.

    Usage:
        session = RuleEditSession(repo, catalog=catalog)
        session.edit({'name': 'VIP 10%', 'priceType': 'percent_off', 'discountValue': 10})
        outcome = session.save()
    """

    def __init__(self, repository: RuleRepository, catalog: CatalogService = None,
                 publisher: StorefrontPublisher = None, rule: PricingRule = None):
        self.repository = repository
        self.catalog = catalog
        self.publisher = publisher
        self.rule = rule
        self.draft: Dict[str, Any] = rule.to_dict() if rule is not None else {}
        self.changes: Dict[str, Any] = {}
        self.state = EditState.DRAFT
        self.last_result = ValidationResult()
        self._prices: Dict[str, Decimal] = {}

    @classmethod
    def for_rule(cls, repository: RuleRepository, rule_id: int, **kwargs) -> 'RuleEditSession':
        return cls(repository, rule=repository.get(rule_id), **kwargs)

    # ==================== State machine ====================

    def _transition(self, event: EditEvent) -> EditState:
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidStatusTransitionError('rule edit session', self.state.value, event.value)
        logger.debug("Rule edit %s: %s --%s--> %s",
                     self.rule.id if self.rule else 'new', self.state.value, event.value, target.value)
        self.state = target
        return target

    # ==================== Editing ====================

    def edit(self, changes: Dict[str, Any]) -> ValidationResult:
        """Apply field changes to the draft and re-run validation."""
        self._transition(EditEvent.EDIT)
        self.draft.update(changes)
        self.changes.update(changes)
        return self.check()

    def check(self) -> ValidationResult:
        """Validate the current draft; warnings reflect the draft as it is now."""
        self.last_result = validate(self.draft, self._known_prices())
        return self.last_result

    def _known_prices(self) -> Dict[str, Decimal]:
        if self.draft.get('priceType') != PriceType.NEW_PRICE.value:
            return self._prices
        if self.draft.get('applyToProducts') != ProductScope.SPECIFIC_PRODUCTS.value:
            return self._prices

        products = self.draft.get('specificProducts')
        if not isinstance(products, list):
            return self._prices

        missing = []
        for product in products:
            if not isinstance(product, dict):
                continue
            product_id = extract_id(product.get('id'))
            if product_id and product.get('price') is None and product_id not in self._prices:
                missing.append(product_id)

        if missing and self.catalog is not None:
            self._prices.update(self.catalog.product_prices(missing))
        return self._prices

    def close(self) -> None:
        """Drop any lookups still in flight."""
        if self.catalog is not None and self.catalog.sequencer is not None:
            self.catalog.sequencer.cancel_all()

    # ==================== Saving ====================

    def save(self) -> SaveOutcome:
        self._transition(EditEvent.SUBMIT)

        result = self.check()
        if not result.is_valid:
            self._transition(EditEvent.INVALID)
            return SaveOutcome(self.state, self.rule, saved=False, failed_step='validate',
                               errors=result.errors, warnings=result.warnings)

        self._transition(EditEvent.VALID)
        return self._persist_and_sync(result.warnings)

    def retry(self) -> SaveOutcome:
        """Re-run the failed remote steps with the saved rule."""
        self._transition(EditEvent.RETRY)
        return self._persist_and_sync(self.last_result.warnings)

    def _persist_and_sync(self, warnings: List[PriceCeilingWarning]) -> SaveOutcome:
        minted = False
        try:
            if self.rule is None:
                save = self.repository.create(self.draft)
            else:
                save = self.repository.update(self.rule.id, self.changes)
        except RuleValidationError as e:
            self._transition(EditEvent.REJECTED)
            return SaveOutcome(self.state, self.rule, saved=False, failed_step='save',
                               errors=e.errors, warnings=warnings)
        except ValidationError as e:
            self._transition(EditEvent.REJECTED)
            return SaveOutcome(self.state, self.rule, saved=False, failed_step='save',
                               errors=[e], warnings=warnings)
        except ExternalIdImmutableError:
            self._transition(EditEvent.REJECTED)
            raise
        except SyncFailure as e:
            self._transition(EditEvent.FAILED)
            saved = self.rule is not None
            if saved:
                self.rule = self.repository.get(self.rule.id)
                self._saved()
            return SaveOutcome(self.state, self.rule, saved=saved, failed_step=e.step or 'mint',
                               warnings=warnings, failure=e,
                               storefront_published=self._publish() if saved else None)

        self.rule = save.rule
        minted = save.minted
        self._saved()

        if self.rule.external_discount_id and self.rule.requires_remote_discount():
            try:
                self.repository.sync(self.rule)
            except SyncFailure as e:
                self._transition(EditEvent.FAILED)
                return SaveOutcome(self.state, self.rule, saved=True, minted=minted, failed_step=e.step,
                                   warnings=warnings, failure=e, storefront_published=self._publish())

        self._transition(EditEvent.SYNCED)
        return SaveOutcome(self.state, self.rule, saved=True, minted=minted, warnings=warnings,
                           storefront_published=self._publish())

    def _saved(self) -> None:
        self.draft = self.rule.to_dict()
        self.changes = {}

    def _publish(self) -> Optional[bool]:
        if self.publisher is None:
            return None
        try:
            self.publisher.publish()
        except (ShopifyError, ConfigurationError) as e:
            logger.warning("Storefront publish after saving rule %s failed: %s",
                           self.rule.id if self.rule else None, e.message)
            return False
        return True
