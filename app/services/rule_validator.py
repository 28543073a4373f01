"""
Pricing rule validation.

validate() is pure: it looks only at the draft and at the product prices
it is given. Errors block saving; warnings are informational and are
recomputed from scratch on every call, so they clear as soon as the
condition that raised them is gone.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from ..models.targeting import (
    CustomerScope,
    PriceType,
    ProductScope,
    RuleStatus,
    SpecificProducts,
    customer_condition_from,
    product_condition_from,
)
from ..utils.exceptions import RuleValidationError, ValidationError
from .shopify_client import extract_id

MAX_PERCENT_OFF = Decimal('100')

# Selection fields holding objects with an id, and their labels
SELECTION_FIELDS = {
    'specificCustomers': 'customer',
    'specificProducts': 'product',
    'collections': 'collection',
}
TAG_FIELDS = ('customerTags', 'productTags')
CUSTOMER_FIELDS = ('specificCustomers', 'customerTags')
PRODUCT_FIELDS = ('specificProducts', 'collections', 'productTags')


@dataclass(frozen=True)
class PriceCeilingWarning:
    """A product whose current price is already below a proposed new price."""
    product_id: str
    product_title: str
    current_price: Decimal
    proposed_price: Decimal

    code = 'PRICE_CEILING'

    @property
    def message(self) -> str:
        return (
            f"{self.product_title} currently costs {_fmt(self.current_price)}, below the new price "
            f"{_fmt(self.proposed_price)}. Discounts can only lower prices, so checkout will keep "
            f"{_fmt(self.current_price)} while the price shown on the product page may not match."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'productId': self.product_id,
            'productTitle': self.product_title,
            'currentPrice': float(self.current_price),
            'proposedPrice': float(self.proposed_price),
            'message': self.message,
        }


@dataclass
class ValidationResult:
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[PriceCeilingWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise RuleValidationError(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.is_valid,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
        }


def _fmt(amount: Decimal) -> str:
    return f"{amount.quantize(Decimal('0.01'))}"


def _enum_value(enum_cls, value, field_name: str, errors: List[ValidationError], default):
    if value is None or value == '':
        return default
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        errors.append(ValidationError(f"{field_name} must be one of: {allowed}", field_name))
        return None


def _discount_value(raw, errors: List[ValidationError]) -> Optional[Decimal]:
    if raw is None or (isinstance(raw, str) and not raw.strip()) or isinstance(raw, bool):
        errors.append(ValidationError('Discount value is required', 'discountValue'))
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        errors.append(ValidationError('Discount value must be a number', 'discountValue'))
        return None
    if not value.is_finite():
        errors.append(ValidationError('Discount value must be a number', 'discountValue'))
        return None
    if value < 0:
        errors.append(ValidationError('Discount value cannot be negative', 'discountValue'))
        return None
    return value


def _text(draft: Dict[str, Any], field_name: str, errors: List[ValidationError]) -> str:
    value = draft.get(field_name)
    if value is None:
        return ''
    if not isinstance(value, str):
        errors.append(ValidationError(f"{field_name} must be text", field_name))
        return ''
    return value.strip()


def _malformed_selections(draft: Dict[str, Any], errors: List[ValidationError]) -> set:
    """Fields whose entries are not usable; conditions are not built from them."""
    malformed = set()

    for field_name, label in SELECTION_FIELDS.items():
        items = draft.get(field_name)
        if items is None:
            continue
        if not isinstance(items, list) or not all(
            isinstance(item, dict) and str(item.get('id') or '').strip() for item in items
        ):
            errors.append(ValidationError(f"Each selected {label} must be an object with an id", field_name))
            malformed.add(field_name)

    for field_name in TAG_FIELDS:
        items = draft.get(field_name)
        if items is None:
            continue
        if not isinstance(items, list) or not all(isinstance(tag, str) for tag in items):
            errors.append(ValidationError(f"{field_name} must be a list of tags", field_name))
            malformed.add(field_name)

    return malformed


def validate(draft: Dict[str, Any], product_prices: Optional[Dict[str, Decimal]] = None) -> ValidationResult:
    """
    Validate a camelCase rule draft.

    Args:
        draft: Rule fields as sent by the editor
        product_prices: Known current prices keyed by product id; prices
            carried on the selected products themselves are used otherwise

    Returns:
        ValidationResult with blocking errors and non-blocking warnings
    """
    errors: List[ValidationError] = []
    warnings: List[PriceCeilingWarning] = []

    if not _text(draft, 'name', errors) and not any(e.field == 'name' for e in errors):
        errors.append(ValidationError('Rule name is required', 'name'))
    _text(draft, 'discountTitle', errors)
    malformed = _malformed_selections(draft, errors)

    _enum_value(RuleStatus, draft.get('status'), 'status', errors, RuleStatus.ACTIVE)
    customer_scope = _enum_value(CustomerScope, draft.get('applyToCustomers'), 'applyToCustomers', errors,
                                 CustomerScope.ALL)
    product_scope = _enum_value(ProductScope, draft.get('applyToProducts'), 'applyToProducts', errors,
                                ProductScope.ALL)
    price_type = _enum_value(PriceType, draft.get('priceType'), 'priceType', errors, PriceType.PERCENT_OFF)

    value = _discount_value(draft.get('discountValue'), errors)
    if value is not None and price_type == PriceType.PERCENT_OFF and value > MAX_PERCENT_OFF:
        errors.append(ValidationError('Percentage discount cannot exceed 100', 'discountValue'))

    if customer_scope is not None and not malformed.intersection(CUSTOMER_FIELDS):
        try:
            customer_condition_from(customer_scope, draft.get('customerTags'), draft.get('specificCustomers'))
        except ValidationError as e:
            errors.append(e)

    product_condition = None
    if product_scope is not None and not malformed.intersection(PRODUCT_FIELDS):
        try:
            product_condition = product_condition_from(
                product_scope, draft.get('specificProducts'), draft.get('collections'), draft.get('productTags')
            )
        except ValidationError as e:
            errors.append(e)

    if price_type == PriceType.NEW_PRICE and value is not None and isinstance(product_condition, SpecificProducts):
        warnings = price_ceiling_warnings(draft.get('specificProducts') or [], value, product_prices)

    return ValidationResult(errors, warnings)


def price_ceiling_warnings(products: List[Dict[str, Any]], new_price: Decimal,
                           product_prices: Optional[Dict[str, Decimal]] = None) -> List[PriceCeilingWarning]:
    """One warning per selected product whose known price is below new_price."""
    prices = {extract_id(k): v for k, v in (product_prices or {}).items()}
    warnings = []
    seen = set()

    for product in products:
        product_id = extract_id(product.get('id'))
        if not product_id or product_id in seen:
            continue
        seen.add(product_id)

        current = prices.get(product_id)
        if current is None and product.get('price') is not None:
            try:
                current = Decimal(str(product['price']))
            except InvalidOperation:
                current = None
        if current is None:
            continue

        current = Decimal(str(current))
        if new_price > current:
            warnings.append(PriceCeilingWarning(
                product_id=product_id,
                product_title=product.get('title') or product_id,
                current_price=current,
                proposed_price=new_price,
            ))

    return warnings
