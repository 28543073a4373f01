"""
Product selection diff.

Builds the add/remove summary shown to merchants when they change the
products on a rule. The summary is presentation only: syncs always send
the complete desired product set.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from .shopify_client import extract_id


@dataclass(frozen=True)
class ProductDiff:
    added: Tuple[Dict[str, Any], ...]
    removed: Tuple[Dict[str, Any], ...]
    unchanged: Tuple[Dict[str, Any], ...]

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'added': list(self.added),
            'removed': list(self.removed),
            'unchanged': list(self.unchanged),
            'summary': {
                'added': len(self.added),
                'removed': len(self.removed),
                'unchanged': len(self.unchanged),
            },
        }


def _keyed(products: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    # Numeric ids and GIDs for the same product share a key
    keyed = {}
    for product in products or []:
        key = extract_id(product.get('id'))
        if key and key not in keyed:
            keyed[key] = product
    return keyed


def _sorted(keyed: Dict[str, Dict[str, Any]], keys) -> Tuple[Dict[str, Any], ...]:
    return tuple(keyed[k] for k in sorted(keys))


def diff_products(current: Iterable[Dict[str, Any]], desired: Iterable[Dict[str, Any]]) -> ProductDiff:
    """
    Compare the synced product set with the desired one.

    Products are matched by id; order and duplicates in either input do
    not affect the result. Output tuples are ordered by id.
    """
    current_by_id = _keyed(current)
    desired_by_id = _keyed(desired)

    added = desired_by_id.keys() - current_by_id.keys()
    removed = current_by_id.keys() - desired_by_id.keys()
    unchanged = desired_by_id.keys() & current_by_id.keys()

    return ProductDiff(
        added=_sorted(desired_by_id, added),
        removed=_sorted(current_by_id, removed),
        unchanged=_sorted(desired_by_id, unchanged),
    )


def product_ids(products: Iterable[Dict[str, Any]]) -> List[str]:
    """Numeric ids of a product list, de-duplicated in order."""
    return list(_keyed(products).keys())
