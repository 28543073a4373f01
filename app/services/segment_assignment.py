"""
Customer segment eligibility for automatic discounts.

A segment is either assigned to a discount or not. Assigning an assigned
segment, or removing an unassigned one, is rejected. Removing a segment
only unbinds it; the discount and its other segments are left alone.

On Shopify the minimum requirement and combination policy belong to the
discount, so every segment bound to one discount reports the same values
and assigning a segment with new values changes them for all of them.
"""
import logging
from typing import Any, Dict, List, Optional

from ..models.targeting import (
    CombinesWith,
    MinimumQuantity,
    MinimumRequirement,
    MinimumSubtotal,
    NoMinimum,
    SegmentAssignment,
    minimum_requirement_from_dict,
)
from ..utils.exceptions import (
    AssignmentFailure,
    AssignmentPrecondition,
    InvalidStatusTransitionError,
    RemovalFailure,
    ShopifyError,
)
from .shopify_client import ShopifyClient, extract_id, to_gid

logger = logging.getLogger(__name__)

ASSIGNED = 'assigned'
UNASSIGNED = 'unassigned'


def minimum_requirement_input(requirement: MinimumRequirement) -> Dict[str, Any]:
    """DiscountMinimumRequirementInput for a minimum requirement."""
    if isinstance(requirement, MinimumQuantity):
        return {'quantity': {'greaterThanOrEqualToQuantity': str(requirement.quantity)}}
    if isinstance(requirement, MinimumSubtotal):
        return {'subtotal': {'greaterThanOrEqualToSubtotal': str(requirement.amount)}}
    # Nulling both clears any existing requirement
    return {
        'quantity': {'greaterThanOrEqualToQuantity': None},
        'subtotal': {'greaterThanOrEqualToSubtotal': None},
    }


class SegmentAssignmentManager:
    """
    Binds customer segments to a Shopify automatic discount.

    Usage:
        manager = SegmentAssignmentManager(client)
        manager.assign(discount_id, segment_id, MinimumQuantity(2), CombinesWith())
        manager.list_assigned(discount_id)
    """

    def __init__(self, client: ShopifyClient, currency_code: str = 'USD'):
        self.client = client
        self.currency_code = currency_code

    @staticmethod
    def _require_discount(external_discount_id: Optional[str]) -> None:
        if not external_discount_id:
            raise AssignmentPrecondition()

    @staticmethod
    def _find(segments: List[Dict[str, Any]], segment_id: str) -> Optional[Dict[str, Any]]:
        wanted = extract_id(segment_id)
        for segment in segments:
            if extract_id(segment.get('id')) == wanted:
                return segment
        return None

    def _read(self, external_discount_id: str, failure_cls) -> Dict[str, Any]:
        try:
            return self.client.get_automatic_discount(external_discount_id)
        except ShopifyError as e:
            raise failure_cls.from_error(e)

    def _assignments(self, discount: Dict[str, Any]) -> List[SegmentAssignment]:
        if discount.get('context') != 'segments':
            return []
        requirement = minimum_requirement_from_dict(discount.get('minimum_requirement'), self.currency_code)
        combines_with = CombinesWith.from_dict(discount.get('combines_with'))
        return [
            SegmentAssignment(
                id=segment.get('id'),
                name=segment.get('name') or segment.get('id'),
                minimum_requirement=requirement,
                combines_with=combines_with,
            )
            for segment in discount.get('segments', [])
        ]

    def list_assigned(self, external_discount_id: str) -> List[SegmentAssignment]:
        self._require_discount(external_discount_id)
        return self._assignments(self._read(external_discount_id, AssignmentFailure))

    def assign(self, external_discount_id: str, segment_id: str,
               minimum_requirement: MinimumRequirement = None,
               combines_with: CombinesWith = None,
               segment_name: str = None) -> SegmentAssignment:
        """
        Make a segment eligible for the discount.

        Raises:
            AssignmentPrecondition: the rule has no linked discount yet
            InvalidStatusTransitionError: the segment is already assigned
            AssignmentFailure: Shopify rejected or could not be reached
        """
        self._require_discount(external_discount_id)
        minimum_requirement = minimum_requirement or NoMinimum()
        combines_with = combines_with or CombinesWith()
        segment_gid = to_gid('Segment', segment_id)

        discount = self._read(external_discount_id, AssignmentFailure)
        if self._find(discount.get('segments', []), segment_gid):
            raise InvalidStatusTransitionError('segment assignment', ASSIGNED, ASSIGNED)
        if discount.get('context') == 'customers':
            logger.warning("Assigning segment %s replaces specific-customer eligibility on %s",
                           segment_gid, external_discount_id)

        discount_input = {
            'context': {'customerSegments': {'add': [segment_gid]}},
            'minimumRequirement': minimum_requirement_input(minimum_requirement),
            'combinesWith': combines_with.to_dict(),
        }
        try:
            self.client.update_automatic_discount(external_discount_id, discount_input)
        except ShopifyError as e:
            failure = AssignmentFailure.from_error(e)
            logger.warning("Assigning segment %s to %s failed (%s): %s",
                           segment_gid, external_discount_id, failure.reason.value, e.message)
            raise failure

        logger.info("Assigned segment %s to discount %s", segment_gid, external_discount_id)
        return SegmentAssignment(
            id=segment_gid,
            name=segment_name or segment_gid,
            minimum_requirement=minimum_requirement,
            combines_with=combines_with,
        )

    def remove(self, external_discount_id: str, segment_id: str) -> None:
        """
        Unbind a segment from the discount.

        Raises:
            AssignmentPrecondition: the rule has no linked discount yet
            InvalidStatusTransitionError: the segment is not assigned
            RemovalFailure: Shopify rejected or could not be reached
        """
        self._require_discount(external_discount_id)

        discount = self._read(external_discount_id, RemovalFailure)
        segments = discount.get('segments', [])
        bound = self._find(segments, segment_id)
        if not bound:
            raise InvalidStatusTransitionError('segment assignment', UNASSIGNED, UNASSIGNED)

        if len(segments) == 1:
            # Shopify needs a buyer context; without segments the discount is open to everyone
            context = {'all': 'ALL'}
        else:
            context = {'customerSegments': {'remove': [bound['id']]}}

        try:
            self.client.update_automatic_discount(external_discount_id, {'context': context})
        except ShopifyError as e:
            failure = RemovalFailure.from_error(e)
            logger.warning("Removing segment %s from %s failed (%s): %s",
                           bound['id'], external_discount_id, failure.reason.value, e.message)
            raise failure

        logger.info("Removed segment %s from discount %s", bound['id'], external_discount_id)
