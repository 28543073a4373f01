"""
Discount segment API.

Binds customer segments to a rule's linked Shopify automatic discount.
Discount and segment ids in URLs are the numeric part of their GIDs; full
GIDs are accepted in request bodies.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.shop_auth import require_shop_auth
from ..models.targeting import CombinesWith, minimum_requirement_from_dict
from ..services.catalog_service import CatalogService
from ..services.rule_repository import RuleRepository
from ..services.segment_assignment import SegmentAssignmentManager
from ..services.shopify_client import client_for_tenant, to_gid
from ..utils.errors import bad_request
from ..utils.exceptions import NotFoundError

discounts_bp = Blueprint('discounts', __name__)


def _linked_discount(discount_id: str) -> str:
    """GID of a discount linked to one of this tenant's rules."""
    gid = to_gid('DiscountAutomaticNode', discount_id)
    if RuleRepository(g.tenant_id).get_by_discount(gid) is None:
        raise NotFoundError('Discount', discount_id)
    return gid


def _manager() -> SegmentAssignmentManager:
    return SegmentAssignmentManager(client_for_tenant(g.tenant_id), g.tenant.currency_code or 'USD')


@discounts_bp.route('/<discount_id>/segments', methods=['GET'])
@require_shop_auth
def available_segments(discount_id):
    """All customer segments, each flagged with whether it is assigned to this discount."""
    gid = _linked_discount(discount_id)
    result = CatalogService(g.tenant_id).list_segments(gid)
    return jsonify({'segments': result.items, 'unavailable': result.unavailable}), 200


@discounts_bp.route('/<discount_id>/assigned-segments', methods=['GET'])
@require_shop_auth
def assigned_segments(discount_id):
    """Segments currently bound to this discount."""
    gid = _linked_discount(discount_id)
    assignments = _manager().list_assigned(gid)
    return jsonify({'segments': [a.to_dict() for a in assignments]}), 200


@discounts_bp.route('/<discount_id>/segments', methods=['POST'])
@require_shop_auth
def assign_segment(discount_id):
    """
    Assign a segment to this discount.

    Request body:
        segmentId: Segment id or GID (required)
        segmentName: Display name
        minimumRequirement: {type: none|quantity|subtotal, quantity?, amount?, currencyCode?}
        combinesWith: {productDiscounts, orderDiscounts, shippingDiscounts}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get('segmentId'):
        return bad_request('segmentId is required')

    gid = _linked_discount(discount_id)
    requirement = minimum_requirement_from_dict(data.get('minimumRequirement'), g.tenant.currency_code or 'USD')
    combines_with = CombinesWith.from_dict(data.get('combinesWith'))

    assignment = _manager().assign(gid, str(data['segmentId']), requirement, combines_with,
                                   segment_name=data.get('segmentName'))
    return jsonify({'segment': assignment.to_dict()}), 201


@discounts_bp.route('/<discount_id>/segments/<segment_id>', methods=['DELETE'])
@require_shop_auth
def remove_segment(discount_id, segment_id):
    """Unbind a segment. The discount and its other segments are unchanged."""
    gid = _linked_discount(discount_id)
    _manager().remove(gid, to_gid('Segment', segment_id))
    return jsonify({'success': True, 'externalDiscountId': gid}), 200
