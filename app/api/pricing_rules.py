"""
Pricing Rules API.

Endpoints for:
- Pricing rule CRUD (saves mint and sync the linked Shopify discount)
- Live validation for the rule editor
- Product selection replace with change summary
- Sync retry and products on the linked discount
- Segment assignment through the rule's linked discount
- Storefront metafield publication
"""
import logging

from flask import Blueprint, request, jsonify, g

from ..middleware.shop_auth import require_shop_auth
from ..models.targeting import CombinesWith, ProductScope, minimum_requirement_from_dict
from ..services.catalog_service import CatalogService
from ..services.product_diff import diff_products
from ..services.rule_editor import RuleEditSession, EditState
from ..services.rule_repository import RuleRepository, RuleFilter
from ..services.rule_validator import validate
from ..services.segment_assignment import SegmentAssignmentManager
from ..services.shopify_client import client_for_tenant
from ..services.storefront_publisher import StorefrontPublisher
from ..utils.cancellation import RequestSequencer
from ..utils.errors import error_response, ErrorCode, bad_request
from ..utils.exceptions import ShopifyError, SyncFailure, ConfigurationError

logger = logging.getLogger(__name__)

pricing_rules_bp = Blueprint('pricing_rules', __name__)


def _repository() -> RuleRepository:
    return RuleRepository(g.tenant_id)


def _session(repo: RuleRepository, rule_id: int = None) -> RuleEditSession:
    # Price lookups of one edit share a sequencer; _save() closes it
    catalog = CatalogService(g.tenant_id, sequencer=RequestSequencer())
    publisher = StorefrontPublisher(g.tenant_id, repository=repo)
    if rule_id is None:
        return RuleEditSession(repo, catalog=catalog, publisher=publisher)
    return RuleEditSession.for_rule(repo, rule_id, catalog=catalog, publisher=publisher)


def _save(session: RuleEditSession):
    try:
        return session.save()
    finally:
        session.close()


def _json_body():
    data = request.get_json(silent=True)
    if data is None or not isinstance(data, dict):
        return None
    return data


def _outcome_response(outcome, success_status: int = 200):
    """
    Map a save outcome to a response.

    A rule that was saved is always a success response, even when the
    Shopify sync failed; the body carries state 'sync_failed' and the
    failure reason so the editor can offer a retry.
    """
    body = outcome.to_dict()

    if outcome.failed_step in ('validate', 'save'):
        return error_response(
            'Pricing rule is invalid', ErrorCode.VALIDATION_ERROR, 400, log_error=False,
            extra={'errors': body['errors'], 'warnings': body['warnings']}
        )

    if not outcome.saved and outcome.failure is not None:
        failure = outcome.failure
        return error_response(
            failure.message, failure.code, failure.status_code,
            extra={'reason': failure.reason.value, 'retryable': failure.retryable, 'saved': False}
        )

    return jsonify(body), success_status


# ==================== Rules CRUD ====================

@pricing_rules_bp.route('/pricing-rules', methods=['GET'])
@require_shop_auth
def list_rules():
    """
    List pricing rules.

    Query params:
        status: active or inactive
        q: Name search
    """
    status = request.args.get('status') or None
    if status and status not in ('active', 'inactive'):
        return bad_request('status must be active or inactive')

    rules = _repository().list(RuleFilter(status=status, query=request.args.get('q') or None))
    return jsonify({
        'rules': [rule.to_dict() for rule in rules],
        'total': len(rules),
    }), 200


@pricing_rules_bp.route('/pricing-rules/<int:rule_id>', methods=['GET'])
@require_shop_auth
def get_rule(rule_id):
    """Get a single pricing rule."""
    rule = _repository().get(rule_id)
    return jsonify({'rule': rule.to_dict()}), 200


@pricing_rules_bp.route('/pricing-rules', methods=['POST'])
@require_shop_auth
def create_rule():
    """
    Create a pricing rule.

    Request body (camelCase rule fields):
        name: Rule name (required)
        status: active or inactive
        discountTitle: Customer-facing title
        applyToCustomers: all, logged_in, non_logged_in, specific, customer_tags
        customerTags, specificCustomers
        applyToProducts: all, specific_products, collections, product_tags
        specificProducts, collections, productTags
        priceType: percent_off, amount_off, new_price
        discountValue: Number (required)
    """
    data = _json_body()
    if data is None:
        return bad_request('Request body must be a JSON object')

    repo = _repository()
    session = _session(repo)
    session.edit(data)
    outcome = _save(session)
    return _outcome_response(outcome, 201)


@pricing_rules_bp.route('/pricing-rules/<int:rule_id>', methods=['PUT'])
@require_shop_auth
def update_rule(rule_id):
    """Update a pricing rule; the linked discount is updated in place."""
    data = _json_body()
    if data is None:
        return bad_request('Request body must be a JSON object')

    repo = _repository()
    session = _session(repo, rule_id)
    session.edit(data)
    outcome = _save(session)
    return _outcome_response(outcome)


@pricing_rules_bp.route('/pricing-rules/<int:rule_id>', methods=['DELETE'])
@require_shop_auth
def delete_rule(rule_id):
    """Delete a pricing rule. Its Shopify discount is deactivated, not deleted."""
    repo = _repository()
    repo.delete(rule_id)

    published = True
    try:
        StorefrontPublisher(g.tenant_id, repository=repo).publish()
    except (ShopifyError, ConfigurationError) as e:
        logger.warning("Storefront publish after deleting rule %s failed: %s", rule_id, e.message)
        published = False

    return jsonify({'success': True, 'storefrontPublished': published}), 200


@pricing_rules_bp.route('/pricing-rules/validate', methods=['POST'])
@require_shop_auth
def validate_rule():
    """
    Validate a draft without saving.

    Request body: rule fields, plus optional ruleId to validate changes
    against a saved rule.
    """
    data = _json_body()
    if data is None:
        return bad_request('Request body must be a JSON object')

    draft = {}
    rule_id = data.pop('ruleId', None)
    if rule_id is not None:
        draft.update(_repository().get(int(rule_id)).to_dict())
    draft.update(data)

    prices = {}
    products = draft.get('specificProducts')
    if (draft.get('priceType') == 'new_price' and draft.get('applyToProducts') == ProductScope.SPECIFIC_PRODUCTS.value
            and isinstance(products, list)):
        ids = [p.get('id') for p in products if isinstance(p, dict) and p.get('id') and p.get('price') is None]
        prices = CatalogService(g.tenant_id).product_prices(ids)

    return jsonify(validate(draft, prices).to_dict()), 200


# ==================== Products ====================

@pricing_rules_bp.route('/pricing-rules/<int:rule_id>/products', methods=['PUT'])
@require_shop_auth
def replace_products(rule_id):
    """
    Replace the rule's product selection.

    Request body:
        specificProducts: Complete list of selected products

    The full list is synced to Shopify; the response adds a summary of
    what was added and removed compared with the linked discount.
    """
    data = _json_body()
    if data is None or not isinstance(data.get('specificProducts'), list):
        return bad_request('specificProducts must be a list')

    repo = _repository()
    rule = repo.get(rule_id)

    before = rule.specific_products or []
    if rule.external_discount_id:
        try:
            before = repo.sync_client.get_synced_products(rule.external_discount_id)
        except SyncFailure as e:
            logger.warning("Could not read products on %s, diffing against saved selection: %s",
                           rule.external_discount_id, e.message)

    session = _session(repo, rule_id)
    session.edit({
        'applyToProducts': ProductScope.SPECIFIC_PRODUCTS.value,
        'specificProducts': data['specificProducts'],
    })
    outcome = _save(session)
    if outcome.failed_step in ('validate', 'save'):
        return _outcome_response(outcome)

    body = outcome.to_dict()
    body['specificProducts'] = outcome.rule.specific_products or []
    body['changes'] = diff_products(before, outcome.rule.specific_products or []).to_dict()
    return jsonify(body), 200


@pricing_rules_bp.route('/pricing-rules/<int:rule_id>/discount-products', methods=['GET'])
@require_shop_auth
def discount_products(rule_id):
    """Products currently attached to the rule's Shopify discount."""
    repo = _repository()
    rule = repo.get(rule_id)
    if not rule.external_discount_id:
        return jsonify({'products': [], 'externalDiscountId': None}), 200

    products = repo.sync_client.get_synced_products(rule.external_discount_id)
    return jsonify({'products': products, 'externalDiscountId': rule.external_discount_id}), 200


@pricing_rules_bp.route('/pricing-rules/<int:rule_id>/sync', methods=['POST'])
@require_shop_auth
def sync_rule(rule_id):
    """Retry syncing a saved rule to Shopify with its complete targeting."""
    repo = _repository()
    session = _session(repo, rule_id)
    outcome = _save(session)
    status = 200 if outcome.state == EditState.SYNCED else 502
    if outcome.failed_step in ('validate', 'save'):
        return _outcome_response(outcome)
    return jsonify(outcome.to_dict()), status


# ==================== Segments ====================

@pricing_rules_bp.route('/pricing-rules/<int:rule_id>/segments', methods=['POST'])
@require_shop_auth
def assign_rule_segment(rule_id):
    """
    Assign a customer segment to the rule's linked discount.

    Request body:
        segmentId: Segment id or GID (required)
        segmentName: Display name
        minimumRequirement: {type: none|quantity|subtotal, ...}
        combinesWith: {productDiscounts, orderDiscounts, shippingDiscounts}
    """
    data = _json_body()
    if data is None or not data.get('segmentId'):
        return bad_request('segmentId is required')

    rule = _repository().get(rule_id)
    requirement = minimum_requirement_from_dict(data.get('minimumRequirement'), g.tenant.currency_code or 'USD')
    combines_with = CombinesWith.from_dict(data.get('combinesWith'))

    manager = SegmentAssignmentManager(
        client_for_tenant(g.tenant_id) if rule.external_discount_id else None,
        g.tenant.currency_code or 'USD',
    )
    assignment = manager.assign(rule.external_discount_id, str(data['segmentId']), requirement, combines_with,
                                segment_name=data.get('segmentName'))
    # new_price rules price each product through its own discount
    for discount_id in rule.linked_discount_ids():
        if discount_id != rule.external_discount_id:
            manager.assign(discount_id, str(data['segmentId']), requirement, combines_with,
                           segment_name=data.get('segmentName'))
    return jsonify({
        'segment': assignment.to_dict(),
        'externalDiscountId': rule.external_discount_id,
        'discountIds': rule.linked_discount_ids(),
    }), 201


# ==================== Storefront ====================

@pricing_rules_bp.route('/pricing-rules/storefront/sync', methods=['POST'])
@require_shop_auth
def sync_storefront():
    """Publish all active rules to the shop metafield."""
    published = StorefrontPublisher(g.tenant_id).publish()
    return jsonify({
        'success': True,
        'published': published,
        'message': 'Pricing rules synced to Shopify metafields successfully',
    }), 200
