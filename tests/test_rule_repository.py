"""
Tests for RuleRepository.

Tests cover:
- Create mints the linked discount in the same save; sync() completes it
- new_price rules minted from current product prices
- Create rollback when minting fails
- External discount id immutability
- Activation follows rule status
- Delete deactivates, never deletes, the discount
"""
from decimal import Decimal

import pytest
from unittest.mock import MagicMock

from app.extensions import db
from app.models import PricingRule
from app.services.discount_sync import DiscountSyncClient
from app.services.rule_repository import RuleRepository, RuleFilter
from app.utils.exceptions import (
    ExternalIdImmutableError,
    RuleNotFoundError,
    RuleValidationError,
    ShopifyUnavailableError,
    ShopifyUserError,
    SyncFailure,
    ValidationError,
)

from helpers import DISCOUNT_GID


def rule_data(**fields):
    data = {
        'name': 'VIP 10%',
        'status': 'active',
        'applyToCustomers': 'all',
        'applyToProducts': 'specific_products',
        'specificProducts': [{'id': '1', 'title': 'P1'}, {'id': '2', 'title': 'P2'}],
        'priceType': 'percent_off',
        'discountValue': 10,
    }
    data.update(fields)
    return data


@pytest.fixture
def repo(app, sample_tenant, shopify):
    return RuleRepository(sample_tenant.id, DiscountSyncClient(shopify))


class TestCreate:

    def test_mints_discount_for_checkout_rule(self, repo, shopify):
        result = repo.create(rule_data())

        assert result.minted is True
        assert result.external_discount_id == DISCOUNT_GID
        assert result.rule.external_discount_id == DISCOUNT_GID
        assert result.rule.sync_status == 'pending'
        assert result.rule.last_synced_at is None
        shopify.create_automatic_discount.assert_called_once()

        products = shopify.create_automatic_discount.call_args[0][0]['customerGets']['items']['products']
        assert products['productsToAdd'] == ['gid://shopify/Product/1', 'gid://shopify/Product/2']

    def test_sync_completes_create(self, repo, shopify):
        rule = repo.create(rule_data()).rule

        assert repo.sync(rule) == []

        assert rule.sync_status == 'synced'
        assert rule.last_synced_at is not None
        discount_id, discount_input = shopify.update_automatic_discount.call_args[0]
        assert discount_id == DISCOUNT_GID
        assert discount_input['customerGets']['items']['products']['productsToAdd'] == [
            'gid://shopify/Product/1', 'gid://shopify/Product/2',
        ]

    def test_sync_failure_keeps_rule_linked(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        shopify.update_automatic_discount.side_effect = ShopifyUnavailableError('HTTP 503')

        with pytest.raises(SyncFailure) as exc:
            repo.sync(rule)

        assert exc.value.step == 'sync'
        saved = repo.get(rule.id)
        assert saved.external_discount_id == DISCOUNT_GID
        assert saved.sync_status == 'failed'

    @pytest.mark.parametrize('fields', [
        {'applyToCustomers': 'customer_tags', 'customerTags': ['vip']},
        {'applyToCustomers': 'non_logged_in'},
        {'status': 'inactive'},
    ])
    def test_storefront_only_rules_need_no_discount(self, repo, shopify, fields):
        result = repo.create(rule_data(**fields))

        assert result.minted is False
        assert result.rule.external_discount_id is None
        assert result.rule.sync_status == 'not_required'
        shopify.create_automatic_discount.assert_not_called()

    def test_mint_failure_saves_nothing(self, repo, shopify, sample_tenant):
        shopify.create_automatic_discount.side_effect = ShopifyUnavailableError('timeout')

        with pytest.raises(SyncFailure) as exc:
            repo.create(rule_data())

        assert exc.value.retryable is True
        assert exc.value.step == 'mint'
        assert PricingRule.query.filter_by(tenant_id=sample_tenant.id).count() == 0

    def test_new_price_rule_is_minted_from_current_prices(self, repo, shopify):
        shopify.get_product_prices.return_value = {'1': Decimal('80'), '2': Decimal('30')}

        result = repo.create(rule_data(priceType='new_price', discountValue=50))

        assert result.minted is True
        assert result.rule.external_discount_id == DISCOUNT_GID
        value = shopify.create_automatic_discount.call_args[0][0]['customerGets']['value']
        assert Decimal(value['discountAmount']['amount']) == Decimal('30')
        assert value['discountAmount']['appliesOnEachItem'] is True

    def test_new_price_rule_with_nothing_to_discount(self, repo, shopify):
        shopify.get_product_prices.return_value = {'1': Decimal('40'), '2': Decimal('30')}

        result = repo.create(rule_data(priceType='new_price', discountValue=50))

        assert result.minted is False
        assert result.rule.external_discount_id is None
        assert result.rule.sync_status == 'not_required'
        shopify.create_automatic_discount.assert_not_called()

    def test_invalid_draft_is_rejected_before_shopify(self, repo, shopify):
        with pytest.raises(RuleValidationError):
            repo.create(rule_data(discountValue=101))
        shopify.create_automatic_discount.assert_not_called()

    def test_caller_cannot_supply_discount_id(self, repo):
        with pytest.raises(ValidationError) as exc:
            repo.create(rule_data(externalDiscountId='gid://shopify/DiscountAutomaticNode/1'))
        assert exc.value.field == 'externalDiscountId'


class TestUpdate:

    def test_reuses_linked_discount(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        shopify.create_automatic_discount.reset_mock()

        result = repo.update(rule.id, {'discountValue': 15})

        assert result.minted is False
        assert result.external_discount_id == DISCOUNT_GID
        assert float(result.rule.discount_value) == 15
        shopify.create_automatic_discount.assert_not_called()

    def test_changing_discount_id_is_rejected(self, repo):
        rule = repo.create(rule_data()).rule

        with pytest.raises(ExternalIdImmutableError):
            repo.update(rule.id, {'externalDiscountId': 'gid://shopify/DiscountAutomaticNode/2'})
        assert repo.get(rule.id).external_discount_id == DISCOUNT_GID

    def test_model_guards_discount_id(self, repo):
        rule = repo.create(rule_data()).rule
        with pytest.raises(ExternalIdImmutableError):
            rule.external_discount_id = 'gid://shopify/DiscountAutomaticNode/2'

    def test_resending_same_discount_id_is_allowed(self, repo):
        rule = repo.create(rule_data()).rule
        result = repo.update(rule.id, {'externalDiscountId': DISCOUNT_GID, 'name': 'VIP 12%'})
        assert result.rule.name == 'VIP 12%'

    def test_mints_on_first_need(self, repo, shopify):
        rule = repo.create(rule_data(applyToCustomers='customer_tags', customerTags=['vip'])).rule
        assert rule.external_discount_id is None

        result = repo.update(rule.id, {'applyToCustomers': 'all'})

        assert result.minted is True
        assert result.rule.external_discount_id == DISCOUNT_GID

    def test_deactivating_rule_deactivates_discount(self, repo, shopify):
        rule = repo.create(rule_data()).rule

        result = repo.update(rule.id, {'status': 'inactive'})

        shopify.set_automatic_discount_active.assert_called_once_with(DISCOUNT_GID, False)
        assert result.rule.external_discount_id == DISCOUNT_GID
        assert result.rule.sync_status == 'synced'

    def test_reactivating_rule_activates_discount(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        repo.update(rule.id, {'status': 'inactive'})
        shopify.set_automatic_discount_active.reset_mock()

        repo.update(rule.id, {'status': 'active'})

        shopify.set_automatic_discount_active.assert_called_once_with(DISCOUNT_GID, True)

    def test_plain_edit_does_not_toggle_activation(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        repo.update(rule.id, {'name': 'Renamed'})
        shopify.set_automatic_discount_active.assert_not_called()

    def test_remote_failure_keeps_local_change(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        shopify.set_automatic_discount_active.side_effect = ShopifyUnavailableError('HTTP 503')

        with pytest.raises(SyncFailure) as exc:
            repo.update(rule.id, {'status': 'inactive'})

        assert exc.value.step == 'activate'
        saved = repo.get(rule.id)
        assert saved.status == 'inactive'
        assert saved.sync_status == 'failed'
        assert 'remote_unavailable' in saved.sync_error

    def test_merged_draft_is_validated(self, repo):
        rule = repo.create(rule_data()).rule
        with pytest.raises(RuleValidationError):
            repo.update(rule.id, {'specificProducts': []})


class TestReadsAndDelete:

    def test_get_is_tenant_scoped(self, repo, app):
        rule = repo.create(rule_data()).rule
        with pytest.raises(RuleNotFoundError):
            RuleRepository(rule.tenant_id + 1, MagicMock()).get(rule.id)

    def test_list_filters(self, repo):
        repo.create(rule_data(name='VIP 10%'))
        repo.create(rule_data(name='Staff', status='inactive'))

        assert [r.name for r in repo.list(RuleFilter(status='inactive'))] == ['Staff']
        assert [r.name for r in repo.list(RuleFilter(query='vip'))] == ['VIP 10%']
        assert [r.name for r in repo.list(RuleFilter(linked=False))] == ['Staff']
        assert len(repo.active_rules()) == 1

    def test_get_by_discount(self, repo):
        rule = repo.create(rule_data()).rule
        assert repo.get_by_discount(DISCOUNT_GID).id == rule.id
        assert repo.get_by_discount('gid://shopify/DiscountAutomaticNode/404') is None

    def test_delete_deactivates_discount(self, repo, shopify):
        rule = repo.create(rule_data()).rule

        repo.delete(rule.id)

        shopify.set_automatic_discount_active.assert_called_once_with(DISCOUNT_GID, False)
        assert db.session.get(PricingRule, rule.id) is None

    def test_delete_survives_deactivation_failure(self, repo, shopify):
        rule = repo.create(rule_data()).rule
        shopify.set_automatic_discount_active.side_effect = ShopifyUserError([{'message': 'Discount does not exist'}])

        repo.delete(rule.id)

        assert db.session.get(PricingRule, rule.id) is None

    def test_delete_missing_rule(self, repo):
        with pytest.raises(RuleNotFoundError):
            repo.delete(999)
