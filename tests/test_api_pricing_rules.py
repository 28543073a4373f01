"""
Tests for the Pricing Rules API endpoints.

Tests cover:
- Auth via shop domain
- Rule CRUD with discount minting and full-replace sync
- Live validation
- Product replace with change summary
- Segment assignment precondition
- Storefront publication
"""
import json
from decimal import Decimal

import pytest
from unittest.mock import patch, MagicMock

from app.utils.cancellation import RequestSequencer
from app.utils.exceptions import ShopifyUnavailableError

from helpers import DISCOUNT_GID, remote_discount, shopify_products

SPARE_GID = 'gid://shopify/DiscountAutomaticNode/9002'

VIP = {
    'name': 'VIP 10%',
    'priceType': 'percent_off',
    'discountValue': 10,
    'applyToProducts': 'specific_products',
    'specificProducts': [{'id': '1', 'title': 'P1'}, {'id': '2', 'title': 'P2'}],
}


def create_rule(client, headers, **fields):
    response = client.post('/api/pricing-rules', headers=headers, data=json.dumps(dict(VIP, **fields)))
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestAuth:

    def test_missing_shop_is_unauthorized(self, client):
        response = client.get('/api/pricing-rules')
        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'AUTH_REQUIRED'

    def test_unknown_shop(self, client, app):
        response = client.get('/api/pricing-rules', headers={'X-Shop-Domain': 'nobody.myshopify.com'})
        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'SHOP_NOT_FOUND'

    def test_shop_query_param(self, client, sample_tenant):
        response = client.get(f'/api/pricing-rules?shop={sample_tenant.shopify_domain}')
        assert response.status_code == 200


class TestCreateRule:

    def test_create_mints_discount(self, client, auth_headers, mock_shopify):
        body = create_rule(client, auth_headers)

        assert body['state'] == 'synced'
        assert body['saved'] is True
        assert body['minted'] is True
        assert body['externalDiscountId'] == DISCOUNT_GID
        assert body['ruleId'] == body['rule']['id']
        assert body['storefrontPublished'] is True
        mock_shopify.create_automatic_discount.assert_called_once()

    def test_invalid_rule(self, client, auth_headers, mock_shopify):
        response = client.post('/api/pricing-rules', headers=auth_headers,
                               data=json.dumps(dict(VIP, discountValue=150)))

        assert response.status_code == 400
        error = response.get_json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert error['errors'][0]['field'] == 'discountValue'
        mock_shopify.create_automatic_discount.assert_not_called()

    def test_mint_failure_is_reported_unsaved(self, client, auth_headers, mock_shopify):
        mock_shopify.create_automatic_discount.side_effect = ShopifyUnavailableError('timeout')

        response = client.post('/api/pricing-rules', headers=auth_headers, data=json.dumps(VIP))

        assert response.status_code == 502
        error = response.get_json()['error']
        assert error['code'] == 'SYNC_FAILED'
        assert error['reason'] == 'remote_unavailable'
        assert error['retryable'] is True
        assert error['saved'] is False

        listing = client.get('/api/pricing-rules', headers=auth_headers).get_json()
        assert listing['total'] == 0

    @pytest.mark.parametrize('fields,field', [
        ({'specificProducts': ['123']}, 'specificProducts'),
        ({'name': 123}, 'name'),
    ])
    def test_malformed_fields_are_rejected(self, client, auth_headers, mock_shopify, fields, field):
        response = client.post('/api/pricing-rules', headers=auth_headers, data=json.dumps(dict(VIP, **fields)))

        assert response.status_code == 400
        assert [e['field'] for e in response.get_json()['error']['errors']] == [field]
        mock_shopify.create_automatic_discount.assert_not_called()

    def test_edit_lookups_share_one_sequencer(self, client, auth_headers, mock_shopify):
        sequencers = []

        def make_sequencer():
            sequencer = RequestSequencer()
            sequencer.next = MagicMock(wraps=sequencer.next)
            sequencer.cancel_all = MagicMock(wraps=sequencer.cancel_all)
            sequencers.append(sequencer)
            return sequencer

        with patch('app.api.pricing_rules.RequestSequencer', side_effect=make_sequencer):
            create_rule(client, auth_headers, priceType='new_price', discountValue=50)

        assert len(sequencers) == 1
        sequencers[0].next.assert_called_with('product_prices')
        sequencers[0].cancel_all.assert_called_once()

    def test_non_object_body(self, client, auth_headers):
        response = client.post('/api/pricing-rules', headers=auth_headers, data='[]')
        assert response.status_code == 400

    def test_new_price_warning_is_returned(self, client, auth_headers, mock_shopify):
        body = create_rule(client, auth_headers, priceType='new_price', discountValue=150,
                           specificProducts=[{'id': '1', 'title': 'Hoodie', 'price': '100'}])

        assert body['externalDiscountId'] is None
        assert body['syncStatus'] == 'not_required'
        assert body['warnings'][0]['productId'] == '1'


class TestReadRules:

    def test_list_and_get(self, client, auth_headers, mock_shopify):
        created = create_rule(client, auth_headers)
        create_rule(client, auth_headers, name='Staff', status='inactive')

        listing = client.get('/api/pricing-rules?status=inactive', headers=auth_headers).get_json()
        assert [r['name'] for r in listing['rules']] == ['Staff']

        response = client.get(f"/api/pricing-rules/{created['ruleId']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['rule']['externalDiscountId'] == DISCOUNT_GID

    def test_bad_status_filter(self, client, auth_headers):
        response = client.get('/api/pricing-rules?status=archived', headers=auth_headers)
        assert response.status_code == 400

    def test_get_missing_rule(self, client, auth_headers):
        response = client.get('/api/pricing-rules/999', headers=auth_headers)
        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'PRICING_RULE_NOT_FOUND'


class TestUpdateRule:

    def test_update_syncs_full_targeting(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        mock_shopify.get_automatic_discount.return_value = remote_discount(products=shopify_products(1, 2))

        response = client.put(f'/api/pricing-rules/{rule_id}', headers=auth_headers,
                              data=json.dumps({'discountValue': 15}))

        assert response.status_code == 200
        body = response.get_json()
        assert body['state'] == 'synced'
        assert body['externalDiscountId'] == DISCOUNT_GID
        discount_input = mock_shopify.update_automatic_discount.call_args[0][1]
        assert discount_input['customerGets']['value'] == {'percentage': 0.15}
        assert discount_input['customerGets']['items']['products']['productsToRemove'] == []

    def test_sync_failure_is_saved_with_state(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        mock_shopify.update_automatic_discount.side_effect = ShopifyUnavailableError('HTTP 503')

        response = client.put(f'/api/pricing-rules/{rule_id}', headers=auth_headers,
                              data=json.dumps({'name': 'VIP 15%'}))

        assert response.status_code == 200
        body = response.get_json()
        assert body['state'] == 'sync_failed'
        assert body['failedStep'] == 'sync'
        assert body['syncStatus'] == 'failed'
        assert body['syncError']['reason'] == 'remote_unavailable'
        assert body['rule']['name'] == 'VIP 15%'

        mock_shopify.update_automatic_discount.side_effect = None
        retry = client.post(f'/api/pricing-rules/{rule_id}/sync', headers=auth_headers)
        assert retry.status_code == 200
        assert retry.get_json()['syncStatus'] == 'synced'

    def test_changing_discount_id_conflicts(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']

        response = client.put(f'/api/pricing-rules/{rule_id}', headers=auth_headers,
                              data=json.dumps({'externalDiscountId': 'gid://shopify/DiscountAutomaticNode/1'}))

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'EXTERNAL_ID_IMMUTABLE'


class TestDeleteRule:

    def test_delete_deactivates(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']

        response = client.delete(f'/api/pricing-rules/{rule_id}', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['success'] is True
        mock_shopify.set_automatic_discount_active.assert_called_once_with(DISCOUNT_GID, False)
        assert client.get(f'/api/pricing-rules/{rule_id}', headers=auth_headers).status_code == 404


class TestValidateEndpoint:

    def test_returns_errors_and_warnings(self, client, auth_headers, mock_shopify):
        response = client.post('/api/pricing-rules/validate', headers=auth_headers, data=json.dumps({
            'name': '', 'priceType': 'new_price', 'discountValue': 150,
            'applyToProducts': 'specific_products', 'specificProducts': [{'id': '1', 'title': 'Hoodie'}],
        }))

        body = response.get_json()
        assert response.status_code == 200
        assert body['valid'] is False
        assert [e['field'] for e in body['errors']] == ['name']

    def test_uses_catalog_prices(self, client, auth_headers, mock_shopify):
        from decimal import Decimal
        mock_shopify.get_product_prices.return_value = {'1': Decimal('100')}

        body = client.post('/api/pricing-rules/validate', headers=auth_headers, data=json.dumps({
            'name': 'Clearance', 'priceType': 'new_price', 'discountValue': 150,
            'applyToProducts': 'specific_products', 'specificProducts': [{'id': '1', 'title': 'Hoodie'}],
        })).get_json()

        assert body['valid'] is True
        assert body['warnings'][0]['currentPrice'] == 100.0

    def test_malformed_products_are_field_errors(self, client, auth_headers, mock_shopify):
        response = client.post('/api/pricing-rules/validate', headers=auth_headers, data=json.dumps({
            'name': 'Clearance', 'priceType': 'new_price', 'discountValue': 50,
            'applyToProducts': 'specific_products', 'specificProducts': ['123'],
        }))

        assert response.status_code == 200
        assert [e['field'] for e in response.get_json()['errors']] == ['specificProducts']
        mock_shopify.get_product_prices.assert_not_called()

    def test_merges_saved_rule(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']

        body = client.post('/api/pricing-rules/validate', headers=auth_headers,
                           data=json.dumps({'ruleId': rule_id, 'discountValue': 101})).get_json()

        assert [e['field'] for e in body['errors']] == ['discountValue']


class TestReplaceProducts:

    def test_full_set_with_change_summary(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        mock_shopify.get_automatic_discount.return_value = remote_discount(products=shopify_products(1, 2))

        response = client.put(f'/api/pricing-rules/{rule_id}/products', headers=auth_headers,
                              data=json.dumps({'specificProducts': [{'id': '2', 'title': 'P2'},
                                                                    {'id': '3', 'title': 'P3'}]}))

        assert response.status_code == 200
        body = response.get_json()
        assert [p['id'] for p in body['specificProducts']] == ['2', '3']
        assert body['changes']['summary'] == {'added': 1, 'removed': 1, 'unchanged': 1}

        products = mock_shopify.update_automatic_discount.call_args[0][1]['customerGets']['items']['products']
        assert products == {
            'productsToAdd': ['gid://shopify/Product/2', 'gid://shopify/Product/3'],
            'productsToRemove': ['gid://shopify/Product/1'],
        }

    def test_requires_list(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        response = client.put(f'/api/pricing-rules/{rule_id}/products', headers=auth_headers,
                              data=json.dumps({'specificProducts': '1,2'}))
        assert response.status_code == 400

    def test_empty_selection_is_invalid(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        response = client.put(f'/api/pricing-rules/{rule_id}/products', headers=auth_headers,
                              data=json.dumps({'specificProducts': []}))
        assert response.status_code == 400

    def test_discount_products(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']
        mock_shopify.get_automatic_discount.return_value = remote_discount(products=shopify_products(1))

        body = client.get(f'/api/pricing-rules/{rule_id}/discount-products', headers=auth_headers).get_json()

        assert [p['id'] for p in body['products']] == ['1']
        assert body['externalDiscountId'] == DISCOUNT_GID


class TestRuleSegments:

    def test_unsaved_discount_needs_save_first(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers, applyToCustomers='customer_tags', customerTags=['vip'])['ruleId']
        mock_shopify.reset_mock()

        response = client.post(f'/api/pricing-rules/{rule_id}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': '1'}))

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'SAVE_RULE_FIRST'
        assert mock_shopify.method_calls == []

    def test_assign_through_rule(self, client, auth_headers, mock_shopify):
        rule_id = create_rule(client, auth_headers)['ruleId']

        response = client.post(f'/api/pricing-rules/{rule_id}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': '1', 'segmentName': 'VIP',
                                                'minimumRequirement': {'type': 'quantity', 'quantity': 2}}))

        assert response.status_code == 201
        body = response.get_json()
        assert body['segment']['id'] == 'gid://shopify/Segment/1'
        assert body['segment']['minimumRequirement'] == {'type': 'quantity', 'quantity': 2}
        assert body['externalDiscountId'] == DISCOUNT_GID

    def test_new_price_rule_assigns_every_product_discount(self, client, auth_headers, mock_shopify):
        mock_shopify.get_product_prices.return_value = {'1': Decimal('80'), '2': Decimal('90')}
        mock_shopify.create_automatic_discount.side_effect = [DISCOUNT_GID, SPARE_GID]
        rule_id = create_rule(client, auth_headers, priceType='new_price', discountValue=50)['ruleId']
        mock_shopify.update_automatic_discount.reset_mock()

        response = client.post(f'/api/pricing-rules/{rule_id}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': '1'}))

        assert response.status_code == 201
        assert response.get_json()['discountIds'] == [DISCOUNT_GID, SPARE_GID]
        updated = {c[0][0] for c in mock_shopify.update_automatic_discount.call_args_list}
        assert updated == {DISCOUNT_GID, SPARE_GID}


class TestStorefront:

    def test_manual_publish(self, client, auth_headers, mock_shopify):
        create_rule(client, auth_headers)
        create_rule(client, auth_headers, name='Off', status='inactive')
        mock_shopify.set_metafields.reset_mock()

        response = client.post('/api/pricing-rules/storefront/sync', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['published'] == 1
        metafield = mock_shopify.set_metafields.call_args[0][0][0]
        rules = json.loads(metafield['value'])
        assert [r['name'] for r in rules] == ['VIP 10%']
