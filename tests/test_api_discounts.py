"""
Tests for the discount segment API.

Covers the assign / list / remove round trip on a rule's linked discount.
"""
import json

import pytest

from app.utils.exceptions import ShopifyUnavailableError

from helpers import DISCOUNT_GID, remote_discount

DISCOUNT_ID = DISCOUNT_GID.split('/')[-1]
SEG1 = 'gid://shopify/Segment/1'


@pytest.fixture
def linked_rule(client, auth_headers, mock_shopify):
    response = client.post('/api/pricing-rules', headers=auth_headers, data=json.dumps({
        'name': 'VIP 10%', 'priceType': 'percent_off', 'discountValue': 10,
    }))
    assert response.status_code == 201
    return response.get_json()


class TestSegmentRoundTrip:

    def test_assign_list_remove(self, client, auth_headers, mock_shopify, linked_rule):
        response = client.post(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers, data=json.dumps({
            'segmentId': '1',
            'segmentName': 'VIP',
            'minimumRequirement': {'type': 'quantity', 'quantity': 2},
        }))
        assert response.status_code == 201
        assert response.get_json()['segment']['id'] == SEG1

        # Shopify now reports the segment on the discount
        mock_shopify.get_automatic_discount.return_value = remote_discount(
            context='segments', segments=[{'id': SEG1, 'name': 'VIP'}],
            minimum_requirement={'type': 'quantity', 'quantity': 2},
        )
        assigned = client.get(f'/api/discounts/{DISCOUNT_ID}/assigned-segments', headers=auth_headers).get_json()
        assert assigned['segments'] == [{
            'id': SEG1,
            'name': 'VIP',
            'minimumRequirement': {'type': 'quantity', 'quantity': 2},
            'combinesWith': {'productDiscounts': True, 'orderDiscounts': False, 'shippingDiscounts': False},
        }]

        response = client.delete(f'/api/discounts/{DISCOUNT_ID}/segments/1', headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['externalDiscountId'] == DISCOUNT_GID
        assert mock_shopify.update_automatic_discount.call_args[0][1] == {'context': {'all': 'ALL'}}

        mock_shopify.get_automatic_discount.return_value = remote_discount()
        assigned = client.get(f'/api/discounts/{DISCOUNT_ID}/assigned-segments', headers=auth_headers).get_json()
        assert assigned['segments'] == []

        rule = client.get(f"/api/pricing-rules/{linked_rule['ruleId']}", headers=auth_headers).get_json()['rule']
        assert rule['externalDiscountId'] == DISCOUNT_GID

    def test_available_segments_flag_assigned(self, client, auth_headers, mock_shopify, linked_rule):
        mock_shopify.get_segments.return_value = [{'id': SEG1, 'name': 'VIP'},
                                                  {'id': 'gid://shopify/Segment/2', 'name': 'Staff'}]
        mock_shopify.get_automatic_discount.return_value = remote_discount(
            context='segments', segments=[{'id': SEG1, 'name': 'VIP'}]
        )

        body = client.get(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers).get_json()

        assert [s['assigned'] for s in body['segments']] == [True, False]

    def test_assigning_twice_conflicts(self, client, auth_headers, mock_shopify, linked_rule):
        mock_shopify.get_automatic_discount.return_value = remote_discount(
            context='segments', segments=[{'id': SEG1, 'name': 'VIP'}]
        )

        response = client.post(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': SEG1}))

        assert response.status_code == 409

    def test_removing_unassigned_conflicts(self, client, auth_headers, mock_shopify, linked_rule):
        response = client.delete(f'/api/discounts/{DISCOUNT_ID}/segments/1', headers=auth_headers)
        assert response.status_code == 409

    def test_assignment_failure_is_retryable(self, client, auth_headers, mock_shopify, linked_rule):
        mock_shopify.update_automatic_discount.side_effect = ShopifyUnavailableError('HTTP 503')

        response = client.post(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': '1'}))

        assert response.status_code == 502
        error = response.get_json()['error']
        assert error['code'] == 'ASSIGNMENT_FAILED'
        assert error['retryable'] is True


class TestDiscountLookup:

    def test_unlinked_discount_is_not_found(self, client, auth_headers, mock_shopify):
        response = client.get('/api/discounts/12345/assigned-segments', headers=auth_headers)
        assert response.status_code == 404

    def test_segment_id_required(self, client, auth_headers, mock_shopify, linked_rule):
        response = client.post(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers,
                               data=json.dumps({}))
        assert response.status_code == 400

    def test_invalid_minimum_requirement(self, client, auth_headers, mock_shopify, linked_rule):
        response = client.post(f'/api/discounts/{DISCOUNT_ID}/segments', headers=auth_headers,
                               data=json.dumps({'segmentId': '1', 'minimumRequirement': {'type': 'quantity',
                                                                                          'quantity': 0}}))
        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_MINIMUMREQUIREMENT'
