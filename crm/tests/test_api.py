from decimal import Decimal
from unittest import mock

from django.apps import apps
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from crm.models import Campaign, Customer, Message, Order, Segment, User

SHIPPING = {'street': '1 Main St', 'city': 'Springfield', 'state': 'IL', 'zipCode': '62701', 'country': 'US'}


class AuthenticatedAPITestCase(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='operator@example.com', password='secret-pass', name='Operator')
        self.client.force_authenticate(self.user)


class AuthAPITest(APITestCase):
    def test_login_returns_tokens_and_user(self):
        User.objects.create_user(email='operator@example.com', password='secret-pass', name='Operator')

        response = self.client.post(
            reverse('auth-login'),
            {'email': 'operator@example.com', 'password': 'secret-pass'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['email'], 'operator@example.com')

    def test_current_user(self):
        user = User.objects.create_user(email='operator@example.com', password='secret-pass', name='Operator')
        self.client.force_authenticate(user)

        response = self.client.get(reverse('auth-me'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'_id': str(user.id), 'name': 'Operator', 'email': 'operator@example.com'})

    def test_current_user_requires_token(self):
        self.assertEqual(self.client.get(reverse('auth-me')).status_code, status.HTTP_401_UNAUTHORIZED)

    def test_endpoints_require_authentication(self):
        response = self.client.get(reverse('customer-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class CustomerAPITest(AuthenticatedAPITestCase):
    def test_create_normalises_email_and_phone(self):
        response = self.client.post(
            reverse('customer-list'),
            {'name': 'Ada', 'email': 'Ada@Example.com', 'phone': '(650) 253-0000', 'visits': 3},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['email'], 'ada@example.com')
        self.assertEqual(response.data['phone'], '+16502530000')
        self.assertEqual(response.data['totalSpent'], 0.0)
        self.assertIn('_id', response.data)

    def test_duplicate_email_is_rejected(self):
        Customer.objects.create(name='Ada', email='ada@example.com')
        response = self.client.post(reverse('customer-list'), {'name': 'Ada', 'email': 'ADA@example.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data)

    def test_invalid_phone_is_rejected(self):
        response = self.client.post(
            reverse('customer-list'),
            {'name': 'Ada', 'email': 'ada@example.com', 'phone': '12'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_paginates_and_refreshes_total_spent(self):
        for index in range(12):
            Customer.objects.create(name=f'C{index}', email=f'c{index}@example.com')
        customer = Customer.objects.get(email='c0@example.com')
        Order.objects.create(
            customer=customer,
            order_number='ORD-1',
            items=[],
            total_amount=Decimal('15.00'),
            status=Order.Status.DELIVERED,
            shipping_address=SHIPPING,
        )

        response = self.client.get(reverse('customer-list'), {'page': 3, 'limit': 5})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['customers']), 2)
        self.assertEqual(response.data['pagination'], {'page': 3, 'limit': 5, 'total': 12, 'pages': 3})

        self.client.get(reverse('customer-list'), {'limit': 20})
        customer.refresh_from_db()
        self.assertEqual(customer.total_spent, Decimal('15.00'))

    def test_update_and_delete(self):
        customer = Customer.objects.create(name='Ada', email='ada@example.com')
        url = reverse('customer-detail', args=[customer.id])

        response = self.client.patch(url, {'visits': 9}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['visits'], 9)

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Customer.objects.filter(id=customer.id).exists())


class OrderAPITest(AuthenticatedAPITestCase):
    def setUp(self):
        super().setUp()
        self.customer = Customer.objects.create(name='Ada', email='ada@example.com')

    def create_order(self, **overrides):
        payload = {
            'customerId': str(self.customer.id),
            'items': [{'name': 'Mug', 'quantity': 2, 'price': 7.5}, {'name': 'Tea', 'quantity': 1, 'price': 5}],
            'shippingAddress': SHIPPING,
        }
        payload.update(overrides)
        return self.client.post(reverse('order-list'), payload, format='json')

    def test_create_computes_total_and_number(self):
        response = self.create_order()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['totalAmount'], 20.0)
        self.assertTrue(response.data['orderNumber'].startswith('ORD-'))
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['customer']['email'], 'ada@example.com')

    def test_items_and_address_are_required(self):
        self.assertEqual(self.create_order(items=[]).status_code, status.HTTP_400_BAD_REQUEST)
        address = dict(SHIPPING)
        address.pop('city')
        self.assertEqual(self.create_order(shippingAddress=address).status_code, status.HTTP_400_BAD_REQUEST)
        bad_items = [{'name': 'Mug', 'quantity': 0, 'price': 1}]
        self.assertEqual(self.create_order(items=bad_items).status_code, status.HTTP_400_BAD_REQUEST)

    def test_delivered_status_updates_customer_spend(self):
        order_id = self.create_order().data['_id']

        response = self.client.patch(reverse('order-status', args=[order_id]), {'status': 'delivered'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, Decimal('20.00'))

        self.client.delete(reverse('order-detail', args=[order_id]))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, Decimal('0.00'))

    def test_invalid_status(self):
        order_id = self.create_order().data['_id']
        response = self.client.patch(reverse('order-status', args=[order_id]), {'status': 'lost'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_orders(self):
        self.create_order()
        other = Customer.objects.create(name='Grace', email='grace@example.com')
        self.create_order(customerId=str(other.id))

        response = self.client.get(reverse('customer-orders', args=[self.customer.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_list_envelope(self):
        self.create_order()
        response = self.client.get(reverse('order-list'))
        self.assertEqual(len(response.data['orders']), 1)
        self.assertEqual(response.data['pagination']['limit'], 10)


class SegmentAPITest(AuthenticatedAPITestCase):
    def setUp(self):
        super().setUp()
        for index, visits in enumerate((5, 15, 20)):
            Customer.objects.create(name=f'C{index}', email=f'c{index}@example.com', visits=visits)

    def test_create_counts_matching_customers(self):
        response = self.client.post(
            reverse('segment-list'),
            {
                'name': 'Frequent',
                'rules': [{'field': 'visits', 'operator': 'greaterThan', 'value': '10'}],
                'ruleOperator': 'AND',
            },
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['customerCount'], 2)
        self.assertEqual(response.data['createdBy'], str(self.user.id))

    def test_update_recounts(self):
        segment = Segment.objects.create(name='All', rules=[])
        response = self.client.patch(
            reverse('segment-detail', args=[segment.id]),
            {'rules': [{'field': 'visits', 'operator': 'lessThan', 'value': 10}]},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['customerCount'], 1)

    def test_invalid_rules_are_rejected(self):
        for bad_rule in (
            {'field': 'visits', 'operator': 'contains', 'value': 1},
            {'field': 'password', 'operator': 'equals', 'value': 'x'},
            {'field': 'visits', 'operator': 'greaterThan', 'value': 'lots'},
            {'field': 'visits', 'operator': 'equals', 'value': True},
        ):
            response = self.client.post(
                reverse('segment-list'),
                {'name': 'Bad', 'rules': [bad_rule]},
                format='json',
            )
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, bad_rule)

    def test_preview(self):
        response = self.client.post(
            reverse('segment-preview'),
            {
                'rules': [
                    {'field': 'visits', 'operator': 'equals', 'value': '5'},
                    {'field': 'visits', 'operator': 'equals', 'value': 20},
                ],
                'ruleOperator': 'OR',
            },
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'count': 2})

    def test_segment_customers(self):
        segment = Segment.objects.create(
            name='Frequent',
            rules=[{'field': 'visits', 'operator': 'greaterThan', 'value': 10}],
        )
        response = self.client.get(reverse('segment-customers', args=[segment.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['customers']), 2)
        self.assertEqual(response.data['statistics']['totalVisits'], 35)


@override_settings(
    CAMPAIGN_SUCCESS_RATE=1.0,
    VENDOR_SUCCESS_RATE=1.0,
    VENDOR_MIN_DELAY_SECONDS=0,
    VENDOR_MAX_DELAY_SECONDS=0,
)
class CampaignAPITest(AuthenticatedAPITestCase):
    def setUp(self):
        super().setUp()
        self.customers = [
            Customer.objects.create(name=f'C{index}', email=f'c{index}@example.com', visits=index)
            for index in range(25)
        ]
        self.segment = Segment.objects.create(name='Everyone', rules=[])

    def create_campaign(self, **payload):
        body = {'name': 'Spring', 'message': 'Hello!', 'segmentId': str(self.segment.id)}
        body.update(payload)
        return self.client.post(reverse('campaign-list'), body, format='json')

    def test_create_and_list(self):
        response = self.create_campaign()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'draft')
        self.assertEqual(response.data['stats']['sent'], 0)

        response = self.client.get(reverse('campaign-list'))
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(len(response.data['campaigns']), 1)

    def test_create_requires_an_audience_source(self):
        response = self.client.post(reverse('campaign-list'), {'name': 'Nobody', 'message': 'Hi'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_send_delivers_to_whole_audience(self):
        campaign_id = self.create_campaign().data['_id']

        with self.captureOnCommitCallbacks(execute=False):
            response = self.client.post(reverse('campaign-send', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'success')
        campaign = response.data['data']['campaign']
        self.assertEqual(set(campaign), {'_id', 'name', 'status', 'sentAt', 'stats'})
        self.assertEqual(campaign['status'], 'completed')
        self.assertEqual(campaign['stats']['delivered'], 25)
        self.assertEqual(campaign['stats']['totalAudience'], 25)
        self.assertEqual(Message.objects.filter(user=self.user).count(), 25)

    def test_send_twice_is_rejected(self):
        campaign_id = self.create_campaign().data['_id']
        self.client.post(reverse('campaign-send', args=[campaign_id]))

        response = self.client.post(reverse('campaign-send', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'Campaign has already been sent')
        self.assertEqual(Message.objects.count(), 25)

    @override_settings(CAMPAIGN_SUCCESS_RATE=0.0)
    def test_failed_outcome(self):
        campaign_id = self.create_campaign().data['_id']

        response = self.client.post(reverse('campaign-send', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['campaign']['status'], 'failed')
        self.assertEqual(response.data['data']['campaign']['stats']['failed'], 25)

    def test_send_unknown_campaign(self):
        response = self.client.post(reverse('campaign-send', args=['00000000-0000-0000-0000-000000000000']))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_send_with_empty_segment(self):
        segment = Segment.objects.create(name='Nobody', rules=[], rule_operator=Segment.RuleOperator.OR)
        campaign_id = self.create_campaign(segmentId=str(segment.id)).data['_id']

        response = self.client.post(reverse('campaign-send', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'No customers found for this campaign or its segment')

    def test_send_with_deleted_segment(self):
        campaign_id = self.create_campaign().data['_id']
        self.segment.delete()

        response = self.client.post(reverse('campaign-send', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['detail'], 'Campaign segment not found')

    def test_sent_campaign_is_locked(self):
        campaign_id = self.create_campaign().data['_id']
        self.client.post(reverse('campaign-send', args=[campaign_id]))
        url = reverse('campaign-detail', args=[campaign_id])

        self.assertEqual(self.client.patch(url, {'name': 'Renamed'}, format='json').status_code, 400)
        self.assertEqual(self.client.delete(url).status_code, 400)
        self.assertTrue(Campaign.objects.filter(id=campaign_id, name='Spring').exists())

    def test_draft_campaign_can_be_edited(self):
        campaign_id = self.create_campaign().data['_id']
        response = self.client.patch(reverse('campaign-detail', args=[campaign_id]), {'name': 'Summer'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Summer')

    def test_campaign_customers(self):
        campaign_id = self.create_campaign(customers=[str(self.customers[0].id)]).data['_id']

        response = self.client.get(reverse('campaign-customers', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'success')
        self.assertEqual(response.data['data']['statistics']['totalCustomers'], 1)

    def test_sent_campaign_customers_stay_frozen(self):
        segment = Segment.objects.create(
            name='Frequent',
            rules=[{'field': 'visits', 'operator': 'greaterThan', 'value': 23}],
        )
        campaign_id = self.create_campaign(segmentId=str(segment.id)).data['_id']
        self.client.post(reverse('campaign-send', args=[campaign_id]))
        self.customers[24].delete()
        Customer.objects.create(name='Late', email='late@example.com', visits=99)

        response = self.client.get(reverse('campaign-customers', args=[campaign_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['customers'], [])
        self.assertEqual(len(Campaign.objects.get(id=campaign_id).customer_ids), 1)

    def test_generate_message_without_key(self):
        with mock.patch.object(apps.get_app_config('crm'), 'message_generator', None):
            response = self.client.post(
                reverse('campaign-generate-message'),
                {'objective': 'Win back lapsed customers'},
                format='json',
            )
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    def test_generate_message(self):
        generator = mock.Mock()
        generator.generate_message.return_value = {'message': 'We miss you! 10% off today.'}
        with mock.patch.object(apps.get_app_config('crm'), 'message_generator', generator):
            response = self.client.post(
                reverse('campaign-generate-message'),
                {'objective': 'Win back lapsed customers', 'tone': 'friendly'},
                format='json',
            )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'We miss you! 10% off today.')
        generator.generate_message.assert_called_once_with(
            objective='Win back lapsed customers',
            audience=None,
            tone='friendly',
        )


class MessageAPITest(AuthenticatedAPITestCase):
    def setUp(self):
        super().setUp()
        self.customer = Customer.objects.create(name='Ada', email='ada@example.com')
        self.message = Message.objects.create(
            user=self.user,
            customer_id=self.customer.id,
            campaign_id=self.customer.id,
            campaign_name='Spring',
            message='Hello!',
            status=Message.Status.DELIVERED,
        )

    def test_list_includes_customer_details(self):
        other = User.objects.create_user(email='other@example.com', password='secret-pass', name='Other')
        Message.objects.create(
            user=other,
            customer_id=self.customer.id,
            campaign_id=self.customer.id,
            campaign_name='Spring',
            message='Hello!',
            status=Message.Status.DELIVERED,
        )

        response = self.client.get(reverse('message-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['customer'], {'name': 'Ada', 'email': 'ada@example.com'})

    def test_mark_read(self):
        response = self.client.patch(reverse('message-read', args=[self.message.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['read'])

    def test_patch_only_changes_read_and_status(self):
        response = self.client.patch(
            reverse('message-detail', args=[self.message.id]),
            {'status': 'failed', 'message': 'rewritten'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.message.refresh_from_db()
        self.assertEqual(self.message.status, Message.Status.FAILED)
        self.assertEqual(self.message.message, 'Hello!')

    def test_other_users_messages_are_hidden(self):
        other = User.objects.create_user(email='other@example.com', password='secret-pass', name='Other')
        self.client.force_authenticate(other)
        response = self.client.patch(reverse('message-read', args=[self.message.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
