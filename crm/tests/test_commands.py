from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from crm.models import Campaign, Customer, Message, Segment, User


@override_settings(
    CAMPAIGN_SUCCESS_RATE=1.0,
    VENDOR_SUCCESS_RATE=1.0,
    VENDOR_MIN_DELAY_SECONDS=0,
    VENDOR_MAX_DELAY_SECONDS=0,
)
class SendCampaignCommandTest(TestCase):
    def setUp(self):
        User.objects.create_user(email='operator@example.com', password='secret-pass', name='Operator')
        Customer.objects.create(name='Ada', email='ada@example.com')
        segment = Segment.objects.create(name='Everyone', rules=[])
        self.campaign = Campaign.objects.create(name='Spring', message='Hello!', segment=segment)

    def test_sends_campaign(self):
        out = StringIO()

        call_command('send_campaign', campaign_id=str(self.campaign.id), user_email='operator@example.com', stdout=out)

        self.assertIn('Delivered: 1', out.getvalue())
        self.assertEqual(Message.objects.count(), 1)

    def test_already_sent(self):
        Campaign.objects.filter(id=self.campaign.id).update(status=Campaign.Status.COMPLETED)
        with self.assertRaisesMessage(CommandError, 'Campaign has already been sent'):
            call_command('send_campaign', campaign_id=str(self.campaign.id), user_email='operator@example.com')

    def test_unknown_user(self):
        with self.assertRaises(CommandError):
            call_command('send_campaign', campaign_id=str(self.campaign.id), user_email='nobody@example.com')
