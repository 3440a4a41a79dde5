"""Send a campaign through the dispatch pipeline from the CLI."""
from __future__ import annotations

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from crm.models import Campaign
from crm.services import CampaignSendError, CampaignSendService

User = get_user_model()


class Command(BaseCommand):
    help = 'Resolve the audience of a draft campaign and deliver its message.'

    def add_arguments(self, parser):
        parser.add_argument('--campaign-id', required=True, help='Campaign UUID to send')
        parser.add_argument('--user-email', required=True, help='Operator recorded as the message owner')

    def handle(self, *args, **options):
        campaign_id = options['campaign_id']
        try:
            campaign = Campaign.objects.select_related('segment').get(id=campaign_id)
        except (Campaign.DoesNotExist, ValueError) as exc:
            raise CommandError(f'Campaign {campaign_id} not found') from exc
        try:
            user = User.objects.get(email__iexact=options['user_email'])
        except User.DoesNotExist as exc:
            raise CommandError(f"User {options['user_email']} not found") from exc
        try:
            campaign = CampaignSendService(campaign=campaign, user=user).send()
        except CampaignSendError as exc:
            raise CommandError(str(exc)) from exc
        stats = campaign.stats
        self.stdout.write(self.style.SUCCESS(
            f"Campaign {campaign.status} | Sent: {stats['sent']} | Delivered: {stats['delivered']} | Failed: {stats['failed']}"
        ))
