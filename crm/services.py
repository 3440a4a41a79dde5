"""Domain services for the audience CRM backend."""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from django.conf import settings
from django.db import transaction
from django.db.models import DecimalField, Q, QuerySet, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from . import rules
from .delivery import BatchDispatcher, DeliveryCollaborator, MemberOutcome, SimulatedVendor, SyntheticFailure
from .models import Campaign, Customer, Message, Order, Segment, User, default_campaign_stats

LOGGER = logging.getLogger(__name__)

ZERO = Decimal('0.00')


class CampaignSendError(RuntimeError):
    """Raised when a campaign cannot be dispatched."""

    status_code = 400


class CampaignAlreadySentError(CampaignSendError):
    def __init__(self, message: str = 'Campaign has already been sent'):
        super().__init__(message)


class CampaignSegmentMissingError(CampaignSendError):
    status_code = 404

    def __init__(self, message: str = 'Campaign segment not found'):
        super().__init__(message)


class CampaignLockedError(RuntimeError):
    """Raised when editing or deleting a campaign that was already sent."""


def order_total(items: Iterable[Mapping[str, Any]]) -> Decimal:
    total = sum(
        (Decimal(str(item.get('price', 0))) * int(item.get('quantity', 0)) for item in items),
        ZERO,
    )
    return total.quantize(Decimal('0.01'))


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


def with_live_total_spent(queryset: QuerySet) -> QuerySet:
    """Annotate customers with the sum of their delivered order totals."""

    return queryset.annotate(
        live_total_spent=Coalesce(
            Sum('orders__total_amount', filter=Q(orders__status=Order.Status.DELIVERED)),
            Value(ZERO),
            output_field=DecimalField(max_digits=12, decimal_places=2),
        )
    )


def refresh_total_spent(customers: Iterable[Customer]) -> list[Customer]:
    """Recompute the cached ``total_spent`` column from delivered orders."""

    ids = [customer.id for customer in customers]
    live = dict(
        with_live_total_spent(Customer.objects.filter(id__in=ids)).values_list('id', 'live_total_spent')
    )
    refreshed = []
    for customer in customers:
        total = live.get(customer.id, ZERO)
        if customer.total_spent != total:
            customer.total_spent = total
            customer.save(update_fields=('total_spent', 'updated_at'))
        refreshed.append(customer)
    return refreshed


def customer_record(customer: Customer) -> dict[str, Any]:
    """Plain record evaluated by segment rules."""

    return {
        'name': customer.name,
        'email': customer.email,
        'phone': customer.phone,
        'visits': customer.visits,
        'totalSpent': getattr(customer, 'live_total_spent', customer.total_spent),
    }


@dataclass
class Audience:
    customers: list[Customer]

    @property
    def statistics(self) -> dict[str, Any]:
        total_customers = len(self.customers)
        total_visits = sum(customer.visits or 0 for customer in self.customers)
        total_spent = sum((customer_record(customer)['totalSpent'] or ZERO for customer in self.customers), ZERO)
        return {
            'totalCustomers': total_customers,
            'totalVisits': total_visits,
            'totalSpent': float(total_spent),
            'averageVisits': total_visits / total_customers if total_customers else 0,
            'averageSpent': float(total_spent / total_customers) if total_customers else 0,
        }

    def __len__(self) -> int:
        return len(self.customers)


class AudienceResolver:
    """Resolve segment rules into the ordered list of matching customers."""

    def __init__(self, queryset: Optional[QuerySet] = None):
        self.queryset = queryset if queryset is not None else Customer.objects.all()

    def _customers(self, queryset: QuerySet) -> list[Customer]:
        return list(with_live_total_spent(queryset).order_by('created_at', 'email'))

    def resolve(self, rule_list: Sequence[Mapping[str, Any]], rule_operator: str = rules.AND) -> Audience:
        predicate = rules.compile_rules(rule_list, rule_operator)
        matched = [
            customer
            for customer in self._customers(self.queryset)
            if rules.matches(predicate, customer_record(customer))
        ]
        return Audience(customers=matched)

    def resolve_segment(self, segment: Segment) -> Audience:
        return self.resolve(segment.rules or [], segment.rule_operator)

    def count(self, rule_list: Sequence[Mapping[str, Any]], rule_operator: str = rules.AND) -> int:
        return len(self.resolve(rule_list, rule_operator))

    def resolve_ids(self, customer_ids: Sequence[Any]) -> Audience:
        """Customers for a stored id list, in stored order; deleted ids are skipped."""

        found = {
            str(customer.id): customer
            for customer in with_live_total_spent(Customer.objects.filter(id__in=customer_ids))
        }
        return Audience(customers=[found[str(pk)] for pk in customer_ids if str(pk) in found])

    def resolve_campaign(self, campaign: Campaign) -> Audience:
        """Frozen audience for sent campaigns, explicit list or live segment for drafts."""

        if campaign.is_terminal or campaign.customer_ids:
            return self.resolve_ids(campaign.customer_ids or [])
        if not campaign.segment_id:
            raise CampaignSegmentMissingError()
        return self.resolve_segment(campaign.segment)


class CampaignOutcomePolicy:
    """Decide once, before dispatch, whether a campaign send succeeds."""

    def __init__(self, *, success_rate: Optional[float] = None, rng: Optional[random.Random] = None):
        if success_rate is None:
            success_rate = getattr(settings, 'CAMPAIGN_SUCCESS_RATE', 0.9)
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def decide(self) -> bool:
        return self.rng.random() <= self.success_rate


class FixedOutcomePolicy:
    def __init__(self, successful: bool):
        self.successful = successful

    def decide(self) -> bool:
        return self.successful


@dataclass
class StatisticsAccumulator:
    """Running delivery tallies for one campaign send."""

    total_audience: int
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    batches: int = field(default=0)

    def record(self, outcomes: Sequence[MemberOutcome]) -> None:
        self.batches += 1
        for outcome in outcomes:
            self.sent += 1
            if outcome.result.success:
                self.delivered += 1
            else:
                self.failed += 1

    def as_stats(self) -> dict[str, int]:
        return {
            **default_campaign_stats(),
            'totalAudience': self.total_audience,
            'sent': self.sent,
            'delivered': self.delivered,
            'failed': self.failed,
        }

    def flush(self, campaign: Campaign) -> None:
        campaign.stats = self.as_stats()
        Campaign.objects.filter(id=campaign.id).update(stats=campaign.stats, updated_at=timezone.now())


class RatioEngagementEstimator:
    """Estimate opens and clicks as fixed ratios of delivered messages."""

    def __init__(self, *, open_rate: Optional[float] = None, click_rate: Optional[float] = None):
        self.open_rate = open_rate if open_rate is not None else getattr(settings, 'ENGAGEMENT_OPEN_RATE', 0.8)
        self.click_rate = click_rate if click_rate is not None else getattr(settings, 'ENGAGEMENT_CLICK_RATE', 0.4)

    def estimate(self, delivered: int) -> tuple[int, int]:
        return int(delivered * self.open_rate), int(delivered * self.click_rate)


class EngagementService:
    """Apply an engagement estimate to a completed campaign."""

    def __init__(self, *, estimator: Optional[RatioEngagementEstimator] = None):
        self.estimator = estimator or RatioEngagementEstimator()

    def apply(self, campaign_id) -> Optional[dict[str, int]]:
        with transaction.atomic():
            campaign = Campaign.objects.select_for_update().filter(id=campaign_id).first()
            if not campaign or campaign.status != Campaign.Status.COMPLETED:
                return None
            delivered = Message.objects.filter(
                campaign_id=campaign.id,
                status=Message.Status.DELIVERED,
            ).count()
            opened, clicked = self.estimator.estimate(delivered)
            stats = {**default_campaign_stats(), **(campaign.stats or {}), 'opened': opened, 'clicked': clicked}
            campaign.stats = stats
            campaign.save(update_fields=('stats', 'updated_at'))
        LOGGER.info('Updated engagement stats for campaign %s', campaign_id)
        return stats


def schedule_engagement_estimate(campaign: Campaign) -> None:
    """Queue the deferred engagement update once the send has committed."""

    from .tasks import apply_engagement_estimate

    countdown = getattr(settings, 'ENGAGEMENT_ESTIMATE_DELAY_SECONDS', 60)
    campaign_id = str(campaign.id)

    def _enqueue():
        try:
            apply_engagement_estimate.apply_async(args=(campaign_id,), countdown=countdown)
        except Exception:
            LOGGER.exception('Could not schedule engagement estimate for campaign %s', campaign_id)

    transaction.on_commit(_enqueue)


class CampaignSendService:
    """Resolve, dispatch and account for one campaign send."""

    def __init__(
        self,
        *,
        campaign: Campaign,
        user: User,
        collaborator: Optional[DeliveryCollaborator] = None,
        outcome_policy: Optional[CampaignOutcomePolicy | FixedOutcomePolicy] = None,
        resolver: Optional[AudienceResolver] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.campaign = campaign
        self.user = user
        self.collaborator = collaborator or SimulatedVendor.from_settings()
        self.outcome_policy = outcome_policy or CampaignOutcomePolicy()
        self.resolver = resolver or AudienceResolver()
        self.batch_size = batch_size or getattr(settings, 'CAMPAIGN_BATCH_SIZE', 10)
        self.timeout = timeout if timeout is not None else getattr(settings, 'DELIVERY_TIMEOUT_SECONDS', None)
        self.accumulator: Optional[StatisticsAccumulator] = None

    def send(self) -> Campaign:
        if self.campaign.is_terminal:
            raise CampaignAlreadySentError()
        customers = self._resolve_audience()
        if not customers:
            raise CampaignSendError('No customers found for this campaign or its segment')

        successful = self.outcome_policy.decide()
        status = Campaign.Status.COMPLETED if successful else Campaign.Status.FAILED
        self._claim(status=status, customers=customers)
        LOGGER.info(
            'Dispatching campaign %s to %s customers (outcome: %s)',
            self.campaign.id,
            len(customers),
            status,
        )

        self.accumulator = StatisticsAccumulator(total_audience=len(customers))
        dispatcher = BatchDispatcher(
            collaborator=self.collaborator if successful else SyntheticFailure(),
            batch_size=self.batch_size,
            timeout=self.timeout,
        )
        dispatcher.dispatch(customers, self.campaign.message, on_batch=self._persist_batch)
        LOGGER.info(
            'Processed %s messages for campaign %s (%s delivered, %s failed)',
            self.accumulator.sent,
            self.campaign.id,
            self.accumulator.delivered,
            self.accumulator.failed,
        )
        if successful:
            schedule_engagement_estimate(self.campaign)
        return self.campaign

    def _resolve_audience(self) -> list[Customer]:
        return self.resolver.resolve_campaign(self.campaign).customers

    def _claim(self, *, status: str, customers: Sequence[Customer]) -> None:
        """Move the campaign out of draft and freeze its audience in one statement."""

        now = timezone.now()
        stats = {**default_campaign_stats(), 'totalAudience': len(customers)}
        customer_ids = [str(customer.id) for customer in customers]
        claimed = Campaign.objects.filter(id=self.campaign.id, status=Campaign.Status.DRAFT).update(
            status=status,
            sent_at=now,
            stats=stats,
            customer_ids=customer_ids,
            updated_at=now,
        )
        if not claimed:
            raise CampaignAlreadySentError()
        self.campaign.status = status
        self.campaign.sent_at = now
        self.campaign.stats = stats
        self.campaign.customer_ids = customer_ids

    def _persist_batch(self, outcomes: list[MemberOutcome]) -> None:
        now = timezone.now()
        with transaction.atomic():
            Message.objects.bulk_create([
                Message(
                    user=self.user,
                    customer_id=outcome.member.id,
                    campaign_id=self.campaign.id,
                    campaign_name=self.campaign.name,
                    message=self.campaign.message,
                    timestamp=now,
                    read=False,
                    status=Message.Status.DELIVERED if outcome.result.success else Message.Status.FAILED,
                    vendor_message_id=outcome.result.message_id,
                    error=outcome.result.error,
                )
                for outcome in outcomes
            ])
            self.accumulator.record(outcomes)
            self.accumulator.flush(self.campaign)
