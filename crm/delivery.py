"""Message delivery collaborators and the batched dispatcher."""
from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Sequence

from asgiref.sync import async_to_sync
from django.conf import settings

LOGGER = logging.getLogger(__name__)

CAMPAIGN_FAILED_ERROR = 'Campaign failed to send'


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class DeliveryCollaborator(Protocol):
    async def send(self, address: str, body: str) -> DeliveryResult:
        ...


class SimulatedVendor:
    """Stand-in for an external messaging vendor.

    Every call waits a random latency and then succeeds with
    ``success_rate`` probability.
    """

    def __init__(
        self,
        *,
        success_rate: float = 0.95,
        min_delay: float = 0.5,
        max_delay: float = 2.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.success_rate = success_rate
        self.min_delay = max(min_delay, 0.0)
        self.max_delay = max(max_delay, self.min_delay)
        self.rng = rng or random.Random()

    @classmethod
    def from_settings(cls) -> 'SimulatedVendor':
        return cls(
            success_rate=getattr(settings, 'VENDOR_SUCCESS_RATE', 0.95),
            min_delay=getattr(settings, 'VENDOR_MIN_DELAY_SECONDS', 0.5),
            max_delay=getattr(settings, 'VENDOR_MAX_DELAY_SECONDS', 2.0),
        )

    async def send(self, address: str, body: str) -> DeliveryResult:
        delay = self.rng.uniform(self.min_delay, self.max_delay)
        if delay:
            await asyncio.sleep(delay)
        if self.rng.random() < self.success_rate:
            return DeliveryResult(success=True, message_id=uuid.uuid4().hex[:8])
        return DeliveryResult(success=False, error='Failed to deliver message')


class SyntheticFailure:
    """Collaborator used once a campaign has been decided as failed."""

    def __init__(self, error: str = CAMPAIGN_FAILED_ERROR) -> None:
        self.error = error

    async def send(self, address: str, body: str) -> DeliveryResult:
        return DeliveryResult(success=False, error=self.error)


@dataclass
class MemberOutcome:
    member: Any
    result: DeliveryResult


class BatchDispatcher:
    """Send a message to an ordered audience in sequential, bounded batches.

    Members inside a batch are sent concurrently; the next batch starts only
    once every call of the current one has finished or timed out.
    """

    def __init__(
        self,
        *,
        collaborator: DeliveryCollaborator,
        batch_size: int = 10,
        timeout: Optional[float] = None,
        address_of: Callable[[Any], str] = lambda member: member.email,
    ) -> None:
        if batch_size < 1:
            raise ValueError('batch_size must be at least 1')
        self.collaborator = collaborator
        self.batch_size = batch_size
        self.timeout = timeout
        self.address_of = address_of

    def batches(self, audience: Sequence[Any]) -> Iterator[Sequence[Any]]:
        for start in range(0, len(audience), self.batch_size):
            yield audience[start:start + self.batch_size]

    def dispatch(
        self,
        audience: Sequence[Any],
        body: str,
        *,
        on_batch: Optional[Callable[[list[MemberOutcome]], None]] = None,
    ) -> list[MemberOutcome]:
        outcomes: list[MemberOutcome] = []
        for index, batch in enumerate(self.batches(audience), start=1):
            batch_outcomes = async_to_sync(self._send_batch)(batch, body)
            LOGGER.debug('Batch %s finished with %s outcomes', index, len(batch_outcomes))
            outcomes.extend(batch_outcomes)
            if on_batch:
                on_batch(batch_outcomes)
        return outcomes

    async def _send_batch(self, batch: Sequence[Any], body: str) -> list[MemberOutcome]:
        return list(await asyncio.gather(*(self._send_one(member, body) for member in batch)))

    async def _send_one(self, member: Any, body: str) -> MemberOutcome:
        address = self.address_of(member)
        try:
            result = await asyncio.wait_for(self.collaborator.send(address, body), timeout=self.timeout)
        except asyncio.TimeoutError:
            result = DeliveryResult(success=False, error=f'Delivery timed out after {self.timeout}s')
        except Exception as exc:
            LOGGER.warning('Delivery to %s raised: %s', address, exc)
            result = DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)
        return MemberOutcome(member=member, result=result)
