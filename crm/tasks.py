"""Celery tasks for deferred campaign bookkeeping."""
from __future__ import annotations

import logging

from celery import shared_task

from .services import EngagementService

LOGGER = logging.getLogger(__name__)


@shared_task(name='crm.apply_engagement_estimate')
def apply_engagement_estimate(campaign_id: str):
    """Fill in estimated opens and clicks for a completed campaign."""

    try:
        return EngagementService().apply(campaign_id)
    except Exception:
        LOGGER.exception('Engagement estimate failed for campaign %s', campaign_id)
        return None
