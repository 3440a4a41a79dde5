"""Custom DRF throttles for CRM APIs."""
from __future__ import annotations

from rest_framework.throttling import SimpleRateThrottle


class UserRateThrottle(SimpleRateThrottle):
    """Rate limit keyed on the authenticated user; anonymous calls pass."""

    def get_cache_key(self, request, view):  # type: ignore[override]
        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return None
        return self.cache_format % {'scope': self.scope, 'ident': str(user.pk)}


class BurstRateThrottle(UserRateThrottle):
    scope = 'burst'


class CampaignSendRateThrottle(UserRateThrottle):
    scope = 'campaign_send'
