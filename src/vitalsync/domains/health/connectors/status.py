"""Provider status check.

Computed fresh on every call and handed to whoever needs it; nothing here
caches or shares the result.
"""

from __future__ import annotations

import logging

from vitalsync.domains.health.connectors import HealthProvider
from vitalsync.domains.health.domain_logic.sync_models import (
    ProviderAvailability,
    ProviderStatus,
)

logger = logging.getLogger(__name__)


async def check_provider_status(provider: HealthProvider) -> ProviderStatus:
    """Combine availability and permission state into one status value."""
    try:
        availability = await provider.get_availability_status()
        if availability is ProviderAvailability.AVAILABLE:
            granted = await provider.has_all_permissions()
            return ProviderStatus.GRANTED if granted else ProviderStatus.DENIED
        if availability is ProviderAvailability.UNAVAILABLE:
            return ProviderStatus.NOT_AVAILABLE
        if availability is ProviderAvailability.UPDATE_REQUIRED:
            return ProviderStatus.UPDATE_REQUIRED
        return ProviderStatus.ERROR
    except Exception:
        logger.exception("Provider status check failed for %s", provider.source.value)
        return ProviderStatus.ERROR
