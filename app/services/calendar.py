"""Calendar gateway. Event creation is best-effort; no linked calendar is not an error."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

_LOGGER = logging.getLogger(__name__)


class CalendarGateway(Protocol):
    async def create_event(self, contractor, job, customer) -> Optional[str]:
        """Create an appointment and return its external reference, or None."""


class NullCalendar:
    """Used when no contractor calendar is linked."""

    async def create_event(self, contractor, job, customer) -> Optional[str]:
        _LOGGER.debug("No calendar linked for contractor %s; skipping event for job %s", contractor.id, job.id)
        return None
