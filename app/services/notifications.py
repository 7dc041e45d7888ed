"""Outbound notification gateway.

Wraps the blocking SMS transport so the event loop is never stalled, logs
failures, and appends every outbound text to the message audit log. A failed
send is reported in the returned result and never raised.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

import db
from app.utils import sms
from app.utils.sms import SendResult
from config import settings

_LOGGER = logging.getLogger(__name__)

SYSTEM_SENDER = "jobflow"


async def notify(to: str | None, body: str) -> SendResult:
    if not to:
        _LOGGER.warning("Dropping notification with no recipient: %.60s", body)
        return SendResult(success=False, error="missing recipient")

    result = await asyncio.to_thread(sms.send_sms, to, body)
    if not result.success:
        _LOGGER.warning("Notification to %s not delivered: %s", to, result.error)

    try:
        await db.insert_message(
            from_number=settings.TELNYX_FROM_NUMBER or SYSTEM_SENDER,
            to_number=to,
            body=body,
            direction="outbound",
            transport_message_id=result.message_id,
        )
    except SQLAlchemyError:
        _LOGGER.exception("Could not record outbound message to %s", to)
    return result
