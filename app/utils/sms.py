import logging
from dataclasses import dataclass
from typing import Optional

import telnyx
from telnyx.error import TelnyxError

from config import settings

_LOGGER = logging.getLogger(__name__)

FROM_NUM = settings.TELNYX_FROM_NUMBER
TELNYX_API_KEY = settings.TELNYX_API_KEY
if TELNYX_API_KEY:
    telnyx.api_key = TELNYX_API_KEY


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def send_sms(to: str, body: str) -> SendResult:
    """Blocking send through telnyx. Never raises; failures come back in the result."""
    if not TELNYX_API_KEY or not FROM_NUM:
        _LOGGER.info("[SMS] not configured, would send to %s: %s", to, body)
        return SendResult(success=False, error="SMS transport not configured")
    try:
        message = telnyx.Message.create(from_=FROM_NUM, to=to, text=body)
    except TelnyxError as exc:
        _LOGGER.error("[SMS] send to %s failed: %s", to, exc)
        return SendResult(success=False, error=str(exc))
    return SendResult(success=True, message_id=getattr(message, "id", None))
