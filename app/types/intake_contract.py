"""Contract between the intake agent and the conversation engine.

The agent talks to the customer in plain text. Once it knows the problem,
the urgency and where the job is, it appends a machine-readable block::

    <job_request>{"problem_summary": "...", "zip_code": "90210", ...}</job_request>

Anything outside the block is shown to the customer verbatim.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, Tuple

from pydantic import BaseModel, ValidationError, field_validator

from app.types.job import Urgency

_LOGGER = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<job_request>(.*?)</job_request>", re.DOTALL | re.IGNORECASE)
ZIP_RE = re.compile(r"\b\d{5}\b")

# Free-form trade names the model (or a customer) tends to use
_CATEGORY_ALIASES = {
    "plumber": "plumbing",
    "electrician": "electrical",
    "electric": "electrical",
    "handyman": "general_handyman",
    "general": "general_handyman",
    "heating": "hvac",
    "cooling": "hvac",
    "appliance": "appliance_repair",
    "appliances": "appliance_repair",
    "roofer": "roofing",
    "roof": "roofing",
    "floor": "flooring",
    "floors": "flooring",
}


def normalize_category(value: str | None) -> str:
    key = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if not key:
        return "general_handyman"
    return _CATEGORY_ALIASES.get(key, key)


class IntakePayload(BaseModel):
    problem_summary: str
    service_category: str = "general_handyman"
    urgency: Urgency = Urgency.MEDIUM
    details: Optional[str] = None
    zip_code: str
    address: Optional[str] = None

    @field_validator("problem_summary")
    def _non_empty(cls, v: str):  # noqa: N805
        if not v.strip():
            raise ValueError("problem_summary must not be empty")
        return v.strip()

    @field_validator("service_category", mode="before")
    def _category(cls, v):  # noqa: N805
        return normalize_category(v)

    @field_validator("urgency", mode="before")
    def _urgency(cls, v):  # noqa: N805
        return Urgency.normalize(v)

    @field_validator("zip_code", mode="before")
    def _zip(cls, v):  # noqa: N805
        match = ZIP_RE.search(str(v or ""))
        if not match:
            raise ValueError("zip_code must contain a 5-digit postal code")
        return match.group(0)


def extract_intake_payload(text: str) -> Tuple[str, Optional[IntakePayload]]:
    """Split an agent reply into (visible text, payload or None).

    A block that is not valid JSON or fails validation is dropped and the
    reply is treated as ordinary conversation.
    """
    match = _TAG_RE.search(text or "")
    if not match:
        return (text or "").strip(), None

    visible = (text[: match.start()] + text[match.end():]).strip()
    try:
        payload = IntakePayload.model_validate(json.loads(match.group(1)))
    except (json.JSONDecodeError, ValidationError) as exc:
        _LOGGER.warning("Ignoring malformed job_request block: %s", exc)
        return visible, None
    return visible, payload
