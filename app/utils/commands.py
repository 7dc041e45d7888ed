"""Parsers for the short command vocabulary spoken over SMS."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional

_MONEY_STRIP = re.compile(r"[$,\s]")


class ContractorAction(str, enum.Enum):
    APPROVE = "approve"
    CALL_CUSTOMER = "call_customer"
    CUSTOM_QUOTE = "custom_quote"
    PASS = "pass"
    INVOICE = "invoice"
    INVOICE_USAGE = "invoice_usage"
    ON_THE_WAY = "on_the_way"
    JOB_DONE = "job_done"
    DASHBOARD = "dashboard"
    SETUP = "setup"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ContractorCommand:
    action: ContractorAction
    amount: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class CustomerRating:
    rating: int
    feedback: Optional[str] = None


def parse_money(text: str) -> Optional[float]:
    """'$1,250' -> 1250.0; None when the text is not a number."""
    try:
        value = float(_MONEY_STRIP.sub("", text or ""))
    except ValueError:
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def parse_percent(text: str) -> Optional[float]:
    """'25' or '25%' -> 0.25."""
    value = parse_money((text or "").replace("%", ""))
    return None if value is None else value / 100


def parse_contractor_command(text: str) -> ContractorCommand:
    upper = (text or "").strip().upper()

    if upper == "DASHBOARD":
        return ContractorCommand(ContractorAction.DASHBOARD)
    if "ON THE WAY" in upper or upper == "OTW":
        return ContractorCommand(ContractorAction.ON_THE_WAY)
    if "JOB DONE" in upper or "COMPLETED" in upper:
        return ContractorCommand(ContractorAction.JOB_DONE)
    if upper == "A":
        return ContractorCommand(ContractorAction.APPROVE)
    if upper == "C":
        return ContractorCommand(ContractorAction.CALL_CUSTOMER)
    if upper == "X":
        return ContractorCommand(ContractorAction.PASS)
    if upper.startswith("Q "):
        amount = parse_money(upper[2:])
        if amount is not None and amount > 0:
            return ContractorCommand(ContractorAction.CUSTOM_QUOTE, amount=amount)
    if upper.startswith("INVOICE"):
        parts = text.strip()[len("INVOICE"):].split(None, 1)
        amount = parse_money(parts[0]) if parts else None
        description = parts[1].strip() if len(parts) > 1 else ""
        if amount is not None and amount > 0 and description:
            return ContractorCommand(ContractorAction.INVOICE, amount=amount, description=description)
        return ContractorCommand(ContractorAction.INVOICE_USAGE)
    if "SETUP" in upper:
        return ContractorCommand(ContractorAction.SETUP)
    return ContractorCommand(ContractorAction.UNKNOWN)


def parse_customer_rating(text: str) -> Optional[CustomerRating]:
    stripped = (text or "").strip()
    if not stripped or stripped[0] not in "12345":
        return None
    feedback = stripped[1:].strip(" \t/-.,:")
    # "10" or "45 minutes late" are not ratings
    if feedback[:1].isdigit():
        return None
    return CustomerRating(rating=int(stripped[0]), feedback=feedback or None)


# ──────────────────────────────────────────────────────────────────────
# Weekly availability
# ──────────────────────────────────────────────────────────────────────
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_DAY_ALIASES = {day[:3]: day for day in DAYS}
_DAY_ALIASES.update({"tues": "tuesday", "thur": "thursday", "thurs": "thursday"})
_SEGMENT_RE = re.compile(
    r"^(?P<first>[a-z]+)(?:\s*-\s*(?P<last>[a-z]+))?\s+(?P<open>\d{1,2}(?::\d{2})?)\s*-\s*(?P<close>\d{1,2}(?::\d{2})?)$"
)


def _day(token: str) -> Optional[str]:
    token = token.lower()
    if token in DAYS:
        return token
    return _DAY_ALIASES.get(token)


def parse_available_hours(text: str) -> dict[str, str]:
    """Best-effort 'Mon-Fri 8-5, Sat 9-2' -> {day: 'open-close'}.

    Anything that does not parse cleanly is kept verbatim under ``general``.
    """
    raw = (text or "").strip()
    lowered = raw.lower()
    if "24/7" in lowered or "24 / 7" in lowered:
        return {day: "0-24" for day in DAYS}

    hours: dict[str, str] = {}
    for segment in filter(None, (s.strip() for s in re.split(r"[,;]", lowered))):
        match = _SEGMENT_RE.match(segment)
        if not match:
            return {"general": raw}
        first, last = _day(match["first"]), _day(match["last"] or match["first"])
        if first is None or last is None:
            return {"general": raw}
        start, end = DAYS.index(first), DAYS.index(last)
        span = DAYS[start:end + 1] if start <= end else DAYS[start:] + DAYS[:end + 1]
        for day in span:
            hours[day] = f"{match['open']}-{match['close']}"
    return hours or {"general": raw}
