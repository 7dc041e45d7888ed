"""
Customer intake agent.

Talks to the customer until it knows the problem, how urgent it is and where
the job is, then appends a ``<job_request>`` block (see
:mod:`app.types.intake_contract`) for the conversation engine to act on.

Two implementations:

* ``OpenAIIntakeAgent`` – chat completions, retried on transport errors.
* ``ScriptedIntakeAgent`` – deterministic step flow used when no OpenAI key
  is configured (local dev, tests).
"""

from __future__ import annotations

import json
import logging
import re
from typing import List, Optional, Protocol, Sequence

import openai
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.conversation import ChatTurn
from app.types.intake_contract import ZIP_RE
from app.types.job import URGENCY_BY_DIGIT, Urgency
from config import settings

_LOGGER = logging.getLogger(__name__)


class IntakeAgentError(RuntimeError):
    """The agent could not produce a reply."""


class IntakeAgent(Protocol):
    async def converse(self, history: Sequence[ChatTurn], trade: str) -> str: ...

    async def parse_services(self, text: str, trade: str) -> List[str]: ...


# ──────────────────────────────────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You are JobFlow, an SMS assistant for a {trade} business. "
    "Customers text you about problems in their home. Keep replies short and friendly; "
    "this is SMS. Ask one question at a time.\n\n"
    "Before a quote can be prepared you must know:\n"
    "1. what the problem is,\n"
    "2. how urgent it is (low, medium, high or emergency),\n"
    "3. the job's address or at least its 5-digit zip code.\n\n"
    "Once you know all three, reply with a one-line confirmation followed by exactly one block:\n"
    "<job_request>{{\"problem_summary\": \"...\", \"service_category\": \"plumbing|electrical|hvac|"
    "general_handyman|appliance_repair|roofing|flooring\", \"urgency\": \"low|medium|high|emergency\", "
    "\"details\": \"...\", \"zip_code\": \"12345\", \"address\": \"...\"}}</job_request>\n\n"
    "Never include the block before you know the zip code. Never quote prices yourself."
)

_SERVICES_PROMPT = (
    "A {trade} described the services they offer. Return ONLY a JSON array of short "
    "service names, e.g. [\"drain cleaning\", \"water heater repair\"]."
)

# Retry only on transport / rate-limit / backend errors
RETRY_ERRORS = (
    openai.APIStatusError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
)


class OpenAIIntakeAgent:
    def __init__(self, api_key: str | None = None, model: str | None = None, timeout: float | None = None):
        self._api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.timeout = float(timeout or settings.OPENAI_TIMEOUT)
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @retry(
        wait=wait_random_exponential(multiplier=1, max=30),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
    )
    async def _complete(self, messages: List[ChatCompletionMessageParam]) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            timeout=self.timeout,
        )
        return response.choices[0].message.content or ""

    async def converse(self, history: Sequence[ChatTurn], trade: str) -> str:
        messages: List[ChatCompletionMessageParam] = [
            {"role": "system", "content": _SYSTEM_PROMPT.format(trade=trade)}
        ]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        try:
            reply = await self._complete(messages)
        except (RetryError, openai.OpenAIError) as exc:
            _LOGGER.warning("Intake agent unavailable: %s", exc)
            raise IntakeAgentError(str(exc)) from exc
        _LOGGER.info("Intake agent reply: %.200s", reply)
        return reply

    async def parse_services(self, text: str, trade: str) -> List[str]:
        messages: List[ChatCompletionMessageParam] = [
            {"role": "system", "content": _SERVICES_PROMPT.format(trade=trade or "contractor")},
            {"role": "user", "content": text},
        ]
        try:
            raw = await self._complete(messages)
            services = json.loads(raw)
            if not isinstance(services, list):
                raise ValueError("expected a JSON array")
        except (RetryError, openai.OpenAIError, ValueError) as exc:
            _LOGGER.warning("Could not parse services, keeping raw text: %s", exc)
            return [text.strip()]
        parsed = [str(s).strip() for s in services if str(s).strip()]
        return parsed or [text.strip()]


# ──────────────────────────────────────────────────────────────────────────
# Offline agent
# ──────────────────────────────────────────────────────────────────────────

GREETINGS = frozenset({"HI", "HELLO", "HEY", "SUP", "YO", "HELP", "START"})

ASK_PROBLEM = (
    "Hi! I'm JobFlow, your assistant for home service needs. What can I help you with today? "
    "Please describe the problem you're having."
)
ASK_URGENCY = (
    "How urgent is this? Reply with:\n"
    "1 - Not urgent, can wait a few days\n"
    "2 - Soon, within 1-2 days\n"
    "3 - Today if possible\n"
    "4 - Emergency, ASAP"
)
ASK_ADDRESS = "What's your address or zip code? (I need this to find contractors near you)"
NEED_ZIP = "I need at least your zip code to find contractors near you. What's your zip code?"

_CATEGORY_KEYWORDS = (
    ("plumbing", ("leak", "pipe", "drain", "toilet", "faucet", "sink", "water heater", "clog", "sewer")),
    ("electrical", ("outlet", "breaker", "wiring", "switch", "light", "electric", "panel", "power")),
    ("hvac", ("furnace", "heat", "ac", "a/c", "air condition", "thermostat", "hvac", "vent")),
    ("appliance_repair", ("dishwasher", "washer", "dryer", "fridge", "refrigerator", "oven", "stove")),
    ("roofing", ("roof", "shingle", "gutter")),
    ("flooring", ("floor", "tile", "carpet", "hardwood")),
)


def is_greeting(text: str) -> bool:
    stripped = (text or "").strip()
    return stripped.upper() in GREETINGS or len(stripped) < 4


def guess_category(text: str) -> str:
    lowered = (text or "").lower()
    for category, words in _CATEGORY_KEYWORDS:
        if any(re.search(rf"\b{re.escape(word)}", lowered) for word in words):
            return category
    return "general_handyman"


class ScriptedIntakeAgent:
    """Problem, then urgency 1-4, then address/zip; replays the transcript each turn."""

    async def converse(self, history: Sequence[ChatTurn], trade: str) -> str:
        problem: Optional[str] = None
        urgency: Optional[Urgency] = None
        asked_zip_again = False

        for turn in (t for t in history if t.role == "user"):
            text = turn.content.strip()
            if problem is None:
                if not is_greeting(text):
                    problem = text
            elif urgency is None:
                urgency = URGENCY_BY_DIGIT.get(text, Urgency.MEDIUM)
            else:
                match = ZIP_RE.search(text)
                if match:
                    return self._ready(problem, urgency, match.group(0), text)
                asked_zip_again = True

        if problem is None:
            return ASK_PROBLEM
        if urgency is None:
            return f'Got it: "{problem}"\n\n{ASK_URGENCY}'
        return NEED_ZIP if asked_zip_again else ASK_ADDRESS

    @staticmethod
    def _ready(problem: str, urgency: Urgency, zip_code: str, address: str) -> str:
        payload = {
            "problem_summary": problem,
            "service_category": guess_category(problem),
            "urgency": urgency.value,
            "zip_code": zip_code,
            "address": address,
        }
        return f"Thanks! Let me find a contractor near {zip_code}.\n<job_request>{json.dumps(payload)}</job_request>"

    async def parse_services(self, text: str, trade: str) -> List[str]:
        parts = re.split(r",|\band\b", text or "")
        services = [p.strip() for p in parts if p.strip()]
        return services or [(text or "").strip()]


def build_intake_agent() -> IntakeAgent:
    if settings.OPENAI_API_KEY:
        return OpenAIIntakeAgent()
    _LOGGER.info("OPENAI_API_KEY not set; using the scripted intake agent")
    return ScriptedIntakeAgent()
