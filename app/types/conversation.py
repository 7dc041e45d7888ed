"""Conversation states and the per-state context contract.

Each state owns exactly one context model. The state column in the database
is the tag; the JSON context column holds the fields of the matching model.
Moving to another state always writes a complete new model, so keys from the
previous state can never leak forward. Models forbid unknown keys, which turns
a stale or hand-edited context into a validation error instead of silent
misbehaviour.
"""

from __future__ import annotations

import enum
from typing import Any, ClassVar, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.types.job import Urgency


class ConversationState(str, enum.Enum):
    IDLE = "IDLE"
    CONTRACTOR_ONBOARDING = "CONTRACTOR_ONBOARDING"
    CUSTOMER_INTAKE = "CUSTOMER_INTAKE"
    AWAITING_QUOTE_APPROVAL = "AWAITING_QUOTE_APPROVAL"
    AWAITING_CONTRACTOR_RESPONSE = "AWAITING_CONTRACTOR_RESPONSE"
    JOB_SCHEDULED = "JOB_SCHEDULED"


class OnboardingStep(str, enum.Enum):
    BUSINESS_NAME = "business_name"
    TRADE_TYPE = "trade_type"
    SERVICE_AREA = "service_area"
    SERVICES = "services"
    SERVICE_FEE = "service_fee"
    HOURLY_RATE = "hourly_rate"
    EMERGENCY_MARKUP = "emergency_markup"
    HOURS = "hours"


MAX_INTAKE_TURNS = 20
# problem and urgency are settled in the first exchanges; they survive the cap
PINNED_INTAKE_TURNS = 6


class _Context(BaseModel):
    model_config = ConfigDict(extra="forbid")

    STATE: ClassVar[ConversationState]

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class IdleContext(_Context):
    STATE = ConversationState.IDLE


class OnboardingContext(_Context):
    STATE = ConversationState.CONTRACTOR_ONBOARDING

    step: OnboardingStep = OnboardingStep.BUSINESS_NAME
    business_name: Optional[str] = None
    trade_type: Optional[str] = None
    service_area_zip: Optional[str] = None
    services_offered: Optional[List[str]] = None
    base_service_fee: Optional[float] = None
    hourly_rate: Optional[float] = None
    emergency_markup: Optional[float] = None


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class IntakeContext(_Context):
    STATE = ConversationState.CUSTOMER_INTAKE

    customer_id: int
    history: List[ChatTurn] = Field(default_factory=list)

    @field_validator("history")
    def _cap_history(cls, v: list[ChatTurn]):  # noqa: N805
        if len(v) <= MAX_INTAKE_TURNS:
            return v
        return v[:PINNED_INTAKE_TURNS] + v[-(MAX_INTAKE_TURNS - PINNED_INTAKE_TURNS):]


class QuoteApprovalContext(_Context):
    STATE = ConversationState.AWAITING_QUOTE_APPROVAL

    job_id: int
    contractor_id: int
    customer_id: int
    problem_description: str
    service_category: str
    urgency_level: Urgency
    customer_zip: str


class ContractorResponseContext(_Context):
    STATE = ConversationState.AWAITING_CONTRACTOR_RESPONSE

    job_id: int
    contractor_id: int
    customer_id: int


class JobScheduledContext(_Context):
    STATE = ConversationState.JOB_SCHEDULED

    job_id: int


ConversationContext = Union[
    IdleContext,
    OnboardingContext,
    IntakeContext,
    QuoteApprovalContext,
    ContractorResponseContext,
    JobScheduledContext,
]

CONTEXT_TYPES: dict[ConversationState, type[_Context]] = {
    model.STATE: model
    for model in (
        IdleContext,
        OnboardingContext,
        IntakeContext,
        QuoteApprovalContext,
        ContractorResponseContext,
        JobScheduledContext,
    )
}


def parse_context(state: ConversationState, raw: dict[str, Any] | None) -> ConversationContext:
    """Validate a stored context blob against the model owned by *state*.

    Raises ``pydantic.ValidationError`` when the blob does not fit.
    """
    return CONTEXT_TYPES[ConversationState(state)].model_validate(raw or {})
