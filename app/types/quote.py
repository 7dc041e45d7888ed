"""Value objects produced and consumed by the quoting engine."""

from __future__ import annotations

import enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.types.job import Urgency


class QuoteStrategy(str, enum.Enum):
    SIMPLE = "simple"
    DETAILED = "detailed"


class Complexity(str, enum.Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class JobDetails(_Frozen):
    """The part of a job the engine prices: what, which trade, how urgent."""

    problem_description: str = ""
    service_category: str = "general_handyman"
    urgency_level: Urgency = Urgency.MEDIUM

    @field_validator("urgency_level", mode="before")
    def _normalize_urgency(cls, v):  # noqa: N805
        return Urgency.normalize(v)

    @field_validator("service_category", mode="before")
    def _default_category(cls, v):  # noqa: N805
        return (v or "general_handyman").strip().lower()


class ContractorProfile(_Frozen):
    id: Optional[int] = None
    business_name: str = ""
    services_offered: Tuple[str, ...] = ()
    base_service_fee: Optional[float] = None
    hourly_rate: Optional[float] = None
    emergency_markup: Optional[float] = None
    is_active: bool = True

    @field_validator("services_offered", mode="before")
    def _services(cls, v):  # noqa: N805
        return tuple(v or ())


class QuoteBreakdown(_Frozen):
    base_fee: float
    hourly_rate: float
    estimated_hours: float
    labor_cost: float
    complexity: Optional[Complexity] = None
    complexity_multiplier: float = 1.0
    urgency_multiplier: float = 1.0
    emergency_multiplier: float = 1.0
    time_multiplier: float = 1.0
    description: Optional[str] = None


class Quote(_Frozen):
    min_cost: int
    max_cost: int
    average_cost: int
    strategy: QuoteStrategy
    breakdown: QuoteBreakdown


class RankedContractor(_Frozen):
    contractor: ContractorProfile
    quote: Quote
    score: float
    factors: Dict[str, float] = Field(default_factory=dict)
