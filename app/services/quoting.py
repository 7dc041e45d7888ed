"""
Quoting engine.

Turns a job description plus a contractor's rate card into a bounded price
estimate. Two cost models are available and the caller picks one explicitly:

* ``simple``   – (base fee + hourly rate x 1..3 h) x urgency multiplier.
* ``detailed`` – keyword-driven complexity tier per trade, complexity,
  urgency, emergency and time-of-day multipliers, ±15 % range with a floor.

Everything here is pure: no I/O, no clock. Same inputs, same quote.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from app.types.job import Urgency
from app.types.quote import (
    Complexity,
    ContractorProfile,
    JobDetails,
    Quote,
    QuoteBreakdown,
    QuoteStrategy,
    RankedContractor,
)

DEFAULT_BASE_FEE = 75.0
DEFAULT_HOURLY_RATE = 100.0
DEFAULT_EMERGENCY_MARKUP = 0.5
FALLBACK_CATEGORY = "general_handyman"

# category -> complexity -> (hours, complexity multiplier, description)
CATEGORY_COMPLEXITY: dict[str, dict[Complexity, tuple[float, float, str]]] = {
    "plumbing": {
        Complexity.SIMPLE: (1, 1.0, "Basic repair"),
        Complexity.MODERATE: (2.5, 1.3, "Standard installation"),
        Complexity.COMPLEX: (4, 1.6, "Major repair/replacement"),
    },
    "electrical": {
        Complexity.SIMPLE: (1.5, 1.2, "Outlet/switch work"),
        Complexity.MODERATE: (3, 1.5, "Circuit installation"),
        Complexity.COMPLEX: (6, 2.0, "Panel/major wiring"),
    },
    "hvac": {
        Complexity.SIMPLE: (1, 1.1, "Filter/maintenance"),
        Complexity.MODERATE: (3, 1.4, "Repair/tune-up"),
        Complexity.COMPLEX: (8, 1.8, "Installation/replacement"),
    },
    "general_handyman": {
        Complexity.SIMPLE: (1, 0.9, "Simple fix"),
        Complexity.MODERATE: (2, 1.1, "Installation/repair"),
        Complexity.COMPLEX: (4, 1.3, "Multi-step project"),
    },
    "appliance_repair": {
        Complexity.SIMPLE: (1, 1.0, "Diagnostic/simple fix"),
        Complexity.MODERATE: (2, 1.2, "Part replacement"),
        Complexity.COMPLEX: (3, 1.5, "Major repair"),
    },
    "roofing": {
        Complexity.SIMPLE: (2, 1.3, "Small repair"),
        Complexity.MODERATE: (6, 1.7, "Section repair"),
        Complexity.COMPLEX: (16, 2.5, "Full replacement"),
    },
    "flooring": {
        Complexity.SIMPLE: (2, 1.1, "Small area"),
        Complexity.MODERATE: (6, 1.4, "Room installation"),
        Complexity.COMPLEX: (12, 1.7, "Whole house"),
    },
}

# checked complex -> moderate -> simple; first hit wins
COMPLEXITY_KEYWORDS: dict[str, dict[Complexity, tuple[str, ...]]] = {
    "plumbing": {
        Complexity.COMPLEX: ("main", "sewer", "remodel", "reroute", "whole house", "major"),
        Complexity.MODERATE: ("install", "replace", "pipe", "fitting", "valve", "fixture"),
        Complexity.SIMPLE: ("faucet", "leak", "drip", "clog", "running", "flush", "handle"),
    },
    "electrical": {
        Complexity.COMPLEX: ("panel", "rewire", "upgrade", "service", "whole house", "220"),
        Complexity.MODERATE: ("circuit", "breaker", "wire", "install", "ceiling fan"),
        Complexity.SIMPLE: ("outlet", "switch", "light", "fixture", "bulb", "fuse"),
    },
    "hvac": {
        Complexity.COMPLEX: ("install", "replace", "new system", "ductwork", "whole house"),
        Complexity.MODERATE: ("repair", "fix", "part", "component", "tune", "service"),
        Complexity.SIMPLE: ("filter", "thermostat", "maintenance", "clean", "check"),
    },
    "general_handyman": {
        Complexity.COMPLEX: ("remodel", "construction", "major", "multiple", "project"),
        Complexity.MODERATE: ("install", "repair", "replace", "build", "assemble"),
        Complexity.SIMPLE: ("hang", "mount", "fix", "adjust", "tighten", "small"),
    },
}

SIMPLE_URGENCY = {Urgency.LOW: 1.0, Urgency.MEDIUM: 1.2, Urgency.HIGH: 1.4}
DETAILED_URGENCY = {
    Urgency.LOW: 1.0,
    Urgency.MEDIUM: 1.1,
    Urgency.HIGH: 1.25,
    Urgency.EMERGENCY: 1.0,  # markup applied separately
}
SIMPLE_HOURS = (1, 3)

TIME_MULTIPLIERS = {
    "weekday_hours": 1.0,
    "weekday_evening": 1.2,
    "weekend_day": 1.15,
    "weekend_evening": 1.3,
    "late_night": 1.5,
    "holiday": 1.4,
}

SERVICE_MATCH_KEYWORDS = {
    "plumbing": ("pipe", "drain", "water", "plumb"),
    "electrical": ("electric", "wire", "power", "light"),
    "hvac": ("heat", "cool", "air", "hvac", "furnace"),
    "general_handyman": ("repair", "fix", "install", "maintenance"),
}

RANKING_WEIGHTS = {"price": 40, "service_match": 30, "availability": 20, "emergency": 10}


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else float(value)


def _as_profile(contractor) -> ContractorProfile:
    if isinstance(contractor, ContractorProfile):
        return contractor
    return ContractorProfile.model_validate(contractor)


def _as_details(job) -> JobDetails:
    if isinstance(job, JobDetails):
        return job
    return JobDetails.model_validate(job)


class QuotingEngine:
    def __init__(
        self,
        strategy: QuoteStrategy = QuoteStrategy.DETAILED,
        holidays: Iterable[date | str] = (),
    ) -> None:
        self.strategy = QuoteStrategy(strategy)
        self.holidays = frozenset(
            d if isinstance(d, date) else date.fromisoformat(d) for d in holidays
        )

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    def generate_quote(
        self,
        job,
        contractor,
        scheduled_at: Optional[datetime] = None,
        strategy: Optional[QuoteStrategy] = None,
    ) -> Quote:
        """Price *job* for *contractor*.

        ``job`` and ``contractor`` may be ORM rows or the value objects from
        :mod:`app.types.quote`. ``scheduled_at`` is a local wall-clock time and
        only matters to the detailed model.
        """
        details = _as_details(job)
        profile = _as_profile(contractor)
        chosen = QuoteStrategy(strategy or self.strategy)
        if chosen is QuoteStrategy.SIMPLE:
            return self._simple_quote(details, profile)
        return self._detailed_quote(details, profile, scheduled_at)

    def _simple_quote(self, job: JobDetails, contractor: ContractorProfile) -> Quote:
        base_fee = _or_default(contractor.base_service_fee, DEFAULT_BASE_FEE)
        hourly_rate = _or_default(contractor.hourly_rate, DEFAULT_HOURLY_RATE)
        if job.urgency_level is Urgency.EMERGENCY:
            urgency = 1.0 + _or_default(contractor.emergency_markup, DEFAULT_EMERGENCY_MARKUP)
        else:
            urgency = SIMPLE_URGENCY[job.urgency_level]

        low_hours, high_hours = SIMPLE_HOURS
        min_cost = round_half_up((base_fee + hourly_rate * low_hours) * urgency)
        max_cost = round_half_up((base_fee + hourly_rate * high_hours) * urgency)
        return Quote(
            min_cost=min_cost,
            max_cost=max_cost,
            average_cost=round_half_up((min_cost + max_cost) / 2),
            strategy=QuoteStrategy.SIMPLE,
            breakdown=QuoteBreakdown(
                base_fee=base_fee,
                hourly_rate=hourly_rate,
                estimated_hours=(low_hours + high_hours) / 2,
                labor_cost=hourly_rate * (low_hours + high_hours) / 2,
                urgency_multiplier=urgency,
            ),
        )

    def _detailed_quote(
        self,
        job: JobDetails,
        contractor: ContractorProfile,
        scheduled_at: Optional[datetime],
    ) -> Quote:
        category = job.service_category or FALLBACK_CATEGORY
        complexity = self.assess_job_complexity(job.problem_description, category)
        table = CATEGORY_COMPLEXITY.get(category)
        if table is None:
            hours, complexity_multiplier, description = CATEGORY_COMPLEXITY[FALLBACK_CATEGORY][Complexity.MODERATE]
        else:
            hours, complexity_multiplier, description = table[complexity]

        base_fee = _or_default(contractor.base_service_fee, DEFAULT_BASE_FEE)
        hourly_rate = _or_default(contractor.hourly_rate, DEFAULT_HOURLY_RATE)
        urgency_multiplier = DETAILED_URGENCY[job.urgency_level]
        emergency_multiplier = 1.0
        if job.urgency_level is Urgency.EMERGENCY:
            emergency_multiplier = 1.0 + _or_default(contractor.emergency_markup, DEFAULT_EMERGENCY_MARKUP)
        time_multiplier = self.get_time_multiplier(scheduled_at) if scheduled_at else 1.0

        labor_cost = hourly_rate * hours
        total = (
            (base_fee + labor_cost)
            * complexity_multiplier
            * urgency_multiplier
            * emergency_multiplier
            * time_multiplier
        )

        floor = math.ceil(base_fee + hourly_rate * 0.5)
        min_cost = max(round_half_up(total * 0.85), floor)
        max_cost = max(round_half_up(total * 1.15), min_cost + 50)
        return Quote(
            min_cost=min_cost,
            max_cost=max_cost,
            average_cost=round_half_up((min_cost + max_cost) / 2),
            strategy=QuoteStrategy.DETAILED,
            breakdown=QuoteBreakdown(
                base_fee=base_fee,
                hourly_rate=hourly_rate,
                estimated_hours=hours,
                labor_cost=labor_cost,
                complexity=complexity,
                complexity_multiplier=complexity_multiplier,
                urgency_multiplier=urgency_multiplier,
                emergency_multiplier=emergency_multiplier,
                time_multiplier=time_multiplier,
                description=description,
            ),
        )

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------
    @staticmethod
    def assess_job_complexity(problem_description: str, category: str) -> Complexity:
        text = (problem_description or "").lower()
        keywords = COMPLEXITY_KEYWORDS.get(category, COMPLEXITY_KEYWORDS[FALLBACK_CATEGORY])
        for tier in (Complexity.COMPLEX, Complexity.MODERATE, Complexity.SIMPLE):
            if any(word in text for word in keywords[tier]):
                return tier
        return Complexity.MODERATE

    def get_time_multiplier(self, scheduled_at: datetime) -> float:
        hour = scheduled_at.hour
        if hour >= 22 or hour < 8:
            return TIME_MULTIPLIERS["late_night"]
        if scheduled_at.date() in self.holidays:
            return TIME_MULTIPLIERS["holiday"]
        weekend = scheduled_at.weekday() >= 5
        if hour >= 18:
            return TIME_MULTIPLIERS["weekend_evening" if weekend else "weekday_evening"]
        return TIME_MULTIPLIERS["weekend_day" if weekend else "weekday_hours"]

    @staticmethod
    def calculate_service_match(category: str, services: Sequence[str]) -> float:
        if not services:
            return 0.5
        category = (category or "").lower()
        lowered = [s.lower() for s in services]
        if any(category in s for s in lowered):
            return 1.0
        for keyword in SERVICE_MATCH_KEYWORDS.get(category, ()):
            if any(keyword in s for s in lowered):
                return 0.8
        return 0.3

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------
    def rank_contractors(self, job, contractors: Iterable) -> list[RankedContractor]:
        """Score every candidate; highest first, input order breaks ties."""
        details = _as_details(job)
        ranked = []
        for contractor in contractors:
            profile = _as_profile(contractor)
            quote = self.generate_quote(details, profile)
            factors = {
                "price": max(0, 1000 - quote.average_cost) / 1000,
                "service_match": self.calculate_service_match(
                    details.service_category, profile.services_offered
                ),
                "availability": 1.0 if profile.is_active else 0.0,
                "emergency": (
                    1.0
                    if details.urgency_level is Urgency.EMERGENCY and profile.emergency_markup is not None
                    else 0.5
                ),
            }
            score = sum(factors[name] * weight for name, weight in RANKING_WEIGHTS.items())
            ranked.append(RankedContractor(contractor=profile, quote=quote, score=score, factors=factors))
        # sorted() is stable
        return sorted(ranked, key=lambda r: r.score, reverse=True)

    def find_best_contractor(self, job, contractors: Iterable) -> Optional[RankedContractor]:
        ranked = self.rank_contractors(job, contractors)
        return ranked[0] if ranked else None


def format_quote_for_customer(quote: Quote, contractor_name: str) -> str:
    message = f"💰 Estimated cost: ${quote.min_cost}"
    if quote.max_cost > quote.min_cost:
        message += f" - ${quote.max_cost}"
    message += f"\n🔧 {contractor_name}"
    if quote.breakdown.description:
        message += f"\n📋 {quote.breakdown.description}"
    if quote.strategy is QuoteStrategy.DETAILED:
        hours = quote.breakdown.estimated_hours
        if hours < 1:
            label = "< 1 hour"
        else:
            label = f"{hours:g} hour{'' if hours == 1 else 's'}"
        message += f"\n⏰ Est. time: {label}"
    return message
