"""
Conversation state machine.

One conversation per phone number. Each inbound text is dispatched on the
stored state; the stored context is validated against that state's model
before a handler sees it, and every transition writes a complete new context.

Order of precedence for an inbound text:

1. ``CANCEL`` resets to IDLE from anywhere;
2. a registered contractor's number goes to the contractor desk;
3. the handler for the conversation's current state.

``process`` never raises. Data integrity problems reset the conversation to
IDLE; anything unexpected is logged and answered with a generic apology.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import db
from app.services.contractor_desk import ContractorDesk
from app.services.intake_agent import IntakeAgent, IntakeAgentError
from app.services.lifecycle import Actor, InvalidTransition, JobLifecycle, JobNotFound, LifecycleError
from app.services.quoting import QuotingEngine, format_quote_for_customer
from app.types.conversation import (
    ChatTurn,
    ContractorResponseContext,
    ConversationState,
    IdleContext,
    IntakeContext,
    JobScheduledContext,
    OnboardingContext,
    OnboardingStep,
    QuoteApprovalContext,
    parse_context,
)
from app.types.intake_contract import ZIP_RE, IntakePayload, extract_intake_payload
from app.types.job import JobStatus
from app.types.quote import JobDetails
from app.utils import texts
from app.utils.commands import parse_available_hours, parse_customer_rating, parse_money, parse_percent
from db.models import Contractor, Conversation, Customer

_LOGGER = logging.getLogger(__name__)

DEFAULT_TRADE = "home repair"
YES = frozenset({"YES", "Y"})
NO = frozenset({"NO", "N"})


class DataIntegrityError(LookupError):
    """A record the conversation depends on is missing or unreadable."""


@dataclass(frozen=True)
class InboundMessage:
    from_number: str
    to_number: str
    body: str
    transport_message_id: Optional[str] = None


@dataclass(frozen=True)
class ConversationReply:
    to: str
    body: Optional[str]


class ConversationEngine:
    def __init__(
        self,
        lifecycle: JobLifecycle,
        quoting: QuotingEngine,
        agent: IntakeAgent,
        desk: ContractorDesk | None = None,
        selection: str = "first",
    ) -> None:
        self.lifecycle = lifecycle
        self.quoting = quoting
        self.agent = agent
        self.desk = desk or ContractorDesk(lifecycle)
        self.selection = selection
        self._handlers: dict[type, Callable[..., Awaitable[str]]] = {
            IdleContext: self._idle,
            OnboardingContext: self._onboarding,
            IntakeContext: self._intake,
            QuoteApprovalContext: self._quote_approval,
            ContractorResponseContext: self._awaiting_contractor,
            JobScheduledContext: self._job_scheduled,
        }
        self._onboarding_steps: dict[OnboardingStep, Callable[[str, str, OnboardingContext], Awaitable[str]]] = {
            OnboardingStep.BUSINESS_NAME: self._step_business_name,
            OnboardingStep.TRADE_TYPE: self._step_trade_type,
            OnboardingStep.SERVICE_AREA: self._step_service_area,
            OnboardingStep.SERVICES: self._step_services,
            OnboardingStep.SERVICE_FEE: self._step_service_fee,
            OnboardingStep.HOURLY_RATE: self._step_hourly_rate,
            OnboardingStep.EMERGENCY_MARKUP: self._step_emergency_markup,
            OnboardingStep.HOURS: self._step_hours,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def handle_inbound(self, message: InboundMessage) -> ConversationReply:
        """Record the inbound text, then answer it."""
        try:
            conversation = await db.get_or_create_conversation(message.from_number)
            await db.insert_message(
                from_number=message.from_number,
                to_number=message.to_number,
                body=message.body,
                direction="inbound",
                transport_message_id=message.transport_message_id,
                conversation_id=conversation.id,
            )
        except SQLAlchemyError:
            _LOGGER.exception("Could not record inbound message from %s", message.from_number)
        body = await self.process(message.from_number, message.body)
        return ConversationReply(to=message.from_number, body=body)

    async def process(self, phone: str, text: str) -> str:
        text = (text or "").strip()
        try:
            return await self._dispatch(phone, text)
        except (DataIntegrityError, JobNotFound) as exc:
            _LOGGER.warning("Data integrity failure for %s: %s; resetting to IDLE", phone, exc)
            await self._reset(phone)
            return texts.GENERIC_ERROR
        except Exception:
            _LOGGER.exception("Unhandled error processing message from %s", phone)
            return texts.GENERIC_ERROR

    async def _reset(self, phone: str) -> None:
        try:
            await db.save_conversation(phone, IdleContext())
        except SQLAlchemyError:
            _LOGGER.exception("Could not reset conversation for %s", phone)

    async def _dispatch(self, phone: str, text: str) -> str:
        if text.upper() == "CANCEL":
            return await self._cancel(phone)

        conversation = await db.get_or_create_conversation(phone)
        if conversation.state is not ConversationState.CONTRACTOR_ONBOARDING:
            contractor = await db.get_contractor_by_phone(phone)
            if contractor is not None:
                return await self.desk.handle(contractor, text)

        try:
            context = parse_context(conversation.state, conversation.context)
        except ValidationError as exc:
            if conversation.state is ConversationState.CONTRACTOR_ONBOARDING:
                _LOGGER.warning("Unreadable onboarding context for %s: %s", phone, exc)
                await db.save_conversation(phone, IdleContext())
                return texts.ONBOARDING_RESTART
            raise DataIntegrityError(f"stored {conversation.state.value} context is invalid") from exc

        return await self._handlers[type(context)](phone, text, context, conversation)

    async def _cancel(self, phone: str) -> str:
        conversation = await db.get_conversation(phone)
        if (
            conversation is not None
            and conversation.state is ConversationState.AWAITING_QUOTE_APPROVAL
            and conversation.current_job_id is not None
        ):
            try:
                await self.lifecycle.cancel(conversation.current_job_id, actor=Actor.CUSTOMER)
            except LifecycleError as exc:
                _LOGGER.info("Pending job for %s not cancelled: %s", phone, exc)
        await db.save_conversation(phone, IdleContext())
        return texts.RESET_CONFIRMATION

    # ------------------------------------------------------------------
    # IDLE and intake
    # ------------------------------------------------------------------
    async def _idle(self, phone: str, text: str, context: IdleContext, conversation: Conversation) -> str:
        if "SETUP" in text.upper():
            await db.save_conversation(phone, OnboardingContext())
            return texts.ONBOARDING_WELCOME

        customer = await db.get_or_create_customer(phone)
        thanks = await self._record_rating(customer, text)
        if thanks is not None:
            return thanks
        return await self._converse(phone, customer.id, [], text)

    async def _record_rating(self, customer: Customer, text: str) -> Optional[str]:
        rating = parse_customer_rating(text)
        if rating is None:
            return None
        job = await db.latest_job_for_customer(customer.id, [JobStatus.COMPLETED])
        if job is None or job.customer_rating is not None or job.followup_sent_at is None:
            return None
        await self.lifecycle.record_rating(job.id, rating.rating, rating.feedback)
        _LOGGER.info("Customer %s rated job %s: %s", customer.id, job.id, rating.rating)
        return texts.rating_thanks(rating.rating, rating.feedback)

    async def _intake(self, phone: str, text: str, context: IntakeContext, conversation: Conversation) -> str:
        return await self._converse(phone, context.customer_id, context.history, text)

    async def _converse(self, phone: str, customer_id: int, history: list[ChatTurn], text: str) -> str:
        history = [*history, ChatTurn(role="user", content=text)]
        try:
            reply = await self.agent.converse(history, await self._trade())
        except IntakeAgentError:
            return texts.AGENT_UNAVAILABLE

        visible, payload = extract_intake_payload(reply)
        if payload is None:
            visible = visible or texts.INTAKE_FALLBACK
            history.append(ChatTurn(role="assistant", content=visible))
            await db.save_conversation(
                phone, IntakeContext(customer_id=customer_id, history=history), customer_id=customer_id
            )
            return visible
        return await self._quote(phone, customer_id, payload)

    async def _trade(self) -> str:
        contractor = await db.first_active_contractor()
        return contractor.trade_type if contractor and contractor.trade_type else DEFAULT_TRADE

    async def _quote(self, phone: str, customer_id: int, payload: IntakePayload) -> str:
        customer_values = {"zip_code": payload.zip_code}
        if payload.address:
            customer_values["address"] = payload.address
        await db.update_customer(customer_id, **customer_values)

        details = JobDetails(
            problem_description=payload.problem_summary,
            service_category=payload.service_category,
            urgency_level=payload.urgency,
        )
        contractor = await self._select_contractor(details, payload.zip_code)
        if contractor is None:
            _LOGGER.info("No contractor serves %s for customer %s", payload.zip_code, customer_id)
            await db.save_conversation(phone, IdleContext(), customer_id=customer_id)
            return texts.NO_CONTRACTORS_IN_AREA

        quote = self.quoting.generate_quote(details, contractor)
        job = await db.create_job(
            customer_id=customer_id,
            problem_description=payload.problem_summary,
            service_category=payload.service_category,
            urgency_level=payload.urgency,
            customer_address=payload.address,
            customer_zip=payload.zip_code,
            estimated_cost_min=quote.min_cost,
            estimated_cost_max=quote.max_cost,
            notes=payload.details,
        )
        _LOGGER.info("Job %s quoted %s-%s for customer %s", job.id, quote.min_cost, quote.max_cost, customer_id)
        await db.save_conversation(
            phone,
            QuoteApprovalContext(
                job_id=job.id,
                contractor_id=contractor.id,
                customer_id=customer_id,
                problem_description=payload.problem_summary,
                service_category=payload.service_category,
                urgency_level=payload.urgency,
                customer_zip=payload.zip_code,
            ),
            job_id=job.id,
            contractor_id=contractor.id,
            customer_id=customer_id,
        )
        return texts.quote_offer(
            payload.service_category, format_quote_for_customer(quote, contractor.business_name)
        )

    async def _select_contractor(self, details: JobDetails, zip_code: str) -> Optional[Contractor]:
        candidates = await db.find_available_contractors(zip_code)
        if not candidates:
            return None
        if self.selection == "ranked":
            best = self.quoting.find_best_contractor(details, candidates)
            return next(c for c in candidates if c.id == best.contractor.id)
        return candidates[0]

    # ------------------------------------------------------------------
    # Quote approval and after
    # ------------------------------------------------------------------
    async def _quote_approval(
        self, phone: str, text: str, context: QuoteApprovalContext, conversation: Conversation
    ) -> str:
        answer = text.upper()
        if answer in YES:
            contractor = await db.get_contractor(context.contractor_id)
            if contractor is None:
                raise DataIntegrityError(f"contractor {context.contractor_id} not found")
            try:
                await self.lifecycle.quote(context.job_id, contractor.id, actor=Actor.CUSTOMER)
            except InvalidTransition as exc:
                _LOGGER.info("Quote for job %s no longer bookable: %s", context.job_id, exc.reason)
                try:
                    await self.lifecycle.cancel(context.job_id, actor=Actor.CUSTOMER)
                except LifecycleError as cancel_exc:
                    _LOGGER.warning("Unbookable job %s was not cancelled: %s", context.job_id, cancel_exc)
                await db.save_conversation(phone, IdleContext(), customer_id=context.customer_id)
                return texts.QUOTE_NO_LONGER_AVAILABLE
            await db.save_conversation(
                phone,
                ContractorResponseContext(
                    job_id=context.job_id, contractor_id=contractor.id, customer_id=context.customer_id
                ),
                job_id=context.job_id,
                contractor_id=contractor.id,
                customer_id=context.customer_id,
            )
            return texts.request_sent(contractor.business_name)

        if answer in NO:
            try:
                await self.lifecycle.cancel(context.job_id, actor=Actor.CUSTOMER)
            except InvalidTransition as exc:
                _LOGGER.info("Declined job %s was not cancelled: %s", context.job_id, exc.reason)
            await db.save_conversation(phone, IdleContext(), customer_id=context.customer_id)
            return texts.QUOTE_DECLINED

        return texts.QUOTE_APPROVAL_REPROMPT

    async def _awaiting_contractor(
        self, phone: str, text: str, context: ContractorResponseContext, conversation: Conversation
    ) -> str:
        job = await db.get_job(context.job_id)
        if job is None:
            raise DataIntegrityError(f"job {context.job_id} not found")
        if job.status is JobStatus.APPROVED:
            contractor = await db.get_contractor(job.contractor_id)
            if contractor is not None:
                return texts.awaiting_schedule(contractor.business_name)
        return texts.AWAITING_CONTRACTOR

    async def _job_scheduled(
        self, phone: str, text: str, context: JobScheduledContext, conversation: Conversation
    ) -> str:
        return texts.JOB_SCHEDULED_ACK

    # ------------------------------------------------------------------
    # Contractor onboarding
    # ------------------------------------------------------------------
    async def _onboarding(
        self, phone: str, text: str, context: OnboardingContext, conversation: Conversation
    ) -> str:
        return await self._onboarding_steps[context.step](phone, text, context)

    async def _advance(self, phone: str, context: OnboardingContext, step: OnboardingStep, reply: str, **values) -> str:
        await db.save_conversation(phone, context.model_copy(update={"step": step, **values}))
        return reply

    async def _step_business_name(self, phone: str, text: str, context: OnboardingContext) -> str:
        if not text:
            return texts.ASK_BUSINESS_NAME
        return await self._advance(phone, context, OnboardingStep.TRADE_TYPE, texts.ASK_TRADE, business_name=text)

    async def _step_trade_type(self, phone: str, text: str, context: OnboardingContext) -> str:
        if not text:
            return texts.ASK_TRADE
        return await self._advance(phone, context, OnboardingStep.SERVICE_AREA, texts.ASK_ZIP, trade_type=text.lower())

    async def _step_service_area(self, phone: str, text: str, context: OnboardingContext) -> str:
        match = ZIP_RE.search(text)
        if not match:
            return texts.BAD_ZIP
        return await self._advance(
            phone, context, OnboardingStep.SERVICES, texts.ASK_SERVICES, service_area_zip=match.group(0)
        )

    async def _step_services(self, phone: str, text: str, context: OnboardingContext) -> str:
        services = await self.agent.parse_services(text, context.trade_type or DEFAULT_TRADE)
        return await self._advance(
            phone, context, OnboardingStep.SERVICE_FEE, texts.ASK_FEE, services_offered=services or [text]
        )

    async def _step_service_fee(self, phone: str, text: str, context: OnboardingContext) -> str:
        fee = parse_money(text)
        if fee is None or fee < 0:
            return texts.BAD_FEE
        return await self._advance(phone, context, OnboardingStep.HOURLY_RATE, texts.ASK_RATE, base_service_fee=fee)

    async def _step_hourly_rate(self, phone: str, text: str, context: OnboardingContext) -> str:
        rate = parse_money(text)
        if rate is None or rate < 0:
            return texts.BAD_RATE
        return await self._advance(
            phone, context, OnboardingStep.EMERGENCY_MARKUP, texts.ASK_MARKUP, hourly_rate=rate
        )

    async def _step_emergency_markup(self, phone: str, text: str, context: OnboardingContext) -> str:
        markup = parse_percent(text)
        if markup is None or markup < 0:
            return texts.BAD_MARKUP
        return await self._advance(phone, context, OnboardingStep.HOURS, texts.ASK_HOURS, emergency_markup=markup)

    async def _step_hours(self, phone: str, text: str, context: OnboardingContext) -> str:
        if not context.business_name or not context.service_area_zip:
            _LOGGER.warning("Onboarding for %s reached hours without required fields", phone)
            await db.save_conversation(phone, IdleContext())
            return texts.ONBOARDING_RESTART
        try:
            contractor = await db.create_contractor(
                phone_number=phone,
                business_name=context.business_name,
                trade_type=context.trade_type or DEFAULT_TRADE,
                service_area_zip=context.service_area_zip,
                services_offered=context.services_offered or [],
                base_service_fee=context.base_service_fee,
                hourly_rate=context.hourly_rate,
                emergency_markup=context.emergency_markup,
                available_hours=parse_available_hours(text),
            )
        except IntegrityError:
            _LOGGER.info("Contractor %s already registered", phone)
            await db.save_conversation(phone, IdleContext())
            return texts.ALREADY_CONTRACTOR

        _LOGGER.info("Contractor %s onboarded as %r", contractor.id, contractor.business_name)
        await db.save_conversation(phone, IdleContext(), contractor_id=contractor.id)
        return texts.onboarding_complete(contractor.business_name)
