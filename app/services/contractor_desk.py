"""Contractor-side SMS commands.

A known contractor's texts never go through the customer conversation. They
are parsed into a command and applied to the contractor's most relevant job:
the newest ``quoted`` one for A/C/Q/X, today's scheduled job for ON THE WAY,
the active job for JOB DONE and the newest un-invoiced completed job for
INVOICE.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import db
from app.services.lifecycle import Actor, InvalidTransition, JobLifecycle
from app.types.job import JobStatus
from app.utils import texts
from app.utils.commands import ContractorAction, ContractorCommand, parse_contractor_command
from config import settings
from db.models import Contractor, Job

_LOGGER = logging.getLogger(__name__)


class ContractorDesk:
    def __init__(self, lifecycle: JobLifecycle) -> None:
        self.lifecycle = lifecycle
        self._handlers: dict[ContractorAction, Callable[[Contractor, ContractorCommand], Awaitable[str]]] = {
            ContractorAction.APPROVE: self._approve,
            ContractorAction.CALL_CUSTOMER: self._call_customer,
            ContractorAction.CUSTOM_QUOTE: self._custom_quote,
            ContractorAction.PASS: self._pass,
            ContractorAction.INVOICE: self._invoice,
            ContractorAction.INVOICE_USAGE: self._static(texts.INVOICE_USAGE),
            ContractorAction.ON_THE_WAY: self._on_the_way,
            ContractorAction.JOB_DONE: self._job_done,
            ContractorAction.DASHBOARD: self._dashboard,
            ContractorAction.SETUP: self._static(texts.ALREADY_CONTRACTOR),
            ContractorAction.UNKNOWN: self._static(texts.CONTRACTOR_HELP),
        }

    @staticmethod
    def _static(reply: str) -> Callable[[Contractor, ContractorCommand], Awaitable[str]]:
        async def handler(contractor: Contractor, command: ContractorCommand) -> str:
            return reply

        return handler

    async def handle(self, contractor: Contractor, text: str) -> str:
        command = parse_contractor_command(text)
        _LOGGER.info("Contractor %s command %s", contractor.id, command.action.value)
        try:
            return await self._handlers[command.action](contractor, command)
        except InvalidTransition as exc:
            _LOGGER.info("Contractor %s command rejected: %s", contractor.id, exc.reason)
            return texts.transition_rejected(exc.reason)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @property
    def clock(self):
        return self.lifecycle.clock

    async def _latest(self, contractor: Contractor, status: JobStatus) -> Optional[Job]:
        jobs = await db.jobs_for_contractor(contractor.id, [status])
        return jobs[0] if jobs else None

    async def _customer_phone(self, job: Job) -> str:
        customer = await db.get_customer(job.customer_id)
        return customer.phone_number if customer else "unknown"

    # ------------------------------------------------------------------
    # Job responses (A / C / Q / X)
    # ------------------------------------------------------------------
    async def _approve(self, contractor: Contractor, command: ContractorCommand) -> str:
        job = await self._latest(contractor, JobStatus.QUOTED)
        if job is None:
            return texts.NO_PENDING_REQUESTS
        await self.lifecycle.approve(job.id, actor=Actor.CONTRACTOR)
        return texts.approve_ack(await self._customer_phone(job))

    async def _call_customer(self, contractor: Contractor, command: ContractorCommand) -> str:
        job = await self._latest(contractor, JobStatus.QUOTED)
        if job is None:
            return texts.NO_PENDING_REQUESTS
        return texts.call_customer(await self._customer_phone(job))

    async def _custom_quote(self, contractor: Contractor, command: ContractorCommand) -> str:
        job = await self._latest(contractor, JobStatus.QUOTED)
        if job is None:
            return texts.NO_PENDING_REQUESTS
        await self.lifecycle.custom_quote(job.id, command.amount, actor=Actor.CONTRACTOR)
        return texts.custom_quote_ack(command.amount)

    async def _pass(self, contractor: Contractor, command: ContractorCommand) -> str:
        job = await self._latest(contractor, JobStatus.QUOTED)
        if job is None:
            return texts.NO_PENDING_REQUESTS
        await self.lifecycle.pass_job(job.id, actor=Actor.CONTRACTOR)
        return texts.PASS_ACK

    # ------------------------------------------------------------------
    # Day of the job
    # ------------------------------------------------------------------
    async def _on_the_way(self, contractor: Contractor, command: ContractorCommand) -> str:
        today = self.lifecycle.scheduler.local_date(self.clock.now())
        jobs = await db.jobs_for_contractor(contractor.id, [JobStatus.SCHEDULED])
        job = next((j for j in jobs if j.scheduled_date == today), None)
        if job is None:
            return texts.NO_JOB_TODAY
        await self.lifecycle.start(job.id, actor=Actor.CONTRACTOR)
        return texts.ON_THE_WAY_ACK

    async def _job_done(self, contractor: Contractor, command: ContractorCommand) -> str:
        job = await self._latest(contractor, JobStatus.IN_PROGRESS)
        if job is None:
            return texts.NO_JOB_IN_PROGRESS
        await self.lifecycle.complete(job.id, actor=Actor.CONTRACTOR)
        return texts.invoice_request(await self._customer_phone(job))

    async def _invoice(self, contractor: Contractor, command: ContractorCommand) -> str:
        jobs = await db.jobs_for_contractor(contractor.id, [JobStatus.COMPLETED])
        job = next((j for j in jobs if not j.invoice_sent), None)
        if job is None:
            return texts.NO_INVOICE_CANDIDATE
        await self.lifecycle.send_invoice(job.id, command.amount, command.description)
        return texts.invoice_ack(command.amount)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    async def _dashboard(self, contractor: Contractor, command: ContractorCommand) -> str:
        token = uuid.uuid4().hex
        code = f"{secrets.randbelow(1_000_000):06d}"
        minutes = settings.DASHBOARD_SESSION_MINUTES
        expires_at = self.clock.now() + timedelta(minutes=minutes)
        await db.create_dashboard_session(contractor.id, token, code, expires_at)
        url = f"{settings.BASE_URL.rstrip('/')}/dashboard/login?token={token}"
        return texts.dashboard_login(url, code, minutes)
