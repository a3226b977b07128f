"""
Compute gateway: admission, reservation, dispatch and settlement of paid jobs.

Submission runs every admission gate, reserves funds and persists the job
before returning; execution then runs as an independent asyncio task.

Job status only moves forward (pending → processing → completed | failed) and
every transition is a guarded Store update, so a job is settled or refunded
exactly once even if execute() runs twice or races a cancellation.
"""

import asyncio
import platform
import resource
import sys
import time
import uuid
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from ..core.config import Settings
from ..core.exceptions import (
    AppError,
    InsufficientBalanceError,
    JobTimeoutError,
    PaymentVerificationError,
    RateLimitError,
    ValidationError,
)
from ..core.pricing import PRICING, calculate_usage, estimate_cost, get_pricing
from ..core.rate_limiter import RateLimiter
from ..core.utils.address import normalize_address
from ..core.utils.circuit_breaker import CircuitBreaker
from ..core.utils.date_utils import UsagePeriod, period_start, utcnow
from ..core.utils.retry import RetryExecutor, is_transient_error
from ..database.store import Store
from ..models.api_key import ApiKey, ApiKeyInfo
from ..models.balance import DepositResult, WalletBalance
from ..models.compute import ComputeService, CostEstimate, Priority, ServicePricing
from ..models.job import ComputeRequest, ComputeResponse, Job, JobStatus, PaymentProof
from ..models.usage import (
    RateLimitResult,
    SpendingLimits,
    SpendingStatus,
    UsageRecord,
    UsageStats,
)
from .api_key_service import ApiKeyService
from .balance_ledger import BalanceLedger
from .events import EventBus, JobEvent, JobEventType
from .payment_verifier import PaymentVerifier
from .spending_limits import UNCHANGED, SpendingLimitService
from .webhook import WebhookSender

logger = structlog.get_logger()

Handler = Callable[[ComputeRequest], Awaitable[Any]]

CANCELLED_REASON = "Cancelled by user"
RECENT_ERRORS_KEPT = 100
RECENT_ERRORS_SHOWN = 50


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


class ComputeGateway:
    """
    Paid compute job orchestrator.

    One instance owns its handlers, circuit breakers, in-flight tasks and
    metrics, so several gateways can coexist in one process.

    Args:
        settings: Application settings
        store: Persistence backend
        pricing: Price sheet override (defaults to PRICING)
        circuit_breaker: Breaker registry override
        retry_executor: Retry policy override
        payment_verifier: Verifier override
        webhook_sender: Callback sender override
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        pricing: Mapping[ComputeService, ServicePricing] | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        retry_executor: RetryExecutor | None = None,
        payment_verifier: PaymentVerifier | None = None,
        webhook_sender: WebhookSender | None = None,
    ):
        self.settings = settings
        self.store = store
        self.pricing: Mapping[ComputeService, ServicePricing] = pricing or PRICING

        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_threshold,
            reset_timeout=settings.circuit_breaker_reset_seconds,
        )
        self.retry_executor = retry_executor or RetryExecutor(
            max_retries=settings.max_retries,
            initial_delay=settings.retry_initial_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )
        self.payment_verifier = payment_verifier or PaymentVerifier(
            store,
            networks=settings.payment_networks,
            treasury_wallet=settings.treasury_wallet,
            tolerance=settings.payment_amount_tolerance,
            match_policy=settings.payment_match_policy,
            timeout=settings.rpc_timeout_seconds,
        )
        self.webhook_sender = webhook_sender or WebhookSender(
            settings.webhook_secret, timeout=settings.webhook_timeout_seconds
        )

        self.ledger = BalanceLedger(store)
        self.spending_limits = SpendingLimitService(store)
        self.api_keys = ApiKeyService(store)
        self.rate_limiter = RateLimiter(
            store,
            wallet_limit=settings.wallet_rate_limit,
            ip_limit=settings.ip_rate_limit,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self.events = EventBus(queue_size=settings.event_queue_size)

        self._handlers: dict[ComputeService, Handler] = {}
        self._tasks: set[asyncio.Task] = set()
        self._retention_task: asyncio.Task | None = None

        # Jobs currently inside execute(), and those holding a half-open trial
        self._active_jobs: dict[str, dict[str, Any]] = {}
        self._trial_jobs: set[str] = set()

        # Process-local metrics
        self._started = time.time()
        self._total_requests = 0
        self._total_revenue = 0.0
        self._requests_by_service: defaultdict[str, int] = defaultdict(int)
        self._jobs_by_status: dict[str, int] = {s.value: 0 for s in JobStatus}
        self._recent_errors: deque[dict[str, Any]] = deque(maxlen=RECENT_ERRORS_KEPT)

    # =========================================================================
    # Handlers
    # =========================================================================

    def register_handler(self, service: ComputeService | str, handler: Handler) -> None:
        """
        Register the handler that executes jobs for a service.

        Raises:
            ValidationError: If the service is unknown or has no pricing
        """
        try:
            service = ComputeService(service)
        except ValueError as e:
            raise ValidationError(f"Unknown service: {service}") from e
        if service not in self.pricing:
            raise ValidationError(f"Service {service.value} has no pricing configured")

        self._handlers[service] = handler
        logger.info("Service handler registered", service=service.value)

    def available_services(self) -> list[ComputeService]:
        return sorted(self._handlers, key=lambda s: s.value)

    # =========================================================================
    # Pricing
    # =========================================================================

    def estimate_cost(
        self,
        service: ComputeService | str,
        payload: Any,
        priority: Priority = Priority.NORMAL,
    ) -> CostEstimate:
        """
        Quote a request. Equals the cost reserved by submit() for the same inputs.

        Raises:
            ValidationError: If the service is unknown
        """
        return estimate_cost(self._resolve_service(service), payload, priority, self.pricing)

    def get_pricing(self, service: ComputeService | str | None = None) -> list[ServicePricing]:
        if service is None:
            return get_pricing(pricing=self.pricing)
        return get_pricing(self._resolve_service(service), self.pricing)

    def _resolve_service(self, service: ComputeService | str) -> ComputeService:
        try:
            resolved = ComputeService(service)
        except ValueError as e:
            raise ValidationError(f"Unknown service: {service}") from e
        if resolved not in self.pricing:
            raise ValidationError(f"Unknown service: {service}")
        return resolved

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, request: ComputeRequest) -> ComputeResponse:
        """
        Admit a job and dispatch it.

        Never raises: every rejection comes back as a ``failed`` response with a
        human-readable error, and no job or reservation is left behind.
        """
        job_id = generate_job_id()
        wallet = normalize_address(request.wallet)
        self._total_requests += 1

        log = logger.bind(job_id=job_id, wallet=wallet, service=request.service)
        is_trial = False

        try:
            service = self._resolve_service(request.service)
            self._requests_by_service[service.value] += 1
            handler = self._handlers.get(service)
            if handler is None:
                raise ValidationError(f"Service {service.value} not available")

            is_trial = self.circuit_breaker.check(service.value)

            estimate = estimate_cost(service, request.payload, request.priority, self.pricing)
            cost = estimate.estimated_cost

            await self._ensure_funds(wallet, cost, request.payment_proof)
            await self.spending_limits.check(wallet, cost)
            await self._check_concurrency(wallet)

            await self.ledger.reserve(wallet, cost)

            job = Job(
                job_id=job_id,
                request_id=request.id,
                wallet=wallet,
                service=service.value,
                priority=request.priority,
                payload=request.payload,
                cost=cost,
                reserved_cost=cost,
                callback_url=request.callback_url,
            )
            try:
                await self.store.create_job(job)
            except Exception:
                await self.ledger.refund(wallet, cost)
                raise

        except AppError as e:
            if is_trial:
                self.circuit_breaker.release_trial(request.service)
            log.warning(
                "Compute request rejected",
                error=e.message,
                error_type=e.error_type,
            )
            return self._failed_response(request, job_id, e.message)
        except Exception as e:
            if is_trial:
                self.circuit_breaker.release_trial(request.service)
            log.error(
                "Compute request failed unexpectedly",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return self._failed_response(request, job_id, str(e) or type(e).__name__)

        self._jobs_by_status[JobStatus.PENDING.value] += 1
        if is_trial:
            self._trial_jobs.add(job_id)

        log.info("Compute job created", estimated_cost=cost, priority=request.priority.value)

        self._spawn(self.execute(job_id, request, cost))

        return ComputeResponse(
            id=request.id,
            job_id=job_id,
            service=service.value,
            status=JobStatus.PENDING,
            cost=cost,
            timestamp=job.created_at,
        )

    @staticmethod
    def _failed_response(request: ComputeRequest, job_id: str, error: str) -> ComputeResponse:
        return ComputeResponse(
            id=request.id,
            job_id=job_id,
            service=request.service,
            status=JobStatus.FAILED,
            cost=0.0,
            error=error,
        )

    async def _ensure_funds(
        self, wallet: str, cost: float, proof: PaymentProof | None
    ) -> WalletBalance:
        """Top up from a payment proof if needed, then require enough available."""
        balance = await self.ledger.get_balance(wallet)
        if balance.available >= cost:
            return balance

        if proof is not None:
            verification = await self.payment_verifier.verify(proof, wallet)
            if not verification.valid:
                raise PaymentVerificationError(
                    verification.error or "Invalid payment proof",
                    wallet=wallet,
                    tx_hash=proof.tx_hash,
                )
            balance = await self.ledger.deposit(wallet, verification.amount)

        if balance.available < cost:
            raise InsufficientBalanceError(
                required=cost, available=balance.available, wallet=wallet
            )
        return balance

    async def _check_concurrency(self, wallet: str) -> None:
        limit = self.settings.max_concurrent_jobs_per_wallet
        in_flight = await self.store.count_jobs(
            wallet, [JobStatus.PENDING, JobStatus.PROCESSING]
        )
        if in_flight >= limit:
            raise RateLimitError(
                f"Too many concurrent jobs. Maximum {limit} per wallet",
                wallet=wallet,
                in_flight=in_flight,
            )

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        """Run a coroutine as a tracked background task."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, job_id: str, request: ComputeRequest, reserved_cost: float) -> None:
        """
        Run a pending job's handler and settle or refund it.

        A job that is no longer pending (cancelled, reconciled, or already
        executing) is left untouched.
        """
        service = ComputeService(request.service)
        wallet = normalize_address(request.wallet)
        log = logger.bind(job_id=job_id, wallet=wallet, service=service.value)

        started_at = utcnow()
        job = await self.store.update_job(
            job_id,
            {"status": JobStatus.PROCESSING, "started_at": started_at},
            expected_status=JobStatus.PENDING,
        )
        if job is None:
            log.info("Job not pending - execution skipped")
            if job_id not in self._active_jobs and job_id in self._trial_jobs:
                self._trial_jobs.discard(job_id)
                self.circuit_breaker.release_trial(service.value)
            return

        self._move_status(JobStatus.PENDING, JobStatus.PROCESSING)
        self._active_jobs[job_id] = {"wallet": wallet, "started_at": started_at}
        await self.events.publish(
            JobEvent(
                type=JobEventType.STARTED,
                job_id=job_id,
                wallet=wallet,
                service=service.value,
            )
        )
        log.info("Job started")

        started = time.monotonic()
        try:
            try:
                result = await self._run_handler(service, request, job_id)
            except Exception as e:
                await self._on_failure(job, e, int((time.monotonic() - started) * 1000))
            else:
                await self._on_success(
                    job, request, result, int((time.monotonic() - started) * 1000)
                )
        except Exception as e:
            log.error(
                "Job settlement failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._abort_settlement(job, e)
        finally:
            self._active_jobs.pop(job_id, None)
            self._trial_jobs.discard(job_id)

    async def _abort_settlement(self, job: Job, error: Exception) -> None:
        """
        Fail and refund a job whose settlement raised.

        A job that already reached a terminal status keeps it.
        """
        log = logger.bind(job_id=job.job_id, wallet=job.wallet, service=job.service)
        reason = f"Job settlement failed ({type(error).__name__})"
        try:
            failed = await self._fail_and_refund(job, reason, JobStatus.PROCESSING)
        except Exception as e:
            log.error(
                "Refund after settlement failure did not complete",
                error=str(e),
                error_type=type(e).__name__,
                reserved_cost=job.reserved_cost,
            )
            return

        if not failed:
            log.warning("Settlement failed after the job left processing")
            return

        await self._report_abandoned(job, reason)
        log.warning("Job failed and refunded after settlement error", refunded=job.reserved_cost)

    async def _run_handler(
        self, service: ComputeService, request: ComputeRequest, job_id: str
    ) -> Any:
        handler = self._handlers.get(service)
        if handler is None:
            raise ValidationError(f"Service {service.value} not available")

        timeout = self.settings.job_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.retry_executor.run(
                    lambda: handler(request), job_id=job_id, service=service.value
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(timeout, job_id=job_id) from e

    async def _on_success(
        self, job: Job, request: ComputeRequest, result: Any, duration_ms: int
    ) -> None:
        service = ComputeService(job.service)
        log = logger.bind(job_id=job.job_id, wallet=job.wallet, service=job.service)

        self.circuit_breaker.record_success(service.value)

        usage = calculate_usage(
            service,
            request.payload,
            duration_ms,
            priority=job.priority,
            result=result,
            pricing=self.pricing,
        )
        actual_cost = min(usage.breakdown.total, job.reserved_cost)
        completed_at = utcnow()

        completed = await self.store.update_job(
            job.job_id,
            {
                "status": JobStatus.COMPLETED,
                "result": result,
                "usage": usage,
                "cost": actual_cost,
                "completed_at": completed_at,
            },
            expected_status=JobStatus.PROCESSING,
        )
        if completed is None:
            log.warning("Job finished after leaving processing - result discarded")
            return

        await self.ledger.settle(job.wallet, job.reserved_cost, actual_cost)
        await self.store.record_usage(
            UsageRecord(
                wallet=job.wallet,
                service=job.service,
                cost=actual_cost,
                duration_ms=duration_ms,
                job_id=job.job_id,
                created_at=completed_at,
            )
        )

        self._move_status(JobStatus.PROCESSING, JobStatus.COMPLETED)
        self._total_revenue += actual_cost

        await self.events.publish(
            JobEvent(
                type=JobEventType.COMPLETED,
                job_id=job.job_id,
                wallet=job.wallet,
                service=job.service,
                cost=actual_cost,
                duration_ms=duration_ms,
            )
        )
        log.info(
            "Job completed",
            cost=actual_cost,
            reserved_cost=job.reserved_cost,
            duration_ms=duration_ms,
        )

        if job.callback_url:
            await self.webhook_sender.send(job.callback_url, completed.to_response())

    async def _on_failure(self, job: Job, error: Exception, duration_ms: int) -> None:
        service = ComputeService(job.service)
        message = error.message if isinstance(error, AppError) else str(error)
        message = message or type(error).__name__
        log = logger.bind(job_id=job.job_id, wallet=job.wallet, service=job.service)

        transient = is_transient_error(error)
        if transient:
            self.circuit_breaker.record_failure(service.value, error)
        elif job.job_id in self._trial_jobs:
            self.circuit_breaker.release_trial(service.value)

        self._recent_errors.append(
            {"service": job.service, "error": message, "timestamp": time.time()}
        )

        failed = await self.store.update_job(
            job.job_id,
            {
                "status": JobStatus.FAILED,
                "error": message,
                "cost": 0.0,
                "completed_at": utcnow(),
            },
            expected_status=JobStatus.PROCESSING,
        )
        if failed is None:
            log.warning("Job failed after leaving processing - no refund issued")
            return

        await self.ledger.refund(job.wallet, job.reserved_cost)
        self._move_status(JobStatus.PROCESSING, JobStatus.FAILED)

        await self.events.publish(
            JobEvent(
                type=JobEventType.FAILED,
                job_id=job.job_id,
                wallet=job.wallet,
                service=job.service,
                error=message,
                duration_ms=duration_ms,
            )
        )
        log.error(
            "Job failed",
            error=message,
            error_type=type(error).__name__,
            transient=transient,
            refunded=job.reserved_cost,
        )

    def _move_status(self, old: JobStatus, new: JobStatus) -> None:
        if self._jobs_by_status[old.value] > 0:
            self._jobs_by_status[old.value] -= 1
        self._jobs_by_status[new.value] += 1

    # =========================================================================
    # Jobs
    # =========================================================================

    async def get_job(self, job_id: str, wallet: str | None = None) -> Job | None:
        """Job by ID; None when ``wallet`` is given and does not own it."""
        job = await self.store.get_job(job_id)
        if job is None:
            return None
        if wallet is not None and job.wallet != normalize_address(wallet):
            return None
        return job

    async def get_jobs_by_wallet(self, wallet: str, limit: int = 50) -> list[Job]:
        return await self.store.get_jobs_by_wallet(normalize_address(wallet), limit)

    async def cancel_job(self, job_id: str, wallet: str) -> bool:
        """
        Cancel a pending job owned by ``wallet`` and refund its reservation.

        Returns:
            False if the job is missing, not owned, or no longer pending
        """
        wallet = normalize_address(wallet)
        job = await self.store.get_job(job_id)
        if job is None or job.wallet != wallet or job.status != JobStatus.PENDING:
            return False

        cancelled = await self._fail_and_refund(job, CANCELLED_REASON, JobStatus.PENDING)
        if not cancelled:
            return False

        await self.events.publish(
            JobEvent(
                type=JobEventType.CANCELLED,
                job_id=job_id,
                wallet=wallet,
                service=job.service,
            )
        )
        logger.info("Job cancelled", job_id=job_id, wallet=wallet, refunded=job.reserved_cost)
        return True

    async def fail_stale_job(self, job: Job, reason: str) -> bool:
        """
        Fail and refund a job stuck in pending or processing (after a crash).

        Returns:
            False if the job moved on before the guarded update
        """
        if job.job_id in self._active_jobs:
            return False
        failed = await self._fail_and_refund(job, reason, job.status)
        if failed:
            await self._report_abandoned(job, reason)
        return failed

    async def _report_abandoned(self, job: Job, reason: str) -> None:
        self._recent_errors.append(
            {"service": job.service, "error": reason, "timestamp": time.time()}
        )
        await self.events.publish(
            JobEvent(
                type=JobEventType.FAILED,
                job_id=job.job_id,
                wallet=job.wallet,
                service=job.service,
                error=reason,
            )
        )

    async def _fail_and_refund(self, job: Job, reason: str, expected: JobStatus) -> bool:
        updated = await self.store.update_job(
            job.job_id,
            {
                "status": JobStatus.FAILED,
                "error": reason,
                "cost": 0.0,
                "completed_at": utcnow(),
            },
            expected_status=expected,
        )
        if updated is None:
            return False

        await self.ledger.refund(job.wallet, job.reserved_cost)
        self._move_status(expected, JobStatus.FAILED)
        return True

    # =========================================================================
    # Balances, payments, usage, limits
    # =========================================================================

    async def get_balance(self, wallet: str) -> WalletBalance:
        return await self.ledger.get_balance(wallet)

    async def deposit_credits(self, wallet: str, proof: PaymentProof) -> DepositResult:
        """Verify a payment proof and credit the paid amount."""
        wallet = normalize_address(wallet)
        verification = await self.payment_verifier.verify(proof, wallet)
        if not verification.valid:
            logger.warning(
                "Deposit rejected",
                wallet=wallet,
                tx_hash=proof.tx_hash,
                error=verification.error,
            )
            return DepositResult(success=False, tx_hash=proof.tx_hash, error=verification.error)

        await self.ledger.deposit(wallet, verification.amount)
        return DepositResult(
            success=True,
            credits=verification.amount,
            tx_hash=proof.tx_hash,
        )

    async def get_usage(self, wallet: str, period: UsagePeriod = "all") -> UsageStats:
        """Per-service usage over a trailing period."""
        wallet = normalize_address(wallet)
        by_service = await self.store.get_usage(wallet, period_start(period))
        return UsageStats(
            wallet=wallet,
            period=period,
            by_service=by_service,
            total_requests=sum(u.requests for u in by_service.values()),
            total_cost=sum(u.cost for u in by_service.values()),
        )

    async def get_spending_limits(self, wallet: str) -> SpendingStatus:
        return await self.spending_limits.get_status(wallet)

    async def set_spending_limits(
        self,
        wallet: str,
        daily_limit: float | None | object = UNCHANGED,
        monthly_limit: float | None | object = UNCHANGED,
    ) -> SpendingLimits:
        return await self.spending_limits.set_limits(wallet, daily_limit, monthly_limit)

    async def check_spending_limits(self, wallet: str, amount: float) -> SpendingStatus:
        return await self.spending_limits.check(wallet, amount)

    async def check_rate_limit(self, wallet: str, ip: str | None = None) -> RateLimitResult:
        return await self.rate_limiter.check_rate_limit(normalize_address(wallet), ip)

    # =========================================================================
    # API keys
    # =========================================================================

    async def create_api_key(self, wallet: str, name: str = "default") -> ApiKey:
        return await self.api_keys.create_api_key(wallet, name)

    async def get_api_key_wallet(self, api_key: str) -> str | None:
        return await self.api_keys.get_api_key_wallet(api_key)

    async def list_api_keys(self, wallet: str) -> list[ApiKeyInfo]:
        return await self.api_keys.list_api_keys(wallet)

    async def revoke_api_key(self, wallet: str, api_key: str) -> bool:
        return await self.api_keys.revoke_api_key(wallet, api_key)

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self._started, 3),
            "total_requests": self._total_requests,
            "total_revenue": round(self._total_revenue, 8),
            "active_jobs": len(self._active_jobs),
            "jobs_by_status": dict(self._jobs_by_status),
            "requests_by_service": dict(self._requests_by_service),
        }

    def get_admin_metrics(self) -> dict[str, Any]:
        """Metrics plus breaker state per priced service and recent errors."""
        breakers = {
            service.value: self.circuit_breaker.get_status(service.value)
            for service in sorted(self.pricing, key=lambda s: s.value)
        }
        # ru_maxrss is KiB on Linux
        max_rss_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024

        return {
            **self.get_metrics(),
            "circuit_breakers": breakers,
            "recent_errors": list(reversed(self._recent_errors))[:RECENT_ERRORS_SHOWN],
            "system_info": {
                "python_version": sys.version.split()[0],
                "platform": platform.platform(),
                "max_rss_mb": round(max_rss_mb, 1),
                "background_tasks": len(self._tasks),
            },
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def cleanup_old_jobs(self) -> int:
        """Delete jobs that finished more than job_retention_days ago."""
        cutoff = utcnow() - timedelta(days=self.settings.job_retention_days)
        deleted = await self.store.cleanup_old_jobs(cutoff)
        logger.info(
            "Retention sweep completed",
            deleted=deleted,
            cutoff=cutoff.isoformat(),
        )
        return deleted

    async def _retention_loop(self) -> None:
        interval = self.settings.retention_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup_old_jobs()
            except Exception as e:
                logger.error("Retention sweep failed", error=str(e), exc_info=True)

    def start(self) -> None:
        """Start the periodic retention sweep."""
        if self._retention_task is None:
            self._retention_task = asyncio.ensure_future(self._retention_loop())
            logger.info(
                "Compute gateway started",
                services=[s.value for s in self.available_services()],
            )

    async def wait_for_jobs(self) -> None:
        """Wait until every dispatched execution task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop background work and release HTTP clients and the Store."""
        if self._retention_task is not None:
            self._retention_task.cancel()
            await asyncio.gather(self._retention_task, return_exceptions=True)
            self._retention_task = None

        if self._tasks:
            logger.warning(
                "Abandoning in-flight jobs on shutdown",
                count=len(self._tasks),
                job_ids=list(self._active_jobs),
            )
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        await self.payment_verifier.close()
        await self.webhook_sender.close()
        await self.store.close()
        logger.info("Compute gateway shut down")
