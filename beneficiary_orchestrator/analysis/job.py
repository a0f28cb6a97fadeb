"""Polling state machine for one beneficiary analysis job slot.

Lifecycle::

    idle -> triggering -> polling -> complete
                       |          -> failed (parse | timeout)
                       -> complete            (sandbox/demo case ids)

All waiting happens on the running asyncio loop. ``reset`` bumps a generation
counter; a run resuming after an ``await`` whose generation no longer matches
returns without touching state, so stale timers and late responses are dropped.
In-flight transport calls are not cancelled.

Each job also runs against a clock deadline of ``max_attempts * poll_interval_ms``
from the trigger; fetches and sleeps are cut short so the total wait never
exceeds it.
"""
import asyncio
import time
from typing import Any, Callable

from beneficiary_orchestrator.analysis.canonicalize import COMPLETE_STATUS, canonicalize_payload, extract_status
from beneficiary_orchestrator.analysis.fallback import is_demo_case, synthesize_result
from beneficiary_orchestrator.analysis.models import ClaimContext, ComparisonResult
from beneficiary_orchestrator.analysis.state import AnalysisJob, AnalysisSnapshot
from beneficiary_orchestrator.core.config import Settings, get_settings
from beneficiary_orchestrator.core.enums import ACTIVE_STATES, TERMINAL_STATES, JobState, ParseErrorReason, ResultSource
from beneficiary_orchestrator.core.errors import AnalysisError, AnalysisTimeoutError, ParseError, TransportError
from beneficiary_orchestrator.core.logging import get_logger, log_context
from beneficiary_orchestrator.services.job_client import JobClient

logger = get_logger(__name__)

TIMEOUT_ADVISORY = (
    "Beneficiary analysis is taking longer than expected and may still be running on the "
    "case management system. Showing claim data until results are available."
)

Listener = Callable[[AnalysisSnapshot], Any]


class BeneficiaryAnalysisJob:
    def __init__(
        self,
        job_client: JobClient,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = job_client
        self._settings = settings or get_settings()
        self._clock = clock
        self._generation = 0
        self._job: AnalysisJob | None = None
        self._task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    @property
    def case_id(self) -> str | None:
        return self._job.case_id if self._job else None

    @property
    def state(self) -> JobState:
        return self._job.state if self._job else JobState.IDLE

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> AnalysisSnapshot:
        job = self._job
        if job is None:
            return AnalysisSnapshot(generation=self._generation)

        end = job.finished_at if job.finished_at is not None else self._clock()
        return AnalysisSnapshot(
            case_id=job.case_id,
            state=job.state,
            attempt=job.attempt,
            elapsed_ms=max(0, int((end - job.started_at) * 1000)),
            result=job.result,
            is_fallback=job.is_fallback,
            last_error=job.last_error,
            advisory=job.advisory,
            generation=job.generation,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        self._notify(listener, self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def trigger(self, case_id: str, claim_context: ClaimContext | None = None, *, submit: bool = True) -> None:
        """Start analysis for ``case_id``; ``submit=False`` only polls for an existing result."""
        if not case_id:
            raise ValueError("case_id is required to trigger beneficiary analysis")

        if self._job is not None and self._job.case_id != case_id:
            logger.info(
                "Case changed, resetting analysis job",
                extra=log_context(case_id=case_id, previous_case_id=self._job.case_id),
            )
            self.reset()

        if self._job is not None and self._job.state in ACTIVE_STATES:
            logger.info(
                "Analysis already in flight, trigger ignored",
                extra=log_context(case_id=case_id, state=self._job.state.value, generation=self._generation),
            )
            return

        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        self._job = AnalysisJob(
            case_id=case_id,
            generation=generation,
            started_at=self._clock(),
            claim_context=claim_context,
            submit=submit,
        )
        logger.info("Beneficiary analysis triggered", extra=log_context(case_id=case_id, generation=generation, submit=submit))
        self._publish()

        task = loop.create_task(self._run(case_id, generation, submit), name=f"beneficiary-analysis:{case_id}:{generation}")
        task.add_done_callback(self._log_task_failure)
        self._task = task

    def retry(self) -> bool:
        """Re-trigger a finished job with the same case id and claim context."""
        job = self._job
        if job is None or job.state not in TERMINAL_STATES:
            return False
        self.trigger(job.case_id, job.claim_context, submit=job.submit)
        return True

    def reset(self, case_id: str | None = None) -> None:
        if case_id is not None and self._job is not None and self._job.case_id != case_id:
            return

        self._generation += 1
        if self._job is not None:
            logger.info(
                "Beneficiary analysis reset",
                extra=log_context(case_id=self._job.case_id, state=self._job.state.value, generation=self._generation),
            )
        self._job = None
        self._task = None
        self._publish()

    async def join(self) -> AnalysisSnapshot:
        task = self._task
        if task is not None:
            await task
        return self.snapshot()

    def _is_current(self, generation: int) -> bool:
        return self._job is not None and generation == self._generation

    async def _run(self, case_id: str, generation: int, submit: bool = True) -> None:
        try:
            await self._drive(case_id, generation, submit)
        except Exception as exc:
            if not self._is_current(generation) or self._job.state not in ACTIVE_STATES:
                raise
            logger.exception(
                "Beneficiary analysis run failed unexpectedly",
                extra=log_context(case_id=case_id, generation=generation),
            )
            self._fail(ParseError(ParseErrorReason.UNREADABLE_SECTION, f"Analysis run failed: {exc!r}"))

    async def _drive(self, case_id: str, generation: int, submit: bool) -> None:
        if not self._is_current(generation):
            return
        if is_demo_case(case_id, self._settings):
            await self._run_demo(generation)
            return

        if submit:
            try:
                await self._client.submit(case_id)
            except Exception as exc:
                # Submission and analysis may be decoupled upstream; poll regardless.
                logger.warning(
                    "Analysis submit failed, polling anyway",
                    extra=log_context(case_id=case_id, generation=generation, error=str(exc)),
                )

        if not self._is_current(generation):
            return
        self._job.state = JobState.POLLING
        self._publish()
        await self._poll(case_id, generation)

    async def _run_demo(self, generation: int) -> None:
        await asyncio.sleep(self._settings.demo_delay_ms / 1000)
        if not self._is_current(generation):
            return
        job = self._job
        result = synthesize_result(
            job.case_id,
            job.claim_context,
            source=ResultSource.DEMO,
            settings=self._settings,
        )
        self._complete(result)

    async def _fetch(self, case_id: str, timeout_s: float) -> tuple[Any, TransportError | None]:
        try:
            payload = await asyncio.wait_for(self._client.fetch_status(case_id), timeout=timeout_s)
        except asyncio.TimeoutError:
            return None, TransportError(f"Status fetch timed out after {int(timeout_s * 1000)} ms")
        except TransportError as exc:
            return None, exc
        except Exception as exc:
            return None, TransportError(f"Status fetch failed: {exc}")
        return payload, None

    def _time_out(self, last_transport_error: TransportError | None) -> None:
        job = self._job
        self._fail(
            AnalysisTimeoutError(
                f"Analysis did not complete after {job.attempt} status checks",
                attempts=job.attempt,
                last_transport_error=last_transport_error,
            ),
            advisory=TIMEOUT_ADVISORY,
        )

    async def _poll(self, case_id: str, generation: int) -> None:
        settings = self._settings
        deadline = self._job.started_at + settings.polling_budget_ms / 1000
        fetch_timeout_s = settings.analysis_fetch_timeout_ms / 1000
        last_transport_error: TransportError | None = None

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                self._time_out(last_transport_error)
                return

            payload, failure = await self._fetch(case_id, min(fetch_timeout_s, remaining))
            if not self._is_current(generation):
                logger.debug("Discarding stale status response", extra=log_context(case_id=case_id, generation=generation))
                return

            job = self._job
            if failure is not None:
                last_transport_error = failure
                job.last_error = failure.to_error_info()
                logger.warning(
                    "Status fetch failed, will retry",
                    extra=log_context(case_id=case_id, attempt=job.attempt + 1, error=failure.message),
                )
            elif extract_status(payload) == COMPLETE_STATUS:
                outcome = canonicalize_payload(payload, settings=settings)
                if isinstance(outcome, ParseError):
                    self._fail(outcome)
                else:
                    self._complete(outcome)
                return

            job.attempt += 1
            remaining = deadline - self._clock()
            if job.attempt >= settings.analysis_max_attempts or remaining <= 0:
                self._time_out(last_transport_error)
                return

            self._publish()
            await asyncio.sleep(min(settings.analysis_poll_interval_ms / 1000, remaining))
            if not self._is_current(generation):
                return

    def _complete(self, result: ComparisonResult) -> None:
        job = self._job
        job.state = JobState.COMPLETE
        job.result = result
        job.is_fallback = False
        job.last_error = None
        job.finished_at = self._clock()
        logger.info(
            "Beneficiary analysis complete",
            extra=log_context(
                case_id=job.case_id,
                match_status=result.match_status.value,
                source=result.source.value,
                attempt=job.attempt,
            ),
        )
        self._publish()

    def _fail(self, error: AnalysisError, advisory: str | None = None) -> None:
        job = self._job
        job.state = JobState.FAILED
        job.last_error = error.to_error_info()
        job.result = synthesize_result(
            job.case_id,
            job.claim_context,
            source=ResultSource.FALLBACK,
            settings=self._settings,
        )
        job.is_fallback = True
        job.advisory = advisory
        job.finished_at = self._clock()
        logger.warning(
            "Beneficiary analysis failed, serving fallback result",
            extra=log_context(
                case_id=job.case_id,
                error_kind=error.kind.value,
                reason=job.last_error.reason,
                attempt=job.attempt,
            ),
        )
        self._publish()

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            self._notify(listener, snapshot)

    def _notify(self, listener: Listener, snapshot: AnalysisSnapshot) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("Analysis listener failed", extra=log_context(case_id=snapshot.case_id))

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Beneficiary analysis run crashed", exc_info=exc, extra=log_context(task=task.get_name()))
