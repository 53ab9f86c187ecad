# ============================================================================
# File: ingestion/runner.py
# Description: Resumable fetch cycle controller with checkpointed pagination
# ============================================================================
"""
Fetch Cycle Controller - walks one source's paginated upstream per invocation.

State machine:

    INIT -> FETCHING_PAGE -> NORMALIZING -> STORING -> ADVANCING
         -> FETCHING_PAGE | DONE | BUDGET_STOPPED | FAILED

Guarantees:
- The checkpoint is written after every stored page, so an invocation killed
  at any point resumes from the last fully stored page
- ``last_fetch_time`` only moves when the whole window has been consumed
- One bad record never fails the cycle; only fetch failures and checkpoint
  errors do
- At most one cycle per source at a time (checkpoint lease)
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.config import settings
from core.exceptions import (
    CheckpointError,
    CheckpointWriteError,
    CycleInProgressError,
    IngestionError,
    TransientFetchError,
)
from core.retry import RetryPolicy
from ingestion.base import FetchFailure, FetchOutcome, PageResult, TimeWindow
from ingestion.budget import CycleBudget
from ingestion.checkpoint import Checkpoint, CheckpointStore
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.loaders.relational_loader import RelationalLoader
from ingestion.sources import FeedSource
from models.base import CycleState, utcnow
from models.fetch_run import FetchRun
from schemas.api import CycleSummary

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one invocation for one source"""
    source_id: str
    run_id: uuid.UUID
    state: CycleState = CycleState.INIT
    window: Optional[TimeWindow] = None
    resumed: bool = False
    offset_before: int = 0
    offset_after: int = 0
    total_count: Optional[int] = None
    pages_fetched: int = 0
    pages_stored: int = 0
    requests_made: int = 0
    records_fetched: int = 0
    records_stored: int = 0
    records_invalid: int = 0
    records_failed: int = 0
    mirror_failed: int = 0
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    failures: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def has_more(self) -> bool:
        return self.state is not CycleState.DONE

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_summary(self) -> CycleSummary:
        return CycleSummary(
            source_id=self.source_id,
            run_id=str(self.run_id),
            state=self.state,
            total_entries=self.total_count,
            processed_entries=self.records_stored,
            new_offset=self.offset_after,
            has_more=self.has_more,
            pages_fetched=self.pages_fetched,
            requests_made=self.requests_made,
            invalid_entries=self.records_invalid,
            failed_entries=self.records_failed,
            window_start=self.window.start if self.window else None,
            window_end=self.window.end if self.window else None,
            error=self.error,
        )


class FetchCycleController:
    """
    Run one bounded, resumable fetch cycle for a source.

    Responsibilities:
    - Hold the source lease for the duration of the cycle
    - Plan the time window and resume offset from the checkpoint
    - Fetch, normalize, store and checkpoint page by page
    - Stop on budget exhaustion with the checkpoint already advanced
    - Record an audit row in ``fetch_runs`` (best-effort)
    """

    def __init__(
        self,
        db_session: AsyncSession,
        source: FeedSource,
        checkpoints: Optional[CheckpointStore] = None,
        loader: Optional[RelationalLoader] = None,
        mirror: Optional[MongoMirror] = None,
        budget: Optional[CycleBudget] = None,
        retry_policy: Optional[RetryPolicy] = None,
        lease_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db_session
        self.source = source
        self.checkpoints = checkpoints or CheckpointStore(db_session)
        self.loader = loader or RelationalLoader(db_session, batch_size=settings.SINK_BATCH_SIZE)
        self.mirror = mirror
        self.budget = budget or CycleBudget(
            max_requests=settings.CYCLE_MAX_REQUESTS,
            max_seconds=settings.CYCLE_MAX_SECONDS,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.FETCH_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
        )
        self.lease_ttl_seconds = lease_ttl_seconds or settings.LEASE_TTL_SECONDS
        self.clock = clock

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run(self) -> CycleResult:
        """
        Run the cycle to a terminal state.

        Returns:
            CycleResult in DONE, BUDGET_STOPPED or FAILED

        Raises:
            CycleInProgressError: Another invocation holds the source lease
        """
        result = CycleResult(source_id=self.source.source_id, run_id=uuid.uuid4())
        owner = str(result.run_id)

        try:
            acquired = await self.checkpoints.acquire_lease(
                self.source.source_id,
                self.source.feed_type,
                owner,
                self.lease_ttl_seconds,
                now=self.clock(),
            )
        except CheckpointWriteError as e:
            self._fail(result, e)
            result.completed_at = utcnow()
            return result

        if not acquired:
            raise CycleInProgressError(
                f"A fetch cycle for {self.source.source_id} is already running",
                context={"source_id": self.source.source_id}
            )

        await self._record_run_start(result)

        try:
            await self._run_cycle(result)

        except CheckpointError as e:
            self._fail(result, e)

        except Exception as e:
            logger.exception(f"Unexpected error in fetch cycle for {self.source.source_id}")
            self._fail(result, IngestionError(
                "Unexpected error in fetch cycle",
                context={"source_id": self.source.source_id, "offset": result.offset_after},
                original_exception=e
            ))

        finally:
            await self._release_lease(owner)

        result.completed_at = utcnow()
        await self._record_outcome(result)
        await self._record_run_end(result)

        logger.info(
            f"Fetch cycle {self.source.source_id} finished in {result.state.value}: "
            f"pages={result.pages_fetched}, stored={result.records_stored}, "
            f"invalid={result.records_invalid}, failed={result.records_failed}, "
            f"offset {result.offset_before} → {result.offset_after}",
            extra=self._log_context(result)
        )
        return result

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def plan_window(self, checkpoint: Optional[Checkpoint], now: datetime) -> Tuple[TimeWindow, int, bool]:
        """
        Compute the window and starting offset.

        The stored offset is reused only with the stored window it was
        counted against, and only while that window still starts at the
        current watermark. Otherwise a fresh window starts at offset 0.

        Returns:
            (window, offset, resumed)
        """
        watermark = checkpoint.last_fetch_time if checkpoint else None

        if (
            checkpoint is not None
            and checkpoint.next_offset > 0
            and checkpoint.has_open_window
            and (watermark is None or checkpoint.window_start == watermark)
        ):
            window = TimeWindow(start=checkpoint.window_start, end=checkpoint.window_end)
            return window, checkpoint.next_offset, True

        start = watermark or now - timedelta(days=self.source.lookback_days)
        end = now
        if self.source.max_window_days:
            end = min(end, start + timedelta(days=self.source.max_window_days))
        return TimeWindow(start=start, end=max(start, end)), 0, False

    async def _run_cycle(self, result: CycleResult) -> None:
        source = self.source

        # INIT
        checkpoint = await self.checkpoints.get(source.source_id)
        now = self.clock()
        window, offset, resumed = self.plan_window(checkpoint, now)

        progress = checkpoint or Checkpoint(source_id=source.source_id, feed_type=source.feed_type)
        result.window = window
        result.resumed = resumed
        result.offset_before = result.offset_after = offset

        logger.info(
            f"Starting {source.source_id} cycle at offset {offset} "
            f"for window {window.start.isoformat()} → {window.end.isoformat()}"
            f"{' (resumed)' if resumed else ''}",
            extra=self._log_context(result)
        )

        while True:
            # FETCHING_PAGE
            self._transition(result, CycleState.FETCHING_PAGE)
            outcome = await self._fetch_page(offset, window)
            result.requests_made = self.budget.requests_made

            if isinstance(outcome, FetchFailure):
                self._fail(result, outcome.error)
                return

            result.pages_fetched += 1
            if outcome.total_count is not None:
                result.total_count = outcome.total_count
            result.records_fetched += outcome.returned_count

            if outcome.returned_count == 0:
                break

            # NORMALIZING
            self._transition(result, CycleState.NORMALIZING)
            valid, invalid = source.normalizer.normalize_page(outcome.records)
            result.records_invalid += len(invalid)
            for rejected in invalid:
                logger.warning(
                    f"Skipping invalid {source.source_id} record {rejected.natural_id or '<no id>'}: "
                    f"{rejected.reason}",
                    extra=self._log_context(result)
                )

            # STORING
            self._transition(result, CycleState.STORING)
            report = await self.loader.upsert_batch(valid)
            result.records_stored += report.success_count
            result.records_failed += report.failure_count
            result.failures.extend(report.failures)
            await self._mirror(valid, result)

            # ADVANCING
            self._transition(result, CycleState.ADVANCING)
            offset += outcome.returned_count
            progress.next_offset = offset
            progress.items_fetched += report.success_count
            progress.window_start = window.start
            progress.window_end = window.end
            await self.checkpoints.put(progress)

            result.offset_after = offset
            result.pages_stored += 1

            if self._is_exhausted(outcome, offset):
                break

            if self.budget.exhausted:
                self._transition(result, CycleState.BUDGET_STOPPED)
                logger.info(
                    f"Budget exhausted for {source.source_id} after {result.pages_stored} pages "
                    f"({self.budget.to_dict()}); resuming at offset {offset} next time",
                    extra=self._log_context(result)
                )
                return

        # DONE
        progress.last_fetch_time = window.end
        progress.next_offset = 0
        progress.window_start = None
        progress.window_end = None
        if result.pages_stored or resumed:
            progress.last_success_time = self.clock()
        await self.checkpoints.put(progress)

        result.offset_after = 0
        self._transition(result, CycleState.DONE)

    @staticmethod
    def _is_exhausted(page: PageResult, offset: int) -> bool:
        if page.total_count is not None:
            return offset >= page.total_count
        return page.returned_count < page.page_size

    async def _fetch_page(self, offset: int, window: TimeWindow) -> FetchOutcome:
        """
        Fetch one page, retrying transient failures within the request budget.

        Every attempt counts as one request against the budget.
        """
        fetcher = self.source.fetcher
        page_size = self.source.page_size
        attempts = 0

        def count_attempt(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt
            self.budget.record_request()

        async def attempt() -> FetchOutcome:
            outcome = await fetcher.fetch(offset, page_size, window)
            if isinstance(outcome, FetchFailure) and outcome.retryable:
                raise outcome.error
            return outcome

        policy = self.retry_policy
        remaining = self.budget.remaining_requests
        if remaining is not None and policy.max_attempts > remaining:
            policy = replace(policy, max_attempts=max(1, remaining))

        try:
            outcome = await policy.run(attempt, retry_on=(TransientFetchError,), on_attempt=count_attempt)
        except TransientFetchError as e:
            outcome = FetchFailure(error=e, offset=offset)

        if isinstance(outcome, FetchFailure):
            outcome.attempts = attempts
        return outcome

    async def _mirror(self, records, result: CycleResult) -> None:
        if self.mirror is None or not records:
            return
        try:
            report = await self.mirror.upsert_batch(records)
        except Exception as e:
            logger.warning(f"Document mirror failed for {self.source.source_id}: {e}")
            result.mirror_failed += len(records)
            return
        result.mirror_failed += report.failure_count

    def _transition(self, result: CycleResult, state: CycleState) -> None:
        logger.debug(
            f"{self.source.source_id}: {result.state.value} → {state.value}",
            extra=self._log_context(result, state)
        )
        result.state = state

    def _fail(self, result: CycleResult, error: IngestionError) -> None:
        result.state = CycleState.FAILED
        result.error = error.message
        result.error_details = error.to_dict()
        logger.error(
            f"Fetch cycle for {self.source.source_id} failed at offset {result.offset_after}: {error.message}",
            extra={**self._log_context(result), "error_context": error.to_dict()}
        )

    def _log_context(self, result: CycleResult, state: Optional[CycleState] = None) -> Dict[str, Any]:
        return {
            "source_id": self.source.source_id,
            "run_id": str(result.run_id),
            "state": (state or result.state).value,
            "offset": result.offset_after,
        }

    # ------------------------------------------------------------------
    # Bookkeeping (never changes the cycle outcome)
    # ------------------------------------------------------------------

    async def _release_lease(self, owner: str) -> None:
        try:
            await self.checkpoints.release_lease(self.source.source_id, owner)
        except CheckpointWriteError as e:
            logger.warning(
                f"Could not release lease for {self.source.source_id}; it expires after "
                f"{self.lease_ttl_seconds}s: {e.message}"
            )

    async def _record_outcome(self, result: CycleResult) -> None:
        try:
            await self.checkpoints.record_outcome(self.source.source_id, result.state, result.error)
        except CheckpointWriteError as e:
            logger.warning(f"Could not record outcome for {self.source.source_id}: {e.message}")

    async def _record_run_start(self, result: CycleResult) -> None:
        try:
            await self.db.execute(
                insert(FetchRun).values(
                    run_id=result.run_id,
                    source_id=result.source_id,
                    started_at=result.started_at,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not record start of run {result.run_id}: {e}")

    async def _record_run_end(self, result: CycleResult) -> None:
        try:
            await self.db.execute(
                update(FetchRun)
                .where(FetchRun.run_id == result.run_id)
                .values(
                    state=result.state,
                    completed_at=result.completed_at,
                    duration_seconds=result.duration_seconds,
                    pages_fetched=result.pages_fetched,
                    requests_made=result.requests_made,
                    records_fetched=result.records_fetched,
                    records_stored=result.records_stored,
                    records_invalid=result.records_invalid,
                    records_failed=result.records_failed,
                    total_count=result.total_count,
                    offset_before=result.offset_before,
                    offset_after=result.offset_after,
                    window_start=result.window.start if result.window else None,
                    window_end=result.window.end if result.window else None,
                    error_message=result.error,
                    error_details=result.error_details,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not record end of run {result.run_id}: {e}")
