"""
Comparison runs: single URL and bulk (up to six URLs).

Each job measures the optimized and baseline variant of its URL on every
requested device. Bulk runs start jobs on a stagger; the first job that
fails flips the run into safe mode, and every job that has not started yet
is deferred to a strictly serialized pass with growing delays.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from speedsnapshot.config import Config
from speedsnapshot.identity import make_group_id
from speedsnapshot.models import (
    BLOCKING_DETECTED,
    ComparisonPair,
    DeviceStrategy,
    Job,
    JobOutcome,
    JobState,
    MeasurementRequest,
    SummaryRow,
)
from speedsnapshot.utils.urls import add_query_param

logger = logging.getLogger(__name__)


def baseline_url(url: str, param: str = "nonitro") -> str:
    """The same page with the optimization switched off."""
    return add_query_param(url, param)


class SafeModeLatch:
    """
    One-way flag shared by the jobs of a bulk run.

    ``trip`` is a locked check-and-set: however many jobs fail at nearly the
    same moment, exactly one of them wins the transition.
    """

    def __init__(self):
        self._tripped = False
        self._lock = asyncio.Lock()

    @property
    def tripped(self) -> bool:
        return self._tripped

    async def trip(self) -> bool:
        """Set the flag. Returns True only for the caller that set it."""
        async with self._lock:
            if self._tripped:
                return False
            self._tripped = True
            return True


class ComparisonRunner:
    """Runs comparison jobs against a SmartFetcher and persists summaries."""

    def __init__(
        self,
        fetcher,
        store=None,
        api_key: Optional[str] = None,
        config: Optional[Config] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            fetcher: Object with ``async fetch(MeasurementRequest)``
            store: Report store with ``save_report(row)``; None disables saving
            api_key: PSI API key placed on every request
            config: Timing and limits (defaults if omitted)
            sleep: Awaitable used for stagger and safe-mode delays
        """
        self.fetcher = fetcher
        self.store = store
        self.api_key = api_key
        self.config = config or Config()
        self._sleep = sleep
        self._pending_writes: Set[asyncio.Task] = set()

    async def run_job(self, job: Job, save: bool = True) -> Job:
        """
        Measure one URL on every requested device.

        All (variant, device) fetches run concurrently. With ``save`` a
        summary row is written for each device that produced any result.
        """
        optimized = job.page_url.strip()
        baseline = baseline_url(optimized, self.config.baseline_param)

        async def measure(strategy: DeviceStrategy) -> None:
            with_result, without_result = await asyncio.gather(
                self.fetcher.fetch(MeasurementRequest(optimized, strategy, self.api_key)),
                self.fetcher.fetch(MeasurementRequest(baseline, strategy, self.api_key)),
            )
            pair = ComparisonPair(
                optimized_url=optimized,
                baseline_url=baseline,
                optimized=with_result,
                baseline=without_result,
            )
            job.results[strategy] = pair

            if save and pair.any:
                row = SummaryRow.from_pair(
                    optimized, strategy.value, pair, job.group_id, job.case_id
                )
                self._schedule_save(row)

        await asyncio.gather(*(measure(strategy) for strategy in job.strategies))
        return job

    async def run_single(
        self,
        url: str,
        strategies: Iterable[DeviceStrategy],
        case_id: Optional[str] = None,
    ) -> JobOutcome:
        """Run one URL with persistence and return its outcome."""
        strategies = self._check_strategies(strategies)
        job = Job(
            index=0,
            page_url=url,
            group_id=make_group_id(),
            case_id=case_id,
            strategies=strategies,
        )
        await self._execute(job, save=True)
        self._finalize(job)
        await self._flush_writes()
        return JobOutcome.from_job(job)

    async def run_bulk(
        self,
        urls: Sequence[str],
        strategies: Iterable[DeviceStrategy],
        case_id_base: Optional[str] = None,
    ) -> Dict[str, JobOutcome]:
        """
        Run up to ``config.max_bulk_urls`` URLs.

        Args:
            urls: Page URLs (duplicates are collapsed)
            strategies: Devices to measure
            case_id_base: Case id of the submission; job i gets ``{base}-{i+1}``

        Returns:
            Outcome per URL, in submission order
        """
        pages = list(dict.fromkeys(u.strip() for u in urls if u and u.strip()))
        if not pages:
            raise ValueError("At least one URL is required")
        if len(pages) > self.config.max_bulk_urls:
            raise ValueError(
                f"At most {self.config.max_bulk_urls} URLs per bulk run (got {len(pages)})"
            )
        strategies = self._check_strategies(strategies)

        group_base = make_group_id()
        jobs = [
            Job(
                index=i,
                page_url=page_url,
                group_id=f"{group_base}-{i + 1}",
                case_id=f"{case_id_base}-{i + 1}" if case_id_base else None,
                strategies=strategies,
            )
            for i, page_url in enumerate(pages)
        ]

        latch = SafeModeLatch()
        safe_queue: List[Job] = []

        await asyncio.gather(*(self._run_concurrent(job, latch, safe_queue) for job in jobs))

        outcomes: Dict[str, JobOutcome] = {}
        for job in jobs:
            if job.state is not JobState.SKIPPED:
                self._finalize(job)
                outcomes[job.page_url] = JobOutcome.from_job(job)

        if safe_queue:
            safe_queue.sort(key=lambda j: j.index)
            await self._drain_safe_queue(safe_queue, outcomes)

        await self._flush_writes()

        failed = sum(1 for outcome in outcomes.values() if outcome.error)
        logger.info(f"[BULK] Finished {len(jobs)} pages: {len(jobs) - failed} ok, {failed} failed")
        return {job.page_url: outcomes[job.page_url] for job in jobs}

    async def _run_concurrent(self, job: Job, latch: SafeModeLatch, safe_queue: List[Job]) -> None:
        """Concurrent pass for one job: stagger, then run or defer."""
        if job.index:
            await self._sleep(job.index * self.config.stagger_seconds)

        if latch.tripped:
            job.state = JobState.SKIPPED
            safe_queue.append(job)
            logger.info(f"[BULK] Safe mode active - deferring {job.page_url}")
            return

        await self._execute(job, save=True)

        if job.state is JobState.FAILED and await latch.trip():
            logger.warning(
                f"[BULK] First failure detected at {job.page_url} - "
                f"switching to safe mode for remaining pages..."
            )

    async def _drain_safe_queue(self, queue: List[Job], outcomes: Dict[str, JobOutcome]) -> None:
        """Re-run deferred jobs one at a time, without persistence."""
        logger.info(f"[BULK] Processing {len(queue)} pages in safe mode (one by one)...")

        for k, job in enumerate(queue):
            delay = self.config.safe_mode_base_delay + k * self.config.safe_mode_delay_step
            logger.info(
                f"[BULK] Waiting {delay:g}s before {job.page_url} ({k + 1}/{len(queue)})"
            )
            await self._sleep(delay)

            job.state = JobState.RETRIED
            job.results = {}
            # Its concurrent-pass slot may already have been written
            await self._execute(job, save=False)
            self._finalize(job)

            if job.state is JobState.SUCCEEDED:
                logger.info(f"[BULK] Safe mode succeeded for {job.page_url}")
            else:
                logger.info(f"[BULK] Safe mode failed for {job.page_url} - likely website blocking")
            outcomes[job.page_url] = JobOutcome.from_job(job, safe_mode=True)

    async def _execute(self, job: Job, save: bool) -> None:
        """Run a job and settle its state; exceptions mark it failed."""
        if job.state is not JobState.RETRIED:
            job.state = JobState.RUNNING
        try:
            await self.run_job(job, save=save)
        except Exception as e:
            error_msg = str(e) if str(e) else type(e).__name__
            logger.error(f"[BULK] Error processing {job.page_url}: {error_msg}")
            job.state = JobState.FAILED
            return
        job.state = JobState.SUCCEEDED if job.succeeded else JobState.FAILED

    @staticmethod
    def _finalize(job: Job) -> None:
        if job.state is JobState.FAILED:
            job.error = BLOCKING_DETECTED

    @staticmethod
    def _check_strategies(strategies: Iterable[DeviceStrategy]) -> List[DeviceStrategy]:
        result = list(dict.fromkeys(DeviceStrategy(s) for s in strategies))
        if not result:
            raise ValueError("At least one device strategy is required")
        return result

    def _schedule_save(self, row: SummaryRow) -> None:
        """Persist in the background; the job never waits on the store."""
        if self.store is None:
            return
        task = asyncio.get_running_loop().create_task(self._save(row))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _save(self, row: SummaryRow) -> None:
        try:
            report_id = await asyncio.to_thread(self.store.save_report, row.to_dict())
        except Exception as e:
            logger.warning(f"[BULK] Save failed for {row.url} ({row.device}): {e}")
            return
        logger.debug(f"[BULK] Saved report {report_id} for {row.url} ({row.device})")

    async def _flush_writes(self) -> None:
        """Wait for background writes started by this runner."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))
