"""Recompute jobs and the read operations served from the published snapshot.

At most one recompute runs at a time. A second request while one holds the
lock is rejected with :class:`RecomputeInProgress` rather than queued; the
caller can poll the running job and retry. Reads never take the lock.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

import pandas as pd

from uph.config import EngineConfig
from uph.engine.models import AGGREGATE_COLUMNS, ANOMALY_COLUMNS, STATISTIC_COLUMNS
from uph.engine.outliers import detect_cohort_outliers
from uph.engine.pipeline import run_pipeline
from uph.engine.registries import CycleFeed, MORegistry, OperatorRegistry
from uph.engine.store import Snapshot, UphStore
from uph.engine.windows import apply_filters, compute_uph_statistics, no_data_row, select_window
from uph.errors import RecomputeCancelled, RecomputeInProgress, UnknownJob, UphEngineError
from uph.utils.types import Clock, JobState, RejectionReason, WorkCenterCategory, parse_category

logger = logging.getLogger(__name__)

KEEP_FINISHED_JOBS = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class JobHandle:
    job_id: str


@dataclass
class JobStatus:
    job_id: str
    state: JobState = JobState.PENDING
    windows: tuple[int, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    fatal: bool = False
    counters: dict[str, int] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state in (JobState.PENDING, JobState.RUNNING)


@dataclass
class _Job:
    status: JobStatus
    cancelled: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None

    def check_cancel(self) -> None:
        if self.cancelled.is_set():
            raise RecomputeCancelled(f"Recompute {self.status.job_id} cancelled")


class RecomputeService:
    """Owns the single-flight recompute lock and serves queries from the store."""

    def __init__(
        self,
        feed: CycleFeed,
        mo_registry: MORegistry,
        operator_registry: OperatorRegistry,
        config: EngineConfig | None = None,
        store: UphStore | None = None,
        clock: Clock | None = None,
        keep_finished_jobs: int = KEEP_FINISHED_JOBS,
    ):
        self.feed = feed
        self.mo_registry = mo_registry
        self.operator_registry = operator_registry
        self.config = config or EngineConfig()
        self.store = store or UphStore(self.config.store)
        self.clock = clock or _utcnow
        self.keep_finished_jobs = keep_finished_jobs

        self._run_lock = threading.Lock()
        self._jobs_lock = threading.Lock()
        self._jobs: dict[str, _Job] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="uph-recompute")

    def __enter__(self) -> "RecomputeService":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -- recompute -----------------------------------------------------------

    def recompute(self, window_days: int | None = None, *, background: bool = True) -> JobHandle:
        """Start a full rebuild and return its handle.

        ``window_days`` limits which windows get precomputed statistics; all
        aggregates are always rebuilt.
        """
        windows = self.config.windows if window_days is None else (self.config.check_window(window_days),)
        if not self._run_lock.acquire(blocking=False):
            with self._jobs_lock:
                running = [j.status.job_id for j in self._jobs.values() if j.status.is_running]
            raise RecomputeInProgress(f"Recompute already running: {', '.join(running) or 'unknown'}")

        job = _Job(JobStatus(job_id=uuid.uuid4().hex[:12], windows=windows))
        with self._jobs_lock:
            self._jobs[job.status.job_id] = job
            self._forget_finished()
        logger.info(f"Recompute {job.status.job_id} accepted (windows={list(windows)})")

        if not background:
            self._run(job)
            return JobHandle(job.status.job_id)

        try:
            job.future = self._executor.submit(self._run, job)
        except RuntimeError:
            job.status.state = JobState.FAILED
            job.status.error = "executor is shut down"
            job.status.fatal = True
            self._run_lock.release()
            raise
        return JobHandle(job.status.job_id)

    def _forget_finished(self) -> None:
        """Drop the oldest finished jobs beyond ``keep_finished_jobs``; caller holds the jobs lock."""
        finished = [job_id for job_id, j in self._jobs.items() if not j.status.is_running]
        for job_id in finished[:max(len(finished) - self.keep_finished_jobs, 0)]:
            del self._jobs[job_id]

    def _run(self, job: _Job) -> None:
        status = job.status
        try:
            status.state = JobState.RUNNING
            status.started_at = self.clock()
            result = run_pipeline(
                self.feed,
                self.mo_registry,
                self.operator_registry,
                self.config,
                as_of=status.started_at,
                windows=status.windows,
                cancel_check=job.check_cancel,
            )
            snapshot = Snapshot.from_result(status.job_id, result)
            if self.config.store.expectations_gate:
                from uph.validation.expectations import run_publish_gate

                run_publish_gate(snapshot, self.config.outliers)
            job.check_cancel()
            self.store.publish(snapshot)
            status.counters = dict(result.counters)
            status.state = JobState.SUCCESS
        except RecomputeCancelled as exc:
            status.state = JobState.CANCELLED
            status.error = str(exc)
            status.fatal = exc.fatal
            logger.warning(f"Recompute {status.job_id} cancelled; published snapshot unchanged")
        except UphEngineError as exc:
            status.state = JobState.FAILED
            status.error = str(exc)
            status.fatal = exc.fatal
            logger.error(f"Recompute {status.job_id} failed: {exc}")
        except Exception as exc:
            status.state = JobState.FAILED
            status.error = f"{type(exc).__name__}: {exc}"
            status.fatal = True
            logger.exception(f"Recompute {status.job_id} crashed")
        finally:
            status.completed_at = self.clock()
            self._run_lock.release()

    def _job(self, handle: JobHandle | str) -> _Job:
        job_id = handle.job_id if isinstance(handle, JobHandle) else handle
        with self._jobs_lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJob(job_id)
        return job

    def job_status(self, handle: JobHandle | str) -> JobStatus:
        return replace(self._job(handle).status)

    def wait(self, handle: JobHandle | str, timeout: float | None = None) -> JobStatus:
        job = self._job(handle)
        if job.future is not None:
            job.future.result(timeout=timeout)
        return self.job_status(handle)

    def cancel(self, handle: JobHandle | str) -> bool:
        """Request cancellation; it takes effect at the next stage boundary."""
        job = self._job(handle)
        if not job.status.is_running:
            return False
        job.cancelled.set()
        logger.info(f"Cancellation requested for recompute {job.status.job_id}")
        return True

    # -- reads ---------------------------------------------------------------

    def query_uph(
        self,
        product_name: str | None = None,
        category: str | WorkCenterCategory | None = None,
        operator_id: int | None = None,
        window_days: int | None = None,
    ) -> pd.DataFrame:
        """Statistics for the window from the last published snapshot.

        Never raises for missing data: an empty result is a single row with
        ``data_available=False`` and ``reason="no data"``.
        """
        if window_days is None:
            window_days = self.config.default_window
        window_days = self.config.check_window(window_days)
        category = parse_category(category)
        snapshot = self.store.current

        if snapshot is None:
            stats = pd.DataFrame(columns=STATISTIC_COLUMNS)
            version = self.config.methodology_version
        elif window_days in snapshot.windows:
            stats = snapshot.statistics[snapshot.statistics["window_days"] == window_days]
            stats = apply_filters(stats, product_name, category, operator_id)
            version = snapshot.methodology_version
        else:
            stats = compute_uph_statistics(
                snapshot.observations,
                snapshot.anomalies,
                window_days,
                snapshot.as_of,
                snapshot.methodology_version,
                product_name=product_name,
                category=category,
                operator_id=operator_id,
            )
            version = snapshot.methodology_version

        if stats.empty:
            row = no_data_row(
                window_days,
                version,
                product_name=product_name,
                category=category.value if category else None,
                operator_id=operator_id,
            )
            return pd.DataFrame([row], columns=STATISTIC_COLUMNS)
        return stats.reset_index(drop=True)

    def list_anomalies(
        self,
        window_days: int | None = None,
        reasons: list[str | RejectionReason] | None = None,
        include_cohort: bool = True,
    ) -> pd.DataFrame:
        """Rejected aggregates with review context, optionally windowed.

        Cohort outliers are computed over the same window's observations and
        are marked ``excluded=False``.
        """
        snapshot = self.store.current
        if snapshot is None:
            return pd.DataFrame(columns=ANOMALY_COLUMNS)
        _check_audit_window(window_days)

        frames = [select_window(snapshot.anomalies, window_days, snapshot.as_of)]
        if include_cohort:
            observations = select_window(snapshot.observations, window_days, snapshot.as_of)
            frames.append(detect_cohort_outliers(observations, self.config.outliers))
        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame(columns=ANOMALY_COLUMNS)

        anomalies = pd.concat(frames, ignore_index=True)
        if reasons:
            wanted = {str(r) for r in reasons}
            anomalies = anomalies[anomalies["reason"].isin(wanted)]
        return anomalies.reindex(columns=ANOMALY_COLUMNS).reset_index(drop=True)

    def list_observations(self, window_days: int | None = None) -> pd.DataFrame:
        """Surviving per-MO aggregates; unbounded when no window is given."""
        snapshot = self.store.current
        if snapshot is None:
            return pd.DataFrame(columns=AGGREGATE_COLUMNS)
        _check_audit_window(window_days)
        return select_window(snapshot.observations, window_days, snapshot.as_of).reset_index(drop=True)


def _check_audit_window(window_days: int | None) -> None:
    if window_days is not None and window_days <= 0:
        raise ValueError(f"window_days must be positive, got {window_days}")
