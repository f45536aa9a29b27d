"""
Scheduler: periodic drivers for the evaluation cycle and history pruning.

Runs two interval jobs on an APScheduler ``BackgroundScheduler``:

    - ``evaluation``: runs ``EvaluationCycle.run`` every 5 minutes.
    - ``history-prune``: deletes history older than ``RETENTION_WINDOW``
      every 60 minutes.

Both fire once immediately on ``start()``. Each job is registered with
``max_instances=1`` and ``coalesce=True``, so a tick that arrives while the
previous run is still in progress is skipped rather than queued. The two jobs
may run concurrently with each other.

``run_evaluation()`` and ``run_prune()`` execute one tick synchronously and are
what the scheduled jobs call. Each holds a per-job lock, so a direct call (or a
run left over from a previous ``start()``) never overlaps a scheduled one.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from worker.aurora.logic.cycle import EvaluationCycle
from worker.aurora.repo import RETENTION_WINDOW, HistoryStore

logger = logging.getLogger(__name__)

DEFAULT_EVALUATION_INTERVAL_SECONDS = 300.0
DEFAULT_PRUNE_INTERVAL_SECONDS = 3600.0

EVALUATION_JOB_ID = "evaluation"
PRUNE_JOB_ID = "history-prune"


class Scheduler:
    """Owns the evaluation and pruning jobs and their lifecycle.

    Parameters
    ----------
    cycle : EvaluationCycle
        Cycle executed by the evaluation job.
    history : HistoryStore
        Store pruned by the pruning job.
    evaluation_interval_seconds : float
        Period of the evaluation job (default 300).
    prune_interval_seconds : float
        Period of the pruning job (default 3600).
    clock : callable or None
        Returns the current UTC time; used to compute the prune cutoff.
    """

    def __init__(
        self,
        cycle: EvaluationCycle,
        history: HistoryStore,
        evaluation_interval_seconds: float = DEFAULT_EVALUATION_INTERVAL_SECONDS,
        prune_interval_seconds: float = DEFAULT_PRUNE_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        for name, value in (
            ("evaluation_interval_seconds", evaluation_interval_seconds),
            ("prune_interval_seconds", prune_interval_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        self._cycle = cycle
        self._history = history
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.evaluation_interval_seconds = evaluation_interval_seconds
        self.prune_interval_seconds = prune_interval_seconds

        self._evaluation_lock = threading.Lock()
        self._prune_lock = threading.Lock()
        self.scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        """Register both jobs on a fresh background scheduler and start it."""
        if self.is_running:
            raise RuntimeError("Scheduler is already running")

        # A stopped BackgroundScheduler cannot reuse its thread pool
        scheduler = BackgroundScheduler(timezone="UTC")
        first_run = datetime.now(timezone.utc)
        scheduler.add_job(
            self.run_evaluation,
            IntervalTrigger(seconds=self.evaluation_interval_seconds),
            id=EVALUATION_JOB_ID,
            name=EVALUATION_JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_prune,
            IntervalTrigger(seconds=self.prune_interval_seconds),
            id=PRUNE_JOB_ID,
            name=PRUNE_JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
            replace_existing=True,
        )
        scheduler.start()
        self.scheduler = scheduler

        logger.info(
            "Started scheduler: alert checks every %ss, history cleanup every %ss",
            self.evaluation_interval_seconds,
            self.prune_interval_seconds,
        )

    def stop(self, wait: bool = True) -> None:
        """Shut the scheduler down.

        With ``wait=True`` an in-flight run is allowed to finish first.
        """
        if not self.is_running:
            return
        logger.info("Stopping scheduler")
        self.scheduler.shutdown(wait=wait)

    def run_evaluation(self) -> bool:
        """Run one evaluation tick now. Returns False if one is in progress."""
        return self._run_exclusive(
            EVALUATION_JOB_ID, self._evaluation_lock, self._cycle.run
        )

    def run_prune(self) -> bool:
        """Run one pruning tick now. Returns False if one is in progress."""
        return self._run_exclusive(PRUNE_JOB_ID, self._prune_lock, self.prune_history)

    def prune_history(self) -> int:
        """Delete history older than the retention window.

        Returns
        -------
        int
            Number of records deleted.
        """
        cutoff = self._clock() - RETENTION_WINDOW
        deleted = self._history.prune_older_than(cutoff)
        logger.info(
            "History cleanup removed %d records older than %s",
            deleted,
            cutoff.isoformat(),
        )
        return deleted

    def _run_exclusive(
        self, name: str, lock: threading.Lock, func: Callable[[], Any]
    ) -> bool:
        if not lock.acquire(blocking=False):
            logger.warning("Skipping %s run: previous run still in progress", name)
            return False
        try:
            func()
        except Exception:
            logger.exception("Unhandled error in scheduled job %s", name)
        finally:
            lock.release()
        return True
