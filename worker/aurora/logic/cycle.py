"""
Evaluation Cycle for the Aurora Alert worker.

Implements ``EvaluationCycle.run`` which performs one pass over every alert
against a freshly fetched aurora grid.

Cycle Steps:
    1. Fetch the grid once. A ``FetchError`` or an empty grid aborts the
       cycle: no history is written and no notifications are sent.
    2. List every alert with its notification state.
    3. For each alert, independently:
       a. Find the nearest grid sample; skip the alert if there is none.
       b. Append the sample value to history (always, best effort).
       c. Apply the ``DedupPolicy``.
       d. On NOTIFY: dispatch, then record the notification state. A failed
          dispatch leaves the state untouched so the alert can fire again.
    4. A failure while processing one alert is logged and never stops the
       remaining alerts.

Delivery is at-least-once: if the state write fails after a successful
dispatch, the next cycle may notify again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from worker.aurora.dispatcher import DispatchError, NotificationDispatcher
from worker.aurora.geocoding import UNKNOWN_LOCATION, PlaceNameResolver
from worker.aurora.logic.dedup import DedupPolicy
from worker.aurora.logic.matcher import nearest
from worker.aurora.models import (
    Alert,
    CycleResult,
    Decision,
    GridSnapshot,
    NotificationContext,
    NotificationState,
)
from worker.aurora.reader import FetchError, GridSource
from worker.aurora.repo import AlertRepository, HistoryStore, RepositoryError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationCycle:
    """Runs one fetch/match/decide/notify pass over all alerts.

    Parameters
    ----------
    source : GridSource
        Aurora grid source, fetched once per run.
    repo : AlertRepository
        Alert definitions and notification state.
    history : HistoryStore
        Per-alert value history.
    dispatcher : NotificationDispatcher
        Hand-off for triggered notifications.
    policy : DedupPolicy or None
        Notify/suppress policy. Defaults to ``DedupPolicy()``.
    resolver : PlaceNameResolver or None
        Resolves the location label for notifications. If None, notifications
        carry ``UNKNOWN_LOCATION``.
    clock : callable or None
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        source: GridSource,
        repo: AlertRepository,
        history: HistoryStore,
        dispatcher: NotificationDispatcher,
        policy: DedupPolicy | None = None,
        resolver: PlaceNameResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._repo = repo
        self._history = history
        self._dispatcher = dispatcher
        self._policy = policy or DedupPolicy()
        self._resolver = resolver
        self._clock = clock or _utcnow

    def run(self) -> CycleResult:
        """Execute one evaluation cycle.

        Returns
        -------
        CycleResult
            Counters for the run. ``aborted`` is True when the grid could not
            be loaded or the alerts could not be listed.
        """
        now = self._clock()
        result = CycleResult(started_at=now)
        logger.info("Starting alert check at %s", now.isoformat())

        # Step 1: Fetch grid
        try:
            grid = self._source.fetch()
        except FetchError as exc:
            logger.error("Aborting alert check: aurora grid fetch failed: %s", exc)
            return self._finish(result, aborted=True)

        if len(grid) == 0:
            logger.warning("Aborting alert check: aurora grid has no samples")
            return self._finish(result, aborted=True)

        # Step 2: List alerts
        try:
            alerts = self._repo.list_active()
        except RepositoryError as exc:
            logger.error("Aborting alert check: could not list alerts: %s", exc)
            return self._finish(result, aborted=True)

        logger.info("Checking %d alerts against %d samples", len(alerts), len(grid))

        # Step 3: Evaluate each alert in isolation
        for alert, state in alerts:
            result.alerts_checked += 1
            try:
                self._evaluate_alert(alert, state, grid, now, result)
            except Exception:
                result.failed += 1
                logger.exception("Error checking alert %d", alert.id)

        self._finish(result)
        logger.info(
            "Alert check completed: checked=%d, notified=%d, suppressed=%d, "
            "skipped=%d, dispatch_failures=%d, failed=%d",
            result.alerts_checked,
            result.notifications_sent,
            result.suppressed,
            result.skipped,
            result.dispatch_failures,
            result.failed,
        )
        return result

    def _finish(self, result: CycleResult, aborted: bool = False) -> CycleResult:
        result.aborted = aborted
        result.finished_at = self._clock()
        return result

    def _evaluate_alert(
        self,
        alert: Alert,
        state: NotificationState | None,
        grid: GridSnapshot,
        now: datetime,
        result: CycleResult,
    ) -> None:
        # Step 3a: Match
        match = nearest(grid, alert.latitude, alert.longitude)
        if match is None:
            logger.warning("No aurora data found for alert %d", alert.id)
            result.skipped += 1
            return

        current_value = match.value

        # Step 3b: History is recorded regardless of the decision
        try:
            self._history.append(alert.id, current_value, now)
            result.history_appended += 1
        except RepositoryError as exc:
            logger.warning(
                "Failed to record history for alert %d: %s", alert.id, exc
            )

        # Step 3c: Decide
        decision = self._policy.decide(
            current_value,
            alert.threshold,
            alert.increment_threshold,
            state,
            now,
        )
        if decision is Decision.SUPPRESS:
            logger.debug(
                "Skipping alert %d: current=%d, threshold=%d, last=%s",
                alert.id,
                current_value,
                alert.threshold,
                state.last_notified_value if state else None,
            )
            result.suppressed += 1
            return

        # Step 3d: Notify, then persist state only after a successful send
        context = NotificationContext(
            value=current_value,
            threshold=alert.threshold,
            latitude=alert.latitude,
            longitude=alert.longitude,
            location_label=self._resolve_label(alert),
        )
        try:
            self._dispatcher.dispatch(alert.id, alert.email, context)
        except DispatchError as exc:
            logger.error(
                "Failed to send notification for alert %d: %s", alert.id, exc
            )
            result.dispatch_failures += 1
            return

        result.notifications_sent += 1
        logger.info(
            "Notification sent for alert %d (value: %d, threshold: %d)",
            alert.id,
            current_value,
            alert.threshold,
        )

        try:
            self._repo.record_notification(alert.id, current_value, now)
        except RepositoryError as exc:
            logger.error(
                "Notification sent for alert %d but state update failed; "
                "it may be sent again next cycle: %s",
                alert.id,
                exc,
            )

    def _resolve_label(self, alert: Alert) -> str:
        if self._resolver is None:
            return UNKNOWN_LOCATION
        return self._resolver.resolve(alert.latitude, alert.longitude)
