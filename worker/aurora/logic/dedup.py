"""
Notification Deduplication for aurora alerts.

Implements the ``DedupPolicy`` which decides, for one alert and one cycle,
whether the current aurora value should produce a notification given the
alert's thresholds and the last notification sent.

Decision Logic:
    1. ``current_value < threshold`` -> SUPPRESS, regardless of prior state.
    2. No prior notification -> NOTIFY.
    3. Prior notification at least ``NOTIFICATION_EXPIRY`` old -> NOTIFY,
       even if the value dropped.
    4. Rise over the last notified value ``>= increment_threshold`` -> NOTIFY.
    5. Otherwise -> SUPPRESS.

Per alert this is a two-state machine: Unnotified -> Notified on the first
qualifying cycle, then Notified -> Notified on each further NOTIFY. It never
returns to Unnotified.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from worker.aurora.models import Decision, NotificationState

logger = logging.getLogger(__name__)

NOTIFICATION_EXPIRY = timedelta(hours=12)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DedupPolicy:
    """Pure notify/suppress decision. Holds no state between calls.

    Parameters
    ----------
    expiry : timedelta
        Age after which the previous notification no longer suppresses a new
        one. Defaults to ``NOTIFICATION_EXPIRY`` (12 hours).
    """

    def __init__(self, expiry: timedelta = NOTIFICATION_EXPIRY) -> None:
        self._expiry = expiry

    def decide(
        self,
        current_value: int,
        threshold: int,
        increment_threshold: int,
        prior_state: NotificationState | None,
        now: datetime,
    ) -> Decision:
        """Decide whether to notify for the current observation.

        Parameters
        ----------
        current_value : int
            Aurora value of the nearest sample this cycle.
        threshold : int
            Alert trigger threshold.
        increment_threshold : int
            Minimum rise over the last notified value to re-notify early.
        prior_state : NotificationState or None
            Last notification for the alert, None if never notified.
        now : datetime
            Cycle timestamp. Naive datetimes are treated as UTC.

        Returns
        -------
        Decision
            ``Decision.NOTIFY`` or ``Decision.SUPPRESS``.
        """
        if current_value < threshold:
            return Decision.SUPPRESS

        if prior_state is None:
            return Decision.NOTIFY

        elapsed = _as_utc(now) - _as_utc(prior_state.last_notified_at)
        if elapsed >= self._expiry:
            logger.debug(
                "Notification expired for alert=%d (elapsed=%s)",
                prior_state.alert_id,
                elapsed,
            )
            return Decision.NOTIFY

        increase = current_value - prior_state.last_notified_value
        if increase >= increment_threshold:
            return Decision.NOTIFY

        logger.debug(
            "Suppressing alert=%d: current=%d, last=%d, increase=%d < %d, "
            "elapsed=%s",
            prior_state.alert_id,
            current_value,
            prior_state.last_notified_value,
            increase,
            increment_threshold,
            elapsed,
        )
        return Decision.SUPPRESS
