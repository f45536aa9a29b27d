"""
Domain models for the Aurora Alert worker.

Pydantic v2 models for the persisted alert configuration, the per-alert
notification state, the history table, and the transient grid parsed from the
OVATION aurora feed.

Column-backed models use the same field names as the PostgreSQL columns they
are loaded from (see ``repo.py``), with the exception of ``Alert.email`` which
is joined in from the ``users`` table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Sequence

import numpy as np
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Decision(str, Enum):
    """Outcome of the deduplication policy for one alert in one cycle."""

    NOTIFY = "notify"
    SUPPRESS = "suppress"


# ---------------------------------------------------------------------------
# Persisted Entities
# ---------------------------------------------------------------------------


class Alert(BaseModel):
    """A user-owned monitoring point.

    ``threshold`` is the minimum aurora probability at which the alert may
    fire. ``increment_threshold`` is the rise over the last notified value
    required to re-notify before the 12 hour expiry.
    """

    model_config = {"populate_by_name": True}

    id: int
    user_id: int
    email: str

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)

    threshold: int = Field(ge=1, le=100)
    increment_threshold: int = Field(default=1, ge=1, le=50)

    created_at: datetime | None = None
    updated_at: datetime | None = None


class NotificationState(BaseModel):
    """Last notification sent for an alert.

    Mirrors the ``alert_notification_state`` table. Absent until the first
    notification fires for the alert.
    """

    model_config = {"populate_by_name": True}

    alert_id: int
    last_notified_value: int
    last_notified_at: datetime


class HistoryRecord(BaseModel):
    """One observed aurora value for an alert. Mirrors ``aurora_history``."""

    model_config = {"populate_by_name": True}

    alert_id: int
    value: int
    recorded_at: datetime


# ---------------------------------------------------------------------------
# Feed Data
# ---------------------------------------------------------------------------


class GridSample(BaseModel):
    """A single ``[longitude, latitude, value]`` entry from the feed."""

    model_config = {"frozen": True}

    longitude: float
    latitude: float
    value: int = Field(ge=0)


class GridSnapshot:
    """The full sample set fetched from the feed for one evaluation cycle.

    Samples are held as parallel numpy arrays so the matcher can compute
    distances for every alert without materialising a model per sample.
    Indexing and iteration still yield ``GridSample`` instances, in feed order.
    """

    def __init__(
        self,
        longitudes: np.ndarray,
        latitudes: np.ndarray,
        values: np.ndarray,
        observation_time: datetime | None = None,
        forecast_time: datetime | None = None,
    ) -> None:
        if not (len(longitudes) == len(latitudes) == len(values)):
            raise ValueError(
                "GridSnapshot arrays must have equal length: "
                f"lon={len(longitudes)}, lat={len(latitudes)}, "
                f"value={len(values)}"
            )
        self.longitudes = np.asarray(longitudes, dtype=np.float64)
        self.latitudes = np.asarray(latitudes, dtype=np.float64)
        self.values = np.asarray(values, dtype=np.int64)
        self.observation_time = observation_time
        self.forecast_time = forecast_time

    @classmethod
    def from_samples(
        cls,
        samples: Sequence[GridSample],
        observation_time: datetime | None = None,
        forecast_time: datetime | None = None,
    ) -> GridSnapshot:
        return cls(
            longitudes=np.array([s.longitude for s in samples], dtype=np.float64),
            latitudes=np.array([s.latitude for s in samples], dtype=np.float64),
            values=np.array([s.value for s in samples], dtype=np.int64),
            observation_time=observation_time,
            forecast_time=forecast_time,
        )

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __getitem__(self, index: int) -> GridSample:
        return GridSample(
            longitude=float(self.longitudes[index]),
            latitude=float(self.latitudes[index]),
            value=int(self.values[index]),
        )

    def __iter__(self) -> Iterator[GridSample]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return (
            f"GridSnapshot(samples={len(self)}, "
            f"observation_time={self.observation_time}, "
            f"forecast_time={self.forecast_time})"
        )


# ---------------------------------------------------------------------------
# Output: Notifications
# ---------------------------------------------------------------------------


class NotificationContext(BaseModel):
    """Structured data handed to the dispatcher for a triggered alert.

    The notification subsystem owns templates and delivery; the worker only
    supplies these values.
    """

    model_config = {"populate_by_name": True}

    value: int
    threshold: int
    latitude: float
    longitude: float
    location_label: str = "Unknown Location"


class NotificationEvent(BaseModel):
    """Message body published to the notification queue."""

    model_config = {"populate_by_name": True}

    id: str  # "notif_..."
    alert_id: int
    recipient: str
    context: NotificationContext
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


# ---------------------------------------------------------------------------
# Cycle Outcome
# ---------------------------------------------------------------------------


class CycleResult(BaseModel):
    """Counters describing one evaluation cycle, used for logging and tests."""

    started_at: datetime
    finished_at: datetime | None = None

    # True when the cycle stopped before evaluating any alert
    aborted: bool = False

    alerts_checked: int = 0
    history_appended: int = 0
    notifications_sent: int = 0
    suppressed: int = 0
    skipped: int = 0
    dispatch_failures: int = 0
    failed: int = 0
