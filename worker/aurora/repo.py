"""
Repository: Persistence layer for the Aurora Alert worker.

Two stores share one PostgreSQL database but own disjoint tables:

    - ``AlertRepository`` owns ``alerts`` (read-only here) and
      ``alert_notification_state``.
    - ``HistoryStore`` owns ``aurora_history``.

Uses ``psycopg`` (v3). Every operation opens a short-lived connection and
commits on exit, so each row-level write is atomic on its own; no
transaction spans more than one statement or any network call.

Key Design Decisions:
    - **Upsert Notification State**: ``record_notification`` is a single
      ``INSERT ... ON CONFLICT (alert_id) DO UPDATE`` rather than a
      read-then-write, so concurrent edits from the CRUD API cannot cause a
      lost update.
    - **Per-row Validation**: Alert rows that violate the model bounds are
      logged and skipped instead of failing the whole listing.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import psycopg
from psycopg.rows import dict_row
from pydantic import ValidationError

from worker.aurora.models import Alert, HistoryRecord, NotificationState

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

# History rows older than this are deleted by the hourly prune.
RETENTION_WINDOW = timedelta(hours=24)


class RepositoryError(Exception):
    """Raised when a database operation fails.

    Wraps the underlying ``psycopg.Error`` as ``__cause__``.
    """

    pass


# ---------------------------------------------------------------------------
# Repository Interfaces
# ---------------------------------------------------------------------------


class AlertRepository(ABC):
    """Abstract base for alert and notification-state access."""

    @abstractmethod
    def list_active(self) -> list[tuple[Alert, NotificationState | None]]:
        """Fetch every alert together with its notification state.

        Returns
        -------
        list[tuple[Alert, NotificationState | None]]
            One entry per alert, ordered by alert id. The state is None for
            alerts that have never notified.
        """
        ...

    @abstractmethod
    def record_notification(self, alert_id: int, value: int, at: datetime) -> None:
        """Create or overwrite the notification state for an alert."""
        ...


class HistoryStore(ABC):
    """Abstract base for the append-only aurora history."""

    @abstractmethod
    def append(self, alert_id: int, value: int, at: datetime) -> None:
        """Insert one history record. No deduplication."""
        ...

    @abstractmethod
    def prune_older_than(self, cutoff: datetime) -> int:
        """Delete records with ``recorded_at < cutoff``.

        Returns
        -------
        int
            Number of rows deleted.
        """
        ...

    @abstractmethod
    def fetch_recent(self, alert_id: int, since: datetime) -> list[HistoryRecord]:
        """Fetch records for an alert at or after ``since``, oldest first."""
        ...


# ---------------------------------------------------------------------------
# SQL Constants
# ---------------------------------------------------------------------------

_LIST_ACTIVE_SQL = """\
SELECT
    a.id,
    a.user_id,
    u.email,
    a.latitude,
    a.longitude,
    a.threshold,
    a.increment_threshold,
    a.created_at,
    a.updated_at,
    ans.last_notified_value,
    ans.last_notified_at
FROM alerts a
INNER JOIN users u ON a.user_id = u.id
LEFT JOIN alert_notification_state ans ON a.id = ans.alert_id
ORDER BY a.id
"""

_UPSERT_NOTIFICATION_STATE_SQL = """\
INSERT INTO alert_notification_state (
    alert_id,
    last_notified_value,
    last_notified_at
) VALUES (%s, %s, %s)
ON CONFLICT (alert_id) DO UPDATE SET
    last_notified_value = EXCLUDED.last_notified_value,
    last_notified_at = EXCLUDED.last_notified_at
"""

_INSERT_HISTORY_SQL = """\
INSERT INTO aurora_history (
    alert_id,
    aurora_value,
    recorded_at
) VALUES (%s, %s, %s)
"""

_PRUNE_HISTORY_SQL = """\
DELETE FROM aurora_history
WHERE recorded_at < %s
"""

_FETCH_HISTORY_SQL = """\
SELECT
    alert_id,
    aurora_value,
    recorded_at
FROM aurora_history
WHERE alert_id = %s
  AND recorded_at >= %s
ORDER BY recorded_at ASC, id ASC
"""


# ---------------------------------------------------------------------------
# Row -> Model Mapping Helpers
# ---------------------------------------------------------------------------


def _row_to_alert(row: dict) -> Alert:
    """Convert a joined alert row (dict) to an Alert model.

    ``increment_threshold`` may be NULL on rows created before the column
    existed; it falls back to the model default.
    """
    fields = {
        "id": row["id"],
        "user_id": row["user_id"],
        "email": row["email"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "threshold": row["threshold"],
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }
    if row.get("increment_threshold") is not None:
        fields["increment_threshold"] = row["increment_threshold"]
    return Alert(**fields)


def _row_to_notification_state(row: dict) -> NotificationState | None:
    """Extract the LEFT JOINed notification state, or None if absent."""
    if row.get("last_notified_value") is None or row.get("last_notified_at") is None:
        return None
    return NotificationState(
        alert_id=row["id"],
        last_notified_value=row["last_notified_value"],
        last_notified_at=row["last_notified_at"],
    )


def _row_to_history_record(row: dict) -> HistoryRecord:
    return HistoryRecord(
        alert_id=row["alert_id"],
        value=row["aurora_value"],
        recorded_at=row["recorded_at"],
    )


# ---------------------------------------------------------------------------
# Concrete Implementations: PostgreSQL
# ---------------------------------------------------------------------------


class _PostgresStore:
    """Connection handling shared by the PostgreSQL-backed stores.

    Parameters
    ----------
    conninfo : str
        PostgreSQL connection string (DSN).
    """

    def __init__(self, conninfo: str) -> None:
        self._conninfo = conninfo

    def _connect(self) -> psycopg.Connection:
        """Create a new database connection.

        Uses ``row_factory=dict_row`` for dict-based row access. The
        connection context manager commits on a clean exit and rolls back
        on an exception.
        """
        return psycopg.connect(
            self._conninfo,
            row_factory=dict_row,
            autocommit=False,
        )


class PostgresAlertRepository(_PostgresStore, AlertRepository):
    """PostgreSQL-backed ``AlertRepository``."""

    def list_active(self) -> list[tuple[Alert, NotificationState | None]]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_LIST_ACTIVE_SQL)
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            logger.error("Failed to list alerts: %s", str(exc))
            raise RepositoryError(f"Failed to list alerts: {exc}") from exc

        results: list[tuple[Alert, NotificationState | None]] = []
        for row in rows:
            try:
                alert = _row_to_alert(row)
            except ValidationError as exc:
                logger.error(
                    "Skipping invalid alert row id=%s: %s",
                    row.get("id"),
                    str(exc),
                )
                continue
            results.append((alert, _row_to_notification_state(row)))

        logger.debug("Listed %d alerts (%d rows)", len(results), len(rows))
        return results

    def record_notification(self, alert_id: int, value: int, at: datetime) -> None:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_UPSERT_NOTIFICATION_STATE_SQL, (alert_id, value, at))
        except psycopg.Error as exc:
            logger.error(
                "Failed to record notification state for alert=%d: %s",
                alert_id,
                str(exc),
            )
            raise RepositoryError(
                f"Failed to record notification state for alert {alert_id}: {exc}"
            ) from exc

        logger.debug(
            "Notification state updated for alert=%d: value=%d, at=%s",
            alert_id,
            value,
            at.isoformat(),
        )


class PostgresHistoryStore(_PostgresStore, HistoryStore):
    """PostgreSQL-backed ``HistoryStore``."""

    def append(self, alert_id: int, value: int, at: datetime) -> None:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_HISTORY_SQL, (alert_id, value, at))
        except psycopg.Error as exc:
            raise RepositoryError(
                f"Failed to append history for alert {alert_id}: {exc}"
            ) from exc

    def prune_older_than(self, cutoff: datetime) -> int:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_PRUNE_HISTORY_SQL, (cutoff,))
                    deleted = cur.rowcount
        except psycopg.Error as exc:
            raise RepositoryError(f"Failed to prune history: {exc}") from exc

        # rowcount is -1 when the driver cannot determine it
        return max(deleted, 0)

    def fetch_recent(self, alert_id: int, since: datetime) -> list[HistoryRecord]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_FETCH_HISTORY_SQL, (alert_id, since))
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise RepositoryError(
                f"Failed to fetch history for alert {alert_id}: {exc}"
            ) from exc

        return [_row_to_history_record(row) for row in rows]
