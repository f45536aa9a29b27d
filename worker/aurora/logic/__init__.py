"""
Core evaluation logic for the Aurora Alert worker.

This package contains the nearest-sample matcher, the notification
deduplication policy, and the evaluation cycle that ties them together.

Public API:
    - ``EvaluationCycle`` -- One fetch/match/decide/notify pass over all alerts.
    - ``DedupPolicy`` -- Notify/suppress decision for a single observation.
    - ``nearest`` -- Nearest grid sample to a coordinate (haversine).
    - ``haversine_km`` -- Great-circle distance between two points.
"""

from worker.aurora.logic.cycle import EvaluationCycle
from worker.aurora.logic.dedup import NOTIFICATION_EXPIRY, DedupPolicy
from worker.aurora.logic.matcher import EARTH_RADIUS_KM, haversine_km, nearest

__all__ = [
    "EvaluationCycle",
    "DedupPolicy",
    "NOTIFICATION_EXPIRY",
    "nearest",
    "haversine_km",
    "EARTH_RADIUS_KM",
]
