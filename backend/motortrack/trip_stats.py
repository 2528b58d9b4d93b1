from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from .location_ingest import IngestResult, ingest_locations
from .models import LocationSample, TripStatistics


def statistics_from_ingest(result: IngestResult) -> TripStatistics:
    """Fold ingested segments into trip totals.

    Duration is last minus first timestamp (floored at zero), independent of
    the per-segment clamp applied to out-of-order samples.
    """
    if len(result.locations) < 2:
        return TripStatistics(points_processed=len(result.locations))

    distance_m = 0.0
    for seg in result.segments:
        distance_m += seg.distance_m
    first, last = result.locations[0], result.locations[-1]
    duration_s = max(0.0, (last.timestamp - first.timestamp).total_seconds())

    speed_mps = distance_m / duration_s if duration_s > 0 else 0.0
    return TripStatistics(
        total_distance_m=distance_m,
        duration_s=duration_s,
        average_speed_mps=speed_mps,
        average_speed_kmh=speed_mps * 3.6,
        points_processed=len(result.locations),
    )


def trip_statistics(samples: Sequence[LocationSample], *, now: datetime | None = None) -> TripStatistics:
    return statistics_from_ingest(ingest_locations(samples, now=now))
