from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .core_errors import InputValidationError
from .geo_math import haversine_m, require_valid_coordinate
from .logging_utils import log_event
from .models import (
    CleanLocation,
    DataQualityWarning,
    DistanceData,
    LocationSample,
    Segment,
    SnappedRoute,
)
from .road_snapping import RoadSnapper, raw_trajectory, snap_with_fallback
from .settings import settings


@dataclass(frozen=True)
class IngestResult:
    locations: list[CleanLocation]
    segments: list[Segment]
    total_distance_m: float
    warnings: list[DataQualityWarning] = field(default_factory=list)

    @property
    def distance_data(self) -> DistanceData:
        return DistanceData(distances=list(self.segments), total_distance_m=self.total_distance_m)

    @property
    def points(self) -> list[tuple[float, float]]:
        return [(loc.lat, loc.lon) for loc in self.locations]


def _as_utc(ts: datetime) -> datetime:
    # Naive timestamps from devices are taken as UTC so deltas stay comparable.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def clean_samples(samples: Sequence[LocationSample], *, now: datetime | None = None) -> list[CleanLocation]:
    """Validate every coordinate and fill defaults (timestamp=now, accuracy=0).

    Any out-of-range coordinate rejects the whole batch.
    """
    if len(samples) > settings.max_locations_per_batch:
        raise InputValidationError(
            reason_code="batch_too_large",
            message=f"Batch of {len(samples)} locations exceeds the limit of {settings.max_locations_per_batch}",
            details={"limit": settings.max_locations_per_batch},
        )

    for idx, sample in enumerate(samples):
        require_valid_coordinate(sample.lat, sample.lon, index=idx)

    ingested_at = _as_utc(now) if now is not None else datetime.now(UTC)
    return [
        CleanLocation(
            index=idx,
            lat=float(sample.lat),
            lon=float(sample.lon),
            timestamp=_as_utc(sample.timestamp) if sample.timestamp is not None else ingested_at,
            speed=sample.speed,
            heading=sample.heading,
            accuracy=float(sample.accuracy) if sample.accuracy is not None else 0.0,
            timestamp_defaulted=sample.timestamp is None,
        )
        for idx, sample in enumerate(samples)
    ]


def compute_segments(locations: Sequence[CleanLocation]) -> tuple[list[Segment], list[DataQualityWarning]]:
    """Per-pair distance and time delta, visited strictly in input order."""
    segments: list[Segment] = []
    warnings: list[DataQualityWarning] = []

    for prev, cur in zip(locations, locations[1:]):
        delta_s = (cur.timestamp - prev.timestamp).total_seconds()
        if delta_s < 0:
            warnings.append(
                DataQualityWarning(
                    code="non_monotonic_timestamp",
                    index=cur.index,
                    message=f"timestamp at index {cur.index} is {abs(delta_s):.3f}s before index {prev.index}",
                )
            )
            delta_s = 0.0
        segments.append(
            Segment(
                from_index=prev.index,
                to_index=cur.index,
                distance_m=haversine_m(prev.lat, prev.lon, cur.lat, cur.lon),
                time_delta_s=delta_s,
                timestamp=cur.timestamp,
            )
        )
    return segments, warnings


def ingest_locations(samples: Sequence[LocationSample], *, now: datetime | None = None) -> IngestResult:
    locations = clean_samples(samples, now=now)
    segments, warnings = compute_segments(locations)

    total = 0.0
    for seg in segments:
        total += seg.distance_m

    if warnings:
        log_event(
            "location_data_quality",
            point_count=len(locations),
            warning_count=len(warnings),
            codes=sorted({w.code for w in warnings}),
        )

    return IngestResult(
        locations=locations,
        segments=segments,
        total_distance_m=total,
        warnings=warnings,
    )


async def snap_ingested(
    result: IngestResult,
    *,
    snapper: RoadSnapper | None,
    enabled: bool = True,
    interpolate: bool = True,
) -> SnappedRoute:
    """Road-snap an ingested trajectory; failures yield the raw points with snapped=False."""
    if not enabled or not settings.road_snap_enabled:
        return SnappedRoute(points=raw_trajectory(result.points), snapped=False)

    points, snapped = await snap_with_fallback(
        snapper,
        result.points,
        timeout_s=settings.road_snap_timeout_s,
        interpolate=interpolate,
    )
    return SnappedRoute(points=points, snapped=snapped)
