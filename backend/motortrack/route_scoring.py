from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from .fuel_model import fuel_cost, fuel_liters_for_distance, validate_profile
from .geo_math import path_length_m
from .logging_utils import log_event
from .models import (
    FuelEstimate,
    LatLng,
    MotorFuelProfile,
    RouteCandidate,
    RouteDelay,
    RouteScore,
    RouteScoringResult,
    ScoredRoute,
    TrafficAnalysis,
)
from .polyline import PolylineDecodeError, decode_polyline
from .settings import settings

T = TypeVar("T")

# Upper bound of each tier's traffic/nominal duration ratio; anything above is tier 5.
TRAFFIC_TIER_BREAKPOINTS: tuple[float, ...] = (1.2, 1.5, 2.0, 2.5)


@dataclass(frozen=True)
class RouteTotals:
    distance_m: float
    duration_s: float
    duration_in_traffic_s: float | None
    duration_text: str | None


def traffic_tier_for_ratio(ratio: float) -> int:
    for tier, upper in enumerate(TRAFFIC_TIER_BREAKPOINTS, start=1):
        if ratio <= upper:
            return tier
    return len(TRAFFIC_TIER_BREAKPOINTS) + 1


def traffic_tier(nominal_s: float | None, traffic_s: float | None) -> tuple[int, float | None]:
    """(tier, ratio). Missing or zero nominal duration means no delay data: tier 1."""
    if nominal_s is None or traffic_s is None or nominal_s <= 0:
        return 1, None
    ratio = float(traffic_s) / float(nominal_s)
    return traffic_tier_for_ratio(ratio), ratio


def traffic_delay(route: ScoredRoute) -> RouteDelay:
    if route.duration_in_traffic_s is None:
        return RouteDelay(route_id=route.id)
    delay_s = route.duration_in_traffic_s - route.duration_s
    delay_pct = (delay_s / route.duration_s) * 100.0 if route.duration_s > 0 else None
    return RouteDelay(route_id=route.id, delay_s=delay_s, delay_pct=delay_pct)


def route_totals(candidate: RouteCandidate) -> RouteTotals:
    distance = 0.0
    duration = 0.0
    traffic = 0.0
    has_traffic = False
    for leg in candidate.legs:
        distance += leg.distance_m
        duration += leg.duration_s
        if leg.duration_in_traffic_s is not None:
            has_traffic = True
            traffic += leg.duration_in_traffic_s
        else:
            traffic += leg.duration_s
    text = candidate.legs[0].duration_text if len(candidate.legs) == 1 else None
    return RouteTotals(
        distance_m=distance,
        duration_s=duration,
        duration_in_traffic_s=traffic if has_traffic else None,
        duration_text=text,
    )


def safety_assessment(*, tier: int, distance_m: float, duration_s: float) -> tuple[float, list[str]]:
    score = 100.0
    factors: list[str] = []
    if tier > settings.safety_heavy_traffic_tier:
        score -= settings.safety_heavy_traffic_penalty
        factors.append("Heavy traffic")
    if distance_m > settings.safety_long_distance_m:
        score -= settings.safety_long_distance_penalty
        factors.append("Long distance")
    if duration_s > settings.safety_long_duration_s:
        score -= settings.safety_long_duration_penalty
        factors.append("Long duration")
    return max(0.0, score), factors


def _decode_coordinates(candidate: RouteCandidate, *, index: int) -> list[tuple[float, float]]:
    if not candidate.overview_polyline:
        return []
    try:
        return decode_polyline(candidate.overview_polyline)
    except PolylineDecodeError as e:
        log_event("polyline_decode_failed", route_index=index, error=str(e))
        return []


def score_candidate(
    candidate: RouteCandidate,
    *,
    index: int,
    profile: MotorFuelProfile | None,
) -> ScoredRoute:
    totals = route_totals(candidate)
    tier, ratio = traffic_tier(totals.duration_s, totals.duration_in_traffic_s)
    fuel_l = fuel_liters_for_distance(totals.distance_m, profile)
    safety, factors = safety_assessment(tier=tier, distance_m=totals.distance_m, duration_s=totals.duration_s)
    points = _decode_coordinates(candidate, index=index)

    return ScoredRoute(
        id=f"route-{index}",
        source_index=index,
        summary=candidate.summary,
        distance_m=totals.distance_m,
        duration_s=totals.duration_s,
        duration_in_traffic_s=totals.duration_in_traffic_s,
        duration_text=totals.duration_text,
        traffic_ratio=round(ratio, 6) if ratio is not None else None,
        traffic_tier=tier,
        fuel_consumed_l=fuel_l,
        fuel_cost=fuel_cost(fuel_l),
        safety_score=safety,
        risk_factors=factors,
        coordinates=[LatLng(lat=lat, lon=lon) for lat, lon in points],
        path_length_m=path_length_m(points),
        start_address=candidate.legs[0].start_address,
        end_address=candidate.legs[-1].end_address,
        polyline=candidate.overview_polyline,
    )


def first_min(items: Sequence[T], key: Callable[[T], float]) -> T:
    """Minimum by key; the earliest item wins ties."""
    best = items[0]
    best_key = key(best)
    for item in items[1:]:
        k = key(item)
        if k < best_key:
            best = item
            best_key = k
    return best


def first_max(items: Sequence[T], key: Callable[[T], float]) -> T:
    """Maximum by key; the earliest item wins ties."""
    best = items[0]
    best_key = key(best)
    for item in items[1:]:
        k = key(item)
        if k > best_key:
            best = item
            best_key = k
    return best


def _format_duration(seconds: float) -> str:
    minutes = int(round(seconds / 60.0))
    if minutes < 60:
        return f"{minutes} mins"
    return f"{minutes // 60} h {minutes % 60} mins"


def route_recommendations(
    *,
    best: ScoredRoute,
    most_efficient: ScoredRoute,
    profile_supplied: bool,
) -> list[str]:
    out: list[str] = []
    best_name = best.summary or best.id
    out.append(f"Best route: {best_name} ({best.duration_text or _format_duration(best.duration_s)})")
    if profile_supplied and most_efficient.fuel_consumed_l < settings.most_efficient_max_fuel_l:
        out.append(f"Most fuel-efficient route: {most_efficient.summary or most_efficient.id}")
    return out


def score_routes(
    candidates: Sequence[RouteCandidate],
    profile: MotorFuelProfile | None = None,
) -> RouteScoringResult:
    """Score every usable candidate and pick best/worst ones.

    Candidates without legs are skipped. Inputs are never mutated.
    """
    if profile is not None:
        validate_profile(profile)

    scored: list[ScoredRoute] = []
    skipped: list[int] = []
    for idx, candidate in enumerate(candidates):
        if not candidate.legs:
            log_event("route_candidate_skipped", route_index=idx, reason="no_legs")
            skipped.append(idx)
            continue
        scored.append(score_candidate(candidate, index=idx, profile=profile))

    if not scored:
        return RouteScoringResult(skipped_route_indices=skipped)

    best = first_min(scored, key=lambda r: r.duration_s)
    most_efficient = first_min(scored, key=lambda r: r.fuel_cost)
    worst_traffic = first_max(scored, key=lambda r: float(r.traffic_tier))
    best_traffic = first_min(scored, key=lambda r: float(r.traffic_tier))

    traffic_analysis = TrafficAnalysis(
        average_traffic_rate=sum(r.traffic_tier for r in scored) / len(scored),
        worst_traffic_route_id=worst_traffic.id,
        best_traffic_route_id=best_traffic.id,
        delays=[traffic_delay(r) for r in scored],
    )
    fuel_estimates = [
        FuelEstimate(
            route_id=r.id,
            fuel_consumed_l=r.fuel_consumed_l,
            fuel_cost=r.fuel_cost,
            currency=settings.fuel_price_currency,
            efficiency=float(profile.fuel_efficiency) if profile is not None else 0.0,
        )
        for r in scored
    ]
    scores = [
        RouteScore(
            route_id=r.id,
            traffic_tier=r.traffic_tier,
            fuel_cost=r.fuel_cost,
            safety_score=r.safety_score,
            risk_factors=list(r.risk_factors),
        )
        for r in scored
    ]

    return RouteScoringResult(
        routes=scored,
        scores=scores,
        traffic_analysis=traffic_analysis,
        fuel_estimates=fuel_estimates,
        best_route_id=best.id,
        most_fuel_efficient_route_id=most_efficient.id,
        main_route_id=scored[0].id,
        alternative_route_ids=[r.id for r in scored[1:]],
        recommendations=route_recommendations(
            best=best,
            most_efficient=most_efficient,
            profile_supplied=profile is not None,
        ),
        skipped_route_indices=skipped,
    )
