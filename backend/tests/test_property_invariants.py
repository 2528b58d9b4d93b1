from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

from motortrack.fuel_model import compute_fuel_state
from motortrack.geo_math import haversine_m
from motortrack.location_ingest import ingest_locations
from motortrack.models import LocationSample, MotorFuelProfile, RouteCandidate, RouteLeg
from motortrack.route_scoring import score_routes, traffic_tier, traffic_tier_for_ratio
from motortrack.trip_stats import trip_statistics


def test_ingest_randomized_invariants() -> None:
    rng = random.Random(20261018)
    t0 = datetime(2026, 1, 1, tzinfo=UTC)

    for _ in range(30):
        count = rng.randint(0, 40)
        lat, lon = rng.uniform(-60, 60), rng.uniform(-170, 170)
        offset = 0.0
        samples = []
        for _ in range(count):
            lat = max(-90.0, min(90.0, lat + rng.uniform(-0.01, 0.01)))
            lon = max(-180.0, min(180.0, lon + rng.uniform(-0.01, 0.01)))
            # occasionally step backwards in time
            offset += rng.uniform(-20.0, 60.0)
            samples.append(LocationSample(lat=lat, lon=lon, timestamp=t0 + timedelta(seconds=offset)))

        result = ingest_locations(samples)
        assert len(result.segments) == max(0, count - 1)
        assert abs(result.total_distance_m - sum(s.distance_m for s in result.segments)) <= 1e-6
        assert all(s.distance_m >= 0.0 and s.time_delta_s >= 0.0 for s in result.segments)
        assert [s.to_index for s in result.segments] == list(range(1, count))

        stats = trip_statistics(samples)
        assert stats.points_processed == count
        assert stats.duration_s >= 0.0
        assert stats.average_speed_mps >= 0.0


def test_traffic_tier_monotonic_in_ratio() -> None:
    rng = random.Random(4242)
    ratios = sorted(rng.uniform(0.0, 5.0) for _ in range(500))
    tiers = [traffic_tier_for_ratio(r) for r in ratios]
    assert all(1 <= t <= 5 for t in tiers)
    assert all(a <= b for a, b in zip(tiers, tiers[1:]))

    for _ in range(200):
        nominal = rng.choice([None, 0.0, rng.uniform(1.0, 5_000.0)])
        traffic = rng.choice([None, rng.uniform(0.0, 20_000.0)])
        tier, _ = traffic_tier(nominal, traffic)
        assert 1 <= tier <= 5


def test_route_scoring_randomized_invariants() -> None:
    rng = random.Random(77)
    for _ in range(25):
        candidates = []
        for _ in range(rng.randint(0, 6)):
            legs = [
                RouteLeg(
                    distance_m=rng.uniform(100.0, 90_000.0),
                    duration_s=rng.uniform(0.0, 7_200.0),
                    duration_in_traffic_s=rng.choice([None, rng.uniform(0.0, 14_000.0)]),
                )
                for _ in range(rng.randint(0, 3))
            ]
            candidates.append(RouteCandidate(legs=legs))
        profile = MotorFuelProfile(fuel_efficiency=rng.uniform(5.0, 40.0), fuel_tank=rng.uniform(10.0, 80.0))

        result = score_routes(candidates, profile)
        assert len(result.routes) + len(result.skipped_route_indices) == len(candidates)
        for route in result.routes:
            assert 1 <= route.traffic_tier <= 5
            assert 0.0 <= route.safety_score <= 100.0
            assert route.fuel_cost >= 0.0
        if result.routes:
            best = next(r for r in result.routes if r.id == result.best_route_id)
            assert best.duration_s == min(r.duration_s for r in result.routes)
        else:
            assert result.traffic_analysis is None


def test_fuel_and_distance_randomized_invariants() -> None:
    rng = random.Random(13)
    for _ in range(200):
        a = (rng.uniform(-90, 90), rng.uniform(-180, 180))
        b = (rng.uniform(-90, 90), rng.uniform(-180, 180))
        d = haversine_m(*a, *b)
        assert d >= 0.0
        profile = MotorFuelProfile(
            fuel_efficiency=rng.uniform(1.0, 50.0),
            fuel_tank=rng.uniform(1.0, 100.0),
            current_fuel_level=rng.uniform(0.0, 100.0),
        )
        state = compute_fuel_state(d, profile)
        assert 0.0 <= state.remaining_fuel_pct <= profile.current_fuel_level
        assert state.remaining_range_m >= 0.0
