from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from motortrack.directions import DirectionsError
from motortrack.main import app, directions_provider, road_snapper
from motortrack.models import LatLng, RouteCandidate, RouteLeg, SnappedPoint
from motortrack.road_snapping import RoadSnapError
from motortrack.settings import settings


class FakeSnapper:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def snap(self, points: list[tuple[float, float]], *, interpolate: bool = True) -> list[SnappedPoint]:
        self.calls += 1
        if self.fail:
            raise RoadSnapError("forced snap failure")
        return [SnappedPoint(lat=lat, lon=lon, original_index=i) for i, (lat, lon) in enumerate(points)]


class FakeDirections:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    async def fetch_routes(
        self,
        *,
        origin: LatLng,
        destination: LatLng,
        alternatives: bool = True,
        avoid: list[str] | None = None,
    ) -> list[RouteCandidate]:
        self.calls.append({"alternatives": alternatives, "avoid": avoid})
        if self.fail:
            raise DirectionsError("forced directions failure")
        return [
            RouteCandidate(
                summary="Quezon Ave",
                legs=[RouteLeg(distance_m=9_000.0, duration_s=1_200.0, duration_in_traffic_s=1_500.0)],
            ),
            RouteCandidate(
                summary="EDSA",
                legs=[RouteLeg(distance_m=7_500.0, duration_s=1_100.0, duration_in_traffic_s=2_400.0)],
            ),
        ]


@pytest.fixture
def fakes() -> dict[str, Any]:
    return {"snapper": FakeSnapper(), "directions": FakeDirections()}


@pytest.fixture
def client(fakes: dict[str, Any]) -> Iterator[TestClient]:
    app.dependency_overrides[road_snapper] = lambda: fakes["snapper"]
    app.dependency_overrides[directions_provider] = lambda: fakes["directions"]
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def _locations() -> list[dict[str, Any]]:
    return [
        {"latitude": 14.5995, "longitude": 120.9842, "timestamp": "2026-03-02T08:00:00Z", "speed": 8.0},
        {"lat": 14.6050, "lng": 121.0050, "timestamp": "2026-03-02T08:04:00Z"},
        {"lat": 14.6091, "lon": 121.0223, "timestamp": "2026-03-02T08:10:00Z", "accuracy": 5},
    ]


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_process_background_locations(client: TestClient, fakes: dict[str, Any]) -> None:
    resp = client.post(
        "/location/process-background",
        json={
            "tripId": "trip-42",
            "locations": _locations(),
            "motorData": {"fuelEfficiency": 30, "fuelTank": 15, "currentFuelLevel": 60},
            "options": {"remainingDistance": 20_000},
        },
    )
    assert resp.status_code == 200
    body = resp.json()

    assert body["trip_id"] == "trip-42"
    assert len(body["processed_locations"]) == 3
    assert body["processed_locations"][2]["accuracy"] == 5.0
    distances = body["distance_data"]["distances"]
    assert [d["time_delta_s"] for d in distances] == [240.0, 360.0]
    assert body["distance_data"]["total_distance_m"] == pytest.approx(sum(d["distance_m"] for d in distances))
    assert body["fuel_data"]["profile_supplied"] is True
    assert body["fuel_data"]["trip_can_complete"] is True
    assert body["snapped_route"]["snapped"] is True
    assert body["statistics"]["duration_s"] == 600.0
    assert body["statistics"]["points_processed"] == 3
    assert body["performance"]["points_processed"] == 3
    assert body["warnings"] == []
    assert fakes["snapper"].calls == 1


def test_process_background_empty_batch(client: TestClient) -> None:
    resp = client.post("/location/process-background", json={"locations": []})
    assert resp.status_code == 200
    body = resp.json()
    assert body["distance_data"] == {"distances": [], "total_distance_m": 0.0}
    assert body["statistics"]["total_distance_m"] == 0.0
    assert body["fuel_data"]["profile_supplied"] is False
    assert body["snapped_route"] == {"points": [], "snapped": False}


def test_process_background_rejects_out_of_range_coordinate(client: TestClient) -> None:
    locations = _locations()
    locations[1] = {"lat": 95.0, "lon": 121.0}
    resp = client.post("/location/process-background", json={"locations": locations})
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["reason_code"] == "coordinate_out_of_range"
    assert detail["index"] == 1


def test_process_background_falls_back_when_snapping_fails(client: TestClient, fakes: dict[str, Any]) -> None:
    fakes["snapper"].fail = True
    resp = client.post("/location/process-background", json={"locations": _locations()})
    assert resp.status_code == 200
    route = resp.json()["snapped_route"]
    assert route["snapped"] is False
    assert [p["original_index"] for p in route["points"]] == [0, 1, 2]


def test_process_background_respects_snap_option(client: TestClient, fakes: dict[str, Any]) -> None:
    resp = client.post(
        "/location/process-background",
        json={"locations": _locations(), "options": {"snapToRoads": False}},
    )
    assert resp.status_code == 200
    assert resp.json()["snapped_route"]["snapped"] is False
    assert fakes["snapper"].calls == 0


def test_snap_roads(client: TestClient) -> None:
    resp = client.post(
        "/location/snap-roads",
        json={"coordinates": [{"lat": 14.5995, "lng": 120.9842}, {"lat": 14.6091, "lng": 121.0223}]},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["has_snapped"] is True
    assert len(body["snapped_points"]) == 2


def test_snap_roads_requires_coordinates(client: TestClient) -> None:
    resp = client.post("/location/snap-roads", json={"coordinates": []})
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason_code"] == "coordinates_required"


def test_traffic_analysis(client: TestClient) -> None:
    resp = client.post(
        "/routes/process-traffic-analysis",
        json={
            "routes": [
                {"summary": "no legs"},
                {
                    "summary": "Roxas Blvd",
                    "legs": [
                        {
                            "distance": {"value": 15000, "text": "15 km"},
                            "duration": {"value": 1200, "text": "20 mins"},
                            "duration_in_traffic": {"value": 1500, "text": "25 mins"},
                        }
                    ],
                },
            ],
            "motorData": {"fuelEfficiency": 30, "fuelTank": 15},
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["skipped_route_indices"] == [0]
    assert body["best_route_id"] == "route-1"
    assert body["routes"][0]["traffic_tier"] == 2
    assert body["fuel_estimates"][0]["fuel_consumed_l"] == pytest.approx(0.5)
    assert body["safety_metrics"][0]["route_id"] == "route-1"
    assert body["traffic_analysis"]["average_traffic_rate"] == 2.0
    assert body["performance"]["routes_processed"] == 1
    assert body["directions_available"] is None


def test_traffic_analysis_rejects_zero_efficiency(client: TestClient) -> None:
    resp = client.post(
        "/routes/process-traffic-analysis",
        json={
            "routes": [{"legs": [{"distance_m": 1000, "duration_s": 60}]}],
            "motor_data": {"fuel_efficiency": 0, "fuel_tank": 15},
        },
    )
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["reason_code"] == "fuel_profile_invalid"
    assert detail["field"] == "fuel_efficiency"


def test_process_directions(client: TestClient, fakes: dict[str, Any]) -> None:
    resp = client.post(
        "/routes/process-directions",
        json={
            "origin": {"lat": 14.5995, "lon": 120.9842},
            "destination": {"lat": 14.6091, "lon": 121.0223},
            "motor_data": {"fuel_efficiency": 25, "fuel_tank": 20},
            "options": {"alternatives": True, "avoid": ["tolls"]},
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["directions_available"] is True
    assert [r["id"] for r in body["routes"]] == ["route-0", "route-1"]
    assert body["best_route_id"] == "route-1"
    assert body["most_fuel_efficient_route_id"] == "route-1"
    assert body["traffic_analysis"]["worst_traffic_route_id"] == "route-1"
    assert body["main_route_id"] == "route-0"
    assert body["alternative_route_ids"] == ["route-1"]
    assert [d["delay_s"] for d in body["traffic_analysis"]["delays"]] == [300.0, 1300.0]
    assert fakes["directions"].calls == [{"alternatives": True, "avoid": ["tolls"]}]


def test_process_directions_upstream_failure_is_degraded(client: TestClient, fakes: dict[str, Any]) -> None:
    fakes["directions"].fail = True
    resp = client.post(
        "/routes/process-directions",
        json={"origin": {"lat": 14.5995, "lon": 120.9842}, "destination": {"lat": 14.6091, "lon": 121.0223}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["directions_available"] is False
    assert body["routes"] == []
    assert body["traffic_analysis"] is None


def test_distance_endpoint(client: TestClient) -> None:
    resp = client.post(
        "/calculations/distance",
        json={
            "coordinates": [
                {"lat1": 14.5995, "lon1": 120.9842, "lat2": 14.6091, "lon2": 121.0223},
                {"lat1": 0.0, "lon1": 0.0, "lat2": 0.0, "lon2": 0.0},
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["coordinates_processed"] == 2
    assert body["distances"][0] == pytest.approx(4236.0, abs=10.0)
    assert body["distances"][1] == 0.0
    assert body["total_distance_m"] == pytest.approx(sum(body["distances"]))


def test_distance_endpoint_schema_violation(client: TestClient) -> None:
    resp = client.post("/calculations/distance", json={"coordinates": [{"lat1": 91, "lon1": 0, "lat2": 0, "lon2": 0}]})
    assert resp.status_code == 422


def test_fuel_consumption(client: TestClient) -> None:
    resp = client.post(
        "/calculations/fuel-consumption",
        json={"distanceTraveled": 15000, "motorData": {"fuelEfficiency": 30, "fuelTank": 15, "currentFuelLevel": 12}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["fuel_consumed_l"] == pytest.approx(0.5)
    assert body["low_fuel"] is True
    assert body["total_drivable_distance_m"] == pytest.approx(450_000.0)
    assert "Low fuel level - consider refueling soon" in body["recommendations"]


def test_fuel_consumption_advice_uses_request_threshold(client: TestClient) -> None:
    resp = client.post(
        "/calculations/fuel-consumption",
        json={
            "distance_m": 0,
            "motor_data": {"fuel_efficiency": 30, "fuel_tank": 15, "current_fuel_level": 25},
            "low_fuel_threshold_pct": 30,
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["low_fuel"] is True
    assert body["recommendations"] == ["Low fuel level - consider refueling soon"]


def test_fuel_consumption_rejects_zero_efficiency(client: TestClient) -> None:
    resp = client.post(
        "/calculations/fuel-consumption",
        json={"distance_m": 15000, "motor_data": {"fuel_efficiency": 0, "fuel_tank": 15}},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason_code"] == "fuel_profile_invalid"


def test_trip_statistics_endpoint(client: TestClient) -> None:
    resp = client.post(
        "/calculations/trip-statistics",
        json={"locations": _locations(), "motor_data": {"fuel_efficiency": 30, "fuel_tank": 15}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["statistics"]["duration_s"] == 600.0
    assert body["statistics"]["average_speed_kmh"] == pytest.approx(body["statistics"]["average_speed_mps"] * 3.6)
    assert body["fuel_data"]["fuel_consumed_l"] > 0.0


def test_drivable_distance_endpoint(client: TestClient) -> None:
    resp = client.post("/fuel/drivable-distance", json={"motorData": {"fuelEfficiency": 30, "fuelTank": 15, "currentFuelLevel": 20}})
    assert resp.status_code == 200
    body = resp.json()
    assert body["drivable_distance_m"] == pytest.approx(90_000.0)
    assert body["recommendations"] == ["Very low range - refuel immediately"]

    resp = client.post("/fuel/drivable-distance", json={"motor_data": {"fuel_efficiency": 30, "fuel_tank": -1}})
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason_code"] == "fuel_profile_invalid"


def test_process_directions_allows_time_for_retries(
    client: TestClient,
    fakes: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    class RetryingDirections(FakeDirections):
        async def fetch_routes(self, **kwargs: Any) -> list[RouteCandidate]:
            # a slow first attempt followed by a good one
            await asyncio.sleep(0.15)
            return await super().fetch_routes(**kwargs)

    monkeypatch.setattr(settings, "directions_timeout_s", 0.1)
    monkeypatch.setattr(settings, "directions_max_retries", 3)
    fakes["directions"] = RetryingDirections()

    resp = client.post(
        "/routes/process-directions",
        json={"origin": {"lat": 14.5995, "lon": 120.9842}, "destination": {"lat": 14.6091, "lon": 121.0223}},
    )
    assert resp.status_code == 200
    assert resp.json()["directions_available"] is True
