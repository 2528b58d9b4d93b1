from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _rename_keys(value: object, aliases: dict[str, tuple[str, ...]]) -> object:
    """Map alternate (camelCase / provider) keys onto canonical field names."""
    if not isinstance(value, dict):
        return value
    data = dict(value)
    for canonical, legacy_keys in aliases.items():
        if canonical in data:
            continue
        for key in legacy_keys:
            if key in data:
                data[canonical] = data[key]
                break
    return data


def _provider_value(value: object) -> object:
    # Directions providers wrap figures as {"value": 15000, "text": "15.0 km"}.
    if isinstance(value, dict):
        return value.get("value")
    return value


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    @model_validator(mode="before")
    @classmethod
    def accept_long_names(cls, value: object) -> object:
        return _rename_keys(value, {"lat": ("latitude",), "lon": ("longitude", "lng")})


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class LocationSample(BaseModel):
    """One raw GPS fix. Only the coordinate is mandatory.

    Coordinate ranges are checked at ingest so the error names the sample index.
    """

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    timestamp: datetime | None = None
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = Field(default=None, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def accept_long_names(cls, value: object) -> object:
        return _rename_keys(value, {"lat": ("latitude",), "lon": ("longitude", "lng")})


class CleanLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    lat: float
    lon: float
    timestamp: datetime
    speed: float | None = None
    heading: float | None = None
    accuracy: float = 0.0
    timestamp_defaulted: bool = False


class Segment(BaseModel):
    from_index: int = Field(..., ge=0)
    to_index: int = Field(..., ge=0)
    distance_m: float = Field(..., ge=0.0)
    time_delta_s: float = Field(..., ge=0.0)
    timestamp: datetime


class DataQualityWarning(BaseModel):
    code: str
    index: int
    message: str


class DistanceData(BaseModel):
    distances: list[Segment] = Field(default_factory=list)
    total_distance_m: float = 0.0


class SnappedPoint(BaseModel):
    lat: float
    lon: float
    original_index: int | None = None


class SnappedRoute(BaseModel):
    points: list[SnappedPoint] = Field(default_factory=list)
    snapped: bool = False


class IngestOptions(BaseModel):
    snap_to_roads: bool = True
    low_fuel_threshold_pct: float | None = Field(default=None, ge=0.0, le=100.0)
    remaining_trip_distance_m: float | None = Field(default=None, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(
            value,
            {
                "snap_to_roads": ("snapToRoads",),
                "low_fuel_threshold_pct": ("lowFuelThreshold",),
                "remaining_trip_distance_m": ("remainingDistance",),
            },
        )


# ---------------------------------------------------------------------------
# Fuel
# ---------------------------------------------------------------------------


class MotorFuelProfile(BaseModel):
    """Per-request motor data. Efficiency is km per litre, tank is litres.

    Positivity of efficiency/tank is enforced by the fuel model so that every
    caller sees the same precondition error.
    """

    fuel_efficiency: float
    fuel_tank: float
    current_fuel_level: float = Field(default=100.0, ge=0.0, le=100.0)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(
            value,
            {
                "fuel_efficiency": ("fuelEfficiency", "fuelConsumption"),
                "fuel_tank": ("fuelTank", "fuelTankCapacity", "fuel_tank_capacity"),
                "current_fuel_level": ("currentFuelLevel",),
            },
        )


class FuelState(BaseModel):
    fuel_consumed_l: float = Field(default=0.0, ge=0.0)
    fuel_consumed_pct: float = Field(default=0.0, ge=0.0)
    remaining_fuel_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    remaining_range_m: float = Field(default=0.0, ge=0.0)
    low_fuel: bool = False
    trip_can_complete: bool | None = None
    profile_supplied: bool = False


class DrivableDistance(BaseModel):
    current_fuel_l: float
    drivable_distance_m: float
    max_drivable_distance_m: float
    fuel_efficiency: float
    recommendations: list[str] = Field(default_factory=list)


class TripStatistics(BaseModel):
    total_distance_m: float = 0.0
    duration_s: float = 0.0
    average_speed_mps: float = 0.0
    average_speed_kmh: float = 0.0
    points_processed: int = 0


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


class RouteLeg(BaseModel):
    distance_m: float = Field(..., ge=0.0)
    duration_s: float = Field(..., ge=0.0)
    duration_in_traffic_s: float | None = Field(default=None, ge=0.0)
    duration_text: str | None = None
    start_address: str | None = None
    end_address: str | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_provider_shape(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        duration = data.get("duration")
        if isinstance(duration, dict) and "duration_text" not in data:
            data["duration_text"] = duration.get("text")
        for canonical, key in (
            ("distance_m", "distance"),
            ("duration_s", "duration"),
            ("duration_in_traffic_s", "duration_in_traffic"),
        ):
            if canonical not in data and key in data:
                data[canonical] = _provider_value(data[key])
        return data


class RouteCandidate(BaseModel):
    summary: str = ""
    legs: list[RouteLeg] = Field(default_factory=list)
    overview_polyline: str | None = None

    @field_validator("overview_polyline", mode="before")
    @classmethod
    def _polyline_points(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("points")
        return value


class RouteScore(BaseModel):
    route_id: str
    traffic_tier: int = Field(..., ge=1, le=5)
    fuel_cost: float = Field(..., ge=0.0)
    safety_score: float = Field(..., ge=0.0, le=100.0)
    risk_factors: list[str] = Field(default_factory=list)


class ScoredRoute(BaseModel):
    id: str
    source_index: int
    summary: str = ""
    distance_m: float
    duration_s: float
    duration_in_traffic_s: float | None = None
    duration_text: str | None = None
    traffic_ratio: float | None = None
    traffic_tier: int = Field(..., ge=1, le=5)
    fuel_consumed_l: float = 0.0
    fuel_cost: float = 0.0
    safety_score: float = Field(..., ge=0.0, le=100.0)
    risk_factors: list[str] = Field(default_factory=list)
    coordinates: list[LatLng] = Field(default_factory=list)
    path_length_m: float = 0.0
    start_address: str | None = None
    end_address: str | None = None
    polyline: str | None = None


class RouteDelay(BaseModel):
    """Time lost to traffic; both figures are None without traffic data."""

    route_id: str
    delay_s: float | None = None
    delay_pct: float | None = None


class TrafficAnalysis(BaseModel):
    average_traffic_rate: float
    worst_traffic_route_id: str
    best_traffic_route_id: str
    delays: list[RouteDelay] = Field(default_factory=list)


class FuelEstimate(BaseModel):
    route_id: str
    fuel_consumed_l: float
    fuel_cost: float
    currency: str
    efficiency: float


class RouteScoringResult(BaseModel):
    routes: list[ScoredRoute] = Field(default_factory=list)
    scores: list[RouteScore] = Field(default_factory=list)
    traffic_analysis: TrafficAnalysis | None = None
    fuel_estimates: list[FuelEstimate] = Field(default_factory=list)
    best_route_id: str | None = None
    most_fuel_efficient_route_id: str | None = None
    main_route_id: str | None = None
    alternative_route_ids: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    skipped_route_indices: list[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------


class Performance(BaseModel):
    processing_time_ms: float
    points_processed: int | None = None
    routes_processed: int | None = None


class ProcessLocationsRequest(BaseModel):
    locations: list[LocationSample]
    trip_id: str | None = None
    motor_data: MotorFuelProfile | None = None
    options: IngestOptions = Field(default_factory=IngestOptions)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(value, {"trip_id": ("tripId",), "motor_data": ("motorData",)})


class ProcessLocationsResponse(BaseModel):
    trip_id: str | None = None
    processed_locations: list[CleanLocation]
    distance_data: DistanceData
    fuel_data: FuelState
    fuel_recommendations: list[str] = Field(default_factory=list)
    snapped_route: SnappedRoute
    statistics: TripStatistics
    warnings: list[DataQualityWarning] = Field(default_factory=list)
    performance: Performance


class SnapRoadsRequest(BaseModel):
    coordinates: list[LatLng]
    interpolate: bool = True


class SnapRoadsResponse(BaseModel):
    snapped_points: list[SnappedPoint]
    has_snapped: bool
    processing_time_ms: float


class ProcessRoutesRequest(BaseModel):
    routes: list[RouteCandidate]
    motor_data: MotorFuelProfile | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(value, {"motor_data": ("motorData",)})


class DirectionsOptions(BaseModel):
    alternatives: bool = True
    avoid: list[str] = Field(default_factory=list)


class DirectionsRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    motor_data: MotorFuelProfile | None = None
    options: DirectionsOptions = Field(default_factory=DirectionsOptions)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(value, {"motor_data": ("motorData",)})


class ProcessRoutesResponse(RouteScoringResult):
    safety_metrics: list[RouteScore] = Field(default_factory=list)
    directions_available: bool | None = None
    performance: Performance


class CoordinatePair(BaseModel):
    lat1: float = Field(..., ge=-90, le=90)
    lon1: float = Field(..., ge=-180, le=180)
    lat2: float = Field(..., ge=-90, le=90)
    lon2: float = Field(..., ge=-180, le=180)


class DistanceRequest(BaseModel):
    coordinates: list[CoordinatePair]


class DistanceResponse(BaseModel):
    distances: list[float]
    total_distance_m: float
    coordinates_processed: int
    processing_time_ms: float


class FuelConsumptionRequest(BaseModel):
    distance_m: float
    motor_data: MotorFuelProfile
    remaining_trip_distance_m: float | None = Field(default=None, ge=0.0)
    low_fuel_threshold_pct: float | None = Field(default=None, ge=0.0, le=100.0)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(
            value,
            {
                "distance_m": ("distance", "distanceTraveled"),
                "motor_data": ("motorData",),
            },
        )


class FuelConsumptionResponse(FuelState):
    recommendations: list[str] = Field(default_factory=list)
    total_drivable_distance_m: float
    processing_time_ms: float


class TripStatisticsRequest(BaseModel):
    locations: list[LocationSample]
    motor_data: MotorFuelProfile | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(value, {"motor_data": ("motorData",)})


class TripStatisticsResponse(BaseModel):
    statistics: TripStatistics
    fuel_data: FuelState
    processing_time_ms: float


class DrivableDistanceRequest(BaseModel):
    motor_data: MotorFuelProfile

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        return _rename_keys(value, {"motor_data": ("motorData",)})


class DrivableDistanceResponse(DrivableDistance):
    processing_time_ms: float
