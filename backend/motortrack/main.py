from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .core_errors import CoreError, InputValidationError
from .directions import DirectionsProvider, HTTPDirectionsClient, fetch_with_fallback, retry_budget_s
from .fuel_model import (
    compute_fuel_state,
    drivable_distance,
    fuel_recommendations,
    total_drivable_distance_m,
)
from .geo_math import haversine_m
from .location_ingest import ingest_locations, snap_ingested
from .logging_utils import log_event
from .models import (
    DirectionsRequest,
    DistanceRequest,
    DistanceResponse,
    DrivableDistanceRequest,
    DrivableDistanceResponse,
    FuelConsumptionRequest,
    FuelConsumptionResponse,
    MotorFuelProfile,
    Performance,
    ProcessLocationsRequest,
    ProcessLocationsResponse,
    ProcessRoutesRequest,
    ProcessRoutesResponse,
    RouteCandidate,
    RouteScoringResult,
    SnapRoadsRequest,
    SnapRoadsResponse,
    TripStatisticsRequest,
    TripStatisticsResponse,
)
from .road_snapping import OSRMRoadSnapper, RoadSnapper, snap_with_fallback
from .route_scoring import score_routes
from .settings import settings
from .trip_stats import statistics_from_ingest


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.road_snapper = OSRMRoadSnapper(
        base_url=settings.osrm_base_url,
        profile=settings.osrm_profile,
        timeout_s=settings.road_snap_timeout_s,
    )
    app.state.directions = HTTPDirectionsClient(
        base_url=settings.directions_base_url,
        api_key=settings.directions_api_key,
        timeout_s=settings.directions_timeout_s,
        max_retries=settings.directions_max_retries,
    )
    yield
    await app.state.road_snapper.aclose()
    await app.state.directions.aclose()


app = FastAPI(title="Motor Trip Telemetry Core", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def road_snapper(request: Request) -> RoadSnapper | None:
    # A missing snapper degrades to the raw trajectory rather than failing.
    return getattr(request.app.state, "road_snapper", None)


def directions_provider(request: Request) -> DirectionsProvider | None:
    return getattr(request.app.state, "directions", None)


SnapperDep = Annotated[RoadSnapper | None, Depends(road_snapper)]
DirectionsDep = Annotated[DirectionsProvider | None, Depends(directions_provider)]


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 2)


def _reject(exc: CoreError, *, endpoint: str, request_id: str) -> HTTPException:
    log_event(
        "request_rejected",
        endpoint=endpoint,
        request_id=request_id,
        reason_code=exc.reason_code,
        message=exc.message,
    )
    return HTTPException(status_code=422, detail=exc.as_detail())


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/location/process-background", response_model=ProcessLocationsResponse)
async def process_background_locations(req: ProcessLocationsRequest, snapper: SnapperDep) -> ProcessLocationsResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    try:
        ingested = ingest_locations(req.locations)
        fuel_state = compute_fuel_state(
            ingested.total_distance_m,
            req.motor_data,
            remaining_trip_distance_m=req.options.remaining_trip_distance_m,
            low_fuel_threshold_pct=req.options.low_fuel_threshold_pct,
        )
    except CoreError as e:
        raise _reject(e, endpoint="process_background_locations", request_id=request_id) from e

    snapped_route = await snap_ingested(ingested, snapper=snapper, enabled=req.options.snap_to_roads)
    statistics = statistics_from_ingest(ingested)
    duration_ms = _elapsed_ms(t0)

    log_event(
        "location_batch_processed",
        request_id=request_id,
        trip_id=req.trip_id,
        point_count=len(ingested.locations),
        total_distance_m=round(ingested.total_distance_m, 3),
        snapped=snapped_route.snapped,
        low_fuel=fuel_state.low_fuel,
        warning_count=len(ingested.warnings),
        duration_ms=duration_ms,
    )

    return ProcessLocationsResponse(
        trip_id=req.trip_id,
        processed_locations=ingested.locations,
        distance_data=ingested.distance_data,
        fuel_data=fuel_state,
        fuel_recommendations=fuel_recommendations(fuel_state),
        snapped_route=snapped_route,
        statistics=statistics,
        warnings=ingested.warnings,
        performance=Performance(processing_time_ms=duration_ms, points_processed=len(ingested.locations)),
    )


@app.post("/location/snap-roads", response_model=SnapRoadsResponse)
async def snap_roads(req: SnapRoadsRequest, snapper: SnapperDep) -> SnapRoadsResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    if not req.coordinates:
        exc = InputValidationError(reason_code="coordinates_required", message="Coordinates array is required")
        raise _reject(exc, endpoint="snap_roads", request_id=request_id)

    points = [(c.lat, c.lon) for c in req.coordinates]
    enabled_snapper = snapper if settings.road_snap_enabled else None
    snapped_points, has_snapped = await snap_with_fallback(
        enabled_snapper,
        points,
        timeout_s=settings.road_snap_timeout_s,
        interpolate=req.interpolate,
    )
    duration_ms = _elapsed_ms(t0)

    log_event(
        "snap_roads_request",
        request_id=request_id,
        point_count=len(points),
        snapped=has_snapped,
        duration_ms=duration_ms,
    )
    return SnapRoadsResponse(snapped_points=snapped_points, has_snapped=has_snapped, processing_time_ms=duration_ms)


def _routes_response(
    result: RouteScoringResult,
    *,
    t0: float,
    directions_available: bool | None = None,
) -> ProcessRoutesResponse:
    return ProcessRoutesResponse(
        **result.model_dump(),
        safety_metrics=result.scores,
        directions_available=directions_available,
        performance=Performance(processing_time_ms=_elapsed_ms(t0), routes_processed=len(result.routes)),
    )


def _score(
    candidates: list[RouteCandidate],
    profile: MotorFuelProfile | None,
    *,
    endpoint: str,
    request_id: str,
) -> RouteScoringResult:
    try:
        return score_routes(candidates, profile)
    except CoreError as e:
        raise _reject(e, endpoint=endpoint, request_id=request_id) from e


@app.post("/routes/process-traffic-analysis", response_model=ProcessRoutesResponse)
async def process_traffic_analysis(req: ProcessRoutesRequest) -> ProcessRoutesResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    result = _score(req.routes, req.motor_data, endpoint="process_traffic_analysis", request_id=request_id)
    response = _routes_response(result, t0=t0)

    log_event(
        "traffic_analysis_request",
        request_id=request_id,
        candidate_count=len(req.routes),
        scored_count=len(result.routes),
        skipped=result.skipped_route_indices,
        best_route_id=result.best_route_id,
        duration_ms=response.performance.processing_time_ms,
    )
    return response


@app.post("/routes/process-directions", response_model=ProcessRoutesResponse)
async def process_directions(req: DirectionsRequest, directions: DirectionsDep) -> ProcessRoutesResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    candidates = await fetch_with_fallback(
        directions,
        origin=req.origin,
        destination=req.destination,
        alternatives=req.options.alternatives,
        avoid=req.options.avoid,
        timeout_s=retry_budget_s(settings.directions_timeout_s, settings.directions_max_retries),
    )
    available = candidates is not None
    result = _score(candidates or [], req.motor_data, endpoint="process_directions", request_id=request_id)
    response = _routes_response(result, t0=t0, directions_available=available)

    log_event(
        "directions_request",
        request_id=request_id,
        origin=req.origin.model_dump(),
        destination=req.destination.model_dump(),
        directions_available=available,
        candidate_count=len(candidates or []),
        best_route_id=result.best_route_id,
        duration_ms=response.performance.processing_time_ms,
    )
    return response


@app.post("/calculations/distance", response_model=DistanceResponse)
async def calculate_distance(req: DistanceRequest) -> DistanceResponse:
    t0 = time.perf_counter()
    distances = [haversine_m(c.lat1, c.lon1, c.lat2, c.lon2) for c in req.coordinates]
    duration_ms = _elapsed_ms(t0)
    log_event("distance_request", pair_count=len(distances), duration_ms=duration_ms)
    return DistanceResponse(
        distances=distances,
        total_distance_m=sum(distances),
        coordinates_processed=len(distances),
        processing_time_ms=duration_ms,
    )


@app.post("/calculations/fuel-consumption", response_model=FuelConsumptionResponse)
async def calculate_fuel_consumption(req: FuelConsumptionRequest) -> FuelConsumptionResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    try:
        state = compute_fuel_state(
            req.distance_m,
            req.motor_data,
            remaining_trip_distance_m=req.remaining_trip_distance_m,
            low_fuel_threshold_pct=req.low_fuel_threshold_pct,
        )
        max_range_m = total_drivable_distance_m(req.motor_data)
    except CoreError as e:
        raise _reject(e, endpoint="calculate_fuel_consumption", request_id=request_id) from e

    duration_ms = _elapsed_ms(t0)
    log_event(
        "fuel_consumption_request",
        request_id=request_id,
        distance_m=req.distance_m,
        fuel_consumed_l=round(state.fuel_consumed_l, 4),
        low_fuel=state.low_fuel,
        duration_ms=duration_ms,
    )
    return FuelConsumptionResponse(
        **state.model_dump(),
        recommendations=fuel_recommendations(state),
        total_drivable_distance_m=max_range_m,
        processing_time_ms=duration_ms,
    )


@app.post("/calculations/trip-statistics", response_model=TripStatisticsResponse)
async def calculate_trip_statistics(req: TripStatisticsRequest) -> TripStatisticsResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    try:
        ingested = ingest_locations(req.locations)
        fuel_state = compute_fuel_state(ingested.total_distance_m, req.motor_data)
    except CoreError as e:
        raise _reject(e, endpoint="calculate_trip_statistics", request_id=request_id) from e

    statistics = statistics_from_ingest(ingested)
    duration_ms = _elapsed_ms(t0)
    log_event(
        "trip_statistics_request",
        request_id=request_id,
        point_count=statistics.points_processed,
        total_distance_m=round(statistics.total_distance_m, 3),
        duration_ms=duration_ms,
    )
    return TripStatisticsResponse(statistics=statistics, fuel_data=fuel_state, processing_time_ms=duration_ms)


@app.post("/fuel/drivable-distance", response_model=DrivableDistanceResponse)
async def calculate_drivable_distance(req: DrivableDistanceRequest) -> DrivableDistanceResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    try:
        result = drivable_distance(req.motor_data)
    except CoreError as e:
        raise _reject(e, endpoint="calculate_drivable_distance", request_id=request_id) from e

    duration_ms = _elapsed_ms(t0)
    log_event(
        "drivable_distance_request",
        request_id=request_id,
        drivable_distance_m=round(result.drivable_distance_m, 1),
        duration_ms=duration_ms,
    )
    return DrivableDistanceResponse(**result.model_dump(), processing_time_ms=duration_ms)
