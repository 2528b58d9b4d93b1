from __future__ import annotations

import asyncio
from typing import Any, Protocol

import httpx

from .logging_utils import log_event
from .models import SnappedPoint


class RoadSnapError(RuntimeError):
    pass


class RoadSnapper(Protocol):
    async def snap(
        self,
        points: list[tuple[float, float]],
        *,
        interpolate: bool = True,
    ) -> list[SnappedPoint]: ...


def _match_error_message(resp: httpx.Response) -> str:
    """`OSRM match <status> <code>: <message>`, falling back to a clipped body."""
    prefix = f"OSRM match {resp.status_code}"
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("code"):
        detail = data.get("message")
        return f"{prefix} {data['code']}: {detail}" if detail else f"{prefix} {data['code']}"

    body = " ".join((resp.text or "").split())[:200]
    return f"{prefix}: {body}" if body else prefix


class OSRMRoadSnapper:
    """Map-matching against an OSRM `/match` service."""

    def __init__(self, *, base_url: str, profile: str = "driving", timeout_s: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile

        # trust_env=False keeps proxy env vars away from localhost / docker service names.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=min(timeout_s, 2.0)),
            trust_env=False,
            headers={"accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def snap(
        self,
        points: list[tuple[float, float]],
        *,
        interpolate: bool = True,
    ) -> list[SnappedPoint]:
        if len(points) < 2:
            raise RoadSnapError("OSRM match needs at least two points")

        coords = ";".join(f"{lon},{lat}" for (lat, lon) in points)
        url = f"{self.base_url}/match/v1/{self.profile}/{coords}"
        params = {
            "overview": "full" if interpolate else "false",
            "geometries": "geojson",
            "tidy": "true",
        }

        try:
            resp = await self._client.get(url, params=params)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            msg = str(e).strip() or repr(e)
            raise RoadSnapError(f"{type(e).__name__}: {msg}") from e

        if resp.status_code >= 400:
            raise RoadSnapError(_match_error_message(resp))

        try:
            data = resp.json()
        except ValueError as e:
            raise RoadSnapError("OSRM returned a non-JSON body") from e
        if not isinstance(data, dict) or data.get("code") != "Ok":
            code = data.get("code") if isinstance(data, dict) else None
            raise RoadSnapError(f"OSRM match error code={code}")

        return parse_match_response(data, point_count=len(points), interpolate=interpolate)


def parse_match_response(
    data: dict[str, Any],
    *,
    point_count: int,
    interpolate: bool,
) -> list[SnappedPoint]:
    """Turn an OSRM match payload into snapped points.

    Without interpolation each input point maps to its tracepoint (unmatched
    tracepoints keep no entry). With interpolation the matched geometry is
    returned, tagged with original indices where a tracepoint sits on it.
    """
    tracepoints = data.get("tracepoints")
    if not isinstance(tracepoints, list) or len(tracepoints) != point_count:
        raise RoadSnapError("OSRM match returned no tracepoints")

    snapped: list[SnappedPoint] = []
    for idx, tp in enumerate(tracepoints):
        if not isinstance(tp, dict):
            continue
        loc = tp.get("location")
        if isinstance(loc, list) and len(loc) == 2:
            snapped.append(SnappedPoint(lat=float(loc[1]), lon=float(loc[0]), original_index=idx))

    if not snapped:
        raise RoadSnapError("OSRM matched none of the points")
    if not interpolate:
        return snapped

    geometry_points: list[SnappedPoint] = []
    for matching in data.get("matchings") or []:
        coords = ((matching or {}).get("geometry") or {}).get("coordinates") or []
        for pt in coords:
            if isinstance(pt, (list, tuple)) and len(pt) == 2:
                geometry_points.append(SnappedPoint(lat=float(pt[1]), lon=float(pt[0])))
    if len(geometry_points) < 2:
        return snapped

    by_location = {(round(p.lat, 6), round(p.lon, 6)): p.original_index for p in snapped}
    return [
        SnappedPoint(
            lat=p.lat,
            lon=p.lon,
            original_index=by_location.get((round(p.lat, 6), round(p.lon, 6))),
        )
        for p in geometry_points
    ]


def raw_trajectory(points: list[tuple[float, float]]) -> list[SnappedPoint]:
    return [SnappedPoint(lat=lat, lon=lon, original_index=idx) for idx, (lat, lon) in enumerate(points)]


async def snap_with_fallback(
    snapper: RoadSnapper | None,
    points: list[tuple[float, float]],
    *,
    timeout_s: float,
    interpolate: bool = True,
) -> tuple[list[SnappedPoint], bool]:
    """Snap under a bounded timeout; any failure falls back to the raw trajectory.

    Returns (points, snapped). This never raises for upstream problems.
    """
    if snapper is None or len(points) < 2:
        return raw_trajectory(points), False

    try:
        snapped = await asyncio.wait_for(
            snapper.snap(points, interpolate=interpolate),
            timeout=max(0.01, float(timeout_s)),
        )
    except asyncio.TimeoutError:
        log_event("road_snap_fallback", reason="timeout", timeout_s=timeout_s, point_count=len(points))
        return raw_trajectory(points), False
    except Exception as e:
        # Snapping is optional; ingestion keeps the raw trajectory.
        log_event(
            "road_snap_fallback",
            reason="upstream_error" if isinstance(e, (RoadSnapError, httpx.HTTPError)) else "unexpected_error",
            error=f"{type(e).__name__}: {e}",
            point_count=len(points),
        )
        return raw_trajectory(points), False

    if not snapped:
        log_event("road_snap_fallback", reason="empty_result", point_count=len(points))
        return raw_trajectory(points), False
    return snapped, True
