from __future__ import annotations

import asyncio
from typing import Any, Final, Protocol

import httpx

from .logging_utils import log_event
from .models import LatLng, RouteCandidate


class DirectionsError(RuntimeError):
    pass


class DirectionsRetryableError(DirectionsError):
    """A provider error that is likely transient and safe to retry."""


_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}
_RETRYABLE_PROVIDER_STATUS: Final[set[str]] = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


def _backoff_s(attempt: int) -> float:
    return min(0.25 * (2**attempt), 1.0)


def retry_budget_s(timeout_s: float, max_retries: int) -> float:
    """Wall-clock bound covering every attempt plus the backoff sleeps between them."""
    attempts = max(1, int(max_retries))
    return float(timeout_s) * attempts + sum(_backoff_s(a) for a in range(attempts - 1))


class DirectionsProvider(Protocol):
    async def fetch_routes(
        self,
        *,
        origin: LatLng,
        destination: LatLng,
        alternatives: bool = True,
        avoid: list[str] | None = None,
    ) -> list[RouteCandidate]: ...


class HTTPDirectionsClient:
    """Client for a Google-Directions-compatible JSON endpoint.

    Only the fields the scorer needs are read: per-leg distance, duration,
    duration_in_traffic and addresses, plus the overview polyline.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 8.0,
        max_retries: int = 2,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.max_retries = max(1, int(max_retries))
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=min(timeout_s, 3.0)),
            headers={"accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_routes(
        self,
        *,
        origin: LatLng,
        destination: LatLng,
        alternatives: bool = True,
        avoid: list[str] | None = None,
    ) -> list[RouteCandidate]:
        params: dict[str, str] = {
            "origin": f"{origin.lat},{origin.lon}",
            "destination": f"{destination.lat},{destination.lon}",
            "alternatives": "true" if alternatives else "false",
            # duration_in_traffic is only returned when a departure time is given.
            "departure_time": "now",
            "traffic_model": "best_guess",
        }
        if avoid:
            params["avoid"] = "|".join(a.strip() for a in avoid if a.strip())
        if self.api_key:
            params["key"] = self.api_key

        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = await self._client.get(self.base_url, params=params)
                if resp.status_code in _RETRYABLE_STATUS:
                    raise DirectionsRetryableError(f"directions HTTP {resp.status_code}")
                if resp.status_code >= 400:
                    raise DirectionsError(f"directions HTTP {resp.status_code}")
                return parse_directions_payload(resp.json())
            except DirectionsRetryableError as e:
                last_err = e
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_err = e
            except ValueError as e:
                raise DirectionsError(f"directions returned an unreadable body: {e}") from e

            if attempt < self.max_retries - 1:
                await asyncio.sleep(_backoff_s(attempt))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        if last_err is None:
            detail = "unknown error"
        else:
            msg = str(last_err).strip()
            detail = f"{type(last_err).__name__}: {msg}" if msg else f"{type(last_err).__name__}: {last_err!r}"
        raise DirectionsError(f"directions request failed after {self.max_retries} attempts: {detail}")


def parse_directions_payload(data: Any) -> list[RouteCandidate]:
    if not isinstance(data, dict):
        raise DirectionsError("directions payload is not an object")
    status = str(data.get("status") or "OK")
    if status in _RETRYABLE_PROVIDER_STATUS:
        raise DirectionsRetryableError(f"directions status {status}")
    if status == "ZERO_RESULTS":
        return []
    if status != "OK":
        message = data.get("error_message") or ""
        raise DirectionsError(f"directions status {status} {message}".strip())

    routes = data.get("routes")
    if not isinstance(routes, list):
        raise DirectionsError("directions payload has no routes list")
    return [RouteCandidate.model_validate(r) for r in routes if isinstance(r, dict)]


async def fetch_with_fallback(
    provider: DirectionsProvider | None,
    *,
    origin: LatLng,
    destination: LatLng,
    alternatives: bool,
    avoid: list[str],
    timeout_s: float,
) -> list[RouteCandidate] | None:
    """Fetch candidates under a bounded timeout. None means the provider was unusable."""
    if provider is None:
        log_event("directions_fallback", reason="provider_unconfigured")
        return None
    try:
        return await asyncio.wait_for(
            provider.fetch_routes(
                origin=origin,
                destination=destination,
                alternatives=alternatives,
                avoid=avoid,
            ),
            timeout=max(0.01, float(timeout_s)),
        )
    except asyncio.TimeoutError:
        log_event("directions_fallback", reason="timeout", timeout_s=timeout_s)
        return None
    except Exception as e:
        log_event(
            "directions_fallback",
            reason="upstream_error" if isinstance(e, (DirectionsError, httpx.HTTPError)) else "unexpected_error",
            error=f"{type(e).__name__}: {e}",
        )
        return None
