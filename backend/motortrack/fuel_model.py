from __future__ import annotations

import math

from .core_errors import FuelPreconditionError
from .logging_utils import log_event
from .models import DrivableDistance, FuelState, MotorFuelProfile
from .settings import settings

M_PER_KM = 1000.0


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def validate_profile(profile: MotorFuelProfile) -> None:
    """Reject profiles that would divide by zero or produce meaningless percentages."""
    efficiency = float(profile.fuel_efficiency)
    tank = float(profile.fuel_tank)
    level = float(profile.current_fuel_level)
    if not math.isfinite(efficiency) or efficiency <= 0:
        raise FuelPreconditionError(
            reason_code="fuel_profile_invalid",
            message="Motor fuel efficiency must be a positive number",
            details={"field": "fuel_efficiency", "value": profile.fuel_efficiency},
        )
    if not math.isfinite(tank) or tank <= 0:
        raise FuelPreconditionError(
            reason_code="fuel_profile_invalid",
            message="Motor fuel tank capacity must be a positive number",
            details={"field": "fuel_tank", "value": profile.fuel_tank},
        )
    if not math.isfinite(level) or not (0.0 <= level <= 100.0):
        raise FuelPreconditionError(
            reason_code="fuel_profile_invalid",
            message="Current fuel level must be a percentage in [0, 100]",
            details={"field": "current_fuel_level", "value": profile.current_fuel_level},
        )


def fuel_liters_for_distance(distance_m: float, profile: MotorFuelProfile | None) -> float:
    """Litres burned over distance_m. Efficiency is km per litre, so metres convert here."""
    if profile is None:
        return 0.0
    validate_profile(profile)
    d = float(distance_m)
    if not math.isfinite(d) or d < 0:
        raise FuelPreconditionError(
            reason_code="distance_invalid",
            message="Distance must be a finite, non-negative number of metres",
            details={"value": distance_m},
        )
    return (d / M_PER_KM) / float(profile.fuel_efficiency)


def fuel_cost(fuel_l: float) -> float:
    return max(0.0, float(fuel_l)) * settings.fuel_price_per_liter


def compute_fuel_state(
    distance_m: float,
    profile: MotorFuelProfile | None,
    *,
    remaining_trip_distance_m: float | None = None,
    low_fuel_threshold_pct: float | None = None,
) -> FuelState:
    """Fuel state after covering distance_m, starting from the profile's current level.

    Without a profile the state is neutral: nothing consumed and no signals raised.
    """
    if profile is None:
        return FuelState(profile_supplied=False)

    fuel_consumed_l = fuel_liters_for_distance(distance_m, profile)
    tank = float(profile.fuel_tank)
    efficiency = float(profile.fuel_efficiency)

    fuel_consumed_pct = (fuel_consumed_l / tank) * 100.0
    remaining_pct = _clamp(float(profile.current_fuel_level) - fuel_consumed_pct, 0.0, 100.0)
    remaining_range_m = (remaining_pct * tank * efficiency / 100.0) * M_PER_KM

    threshold = settings.low_fuel_threshold_pct if low_fuel_threshold_pct is None else float(low_fuel_threshold_pct)
    low_fuel = remaining_pct < threshold

    can_complete: bool | None = None
    if remaining_trip_distance_m is not None:
        can_complete = remaining_range_m >= max(0.0, float(remaining_trip_distance_m))

    state = FuelState(
        fuel_consumed_l=fuel_consumed_l,
        fuel_consumed_pct=fuel_consumed_pct,
        remaining_fuel_pct=remaining_pct,
        remaining_range_m=remaining_range_m,
        low_fuel=low_fuel,
        trip_can_complete=can_complete,
        profile_supplied=True,
    )
    if low_fuel or can_complete is False:
        # Consumers watch for this event; the core itself sends no notifications.
        log_event(
            "fuel_signal",
            low_fuel=low_fuel,
            trip_can_complete=can_complete,
            remaining_fuel_pct=round(remaining_pct, 3),
            remaining_range_m=round(remaining_range_m, 1),
        )
    return state


def fuel_recommendations(state: FuelState) -> list[str]:
    if not state.profile_supplied:
        return []
    out: list[str] = []
    if state.low_fuel:
        out.append("Low fuel level - consider refueling soon")
    if state.remaining_fuel_pct < settings.very_low_fuel_threshold_pct:
        out.append("Very low fuel - refuel immediately")
    if state.fuel_consumed_pct > settings.high_consumption_pct:
        out.append("High fuel consumption - check vehicle efficiency")
    if state.trip_can_complete is False:
        out.append("Remaining range is shorter than the rest of the trip")
    return out


def total_drivable_distance_m(profile: MotorFuelProfile) -> float:
    validate_profile(profile)
    return float(profile.fuel_efficiency) * float(profile.fuel_tank) * M_PER_KM


def drivable_distance(profile: MotorFuelProfile) -> DrivableDistance:
    """Range on the fuel currently in the tank, and on a full tank."""
    max_m = total_drivable_distance_m(profile)
    current_l = (float(profile.current_fuel_level) / 100.0) * float(profile.fuel_tank)
    drivable_m = current_l * float(profile.fuel_efficiency) * M_PER_KM

    drivable_km = drivable_m / M_PER_KM
    recommendations: list[str] = []
    if drivable_km < 100:
        recommendations.append("Very low range - refuel immediately")
    elif drivable_km < 200:
        recommendations.append("Low range - consider refueling soon")
    elif drivable_km > 500:
        recommendations.append("Good range - safe for long trips")

    return DrivableDistance(
        current_fuel_l=current_l,
        drivable_distance_m=drivable_m,
        max_drivable_distance_m=max_m,
        fuel_efficiency=float(profile.fuel_efficiency),
        recommendations=recommendations,
    )
