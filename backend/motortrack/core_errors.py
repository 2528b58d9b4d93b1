from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "coordinates_required",
        "coordinate_out_of_range",
        "batch_too_large",
        "fuel_profile_invalid",
        "distance_invalid",
        "invalid_request",
    }
)


@dataclass
class CoreError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    def as_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {
            "reason_code": normalize_reason_code(self.reason_code),
            "message": self.message,
        }
        if self.details:
            detail.update(self.details)
        return detail


class InputValidationError(CoreError):
    """Malformed or out-of-range request data; nothing is computed."""


class FuelPreconditionError(CoreError):
    """Fuel inputs that would divide by zero or yield meaningless percentages."""


def normalize_reason_code(reason_code: str, *, default: str = "invalid_request") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
