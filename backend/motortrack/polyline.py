from __future__ import annotations


class PolylineDecodeError(ValueError):
    pass


def _decode_value(encoded: str, index: int) -> tuple[int, int]:
    result = 0
    shift = 0

    while True:
        if index >= len(encoded):
            raise PolylineDecodeError("truncated polyline")
        byte = ord(encoded[index]) - 63
        index += 1
        if byte < 0 or byte > 63:
            raise PolylineDecodeError(f"invalid polyline character at {index - 1}")
        result |= (byte & 0x1F) << shift
        shift += 5
        if byte < 0x20:
            break

    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode_polyline(encoded: str, *, precision: int = 5) -> list[tuple[float, float]]:
    """Decode an encoded polyline into (lat, lon) pairs.

    Directions providers use precision 5; OSRM's polyline6 uses precision 6.
    """
    coordinates: list[tuple[float, float]] = []
    index = 0
    lat = 0
    lon = 0
    factor = 10 ** (-precision)

    while index < len(encoded):
        lat_change, index = _decode_value(encoded, index)
        lon_change, index = _decode_value(encoded, index)
        lat += lat_change
        lon += lon_change
        point = (round(lat * factor, precision), round(lon * factor, precision))
        if not (-90.0 <= point[0] <= 90.0 and -180.0 <= point[1] <= 180.0):
            raise PolylineDecodeError(f"decoded point {point} out of range")
        coordinates.append(point)

    return coordinates
