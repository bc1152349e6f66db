"""Encoded polyline codec used by OneBusAway route shapes."""

from typing import Iterable, List, Optional, Tuple

PRECISION = 1e5


def _next_value(encoded: str, index: int) -> Tuple[Optional[int], int]:
    """
    Read one zig-zag encoded delta starting at index.

    Returns:
        (delta, next_index). delta is None when the string ends mid-value
        or hits a character outside the polyline alphabet.
    """
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            return None, index
        byte = ord(encoded[index]) - 63
        if byte < 0 or byte > 0x3F:
            return None, index
        index += 1
        result |= (byte & 0x1F) << shift
        shift += 5
        if byte < 0x20:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode_polyline(encoded: str) -> List[Tuple[float, float]]:
    """
    Decode a Google encoded polyline into (lat, lon) pairs.

    Never raises: a truncated or malformed tail just yields fewer points.

    Args:
        encoded: Polyline string, e.g. "_p~iF~ps|U_ulLnnqC_mqNvxq`@".

    Returns:
        List of (latitude, longitude) tuples at 5 decimal precision.
    """
    points: List[Tuple[float, float]] = []
    if not encoded:
        return points

    index = 0
    lat = 0
    lon = 0
    while index < len(encoded):
        d_lat, index = _next_value(encoded, index)
        if d_lat is None:
            break
        d_lon, index = _next_value(encoded, index)
        if d_lon is None:
            break
        lat += d_lat
        lon += d_lon
        points.append((round(lat / PRECISION, 5), round(lon / PRECISION, 5)))
    return points


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(points: Iterable[Tuple[float, float]]) -> str:
    """Encode (lat, lon) pairs; the inverse of decode_polyline."""
    parts = []
    prev_lat = 0
    prev_lon = 0
    for lat, lon in points:
        lat_i = int(round(lat * PRECISION))
        lon_i = int(round(lon * PRECISION))
        parts.append(_encode_value(lat_i - prev_lat))
        parts.append(_encode_value(lon_i - prev_lon))
        prev_lat, prev_lon = lat_i, lon_i
    return "".join(parts)
