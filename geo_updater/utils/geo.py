"""Geographic utility functions for the data updater."""

import math


def ensure_multipolygon(geometry: dict | None) -> dict | None:
    """Normalize a GeoJSON geometry to MultiPolygon.

    Polygons are wrapped into a single-member MultiPolygon. Anything else
    (points, lines, collections, empty geometries) is rejected.

    Args:
        geometry: GeoJSON geometry object

    Returns:
        MultiPolygon geometry dict, or None if the geometry is unusable
    """
    if not geometry or not isinstance(geometry, dict):
        return None

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if not coordinates:
        return None

    if geom_type == "MultiPolygon":
        return {"type": "MultiPolygon", "coordinates": coordinates}
    if geom_type == "Polygon":
        return {"type": "MultiPolygon", "coordinates": [coordinates]}
    return None


def approximate_utc_offset(lon: float) -> int:
    """Estimate a UTC offset in whole hours from longitude.

    Used by lookups when no timezone polygon matches. Each 15 degrees of
    longitude is one hour.

    Args:
        lon: Longitude in degrees

    Returns:
        Offset in hours, clamped to the real-world range [-12, 14]
    """
    if lon is None or math.isnan(lon):
        return 0
    return max(-12, min(14, round(lon / 15)))
