"""Point normalisation and nearest-amenity distance helpers.

Amenity datasets arrive in several shapes (plain lat/lng records, GeoJSON
Point/Polygon/MultiPolygon features, bare coordinate pairs). Everything is
reduced to a GeoPoint here so distance code only ever sees finite floats.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from app import config

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000

LAT_FIELDS = ("lat", "latitude")
LNG_FIELDS = ("lng", "lon", "longitude")

_DESCRIPTION_CELL = re.compile(r"<th>([^<]+)</th>\s*<td>([^<]*)</td>", re.IGNORECASE)


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class AmenityPoint(GeoPoint):
    category: Optional[str] = None
    name: Optional[str] = None
    rail_type: Optional[str] = None


@dataclass(frozen=True)
class NearestAmenity:
    name: str
    distance_m: float


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _make_point(lat: Any, lng: Any) -> Optional[GeoPoint]:
    lat_f = _to_float(lat)
    lng_f = _to_float(lng)
    if lat_f is None or lng_f is None:
        return None
    return GeoPoint(lat=lat_f, lng=lng_f)


def is_valid_sg_coordinate(lat: Any, lng: Any) -> bool:
    """True when both values are finite and fall inside the Singapore box."""
    lat_f = _to_float(lat)
    lng_f = _to_float(lng)
    if lat_f is None or lng_f is None:
        return False
    return (
        config.SG_LAT_MIN < lat_f < config.SG_LAT_MAX
        and config.SG_LNG_MIN < lng_f < config.SG_LNG_MAX
    )


def polygon_centroid(ring: Sequence[Sequence[float]]) -> Optional[GeoPoint]:
    """Shoelace centroid of a [lng, lat] ring.

    Degenerate rings (zero signed area) fall back to the vertex mean.
    """
    try:
        vertices = [(float(pt[0]), float(pt[1])) for pt in ring]
    except (TypeError, ValueError, IndexError):
        return None
    if len(vertices) < 3:
        return None

    twice_area = cx = cy = 0.0
    for (x1, y1), (x2, y2) in zip(vertices, vertices[1:]):
        cross = x1 * y2 - x2 * y1
        twice_area += cross
        cx += (x1 + x2) * cross
        cy += (y1 + y2) * cross

    if twice_area == 0:
        lng = sum(x for x, _ in vertices) / len(vertices)
        lat = sum(y for _, y in vertices) / len(vertices)
    else:
        lng = cx / (3 * twice_area)
        lat = cy / (3 * twice_area)
    return _make_point(lat, lng)


def multipolygon_centroid(polygons: Sequence[Any]) -> Optional[GeoPoint]:
    """Mean of every outer-ring vertex across all polygons (not area weighted)."""
    sum_lat = sum_lng = 0.0
    count = 0
    for polygon in polygons or []:
        if not isinstance(polygon, (list, tuple)) or not polygon:
            continue
        for pt in polygon[0] or []:
            if not isinstance(pt, (list, tuple)) or len(pt) < 2:
                continue
            lng = _to_float(pt[0])
            lat = _to_float(pt[1])
            if lat is None or lng is None:
                continue
            sum_lng += lng
            sum_lat += lat
            count += 1
    if count == 0:
        return None
    return _make_point(sum_lat / count, sum_lng / count)


def geometry_to_point(geometry: Any) -> Optional[GeoPoint]:
    """Reduce a GeoJSON geometry to a single point."""
    if not isinstance(geometry, Mapping):
        return None
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)):
        return None

    if geom_type == "Point":
        if len(coords) < 2:
            return None
        return _make_point(coords[1], coords[0])
    if geom_type == "Polygon":
        if not coords or not isinstance(coords[0], (list, tuple)):
            return None
        return polygon_centroid(coords[0])
    if geom_type == "MultiPolygon":
        return multipolygon_centroid(coords)
    return None


def _first_present(record: Mapping, fields: Iterable[str]) -> Any:
    for field in fields:
        if record.get(field) is not None:
            return record[field]
    return None


def normalize_point(record: Any) -> Optional[GeoPoint]:
    """Extract a GeoPoint from an arbitrary point-ish record.

    Tried in order: direct lat/lng style fields, a GeoJSON geometry (on a
    Feature or the record itself), then a generic ``coordinates`` pair in
    [lng, lat] order. Returns None when nothing finite can be extracted.
    """
    if isinstance(record, GeoPoint):
        return _make_point(record.lat, record.lng)
    if not isinstance(record, Mapping):
        return None

    lat = _first_present(record, LAT_FIELDS)
    lng = _first_present(record, LNG_FIELDS)
    if lat is not None and lng is not None:
        return _make_point(lat, lng)

    geometry = record.get("geometry")
    if geometry is None and record.get("type") in ("Point", "Polygon", "MultiPolygon"):
        geometry = record
    if geometry is not None:
        return geometry_to_point(geometry)

    coords = record.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        return _make_point(coords[1], coords[0])
    return None


def normalize_points(items: Optional[Iterable[Any]], label: str) -> List[GeoPoint]:
    """Normalise a list of records, dropping the ones without a usable point."""
    items = list(items or [])
    points = [p for p in (normalize_point(it) for it in items) if p is not None]
    if items and not points:
        logger.warning(f"{label}: {len(items)} records present but none normalized. First: {items[0]!r}")
    return points


def parse_station_description(description: Optional[str]) -> dict:
    """Pull NAME / RAIL_TYPE out of a KML-export Description HTML table."""
    cells = {}
    for key, value in _DESCRIPTION_CELL.findall(description or ""):
        cells[key.strip().upper()] = value.strip()
    return {"name": cells.get("NAME", ""), "rail_type": cells.get("RAIL_TYPE")}


def feature_to_amenity(feature: Mapping, category: str) -> Optional[AmenityPoint]:
    """Build an AmenityPoint from a GeoJSON feature, or None if unplaceable."""
    point = normalize_point(feature)
    if point is None:
        return None

    props = feature.get("properties") or {}
    parsed = parse_station_description(props.get("Description"))
    name = (parsed["name"] or props.get("NAME") or props.get("Name") or "").strip()
    if name.lower().startswith("kml_") and parsed["name"]:
        name = parsed["name"]
    rail_type = parsed["rail_type"] or props.get("Rail Type")

    return AmenityPoint(
        lat=point.lat,
        lng=point.lng,
        category=category,
        name=name or None,
        rail_type=rail_type,
    )


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in metres."""
    lat1, lng1, lat2, lng2 = map(math.radians, (a.lat, a.lng, b.lat, b.lng))
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def nearest_with_name(point: GeoPoint, candidates: Iterable[GeoPoint]) -> Optional[NearestAmenity]:
    """Nearest candidate and its name; None when there are no candidates."""
    best_distance = math.inf
    best_name = ""
    for candidate in candidates:
        d = haversine_m(point, candidate)
        if math.isfinite(d) and d < best_distance:
            best_distance = d
            best_name = getattr(candidate, "name", None) or ""
    if not math.isfinite(best_distance):
        return None
    return NearestAmenity(name=best_name, distance_m=best_distance)


def nearest_distance(point: GeoPoint, candidates: Iterable[GeoPoint]) -> Optional[float]:
    """Distance in metres to the nearest candidate.

    Returns None (unknown) for an empty candidate set, never 0.
    """
    nearest = nearest_with_name(point, candidates)
    return nearest.distance_m if nearest else None
