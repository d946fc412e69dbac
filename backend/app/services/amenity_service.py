"""
Amenity point datasets (MRT/LRT stations, schools, clinics).

Points are read from local GeoJSON exports of the data.gov.sg datasets,
normalized once and kept for the lifetime of the repository object.
"""
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from app.services.geo import AmenityPoint, feature_to_amenity

logger = logging.getLogger(__name__)

MRT = "mrt"
SCHOOL = "school"
CLINIC = "clinic"
CATEGORIES = (MRT, SCHOOL, CLINIC)

SCHOOL_FILES = ("schools_points.geojson", "preschools.geojson")
CLINIC_FILES = ("chas_clinics.geojson",)
STATIONS_FILE = "stations.geojson"

_STATION_LAYER = re.compile(r"railstation|stationlayer", re.IGNORECASE)


class AmenityRepository:
    """Loads and memoizes amenity points per category."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._points: Dict[str, List[AmenityPoint]] = {}
        # Bumped on reload so distance memos built on older points can be dropped
        self.generation = 0

    def _read_geojson(self, path: Path) -> Optional[dict]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Amenity file not found: {path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read amenity file {path}: {e}")
        return None

    def _points_from_file(self, path: Path, category: str) -> List[AmenityPoint]:
        data = self._read_geojson(path)
        if not data:
            return []
        points = []
        skipped = 0
        for feature in data.get("features") or []:
            point = feature_to_amenity(feature, category) if isinstance(feature, dict) else None
            if point is None:
                skipped += 1
                continue
            points.append(point)
        if skipped:
            logger.info(f"Skipped {skipped} unplaceable features in {path.name}")
        return points

    def resolve_stations_file(self) -> Optional[Path]:
        """stations.geojson, else the first file that looks like a station layer."""
        primary = self.data_dir / STATIONS_FILE
        if primary.exists():
            return primary
        if not self.data_dir.is_dir():
            return None
        candidates = sorted(p for p in self.data_dir.iterdir() if p.suffix.lower() == ".geojson")
        fallback = next((p for p in candidates if _STATION_LAYER.search(p.name)), None)
        if fallback is None:
            fallback = next((p for p in candidates if "station" in p.name.lower()), None)
        if fallback is not None:
            logger.warning(f"Using fallback stations GeoJSON file: {fallback.name}")
        return fallback

    def _load(self, category: str) -> List[AmenityPoint]:
        if category == MRT:
            path = self.resolve_stations_file()
            if path is None:
                logger.warning(f"No stations GeoJSON file found in {self.data_dir}")
                return []
            return self._points_from_file(path, MRT)
        if category == SCHOOL:
            files = SCHOOL_FILES
        elif category == CLINIC:
            files = CLINIC_FILES
        else:
            raise ValueError(f"Unknown amenity category: {category}")

        points: List[AmenityPoint] = []
        for name in files:
            points.extend(self._points_from_file(self.data_dir / name, category))
        return points

    def load_points(self, category: str) -> List[AmenityPoint]:
        if category not in self._points:
            points = self._load(category)
            if not points:
                logger.warning(f"No {category} points loaded; {category} sub-scores will be 0")
            else:
                logger.info(f"Loaded {len(points)} {category} points")
            self._points[category] = points
        return self._points[category]

    def load_all(self) -> Dict[str, List[AmenityPoint]]:
        return {category: self.load_points(category) for category in CATEGORIES}

    def reload(self) -> None:
        self._points.clear()
        self.generation += 1
