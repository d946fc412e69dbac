"""Approximate town-level coordinates used when block geocoding fails."""
from typing import Dict, Optional

from app.services.geo import GeoPoint

TOWN_CENTROIDS: Dict[str, GeoPoint] = {
    "ANG MO KIO": GeoPoint(1.3691, 103.8458),
    "BEDOK": GeoPoint(1.3236, 103.9305),
    "BISHAN": GeoPoint(1.3508, 103.8487),
    "BUKIT BATOK": GeoPoint(1.3496, 103.7495),
    "BUKIT MERAH": GeoPoint(1.2778, 103.8190),
    "BUKIT PANJANG": GeoPoint(1.3786, 103.7643),
    "BUKIT TIMAH": GeoPoint(1.3294, 103.8021),
    "CENTRAL AREA": GeoPoint(1.2906, 103.8519),
    "CHOA CHU KANG": GeoPoint(1.3854, 103.7441),
    "CLEMENTI": GeoPoint(1.3151, 103.7646),
    "GEYLANG": GeoPoint(1.3180, 103.8830),
    "HOUGANG": GeoPoint(1.3611, 103.8863),
    "JURONG EAST": GeoPoint(1.3331, 103.7435),
    "JURONG WEST": GeoPoint(1.3393, 103.7090),
    "KALLANG/WHAMPOA": GeoPoint(1.3139, 103.8564),
    "MARINE PARADE": GeoPoint(1.3012, 103.9052),
    "PASIR RIS": GeoPoint(1.3731, 103.9497),
    "PUNGGOL": GeoPoint(1.4054, 103.9023),
    "QUEENSTOWN": GeoPoint(1.2943, 103.7865),
    "SEMBAWANG": GeoPoint(1.4491, 103.8201),
    "SENGKANG": GeoPoint(1.3912, 103.8952),
    "SERANGOON": GeoPoint(1.3524, 103.8690),
    "TAMPINES": GeoPoint(1.3527, 103.9440),
    "TOA PAYOH": GeoPoint(1.3341, 103.8503),
    "WOODLANDS": GeoPoint(1.4354, 103.7865),
    "YISHUN": GeoPoint(1.4294, 103.8352),
}


def get_town_centroid(town: Optional[str]) -> Optional[GeoPoint]:
    if not town:
        return None
    return TOWN_CENTROIDS.get(town.strip().upper())
