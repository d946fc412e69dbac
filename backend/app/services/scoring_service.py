"""Scoring primitives for the flat ranking engine.

Every sub-score is on a 0-100 scale: distance-based criteria decay
linearly to 0 at a per-criterion cap, and the price sub-score is the
listing's position inside the current candidate set's price window.
The composite score is the weight-normalized sum of sub-scores, so it is
also bounded to 0-100. No I/O here.
"""
import math
from typing import Dict, Mapping, Optional
from urllib.parse import quote

from app import config

CRITERIA = ("mrt", "school", "hospital", "affordability")

DISTANCE_CAPS_M: Dict[str, float] = {
    "mrt": config.MRT_CAP_M,
    "school": config.SCHOOL_CAP_M,
    "hospital": config.HOSPITAL_CAP_M,
}

KEY_DELIMITER = "__"
RESERVED_KEY_SEGMENT = "0"

# Same unreserved set as JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


def _clamp(x: float, low: float, high: float) -> float:
    return max(low, min(high, x))


class ScoringService:
    """Stateless scoring helpers shared by ranking and batch scoring."""

    @staticmethod
    def distance_to_score(distance_m: Optional[float], cap_m: float) -> float:
        """Linear decay from 100 at 0 m to 0 at ``cap_m``.

        Unknown distances (no amenity data) score 0, never 100.
        """
        if distance_m is None or not math.isfinite(distance_m) or cap_m <= 0:
            return 0.0
        return _clamp(100 * (1 - distance_m / cap_m), 0.0, 100.0)

    @staticmethod
    def normalize_weights(weights: Optional[Mapping[str, float]]) -> Dict[str, float]:
        """Clamp weights to >= 0 and scale them to sum to 1.0.

        A zero (or negative) total gives every criterion equal weight.
        Unknown criteria are ignored.
        """
        clamped = {}
        for criterion in CRITERIA:
            value = (weights or {}).get(criterion) or 0
            try:
                value = float(value)
            except (TypeError, ValueError):
                value = 0.0
            clamped[criterion] = value if math.isfinite(value) and value > 0 else 0.0

        total = sum(clamped.values())
        if total <= 0:
            return {criterion: 1 / len(CRITERIA) for criterion in CRITERIA}
        return {criterion: value / total for criterion, value in clamped.items()}

    @staticmethod
    def price_score(price: Optional[float], price_low: float, price_high: float) -> float:
        """Relative cheapness within the candidate set (0-100).

        The cheapest candidate scores 100, the dearest 0. The span is at
        least 1 so a single-price set does not divide by zero.
        """
        if price is None or not math.isfinite(price):
            return 50.0
        span = max(price_high - price_low, 1)
        return 100 * _clamp((price_high - price) / span, 0.0, 1.0)

    @staticmethod
    def composite_score(pct: Mapping[str, float], subscores: Mapping[str, float]) -> float:
        return sum(pct.get(c, 0.0) * subscores.get(c, 0.0) for c in CRITERIA)

    @staticmethod
    def build_composite_key(block: str, street_name: str, flat_type: str, month: Optional[str]) -> str:
        """Stable listing identity shared with bookmarks and detail lookups.

        ``BLOCK__STREET__FLAT_TYPE__MONTH__0`` with every part trimmed,
        uppercased and percent-encoded. The trailing ``0`` is a reserved
        segment kept for format compatibility.
        """
        parts = [
            str(value or "").strip().upper()
            for value in (block, street_name, flat_type, month)
        ]
        encoded = [quote(part, safe=_URI_COMPONENT_SAFE) for part in parts]
        return KEY_DELIMITER.join(encoded + [RESERVED_KEY_SEGMENT])
