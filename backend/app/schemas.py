from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional


class RankingRequest(BaseModel):
    """Request model for ranking flats in up to three towns"""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "towns": ["ANG MO KIO", "BISHAN"],
                "flatType": "4 ROOM",
                "weights": {"mrt": 7, "school": 6, "hospital": 3, "affordability": 8},
                "pricePolicy": "cheapest-recent-24m",
            }
        },
    )

    towns: List[str] = Field(default_factory=list, description="HDB towns to search (1-3)")
    flat_type: Optional[str] = Field(None, alias="flatType", description="e.g. '4 ROOM', 'EXECUTIVE'")
    weights: Optional[Dict[str, float]] = Field(
        None, description="Relative importance of mrt, school, hospital and affordability"
    )
    price_policy: Optional[str] = Field(None, alias="pricePolicy")


class ScoreDistances(BaseModel):
    mrt: Optional[float] = None
    school: Optional[float] = None
    hospital: Optional[float] = None


class NearestStation(BaseModel):
    name: str
    distance_m: int


class ScoredFlat(BaseModel):
    """One ranked flat: the representative transaction plus its scores"""
    town: str
    block: str
    street_name: str
    flat_type: str
    resale_price: float
    month: str
    floor_area_sqm: Optional[float] = None
    storey_range: str = ""
    remaining_lease: str = ""
    remaining_lease_years: Optional[float] = None
    lease_commence_date: Optional[int] = None
    score: float = Field(..., description="Composite score from 0-100")
    affordability_score: float = Field(..., description="0-10 display scale")
    distances: ScoreDistances
    nearest_station: Optional[NearestStation] = None
    composite_key: str
    lat: float
    lng: float
    approx: bool = Field(False, description="True when located by town centroid")


class RankingResponse(BaseModel):
    """Response model for a ranking request"""
    ok: bool
    results: List[ScoredFlat] = Field(default_factory=list)
    error: Optional[str] = None
    candidates: Optional[int] = Field(None, description="Representative listings considered")
    misses: Optional[int] = Field(None, description="Listings excluded for lack of a coordinate")


class TownsResponse(BaseModel):
    ok: bool = True
    towns: List[str]


class ScoreBatchItem(BaseModel):
    town: str
    block: str
    street_name: str
    flat_type: str
    month: Optional[str] = None
    resale_price: float = Field(..., gt=0)


class ScoreBatchRequest(BaseModel):
    """Request model for scoring bookmarked flats"""
    items: List[ScoreBatchItem] = Field(default_factory=list, max_length=200)
    weights: Optional[Dict[str, float]] = None


class BatchScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    composite_key: str = Field(..., alias="compositeKey")
    score: float


class ScoreBatchResponse(BaseModel):
    ok: bool
    results: List[BatchScore] = Field(default_factory=list)
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoint"""
    status: str
    message: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "message": "Flat Finder API is running"
            }
        }
    )
