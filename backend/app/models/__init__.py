"""
ORM models for the flat finder database.
"""
from app.models.geocode_cache import GeocodeCacheModel

__all__ = ["GeocodeCacheModel"]
