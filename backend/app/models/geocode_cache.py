"""
SQLAlchemy ORM model for durable geocode results.
"""
from sqlalchemy import Column, DateTime, Float, Index, String, Text
from sqlalchemy.sql import func

from app.database import Base


class GeocodeCacheModel(Base):
    """
    One successfully geocoded HDB address.

    Keyed by the normalized ``BLOCK|STREET`` (or ``BLOCK|STREET|TOWN``)
    cache key. Rows are only written for coordinates that passed the
    Singapore bounding-box check; town-centroid fallbacks are never stored.
    """
    __tablename__ = "geocode_cache"
    __table_args__ = (
        Index("idx_geocode_cache_updated", "updated_at"),
    )

    cache_key = Column(String(255), primary_key=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    postal = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "postal": self.postal,
            "address": self.address,
        }

    def __repr__(self):
        return f"<GeocodeCache {self.cache_key}: {self.latitude},{self.longitude}>"
