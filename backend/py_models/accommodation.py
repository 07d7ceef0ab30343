from pydantic import BaseModel, Field
from typing import Optional


class SummaryProperty(BaseModel):
    """One entry of the search results page; the lightweight reference a detail fetch starts from."""
    property_name: str
    page_name: str = ""
    address: Optional[str] = None
    description: Optional[str] = None
    reviews_count: Optional[int] = None
    reviews_ratings: Optional[str] = Field(None, description="Total score as text, one decimal")


class Review(BaseModel):
    name: str
    score: Optional[float] = None


class DetailedProperty(BaseModel):
    property_name: str = ""
    page_name: str = ""
    url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    accommodation_type: Optional[str] = None
    description: Optional[str] = None
    photos: list[str] = Field(default_factory=list)
    reviews_ratings: Optional[str] = None
    reviews_count: Optional[int] = None
    reviews: list[Review] = Field(default_factory=list)
    facilities: list[str] = Field(default_factory=list)
    inspection_status: Optional[str] = None
    last_updated: Optional[str] = None


class AccommodationDocument(BaseModel):
    """Shape written to the accommodations collection."""
    name: str = Field(..., min_length=1)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    accommodation_type: Optional[str] = None
    service_description: Optional[str] = None
    website_url: Optional[str] = None
    photos: Optional[list[str]] = None
    rating: Optional[float] = Field(None, ge=0, le=10)
    review_count: Optional[int] = Field(None, ge=0)
    reviews: Optional[dict] = None
    amenities: Optional[dict[str, bool]] = None
    verification_status: str = "new"
    source_website: str = Field(..., min_length=1)
    source_url: Optional[str] = None
    external_id: str = Field(..., min_length=1)
