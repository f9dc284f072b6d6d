from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from consent import ConsentPreferences


class LocationPayload(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None


class TrackRequest(BaseModel):
    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    path: str = "/"
    referrer: Optional[str] = None
    language: Optional[str] = None
    consent: Optional[bool] = None
    timestamp: Optional[datetime] = None
    location: Optional[LocationPayload] = None


class TrackResponse(BaseModel):
    success: bool
    visit_id: Optional[int] = None
    session_id: Optional[str] = None
    is_new_visitor: Optional[bool] = None
    visit_count: Optional[int] = None
    message: str


class PageViewCreate(BaseModel):
    path: str


class ContactUpdate(BaseModel):
    phone_number: Optional[str] = None
    country_code: Optional[str] = None
    consent_given: bool = False


class ConsentUpdate(BaseModel):
    cookie_consent: bool
    cookie_preferences: Optional[ConsentPreferences] = None


class VisitorResponse(BaseModel):
    id: int
    session_id: Optional[str]
    ip_address: str
    user_agent: Optional[str]
    device_type: str
    browser: Optional[str]
    os: Optional[str]
    current_path: str
    entry_page: Optional[str]
    referrer: Optional[str]
    traffic_source: str
    language: Optional[str]
    is_new_visitor: bool
    visit_count: int
    page_views: int
    is_active: bool
    last_activity: Optional[datetime]
    country: Optional[str]
    state: Optional[str]
    city: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    phone_number: Optional[str]
    country_code: Optional[str]
    consent_given: bool
    consent_timestamp: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class VisitorStats(BaseModel):
    total_visitors: int
    total_page_views: int
    avg_page_views: float
    unique_countries: int
    unique_cities: int
    visitors_with_contact: int
    visitors_with_location: int


class VisitorListResponse(BaseModel):
    success: bool = True
    visitors: List[VisitorResponse]
    pagination: Pagination
    stats: VisitorStats


class SessionInfo(BaseModel):
    visit_id: int
    session_id: Optional[str]
    is_active: bool
    consent_given: bool
    preferences: ConsentPreferences
    page_views: int = Field(ge=1)
