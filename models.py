from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, Index
from datetime import datetime
from database import Base

DEVICE_TYPES = ("desktop", "mobile", "tablet", "unknown")
TRAFFIC_SOURCES = ("direct", "organic", "social", "referral", "email", "paid", "other")

ENQUIRY_STATUSES = (
    "new", "contacted", "site_visit_scheduled", "quote_sent",
    "confirmed", "completed", "cancelled",
)
CONTACT_STATUSES = ("new", "in_progress", "resolved", "closed")
ISSUE_STATUSES = ("new", "assigned", "in_progress", "resolved", "closed", "cancelled")


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, index=True)
    ip_address = Column(String, nullable=False, index=True)
    user_agent = Column(Text, nullable=False, default="Unknown")
    ua_hash = Column(String(64), nullable=False)

    device_type = Column(String, nullable=False, default="unknown")
    browser = Column(String, default="Unknown")
    os = Column(String, default="Unknown")

    current_path = Column(String, nullable=False, default="/")
    entry_page = Column(String)
    referrer = Column(String, default="direct")
    traffic_source = Column(String, nullable=False, default="direct")
    language = Column(String, default="en")

    is_new_visitor = Column(Boolean, nullable=False, default=True)
    visit_count = Column(Integer, nullable=False, default=1)
    page_views = Column(Integer, nullable=False, default=1)
    is_bot = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_activity = Column(DateTime, default=datetime.utcnow, index=True)

    # Location, written only through the consent gate
    country = Column(String)
    state = Column(String)
    city = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    accuracy = Column(Float)  # GPS accuracy in meters
    address = Column(String)
    timezone = Column(String)

    # Contact info, written only through the consent gate
    phone_number = Column(String, index=True)
    country_code = Column(String)
    consent_given = Column(Boolean, nullable=False, default=False)
    consent_timestamp = Column(DateTime)
    phone_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_visits_session_created", "session_id", "created_at"),
        Index("ix_visits_signature_created", "ip_address", "ua_hash", "created_at"),
        Index("ix_visits_source_created", "traffic_source", "created_at"),
        Index("ix_visits_device_created", "device_type", "created_at"),
        Index("ix_visits_bot_created", "is_bot", "created_at"),
        Index("ix_visits_consent_created", "consent_given", "created_at"),
    )

    @property
    def has_coordinates(self):
        return self.latitude is not None and self.longitude is not None

    @property
    def has_contact(self):
        return bool(self.phone_number) and bool(self.consent_given)


# Business records below are owned by the content/CRM modules; the
# aggregation engine only reads them.

class Enquiry(Base):
    __tablename__ = "enquiries"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String)
    service_type = Column(String)
    status = Column(String, nullable=False, default="new", index=True)
    estimated_value = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ContactRequest(Base):
    __tablename__ = "contact_requests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String)
    contact_type = Column(String, default="general")
    status = Column(String, nullable=False, default="new", index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class IssueRequest(Base):
    __tablename__ = "issue_requests"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String, unique=True)
    issue_type = Column(String, default="other")
    priority = Column(String, default="medium")
    status = Column(String, nullable=False, default="new", index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)


class ROPart(Base):
    __tablename__ = "ro_parts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)


class GalleryItem(Base):
    __tablename__ = "gallery_items"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
