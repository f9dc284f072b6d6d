"""Consent gate for regulated visitor data.

Location and contact fields on a ``Visit`` are only ever written from here.
Both enrichment functions are no-ops (returning ``False``) when consent was not
given for that specific write, so no partial PII is persisted.
"""
import json
import logging
import re
from datetime import datetime
from typing import Mapping, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

import models
import utils
from errors import ValidationError

logger = logging.getLogger("app.consent")

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")
PHONE_STRIP = re.compile(r"[\s\-()]")

LOCATION_TEXT_FIELDS = ("country", "city", "state", "address", "timezone")

CONSENT_COOKIE = "cookieConsent"
PREFERENCES_COOKIE = "cookiePreferences"


class ConsentPreferences(BaseModel):
    necessary: bool = True
    analytics: bool = False
    marketing: bool = False
    functional: bool = False

    @property
    def allows_tracking(self) -> bool:
        return self.analytics

    @classmethod
    def from_cookies(cls, cookies: Mapping[str, str]) -> "ConsentPreferences":
        """Single deserialization point for the consent cookies.

        ``cookieConsent=true`` grants every category; an explicit
        ``cookiePreferences`` JSON object then narrows it down. Malformed JSON
        falls back to the defaults.
        """
        granted = cookies.get(CONSENT_COOKIE) == "true"
        base = {"analytics": granted, "marketing": granted, "functional": granted}

        raw = cookies.get(PREFERENCES_COOKIE)
        if raw:
            try:
                parsed = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring malformed %s cookie", PREFERENCES_COOKIE)
                parsed = None
            if isinstance(parsed, dict):
                base.update({key: value for key, value in parsed.items() if key in cls.model_fields})
        base["necessary"] = True
        try:
            return cls(**base)
        except PydanticValidationError:
            logger.warning("Ignoring invalid consent preferences: %r", base)
            return cls(necessary=True)

    def to_cookie(self) -> str:
        return json.dumps(self.model_dump())


def normalize_phone(phone_number: Optional[str]) -> str:
    if not phone_number or not phone_number.strip():
        raise ValidationError("Phone number is required")
    cleaned = PHONE_STRIP.sub("", phone_number.strip())
    if not PHONE_PATTERN.match(cleaned):
        raise ValidationError("Invalid phone number format")
    return cleaned


def _coordinate(payload: Mapping, name: str) -> Optional[float]:
    value = payload.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")


def validate_coordinates(payload: Mapping):
    """Return (latitude, longitude) or None when either is missing.

    Out-of-range values are rejected, never clamped.
    """
    latitude = _coordinate(payload, "latitude")
    longitude = _coordinate(payload, "longitude")
    if latitude is None or longitude is None:
        return None
    if not -90 <= latitude <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise ValidationError("longitude must be between -180 and 180")
    return latitude, longitude


def record_consent(visit: models.Visit, granted_at: Optional[datetime] = None):
    """Mark consent on the visit, keeping the first grant's timestamp."""
    visit.consent_given = True
    if visit.consent_timestamp is None:
        visit.consent_timestamp = granted_at or utils.utc_now()


def enrich_location(visit: models.Visit, payload: Mapping, consent_given: bool) -> bool:
    if not consent_given:
        logger.debug("Location update for visit %s skipped: no consent", visit.id)
        return False

    # Validate everything before touching the row
    coordinates = validate_coordinates(payload)
    accuracy = payload.get("accuracy")
    if accuracy is not None:
        try:
            accuracy = float(accuracy)
        except (TypeError, ValueError):
            raise ValidationError("accuracy must be a number")
        if accuracy < 0:
            raise ValidationError("accuracy must not be negative")

    for field in LOCATION_TEXT_FIELDS:
        value = payload.get(field)
        if value:
            setattr(visit, field, str(value).strip())
    if coordinates is not None:
        visit.latitude, visit.longitude = coordinates
        visit.accuracy = accuracy
    return True


def enrich_contact(visit: models.Visit, phone_number: Optional[str],
                   country_code: Optional[str], consent_given: bool) -> bool:
    phone = normalize_phone(phone_number)
    if not consent_given:
        logger.debug("Contact update for visit %s skipped: no consent", visit.id)
        return False

    record_consent(visit)
    visit.phone_number = phone
    visit.country_code = country_code
    visit.phone_verified = False
    return True
