from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
import logging

import config
import consent
import schemas
import utils
import visit_store
from consent import ConsentPreferences
from database import get_db, store_guard
from errors import ConsentRequiredError, IdentityNotFoundError, ValidationError
from identity import IdentityResolver, get_resolver

router = APIRouter()
logger = logging.getLogger("app.tracking")

COOKIE_MAX_AGE = 365 * 24 * 60 * 60  # 1 year


@router.post("/track", response_model=schemas.TrackResponse)
def track_visit(
    payload: schemas.TrackRequest,
    request: Request,
    db: Session = Depends(get_db),
    resolver: IdentityResolver = Depends(get_resolver)
):
    """First-contact hit: resolve the visitor and open a new visit.

    Tracking never fails the caller; any internal error is logged and answered
    with ``success: false``.
    """
    client_ip = utils.get_client_ip(request.headers, request.client.host if request.client else None)
    user_agent = payload.user_agent or request.headers.get("user-agent") or "Unknown"
    referrer = payload.referrer or request.headers.get("referer") or "direct"
    language = (payload.language or utils.parse_language(request.headers.get("accept-language"))).lower()

    consent_given = payload.consent
    if consent_given is None:
        consent_given = ConsentPreferences.from_cookies(request.cookies).allows_tracking

    try:
        device = utils.classify_device(user_agent)
        with store_guard():
            resolution = resolver.resolve(
                db,
                payload.session_id,
                client_ip,
                user_agent,
                device_type=device.type,
                browser=device.browser,
                os=device.os,
                current_path=payload.path,
                entry_page=payload.path,
                referrer=referrer,
                traffic_source=utils.classify_referrer(
                    referrer, landing_path=payload.path,
                    site_host=config.SITE_HOST or request.url.hostname
                ),
                language=language,
                is_bot=utils.is_bot_agent(user_agent)
            )
            visit = resolution.visit

            if consent_given:
                consent.record_consent(visit, utils.parse_datetime(payload.timestamp))
                if payload.location is not None:
                    location = payload.location.model_dump()
                else:
                    location = utils.get_location_from_ip(client_ip)
                if location:
                    try:
                        consent.enrich_location(visit, location, consent_given)
                    except ValidationError as exc:
                        logger.warning("Dropping location for visit %s: %s", visit.id, exc.detail)

            db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error tracking visitor from %s", client_ip)
        return schemas.TrackResponse(success=False, message="Visitor not tracked")

    return schemas.TrackResponse(
        success=True,
        visit_id=visit.id,
        session_id=visit.session_id,
        is_new_visitor=resolution.is_new_visitor,
        visit_count=visit.visit_count,
        message="Visitor tracked successfully"
    )


@router.post("/consent")
def update_consent(update: schemas.ConsentUpdate, response: Response):
    """Store the visitor's cookie choices as cookies"""
    granted = update.cookie_consent
    preferences = update.cookie_preferences or ConsentPreferences(
        analytics=granted, marketing=granted, functional=granted
    )
    preferences.necessary = True

    response.set_cookie(
        consent.CONSENT_COOKIE, "true" if granted else "false",
        max_age=COOKIE_MAX_AGE, samesite="lax"
    )
    response.set_cookie(
        consent.PREFERENCES_COOKIE, preferences.to_cookie(),
        max_age=COOKIE_MAX_AGE, samesite="lax"
    )
    return {"success": True, "cookie_consent": granted, "preferences": preferences.model_dump()}


@router.post("/{visit_id}/pageview")
def track_pageview(visit_id: int, pageview: schemas.PageViewCreate, db: Session = Depends(get_db)):
    """Subsequent hit within the same browsing session"""
    try:
        with store_guard():
            page_views = visit_store.record_page_view(db, visit_id, pageview.path)
    except IdentityNotFoundError:
        raise
    except Exception:
        db.rollback()
        logger.exception("Error recording page view for visit %s", visit_id)
        return {"success": False, "message": "Page view not tracked"}

    return {"success": True, "visit_id": visit_id, "page_views": page_views}


@router.post("/{visit_id}/location")
def update_visitor_location(
    visit_id: int,
    payload: schemas.LocationPayload,
    request: Request,
    db: Session = Depends(get_db)
):
    with store_guard():
        visit = visit_store.get_visit(db, visit_id)

        if not visit.consent_given and ConsentPreferences.from_cookies(request.cookies).allows_tracking:
            consent.record_consent(visit)
        if not visit.consent_given:
            raise ConsentRequiredError("Location tracking requires cookie consent")

        consent.enrich_location(visit, payload.model_dump(), visit.consent_given)
        db.commit()

    return {"success": True, "message": "Location updated successfully"}


@router.post("/{visit_id}/contact")
def update_visitor_contact(visit_id: int, update: schemas.ContactUpdate, db: Session = Depends(get_db)):
    with store_guard():
        visit = visit_store.get_visit(db, visit_id)

        applied = consent.enrich_contact(visit, update.phone_number, update.country_code, update.consent_given)
        if not applied:
            raise ConsentRequiredError("Storing a phone number requires consent")
        db.commit()

    return {"success": True, "message": "Contact information updated successfully"}


@router.get("/{visit_id}/session", response_model=schemas.SessionInfo)
def get_session_info(visit_id: int, request: Request, db: Session = Depends(get_db)):
    with store_guard():
        visit = visit_store.get_visit(db, visit_id)

    return schemas.SessionInfo(
        visit_id=visit.id,
        session_id=visit.session_id,
        is_active=visit.is_active,
        consent_given=visit.consent_given,
        preferences=ConsentPreferences.from_cookies(request.cookies),
        page_views=visit.page_views
    )
