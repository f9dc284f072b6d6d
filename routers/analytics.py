from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

import aggregation
import models
import schemas
from auth import require_admin
from database import get_db, store_guard

router = APIRouter(dependencies=[Depends(require_admin)])


def get_visitor_filters(
    search: Optional[str] = None,
    has_contact: bool = False,
    has_location: bool = False,
    device: Optional[str] = None,
    traffic_source: Optional[str] = None,
    date_range: Optional[str] = None
) -> aggregation.VisitorFilters:
    return aggregation.VisitorFilters(
        search=search,
        has_contact=has_contact,
        has_location=has_location,
        device=device,
        traffic_source=traffic_source,
        date_range=date_range
    )


@router.get("/dashboard")
def get_dashboard_overview(
    period: Optional[str] = "30d",
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db)
):
    window = aggregation.resolve_period(period, start, end)
    with store_guard():
        snapshot = aggregation.build_dashboard(db, window)
    return {"success": True, "data": snapshot}


@router.get("/revenue")
def get_revenue_analytics(period: Optional[str] = "30d", db: Session = Depends(get_db)):
    window = aggregation.resolve_period(period)
    with store_guard():
        points = aggregation.revenue_series(db, window)
    return {"success": True, "data": {"period": window.period, "points": points}}


@router.get("/visitors")
def get_visitor_analytics(period: Optional[str] = "30d", db: Session = Depends(get_db)):
    window = aggregation.resolve_period(period)
    with store_guard():
        data = {
            "period": window.period,
            "visits_by_date": aggregation.visitor_series(db, window),
            "device_breakdown": aggregation.category_breakdown(
                db, models.Visit.device_type, models.DEVICE_TYPES, window, "unknown"
            ),
            "traffic_sources": aggregation.category_breakdown(
                db, models.Visit.traffic_source, models.TRAFFIC_SOURCES, window, "other"
            ),
        }
    return {"success": True, "data": data}


@router.get("/visitors/all", response_model=schemas.VisitorListResponse)
def get_all_visitors(
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    filters: aggregation.VisitorFilters = Depends(get_visitor_filters),
    db: Session = Depends(get_db)
):
    with store_guard():
        listing = aggregation.visitor_listing(db, filters, page, limit, sort_by, sort_order)
    return listing


@router.get("/visitors/contacts", response_model=schemas.VisitorListResponse)
def get_visitors_with_contact(
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    filters: aggregation.VisitorFilters = Depends(get_visitor_filters),
    db: Session = Depends(get_db)
):
    filters.has_contact = True
    with store_guard():
        listing = aggregation.visitor_listing(db, filters, page, limit, sort_by, sort_order)
    return listing


@router.get("/visitors/locations")
def get_location_analytics(period: Optional[str] = "30d", db: Session = Depends(get_db)):
    window = aggregation.resolve_period(period)
    with store_guard():
        report = aggregation.location_report(db, window)
    return {"success": True, **report}
