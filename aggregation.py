"""Time-windowed reports for the admin dashboard.

All grouping happens in the database; nothing here loads a whole window of
visits into memory. Bot traffic is excluded from every visitor figure, and
categorical breakdowns always list every category, with explicit zeros.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, desc, asc, func, or_
from sqlalchemy.orm import Session

import config
import models
import utils

logger = logging.getLogger("app.aggregation")

PERIOD_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

SORTABLE_COLUMNS = {
    "created_at": models.Visit.created_at,
    "updated_at": models.Visit.updated_at,
    "last_activity": models.Visit.last_activity,
    "page_views": models.Visit.page_views,
    "visit_count": models.Visit.visit_count,
    "country": models.Visit.country,
    "city": models.Visit.city,
    "ip_address": models.Visit.ip_address,
}


@dataclass(frozen=True)
class ReportWindow:
    start: datetime
    end: datetime
    period: str

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "ReportWindow":
        return ReportWindow(start=self.start - self.length, end=self.start, period=self.period)

    def as_dict(self):
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def resolve_period(period: Optional[str] = None, start=None, end=None,
                   now: Optional[datetime] = None) -> ReportWindow:
    """Turn query parameters into a [start, end) window.

    A valid explicit range wins; otherwise a known period code counts back from
    ``now``. Anything unrecognized gets the default 30-day window.
    """
    now = now or utils.utc_now()
    range_start = utils.parse_datetime(start)
    range_end = utils.parse_datetime(end)
    if range_start is not None and range_end is not None and range_start < range_end:
        return ReportWindow(start=range_start, end=range_end, period="custom")

    if period not in PERIOD_DAYS:
        if period:
            logger.debug("Unrecognized period %r, using %s", period, config.DEFAULT_PERIOD)
        period = config.DEFAULT_PERIOD
    return ReportWindow(start=now - timedelta(days=PERIOD_DAYS[period]), end=now, period=period)


def _human_visits(window: ReportWindow):
    return [
        models.Visit.is_bot == False,
        models.Visit.created_at >= window.start,
        models.Visit.created_at < window.end,
    ]


def _in_window(column, window: ReportWindow):
    return [column >= window.start, column < window.end]


def _with_contact():
    return case(
        (and_(
            models.Visit.phone_number.isnot(None),
            models.Visit.phone_number != "",
            models.Visit.consent_given == True
        ), 1),
        else_=0
    )


def visitor_metrics(db: Session, window: ReportWindow) -> dict:
    row = db.query(
        func.count(models.Visit.id),
        func.count(func.distinct(models.Visit.ip_address)),
        func.coalesce(func.sum(models.Visit.page_views), 0),
        func.coalesce(func.sum(case((models.Visit.is_new_visitor == True, 1), else_=0)), 0)
    ).filter(*_human_visits(window)).one()

    total_visits, unique_visitors, page_views, new_visits = row
    return {
        "total_visits": total_visits,
        "unique_visitors": unique_visitors,
        "total_page_views": int(page_views),
        "new_visitors": int(new_visits),
        "returning_visitors": total_visits - int(new_visits),
    }


def status_breakdown(db: Session, model, statuses, window: ReportWindow) -> dict:
    rows = db.query(
        model.status,
        func.count(model.id)
    ).filter(*_in_window(model.created_at, window)).group_by(model.status).all()

    by_status = {status: 0 for status in statuses}
    for status, count in rows:
        by_status[status] = count
    return {"total": sum(by_status.values()), "by_status": by_status}


def revenue_total(db: Session, window: ReportWindow) -> float:
    total = db.query(
        func.coalesce(func.sum(models.Enquiry.estimated_value), 0)
    ).filter(
        models.Enquiry.status == "completed",
        models.Enquiry.estimated_value > 0,
        *_in_window(models.Enquiry.created_at, window)
    ).scalar()
    return float(total or 0)


def revenue_comparison(db: Session, window: ReportWindow) -> dict:
    current = revenue_total(db, window)
    previous = revenue_total(db, window.previous())
    change = round((current - previous) / previous * 100, 1) if previous else None
    return {"current": current, "previous": previous, "change_percent": change}


def country_stats(db: Session, window: ReportWindow, limit: int) -> list:
    visitors = func.count(func.distinct(models.Visit.ip_address)).label("visitors")
    rows = db.query(
        models.Visit.country,
        visitors,
        func.count(models.Visit.id),
        func.coalesce(func.sum(models.Visit.page_views), 0),
        func.coalesce(func.sum(_with_contact()), 0)
    ).filter(
        *_human_visits(window),
        models.Visit.country.isnot(None),
        models.Visit.country != ""
    ).group_by(models.Visit.country).order_by(desc("visitors"), models.Visit.country).limit(limit).all()

    return [{
        "country": r[0],
        "visitors": r[1],
        "visits": r[2],
        "page_views": int(r[3]),
        "with_contact": int(r[4])
    } for r in rows]


def city_stats(db: Session, window: ReportWindow, limit: int) -> list:
    visitors = func.count(func.distinct(models.Visit.ip_address)).label("visitors")
    rows = db.query(
        models.Visit.city,
        models.Visit.country,
        visitors,
        func.count(models.Visit.id),
        func.coalesce(func.sum(models.Visit.page_views), 0),
        func.coalesce(func.sum(_with_contact()), 0)
    ).filter(
        *_human_visits(window),
        models.Visit.city.isnot(None),
        models.Visit.city != ""
    ).group_by(
        models.Visit.city,
        models.Visit.country
    ).order_by(desc("visitors"), models.Visit.city).limit(limit).all()

    return [{
        "city": r[0],
        "country": r[1],
        "visitors": r[2],
        "visits": r[3],
        "page_views": int(r[4]),
        "with_contact": int(r[5])
    } for r in rows]


def category_breakdown(db: Session, column, categories, window: ReportWindow, fallback: str) -> dict:
    """Visit counts per category; values outside ``categories`` land in ``fallback``"""
    rows = db.query(
        column,
        func.count(models.Visit.id)
    ).filter(*_human_visits(window)).group_by(column).all()

    counts = {category: 0 for category in categories}
    for category, count in rows:
        counts[category if category in counts else fallback] += count
    return counts


def content_counts(db: Session) -> dict:
    return {
        "services": db.query(models.Service).filter(models.Service.is_active == True).count(),
        "parts": db.query(models.ROPart).filter(models.ROPart.is_active == True).count(),
        "gallery_items": db.query(models.GalleryItem).filter(models.GalleryItem.is_active == True).count(),
    }


def recent_activities(db: Session, limit: int = 5) -> dict:
    contacts = db.query(models.ContactRequest).order_by(desc(models.ContactRequest.created_at)).limit(limit).all()
    enquiries = db.query(models.Enquiry).order_by(desc(models.Enquiry.created_at)).limit(limit).all()
    issues = db.query(models.IssueRequest).order_by(desc(models.IssueRequest.created_at)).limit(limit).all()
    return {
        "contacts": [{
            "id": c.id,
            "name": c.name,
            "email": c.email,
            "contact_type": c.contact_type,
            "status": c.status,
            "created_at": c.created_at
        } for c in contacts],
        "enquiries": [{
            "id": e.id,
            "name": e.name,
            "email": e.email,
            "service_type": e.service_type,
            "status": e.status,
            "created_at": e.created_at
        } for e in enquiries],
        "issues": [{
            "id": i.id,
            "ticket_number": i.ticket_number,
            "issue_type": i.issue_type,
            "priority": i.priority,
            "status": i.status,
            "created_at": i.created_at
        } for i in issues],
    }


def build_dashboard(db: Session, window: ReportWindow, top_n: Optional[int] = None) -> dict:
    top_n = top_n or config.TOP_LOCATIONS_LIMIT
    enquiries = status_breakdown(db, models.Enquiry, models.ENQUIRY_STATUSES, window)
    enquiries["converted"] = enquiries["by_status"]["completed"]

    return {
        "period": window.period,
        "range": window.as_dict(),
        "previous_range": window.previous().as_dict(),
        "visitors": visitor_metrics(db, window),
        "contacts": status_breakdown(db, models.ContactRequest, models.CONTACT_STATUSES, window),
        "enquiries": enquiries,
        "issues": status_breakdown(db, models.IssueRequest, models.ISSUE_STATUSES, window),
        "revenue": revenue_comparison(db, window),
        "geography": {
            "countries": country_stats(db, window, top_n),
            "cities": city_stats(db, window, top_n),
        },
        "devices": category_breakdown(db, models.Visit.device_type, models.DEVICE_TYPES, window, "unknown"),
        "traffic_sources": category_breakdown(
            db, models.Visit.traffic_source, models.TRAFFIC_SOURCES, window, "other"
        ),
        "content": content_counts(db),
        "recent_activities": recent_activities(db),
    }


def revenue_series(db: Session, window: ReportWindow) -> list:
    day = utils.get_date_expr(models.Enquiry.created_at, db.get_bind().dialect.name).label("day")
    rows = db.query(
        day,
        func.sum(models.Enquiry.estimated_value)
    ).filter(
        models.Enquiry.status == "completed",
        models.Enquiry.estimated_value > 0,
        *_in_window(models.Enquiry.created_at, window)
    ).group_by(day).order_by(day).all()

    return [{"date": str(r[0]), "revenue": float(r[1] or 0)} for r in rows]


def visitor_series(db: Session, window: ReportWindow) -> list:
    day = utils.get_date_expr(models.Visit.created_at, db.get_bind().dialect.name).label("day")
    rows = db.query(
        day,
        func.count(models.Visit.id),
        func.count(func.distinct(models.Visit.ip_address)),
        func.coalesce(func.sum(models.Visit.page_views), 0)
    ).filter(*_human_visits(window)).group_by(day).order_by(day).all()

    return [{
        "date": str(r[0]),
        "visits": r[1],
        "unique_visitors": r[2],
        "page_views": int(r[3])
    } for r in rows]


def location_report(db: Session, window: ReportWindow, limit: Optional[int] = None) -> dict:
    limit = limit or config.TOP_LOCATIONS_LIMIT
    return {
        "period": window.period,
        "country_stats": country_stats(db, window, limit),
        "city_stats": city_stats(db, window, limit),
    }


@dataclass
class VisitorFilters:
    search: Optional[str] = None
    has_contact: bool = False
    has_location: bool = False
    device: Optional[str] = None
    traffic_source: Optional[str] = None
    date_range: Optional[str] = None


def visitor_criteria(filters: VisitorFilters, now: Optional[datetime] = None) -> list:
    criteria = [models.Visit.is_bot == False]

    if filters.has_contact:
        criteria += [
            models.Visit.phone_number.isnot(None),
            models.Visit.phone_number != "",
            models.Visit.consent_given == True,
        ]
    if filters.has_location:
        criteria.append(models.Visit.country.isnot(None))
    if filters.date_range:
        window = resolve_period(filters.date_range, now=now)
        criteria += [models.Visit.created_at >= window.start, models.Visit.created_at < window.end]
    if filters.device:
        criteria.append(models.Visit.device_type == filters.device)
    if filters.traffic_source:
        criteria.append(models.Visit.traffic_source == filters.traffic_source)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        criteria.append(or_(
            models.Visit.phone_number.ilike(pattern),
            models.Visit.city.ilike(pattern),
            models.Visit.country.ilike(pattern),
            models.Visit.state.ilike(pattern),
            models.Visit.ip_address.ilike(pattern),
        ))
    return criteria


def visitor_listing(db: Session, filters: VisitorFilters, page: int = 1, limit: int = 20,
                    sort_by: str = "created_at", sort_order: str = "desc",
                    now: Optional[datetime] = None) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), config.MAX_PAGE_SIZE)
    criteria = visitor_criteria(filters, now=now)

    column = SORTABLE_COLUMNS.get(sort_by, models.Visit.created_at)
    direction = asc if sort_order == "asc" else desc

    visitors = db.query(models.Visit).filter(*criteria).order_by(
        direction(column), direction(models.Visit.id)
    ).offset((page - 1) * limit).limit(limit).all()

    stats = db.query(
        func.count(models.Visit.id),
        func.coalesce(func.sum(models.Visit.page_views), 0),
        func.avg(models.Visit.page_views),
        func.count(func.distinct(models.Visit.country)),
        func.count(func.distinct(models.Visit.city)),
        func.coalesce(func.sum(_with_contact()), 0),
        func.coalesce(func.sum(case((and_(
            models.Visit.latitude.isnot(None),
            models.Visit.longitude.isnot(None)
        ), 1), else_=0)), 0)
    ).filter(*criteria).one()

    total = stats[0]
    return {
        "visitors": visitors,
        "pagination": {
            "current": page,
            "pages": (total + limit - 1) // limit,
            "total": total,
            "limit": limit
        },
        "stats": {
            "total_visitors": total,
            "total_page_views": int(stats[1]),
            "avg_page_views": round(float(stats[2]), 2) if stats[2] is not None else 0,
            "unique_countries": stats[3],
            "unique_cities": stats[4],
            "visitors_with_contact": int(stats[5]),
            "visitors_with_location": int(stats[6])
        }
    }


def export_rows(db: Session, filters: VisitorFilters, limit: Optional[int] = None,
                now: Optional[datetime] = None):
    """Raw visits for export, newest first, capped at EXPORT_ROW_LIMIT"""
    limit = min(limit or config.EXPORT_ROW_LIMIT, config.EXPORT_ROW_LIMIT)
    return db.query(models.Visit).filter(
        *visitor_criteria(filters, now=now)
    ).order_by(desc(models.Visit.created_at)).limit(limit).all()
