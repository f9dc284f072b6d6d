from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
import csv
import io
import logging

import aggregation
from auth import require_admin
from database import get_db, store_guard
from routers.analytics import get_visitor_filters

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger("app.reports")

EXPORT_HEADER = [
    'ID', 'Session ID', 'IP Address', 'User Agent', 'Page/Path', 'Referrer',
    'Country', 'City', 'State', 'Latitude', 'Longitude', 'Phone Number',
    'Country Code', 'Consent Given', 'Device Type', 'Browser', 'OS',
    'Language', 'Traffic Source', 'Is New Visitor', 'Visit Count',
    'Page Views', 'Created At', 'Last Activity'
]


@router.get("/visitors/export")
def export_visitors(
    filters: aggregation.VisitorFilters = Depends(get_visitor_filters),
    db: Session = Depends(get_db)
):
    with store_guard():
        visits = aggregation.export_rows(db, filters)
    logger.info("Exporting %d visitors", len(visits))

    output = io.StringIO()
    writer = csv.writer(output)

    # Header
    writer.writerow(EXPORT_HEADER)

    # Data
    for v in visits:
        writer.writerow([
            v.id, v.session_id or '', v.ip_address or '', v.user_agent or '',
            v.current_path or '', v.referrer or 'direct',
            v.country or '', v.city or '', v.state or '',
            '' if v.latitude is None else v.latitude,
            '' if v.longitude is None else v.longitude,
            v.phone_number or '', v.country_code or '',
            'Yes' if v.consent_given else 'No',
            v.device_type, v.browser or '', v.os or '', v.language or '',
            v.traffic_source, 'Yes' if v.is_new_visitor else 'No',
            v.visit_count or 1, v.page_views or 1,
            v.created_at, v.last_activity
        ])

    output.seek(0)
    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=visitors_export.csv"}
    )
