"""Persistence operations on the visits table.

Every mutation here touches exactly one row (or is a single bulk UPDATE), so no
multi-statement transaction is needed for correctness.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

import models
import utils
from errors import IdentityNotFoundError


def get_visit(db: Session, visit_id: int) -> models.Visit:
    visit = db.query(models.Visit).filter(models.Visit.id == visit_id).first()
    if not visit:
        raise IdentityNotFoundError("Visit session not found")
    return visit


def find_latest_by_session(db: Session, session_id: str) -> Optional[models.Visit]:
    return db.query(models.Visit).filter(
        models.Visit.session_id == session_id
    ).order_by(desc(models.Visit.created_at), desc(models.Visit.id)).first()


def find_latest_by_signature(db: Session, ip_address: str, ua_hash: str,
                             since: Optional[datetime] = None) -> Optional[models.Visit]:
    query = db.query(models.Visit).filter(
        models.Visit.ip_address == ip_address,
        models.Visit.ua_hash == ua_hash
    )
    if since is not None:
        query = query.filter(models.Visit.created_at >= since)
    return query.order_by(desc(models.Visit.created_at), desc(models.Visit.id)).first()


def create_visit(db: Session, **fields) -> models.Visit:
    now = fields.pop("now", None) or utils.utc_now()
    fields.setdefault("created_at", now)
    fields.setdefault("updated_at", now)
    fields.setdefault("last_activity", now)
    visit = models.Visit(**fields)
    db.add(visit)
    db.flush()
    return visit


def record_page_view(db: Session, visit_id: int, path: str,
                     now: Optional[datetime] = None) -> int:
    """Count one more page view on an existing visit.

    Does not touch ``is_active``: an idle-reaped visit stays inactive.
    Returns the new page view count.
    """
    now = now or utils.utc_now()
    updated = db.query(models.Visit).filter(models.Visit.id == visit_id).update(
        {
            models.Visit.page_views: models.Visit.page_views + 1,
            models.Visit.current_path: path,
            models.Visit.last_activity: now,
            models.Visit.updated_at: now,
        },
        synchronize_session=False
    )
    if not updated:
        db.rollback()
        raise IdentityNotFoundError("Visit session not found")
    db.commit()
    return db.query(models.Visit.page_views).filter(models.Visit.id == visit_id).scalar()


def deactivate_idle(db: Session, idle_minutes: int, now: Optional[datetime] = None) -> int:
    cutoff = (now or utils.utc_now()) - timedelta(minutes=idle_minutes)
    updated = db.query(models.Visit).filter(
        models.Visit.is_active == True,
        models.Visit.last_activity < cutoff
    ).update({models.Visit.is_active: False}, synchronize_session=False)
    db.commit()
    return updated


def active_visit_ids(db: Session):
    return {row[0] for row in db.query(models.Visit.id).filter(models.Visit.is_active == True)}
