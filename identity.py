"""Visitor identity resolution.

A first-contact hit is matched against earlier visits by an ordered list of
strategies: the client session token first, then the network signature
(client IP plus a hash of the user agent) for clients that drop cookies.
Any match makes the hit a returning visit; either way a new ``Visit`` row is
created for this touch. Later hits in the same browsing session go through
``visit_store.record_page_view`` with the visit id handed back here.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Union

from sqlalchemy.orm import Session

import config
import models
import utils
import visit_store

logger = logging.getLogger("app.identity")


@dataclass(frozen=True)
class SessionToken:
    token: str


@dataclass(frozen=True)
class NetworkSignature:
    ip_address: str
    ua_hash: str


IdentityKey = Union[SessionToken, NetworkSignature]


@dataclass
class Resolution:
    visit: models.Visit
    is_new_visitor: bool
    matched_by: Optional[str] = None


def by_session_token(db: Session, keys: Sequence[IdentityKey],
                     since: Optional[datetime]) -> Optional[models.Visit]:
    for key in keys:
        if isinstance(key, SessionToken):
            return visit_store.find_latest_by_session(db, key.token)
    return None


def by_network_signature(db: Session, keys: Sequence[IdentityKey],
                         since: Optional[datetime]) -> Optional[models.Visit]:
    for key in keys:
        if isinstance(key, NetworkSignature):
            return visit_store.find_latest_by_signature(db, key.ip_address, key.ua_hash, since=since)
    return None


DEFAULT_STRATEGIES = (
    ("session", by_session_token),
    ("network", by_network_signature),
)


def new_session_token() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def identity_keys(session_token: Optional[str], client_ip: str, user_agent: str) -> List[IdentityKey]:
    keys: List[IdentityKey] = []
    if session_token:
        keys.append(SessionToken(session_token))
    keys.append(NetworkSignature(client_ip, utils.hash_user_agent(user_agent)))
    return keys


class IdentityResolver:

    def __init__(self, strategies=DEFAULT_STRATEGIES, lookback_days: Optional[int] = None):
        self.strategies = strategies
        self.lookback_days = lookback_days

    def find_previous(self, db: Session, keys: Sequence[IdentityKey], now: datetime):
        since = None
        if self.lookback_days:
            since = now - timedelta(days=self.lookback_days)
        for name, strategy in self.strategies:
            match = strategy(db, keys, since)
            if match is not None:
                return name, match
        return None, None

    def resolve(self, db: Session, session_token: Optional[str], client_ip: str,
                user_agent: str, now: Optional[datetime] = None, **visit_fields) -> Resolution:
        """Find the visitor's previous visit and create the visit for this touch.

        ``visit_fields`` are copied onto the new row (path, device, referrer...).
        The row is flushed, not committed; the caller owns the transaction so
        consent enrichment lands in the same commit.
        """
        now = now or utils.utc_now()
        keys = identity_keys(session_token, client_ip, user_agent)
        matched_by, previous = self.find_previous(db, keys, now)

        is_new_visitor = previous is None
        visit_count = 1 if is_new_visitor else (previous.visit_count or 0) + 1

        visit = visit_store.create_visit(
            db,
            session_id=session_token or new_session_token(),
            ip_address=client_ip,
            user_agent=user_agent,
            ua_hash=utils.hash_user_agent(user_agent),
            is_new_visitor=is_new_visitor,
            visit_count=visit_count,
            page_views=1,
            is_active=True,
            now=now,
            **visit_fields
        )
        if is_new_visitor:
            logger.info("New visitor %s from %s (visit %s)", visit.session_id, client_ip, visit.id)
        else:
            logger.info("Returning visitor matched by %s, visit #%d (visit %s)",
                        matched_by, visit_count, visit.id)
        return Resolution(visit=visit, is_new_visitor=is_new_visitor, matched_by=matched_by)


def get_resolver() -> IdentityResolver:
    return IdentityResolver(lookback_days=config.IDENTITY_LOOKBACK_DAYS)
