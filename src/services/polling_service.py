"""
Polling service: read-only "what changed since T" projections.

Dashboards poll with the next_since of their previous result as `since`.
Writers stamp updated_at and last_updated when their statement runs, not
when they commit, so a row can become visible with a stamp older than a poll
that already ran. next_since is the read time minus
POLLING_CURSOR_OVERLAP_SECONDS: any change whose transaction commits within
that window of being stamped is returned by a later poll. Overlapping polls
may return the same row twice.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.constants import (
    POLLING_ACTIVE_INTERVAL_SECONDS,
    POLLING_CURSOR_OVERLAP_SECONDS,
    POLLING_ACTIVE_WINDOW_MINUTES,
    POLLING_DEFAULT_INTERVAL_SECONDS,
    POLLING_MAX_INTERVAL_SECONDS,
    POLLING_MIN_INTERVAL_SECONDS,
    POLLING_MODERATE_INTERVAL_SECONDS,
    POLLING_MODERATE_WINDOW_MINUTES,
    POLLING_QUIET_INTERVAL_SECONDS,
    POLLING_QUIET_WINDOW_MINUTES,
    DEFAULT_PAGE_SIZE,
)
from core.exceptions import ValidationError
from models import Booking, ResourceAuditLogEntry, ResourcePool
from shared_types.polling import (
    AuditLogChange,
    AuditLogUpdates,
    BookingChange,
    BookingUpdates,
    ChangeCheck,
    CombinedUpdates,
    PollingConfig,
    ResourceChange,
    ResourceUpdates,
)
from utils.datetime_utils import ensure_utc, minutes_between, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

Since = Union[str, datetime, None]


def _parse_since(since: Since) -> Optional[datetime]:
    if since is None:
        return None
    try:
        return parse_timestamp(since)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def next_cursor(read_at: datetime) -> datetime:
    """The `since` to use after a read at read_at."""
    return read_at - timedelta(seconds=POLLING_CURSOR_OVERLAP_SECONDS)


def suggest_interval(last_change_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """
    Suggested polling interval in seconds from the age of the latest change.

    About 10s right after a change, backing off to 60s when quiet.
    """
    if last_change_at is None:
        return POLLING_DEFAULT_INTERVAL_SECONDS

    minutes = minutes_between(last_change_at, now or utc_now())
    if minutes < POLLING_ACTIVE_WINDOW_MINUTES:
        interval = POLLING_ACTIVE_INTERVAL_SECONDS
    elif minutes < POLLING_MODERATE_WINDOW_MINUTES:
        interval = POLLING_MODERATE_INTERVAL_SECONDS
    elif minutes > POLLING_QUIET_WINDOW_MINUTES:
        interval = POLLING_QUIET_INTERVAL_SECONDS
    else:
        interval = POLLING_DEFAULT_INTERVAL_SECONDS
    return max(POLLING_MIN_INTERVAL_SECONDS, min(interval, POLLING_MAX_INTERVAL_SECONDS))


class PollingService:
    """Service answering change-since queries for dashboards."""

    @staticmethod
    def get_resource_updates(
        db: Session,
        hospital_id: Optional[int] = None,
        since: Since = None,
        resource_types: Optional[Sequence[str]] = None
    ) -> ResourceUpdates:
        """Pool rows with last_updated > since (all rows when since is None)."""
        current_timestamp = utc_now()
        since_dt = _parse_since(since)

        query = db.query(ResourcePool)
        if hospital_id is not None:
            query = query.filter(ResourcePool.hospital_id == hospital_id)
        if since_dt is not None:
            query = query.filter(ResourcePool.last_updated > since_dt)
        if resource_types:
            query = query.filter(ResourcePool.resource_type.in_(list(resource_types)))

        pools = query.populate_existing().order_by(
            ResourcePool.last_updated.desc(), ResourcePool.id
        ).all()
        changes = [ResourceChange.model_validate(pool) for pool in pools]

        by_type: Dict[str, List[ResourceChange]] = defaultdict(list)
        for change in changes:
            by_type[change.resource_type].append(change)

        return ResourceUpdates(
            has_changes=bool(changes),
            total_changes=len(changes),
            current_timestamp=current_timestamp,
            next_since=next_cursor(current_timestamp),
            last_polled=since_dt,
            changes=changes,
            by_resource_type=dict(by_type),
        )

    @staticmethod
    def get_booking_updates(
        db: Session,
        hospital_id: Optional[int] = None,
        since: Since = None,
        statuses: Optional[Sequence[str]] = None
    ) -> BookingUpdates:
        """Bookings with updated_at > since (all rows when since is None)."""
        current_timestamp = utc_now()
        since_dt = _parse_since(since)

        query = db.query(Booking)
        if hospital_id is not None:
            query = query.filter(Booking.hospital_id == hospital_id)
        if since_dt is not None:
            query = query.filter(Booking.updated_at > since_dt)
        if statuses:
            query = query.filter(Booking.status.in_(list(statuses)))

        bookings = query.populate_existing().order_by(Booking.updated_at.desc(), Booking.id).all()
        changes = [BookingChange.model_validate(booking) for booking in bookings]

        by_status: Dict[str, List[BookingChange]] = defaultdict(list)
        for change in changes:
            by_status[change.status].append(change)

        return BookingUpdates(
            has_changes=bool(changes),
            total_changes=len(changes),
            current_timestamp=current_timestamp,
            next_since=next_cursor(current_timestamp),
            last_polled=since_dt,
            changes=changes,
            by_status=dict(by_status),
        )

    @staticmethod
    def get_audit_log_updates(
        db: Session,
        hospital_id: Optional[int] = None,
        since: Since = None,
        change_types: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> AuditLogUpdates:
        """Audit entries with timestamp > since, newest first."""
        current_timestamp = utc_now()
        since_dt = _parse_since(since)

        query = db.query(ResourceAuditLogEntry)
        if hospital_id is not None:
            query = query.filter(ResourceAuditLogEntry.hospital_id == hospital_id)
        if since_dt is not None:
            query = query.filter(ResourceAuditLogEntry.timestamp > since_dt)
        if change_types:
            query = query.filter(ResourceAuditLogEntry.change_type.in_(list(change_types)))

        entries = query.order_by(
            ResourceAuditLogEntry.timestamp.desc(), ResourceAuditLogEntry.id.desc()
        ).limit(limit).all()
        changes = [AuditLogChange.model_validate(entry) for entry in entries]

        return AuditLogUpdates(
            has_changes=bool(changes),
            total_changes=len(changes),
            current_timestamp=current_timestamp,
            next_since=next_cursor(current_timestamp),
            last_polled=since_dt,
            changes=changes,
        )

    @staticmethod
    def has_changes(
        db: Session,
        hospital_id: Optional[int] = None,
        since: Since = None
    ) -> ChangeCheck:
        """
        Count-only change check.

        Without since every row counts and has_changes is True.
        """
        last_checked = utc_now()
        since_dt = _parse_since(since)

        resource_query = db.query(func.count(ResourcePool.id))
        booking_query = db.query(func.count(Booking.id))
        if hospital_id is not None:
            resource_query = resource_query.filter(ResourcePool.hospital_id == hospital_id)
            booking_query = booking_query.filter(Booking.hospital_id == hospital_id)
        if since_dt is not None:
            resource_query = resource_query.filter(ResourcePool.last_updated > since_dt)
            booking_query = booking_query.filter(Booking.updated_at > since_dt)

        resource_changes = int(resource_query.scalar() or 0)
        booking_changes = int(booking_query.scalar() or 0)
        total = resource_changes + booking_changes

        return ChangeCheck(
            has_changes=True if since_dt is None else total > 0,
            resource_changes=resource_changes,
            booking_changes=booking_changes,
            total_changes=total,
            last_checked=last_checked,
            next_since=next_cursor(last_checked),
        )

    @staticmethod
    def get_last_change_at(db: Session, hospital_id: Optional[int] = None) -> Optional[datetime]:
        """Most recent pool or booking change."""
        pool_query = db.query(func.max(ResourcePool.last_updated))
        booking_query = db.query(func.max(Booking.updated_at))
        if hospital_id is not None:
            pool_query = pool_query.filter(ResourcePool.hospital_id == hospital_id)
            booking_query = booking_query.filter(Booking.hospital_id == hospital_id)

        candidates = [
            ensure_utc(value) for value in (pool_query.scalar(), booking_query.scalar())
            if value is not None
        ]
        return max(candidates) if candidates else None  # type: ignore[type-var]

    @staticmethod
    def get_combined_updates(
        db: Session,
        hospital_id: Optional[int] = None,
        since: Since = None,
        resource_types: Optional[Sequence[str]] = None,
        booking_statuses: Optional[Sequence[str]] = None
    ) -> CombinedUpdates:
        current_timestamp = utc_now()
        resources = PollingService.get_resource_updates(db, hospital_id, since, resource_types)
        bookings = PollingService.get_booking_updates(db, hospital_id, since, booking_statuses)
        last_change_at = PollingService.get_last_change_at(db, hospital_id)

        return CombinedUpdates(
            has_changes=resources.has_changes or bookings.has_changes,
            current_timestamp=current_timestamp,
            next_since=next_cursor(current_timestamp),
            last_polled=_parse_since(since),
            resources=resources,
            bookings=bookings,
            suggested_interval_seconds=suggest_interval(last_change_at, current_timestamp),
        )

    @staticmethod
    def get_polling_config(db: Session, hospital_id: Optional[int] = None) -> PollingConfig:
        last_change_at = PollingService.get_last_change_at(db, hospital_id)
        return PollingConfig(
            recommended_interval_seconds=suggest_interval(last_change_at),
            min_interval_seconds=POLLING_MIN_INTERVAL_SECONDS,
            max_interval_seconds=POLLING_MAX_INTERVAL_SECONDS,
            default_interval_seconds=POLLING_DEFAULT_INTERVAL_SECONDS,
            last_change_at=last_change_at,
        )
