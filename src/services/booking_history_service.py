"""
Booking status history service.

Writes and queries the append-only booking status history. Like the resource
audit log, create() only flushes into the caller's transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.constants import RECENT_CHANGES_LIMIT
from core.exceptions import ValidationError
from models import Booking, BookingStatusHistoryEntry
from services.booking_state_machine import is_allowed_edge, is_valid_path
from shared_types.enums import BookingStatus
from utils.datetime_utils import ensure_utc, utc_now
from utils.pagination import paginate

logger = logging.getLogger(__name__)


class BookingStatusHistoryService:
    """Service for the booking status history ledger."""

    @staticmethod
    def create(
        db: Session,
        booking_id: Optional[int],
        new_status: Optional[str],
        changed_by: Optional[int],
        old_status: Optional[str] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BookingStatusHistoryEntry:
        """
        Append a history entry to the session and flush it.

        Raises:
            ValidationError: If a required field is missing or the
                old_status -> new_status edge is not in the state machine
        """
        if booking_id is None:
            raise ValidationError("booking_id is required for a status history entry")
        if not new_status:
            raise ValidationError("new_status is required for a status history entry")
        if changed_by is None:
            raise ValidationError("changed_by is required for a status history entry")
        if not is_allowed_edge(old_status, new_status):
            raise ValidationError(f"Invalid status transition recorded: {old_status} -> {new_status}")

        entry = BookingStatusHistoryEntry(
            booking_id=booking_id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
            reason=reason,
            notes=notes,
            timestamp=utc_now(),
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> List[BookingStatusHistoryEntry]:
        """History of one booking in transition order."""
        return db.query(BookingStatusHistoryEntry).filter(
            BookingStatusHistoryEntry.booking_id == booking_id
        ).order_by(BookingStatusHistoryEntry.timestamp, BookingStatusHistoryEntry.id).all()

    @staticmethod
    def get_by_hospital(
        db: Session,
        hospital_id: int,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[BookingStatusHistoryEntry]:
        """History entries of a hospital's bookings, newest first."""
        query = db.query(BookingStatusHistoryEntry).join(
            Booking, BookingStatusHistoryEntry.booking_id == Booking.id
        ).filter(Booking.hospital_id == hospital_id)

        if status:
            query = query.filter(BookingStatusHistoryEntry.new_status == status)
        if start_date is not None:
            query = query.filter(BookingStatusHistoryEntry.timestamp >= ensure_utc(start_date))
        if end_date is not None:
            query = query.filter(BookingStatusHistoryEntry.timestamp <= ensure_utc(end_date))

        query = query.order_by(
            BookingStatusHistoryEntry.timestamp.desc(), BookingStatusHistoryEntry.id.desc()
        )
        return paginate(query, limit, offset).all()

    @staticmethod
    def get_by_user(
        db: Session,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[BookingStatusHistoryEntry]:
        """Transitions performed by an actor, newest first."""
        query = db.query(BookingStatusHistoryEntry).filter(
            BookingStatusHistoryEntry.changed_by == user_id
        ).order_by(BookingStatusHistoryEntry.timestamp.desc(), BookingStatusHistoryEntry.id.desc())
        return paginate(query, limit, offset).all()

    @staticmethod
    def get_latest_status(db: Session, booking_id: int) -> Optional[BookingStatusHistoryEntry]:
        return db.query(BookingStatusHistoryEntry).filter(
            BookingStatusHistoryEntry.booking_id == booking_id
        ).order_by(
            BookingStatusHistoryEntry.timestamp.desc(), BookingStatusHistoryEntry.id.desc()
        ).first()

    @staticmethod
    def get_recent_changes(
        db: Session,
        hospital_id: Optional[int] = None,
        limit: int = RECENT_CHANGES_LIMIT,
    ) -> List[BookingStatusHistoryEntry]:
        query = db.query(BookingStatusHistoryEntry)
        if hospital_id is not None:
            query = query.join(
                Booking, BookingStatusHistoryEntry.booking_id == Booking.id
            ).filter(Booking.hospital_id == hospital_id)
        query = query.order_by(
            BookingStatusHistoryEntry.timestamp.desc(), BookingStatusHistoryEntry.id.desc()
        )
        return paginate(query, limit, 0).all()

    @staticmethod
    def get_approval_statistics(
        db: Session,
        hospital_id: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Count decisions taken on a hospital's bookings.

        Returns:
            {
                'approved': int, 'declined': int, 'completed': int,
                'cancelled': int, 'total_decisions': int,
                'approval_rate': float  # approved / (approved + declined), percent
            }
        """
        query = db.query(
            BookingStatusHistoryEntry.new_status,
            func.count(BookingStatusHistoryEntry.id),
        ).join(
            Booking, BookingStatusHistoryEntry.booking_id == Booking.id
        ).filter(
            Booking.hospital_id == hospital_id,
            BookingStatusHistoryEntry.old_status.isnot(None),
        )
        if start_date is not None:
            query = query.filter(BookingStatusHistoryEntry.timestamp >= ensure_utc(start_date))
        if end_date is not None:
            query = query.filter(BookingStatusHistoryEntry.timestamp <= ensure_utc(end_date))

        counts = {status: int(count) for status, count in query.group_by(BookingStatusHistoryEntry.new_status).all()}

        stats: Dict[str, Any] = {
            status.value: counts.get(status.value, 0)
            for status in (
                BookingStatus.APPROVED,
                BookingStatus.DECLINED,
                BookingStatus.COMPLETED,
                BookingStatus.CANCELLED,
            )
        }
        stats['total_decisions'] = sum(stats.values())
        decided = stats['approved'] + stats['declined']
        stats['approval_rate'] = round(stats['approved'] / decided * 100, 2) if decided else 0.0
        return stats

    @staticmethod
    def count(db: Session, booking_id: Optional[int] = None, new_status: Optional[str] = None) -> int:
        query = db.query(BookingStatusHistoryEntry)
        if booking_id is not None:
            query = query.filter(BookingStatusHistoryEntry.booking_id == booking_id)
        if new_status:
            query = query.filter(BookingStatusHistoryEntry.new_status == new_status)
        return query.count()

    @staticmethod
    def validate_path(db: Session, booking_id: int) -> bool:
        """True if the booking's history is a valid path starting null -> pending."""
        entries = BookingStatusHistoryService.get_by_booking(db, booking_id)
        return is_valid_path((entry.old_status, entry.new_status) for entry in entries)

    @staticmethod
    def cleanup(db: Session, older_than_days: int) -> int:
        """
        Delete history entries older than the retention window.

        Maintenance operation only; commits its own transaction.

        Returns:
            Number of entries deleted
        """
        if older_than_days < 0:
            raise ValidationError("older_than_days must be non-negative")

        cutoff = utc_now() - timedelta(days=older_than_days)
        deleted = db.query(BookingStatusHistoryEntry).filter(
            BookingStatusHistoryEntry.timestamp < cutoff
        ).delete(synchronize_session=False)
        db.commit()

        if deleted:
            logger.info(f"Deleted {deleted} booking status history entries older than {older_than_days} days")
        return deleted
