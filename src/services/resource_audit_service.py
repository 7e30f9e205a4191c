"""
Resource audit service.

Writes and queries the append-only resource audit log. create() only adds the
entry to the caller's session; it never commits, so the entry lands in the
same transaction as the pool mutation it describes.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, Query

from core.exceptions import ValidationError
from models import ResourceAuditLogEntry
from shared_types.enums import ResourceChangeType, ResourceType
from utils.datetime_utils import ensure_utc, utc_now
from utils.pagination import paginate

logger = logging.getLogger(__name__)


class ResourceAuditService:
    """Service for the resource audit ledger."""

    @staticmethod
    def create(
        db: Session,
        hospital_id: Optional[int],
        resource_type: Optional[str],
        change_type: Optional[str],
        changed_by: Optional[int],
        new_value: Optional[int],
        old_value: Optional[int] = None,
        quantity: Optional[int] = None,
        booking_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ResourceAuditLogEntry:
        """
        Append an audit entry to the session and flush it.

        Args:
            db: Database session (caller owns the transaction)
            hospital_id: Hospital whose pool changed
            resource_type: Resource type of the pool
            change_type: One of ResourceChangeType
            changed_by: Actor performing the change
            new_value: Available count after the change
            old_value: Available count before the change
            quantity: Signed delta applied to available
            booking_id: Booking that caused the change
            reason: Human-readable reason

        Returns:
            The flushed entry (id assigned)

        Raises:
            ValidationError: If a required field is missing or invalid
        """
        if hospital_id is None:
            raise ValidationError("hospital_id is required for a resource audit entry")
        if not resource_type:
            raise ValidationError("resource_type is required for a resource audit entry")
        if changed_by is None:
            raise ValidationError("changed_by is required for a resource audit entry")
        if new_value is None:
            raise ValidationError("new_value is required for a resource audit entry")
        try:
            change = ResourceChangeType(change_type)
        except ValueError:
            raise ValidationError(f"Invalid change type: {change_type}")
        try:
            ResourceType(resource_type)
        except ValueError:
            raise ValidationError(f"Invalid resource type: {resource_type}")

        entry = ResourceAuditLogEntry(
            hospital_id=hospital_id,
            resource_type=resource_type,
            change_type=change.value,
            old_value=old_value,
            new_value=new_value,
            quantity=quantity,
            booking_id=booking_id,
            changed_by=changed_by,
            reason=reason,
            timestamp=utc_now(),
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def _filtered(
        db: Session,
        hospital_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        change_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Query[ResourceAuditLogEntry]:
        query = db.query(ResourceAuditLogEntry)
        if hospital_id is not None:
            query = query.filter(ResourceAuditLogEntry.hospital_id == hospital_id)
        if resource_type:
            query = query.filter(ResourceAuditLogEntry.resource_type == resource_type)
        if change_type:
            query = query.filter(ResourceAuditLogEntry.change_type == change_type)
        if start_date is not None:
            query = query.filter(ResourceAuditLogEntry.timestamp >= ensure_utc(start_date))
        if end_date is not None:
            query = query.filter(ResourceAuditLogEntry.timestamp <= ensure_utc(end_date))
        return query

    @staticmethod
    def get_by_hospital(
        db: Session,
        hospital_id: int,
        resource_type: Optional[str] = None,
        change_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[ResourceAuditLogEntry]:
        """Audit entries for a hospital, newest first."""
        query = ResourceAuditService._filtered(
            db, hospital_id, resource_type, change_type, start_date, end_date
        ).order_by(ResourceAuditLogEntry.timestamp.desc(), ResourceAuditLogEntry.id.desc())
        return paginate(query, limit, offset).all()

    @staticmethod
    def get_by_booking(db: Session, booking_id: int) -> List[ResourceAuditLogEntry]:
        """Audit entries caused by a booking, oldest first."""
        return db.query(ResourceAuditLogEntry).filter(
            ResourceAuditLogEntry.booking_id == booking_id
        ).order_by(ResourceAuditLogEntry.timestamp, ResourceAuditLogEntry.id).all()

    @staticmethod
    def get_by_user(
        db: Session,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[ResourceAuditLogEntry]:
        """Audit entries performed by an actor, newest first."""
        query = db.query(ResourceAuditLogEntry).filter(
            ResourceAuditLogEntry.changed_by == user_id
        ).order_by(ResourceAuditLogEntry.timestamp.desc(), ResourceAuditLogEntry.id.desc())
        return paginate(query, limit, offset).all()

    @staticmethod
    def get_change_statistics(
        db: Session,
        hospital_id: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """
        Aggregate audit entries per change type.

        Returns:
            {change_type: {'count': int, 'total_quantity': int}}
        """
        query = ResourceAuditService._filtered(
            db, hospital_id, start_date=start_date, end_date=end_date
        )
        rows = query.with_entities(
            ResourceAuditLogEntry.change_type,
            func.count(ResourceAuditLogEntry.id),
            func.coalesce(func.sum(ResourceAuditLogEntry.quantity), 0),
        ).group_by(ResourceAuditLogEntry.change_type).all()

        return {
            change_type: {'count': int(count), 'total_quantity': int(total)}
            for change_type, count, total in rows
        }

    @staticmethod
    def count(
        db: Session,
        hospital_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        change_type: Optional[str] = None,
    ) -> int:
        return ResourceAuditService._filtered(db, hospital_id, resource_type, change_type).count()

    @staticmethod
    def cleanup(db: Session, older_than_days: int) -> int:
        """
        Delete audit entries older than the retention window.

        Maintenance operation only; it commits its own transaction and is
        never called from a booking or pool mutation.

        Returns:
            Number of entries deleted
        """
        if older_than_days < 0:
            raise ValidationError("older_than_days must be non-negative")

        cutoff = utc_now() - timedelta(days=older_than_days)
        deleted = db.query(ResourceAuditLogEntry).filter(
            ResourceAuditLogEntry.timestamp < cutoff
        ).delete(synchronize_session=False)
        db.commit()

        if deleted:
            logger.info(f"Deleted {deleted} resource audit entries older than {older_than_days} days")
        return deleted
