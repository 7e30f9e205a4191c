"""
Resource pool service for availability checks and counter mutations.

This service handles:
- Side-effect free availability checks
- Atomic allocate/release used by booking transitions
- Staff corrections (manual update, maintenance) and pool registration
- Pool and utilization queries

allocate() and release() never commit: they run inside the caller's booking
transaction. The availability check and the counter change are a single
guarded UPDATE, so two concurrent approvals against the last unit cannot both
succeed. manual_update(), update_maintenance() and register_resource_pool()
are top-level operations and own their transaction.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import InsufficientResourcesError, NotFoundError, ValidationError
from models import Booking, ResourcePool
from services.resource_audit_service import ResourceAuditService
from shared_types.enums import BookingStatus, ReleaseCause, ResourceChangeType, ResourceType
from shared_types.resources import (
    AvailabilityResult,
    PoolMutationResult,
    PoolSnapshot,
    ResourceTotalsUpdate,
    ResourceUtilization,
)
from utils.datetime_utils import utc_now
from utils.validation import coerce_model

logger = logging.getLogger(__name__)


def _validate_resource_type(resource_type: str) -> str:
    try:
        return ResourceType(resource_type).value
    except ValueError:
        raise ValidationError(f"Invalid resource type: {resource_type}")


class ResourcePoolService:
    """Service for per-hospital resource pools."""

    @staticmethod
    def get_pool(
        db: Session,
        hospital_id: int,
        resource_type: str,
        refresh: bool = False
    ) -> Optional[ResourcePool]:
        query = db.query(ResourcePool).filter(
            ResourcePool.hospital_id == hospital_id,
            ResourcePool.resource_type == resource_type
        )
        if refresh:
            # Bulk UPDATEs bypass the identity map
            query = query.populate_existing()
        return query.first()

    @staticmethod
    def require_pool(
        db: Session,
        hospital_id: int,
        resource_type: str,
        for_update: bool = False
    ) -> ResourcePool:
        """
        Load a pool or raise NotFoundError.

        Args:
            for_update: Lock the row (SELECT ... FOR UPDATE) until the caller's
                transaction ends
        """
        query = db.query(ResourcePool).filter(
            ResourcePool.hospital_id == hospital_id,
            ResourcePool.resource_type == resource_type
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        pool = query.first()
        if not pool:
            raise NotFoundError(f"Resource pool not found: hospital {hospital_id}, {resource_type}")
        return pool

    @staticmethod
    def get_hospital_pools(db: Session, hospital_id: int) -> List[ResourcePool]:
        return db.query(ResourcePool).filter(
            ResourcePool.hospital_id == hospital_id
        ).order_by(ResourcePool.resource_type).all()

    @staticmethod
    def check_availability(
        db: Session,
        hospital_id: int,
        resource_type: str,
        quantity: int = 1
    ) -> AvailabilityResult:
        """
        Check whether a pool can satisfy a request. No side effects.

        The answer is advisory: allocate() re-checks atomically.

        Returns:
            AvailabilityResult with available=False and a message when the pool
            is missing or has fewer than quantity units available
        """
        pool = ResourcePoolService.get_pool(db, hospital_id, resource_type, refresh=True)
        if not pool:
            return AvailabilityResult(
                available=False,
                current_available=0,
                requested=quantity,
                message=f"No {resource_type} resources configured for this hospital",
            )

        if pool.available < quantity:
            return AvailabilityResult(
                available=False,
                current_available=pool.available,
                requested=quantity,
                message=f"Insufficient {resource_type} available: requested {quantity}, available {pool.available}",
            )

        return AvailabilityResult(
            available=True,
            current_available=pool.available,
            requested=quantity,
            message=f"{pool.available} {resource_type} available",
        )

    @staticmethod
    def allocate(
        db: Session,
        hospital_id: int,
        resource_type: str,
        quantity: int,
        booking_id: Optional[int],
        actor: int,
        reason: Optional[str] = None
    ) -> PoolMutationResult:
        """
        Move quantity units from available to occupied.

        Runs in the caller's transaction. The guard `available >= quantity` is
        evaluated by the store at update time.

        Raises:
            ValidationError: If quantity is not positive
            NotFoundError: If the pool does not exist
            InsufficientResourcesError: If fewer than quantity units are available
        """
        if quantity <= 0:
            raise ValidationError("Allocation quantity must be positive")

        result = db.execute(
            update(ResourcePool)
            .where(
                ResourcePool.hospital_id == hospital_id,
                ResourcePool.resource_type == resource_type,
                ResourcePool.available >= quantity,
            )
            .values(
                available=ResourcePool.available - quantity,
                occupied=ResourcePool.occupied + quantity,
                updated_by=actor,
                last_updated=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:  # type: ignore[attr-defined]
            pool = ResourcePoolService.get_pool(db, hospital_id, resource_type, refresh=True)
            if not pool:
                raise NotFoundError(f"Resource pool not found: hospital {hospital_id}, {resource_type}")
            logger.warning(
                f"Allocation rejected for booking {booking_id}: hospital {hospital_id} "
                f"{resource_type} requested {quantity}, available {pool.available}"
            )
            raise InsufficientResourcesError(resource_type, quantity, pool.available)

        pool = ResourcePoolService.require_pool(db, hospital_id, resource_type, for_update=True)
        new_available = pool.available
        old_available = new_available + quantity

        entry = ResourceAuditService.create(
            db,
            hospital_id=hospital_id,
            resource_type=resource_type,
            change_type=ResourceChangeType.BOOKING_APPROVED.value,
            changed_by=actor,
            old_value=old_available,
            new_value=new_available,
            quantity=-quantity,
            booking_id=booking_id,
            reason=reason or f"Booking {booking_id} approved",
        )

        logger.info(
            f"Allocated {quantity} {resource_type} at hospital {hospital_id} for booking {booking_id} "
            f"({old_available} -> {new_available})"
        )
        return PoolMutationResult(
            pool=PoolSnapshot.model_validate(pool),
            old_available=old_available,
            new_available=new_available,
            quantity=-quantity,
            audit_entry_id=entry.id,
        )

    @staticmethod
    def release(
        db: Session,
        hospital_id: int,
        resource_type: str,
        quantity: int,
        booking_id: Optional[int],
        actor: int,
        cause: ReleaseCause,
        reason: Optional[str] = None
    ) -> PoolMutationResult:
        """
        Move quantity units from occupied back to available.

        Runs in the caller's transaction. The caller guarantees a booking's
        claim is released at most once.

        Raises:
            ValidationError: If quantity is not positive or exceeds occupied
            NotFoundError: If the pool does not exist
        """
        if quantity <= 0:
            raise ValidationError("Release quantity must be positive")
        cause = ReleaseCause(cause)

        result = db.execute(
            update(ResourcePool)
            .where(
                ResourcePool.hospital_id == hospital_id,
                ResourcePool.resource_type == resource_type,
                ResourcePool.occupied >= quantity,
            )
            .values(
                available=ResourcePool.available + quantity,
                occupied=ResourcePool.occupied - quantity,
                updated_by=actor,
                last_updated=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:  # type: ignore[attr-defined]
            pool = ResourcePoolService.get_pool(db, hospital_id, resource_type, refresh=True)
            if not pool:
                raise NotFoundError(f"Resource pool not found: hospital {hospital_id}, {resource_type}")
            raise ValidationError(
                f"Cannot release {quantity} {resource_type}: only {pool.occupied} occupied"
            )

        pool = ResourcePoolService.require_pool(db, hospital_id, resource_type, for_update=True)
        new_available = pool.available
        old_available = new_available - quantity

        entry = ResourceAuditService.create(
            db,
            hospital_id=hospital_id,
            resource_type=resource_type,
            change_type=cause.change_type.value,
            changed_by=actor,
            old_value=old_available,
            new_value=new_available,
            quantity=quantity,
            booking_id=booking_id,
            reason=reason or f"Booking {booking_id} {cause.value}",
        )

        logger.info(
            f"Released {quantity} {resource_type} at hospital {hospital_id} for booking {booking_id} "
            f"({cause.value}, {old_available} -> {new_available})"
        )
        return PoolMutationResult(
            pool=PoolSnapshot.model_validate(pool),
            old_available=old_available,
            new_available=new_available,
            quantity=quantity,
            audit_entry_id=entry.id,
        )

    @staticmethod
    def claimed_quantity(db: Session, hospital_id: int, resource_type: str) -> int:
        """Units currently held by approved bookings of a pool."""
        claimed = db.query(func.coalesce(func.sum(Booking.allocated_quantity), 0)).filter(
            Booking.hospital_id == hospital_id,
            Booking.resource_type == resource_type,
            Booking.status == BookingStatus.APPROVED.value,
        ).scalar()
        return int(claimed or 0)

    @staticmethod
    def manual_update(
        db: Session,
        hospital_id: int,
        resource_type: str,
        new_totals: Union[ResourceTotalsUpdate, Dict[str, Any]],
        actor: int,
        reason: Optional[str] = None
    ) -> PoolMutationResult:
        """
        Apply a staff correction to a pool's counters and commit.

        Omitted counters keep their value. If total is given it must equal the
        sum of the resulting counters; otherwise it is recomputed. occupied may
        not drop below the units claimed by approved bookings.

        Raises:
            ValidationError: If the update is malformed or breaks a pool rule
            NotFoundError: If the pool does not exist
        """
        new_totals = coerce_model(ResourceTotalsUpdate, new_totals)

        try:
            pool = ResourcePoolService.require_pool(db, hospital_id, resource_type, for_update=True)

            available = pool.available if new_totals.available is None else new_totals.available
            occupied = pool.occupied if new_totals.occupied is None else new_totals.occupied
            reserved = pool.reserved if new_totals.reserved is None else new_totals.reserved
            maintenance = pool.maintenance if new_totals.maintenance is None else new_totals.maintenance
            computed_total = available + occupied + reserved + maintenance

            if new_totals.total is not None and new_totals.total != computed_total:
                raise ValidationError(
                    f"Total ({new_totals.total}) must equal available + occupied + reserved + "
                    f"maintenance ({computed_total})"
                )

            claimed = ResourcePoolService.claimed_quantity(db, hospital_id, resource_type)
            if occupied < claimed:
                raise ValidationError(
                    f"Occupied ({occupied}) cannot be less than the {claimed} units held by approved bookings"
                )

            old_available = pool.available
            pool.total = computed_total
            pool.available = available
            pool.occupied = occupied
            pool.reserved = reserved
            pool.maintenance = maintenance
            pool.updated_by = actor
            db.flush()

            entry = ResourceAuditService.create(
                db,
                hospital_id=hospital_id,
                resource_type=resource_type,
                change_type=ResourceChangeType.MANUAL_UPDATE.value,
                changed_by=actor,
                old_value=old_available,
                new_value=available,
                quantity=available - old_available,
                reason=reason or "Manual resource update",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Manual update of {resource_type} at hospital {hospital_id} by {actor}: "
            f"total={pool.total} available={pool.available} occupied={pool.occupied} "
            f"reserved={pool.reserved} maintenance={pool.maintenance}"
        )
        return PoolMutationResult(
            pool=PoolSnapshot.model_validate(pool),
            old_available=old_available,
            new_available=available,
            quantity=available - old_available,
            audit_entry_id=entry.id,
        )

    @staticmethod
    def update_maintenance(
        db: Session,
        hospital_id: int,
        resource_type: str,
        maintenance_count: int,
        actor: int,
        reason: Optional[str] = None
    ) -> PoolMutationResult:
        """
        Set the maintenance counter, moving the difference to or from available.

        Raises:
            ValidationError: If maintenance_count is negative
            NotFoundError: If the pool does not exist
            InsufficientResourcesError: If not enough units are available to
                take out of service
        """
        if maintenance_count < 0:
            raise ValidationError("Maintenance count must be non-negative")

        try:
            pool = ResourcePoolService.require_pool(db, hospital_id, resource_type, for_update=True)
            delta = maintenance_count - pool.maintenance
            if delta > pool.available:
                raise InsufficientResourcesError(resource_type, delta, pool.available)

            old_available = pool.available
            pool.available = pool.available - delta
            pool.maintenance = maintenance_count
            pool.updated_by = actor
            db.flush()

            entry = ResourceAuditService.create(
                db,
                hospital_id=hospital_id,
                resource_type=resource_type,
                change_type=ResourceChangeType.MANUAL_UPDATE.value,
                changed_by=actor,
                old_value=old_available,
                new_value=pool.available,
                quantity=-delta,
                reason=reason or f"Maintenance set to {maintenance_count}",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Maintenance of {resource_type} at hospital {hospital_id} set to {maintenance_count} "
            f"(available {old_available} -> {pool.available})"
        )
        return PoolMutationResult(
            pool=PoolSnapshot.model_validate(pool),
            old_available=old_available,
            new_available=pool.available,
            quantity=-delta,
            audit_entry_id=entry.id,
        )

    @staticmethod
    def register_resource_pool(
        db: Session,
        hospital_id: int,
        resource_type: str,
        total: int,
        actor: int
    ) -> ResourcePool:
        """
        Create a pool with every unit available and commit.

        Raises:
            ValidationError: If the type is unknown, total is negative or the
                pool already exists
        """
        resource_type = _validate_resource_type(resource_type)
        if total < 0:
            raise ValidationError("Total must be non-negative")

        if ResourcePoolService.get_pool(db, hospital_id, resource_type):
            raise ValidationError(f"Resource pool already exists: hospital {hospital_id}, {resource_type}")

        try:
            pool = ResourcePool(
                hospital_id=hospital_id,
                resource_type=resource_type,
                total=total,
                available=total,
                occupied=0,
                reserved=0,
                maintenance=0,
                updated_by=actor,
            )
            db.add(pool)
            db.flush()

            ResourceAuditService.create(
                db,
                hospital_id=hospital_id,
                resource_type=resource_type,
                change_type=ResourceChangeType.SYSTEM_ADJUSTMENT.value,
                changed_by=actor,
                old_value=0,
                new_value=total,
                quantity=total,
                reason="Resource pool registered",
            )
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Resource pool registration conflict: {e}")
            raise ValidationError(f"Resource pool already exists: hospital {hospital_id}, {resource_type}")
        except Exception:
            db.rollback()
            raise

        logger.info(f"Registered {resource_type} pool at hospital {hospital_id} with {total} units")
        return pool

    @staticmethod
    def get_resource_utilization(db: Session, hospital_id: int) -> List[ResourceUtilization]:
        """Occupancy percentage per resource type for a hospital."""
        utilization: List[ResourceUtilization] = []
        for pool in ResourcePoolService.get_hospital_pools(db, hospital_id):
            percentage = round(pool.occupied / pool.total * 100, 2) if pool.total else 0.0
            utilization.append(ResourceUtilization(
                resource_type=pool.resource_type,
                total=pool.total,
                available=pool.available,
                occupied=pool.occupied,
                reserved=pool.reserved,
                maintenance=pool.maintenance,
                utilization_percentage=percentage,
            ))
        return utilization
