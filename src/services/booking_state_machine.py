"""
Booking state machine.

Single transition table for booking lifecycle events. Every status change in
the core goes through next_status(); the history ledger uses is_valid_path()
to check that a booking's recorded transitions are reachable.

    pending  --approve-->  approved  --complete-->  completed
    pending  --decline-->  declined
    pending  --cancel/expire-->  cancelled
    approved --cancel/expire-->  cancelled
"""

from typing import Dict, Iterable, Optional, Sequence, Tuple

from core.exceptions import InvalidStateTransitionError
from shared_types.enums import BookingEvent, BookingStatus

# (current status, event) -> next status. Creation has no current status.
TRANSITIONS: Dict[Tuple[Optional[BookingStatus], BookingEvent], BookingStatus] = {
    (None, BookingEvent.CREATE): BookingStatus.PENDING,
    (BookingStatus.PENDING, BookingEvent.APPROVE): BookingStatus.APPROVED,
    (BookingStatus.PENDING, BookingEvent.DECLINE): BookingStatus.DECLINED,
    (BookingStatus.PENDING, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.PENDING, BookingEvent.EXPIRE): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, BookingEvent.COMPLETE): BookingStatus.COMPLETED,
    (BookingStatus.APPROVED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, BookingEvent.EXPIRE): BookingStatus.CANCELLED,
}


def _coerce_status(status: Optional[str]) -> Optional[BookingStatus]:
    if status is None:
        return None
    try:
        return BookingStatus(status)
    except ValueError:
        return None


def next_status(current: Optional[str], event: BookingEvent) -> BookingStatus:
    """
    Resolve the status reached by applying event to current.

    Args:
        current: Current status value (None for a booking not yet created)
        event: Event to apply

    Returns:
        The resulting BookingStatus

    Raises:
        InvalidStateTransitionError: If the table has no such transition
    """
    key = (_coerce_status(current), event)
    if current is not None and key[0] is None:
        raise InvalidStateTransitionError(current, event.value, f"Unknown booking status: {current}")
    if key not in TRANSITIONS:
        raise InvalidStateTransitionError(current, event.value)
    return TRANSITIONS[key]


def can_transition(current: Optional[str], event: BookingEvent) -> bool:
    try:
        next_status(current, event)
    except InvalidStateTransitionError:
        return False
    return True


def is_allowed_edge(old_status: Optional[str], new_status: str) -> bool:
    """True if some event moves old_status to new_status."""
    old = _coerce_status(old_status)
    if old_status is not None and old is None:
        return False
    new = _coerce_status(new_status)
    if new is None:
        return False
    return any(
        source == old and target == new
        for (source, _), target in TRANSITIONS.items()
    )


def allowed_events(current: Optional[str]) -> Sequence[BookingEvent]:
    status = _coerce_status(current)
    return [event for (source, event) in TRANSITIONS if source == status]


def is_valid_path(edges: Iterable[Tuple[Optional[str], str]]) -> bool:
    """
    Check that an ordered list of (old_status, new_status) edges is a path
    through the state machine starting at null -> pending.
    """
    expected_old: Optional[str] = None
    seen_any = False
    for old_status, new_status in edges:
        if old_status != expected_old:
            return False
        if not is_allowed_edge(old_status, new_status):
            return False
        expected_old = new_status
        seen_any = True
    return seen_any
