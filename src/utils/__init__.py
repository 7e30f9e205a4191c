"""
Utility modules for the booking core.

This package contains shared helpers used across services, including
datetime utilities and pagination for ledger queries.
"""

from utils.datetime_utils import utc_now, ensure_utc, parse_timestamp
from utils.pagination import paginate, normalize_page
