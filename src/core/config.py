"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the booking core.
"""

import os
import pathlib
from decimal import Decimal

from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or "PYTEST_CURRENT_TEST" in os.environ

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    # Try multiple possible locations for .env file
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # repo root (when run from src)
        pathlib.Path.cwd() / ".env",  # .env in current directory
        pathlib.Path.cwd().parent / ".env",  # .env in parent directory
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def get_database_url() -> str:
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/hospital_booking_dev"
    )


DATABASE_URL = get_database_url()

# Actor recorded on transitions performed by background jobs (expiry sweep)
SYSTEM_USER_ID = int(os.getenv("SYSTEM_USER_ID", "1"))

# Booking expiry
DEFAULT_BOOKING_EXPIRY_HOURS = int(os.getenv("DEFAULT_BOOKING_EXPIRY_HOURS", "24"))
EXPIRY_SWEEP_INTERVAL_MINUTES = int(os.getenv("EXPIRY_SWEEP_INTERVAL_MINUTES", "5"))

# Ledger retention (maintenance cleanup only, never part of the transactional path)
AUDIT_RETENTION_DAYS = int(os.getenv("AUDIT_RETENTION_DAYS", "365"))

# Balance accounts
INITIAL_USER_BALANCE = Decimal(os.getenv("INITIAL_USER_BALANCE", "10000.00"))

# Revenue distribution: share of each booking payment credited to the
# platform account as a service charge, the rest to the hospital's account
SERVICE_CHARGE_RATE = Decimal(os.getenv("SERVICE_CHARGE_RATE", "0.05"))
PLATFORM_ACCOUNT_USER_ID = int(os.getenv("PLATFORM_ACCOUNT_USER_ID", str(SYSTEM_USER_ID)))
