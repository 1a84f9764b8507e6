"""Database package."""

from clinic_pricing.db.connection import (
    check_db_connection,
    close_db_connection,
    get_engine,
    get_session,
    get_session_maker,
    unit_of_work,
)

__all__ = [
    "get_engine",
    "get_session_maker",
    "get_session",
    "unit_of_work",
    "close_db_connection",
    "check_db_connection",
]
