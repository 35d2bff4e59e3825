"""Decides whether a data-store failure is worth retrying."""
import asyncio

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm.exc import StaleDataError

from shared.errors import FulfillmentError

# SQLSTATE codes that mean "try the whole transaction again"
TRANSIENT_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "57014",  # query_canceled (statement_timeout)
    "57P01",  # admin_shutdown
    "57P02",  # crash_shutdown
    "57P03",  # cannot_connect_now
}
TRANSIENT_SQLSTATE_CLASSES = {
    "08",  # connection_exception
    "53",  # insufficient_resources
}
# Anything in these classes is a problem with the statement or the data, not the connection
FATAL_SQLSTATE_CLASSES = {"22", "23", "42"}

_BUSY_MARKERS = ("database is locked", "database is busy", "deadlock", "could not serialize")


def _sqlstate(error: BaseException) -> str | None:
    """Dig the SQLSTATE out of a DBAPI error, whichever driver raised it."""
    seen = set()
    current = getattr(error, "orig", None) or error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for attribute in ("sqlstate", "pgcode"):
            code = getattr(current, attribute, None)
            if isinstance(code, str) and code:
                return code
        current = current.__cause__
    return None


def is_transient_error(error: BaseException) -> bool:
    if isinstance(error, FulfillmentError):
        return False

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True

    if isinstance(error, StaleDataError):
        return True

    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return True

    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return True

        code = _sqlstate(error)
        if code:
            if code in TRANSIENT_SQLSTATES or code[:2] in TRANSIENT_SQLSTATE_CLASSES:
                return True
            if code[:2] in FATAL_SQLSTATE_CLASSES:
                return False

        if isinstance(error, (sa_exc.IntegrityError, sa_exc.ProgrammingError, sa_exc.DataError)):
            return False

        message = str(error).lower()
        if any(marker in message for marker in _BUSY_MARKERS):
            return True

        return isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError))

    # Raw socket failures from the driver before SQLAlchemy could wrap them
    if isinstance(error, (ConnectionError, OSError)):
        return True

    return False
