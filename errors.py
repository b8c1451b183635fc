"""Error taxonomy shared by the store, the API and the client."""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for every booking-related failure."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """A required field is missing or malformed."""

    status_code = 400

    def __init__(self, message: str, received: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.received = received or {}


class NotFoundError(BookingError):
    status_code = 404


class OverlapError(BookingError):
    """The proposed interval intersects an existing booking."""

    status_code = 409


class BackendUnavailableError(BookingError):
    """The persistence layer could not be reached."""

    status_code = 503


class NetworkError(BookingError):
    """A client-to-server call failed before a response was received."""
