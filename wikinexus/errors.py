"""Exception hierarchy for WikiNexus.

All application errors inherit from WikiError so callers can catch them in
one place. The HTTP layer maps them onto JSON error responses.
"""

from typing import Optional


class WikiError(Exception):
    """Base exception for all WikiNexus errors."""

    status_code = 500


class ValidationError(WikiError):
    """Raised when a payload or editor argument is invalid."""

    status_code = 400


class NotFoundError(WikiError):
    """Raised when a page, block or file does not exist."""

    status_code = 404

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} {item_id} not found")
        self.kind = kind
        self.item_id = item_id


class ApiError(WikiError):
    """Raised when a storage request fails or returns a non-OK status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message if status is None else f"{message} (HTTP {status})")
        self.status = status
