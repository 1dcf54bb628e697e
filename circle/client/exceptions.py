"""Client-side exceptions.

HTTP errors that have a server-side counterpart (400/401/403/404/409)
are raised as the matching circle.common.exceptions class, so callers
catch the same types on both sides of the wire. Everything else lands
here.
"""

from __future__ import annotations

from circle.common.exceptions import CircleBaseException


class CircleClientError(CircleBaseException):
    """Base class for errors that only the client raises."""

    code = "client_error"


class CircleApiError(CircleClientError):
    """Non-2xx response without a more specific mapping (5xx, 429, ...)."""

    code = "api_error"


class CircleConnectionError(CircleClientError):
    """Network failure or timeout talking to the API."""

    code = "connection_error"
