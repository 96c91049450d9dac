"""Backend API exceptions."""

from typing import Optional

CONFLICT_MARKERS = ('already exists', 'duplicate')


class BackendError(Exception):
    """Base exception for device-management backend errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize backend error.

        Args:
            message: Error message
            status_code: HTTP status code or gRPC status value
            response_data: Response data from the backend
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class BackendNotFoundError(BackendError):
    """Resource not found on the backend."""

    pass


class BackendConflictError(BackendError):
    """Resource already exists on the backend."""

    pass


class BackendTimeoutError(BackendError):
    """Call exceeded its deadline."""

    pass


class BackendUnsupportedError(BackendError):
    """Operation not supported by this backend variant."""

    pass


class BackendTransportError(BackendError):
    """Network or channel level failure."""

    pass


class BackendProtocolError(BackendError):
    """Backend rejected the request or returned something unusable."""

    pass


class BackendAuthenticationError(BackendProtocolError):
    """Bearer token rejected by the backend."""

    pass


class BackendValidationError(BackendError):
    """Input rejected locally before any remote call."""

    pass


def looks_like_conflict(message: Optional[str]) -> bool:
    """Check whether an error message reports a duplicate resource.

    Some backend builds answer a duplicate create with a generic error whose
    text is the only hint.
    """
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in CONFLICT_MARKERS)
