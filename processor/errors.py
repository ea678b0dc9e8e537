"""Error taxonomy for the event sync layer.

These are raised inside repository and session helpers and converted to
empty results at the public method boundary, so callers never see them.
"""


class EventSyncError(Exception):
    """Base error carrying a short machine-readable code."""

    code = 'error'

    def __init__(self, message: str = None):
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(EventSyncError):
    code = 'validation_error'


class AuthenticationError(EventSyncError):
    code = 'not_authenticated'


class NotFoundError(EventSyncError):
    code = 'not_found'


class BackendError(EventSyncError):
    code = 'backend_error'


class ConflictError(EventSyncError):
    code = 'conflict'
