"""Error taxonomy shared by the ledger, dispatch and auth layers.

Each error carries the HTTP status the API surface reports for it and a short
machine code. Messages are safe to return to API callers; upstream detail
(response bodies, driver errors) stays on the exception for logging only.
"""

from typing import Optional


class RelayError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidInputError(RelayError):
    status_code = 400
    code = "invalid_input"


class UnauthorizedError(RelayError):
    status_code = 403
    code = "unauthorized"


class AuthenticationError(UnauthorizedError):
    status_code = 401
    code = "unauthenticated"


class ForbiddenError(RelayError):
    status_code = 403
    code = "forbidden"


class InsufficientFundsError(RelayError):
    status_code = 402
    code = "insufficient_funds"

    def __init__(self, message: str = "Insufficient wallet balance", **kwargs):
        super().__init__(message, **kwargs)


class LedgerUnavailableError(RelayError):
    status_code = 503
    code = "ledger_unavailable"


class RemoteError(RelayError):
    status_code = 502
    code = "remote_error"

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, detail: Optional[str] = None):
        self.upstream_status = upstream_status
        super().__init__(message, detail=detail)


class PersistenceError(RelayError):
    status_code = 500
    code = "persistence_error"


class ChannelConflictError(RelayError):
    status_code = 409
    code = "channel_in_use"
