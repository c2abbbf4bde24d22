"""Error taxonomy shared by the session client, gateway and orchestrator."""


class ClassBookerError(Exception):
    """Base exception for all booking automation errors."""

    pass


class AuthError(ClassBookerError):
    """Login failed or the session could not be re-established."""

    pass


class UpstreamError(ClassBookerError):
    """The platform answered with a non-2xx status or an unreadable body."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransportError(ClassBookerError):
    """Network-level failure: connection refused, timeout, TLS error."""

    pass


class DataError(ClassBookerError):
    """Upstream or stored data that cannot be interpreted."""

    pass


class ForbiddenError(ClassBookerError):
    """The trigger was invoked by something other than the scheduler."""

    pass
