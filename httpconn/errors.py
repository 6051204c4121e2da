class HttpcError(Exception):
    """Base exception for the httpconn library."""
    pass

# --- Configuration Errors ---

class InvalidStateError(HttpcError):
    """The connection is not in a state that permits the operation."""
    pass

class InvalidArgumentError(HttpcError, ValueError): pass
class ProtocolViolationError(HttpcError): pass

class PermissionDeniedError(HttpcError):
    """The active security policy refused the operation."""
    pass

class UnsupportedOperationError(PermissionDeniedError): pass

# --- Exchange Errors ---

class RetryRequiredError(HttpcError):
    """
    A streamed request hit an authentication challenge or a redirect.

    The body has already been committed to the wire, so the request cannot be
    replayed automatically. The attributes carry what a caller needs to
    reissue it by hand.
    """

    def __init__(self, message, status_code, reason=None, url=None, location=None, headers=None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.url = url
        self.location = location
        self.headers = list(headers or [])

# --- I/O Errors ---

class IoFailureError(HttpcError):
    """A genuine I/O failure happened while the exchange was in flight."""
    pass

class TransportError(IoFailureError):
    """A generic error occurred in the transport layer."""
    pass

class DnsFailureError(TransportError): pass
class SocketCreateError(TransportError): pass
class SocketConnectError(TransportError): pass
class SocketWriteError(TransportError): pass
class SocketReadError(TransportError): pass
class ConnectionClosedError(TransportError): pass

class HttpParseError(IoFailureError): pass
class ContentLengthMismatchError(IoFailureError): pass
class TooManyRedirectsError(IoFailureError): pass

class ResponseStatusError(IoFailureError):
    """The server answered with an error-class status."""

    def __init__(self, message, status_code, reason=None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
