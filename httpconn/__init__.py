from .config import ConnectionDefaults, get_follow_redirects, set_follow_redirects
from .connection import (
    Authenticator,
    Capabilities,
    ConnectionState,
    HttpConnection,
    Proxy,
)
from .errors import (
    HttpcError,
    InvalidArgumentError,
    InvalidStateError,
    IoFailureError,
    PermissionDeniedError,
    ProtocolViolationError,
    ResponseStatusError,
    RetryRequiredError,
    UnsupportedOperationError,
)
from .http_protocol import ChunkedStreaming, FixedLengthStreaming, HttpMethod, NoStreaming
from .security import SecurityPolicy, SocketPermission
from .status import HttpStatus

__all__ = [
    "Authenticator",
    "Capabilities",
    "ChunkedStreaming",
    "ConnectionDefaults",
    "ConnectionState",
    "FixedLengthStreaming",
    "HttpConnection",
    "HttpMethod",
    "HttpStatus",
    "HttpcError",
    "InvalidArgumentError",
    "InvalidStateError",
    "IoFailureError",
    "NoStreaming",
    "PermissionDeniedError",
    "ProtocolViolationError",
    "Proxy",
    "ResponseStatusError",
    "RetryRequiredError",
    "SecurityPolicy",
    "SocketPermission",
    "UnsupportedOperationError",
    "get_follow_redirects",
    "set_follow_redirects",
]
