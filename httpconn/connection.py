"""
A single HTTP request/response exchange with a caller-visible lifecycle.

An ``HttpConnection`` starts out *unconfigured*: the method, streaming mode,
redirect policy, request headers and timeouts can all be changed. Opening the
output stream or calling ``connect()`` moves it to *connected*, after which
the configuration is frozen and the response can be inspected. ``disconnect()``
ends the lifecycle; nothing can be configured or read afterwards.

Typical use::

    with HttpConnection("http://example.com/upload") as conn:
        conn.set_request_method("PUT")
        conn.set_fixed_length_streaming_mode(len(payload))
        conn.get_output_stream().write(payload)
        if conn.response_code() >= 400:
            print(conn.get_error_stream().read())

Response accessors never touch the network: before an exchange has completed
``response_code()`` is -1 and the header accessors return None.
"""

import base64
import io
import logging
import re

from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Callable, Protocol
from urllib.parse import urljoin, urlsplit

from .config import ConnectionDefaults, process_defaults
from .errors import (
    ContentLengthMismatchError,
    InvalidArgumentError,
    InvalidStateError,
    IoFailureError,
    ProtocolViolationError,
    ResponseStatusError,
    RetryRequiredError,
    TooManyRedirectsError,
    UnsupportedOperationError,
)
from .http1_protocol import Http1Protocol
from .http_protocol import (
    ChunkedStreaming,
    FixedLengthStreaming,
    HttpMethod,
    HttpProtocol,
    HttpRequest,
    HttpResponse,
    NoStreaming,
    StreamingMode,
)
from .security import DEFAULT_POLICY, SecurityPolicy, SocketPermission
from .status import REDIRECT_CODES, HttpStatus
from .streams import (
    BufferedRequestStream,
    ChunkedRequestStream,
    FixedLengthRequestStream,
    effective_chunk_size,
)
from .tcp_transport import TcpTransport

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2**63 - 1
DEFAULT_HTTP_PORT = 80

# Framing headers are always derived from the streaming mode, never from the caller.
_FRAMING_HEADERS = frozenset({"content-length", "transfer-encoding"})
_REALM_PATTERN = re.compile(r'realm="([^"]*)"', re.IGNORECASE)


class ConnectionState(Enum):
    UNCONFIGURED = "unconfigured"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Proxy:
    host: str
    port: int = 8080


@dataclass(frozen=True)
class Capabilities:
    """Optional features a connection opts into. All are off by default."""

    authenticator: bool = False


class Authenticator(Protocol):
    def get_credentials(self, url: str, realm: str | None, for_proxy: bool) -> tuple[str, str] | None:
        ...


ProtocolFactory = Callable[[float | None, float | None], HttpProtocol]


def default_protocol_factory(connect_timeout: float | None, read_timeout: float | None) -> HttpProtocol:
    return Http1Protocol(TcpTransport(connect_timeout, read_timeout))


@dataclass(frozen=True)
class _Target:
    url: str
    host: str
    port: int
    path: str

    @property
    def host_header(self) -> str:
        return self.host if self.port == DEFAULT_HTTP_PORT else f"{self.host}:{self.port}"

    @property
    def absolute_uri(self) -> str:
        return f"http://{self.host_header}{self.path}"


def _check_scheme(url: str) -> None:
    scheme = urlsplit(url).scheme.lower()
    if scheme != "http":
        raise ProtocolViolationError(f"Unsupported URL scheme {scheme!r}; only http is supported.")


def _resolve_target(url: str) -> _Target:
    parts = urlsplit(url)
    if not parts.hostname:
        raise IoFailureError(f"Cannot determine the host of {url!r}")
    try:
        port = parts.port or DEFAULT_HTTP_PORT
    except ValueError as e:
        raise IoFailureError(f"Cannot determine the port of {url!r}") from e

    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return _Target(url=url, host=parts.hostname, port=port, path=path)


class HttpConnection:
    def __init__(
        self,
        url: str,
        *,
        defaults: ConnectionDefaults | None = None,
        policy: SecurityPolicy = DEFAULT_POLICY,
        proxy: Proxy | None = None,
        capabilities: Capabilities = Capabilities(),
        protocol_factory: ProtocolFactory = default_protocol_factory,
    ):
        if not url:
            raise InvalidArgumentError("A target URL is required.")
        _check_scheme(url)

        settings = (defaults if defaults is not None else process_defaults()).snapshot()

        self._url: str = url
        self._policy = policy
        self._proxy = proxy
        self._capabilities = capabilities
        self._protocol_factory = protocol_factory

        self._state = ConnectionState.UNCONFIGURED
        self._method = HttpMethod.GET
        self._streaming_mode: StreamingMode = NoStreaming()
        self._follow_redirects: bool = settings.follow_redirects
        self._max_redirects: int = settings.max_redirects
        self._connect_timeout: float | None = settings.connect_timeout
        self._read_timeout: float | None = settings.read_timeout
        self._request_headers: list[tuple[str, str]] = []
        self._authenticator: Authenticator | None = None

        self._protocol: HttpProtocol | None = None
        self._output = None
        self._sent_request: HttpRequest | None = None
        self._response: HttpResponse | None = None
        self._failure: IoFailureError | None = None
        self._retry_error: RetryRequiredError | None = None
        self._used_proxy = False

    def __enter__(self) -> "HttpConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"<HttpConnection {self._method.value} {self._url} [{self._state.value}]>"

    # --- Configuration ---

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def request_method(self) -> str:
        return self._method.value

    def set_request_method(self, method: str | HttpMethod) -> None:
        if method is None:
            raise InvalidArgumentError("A request method is required.")
        if self._state is not ConnectionState.UNCONFIGURED:
            raise ProtocolViolationError(f"Cannot reset method: connection is {self._state.value}.")

        if isinstance(method, HttpMethod):
            resolved = method
        else:
            try:
                resolved = HttpMethod(method)
            except ValueError:
                raise ProtocolViolationError(f"Invalid HTTP method: {method}") from None

        if resolved is HttpMethod.TRACE:
            self._policy.check_allow_trace()
        self._method = resolved

    @property
    def streaming_mode(self) -> StreamingMode:
        return self._streaming_mode

    @property
    def fixed_content_length(self) -> int:
        if isinstance(self._streaming_mode, FixedLengthStreaming):
            return self._streaming_mode.content_length
        return -1

    @property
    def chunk_length(self) -> int:
        if isinstance(self._streaming_mode, ChunkedStreaming):
            return self._streaming_mode.chunk_size
        return -1

    def set_fixed_length_streaming_mode(self, content_length: int) -> None:
        if content_length < 0:
            raise InvalidArgumentError(f"Invalid content length: {content_length}")
        if content_length > MAX_CONTENT_LENGTH:
            raise InvalidArgumentError(f"Content length exceeds {MAX_CONTENT_LENGTH}: {content_length}")
        self._check_streaming_mode_unset()
        self._streaming_mode = FixedLengthStreaming(content_length)

    def set_chunked_streaming_mode(self, chunk_size: int = 0) -> None:
        """Streams the body in chunks; sizes too small to frame fall back to 4096."""
        self._check_streaming_mode_unset()
        self._streaming_mode = ChunkedStreaming(effective_chunk_size(chunk_size))

    @property
    def instance_follow_redirects(self) -> bool:
        return self._follow_redirects

    @instance_follow_redirects.setter
    def instance_follow_redirects(self, value: bool) -> None:
        self._require_unconfigured("change the redirect policy")
        self._follow_redirects = bool(value)

    @property
    def connect_timeout(self) -> float | None:
        return self._connect_timeout

    @connect_timeout.setter
    def connect_timeout(self, value: float | None) -> None:
        self._connect_timeout = self._checked_timeout("connect", value)

    @property
    def read_timeout(self) -> float | None:
        return self._read_timeout

    @read_timeout.setter
    def read_timeout(self, value: float | None) -> None:
        self._read_timeout = self._checked_timeout("read", value)

    @property
    def authenticator(self) -> Authenticator | None:
        return self._authenticator

    def set_authenticator(self, authenticator: Authenticator) -> None:
        if not self._capabilities.authenticator:
            raise UnsupportedOperationError("Supplying an authenticator is not supported by this connection.")
        if authenticator is None:
            raise InvalidArgumentError("An authenticator is required.")
        self._require_unconfigured("set an authenticator")
        self._authenticator = authenticator

    def set_request_property(self, key: str, value: str) -> None:
        self._check_request_property(key)
        lowered = key.lower()
        self._request_headers = [(k, v) for k, v in self._request_headers if k.lower() != lowered]
        self._request_headers.append((key, value))

    def add_request_property(self, key: str, value: str) -> None:
        self._check_request_property(key)
        self._request_headers.append((key, value))

    def get_request_property(self, key: str) -> str | None:
        lowered = key.lower()
        values = [v for k, v in self._request_headers if k.lower() == lowered]
        return values[-1] if values else None

    @property
    def request_properties(self) -> dict[str, list[str]]:
        properties: dict[str, list[str]] = {}
        for key, value in self._request_headers:
            properties.setdefault(key, []).append(value)
        return properties

    # --- Exchange ---

    def get_output_stream(self):
        """
        Opens the request body channel for the configured streaming mode.

        GET is promoted to POST; HEAD and TRACE cannot carry a body. In the
        fixed-length and chunked modes the request head goes out immediately
        and every write reaches the wire as it happens.
        """
        self._require_not_disconnected()
        if self._output is not None:
            return self._output
        if self._response is not None or self._failure is not None:
            raise ProtocolViolationError("Cannot write output after reading input.")

        if self._method is HttpMethod.GET:
            logger.debug("Promoting GET to POST for a request with a body")
            self._method = HttpMethod.POST
        if self._method in (HttpMethod.HEAD, HttpMethod.TRACE):
            raise ProtocolViolationError(f"HTTP method {self._method.value} doesn't support output")

        mode = self._streaming_mode
        try:
            target = _resolve_target(self._url)
            self._open(target)
            if isinstance(mode, NoStreaming):
                self._output = BufferedRequestStream()
                return self._output

            request = self._build_request(target, self._method, body=None, streamed=True)
            self._protocol.send_head(request)
            self._sent_request = request
            self._used_proxy = self._proxy is not None
            if isinstance(mode, FixedLengthStreaming):
                self._output = FixedLengthRequestStream(self._protocol, mode.content_length)
            else:
                self._output = ChunkedRequestStream(self._protocol, mode.chunk_size)
            return self._output
        except IoFailureError as e:
            self._fail(e)
            raise

    def connect(self) -> None:
        """
        Sends the request and reads the response.

        Safe to call repeatedly: once the exchange has completed this does
        nothing, and if it failed the original failure is raised again. A
        response that needs the request reissued by hand keeps raising
        ``RetryRequiredError``.
        """
        self._require_not_disconnected()
        if self._failure is not None:
            raise self._failure
        if self._retry_error is not None:
            raise self._retry_error
        if self._response is not None:
            return
        if self._output is None and self.fixed_content_length > 0:
            raise InvalidStateError(
                f"Declared a {self.fixed_content_length} byte body but the output stream was never opened."
            )

        try:
            self._exchange()
        except IoFailureError as e:
            self._fail(e)
            raise
        except RetryRequiredError as e:
            self._retry_error = e
            self._close_protocol()
            raise

    def get_input_stream(self) -> io.BytesIO:
        self.connect()
        response = self._response
        if response.status_code >= 400:
            raise ResponseStatusError(
                f"Server returned HTTP response code: {response.status_code} for URL: {self._url}",
                response.status_code,
                response.status_message,
            )
        return io.BytesIO(response.body)

    def disconnect(self) -> None:
        """Releases the connection. Calling it again is a no-op."""
        if self._state is ConnectionState.DISCONNECTED:
            return
        if self._output is not None and not self._output.closed:
            self._output.abandon()
        self._close_protocol()
        self._state = ConnectionState.DISCONNECTED
        logger.debug("Disconnected from %s", self._url)

    # --- Response Introspection ---

    def response_code(self) -> int:
        """
        Returns the status code of the completed exchange, or -1.

        -1 covers both "no exchange yet" and "the peer did not answer with an
        HTTP status line". Raises the original ``IoFailureError`` if the
        exchange failed in flight.
        """
        self._require_not_disconnected()
        if self._failure is not None:
            raise self._failure
        if self._response is None:
            return -1
        return self._response.status_code

    def response_message(self) -> str | None:
        self.response_code()
        if self._response is None:
            return None
        return self._response.status_message

    def header_field_key(self, n: int) -> str | None:
        """Key of the n-th header; index 0 is the status line and has no key."""
        self._require_not_disconnected()
        if self._response is None or n <= 0 or n > len(self._response.headers):
            return None
        return self._response.headers[n - 1][0]

    def header_field(self, n: int) -> str | None:
        """
        Value of the n-th header, or None past the end.

        Index 0 holds the status text (the reason phrase, or the raw status
        line when there is none), so walking indices upward until both key
        and value are None visits every header exactly once.
        """
        self._require_not_disconnected()
        response = self._response
        if response is None or n < 0 or n > len(response.headers):
            return None
        if n == 0:
            if response.status_message is not None:
                return response.status_message
            return response.status_line
        return response.headers[n - 1][1]

    def get_header_field(self, name: str) -> str | None:
        self._require_not_disconnected()
        if self._response is None:
            return None
        return self._response.header(name)

    def get_header_fields(self) -> dict[str | None, list[str]]:
        self._require_not_disconnected()
        if self._response is None:
            return {}

        fields: dict[str | None, list[str]] = {None: [self._response.status_line]}
        for key, value in self._response.headers:
            fields.setdefault(key, []).append(value)
        return fields

    def get_header_field_int(self, name: str, default: int) -> int:
        value = self.get_header_field(name)
        if value is None:
            return default
        try:
            return int(value.strip())
        except ValueError:
            return default

    def get_header_field_date(self, name: str, default: int) -> int:
        """Parses an HTTP date header into epoch milliseconds."""
        value = self.get_header_field(name)
        if value is None:
            return default
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return default
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)

    @property
    def content_length(self) -> int:
        return self.get_header_field_int("Content-Length", -1)

    @property
    def content_type(self) -> str | None:
        return self.get_header_field("Content-Type")

    def get_error_stream(self) -> io.BytesIO | None:
        """
        Body the server sent along with an error status, if any.

        Never starts an exchange. Returns None when there was no exchange, the
        status was not an error, or the error response had no body.
        """
        self._require_not_disconnected()
        response = self._response
        if response is None or response.status_code < 400 or not response.body:
            return None
        return io.BytesIO(response.body)

    def using_proxy(self) -> bool:
        """True only once a request has actually gone out through a proxy."""
        return self._used_proxy

    def get_permission(self) -> SocketPermission:
        if self._proxy is not None:
            return SocketPermission(self._proxy.host, self._proxy.port)
        target = _resolve_target(self._url)
        return SocketPermission(target.host, target.port)

    # --- Internals ---

    def _require_not_disconnected(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            raise InvalidStateError("Connection has been disconnected.")

    def _require_unconfigured(self, action: str) -> None:
        if self._state is not ConnectionState.UNCONFIGURED:
            raise InvalidStateError(f"Cannot {action}: connection is {self._state.value}.")

    def _check_streaming_mode_unset(self) -> None:
        self._require_unconfigured("set a streaming mode")
        if not isinstance(self._streaming_mode, NoStreaming):
            raise InvalidStateError("A streaming mode has already been set.")

    def _check_request_property(self, key: str) -> None:
        self._require_unconfigured("change request properties")
        if not key:
            raise InvalidArgumentError("A request property key is required.")

    def _checked_timeout(self, kind: str, value: float | None) -> float | None:
        self._require_unconfigured(f"change the {kind} timeout")
        if value is not None and value < 0:
            raise InvalidArgumentError(f"The {kind} timeout cannot be negative: {value}")
        return value

    @property
    def _streaming(self) -> bool:
        return not isinstance(self._streaming_mode, NoStreaming)

    def _open(self, target: _Target) -> None:
        if self._protocol is not None:
            return

        self._state = ConnectionState.CONNECTED
        if self._proxy is not None:
            host, port = self._proxy.host, self._proxy.port
        else:
            host, port = target.host, target.port

        protocol = self._protocol_factory(self._connect_timeout, self._read_timeout)
        protocol.connect(host, port)
        self._protocol = protocol
        logger.debug("Connected to %s:%d for %s", host, port, target.url)

    def _reopen(self, target: _Target) -> None:
        self._close_protocol()
        self._open(target)

    def _close_protocol(self) -> None:
        if self._protocol is not None:
            try:
                self._protocol.disconnect()
            finally:
                self._protocol = None

    def _fail(self, failure: IoFailureError) -> None:
        self._failure = failure
        self._close_protocol()
        logger.debug("Exchange with %s failed: %s", self._url, failure)

    def _build_request(
        self,
        target: _Target,
        method: HttpMethod,
        body: bytes | None,
        extra_headers: dict[str, str] | None = None,
        streamed: bool = False,
    ) -> HttpRequest:
        headers = [(k, v) for k, v in self._request_headers if k.lower() not in _FRAMING_HEADERS]
        request = HttpRequest(method=method, path=target.path, body=body or b"", headers=headers)

        if not request.has_header("Host"):
            headers.insert(0, ("Host", target.host_header))
        if not request.has_header("Connection"):
            headers.append(("Connection", "close"))
        for key, value in (extra_headers or {}).items():
            headers.append((key, value))

        mode = self._streaming_mode
        if body is not None:
            headers.append(("Content-Length", str(len(body))))
        elif streamed and isinstance(mode, FixedLengthStreaming):
            headers.append(("Content-Length", str(mode.content_length)))
        elif streamed and isinstance(mode, ChunkedStreaming):
            headers.append(("Transfer-Encoding", "chunked"))

        if self._proxy is not None:
            request.path = target.absolute_uri
        return request

    def _send(
        self,
        target: _Target,
        method: HttpMethod,
        body: bytes | None,
        extra_headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        request = self._build_request(target, method, body, extra_headers)
        self._sent_request = request
        response = self._protocol.perform_request(request)
        self._used_proxy = self._proxy is not None
        return response

    def _exchange(self) -> None:
        target = _resolve_target(self._url)
        method = self._method
        body: bytes | None = None

        if isinstance(self._output, BufferedRequestStream):
            body = self._output.getvalue()
            self._output.close()
            response = self._send(target, method, body)
        elif self._output is not None:
            if isinstance(self._output, FixedLengthRequestStream) and self._output.remaining:
                raise ContentLengthMismatchError(
                    f"Request body is {self._output.remaining} bytes short of the declared length."
                )
            self._output.close()
            response = self._protocol.read_response(self._sent_request)
        else:
            self._open(target)
            response = self._send(target, method, None)

        redirects = 0
        auth_headers: dict[str, str] = {}

        while True:
            self._response = response
            code = response.status_code

            if code in (HttpStatus.UNAUTHORIZED, HttpStatus.PROXY_AUTH):
                if self._streaming:
                    raise self._retry_required(
                        "cannot retry due to server authentication, in streaming mode", response
                    )

                header_name = "Authorization" if code == HttpStatus.UNAUTHORIZED else "Proxy-Authorization"
                if header_name in auth_headers:
                    return
                credentials = self._credentials_for(response, for_proxy=code == HttpStatus.PROXY_AUTH)
                if credentials is None:
                    return

                auth_headers[header_name] = credentials
                logger.info("Retrying %s %s with credentials after %d", method.value, self._url, code)
                self._reopen(target)
                response = self._send(target, method, body, auth_headers)
                continue

            if not self._follow_redirects or code not in REDIRECT_CODES:
                return

            location = response.header("Location")
            if location is None:
                return
            next_url = urljoin(self._url, location)
            if urlsplit(next_url).scheme.lower() != "http":
                logger.info("Not following redirect from %s to non-http target %s", self._url, next_url)
                return

            if self._streaming:
                raise self._retry_required(
                    "cannot retry due to redirection, in streaming mode", response, location=next_url
                )

            redirects += 1
            if redirects > self._max_redirects:
                raise TooManyRedirectsError(f"Server redirected too many times ({self._max_redirects})")

            if code == HttpStatus.SEE_OTHER:
                method, body = HttpMethod.GET, None
                self._method = method

            logger.info("Following %d redirect from %s to %s", code, self._url, next_url)
            self._url = next_url
            target = _resolve_target(next_url)
            auth_headers.clear()
            self._reopen(target)
            response = self._send(target, method, body)

    def _credentials_for(self, response: HttpResponse, for_proxy: bool) -> str | None:
        if self._authenticator is None:
            return None

        challenge = response.header("Proxy-Authenticate" if for_proxy else "WWW-Authenticate") or ""
        if not challenge.lower().startswith("basic"):
            logger.debug("No supported authentication scheme in challenge %r", challenge)
            return None

        match = _REALM_PATTERN.search(challenge)
        realm = match.group(1) if match else None
        credentials = self._authenticator.get_credentials(self._url, realm, for_proxy)
        if credentials is None:
            return None

        user, password = credentials
        token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _retry_required(self, message: str, response: HttpResponse, location: str | None = None) -> RetryRequiredError:
        return RetryRequiredError(
            message,
            status_code=response.status_code,
            reason=response.status_message,
            url=self._url,
            location=location,
            headers=response.headers,
        )
