import logging

from .transport import Transport
from .http_protocol import HttpProtocol, HttpRequest, HttpResponse, HttpMethod
from .errors import HttpParseError, ConnectionClosedError, SocketWriteError

logger = logging.getLogger(__name__)

# Responses to these never carry a body, whatever their headers say.
_BODILESS_STATUSES = frozenset({204, 304})


def parse_status_line(line: str) -> tuple[int, str | None]:
    """
    Splits ``HTTP/1.1 404 Not Found`` into ``(404, "Not Found")``.

    Anything that is not a well-formed HTTP status line yields ``(-1, None)``
    instead of an error, so callers can still look at the headers.
    """
    parts = line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        return -1, None

    code = parts[1]
    if len(code) != 3 or not code.isdigit():
        return -1, None

    reason = parts[2].strip() if len(parts) == 3 else ""
    return int(code), reason or None


class Http1Protocol(HttpProtocol):
    _HEADER_SEPARATOR = b"\r\n\r\n"
    _LINE_SEPARATOR = b"\r\n"
    _READ_CHUNK_SIZE = 4096

    def __init__(self, transport: Transport):
        self._transport: Transport = transport
        self._buffer: bytearray = bytearray()
        self._scratch: bytearray = bytearray(self._READ_CHUNK_SIZE)
        self._pos: int = 0

    def connect(self, host: str, port: int) -> None:
        self._transport.connect(host, port)

    def disconnect(self) -> None:
        self._transport.close()

    def perform_request(self, request: HttpRequest) -> HttpResponse:
        self.send_head(request)
        if request.body:
            self.send_body(request.body)
        return self.read_response(request)

    def send_head(self, request: HttpRequest) -> None:
        lines = [f"{request.method.value} {request.path} HTTP/1.1"]
        lines.extend(f"{key}: {value}" for key, value in request.headers)
        head = "\r\n".join(lines) + "\r\n\r\n"

        logger.debug("Sending %s %s", request.method.value, request.path)
        self._write_all(head.encode("iso-8859-1"))

    def send_body(self, data: bytes) -> None:
        self._write_all(data)

    def read_response(self, request: HttpRequest) -> HttpResponse:
        self._buffer.clear()
        self._pos = 0

        while True:
            head = self._read_head()
            if head is None:
                return self._read_preamble()
            status_line, headers = head
            status_code, status_message = parse_status_line(status_line)
            logger.debug("Received status line %r", status_line)

            # Interim responses (100 Continue and friends) precede the real one.
            if 100 <= status_code < 200 and status_code != 101:
                continue
            break

        response = HttpResponse(
            status_code=status_code,
            status_message=status_message,
            status_line=status_line,
            body=b"",
            headers=headers,
        )

        if request.method == HttpMethod.HEAD or status_code in _BODILESS_STATUSES or 100 <= status_code < 200:
            return response

        transfer_encoding = response.header("Transfer-Encoding")
        content_length = response.header("Content-Length")

        if transfer_encoding is not None and "chunked" in transfer_encoding.lower():
            response.body = self._read_chunked_body()
        elif content_length is not None:
            try:
                length = int(content_length.strip())
            except ValueError:
                raise HttpParseError("Invalid Content-Length value")
            if length < 0:
                raise HttpParseError("Invalid Content-Length value")
            self._ensure_buffered(self._pos + length)
            response.body = bytes(self._buffer[self._pos:self._pos + length])
            self._pos += length
        else:
            while self._fill():
                pass
            response.body = bytes(self._buffer[self._pos:])
            self._pos = len(self._buffer)

        return response

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            sent = self._transport.write(view)
            if sent <= 0:
                raise SocketWriteError("Transport accepted no bytes.")
            view = view[sent:]

    def _fill(self) -> bool:
        try:
            bytes_read = self._transport.read_into(self._scratch)
        except ConnectionClosedError:
            return False

        if bytes_read == 0:
            return False

        self._buffer += memoryview(self._scratch)[:bytes_read]
        return True

    def _ensure_buffered(self, end: int) -> None:
        while len(self._buffer) < end:
            if not self._fill():
                raise HttpParseError("Connection closed before full content length was received.")

    def _find(self, separator: bytes, start: int) -> int:
        while True:
            index = self._buffer.find(separator, start)
            if index != -1:
                return index
            if not self._fill():
                return -1

    def _read_preamble(self) -> HttpResponse:
        # Whatever the peer sent before closing, with no HTTP framing.
        line, _, rest = bytes(self._buffer[self._pos:]).partition(b"\r\n")
        self._pos = len(self._buffer)
        status_line = line.decode("iso-8859-1")
        logger.debug("Received non-HTTP reply %r", status_line)
        return HttpResponse(status_code=-1, status_message=None, status_line=status_line, body=rest, headers=[])

    def _read_head(self) -> tuple[str, list[tuple[str, str]]] | None:
        separator_pos = self._find(self._HEADER_SEPARATOR, self._pos)
        if separator_pos == -1:
            if len(self._buffer) == self._pos:
                raise ConnectionClosedError("Connection closed before a response was received.")
            if not self._buffer.startswith(b"HTTP/", self._pos):
                return None
            raise HttpParseError("Could not find header separator in response.")

        head = bytes(self._buffer[self._pos:separator_pos]).decode("iso-8859-1")
        self._pos = separator_pos + len(self._HEADER_SEPARATOR)

        lines = head.split("\r\n")
        headers: list[tuple[str, str]] = []
        for line in lines[1:]:
            if line[:1] in (" ", "\t") and headers:
                # Obsolete line folding continues the previous value.
                key, value = headers[-1]
                headers[-1] = (key, f"{value} {line.strip()}")
                continue

            key, colon, value = line.partition(":")
            if colon:
                headers.append((key.strip(), value.strip()))

        return lines[0], headers

    def _read_chunked_body(self) -> bytes:
        body = bytearray()

        while True:
            line_end = self._find(self._LINE_SEPARATOR, self._pos)
            if line_end == -1:
                raise HttpParseError("Connection closed inside a chunk header.")

            size_field = bytes(self._buffer[self._pos:line_end]).split(b";", 1)[0].strip()
            try:
                chunk_size = int(size_field, 16)
            except ValueError:
                raise HttpParseError(f"Invalid chunk size {size_field!r}")
            self._pos = line_end + len(self._LINE_SEPARATOR)

            if chunk_size == 0:
                break

            chunk_end = self._pos + chunk_size
            self._ensure_buffered(chunk_end + len(self._LINE_SEPARATOR))
            if self._buffer[chunk_end:chunk_end + 2] != self._LINE_SEPARATOR:
                raise HttpParseError("Chunk data is not followed by CRLF.")

            body += self._buffer[self._pos:chunk_end]
            self._pos = chunk_end + len(self._LINE_SEPARATOR)

        # Trailer section, terminated by an empty line. Trailer fields are dropped.
        while True:
            line_end = self._find(self._LINE_SEPARATOR, self._pos)
            if line_end == -1:
                raise HttpParseError("Connection closed inside the chunked trailer.")
            is_last = line_end == self._pos
            self._pos = line_end + len(self._LINE_SEPARATOR)
            if is_last:
                return bytes(body)
