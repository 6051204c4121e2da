from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Union


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PUT = "PUT"
    DELETE = "DELETE"
    TRACE = "TRACE"


# --- Streaming Modes ---

@dataclass(frozen=True)
class NoStreaming:
    """The whole body is buffered and sent with a Content-Length."""


@dataclass(frozen=True)
class FixedLengthStreaming:
    content_length: int


@dataclass(frozen=True)
class ChunkedStreaming:
    chunk_size: int


StreamingMode = Union[NoStreaming, FixedLengthStreaming, ChunkedStreaming]


@dataclass
class HttpRequest:
    method: HttpMethod = HttpMethod.GET
    path: str = "/"
    body: bytes = b""
    headers: list[tuple[str, str]] = field(default_factory=list)

    def has_header(self, name: str) -> bool:
        name = name.lower()
        return any(key.lower() == name for key, _ in self.headers)


@dataclass
class HttpResponse:
    status_code: int
    status_message: str | None
    status_line: str
    body: bytes
    headers: list[tuple[str, str]]

    def header(self, name: str) -> str | None:
        """Returns the last value received for ``name``, or None."""
        name = name.lower()
        value = None
        for key, header_value in self.headers:
            if key.lower() == name:
                value = header_value
        return value


class HttpProtocol(Protocol):
    def connect(self, host: str, port: int) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def send_head(self, request: HttpRequest) -> None:
        ...

    def send_body(self, data: bytes) -> None:
        ...

    def read_response(self, request: HttpRequest) -> HttpResponse:
        ...

    def perform_request(self, request: HttpRequest) -> HttpResponse:
        ...
