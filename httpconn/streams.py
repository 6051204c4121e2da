"""
Request-body output channels, one per streaming mode.

``BufferedRequestStream`` keeps the body in memory so the connection can send
it with a Content-Length (and resend it on a redirect or an authentication
retry). The two streaming variants write through to the protocol as the caller
writes, which is why they can never be replayed.
"""

import io

from .errors import ContentLengthMismatchError
from .http_protocol import HttpProtocol

DEFAULT_CHUNK_SIZE = 4096

# Smallest chunk that can hold a one-digit size header, one data byte and CRLF.
MIN_CHUNK_SIZE = 6

_CHUNK_FOOTER = b"\r\n"
_LAST_CHUNK = b"0\r\n\r\n"


def effective_chunk_size(requested: int) -> int:
    return DEFAULT_CHUNK_SIZE if requested < MIN_CHUNK_SIZE else requested


def chunk_data_size(chunk_size: int) -> int:
    """Payload bytes per chunk once the hex size header and CRLF footer are paid for."""
    header_size = len(f"{chunk_size:x}") + len(_CHUNK_FOOTER)
    return max(1, chunk_size - header_size - len(_CHUNK_FOOTER))


class BufferedRequestStream(io.RawIOBase):
    def __init__(self) -> None:
        super().__init__()
        self._body = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        self._body += data
        return len(data)

    def getvalue(self) -> bytes:
        return bytes(self._body)

    def abandon(self) -> None:
        self.close()


class FixedLengthRequestStream(io.RawIOBase):
    def __init__(self, protocol: HttpProtocol, content_length: int) -> None:
        super().__init__()
        self._protocol = protocol
        self._expected = content_length
        self._written = 0

    @property
    def remaining(self) -> int:
        return self._expected - self._written

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed stream")

        size = len(data)
        if size > self.remaining:
            raise ContentLengthMismatchError(
                f"Attempt to write {size} bytes with only {self.remaining} of "
                f"{self._expected} declared bytes left."
            )

        self._protocol.send_body(bytes(data))
        self._written += size
        return size

    def close(self) -> None:
        if self.closed:
            return
        super().close()
        if self._written != self._expected:
            raise ContentLengthMismatchError(
                f"Stream closed after {self._written} of {self._expected} declared bytes."
            )

    def abandon(self) -> None:
        """Closes without the length check, for a connection torn down mid-body."""
        io.RawIOBase.close(self)

    def __del__(self) -> None:
        # Finalization must never fault or touch the wire.
        self.abandon()


class ChunkedRequestStream(io.RawIOBase):
    def __init__(self, protocol: HttpProtocol, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__()
        self._protocol = protocol
        self._data_size = chunk_data_size(chunk_size)
        self._pending = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed stream")

        self._pending += data
        while len(self._pending) >= self._data_size:
            self._send_chunk(self._pending[:self._data_size])
            del self._pending[:self._data_size]
        return len(data)

    def flush(self) -> None:
        if self._pending and not self.closed:
            self._send_chunk(self._pending)
            self._pending.clear()

    def close(self) -> None:
        if self.closed:
            return
        self.flush()
        super().close()
        self._protocol.send_body(_LAST_CHUNK)

    def abandon(self) -> None:
        self._pending.clear()
        io.RawIOBase.close(self)

    def __del__(self) -> None:
        self.abandon()

    def _send_chunk(self, data: bytes | bytearray) -> None:
        self._protocol.send_body(f"{len(data):x}\r\n".encode("ascii") + bytes(data) + _CHUNK_FOOTER)
