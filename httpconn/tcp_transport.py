import logging
import socket

from .errors import (
    TransportError,
    DnsFailureError,
    SocketCreateError,
    SocketConnectError,
    SocketWriteError,
    SocketReadError,
)
from .transport import Transport

logger = logging.getLogger(__name__)


class TcpTransport(Transport):
    def __init__(self, connect_timeout: float | None = None, read_timeout: float | None = None) -> None:
        self._sock: socket.socket | None = None
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, host: str, port: int) -> None:
        if self._sock is not None:
            raise TransportError("Transport is already connected.")

        try:
            addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise DnsFailureError(f"DNS Failure for host '{host}'") from e

        last_error: OSError | None = None
        for family, socktype, proto, _, address in addresses:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                raise SocketCreateError(f"Socket creation failed: {e}") from e

            try:
                sock.settimeout(self._connect_timeout)
                sock.connect(address)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                sock.settimeout(self._read_timeout)
            except OSError as e:
                sock.close()
                last_error = e
                continue

            self._sock = sock
            logger.debug("Connected to %s:%d via %s", host, port, address)
            return

        raise SocketConnectError(f"Socket connection failed: {last_error}") from last_error

    def write(self, data: bytes) -> int:
        if self._sock is None:
            raise TransportError("Cannot write on a disconnected transport.")

        try:
            return self._sock.send(data)
        except OSError as e:
            raise SocketWriteError(f"Socket write failed: {e}") from e

    def read_into(self, buffer: bytearray | memoryview) -> int:
        if self._sock is None:
            raise TransportError("Cannot read from a disconnected transport.")

        try:
            return self._sock.recv_into(buffer)
        except OSError as e:
            raise SocketReadError(f"Socket read failed: {e}") from e

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
                logger.debug("Transport closed")
