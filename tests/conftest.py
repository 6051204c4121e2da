import re
import socket
import threading

from contextlib import contextmanager
from dataclasses import dataclass, field
from queue import Queue
from typing import Callable, ContextManager

import pytest

from httpconn.config import process_defaults


@dataclass
class ServerDetails:
    host: str = ""
    port: int = 0
    requests: Queue = field(default_factory=Queue)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def read_request(sock: socket.socket) -> bytes:
    """Reads one HTTP request, honouring Content-Length and chunked framing."""
    data = bytearray()
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            return bytes(data)
        data += chunk

    head_end = data.find(b"\r\n\r\n") + 4
    head = bytes(data[:head_end]).lower()

    if b"transfer-encoding: chunked" in head:
        while b"\r\n0\r\n\r\n" not in data[head_end - 2:]:
            chunk = sock.recv(4096)
            if not chunk:
                break
            data += chunk
    else:
        match = re.search(rb"content-length:\s*(\d+)", head)
        length = int(match.group(1)) if match else 0
        while len(data) < head_end + length:
            chunk = sock.recv(4096)
            if not chunk:
                break
            data += chunk

    return bytes(data)


def request_body(raw_request: bytes) -> bytes:
    return raw_request.split(b"\r\n\r\n", 1)[1]


@pytest.fixture
def server_factory() -> Callable[..., ContextManager[ServerDetails]]:
    """
    Starts a one-thread server that answers successive connections with the
    given canned responses, one response per connection, and records every
    request it reads on ``details.requests``.
    """
    @contextmanager
    def _factory(*responses: bytes):
        details = ServerDetails()
        stop_event = threading.Event()

        listener_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener_sock.bind(("127.0.0.1", 0))
        details.host, details.port = listener_sock.getsockname()

        def server_loop():
            for response in responses:
                try:
                    client_sock, _ = listener_sock.accept()
                except OSError:
                    return
                if stop_event.is_set():
                    client_sock.close()
                    return
                with client_sock:
                    try:
                        details.requests.put(read_request(client_sock))
                        client_sock.sendall(response)
                    except OSError:
                        pass

        listener_sock.settimeout(5.0)
        listener_sock.listen()
        server_thread = threading.Thread(target=server_loop, daemon=True)
        server_thread.start()

        try:
            yield details
        finally:
            stop_event.set()
            if server_thread.is_alive():
                # Connect to unblock the accept() call
                try:
                    with socket.create_connection((details.host, details.port), timeout=0.1):
                        pass
                except OSError:
                    pass
            server_thread.join(timeout=1.0)
            listener_sock.close()

    return _factory


@pytest.fixture
def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def restore_process_defaults():
    defaults = process_defaults()
    saved = defaults.follow_redirects
    yield
    defaults.follow_redirects = saved
