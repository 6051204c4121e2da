import pytest

from httpconn.errors import ConnectionClosedError, HttpParseError, TransportError
from httpconn.http1_protocol import Http1Protocol, parse_status_line
from httpconn.http_protocol import HttpMethod, HttpRequest
from httpconn.tcp_transport import TcpTransport

from conftest import request_body


class ScriptedTransport:
    """Serves a canned response a few bytes at a time and records writes."""

    def __init__(self, response: bytes, read_size: int = 7, close_error: bool = False):
        self._response = memoryview(response)
        self._read_size = read_size
        self._close_error = close_error
        self.written = bytearray()
        self.closed = False

    def connect(self, host: str, port: int) -> None:
        pass

    def write(self, data) -> int:
        # Accept at most 5 bytes per call to exercise short writes.
        accepted = bytes(data[:5])
        self.written += accepted
        return len(accepted)

    def read_into(self, buffer) -> int:
        if not self._response:
            if self._close_error:
                raise ConnectionClosedError("peer closed")
            return 0
        size = min(self._read_size, len(buffer), len(self._response))
        buffer[:size] = self._response[:size]
        self._response = self._response[size:]
        return size

    def close(self) -> None:
        self.closed = True


def test_perform_request_fails_if_not_connected():
    protocol = Http1Protocol(TcpTransport())

    req = HttpRequest(method=HttpMethod.GET, path="/")

    with pytest.raises(TransportError, match="Cannot write on a disconnected transport."):
        protocol.perform_request(req)


def test_correctly_serializes_request_over_short_writes():
    transport = ScriptedTransport(b"HTTP/1.1 204 No Content\r\n\r\n")
    protocol = Http1Protocol(transport)

    req = HttpRequest(
        method=HttpMethod.POST,
        path="/submit",
        body=b"key=value",
        headers=[("Host", "example.com"), ("Content-Length", "9")],
    )
    res = protocol.perform_request(req)

    assert res.status_code == 204
    assert bytes(transport.written) == (
        b"POST /submit HTTP/1.1\r\n"
        b"Host: example.com\r\n"
        b"Content-Length: 9\r\n"
        b"\r\n"
        b"key=value"
    )


def test_correctly_serializes_get_request(server_factory):
    with server_factory(b"HTTP/1.1 204 No Content\r\n\r\n") as details:
        protocol = Http1Protocol(TcpTransport(read_timeout=2.0))
        protocol.connect(details.host, details.port)

        req = HttpRequest(method=HttpMethod.DELETE, path="/items/3", headers=[("Host", "example.com")])
        res = protocol.perform_request(req)
        protocol.disconnect()

        captured = details.requests.get(timeout=1.0)
        assert captured == b"DELETE /items/3 HTTP/1.1\r\nHost: example.com\r\n\r\n"
        assert res.status_code == 204
        assert res.body == b""


def test_reads_content_length_body(server_factory):
    canned_response = b"HTTP/1.1 200 OK\r\nContent-Length: 7\r\nX-Extra: a\r\n\r\nsuccess"
    with server_factory(canned_response) as details:
        protocol = Http1Protocol(TcpTransport(read_timeout=2.0))
        protocol.connect(details.host, details.port)

        body = b"payload"
        req = HttpRequest(method=HttpMethod.PUT, path="/up", body=body, headers=[("Content-Length", "7")])
        res = protocol.perform_request(req)
        protocol.disconnect()

        assert request_body(details.requests.get(timeout=1.0)) == body
        assert res.status_code == 200
        assert res.status_message == "OK"
        assert res.status_line == "HTTP/1.1 200 OK"
        assert res.headers == [("Content-Length", "7"), ("X-Extra", "a")]
        assert res.body == b"success"


def test_decodes_chunked_response_body():
    response = (
        b"HTTP/1.1 200 OK\r\n"
        b"Transfer-Encoding: chunked\r\n"
        b"\r\n"
        b"4\r\nWiki\r\n"
        b"6;ext=1\r\npedia \r\n"
        b"E\r\nin \r\n\r\nchunks.\r\n"
        b"0\r\n"
        b"Expires: never\r\n"
        b"\r\n"
    )
    protocol = Http1Protocol(ScriptedTransport(response, read_size=3))

    res = protocol.perform_request(HttpRequest())

    assert res.body == b"Wikipedia in \r\n\r\nchunks."
    assert res.header("transfer-encoding") == "chunked"


def test_rejects_invalid_chunk_size():
    response = b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\nabc\r\n0\r\n\r\n"
    protocol = Http1Protocol(ScriptedTransport(response))

    with pytest.raises(HttpParseError, match="Invalid chunk size"):
        protocol.perform_request(HttpRequest())


def test_reads_until_close_without_framing():
    response = b"HTTP/1.0 200 OK\r\nContent-Type: text/plain\r\n\r\nall of the rest"
    protocol = Http1Protocol(ScriptedTransport(response, close_error=True))

    res = protocol.perform_request(HttpRequest())
    assert res.body == b"all of the rest"


def test_head_response_has_no_body():
    response = b"HTTP/1.1 200 OK\r\nContent-Length: 1234\r\n\r\n"
    protocol = Http1Protocol(ScriptedTransport(response))

    res = protocol.perform_request(HttpRequest(method=HttpMethod.HEAD))
    assert res.body == b""
    assert res.header("Content-Length") == "1234"


def test_skips_interim_continue_response():
    response = b"HTTP/1.1 100 Continue\r\n\r\nHTTP/1.1 201 Created\r\nContent-Length: 2\r\n\r\nok"
    protocol = Http1Protocol(ScriptedTransport(response))

    res = protocol.perform_request(HttpRequest(method=HttpMethod.POST, body=b"x"))
    assert res.status_code == 201
    assert res.status_message == "Created"
    assert res.body == b"ok"


def test_folded_header_lines_are_joined():
    response = b"HTTP/1.1 200 OK\r\nX-Long: first\r\n  second\r\nContent-Length: 0\r\n\r\n"
    protocol = Http1Protocol(ScriptedTransport(response))

    res = protocol.perform_request(HttpRequest())
    assert res.header("X-Long") == "first second"


def test_truncated_body_raises_parse_error():
    response = b"HTTP/1.1 200 OK\r\nContent-Length: 50\r\n\r\nshort"
    protocol = Http1Protocol(ScriptedTransport(response))

    with pytest.raises(HttpParseError, match="Connection closed before full content length"):
        protocol.perform_request(HttpRequest())


def test_invalid_content_length_raises_parse_error():
    response = b"HTTP/1.1 200 OK\r\nContent-Length: lots\r\n\r\n"
    protocol = Http1Protocol(ScriptedTransport(response))

    with pytest.raises(HttpParseError, match="Invalid Content-Length value"):
        protocol.perform_request(HttpRequest())


def test_missing_header_separator_raises_parse_error():
    protocol = Http1Protocol(ScriptedTransport(b"HTTP/1.1 200 OK\r\nContent-Len"))

    with pytest.raises(HttpParseError, match="Could not find header separator"):
        protocol.perform_request(HttpRequest())


def test_non_http_reply_without_blank_line_is_unknown_status():
    protocol = Http1Protocol(ScriptedTransport(b"SSH-2.0-OpenSSH_9.6\r\nleftover bytes", close_error=True))

    res = protocol.perform_request(HttpRequest())

    assert res.status_code == -1
    assert res.status_message is None
    assert res.status_line == "SSH-2.0-OpenSSH_9.6"
    assert res.headers == []
    assert res.body == b"leftover bytes"


def test_empty_response_is_connection_closed():
    protocol = Http1Protocol(ScriptedTransport(b""))

    with pytest.raises(ConnectionClosedError):
        protocol.perform_request(HttpRequest())


def test_disconnect_closes_transport():
    transport = ScriptedTransport(b"")
    Http1Protocol(transport).disconnect()
    assert transport.closed


@pytest.mark.parametrize("line, expected", [
    ("HTTP/1.1 200 OK", (200, "OK")),
    ("HTTP/1.1 404 Not Found", (404, "Not Found")),
    ("HTTP/1.0 401 Unauthorized", (401, "Unauthorized")),
    ("HTTP/1.1 204", (204, None)),
    ("HTTP/1.1 204 ", (204, None)),
    ("HTTP/1.1 99 Tiny", (-1, None)),
    ("HTTP/1.1 abc Nope", (-1, None)),
    ("ICY 200 OK", (-1, None)),
    ("", (-1, None)),
])
def test_parse_status_line(line, expected):
    assert parse_status_line(line) == expected
