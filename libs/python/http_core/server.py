from __future__ import annotations

"""Manual HTTP/1.1 server implemented directly over sockets."""

import logging
import socket
import threading
from contextlib import suppress
from http import HTTPStatus
from typing import Optional, Protocol, Tuple
from urllib.parse import urlsplit

from .http import HttpRequest, HttpResponse

MAX_HEADER_BYTES = 16 * 1024
MAX_BODY_BYTES = 5 * 1024 * 1024
ACCEPT_POLL_SECONDS = 0.5

logger = logging.getLogger("http_core.server")


class RequestHandler(Protocol):
    def handle(self, request: HttpRequest) -> HttpResponse:
        """Process ``request`` and return an HTTP response."""


def split_address(address: str) -> Tuple[str, int]:
    """Split ``"host:port"`` into its parts."""

    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    try:
        value = int(port)
    except ValueError as exc:
        raise ValueError(f"invalid port in address {address!r}") from exc
    if value < 0 or value > 65535:
        raise ValueError(f"invalid port in address {address!r}")
    return host.strip("[]"), value


class HttpServer:
    """A bind address paired with a request handler.

    Creating the server does not touch the network. Callers bind and serve
    explicitly with :meth:`start` or :meth:`serve_forever`, and stop it with
    :meth:`shutdown`. Every accepted connection is served on its own daemon
    thread, so a handler that blocks for a long time only holds its own
    connection.
    """

    def __init__(
        self,
        address: str,
        handler: RequestHandler,
        *,
        read_timeout: float = 30.0,
        write_timeout: Optional[float] = None,
        backlog: int = 128,
    ) -> None:
        self.address = address
        self.handler = handler
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.backlog = backlog
        self.server_address: Optional[Tuple[str, int]] = None
        self._sock: Optional[socket.socket] = None
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def bind(self) -> Tuple[str, int]:
        if self._sock is not None:
            assert self.server_address is not None
            return self.server_address
        host, port = split_address(self.address)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise
        sock.settimeout(ACCEPT_POLL_SECONDS)
        self._sock = sock
        bound_host, bound_port = sock.getsockname()[:2]
        self.server_address = (bound_host, bound_port)
        logger.info("listening on %s:%s", bound_host, bound_port)
        return self.server_address

    def serve_forever(self) -> None:
        """Accept connections until :meth:`shutdown` is called."""

        self.bind()
        assert self._sock is not None
        sock = self._sock
        while not self._stopping.is_set():
            try:
                conn, addr = sock.accept()
            except TimeoutError:
                continue
            except OSError:
                if self._stopping.is_set():
                    break
                raise
            thread = threading.Thread(target=self._serve_connection, args=(conn, addr), daemon=True)
            thread.start()

    def start(self) -> "HttpServer":
        """Bind and serve on a background daemon thread."""

        self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name=f"http-server {self.address}", daemon=True)
        self._thread.start()
        return self

    def shutdown(self) -> None:
        self._stopping.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
            self._thread = None
        self.close()

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.info("closed listener for %s", self.address)

    def __enter__(self) -> "HttpServer":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _serve_connection(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        with conn:
            conn.settimeout(self.read_timeout)
            try:
                request = _read_request(conn, addr)
                if request is None:
                    return
            except ValueError as exc:
                _send_simple_response(conn, HTTPStatus.BAD_REQUEST, str(exc))
                return
            except OSError as exc:
                logger.debug("connection from %s dropped: %s", addr[0], exc)
                return

            request.write_timeout = self.write_timeout
            try:
                response = self.handler.handle(request)
            except Exception:  # noqa: BLE001
                logger.exception("handler failed for %s %s", request.method, request.path)
                response = HttpResponse(
                    int(HTTPStatus.INTERNAL_SERVER_ERROR),
                    {"Content-Type": "text/plain; charset=utf-8"},
                    b"Internal Server Error\n",
                )

            conn.settimeout(self.write_timeout)
            try:
                _send_response(conn, request, response)
            except OSError as exc:
                logger.warning("failed to write response to %s: %s", addr[0], exc)


def _read_request(conn: socket.socket, addr: Tuple[str, int]) -> HttpRequest | None:
    buffer = bytearray()
    while b"\r\n\r\n" not in buffer:
        chunk = conn.recv(4096)
        if not chunk:
            return None
        buffer.extend(chunk)
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("header section too large")

    header_part, body_part = buffer.split(b"\r\n\r\n", 1)
    lines = header_part.split(b"\r\n")
    if not lines:
        raise ValueError("invalid request line")
    request_line = lines[0].decode("iso-8859-1").strip()
    parts = request_line.split()
    if len(parts) != 3:
        raise ValueError("invalid request line")
    method, target, version = parts
    method = method.upper()
    if version not in {"HTTP/1.1", "HTTP/1.0"}:
        raise ValueError("unsupported HTTP version")

    headers: dict[str, str] = {}
    for raw in lines[1:]:
        if not raw:
            continue
        if b":" not in raw:
            raise ValueError("invalid header")
        name, value = raw.split(b":", 1)
        headers[name.decode("ascii", "ignore").strip().lower()] = value.decode("iso-8859-1").strip()

    content_length = 0
    if "content-length" in headers:
        with suppress(ValueError):
            content_length = int(headers["content-length"]) if headers["content-length"] else 0
    content_length = max(0, min(content_length, MAX_BODY_BYTES))

    body = bytearray(body_part[:content_length])
    while len(body) < content_length:
        chunk = conn.recv(min(65536, content_length - len(body)))
        if not chunk:
            break
        body.extend(chunk)

    parsed = urlsplit(target)
    path = parsed.path or "/"

    return HttpRequest(
        method=method,
        target=target,
        path=path,
        query=parsed.query,
        headers=headers,
        body=bytes(body[:content_length]),
        client=addr,
    )


def _send_response(conn: socket.socket, request: HttpRequest, response: HttpResponse) -> None:
    response.headers.setdefault("Connection", "close")
    response.ensure_content_length()
    try:
        reason = HTTPStatus(response.status).phrase
    except ValueError:
        reason = "OK"
    status_line = f"HTTP/1.1 {int(response.status)} {reason}\r\n"
    header_lines = "".join(f"{name}: {value}\r\n" for name, value in response.headers.items())
    conn.sendall(status_line.encode("iso-8859-1"))
    conn.sendall(header_lines.encode("iso-8859-1"))
    conn.sendall(b"\r\n")
    if request.method != "HEAD" and response.body:
        conn.sendall(response.body)


def _send_simple_response(conn: socket.socket, status: HTTPStatus, message: str) -> None:
    payload = f"{message}\n".encode()
    status_line = f"HTTP/1.1 {int(status)} {status.phrase}\r\n"
    headers = (
        "Content-Type: text/plain; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
    )
    with suppress(OSError):
        conn.sendall(status_line.encode("iso-8859-1"))
        conn.sendall(headers.encode("iso-8859-1"))
        conn.sendall(b"\r\n")
        conn.sendall(payload)


__all__ = ["HttpServer", "RequestHandler", "split_address"]
