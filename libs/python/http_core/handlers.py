from __future__ import annotations

import json
import logging
import time
from http import HTTPStatus
from typing import Callable, Dict, Optional, Type

from .http import Handler, HttpRequest, HttpResponse, RequestContext

logger = logging.getLogger("http_core.handlers")

TEXT_PLAIN = "text/plain; charset=utf-8"


def make_text_response(
    status: HTTPStatus | int,
    text: str | bytes,
    headers: Optional[Dict[str, str]] = None,
) -> HttpResponse:
    body = text.encode() if isinstance(text, str) else text
    final_headers = {
        "Content-Type": TEXT_PLAIN,
        "Content-Length": str(len(body)),
    }
    if headers:
        final_headers.update(headers)
    return HttpResponse(int(status), final_headers, body)


def make_html_response(status: HTTPStatus | int, html: str) -> HttpResponse:
    body = html.encode()
    headers = {
        "Content-Type": "text/html; charset=utf-8",
        "Content-Length": str(len(body)),
    }
    return HttpResponse(int(status), headers, body)


def make_attachment_response(filename: str, body: bytes) -> HttpResponse:
    headers = {
        "Content-Type": "application/octet-stream",
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Content-Length": str(len(body)),
    }
    return HttpResponse(int(HTTPStatus.OK), headers, body)


def text_error(
    status: HTTPStatus | int,
    message: str,
    *,
    extra_headers: Optional[Dict[str, str]] = None,
) -> HttpResponse:
    return make_text_response(status, message + "\n", extra_headers)


def not_found() -> HttpResponse:
    return text_error(HTTPStatus.NOT_FOUND, "404 page not found")


def redirect(location: str, status: HTTPStatus = HTTPStatus.MOVED_PERMANENTLY) -> HttpResponse:
    return make_text_response(status, b"", {"Location": location})


class AbstractHandler(Handler):
    def __init__(self) -> None:
        self._next: Optional[Handler] = None

    def set_next(self, handler: Handler) -> Handler:
        self._next = handler
        return handler

    def _handle_next(self, ctx: RequestContext) -> HttpResponse:
        if self._next is None:
            if ctx.response is None:
                ctx.response = text_error(HTTPStatus.INTERNAL_SERVER_ERROR, "Unhandled request")
            return ctx.response
        return self._next.handle(ctx)


class ErrorHandler(AbstractHandler):
    def handle(self, ctx: RequestContext) -> HttpResponse:  # noqa: D401
        try:
            return self._handle_next(ctx)
        except Exception:  # noqa: BLE001
            logger.exception("unhandled error serving %s %s", ctx.request.method, ctx.request.path)
            ctx.response = text_error(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
            return ctx.response


class LoggingHandler(AbstractHandler):
    def handle(self, ctx: RequestContext) -> HttpResponse:  # noqa: D401
        start = time.time()
        response = self._handle_next(ctx)
        duration_ms = round((time.time() - start) * 1000, 1)
        entry = {
            "ts": int(time.time() * 1000),
            "method": ctx.request.method,
            "path": ctx.request.path,
            "status": int(response.status),
            "ms": duration_ms,
            "remote": ctx.request.client[0] if ctx.request.client else None,
        }
        logger.info(json.dumps(entry, separators=(",", ":")))
        return response


class RoutingHandler(AbstractHandler):
    """Resolve the route for the request path using ``match``."""

    def __init__(self, match: Callable[[str], Optional[object]], redirect_for: Callable[[str], Optional[str]]) -> None:
        super().__init__()
        self._match = match
        self._redirect_for = redirect_for

    def handle(self, ctx: RequestContext) -> HttpResponse:  # noqa: D401
        path = ctx.request.path
        route = self._match(path)
        if route is None:
            location = self._redirect_for(path)
            if location is not None:
                if ctx.request.query:
                    location = f"{location}?{ctx.request.query}"
                ctx.response = redirect(location)
                return ctx.response
            ctx.response = not_found()
            return ctx.response

        ctx.route = route
        if route.is_subtree:
            ctx.subpath = path[len(route.pattern):]
        if route.methods is None:
            return self._handle_next(ctx)
        allowed = set(route.methods)
        if "GET" in route.methods:
            allowed.add("HEAD")
        if ctx.request.method not in allowed:
            headers = {"Allow": ", ".join(sorted(allowed))}
            ctx.response = text_error(HTTPStatus.METHOD_NOT_ALLOWED, "Method Not Allowed", extra_headers=headers)
            return ctx.response
        return self._handle_next(ctx)


class HeadHandler(AbstractHandler):
    def handle(self, ctx: RequestContext) -> HttpResponse:  # noqa: D401
        if ctx.request.method != "HEAD":
            return self._handle_next(ctx)
        if ctx.route is None:
            return self._handle_next(ctx)

        original_method = ctx.request.method
        ctx.request.method = "GET"
        try:
            response = self._handle_next(ctx)
        finally:
            ctx.request.method = original_method
        return response


class DispatchHandler(AbstractHandler):
    """Invoke the route handler, translating known exceptions to responses.

    ``error_map`` maps exception types to a callable building the response;
    the first ``isinstance`` match wins.
    """

    def __init__(self, error_map: Optional[Dict[Type[Exception], Callable[[Exception], HttpResponse]]] = None) -> None:
        super().__init__()
        self._error_map = dict(error_map or {})

    def handle(self, ctx: RequestContext) -> HttpResponse:  # noqa: D401
        if ctx.route is None:
            ctx.response = not_found()
            return ctx.response
        try:
            response = ctx.route.handler(ctx)
        except Exception as exc:
            for exc_type, build in self._error_map.items():
                if isinstance(exc, exc_type):
                    response = build(exc)
                    break
            else:
                raise
        ctx.response = response
        return response


class RequestProcessor:
    """Facade executed by the manual HTTP server."""

    def __init__(self, entry: Handler) -> None:
        self._entry = entry

    def handle(self, request: HttpRequest) -> HttpResponse:
        ctx = RequestContext(request=request)
        response = self._entry.handle(ctx)
        response.ensure_content_length()
        return response


__all__ = [
    "AbstractHandler",
    "DispatchHandler",
    "ErrorHandler",
    "HeadHandler",
    "LoggingHandler",
    "RequestProcessor",
    "RoutingHandler",
    "make_attachment_response",
    "make_html_response",
    "make_text_response",
    "not_found",
    "redirect",
    "text_error",
]
