from __future__ import annotations

"""HTTP endpoints exposing runtime profiling data.

The layout and behavior follow the conventional ``/debug/pprof/`` endpoint
set, so standard pprof tooling can fetch profiles from it::

    pprof -http=: http://127.0.0.1:6060/debug/pprof/profile?seconds=10

:func:`new_pprof_server` only builds the server; the caller decides when to
start and stop it.
"""

import html
import logging
import math
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple

from libs.python.http_core import HttpResponse, HttpServer, RequestContext, ServeMux
from libs.python.http_core.handlers import make_attachment_response, make_html_response, make_text_response

from .adapters.process import ProcessIntrospection
from .config import PprofConfig
from .errors import InvalidParameterError, ProfilingError, UnknownProfileError
from .ports.introspection import NamedProfile, RuntimeIntrospection

logger = logging.getLogger("chargeback.pprof")

PREFIX = "/debug/pprof/"
DEFAULT_PROFILE_SECONDS = 30
DEFAULT_TRACE_SECONDS = 1.0

BUILTIN_DESCRIPTIONS: Dict[str, str] = {
    "cmdline": "The command line invocation of the current program.",
    "profile": "CPU profile. You can specify the duration in the seconds GET parameter. After you get the profile file, use the pprof tool to analyze it.",
    "trace": "A trace of execution of the current program. You can specify the duration in the seconds GET parameter. Open the file in Perfetto or chrome://tracing.",
}


def serve_error(status: HTTPStatus | int, message: str) -> HttpResponse:
    return make_text_response(
        status,
        message + "\n",
        {"X-Go-Pprof": "1", "X-Content-Type-Options": "nosniff"},
    )


def _error_for(exc: Exception) -> HttpResponse:
    if isinstance(exc, UnknownProfileError):
        return serve_error(HTTPStatus.NOT_FOUND, "Unknown profile")
    if isinstance(exc, InvalidParameterError):
        return serve_error(HTTPStatus.BAD_REQUEST, str(exc))
    logger.warning("profiling request failed: %s", exc)
    return serve_error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))


def _nosniff(response: HttpResponse) -> HttpResponse:
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _exceeds_write_timeout(ctx: RequestContext, seconds: float) -> bool:
    timeout = ctx.request.write_timeout
    return bool(timeout) and seconds >= timeout


class PprofHandlers:
    """Route handlers reading process state through ``introspection``."""

    def __init__(self, introspection: RuntimeIntrospection) -> None:
        self.introspection = introspection

    def index(self, ctx: RequestContext) -> HttpResponse:
        if ctx.subpath:
            return self.named_profile(ctx, ctx.subpath)
        return _nosniff(make_html_response(HTTPStatus.OK, self.render_index()))

    def named_profile(self, ctx: RequestContext, name: str) -> HttpResponse:
        profile = self.introspection.lookup_profile(name)
        if profile is None:
            raise UnknownProfileError(name)
        debug = _parse_int(ctx.request.query_value("debug"), 0)
        raw_seconds = ctx.request.query_value("seconds")
        if raw_seconds:
            return self.delta_profile(ctx, profile, raw_seconds, debug)
        if name == "heap" and _parse_int(ctx.request.query_value("gc"), 0) > 0:
            self.introspection.collect_garbage()
        body = profile.write(debug)
        if debug != 0:
            return _nosniff(make_text_response(HTTPStatus.OK, body))
        return _nosniff(make_attachment_response(name, body))

    def delta_profile(self, ctx: RequestContext, profile: NamedProfile, raw_seconds: str, debug: int) -> HttpResponse:
        """Serve the change in ``profile`` over ``seconds``; binary form only."""

        seconds = _parse_int(raw_seconds, 0)
        if seconds <= 0:
            raise InvalidParameterError('invalid value for "seconds" - must be a positive integer')
        if not profile.supports_delta:
            raise InvalidParameterError('"seconds" parameter is not supported for this profile type')
        if _exceeds_write_timeout(ctx, seconds):
            return serve_error(HTTPStatus.BAD_REQUEST, "profile duration exceeds server's WriteTimeout")
        if debug != 0:
            raise InvalidParameterError("seconds and debug params are incompatible")
        body = profile.write_delta(seconds)
        return _nosniff(make_attachment_response(f"{profile.name}-delta", body))

    def cmdline(self, ctx: RequestContext) -> HttpResponse:
        body = "\x00".join(self.introspection.cmdline())
        return _nosniff(make_text_response(HTTPStatus.OK, body))

    def profile(self, ctx: RequestContext) -> HttpResponse:
        seconds = _parse_int(ctx.request.query_value("seconds"), DEFAULT_PROFILE_SECONDS)
        if seconds <= 0:
            seconds = DEFAULT_PROFILE_SECONDS
        if _exceeds_write_timeout(ctx, seconds):
            return serve_error(HTTPStatus.BAD_REQUEST, "profile duration exceeds server's WriteTimeout")
        try:
            body = self.introspection.cpu_profile(seconds)
        except ProfilingError as exc:
            return serve_error(HTTPStatus.INTERNAL_SERVER_ERROR, f"Could not enable CPU profiling: {exc}")
        return _nosniff(make_attachment_response("profile", body))

    def symbol(self, ctx: RequestContext) -> HttpResponse:
        if ctx.request.method == "POST":
            raw = ctx.request.body.decode("latin-1")
        else:
            raw = ctx.request.query
        # the count line only says symbol lookup is supported
        lines = ["num_symbols: 1\n"]
        addresses = parse_addresses(raw)
        names = self.introspection.lookup_symbols(addresses)
        for address in addresses:
            name = names.get(address)
            if name is not None:
                lines.append(f"{address:#x} {name}\n")
        return _nosniff(make_text_response(HTTPStatus.OK, "".join(lines)))

    def trace(self, ctx: RequestContext) -> HttpResponse:
        try:
            seconds = float(ctx.request.query_value("seconds"))
        except ValueError:
            seconds = DEFAULT_TRACE_SECONDS
        if not math.isfinite(seconds) or seconds <= 0:
            seconds = DEFAULT_TRACE_SECONDS
        if _exceeds_write_timeout(ctx, seconds):
            return serve_error(HTTPStatus.BAD_REQUEST, "profile duration exceeds server's WriteTimeout")
        try:
            body = self.introspection.trace(seconds)
        except ProfilingError as exc:
            return serve_error(HTTPStatus.INTERNAL_SERVER_ERROR, f"Could not enable tracing: {exc}")
        return _nosniff(make_attachment_response("trace", body))

    def index_entries(self) -> List[Tuple[str, int, str, str]]:
        """Rows of ``(name, count, href, description)`` sorted by name."""

        entries = [
            (p.name, p.count(), f"{p.name}?debug=1", p.description)
            for p in self.introspection.profiles()
        ]
        entries.extend((name, 0, name, desc) for name, desc in BUILTIN_DESCRIPTIONS.items())
        return sorted(entries)

    def render_index(self) -> str:
        entries = self.index_entries()
        rows = "".join(
            f"<tr><td>{count}</td><td><a href='{html.escape(href)}'>{html.escape(name)}</a></td></tr>\n"
            for name, count, href, _ in entries
        )
        descriptions = "".join(
            f"<li><div class=profile-name>{html.escape(name)}: </div> {html.escape(desc)}</li>\n"
            for name, _, _, desc in entries
        )
        return (
            "<html>\n<head>\n<title>/debug/pprof/</title>\n"
            "<style>\n.profile-name{\n\tdisplay:inline-block;\n\twidth:6rem;\n}\n</style>\n"
            "</head>\n<body>\n/debug/pprof/\n<br>\n"
            "<p>Set debug=1 as a query parameter to export in legacy text format</p>\n<br>\n"
            "Types of profiles available:\n<table>\n"
            "<thead><td>Count</td><td>Profile</td></thead>\n"
            f"{rows}</table>\n"
            "<a href='threads?debug=2'>full thread stack dump</a>\n<br>\n"
            "<p>\nProfile Descriptions:\n<ul>\n"
            f"{descriptions}</ul>\n</p>\n</body>\n</html>\n"
        )


def parse_addresses(raw: str) -> List[int]:
    """Parse ``+``-separated addresses; invalid or zero entries are dropped."""

    addresses: List[int] = []
    for word in raw.split("+"):
        word = word.strip()
        if not word:
            continue
        try:
            value = int(word, 0)
        except ValueError:
            continue
        if 0 < value < 1 << 64:
            addresses.append(value)
    return addresses


def _parse_int(raw: str, default: int) -> int:
    try:
        return int(raw)
    except ValueError:
        return default


def new_pprof_mux(introspection: RuntimeIntrospection) -> ServeMux:
    handlers = PprofHandlers(introspection)
    mux = ServeMux(error_map={ProfilingError: _error_for})
    # every method reaches the handlers; symbol reads the body only for POST
    mux.handle_route(PREFIX, handlers.index, name="index", methods=None)
    mux.handle_route(PREFIX + "cmdline", handlers.cmdline, name="cmdline", methods=None)
    mux.handle_route(PREFIX + "profile", handlers.profile, name="profile", methods=None)
    mux.handle_route(PREFIX + "symbol", handlers.symbol, name="symbol", methods=None)
    mux.handle_route(PREFIX + "trace", handlers.trace, name="trace", methods=None)
    return mux


def new_pprof_server(
    config: Optional[PprofConfig] = None,
    introspection: Optional[RuntimeIntrospection] = None,
) -> HttpServer:
    """Build, but do not start, the profiling server.

    With no arguments the server binds ``127.0.0.1:6060``.
    """

    config = config or PprofConfig()
    if introspection is None:
        introspection = ProcessIntrospection(
            sample_hz=config.sample_hz,
            max_trace_events=config.max_trace_events,
        )
    return HttpServer(
        config.address,
        new_pprof_mux(introspection),
        write_timeout=config.write_timeout,
    )


__all__ = [
    "PprofHandlers",
    "new_pprof_mux",
    "new_pprof_server",
    "parse_addresses",
    "serve_error",
]
