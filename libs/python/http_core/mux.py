from __future__ import annotations

"""Path router modelled on a classic serve-mux.

Patterns are literal paths. A pattern with a trailing slash owns its whole
subtree; otherwise it matches one path exactly. When several patterns match,
the longest one wins.
"""

from typing import Callable, Dict, Iterable, List, Optional, Type

from .handlers import (
    DispatchHandler,
    ErrorHandler,
    HeadHandler,
    LoggingHandler,
    RequestProcessor,
    RoutingHandler,
)
from .http import HttpRequest, HttpResponse, RequestContext, Route

DEFAULT_METHODS = frozenset({"GET"})


class ServeMux:
    def __init__(
        self,
        error_map: Optional[Dict[Type[Exception], Callable[[Exception], HttpResponse]]] = None,
    ) -> None:
        self._routes: Dict[str, Route] = {}

        logging_handler = LoggingHandler()
        error_handler = ErrorHandler()
        routing_handler = RoutingHandler(self.match, self.redirect_for)
        head_handler = HeadHandler()
        dispatch_handler = DispatchHandler(error_map)

        logging_handler.set_next(error_handler)
        error_handler.set_next(routing_handler)
        routing_handler.set_next(head_handler)
        head_handler.set_next(dispatch_handler)

        self._processor = RequestProcessor(logging_handler)

    def handle_route(
        self,
        pattern: str,
        handler: Callable[[RequestContext], HttpResponse],
        *,
        name: Optional[str] = None,
        methods: Optional[Iterable[str]] = DEFAULT_METHODS,
    ) -> Route:
        """Register ``handler`` for ``pattern``; ``methods=None`` allows any method."""

        if not pattern or not pattern.startswith("/"):
            raise ValueError(f"invalid pattern {pattern!r}")
        if pattern in self._routes:
            raise ValueError(f"multiple registrations for {pattern}")
        allowed = None if methods is None else {m.upper() for m in methods}
        route = Route(name or pattern, pattern, allowed, handler)
        self._routes[pattern] = route
        return route

    def patterns(self) -> List[str]:
        return sorted(self._routes)

    def match(self, path: str) -> Optional[Route]:
        best: Optional[Route] = None
        for route in self._routes.values():
            if not route.matches(path):
                continue
            if best is None or len(route.pattern) > len(best.pattern):
                best = route
        return best

    def redirect_for(self, path: str) -> Optional[str]:
        """Return ``path + "/"`` when only the subtree form is registered."""

        candidate = path + "/"
        if path not in self._routes and candidate in self._routes:
            return candidate
        return None

    def handle(self, request: HttpRequest) -> HttpResponse:
        return self._processor.handle(request)


__all__ = ["ServeMux"]
