"""Shared HTTP server primitives used across Python services."""

from .http import Handler, HttpRequest, HttpResponse, RequestContext, Route
from .mux import ServeMux
from .server import HttpServer, RequestHandler, split_address

__all__ = [
    "Handler",
    "HttpRequest",
    "HttpResponse",
    "RequestContext",
    "Route",
    "HttpServer",
    "RequestHandler",
    "ServeMux",
    "split_address",
]
