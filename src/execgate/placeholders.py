"""Request placeholders for argument templates.

``{name}`` is replaced with a value taken from the current request. Unknown
names become the empty string. ``\\{`` and ``\\}`` produce literal braces.

Supported names (long form, then shorthand)::

    http.request.method            method
    http.request.scheme            scheme
    http.request.host              host
    http.request.port              port
    http.request.uri               uri
    http.request.uri.path          path
    http.request.uri.query         query
    http.request.uri.path.N        path.N
    http.request.uri.query.NAME    query.NAME
    http.request.header.NAME       header.NAME
    http.request.cookie.NAME       cookie.NAME
    http.request.remote.host       remote_host
    http.request.remote.port       remote_port
    env.NAME
"""

import os
import re
from collections.abc import Callable, Sequence

from starlette.requests import Request

Resolver = Callable[[str, Request], str]

_TOKEN = re.compile(r"\\([{}])|\{([^{}]+)\}")

_REQUEST_PREFIX = "http.request."

_SHORTHANDS = {
    "method": "method",
    "scheme": "scheme",
    "host": "host",
    "port": "port",
    "uri": "uri",
    "path": "uri.path",
    "query": "uri.query",
    "remote_host": "remote.host",
    "remote_port": "remote.port",
}

_SHORTHAND_PREFIXES = {
    "path.": "uri.path.",
    "query.": "uri.query.",
    "header.": "header.",
    "cookie.": "cookie.",
}


def _port(request: Request) -> str:
    if request.url.port is not None:
        return str(request.url.port)
    return "443" if request.url.scheme in ("https", "wss") else "80"


def _uri(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _path_segment(request: Request, index: str) -> str:
    segments = request.url.path.strip("/").split("/")
    try:
        return segments[int(index)]
    except (ValueError, IndexError):
        return ""


_REQUEST_FIELDS: dict[str, Callable[[Request], str]] = {
    "method": lambda r: r.method,
    "scheme": lambda r: r.url.scheme,
    "host": lambda r: r.url.hostname or "",
    "port": _port,
    "uri": _uri,
    "uri.path": lambda r: r.url.path,
    "uri.query": lambda r: r.url.query,
    "remote.host": lambda r: r.client.host if r.client else "",
    "remote.port": lambda r: str(r.client.port) if r.client else "",
}

_REQUEST_LOOKUPS: dict[str, Callable[[Request, str], str]] = {
    "uri.path.": _path_segment,
    "uri.query.": lambda r, name: r.query_params.get(name, ""),
    "header.": lambda r, name: r.headers.get(name, ""),
    "cookie.": lambda r, name: r.cookies.get(name, ""),
}


def lookup(name: str, request: Request) -> str:
    """Value of a single placeholder name (without braces)."""
    if name.startswith("env."):
        return os.environ.get(name[len("env.") :], "")

    if name.startswith(_REQUEST_PREFIX):
        key = name[len(_REQUEST_PREFIX) :]
    elif name in _SHORTHANDS:
        key = _SHORTHANDS[name]
    else:
        key = next(
            (
                full + name[len(short) :]
                for short, full in _SHORTHAND_PREFIXES.items()
                if name.startswith(short)
            ),
            None,
        )
        if key is None:
            return ""

    if key in _REQUEST_FIELDS:
        return _REQUEST_FIELDS[key](request)
    for prefix, getter in _REQUEST_LOOKUPS.items():
        if key.startswith(prefix):
            return getter(request, key[len(prefix) :])
    return ""


def resolve_placeholders(template: str, request: Request) -> str:
    """Replace every placeholder in ``template`` for this request."""

    def _replace(match: re.Match[str]) -> str:
        if match.group(1) is not None:
            return match.group(1)
        return lookup(match.group(2), request)

    return _TOKEN.sub(_replace, template)


def resolve_args(
    templates: Sequence[str],
    request: Request,
    resolver: Resolver = resolve_placeholders,
) -> list[str]:
    """Resolve each argument template once, in order."""
    return [resolver(template, request) for template in templates]
