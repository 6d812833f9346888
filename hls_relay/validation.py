"""
Request guards and canned responses.
"""

import re

from flask import Response
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from hls_relay.errors import AuthError, ForbiddenHostError

LOGIN_TOKEN_RE = re.compile(r"[0-9a-fA-F]{32}")

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, Range",
}

DEFAULT_PORTS = {"http": 80, "https": 443}


# ---------------------------------------------------------------------------
# Utility: Build CORS headers
# ---------------------------------------------------------------------------
def cors_headers(extra=None, preflight=False):
    """
    Return a dictionary of CORS headers, optionally merged with extra headers.
    """
    headers = {"Access-Control-Allow-Origin": "*"}
    if preflight:
        headers.update(PREFLIGHT_HEADERS)
    if extra:
        headers.update(extra)
    return headers


def text_response(body: str, status: int) -> Response:
    return Response(
        body, status=status, mimetype="text/plain", headers=cors_headers()
    )


def preflight_response(methods=None) -> Response:
    extra = {"Access-Control-Allow-Methods": methods} if methods else None
    return Response(status=200, headers=cors_headers(extra, preflight=True))


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------
def is_allowed_video_url(url: str, allowed_host: str) -> bool:
    """
    True iff ``url`` is absolute and its host is exactly ``allowed_host``.

    The host is read with urllib3's parser, the one requests uses to open the
    connection. URLs with userinfo or a backslash are refused outright: parsers
    disagree about where their authority ends.
    """
    if not isinstance(url, str) or "\\" in url:
        return False
    try:
        parts = parse_url(url)
    except (LocationParseError, ValueError):
        return False

    if not parts.scheme or not parts.host or parts.auth is not None:
        return False

    scheme = parts.scheme.lower()
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(scheme) == port:
        port = None

    hostname = parts.host.lower()
    host = hostname if port is None else f"{hostname}:{port}"
    return host == allowed_host.lower()


def is_valid_login_token(token) -> bool:
    return isinstance(token, str) and LOGIN_TOKEN_RE.fullmatch(token) is not None


def require_login_token(token) -> str:
    if not token or not is_valid_login_token(token):
        raise AuthError()
    return token


def require_allowed_video_url(url: str, allowed_host: str) -> str:
    if not is_allowed_video_url(url, allowed_host):
        raise ForbiddenHostError(allowed_host, url)
    return url
