"""
Segment endpoint.

``/ts/<name>?base=<playlist url>&token=<login token>`` resolves ``name``
against the playlist URL, fetches it from the media host with a signed URL and
streams the bytes back as they arrive. Nothing is buffered. If the client goes
away mid-segment the body generator is closed and the upstream connection is
released with it.

``/intranet/ts/<name>`` is the same relay over the mapped intranet addresses.
"""

import re
from urllib.parse import urlsplit

import structlog
from flask import Response, request
from werkzeug.datastructures import Headers
from werkzeug.routing import PathConverter

from hls_relay.credentials import VideoTokenHolder
from hls_relay.errors import ValidationError
from hls_relay.fetcher import fetch_stream
from hls_relay.routes import bp, relay
from hls_relay.validation import (
    cors_headers,
    require_allowed_video_url,
    require_login_token,
)

log = structlog.get_logger(__name__)


class SegmentPathConverter(PathConverter):
    """``path`` that also matches a leading slash, for root-relative names."""

    regex = ".+?"


_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")

# Hop-by-hop headers (RFC 7230 6.1) describe the upstream connection, not the body
HOP_BY_HOP = frozenset(
    (
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    )
)


def _origin(parts) -> str:
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}"


def resolve_segment_url(base: str, name: str) -> str:
    """
    Resolve a playlist entry against the playlist URL.

    - ``scheme://...`` is already absolute and used as is
    - ``/path`` keeps only the base's scheme and host
    - anything else goes in the base's directory

    The base's query string is not carried over.
    """
    if _SCHEME_RE.match(name):
        return name

    parts = urlsplit(base)
    if name.startswith("/"):
        return _origin(parts) + name

    directory = parts.path[: parts.path.rfind("/") + 1] or "/"
    return _origin(parts) + directory + name


def relay_headers(upstream_headers) -> Headers:
    headers = Headers()
    for key, value in upstream_headers.items():
        if key.lower() not in HOP_BY_HOP:
            headers.add(key, value)
    headers.setdefault("Content-Type", "application/octet-stream")
    for key, value in cors_headers(preflight=True).items():
        headers.set(key, value)
    return headers


# ---------------------------------------------------------------------------
# Segment endpoint
# ---------------------------------------------------------------------------
def _relay_segment(filename, intranet: bool):
    ctx = relay()
    video_host = ctx.settings.video_host

    login_token = require_login_token(request.args.get("token"))

    base = request.args.get("base")
    if not base:
        raise ValidationError("Missing required parameter: base")
    require_allowed_video_url(base, video_host)

    # The WSGI layer has already percent-decoded the path
    segment_url = require_allowed_video_url(
        resolve_segment_url(base, filename), video_host
    )

    http, timeout = ctx.transport(intranet)
    holder = VideoTokenHolder(ctx.broker, login_token)
    upstream = fetch_stream(
        lambda: ctx.signer.build_url(segment_url, holder.token),
        holder.refresh,
        http=http,
        timeout=timeout,
        label="TS segment",
    )

    chunk_size = ctx.settings.chunk_size

    def generate():
        """
        Relay the upstream body in chunk_size pieces.

        Reads the raw stream so the bytes (and any Content-Encoding) reach the
        client exactly as the media host sent them.
        """
        try:
            while True:
                chunk = upstream.raw.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        except Exception as exc:
            log.error("segment_relay_interrupted", error=type(exc).__name__)
            raise
        finally:
            upstream.close()

    response = Response(
        generate(),
        status=upstream.status_code,
        headers=relay_headers(upstream.headers),
    )
    # Covers HEAD, where the body generator is never started
    response.call_on_close(upstream.close)
    return response


# A root-relative name arrives as "/ts//path"; merging the slashes would turn
# it into a relative one
@bp.route(
    "/ts/<segment:filename>", methods=["GET", "OPTIONS"], merge_slashes=False
)
def segment(filename):
    return _relay_segment(filename, intranet=False)


@bp.route(
    "/intranet/ts/<segment:filename>", methods=["GET", "OPTIONS"], merge_slashes=False
)
def intranet_segment(filename):
    return _relay_segment(filename, intranet=True)
