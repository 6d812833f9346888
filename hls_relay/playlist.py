"""
Playlist endpoint.

Fetches an HLS playlist from the media host with a signed URL, then rewrites
every segment line so that the player fetches segments back through
``/ts/<name>`` on this proxy. The rewritten lines carry the playlist URL as
``base`` and the client's login token, which is all ``/ts`` needs to sign the
segment fetch on its own.

``/intranet/stream`` does the same over the mapped intranet addresses and
points its segments at ``/intranet/ts/<name>``.
"""

from urllib.parse import quote

import structlog
from flask import Response, request

from hls_relay.credentials import VideoTokenHolder
from hls_relay.errors import ValidationError
from hls_relay.fetcher import fetch_text
from hls_relay.routes import bp, relay
from hls_relay.validation import (
    cors_headers,
    require_allowed_video_url,
    require_login_token,
)

log = structlog.get_logger(__name__)

MPEGURL = "application/vnd.apple.mpegurl"

TS_PREFIX = "/ts/"
INTRANET_TS_PREFIX = "/intranet/ts/"

# Characters encodeURIComponent leaves alone besides [A-Za-z0-9_.~-]
_URI_COMPONENT_SAFE = "!*'()"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def unescape_url(url: str) -> str:
    """Undo the JSON-style ``\\/`` escaping some upstream URLs arrive with."""
    return url.replace("\\/", "/")


def segment_proxy_url(
    name: str,
    base_url: str,
    login_token: str,
    scheme: str,
    host: str,
    prefix: str = TS_PREFIX,
) -> str:
    return (
        f"{scheme}://{host}{prefix}{encode_uri_component(name)}"
        f"?base={encode_uri_component(base_url)}"
        f"&token={encode_uri_component(login_token)}"
    )


def rewrite_playlist(
    content: str,
    base_url: str,
    login_token: str,
    scheme: str,
    host: str,
    prefix: str = TS_PREFIX,
) -> str:
    """
    Point every segment line of ``content`` at this proxy.

    Blank lines and tags/comments pass through verbatim; anything else is a
    segment reference, relative to ``base_url`` or absolute.
    """
    lines = []
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            lines.append(line)
            continue
        lines.append(
            segment_proxy_url(stripped, base_url, login_token, scheme, host, prefix)
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Playlist endpoint
# ---------------------------------------------------------------------------
def _relay_playlist(intranet: bool):
    ctx = relay()

    login_token = require_login_token(request.args.get("token"))

    url = request.args.get("url")
    if not url:
        raise ValidationError("Missing required parameter: url")

    url = require_allowed_video_url(unescape_url(url), ctx.settings.video_host)

    http, timeout = ctx.transport(intranet)
    holder = VideoTokenHolder(ctx.broker, login_token)
    content = fetch_text(
        lambda: ctx.signer.build_url(url, holder.token),
        holder.refresh,
        http=http,
        timeout=timeout,
        label="M3U8",
    )

    prefix = INTRANET_TS_PREFIX if intranet else TS_PREFIX
    body = rewrite_playlist(
        content, url, login_token, request.scheme, request.host, prefix
    )
    log.info("playlist_rewritten", lines=body.count("\n") + 1, intranet=intranet)
    return Response(
        body,
        status=200,
        content_type=MPEGURL,
        headers=cors_headers(),
    )


@bp.route("/stream", methods=["GET", "OPTIONS"])
def stream():
    return _relay_playlist(intranet=False)


@bp.route("/intranet/stream", methods=["GET", "OPTIONS"])
def intranet_stream():
    return _relay_playlist(intranet=True)
