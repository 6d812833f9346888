"""
HTTP surface.

Mounts served by this blueprint:

- GET /health                               liveness check
- GET /stream?url=&token=                   signed playlist fetch + rewrite (playlist.py)
- GET /ts/<filename>?base=&token=           signed segment relay (segments.py)
- GET /intranet/stream, /intranet/ts/...    the same, over mapped intranet addresses
- GET /api/v1/config/mappings               current intranet mappings (config_api.py)
- POST /api/v1/config/reload                re-read the mappings file

OPTIONS on any path is answered by the app-level preflight hook.
"""

from typing import Any, NamedTuple, Optional

from flask import Blueprint, current_app, jsonify

from hls_relay.config import Settings
from hls_relay.credentials import CredentialBroker
from hls_relay.intranet import IntranetMapper
from hls_relay.signing import Signer

bp = Blueprint("relay", __name__)


class Relay(NamedTuple):
    settings: Settings
    signer: Signer
    broker: CredentialBroker
    http: Any
    mapper: Optional[IntranetMapper] = None
    intranet_http: Any = None

    def transport(self, intranet: bool):
        """HTTP client and timeout for media requests."""
        # Without a mappings file the intranet routes behave like the public ones
        if intranet and self.intranet_http is not None:
            return self.intranet_http, self.settings.intranet_timeout
        return self.http, self.settings.timeout


def relay() -> Relay:
    return current_app.extensions["hls_relay"]


@bp.route("/health", methods=["GET", "OPTIONS"])
def health():
    return jsonify({"status": "ok"})


# Route modules register themselves on ``bp``
from hls_relay import config_api, playlist, segments  # noqa: E402,F401
