"""
hls_relay: signed HLS relay for an authenticated media platform.

The proxy accepts a client's login token, exchanges it for short-lived video
tokens, signs every request to the media host and rewrites playlists so that
segments are fetched back through the proxy.
"""

import requests
import structlog
from flask import Flask, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from hls_relay.config import ConfigError, Settings
from hls_relay.credentials import CredentialBroker
from hls_relay.errors import RelayError
from hls_relay.intranet import IntranetMapper, IntranetTransport, MappingError
from hls_relay.signing import Signer
from hls_relay.structured_logging import configure_logging
from hls_relay.validation import preflight_response, text_response

__version__ = "1.0.0"

CONFIG_API_PREFIX = "/api/v1/config/"

log = structlog.get_logger(__name__)


def create_app(settings=None, http=None):
    """
    Create and configure the Flask application.

    Args:
        settings: Settings to use. Loaded from the environment when None.
        http: HTTP client with the ``requests.get`` signature. Defaults to the
              ``requests`` module.

    Returns:
        Flask: configured application
    """
    if settings is None:
        settings = Settings.from_env()
    if http is None:
        http = requests

    configure_logging(settings.log_level, settings.log_format)

    app = Flask(__name__)

    from hls_relay.routes import Relay, bp
    from hls_relay.segments import SegmentPathConverter

    mapper = None
    intranet_http = None
    if settings.intranet_mappings:
        try:
            mapper = IntranetMapper(settings.intranet_mappings)
        except MappingError as exc:
            raise ConfigError(f"INTRANET_MAPPINGS: {exc}") from exc
        intranet_http = IntranetTransport(mapper, http=http)

    app.extensions["hls_relay"] = Relay(
        settings=settings,
        signer=Signer(settings.magic_key),
        broker=CredentialBroker(
            settings.upstream_api,
            settings.magic_key,
            http=http,
            timeout=settings.timeout,
        ),
        http=http,
        mapper=mapper,
        intranet_http=intranet_http,
    )
    app.url_map.converters["segment"] = SegmentPathConverter
    app.register_blueprint(bp)

    register_hooks(app)
    register_error_handlers(app)

    if settings.trust_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    log.info(
        "relay_configured",
        upstream_api=settings.upstream_api,
        video_host=settings.video_host,
        intranet_mappings=len(mapper.mappings()) if mapper else 0,
    )
    return app


def register_hooks(app):
    @app.before_request
    def log_and_preflight():
        log.info("request")
        # CORS preflight is answered before routing and validation
        if request.method == "OPTIONS":
            if request.path.startswith(CONFIG_API_PREFIX):
                return preflight_response("GET, POST, OPTIONS")
            return preflight_response()
        return None

    @app.after_request
    def allow_any_origin(response):
        response.headers.setdefault("Access-Control-Allow-Origin", "*")
        return response


def register_error_handlers(app):
    @app.errorhandler(RelayError)
    def handle_relay_error(exc):
        log.warning(
            "request_failed",
            operation=request.endpoint,
            status=exc.status_code,
            error=exc.detail or exc.message,
        )
        return text_response(exc.message, exc.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        response = text_response(exc.name, exc.code)
        if exc.code == 405:
            response.headers["Allow"] = ", ".join(exc.valid_methods or [])
        return response

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        log.exception("unhandled_error", operation=request.endpoint)
        return text_response("Internal Server Error", 500)

