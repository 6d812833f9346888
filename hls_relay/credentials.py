"""
Login token -> video token exchange.

Tokens are fetched fresh for every client request and never cached. A failed
exchange raises UpstreamAuthError; retrying is left to the caller.
"""

import time

import requests
import structlog

from hls_relay.errors import UpstreamAuthError
from hls_relay.fetcher import BASE_HEADERS
from hls_relay.md5 import md5_hex

log = structlog.get_logger(__name__)

TOKEN_PATH = "/v1/auth/video/token?id=0"


def _auth_headers(login_token: str, magic_key: str) -> dict:
    headers = dict(BASE_HEADERS)
    headers.update(
        {
            # The web client sends both spellings
            "xdomain-client": "web_user",
            "Xdomain-Client": "web_user",
            "Xclient-Version": "v1",
            # Literal "undefined" where a timestamp would be; the web client does this
            "Xclient-Signature": md5_hex(magic_key + "_v1_undefined"),
            "Xclient-Timestamp": str(int(time.time())),
            "Authorization": f"Bearer {login_token}",
        }
    )
    return headers


def _code_ok(code) -> bool:
    # Upstream returns the code as a number or a string depending on the route
    if isinstance(code, bool):
        return False
    return code == 0 or code == "0"


def fetch_video_token(
    login_token: str, api_base: str, magic_key: str, http=requests, timeout=None
) -> str:
    url = api_base.rstrip("/") + TOKEN_PATH

    try:
        response = http.get(
            url, headers=_auth_headers(login_token, magic_key), timeout=timeout
        )
    except requests.RequestException as exc:
        raise UpstreamAuthError(detail=f"Token API unreachable: {exc}") from exc

    try:
        if not 200 <= response.status_code < 300:
            raise UpstreamAuthError(
                detail=f"Token API returned status {response.status_code}"
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise UpstreamAuthError(detail="Token API returned invalid JSON") from exc
    finally:
        response.close()

    if not isinstance(result, dict) or not _code_ok(result.get("code")):
        message = result.get("message") if isinstance(result, dict) else None
        raise UpstreamAuthError(detail=f"API error: {message}")

    data = result.get("data") or {}
    token = data.get("token") if isinstance(data, dict) else None
    if not token:
        raise UpstreamAuthError(detail="API response carried no token")
    return token


class CredentialBroker:
    """Binds the auth API location and magic key for token exchanges."""

    def __init__(self, api_base: str, magic_key: str, http=requests, timeout=None):
        self.api_base = api_base
        self._magic_key = magic_key
        self.http = http
        self.timeout = timeout

    def __repr__(self):
        return f"CredentialBroker(api_base={self.api_base!r})"

    def video_token(self, login_token: str) -> str:
        try:
            return fetch_video_token(
                login_token,
                self.api_base,
                self._magic_key,
                http=self.http,
                timeout=self.timeout,
            )
        except UpstreamAuthError as exc:
            log.warning("video_token_failed", error=exc.detail)
            raise


class VideoTokenHolder:
    """
    The video token for one client-facing fetch.

    The first token is fetched on construction; ``refresh`` replaces it in
    place and is meant to be passed as the retry hook.
    """

    def __init__(self, broker: CredentialBroker, login_token: str):
        self._broker = broker
        self._login_token = login_token
        self.token = broker.video_token(login_token)

    def refresh(self):
        log.info("video_token_refresh")
        self.token = self._broker.video_token(self._login_token)
