"""
Upstream GET with retry-on-expiry.

Video tokens are short lived and the media host answers 403 once one expires.
``fetch_with_retry`` runs one attempt at a time: on a 403 or a transport error
it calls the caller's refresh hook, rebuilds the URL (fresh signature, fresh
token) and tries again, up to ``MAX_RETRIES`` more times. Any other error
status ends the call at once.

The loop is shared by two consumers:
- ``fetch_text`` reads the whole body (playlists)
- ``fetch_stream`` hands back the live, unread response (segments)
"""

import enum
from typing import Callable, TypeVar
from urllib.parse import urlsplit

import requests
import structlog

from hls_relay.errors import UpstreamFetchError

log = structlog.get_logger(__name__)

MAX_RETRIES = 3

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/140.0.0.0 Safari/537.3"
)

BASE_HEADERS = {
    "Origin": "https://www.yanhekt.cn",
    "Referer": "https://www.yanhekt.cn/",
    "User-Agent": USER_AGENT,
}

T = TypeVar("T")


class RetryState(enum.Enum):
    ATTEMPTING = "attempting"
    REFRESHING = "refreshing"
    SUCCEEDED = "succeeded"
    EXHAUSTED_FAILED = "exhausted_failed"


def _redact(url: str) -> str:
    # Signed URLs carry the video token in the query string
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def fetch_with_retry(
    get_url: Callable[[], str],
    on_retry: Callable[[], None],
    consume: Callable[[requests.Response], T],
    http=requests,
    timeout=None,
    max_retries: int = MAX_RETRIES,
    label: str = "upstream",
) -> T:
    """
    Fetch ``get_url()`` until it succeeds or retries run out.

    ``get_url`` is called once per attempt and must return a freshly signed
    URL. ``on_retry`` runs before every retried attempt, typically to fetch a
    new video token. ``consume`` turns the successful response into the
    result. Raises UpstreamFetchError on failure.
    """
    state = RetryState.ATTEMPTING
    attempt = 0
    last_error = None

    while True:
        if state is RetryState.ATTEMPTING:
            url = get_url()
            try:
                response = http.get(
                    url, headers=BASE_HEADERS, timeout=timeout, stream=True
                )
            except requests.RequestException as exc:
                # str(exc) repeats the signed URL, token and signature included
                last_error = f"{type(exc).__name__} for {_redact(url)}"
                log.warning(
                    "upstream_transport_error",
                    label=label,
                    attempt=attempt + 1,
                    url=_redact(url),
                    error=last_error,
                )
            else:
                status = response.status_code
                if 200 <= status < 300:
                    state = RetryState.SUCCEEDED
                    continue

                response.close()
                if status != 403:
                    log.error(
                        "upstream_status",
                        label=label,
                        status=status,
                        url=_redact(url),
                    )
                    raise UpstreamFetchError(
                        f"{label} request failed with status {status}",
                        status=status,
                        attempts=attempt + 1,
                        label=label,
                    )
                last_error = f"{label} request got 403"
                log.info("upstream_forbidden", label=label, attempt=attempt + 1)

            if attempt < max_retries:
                state = RetryState.REFRESHING
            else:
                state = RetryState.EXHAUSTED_FAILED

        elif state is RetryState.REFRESHING:
            log.info("upstream_retry", label=label, attempt=attempt + 2)
            try:
                on_retry()
            except Exception as exc:
                raise UpstreamFetchError(
                    f"{label} retry aborted, refresh failed: {exc}",
                    attempts=attempt + 1,
                    label=label,
                ) from exc
            attempt += 1
            state = RetryState.ATTEMPTING

        elif state is RetryState.SUCCEEDED:
            try:
                return consume(response)
            except requests.RequestException as exc:
                response.close()
                raise UpstreamFetchError(
                    f"{label} response could not be read: {type(exc).__name__}",
                    status=response.status_code,
                    attempts=attempt + 1,
                    label=label,
                ) from exc

        else:
            raise UpstreamFetchError(
                f"{label} request failed after {max_retries} retries: {last_error}",
                attempts=attempt + 1,
                label=label,
            )


def _read_text(response: requests.Response) -> str:
    try:
        return response.content.decode("utf-8", errors="replace")
    finally:
        response.close()


def _passthrough(response: requests.Response) -> requests.Response:
    return response


def fetch_text(get_url, on_retry, **kwargs) -> str:
    """Fetch with retry and return the decoded body."""
    return fetch_with_retry(get_url, on_retry, _read_text, **kwargs)


def fetch_stream(get_url, on_retry, **kwargs) -> requests.Response:
    """
    Fetch with retry and return the response unread.

    The caller owns the response and must close it.
    """
    return fetch_with_retry(get_url, on_retry, _passthrough, **kwargs)
