"""
Error taxonomy for the relay.

Every failure that reaches a request handler is one of these. The Flask error
handler registered in ``create_app`` turns them into plain-text responses with
the matching status code and CORS headers.
"""


class RelayError(Exception):
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, message=None, detail=None):
        if message is not None:
            self.message = message
        # Server-side only; never sent to the client
        self.detail = detail
        super().__init__(detail or self.message)


class ValidationError(RelayError):
    """A required client parameter is missing or malformed."""

    status_code = 400
    message = "Bad Request"


class AuthError(RelayError):
    """The login token is missing or not 32 hex characters."""

    status_code = 403
    message = "Forbidden"


class ForbiddenHostError(RelayError):
    """A URL points outside the allowed media host."""

    status_code = 400

    def __init__(self, allowed_host: str, url: str = ""):
        super().__init__(
            f"Invalid video URL: only {allowed_host} is allowed",
            detail=f"host not allowed: {url}" if url else None,
        )
        self.allowed_host = allowed_host


class UpstreamAuthError(RelayError):
    """The auth endpoint refused to issue a video token."""

    status_code = 500
    message = "Failed to get video token"


class UpstreamFetchError(RelayError):
    """A media fetch failed outright or ran out of retries."""

    status_code = 502
    message = "Failed to fetch from upstream"

    def __init__(self, detail: str, status: int = None, attempts: int = None,
                 label: str = None):
        super().__init__(
            f"Failed to fetch {label}" if label else None, detail=detail
        )
        self.status = status
        self.attempts = attempts
