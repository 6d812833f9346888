"""
URL encryption and request signing for the upstream media host.

The media host expects each URL to carry a key-derived path segment and a
short-lived signature in its query string. Both derive from the magic key,
which is fixed when the ``Signer`` is built and never leaves the process.
"""

import time
from typing import NamedTuple

from hls_relay.md5 import md5_hex

CLIENT_VERSION = "v1"
PLATFORM = "yhkt_user"


class Signature(NamedTuple):
    timestamp: str
    signature: str


class Signer:
    def __init__(self, magic_key: str):
        self._magic_key = magic_key
        # Depends only on the key, so it is computed once
        self._path_hash = md5_hex(magic_key + "_100")

    def __repr__(self):
        return "Signer(magic_key=***)"

    def encrypt_url(self, url: str) -> str:
        """
        Insert the key hash as a path segment before the last one:
        https://host/path/to/file.ts -> https://host/path/to/<hash>/file.ts
        """
        parts = url.split("/")
        if len(parts) < 2:
            return url
        return "/".join(parts[:-1] + [self._path_hash, parts[-1]])

    def get_signature(self) -> Signature:
        timestamp = str(int(time.time()))
        return Signature(timestamp, md5_hex(f"{self._magic_key}_v1_{timestamp}"))

    def sign_url(self, url: str, video_token: str) -> str:
        timestamp, signature = self.get_signature()
        return (
            f"{url}?Xvideo_Token={video_token}"
            f"&Xclient_Timestamp={timestamp}"
            f"&Xclient_Signature={signature}"
            f"&Xclient_Version={CLIENT_VERSION}"
            f"&Platform={PLATFORM}"
        )

    def build_url(self, url: str, video_token: str) -> str:
        """Encrypted and freshly signed URL for one upstream attempt."""
        return self.sign_url(self.encrypt_url(url), video_token)
