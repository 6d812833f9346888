import dataclasses
import io
import json

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from hls_relay import create_app
from hls_relay.config import Settings

MAGIC_KEY = "0123456789abcdef0123456789abcdef"
LOGIN_TOKEN = "a1B2c3D4e5F6a7B8c9D0e1F2a3B4c5D6"
VIDEO_HOST = "cvideo.example.cn"
UPSTREAM_API = "https://api.example.cn"


class FakeResponse:
    """Just enough of requests.Response for the relay."""

    def __init__(self, status_code=200, body=b"", headers=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.status_code = status_code
        self.content = body
        self.raw = io.BytesIO(body)
        self.headers = CaseInsensitiveDict(headers or {})
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return json.loads(self.content)

    def close(self):
        self.closed = True


def token_response(token="vt-1", code=0, message="ok", status=200):
    body = {"code": code, "message": message, "data": {"token": token}}
    return FakeResponse(status, json.dumps(body))


class FakeHTTP:
    """
    Scripted stand-in for the ``requests`` module.

    Calls to the token endpoint pop from ``auth``; everything else pops from
    ``media``. A queued exception is raised instead of returned.
    """

    def __init__(self):
        self.auth = []
        self.media = []
        self.calls = []

    @property
    def auth_calls(self):
        return [c for c in self.calls if "/v1/auth/video/token" in c["url"]]

    @property
    def media_calls(self):
        return [c for c in self.calls if "/v1/auth/video/token" not in c["url"]]

    def get(self, url, headers=None, timeout=None, stream=False, verify=True):
        self.calls.append(
            {
                "url": url,
                "headers": dict(headers or {}),
                "timeout": timeout,
                "stream": stream,
                "verify": verify,
            }
        )
        queue = self.auth if "/v1/auth/video/token" in url else self.media
        if not queue:
            raise AssertionError(f"unexpected upstream call: {url}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture()
def settings():
    return Settings(
        magic_key=MAGIC_KEY,
        upstream_api=UPSTREAM_API,
        video_host=VIDEO_HOST,
        chunk_size=4,
    )


@pytest.fixture()
def http():
    return FakeHTTP()


@pytest.fixture()
def app(settings, http):
    flask_app = create_app(settings, http=http)
    flask_app.config.update({"TESTING": True})
    yield flask_app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def connection_error():
    return requests.ConnectionError("connection reset")


@pytest.fixture()
def mappings_file(tmp_path):
    path = tmp_path / "mappings.json"
    path.write_text(
        json.dumps(
            {
                VIDEO_HOST: {"type": "single", "ip": "10.0.0.5"},
                "pool.example.cn": {
                    "type": "loadbalance",
                    "ips": ["10.0.1.1", "10.0.1.2"],
                    "strategy": "round_robin",
                },
            }
        )
    )
    return path


@pytest.fixture()
def intranet_app(settings, http, mappings_file):
    flask_app = create_app(
        dataclasses.replace(settings, intranet_mappings=str(mappings_file)), http=http
    )
    flask_app.config.update({"TESTING": True})
    return flask_app


@pytest.fixture()
def intranet_client(intranet_app):
    return intranet_app.test_client()
