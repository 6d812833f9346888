from urllib.parse import parse_qs, unquote, urlsplit

import requests

from conftest import LOGIN_TOKEN, VIDEO_HOST, FakeResponse, token_response
from hls_relay.md5 import md5_hex
from hls_relay.playlist import encode_uri_component, rewrite_playlist, unescape_url

MANIFEST_URL = f"https://{VIDEO_HOST}/course/123/index.m3u8"

MANIFEST = "\n".join(
    [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:10",
        "",
        "#EXTINF:10.0,",
        "seg 000.ts",
        "   ",
        "#EXTINF:10.0,",
        "  sub/seg001.ts  ",
        "#EXT-X-ENDLIST",
        "",
    ]
)


class TestRewrite:
    def test_only_segment_lines_change(self):
        out = rewrite_playlist(MANIFEST, MANIFEST_URL, LOGIN_TOKEN, "https", "proxy.local")
        src_lines = MANIFEST.split("\n")
        out_lines = out.split("\n")

        assert len(out_lines) == len(src_lines)
        for src, dst in zip(src_lines, out_lines):
            if not src.strip() or src.strip().startswith("#"):
                assert dst == src
            else:
                assert dst.startswith("https://proxy.local/ts/")

    def test_segment_url_encoding(self):
        out = rewrite_playlist(MANIFEST, MANIFEST_URL, LOGIN_TOKEN, "http", "localhost:3000")
        line = out.split("\n")[5]

        assert line == (
            "http://localhost:3000/ts/seg%20000.ts"
            "?base=https%3A%2F%2Fcvideo.example.cn%2Fcourse%2F123%2Findex.m3u8"
            f"&token={LOGIN_TOKEN}"
        )

    def test_surrounding_whitespace_stripped_and_slash_encoded(self):
        out = rewrite_playlist(MANIFEST, MANIFEST_URL, LOGIN_TOKEN, "https", "p")
        line = out.split("\n")[8]
        path = urlsplit(line).path
        assert path == "/ts/sub%2Fseg001.ts"
        assert unquote(path[len("/ts/"):]) == "sub/seg001.ts"
        query = parse_qs(urlsplit(line).query)
        assert query == {"base": [MANIFEST_URL], "token": [LOGIN_TOKEN]}

    def test_crlf_comment_lines_kept(self):
        out = rewrite_playlist("#EXTM3U\r\nseg.ts\r\n", MANIFEST_URL, LOGIN_TOKEN, "https", "p")
        lines = out.split("\n")
        assert lines[0] == "#EXTM3U\r"
        assert lines[1].startswith("https://p/ts/seg.ts?")
        assert lines[2] == ""


def test_encode_uri_component_matches_javascript():
    assert encode_uri_component("a b/c?d=e&f") == "a%20b%2Fc%3Fd%3De%26f"
    assert encode_uri_component("-_.!~*'()") == "-_.!~*'()"
    assert encode_uri_component("视") == "%E8%A7%86"


def test_unescape_url():
    assert unescape_url("https:\\/\\/h\\/a\\/b.m3u8") == "https://h/a/b.m3u8"


# ---------------------------------------------------------------------------
# /stream endpoint
# ---------------------------------------------------------------------------
def stream(client, **params):
    return client.get("/stream", query_string=params)


def test_missing_token_is_403(client, http):
    rv = stream(client, url=MANIFEST_URL)
    assert rv.status_code == 403
    assert rv.data == b"Forbidden"
    assert rv.headers["Access-Control-Allow-Origin"] == "*"
    assert http.calls == []


def test_malformed_token_is_403(client, http):
    rv = stream(client, url=MANIFEST_URL, token="abc")
    assert rv.status_code == 403


def test_missing_url_is_400(client, http):
    rv = stream(client, token=LOGIN_TOKEN)
    assert rv.status_code == 400
    assert b"url" in rv.data
    assert http.calls == []


def test_disallowed_host_is_400(client, http):
    rv = stream(client, url="https://evil.example/index.m3u8", token=LOGIN_TOKEN)
    assert rv.status_code == 400
    assert VIDEO_HOST.encode() in rv.data
    assert rv.headers["Access-Control-Allow-Origin"] == "*"
    assert http.calls == []


def test_backslash_authority_is_400(client, http):
    rv = stream(
        client, url=f"https://evil.example\\@{VIDEO_HOST}/index.m3u8", token=LOGIN_TOKEN
    )
    assert rv.status_code == 400
    assert http.calls == []


def test_success_rewrites_manifest(client, http):
    http.auth.append(token_response("vt-1"))
    http.media.append(FakeResponse(200, "#EXTM3U\n#EXTINF:4,\nseg0.ts\n"))

    escaped = MANIFEST_URL.replace("/", "\\/")
    rv = stream(client, url=escaped, token=LOGIN_TOKEN)

    assert rv.status_code == 200
    assert rv.headers["Content-Type"] == "application/vnd.apple.mpegurl"
    assert rv.headers["Access-Control-Allow-Origin"] == "*"
    lines = rv.get_data(as_text=True).split("\n")
    assert lines[:2] == ["#EXTM3U", "#EXTINF:4,"]
    assert lines[2].startswith("http://localhost/ts/seg0.ts?base=https%3A%2F%2F")

    # Upstream was asked for the encrypted and signed, unescaped URL
    media_url = http.media_calls[0]["url"]
    hash_segment = md5_hex("0123456789abcdef0123456789abcdef_100")
    assert media_url.startswith(
        f"https://{VIDEO_HOST}/course/123/{hash_segment}/index.m3u8?Xvideo_Token=vt-1&"
    )


def test_403_refreshes_token_and_retries(client, http):
    http.auth.extend([token_response("vt-1"), token_response("vt-2")])
    http.media.extend([FakeResponse(403), FakeResponse(200, "seg.ts")])

    rv = stream(client, url=MANIFEST_URL, token=LOGIN_TOKEN)

    assert rv.status_code == 200
    urls = [c["url"] for c in http.media_calls]
    assert "Xvideo_Token=vt-1&" in urls[0]
    assert "Xvideo_Token=vt-2&" in urls[1]
    assert len(http.auth_calls) == 2


def test_token_exchange_failure_is_500(client, http):
    http.auth.append(token_response(code=401, message="bad login"))
    rv = stream(client, url=MANIFEST_URL, token=LOGIN_TOKEN)
    assert rv.status_code == 500
    assert rv.data == b"Failed to get video token"
    assert http.media_calls == []


def test_exhausted_retries_is_502(client, http):
    http.auth.extend([token_response(f"vt-{i}") for i in range(4)])
    http.media.extend([FakeResponse(403) for _ in range(4)])

    rv = stream(client, url=MANIFEST_URL, token=LOGIN_TOKEN)

    assert rv.status_code == 502
    assert rv.data == b"Failed to fetch M3U8"
    assert rv.headers["Access-Control-Allow-Origin"] == "*"


def test_transport_error_then_success(client, http):
    http.auth.extend([token_response("vt-1"), token_response("vt-2")])
    http.media.extend([requests.ConnectionError("reset"), FakeResponse(200, "a.ts")])

    rv = stream(client, url=MANIFEST_URL, token=LOGIN_TOKEN)
    assert rv.status_code == 200


def test_forwarded_headers_ignored_by_default(client, http):
    http.auth.append(token_response())
    http.media.append(FakeResponse(200, "a.ts"))

    rv = client.get(
        "/stream",
        query_string={"url": MANIFEST_URL, "token": LOGIN_TOKEN},
        headers={"X-Forwarded-Proto": "https", "X-Forwarded-Host": "cdn.example"},
    )
    assert rv.get_data(as_text=True).startswith("http://localhost/ts/a.ts")
