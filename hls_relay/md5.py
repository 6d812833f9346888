"""
Pure-Python MD5 (RFC 1321).

The upstream platform signs every request with MD5 digests of the shared key.
``hashlib.md5`` is unavailable on interpreters built in FIPS mode, so the
digest is computed here without it.
"""

import struct

# Per-round left-rotation amounts
S = (
    [7, 12, 17, 22] * 4
    + [5, 9, 14, 20] * 4
    + [4, 11, 16, 23] * 4
    + [6, 10, 15, 21] * 4
)

K = [
    0xD76AA478, 0xE8C7B756, 0x242070DB, 0xC1BDCEEE,
    0xF57C0FAF, 0x4787C62A, 0xA8304613, 0xFD469501,
    0x698098D8, 0x8B44F7AF, 0xFFFF5BB1, 0x895CD7BE,
    0x6B901122, 0xFD987193, 0xA679438E, 0x49B40821,
    0xF61E2562, 0xC040B340, 0x265E5A51, 0xE9B6C7AA,
    0xD62F105D, 0x02441453, 0xD8A1E681, 0xE7D3FBC8,
    0x21E1CDE6, 0xC33707D6, 0xF4D50D87, 0x455A14ED,
    0xA9E3E905, 0xFCEFA3F8, 0x676F02D9, 0x8D2A4C8A,
    0xFFFA3942, 0x8771F681, 0x6D9D6122, 0xFDE5380C,
    0xA4BEEA44, 0x4BDECFA9, 0xF6BB4B60, 0xBEBFBC70,
    0x289B7EC6, 0xEAA127FA, 0xD4EF3085, 0x04881D05,
    0xD9D4D039, 0xE6DB99E5, 0x1FA27CF8, 0xC4AC5665,
    0xF4292244, 0x432AFF97, 0xAB9423A7, 0xFC93A039,
    0x655B59C3, 0x8F0CCC92, 0xFFEFF47D, 0x85845DD1,
    0x6FA87E4F, 0xFE2CE6E0, 0xA3014314, 0x4E0811A1,
    0xF7537E82, 0xBD3AF235, 0x2AD7D2BB, 0xEB86D391,
]

INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476)

MASK = 0xFFFFFFFF


def _rotl(x: int, c: int) -> int:
    x &= MASK
    return ((x << c) | (x >> (32 - c))) & MASK


def _pad(message: bytes) -> bytes:
    bit_len = (8 * len(message)) & 0xFFFFFFFFFFFFFFFF
    padded = message + b"\x80"
    padded += b"\x00" * ((56 - len(padded) % 64) % 64)
    return padded + struct.pack("<Q", bit_len)


def _compress(state, block: bytes):
    m = struct.unpack("<16I", block)
    a, b, c, d = state

    for i in range(64):
        if i < 16:
            f = (b & c) | (~b & d)
            g = i
        elif i < 32:
            f = (d & b) | (~d & c)
            g = (5 * i + 1) % 16
        elif i < 48:
            f = b ^ c ^ d
            g = (3 * i + 5) % 16
        else:
            f = c ^ (b | (~d & MASK))
            g = (7 * i) % 16

        f = (f + a + K[i] + m[g]) & MASK
        a, d, c = d, c, b
        b = (b + _rotl(f, S[i])) & MASK

    return tuple((x + y) & MASK for x, y in zip(state, (a, b, c, d)))


def md5_digest(data) -> bytes:
    """Return the raw 16-byte digest of ``data`` (``str`` is UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")

    padded = _pad(bytes(data))
    state = INITIAL_STATE
    for offset in range(0, len(padded), 64):
        state = _compress(state, padded[offset:offset + 64])

    return struct.pack("<4I", *state)


def md5_hex(data) -> str:
    """Return the 32-character lowercase hex digest of ``data``."""
    return md5_digest(data).hex()
