"""Keyless text transforms seen in embed-page decoders.

Each decoder has an encoder next to it so the catalog can be round-trip tested.
Decoders raise InvalidEncoding (or ValueError) when the input is not in their format.
"""
import re
from typing import Callable, List, Tuple

from crib_hunter.codec import b64_decode, b64_encode, hex_decode, playerjs_decode, playerjs_encode
from crib_hunter.errors import InvalidEncoding

Transform = Callable[[bytes], bytes]

_NON_HEX = re.compile(rb"[^0-9a-fA-F]")

REVERSE_B64URL_SHIFTS = range(0, 11)
ROT_SHIFTS = range(1, 26)


def reverse(data: bytes) -> bytes:
    return data[::-1]


def _shift_bytes(data: bytes, delta: int) -> bytes:
    return bytes((b + delta) & 0xFF for b in data)


def shift_hex_decode(data: bytes) -> bytes:
    """Subtract 1 from every character, drop non-hex characters, decode hex pairs."""
    cleaned = _NON_HEX.sub(b"", _shift_bytes(data, -1))
    if len(cleaned) % 2:
        raise InvalidEncoding(f"Shifted hex has odd length {len(cleaned)}")
    return bytes.fromhex(cleaned.decode("ascii"))


def shift_hex_encode(data: bytes) -> bytes:
    return _shift_bytes(data.hex().encode("ascii"), 1)


def reverse_shift_hex_decode(data: bytes) -> bytes:
    return shift_hex_decode(reverse(data))


def reverse_shift_hex_encode(data: bytes) -> bytes:
    return reverse(shift_hex_encode(data))


def hex_transform_decode(data: bytes) -> bytes:
    return hex_decode(data)


def hex_transform_encode(data: bytes) -> bytes:
    return data.hex().encode("ascii")


def hex_nested_decode(data: bytes) -> bytes:
    return hex_decode(hex_decode(data))


def hex_nested_encode(data: bytes) -> bytes:
    return data.hex().encode("ascii").hex().encode("ascii")


def base64_double_decode(data: bytes) -> bytes:
    return b64_decode(b64_decode(data))


def base64_double_encode(data: bytes) -> bytes:
    return b64_encode(b64_encode(data)).encode("ascii")


def reverse_b64url_shift_decode(data: bytes, shift: int) -> bytes:
    """Strip leading '=', reverse, URL-safe base64 decode, subtract `shift` per byte."""
    text = reverse(data.lstrip(b"="))
    return _shift_bytes(b64_decode(text, urlsafe=True), -shift)


def reverse_b64url_shift_encode(data: bytes, shift: int) -> bytes:
    text = b64_encode(_shift_bytes(data, shift), urlsafe=True).rstrip("=")
    return reverse(text.encode("ascii"))


def playerjs_b64_decode(data: bytes) -> bytes:
    """`#0` prefix: shuffled-alphabet base64. `#1` prefix: same, with '#' standing in for '+'."""
    if data.startswith(b"#0"):
        return playerjs_decode(data[2:])
    if data.startswith(b"#1"):
        return playerjs_decode(data[2:].replace(b"#", b"+"))
    return playerjs_decode(data)


def playerjs_b64_encode(data: bytes) -> bytes:
    return b"#0" + playerjs_encode(data).encode("ascii")


def rot(data: bytes, shift: int) -> bytes:
    """Rotate ASCII letters mod 26 and digits mod 10. Everything else is kept."""
    out = bytearray()
    for b in data:
        if 97 <= b <= 122:
            out.append((b - 97 + shift) % 26 + 97)
        elif 65 <= b <= 90:
            out.append((b - 65 + shift) % 26 + 65)
        elif 48 <= b <= 57:
            out.append((b - 48 + shift) % 10 + 48)
        else:
            out.append(b)
    return bytes(out)


def transform_table() -> List[Tuple[str, Transform, Transform]]:
    """(name, decode, encode) for every keyless transform."""
    table = [
        ("reverse", reverse, reverse),
        ("shift-hex", shift_hex_decode, shift_hex_encode),
        ("reverse-shift-hex", reverse_shift_hex_decode, reverse_shift_hex_encode),
        ("hex", hex_transform_decode, hex_transform_encode),
        ("hex-nested", hex_nested_decode, hex_nested_encode),
        ("base64-double", base64_double_decode, base64_double_encode),
        ("playerjs-b64", playerjs_b64_decode, playerjs_b64_encode),
    ]
    for shift in REVERSE_B64URL_SHIFTS:
        table.append((
            f"reverse-b64url-shift-{shift}",
            lambda data, shift=shift: reverse_b64url_shift_decode(data, shift),
            lambda data, shift=shift: reverse_b64url_shift_encode(data, shift),
        ))
    for shift in ROT_SHIFTS:
        table.append((
            f"rot-{shift}",
            lambda data, shift=shift: rot(data, shift),
            lambda data, shift=shift: rot(data, -shift),
        ))
    return table
