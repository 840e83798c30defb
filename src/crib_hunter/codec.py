import base64
import binascii
import re
from typing import Literal, Union

from crib_hunter.errors import InvalidEncoding

Encoding = Literal["b64", "b64_urlsafe", "hex", "raw", "playerjs"]

ENCODINGS = ("b64", "b64_urlsafe", "hex", "raw", "playerjs")

STANDARD_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
PLAYERJS_ALPHABET = "ABCDEFGHIJKLMabcdefghijklmNOPQRSTUVWXYZnopqrstuvwxyz0123456789+/"

_TO_STANDARD = str.maketrans(PLAYERJS_ALPHABET, STANDARD_ALPHABET)
_TO_PLAYERJS = str.maketrans(STANDARD_ALPHABET, PLAYERJS_ALPHABET)

_B64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_B64_URLSAFE_RE = re.compile(r"^[A-Za-z0-9_-]*={0,2}$")
_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def _as_bytes(
    data: Union[str, bytes, bytearray, memoryview, int],
    *,
    encoding: str = "utf-8",
) -> bytes:
    """Normalize values to type bytes."""
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode(encoding)
    if isinstance(data, int):
        return str(data).encode("ascii")
    raise TypeError(f"Cannot convert {type(data).__name__} to bytes")


def _as_text(text: Union[str, bytes, bytearray]) -> str:
    if isinstance(text, (bytes, bytearray)):
        try:
            return bytes(text).decode("ascii")
        except UnicodeDecodeError as e:
            raise InvalidEncoding(f"Encoded text must be ASCII: {e}") from e
    return text


def _pad_b64(text: str) -> str:
    missing = len(text) % 4
    if missing == 1:
        raise InvalidEncoding(f"Impossible base64 length: {len(text)}")
    if missing:
        text += "=" * (4 - missing)
    return text


def b64_decode(b64_text: Union[str, bytes], *, urlsafe: bool = False) -> bytes:
    """Decode standard or URL-safe base64. URL-safe input may omit '=' padding."""
    text = _as_text(b64_text).strip()
    pattern = _B64_URLSAFE_RE if urlsafe else _B64_RE
    if not pattern.match(text):
        raise InvalidEncoding("Base64 text contains characters outside the alphabet")

    if urlsafe:
        # Providers drop the trailing '=' on URL-safe payloads.
        text = _pad_b64(text)
    elif len(text) % 4:
        raise InvalidEncoding(f"Base64 text length {len(text)} is not a multiple of 4")

    try:
        if urlsafe:
            return base64.b64decode(text, altchars=b"-_", validate=True)
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise InvalidEncoding(f"Bad base64 padding: {e}") from e


def b64_encode(data: Union[str, bytes, bytearray, memoryview], *, urlsafe: bool = False) -> str:
    """Accepts str/bytes/etc and returns a base64 string (standard or URL-safe)."""
    raw = _as_bytes(data)
    fn = base64.urlsafe_b64encode if urlsafe else base64.b64encode
    return fn(raw).decode("ascii")


def playerjs_decode(text: Union[str, bytes]) -> bytes:
    """Base64 over the PlayerJS shuffled alphabet."""
    text = _as_text(text).strip()
    if not _B64_RE.match(text):
        raise InvalidEncoding("PlayerJS text contains characters outside the alphabet")
    return b64_decode(_pad_b64(text.translate(_TO_STANDARD)))


def playerjs_encode(data: Union[str, bytes]) -> str:
    return b64_encode(data).translate(_TO_PLAYERJS)


def hex_decode(text: Union[str, bytes]) -> bytes:
    text = _as_text(text).strip()
    if not _HEX_RE.match(text):
        raise InvalidEncoding("Hex text contains characters outside 0-9a-f")
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise InvalidEncoding(f"Bad hex: {e}") from e


def decode(encoding: Encoding, text: Union[str, bytes]) -> bytes:
    """Decode wire text to bytes. Raises InvalidEncoding on malformed input."""
    if encoding == "b64":
        return b64_decode(text)
    elif encoding == "b64_urlsafe":
        return b64_decode(text, urlsafe=True)
    elif encoding == "hex":
        return hex_decode(text)
    elif encoding == "playerjs":
        return playerjs_decode(text)
    elif encoding == "raw":
        # latin-1 keeps every byte value, so raw round-trips exactly.
        return text.encode("latin-1") if isinstance(text, str) else bytes(text)
    else:
        raise ValueError(f"Invalid encoding: {encoding}")


def encode(encoding: Encoding, data: bytes) -> str:
    """Exact inverse of decode()."""
    if encoding == "b64":
        return b64_encode(data)
    elif encoding == "b64_urlsafe":
        return b64_encode(data, urlsafe=True)
    elif encoding == "hex":
        return bytes(data).hex()
    elif encoding == "playerjs":
        return playerjs_encode(data)
    elif encoding == "raw":
        return bytes(data).decode("latin-1")
    else:
        raise ValueError(f"Invalid encoding: {encoding}")
