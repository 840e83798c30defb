"""Pure-Python stream primitives the search needs beyond what OpenSSL exposes.

OpenSSL's ChaCha20 only knows the counter-before-nonce layout, so the block function
is reproduced here for the counter-after-nonce variants and for HChaCha20. Hash and
HMAC counter keystreams are built from the key derivation helpers.
"""
import struct
from typing import Iterator, Literal, Sequence, Tuple

from crib_hunter.catalog.key_derivation import hmac_sha256, sha256

MASK32 = 0xFFFFFFFF

ChaChaLayout = Literal["ctr32-before-nonce", "ctr64-before-nonce", "ctr32-after-nonce", "ctr64-after-nonce"]

CHACHA_LAYOUTS = ("ctr32-before-nonce", "ctr64-before-nonce", "ctr32-after-nonce", "ctr64-after-nonce")

# "expand 32-byte k"
_SIGMA = (0x61707865, 0x3320646E, 0x79622D32, 0x6B206574)


def xor_keystream(data: bytes, keystream: bytes) -> bytes:
    if len(keystream) < len(data):
        raise ValueError(f"Keystream too short: {len(keystream)} < {len(data)}")
    return bytes(a ^ b for a, b in zip(data, keystream))


def repeating_xor(data: bytes, key: bytes) -> bytes:
    if not key:
        raise ValueError("Repeating XOR needs a key of at least one byte")
    klen = len(key)
    return bytes(b ^ key[i % klen] for i, b in enumerate(data))


def rc4_keystream(key: bytes, length: int) -> bytes:
    """RC4 key scheduling followed by `length` bytes of PRGA output."""
    if not 1 <= len(key) <= 256:
        raise ValueError(f"RC4 key must be 1..256 bytes, got {len(key)}")
    s = list(range(256))
    j = 0
    for i in range(256):
        j = (j + s[i] + key[i % len(key)]) & 0xFF
        s[i], s[j] = s[j], s[i]

    out = bytearray(length)
    i = j = 0
    for n in range(length):
        i = (i + 1) & 0xFF
        j = (j + s[i]) & 0xFF
        s[i], s[j] = s[j], s[i]
        out[n] = s[(s[i] + s[j]) & 0xFF]
    return bytes(out)


def _rotl32(value: int, count: int) -> int:
    return ((value << count) & MASK32) | (value >> (32 - count))


def _quarter_round(x: list, a: int, b: int, c: int, d: int) -> None:
    x[a] = (x[a] + x[b]) & MASK32
    x[d] = _rotl32(x[d] ^ x[a], 16)
    x[c] = (x[c] + x[d]) & MASK32
    x[b] = _rotl32(x[b] ^ x[c], 12)
    x[a] = (x[a] + x[b]) & MASK32
    x[d] = _rotl32(x[d] ^ x[a], 8)
    x[c] = (x[c] + x[d]) & MASK32
    x[b] = _rotl32(x[b] ^ x[c], 7)


def _chacha_rounds(state: Sequence[int]) -> list:
    x = list(state)
    for _ in range(10):
        _quarter_round(x, 0, 4, 8, 12)
        _quarter_round(x, 1, 5, 9, 13)
        _quarter_round(x, 2, 6, 10, 14)
        _quarter_round(x, 3, 7, 11, 15)
        _quarter_round(x, 0, 5, 10, 15)
        _quarter_round(x, 1, 6, 11, 12)
        _quarter_round(x, 2, 7, 8, 13)
        _quarter_round(x, 3, 4, 9, 14)
    return x


def _key_words(key: bytes) -> tuple:
    if len(key) != 32:
        raise ValueError(f"ChaCha20 key must be 32 bytes, got {len(key)}")
    return struct.unpack("<8I", key)


def chacha20_block(key: bytes, tail_words: Sequence[int]) -> bytes:
    """One 64-byte block. `tail_words` are state words 12..15 (counter and nonce)."""
    state = list(_SIGMA) + list(_key_words(key)) + list(tail_words)
    x = _chacha_rounds(state)
    return struct.pack("<16I", *((a + b) & MASK32 for a, b in zip(x, state)))


def hchacha20(key: bytes, nonce: bytes) -> bytes:
    """XChaCha20 subkey derivation from the first 16 nonce bytes."""
    if len(nonce) != 16:
        raise ValueError(f"HChaCha20 nonce must be 16 bytes, got {len(nonce)}")
    state = list(_SIGMA) + list(_key_words(key)) + list(struct.unpack("<4I", nonce))
    x = _chacha_rounds(state)
    return struct.pack("<8I", *(x[0:4] + x[12:16]))


def _layout_words(layout: ChaChaLayout, nonce: bytes, counter: int) -> tuple:
    if layout in ("ctr32-before-nonce", "ctr32-after-nonce"):
        if len(nonce) != 12:
            raise ValueError(f"{layout} needs a 12-byte nonce, got {len(nonce)}")
        n = struct.unpack("<3I", nonce)
        c = counter & MASK32
        return (c,) + n if layout == "ctr32-before-nonce" else n + (c,)
    if layout in ("ctr64-before-nonce", "ctr64-after-nonce"):
        if len(nonce) != 8:
            raise ValueError(f"{layout} needs an 8-byte nonce, got {len(nonce)}")
        n = struct.unpack("<2I", nonce)
        c = (counter & MASK32, (counter >> 32) & MASK32)
        return c + n if layout == "ctr64-before-nonce" else n + c
    raise ValueError(f"Invalid ChaCha20 layout: {layout}")


def chacha20_keystream(key: bytes, nonce: bytes, length: int, *,
                       layout: ChaChaLayout = "ctr32-before-nonce", counter: int = 0) -> bytes:
    blocks = []
    for n in range((length + 63) // 64):
        blocks.append(chacha20_block(key, _layout_words(layout, nonce, counter + n)))
    return b"".join(blocks)[:length]


def counter_blocks(nonce: bytes, count: int, convention: str, start: int = 0) -> Iterator[bytes]:
    """Hand-rolled CTR counter blocks: nonce and an incrementing counter.

    ``be32-before-nonce`` puts the counter in front of the nonce; every other
    convention appends it.
    """
    for n in range(start, start + count):
        if convention == "be32":
            yield nonce + (n & MASK32).to_bytes(4, "big")
        elif convention == "le32":
            yield nonce + (n & MASK32).to_bytes(4, "little")
        elif convention == "be64":
            yield nonce + (n & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big")
        elif convention == "be32-before-nonce":
            yield (n & MASK32).to_bytes(4, "big") + nonce
        else:
            raise ValueError(f"Invalid counter convention: {convention}")


# Orderings of the hashed message. "ctr" is a little-endian 32-bit block counter.
HASH_CTR_ORDERINGS: Tuple[Tuple[str, ...], ...] = (
    ("key", "nonce", "ctr"),
    ("nonce", "key", "ctr"),
    ("ctr", "key", "nonce"),
    ("key", "ctr", "nonce"),
    ("nonce", "ctr", "key"),
    ("ctr", "nonce", "key"),
)

# The HMAC key is the derived key, so only nonce and counter are ordered.
HMAC_CTR_ORDERINGS: Tuple[Tuple[str, ...], ...] = (
    ("nonce", "ctr"),
    ("ctr", "nonce"),
)


def _counter_message(ordering: Sequence[str], key: bytes, nonce: bytes, counter: int) -> bytes:
    parts = {"key": key, "nonce": nonce, "ctr": (counter & MASK32).to_bytes(4, "little")}
    try:
        return b"".join(parts[part] for part in ordering)
    except KeyError as e:
        raise ValueError(f"Invalid counter message part: {e.args[0]}") from None


def hash_ctr_keystream(key: bytes, nonce: bytes, length: int, ordering: Sequence[str]) -> bytes:
    """SHA-256 of the ordered key, nonce and counter; 32 keystream bytes per counter value."""
    blocks = [sha256(_counter_message(ordering, key, nonce, n)) for n in range((length + 31) // 32)]
    return b"".join(blocks)[:length]


def hmac_ctr_keystream(key: bytes, nonce: bytes, length: int, ordering: Sequence[str]) -> bytes:
    """HMAC-SHA256 keyed by `key` over the ordered nonce and counter."""
    if "key" in ordering:
        raise ValueError("HMAC counter messages do not include the key")
    blocks = [hmac_sha256(key, _counter_message(ordering, b"", nonce, n)) for n in range((length + 31) // 32)]
    return b"".join(blocks)[:length]
