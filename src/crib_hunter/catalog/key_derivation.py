"""Registry of named key derivations: ``(raw_key, context) -> derived key bytes``.

Entries are pure. Each declares its output length so the search engine can skip
cipher constructions that would reject the key before doing any work.
"""
import hashlib
from dataclasses import dataclass
from itertools import combinations
from typing import Callable, List, Mapping, Optional, Sequence

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from crib_hunter.codec import _as_bytes, hex_decode
from crib_hunter.models.sample import KEY_FIELD

DeriveFn = Callable[[bytes, Mapping], bytes]

PBKDF2_ITERATIONS = (1, 10, 100, 1000)
KDF_LENGTHS = (32, 16)


@dataclass(frozen=True, slots=True)
class KeyDerivationSpec:
    name: str
    derive: DeriveFn
    output_length: Optional[int] = None  # None: follows the raw key length

    def __call__(self, raw_key: bytes, context: Mapping) -> bytes:
        return self.derive(raw_key, context)


# Keyless constructions pair with this entry only.
NO_KEY = KeyDerivationSpec("none", lambda raw_key, context: b"", 0)


def context_field(context: Mapping, name: str) -> bytes:
    """Context value as bytes. Missing fields raise KeyError so the pair is skipped."""
    if name not in context:
        raise KeyError(name)
    return _as_bytes(context[name])


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def md5(data: bytes) -> bytes:
    return hashlib.md5(data).digest()


def hmac_sha256(key: bytes, message: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(message)
    return h.finalize()


def hkdf_sha256(key: bytes, salt: Optional[bytes], length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt or None, info=None).derive(key)


def pbkdf2_sha256(key: bytes, salt: bytes, iterations: int, length: int) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=length, salt=salt, iterations=iterations)
    return kdf.derive(key)


def xor_bytes(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _quantity(name: str) -> Callable[[bytes, Mapping], bytes]:
    """Raw key or a named context field."""
    if name == KEY_FIELD:
        return lambda raw_key, context: raw_key
    return lambda raw_key, context: context_field(context, name)


def _hex_decode_key(raw_key: bytes, context: Mapping) -> bytes:
    return hex_decode(raw_key)


def _field_derivations(name: str) -> List[KeyDerivationSpec]:
    f = _quantity(name)
    return [
        KeyDerivationSpec(f"sha256(key+{name})", lambda k, c: sha256(k + f(k, c)), 32),
        KeyDerivationSpec(f"sha256({name}+key)", lambda k, c: sha256(f(k, c) + k), 32),
        KeyDerivationSpec(f"sha256(key+{name})[:16]", lambda k, c: sha256(k + f(k, c))[:16], 16),
        KeyDerivationSpec(f"md5(key+{name})", lambda k, c: md5(k + f(k, c)), 16),
        KeyDerivationSpec(f"md5({name}+key)", lambda k, c: md5(f(k, c) + k), 16),
        KeyDerivationSpec(f"sha256({name})", lambda k, c: sha256(f(k, c)), 32),
        KeyDerivationSpec(f"md5({name})", lambda k, c: md5(f(k, c)), 16),
        KeyDerivationSpec(f"hmac-sha256(key, {name})", lambda k, c: hmac_sha256(k, f(k, c)), 32),
        KeyDerivationSpec(f"hmac-sha256({name}, key)", lambda k, c: hmac_sha256(f(k, c), k), 32),
    ]


def _kdf_derivations(salt_name: Optional[str]) -> List[KeyDerivationSpec]:
    salt = _quantity(salt_name) if salt_name else (lambda k, c: b"")
    label = salt_name or "empty"
    specs = []
    for length in KDF_LENGTHS:
        specs.append(KeyDerivationSpec(
            f"hkdf-sha256(key, salt={label}, len={length})",
            lambda k, c, length=length: hkdf_sha256(k, salt(k, c), length),
            length,
        ))
        for iterations in PBKDF2_ITERATIONS:
            specs.append(KeyDerivationSpec(
                f"pbkdf2-sha256(key, salt={label}, n={iterations}, len={length})",
                lambda k, c, n=iterations, length=length: pbkdf2_sha256(k, salt(k, c), n, length),
                length,
            ))
    return specs


def build_key_derivations(context_field_names: Sequence[str]) -> List[KeyDerivationSpec]:
    """Build the catalog for the context fields declared for this run."""
    names = [name for name in dict.fromkeys(context_field_names) if name != KEY_FIELD]

    catalog = [
        KeyDerivationSpec("identity", lambda k, c: k, None),
        KeyDerivationSpec("hex-decode", _hex_decode_key, None),
        KeyDerivationSpec("sha256(key)", lambda k, c: sha256(k), 32),
        KeyDerivationSpec("sha256(key)[:16]", lambda k, c: sha256(k)[:16], 16),
        KeyDerivationSpec("md5(key)", lambda k, c: md5(k), 16),
    ]
    for name in names:
        catalog.extend(_field_derivations(name))

    # "fingerprint XOR session" style schemes.
    for a, b in combinations([KEY_FIELD] + names, 2):
        qa, qb = _quantity(a), _quantity(b)
        catalog.append(KeyDerivationSpec(
            f"sha256({a})^sha256({b})",
            lambda k, c, qa=qa, qb=qb: xor_bytes(sha256(qa(k, c)), sha256(qb(k, c))),
            32,
        ))

    for salt_name in [None] + names:
        catalog.extend(_kdf_derivations(salt_name))

    return catalog


def get_key_derivation(name: str, context_field_names: Sequence[str]) -> KeyDerivationSpec:
    if name == NO_KEY.name:
        return NO_KEY
    for spec in build_key_derivations(context_field_names):
        if spec.name == name:
            return spec
    raise KeyError(f"Unknown key derivation: {name}")
