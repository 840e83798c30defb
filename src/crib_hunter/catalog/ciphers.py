"""Registry of named cipher constructions: ``(key, iv, body) -> plaintext``.

A construction fixes the primitive, the mode and every convention a provider might
vary (counter layout, counter start, tag handling). Two names never describe the
same transform, except where a zero IV collapses a counter layout onto another
construction's; those declare `zero_iv_alias` and leave the zero IV to the named one.
"""
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from cryptography.hazmat.decrepit.ciphers.algorithms import CAST5, Blowfish, TripleDES
from cryptography.hazmat.decrepit.ciphers.modes import CFB, OFB
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from crib_hunter.catalog import stream
from crib_hunter.catalog.transforms import transform_table
from crib_hunter.errors import UnsupportedKeyLength

CodecFn = Callable[[bytes, bytes, bytes], bytes]

AES_KEY_LENGTHS = frozenset({16, 24, 32})
CHACHA_KEY_LENGTHS = frozenset({32})
TRIPLE_DES_KEY_LENGTHS = frozenset({16, 24})
BLOWFISH_KEY_LENGTHS = frozenset(range(4, 57))
CAST5_KEY_LENGTHS = frozenset(range(5, 17))
RC4_KEY_LENGTHS = frozenset(range(1, 257))

GCM_TAG_LENGTH = 16
POLY1305_TAG_LENGTH = 16


@dataclass(frozen=True, slots=True)
class CipherConstructionSpec:
    name: str
    family: str
    decode_fn: CodecFn
    encode_fn: CodecFn
    key_lengths: Optional[FrozenSet[int]] = None  # None: any length >= 1
    iv_length: int = 0
    tag_length: int = 0
    keyless: bool = False
    length_preserving: bool = False  # output length always equals body length
    zero_iv_alias: Optional[str] = None  # construction that owns the all-zero IV

    def accepts_key_length(self, key_length: int) -> bool:
        if self.keyless:
            return key_length == 0
        if self.key_lengths is None:
            return key_length >= 1
        return key_length in self.key_lengths

    def _check(self, key: bytes, iv: bytes) -> None:
        if not self.accepts_key_length(len(key)):
            raise UnsupportedKeyLength(self.name, len(key))
        if len(iv) != self.iv_length:
            raise ValueError(f"{self.name} needs a {self.iv_length}-byte IV, got {len(iv)}")

    def decode(self, key: bytes, iv: bytes, body: bytes) -> bytes:
        self._check(key, iv)
        return self.decode_fn(key, iv, body)

    def encode(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """Inverse of decode(). Tags are not produced; framing adds those."""
        self._check(key, iv)
        return self.encode_fn(key, iv, plaintext)


def _decrypt(algorithm, mode, data: bytes) -> bytes:
    decryptor = Cipher(algorithm, mode).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def _encrypt(algorithm, mode, data: bytes) -> bytes:
    encryptor = Cipher(algorithm, mode).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def _symmetric(name: str, family: str, fn: CodecFn, **kwargs) -> CipherConstructionSpec:
    """Keystream constructions: decode and encode are the same XOR."""
    return CipherConstructionSpec(name, family, fn, fn, length_preserving=True, **kwargs)


# Stream family


def _xor(key: bytes, iv: bytes, data: bytes) -> bytes:
    return stream.repeating_xor(data, key)


def _rc4(key: bytes, iv: bytes, data: bytes) -> bytes:
    return stream.xor_keystream(data, stream.rc4_keystream(key, len(data)))


def _openssl_chacha(key: bytes, nonce16: bytes, data: bytes) -> bytes:
    # OpenSSL takes the 16-byte state tail: counter then nonce, little-endian.
    return _decrypt(algorithms.ChaCha20(key, nonce16), None, data)


def _chacha_ctr32_before(key: bytes, iv: bytes, data: bytes) -> bytes:
    return _openssl_chacha(key, bytes(4) + iv, data)


def _chacha_ctr64_before(key: bytes, iv: bytes, data: bytes) -> bytes:
    return _openssl_chacha(key, bytes(8) + iv, data)


def _pure_chacha(layout: stream.ChaChaLayout) -> CodecFn:
    def fn(key: bytes, iv: bytes, data: bytes) -> bytes:
        keystream = stream.chacha20_keystream(key, iv, len(data), layout=layout)
        return stream.xor_keystream(data, keystream)
    return fn


def _xchacha20(key: bytes, iv: bytes, data: bytes) -> bytes:
    subkey = stream.hchacha20(key, iv[:16])
    return _openssl_chacha(subkey, bytes(8) + iv[16:], data)


def _chacha20_poly1305_ignore_tag(key: bytes, iv: bytes, data: bytes) -> bytes:
    # Block 0 keys Poly1305; the payload starts at counter 1.
    return _openssl_chacha(key, (1).to_bytes(4, "little") + iv, data)


def _hash_ctr(ordering) -> CodecFn:
    def fn(key: bytes, iv: bytes, data: bytes) -> bytes:
        return stream.xor_keystream(data, stream.hash_ctr_keystream(key, iv, len(data), ordering))
    return fn


def _hmac_ctr(ordering) -> CodecFn:
    def fn(key: bytes, iv: bytes, data: bytes) -> bytes:
        return stream.xor_keystream(data, stream.hmac_ctr_keystream(key, iv, len(data), ordering))
    return fn


def _hash_ctr_constructions() -> List[CipherConstructionSpec]:
    specs = [
        _symmetric(f"hash-ctr/sha256({'+'.join(ordering)})", "stream", _hash_ctr(ordering), iv_length=12)
        for ordering in stream.HASH_CTR_ORDERINGS
    ]
    specs += [
        _symmetric(f"hmac-ctr/hmac-sha256({'+'.join(ordering)})", "stream", _hmac_ctr(ordering), iv_length=12)
        for ordering in stream.HMAC_CTR_ORDERINGS
    ]
    return specs


def _stream_constructions() -> List[CipherConstructionSpec]:
    return [
        _symmetric("xor", "stream", _xor),
        _symmetric("rc4", "stream", _rc4, key_lengths=RC4_KEY_LENGTHS),
        _symmetric("chacha20/ctr32-before-nonce", "stream", _chacha_ctr32_before,
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=12),
        _symmetric("chacha20/ctr64-before-nonce", "stream", _chacha_ctr64_before,
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=8,
                   zero_iv_alias="chacha20/ctr32-before-nonce"),
        _symmetric("chacha20/ctr32-after-nonce", "stream", _pure_chacha("ctr32-after-nonce"),
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=12),
        _symmetric("chacha20/ctr64-after-nonce", "stream", _pure_chacha("ctr64-after-nonce"),
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=8),
        _symmetric("xchacha20", "stream", _xchacha20,
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=24),
        _symmetric("chacha20-poly1305/ignore-tag", "stream", _chacha20_poly1305_ignore_tag,
                   key_lengths=CHACHA_KEY_LENGTHS, iv_length=12, tag_length=POLY1305_TAG_LENGTH),
    ]


# Block family, ECB used as a PRF over hand-rolled counters


def _ecb_prf(convention: str) -> CodecFn:
    def fn(key: bytes, iv: bytes, data: bytes) -> bytes:
        count = (len(data) + 15) // 16
        blocks = b"".join(stream.counter_blocks(iv, count, convention))
        keystream = _encrypt(algorithms.AES(key), modes.ECB(), blocks)
        return stream.xor_keystream(data, keystream)
    return fn


def _ecb_prf_constructions() -> List[CipherConstructionSpec]:
    return [
        _symmetric("aes-ecb-prf/be32", "block", _ecb_prf("be32"), key_lengths=AES_KEY_LENGTHS, iv_length=12,
                   zero_iv_alias="aes-ctr"),
        _symmetric("aes-ecb-prf/le32", "block", _ecb_prf("le32"), key_lengths=AES_KEY_LENGTHS, iv_length=12),
        _symmetric("aes-ecb-prf/be64", "block", _ecb_prf("be64"), key_lengths=AES_KEY_LENGTHS, iv_length=8,
                   zero_iv_alias="aes-ctr"),
        _symmetric("aes-ecb-prf/be32-before-nonce", "block", _ecb_prf("be32-before-nonce"),
                   key_lengths=AES_KEY_LENGTHS, iv_length=12),
    ]


# Block family, standard modes


def _aes_cbc_decode(key: bytes, iv: bytes, data: bytes) -> bytes:
    padded = _decrypt(algorithms.AES(key), modes.CBC(iv), data)
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _aes_cbc_encode(key: bytes, iv: bytes, data: bytes) -> bytes:
    padder = padding.PKCS7(128).padder()
    padded = padder.update(data) + padder.finalize()
    return _encrypt(algorithms.AES(key), modes.CBC(iv), padded)


def _aes_ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    return _decrypt(algorithms.AES(key), modes.CTR(iv), data)


def _aes_gcm_ignore_tag(key: bytes, iv: bytes, data: bytes) -> bytes:
    # J0 = iv || 1 masks the tag; payload keystream starts at counter 2.
    return _decrypt(algorithms.AES(key), modes.CTR(iv + (2).to_bytes(4, "big")), data)


def _with_mode(algorithm_cls, mode_cls, decrypt: bool) -> CodecFn:
    def fn(key: bytes, iv: bytes, data: bytes) -> bytes:
        if decrypt:
            return _decrypt(algorithm_cls(key), mode_cls(iv), data)
        return _encrypt(algorithm_cls(key), mode_cls(iv), data)
    return fn


def _mode_construction(name: str, algorithm_cls, mode_cls, key_lengths, iv_length) -> CipherConstructionSpec:
    return CipherConstructionSpec(
        name, "block",
        _with_mode(algorithm_cls, mode_cls, True),
        _with_mode(algorithm_cls, mode_cls, False),
        key_lengths=key_lengths,
        iv_length=iv_length,
        length_preserving=True,
    )


def _triple_des_cbc_decode(key: bytes, iv: bytes, data: bytes) -> bytes:
    padded = _decrypt(TripleDES(key), modes.CBC(iv), data)
    unpadder = padding.PKCS7(64).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _triple_des_cbc_encode(key: bytes, iv: bytes, data: bytes) -> bytes:
    padder = padding.PKCS7(64).padder()
    padded = padder.update(data) + padder.finalize()
    return _encrypt(TripleDES(key), modes.CBC(iv), padded)


def _block_mode_constructions() -> List[CipherConstructionSpec]:
    return [
        CipherConstructionSpec("aes-cbc", "block", _aes_cbc_decode, _aes_cbc_encode,
                               key_lengths=AES_KEY_LENGTHS, iv_length=16),
        _symmetric("aes-ctr", "block", _aes_ctr, key_lengths=AES_KEY_LENGTHS, iv_length=16),
        _symmetric("aes-gcm/ignore-tag", "block", _aes_gcm_ignore_tag,
                   key_lengths=AES_KEY_LENGTHS, iv_length=12, tag_length=GCM_TAG_LENGTH),
        _mode_construction("aes-cfb", algorithms.AES, CFB, AES_KEY_LENGTHS, 16),
        CipherConstructionSpec("3des-cbc", "block", _triple_des_cbc_decode, _triple_des_cbc_encode,
                               key_lengths=TRIPLE_DES_KEY_LENGTHS, iv_length=8),
        _mode_construction("3des-cfb", TripleDES, CFB, TRIPLE_DES_KEY_LENGTHS, 8),
        _mode_construction("blowfish-cfb", Blowfish, CFB, BLOWFISH_KEY_LENGTHS, 8),
        _mode_construction("blowfish-ofb", Blowfish, OFB, BLOWFISH_KEY_LENGTHS, 8),
        _mode_construction("cast5-cfb", CAST5, CFB, CAST5_KEY_LENGTHS, 8),
    ]


# Composite family


def _keyless(fn: Callable[[bytes], bytes]) -> CodecFn:
    return lambda key, iv, data: fn(data)


def _transform_constructions() -> List[CipherConstructionSpec]:
    return [
        CipherConstructionSpec(name, "composite", _keyless(decode), _keyless(encode), keyless=True)
        for name, decode, encode in transform_table()
    ]


def build_cipher_constructions() -> List[CipherConstructionSpec]:
    return (
        _stream_constructions()
        + _hash_ctr_constructions()
        + _ecb_prf_constructions()
        + _block_mode_constructions()
        + _transform_constructions()
    )


_REGISTRY: Dict[str, CipherConstructionSpec] = {}


def get_cipher_construction(name: str) -> CipherConstructionSpec:
    if not _REGISTRY:
        _REGISTRY.update((spec.name, spec) for spec in build_cipher_constructions())
    try:
        return _REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown cipher construction: {name}") from None
