from typing import Callable, Mapping, Optional, Sequence

from crib_hunter.catalog.ciphers import get_cipher_construction
from crib_hunter.catalog.key_derivation import KeyDerivationSpec, get_key_derivation
from crib_hunter.codec import _as_bytes
from crib_hunter.models.hypothesis import Hypothesis
from crib_hunter.models.sample import KEY_FIELD, Sample

Decoder = Callable[[bytes, Mapping], bytes]


def build_decoder(
    hypothesis: Hypothesis,
    context_field_names: Sequence[str] = (),
    *,
    key_derivation: Optional[KeyDerivationSpec] = None,
) -> Decoder:
    """Standalone ``(ciphertext, context) -> plaintext`` for a confirmed hypothesis."""
    kd = key_derivation or get_key_derivation(hypothesis.key_derivation, context_field_names)
    construction = get_cipher_construction(hypothesis.cipher_construction)
    source = hypothesis.iv_source

    def decode(ciphertext: bytes, context: Optional[Mapping] = None) -> bytes:
        context = context or {}
        key = b""
        if not construction.keyless:
            key = kd(_as_bytes(context.get(KEY_FIELD, b"")), context)
        iv = source.resolve(ciphertext, context)
        return construction.decode(key, iv, source.body(ciphertext))

    return decode


def apply_hypothesis(hypothesis: Hypothesis, sample: Sample, context_field_names: Sequence[str] = (),
                     *, key_derivation: Optional[KeyDerivationSpec] = None) -> bytes:
    names = list(context_field_names) or list(sample.context)
    decoder = build_decoder(hypothesis, names, key_derivation=key_derivation)
    return decoder(sample.ciphertext, sample.context)
