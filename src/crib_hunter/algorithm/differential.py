"""Keystream recovery from same-key samples when no closed-form hypothesis matched.

For two samples under the same key, K = C xor P per sample and D = K_A xor K_B.
A zero D means the keystream ignores the plaintext. A D that turns nonzero at p
means something fed earlier bytes back into the keystream; the analyzer then looks
for a recurrence K[i] = B[i] xor F(i - d) that reproduces every same-key ciphertext.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import hashlib

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
import structlog

from crib_hunter.algorithm.search_engine import derive_keys
from crib_hunter.catalog.key_derivation import KeyDerivationSpec, build_key_derivations, hmac_sha256
from crib_hunter.config import SearchConfig
from crib_hunter.models.results import (
    FeedbackRecurrence,
    KeystreamFragment,
    PartialKeystream,
    SearchState,
    Unresolved,
)
from crib_hunter.models.sample import Sample, label_samples
from crib_hunter.progress import ProgressPublisher

log = structlog.get_logger()

# Differing keystream bytes a recurrence has to explain before it counts as proven.
MIN_INFORMATIVE_POSITIONS = 4

AES_BLOCK_SIZE = 16


@dataclass
class Trace:
    """Keystream/ciphertext/plaintext of one sample, as far as it has been computed."""

    label: str
    plaintext: bytes
    keystream: bytearray = field(default_factory=bytearray)
    ciphertext: bytearray = field(default_factory=bytearray)
    blocks: Dict[Tuple[str, int], bytes] = field(default_factory=dict)

    @classmethod
    def complete(cls, label: str, ciphertext: bytes, plaintext: bytes) -> "Trace":
        keystream = bytearray(c ^ p for c, p in zip(ciphertext, plaintext))
        return cls(label, plaintext, keystream, bytearray(ciphertext[:len(keystream)]))


FeedbackFn = Callable[[int, int, Trace], int]


@dataclass(frozen=True, slots=True)
class FeedbackFamily:
    family: str
    description: str
    feedback: FeedbackFn
    max_period: Optional[int] = None
    exact_period: Optional[int] = None

    def supports(self, period: int) -> bool:
        if self.exact_period is not None and period != self.exact_period:
            return False
        return self.max_period is None or period <= self.max_period


def align(sample: Sample) -> Tuple[bytes, bytes]:
    """Strip leading framing so ciphertext and plaintext line up byte for byte."""
    ct, pt = sample.ciphertext, sample.plaintext
    if sample.overhead > 0:
        ct = ct[sample.overhead:]
    n = min(len(ct), len(pt))
    return ct[:n], pt[:n]


def keystream_of(sample: Sample) -> bytes:
    ct, pt = align(sample)
    return bytes(c ^ p for c, p in zip(ct, pt))


def differential(ks_a: bytes, ks_b: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(ks_a, ks_b))


def first_nonzero(data: bytes) -> Optional[int]:
    for i, b in enumerate(data):
        if b:
            return i
    return None


def first_divergence(sample_a: Sample, sample_b: Sample) -> int:
    """First aligned position where either the ciphertexts or the plaintexts differ."""
    ct_a, pt_a = align(sample_a)
    ct_b, pt_b = align(sample_b)
    n = min(len(ct_a), len(ct_b))
    for i in range(n):
        if ct_a[i] != ct_b[i] or pt_a[i] != pt_b[i]:
            return i
    return n


def candidate_periods(break_position: int, divergence: int, block_sizes: Sequence[int], max_period: int) -> List[int]:
    """Observed lag first, then block-size multiples. A period can never exceed the break position."""
    periods = []
    lag = break_position - divergence
    if lag > 0:
        periods.append(lag)
    for size in sorted(block_sizes):
        periods.extend(range(size, max_period + 1, size))
    return [d for d in dict.fromkeys(periods) if 1 <= d <= break_position]


def _linear_families() -> List[FeedbackFamily]:
    families = []
    for a in (0, 1):
        for b in (0, 1):
            for c in (0, 1):
                if not (a or b or c):
                    continue
                terms = [name for name, on in (("K", a), ("C", b), ("P", c)) if on]
                description = " xor ".join(f"{t}[i-d]" for t in terms)

                def fn(i, d, t, a=a, b=b, c=c):
                    j = i - d
                    return (t.keystream[j] if a else 0) ^ (t.ciphertext[j] if b else 0) ^ (t.plaintext[j] if c else 0)

                families.append(FeedbackFamily("linear", description, fn))
    return families


def _byte_hash_families() -> List[FeedbackFamily]:
    families = []
    for name, hash_fn in (("sha256", hashlib.sha256), ("md5", hashlib.md5)):
        table = bytes(hash_fn(bytes([v])).digest()[0] for v in range(256))
        families.append(FeedbackFamily(
            "byte-hash",
            f"{name}(C[i-d])[0]",
            lambda i, d, t, table=table: table[t.ciphertext[i - d]],
        ))
    return families


def _block_family(name: str, prf: Callable[[str, bytes], bytes], **kwargs) -> FeedbackFamily:
    """CFB-like: K[i] = B[i] xor PRF(previous d-byte ciphertext block)[i mod d]."""

    def fn(i, d, t):
        j = i // d
        cached = t.blocks.get((name, j))
        if cached is None:
            cached = prf(t.label, bytes(t.ciphertext[(j - 1) * d:j * d]))
            t.blocks[(name, j)] = cached
        return cached[i % d]

    return FeedbackFamily("block-prf", f"{name}(C[block-1])[i mod d]", fn, **kwargs)


def _aes_ecb(key: bytes, block: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(block) + encryptor.finalize()


def _block_prf_families(derived: Dict[Tuple[str, str], Optional[bytes]],
                        key_derivations: Sequence[KeyDerivationSpec],
                        labels: Sequence[str]) -> List[FeedbackFamily]:
    families = [
        _block_family("sha256", lambda label, block: hashlib.sha256(block).digest(), max_period=32),
        _block_family("md5", lambda label, block: hashlib.md5(block).digest(), max_period=16),
    ]
    for kd in key_derivations:
        keys = {label: derived.get((kd.name, label)) for label in labels}
        if any(k is None for k in keys.values()):
            continue
        if all(len(k) in (16, 24, 32) for k in keys.values()):
            families.append(_block_family(
                f"aes-ecb[{kd.name}]",
                lambda label, block, keys=keys: _aes_ecb(keys[label], block),
                exact_period=AES_BLOCK_SIZE,
            ))
        if all(keys.values()):
            families.append(_block_family(
                f"hmac-sha256[{kd.name}]",
                lambda label, block, keys=keys: hmac_sha256(keys[label], block),
                max_period=32,
            ))
    return families


def learn_base(family: FeedbackFamily, period: int, trace: Trace) -> bytes:
    """B[i] = K[i] xor F(i), with F taken as zero inside the first period."""
    base = bytearray(len(trace.keystream))
    for i, k in enumerate(trace.keystream):
        base[i] = k ^ (family.feedback(i, period, trace) if i >= period else 0)
    return bytes(base)


def reproduces(family: FeedbackFamily, period: int, base: bytes, sample: Sample) -> bool:
    """Re-encrypt the sample's plaintext under the recurrence and compare with its ciphertext."""
    ct, pt = align(sample)
    n = min(len(base), len(pt))
    trace = Trace(sample.label, pt)
    for i in range(n):
        k = base[i] ^ (family.feedback(i, period, trace) if i >= period else 0)
        c = pt[i] ^ k
        if c != ct[i]:
            return False
        trace.keystream.append(k)
        trace.ciphertext.append(c)
    return n > 0


class DifferentialKeystreamAnalyzer:
    def __init__(
        self,
        context_field_names: Sequence[str],
        config: Optional[SearchConfig] = None,
        *,
        key_derivations: Optional[Sequence[KeyDerivationSpec]] = None,
        publisher: Optional[ProgressPublisher] = None,
    ):
        self.context_field_names = list(context_field_names)
        self.config = config or SearchConfig()
        self.key_derivations = list(key_derivations) if key_derivations is not None \
            else build_key_derivations(self.context_field_names)
        self.publisher = publisher or ProgressPublisher()

    @staticmethod
    def same_key_group(samples: Sequence[Sample]) -> List[Sample]:
        """First sample that shares its key with another sample of different plaintext, plus its key mates."""
        for index, anchor in enumerate(samples):
            mates = [s for s in samples[index + 1:] if anchor.shares_key_with(s)]
            if any(align(m)[1] != align(anchor)[1] for m in mates):
                return [anchor] + mates
        return []

    def analyze(self, samples: Sequence[Sample]) -> Union[PartialKeystream, Unresolved]:
        samples = label_samples(samples)
        self.publisher.publish(SearchState.ANALYZING)
        outcome = self._analyze(samples)
        state = SearchState.PARTIAL_KEYSTREAM if isinstance(outcome, PartialKeystream) else SearchState.UNRESOLVED
        summary = outcome.kind if isinstance(outcome, PartialKeystream) else outcome.reason
        log.info("differential analysis finished", state=str(state), result=summary)
        self.publisher.publish(state, result=summary)
        return outcome

    def _analyze(self, samples: List[Sample]) -> Union[PartialKeystream, Unresolved]:
        group = self.same_key_group(samples)
        if not group:
            return Unresolved(len(samples), 0, reason="no same-key pair with different plaintext")

        anchor = group[0]
        partner = next(s for s in group[1:] if align(s)[1] != align(anchor)[1])
        others = [s for s in group[1:] if s is not partner]
        ks_a = keystream_of(anchor)
        diff = differential(ks_a, keystream_of(partner))

        if all(not any(differential(ks_a, keystream_of(s))) for s in group[1:]):
            return self._independent(group)

        p = first_nonzero(diff)
        if p is None:
            # Pair agrees; some other key mate does not.
            return Unresolved(len(samples), 0, reason="same-key samples disagree outside the analyzed pair")

        q = first_divergence(anchor, partner)
        log.info("keystream diverges", pair=(anchor.label, partner.label), break_position=p, first_difference=q)

        known = {i: ks_a[i] for i in range(p)}
        fragments = tuple(KeystreamFragment(i, ks_a[i], (anchor.label, partner.label)) for i in range(p))

        recurrence = self._find_recurrence(anchor, [partner] + others, p, q)
        if recurrence is not None:
            return PartialKeystream(known, "feedback", True, recurrence, diff, p, fragments)
        if p > 0:
            return PartialKeystream(known, "prefix", False, None, diff, p, fragments)
        return Unresolved(len(samples), 0, reason="keystream diverges at position 0 and no recurrence was proven")

    @staticmethod
    def _independent(group: List[Sample]) -> PartialKeystream:
        anchor = group[0]
        ks_a = keystream_of(anchor)
        keystream = dict(enumerate(ks_a))
        fragments = []
        for mate in group[1:]:
            ks = keystream_of(mate)
            for i, k in enumerate(ks):
                keystream.setdefault(i, k)
                fragments.append(KeystreamFragment(i, k, (anchor.label, mate.label)))
        diff = differential(ks_a, keystream_of(group[1]))
        return PartialKeystream(keystream, "independent", False, None, diff, None, tuple(fragments))

    def _families(self, group: List[Sample]) -> List[FeedbackFamily]:
        derived = derive_keys(self.key_derivations, group)
        labels = [s.label for s in group]
        return _linear_families() + _byte_hash_families() + _block_prf_families(derived, self.key_derivations, labels)

    def _find_recurrence(self, anchor: Sample, mates: List[Sample], p: int, q: int) -> Optional[FeedbackRecurrence]:
        periods = candidate_periods(p, q, self.config.block_sizes, self.config.max_period)
        if not periods:
            return None
        families = self._families([anchor] + mates)
        ct_a, pt_a = align(anchor)
        ks_a = keystream_of(anchor)
        evidence = sum(
            1 for mate in mates for i, b in enumerate(differential(ks_a, keystream_of(mate))) if b
        )
        if evidence < MIN_INFORMATIVE_POSITIONS:
            log.info("too little differential evidence", informative_positions=evidence)
            return None

        for period in periods:
            for family in families:
                if not family.supports(period):
                    continue
                base = learn_base(family, period, Trace.complete(anchor.label, ct_a, pt_a))
                if all(reproduces(family, period, base, mate) for mate in mates):
                    log.info("recurrence proven", period=period, family=family.family,
                             description=family.description)
                    return FeedbackRecurrence(period, family.family, family.description, base, ks_a[:period])
        return None
