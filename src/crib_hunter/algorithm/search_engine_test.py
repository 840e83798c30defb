import hashlib
import os
import threading
import time

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from crib_hunter.algorithm.search_engine import HypothesisSearchEngine, derive_keys
from crib_hunter.catalog.ciphers import CipherConstructionSpec, build_cipher_constructions, get_cipher_construction
from crib_hunter.catalog.key_derivation import build_key_derivations, get_key_derivation
from crib_hunter.config import SearchConfig
from crib_hunter.decoder import apply_hypothesis
from crib_hunter.models.results import Confidence, ConfirmedHypothesis, SearchState, Unresolved
from crib_hunter.models.sample import Sample
from crib_hunter.progress import ProgressPublisher

URL = b"https://rrr.core36link.site/p267/c5/h6a90f70b8d237f94866"
KEY = "7f3c91d2e4"

CONSTRUCTIONS = [
    "aes-ctr",
    "aes-cbc",
    "aes-cfb",
    "chacha20/ctr32-before-nonce",
    "xor",
    "rc4",
    "reverse",
]


def constructions(*names):
    return [get_cipher_construction(name) for name in names or CONSTRUCTIONS]


def keyless(name, fn):
    return CipherConstructionSpec(name, "composite", lambda k, iv, d: fn(d), lambda k, iv, d: fn(d), keyless=True)


def ctr_sample(sid: str, plaintext: bytes) -> Sample:
    key = hashlib.sha256(KEY.encode() + sid.encode()).digest()
    iv = os.urandom(16)
    encryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    body = encryptor.update(plaintext) + encryptor.finalize()
    return Sample(iv + body, plaintext, {"key": KEY, "sid": sid}, label=sid)


def reversed_sample(url: bytes = URL, label: str = "", key: str = "k") -> Sample:
    return Sample(url[::-1], url, {"key": key}, label=label)


class TestExactness:
    """Test suite for confirming the one hypothesis that reproduces every sample"""

    def test_confirms_ctr_with_prefix_iv(self):
        """Test AES-CTR keyed by sha256(key+sid) with a 16-byte prefix IV"""
        samples = [
            ctr_sample("s-001", URL),
            ctr_sample("s-002", b"https://cdn.example.net/hls/8f2a/index.m3u8?token=abc"),
        ]
        engine = HypothesisSearchEngine(["sid"], SearchConfig(workers=2), constructions=constructions())
        outcome = engine.search(samples)

        assert isinstance(outcome, ConfirmedHypothesis)
        assert outcome.confidence == Confidence.CONFIRMED
        assert outcome.key_derivation_name == "sha256(key+sid)"
        assert outcome.cipher_construction_name == "aes-ctr"
        assert outcome.iv_source_description == "prefix[0:16] body[16:]"
        assert outcome.match.matched_samples == {"s-001", "s-002"}
        assert outcome.combinations_tried > 0

        fresh = ctr_sample("s-003", b"https://cdn.example.net/another/stream.m3u8")
        assert apply_hypothesis(outcome.hypothesis, fresh, ["sid"]) == fresh.plaintext

    def test_to_dict(self):
        """Test the confirmed result serializes every field a caller needs"""
        engine = HypothesisSearchEngine([], constructions=constructions("reverse"))
        data = engine.search([
            reversed_sample(label="a", key="k1"),
            reversed_sample(URL + b"?x=1", label="b", key="k2"),
        ]).to_dict()
        assert data == {
            "result": "confirmed",
            "confidence": "confirmed",
            "key_derivation": "none",
            "cipher_construction": "reverse",
            "iv_source": "none",
            "matched_samples": ["a", "b"],
            "combinations_tried": data["combinations_tried"],
        }

    def test_partial_match_is_not_confirmed(self):
        """Test a construction that explains only one sample is rejected"""
        first = reversed_sample(label="a")
        second = reversed_sample(b"https://other.example/x", label="b")
        engine = HypothesisSearchEngine([], constructions=[keyless("constant", lambda data: URL)])
        outcome = engine.search([first, second])
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "no hypothesis matched"
        assert not outcome.budget_exhausted


class TestConfidence:
    """Test suite for single-sample confidence"""

    def test_single_sample_is_low_confidence(self):
        """Test one sample can only produce a low-confidence result"""
        outcome = HypothesisSearchEngine([], constructions=constructions("reverse", "xor")).search([reversed_sample()])
        assert isinstance(outcome, ConfirmedHypothesis)
        assert outcome.confidence == Confidence.LOW
        assert outcome.low_confidence

    def test_duplicates_count_once(self):
        """Test identical samples do not add confidence"""
        outcome = HypothesisSearchEngine([], constructions=constructions("reverse")).search(
            [reversed_sample(), reversed_sample(), reversed_sample()]
        )
        assert outcome.confidence == Confidence.LOW
        assert len(outcome.match.matched_samples) == 3

    def test_same_context_is_low_confidence(self):
        """Test samples sharing one context count once even when their plaintexts differ"""
        context = {"key": "k", "sid": "S"}
        samples = [Sample(URL[::-1], URL, context), Sample(URL[:30][::-1], URL[:30], context)]
        outcome = HypothesisSearchEngine(["sid"], constructions=constructions("reverse")).search(samples)
        assert isinstance(outcome, ConfirmedHypothesis)
        assert outcome.confidence == Confidence.LOW
        assert len(outcome.match.matched_samples) == 2

    def test_distinct_contexts_confirm(self):
        """Test two samples under different contexts confirm"""
        samples = [reversed_sample(key="k1"), reversed_sample(URL[:30], key="k2")]
        outcome = HypothesisSearchEngine([], constructions=constructions("reverse")).search(samples)
        assert outcome.confidence == Confidence.CONFIRMED


class TestAmbiguity:
    """Test suite for several full matches"""

    def test_two_matches_are_reported_not_picked(self):
        """Test equally good hypotheses end unresolved with both listed"""
        aliases = [keyless("reverse-a", lambda d: d[::-1]), keyless("reverse-b", lambda d: d[::-1])]
        outcome = HypothesisSearchEngine([], constructions=aliases).search(
            [reversed_sample(label="a"), reversed_sample(URL + b"/1", label="b")]
        )
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "ambiguous"
        assert [h.describe() for h in outcome.ambiguous] == [
            "none | reverse-a | none",
            "none | reverse-b | none",
        ]


class TestZeroIv:
    """Test suite for payloads encrypted under an all-zero IV"""

    PREFIXES = ("aes", "chacha20", "xchacha20")

    def zero_iv_samples(self, encrypt):
        samples = []
        for key in ("k-1", "k-2"):
            plaintext = URL + b"/segment/0001.ts?k=" + key.encode()
            derived = hashlib.sha256(key.encode()).digest()
            samples.append(Sample(encrypt(derived, plaintext), plaintext, {"key": key}, label=key))
        return samples

    def search(self, samples):
        catalog = [spec for spec in build_cipher_constructions() if spec.name.startswith(self.PREFIXES)]
        engine = HypothesisSearchEngine(
            [], SearchConfig(workers=2),
            key_derivations=[get_key_derivation("sha256(key)", [])],
            constructions=catalog,
        )
        return engine.search(samples)

    def test_aes_ctr_is_not_ambiguous(self):
        """Test zero-IV AES-CTR resolves to aes-ctr across the whole AES catalog"""
        def encrypt(key, plaintext):
            encryptor = Cipher(algorithms.AES(key), modes.CTR(bytes(16))).encryptor()
            return encryptor.update(plaintext) + encryptor.finalize()

        outcome = self.search(self.zero_iv_samples(encrypt))
        assert isinstance(outcome, ConfirmedHypothesis), outcome
        assert outcome.confidence == Confidence.CONFIRMED
        assert outcome.hypothesis.describe() == "sha256(key) | aes-ctr | zero[16]"

    def test_chacha20_is_not_ambiguous(self):
        """Test zero-IV ChaCha20 resolves to the 32-bit counter layout"""
        def encrypt(key, plaintext):
            return Cipher(algorithms.ChaCha20(key, bytes(16)), mode=None).encryptor().update(plaintext)

        outcome = self.search(self.zero_iv_samples(encrypt))
        assert isinstance(outcome, ConfirmedHypothesis), outcome
        assert outcome.hypothesis.describe() == "sha256(key) | chacha20/ctr32-before-nonce | zero[12]"

    def test_alias_still_matches_nonzero_iv(self):
        """Test a construction that yields the zero IV keeps its other IV sources"""
        def encrypt(key, plaintext):
            nonce = os.urandom(8)
            encryptor = Cipher(algorithms.AES(key), modes.CTR(nonce + bytes(8))).encryptor()
            return nonce + encryptor.update(plaintext) + encryptor.finalize()

        engine = HypothesisSearchEngine(
            [], key_derivations=[get_key_derivation("sha256(key)", [])],
            constructions=constructions("aes-ecb-prf/be64"),
        )
        outcome = engine.search(self.zero_iv_samples(encrypt))
        assert isinstance(outcome, ConfirmedHypothesis), outcome
        assert outcome.hypothesis.describe() == "sha256(key) | aes-ecb-prf/be64 | prefix[0:8] body[8:]"


class TestCancellation:
    """Test suite for abandoning a running search"""

    def test_cancelled_before_start(self):
        """Test a pre-set cancel event ends the run at once without decoding"""
        cancel_event = threading.Event()
        cancel_event.set()
        engine = HypothesisSearchEngine([], constructions=constructions(), cancel_event=cancel_event)
        started = time.monotonic()
        outcome = engine.search([reversed_sample()])
        assert time.monotonic() - started < 5
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "cancelled"
        assert outcome.combinations_tried == 0
        assert not outcome.budget_exhausted

    def test_cancel_during_search(self):
        """Test cancel() stops the remaining work items, even ones that would match"""
        def cancelling(data):
            engine.cancel()
            return b""

        engine = HypothesisSearchEngine(
            [], SearchConfig(workers=1),
            constructions=[keyless("cancelling", cancelling)] + constructions("xor", "rc4", "reverse"),
        )
        outcome = engine.search([reversed_sample()])
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "cancelled"
        assert outcome.combinations_tried == 1
        assert engine.cancelled

    def test_cancel_from_another_thread(self):
        """Test a cancel event set while the search runs ends it as unresolved"""
        cancel_event = threading.Event()
        first_call = threading.Event()

        def slow(data):
            first_call.set()
            cancel_event.wait(5)
            return b""

        engine = HypothesisSearchEngine(
            [], SearchConfig(workers=1),
            constructions=[keyless("slow", slow)] + constructions("reverse"),
            cancel_event=cancel_event,
        )
        canceller = threading.Thread(target=lambda: first_call.wait(5) and cancel_event.set())
        canceller.start()
        outcome = engine.search([reversed_sample()])
        canceller.join(timeout=5)
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "cancelled"


class TestBudget:
    """Test suite for the combination budget and failures"""

    def test_budget_is_exact(self):
        """Test the search stops after exactly max_combinations decode attempts"""
        samples = [Sample(os.urandom(40), os.urandom(40), {"key": "k"})]
        engine = HypothesisSearchEngine([], SearchConfig(workers=1, max_combinations=5), constructions=constructions("xor"))
        outcome = engine.search(samples)
        assert isinstance(outcome, Unresolved)
        assert outcome.combinations_tried == 5
        assert outcome.budget_exhausted
        assert outcome.reason == "budget exhausted"

    def test_failing_construction_does_not_stop_search(self):
        """Test an unexpected error in one work item is logged and skipped"""
        def broken(data):
            raise RuntimeError("boom")

        engine = HypothesisSearchEngine([], constructions=[keyless("broken", broken)] + constructions("reverse"))
        outcome = engine.search([reversed_sample()])
        assert isinstance(outcome, ConfirmedHypothesis)
        assert outcome.cipher_construction_name == "reverse"

    def test_no_samples(self):
        """Test an empty sample list is unresolved"""
        outcome = HypothesisSearchEngine([], constructions=constructions("reverse")).search([])
        assert isinstance(outcome, Unresolved)
        assert outcome.reason == "no samples"
        assert outcome.samples_considered == 0


class TestWorkItems:
    """Test suite for work item generation"""

    def test_key_lengths_are_filtered(self):
        """Test constructions only pair with derivations whose keys they accept"""
        samples = [Sample(b"c", b"p", {"key": "k"}, label="a")]
        engine = HypothesisSearchEngine([], constructions=constructions("chacha20/ctr32-before-nonce", "reverse"))
        items = engine.work_items(samples, derive_keys(engine.key_derivations, samples))
        names = {item.name for item in items}
        assert "none | reverse" in names
        assert "sha256(key) | chacha20/ctr32-before-nonce" in names
        assert "md5(key) | chacha20/ctr32-before-nonce" not in names
        assert "identity | chacha20/ctr32-before-nonce" not in names

    def test_failed_derivations_are_cached_as_none(self):
        """Test a derivation needing a missing field is skipped"""
        samples = [Sample(b"c", b"p", {"key": "k"}, label="a")]
        derived = derive_keys(build_key_derivations(["sid"]), samples)
        assert derived[("sha256(sid)", "a")] is None
        assert derived[("sha256(key)", "a")] == hashlib.sha256(b"k").digest()


class TestProgress:
    """Test suite for published search state"""

    def test_final_state(self):
        """Test the last snapshot carries the final state"""
        publisher = ProgressPublisher()
        HypothesisSearchEngine([], constructions=constructions("reverse"), publisher=publisher).search(
            [reversed_sample()]
        )
        assert publisher.last.state == SearchState.LOW_CONFIDENCE
        assert publisher.last.complete
        assert publisher.last.result == "none | reverse | none"

    def test_versions_increase(self):
        """Test every snapshot gets a newer version"""
        seen = []

        class Recorder(ProgressPublisher):
            def publish(self, state, **fields):
                snapshot = super().publish(state, **fields)
                seen.append(snapshot.state_version)
                return snapshot

        HypothesisSearchEngine([], constructions=constructions("reverse"), publisher=Recorder()).search(
            [reversed_sample()]
        )
        assert seen == sorted(seen)
        assert len(seen) == len(set(seen)) >= 3


def test_key_derivation_lookup_matches_catalog():
    """Test names reported by the engine resolve back to the same derivation"""
    for kd in build_key_derivations(["sid"]):
        assert get_key_derivation(kd.name, ["sid"]).name == kd.name


@pytest.mark.parametrize("workers", [1, 4])
def test_worker_count_does_not_change_result(workers):
    """Test the result does not depend on parallelism"""
    samples = [ctr_sample("w-1", URL), ctr_sample("w-2", URL + b"?a=1")]
    outcome = HypothesisSearchEngine(
        ["sid"], SearchConfig(workers=workers), constructions=constructions("aes-ctr", "aes-cfb")
    ).search(samples)
    assert isinstance(outcome, ConfirmedHypothesis)
    assert outcome.hypothesis.describe() == "sha256(key+sid) | aes-ctr | prefix[0:16] body[16:]"
