from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from crib_hunter.models.hypothesis import Hypothesis, MatchResult


class SearchState(str, Enum):
    COLLECTING_SAMPLES = "collecting-samples"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    CONFIRMED = "confirmed"
    LOW_CONFIDENCE = "low-confidence"
    PARTIAL_KEYSTREAM = "partial-keystream"
    UNRESOLVED = "unresolved"

    def __str__(self):
        return self.value


class Confidence(str, Enum):
    CONFIRMED = "confirmed"
    LOW = "low"

    def __str__(self):
        return self.value


@dataclass(frozen=True, slots=True)
class ConfirmedHypothesis:
    """Enough for a caller to rebuild the decoder without searching again."""

    hypothesis: Hypothesis
    match: MatchResult
    confidence: Confidence = Confidence.CONFIRMED
    combinations_tried: int = 0

    @property
    def key_derivation_name(self) -> str:
        return self.hypothesis.key_derivation

    @property
    def cipher_construction_name(self) -> str:
        return self.hypothesis.cipher_construction

    @property
    def iv_source_description(self) -> str:
        return self.hypothesis.iv_source.describe()

    @property
    def low_confidence(self) -> bool:
        return self.confidence == Confidence.LOW

    def to_dict(self) -> dict:
        return {
            "result": "confirmed",
            "confidence": str(self.confidence),
            "key_derivation": self.key_derivation_name,
            "cipher_construction": self.cipher_construction_name,
            "iv_source": self.iv_source_description,
            "matched_samples": sorted(self.match.matched_samples),
            "combinations_tried": self.combinations_tried,
        }


@dataclass(frozen=True, slots=True)
class KeystreamFragment:
    position: int
    byte: int
    derived_from: Tuple[str, str]


@dataclass(frozen=True, slots=True)
class FeedbackRecurrence:
    """A proven relation K[i] = base[i] XOR F(window at i - period)."""

    period: int
    family: str
    description: str
    base_keystream: bytes
    initial_keystream: bytes

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "family": self.family,
            "description": self.description,
            "base_keystream_hex": self.base_keystream.hex(),
            "initial_keystream_hex": self.initial_keystream.hex(),
        }


@dataclass(frozen=True, slots=True)
class PartialKeystream:
    """Keystream bytes recovered from same-key sample differences.

    ``kind`` is ``independent`` (keystream does not depend on plaintext), ``feedback``
    (a recurrence was proven) or ``prefix`` (only the bytes before the first
    feedback divergence are known).
    """

    keystream: Dict[int, int]
    kind: str
    recurrence_proven: bool = False
    recurrence: Optional[FeedbackRecurrence] = None
    differential: bytes = b""
    break_position: Optional[int] = None
    fragments: Tuple[KeystreamFragment, ...] = field(default_factory=tuple)

    def keystream_bytes(self, length: Optional[int] = None) -> bytes:
        """Contiguous keystream from position 0, stopping at the first gap."""
        out = bytearray()
        limit = length if length is not None else len(self.keystream)
        for position in range(limit):
            if position not in self.keystream:
                break
            out.append(self.keystream[position])
        return bytes(out)

    def to_dict(self) -> dict:
        return {
            "result": "partial-keystream",
            "kind": self.kind,
            "recurrence_proven": self.recurrence_proven,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "break_position": self.break_position,
            "keystream_hex": self.keystream_bytes().hex(),
            "positions": len(self.keystream),
            "differential_hex": self.differential.hex(),
        }


@dataclass(frozen=True, slots=True)
class Unresolved:
    samples_considered: int
    combinations_tried: int
    reason: str = "no hypothesis matched"
    budget_exhausted: bool = False
    ambiguous: Tuple[Hypothesis, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "result": "unresolved",
            "reason": self.reason,
            "samples_considered": self.samples_considered,
            "combinations_tried": self.combinations_tried,
            "budget_exhausted": self.budget_exhausted,
            "ambiguous": [h.describe() for h in self.ambiguous],
        }


SearchOutcome = Union[ConfirmedHypothesis, PartialKeystream, Unresolved]
