from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Union

from crib_hunter.codec import _as_bytes

ContextValue = Union[bytes, str, int]

KEY_FIELD = "key"


@dataclass(frozen=True, slots=True)
class Sample:
    """A verified (ciphertext, plaintext, context) triple. Immutable once collected."""

    ciphertext: bytes
    plaintext: bytes
    context: Mapping[str, ContextValue] = field(default_factory=dict)
    label: str = ""

    def __post_init__(self):
        object.__setattr__(self, "ciphertext", _as_bytes(self.ciphertext))
        object.__setattr__(self, "plaintext", _as_bytes(self.plaintext))
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    @property
    def raw_key(self) -> bytes:
        """The shared secret. Missing key means the empty key."""
        return _as_bytes(self.context.get(KEY_FIELD, b""))

    @property
    def overhead(self) -> int:
        """Bytes of framing around the payload: len(ciphertext) - len(plaintext)."""
        return len(self.ciphertext) - len(self.plaintext)

    def field_bytes(self, name: str) -> Optional[bytes]:
        value = self.context.get(name)
        if value is None:
            return None
        return _as_bytes(value)

    def shares_key_with(self, other: "Sample") -> bool:
        return KEY_FIELD in self.context and KEY_FIELD in other.context and self.raw_key == other.raw_key


def label_samples(samples: Sequence[Sample]) -> List[Sample]:
    """Give every sample a unique label, keeping labels that are already unique."""
    labelled = []
    seen = set()
    for index, sample in enumerate(samples):
        label = sample.label
        if not label or label in seen:
            label = f"sample-{index}"
        seen.add(label)
        labelled.append(sample if label == sample.label else replace(sample, label=label))
    return labelled


def distinct_context_count(samples: Sequence[Sample]) -> int:
    """Samples count once per distinct context; plaintext changes alone add nothing."""
    contexts = set()
    for sample in samples:
        contexts.add(tuple(sorted((k, _as_bytes(v)) for k, v in sample.context.items())))
    return len(contexts)
