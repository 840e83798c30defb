import hashlib
from dataclasses import dataclass
from typing import FrozenSet, Mapping, Literal

from crib_hunter.codec import _as_bytes

IVKind = Literal["none", "prefix", "suffix", "context", "context-sha256", "zero"]


@dataclass(frozen=True, slots=True)
class IVSource:
    """Where a hypothesis takes its IV from, and which part of the ciphertext it decodes.

    ``start`` is the slice offset for ``prefix`` and the distance from the end for
    ``suffix``. ``header``/``trailer`` strip framing bytes from the ciphertext before
    it is handed to the construction.
    """

    kind: IVKind = "none"
    length: int = 0
    start: int = 0
    field: str = ""
    header: int = 0
    trailer: int = 0

    def describe(self) -> str:
        if self.kind == "prefix":
            source = f"prefix[{self.start}:{self.start + self.length}]"
        elif self.kind == "suffix":
            if self.start:
                source = f"suffix[-{self.start + self.length}:-{self.start}]"
            else:
                source = f"suffix[-{self.length}:]"
        elif self.kind == "context":
            source = f"{self.field}[0:{self.length}]"
        elif self.kind == "context-sha256":
            source = f"sha256({self.field})[0:{self.length}]"
        elif self.kind == "zero":
            source = f"zero[{self.length}]"
        else:
            source = "none"

        if self.trailer:
            return f"{source} body[{self.header}:-{self.trailer}]"
        if self.header:
            return f"{source} body[{self.header}:]"
        return source

    def body(self, ciphertext: bytes) -> bytes:
        end = len(ciphertext) - self.trailer
        if self.header > end:
            raise ValueError(f"Framing {self.header}+{self.trailer} exceeds {len(ciphertext)} bytes")
        return ciphertext[self.header:end]

    def resolve(self, ciphertext: bytes, context: Mapping) -> bytes:
        """Re-derive the IV bytes for a ciphertext/context pair."""
        n = len(ciphertext)
        if self.kind == "none":
            return b""
        if self.kind == "zero":
            return bytes(self.length)
        if self.kind == "prefix":
            if self.start + self.length > n:
                raise ValueError(f"{self.describe()} is outside a {n}-byte ciphertext")
            return ciphertext[self.start:self.start + self.length]
        if self.kind == "suffix":
            end = n - self.start
            if end - self.length < 0:
                raise ValueError(f"{self.describe()} is outside a {n}-byte ciphertext")
            return ciphertext[end - self.length:end]

        value = context.get(self.field)
        if value is None:
            raise ValueError(f"Context has no field {self.field!r}")
        raw = _as_bytes(value)
        if self.kind == "context-sha256":
            return hashlib.sha256(raw).digest()[:self.length]
        if len(raw) < self.length:
            raise ValueError(f"Context field {self.field!r} is shorter than {self.length} bytes")
        return raw[:self.length]


@dataclass(frozen=True, slots=True)
class IVCandidate:
    source: IVSource
    value: bytes

    @property
    def description(self) -> str:
        return self.source.describe()


@dataclass(frozen=True, slots=True)
class Hypothesis:
    """A fully specified, reproducible decode pipeline."""

    key_derivation: str
    cipher_construction: str
    iv_source: IVSource

    def describe(self) -> str:
        return f"{self.key_derivation} | {self.cipher_construction} | {self.iv_source.describe()}"


@dataclass(frozen=True, slots=True)
class MatchResult:
    hypothesis: Hypothesis
    matched_samples: FrozenSet[str]
    all_samples_matched: bool
