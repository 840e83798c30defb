from typing import Iterator, List, Sequence, Tuple

from crib_hunter.models.hypothesis import IVCandidate, IVSource
from crib_hunter.models.sample import KEY_FIELD, Sample

DEFAULT_MAX_OFFSETS = 256


class IVPlacementEnumerator:
    """Lazily enumerate where an IV of a given length could come from.

    Candidates are produced per body framing ``(header, trailer)``: the bytes stripped
    from the front and back of the ciphertext before it reaches the construction.
    """

    def __init__(self, context_field_names: Sequence[str], max_offsets: int = DEFAULT_MAX_OFFSETS):
        names = [name for name in dict.fromkeys(context_field_names) if name != KEY_FIELD]
        self.context_field_names = [KEY_FIELD] + names
        self.max_offsets = max_offsets

    def framings(self, sample: Sample, iv_length: int, tag_length: int = 0) -> List[Tuple[int, int]]:
        n = len(sample.ciphertext)
        overhead = sample.overhead
        framings = [(0, 0)]
        if iv_length:
            framings.append((iv_length, 0))
        if overhead > 0:
            framings.append((overhead, 0))
        if tag_length:
            if iv_length:
                framings.append((iv_length, tag_length))
            if overhead - tag_length >= 0:
                framings.append((overhead - tag_length, tag_length))
        return [f for f in dict.fromkeys(framings) if f[0] + f[1] <= n]

    def candidates(self, sample: Sample, iv_length: int, tag_length: int = 0, *,
                   include_zero: bool = True) -> Iterator[IVCandidate]:
        """`include_zero=False` drops the all-zero IV, for constructions that alias another under it."""
        for header, trailer in self.framings(sample, iv_length, tag_length):
            if iv_length == 0:
                yield IVCandidate(IVSource("none", header=header, trailer=trailer), b"")
                continue
            yield from self._placements(sample, iv_length, header, trailer, include_zero)

    def _placements(self, sample: Sample, length: int, header: int, trailer: int,
                    include_zero: bool = True) -> Iterator[IVCandidate]:
        ct = sample.ciphertext
        n = len(ct)

        for start in range(0, min(n - length + 1, self.max_offsets)):
            yield self._candidate(sample, IVSource("prefix", length, start, header=header, trailer=trailer))

        if n >= length:
            yield self._candidate(sample, IVSource("suffix", length, 0, header=header, trailer=trailer))
        if trailer and n >= length + trailer:
            # The slice in front of a trailing tag.
            yield self._candidate(sample, IVSource("suffix", length, trailer, header=header, trailer=trailer))

        for name in self.context_field_names:
            value = sample.field_bytes(name)
            if value is None:
                continue
            if len(value) >= length:
                yield self._candidate(sample, IVSource("context", length, field=name, header=header, trailer=trailer))
            if length <= 32:
                yield self._candidate(sample, IVSource("context-sha256", length, field=name, header=header, trailer=trailer))

        if include_zero:
            yield IVCandidate(IVSource("zero", length, header=header, trailer=trailer), bytes(length))

    @staticmethod
    def _candidate(sample: Sample, source: IVSource) -> IVCandidate:
        return IVCandidate(source, source.resolve(sample.ciphertext, sample.context))
