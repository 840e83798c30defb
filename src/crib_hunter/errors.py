class CribHunterError(Exception):
    pass


class InvalidEncoding(CribHunterError, ValueError):
    """Malformed codec input: bad alphabet, bad padding, odd hex length."""
    pass


class UnsupportedKeyLength(CribHunterError, ValueError):
    """A construction rejected the derived key. Expected during search; not logged."""

    def __init__(self, construction: str, key_length: int):
        super().__init__(f"{construction} does not accept a {key_length}-byte key")
        self.construction = construction
        self.key_length = key_length


class AmbiguousMatch(CribHunterError):
    """More than one hypothesis reproduced every sample."""

    def __init__(self, hypotheses):
        names = ", ".join(h.describe() for h in hypotheses)
        super().__init__(f"{len(hypotheses)} hypotheses confirmed: {names}")
        self.hypotheses = tuple(hypotheses)


class SampleLoadError(CribHunterError, RuntimeError):
    pass
