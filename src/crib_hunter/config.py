import os
from dataclasses import dataclass
from typing import Optional, Tuple


def default_workers() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass(frozen=True, slots=True)
class SearchConfig:
    """Limits and tuning for one solver run."""

    workers: int = 0  # 0: default_workers()
    max_combinations: int = 5_000_000
    timeout: Optional[float] = None  # seconds
    max_iv_offsets: int = 256
    max_period: int = 64
    block_sizes: Tuple[int, ...] = (8, 16, 32)

    def __post_init__(self):
        if self.workers < 0:
            raise ValueError(f"workers must be >= 0, got {self.workers}")
        if self.max_combinations < 1:
            raise ValueError(f"max_combinations must be >= 1, got {self.max_combinations}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_iv_offsets < 1:
            raise ValueError(f"max_iv_offsets must be >= 1, got {self.max_iv_offsets}")
        if self.max_period < 1:
            raise ValueError(f"max_period must be >= 1, got {self.max_period}")

    @property
    def worker_count(self) -> int:
        return self.workers or default_workers()
