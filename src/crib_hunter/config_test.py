import pytest

from crib_hunter.config import SearchConfig, default_workers


class TestSearchConfig:
    """Test suite for SearchConfig validation"""

    def test_defaults(self):
        """Test the default limits"""
        config = SearchConfig()
        assert config.max_combinations == 5_000_000
        assert config.timeout is None
        assert config.max_iv_offsets == 256
        assert config.max_period == 64
        assert config.block_sizes == (8, 16, 32)

    def test_worker_count(self):
        """Test 0 workers falls back to the automatic count"""
        assert SearchConfig().worker_count == default_workers()
        assert SearchConfig(workers=3).worker_count == 3
        assert 1 <= default_workers() <= 8

    @pytest.mark.parametrize("kwargs", [
        {"workers": -1},
        {"max_combinations": 0},
        {"timeout": 0},
        {"max_period": 0},
    ])
    def test_rejects_bad_values(self, kwargs):
        """Test out-of-range settings raise ValueError"""
        with pytest.raises(ValueError):
            SearchConfig(**kwargs)
