"""
ZSP Test Configuration

Pytest fixtures and configuration for ZSP tests.
"""

from pathlib import Path

import pytest

from zsp.config import EngineConfig
from zsp.core.zcache.pattern_cache import PatternCache
from zsp.core.zpattern.generator import PatternGenerator
from zsp.core.zpattern.mask import AttentionMask
from zsp.engine.service import PatternEngine

PROJECT_ROOT = Path(__file__).parent.parent


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    # Register custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "concurrency: marks tests that start threads"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that go through PatternEngine or the CLI"
    )


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def generator() -> PatternGenerator:
    """Generator that keeps every test mask dense."""
    return PatternGenerator(representation="dense")


@pytest.fixture
def packed_generator() -> PatternGenerator:
    """Generator that bit-packs every mask."""
    return PatternGenerator(representation="packed")


@pytest.fixture
def cache(generator: PatternGenerator) -> PatternCache:
    return PatternCache(generator, max_entries=8)


@pytest.fixture
def chain_mask() -> AttentionMask:
    """Five positions, each attending itself and the next one."""
    n = 5
    rows = [[j == i or j == i + 1 for j in range(n)] for i in range(n)]
    return AttentionMask.from_dense(rows)


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Small, fast engine configuration."""
    return EngineConfig(
        cache_max_entries=16,
        comparison_sequence_lengths=(32, 64),
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def engine(engine_config: EngineConfig) -> PatternEngine:
    return PatternEngine(engine_config)
