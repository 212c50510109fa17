"""
Pytest configuration for CI tests
Provides common fixtures and test config
"""
import sys
from pathlib import Path

import pytest

# Add project root + this folder (fakes) to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from backends.game_ids import Source  # noqa: E402
from fakes import FakeClock, FakeProvider  # noqa: E402


@pytest.fixture
def mock_config():
    """Mock configuration for tests (no real API keys, no delays)"""
    return {
        'apis': {
            'rawg_key': 'test_rawg_key_mock',
            'igdb_proxy_url': 'http://proxy.test/api/igdb',
            'timeout': 10.0
        },
        'cache': {
            'mapping_ttl_hours': 24,
            'bulk_ttl_minutes': 15,
            'validation_ttl_hours': 24,
            'search_ttl_minutes': 5,
            'search_max_entries': 100,
        },
        'validation': {
            'max_retries': 3,
            'retry_base_delay': 0.0,
            'schedule_retries': False,
            'chunk_size': 10,
            'chunk_delay': 0.0,
        },
        'preload': {
            'batch_size': 5,
            'stagger': 0.0,
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def igdb():
    return FakeProvider(Source.IGDB)


@pytest.fixture
def rawg():
    return FakeProvider(Source.RAWG)
