"""
Pytest configuration and shared fixtures.

This module provides common fixtures and configuration for all tests
in the Rent Watch test suite.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from rent_watch.models.config import (
    Configuration,
    ListingSourceConfig,
    TelegramConfig,
)
from rent_watch.models.listing import Listing
from rent_watch.models.search import SearchCriteria
from rent_watch.services.database import Database
from rent_watch.services.dedup_ledger import DedupLedger
from rent_watch.services.search_registry import SearchRegistry
from rent_watch.utils.error_handling import reset_error_tracker


class FakeChannel:
    """In-memory messaging channel recording every call."""

    def __init__(self):
        self.texts = []
        self.photos = []
        self.photo_groups = []
        self.keyboard_updates = []
        self.acks = []
        self.fail_urls = set()

    def _check(self, text):
        for url in self.fail_urls:
            if url in text:
                raise RuntimeError(f"delivery refused for {url}")

    async def send_text(self, chat_id, text, keyboard=None):
        self._check(text)
        self.texts.append((chat_id, text, keyboard))

    async def send_photo(self, chat_id, text, photo_url):
        self._check(text)
        self.photos.append((chat_id, text, photo_url))

    async def send_photo_group(self, chat_id, text, photo_urls):
        self._check(text)
        self.photo_groups.append((chat_id, text, list(photo_urls)))

    async def update_keyboard(self, chat_id, message_id, keyboard):
        self.keyboard_updates.append((chat_id, message_id, keyboard))

    async def acknowledge(self, event_id, alert_text=None):
        self.acks.append((event_id, alert_text))

    async def test_connection(self):
        return True

    @property
    def last_text(self):
        return self.texts[-1][1] if self.texts else None

    @property
    def last_keyboard(self):
        return self.texts[-1][2] if self.texts else None


class FakeFetcher:
    """Listing source returning a fixed batch and recording the criteria it got."""

    def __init__(self, listings=None, error=None):
        self.listings = list(listings or [])
        self.error = error
        self.calls = []

    def search(self, criteria):
        self.calls.append(criteria)
        if self.error:
            raise self.error
        return list(self.listings)


def build_listing(external_id, district="Ruzafa", photos=0, **kwargs):
    """Build a listing with a URL derived from its id."""
    return Listing(
        external_id=str(external_id),
        url=f"https://www.idealista.com/inmueble/{external_id}/",
        price=kwargs.pop("price", 900),
        rooms=kwargs.pop("rooms", 2),
        district=district,
        description=kwargs.pop("description", "Bright flat near the market"),
        photo_urls=[f"https://img.example.com/{external_id}/{i}.jpg" for i in range(photos)],
        **kwargs,
    )


# Test data fixtures
@pytest.fixture
def make_listing():
    """Factory for listings with predictable URLs and photos."""
    return build_listing


@pytest.fixture
def sample_criteria():
    """Criteria produced by a typical wizard run."""
    return SearchCriteria(
        min_price=500, max_price=1200, num_rooms=2, districts=["Ruzafa"]
    )


@pytest.fixture
def sample_listings():
    """Five listings across several districts."""
    return [
        build_listing(101, district="Ruzafa"),
        build_listing(102, district="Benimaclet", photos=1),
        build_listing(103, district="Ruzafa", photos=3),
        build_listing(104, district=None),
        build_listing(105, district="Campanar"),
    ]


@pytest.fixture
def sample_configuration():
    """Create a sample Configuration for testing."""
    return Configuration(
        telegram=TelegramConfig(bot_token="123:abc", admin_user_ids=[42]),
        listing_source=ListingSourceConfig(api_token="apify_token"),
    )


# Persistence fixtures
@pytest.fixture
def database():
    """Fresh in-memory SQLite database with the schema created."""
    db = Database("sqlite://")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def registry(database):
    return SearchRegistry(database)


@pytest.fixture
def ledger(database):
    return DedupLedger(database)


@pytest.fixture
def user(registry):
    """A registered user."""
    return registry.ensure_user(1001, "Ana", "ana_v")


# Mock fixtures
@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def fake_fetcher(sample_listings):
    return FakeFetcher(sample_listings)


@pytest.fixture(autouse=True)
def clean_error_tracker():
    """Each test starts with an empty global error tracker."""
    reset_error_tracker()
    yield
    reset_error_tracker()


# Temporary directory fixtures
@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# Environment fixtures
@pytest.fixture
def mock_env_vars():
    """Mock environment variables for testing."""
    env_vars = {
        "TELEGRAM_BOT_TOKEN": "123456:test_bot_token",
        "APIFY_API_TOKEN": "test_apify_token",
    }

    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 1, 12, 0, 0)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if not any(
            marker.name in ["integration", "slow"] for marker in item.iter_markers()
        ):
            item.add_marker(pytest.mark.unit)

        if "integration" in item.name.lower():
            item.add_marker(pytest.mark.slow)
