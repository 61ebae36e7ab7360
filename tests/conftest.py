"""
Shared fixtures for RSS Webhook tests.

Provides common test fixtures for use across all test modules.
"""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from rss_webhook.config import AppConfig, FeedConfig, WebhookConfig
from rss_webhook.models import CandidateItem, NotificationPayload
from rss_webhook.webhook import DeliveryResult


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_rss_path(fixtures_dir: Path) -> Path:
    """Return path to sample RSS feed file."""
    return fixtures_dir / "sample_rss.xml"


@pytest.fixture
def sample_atom_path(fixtures_dir: Path) -> Path:
    """Return path to sample Atom feed file."""
    return fixtures_dir / "sample_atom.xml"


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def sample_rss_content(sample_rss_path: Path) -> str:
    """Return contents of sample RSS feed."""
    return sample_rss_path.read_text()


@pytest.fixture
def sample_atom_content(sample_atom_path: Path) -> str:
    """Return contents of sample Atom feed."""
    return sample_atom_path.read_text()


def _make_item(item_id: str, title: str | None = None) -> CandidateItem:
    return CandidateItem(
        id=item_id,
        title=title or f"Entry {item_id}",
        link=f"https://example.com/{item_id}",
        feed_title="Test Channel",
    )


@pytest.fixture
def make_item():
    """Return a factory building candidate items with predictable fields."""
    return _make_item


@pytest.fixture
def sample_item() -> CandidateItem:
    """Create a sample candidate item for testing."""
    return CandidateItem(
        id="https://example.com/test-entry",
        title="Test Entry Title",
        link="https://example.com/test-entry",
        description="This is the test entry content.",
        feed_title="Test Channel",
    )


@pytest.fixture
def minimal_feed_config() -> FeedConfig:
    """Create a minimal valid feed configuration."""
    return FeedConfig(
        name="Test Feed",
        url="https://example.com/feed.xml",
    )


@pytest.fixture
def sample_payload(sample_item: CandidateItem, minimal_feed_config: FeedConfig) -> NotificationPayload:
    """Create a payload for the sample item."""
    return NotificationPayload.build(sample_item, minimal_feed_config)


@pytest.fixture
def minimal_config_dict() -> dict[str, Any]:
    """
    Create a minimal valid configuration dictionary.

    Returns
    -------
    dict
        Configuration dictionary that can be used to create AppConfig.
    """
    return {
        "webhook": {"url": "https://hooks.example.com/endpoint"},
        "feeds": [
            {
                "name": "Test Feed",
                "url": "https://example.com/feed.xml",
            }
        ],
    }


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """
    Create an app configuration storing state under tmp_path.

    Returns
    -------
    AppConfig
        Configuration with one feed and no startup jitter.
    """
    return AppConfig.model_validate(
        {
            "webhook": WebhookConfig(url="https://hooks.example.com/endpoint").model_dump(),
            "defaults": {"check_interval": 60, "startup_jitter": 0},
            "storage": {"data_dir": str(tmp_path / "data"), "retention": 50},
            "shutdown_grace": 1,
            "feeds": [{"name": "Test Feed", "url": "https://example.com/feed.xml"}],
        }
    )


@pytest.fixture
def mock_parser() -> MagicMock:
    """
    Create a mock feed parser.

    Returns
    -------
    MagicMock
        A parser whose fetch_feed returns no items.
    """
    parser = MagicMock()
    parser.fetch_feed = AsyncMock(return_value=[])
    parser.close = AsyncMock()
    return parser


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    """
    Create a mock dispatcher that accepts every payload.

    Returns
    -------
    MagicMock
        A dispatcher whose deliver always succeeds.
    """
    dispatcher = MagicMock()
    dispatcher.deliver = AsyncMock(
        return_value=DeliveryResult(delivered=True, attempts=1, status=200)
    )
    dispatcher.close = AsyncMock()
    return dispatcher
