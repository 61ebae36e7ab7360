"""
Unit tests for the data model module.

Tests cover entry normalization, id derivation and payload rendering.
"""

import time
from datetime import datetime, timezone
from typing import Any

import pytest

from rss_webhook.config import FeedConfig
from rss_webhook.models import (
    DESCRIPTION_LIMIT,
    CandidateItem,
    NotificationPayload,
    SeenRecord,
    derive_item_id,
)


@pytest.fixture
def feedparser_entry() -> dict[str, Any]:
    """
    Create a sample feedparser entry dictionary.

    Returns
    -------
    dict
        A dictionary mimicking feedparser entry structure.
    """
    return {
        "title": "Test Entry",
        "link": "https://example.com/entry",
        "id": "tag:example.com,2024:entry",
        "summary": "This is a test summary",
        "content": [{"value": "<p>This is the <b>full</b> content</p>"}],
        "published_parsed": time.strptime("2024-01-01 12:00:00", "%Y-%m-%d %H:%M:%S"),
    }


class TestDeriveItemId:
    """Tests for identifier derivation."""

    def test_stable(self) -> None:
        """Test the same link and title always give the same id."""
        assert derive_item_id("https://a", "T") == derive_item_id("https://a", "T")

    def test_distinct(self) -> None:
        """Test different inputs give different ids."""
        assert derive_item_id("https://a", "T") != derive_item_id("https://a", "U")
        assert derive_item_id("https://a", "T") != derive_item_id("https://b", "T")


class TestCandidateItemFromFeedparser:
    """Tests for building items from feedparser entries."""

    def test_full_entry(self, feedparser_entry: dict[str, Any]) -> None:
        """Test all fields are extracted."""
        item = CandidateItem.from_feedparser(feedparser_entry, "Channel")

        assert item.id == "tag:example.com,2024:entry"
        assert item.title == "Test Entry"
        assert item.link == "https://example.com/entry"
        assert item.description == "This is the full content"
        assert item.feed_title == "Channel"
        assert item.published_at == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_summary_fallback(self, feedparser_entry: dict[str, Any]) -> None:
        """Test summary is used when there is no content."""
        del feedparser_entry["content"]

        item = CandidateItem.from_feedparser(feedparser_entry)

        assert item.description == "This is a test summary"

    def test_missing_guid_derives_id(self, feedparser_entry: dict[str, Any]) -> None:
        """Test entries without a guid get a digest of link and title."""
        del feedparser_entry["id"]

        first = CandidateItem.from_feedparser(feedparser_entry)
        second = CandidateItem.from_feedparser(dict(feedparser_entry))

        assert first.id == derive_item_id("https://example.com/entry", "Test Entry")
        assert first.id == second.id

    def test_updated_date_fallback(self, feedparser_entry: dict[str, Any]) -> None:
        """Test updated_parsed is used when there is no published date."""
        del feedparser_entry["published_parsed"]
        feedparser_entry["updated_parsed"] = time.strptime("2024-02-03", "%Y-%m-%d")

        item = CandidateItem.from_feedparser(feedparser_entry)

        assert item.published_at == datetime(2024, 2, 3, tzinfo=timezone.utc)

    def test_no_date(self) -> None:
        """Test entries without dates have no publication time."""
        item = CandidateItem.from_feedparser({"title": "T", "link": "https://x"})

        assert item.published_at is None

    def test_empty_entry_rejected(self) -> None:
        """Test an entry without id, link or title cannot be identified."""
        with pytest.raises(ValueError):
            CandidateItem.from_feedparser({"summary": "orphan"})


class TestSeenRecord:
    """Tests for record serialization."""

    def test_round_trip(self) -> None:
        """Test a record survives to_dict/from_dict."""
        record = SeenRecord("a", datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert SeenRecord.from_dict(record.to_dict()) == record

    @pytest.mark.parametrize("data", [None, "a", {"item_id": ""}, {"seen_at": "2024-01-01"}])
    def test_malformed(self, data: Any) -> None:
        """Test malformed records raise ValueError."""
        with pytest.raises(ValueError):
            SeenRecord.from_dict(data)


class TestNotificationPayload:
    """Tests for payload building and rendering."""

    @pytest.fixture
    def feed(self) -> FeedConfig:
        return FeedConfig(name="Arch news", url="https://archlinux.org/feeds/news/", color=13438481)

    @pytest.fixture
    def item(self) -> CandidateItem:
        return CandidateItem(
            id="guid-1",
            title="New kernel",
            link="https://archlinux.org/news/kernel/",
            published_at=datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc),
            description="Kernel update notes",
            feed_title="Arch Linux: Recent news updates",
        )

    def test_build(self, item: CandidateItem, feed: FeedConfig) -> None:
        """Test payload fields come from the item and the feed."""
        payload = NotificationPayload.build(item, feed)

        assert payload.feed_name == "Arch news"
        assert payload.feed_url == "https://archlinux.org/feeds/news/"
        assert payload.item_id == "guid-1"
        assert payload.color == 13438481

    def test_immutable(self, item: CandidateItem, feed: FeedConfig) -> None:
        """Test payloads cannot be modified once built."""
        payload = NotificationPayload.build(item, feed)

        with pytest.raises(AttributeError):
            payload.title = "changed"  # type: ignore[misc]

    def test_json_body(self, item: CandidateItem, feed: FeedConfig) -> None:
        """Test the generic JSON layout."""
        body = NotificationPayload.build(item, feed).render("json")

        assert body == {
            "feed": {
                "name": "Arch news",
                "url": "https://archlinux.org/feeds/news/",
                "title": "Arch Linux: Recent news updates",
            },
            "item": {
                "id": "guid-1",
                "title": "New kernel",
                "link": "https://archlinux.org/news/kernel/",
                "published_at": "2024-03-01T08:00:00+00:00",
                "description": "Kernel update notes",
            },
        }

    def test_json_body_without_date(self, feed: FeedConfig) -> None:
        """Test an unknown publication time renders as null."""
        payload = NotificationPayload.build(CandidateItem(id="x", title="T"), feed)

        assert payload.render("json")["item"]["published_at"] is None

    def test_discord_body(self, item: CandidateItem, feed: FeedConfig) -> None:
        """Test the Discord embed layout."""
        body = NotificationPayload.build(item, feed).render("discord", "Arch Linux Bot")

        assert body["username"] == "Arch Linux Bot"
        embed = body["embeds"][0]
        assert embed["title"] == "New kernel"
        assert embed["url"] == "https://archlinux.org/news/kernel/"
        assert embed["color"] == 13438481
        assert embed["footer"] == {"text": "Source: Arch Linux: Recent news updates"}
        assert embed["timestamp"] == "2024-03-01T08:00:00+00:00"

    def test_discord_truncates_description(self, feed: FeedConfig) -> None:
        """Test long descriptions are cut with an ellipsis."""
        item = CandidateItem(id="x", title="T", description="a" * 500)

        embed = NotificationPayload.build(item, feed).render("discord")["embeds"][0]

        assert embed["description"] == "a" * DESCRIPTION_LIMIT + "..."

    def test_discord_fallbacks(self) -> None:
        """Test placeholders for missing title, description and colour."""
        feed = FeedConfig(name="Plain", url="https://example.com/feed.xml")
        item = CandidateItem(id="x")

        embed = NotificationPayload.build(item, feed).render("discord")["embeds"][0]

        assert embed["title"] == "No Title"
        assert embed["description"] == "No description"
        assert embed["footer"] == {"text": "Source: Plain"}
        assert "color" not in embed
