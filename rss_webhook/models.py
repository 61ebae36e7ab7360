"""
Data types shared by the feed, storage and delivery layers.
"""

import calendar
import hashlib
import html
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from rss_webhook.config import FeedConfig

# Characters of the description kept in a Discord embed
DESCRIPTION_LIMIT = 200


def derive_item_id(link: str, title: str) -> str:
    """
    Derive a stable identifier for an entry without a guid.

    Parameters
    ----------
    link : str
        Entry URL.
    title : str
        Entry title.

    Returns
    -------
    str
        Hex SHA-256 digest of link and title.
    """
    return hashlib.sha256(f"{link}\n{title}".encode("utf-8")).hexdigest()


def _struct_to_datetime(value: Any) -> datetime | None:
    """Convert a feedparser UTC time.struct_time to an aware datetime."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _clean_content(content: str) -> str:
    """Strip HTML tags, decode entities and normalize whitespace."""
    text = re.sub(r"<[^>]+>", "", content)
    text = html.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class CandidateItem:
    """
    Normalized RSS/Atom entry produced by a fetch.

    Attributes
    ----------
    id : str
        Feed-native guid, or a digest of link and title when absent.
    title : str
        Entry title.
    link : str
        Entry URL.
    published_at : datetime | None
        Publication (or last update) time in UTC, if the feed has one.
    description : str
        Plain-text summary.
    feed_title : str
        Title of the channel the entry came from.
    """

    id: str
    title: str = ""
    link: str = ""
    published_at: datetime | None = None
    description: str = ""
    feed_title: str = ""

    @classmethod
    def from_feedparser(cls, entry: Any, feed_title: str = "") -> "CandidateItem":
        """
        Create a CandidateItem from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.
        feed_title : str
            Title of the source channel.

        Returns
        -------
        CandidateItem
            Normalized entry instance.
        """
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip()

        # feedparser maps RSS <guid> and Atom <id> to "id"
        guid = (entry.get("id") or "").strip()
        if not guid:
            if not link and not title:
                raise ValueError("Entry has no id, link or title")
            guid = derive_item_id(link, title)

        content = ""
        if entry.get("content"):
            content = entry["content"][0].get("value", "")
        elif entry.get("summary"):
            content = entry["summary"]

        published_at = _struct_to_datetime(
            entry.get("published_parsed") or entry.get("updated_parsed")
        )

        return cls(
            id=guid,
            title=title,
            link=link,
            published_at=published_at,
            description=_clean_content(content),
            feed_title=feed_title,
        )


@dataclass
class SeenRecord:
    """
    Persisted marker for an item that was already handled.

    Attributes
    ----------
    item_id : str
        Identifier of the item.
    seen_at : datetime
        When the item was committed.
    """

    item_id: str
    seen_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"item_id": self.item_id, "seen_at": self.seen_at.isoformat()}

    @classmethod
    def from_dict(cls, data: Any) -> "SeenRecord":
        """Build a record from its serialized form, raising ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError("Record is not an object")
        item_id = data.get("item_id")
        seen_at = data.get("seen_at")
        if not isinstance(item_id, str) or not item_id or not isinstance(seen_at, str):
            raise ValueError("Record is missing item_id or seen_at")
        return cls(item_id=item_id, seen_at=datetime.fromisoformat(seen_at))


@dataclass(frozen=True)
class NotificationPayload:
    """
    Immutable notification for one new item.

    Attributes
    ----------
    feed_name : str
        Configured feed name.
    feed_url : str
        Feed URL.
    feed_title : str
        Channel title reported by the feed.
    item_id : str
        Identifier of the item.
    title : str
        Item title.
    link : str
        Item URL.
    published_at : datetime | None
        Publication time, if known.
    description : str
        Plain-text summary.
    color : int | None
        Embed colour for the ``discord`` format.
    created_at : datetime
        When the payload was built.
    """

    feed_name: str
    feed_url: str
    feed_title: str
    item_id: str
    title: str
    link: str
    published_at: datetime | None = None
    description: str = ""
    color: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(cls, item: CandidateItem, feed: FeedConfig) -> "NotificationPayload":
        """Create the payload for an item of a configured feed."""
        return cls(
            feed_name=feed.name,
            feed_url=feed.url,
            feed_title=item.feed_title or feed.name,
            item_id=item.id,
            title=item.title,
            link=item.link,
            published_at=item.published_at,
            description=item.description,
            color=feed.color,
        )

    def to_json(self) -> dict[str, Any]:
        """Render the generic JSON body."""
        return {
            "feed": {
                "name": self.feed_name,
                "url": self.feed_url,
                "title": self.feed_title,
            },
            "item": {
                "id": self.item_id,
                "title": self.title,
                "link": self.link,
                "published_at": self.published_at.isoformat() if self.published_at else None,
                "description": self.description,
            },
        }

    def to_discord(self, username: str) -> dict[str, Any]:
        """Render a Discord webhook message with a single embed."""
        description = self.description or "No description"
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT] + "..."

        timestamp = self.published_at or self.created_at
        embed: dict[str, Any] = {
            "title": self.title or "No Title",
            "url": self.link,
            "description": description,
            "footer": {"text": f"Source: {self.feed_title}"},
            "timestamp": timestamp.isoformat(),
        }
        if self.color is not None:
            embed["color"] = self.color

        return {"username": username, "embeds": [embed]}

    def render(self, fmt: str, username: str = "RSS Webhook") -> dict[str, Any]:
        """
        Render the request body for a payload format.

        Parameters
        ----------
        fmt : str
            ``json`` or ``discord``.
        username : str
            Sender name for the ``discord`` format.

        Returns
        -------
        dict
            JSON-serializable request body.
        """
        if fmt == "discord":
            return self.to_discord(username)
        return self.to_json()
