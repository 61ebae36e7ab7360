"""
JSON file storage for tracking seen feed items.

Keeps a bounded, insertion-ordered record of the items a feed has
already handled so notifications are not repeated after restarts.
"""

import json
import logging
import os
import tempfile
from collections import OrderedDict
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from rss_webhook.errors import PersistenceError
from rss_webhook.models import SeenRecord

logger = logging.getLogger(__name__)

# Version of the on-disk layout
STATE_VERSION = 1

DEFAULT_RETENTION = 500


class SeenItemStore:
    """
    Seen-item records for a single feed.

    Records are kept in insertion order and bounded to ``retention``
    entries; the oldest records are evicted first.
    """

    def __init__(self, feed_url: str = "", retention: int = DEFAULT_RETENTION):
        """
        Initialize an empty store.

        Parameters
        ----------
        feed_url : str
            URL of the feed owning the store, written to the state file.
        retention : int
            Maximum number of records kept.
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.feed_url = feed_url
        self.retention = retention
        self.is_new = True
        self._records: OrderedDict[str, SeenRecord] = OrderedDict()

    @classmethod
    def load(
        cls,
        path: str | Path,
        feed_url: str = "",
        retention: int = DEFAULT_RETENTION,
    ) -> "SeenItemStore":
        """
        Load a store from its state file.

        A missing, unreadable or corrupt file yields an empty store.

        Parameters
        ----------
        path : str | Path
            Path to the JSON state file.
        feed_url : str
            URL of the feed owning the store.
        retention : int
            Maximum number of records kept.

        Returns
        -------
        SeenItemStore
            The loaded store.
        """
        path = Path(path)
        store = cls(feed_url=feed_url, retention=retention)

        if not path.exists():
            logger.info("No state file at %s, starting with an empty store", path)
            return store

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            records = cls._parse_state(data)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(
                "State file %s is unreadable or corrupt, starting with an empty store: %s",
                path,
                e,
            )
            return store

        if feed_url and data.get("feed") and data["feed"] != feed_url:
            logger.warning(
                "State file %s belongs to feed %s, not %s",
                path,
                data["feed"],
                feed_url,
            )

        for record in records:
            store._insert(record)
        store.is_new = False

        logger.debug("Loaded %d seen record(s) from %s", len(store), path)
        return store

    @staticmethod
    def _parse_state(data: object) -> list[SeenRecord]:
        """Validate a decoded state document and return its records."""
        if not isinstance(data, dict):
            raise ValueError("State root is not an object")
        if data.get("version") != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {data.get('version')!r}")
        records = data.get("records")
        if not isinstance(records, list):
            raise ValueError("State has no record list")
        return [SeenRecord.from_dict(item) for item in records]

    def contains(self, item_id: str) -> bool:
        """Return True if the item has been marked seen."""
        return item_id in self._records

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SeenRecord]:
        return iter(self._records.values())

    def ids(self) -> list[str]:
        """Return the stored item ids, oldest first."""
        return list(self._records)

    def mark(self, item_id: str, timestamp: datetime | None = None) -> bool:
        """
        Mark an item as seen.

        Marking an item that is already present is a no-op.

        Parameters
        ----------
        item_id : str
            Identifier of the item.
        timestamp : datetime | None
            When the item was seen. Defaults to now (UTC).

        Returns
        -------
        bool
            True if a new record was inserted.
        """
        if item_id in self._records:
            return False
        self._insert(SeenRecord(item_id=item_id, seen_at=timestamp or datetime.now(timezone.utc)))
        return True

    def _insert(self, record: SeenRecord) -> None:
        self._records[record.item_id] = record
        while len(self._records) > self.retention:
            evicted, _ = self._records.popitem(last=False)
            logger.debug("Evicted oldest seen record: %s", evicted[:50])

    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "feed": self.feed_url,
            "records": [record.to_dict() for record in self._records.values()],
        }

    def persist(self, path: str | Path) -> None:
        """
        Atomically write the store to disk.

        The state is written to a temporary file in the same directory
        and renamed over the target, so a crash never leaves a
        truncated state file behind.

        Parameters
        ----------
        path : str | Path
            Path to the JSON state file.

        Raises
        ------
        PersistenceError
            If the file could not be written.
        """
        path = Path(path)
        tmp_name: str | None = None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(f"Failed to write state file {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary file %s", tmp_name)

        self.is_new = False
        logger.debug("Persisted %d seen record(s) to %s", len(self), path)
