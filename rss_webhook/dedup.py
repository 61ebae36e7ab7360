"""
Deduplication of fetched feed items.

Detecting new items and committing them as seen are separate steps:
an item is only committed once its delivery outcome is known, so a
crash in between leads to a redelivery rather than a lost item.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from rss_webhook.models import CandidateItem
from rss_webhook.storage import SeenItemStore

logger = logging.getLogger(__name__)


def diff(candidates: Iterable[CandidateItem], store: SeenItemStore) -> list[CandidateItem]:
    """
    Return the candidates that are not in the store.

    Feed order is preserved. An id repeated within the batch is only
    returned once (first occurrence). The store is not modified.

    Parameters
    ----------
    candidates : Iterable[CandidateItem]
        Items in the order they appear in the feed.
    store : SeenItemStore
        Records of already handled items.

    Returns
    -------
    list[CandidateItem]
        New items, in feed order.
    """
    batch_ids: set[str] = set()
    new_items = []
    for item in candidates:
        if item.id in batch_ids or store.contains(item.id):
            continue
        batch_ids.add(item.id)
        new_items.append(item)
    return new_items


class DedupEngine:
    """
    Per-feed owner of a SeenItemStore and its state file.
    """

    def __init__(self, store: SeenItemStore, path: str | Path):
        self.store = store
        self.path = Path(path)
        self._dirty = False

    @classmethod
    def open(cls, path: str | Path, feed_url: str, retention: int) -> "DedupEngine":
        """Load the store for a feed from its state file."""
        return cls(SeenItemStore.load(path, feed_url=feed_url, retention=retention), path)

    @property
    def is_new(self) -> bool:
        """True until the store has been loaded from or written to disk."""
        return self.store.is_new

    @property
    def dirty(self) -> bool:
        """True if commits are waiting to be flushed."""
        return self._dirty

    def new_items(self, candidates: Iterable[CandidateItem]) -> list[CandidateItem]:
        """Return the new items of a fetched batch."""
        return diff(candidates, self.store)

    def commit(self, item_id: str, when: datetime | None = None) -> None:
        """
        Record an item as handled.

        Parameters
        ----------
        item_id : str
            Identifier of the item whose delivery outcome is known.
        when : datetime | None
            Commit time. Defaults to now.
        """
        if self.store.mark(item_id, when):
            self._dirty = True
            logger.debug("Committed item as seen: %s", item_id[:50])

    def mark_initialized(self) -> None:
        """
        Record that a first fetch of the feed was handled.

        A new store is only written once this has been called, so a
        feed that never got fetched keeps its first-run behaviour
        across restarts.
        """
        if self.store.is_new:
            self._dirty = True

    def flush(self) -> None:
        """
        Persist the store if anything changed since the last flush.

        Raises
        ------
        PersistenceError
            If the state file could not be written.
        """
        if not self._dirty:
            return
        self.store.persist(self.path)
        self._dirty = False
