"""
Feed source adapter.

Downloads a feed over HTTP and turns its entries into CandidateItem
objects, keeping the order in which the feed lists them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import feedparser
from aiohttp_socks import ProxyConnector

from rss_webhook.config import FeedConfig
from rss_webhook.errors import FetchError
from rss_webhook.models import CandidateItem

logger = logging.getLogger(__name__)


@dataclass
class _CachedFeed:
    """Validators and items from the last successful fetch of a URL."""

    etag: str | None = None
    last_modified: str | None = None
    items: list[CandidateItem] = field(default_factory=list)


class FeedParser:
    """
    Feed fetcher shared by all feed workers.

    Downloads with aiohttp and parses RSS or Atom with feedparser.
    Sends conditional requests when the server supplied an ETag or
    Last-Modified header.
    """

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        user_agent: str = "RSS-Webhook/1.0",
        proxy_url: str | None = None,
    ):
        """
        Create a fetcher. The HTTP session is opened on first use.

        Parameters
        ----------
        timeout : int
            Total time allowed for one request, in seconds.
        max_retries : int
            Maximum number of attempts for a request.
        user_agent : str
            Value of the User-Agent header.
        proxy_url : str | None
            Proxy for all requests, e.g. socks5://host:1080.
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent
        self.proxy_url = proxy_url
        self._session: aiohttp.ClientSession | None = None
        self._cache: dict[str, _CachedFeed] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Return the shared session, opening it if needed."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            headers = {"User-Agent": self.user_agent}

            connector = None
            if self.proxy_url:
                connector = ProxyConnector.from_url(self.proxy_url)
                logger.debug("Using proxy: %s", self.proxy_url.split("@")[-1])

            self._session = aiohttp.ClientSession(
                timeout=timeout, headers=headers, connector=connector
            )
        return self._session

    def _conditional_headers(self, url: str) -> dict[str, str]:
        cached = self._cache.get(url)
        headers: dict[str, str] = {}
        if cached is None:
            return headers
        if cached.etag:
            headers["If-None-Match"] = cached.etag
        if cached.last_modified:
            headers["If-Modified-Since"] = cached.last_modified
        return headers

    async def fetch_feed(self, feed_config: FeedConfig) -> list[CandidateItem]:
        """
        Download a feed and return its items.

        Parameters
        ----------
        feed_config : FeedConfig
            Feed to download. Its cookies are sent with the request.

        Returns
        -------
        list[CandidateItem]
            Items in the order they appear in the feed. On 304 Not
            Modified, the items of the last successful fetch.

        Raises
        ------
        FetchError
            If the request fails after all retries, the server answers
            with an error status, or the content is not a feed.
        """
        session = await self._get_session()
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(
                    "Fetching feed '%s' (attempt %d/%d)%s",
                    feed_config.name,
                    attempt,
                    self.max_retries,
                    " with cookies" if feed_config.cookies else "",
                )

                async with session.get(
                    feed_config.url,
                    cookies=feed_config.cookies,
                    headers=self._conditional_headers(feed_config.url),
                ) as response:
                    if response.status == 304 and feed_config.url in self._cache:
                        logger.debug("Feed '%s' not modified", feed_config.name)
                        return list(self._cache[feed_config.url].items)

                    response.raise_for_status()
                    content = await response.text()
                    etag = response.headers.get("ETag")
                    last_modified = response.headers.get("Last-Modified")

                items = self._parse_feed(content, feed_config.name)
                self._cache[feed_config.url] = _CachedFeed(
                    etag=etag, last_modified=last_modified, items=list(items)
                )
                logger.info(
                    "Got %d item(s) from '%s'",
                    len(items),
                    feed_config.name,
                )
                return items

            except (aiohttp.ClientError, TimeoutError) as e:
                last_error = e
                logger.warning(
                    "Failed to fetch feed '%s' (attempt %d/%d): %s",
                    feed_config.name,
                    attempt,
                    self.max_retries,
                    str(e) or type(e).__name__,
                )

        raise FetchError(
            feed_config.name,
            f"failed after {self.max_retries} attempt(s): {str(last_error) or type(last_error).__name__}",
        ) from last_error

    def _parse_feed(self, content: str, feed_name: str) -> list[CandidateItem]:
        """
        Parse feed content into CandidateItem objects.

        Parameters
        ----------
        content : str
            Response body.
        feed_name : str
            Name of the feed for logging.

        Returns
        -------
        list[CandidateItem]
            List of parsed items.

        Raises
        ------
        FetchError
            If the content could not be parsed as a feed at all.
        """
        # A blank line before the XML declaration makes it invalid
        content = content.lstrip()
        parsed: Any = feedparser.parse(content)

        if parsed.bozo and parsed.bozo_exception:
            if not parsed.entries and not parsed.get("version"):
                raise FetchError(feed_name, f"malformed feed: {parsed.bozo_exception}")
            logger.warning(
                "Feed '%s' is not well-formed, using what could be parsed: %s",
                feed_name,
                parsed.bozo_exception,
            )

        feed_title = parsed.feed.get("title", "") if parsed.get("feed") else ""

        items = []
        for entry in parsed.entries:
            try:
                items.append(CandidateItem.from_feedparser(entry, feed_title))
            except Exception as e:
                logger.warning(
                    "Skipping unidentifiable entry in feed '%s': %s",
                    feed_name,
                    e,
                )
                continue

        return items

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("HTTP session closed")

    async def __aenter__(self) -> "FeedParser":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
