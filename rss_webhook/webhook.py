"""
Webhook notification client.

POSTs one JSON notification per new feed item to an HTTP endpoint,
retrying transient failures with exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
from aiohttp_socks import ProxyConnector

from rss_webhook.errors import DeliveryError
from rss_webhook.models import NotificationPayload
from rss_webhook.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Statuses worth another attempt besides 5xx
RETRYABLE_STATUSES = frozenset({408, 429})

# Characters of a rejected response body kept for logging
ERROR_BODY_LENGTH = 200


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a Retry-After header given in seconds.

    Parameters
    ----------
    value : str | None
        Raw header value.

    Returns
    -------
    float | None
        Delay in seconds, or None if absent or not numeric.
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


@dataclass
class DeliveryResult:
    """
    Outcome of delivering one payload.

    Attributes
    ----------
    delivered : bool
        True if the target accepted the payload.
    attempts : int
        Number of attempts made.
    status : int | None
        Last HTTP status received.
    error : str | None
        Last error message when not delivered.
    """

    delivered: bool
    attempts: int
    status: int | None = None
    error: str | None = None


class WebhookDispatcher:
    """
    Async webhook client.

    Sends notification payloads with aiohttp. Each payload gets its own
    bounded retry sequence.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        timeout: int = 15,
        payload_format: str = "json",
        username: str = "RSS Webhook",
        user_agent: str = "RSS-Webhook/1.0",
        proxy_url: str | None = None,
    ):
        """
        Initialize the dispatcher.

        Parameters
        ----------
        policy : RetryPolicy | None
            Attempt limit and backoff settings.
        timeout : int
            Timeout in seconds for a single attempt.
        payload_format : str
            ``json`` or ``discord``.
        username : str
            Sender name for the ``discord`` format.
        user_agent : str
            User-Agent header for requests.
        proxy_url : str | None
            Optional SOCKS proxy URL.
        """
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.payload_format = payload_format
        self.username = username
        self.user_agent = user_agent
        self.proxy_url = proxy_url
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            headers = {"User-Agent": self.user_agent}

            connector = None
            if self.proxy_url:
                connector = ProxyConnector.from_url(self.proxy_url)

            self._session = aiohttp.ClientSession(
                timeout=timeout, headers=headers, connector=connector
            )
        return self._session

    async def deliver(self, payload: NotificationPayload, target: str) -> DeliveryResult:
        """
        Deliver a payload to a webhook target.

        Transport errors, timeouts, 5xx, 408 and 429 responses are
        retried until the attempt budget is spent. Other 4xx responses
        end the sequence at once.

        Parameters
        ----------
        payload : NotificationPayload
            The notification to send.
        target : str
            Webhook URL.

        Returns
        -------
        DeliveryResult
            Outcome of the attempt sequence.
        """
        body = payload.render(self.payload_format, self.username)
        state = self.policy.start()
        last_error: DeliveryError | None = None

        while not state.exhausted:
            attempt = state.record_attempt()
            try:
                status = await self._post(target, body)
            except DeliveryError as e:
                last_error = e
                logger.warning(
                    "Delivery of '%s' from '%s' failed (attempt %d/%d): %s",
                    payload.item_id[:50],
                    payload.feed_name,
                    attempt,
                    self.policy.max_attempts,
                    e,
                )
                if not e.retryable:
                    break
                if not state.exhausted:
                    await asyncio.sleep(state.next_delay(e.retry_after))
                continue

            logger.info(
                "Delivered '%s' from '%s' (attempt %d)",
                payload.title[:50],
                payload.feed_name,
                attempt,
            )
            return DeliveryResult(delivered=True, attempts=attempt, status=status)

        logger.warning(
            "Giving up on '%s' from '%s' after %d attempt(s): %s",
            payload.item_id[:50],
            payload.feed_name,
            state.attempt,
            last_error,
        )
        return DeliveryResult(
            delivered=False,
            attempts=state.attempt,
            status=last_error.status if last_error else None,
            error=str(last_error) if last_error else None,
        )

    async def _post(self, target: str, body: dict) -> int:
        """
        Make a single POST attempt.

        Returns
        -------
        int
            The 2xx status returned by the target.

        Raises
        ------
        DeliveryError
            If the request failed or the target rejected it.
        """
        session = await self._get_session()

        try:
            async with session.post(target, json=body) as response:
                if 200 <= response.status < 300:
                    return response.status

                text = await response.text()
                retryable = response.status >= 500 or response.status in RETRYABLE_STATUSES
                raise DeliveryError(
                    f"HTTP {response.status}: {text[:ERROR_BODY_LENGTH]}",
                    status=response.status,
                    retryable=retryable,
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Request failed: {e}") from e
        except TimeoutError as e:
            raise DeliveryError(f"Request timed out after {self.timeout}s") from e

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("Webhook session closed")

    async def __aenter__(self) -> "WebhookDispatcher":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
