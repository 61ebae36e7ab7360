"""
Exception types for RSS Webhook.

Each error is scoped to the component that raises it so the
scheduler can decide what is recoverable and what is fatal.
"""


class RSSWebhookError(Exception):
    """Base class for all application errors."""

    pass


class ConfigError(RSSWebhookError):
    """Raised when the configuration is missing or invalid. Fatal at startup."""

    pass


class FetchError(RSSWebhookError):
    """
    Raised when a feed cannot be fetched or parsed.

    Attributes
    ----------
    feed_name : str
        Name of the feed that failed.
    """

    def __init__(self, feed_name: str, message: str):
        super().__init__(f"Feed '{feed_name}': {message}")
        self.feed_name = feed_name


class DeliveryError(RSSWebhookError):
    """
    Raised for a single failed webhook delivery attempt.

    Attributes
    ----------
    status : int | None
        HTTP status returned by the target, None for transport failures.
    retryable : bool
        Whether another attempt may succeed.
    retry_after : float | None
        Delay requested by the target through a Retry-After header.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        retryable: bool = True,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.retryable = retryable
        self.retry_after = retry_after


class PersistenceError(RSSWebhookError):
    """Raised when the seen-item state cannot be written to disk."""

    pass
