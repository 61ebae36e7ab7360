"""
Protocol definition for delivery backends.

Defines the interface the scheduler needs from a dispatcher.
"""

from typing import Protocol, runtime_checkable

from rss_webhook.models import NotificationPayload
from rss_webhook.webhook import DeliveryResult


@runtime_checkable
class Dispatcher(Protocol):
    """
    Protocol defining the interface for delivery backends.

    The scheduler only depends on this interface, so tests and
    alternative transports can stand in for the webhook client.
    """

    async def deliver(self, payload: NotificationPayload, target: str) -> DeliveryResult:
        """
        Deliver a payload to a target.

        Parameters
        ----------
        payload : NotificationPayload
            The notification to send.
        target : str
            Destination URL.

        Returns
        -------
        DeliveryResult
            Outcome after all attempts.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the dispatcher."""
        ...
