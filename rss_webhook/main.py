"""
Main entry point for RSS Webhook.

Runs the main async loop that polls feeds and delivers webhooks.
"""

import argparse
import asyncio
import logging
import signal
import sys
import tempfile
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs

from rss_webhook.config import load_config
from rss_webhook.errors import ConfigError, PersistenceError
from rss_webhook.retry import RetryPolicy
from rss_webhook.rss_parser import FeedParser
from rss_webhook.scheduler import PollScheduler
from rss_webhook.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            # Reconstruct URL with redacted password
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


def check_data_dir(data_dir: str | Path) -> Path:
    """
    Make sure the state directory exists and is writable.

    Raises
    ------
    PersistenceError
        If the directory cannot be created or written to.
    """
    path = Path(data_dir)
    try:
        path.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=path):
            pass
    except OSError as e:
        raise PersistenceError(f"Data directory {path} is not writable: {e}") from e
    return path


class RSSWebhook:
    """
    Main application.

    Wires the feed parser, webhook dispatcher and poll scheduler
    together and owns their lifecycle.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the application.

        Parameters
        ----------
        config_path : str | Path
            Path to the YAML configuration file.

        Raises
        ------
        ConfigError
            If the configuration cannot be loaded.
        """
        self.config = load_config(config_path)
        self.parser: FeedParser | None = None
        self.dispatcher: WebhookDispatcher | None = None
        self.scheduler: PollScheduler | None = None

    async def start(self) -> None:
        """Start polling and block until every feed worker stops."""
        logger.info("Starting RSS Webhook")

        data_dir = check_data_dir(self.config.storage.data_dir)
        logger.info("Storing state in %s", data_dir)

        defaults = self.config.defaults
        webhook = self.config.webhook

        proxy_url = defaults.proxy
        if proxy_url:
            logger.info("Using proxy: %s", redact_proxy_url(proxy_url))

        self.parser = FeedParser(
            timeout=defaults.request_timeout,
            max_retries=defaults.max_retries,
            user_agent=defaults.user_agent,
            proxy_url=proxy_url,
        )

        self.dispatcher = WebhookDispatcher(
            policy=RetryPolicy(
                max_attempts=webhook.max_attempts,
                base_delay=webhook.backoff_base,
                max_delay=webhook.backoff_max,
            ),
            timeout=webhook.timeout,
            payload_format=webhook.format,
            username=webhook.username,
            user_agent=defaults.user_agent,
            proxy_url=proxy_url,
        )

        self.scheduler = PollScheduler(self.config, self.parser, self.dispatcher)
        await self.scheduler.run()

    async def stop(self) -> None:
        """Stop the application gracefully."""
        logger.info("Stopping RSS Webhook")

        if self.scheduler:
            await self.scheduler.stop()
        if self.parser:
            await self.parser.close()
        if self.dispatcher:
            await self.dispatcher.close()

        logger.info("RSS Webhook stopped")


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="RSS/Atom feed watcher with webhook notifications",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        app = RSSWebhook(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_task: asyncio.Task | None = None

    def signal_handler():
        nonlocal stop_task
        logger.info("Received shutdown signal")
        if stop_task is None:
            stop_task = loop.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(app.start())
    except PersistenceError as e:
        logger.error("%s", e)
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(stop_task or app.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
