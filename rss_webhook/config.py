"""
Configuration loading.

Reads the YAML file, resolves ${VAR} references against the
environment (and an optional .env file) and validates the result
with pydantic.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from rss_webhook.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment variables used, in order, when the YAML file has no webhook.url
WEBHOOK_URL_ENVS = ("WEBHOOK_URL", "DISCORD_WEBHOOK_URL")


def _check_http_url(value: str) -> str:
    """Validate that a value is an absolute http(s) URL."""
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Not a valid http(s) URL: {value!r}")
    return value.strip()


class FeedConfig(BaseModel):
    """
    One watched feed.

    Attributes
    ----------
    name : str
        Display name, used in logs and payloads.
    url : str
        URL of the RSS/Atom feed. Identifies the feed.
    webhook_url : str | None
        Webhook target for this feed. Falls back to ``webhook.url``.
    check_interval : int | None
        Polling interval in seconds. Falls back to the default.
    enabled : bool
        Disabled feeds are not polled.
    color : int | None
        Embed colour used by the ``discord`` payload format.
    cookies : dict[str, str] | None
        Cookies sent when fetching the feed.
    initial_limit : int | None
        Override for the first-run notification limit.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    webhook_url: str | None = None
    check_interval: int | None = Field(default=None, gt=0)
    enabled: bool = True
    color: int | None = Field(default=None, ge=0, le=0xFFFFFF)
    cookies: dict[str, str] | None = None
    initial_limit: int | None = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def check_name_not_empty(cls, v: str) -> str:
        """Validate that the feed name is not empty."""
        if not v or not v.strip():
            raise ValueError("Feed name cannot be empty")
        return v

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        """Validate the feed URL."""
        return _check_http_url(v)

    @field_validator("webhook_url")
    @classmethod
    def check_webhook_url(cls, v: str | None) -> str | None:
        """Validate the per-feed webhook URL when present."""
        if v is None or not v.strip():
            return None
        return _check_http_url(v)


class WebhookConfig(BaseModel):
    """
    Webhook delivery configuration.

    Attributes
    ----------
    url : str | None
        Default webhook target for feeds without their own.
    format : str
        Payload layout, ``json`` or ``discord``.
    username : str
        Sender name used by the ``discord`` format.
    timeout : int
        Timeout in seconds for a single delivery attempt.
    max_attempts : int
        Attempts per item before delivery is abandoned.
    backoff_base : float
        Delay in seconds before the first retry. Doubles on each retry.
    backoff_max : float
        Upper bound for a single retry delay.
    commit_on_failure : bool
        Mark an item seen once its attempts are exhausted, so a broken
        target cannot block later items.
    delivery_delay : float
        Pause in seconds between consecutive deliveries of one cycle.
    """

    url: str | None = None
    format: Literal["json", "discord"] = "json"
    username: str = "RSS Webhook"
    timeout: int = Field(default=15, gt=0)
    max_attempts: int = Field(default=5, ge=1)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=60.0, ge=0)
    commit_on_failure: bool = True
    delivery_delay: float = Field(default=0.0, ge=0)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str | None) -> str | None:
        """Validate the default webhook URL when present."""
        if v is None or not v.strip():
            return None
        return _check_http_url(v)


class DefaultsConfig(BaseModel):
    """
    Settings shared by every feed unless it overrides them.

    Attributes
    ----------
    check_interval : int
        Seconds between two polls of a feed.
    request_timeout : int
        Timeout in seconds for a feed request.
    max_retries : int
        Maximum number of attempts for a feed request.
    user_agent : str
        User-Agent header for feed requests.
    proxy : str | None
        Proxy URL for feed and webhook requests.
    initial_limit : int | None
        Items to notify on a feed's first run. None notifies every
        item, 0 only records the current items as seen.
    startup_jitter : float
        Upper bound in seconds for the random delay before a feed's
        first check.
    """

    check_interval: int = Field(default=300, gt=0)
    request_timeout: int = Field(default=30, gt=0)
    max_retries: int = Field(default=3, ge=1)
    user_agent: str = "RSS-Webhook/1.0"
    proxy: str | None = None
    initial_limit: int | None = Field(default=None, ge=0)
    startup_jitter: float = Field(default=10.0, ge=0)


class StorageConfig(BaseModel):
    """
    Seen-item state files.

    Attributes
    ----------
    data_dir : str
        Directory holding one state file per feed.
    retention : int
        Maximum number of seen records kept per feed.
    persist_failure_threshold : int
        Consecutive failed writes before the failure is escalated.
    """

    data_dir: str = "data"
    retention: int = Field(default=500, ge=1)
    persist_failure_threshold: int = Field(default=3, ge=1)


class AppConfig(BaseModel):
    """
    Top-level configuration document.

    Attributes
    ----------
    webhook : WebhookConfig
        Webhook delivery settings.
    defaults : DefaultsConfig
        Per-feed defaults.
    storage : StorageConfig
        Storage settings.
    shutdown_grace : float
        Seconds to let in-flight cycles finish on shutdown.
    feeds : list[FeedConfig]
        Feeds to poll, each identified by its URL.
    """

    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    shutdown_grace: float = Field(default=10.0, ge=0)
    feeds: list[FeedConfig] = Field(default_factory=list)

    @field_validator("feeds")
    @classmethod
    def check_feeds_not_empty(cls, v: list[FeedConfig]) -> list[FeedConfig]:
        """Validate that at least one feed is configured, each URL once."""
        if not v:
            raise ValueError("At least one feed must be configured")
        urls = [feed.url for feed in v]
        duplicates = sorted({url for url in urls if urls.count(url) > 1})
        if duplicates:
            raise ValueError(f"Duplicate feed URL(s): {', '.join(duplicates)}")
        return v

    @model_validator(mode="after")
    def check_webhook_targets(self) -> "AppConfig":
        """Validate that every enabled feed resolves to a webhook target."""
        enabled = [feed for feed in self.feeds if feed.enabled]
        if not enabled:
            raise ValueError("At least one feed must be enabled")
        missing = [feed.name for feed in enabled if not (feed.webhook_url or self.webhook.url)]
        if missing:
            raise ValueError(
                f"No webhook target for feed(s): {', '.join(missing)} "
                "(set webhook.url or a per-feed webhook_url)"
            )
        return self

    def webhook_target(self, feed: FeedConfig) -> str:
        """Return the webhook URL a feed delivers to."""
        target = feed.webhook_url or self.webhook.url
        if target is None:
            raise ConfigError(f"No webhook target for feed '{feed.name}'")
        return target

    def check_interval(self, feed: FeedConfig) -> int:
        """Return the effective polling interval for a feed."""
        return feed.check_interval or self.defaults.check_interval

    def initial_limit(self, feed: FeedConfig) -> int | None:
        """Return the effective first-run notification limit for a feed."""
        if feed.initial_limit is not None:
            return feed.initial_limit
        return self.defaults.initial_limit


def _substitute_env_vars(value: Any) -> Any:
    """
    Recursively substitute environment variables in configuration values.

    Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.

    Parameters
    ----------
    value : Any
        The value to process.

    Returns
    -------
    Any
        The value with environment variables substituted.
    """
    if isinstance(value, str):
        # Pattern matches ${VAR} or ${VAR:-default}
        pattern = r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}"

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            logger.warning(
                "Environment variable '%s' not set and no default provided",
                var_name,
            )
            return match.group(0)

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def load_config(config_path: str | Path, dotenv_path: str | Path | None = None) -> AppConfig:
    """
    Load and validate configuration from a YAML file.

    Variables from a ``.env`` file are loaded into the environment
    first, without overriding variables that are already set.

    Parameters
    ----------
    config_path : str | Path
        Path to the YAML configuration file.
    dotenv_path : str | Path | None
        Optional explicit ``.env`` file. Defaults to searching from the
        current directory.

    Returns
    -------
    AppConfig
        Validated application configuration.

    Raises
    ------
    ConfigError
        If the file is missing, is not valid YAML, or fails validation.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    load_dotenv(dotenv_path=dotenv_path)

    logger.info("Loading configuration from %s", config_path)

    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if raw_config is None:
        raise ConfigError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration root must be a mapping")

    processed_config = _substitute_env_vars(raw_config)

    webhook_section = processed_config.get("webhook") or {}
    if not webhook_section.get("url"):
        env_url = next((os.environ[n] for n in WEBHOOK_URL_ENVS if os.environ.get(n)), None)
        if env_url:
            processed_config["webhook"] = {**webhook_section, "url": env_url}

    try:
        config = AppConfig.model_validate(processed_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.info(
        "Loaded %d feed(s) from %s",
        len(config.feeds),
        config_path,
    )

    return config
