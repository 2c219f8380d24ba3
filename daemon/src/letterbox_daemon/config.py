"""Configuration loading from TOML."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .defaults import default_config_dir

logger = logging.getLogger(__name__)


def expand_env_var(value: Any) -> Any:
    """Resolve "env:NAME" from the environment; unset variables stay unexpanded."""
    if isinstance(value, str) and value.startswith("env:"):
        return os.environ.get(value[4:], value)
    return value


def is_unresolved(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("env:")


@dataclass
class Config:
    """Configuration dataclass with validation.

    Loads from ~/.config/letterbox/config.toml.
    """

    # Daemon settings
    collect_interval: int = 60  # minutes
    max_items_per_feed: int = 25

    # Storage
    db_path: Optional[Path] = None

    # Summarizer
    max_body_chars: int = 8000

    # [[llm.providers]] entries, in fallback order, env: already expanded
    providers: List[Dict[str, Any]] = field(default_factory=list)

    # Notifications
    slack_bot_token: Optional[str] = None
    slack_channel: Optional[str] = None
    bot_marker: str = "newsletter"

    # Extra [[feeds]] to seed
    feeds: List[Dict[str, str]] = field(default_factory=list)

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration values are invalid.
        """
        if self.collect_interval < 1:
            raise ValueError(
                f"collect_interval must be at least 1 minute, got {self.collect_interval}"
            )
        if not 1 <= self.max_items_per_feed <= 100:
            raise ValueError(
                f"max_items_per_feed must be between 1 and 100, got {self.max_items_per_feed}"
            )
        if self.max_body_chars < 1:
            raise ValueError(
                f"max_body_chars must be positive, got {self.max_body_chars}"
            )

        names = set()
        for entry in self.providers:
            if not entry.get("model"):
                raise ValueError(f"LLM provider {entry.get('name', '?')} has no model")
            name = entry.get("name") or entry["model"]
            if name in names:
                raise ValueError(f"Duplicate LLM provider name: {name}")
            names.add(name)
            timeout = entry.get("timeout")
            if timeout is not None and timeout <= 0:
                raise ValueError(f"LLM provider {name} timeout must be positive")

        for feed in self.feeds:
            if not feed.get("url"):
                raise ValueError("Every [[feeds]] entry needs a url")

        if not self.providers:
            logger.warning("No LLM providers configured; summarization will fail")

    @property
    def slack_configured(self) -> bool:
        return bool(
            self.slack_bot_token
            and self.slack_channel
            and not is_unresolved(self.slack_bot_token)
            and not is_unresolved(self.slack_channel)
        )

    @classmethod
    def from_file(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from TOML file.

        Args:
            config_path: Optional path to config file.
                        Defaults to $XDG_CONFIG_HOME/letterbox/config.toml

        Returns:
            Config instance with loaded values.
        """
        if config_path is None:
            config_path = default_config_dir() / "config.toml"

        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Run 'letterbox init-db' to create the default configuration."
            )

        try:
            with open(config_path, "rb") as f:
                config_dict = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ValueError(f"Failed to parse config file {config_path}: {e}")

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "Config":
        daemon = config_dict.get("daemon", {})
        storage = config_dict.get("storage", {})
        summarizer = config_dict.get("summarizer", {})
        llm = config_dict.get("llm", {})
        notifications = config_dict.get("notifications", {})

        providers = [
            {key: expand_env_var(value) for key, value in entry.items()}
            for entry in llm.get("providers", [])
        ]

        db_path = storage.get("path")

        config = cls(
            collect_interval=daemon.get("collect_interval", 60),
            max_items_per_feed=daemon.get("max_items_per_feed", 25),
            db_path=Path(db_path).expanduser() if db_path else None,
            max_body_chars=summarizer.get("max_body_chars", 8000),
            providers=providers,
            slack_bot_token=expand_env_var(notifications.get("slack_bot_token")),
            slack_channel=expand_env_var(notifications.get("slack_channel")),
            bot_marker=notifications.get("bot_marker", "newsletter"),
            feeds=list(config_dict.get("feeds", [])),
        )
        config.validate()
        return config
