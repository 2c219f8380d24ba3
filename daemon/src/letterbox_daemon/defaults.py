"""Default configuration file and feed list for Letterbox daemon."""

import os
from pathlib import Path
from typing import Dict, List, Optional

from .storage import Storage

DEFAULT_CONFIG_TOML = """# Letterbox Configuration

[daemon]
collect_interval = 60  # minutes between RSS collection runs
max_items_per_feed = 25  # newest entries considered per feed

[storage]
# path = "/custom/path/letterbox.db"  # default: $XDG_DATA_HOME/letterbox/letterbox.db

[summarizer]
max_body_chars = 8000  # raw body prefix sent when no parsed body exists

# AI providers, tried in order until one answers.
# A provider whose api_key is an unset env: reference is skipped.

[[llm.providers]]
name = "openai"
model = "gpt-4o-mini"
api_key = "env:OPENAI_API_KEY"
timeout = 60

# [[llm.providers]]
# name = "anthropic"
# model = "claude-3-haiku-20240307"
# api_key = "env:ANTHROPIC_API_KEY"
# timeout = 60

[[llm.providers]]
name = "ollama"
model = "ollama/llama3.2"  # Must use ollama/ prefix
api_base = "http://localhost:11434"
timeout = 180  # local models are slow; 3 minute ceiling

[notifications]
slack_bot_token = "env:SLACK_BOT_TOKEN"
slack_channel = "env:SLACK_CHANNEL_ID"
bot_marker = "newsletter"  # messages from bots whose id contains this are ignored

# Extra feeds seeded by 'letterbox init-db' (in addition to the built-in list)
# [[feeds]]
# url = "https://example.substack.com/feed"
# name = "Example Newsletter"
"""

DEFAULT_FEEDS: List[Dict[str, str]] = [
    {
        "id": "the-ai-corner",
        "url": "https://newsletter.theaicorner.io/feed",
        "name": "The AI Corner (Substack)",
    },
    {
        "id": "bytebytego",
        "url": "https://blog.bytebytego.com/feed",
        "name": "ByteByteGo (Substack)",
    },
    {
        "id": "data-driven-vc",
        "url": "https://www.datadrivenvc.io/feed",
        "name": "Data Driven VC",
    },
    {"id": "tom-tunguz", "url": "https://tomtunguz.com/feed/", "name": "Tomasz Tunguz Blog"},
    {"id": "ainews", "url": "https://www.latent.space/feed", "name": "Latent Space"},
    {"id": "nates-substack", "url": "https://nate.substack.com/feed", "name": "Nate's Substack"},
    {"id": "the-vc-corner", "url": "https://www.thevccorner.com/feed", "name": "The VC Corner"},
    {"id": "adaline-labs", "url": "https://www.adalinelabs.com/feed", "name": "Adaline Labs"},
    {"id": "confluence-vc", "url": "https://www.confluence.vc/feed", "name": "Confluence VC"},
]


def default_config_dir() -> Path:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config_home) / "letterbox"


def ensure_config(config_dir: Optional[Path] = None) -> Path:
    """Create $XDG_CONFIG_HOME/letterbox/config.toml if it doesn't exist.

    Returns:
        Path to the config file
    """
    config_dir = config_dir or default_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    config_file = config_dir / "config.toml"
    if not config_file.exists():
        config_file.write_text(DEFAULT_CONFIG_TOML)
        print(f"Created {config_file}")
    else:
        print(f"Config already exists: {config_file}")
    return config_file


def seed_default_feeds(
    storage: Storage, extra_feeds: Optional[List[Dict[str, str]]] = None
) -> int:
    """Add the built-in feeds plus any configured ones. Known URLs are left alone.

    Returns:
        Number of feeds now registered
    """
    for feed in DEFAULT_FEEDS + list(extra_feeds or []):
        storage.add_feed(
            url=feed["url"],
            name=feed.get("name") or feed["url"],
            feed_id=feed.get("id"),
        )
    return len(storage.get_all_feeds())


if __name__ == "__main__":
    ensure_config()
