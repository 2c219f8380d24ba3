"""Unit tests for configuration loading and validation."""

import tomllib
from pathlib import Path

import pytest

from letterbox_daemon.config import Config, expand_env_var, is_unresolved
from letterbox_daemon.defaults import DEFAULT_CONFIG_TOML, ensure_config


def test_expand_env_var(monkeypatch) -> None:
    monkeypatch.setenv("LETTERBOX_TOKEN", "secret")
    monkeypatch.delenv("LETTERBOX_MISSING", raising=False)

    assert expand_env_var("env:LETTERBOX_TOKEN") == "secret"
    assert expand_env_var("env:LETTERBOX_MISSING") == "env:LETTERBOX_MISSING"
    assert expand_env_var("plain") == "plain"
    assert expand_env_var(30) == 30
    assert is_unresolved("env:LETTERBOX_MISSING")
    assert not is_unresolved("secret")


def test_from_dict_reads_all_sections(monkeypatch) -> None:
    monkeypatch.setenv("LETTERBOX_OPENAI_KEY", "sk-test")
    config = Config.from_dict(
        {
            "daemon": {"collect_interval": 15, "max_items_per_feed": 5},
            "storage": {"path": "/tmp/letterbox-test.db"},
            "summarizer": {"max_body_chars": 2000},
            "llm": {
                "providers": [
                    {"name": "openai", "model": "gpt-4o-mini", "api_key": "env:LETTERBOX_OPENAI_KEY"},
                    {"name": "ollama", "model": "ollama/llama3.2", "timeout": 180},
                ]
            },
            "notifications": {"slack_bot_token": "xoxb-1", "slack_channel": "C1"},
            "feeds": [{"url": "https://example.com/feed", "name": "Example"}],
        }
    )

    assert config.collect_interval == 15
    assert config.max_items_per_feed == 5
    assert config.db_path == Path("/tmp/letterbox-test.db")
    assert config.max_body_chars == 2000
    assert config.providers[0]["api_key"] == "sk-test"
    assert config.providers[1]["timeout"] == 180
    assert config.slack_configured
    assert config.feeds == [{"url": "https://example.com/feed", "name": "Example"}]


def test_defaults_for_empty_dict() -> None:
    config = Config.from_dict({})

    assert config.collect_interval == 60
    assert config.max_items_per_feed == 25
    assert config.db_path is None
    assert config.providers == []
    assert config.bot_marker == "newsletter"
    assert not config.slack_configured


def test_unresolved_slack_token_is_not_configured(monkeypatch) -> None:
    monkeypatch.delenv("LETTERBOX_SLACK", raising=False)

    config = Config.from_dict(
        {"notifications": {"slack_bot_token": "env:LETTERBOX_SLACK", "slack_channel": "C1"}}
    )

    assert not config.slack_configured


@pytest.mark.parametrize(
    "config_dict,message",
    [
        ({"daemon": {"collect_interval": 0}}, "collect_interval"),
        ({"daemon": {"max_items_per_feed": 500}}, "max_items_per_feed"),
        ({"summarizer": {"max_body_chars": 0}}, "max_body_chars"),
        ({"llm": {"providers": [{"name": "x"}]}}, "no model"),
        (
            {"llm": {"providers": [{"name": "x", "model": "a"}, {"name": "x", "model": "b"}]}},
            "Duplicate",
        ),
        ({"llm": {"providers": [{"model": "a", "timeout": 0}]}}, "timeout"),
        ({"feeds": [{"name": "no url"}]}, "url"),
    ],
)
def test_validation_errors(config_dict, message) -> None:
    with pytest.raises(ValueError, match=message):
        Config.from_dict(config_dict)


def test_from_file_missing(tmp_path) -> None:
    with pytest.raises(FileNotFoundError, match="init-db"):
        Config.from_file(tmp_path / "missing.toml")


def test_from_file_invalid_toml(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[daemon\ncollect_interval = ")

    with pytest.raises(ValueError, match="Failed to parse"):
        Config.from_file(path)


def test_default_config_is_loadable(tmp_path, monkeypatch) -> None:
    """Test the generated config file parses and validates."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    path = ensure_config(tmp_path / "letterbox")
    config = Config.from_file(path)

    assert path.read_text() == DEFAULT_CONFIG_TOML
    assert [p["name"] for p in config.providers] == ["openai", "ollama"]
    assert config.providers[0]["api_key"] == "env:OPENAI_API_KEY"
    assert "feeds" not in tomllib.loads(DEFAULT_CONFIG_TOML)


def test_ensure_config_keeps_existing_file(tmp_path) -> None:
    config_dir = tmp_path / "letterbox"
    config_dir.mkdir()
    (config_dir / "config.toml").write_text("[daemon]\ncollect_interval = 5\n")

    path = ensure_config(config_dir)

    assert Config.from_file(path).collect_interval == 5
