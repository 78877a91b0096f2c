"""Tests for settings loading."""

from __future__ import annotations

from tandem_nudge.config import API_KEY_ENV, NudgeSettings, load_config, load_settings


def test_missing_file_gives_defaults(tmp_path):
    """A missing config file yields the built-in defaults."""
    assert load_config(str(tmp_path / "nope.yaml")) == {}
    settings = load_settings(str(tmp_path / "nope.yaml"))
    assert settings.timing.min_wait == 15.0
    assert settings.timing.max_wait == 45.0
    assert settings.escalation.thresholds == {1: 2, 2: 4, 3: 6}
    assert settings.server.port == 8765
    assert settings.server.session_idle_timeout == 1800.0
    assert settings.delivery.response_url is None


def test_empty_file_gives_defaults(tmp_path):
    """An empty config file loads as an empty dict."""
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == {}


def test_yaml_sections_are_applied(tmp_path, monkeypatch):
    """Values from each YAML section override the defaults."""
    monkeypatch.delenv(API_KEY_ENV, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "timing:\n"
        "  min_wait: 5\n"
        "  poll_interval: 1\n"
        "escalation:\n"
        "  thresholds:\n"
        "    '1': 3\n"
        "    2: 5\n"
        "    3: 8\n"
        "  cooldowns:\n"
        "    0: 1\n"
        "model:\n"
        "  api_key: sk-test\n"
        "  max_tokens: 60\n"
        "server:\n"
        "  port: 9001\n"
        "  session_idle_timeout: 600\n"
        "delivery:\n"
        "  response_url: http://127.0.0.1:9000/nudges\n"
        "batch_history: 4\n"
    )
    settings = load_settings(str(path))

    assert settings.timing.min_wait == 5
    assert settings.timing.poll_interval == 1
    assert settings.escalation.thresholds == {1: 3, 2: 5, 3: 8}
    assert settings.escalation.cooldowns == {0: 1.0}
    assert settings.model.api_key == "sk-test"
    assert settings.model.max_tokens == 60
    assert settings.server.port == 9001
    assert settings.server.session_idle_timeout == 600
    assert settings.delivery.response_url == "http://127.0.0.1:9000/nudges"
    assert settings.batch_history == 4


def test_api_key_env_fallback(monkeypatch):
    """The API key comes from the environment unless the file sets one."""
    monkeypatch.setenv(API_KEY_ENV, "sk-from-env")
    assert NudgeSettings.from_dict({}).model.api_key == "sk-from-env"
    explicit = NudgeSettings.from_dict({"model": {"api_key": "sk-file"}})
    assert explicit.model.api_key == "sk-file"


def test_from_dict_none():
    """None is treated as an empty config."""
    assert NudgeSettings.from_dict(None).batch_history == 10
