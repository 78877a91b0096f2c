"""Settings for the nudge service, loaded from a YAML file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.tandem/config.yaml"
API_KEY_ENV = "ANTHROPIC_API_KEY"


@dataclass
class TimingSettings:
    poll_interval: float = 5.0
    analyze_interval: float = 5.0
    min_wait: float = 15.0
    max_wait: float = 45.0
    thought_complete: float = 10.0
    buffer_window: float = 120.0


@dataclass
class EscalationSettings:
    thresholds: dict[int, int] = field(default_factory=lambda: {1: 2, 2: 4, 3: 6})
    cooldowns: dict[int, float] = field(
        default_factory=lambda: {0: 10.0, 1: 15.0, 2: 20.0, 3: 30.0}
    )
    success_cooldown: float = 5.0
    math_cooldown_cap: float = 8.0
    decay_after: float = 300.0
    history_size: int = 20


@dataclass
class ModelSettings:
    api_url: str = "https://api.anthropic.com/v1/messages"
    model: str = "claude-3-haiku-20240307"
    api_version: str = "2023-06-01"
    max_tokens: int = 150
    timeout: float = 30.0
    api_key: str | None = None


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8765
    # sessions without any request for this long are stopped and dropped
    session_idle_timeout: float = 1800.0
    sweep_interval: float = 60.0


@dataclass
class DeliverySettings:
    response_url: str | None = None
    outbox_size: int = 20


@dataclass
class NudgeSettings:
    timing: TimingSettings = field(default_factory=TimingSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    model: ModelSettings = field(default_factory=ModelSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    batch_history: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NudgeSettings:
        data = data or {}
        esc = dict(data.get("escalation") or {})
        if "thresholds" in esc:
            esc["thresholds"] = {int(k): int(v) for k, v in esc["thresholds"].items()}
        if "cooldowns" in esc:
            esc["cooldowns"] = {int(k): float(v) for k, v in esc["cooldowns"].items()}

        model = ModelSettings(**(data.get("model") or {}))
        if not model.api_key:
            model.api_key = os.environ.get(API_KEY_ENV)

        return cls(
            timing=TimingSettings(**(data.get("timing") or {})),
            escalation=EscalationSettings(**esc),
            model=model,
            server=ServerSettings(**(data.get("server") or {})),
            delivery=DeliverySettings(**(data.get("delivery") or {})),
            batch_history=int(data.get("batch_history", 10)),
        )


def load_config(config_path: str) -> dict[str, Any]:
    """Load the YAML config, falling back to an empty dict if missing."""
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning("Config file not found: %s, using defaults", path)
        return {}
    return yaml.safe_load(path.read_text()) or {}


def load_settings(config_path: str = DEFAULT_CONFIG_PATH) -> NudgeSettings:
    return NudgeSettings.from_dict(load_config(config_path))
