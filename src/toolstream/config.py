"""Configuration for toolstream.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./toolstream.yaml``
  3. ``~/.config/toolstream/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProfileSpec:
    """A named chat-completion provider profile.

    ``api_type`` selects the wire flavour: ``"openai"`` (``/chat/completions``),
    ``"dashscope"`` (OpenAI-compatible mode plus the ``X-DashScope-SSE``
    header) or ``"ollama"`` (native ``/api/chat`` with NDJSON streaming).
    """

    provider: str = "dashscope"
    url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key: str = "no-key"
    api_type: str = "dashscope"
    model: str = "qwen-plus"
    extra_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnSpec:
    """Per-turn behaviour of the orchestrator."""

    max_round_trips: int = 5
    stream: bool = True
    temperature: float = 0.5
    top_p: float = 1.0
    max_tokens: int = 4096
    request_timeout: float = 60.0


@dataclass
class ToolstreamConfig:
    """Top-level config for toolstream."""

    # Active profile name
    profile: str = "default"

    # Named profiles
    profiles: dict[str, ProfileSpec] = field(
        default_factory=lambda: {"default": ProfileSpec()}
    )

    turn: TurnSpec = field(default_factory=TurnSpec)

    # Raw plugin records, validated by the tool registry
    plugins: list[dict[str, Any]] = field(default_factory=list)

    @property
    def active_profile(self) -> ProfileSpec:
        return self.profiles.get(self.profile, ProfileSpec())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./toolstream.yaml"),
    Path.home() / ".config" / "toolstream" / "config.yaml",
]


def _parse_profile(raw: dict[str, Any]) -> ProfileSpec:
    defaults = ProfileSpec()
    return ProfileSpec(
        provider=raw.get("provider", defaults.provider),
        url=raw.get("url", defaults.url),
        api_key=raw.get("api_key", defaults.api_key),
        api_type=raw.get("api_type", defaults.api_type),
        model=raw.get("model", defaults.model),
        extra_params=raw.get("extra_params", {}),
    )


def _parse_turn(raw: dict[str, Any] | None) -> TurnSpec:
    if not raw:
        return TurnSpec()
    known = {
        k: v for k, v in raw.items()
        if v is not None and k in TurnSpec.__dataclass_fields__
    }
    unknown = set(raw) - set(TurnSpec.__dataclass_fields__)
    if unknown:
        _logger.warning("Ignoring unknown turn settings: %s", ", ".join(sorted(unknown)))
    return TurnSpec(**known)


def _parse_plugins(raw: Any, base_dir: Path) -> list[dict[str, Any]]:
    """Inline ``path`` references so every record carries its ``content``."""
    if not raw:
        return []
    plugins: list[dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            _logger.warning("Skipping malformed plugin entry: %r", entry)
            continue
        record = dict(entry)
        path = record.pop("path", None)
        if path and "content" not in record:
            doc_path = Path(path).expanduser()
            if not doc_path.is_absolute():
                doc_path = base_dir / doc_path
            try:
                record["content"] = doc_path.read_text()
            except OSError as e:
                _logger.warning("Cannot read plugin document %s: %s", doc_path, e)
                continue
        plugins.append(record)
    return plugins


def load_config(path: str | Path | None = None) -> ToolstreamConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ToolstreamConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return ToolstreamConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return ToolstreamConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    profiles: dict[str, ProfileSpec] = {}
    for name, praw in (raw.get("profiles") or {}).items():
        profiles[name] = _parse_profile(praw or {})
    if not profiles:
        profiles["default"] = ProfileSpec()

    return ToolstreamConfig(
        profile=raw.get("profile", next(iter(profiles))),
        profiles=profiles,
        turn=_parse_turn(raw.get("turn")),
        plugins=_parse_plugins(raw.get("plugins"), config_path.parent),
    )
