"""Configuration loading from environment variables and clancy.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".config" / "clancy"
_CONFIG_FILENAME = "clancy.toml"
_CONVERSATION_MODES = ("fresh", "summary", "full")


@dataclass
class ExtractionConfig:
    """Note extraction (Anthropic API) configuration."""

    api_key_env: str = "ANTHROPIC_API_KEY"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    timeout: int = 60
    max_transcript_tokens: int = 100_000
    include_tool_outputs: bool = True


@dataclass
class ContextConfig:
    """Context compilation configuration."""

    max_context_tokens: int = 12_000
    include_parent_notes: bool = True
    conversation_mode: str = "summary"


@dataclass
class ClancyConfig:
    """Top-level clancy configuration."""

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    home: Path = _DEFAULT_HOME
    log_level: str = "INFO"

    @property
    def projects_dir(self) -> Path:
        return self.home / "projects"


def _conversation_mode(value: str) -> str:
    value = value.strip().lower()
    return value if value in _CONVERSATION_MODES else "summary"


def load_config(config_path: Path | None = None) -> ClancyConfig:
    """Load configuration from environment variables and optional clancy.toml.

    Priority: environment variables > clancy.toml > defaults.
    """
    home = Path(os.getenv("CLANCY_HOME", str(_DEFAULT_HOME)))

    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and the clancy home
        for candidate in [Path.cwd() / _CONFIG_FILENAME, home / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    extraction_data = file_data.get("extraction", {})
    context_data = file_data.get("context", {})

    config = ClancyConfig(
        extraction=ExtractionConfig(
            api_key_env=extraction_data.get("api_key_env", "ANTHROPIC_API_KEY"),
            model=os.getenv(
                "CLANCY_MODEL", extraction_data.get("model", "claude-sonnet-4-20250514")
            ),
            max_tokens=int(extraction_data.get("max_tokens", 2048)),
            timeout=int(os.getenv("CLANCY_TIMEOUT", extraction_data.get("timeout", 60))),
            max_transcript_tokens=int(extraction_data.get("max_transcript_tokens", 100_000)),
            include_tool_outputs=bool(extraction_data.get("include_tool_outputs", True)),
        ),
        context=ContextConfig(
            max_context_tokens=int(
                os.getenv(
                    "CLANCY_MAX_CONTEXT_TOKENS", context_data.get("max_context_tokens", 12_000)
                )
            ),
            include_parent_notes=bool(context_data.get("include_parent_notes", True)),
            conversation_mode=_conversation_mode(
                os.getenv(
                    "CLANCY_CONVERSATION_MODE", context_data.get("conversation_mode", "summary")
                )
            ),
        ),
        home=Path(os.getenv("CLANCY_HOME", file_data.get("home", str(_DEFAULT_HOME)))).expanduser(),
        log_level=os.getenv("CLANCY_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
