"""Configuration for mediaflow.

Configuration is stored at ~/.mediaflow/config.toml and organized into
sections.

Configuration loading priority:
1. Environment variables (highest)
2. Config file (~/.mediaflow/config.toml, or $MEDIAFLOW_CONFIG)
3. Defaults (lowest)

Sections:
    [agent]        - Orchestration loop limits and group-order enforcement
    [recovery]     - Default recovery policy for unregistered tools
    [recovery.tools.<name>] - Per-tool policy overrides
    [checkpoints]  - Checkpoint cap and timeout
    [ui]           - Logging level
    [store]        - Session snapshot directory

Components never read the global config themselves; build it once and
pass the pieces in:

    config = get_config()
    executor = AgentExecutor.from_config(config, model, registry)
    gate = config.checkpoints.gate()
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .checkpoints import DEFAULT_MAX_CHECKPOINTS, DEFAULT_TIMEOUT, CheckpointGate
from .recovery.policies import PolicyTable, RecoveryPolicy

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".mediaflow"
DEFAULT_CONFIG_FILE = "config.toml"

# Singleton instance
_config: MediaflowConfig | None = None


@dataclass
class AgentConfig:
    """Orchestration loop settings.

    Attributes:
        max_iterations: Hard cap on model turns per production.
        warning_margin: Warn when this many iterations remain.
        enforce_group_order: Block tools whose preceding groups are incomplete.
        planning_tools: Tools whose result may carry a new session id.
    """

    max_iterations: int = 20
    warning_margin: int = 2
    enforce_group_order: bool = True
    planning_tools: list[str] = field(
        default_factory=lambda: ["plan_video", "create_storyboard", "generate_breakdown"]
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentConfig:
        """Create from dictionary."""
        default = cls()
        return cls(
            max_iterations=int(data.get("max_iterations", 20)),
            warning_margin=int(data.get("warning_margin", 2)),
            enforce_group_order=data.get("enforce_group_order", True),
            planning_tools=list(data.get("planning_tools", default.planning_tools)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_iterations": self.max_iterations,
            "warning_margin": self.warning_margin,
            "enforce_group_order": self.enforce_group_order,
            "planning_tools": list(self.planning_tools),
        }


@dataclass
class RecoveryConfig:
    """Recovery policy settings.

    Attributes:
        default: Policy fields for tools without a built-in policy.
        tools: Per-tool overrides merged on top of the built-in table.
    """

    default: dict[str, Any] = field(default_factory=lambda: RecoveryPolicy(tool="*").to_dict())
    tools: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecoveryConfig:
        """Create from dictionary."""
        default = RecoveryPolicy(tool="*").to_dict()
        default.update({k: v for k, v in data.items() if k != "tools"})
        return cls(default=default, tools=dict(data.get("tools", {})))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result = {k: v for k, v in self.default.items() if v is not None}
        if self.tools:
            result["tools"] = self.tools
        return result

    def policy_table(self) -> PolicyTable:
        return PolicyTable.from_config(self.default, self.tools)


@dataclass
class CheckpointConfig:
    """Checkpoint gate settings.

    Attributes:
        max_checkpoints: Checkpoints created before the rest auto-approve.
        timeout: Seconds before a pending checkpoint auto-approves.
    """

    max_checkpoints: int = DEFAULT_MAX_CHECKPOINTS
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckpointConfig:
        """Create from dictionary."""
        return cls(
            max_checkpoints=int(data.get("max_checkpoints", DEFAULT_MAX_CHECKPOINTS)),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"max_checkpoints": self.max_checkpoints, "timeout": self.timeout}

    def gate(self, **kwargs: Any) -> CheckpointGate:
        return CheckpointGate(max_checkpoints=self.max_checkpoints, default_timeout=self.timeout, **kwargs)


@dataclass
class UIConfig:
    """Display settings.

    Attributes:
        log_level: Logging level (debug, info, warning, error).
    """

    log_level: str = "info"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UIConfig:
        """Create from dictionary."""
        return cls(log_level=data.get("log_level", "info"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"log_level": self.log_level}


@dataclass
class StoreConfig:
    """Session store settings.

    Attributes:
        snapshot_dir: Directory for JSON session snapshots; empty disables them.
    """

    snapshot_dir: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        """Create from dictionary."""
        return cls(snapshot_dir=data.get("snapshot_dir", ""))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"snapshot_dir": self.snapshot_dir}


@dataclass
class MediaflowConfig:
    """Complete mediaflow configuration."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    # Metadata
    config_path: Path | None = None
    last_modified: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MediaflowConfig:
        """Create configuration from dictionary."""
        return cls(
            agent=AgentConfig.from_dict(data.get("agent", {})),
            recovery=RecoveryConfig.from_dict(data.get("recovery", {})),
            checkpoints=CheckpointConfig.from_dict(data.get("checkpoints", {})),
            ui=UIConfig.from_dict(data.get("ui", {})),
            store=StoreConfig.from_dict(data.get("store", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "agent": self.agent.to_dict(),
            "recovery": self.recovery.to_dict(),
            "checkpoints": self.checkpoints.to_dict(),
            "ui": self.ui.to_dict(),
            "store": self.store.to_dict(),
        }

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        _override("MEDIAFLOW_MAX_ITERATIONS", int, lambda v: setattr(self.agent, "max_iterations", v))
        _override("MEDIAFLOW_MAX_CHECKPOINTS", int, lambda v: setattr(self.checkpoints, "max_checkpoints", v))
        _override("MEDIAFLOW_CHECKPOINT_TIMEOUT", float, lambda v: setattr(self.checkpoints, "timeout", v))
        _override("MEDIAFLOW_LOG_LEVEL", str, lambda v: setattr(self.ui, "log_level", v.lower()))
        _override("MEDIAFLOW_SNAPSHOT_DIR", str, lambda v: setattr(self.store, "snapshot_dir", v))

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key path.

        Example:
            config.get('agent.max_iterations')  # Returns 20
        """
        obj: Any = self
        for part in key.split("."):
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            elif not isinstance(obj, dict) and hasattr(obj, part):
                obj = getattr(obj, part)
            else:
                return default
        return obj


def _override(name: str, convert: Callable[[str], Any], apply: Callable[[Any], None]) -> None:
    raw = os.environ.get(name)
    if not raw:
        return
    try:
        apply(convert(raw))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")


def get_config_path() -> Path:
    """Get the path to the configuration file."""
    if custom_path := os.environ.get("MEDIAFLOW_CONFIG"):
        return Path(custom_path)
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> MediaflowConfig:
    """Load configuration from TOML file.

    Invalid files are logged and replaced by defaults.

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        MediaflowConfig with settings from file and environment.
    """
    path = config_path or get_config_path()

    config = MediaflowConfig()
    config.config_path = path

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            config = MediaflowConfig.from_dict(data)
            config.config_path = path
            config.last_modified = datetime.fromtimestamp(path.stat().st_mtime)

        except (OSError, tomllib.TOMLDecodeError, ValueError, TypeError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
            config = MediaflowConfig()
            config.config_path = path

    config.apply_env_overrides()
    return config


def get_config() -> MediaflowConfig:
    """Get the singleton configuration instance.

    Loads from file on first call, returns cached instance after.
    Use reload_config() to force reload.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> MediaflowConfig:
    """Force reload configuration from file."""
    global _config
    _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton to force reload on next access."""
    global _config
    _config = None
