"""Recovery policy table.

Each tool name maps to an immutable RecoveryPolicy describing its retry
budget, backoff curve, fallback action, and whether the production may
continue past a failure. Unregistered tool names resolve to the table's
default policy.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class RecoveryPolicy:
    """Retry and fallback configuration for a tool.

    Attributes:
        tool: Tool name this policy applies to.
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        initial_delay: Delay before the first retry, in seconds.
        backoff_factor: Multiplier applied to the delay after each retry.
        max_delay: Cap for the backoff delay, in seconds.
        fallback_action: Named fallback handler, or None for no fallback.
        continue_on_failure: Whether the production may continue if this tool fails.
    """

    tool: str
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 10.0
    fallback_action: str | None = None
    continue_on_failure: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_factor < 1.0:
            raise ValueError(f"backoff_factor must be >= 1.0, got {self.backoff_factor}")

    def delays(self) -> list[float]:
        """Backoff schedule: the delay slept before each retry."""
        schedule: list[float] = []
        delay = min(self.initial_delay, self.max_delay)
        for _ in range(self.max_retries):
            schedule.append(delay)
            delay = min(delay * self.backoff_factor, self.max_delay)
        return schedule

    @classmethod
    def from_dict(cls, tool: str, data: Mapping[str, Any]) -> RecoveryPolicy:
        """Create from dictionary (e.g. a [recovery.tools.<name>] section)."""
        return cls(
            tool=tool,
            max_retries=int(data.get("max_retries", 3)),
            initial_delay=float(data.get("initial_delay", 1.0)),
            backoff_factor=float(data.get("backoff_factor", 2.0)),
            max_delay=float(data.get("max_delay", 10.0)),
            fallback_action=data.get("fallback_action") or None,
            continue_on_failure=bool(data.get("continue_on_failure", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "backoff_factor": self.backoff_factor,
            "max_delay": self.max_delay,
            "fallback_action": self.fallback_action,
            "continue_on_failure": self.continue_on_failure,
        }


# Pre-configured policies for the production tools
BUILTIN_POLICIES: tuple[RecoveryPolicy, ...] = (
    # CONTENT
    RecoveryPolicy("plan_video", 3, 1.0, 2.0, 10.0, None, False),
    RecoveryPolicy("narrate_scenes", 3, 1.0, 2.0, 10.0, None, False),
    RecoveryPolicy("validate_plan", 2, 0.5, 2.0, 5.0, "assume_valid", True),
    # MEDIA
    RecoveryPolicy("generate_visuals", 3, 2.0, 2.0, 15.0, "use_placeholder", True),
    RecoveryPolicy("animate_image", 2, 1.0, 2.0, 10.0, "use_static_image", True),
    RecoveryPolicy("generate_music", 2, 2.0, 2.0, 15.0, None, True),
    RecoveryPolicy("plan_sfx", 2, 1.0, 2.0, 8.0, None, True),
    # ENHANCEMENT
    RecoveryPolicy("remove_background", 2, 1.0, 2.0, 8.0, "keep_original_image", True),
    RecoveryPolicy("restyle_image", 2, 1.0, 2.0, 8.0, "keep_original_image", True),
    RecoveryPolicy("mix_audio_tracks", 2, 1.0, 2.0, 8.0, "use_narration_only", True),
    # EXPORT
    RecoveryPolicy("generate_subtitles", 2, 0.5, 2.0, 5.0, "skip_subtitles", True),
    RecoveryPolicy("export_final_video", 2, 2.0, 2.0, 15.0, "provide_asset_bundle", False),
    # IMPORT
    RecoveryPolicy("import_youtube_content", 3, 2.0, 2.0, 15.0, None, False),
    RecoveryPolicy("transcribe_audio_file", 3, 1.0, 2.0, 10.0, None, False),
)


class PolicyTable:
    """Lookup table of recovery policies keyed by tool name.

    Built once at startup and passed to the components that need it.
    """

    def __init__(
        self,
        policies: Iterable[RecoveryPolicy] = BUILTIN_POLICIES,
        default: RecoveryPolicy | None = None,
    ):
        self._policies: dict[str, RecoveryPolicy] = {p.tool: p for p in policies}
        self._default = default or RecoveryPolicy(tool="*")

    @classmethod
    def from_config(
        cls,
        default: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> PolicyTable:
        """Build the built-in table with configured defaults and per-tool overrides.

        Overrides are merged field by field on top of the built-in policy
        for that tool (or on top of the default for tools not built in).
        """
        default_policy = RecoveryPolicy.from_dict("*", default or {})
        table = cls(BUILTIN_POLICIES, default=default_policy)

        for tool, values in (overrides or {}).items():
            base = table.get_recovery_strategy(tool).to_dict()
            base.update(values)
            table.set(RecoveryPolicy.from_dict(tool, base))

        return table

    def get_recovery_strategy(self, tool_name: str) -> RecoveryPolicy:
        """Get the recovery policy for a tool, or the default if not configured."""
        policy = self._policies.get(tool_name)
        if policy is not None:
            return policy
        return replace(self._default, tool=tool_name)

    def set(self, policy: RecoveryPolicy) -> None:
        """Register or replace the policy for ``policy.tool``."""
        self._policies[policy.tool] = policy

    @property
    def default(self) -> RecoveryPolicy:
        return self._default

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._policies

    def __iter__(self):
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)
