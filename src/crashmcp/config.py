"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem, plus
``load_config()`` which overlays ``CRASH_*`` environment variables.

Strict mode is a bundle rather than independent state: a strict
``ValidationConfig`` always requires both prefixes and forbids custom
purposes, and ``with_strict_mode()`` is the way to toggle it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("console", "json", "markdown")


@dataclass(frozen=True)
class ValidationConfig:
    """Textual validation rules applied to every step."""

    require_thought_prefix: bool = False
    require_rationale_prefix: bool = False
    allow_custom_purpose: bool = True
    strict_mode: bool = False

    def __post_init__(self) -> None:
        if self.strict_mode:
            object.__setattr__(self, "require_thought_prefix", True)
            object.__setattr__(self, "require_rationale_prefix", True)
            object.__setattr__(self, "allow_custom_purpose", False)

    def with_strict_mode(self, enabled: bool) -> ValidationConfig:
        """Return a copy with strict mode toggled and its flags re-derived."""
        if enabled:
            return ValidationConfig(strict_mode=True)
        return ValidationConfig()


@dataclass(frozen=True)
class FeatureConfig:
    """Feature flags for the optional step behaviours."""

    enable_revisions: bool = True
    enable_branching: bool = True
    enable_confidence: bool = True
    enable_structured_actions: bool = True
    enable_sessions: bool = False


@dataclass(frozen=True)
class DisplayConfig:
    """Settings for the operator-facing step rendering."""

    color_output: bool = True
    output_format: str = "console"

    def __post_init__(self) -> None:
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"output_format must be one of {', '.join(OUTPUT_FORMATS)}"
            )


@dataclass(frozen=True)
class SystemConfig:
    """Resource bounds for histories, branches and sessions."""

    max_history_size: int = 100
    max_branch_depth: int = 5
    # Minutes of inactivity before a session is eligible for removal.
    session_timeout: int = 60

    def __post_init__(self) -> None:
        for name in ("max_history_size", "max_branch_depth", "session_timeout"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")


@dataclass(frozen=True)
class CrashConfig:
    """Top-level configuration consumed by the step engine."""

    validation: ValidationConfig = field(default_factory=ValidationConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    def with_strict_mode(self, enabled: bool) -> CrashConfig:
        """Return a copy with the strict-mode bundle toggled."""
        return replace(self, validation=self.validation.with_strict_mode(enabled))


# ---------------------------------------------------------------------------
# Environment loading
# ---------------------------------------------------------------------------


def _env_flag(environ: Mapping[str, str], name: str) -> bool | None:
    raw = environ.get(name)
    if raw is None:
        return None
    return raw.strip().lower() == "true"


def _env_positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if value < 1:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value


def load_config(environ: Mapping[str, str] | None = None) -> CrashConfig:
    """Build a ``CrashConfig`` from defaults overlaid with environment values.

    Recognised variables: ``CRASH_STRICT_MODE``, ``MAX_HISTORY_SIZE``,
    ``CRASH_OUTPUT_FORMAT``, ``CRASH_NO_COLOR``, ``CRASH_SESSION_TIMEOUT``,
    ``CRASH_MAX_BRANCH_DEPTH`` and ``CRASH_ENABLE_SESSIONS``.  Invalid
    values fall back to the defaults.
    """
    env = os.environ if environ is None else environ
    defaults = CrashConfig()

    validation = defaults.validation.with_strict_mode(
        _env_flag(env, "CRASH_STRICT_MODE") is True
    )

    features = defaults.features
    enable_sessions = _env_flag(env, "CRASH_ENABLE_SESSIONS")
    if enable_sessions is not None:
        features = replace(features, enable_sessions=enable_sessions)

    output_format = defaults.display.output_format
    raw_format = env.get("CRASH_OUTPUT_FORMAT")
    if raw_format is not None:
        candidate = raw_format.strip().lower()
        if candidate in OUTPUT_FORMATS:
            output_format = candidate
        else:
            logger.warning(
                "Invalid CRASH_OUTPUT_FORMAT=%r, using %r", raw_format, output_format
            )
    display = DisplayConfig(
        color_output=_env_flag(env, "CRASH_NO_COLOR") is not True,
        output_format=output_format,
    )

    system = SystemConfig(
        max_history_size=_env_positive_int(
            env, "MAX_HISTORY_SIZE", defaults.system.max_history_size
        ),
        max_branch_depth=_env_positive_int(
            env, "CRASH_MAX_BRANCH_DEPTH", defaults.system.max_branch_depth
        ),
        session_timeout=_env_positive_int(
            env, "CRASH_SESSION_TIMEOUT", defaults.system.session_timeout
        ),
    )

    return CrashConfig(
        validation=validation,
        features=features,
        display=display,
        system=system,
    )
