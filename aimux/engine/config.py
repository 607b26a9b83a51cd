"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via AIMUX_* env vars.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from . import paths

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float | None:
    """Parse ``90``, ``90s``, ``30m`` or ``1h`` into seconds.

    Returns None for unparsable or non-positive values.
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        return None
    seconds = float(match.group("value")) * _UNIT_SECONDS[match.group("unit") or "s"]
    if seconds <= 0:
        return None
    return seconds


@dataclass
class EngineConfig:
    """Engine policy and limits."""

    # Storage root for conversations, config.yaml and templates
    root: Path = field(default_factory=paths.default_root)

    # Call-graph policy
    max_depth: int = 3
    terminal_role: str = "engineer"

    # Whole-process deadline for one call
    call_timeout_seconds: float = 30 * 60.0
    # Wait for natural exit on close before killing the process group
    close_grace_seconds: float = 5.0

    # Stream limits
    max_line_length: int = 1024 * 1024
    max_output_size: int = 10 * 1024 * 1024

    # Cross-conversation context lookup (AIREF_CID)
    reference_genus: str = "claude"
    reference_personas: list[str] = field(
        default_factory=lambda: ["", "architect", "engineer"],
    )
    reference_limit: int = 10

    # Logging
    log_level: str = "INFO"

    def timeout_for(self, extensions: dict[str, str]) -> float:
        """Per-call timeout, honoring an ``AITIMEOUT`` override."""
        override = extensions.get("AITIMEOUT", "")
        if override:
            seconds = parse_duration(override)
            if seconds is not None:
                return seconds
            logger.debug("Ignoring invalid AITIMEOUT=%r", override)
        return self.call_timeout_seconds

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from AIMUX_* environment variables."""
        aimux_vars = {
            k: v for k, v in os.environ.items() if k.startswith("AIMUX_")
        }
        if aimux_vars:
            logger.info(
                "EngineConfig.from_env: AIMUX_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(aimux_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no AIMUX_* env vars set, using defaults")

        root_env = os.getenv("AIMUX_HOME")
        timeout_env = parse_duration(os.getenv("AIMUX_TIMEOUT", ""))
        grace_env = parse_duration(os.getenv("AIMUX_CLOSE_GRACE", ""))

        config = cls(
            root=Path(root_env).expanduser() if root_env else paths.default_root(),
            max_depth=int(os.getenv(
                "AIMUX_MAX_DEPTH", str(cls.max_depth)
            )),
            terminal_role=os.getenv(
                "AIMUX_TERMINAL_ROLE", cls.terminal_role
            ),
            call_timeout_seconds=timeout_env or cls.call_timeout_seconds,
            close_grace_seconds=grace_env or cls.close_grace_seconds,
            max_line_length=int(os.getenv(
                "AIMUX_MAX_LINE", str(cls.max_line_length)
            )),
            max_output_size=int(os.getenv(
                "AIMUX_MAX_OUTPUT", str(cls.max_output_size)
            )),
            reference_genus=os.getenv(
                "AIMUX_REFERENCE_GENUS", cls.reference_genus
            ),
            log_level=os.getenv("AIMUX_LOG_LEVEL", cls.log_level),
        )
        logger.debug(
            "EngineConfig.from_env: root=%s max_depth=%d timeout=%ss log_level=%s",
            config.root, config.max_depth,
            config.call_timeout_seconds, config.log_level,
        )
        return config
