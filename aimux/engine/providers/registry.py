"""Genus registry: maps genus names to GenusSpec capability records."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ConfigError, UnknownGenusError
from .base import GenusSpec

if TYPE_CHECKING:
    from ..yaml_config import AimuxConfig

logger = logging.getLogger(__name__)


class GenusRegistry:
    """Registry of configured genera.

    Maps short names (e.g. 'claude', 'codex', 'bash') to GenusSpec.
    """

    def __init__(self) -> None:
        self._genera: dict[str, GenusSpec] = {}

    def register(self, spec: GenusSpec) -> None:
        """Register a genus under its own name."""
        if not spec.exe:
            raise ConfigError(f"genus {spec.name} has no exe configured")
        self._genera[spec.name] = spec
        logger.debug("Genus registered: %s (exe=%s)", spec.name, spec.executable)

    def get(self, name: str) -> GenusSpec | None:
        return self._genera.get(name)

    def get_or_raise(self, name: str) -> GenusSpec:
        """Get a genus by name, raising UnknownGenusError if not found."""
        spec = self._genera.get(name)
        if spec is None:
            raise UnknownGenusError(name, self.list_names())
        return spec

    def list_names(self) -> list[str]:
        return sorted(self._genera.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._genera

    def get_availability_report(self) -> dict[str, bool]:
        """Return a mapping of genus name → executable on PATH."""
        return {
            name: spec.is_available()
            for name, spec in self._genera.items()
        }

    def validate(self) -> dict[str, bool]:
        """Log which genera have their executable installed."""
        report = self.get_availability_report()
        unavailable = [n for n, ok in report.items() if not ok]
        if unavailable:
            logger.debug(
                "Genera without executable on PATH: %s",
                ", ".join(sorted(unavailable)),
            )
        return report

    @property
    def count(self) -> int:
        return len(self._genera)


def build_genus_registry(config: AimuxConfig) -> GenusRegistry:
    """Build a GenusRegistry from loaded configuration.

    Adding a backend means adding a ``genera`` entry to config.yaml.
    """
    registry = GenusRegistry()
    for name, raw in config.genera.items():
        registry.register(GenusSpec.from_dict(name, raw))
    return registry
