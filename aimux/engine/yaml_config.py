"""YAML configuration loader for genera and personas.

Loads ``<root>/config.yaml`` and merges it over the built-in defaults
below: user entries replace defaults with the same key, defaults fill
in everything else. A missing file is generated from the defaults.

Example YAML:
    personas:
      reviewer:
        name: Reviewer
        hints:
          - Challenge every assumption before approving
        delegatees: [engineer]

    genera:
      gemini:
        exe: [gemini]
        args:
          model: [--model, "{{model}}"]
          resume: [--resume, "{{sid}}"]
          new: []
          prompt: stdin
          output: [--output-format, stream-json]
        personas:
          "": {model: gemini-2.5-pro}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_YAML = """\
personas:
  architect:
    name: Architect
    model: opus
    model2: opusplan
    hints:
      - Own evaluational and design decisions; keep the big picture coherent
      - DELEGATE implementation tasks to *Engineer Claude* with precise specifications
      - Review engineer output critically before reporting back to your caller
    delegatees: [engineer, customer]
  engineer:
    name: Engineer
    model: opusplan
    model2: sonnet
    hints:
      - Implement exactly what your caller specified, nothing more
      - You are a leaf in the call graph; never open outbound partner calls
      - Report blockers back to your caller instead of guessing
    delegatees: []
  customer:
    name: Customer
    model: sonnet
    model2: haiku
    hints:
      - Speak for the people who will use the result
      - Confirm or reject proposals from an experiential point of view
    delegatees: []

genera:
  claude:
    exe: [claude]
    cmd: []
    args:
      model: [--model, "{{model}}", --fallback-model, "{{model2}}"]
      resume: [--resume, "{{sid}}"]
      branch: [--resume, "{{sid}}", --fork-session]
      new: [--session-id, "{{sid}}"]
      prompt: [--append-system-prompt, "{{prompt}}"]
      output: [--print, --output-format, stream-json, --verbose]
      safety: [--dangerously-skip-permissions]
    personas:
      "": {model: sonnet, model2: opusplan}
      architect: {model: opus, model2: opusplan}
      engineer: {model: opusplan, model2: sonnet}
      customer: {model: sonnet, model2: haiku}
      opus: {model: opus, model2: sonnet}
      sonnet: {model: sonnet, model2: haiku}
      haiku: {model: haiku, model2: sonnet}
  codex:
    exe: [codex]
    cmd: [exec]
    args:
      model: [--model, "{{model}}", -c, "model_reasoning_effort={{effort}}"]
      resume: [resume, "{{sid}}"]
      new: []
      prompt: stdin
      output: [--json]
      safety: [--dangerously-bypass-approvals-and-sandbox, --skip-git-repo-check]
    personas:
      "": {model: gpt-5-codex, effort: medium}
      architect: {model: gpt-5-codex, effort: high}
      engineer: {model: gpt-5-codex, effort: medium}
      customer: {model: gpt-5-codex, effort: low}
  bash:
    exe: [bash]
    cmd: []
    args: {}
    personas: {}
"""


@dataclass
class PersonaConfig:
    """A global persona: model preferences and behavioral hints."""
    name: str = ""
    model: str = ""
    model2: str = ""
    hints: list[str] = field(default_factory=list)
    delegatees: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, key: str, raw: dict[str, Any]) -> PersonaConfig:
        return cls(
            name=str(raw.get("name") or key),
            model=str(raw.get("model") or ""),
            model2=str(raw.get("model2") or ""),
            hints=[str(h) for h in (raw.get("hints") or [])],
            delegatees=[str(d) for d in (raw.get("delegatees") or [])],
        )


@dataclass
class AimuxConfig:
    """Complete parsed configuration."""
    personas: dict[str, PersonaConfig] = field(default_factory=dict)
    genera: dict[str, dict[str, Any]] = field(default_factory=dict)

    def persona_hints(self, persona: str) -> list[str]:
        cfg = self.personas.get(persona)
        return list(cfg.hints) if cfg else []


def _parse(raw: dict[str, Any], source: str) -> AimuxConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"invalid config at {source}: top level must be a mapping")
    personas_raw = raw.get("personas") or {}
    genera_raw = raw.get("genera") or {}
    if not isinstance(personas_raw, dict) or not isinstance(genera_raw, dict):
        raise ConfigError(
            f"invalid config at {source}: 'personas' and 'genera' must be mappings"
        )
    personas = {
        str(key): PersonaConfig.from_dict(str(key), value or {})
        for key, value in personas_raw.items()
    }
    genera = {str(key): dict(value or {}) for key, value in genera_raw.items()}
    return AimuxConfig(personas=personas, genera=genera)


def default_config() -> AimuxConfig:
    """Built-in configuration parsed from DEFAULT_CONFIG_YAML."""
    return _parse(yaml.safe_load(DEFAULT_CONFIG_YAML), "<built-in>")


def _merge(user: AimuxConfig, defaults: AimuxConfig) -> AimuxConfig:
    return AimuxConfig(
        personas={**defaults.personas, **user.personas},
        genera={**defaults.genera, **user.genera},
    )


def load_config(path: str | Path, *, create_missing: bool = True) -> AimuxConfig:
    """Load ``path`` merged over the built-in defaults.

    A missing file is written from the defaults when ``create_missing``.
    I/O problems fall back to the defaults with a warning; a file that
    exists but does not parse raises ConfigError.
    """
    path = Path(path)
    defaults = default_config()

    if not path.is_file():
        if create_missing:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")
                logger.info("load_config: wrote default config to %s", path)
            except OSError as exc:
                logger.warning(
                    "load_config: failed to create default config at %s, using defaults: %s",
                    path, exc,
                )
        return defaults

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as exc:
        logger.warning(
            "load_config: failed to read %s, using defaults: %s", path, exc,
        )
        return defaults
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid config at {path}: {exc}") from exc

    user = _parse(raw, str(path))
    merged = _merge(user, defaults)
    logger.debug(
        "load_config: loaded %s, genera=[%s] personas=[%s]",
        path,
        ", ".join(sorted(merged.genera)),
        ", ".join(sorted(merged.personas)),
    )
    return merged
