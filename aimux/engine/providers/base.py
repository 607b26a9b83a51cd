"""Genus capability records.

Each genus wraps a different AI command-line program (Claude Code CLI,
OpenAI Codex CLI, plain bash, ...). Instead of per-backend code paths,
a genus is described by data: its executable, argument templates for
each session mode, and how it accepts the system prompt.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class PromptDelivery(str, Enum):
    """How a genus receives the system prompt."""
    STDIN = "stdin"    # prepended to standard input
    FLAG = "flag"      # rendered into prompt_template
    NONE = "none"      # not delivered


def render_flags(template: list[str], variables: dict[str, str]) -> list[str]:
    """Substitute ``{{name}}`` placeholders in every template element."""
    rendered: list[str] = []
    for item in template:
        for key, value in variables.items():
            item = item.replace("{{" + key + "}}", value)
        rendered.append(item)
    return rendered


@dataclass
class GenusArgs:
    """Argument templates per session mode."""
    model: list[str] = field(default_factory=list)
    resume: list[str] = field(default_factory=list)
    branch: list[str] = field(default_factory=list)
    new: list[str] = field(default_factory=list)
    output: list[str] = field(default_factory=list)
    safety: list[str] = field(default_factory=list)


@dataclass
class GenusSpec:
    """Everything needed to invoke one genus."""
    name: str
    exe: list[str]
    cmd: list[str] = field(default_factory=list)
    args: GenusArgs = field(default_factory=GenusArgs)
    prompt_delivery: PromptDelivery = PromptDelivery.NONE
    prompt_template: list[str] = field(default_factory=list)
    personas: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def executable(self) -> str:
        return self.exe[0]

    def is_available(self) -> bool:
        """Check if the genus executable is on PATH."""
        return shutil.which(self.executable) is not None

    def persona_vars(self, persona: str) -> dict[str, str]:
        """Template variables for ``persona``.

        Unknown personas are treated as a literal model name, paired with
        a different fallback model (Claude rejects model == fallback).
        """
        configured = self.personas.get(persona)
        if configured is not None:
            logger.debug(
                "Found persona %r in genus %s: %s", persona, self.name, configured,
            )
            return dict(configured)
        model2 = "haiku" if persona == "sonnet" else "sonnet"
        logger.debug(
            "Persona %r not found in genus %s, using it as model with model2 %s",
            persona, self.name, model2,
        )
        return {"model": persona, "model2": model2}

    @classmethod
    def from_dict(cls, name: str, raw: dict[str, Any]) -> GenusSpec:
        args_raw = dict(raw.get("args") or {})
        prompt = args_raw.pop("prompt", None)
        if prompt == PromptDelivery.STDIN.value:
            delivery, template = PromptDelivery.STDIN, []
        elif isinstance(prompt, list):
            delivery, template = PromptDelivery.FLAG, [str(p) for p in prompt]
        else:
            delivery, template = PromptDelivery.NONE, []

        def _str_list(key: str) -> list[str]:
            return [str(v) for v in (args_raw.get(key) or [])]

        personas = {
            str(persona): {str(k): str(v) for k, v in (values or {}).items()}
            for persona, values in (raw.get("personas") or {}).items()
        }
        return cls(
            name=name,
            exe=[str(v) for v in (raw.get("exe") or [])],
            cmd=[str(v) for v in (raw.get("cmd") or [])],
            args=GenusArgs(
                model=_str_list("model"),
                resume=_str_list("resume"),
                branch=_str_list("branch"),
                new=_str_list("new"),
                output=_str_list("output"),
                safety=_str_list("safety"),
            ),
            prompt_delivery=delivery,
            prompt_template=template,
            personas=personas,
        )
