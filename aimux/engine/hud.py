"""HUD address-line parsing.

The first stdin line may address the callee in natural form, e.g.
``Architect Claude, please review...`` or ``Haiku:``. The address is
everything before the first character that is not a letter, digit,
``-``, space or tab.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import NamedTuple

from .yaml_config import AimuxConfig

logger = logging.getLogger(__name__)

_DELIMITER = re.compile(r"[^A-Za-z0-9\- \t]")
_NON_TOKEN = re.compile(r"[^A-Za-z0-9\-]")


class TokenKind(str, Enum):
    GENUS = "genus"
    GLOBAL_PERSONA = "global_persona"
    MODEL_NAME = "model_name"
    UNKNOWN = "unknown"


class HudAddress(NamedTuple):
    persona: str
    genus: str
    model_override: str


EMPTY_ADDRESS = HudAddress("", "", "")


def _genus_personas(config: AimuxConfig, genus: str) -> dict:
    personas = config.genera.get(genus, {}).get("personas") or {}
    return personas if isinstance(personas, dict) else {}


def classify_token(config: AimuxConfig, token: str) -> TokenKind:
    if token in config.genera:
        return TokenKind.GENUS
    if token in config.personas:
        return TokenKind.GLOBAL_PERSONA
    if infer_genus(config, token):
        return TokenKind.MODEL_NAME
    return TokenKind.UNKNOWN


def infer_genus(config: AimuxConfig, model: str) -> str:
    """First genus (by name) that lists ``model`` among its personas."""
    for name in sorted(config.genera):
        if model in _genus_personas(config, name):
            return name
    return ""


def parse_hud_line(config: AimuxConfig, line: str) -> HudAddress:
    """Persona, genus and model override addressed by ``line``.

    Returns all-empty fields when no genus can be determined.
    """
    line = line.strip()
    if not line:
        return EMPTY_ADDRESS
    match = _DELIMITER.search(line)
    address = line[: match.start()] if match else line
    tokens = address.split()
    if not tokens:
        return EMPTY_ADDRESS

    persona = genus = model = ""
    for token in tokens:
        normalized = _NON_TOKEN.sub("", token).lower()
        kind = classify_token(config, normalized)
        if kind is TokenKind.GENUS and not genus:
            genus = normalized
        elif kind is TokenKind.GLOBAL_PERSONA and not persona:
            persona = normalized
        elif kind is TokenKind.MODEL_NAME:
            if not model:
                model = normalized
            if not genus:
                genus = infer_genus(config, normalized)

    if not genus:
        return EMPTY_ADDRESS
    if not persona:
        persona = model or _NON_TOKEN.sub("", tokens[0]).lower()
    logger.debug("HUD address: persona=%s genus=%s model=%s", persona, genus, model)
    return HudAddress(persona, genus, model)
