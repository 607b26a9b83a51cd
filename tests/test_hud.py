"""Tests for HUD address-line parsing."""
from __future__ import annotations

import pytest

from aimux.engine.hud import (
    EMPTY_ADDRESS,
    HudAddress,
    TokenKind,
    classify_token,
    infer_genus,
    parse_hud_line,
)
from aimux.engine.yaml_config import default_config


@pytest.fixture
def config():
    return default_config()


@pytest.mark.parametrize(
    "line, expected",
    [
        ("Architect Claude, review this", HudAddress("architect", "claude", "")),
        ("Engineer Codex: build it", HudAddress("engineer", "codex", "")),
        ("Haiku: summarize", HudAddress("haiku", "claude", "haiku")),
        ("Architect Opus, design it", HudAddress("architect", "claude", "opus")),
        ("  customer   claude,\n", HudAddress("customer", "claude", "")),
    ],
)
def test_parse(config, line, expected):
    assert parse_hud_line(config, line) == expected


def test_genus_without_persona_uses_first_token(config):
    assert parse_hud_line(config, "Claude, hello") == HudAddress("claude", "claude", "")


@pytest.mark.parametrize("line", ["", "   ", "hello world, friend", "!!!"])
def test_no_genus(config, line):
    assert parse_hud_line(config, line) == EMPTY_ADDRESS


def test_classify_token(config):
    assert classify_token(config, "claude") is TokenKind.GENUS
    assert classify_token(config, "architect") is TokenKind.GLOBAL_PERSONA
    assert classify_token(config, "sonnet") is TokenKind.MODEL_NAME
    assert classify_token(config, "banana") is TokenKind.UNKNOWN


def test_infer_genus_by_sorted_name(config):
    config.genera["aardvark"] = {"exe": ["a"], "personas": {"sonnet": {"model": "s"}}}
    assert infer_genus(config, "sonnet") == "aardvark"
    assert infer_genus(config, "unknown-model") == ""
