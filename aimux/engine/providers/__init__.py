"""Backend (genus) registry."""
from .base import GenusArgs, GenusSpec, PromptDelivery, render_flags
from .registry import GenusRegistry, build_genus_registry

__all__ = [
    "GenusArgs",
    "GenusRegistry",
    "GenusSpec",
    "PromptDelivery",
    "build_genus_registry",
    "render_flags",
]
