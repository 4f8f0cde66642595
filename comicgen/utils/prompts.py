"""Utilities for loading the prompt templates shipped with the package."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def load_prompt(name: str, variables: Mapping[str, object] | None = None) -> str:
    """Return the rendered text of ``prompts/<name>.txt``.

    Every ``{{ placeholder }}`` in the template must be supplied; a missing
    one raises ``KeyError`` so a half-rendered prompt never reaches the provider.
    """
    path = PROMPTS_DIR / f"{name}.txt"
    template = path.read_text(encoding="utf-8")
    values = dict(variables or {})

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            raise KeyError(f"Prompt '{name}' requires a value for '{key}'")
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, template).strip()


__all__ = ["load_prompt", "PROMPTS_DIR"]
