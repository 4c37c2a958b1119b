"""Prompt catalog shipped as package data.

Prompts live in `scholarchat/prompts/prompts.json` as dotted keys. An entry is
either a string or a list of lines, rendered with `string.Template`.
"""
from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from string import Template
from typing import Any

PROMPTS_PACKAGE = "scholarchat.prompts"
PROMPTS_FILE = "prompts.json"


@lru_cache(maxsize=1)
def _catalog() -> dict[str, Any]:
    text = resources.files(PROMPTS_PACKAGE).joinpath(PROMPTS_FILE).read_text(encoding="utf-8")
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")
    return payload


def prompt_text(key: str) -> str:
    """Return the raw, unrendered template for `key`."""
    node: Any = _catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        return "\n".join(node)
    if isinstance(node, str):
        return node
    raise TypeError(f"Prompt key must map to a string or list of lines: {key}")


def render_prompt(key: str, **values: Any) -> str:
    template = Template(prompt_text(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc
