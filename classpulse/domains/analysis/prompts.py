# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Prompt templates for activity analysis.

Templates live in prompts.yaml next to this module, one block per
language. They are plain str.format templates.
"""

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from classpulse.core.config.yaml_loader import load_yaml

PROMPTS_PATH = Path(__file__).with_name("prompts.yaml")
DEFAULT_LANGUAGE = "es"


@dataclass(frozen=True)
class PromptPair:
    """System and user prompt for one completion call."""

    system: str
    user: str


@lru_cache(maxsize=1)
def load_templates() -> dict[str, Any]:
    """Load and cache the prompt templates."""
    return load_yaml(PROMPTS_PATH)


def build_prompts(
    *,
    activity_type: str,
    name: str,
    course_name: str,
    tenant_id: str,
    intro: str,
    closes_at: str | None,
    payload: dict[str, Any],
    language: str = DEFAULT_LANGUAGE,
) -> PromptPair:
    """Render the prompts for one activity.

    Unknown languages fall back to the default language.

    Args:
        activity_type: "forum" or "assign".
        name: Activity name.
        course_name: Course display name.
        tenant_id: Tenant identifier.
        intro: Activity description, already converted to text.
        closes_at: ISO close date, or None.
        payload: Statistics and content sent to the model.
        language: Template language.

    Returns:
        PromptPair ready for LLMClient.complete.
    """
    templates = load_templates()
    block = templates.get(language) or templates[DEFAULT_LANGUAGE]

    user = block["user"].format(
        name=name,
        activity_label=block["activity_labels"].get(activity_type, activity_type),
        course_name=course_name,
        tenant_id=tenant_id,
        closes_at=closes_at or "-",
        intro=intro or "-",
        focus=block["focus"].get(activity_type, ""),
        payload=json.dumps(payload, ensure_ascii=False, indent=2),
        format=block["format"].strip(),
    )
    return PromptPair(system=block["system"].strip(), user=user.strip())
