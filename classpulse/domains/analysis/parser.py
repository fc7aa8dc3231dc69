# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Parsing of model output into a structured analysis.

Two output shapes are recognized:

- Markdown: dimensions introduced by ``####`` headers, ``* `` bullet
  findings and ``**Acción sugerida:**`` (or ``**Suggested action:**``)
  lines.
- Legacy JSON: a flat object with ``summary``, ``insights``,
  ``recommendations`` and optionally ``positives``/``alerts``, either
  bare, fenced in a ```json block or embedded in surrounding prose.

Both normalize to StructuredAnalysis.

Example:
    >>> parsed = parse_analysis(text)
    >>> structured = parsed.normalize()
    >>> structured.response_format
    'markdown'
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

from classpulse.domains.analysis.schemas import StructuredAnalysis

SUMMARY_MAX_CHARS = 300
SHORT_SUMMARY_CHARS = 200
MIN_SUMMARY_SECTION_CHARS = 50
MIN_INSIGHT_CHARS = 20
MIN_ACTION_CHARS = 10

_HEADER = re.compile(r"^####\s+(.+?)\s*$", re.MULTILINE)
_BULLET = re.compile(r"^\s*[*-]\s+(.+?)\s*$", re.MULTILINE)
_ACTION = re.compile(
    r"\*\*(?:Acci[oó]n sugerida|Suggested action):?\*\*:?\s*(.+?)\s*$",
    re.MULTILINE | re.IGNORECASE,
)
_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_POSITIVE_MARKERS = re.compile(
    r"fortalez|positiv|logro|destac|buen|strength|positive|highlight|achievement",
    re.IGNORECASE,
)
_ALERT_MARKERS = re.compile(
    r"riesgo|alerta|atenci|problem|dificult|baja|ausencia|risk|alert|concern|warning|\blow\b",
    re.IGNORECASE,
)


class AnalysisGenerationError(Exception):
    """Raised when an analysis cannot be produced for an activity.

    Attributes:
        message: Error description.
        original_error: Underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class AnalysisParseError(AnalysisGenerationError):
    """Raised when the model output is empty or cannot be parsed."""


@dataclass
class Dimension:
    """One ``####`` section of a markdown analysis."""

    title: str
    content: str
    bullets: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)


@dataclass
class MarkdownAnalysis:
    """Analysis returned as markdown dimensions."""

    text: str
    summary: str
    dimensions: list[Dimension] = field(default_factory=list)

    def normalize(self) -> StructuredAnalysis:
        positives: list[str] = []
        alerts: list[str] = []
        insights: list[str] = []
        actions: list[str] = []

        for dimension in self.dimensions:
            actions.extend(dimension.actions)
            if _POSITIVE_MARKERS.search(dimension.title):
                positives.extend(dimension.bullets)
            elif _ALERT_MARKERS.search(dimension.title):
                alerts.extend(dimension.bullets)
            else:
                insights.extend(dimension.bullets)

        if not self.dimensions:
            insights = _bullets(self.text)
            actions = _actions(self.text)

        return StructuredAnalysis(
            summary=self.summary,
            positives=positives,
            alerts=alerts,
            insights=insights,
            recommendation=actions[0] if actions else "",
            dimensions=[d.title for d in self.dimensions],
            response_format="markdown",
        )


@dataclass
class LegacyJsonAnalysis:
    """Analysis returned as a flat JSON object."""

    data: dict[str, Any]

    def normalize(self) -> StructuredAnalysis:
        recommendations = _as_list(self.data.get("recommendations"))
        recommendation = self.data.get("recommendation")
        if not isinstance(recommendation, str) or not recommendation.strip():
            recommendation = recommendations[0] if recommendations else ""

        insights = _as_list(self.data.get("insights")) or _as_list(self.data.get("keyInsights"))

        return StructuredAnalysis(
            summary=str(self.data.get("summary") or "").strip(),
            positives=_as_list(self.data.get("positives")),
            alerts=_as_list(self.data.get("alerts")),
            insights=insights,
            recommendation=recommendation.strip(),
            dimensions=[],
            response_format="legacy_json",
        )


ParsedAnalysis = Union[MarkdownAnalysis, LegacyJsonAnalysis]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("text") or item.get("title") or item.get("description") or ""
            text = str(item).strip()
            if text:
                items.append(text)
        return items
    return [str(value)]


def _bullets(text: str) -> list[str]:
    items = []
    for match in _BULLET.finditer(text):
        bullet = match.group(1).strip()
        if len(bullet) <= MIN_INSIGHT_CHARS:
            continue
        if "Acción sugerida" in bullet or _ACTION.search(bullet):
            continue
        items.append(bullet)
    return items


def _actions(text: str) -> list[str]:
    return [
        match.group(1).strip()
        for match in _ACTION.finditer(text)
        if len(match.group(1).strip()) > MIN_ACTION_CHARS
    ]


def _summary(text: str) -> str:
    first_section = text.split("####")[0].strip()
    if len(first_section) > MIN_SUMMARY_SECTION_CHARS:
        source, limit = first_section, SUMMARY_MAX_CHARS
    else:
        source, limit = text.strip(), SHORT_SUMMARY_CHARS
    if len(source) > limit:
        return source[:limit].rstrip() + "..."
    return source


def _try_json(text: str) -> dict[str, Any] | None:
    stripped = text.strip()
    candidates = []
    fence = _JSON_FENCE.search(stripped)
    if fence:
        candidates.append(fence.group(1))
    if stripped.startswith("{"):
        candidates.append(stripped)
    embedded = _JSON_OBJECT.search(stripped)
    if embedded and not _HEADER.search(stripped):
        candidates.append(embedded.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith("{") or stripped.startswith("```json")


def parse_markdown(text: str) -> MarkdownAnalysis:
    """Split markdown output into dimensions."""
    dimensions: list[Dimension] = []
    headers = list(_HEADER.finditer(text))
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(text)
        content = text[header.end():end].strip()
        dimensions.append(
            Dimension(
                title=header.group(1).strip(),
                content=content,
                bullets=_bullets(content),
                actions=_actions(content),
            )
        )
    return MarkdownAnalysis(text=text, summary=_summary(text), dimensions=dimensions)


def parse_analysis(text: str | None) -> ParsedAnalysis:
    """Parse model output into one of the supported shapes.

    Args:
        text: Raw completion content.

    Returns:
        LegacyJsonAnalysis if a JSON object was found, else MarkdownAnalysis.

    Raises:
        AnalysisParseError: If the text is empty, looks like JSON but does
            not decode, or yields no content at all.
    """
    if text is None or not text.strip():
        raise AnalysisParseError("Model returned an empty response")

    data = _try_json(text)
    if data is not None:
        parsed = LegacyJsonAnalysis(data=data)
        if not parsed.normalize().summary:
            raise AnalysisParseError("JSON analysis has no summary")
        return parsed

    if _looks_like_json(text):
        raise AnalysisParseError("Model returned malformed JSON")

    return parse_markdown(text)
