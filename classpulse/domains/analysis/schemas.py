# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Value types shared by the analysis domain.

The cache is keyed by AnalysisKey. The generator produces a
GeneratedAnalysis wrapping a StructuredAnalysis, which the store
persists as an ActivityAnalysis row.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

ResponseFormat = Literal["markdown", "legacy_json"]

MAX_LIST_ITEMS = 3


@dataclass(frozen=True)
class AnalysisPolicy:
    """Refresh rules applied by the staleness evaluator.

    Attributes:
        force_refresh: Regenerate even when the cached row is fresh.
    """

    force_refresh: bool = False


@dataclass
class StructuredAnalysis:
    """Normalized analysis content.

    Attributes:
        summary: Short overview of the activity.
        positives: Up to three positive observations.
        alerts: Up to three warnings.
        insights: Up to three key observations.
        recommendation: Suggested next action for the teacher.
        dimensions: Section titles found in the model output.
        response_format: Which output shape was parsed.
    """

    summary: str
    positives: list[str] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    recommendation: str = ""
    dimensions: list[str] = field(default_factory=list)
    response_format: ResponseFormat = "markdown"

    def __post_init__(self) -> None:
        self.positives = self.positives[:MAX_LIST_ITEMS]
        self.alerts = self.alerts[:MAX_LIST_ITEMS]
        self.insights = self.insights[:MAX_LIST_ITEMS]


@dataclass
class GeneratedAnalysis:
    """Result of one generation call, ready to be stored.

    Attributes:
        tenant_id: Tenant the activity belongs to.
        lms_course_id: Course id in the LMS.
        activity_name: Display name of the activity.
        structured: Parsed analysis.
        full_analysis: Raw model output.
        llm_response: Model and token usage.
        activity_data: Participation statistics sent as input.
        source_fingerprint: SHA-256 of the prompt context.
    """

    tenant_id: str
    lms_course_id: str
    activity_name: str
    structured: StructuredAnalysis
    full_analysis: str
    llm_response: dict[str, Any]
    activity_data: dict[str, Any]
    source_fingerprint: str
