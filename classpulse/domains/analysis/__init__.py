# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analysis domain: generation, parsing, staleness and the cache store.

- AnalysisGenerator: one model call per stale activity
- parse_analysis: markdown and legacy JSON output shapes
- StalenessEvaluator: decides what to regenerate
- AnalysisStore: single-latest persistence and expiry sweep
"""

from classpulse.domains.analysis.generator import AnalysisContext, AnalysisGenerator, strip_html
from classpulse.domains.analysis.parser import (
    AnalysisGenerationError,
    AnalysisParseError,
    LegacyJsonAnalysis,
    MarkdownAnalysis,
    parse_analysis,
)
from classpulse.domains.analysis.schemas import (
    AnalysisPolicy,
    GeneratedAnalysis,
    StructuredAnalysis,
)
from classpulse.domains.analysis.staleness import StalenessEvaluator, StaleReason
from classpulse.domains.analysis.store import AnalysisStore
from classpulse.domains.keys import AnalysisKey, make_course_key

__all__ = [
    "AnalysisContext",
    "AnalysisGenerationError",
    "AnalysisGenerator",
    "AnalysisKey",
    "AnalysisParseError",
    "AnalysisPolicy",
    "AnalysisStore",
    "GeneratedAnalysis",
    "LegacyJsonAnalysis",
    "MarkdownAnalysis",
    "StaleReason",
    "StalenessEvaluator",
    "StructuredAnalysis",
    "make_course_key",
    "parse_analysis",
    "strip_html",
]
