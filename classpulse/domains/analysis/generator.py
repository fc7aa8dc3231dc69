# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analysis generation for one activity.

Builds the context payload from an activity's statistics and content,
makes exactly one completion call and parses the result. The LLM client
is expected to be configured with max_retries=0; a failed call is
reported to the caller, which records it and moves on.

Message bodies are sent whole. Only the number of discussions, posts
and submissions is capped (max_context_items).

Example:
    >>> generator = AnalysisGenerator(LLMClient(max_retries=0), settings.analysis)
    >>> context = generator.build_context(activity, course)
    >>> analysis = await generator.generate(activity, context)
"""

import hashlib
import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from classpulse.core.config.settings import AnalysisSettings
from classpulse.core.intelligence.llm import LLMClient, LLMError
from classpulse.domains.analysis.parser import (
    AnalysisGenerationError,
    AnalysisParseError,
    parse_analysis,
)
from classpulse.domains.analysis.prompts import build_prompts
from classpulse.domains.analysis.schemas import GeneratedAnalysis
from classpulse.domains.inventory.schemas import (
    ACTIVITY_TYPE_FORUM,
    ActivityInventory,
    CourseInventory,
)
from classpulse.utils.datetime import format_iso

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")
_BLOCK_TAG = re.compile(r"<\s*(br|/p|/div|/li|/h\d)\s*/?\s*>", re.IGNORECASE)
_SPACES = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def strip_html(value: str) -> str:
    """Convert LMS HTML to plain text without shortening it.

    Example:
        >>> strip_html("<p>Hola&nbsp;<b>mundo</b></p>")
        'Hola mundo'
    """
    if not value:
        return ""
    text = _BLOCK_TAG.sub("\n", value)
    text = _TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = _SPACES.sub(" ", text)
    text = _BLANK_LINES.sub("\n", text)
    return "\n".join(line.strip() for line in text.splitlines()).strip()


@dataclass
class AnalysisContext:
    """Everything the prompt is built from.

    Attributes:
        course_name: Course display name.
        payload: Statistics and content sent to the model.
        fingerprint: SHA-256 of the canonical payload JSON.
    """

    course_name: str
    payload: dict[str, Any]

    @property
    def fingerprint(self) -> str:
        canonical = json.dumps(self.payload, sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class AnalysisGenerator:
    """Produce a structured analysis with a single model call.

    Attributes:
        _llm: Completion client.
        _settings: Analysis configuration (token budget, context cap, language).
    """

    def __init__(self, llm_client: LLMClient, analysis_settings: AnalysisSettings) -> None:
        self._llm = llm_client
        self._settings = analysis_settings

    def build_context(
        self,
        activity: ActivityInventory,
        course: Optional[CourseInventory] = None,
    ) -> AnalysisContext:
        """Build the context payload for an activity.

        Args:
            activity: Fetched activity.
            course: Course the activity belongs to, for its name and size.

        Returns:
            AnalysisContext for generate().
        """
        limit = self._settings.max_context_items
        payload: dict[str, Any] = {"statistics": activity.stats()}
        if course is not None:
            payload["course"] = {
                "name": course.name,
                "enrolled_count": course.enrolled_count,
            }

        if activity.activity_type == ACTIVITY_TYPE_FORUM:
            discussions = []
            remaining = limit
            for discussion in activity.discussions:
                if remaining <= 0:
                    break
                posts = discussion.posts[:remaining]
                remaining -= max(len(posts), 1)
                discussions.append(
                    {
                        "title": discussion.title,
                        "posts": [
                            {
                                "author": post.author_name or str(post.author_id or ""),
                                "subject": post.subject,
                                "message": strip_html(post.message),
                                "created_at": format_iso(post.created_at),
                            }
                            for post in posts
                        ],
                    }
                )
            payload["discussions"] = discussions
        else:
            payload["submissions"] = [
                {
                    "user_id": submission.user_id,
                    "status": submission.status,
                    "grade": submission.grade,
                    "submitted_at": format_iso(submission.submitted_at),
                    "text": strip_html(submission.text),
                }
                for submission in activity.submissions[:limit]
            ]

        return AnalysisContext(
            course_name=course.name if course is not None else str(activity.course_id),
            payload=payload,
        )

    async def generate(
        self,
        activity: ActivityInventory,
        context: Optional[AnalysisContext] = None,
    ) -> GeneratedAnalysis:
        """Generate the analysis of one activity.

        Args:
            activity: Activity to analyze.
            context: Prebuilt context. Built from the activity if None.

        Returns:
            GeneratedAnalysis ready for AnalysisStore.save_latest.

        Raises:
            AnalysisGenerationError: If the model call fails.
            AnalysisParseError: If the output is empty or unparseable.
        """
        context = context or self.build_context(activity)
        prompts = build_prompts(
            activity_type=activity.activity_type,
            name=activity.name,
            course_name=context.course_name,
            tenant_id=activity.tenant_id,
            intro=strip_html(activity.intro),
            closes_at=format_iso(activity.closes_at),
            payload=context.payload,
            language=self._settings.language,
        )

        try:
            response = await self._llm.complete(
                prompt=prompts.user,
                system_prompt=prompts.system,
                max_tokens=self._settings.max_tokens,
            )
        except LLMError as e:
            raise AnalysisGenerationError(f"Model call failed for {activity.key}", e) from e

        try:
            structured = parse_analysis(response.content).normalize()
        except AnalysisParseError:
            logger.warning(
                "Unparseable analysis for %s (finish_reason=%s)",
                activity.key,
                response.finish_reason,
            )
            raise

        logger.info(
            "Generated analysis for %s: format=%s, tokens=%d",
            activity.key,
            structured.response_format,
            response.total_tokens,
        )

        return GeneratedAnalysis(
            tenant_id=activity.tenant_id,
            lms_course_id=str(activity.course_id),
            activity_name=activity.name,
            structured=structured,
            full_analysis=response.content,
            llm_response=response.usage(),
            activity_data=activity.stats(),
            source_fingerprint=context.fingerprint,
        )
