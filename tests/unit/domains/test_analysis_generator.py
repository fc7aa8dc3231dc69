# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for analysis generation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from classpulse.core.config.settings import AnalysisSettings
from classpulse.core.intelligence.llm import LLMError, LLMResponse
from classpulse.domains.analysis.generator import AnalysisGenerator, strip_html
from classpulse.domains.analysis.parser import AnalysisGenerationError, AnalysisParseError
from classpulse.domains.inventory.schemas import (
    CourseInventory,
    DiscussionContent,
    PostContent,
    SubmissionContent,
)
from helpers import MARKDOWN_ANALYSIS, make_activity


@pytest.fixture
def mock_llm():
    """LLM client returning a markdown analysis."""
    llm = MagicMock()
    llm.complete = AsyncMock(
        return_value=LLMResponse(
            content=MARKDOWN_ANALYSIS,
            model="gpt-5-mini",
            tokens_input=900,
            tokens_output=300,
        )
    )
    return llm


@pytest.fixture
def course():
    return CourseInventory(tenant_id="101", course_id=55, name="Historia Moderna", enrolled_count=30)


@pytest.fixture
def forum():
    posts = [
        PostContent(
            post_id=i,
            author_id=i,
            author_name=f"Estudiante {i}",
            subject="Re: Preséntate",
            message=f"<p>Hola, soy el estudiante&nbsp;{i}</p>",
        )
        for i in range(5)
    ]
    return make_activity(
        name="Foro de presentación",
        intro="<p>Preséntate al grupo</p>",
        discussions=[DiscussionContent(discussion_id=300, title="Preséntate", posts=posts)],
        discussion_count=1,
        total_posts=5,
    )


class TestStripHtml:
    """Tests for HTML to text conversion."""

    def test_tags_and_entities(self):
        assert strip_html("<p>Hola&nbsp;<b>mundo</b></p>") == "Hola mundo"

    def test_block_tags_become_lines(self):
        assert strip_html("<p>uno</p><p>dos<br/>tres</p>") == "uno\ndos\ntres"

    def test_long_text_not_truncated(self):
        text = "palabra " * 2000

        assert strip_html(text) == text.strip()


class TestBuildContext:
    """Tests for the context payload."""

    def test_forum_payload(self, mock_llm, course, forum):
        generator = AnalysisGenerator(mock_llm, AnalysisSettings())

        context = generator.build_context(forum, course)

        assert context.course_name == "Historia Moderna"
        assert context.payload["course"] == {"name": "Historia Moderna", "enrolled_count": 30}
        posts = context.payload["discussions"][0]["posts"]
        assert len(posts) == 5
        assert posts[0]["message"] == "Hola, soy el estudiante 0"

    def test_item_cap(self, mock_llm, course, forum):
        """Test only max_context_items posts are sent."""
        generator = AnalysisGenerator(mock_llm, AnalysisSettings(max_context_items=3))

        context = generator.build_context(forum, course)

        assert len(context.payload["discussions"][0]["posts"]) == 3

    def test_assignment_payload(self, mock_llm, course):
        assignment = make_activity(
            activity_id=40,
            activity_type="assign",
            submissions=[SubmissionContent(user_id=7, status="submitted", grade=8.5, text="<p>Ensayo</p>")],
            submission_count=1,
            graded_count=1,
        )

        context = AnalysisGenerator(mock_llm, AnalysisSettings()).build_context(assignment, course)

        assert context.payload["submissions"][0]["text"] == "Ensayo"
        assert "discussions" not in context.payload

    def test_fingerprint_tracks_content(self, mock_llm, course, forum):
        """Test the fingerprint is stable and changes with the content."""
        generator = AnalysisGenerator(mock_llm, AnalysisSettings())
        first = generator.build_context(forum, course).fingerprint

        assert generator.build_context(forum, course).fingerprint == first

        forum.discussions[0].posts[0].message = "Mensaje editado"
        assert generator.build_context(forum, course).fingerprint != first


class TestGenerate:
    """Tests for AnalysisGenerator.generate."""

    @pytest.mark.asyncio
    async def test_single_call(self, mock_llm, course, forum):
        """Test one completion call produces a structured analysis."""
        settings = AnalysisSettings(max_tokens=2500)
        generator = AnalysisGenerator(mock_llm, settings)
        context = generator.build_context(forum, course)

        generated = await generator.generate(forum, context)

        mock_llm.complete.assert_awaited_once()
        kwargs = mock_llm.complete.call_args.kwargs
        assert kwargs["max_tokens"] == 2500
        assert "Foro de presentación" in kwargs["prompt"]
        assert "Historia Moderna" in kwargs["prompt"]
        assert kwargs["system_prompt"]

        assert generated.tenant_id == "101"
        assert generated.lms_course_id == "55"
        assert generated.source_fingerprint == context.fingerprint
        assert generated.structured.response_format == "markdown"
        assert generated.llm_response["tokens_output"] == 300
        assert generated.full_analysis == MARKDOWN_ANALYSIS

    @pytest.mark.asyncio
    async def test_english_prompts(self, mock_llm, forum):
        generator = AnalysisGenerator(mock_llm, AnalysisSettings(language="en"))

        await generator.generate(forum)

        assert "Suggested action" in mock_llm.complete.call_args.kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_model_failure(self, mock_llm, forum):
        """Test an LLM failure is raised without a retry."""
        mock_llm.complete = AsyncMock(side_effect=LLMError("rate limited", model="gpt-5-mini"))
        generator = AnalysisGenerator(mock_llm, AnalysisSettings())

        with pytest.raises(AnalysisGenerationError):
            await generator.generate(forum)

        assert mock_llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_output(self, mock_llm, forum):
        mock_llm.complete = AsyncMock(
            return_value=LLMResponse(content="", model="gpt-5-mini", finish_reason="length")
        )
        generator = AnalysisGenerator(mock_llm, AnalysisSettings())

        with pytest.raises(AnalysisParseError):
            await generator.generate(forum)
