# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for parsing model output."""

import pytest

from classpulse.domains.analysis.parser import (
    AnalysisParseError,
    LegacyJsonAnalysis,
    MarkdownAnalysis,
    parse_analysis,
)
from helpers import MARKDOWN_ANALYSIS


class TestMarkdownAnalysis:
    """Tests for the markdown output shape."""

    def test_dimensions_classified(self):
        """Test bullets land in positives or alerts by section title."""
        parsed = parse_analysis(MARKDOWN_ANALYSIS)

        assert isinstance(parsed, MarkdownAnalysis)
        structured = parsed.normalize()
        assert structured.response_format == "markdown"
        assert structured.dimensions == ["Fortalezas", "Riesgos"]
        assert len(structured.positives) == 2
        assert structured.alerts == [
            "Cinco estudiantes inscritos todavía no han publicado ningún aporte."
        ]
        assert structured.recommendation.startswith("Enviar un recordatorio")

    def test_summary_from_first_section(self):
        structured = parse_analysis(MARKDOWN_ANALYSIS).normalize()

        assert structured.summary.startswith("El foro muestra una participación constante")
        assert "####" not in structured.summary

    def test_plain_text_without_headers(self):
        """Test text without sections still yields a summary and insights."""
        text = (
            "Resumen breve.\n"
            "* Los aportes se concentran en los dos primeros días de la semana.\n"
            "**Suggested action:** Abrir una segunda pregunta guía a mitad de semana.\n"
        )

        structured = parse_analysis(text).normalize()

        assert structured.dimensions == []
        assert structured.insights == [
            "Los aportes se concentran en los dos primeros días de la semana."
        ]
        assert structured.recommendation == "Abrir una segunda pregunta guía a mitad de semana."

    def test_lists_capped_at_three(self):
        bullets = "\n".join(f"* Observación positiva número {i} del análisis" for i in range(6))
        text = f"Resumen del foro con suficiente texto para ser resumen.\n\n#### Logros\n{bullets}\n"

        structured = parse_analysis(text).normalize()

        assert len(structured.positives) == 3


class TestLegacyJsonAnalysis:
    """Tests for the legacy JSON output shape."""

    def test_bare_json(self):
        text = (
            '{"summary": "Buen ritmo", "insights": ["Participa la mitad del grupo"],'
            ' "recommendations": ["Reforzar la consigna"]}'
        )

        parsed = parse_analysis(text)

        assert isinstance(parsed, LegacyJsonAnalysis)
        structured = parsed.normalize()
        assert structured.response_format == "legacy_json"
        assert structured.summary == "Buen ritmo"
        assert structured.insights == ["Participa la mitad del grupo"]
        assert structured.recommendation == "Reforzar la consigna"

    def test_fenced_json(self):
        text = 'Aquí está:\n```json\n{"summary": "Resumen", "alerts": ["Baja entrega"]}\n```'

        structured = parse_analysis(text).normalize()

        assert structured.summary == "Resumen"
        assert structured.alerts == ["Baja entrega"]

    def test_insight_objects(self):
        text = '{"summary": "S", "keyInsights": [{"title": "Pocas entregas"}, {"text": ""}]}'

        assert parse_analysis(text).normalize().insights == ["Pocas entregas"]


class TestParseErrors:
    """Tests for unparseable output."""

    @pytest.mark.parametrize("text", [None, "", "   \n"])
    def test_empty(self, text):
        with pytest.raises(AnalysisParseError):
            parse_analysis(text)

    def test_malformed_json(self):
        with pytest.raises(AnalysisParseError, match="malformed JSON"):
            parse_analysis('{"summary": "sin cerrar"')

    def test_json_without_summary(self):
        with pytest.raises(AnalysisParseError, match="no summary"):
            parse_analysis('{"insights": ["x"]}')
