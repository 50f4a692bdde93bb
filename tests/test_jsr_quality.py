"""
Tests for jsr_quality - scoring finished exports.
"""

import io

import pytest
from pptx import Presentation

from jsr_models import ExportMetadata, ExportOptions, ExportResult, GeneratedPresentation, Slide
from jsr_quality import (
    GOOD_SCORE_THRESHOLD,
    QualityAssuranceChecker,
    QualityMetrics,
    classify_score,
    count_pdf_pages,
)

HTML_SHELL = "<!DOCTYPE html><html><head><title>x</title></head><body>{}</body></html>"


def _result(blob, fmt, processing_time=100.0, quality="medium"):
    return ExportResult(blob, f"out.{fmt}", fmt, "application/octet-stream",
                        ExportMetadata(slide_count=2, processing_time=processing_time, quality=quality))


@pytest.fixture
def checker():
    return QualityAssuranceChecker()


@pytest.fixture
def deck():
    return GeneratedPresentation(id="p", title="Review", slides=[Slide("1", "Intro"), Slide("2", "Outro", order=1)])


class TestValidateExport:
    def test_empty_export_scores_zero(self, checker, deck):
        report = checker.validate_export(_result(b"", "pdf"), deck, ExportOptions(format="pdf"))

        assert report.overall_score == 0
        assert report.overall_score < GOOD_SCORE_THRESHOLD
        assert report.rating == "needs improvement"
        assert report.metrics.usable is False
        assert report.metrics.error_count >= 1
        assert "Export produced no data" in report.metrics.warnings
        assert report.passed is False
        assert "Review and fix validation errors" in report.recommendations

    def test_missing_result(self, checker):
        report = checker.validate_export(None, None, None)
        assert report.passed is False
        assert report.overall_score < GOOD_SCORE_THRESHOLD
        assert report.metrics.file_size == 0

    def test_markdown(self, checker, deck):
        text = "---\ncreated: \"2024-05-03\"\n---\n\n# Review\n\n" + "Sprint notes. " * 50
        report = checker.validate_export(_result(text.encode("utf-8"), "markdown"), deck,
                                         ExportOptions(format="markdown"))

        assert report.metrics.warnings == []
        assert report.metrics.visual_fidelity == 80
        assert report.overall_score == 92
        assert report.rating == "excellent"
        assert report.passed is True
        assert report.recommendations == ["Consider using higher quality settings for better visual fidelity"]

    def test_short_markdown_without_metadata(self, checker, deck):
        report = checker.validate_export(_result(b"plain text", "markdown"), deck, ExportOptions(format="markdown"))

        assert len(report.metrics.warnings) == 3
        assert report.metrics.error_count == 0

    def test_truncated_pdf(self, checker, deck):
        blob = b"%PDF-1.4\n1 0 obj << /Type /Page >> endobj\n"
        report = checker.validate_export(_result(blob, "pdf"), deck, ExportOptions(format="pdf"))

        assert "PDF trailer missing; file may be truncated" in report.metrics.warnings
        assert "PDF content completeness: 50% (1 pages for 2 slides)" in report.metrics.warnings
        assert report.passed is False

    def test_not_a_pdf(self, checker, deck):
        report = checker.validate_export(_result(b"<html>", "digest"), deck, ExportOptions(format="digest"))
        assert report.metrics.warnings[0] == "PDF header missing; file is not a PDF"
        assert report.metrics.error_count == 1
        assert report.overall_score == 0

    def test_html_checks(self, checker):
        presentation = GeneratedPresentation(
            id="p", title="T", slides=[Slide("1", "Brand", type="corporate", corporate_slide_url="https://cdn/a.png")])
        blob = HTML_SHELL.format("<p>hello</p>").encode("utf-8")

        report = checker.validate_export(_result(blob, "html"), presentation, ExportOptions(format="html"))

        assert "HTML may not contain embedded assets" in report.metrics.warnings
        assert "HTML may not contain interactive elements" in report.metrics.warnings
        assert report.metrics.error_count == 0

    def test_static_html_without_images(self, checker, deck):
        blob = HTML_SHELL.format("<p>hello</p>").encode("utf-8")
        options = ExportOptions(format="html", interactive=False, include_images=False)

        report = checker.validate_export(_result(blob, "html"), deck, options)

        assert report.metrics.warnings == []
        assert report.passed is True

    def test_executive_missing_sections(self, checker, deck):
        blob = HTML_SHELL.format("<h1>Executive Summary</h1>").encode("utf-8")
        report = checker.validate_export(_result(blob, "executive"), deck, ExportOptions(format="executive"))

        warnings = report.metrics.warnings
        assert any(w.startswith("Missing executive elements: Key Performance Indicators") for w in warnings)
        assert "Executive summary may not contain metrics" in warnings
        assert "Executive summary may not have professional styling" in warnings

    def test_pptx(self, checker, deck):
        prs = Presentation()
        prs.slides.add_slide(prs.slide_layouts[5])
        buf = io.BytesIO()
        prs.save(buf)

        report = checker.validate_export(_result(buf.getvalue(), "pptx"), deck, ExportOptions(format="pptx"))

        assert report.metrics.warnings == ["PowerPoint has 1 slides for 2 review slides"]
        assert all(not c.supported for c in report.metrics.compatibility)

    def test_corrupt_pptx(self, checker, deck):
        report = checker.validate_export(_result(b"PK not a zip", "pptx"), deck, ExportOptions(format="pptx"))
        assert report.metrics.error_count == 1
        assert report.metrics.warnings[0].startswith("PowerPoint file cannot be opened")
        assert report.overall_score == 0

    def test_pdf_without_pages(self, checker, deck):
        report = checker.validate_export(_result(b"%PDF-1.4\n%%EOF\n", "pdf"), deck, ExportOptions(format="pdf"))

        assert "PDF contains no pages" in report.metrics.warnings
        assert report.overall_score == 0
        assert report.to_dict()["metrics"]["usable"] is False

    def test_unknown_format(self, checker, deck):
        report = checker.validate_export(_result(b"data", "docx"), deck, ExportOptions(format="docx"))
        assert "Unknown format: docx" in report.metrics.warnings
        assert report.passed is False

    def test_limits(self, deck):
        checker = QualityAssuranceChecker(max_file_size=10, max_processing_time=50)
        text = ("---\ncreated: x\n---\n# Notes\n" + "x" * 600).encode("utf-8")

        report = checker.validate_export(_result(text, "markdown", processing_time=75), deck,
                                         ExportOptions(format="markdown"))

        assert any(w.startswith("File size") for w in report.metrics.warnings)
        assert "Processing time (75ms) exceeds recommended limit (50ms)" in report.metrics.warnings
        assert "Enable compression to reduce file size" in report.recommendations
        assert "Consider using lower quality settings for faster processing" in report.recommendations

    def test_to_dict(self, checker, deck):
        data = checker.validate_export(_result(b"", "pdf"), deck, ExportOptions(format="pdf")).to_dict()
        assert set(data) == {"overallScore", "rating", "metrics", "recommendations", "passed", "timestamp"}
        assert data["metrics"]["errorCount"] == 1
        assert len(data["metrics"]["compatibility"]) == 4


class TestScoring:
    def test_browser_compatibility(self, checker):
        pdf = {c.browser: c for c in checker.browser_compatibility("pdf")}
        assert pdf["Safari"].issues == ["PDF rendering may vary in Safari"]
        assert pdf["Chrome"].issues == []
        assert all(c.supported for c in checker.browser_compatibility("html"))

    @pytest.mark.parametrize("fmt,quality,warnings,expected", [
        ("pdf", "high", 0, 95),
        ("html", "medium", 0, 95),
        ("executive", "high", 0, 100),
        ("markdown", "low", 2, 66),
        ("pptx", "medium", 1, 83),
        ("pdf", "low", 60, 0),
    ])
    def test_visual_fidelity(self, checker, fmt, quality, warnings, expected):
        assert checker.visual_fidelity(fmt, quality, warnings) == expected

    def test_overall_score_weights(self, checker):
        metrics = QualityMetrics(visual_fidelity=100, file_size=0, processing_time=0, error_count=0)
        assert checker.overall_score(metrics) == 100

        metrics.error_count = 6
        assert checker.overall_score(metrics) == 80

        metrics.usable = False
        assert checker.overall_score(metrics) == 0

    def test_excellent_recommendation(self, checker):
        assert checker.recommendations(QualityMetrics(visual_fidelity=95)) == [
            "Export quality is excellent - no improvements needed"]

    def test_many_warnings(self, checker):
        metrics = QualityMetrics(visual_fidelity=95, warnings=["a", "b", "c", "d"])
        assert checker.recommendations(metrics) == ["Address quality warnings for better output"]


@pytest.mark.parametrize("score,band", [(100, "excellent"), (90, "excellent"), (75, "good"), (74, "needs improvement")])
def test_classify_score(score, band):
    assert classify_score(score) == band


def test_count_pdf_pages():
    assert count_pdf_pages(b"<< /Type /Pages /Kids [] >> << /Type /Page >> << /Type/Page >>") == 2
