"""
Quality checks for finished exports.

validate_export() inspects the produced bytes (structure, required content,
size, time) and scores the result. It never raises: a degenerate or broken
export comes back as a low score with warnings.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pptx import Presentation

from jsr_models import (
    ADVANCED_DIGEST,
    DIGEST,
    EXECUTIVE,
    HTML,
    MARKDOWN,
    PDF,
    PPTX,
    ExportOptions,
    ExportResult,
    GeneratedPresentation,
    format_file_size,
)

logger = logging.getLogger(__name__)

EXCELLENT_SCORE_THRESHOLD = 90
GOOD_SCORE_THRESHOLD = 75
PASSING_SCORE_THRESHOLD = 80

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_PROCESSING_TIME_MS = 30000
MIN_VISUAL_FIDELITY = 85

SCORE_WEIGHTS = {"visual_fidelity": 0.4, "file_size": 0.2, "processing_time": 0.2, "error_count": 0.2}

FIDELITY_BY_FORMAT = {PDF: 90, HTML: 95, MARKDOWN: 80, EXECUTIVE: 98}
DEFAULT_FIDELITY = 85

PDF_FORMATS = (PDF, DIGEST, ADVANCED_DIGEST)
HTML_REQUIRED_ELEMENTS = ("<!DOCTYPE html>", "<html", "<head", "<body", "</html>")
EXECUTIVE_REQUIRED_SECTIONS = (
    "Executive Summary", "Key Performance Indicators", "Business Impact", "Strategic Recommendations",
)
BROWSERS = ("Chrome", "Firefox", "Safari", "Edge")

_PDF_PAGE = re.compile(rb"/Type\s*/Page(?![a-zA-Z])")


def classify_score(score: float) -> str:
    """Band an overall score for display.

    Examples:
        >>> classify_score(92)
        'excellent'
        >>> classify_score(80)
        'good'
        >>> classify_score(60)
        'needs improvement'
    """
    if score >= EXCELLENT_SCORE_THRESHOLD:
        return "excellent"
    if score >= GOOD_SCORE_THRESHOLD:
        return "good"
    return "needs improvement"


def count_pdf_pages(blob: bytes) -> int:
    return len(_PDF_PAGE.findall(blob))


@dataclass
class BrowserCompatibility:
    browser: str
    supported: bool = True
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"browser": self.browser, "supported": self.supported, "issues": list(self.issues)}


@dataclass
class QualityMetrics:
    visual_fidelity: int = 0
    file_size: int = 0
    processing_time: float = 0
    error_count: int = 0
    warnings: List[str] = field(default_factory=list)
    compatibility: List[BrowserCompatibility] = field(default_factory=list)
    # False when there is nothing a reader could open: no bytes, wrong file type, no pages
    usable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visualFidelity": self.visual_fidelity,
            "fileSize": self.file_size,
            "processingTime": self.processing_time,
            "errorCount": self.error_count,
            "warnings": list(self.warnings),
            "compatibility": [c.to_dict() for c in self.compatibility],
            "usable": self.usable,
        }


@dataclass
class QualityReport:
    overall_score: int
    metrics: QualityMetrics
    recommendations: List[str]
    passed: bool
    timestamp: str

    @property
    def rating(self) -> str:
        return classify_score(self.overall_score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallScore": self.overall_score,
            "rating": self.rating,
            "metrics": self.metrics.to_dict(),
            "recommendations": list(self.recommendations),
            "passed": self.passed,
            "timestamp": self.timestamp,
        }


class QualityAssuranceChecker:
    """Scores finished exports.

    Args:
        max_file_size: Bytes above which a size warning is raised
        max_processing_time: Milliseconds above which a time warning is raised
        min_visual_fidelity: Fidelity below which higher quality is recommended
    """

    def __init__(self, max_file_size: int = MAX_FILE_SIZE,
                 max_processing_time: float = MAX_PROCESSING_TIME_MS,
                 min_visual_fidelity: int = MIN_VISUAL_FIDELITY):
        self.max_file_size = max_file_size
        self.max_processing_time = max_processing_time
        self.min_visual_fidelity = min_visual_fidelity

    def validate_export(self, result: Optional[ExportResult], presentation: Optional[GeneratedPresentation],
                        options: Optional[ExportOptions]) -> QualityReport:
        metrics = QualityMetrics()
        try:
            self._check(result, presentation, options, metrics)
        except Exception as exc:
            # The checker reports problems, it does not raise them
            logger.exception("Quality check failed")
            metrics.error_count += 1
            metrics.usable = False
            metrics.warnings.append(f"Quality check error: {exc}")

        score = self.overall_score(metrics)
        report = QualityReport(
            overall_score=score,
            metrics=metrics,
            recommendations=self.recommendations(metrics),
            passed=score >= PASSING_SCORE_THRESHOLD and metrics.error_count == 0,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("Export quality %d (%s), %d warning(s)", score, report.rating, len(metrics.warnings))
        return report

    def _check(self, result, presentation, options, metrics: QualityMetrics) -> None:
        blob = getattr(result, "blob", None) or b""
        fmt = getattr(result, "format", None) or getattr(options, "format", "") or ""
        quality = getattr(options, "quality", None) or getattr(getattr(result, "metadata", None), "quality", "medium")
        metadata = getattr(result, "metadata", None)

        metrics.file_size = len(blob)
        metrics.processing_time = float(getattr(metadata, "processing_time", 0) or 0)
        slide_count = len(presentation.ordered_slides()) if presentation is not None else 0

        if not blob:
            metrics.error_count += 1
            metrics.usable = False
            metrics.warnings.append("Export produced no data")
        if metrics.file_size > self.max_file_size:
            metrics.warnings.append(
                f"File size ({format_file_size(metrics.file_size)}) exceeds recommended limit "
                f"({format_file_size(self.max_file_size)})"
            )
        if metrics.processing_time > self.max_processing_time:
            metrics.warnings.append(
                f"Processing time ({metrics.processing_time:.0f}ms) exceeds recommended limit "
                f"({self.max_processing_time:.0f}ms)"
            )

        if blob:
            if fmt in PDF_FORMATS:
                self._check_pdf(blob, fmt, slide_count, metrics)
            elif fmt == HTML:
                self._check_html(blob, presentation, options, metrics)
            elif fmt == EXECUTIVE:
                self._check_executive(blob, metrics)
            elif fmt == MARKDOWN:
                self._check_markdown(blob, metrics)
            elif fmt == PPTX:
                self._check_pptx(blob, slide_count, metrics)
            else:
                metrics.error_count += 1
                metrics.warnings.append(f"Unknown format: {fmt or 'none'}")

        metrics.compatibility = self.browser_compatibility(fmt)
        metrics.visual_fidelity = self.visual_fidelity(fmt, quality, len(metrics.warnings))

    def _check_pdf(self, blob: bytes, fmt: str, slide_count: int, metrics: QualityMetrics) -> None:
        if not blob.startswith(b"%PDF-"):
            metrics.error_count += 1
            metrics.usable = False
            metrics.warnings.append("PDF header missing; file is not a PDF")
            return
        if b"%%EOF" not in blob[-1024:]:
            metrics.error_count += 1
            metrics.warnings.append("PDF trailer missing; file may be truncated")
        pages = count_pdf_pages(blob)
        if pages == 0:
            metrics.error_count += 1
            metrics.usable = False
            metrics.warnings.append("PDF contains no pages")
        elif fmt == PDF and slide_count and pages < slide_count:
            completeness = pages / slide_count * 100
            metrics.warnings.append(f"PDF content completeness: {completeness:.0f}% ({pages} pages for {slide_count} slides)")

    def _check_html(self, blob: bytes, presentation, options, metrics: QualityMetrics) -> None:
        html = blob.decode("utf-8", errors="replace")
        missing = [element for element in HTML_REQUIRED_ELEMENTS if element not in html]
        if missing:
            metrics.warnings.append(f"Missing HTML elements: {', '.join(missing)}")
        has_images = presentation is not None and any(s.corporate_slide_url for s in presentation.slides)
        if has_images and getattr(options, "include_images", False) and "data:image/" not in html:
            metrics.warnings.append("HTML may not contain embedded assets")
        if getattr(options, "interactive", False) and "addEventListener" not in html and "onclick" not in html:
            metrics.warnings.append("HTML may not contain interactive elements")

    def _check_executive(self, blob: bytes, metrics: QualityMetrics) -> None:
        html = blob.decode("utf-8", errors="replace")
        missing = [section for section in EXECUTIVE_REQUIRED_SECTIONS if section not in html]
        if missing:
            metrics.warnings.append(f"Missing executive elements: {', '.join(missing)}")
        if "%" not in html:
            metrics.warnings.append("Executive summary may not contain metrics")
        if "font-family" not in html:
            metrics.warnings.append("Executive summary may not have professional styling")

    def _check_markdown(self, blob: bytes, metrics: QualityMetrics) -> None:
        text = blob.decode("utf-8", errors="replace")
        if not re.search(r"^#{1,6} ", text, re.MULTILINE):
            metrics.warnings.append("Markdown may not contain proper heading structure")
        if not text.startswith("---") or "created" not in text:
            metrics.warnings.append("Markdown may not contain metadata")
        if len(text) < 500:
            metrics.warnings.append("Markdown content may be too short")

    def _check_pptx(self, blob: bytes, slide_count: int, metrics: QualityMetrics) -> None:
        try:
            deck = Presentation(io.BytesIO(blob))
        except Exception as exc:
            metrics.error_count += 1
            metrics.usable = False
            metrics.warnings.append(f"PowerPoint file cannot be opened: {exc}")
            return
        if slide_count and len(deck.slides) < slide_count:
            metrics.warnings.append(f"PowerPoint has {len(deck.slides)} slides for {slide_count} review slides")

    def browser_compatibility(self, fmt: str) -> List[BrowserCompatibility]:
        entries = []
        for browser in BROWSERS:
            entry = BrowserCompatibility(browser)
            if fmt in PDF_FORMATS and browser == "Safari":
                entry.issues.append("PDF rendering may vary in Safari")
            if fmt == PPTX:
                entry.supported = False
                entry.issues.append("Requires PowerPoint or a compatible viewer")
            entries.append(entry)
        return entries

    def visual_fidelity(self, fmt: str, quality: str, warning_count: int) -> int:
        """Fidelity estimate: format base, adjusted for quality and warnings.

        Examples:
            >>> QualityAssuranceChecker().visual_fidelity("pdf", "high", 0)
            95
            >>> QualityAssuranceChecker().visual_fidelity("markdown", "low", 2)
            66
        """
        score = FIDELITY_BY_FORMAT.get(fmt, DEFAULT_FIDELITY)
        if quality == "high":
            score += 5
        elif quality == "low":
            score -= 10
        score -= warning_count * 2
        return max(0, min(100, score))

    def overall_score(self, metrics: QualityMetrics) -> int:
        """Weighted score; an unusable export scores 0 whatever its size or speed."""
        if not metrics.usable:
            return 0
        size_score = max(0.0, 100 - metrics.file_size / self.max_file_size * 100)
        time_score = max(0.0, 100 - metrics.processing_time / self.max_processing_time * 100)
        error_score = max(0, 100 - metrics.error_count * 20)
        score = (
            metrics.visual_fidelity * SCORE_WEIGHTS["visual_fidelity"]
            + size_score * SCORE_WEIGHTS["file_size"]
            + time_score * SCORE_WEIGHTS["processing_time"]
            + error_score * SCORE_WEIGHTS["error_count"]
        )
        return int(round(score))

    def recommendations(self, metrics: QualityMetrics) -> List[str]:
        recommendations = []
        if metrics.visual_fidelity < self.min_visual_fidelity:
            recommendations.append("Consider using higher quality settings for better visual fidelity")
        if metrics.file_size > self.max_file_size:
            recommendations.append("Enable compression to reduce file size")
        if metrics.processing_time > self.max_processing_time:
            recommendations.append("Consider using lower quality settings for faster processing")
        if metrics.error_count > 0:
            recommendations.append("Review and fix validation errors")
        if len(metrics.warnings) > 3:
            recommendations.append("Address quality warnings for better output")
        if not recommendations:
            recommendations.append("Export quality is excellent - no improvements needed")
        return recommendations
