"""
Export service: turns a curated sprint review into a downloadable file.

Every export call gets its own RenderContext and ProgressReporter, so one
ExportService can run many exports concurrently. Shared state is limited to
the renderer registry and the error handler's history.

Renderers are synchronous. They run in a worker thread (asyncio.to_thread)
so image downloads and other exports keep going on the event loop, and a
process-wide lock lets only one render run at a time because matplotlib's
rcParams are global. Progress callbacks fired while rendering therefore run
on that worker thread.

Example:
    service = ExportService()
    result = asyncio.run(service.export(presentation, issues, upcoming, metrics,
                                        ExportOptions(format="pdf")))
    Path(result.file_name).write_bytes(result.blob)
"""

import asyncio
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from jira_config import DEFAULT_MAX_CONCURRENT, DEFAULT_REQUEST_TIMEOUT
from jira_epics import group_by_epic
from jira_issues import Issue, issues_from_dicts
from jira_metrics import SprintMetrics
from jira_security import sanitize_filename
from jsr_assets import collect_assets
from jsr_cache import ExportCache, export_cache_key
from jsr_context import ProgressCallback, ProgressReporter, RenderContext
from jsr_errors import (
    FORMAT_ERROR,
    VALIDATION_ERROR,
    ExportError,
    ExportErrorHandler,
    ValidationReport,
)
from jsr_html import ExecutiveRenderer, HtmlRenderer
from jsr_markdown import MarkdownRenderer
from jsr_models import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_FILE_PREFIX,
    EXECUTIVE,
    FILE_PREFIXES,
    FORMAT_EXTENSIONS,
    HTML,
    MARKDOWN,
    PDF,
    QUALITY_LEVELS,
    ExportMetadata,
    ExportOptions,
    ExportResult,
    GeneratedPresentation,
    PresentationMetadata,
    Slide,
)
from jsr_pdf import AdvancedDigestRenderer, DigestRenderer, PdfRenderer
from jsr_pptx import PptxRenderer

logger = logging.getLogger(__name__)

MAX_SLIDES = 100
MAX_ESTIMATED_SIZE = 50 * 1024 * 1024
SLIDE_SIZE_ESTIMATE = 1024
IMAGE_SIZE_ESTIMATE = 2 * 1024 * 1024
QUALITY_SIZE_MULTIPLIERS = {"high": 1.5, "medium": 1.0, "low": 0.7}
FORMAT_SIZE_MULTIPLIERS = {"pdf": 1.2, "html": 1.1, "markdown": 0.3, "executive": 0.8, "digest": 0.9}

_RENDER_LOCK = threading.Lock()

PresentationInput = Union[GeneratedPresentation, Mapping[str, Any]]
IssuesInput = Optional[Iterable[Union[Issue, Mapping[str, Any]]]]
MetricsInput = Optional[Union[SprintMetrics, Mapping[str, Any]]]


def _render_locked(renderer: Any, ctx: RenderContext) -> bytes:
    with _RENDER_LOCK:
        return renderer.render(ctx)


def default_renderers() -> Dict[str, Any]:
    renderers = [
        PdfRenderer(), HtmlRenderer(), MarkdownRenderer(), ExecutiveRenderer(),
        DigestRenderer(), AdvancedDigestRenderer(), PptxRenderer(),
    ]
    return {renderer.format: renderer for renderer in renderers}


def estimate_export_size(slides: List[Slide], options: ExportOptions) -> float:
    """Rough upper bound of the output size in bytes, used to refuse huge exports.

    Example:
        >>> estimate_export_size([Slide("1", "T")], ExportOptions(format="markdown"))
        307.2
    """
    size = len(slides) * SLIDE_SIZE_ESTIMATE
    if options.include_images:
        size += sum(IMAGE_SIZE_ESTIMATE for s in slides if s.corporate_slide_url)
    size *= QUALITY_SIZE_MULTIPLIERS.get(options.quality, 1.0)
    return size * FORMAT_SIZE_MULTIPLIERS.get(options.format, 1.0)


def generate_file_name(presentation: GeneratedPresentation, format: str,
                       file_name: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Return the download name for an export.

    ``<Prefix>_<sprint name>_<YYYY-MM-DD>.<ext>``, or the sanitised
    ``file_name`` with the format's extension when one is given.

    Examples:
        >>> p = GeneratedPresentation(id="p", title="Sprint 42 Review")
        >>> generate_file_name(p, "digest", now=datetime(2024, 5, 3))
        'Sprint_Review_Digest_Sprint_42_Review_2024-05-03.pdf'
        >>> generate_file_name(p, "markdown", file_name="team notes.md")
        'team_notes.md'
    """
    extension = FORMAT_EXTENSIONS.get(format, format)
    if file_name:
        stem = file_name
        if stem.lower().endswith("." + extension):
            stem = stem[: -len(extension) - 1]
        return f"{sanitize_filename(stem, fallback='export')}.{extension}"
    prefix = FILE_PREFIXES.get(format, DEFAULT_FILE_PREFIX)
    date = (now or datetime.now()).strftime("%Y-%m-%d")
    return f"{prefix}_{sanitize_filename(presentation.sprint_name)}_{date}.{extension}"


class ExportService:
    """Multi-format exporter with validation, retries and progress reporting.

    Args:
        renderers: Format -> renderer mapping (default: all built-in formats)
        error_handler: Shared ExportErrorHandler (default: a new one)
        retry_delay: Seconds before the first retry; doubles per attempt
        max_concurrent: Concurrent image downloads per export
        timeout: Image download timeout in seconds
        now: Clock used for file names and "generated" timestamps
        cache: Finished-export cache (default: a new ExportCache); exports
            with ``useCache`` off skip the lookup but still refresh the entry
    """

    def __init__(
        self,
        renderers: Optional[Dict[str, Any]] = None,
        error_handler: Optional[ExportErrorHandler] = None,
        retry_delay: float = 1.0,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: int = DEFAULT_REQUEST_TIMEOUT,
        now: Callable[[], datetime] = datetime.now,
        cache: Optional[ExportCache] = None,
    ):
        self._renderers = dict(renderers) if renderers is not None else default_renderers()
        self.error_handler = error_handler or ExportErrorHandler(base_delay=retry_delay)
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self._now = now
        self.cache = cache if cache is not None else ExportCache()

    def register_renderer(self, format: str, renderer: Any) -> None:
        """Add or replace the renderer for ``format``.

        Call before exports start; the registry is not locked. Cached results
        of that format are dropped.
        """
        self._renderers[format] = renderer
        self.cache.clear(f"export:{format}:")

    def formats(self) -> List[str]:
        return sorted(self._renderers)

    def validate(self, presentation: GeneratedPresentation, options: ExportOptions) -> ValidationReport:
        """Pre-flight checks that do not need rendering."""
        report = ValidationReport()
        slides = presentation.ordered_slides()
        if not slides:
            report.errors.append("Presentation has no slides")
        elif len(slides) > MAX_SLIDES:
            report.errors.append(f"Presentation has {len(slides)} slides (maximum {MAX_SLIDES})")
        elif len(slides) > MAX_SLIDES // 2:
            report.warnings.append("Large presentations may take longer to export")
        if options.format not in self._renderers:
            report.errors.append(f"Unsupported export format: {options.format}")
        if options.quality not in QUALITY_LEVELS:
            report.errors.append(f"Invalid quality setting: {options.quality}")
        estimated = estimate_export_size(slides, options)
        if estimated > MAX_ESTIMATED_SIZE:
            report.errors.append(
                f"Estimated export size {estimated / 1024 / 1024:.1f} MB exceeds "
                f"{MAX_ESTIMATED_SIZE // 1024 // 1024} MB"
            )
        if options.include_images and any(s.corporate_slide_url for s in slides) and options.format == MARKDOWN:
            report.warnings.append("Markdown exports link images instead of embedding them")
        return report

    async def export(
        self,
        presentation: PresentationInput,
        issues: IssuesInput = None,
        upcoming_issues: IssuesInput = None,
        metrics: MetricsInput = None,
        options: Union[ExportOptions, Mapping[str, Any], None] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExportResult:
        """Render ``presentation`` in ``options.format``.

        Progress goes to ``on_progress`` through the stages preparing,
        rendering, processing and finalizing; during rendering it is called
        from the render worker thread. Recoverable render failures are
        retried with exponential back-off. An identical earlier export is
        returned from the cache unless ``options.use_cache`` is off.

        Raises:
            ExportError: On validation failure, unsupported format, or any
                render failure that is not recovered by retrying
        """
        options = self._options(options)
        if options.format not in self._renderers:
            raise ExportError(FORMAT_ERROR, f"Unsupported export format: {options.format}",
                              details=f"supported: {', '.join(self.formats())}", recoverable=False,
                              context={"format": options.format})
        presentation = self._presentation(presentation)
        report = self.validate(presentation, options)
        for warning in report.warnings:
            logger.warning("Export validation: %s", warning)
        if not report.valid:
            raise ExportError(VALIDATION_ERROR, "; ".join(report.errors), recoverable=False,
                              context={"format": options.format, "quality": options.quality})

        issues = list(issues or [])
        upcoming_issues = list(upcoming_issues or [])
        cache_key = export_cache_key(presentation, issues, upcoming_issues, metrics, options, self._now())
        slides = presentation.ordered_slides()
        error_context = {"format": options.format, "quality": options.quality, "slideCount": len(slides)}
        progress = ProgressReporter(on_progress)
        started = time.perf_counter()
        try:
            cached = self.cache.get(cache_key) if options.use_cache else None
            if cached is not None:
                progress.report("finalizing", "Loaded from cache", current=1, total=1, percentage=100)
                logger.info("Served %s from the export cache", cached.file_name)
                return cached

            ctx = await self._prepare(presentation, slides, issues, upcoming_issues, metrics, options, progress)
            blob = await self._render_with_retries(ctx, error_context)

            progress.report("processing", "Optimizing output...")
            post_process = getattr(self._renderers[options.format], "post_process", None)
            if post_process is not None:
                blob = post_process(blob, options)
            processing_time = round((time.perf_counter() - started) * 1000, 2)

            result = ExportResult(
                blob=blob,
                file_name=generate_file_name(presentation, options.format, options.file_name, ctx.generated_at),
                format=options.format,
                content_type=CONTENT_TYPES.get(options.format, DEFAULT_CONTENT_TYPE),
                metadata=ExportMetadata(slide_count=len(slides), processing_time=processing_time,
                                        quality=options.quality),
            )
            progress.report("finalizing", "Export complete", current=1, total=1, percentage=100)
            self.cache.set(cache_key, result)
        except ExportError:
            raise
        except Exception as exc:
            raise self.error_handler.to_export_error(exc, 1, error_context) from exc

        logger.info(
            "Exported %s (%s, %d slides, %d bytes) in %.0f ms",
            result.file_name, options.format, len(slides), result.file_size, processing_time,
        )
        return result

    def export_sync(self, *args, **kwargs) -> ExportResult:
        """Blocking wrapper around export() for the CLI and the Flask app."""
        return asyncio.run(self.export(*args, **kwargs))

    async def export_to_pdf(self, presentation, issues=None, upcoming_issues=None, metrics=None,
                            options=None, on_progress=None) -> ExportResult:
        return await self.export(presentation, issues, upcoming_issues, metrics,
                                 self._options(options, PDF), on_progress)

    async def export_to_html(self, presentation, issues=None, upcoming_issues=None, metrics=None,
                             options=None, on_progress=None) -> ExportResult:
        return await self.export(presentation, issues, upcoming_issues, metrics,
                                 self._options(options, HTML), on_progress)

    async def export_to_markdown(self, presentation, issues=None, upcoming_issues=None, metrics=None,
                                 options=None, on_progress=None) -> ExportResult:
        return await self.export(presentation, issues, upcoming_issues, metrics,
                                 self._options(options, MARKDOWN), on_progress)

    async def export_executive_metrics(self, metrics: MetricsInput, issues: IssuesInput = None,
                                       options=None, on_progress=None) -> ExportResult:
        """Executive summary without a curated deck.

        Wraps the metrics in a one-slide presentation titled
        "Executive Metrics Dashboard".
        """
        now = self._now()
        presentation = GeneratedPresentation(
            id=f"executive-{int(now.timestamp())}",
            title="Executive Metrics Dashboard",
            slides=[Slide(id="executive-metrics", title="Executive Metrics Dashboard", type="metrics", order=0)],
            created_at=now.isoformat(),
            metadata=PresentationMetadata(sprint_name="Executive Summary", total_slides=1,
                                          has_metrics=metrics is not None),
        )
        return await self.export(presentation, issues, None, metrics,
                                 self._options(options, EXECUTIVE), on_progress)

    @staticmethod
    def _options(options, format: Optional[str] = None) -> ExportOptions:
        if isinstance(options, ExportOptions):
            if format is None:
                return options
            options = options.to_dict()
        try:
            return ExportOptions.from_dict(options, format=format)
        except ValueError as exc:
            raise ExportError(VALIDATION_ERROR, f"Invalid export options: {exc}", recoverable=False) from exc

    @staticmethod
    def _presentation(presentation: PresentationInput) -> GeneratedPresentation:
        if isinstance(presentation, GeneratedPresentation):
            return presentation
        try:
            return GeneratedPresentation.from_dict(presentation)
        except (TypeError, ValueError) as exc:
            raise ExportError(VALIDATION_ERROR, f"Invalid presentation: {exc}", recoverable=False) from exc

    async def _prepare(self, presentation, slides, issues, upcoming_issues, metrics, options,
                       progress: ProgressReporter) -> RenderContext:
        progress.report("preparing", "Preparing export...", current=0, total=2)
        raw_issues = list(issues or [])
        aggregation = group_by_epic(raw_issues)
        if not isinstance(metrics, SprintMetrics):
            metrics = SprintMetrics.from_dict(metrics)

        assets, failures = {}, {}
        urls = [s.corporate_slide_url for s in slides if s.corporate_slide_url]
        if options.include_images and urls:
            progress.report("preparing", "Embedding images...", current=1, total=2)
            assets, failures = await collect_assets(urls, self.max_concurrent, self.timeout)

        progress.report("preparing", "Data prepared", current=2, total=2)
        return RenderContext(
            presentation=presentation,
            slides=slides,
            issues=issues_from_dicts(raw_issues),
            upcoming_issues=issues_from_dicts(upcoming_issues or []),
            metrics=metrics,
            options=options,
            epics=aggregation,
            generated_at=self._now(),
            progress=progress,
            assets=assets,
            asset_failures=failures,
        )

    async def _render_with_retries(self, ctx: RenderContext, error_context: Dict[str, Any]) -> bytes:
        renderer = self._renderers[ctx.options.format]
        attempt = 1
        while True:
            ctx.progress.report("rendering", f"Generating {ctx.options.format.upper()}...",
                                current=0, total=len(ctx.slides))
            try:
                return await asyncio.to_thread(_render_locked, renderer, ctx)
            except Exception as exc:
                error = self.error_handler.to_export_error(exc, attempt, error_context)
                if not self.error_handler.should_retry(error, attempt):
                    if error is exc:
                        raise
                    raise error from exc
                delay = self.error_handler.retry_delay(attempt)
                logger.warning("Retrying %s export in %.1fs (attempt %d failed: %s)",
                               ctx.options.format, delay, attempt, error.message)
                await asyncio.sleep(delay)
                attempt += 1
