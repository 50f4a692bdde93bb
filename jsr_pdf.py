"""
PDF exports drawn with matplotlib: the slide deck, the digest and the
advanced digest.

Pages are plain matplotlib Figures laid out top-down by PageWriter and saved
through PdfPages. Nothing here touches pyplot, so several exports can render
in the same process without sharing figure state.
"""

import io
import logging
import re
import textwrap
from typing import Callable, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend

from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure
from matplotlib.lines import Line2D
from PIL import Image, UnidentifiedImageError

from jira_epics import issue_type_breakdown
from jira_issues import Issue, format_points
from jira_metrics import (
    business_impact,
    calculate_quality_score,
    executive_kpis,
    executive_recommendations,
    performance_status,
    velocity_percentage,
)
from jsr_assets import EmbeddedAsset
from jsr_charts import (
    COLORS,
    dpi_for,
    draw_epic_completion,
    draw_epic_points_pie,
    draw_quality_checklist,
    draw_team_performance,
    draw_velocity,
)
from jsr_context import RenderContext
from jsr_models import ADVANCED_DIGEST, DIGEST, PDF, Slide

logger = logging.getLogger(__name__)

LANDSCAPE = (11.0, 8.5)
PORTRAIT = (8.27, 11.69)  # A4

NAVY = "#152c53"
ACCENT = "#dd4f26"

# Longest image edge in pixels per export quality
IMAGE_MAX_EDGE = {"low": 800, "medium": 1600, "high": 2400}

TOP = 0.93
BOTTOM = 0.07
LEFT = 0.07
RIGHT = 0.93


def plain_text(content: str) -> str:
    """Strip Markdown markup so slide text reads cleanly on a PDF page.

    Example:
        >>> plain_text("## Done\\n**Login** via [SSO](http://x)")
        'Done\\nLogin via SSO'
    """
    text = re.sub(r"#{1,6}\s+", "", content or "")
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    text = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", text)
    text = re.sub(r"`(.*?)`", r"\1", text)
    text = re.sub(r"^\s*[-*+] ", "- ", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _safe(value) -> str:
    # A literal "$" would otherwise switch matplotlib into mathtext
    return str(value).replace("$", r"\$")


def status_text(ratio: float) -> str:
    if ratio >= 0.9:
        return "Excellent"
    if ratio >= 0.75:
        return "Good"
    if ratio >= 0.6:
        return "Fair"
    return "Needs Improvement"


def load_image(asset: EmbeddedAsset, quality: str) -> Optional[Image.Image]:
    """Decode an embedded image with Pillow, downscaled for the export quality.

    Returns None (and logs) when the bytes are not a raster image Pillow can read.
    """
    try:
        image = Image.open(io.BytesIO(asset.data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Cannot decode image %s (%s): %s", asset.url[:80], asset.mime_type, exc)
        return None
    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    edge = IMAGE_MAX_EDGE.get(quality, IMAGE_MAX_EDGE["medium"])
    image.thumbnail((edge, edge))
    return image


class PageWriter:
    """Lays content out top-down over as many pages as it needs.

    Positions are figure fractions. When the next block does not fit, a new
    page is started, repeating ``continued`` as its header if set.
    """

    def __init__(self, size=PORTRAIT, dpi: int = 100):
        self.size = size
        self.dpi = dpi
        self.pages: List[Figure] = []
        self.continued: Optional[str] = None
        self._y = TOP

    @property
    def fig(self) -> Figure:
        if not self.pages:
            self.new_page()
        return self.pages[-1]

    def _line_height(self, fontsize: float) -> float:
        return fontsize * 1.45 / (self.size[1] * 72)

    def _wrap_width(self, fontsize: float) -> int:
        usable = (RIGHT - LEFT) * self.size[0] * 72
        return max(20, int(usable / (fontsize * 0.55)))

    def new_page(self, header: Optional[str] = None) -> Figure:
        fig = Figure(figsize=self.size, dpi=self.dpi)
        self.pages.append(fig)
        self._y = TOP
        if header:
            self.heading(header)
        return fig

    def ensure(self, height: float) -> None:
        if not self.pages or self._y - height < BOTTOM:
            self.new_page(f"{self.continued} (continued)" if self.continued and self.pages else None)

    def space(self, height: float = 0.015) -> None:
        self._y -= height

    def heading(self, text: str, fontsize: float = 16, color: str = NAVY) -> None:
        height = self._line_height(fontsize) * 1.3
        self.ensure(height)
        self.fig.text(LEFT, self._y, _safe(text), fontsize=fontsize, fontweight="bold", color=color, va="top")
        self._y -= height

    def paragraph(self, text: str, fontsize: float = 10, color: str = COLORS["text"],
                  weight: str = "normal") -> None:
        line_height = self._line_height(fontsize)
        for raw_line in (text or "").splitlines() or [""]:
            wrapped = textwrap.wrap(raw_line, self._wrap_width(fontsize), break_long_words=True) or [""]
            for line in wrapped:
                self.ensure(line_height)
                self.fig.text(LEFT, self._y, _safe(line), fontsize=fontsize, color=color,
                              fontweight=weight, va="top")
                self._y -= line_height

    def table(self, header: Sequence[str], rows: Sequence[Sequence], fontsize: float = 8,
              header_color: str = NAVY, col_widths: Optional[Sequence[float]] = None) -> None:
        """Draw a grid table, splitting it across pages when it does not fit."""
        row_height = self._line_height(fontsize) * 1.5
        rows = [[_safe(cell) for cell in row] for row in rows]
        while True:
            self.ensure(row_height * 2)
            fit = max(1, int((self._y - BOTTOM) / row_height) - 1)
            chunk, rows = rows[:fit], rows[fit:]
            height = row_height * (len(chunk) + 1)
            ax = self.fig.add_axes([LEFT, self._y - height, RIGHT - LEFT, height])
            ax.axis("off")
            tbl = ax.table(
                cellText=chunk or [[""] * len(header)],
                colLabels=[_safe(h) for h in header],
                colWidths=col_widths,
                cellLoc="left",
                bbox=[0, 0, 1, 1],
            )
            tbl.auto_set_font_size(False)
            tbl.set_fontsize(fontsize)
            for (row, _col), cell in tbl.get_celld().items():
                cell.set_edgecolor("#d1d5db")
                if row == 0:
                    cell.set_facecolor(header_color)
                    cell.get_text().set_color("white")
                    cell.get_text().set_fontweight("bold")
            self._y -= height + 0.01
            if not rows:
                return

    def chart(self, draw: Callable, *args, height: float = 0.3) -> None:
        self.ensure(height)
        ax = self.fig.add_axes([LEFT + 0.05, self._y - height, RIGHT - LEFT - 0.1, height * 0.9])
        draw(ax, *args)
        self._y -= height + 0.01

    def image(self, image: Image.Image, height: float = 0.35) -> None:
        self.ensure(height)
        ax = self.fig.add_axes([LEFT, self._y - height, RIGHT - LEFT, height])
        ax.imshow(image)
        ax.axis("off")
        self._y -= height + 0.01

    def footer(self, label: str) -> None:
        total = len(self.pages)
        for number, fig in enumerate(self.pages, start=1):
            fig.add_artist(Line2D([LEFT, RIGHT], [0.045, 0.045], color="#c8c8c8", linewidth=0.5))
            fig.text(0.5, 0.025, _safe(f"{label} | Page {number} of {total}"),
                     fontsize=7, color="#646464", ha="center")


def write_pdf(pages: Sequence[Figure], title: str, compression: bool) -> bytes:
    """Save figures as a multi-page PDF.

    ``compression`` maps onto matplotlib's ``pdf.compression`` level for the
    page content streams.
    """
    buf = io.BytesIO()
    with matplotlib.rc_context({"pdf.compression": 6 if compression else 0}):
        with PdfPages(buf, metadata={"Title": title, "Creator": "jira-sprint-review"}) as pdf:
            for fig in pages:
                pdf.savefig(fig)
    return buf.getvalue()


def _issue_rows(issues: Sequence[Issue]) -> List[List[str]]:
    return [
        [issue.key, textwrap.shorten(issue.summary, 70, placeholder="..."), issue.status,
         format_points(issue.story_points) if issue.story_points is not None else "-"]
        for issue in issues
    ]


class PdfRenderer:
    """Slide deck PDF: landscape pages, one (or more, on overflow) per slide."""

    format = PDF
    page_size = LANDSCAPE

    def render(self, ctx: RenderContext) -> bytes:
        writer = PageWriter(self.page_size, dpi_for(ctx.options.quality))
        total = len(ctx.slides)
        for number, slide in enumerate(ctx.slides, start=1):
            writer.continued = slide.title
            writer.new_page()
            self._slide_page(writer, slide, ctx)
            ctx.progress.slide(number, total)
        writer.footer(f"{ctx.presentation.title} | {ctx.generated_at.strftime('%Y-%m-%d')}")
        return write_pdf(writer.pages, ctx.presentation.title, ctx.options.compression)

    def _slide_page(self, writer: PageWriter, slide: Slide, ctx: RenderContext) -> None:
        if slide.type == "title":
            writer.space(0.25)
            writer.heading(slide.title or ctx.presentation.title, fontsize=28)
            writer.paragraph(plain_text(slide.text) or ctx.presentation.sprint_name, fontsize=14,
                             color=COLORS["muted"])
            return

        writer.heading(slide.title, fontsize=20)
        writer.space()
        if slide.type == "metrics":
            self._metrics(writer, ctx)
        elif slide.type == "demo-story":
            issue = ctx.issue_by_id(slide.story_id)
            if issue is not None:
                writer.paragraph(
                    f"{issue.key} | {issue.status} | {issue.assignee or 'Unassigned'} | "
                    f"{format_points(issue.story_points)} points",
                    fontsize=10, color=COLORS["muted"],
                )
                writer.space()
            sections = [] if isinstance(slide.content, str) else slide.content.sections()
            if sections:
                for label, text in sections:
                    writer.paragraph(label, fontsize=12, weight="bold", color=NAVY)
                    writer.paragraph(plain_text(text), fontsize=11)
                    writer.space()
            else:
                writer.paragraph(plain_text(slide.text), fontsize=11)
        elif slide.type == "corporate":
            self._corporate(writer, slide, ctx)
        elif slide.type == "epic-breakdown":
            writer.chart(draw_epic_completion, ctx.epics.groups, height=0.7)
        elif slide.type == "upcoming":
            if ctx.upcoming_issues:
                writer.table(["Key", "Summary", "Status", "Points"], _issue_rows(ctx.upcoming_issues),
                             fontsize=9, col_widths=[0.12, 0.6, 0.16, 0.12])
            else:
                writer.paragraph("No upcoming issues.", color=COLORS["muted"])
        else:
            writer.paragraph(plain_text(slide.text), fontsize=12)

    def _metrics(self, writer: PageWriter, ctx: RenderContext) -> None:
        m = ctx.metrics
        if not m:
            writer.paragraph("No metrics available for this sprint.", color=COLORS["muted"])
            return
        writer.table(
            ["Metric", "Value"],
            [
                ["Completed Story Points", f"{format_points(m.completed_total_points)}/{format_points(m.estimated_points)}"],
                ["Velocity Achievement", f"{velocity_percentage(m):.1f}%"],
                ["Test Coverage", f"{format_points(m.test_coverage)}%"],
                ["Quality Score", f"{calculate_quality_score(m.quality_checklist)}%"],
                ["Planned Items", format_points(m.planned_items)],
            ],
            fontsize=10,
        )
        writer.chart(draw_velocity, m, height=0.4)

    def _corporate(self, writer: PageWriter, slide: Slide, ctx: RenderContext) -> None:
        if not slide.corporate_slide_url:
            writer.paragraph("No corporate slide image available.", color=COLORS["muted"])
            return
        asset = ctx.asset_for(slide)
        if asset is None:
            note = "Image omitted from this export." if not ctx.options.include_images else "Image could not be loaded."
            writer.paragraph(note, color=COLORS["muted"])
            return
        image = load_image(asset, ctx.options.quality)
        if image is None:
            writer.paragraph("Image format not supported in PDF export.", color=COLORS["muted"])
            return
        writer.image(image, height=0.75)


class DigestRenderer:
    """Dense portrait PDF: summary, demo stories, next sprint and metrics tables."""

    format = DIGEST
    footer_label = "Generated by jira-sprint-review"

    def render(self, ctx: RenderContext) -> bytes:
        writer = PageWriter(PORTRAIT, dpi_for(ctx.options.quality))
        self._header(writer, ctx)
        self._contents(writer, self.section_titles())
        self._sections(writer, ctx)
        writer.footer(f"{self.footer_label} | {ctx.generated_at.strftime('%Y-%m-%d')}")
        return write_pdf(writer.pages, ctx.presentation.title, ctx.options.compression)

    def section_titles(self) -> List[str]:
        return ["Sprint Summary", "Demo Stories", "Next Sprint Preview", "Sprint Metrics"]

    def _sections(self, writer: PageWriter, ctx: RenderContext) -> None:
        demo_slides = self._walk_slides(ctx)
        self._summary(writer, ctx)
        self._demo_stories(writer, ctx, demo_slides)
        self._next_sprint(writer, ctx)
        self._metrics(writer, ctx)

    def _walk_slides(self, ctx: RenderContext) -> List[Slide]:
        """Collect the demo-story slides, reporting progress per slide."""
        demo = []
        total = len(ctx.slides)
        for number, slide in enumerate(ctx.slides, start=1):
            if slide.type == "demo-story":
                demo.append(slide)
            ctx.progress.slide(number, total)
        return demo

    def _header(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.new_page()
        writer.heading(ctx.presentation.title, fontsize=20)
        writer.paragraph(
            f"{ctx.presentation.sprint_name} | {ctx.generated_at.strftime('%Y-%m-%d')}",
            fontsize=10, color=COLORS["muted"],
        )
        title_slide = next((s for s in ctx.slides if s.type == "title"), None)
        if title_slide is not None and title_slide.text:
            writer.paragraph(plain_text(title_slide.text), fontsize=9, color=COLORS["muted"])
        writer.space(0.02)

    def _contents(self, writer: PageWriter, titles: Sequence[str]) -> None:
        writer.heading("Contents", fontsize=12)
        for number, title in enumerate(titles, start=1):
            writer.paragraph(f"{number}. {title}", fontsize=9)
        writer.space(0.02)

    def _summary(self, writer: PageWriter, ctx: RenderContext) -> None:
        summary = ctx.epics.summary
        writer.continued = None
        writer.heading("Sprint Summary")
        writer.table(
            ["Issues", "Completed", "Story Points", "Completed Points", "Completion"],
            [[summary.total_issues, summary.completed_issues, format_points(summary.total_story_points),
              format_points(summary.completed_story_points), f"{summary.completion_rate}%"]],
            fontsize=9,
        )
        overview = next(
            (s for s in ctx.slides if s.type == "summary" and "overview" in s.title.lower()),
            next((s for s in ctx.slides if s.type == "summary"), None),
        )
        if overview is not None and overview.text:
            writer.continued = "Sprint Summary"
            writer.paragraph(plain_text(overview.text), fontsize=9)
        writer.space(0.02)

    def _demo_stories(self, writer: PageWriter, ctx: RenderContext, demo_slides: Sequence[Slide]) -> None:
        writer.continued = None
        writer.heading("Demo Stories")
        writer.continued = "Demo Stories"
        if not demo_slides:
            writer.paragraph("No demo stories selected for this sprint.", color=COLORS["muted"])
        for slide in demo_slides:
            issue = ctx.issue_by_id(slide.story_id)
            writer.paragraph(slide.title, fontsize=11, weight="bold", color=NAVY)
            if issue is not None:
                writer.paragraph(
                    f"{issue.key} | {issue.status} | {issue.assignee or 'Unassigned'} | "
                    f"{format_points(issue.story_points)} points | {issue.epic_name or 'No epic'}",
                    fontsize=8, color=COLORS["muted"],
                )
            writer.paragraph(plain_text(slide.text) or "No content available", fontsize=9)
            self._demo_extra(writer, slide, ctx)
            writer.space()
        writer.space(0.01)

    def _demo_extra(self, writer: PageWriter, slide: Slide, ctx: RenderContext) -> None:
        pass

    def _next_sprint(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.continued = None
        writer.heading("Next Sprint Preview")
        writer.continued = "Next Sprint Preview"
        upcoming_slide = next(
            (s for s in ctx.slides if s.type == "upcoming"
             or (s.type == "summary" and "upcoming" in s.title.lower())),
            None,
        )
        if upcoming_slide is not None and upcoming_slide.text:
            writer.paragraph(plain_text(upcoming_slide.text), fontsize=9)
        if ctx.upcoming_issues:
            writer.table(["Key", "Summary", "Status", "Points"], _issue_rows(ctx.upcoming_issues),
                         col_widths=[0.14, 0.58, 0.16, 0.12])
        else:
            writer.paragraph("No upcoming issues.", color=COLORS["muted"])
        writer.space(0.02)

    def _metrics(self, writer: PageWriter, ctx: RenderContext) -> None:
        m = ctx.metrics
        writer.continued = None
        writer.heading("Sprint Metrics")
        writer.continued = "Sprint Metrics"
        if not m:
            writer.paragraph("No metrics available for this sprint.", color=COLORS["muted"])
        else:
            ratio = m.completed_total_points / m.estimated_points if m.estimated_points else 0
            writer.table(
                ["Metric", "Value", "Target", "Status"],
                [
                    ["Completed Story Points", format_points(m.completed_total_points),
                     format_points(m.estimated_points), status_text(ratio)],
                    ["Velocity Achievement", f"{velocity_percentage(m):.1f}%", "100%", status_text(ratio)],
                    ["Test Coverage", f"{format_points(m.test_coverage)}%", "80%", status_text(m.test_coverage / 100)],
                    ["Planned Items", format_points(m.planned_items), "N/A", "N/A"],
                ],
                col_widths=[0.4, 0.2, 0.15, 0.25],
            )
            if m.quality_checklist:
                writer.table(["Quality Item", "Status"],
                             [[item, status.upper()] for item, status in m.quality_checklist.items()],
                             header_color=ACCENT)
        if ctx.epics.groups:
            writer.table(
                ["Epic", "Completed", "Total", "Points", "Completion %"],
                [[g.epic_name, g.completed_issues, len(g.issues),
                  f"{format_points(g.completed_story_points)}/{format_points(g.total_story_points)}",
                  f"{g.completion_rate}%"] for g in ctx.epics.groups],
                col_widths=[0.4, 0.14, 0.12, 0.17, 0.17],
            )


class AdvancedDigestRenderer(DigestRenderer):
    """Digest with charts, embedded demo images and rule-based insights."""

    format = ADVANCED_DIGEST
    footer_label = "Advanced Sprint Digest | jira-sprint-review"

    def section_titles(self) -> List[str]:
        return [
            "Executive Summary", "Demo Stories", "Sprint Analysis", "Performance Charts",
            "Strategic Insights", "Action Items",
        ]

    def _sections(self, writer: PageWriter, ctx: RenderContext) -> None:
        demo_slides = self._walk_slides(ctx)
        self._executive_summary(writer, ctx)
        self._demo_stories(writer, ctx, demo_slides)
        self._analysis(writer, ctx)
        self._charts(writer, ctx)
        self._insights(writer, ctx)
        self._action_items(writer, ctx)

    def _executive_summary(self, writer: PageWriter, ctx: RenderContext) -> None:
        kpis = executive_kpis(ctx.metrics, ctx.issues)
        impact = business_impact(ctx.issues)
        summary = ctx.epics.summary
        writer.continued = None
        writer.heading("Executive Summary")
        writer.continued = "Executive Summary"
        writer.table(
            ["Velocity", "Quality", "Completion", "Efficiency"],
            [[f"{kpis['velocity']}% ({kpis['velocityStatus']})", f"{kpis['qualityScore']}% ({kpis['qualityStatus']})",
              f"{kpis['completionRate']}% ({kpis['completionStatus']})",
              f"{kpis['efficiencyScore']}% ({kpis['efficiencyStatus']})"]],
            fontsize=9,
        )
        lines = [
            f"The team completed {summary.completed_issues} of {summary.total_issues} issues, delivering "
            f"{format_points(summary.completed_story_points)} of {format_points(summary.total_story_points)} "
            f"story points ({summary.completion_rate}%).",
            f"Delivered work includes {impact['storiesCompleted']} user stories, {impact['bugFixes']} bug fixes "
            f"and {impact['technicalDebt']} technical improvements.",
        ]
        if ctx.metrics:
            lines.append(f"Sprint performance is rated {performance_status(velocity_percentage(ctx.metrics))}.")
        writer.paragraph(" ".join(lines), fontsize=10)
        writer.space(0.02)

    def _demo_extra(self, writer: PageWriter, slide: Slide, ctx: RenderContext) -> None:
        # Corporate images referenced from demo slides are shown inline
        asset = ctx.asset_for(slide)
        if asset is None:
            return
        image = load_image(asset, ctx.options.quality)
        if image is not None:
            writer.image(image, height=0.25)

    def _analysis(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.continued = None
        writer.heading("Sprint Analysis")
        writer.continued = "Sprint Analysis"
        by_type = issue_type_breakdown(ctx.issues)
        if by_type:
            writer.table(
                ["Issue Type", "Total", "Completed", "Points"],
                [[name, int(c["total"]), int(c["completed"]), format_points(c["points"])] for name, c in by_type.items()],
            )
        writer.chart(draw_velocity, ctx.metrics, height=0.28)
        writer.chart(draw_quality_checklist, ctx.metrics, height=0.25)

    def _charts(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.continued = None
        writer.new_page()
        writer.heading("Performance Charts")
        writer.chart(draw_epic_completion, ctx.epics.groups, height=0.3)
        writer.chart(draw_epic_points_pie, ctx.epics.groups, height=0.25)
        writer.chart(draw_team_performance, ctx.issues, height=0.25)

    def _insights(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.continued = None
        writer.new_page()
        writer.heading("Strategic Insights")
        writer.continued = "Strategic Insights"
        for insight in strategic_insights(ctx):
            writer.paragraph(f"- {insight}", fontsize=10)
        if ctx.upcoming_issues:
            writer.space()
            writer.table(["Key", "Summary", "Status", "Points"], _issue_rows(ctx.upcoming_issues),
                         col_widths=[0.14, 0.58, 0.16, 0.12])

    def _action_items(self, writer: PageWriter, ctx: RenderContext) -> None:
        writer.continued = None
        writer.space(0.02)
        writer.heading("Action Items")
        writer.continued = "Action Items"
        for number, item in enumerate(executive_recommendations(ctx.metrics, ctx.issues), start=1):
            writer.paragraph(f"{number}. {item}", fontsize=10)


def strategic_insights(ctx: RenderContext) -> List[str]:
    """Rule-based planning notes from the sprint outcome and the upcoming backlog."""
    insights = []
    upcoming = ctx.upcoming_issues
    upcoming_points = sum(issue.points for issue in upcoming)
    unestimated = [issue for issue in upcoming if issue.story_points is None]
    delivered = ctx.epics.summary.completed_story_points

    if upcoming:
        insights.append(
            f"{len(upcoming)} issues ({format_points(upcoming_points)} points) are lined up for the next sprint."
        )
    else:
        insights.append("No upcoming work has been identified yet; refine the backlog before planning.")
    if delivered and upcoming_points > delivered * 1.2:
        insights.append(
            f"Upcoming scope exceeds this sprint's delivered {format_points(delivered)} points by more than 20%; "
            "consider trimming the commitment."
        )
    if unestimated:
        insights.append(f"{len(unestimated)} upcoming issues have no story point estimate.")

    unfinished = [g for g in ctx.epics.groups if g.completion_rate < 100 and g.total_story_points > 0]
    if unfinished:
        names = ", ".join(g.epic_name for g in unfinished[-3:])
        insights.append(f"Least complete epics: {names}.")
    carry = ctx.metrics.carry_forward_points if ctx.metrics else 0
    if carry:
        insights.append(f"{format_points(carry)} points are carried forward into the next sprint.")
    return insights
