"""
jsr_pptx.py
-----------
PowerPoint export of a sprint review, built with python-pptx on the default
template. One PowerPoint slide per review slide; long issue lists continue
on extra slides.
"""

import io
import logging
from typing import Iterator, List, Sequence

from pptx import Presentation
from pptx.chart.data import CategoryChartData
from pptx.enum.chart import XL_CHART_TYPE
from pptx.util import Inches, Pt

from jira_issues import Issue, format_points
from jira_metrics import calculate_quality_score, velocity_percentage
from jsr_context import RenderContext
from jsr_models import PPTX, Slide
from jsr_pdf import load_image, plain_text

logger = logging.getLogger(__name__)

ITEMS_PER_SLIDE = 5


def get_layout_by_name(prs, name):
    for layout in prs.slide_layouts:
        if layout.name.strip().lower() == name.strip().lower():
            return layout
    return prs.slide_layouts[0]


def _paginate_list(lst: Sequence, n: int) -> Iterator[Sequence]:
    for i in range(0, len(lst), n):
        yield lst[i:i + n]


def truncate(text, length=100):
    if not text:
        return ""
    s = str(text).strip()
    if len(s) <= length:
        return s
    return s[:length - 1].rsplit(" ", 1)[0] + "…"


def _issue_line(issue: Issue) -> str:
    mark = "✔" if issue.completed else "—"
    return f"{mark} {issue.key}: {truncate(issue.summary, 90)} [{issue.status}]"


class PptxRenderer:
    format = PPTX

    def render(self, ctx: RenderContext) -> bytes:
        prs = Presentation()
        self.title_layout = get_layout_by_name(prs, "Title Slide")
        self.content_layout = get_layout_by_name(prs, "Title Only")

        total = len(ctx.slides)
        for number, slide in enumerate(ctx.slides, start=1):
            self._add_slide(prs, slide, ctx)
            ctx.progress.slide(number, total)

        buf = io.BytesIO()
        prs.save(buf)
        logger.info("PowerPoint export built with %d slides", len(prs.slides))
        return buf.getvalue()

    def _titled(self, prs, title: str):
        slide = prs.slides.add_slide(self.content_layout)
        if slide.shapes.title:
            slide.shapes.title.text = title
        return slide

    def _text(self, slide, lines: List[str], size: int = 16, top: float = 1.4, height: float = 5.5):
        txBox = slide.shapes.add_textbox(Inches(0.5), Inches(top), Inches(9), Inches(height))
        tf = txBox.text_frame
        tf.word_wrap = True
        tf.text = "\n".join(lines)
        for paragraph in tf.paragraphs:
            paragraph.font.size = Pt(size)
        return tf

    def _add_slide(self, prs, slide: Slide, ctx: RenderContext) -> None:
        if slide.type == "title":
            pslide = prs.slides.add_slide(self.title_layout)
            pslide.shapes.title.text = slide.title or ctx.presentation.title
            try:
                pslide.placeholders[1].text = plain_text(slide.text) or ctx.presentation.sprint_name
            except KeyError:
                pass
            return

        if slide.type == "upcoming":
            self._issue_slides(prs, slide.title, ctx.upcoming_issues, "No upcoming issues.")
            return

        pslide = self._titled(prs, slide.title)
        if slide.type == "metrics":
            self._metrics(pslide, ctx)
        elif slide.type == "demo-story":
            self._demo_story(pslide, slide, ctx)
        elif slide.type == "corporate":
            self._corporate(pslide, slide, ctx)
        elif slide.type == "epic-breakdown":
            self._epic_chart(pslide, ctx)
        else:
            self._text(pslide, plain_text(slide.text).splitlines() or [""], size=16)

    def _issue_slides(self, prs, title: str, issues: Sequence[Issue], empty: str) -> None:
        pages = list(_paginate_list([_issue_line(i) for i in issues], ITEMS_PER_SLIDE)) or [[empty]]
        total = len(pages)
        for idx, page_lines in enumerate(pages, start=1):
            title_text = f"{title} ({idx}/{total})" if total > 1 else title
            self._text(self._titled(prs, title_text), list(page_lines), size=16)

    def _metrics(self, pslide, ctx: RenderContext) -> None:
        m = ctx.metrics
        if not m:
            self._text(pslide, ["No metrics available for this sprint."])
            return
        chart_data = CategoryChartData()
        chart_data.categories = ["Estimated", "Completed", "Adjusted", "Carry forward"]
        chart_data.add_series("Story Points", (
            m.estimated_points, m.completed_total_points, m.completed_adjusted_points, m.carry_forward_points,
        ))
        chart = pslide.shapes.add_chart(
            XL_CHART_TYPE.COLUMN_CLUSTERED, Inches(0.5), Inches(1.4), Inches(9), Inches(4.0), chart_data,
        ).chart
        chart.has_legend = False
        if chart.category_axis:
            chart.category_axis.tick_labels.font.size = Pt(11)
        self._text(pslide, [
            f"Velocity: {velocity_percentage(m):.1f}%  |  Test coverage: {format_points(m.test_coverage)}%  |  "
            f"Quality score: {calculate_quality_score(m.quality_checklist)}%",
        ], size=14, top=5.6, height=1.0)

    def _demo_story(self, pslide, slide: Slide, ctx: RenderContext) -> None:
        tf = self._text(pslide, [], size=14)
        tf.clear()
        issue = ctx.issue_by_id(slide.story_id)
        if issue is not None:
            p = tf.paragraphs[0]
            p.text = f"{issue.key} | {issue.assignee or 'Unassigned'} | {format_points(issue.story_points)} points"
            p.font.size = Pt(12)
            p.font.italic = True
        sections = [] if isinstance(slide.content, str) else slide.content.sections()
        for label, text in sections or [("", slide.text)]:
            if label:
                p = tf.add_paragraph()
                p.text = label
                p.font.size = Pt(16)
                p.font.bold = True
            for line in plain_text(text).splitlines():
                s = tf.add_paragraph()
                s.text = line
                s.level = 1 if label else 0
                s.font.size = Pt(14)

    def _corporate(self, pslide, slide: Slide, ctx: RenderContext) -> None:
        asset = ctx.asset_for(slide)
        image = load_image(asset, ctx.options.quality) if asset is not None else None
        if image is None:
            self._text(pslide, ["Corporate slide image not available."], size=14)
            return
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        buf.seek(0)
        # Fit inside 9 x 5.6 inches keeping the aspect ratio
        width, height = image.size
        if width / height >= 9 / 5.6:
            pslide.shapes.add_picture(buf, Inches(0.5), Inches(1.4), width=Inches(9))
        else:
            pslide.shapes.add_picture(buf, Inches(0.5), Inches(1.4), height=Inches(5.6))

    def _epic_chart(self, pslide, ctx: RenderContext) -> None:
        groups = ctx.epics.groups[:12]
        if not groups:
            self._text(pslide, ["No epic data available."])
            return
        chart_data = CategoryChartData()
        chart_data.categories = [truncate(g.epic_name, 40) for g in groups]
        chart_data.add_series("Completion %", [g.completion_rate for g in groups])
        chart = pslide.shapes.add_chart(
            XL_CHART_TYPE.BAR_CLUSTERED, Inches(0.5), Inches(1.4), Inches(9), Inches(5.5), chart_data,
        ).chart
        chart.has_legend = False
        if chart.category_axis:
            chart.category_axis.tick_labels.font.size = Pt(10)
            chart.category_axis.reverse_order = True
        if chart.value_axis:
            chart.value_axis.maximum_scale = 100
            chart.value_axis.tick_labels.font.size = Pt(10)
