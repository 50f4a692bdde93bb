"""
Markdown export of a sprint review.

Produces a single document with YAML front matter, an executive summary,
the epic breakdown, one section per slide and a full issue listing.
"""

import logging
from typing import Dict, Iterable, List, Mapping

from jira_epics import issue_type_breakdown, assignee_breakdown
from jira_issues import Issue, format_points
from jira_metrics import (
    calculate_quality_score,
    efficiency_score,
    metrics_recommendations,
    performance_status,
    quality_status,
    velocity_percentage,
)
from jsr_context import RenderContext
from jsr_models import MARKDOWN, Slide

logger = logging.getLogger(__name__)

CHECKLIST_ICONS = {"yes": "✅", "partial": "⚠️", "no": "❌", "na": "➖"}
HIGH_VALUE_POINTS = 8


def _yaml_str(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _percent(part: float, whole: float) -> str:
    return f"{(part / whole * 100):.1f}" if whole else "0.0"


def _issue_lines(issues: Iterable[Issue]) -> str:
    lines = [
        f"- **{issue.key or issue.id}:** {issue.summary} ({format_points(issue.story_points)} points, {issue.status})"
        for issue in issues
    ]
    if not lines:
        return "No issues in this category.\n"
    return "\n".join(lines) + "\n"


def _breakdown_lines(breakdown: Mapping[str, Dict[str, float]], with_points: bool) -> str:
    lines = []
    for name, counts in breakdown.items():
        line = f"- **{name}:** {int(counts['completed'])}/{int(counts['total'])} issues"
        if with_points:
            line += f" ({format_points(counts['points'])} points)"
        lines.append(line)
    return "\n".join(lines) + "\n" if lines else "No data available.\n"


class MarkdownRenderer:
    """Renders the review as Markdown. The ``interactive`` option does not apply."""

    format = MARKDOWN

    def render(self, ctx: RenderContext) -> bytes:
        parts = [
            self._front_matter(ctx),
            self._executive_summary(ctx),
            self._sprint_overview(ctx),
            self._slides(ctx),
            self._issue_breakdown(ctx),
        ]
        if ctx.metrics:
            parts.append(self._metrics_analysis(ctx))
        parts.append(self._footer(ctx))
        return "".join(parts).encode("utf-8")

    def _front_matter(self, ctx: RenderContext) -> str:
        p = ctx.presentation
        m = ctx.metrics
        created = p.created_at[:10]
        return (
            "---\n"
            f"title: {_yaml_str(p.title)}\n"
            f"sprint: {_yaml_str(p.sprint_name)}\n"
            f"generated: {_yaml_str(ctx.generated_at.isoformat())}\n"
            f"created: {_yaml_str(created)}\n"
            f"total_slides: {len(ctx.slides)}\n"
            f"demo_stories_count: {p.metadata.demo_stories_count}\n"
            f"custom_slides_count: {p.metadata.custom_slides_count}\n"
            f"has_metrics: {'true' if m else 'false'}\n"
            f"sprint_number: {_yaml_str(m.sprint_number if m and m.sprint_number else 'N/A')}\n"
            f"completed_points: {format_points(m.completed_total_points if m else 0)}\n"
            f"estimated_points: {format_points(m.estimated_points if m else 0)}\n"
            f"test_coverage: {format_points(m.test_coverage if m else 0)}\n"
            'format: "markdown"\n'
            'version: "1.0"\n'
            "---\n\n"
            f"# {p.title}\n\n"
            f"**Generated:** {ctx.generated_at.strftime('%Y-%m-%d')}  \n"
            f"**Sprint:** {p.sprint_name}  \n"
            f"**Total Slides:** {len(ctx.slides)}\n\n"
            "---\n\n"
        )

    def _executive_summary(self, ctx: RenderContext) -> str:
        summary = ctx.epics.summary
        m = ctx.metrics
        velocity = velocity_percentage(m)
        completed = ctx.completed_issues
        high_value = [i for i in completed if i.points >= HIGH_VALUE_POINTS]
        by_type = issue_type_breakdown(completed)

        if m:
            performance = (
                f"- **Performance Status:** {performance_status(velocity)}\n"
                f"- **Velocity:** {velocity:.1f}%\n"
                f"- **Test Coverage:** {format_points(m.test_coverage)}%\n"
                f"- **Quality Score:** {calculate_quality_score(m.quality_checklist)}%\n"
            )
        else:
            performance = "No metrics available for this sprint.\n"

        return (
            "## Executive Summary\n\n"
            "### Key Metrics\n"
            f"- **Sprint Velocity:** {velocity:.1f}% "
            f"({format_points(summary.completed_story_points)}/{format_points(summary.total_story_points)} story points)\n"
            f"- **Completed Issues:** {summary.completed_issues}/{summary.total_issues} "
            f"({_percent(summary.completed_issues, summary.total_issues)}%)\n"
            f"- **Test Coverage:** {format_points(m.test_coverage if m else 0)}%\n"
            f"- **Demo Stories:** {sum(1 for s in ctx.slides if s.type == 'demo-story')}\n\n"
            "### Sprint Performance\n"
            f"{performance}\n"
            "### Business Impact\n"
            f"- **High-Value Deliverables:** {len(high_value)} issues\n"
            f"- **User Stories Completed:** {int(by_type.get('Story', {}).get('total', 0))}\n"
            f"- **Bug Fixes:** {int(by_type.get('Bug', {}).get('total', 0))}\n\n"
            "---\n\n"
        )

    def _sprint_overview(self, ctx: RenderContext) -> str:
        epic_lines = [
            f"- **{g.epic_name}:** {g.completed_issues}/{len(g.issues)} issues "
            f"({format_points(g.completed_story_points)}/{format_points(g.total_story_points)} points, "
            f"{g.completion_rate}% complete)"
            for g in ctx.epics.groups
        ]
        epics = "\n".join(epic_lines) + "\n" if epic_lines else "No epic breakdown available.\n"
        return (
            "## Sprint Overview\n\n"
            f"### Epic Breakdown\n{epics}\n"
            f"### Issue Type Distribution\n{_breakdown_lines(issue_type_breakdown(ctx.issues), False)}\n"
            f"### Team Performance\n{_breakdown_lines(assignee_breakdown(ctx.issues), True)}\n"
            "---\n\n"
        )

    def _slides(self, ctx: RenderContext) -> str:
        out: List[str] = ["## Presentation Content\n\n"]
        total = len(ctx.slides)
        for number, slide in enumerate(ctx.slides, start=1):
            out.append(f"### Slide {number}: {slide.title}\n\n")
            out.append(self._slide_body(slide, ctx))
            out.append("\n---\n\n")
            ctx.progress.slide(number, total)
        return "".join(out)

    def _slide_body(self, slide: Slide, ctx: RenderContext) -> str:
        if slide.type == "title":
            return f"**Slide Type:** Title Slide\n\n{slide.text or slide.title}\n"
        if slide.type == "summary":
            return f"**Slide Type:** Summary Slide\n\n{slide.text}\n"
        if slide.type == "metrics":
            return self._metrics_slide(ctx)
        if slide.type == "demo-story":
            return self._demo_story_slide(slide, ctx)
        if slide.type == "corporate":
            if not slide.corporate_slide_url:
                return "**Slide Type:** Corporate Slide\n\nNo corporate slide image available\n"
            if not ctx.options.include_images:
                return "**Slide Type:** Corporate Slide\n\n_Image omitted from this export._\n"
            url = slide.corporate_slide_url
            label = "embedded image" if url.startswith("data:") else url
            return f"**Slide Type:** Corporate Slide\n\nCorporate slide image: {label}\n"
        if slide.type == "epic-breakdown":
            lines = [f"- **{g.epic_name}:** {g.completion_rate}% complete" for g in ctx.epics.groups]
            return "**Slide Type:** Epic Breakdown\n\n" + ("\n".join(lines) or "No epic data available.") + "\n"
        if slide.type == "upcoming":
            return "**Slide Type:** Upcoming Work\n\n" + _issue_lines(ctx.upcoming_issues)
        return f"**Slide Type:** Custom Slide\n\n{slide.text}\n"

    def _metrics_slide(self, ctx: RenderContext) -> str:
        m = ctx.metrics
        if not m:
            return "**Slide Type:** Metrics Slide\n\nNo metrics available for this sprint.\n"
        checklist = "\n".join(
            f"- {CHECKLIST_ICONS.get(status, '➖')} **{item}:** {status.upper()}"
            for item, status in m.quality_checklist.items()
        ) or "No quality checklist recorded."
        return (
            "**Slide Type:** Metrics Slide\n\n"
            "#### Key Performance Indicators\n"
            f"- **Completed Story Points:** {format_points(m.completed_total_points)}/{format_points(m.estimated_points)}\n"
            f"- **Velocity Achievement:** {velocity_percentage(m):.1f}%\n"
            f"- **Test Coverage:** {format_points(m.test_coverage)}%\n"
            f"- **Planned Items:** {format_points(m.planned_items)}\n\n"
            f"#### Quality Metrics\n{checklist}\n"
        )

    def _demo_story_slide(self, slide: Slide, ctx: RenderContext) -> str:
        issue = ctx.issue_by_id(slide.story_id)
        if issue is None:
            return f"**Slide Type:** Demo Story Slide\n\nStory not found.\n\n{slide.text}\n"
        details = [
            f"- **Issue Key:** {issue.key}",
            f"- **Summary:** {issue.summary}",
            f"- **Assignee:** {issue.assignee or 'Unassigned'}",
            f"- **Story Points:** {format_points(issue.story_points) if issue.story_points is not None else 'Not estimated'}",
            f"- **Status:** {issue.status}",
            f"- **Epic:** {issue.epic_name or 'No epic'}",
        ]
        if issue.release_notes:
            details.append(f"- **Release Notes:** {issue.release_notes}")
        return (
            "**Slide Type:** Demo Story Slide\n\n"
            "#### Story Details\n" + "\n".join(details) + "\n\n"
            f"#### Story Content\n{slide.text or 'No content available'}\n"
        )

    def _issue_breakdown(self, ctx: RenderContext) -> str:
        return (
            "## Detailed Issue Breakdown\n\n"
            f"### Completed Issues\n{_issue_lines(ctx.completed_issues)}\n"
            f"### In Progress Issues\n{_issue_lines(ctx.open_issues)}\n"
            f"### Upcoming Issues\n{_issue_lines(ctx.upcoming_issues)}\n"
        )

    def _metrics_analysis(self, ctx: RenderContext) -> str:
        m = ctx.metrics
        quality = calculate_quality_score(m.quality_checklist)
        recommendations = "\n".join(f"- {r}" for r in metrics_recommendations(m))
        return (
            "## Metrics Analysis\n\n"
            "### Velocity Analysis\n"
            f"- **Target Velocity:** {format_points(m.estimated_points)} story points\n"
            f"- **Actual Velocity:** {format_points(m.completed_total_points)} story points\n"
            f"- **Velocity Achievement:** {velocity_percentage(m):.1f}%\n"
            f"- **Efficiency Score:** {efficiency_score(m, ctx.issues):.1f}%\n\n"
            "### Quality Analysis\n"
            f"- **Overall Quality Score:** {quality}%\n"
            f"- **Test Coverage:** {format_points(m.test_coverage)}%\n"
            f"- **Quality Status:** {quality_status(quality)}\n\n"
            f"### Recommendations\n{recommendations}\n\n"
        )

    def _footer(self, ctx: RenderContext) -> str:
        return (
            "## Document Information\n\n"
            "This document was generated by the Sprint Review export toolkit.\n\n"
            f"**Document ID:** {ctx.presentation.id}  \n"
            f"**Generated:** {ctx.generated_at.isoformat()}  \n"
            "**Version:** 1.0\n\n"
            "---\n\n"
            "*End of Sprint Review Document*\n"
        )
