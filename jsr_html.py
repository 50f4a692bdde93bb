"""
HTML exports: the full slide deck and the one-page executive summary.

Both are self-contained documents: styles are inline, images and charts are
embedded as data URLs.
"""

import base64
import logging
import re

from jinja2 import Environment

from jira_issues import format_points
from jira_metrics import (
    business_impact,
    calculate_quality_score,
    executive_kpis,
    executive_recommendations,
    velocity_percentage,
)
from jsr_charts import chart_png, draw_epic_completion, draw_velocity
from jsr_context import RenderContext
from jsr_models import EXECUTIVE, HTML, ExportOptions

logger = logging.getLogger(__name__)

_env = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)
_env.filters["points"] = format_points

BASE_CSS = """
body { font-family: -apple-system, 'Segoe UI', Helvetica, Arial, sans-serif; margin: 0; background: #f3f4f6; color: #1f2937; }
.deck { max-width: 1100px; margin: 0 auto; padding: 24px; }
.slide { background: #ffffff; border-radius: 12px; padding: 40px; margin-bottom: 24px; min-height: 480px; box-shadow: 0 4px 12px rgba(0,0,0,0.08); }
.slide h2 { margin-top: 0; color: #1e3a8a; }
.slide .text { white-space: pre-wrap; line-height: 1.5; }
.slide img { max-width: 100%; border-radius: 8px; }
.epic-row { display: flex; align-items: center; margin: 6px 0; }
.epic-bar { height: 12px; border-radius: 6px; margin-right: 8px; }
table { border-collapse: collapse; width: 100%; font-size: 14px; }
td, th { border-bottom: 1px solid #e5e7eb; padding: 6px 8px; text-align: left; }
.controls { position: fixed; bottom: 16px; right: 16px; }
.controls button { padding: 8px 14px; margin-left: 6px; border: 0; border-radius: 6px; background: #2563eb; color: #fff; cursor: pointer; }
.placeholder { color: #9ca3af; font-style: italic; }
"""

DECK_TEMPLATE = _env.from_string("""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="generator" content="jira-sprint-review">
<title>{{ presentation.title }}</title>
<style>{{ css }}</style>
</head>
<body>
<div class="deck">
{% for slide in slides %}
<section class="slide slide-{{ slide.type }}" id="slide-{{ loop.index }}" data-slide="{{ loop.index0 }}">
<h2>{{ slide.title }}</h2>
{% if slide.type == 'corporate' %}
  {% if slide.image %}
<img src="{{ slide.image }}" alt="{{ slide.title }}">
  {% elif slide.image_note %}
<p class="placeholder">{{ slide.image_note }}</p>
  {% endif %}
{% elif slide.type == 'metrics' %}
  {% if metrics %}
<table>
<tr><th>Completed Story Points</th><td>{{ metrics.completed_total_points|points }}/{{ metrics.estimated_points|points }}</td></tr>
<tr><th>Velocity Achievement</th><td>{{ '%.1f'|format(velocity) }}%</td></tr>
<tr><th>Test Coverage</th><td>{{ metrics.test_coverage|points }}%</td></tr>
<tr><th>Quality Score</th><td>{{ quality_score }}%</td></tr>
<tr><th>Planned Items</th><td>{{ metrics.planned_items|points }}</td></tr>
</table>
    {% if velocity_chart %}
<img src="{{ velocity_chart }}" alt="Sprint velocity chart">
    {% endif %}
  {% else %}
<p class="placeholder">No metrics available for this sprint.</p>
  {% endif %}
{% elif slide.type == 'demo-story' %}
  {% if slide.issue %}
<p><strong>{{ slide.issue.key }}</strong> &middot; {{ slide.issue.status }} &middot; {{ slide.issue.assignee or 'Unassigned' }} &middot; {{ slide.issue.story_points|points }} points</p>
  {% endif %}
  {% for label, text in slide.sections %}
<h3>{{ label }}</h3>
<div class="text">{{ text }}</div>
  {% else %}
<div class="text">{{ slide.text }}</div>
  {% endfor %}
{% elif slide.type == 'epic-breakdown' %}
  {% for group in epics.groups %}
<div class="epic-row"><div class="epic-bar" style="width: {{ group.completion_rate * 3 }}px; background: {{ group.epic_color }};"></div>{{ group.epic_name }}: {{ group.completion_rate }}%</div>
  {% else %}
<p class="placeholder">No epic data available.</p>
  {% endfor %}
  {% if epic_chart %}
<img src="{{ epic_chart }}" alt="Epic completion chart">
  {% endif %}
{% elif slide.type == 'upcoming' %}
<table>
  {% for issue in upcoming %}
<tr><td>{{ issue.key }}</td><td>{{ issue.summary }}</td><td>{{ issue.story_points|points }} pts</td></tr>
  {% else %}
<tr><td class="placeholder">No upcoming issues.</td></tr>
  {% endfor %}
</table>
{% else %}
<div class="text">{{ slide.text }}</div>
{% endif %}
</section>
{% endfor %}
<section class="slide slide-appendix" id="issues">
<h2>Sprint Issues</h2>
<p>{{ summary.completed_issues }}/{{ summary.total_issues }} issues done, {{ summary.completed_story_points|points }}/{{ summary.total_story_points|points }} points ({{ summary.completion_rate }}%).</p>
<table>
<tr><th>Key</th><th>Summary</th><th>Status</th><th>Epic</th><th>Points</th></tr>
{% for issue in issues %}
<tr><td>{{ issue.key }}</td><td>{{ issue.summary }}</td><td>{{ issue.status }}</td><td>{{ issue.epic_name or '' }}</td><td>{{ issue.story_points|points }}</td></tr>
{% endfor %}
</table>
</section>
</div>
{% if interactive %}
<div class="controls">
<button type="button" onclick="jsrGo(-1)">Previous</button>
<button type="button" onclick="jsrGo(1)">Next</button>
</div>
<script>
var jsrCurrent = 0;
var jsrSlides = document.querySelectorAll('section.slide');
function jsrGo(step) {
  jsrCurrent = Math.max(0, Math.min(jsrSlides.length - 1, jsrCurrent + step));
  jsrSlides[jsrCurrent].scrollIntoView({behavior: 'smooth'});
}
document.addEventListener('keydown', function (event) {
  if (event.key === 'ArrowRight' || event.key === 'PageDown') { jsrGo(1); }
  if (event.key === 'ArrowLeft' || event.key === 'PageUp') { jsrGo(-1); }
});
</script>
{% endif %}
</body>
</html>
""")

EXECUTIVE_TEMPLATE = _env.from_string("""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Executive Summary - {{ sprint_name }}</title>
<style>
body { font-family: -apple-system, 'Segoe UI', Helvetica, Arial, sans-serif; background: #f8fafc; color: #1f2937; margin: 0; }
.container { max-width: 960px; margin: 0 auto; background: #ffffff; }
.header { background: linear-gradient(135deg, #1e3a8a, #2563eb); color: #ffffff; padding: 40px; }
.header h1 { margin: 0; font-size: 32px; }
.subtitle { opacity: 0.85; margin-top: 8px; }
.content { padding: 32px 40px; }
.section { margin-bottom: 32px; }
.section h2 { color: #1e3a8a; border-bottom: 2px solid #e5e7eb; padding-bottom: 6px; }
.metrics-grid, .impact-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 16px; }
.metric-card, .impact-item { background: #f1f5f9; border-radius: 10px; padding: 18px; }
.metric-value { font-size: 30px; font-weight: 700; }
.metric-label { color: #475569; }
.metric-status { font-size: 12px; font-weight: 700; margin-top: 6px; }
.status-excellent { color: #16a34a; } .status-good { color: #2563eb; } .status-fair { color: #f59e0b; } .status-poor { color: #dc2626; }
.footer { padding: 16px 40px; color: #64748b; font-size: 12px; border-top: 1px solid #e5e7eb; }
img { max-width: 100%; }
</style>
</head>
<body>
<div class="container">
<div class="header">
<h1>Executive Summary</h1>
<div class="subtitle">{{ sprint_name }} - {{ created }}</div>
</div>
<div class="content">
<div class="section">
<h2>Key Performance Indicators</h2>
<div class="metrics-grid">
{% for value, label, status in kpi_cards %}
<div class="metric-card">
<div class="metric-value">{{ value }}%</div>
<div class="metric-label">{{ label }}</div>
<div class="metric-status status-{{ status }}">{{ status|upper }}</div>
</div>
{% endfor %}
</div>
</div>
<div class="section">
<h2>Business Impact</h2>
<div class="impact-grid">
<div class="impact-item"><h3>High-Value Deliverables</h3><p>{{ impact.highValueDeliverables }} high-value items completed, representing {{ impact.highValuePercentage }}% of delivered story points.</p></div>
<div class="impact-item"><h3>User Stories Completed</h3><p>{{ impact.storiesCompleted }} user stories delivered out of {{ impact.completedIssues }} completed issues.</p></div>
<div class="impact-item"><h3>Bug Fixes</h3><p>{{ impact.bugFixes }} bugs resolved.</p></div>
<div class="impact-item"><h3>Technical Debt</h3><p>{{ impact.technicalDebt }} technical improvements implemented.</p></div>
</div>
</div>
<div class="section">
<h2>Epic Progress</h2>
{% if epic_chart %}
<img src="{{ epic_chart }}" alt="Epic completion chart">
{% else %}
<ul>
{% for group in epics.groups %}
<li>{{ group.epic_name }}: {{ group.completion_rate }}% ({{ group.completed_story_points|points }}/{{ group.total_story_points|points }} points)</li>
{% else %}
<li>No epic data available.</li>
{% endfor %}
</ul>
{% endif %}
</div>
<div class="section">
<h2>Strategic Recommendations</h2>
<h3>Key Actions for Next Sprint</h3>
<ul>
{% for rec in recommendations %}
<li>{{ rec }}</li>
{% endfor %}
</ul>
</div>
</div>
<div class="footer"><p>Generated by jira-sprint-review | {{ generated }}</p></div>
</div>
</body>
</html>
""")

_BETWEEN_TAGS = re.compile(r">\s+<")
_LEADING_SPACE = re.compile(r"^\s+", re.MULTILINE)


def minify_html(html: str) -> str:
    """Drop indentation and whitespace-only gaps between tags.

    Example:
        >>> minify_html("<ul>\\n  <li>a</li>\\n</ul>")
        '<ul><li>a</li></ul>'
    """
    return _BETWEEN_TAGS.sub("><", _LEADING_SPACE.sub("", html)).strip()


def _png_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


class HtmlRenderer:
    """Interactive (or static) HTML slide deck."""

    format = HTML

    def render(self, ctx: RenderContext) -> bytes:
        quality = ctx.options.quality
        include_images = ctx.options.include_images
        slides = []
        total = len(ctx.slides)
        for number, slide in enumerate(ctx.slides, start=1):
            view = {
                "type": slide.type,
                "title": slide.title,
                "text": slide.text,
                "sections": slide.content.sections() if not isinstance(slide.content, str) else [],
                "issue": ctx.issue_by_id(slide.story_id),
                "image": None,
                "image_note": None,
            }
            if slide.type == "corporate" and slide.corporate_slide_url:
                asset = ctx.asset_for(slide)
                if asset is not None:
                    view["image"] = asset.data_url
                elif not include_images:
                    view["image_note"] = "Image omitted from this export."
                else:
                    view["image_note"] = "Image could not be loaded."
            slides.append(view)
            ctx.progress.slide(number, total)

        needs_epic_chart = include_images and any(s.type == "epic-breakdown" for s in ctx.slides)
        needs_velocity_chart = include_images and ctx.metrics and any(s.type == "metrics" for s in ctx.slides)

        html = DECK_TEMPLATE.render(
            css=BASE_CSS,
            presentation=ctx.presentation,
            slides=slides,
            metrics=ctx.metrics,
            velocity=velocity_percentage(ctx.metrics),
            quality_score=calculate_quality_score(ctx.metrics.quality_checklist) if ctx.metrics else 0,
            epics=ctx.epics,
            summary=ctx.epics.summary,
            issues=ctx.issues,
            upcoming=ctx.upcoming_issues,
            interactive=ctx.options.interactive,
            epic_chart=_png_data_url(chart_png(draw_epic_completion, ctx.epics.groups, quality=quality))
            if needs_epic_chart and ctx.epics.has_data else None,
            velocity_chart=_png_data_url(chart_png(draw_velocity, ctx.metrics, quality=quality))
            if needs_velocity_chart else None,
        )
        return html.encode("utf-8")

    def post_process(self, blob: bytes, options: ExportOptions) -> bytes:
        if not options.compression:
            return blob
        return minify_html(blob.decode("utf-8")).encode("utf-8")


class ExecutiveRenderer(HtmlRenderer):
    """One-page executive summary: KPIs, business impact, recommendations."""

    format = EXECUTIVE

    def render(self, ctx: RenderContext) -> bytes:
        kpis = executive_kpis(ctx.metrics, ctx.issues)
        kpi_cards = [
            (kpis["velocity"], "Sprint Velocity", kpis["velocityStatus"]),
            (kpis["qualityScore"], "Quality Score", kpis["qualityStatus"]),
            (kpis["completionRate"], "Completion Rate", kpis["completionStatus"]),
            (kpis["efficiencyScore"], "Overall Efficiency", kpis["efficiencyStatus"]),
        ]
        epic_chart = None
        if ctx.options.include_images and ctx.epics.has_data:
            epic_chart = _png_data_url(chart_png(draw_epic_completion, ctx.epics.groups, quality=ctx.options.quality))
        ctx.progress.slide(1, 1)
        html = EXECUTIVE_TEMPLATE.render(
            sprint_name=ctx.presentation.sprint_name,
            created=ctx.presentation.created_at[:10],
            generated=ctx.generated_at.strftime("%Y-%m-%d"),
            kpi_cards=kpi_cards,
            impact=business_impact(ctx.issues),
            epics=ctx.epics,
            epic_chart=epic_chart,
            recommendations=executive_recommendations(ctx.metrics, ctx.issues),
        )
        return html.encode("utf-8")
