"""
Charts for sprint review exports, drawn with matplotlib.

Each draw_* function paints into a given Axes so the PDF renderers can place
charts on their own pages; chart_png() wraps any of them into a standalone
PNG for the HTML and PowerPoint exports.
"""

import io
import logging
from typing import Callable, Optional, Sequence

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend

from matplotlib.axes import Axes
from matplotlib.figure import Figure

from jira_epics import EpicGroup, assignee_breakdown
from jira_issues import Issue
from jira_metrics import QUALITY_SCORES, SprintMetrics

logger = logging.getLogger(__name__)

QUALITY_DPI = {"low": 72, "medium": 100, "high": 150}

COLORS = {
    "primary": "#2563eb",
    "success": "#16a34a",
    "warning": "#f59e0b",
    "danger": "#dc2626",
    "muted": "#9ca3af",
    "text": "#1f2937",
}

CHECKLIST_COLORS = {"yes": COLORS["success"], "partial": COLORS["warning"], "no": COLORS["danger"]}


def dpi_for(quality: str) -> int:
    return QUALITY_DPI.get(quality, QUALITY_DPI["medium"])


def _empty(ax: Axes, message: str) -> None:
    ax.axis("off")
    ax.text(0.5, 0.5, message, ha="center", va="center", fontsize=11, color=COLORS["muted"], transform=ax.transAxes)


def draw_epic_completion(ax: Axes, groups: Sequence[EpicGroup], max_epics: int = 12) -> None:
    """Horizontal bars: completion rate per epic, coloured with the epic colour."""
    shown = list(groups)[:max_epics]
    if not shown:
        _empty(ax, "No epic data available")
        return
    labels = [g.epic_name if len(g.epic_name) <= 32 else g.epic_name[:31] + "…" for g in shown]
    rates = [g.completion_rate for g in shown]
    positions = range(len(shown))
    bars = ax.barh(list(positions), rates, color=[g.epic_color for g in shown])
    ax.set_yticks(list(positions))
    ax.set_yticklabels(labels, fontsize=8)
    ax.invert_yaxis()
    ax.set_xlim(0, 110)
    ax.set_xlabel("Completion (%)")
    ax.set_title("Epic Completion", fontsize=11, fontweight="bold")
    for bar, group in zip(bars, shown):
        ax.text(
            bar.get_width() + 1, bar.get_y() + bar.get_height() / 2,
            f"{group.completion_rate}% ({group.completed_story_points:g}/{group.total_story_points:g} pts)",
            va="center", fontsize=7, color=COLORS["text"],
        )
    ax.grid(axis="x", alpha=0.3)


def draw_epic_points_pie(ax: Axes, groups: Sequence[EpicGroup]) -> None:
    """Pie of story points per epic (epics without points left out)."""
    with_points = [g for g in groups if g.total_story_points > 0]
    if not with_points:
        _empty(ax, "No story points estimated")
        return
    ax.pie(
        [g.total_story_points for g in with_points],
        labels=[g.epic_name[:24] for g in with_points],
        colors=[g.epic_color for g in with_points],
        autopct="%1.0f%%",
        textprops={"fontsize": 7},
        startangle=90,
    )
    ax.set_title("Story Points by Epic", fontsize=11, fontweight="bold")
    ax.axis("equal")


def draw_velocity(ax: Axes, metrics: Optional[SprintMetrics]) -> None:
    """Bars for estimated, completed and adjusted points."""
    if not metrics:
        _empty(ax, "No sprint metrics available")
        return
    labels = ["Estimated", "Completed", "Adjusted", "Carry forward"]
    values = [
        metrics.estimated_points,
        metrics.completed_total_points,
        metrics.completed_adjusted_points,
        metrics.carry_forward_points,
    ]
    colors = [COLORS["muted"], COLORS["success"], COLORS["primary"], COLORS["warning"]]
    bars = ax.bar(labels, values, color=colors)
    for bar, value in zip(bars, values):
        ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height(), f"{value:g}", ha="center", va="bottom", fontsize=8)
    ax.set_ylabel("Story points")
    title = f"Sprint {metrics.sprint_number} Velocity" if metrics.sprint_number else "Sprint Velocity"
    ax.set_title(title, fontsize=11, fontweight="bold")
    ax.grid(axis="y", alpha=0.3)


def draw_quality_checklist(ax: Axes, metrics: Optional[SprintMetrics]) -> None:
    """One bar per applicable checklist item, height = its score."""
    items = [
        (name, status) for name, status in (metrics.quality_checklist.items() if metrics else [])
        if status in QUALITY_SCORES
    ]
    if not items:
        _empty(ax, "No quality checklist data")
        return
    names = [name[:18] for name, _ in items]
    scores = [QUALITY_SCORES[status] * 100 for _, status in items]
    ax.bar(names, scores, color=[CHECKLIST_COLORS[status] for _, status in items])
    ax.set_ylim(0, 110)
    ax.set_ylabel("Score (%)")
    ax.set_title("Quality Checklist", fontsize=11, fontweight="bold")
    ax.tick_params(axis="x", labelrotation=30, labelsize=7)


def draw_team_performance(ax: Axes, issues: Sequence[Issue], max_people: int = 10) -> None:
    """Grouped bars of total vs completed issues per assignee."""
    breakdown = list(assignee_breakdown(issues).items())[:max_people]
    if not breakdown:
        _empty(ax, "No issues assigned")
        return
    names = [name[:16] for name, _ in breakdown]
    positions = list(range(len(breakdown)))
    width = 0.4
    ax.bar([p - width / 2 for p in positions], [b["total"] for _, b in breakdown], width,
           label="Total", color=COLORS["muted"])
    ax.bar([p + width / 2 for p in positions], [b["completed"] for _, b in breakdown], width,
           label="Completed", color=COLORS["success"])
    ax.set_xticks(positions)
    ax.set_xticklabels(names, rotation=30, ha="right", fontsize=7)
    ax.set_ylabel("Issues")
    ax.set_title("Team Performance", fontsize=11, fontweight="bold")
    ax.legend(fontsize=7)


def new_figure(width: float = 10, height: float = 5.6) -> Figure:
    """Return a pyplot-free Figure (safe to use from concurrent exports)."""
    return Figure(figsize=(width, height))


def chart_png(draw: Callable[..., None], *args, quality: str = "medium",
              size: Sequence[float] = (8, 4.5), **kwargs) -> bytes:
    """Render one draw_* function into PNG bytes.

    Example:
        >>> png = chart_png(draw_epic_completion, aggregation.groups, quality="high")
        >>> png[:8] == b"\\x89PNG\\r\\n\\x1a\\n"
        True
    """
    fig = new_figure(*size)
    ax = fig.add_subplot(1, 1, 1)
    draw(ax, *args, **kwargs)
    fig.tight_layout()
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi_for(quality), bbox_inches="tight")
    return buf.getvalue()
