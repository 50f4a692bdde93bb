"""
Per-export state handed to renderers: the data to render and a progress reporter.

A fresh RenderContext (and ProgressReporter) is built for every export call,
so concurrent exports never share progress state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from jira_epics import EpicAggregation
from jira_issues import Issue
from jira_metrics import SprintMetrics
from jsr_assets import EmbeddedAsset
from jsr_models import STAGES, ExportOptions, ExportProgress, GeneratedPresentation, Slide

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]

# (start, end) percentage window per stage
_STAGE_WINDOWS = {
    "preparing": (0, 10),
    "rendering": (10, 80),
    "processing": (85, 95),
    "finalizing": (100, 100),
}


class ProgressReporter:
    """Emits ExportProgress events with stages in strictly forward order.

    Re-entering the current stage is allowed (per-slide updates, retries);
    going back to an earlier stage raises RuntimeError.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._stage_index = -1
        self.events: List[ExportProgress] = []

    @property
    def stage(self) -> Optional[str]:
        return STAGES[self._stage_index] if self._stage_index >= 0 else None

    def report(self, stage: str, message: str, current: int = 0, total: int = 100,
               percentage: Optional[int] = None) -> ExportProgress:
        index = STAGES.index(stage)
        if index < self._stage_index:
            raise RuntimeError(f"Progress stage '{stage}' reported after '{self.stage}'")
        self._stage_index = index
        if percentage is None:
            start, end = _STAGE_WINDOWS[stage]
            fraction = (current / total) if total else 1.0
            percentage = int(start + (end - start) * min(max(fraction, 0.0), 1.0))
        event = ExportProgress(current=current, total=total, stage=stage, message=message, percentage=percentage)
        self.events.append(event)
        logger.debug("Export progress: %s %d%% %s", stage, percentage, message)
        if self._callback is not None:
            self._callback(event)
        return event

    def slide(self, index: int, total: int) -> ExportProgress:
        """Report that slide ``index`` (1-based) of ``total`` was rendered."""
        return self.report("rendering", f"Rendering slide {index} of {total}...", current=index, total=total)


@dataclass
class RenderContext:
    presentation: GeneratedPresentation
    slides: List[Slide]
    issues: List[Issue]
    upcoming_issues: List[Issue]
    metrics: Optional[SprintMetrics]
    options: ExportOptions
    epics: EpicAggregation
    generated_at: datetime
    progress: ProgressReporter = field(default_factory=ProgressReporter)
    assets: Dict[str, EmbeddedAsset] = field(default_factory=dict)
    asset_failures: Dict[str, str] = field(default_factory=dict)

    def issue_by_id(self, story_id: Optional[str]) -> Optional[Issue]:
        """Find a demo-story issue by id, falling back to its key."""
        if not story_id:
            return None
        for issue in self.issues:
            if issue.id == story_id or issue.key == story_id:
                return issue
        return None

    def asset_for(self, slide: Slide) -> Optional[EmbeddedAsset]:
        if not slide.corporate_slide_url or not self.options.include_images:
            return None
        return self.assets.get(slide.corporate_slide_url)

    @property
    def completed_issues(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.completed]

    @property
    def open_issues(self) -> List[Issue]:
        return [issue for issue in self.issues if not issue.completed]
