"""
Data model for sprint review presentations and their exports.

Payloads arrive as camelCase JSON (from the review UI or a saved session);
from_dict() constructors translate them into the dataclasses below.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

PDF = "pdf"
HTML = "html"
MARKDOWN = "markdown"
EXECUTIVE = "executive"
DIGEST = "digest"
ADVANCED_DIGEST = "advanced-digest"
PPTX = "pptx"

FORMAT_EXTENSIONS: Dict[str, str] = {
    PDF: "pdf",
    HTML: "html",
    MARKDOWN: "md",
    EXECUTIVE: "html",
    DIGEST: "pdf",
    ADVANCED_DIGEST: "pdf",
    PPTX: "pptx",
}

CONTENT_TYPES: Dict[str, str] = {
    PDF: "application/pdf",
    HTML: "text/html; charset=utf-8",
    MARKDOWN: "text/markdown; charset=utf-8",
    EXECUTIVE: "text/html; charset=utf-8",
    DIGEST: "application/pdf",
    ADVANCED_DIGEST: "application/pdf",
    PPTX: "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

FILE_PREFIXES: Dict[str, str] = {
    EXECUTIVE: "Executive_Summary",
    DIGEST: "Sprint_Review_Digest",
    ADVANCED_DIGEST: "Sprint_Review_Advanced_Digest",
}
DEFAULT_FILE_PREFIX = "Sprint_Review"

QUALITY_LEVELS = ("low", "medium", "high")
DEFAULT_QUALITY = "medium"

SLIDE_TYPES = ("title", "summary", "metrics", "demo-story", "custom", "corporate", "epic-breakdown", "upcoming")

STAGES = ("preparing", "rendering", "processing", "finalizing")

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off", "")


def parse_flag(value: Any, default: bool) -> bool:
    """Read a JSON boolean that may arrive as a string or number.

    Raises:
        ValueError: For values that are not recognisably true or false

    Examples:
        >>> parse_flag("false", True)
        False
        >>> parse_flag(None, True)
        True
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _object(data: Any, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _count(data: Mapping[str, Any], name: str) -> int:
    value = data.get(name)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class StructuredContent:
    """Demo-story content split into the three talking points of a story slide."""

    accomplishments: str = ""
    business_value: str = ""
    user_impact: str = ""

    def sections(self) -> List[tuple]:
        return [
            (label, text)
            for label, text in (
                ("Accomplishments", self.accomplishments),
                ("Business Value", self.business_value),
                ("User Impact", self.user_impact),
            )
            if text
        ]

    def to_text(self) -> str:
        return "\n\n".join(f"{label}: {text}" for label, text in self.sections())

    def to_dict(self) -> Dict[str, str]:
        return {
            "accomplishments": self.accomplishments,
            "businessValue": self.business_value,
            "userImpact": self.user_impact,
        }


SlideContent = Union[str, StructuredContent]


def parse_slide_content(raw: Any) -> SlideContent:
    if raw is None:
        return ""
    if isinstance(raw, (str, StructuredContent)):
        return raw
    if isinstance(raw, Mapping):
        # {"type": ..., "data": {...}} wrapper used by some saved sessions
        data = raw.get("data") if isinstance(raw.get("data"), Mapping) else raw
        if any(k in data for k in ("accomplishments", "businessValue", "userImpact")):
            return StructuredContent(
                accomplishments=str(data.get("accomplishments") or ""),
                business_value=str(data.get("businessValue") or ""),
                user_impact=str(data.get("userImpact") or ""),
            )
        return json.dumps(raw, sort_keys=True)
    return str(raw)


@dataclass(frozen=True)
class Slide:
    id: str
    title: str
    content: SlideContent = ""
    type: str = "custom"
    order: float = 0
    corporate_slide_url: Optional[str] = None
    story_id: Optional[str] = None

    @property
    def text(self) -> str:
        if isinstance(self.content, StructuredContent):
            return self.content.to_text()
        return self.content

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Slide":
        if not isinstance(data, Mapping):
            raise ValueError(f"Slide must be an object, got {type(data).__name__}")
        if data.get("id") in (None, ""):
            raise ValueError("Slide is missing an id")
        slide_type = str(data.get("type") or "custom")
        try:
            order = float(data.get("order", 0))
        except (TypeError, ValueError):
            raise ValueError(f"Slide {data.get('id')} has a non-numeric order") from None
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            content=parse_slide_content(data.get("content")),
            type=slide_type if slide_type in SLIDE_TYPES else "custom",
            order=order,
            corporate_slide_url=data.get("corporateSlideUrl") or None,
            story_id=str(data["storyId"]) if data.get("storyId") not in (None, "") else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        content = self.content.to_dict() if isinstance(self.content, StructuredContent) else self.content
        return {
            "id": self.id,
            "title": self.title,
            "content": content,
            "type": self.type,
            "order": self.order,
            "corporateSlideUrl": self.corporate_slide_url,
            "storyId": self.story_id,
        }


def dedupe_and_sort_slides(slides: Sequence[Slide]) -> List[Slide]:
    """Drop repeated slide ids (first occurrence wins), then sort by order.

    The sort is stable, so slides sharing an order keep their input order.

    Examples:
        >>> slides = [Slide("a", "A", order=2), Slide("b", "B", order=1), Slide("a", "A2", order=0)]
        >>> [s.title for s in dedupe_and_sort_slides(slides)]
        ['B', 'A']
    """
    seen = set()
    unique = []
    for slide in slides:
        if slide.id in seen:
            continue
        seen.add(slide.id)
        unique.append(slide)
    return sorted(unique, key=lambda s: s.order)


@dataclass(frozen=True)
class PresentationMetadata:
    sprint_name: str = ""
    total_slides: int = 0
    has_metrics: bool = False
    demo_stories_count: int = 0
    custom_slides_count: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PresentationMetadata":
        """Raises ValueError for a non-object payload or non-numeric counts."""
        data = _object(data, "Presentation metadata")
        return cls(
            sprint_name=str(data.get("sprintName") or ""),
            total_slides=_count(data, "totalSlides"),
            has_metrics=parse_flag(data.get("hasMetrics"), False),
            demo_stories_count=_count(data, "demoStoriesCount"),
            custom_slides_count=_count(data, "customSlidesCount"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sprintName": self.sprint_name,
            "totalSlides": self.total_slides,
            "hasMetrics": self.has_metrics,
            "demoStoriesCount": self.demo_stories_count,
            "customSlidesCount": self.custom_slides_count,
        }


@dataclass(frozen=True)
class GeneratedPresentation:
    id: str
    title: str
    slides: List[Slide] = field(default_factory=list)
    created_at: str = ""
    metadata: PresentationMetadata = field(default_factory=PresentationMetadata)

    @property
    def sprint_name(self) -> str:
        return self.metadata.sprint_name or self.title

    def ordered_slides(self) -> List[Slide]:
        """The slides every renderer iterates: deduplicated, then ordered."""
        return dedupe_and_sort_slides(self.slides)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GeneratedPresentation":
        """Build a presentation from its camelCase JSON.

        Raises:
            ValueError: If the payload or one of its slides is malformed
        """
        if not isinstance(data, Mapping):
            raise ValueError("Presentation must be an object")
        slides = data.get("slides") or []
        if not isinstance(slides, list):
            raise ValueError("Presentation slides must be a list")
        return cls(
            id=str(data.get("id") or "presentation"),
            title=str(data.get("title") or "Sprint Review"),
            slides=[Slide.from_dict(s) for s in slides],
            created_at=str(data.get("createdAt") or datetime.now(timezone.utc).isoformat()),
            metadata=PresentationMetadata.from_dict(data.get("metadata")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "slides": [s.to_dict() for s in self.slides],
            "createdAt": self.created_at,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class ExportOptions:
    format: str
    quality: str = DEFAULT_QUALITY
    include_images: bool = True
    compression: bool = True
    interactive: bool = True
    file_name: Optional[str] = None
    use_cache: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], format: Optional[str] = None) -> "ExportOptions":
        """Options from their camelCase JSON; flags accept "true"/"false" strings.

        Raises:
            ValueError: If ``data`` is not an object or a flag is not a boolean
        """
        data = _object(data, "Export options")
        file_name = data.get("fileName")
        return cls(
            format=str(format or data.get("format") or ""),
            quality=str(data.get("quality") or DEFAULT_QUALITY),
            include_images=parse_flag(data.get("includeImages"), True),
            compression=parse_flag(data.get("compression"), True),
            interactive=parse_flag(data.get("interactive"), True),
            file_name=str(file_name) if file_name else None,
            use_cache=parse_flag(data.get("useCache"), True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "quality": self.quality,
            "includeImages": self.include_images,
            "compression": self.compression,
            "interactive": self.interactive,
            "fileName": self.file_name,
            "useCache": self.use_cache,
        }


@dataclass(frozen=True)
class ExportProgress:
    current: int
    total: int
    stage: str
    message: str
    percentage: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "stage": self.stage,
            "message": self.message,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class ExportMetadata:
    slide_count: int
    processing_time: float
    quality: str


@dataclass(frozen=True)
class ExportResult:
    blob: bytes
    file_name: str
    format: str
    content_type: str
    metadata: ExportMetadata

    @property
    def file_size(self) -> int:
        return len(self.blob)

    def to_dict(self) -> Dict[str, Any]:
        """Everything except the blob itself."""
        return {
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "format": self.format,
            "contentType": self.content_type,
            "metadata": {
                "slideCount": self.metadata.slide_count,
                "processingTime": self.metadata.processing_time,
                "quality": self.metadata.quality,
            },
        }


def format_file_size(size: int) -> str:
    """Human readable byte count.

    Examples:
        >>> format_file_size(0)
        '0 Bytes'
        >>> format_file_size(1536)
        '1.5 KB'
    """
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
