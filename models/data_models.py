"""
Core data models for the screenshot transcript pipeline.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


Point = Tuple[float, float]


class ColorClass(Enum):
    """Bubble colour signature from the device owner's perspective."""
    SENT = "sent"
    RECEIVED = "received"
    UNKNOWN = "unknown"


class Side(Enum):
    """Horizontal column a bubble belongs to."""
    LEFT = "LEFT"
    RIGHT = "RIGHT"


@dataclass
class Rectangle:
    """Represents a rectangular region with position and dimensions."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class RawTextLine:
    """One recognized line of text as returned by the OCR provider."""
    text: str
    polygon: Tuple[Point, Point, Point, Point]
    page: int = 0

    @classmethod
    def from_bounding_box(cls, text: str, box: Sequence[float], page: int = 0) -> "RawTextLine":
        """Build a line from the provider's flat ``[x1, y1, ..., x4, y4]`` list."""
        if len(box) < 8:
            raise ValueError(f"bounding box needs 8 values, got {len(box)}")
        pts = tuple((float(box[i]), float(box[i + 1])) for i in range(0, 8, 2))
        return cls(text=text, polygon=pts, page=page)

    @property
    def left(self) -> float:
        return min(p[0] for p in self.polygon)

    @property
    def top(self) -> float:
        return min(p[1] for p in self.polygon)

    @property
    def right(self) -> float:
        return max(p[0] for p in self.polygon)

    @property
    def bottom(self) -> float:
        return max(p[1] for p in self.polygon)


@dataclass
class ContentLine:
    """A text line that survived noise filtering.

    ``x``/``y`` are the left and top edges of the line's box. Width and height
    are kept when known so that bubble bounds can be reported.
    """
    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def from_raw(cls, line: RawTextLine) -> "ContentLine":
        return cls(
            text=line.text.strip(),
            x=line.left,
            y=line.top,
            width=max(0.0, line.right - line.left),
            height=max(0.0, line.bottom - line.top),
        )


@dataclass
class MessageBubble:
    """A chat bubble assembled from one or more content lines."""
    lines: List[ContentLine] = field(default_factory=list)
    text: str = ""
    centroid_x: float = 0.0
    centroid_y: float = 0.0
    color_class: ColorClass = ColorClass.UNKNOWN

    @classmethod
    def seed(cls, line: ContentLine) -> "MessageBubble":
        bubble = cls()
        bubble.add_line(line)
        return bubble

    def add_line(self, line: ContentLine) -> None:
        """Append a line, re-join the text and recompute the running centroid."""
        self.lines.append(line)
        self.text = " ".join(ln.text for ln in self.lines if ln.text)
        count = len(self.lines)
        self.centroid_x = sum(ln.x for ln in self.lines) / count
        self.centroid_y = sum(ln.y for ln in self.lines) / count

    @property
    def bounds(self) -> Rectangle:
        min_x = min(ln.x for ln in self.lines)
        min_y = min(ln.y for ln in self.lines)
        max_x = max(ln.x + ln.width for ln in self.lines)
        max_y = max(ln.y + ln.height for ln in self.lines)
        return Rectangle(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)


@dataclass(frozen=True)
class ColorRegion:
    """A sampled patch of the source image tagged by its colour signature."""
    x: int
    y: int
    width: int
    height: int
    is_sent_color: bool

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def color_class(self) -> ColorClass:
        return ColorClass.SENT if self.is_sent_color else ColorClass.RECEIVED


# Values accepted for SpeakerMapping.my_side_or_color
MAPPING_LEFT = "LEFT"
MAPPING_RIGHT = "RIGHT"
MAPPING_GREEN = "GREEN"
MAPPING_CHOICES = (MAPPING_LEFT, MAPPING_RIGHT, MAPPING_GREEN)


@dataclass(frozen=True)
class SpeakerMapping:
    """User supplied description of who is who in the screenshot."""
    me_name: str
    them_name: str
    my_side_or_color: str = MAPPING_RIGHT

    def __post_init__(self):
        if not (self.me_name or "").strip() or not (self.them_name or "").strip():
            raise ValueError("speaker names must not be empty")
        if self.me_name.strip() == self.them_name.strip():
            raise ValueError("speaker names must differ")
        if self.my_side_or_color not in MAPPING_CHOICES:
            raise ValueError(f"my_side_or_color must be one of {', '.join(MAPPING_CHOICES)}")

    @classmethod
    def from_form(cls, message_side: Optional[str], my_name: Optional[str], their_name: Optional[str]) -> "SpeakerMapping":
        """Build a mapping from loosely formatted request values (``right``, ``Left``, ``green``)."""
        side = (message_side or MAPPING_RIGHT).strip().upper()
        return cls(
            me_name=(my_name or "").strip(),
            them_name=(their_name or "").strip(),
            my_side_or_color=side,
        )

    @property
    def uses_color(self) -> bool:
        return self.my_side_or_color == MAPPING_GREEN

    @property
    def my_side(self) -> Optional[Side]:
        if self.my_side_or_color == MAPPING_GREEN:
            return None
        return Side(self.my_side_or_color)


@dataclass(frozen=True)
class Classification:
    """Outcome of a bubble classifier."""
    method: str  # "color" or "position"
    color_class: ColorClass = ColorClass.UNKNOWN
    side: Optional[Side] = None


@dataclass
class LabeledBubble:
    """A bubble with its resolved speaker."""
    bubble: MessageBubble
    speaker: str
    classification: Classification


@dataclass
class ExtractedMessage:
    """Terminal output unit of the pipeline; ordered by ``y``."""
    text: str
    speaker: str
    y: float

    def to_dict(self, include_position: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text, "speaker": self.speaker}
        if include_position:
            data["y"] = self.y
        return data


@dataclass
class TranscriptResult:
    """Transcript extracted from a single image."""
    request_id: str
    messages: List[ExtractedMessage]
    raw_text: str = ""
    image_width: int = 0
    image_height: int = 0
    info: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "messages": [m.to_dict() for m in self.messages],
            "rawText": self.raw_text,
            "imageWidth": self.image_width,
            "imageHeight": self.image_height,
        }
        if self.info:
            data["message"] = self.info
        return data


@dataclass
class BatchItemResult:
    """Result slot for one image of a multi-image request."""
    index: int
    filename: Optional[str] = None
    result: Optional[TranscriptResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None
