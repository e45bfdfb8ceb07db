"""Data models for the vision subsystem and the semantic index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

# Element types treated as containers when grouping subtrees.
CONTAINER_TYPES = ("dialog", "modal", "panel", "container", "section", "form")


@dataclass(slots=True)
class BoundingBox:
    """Axis-aligned rectangle (left, top, right, bottom) in pixel coordinates."""

    left: int
    top: int
    right: int
    bottom: int

    def __post_init__(self) -> None:
        self.left, self.right = sorted((int(self.left), int(self.right)))
        self.top, self.bottom = sorted((int(self.top), int(self.bottom)))

    @classmethod
    def from_sequence(cls, values: Any) -> BoundingBox:
        """Build from an ``[x1, y1, x2, y2]`` sequence."""
        x1, y1, x2, y2 = (int(round(float(v))) for v in values)
        return cls(x1, y1, x2, y2)

    def width(self) -> int:
        """Width in pixels."""
        return self.right - self.left

    def height(self) -> int:
        """Height in pixels."""
        return self.bottom - self.top

    def area(self) -> int:
        return self.width() * self.height()

    def center(self) -> tuple[float, float]:
        return (self.left + self.right) / 2, (self.top + self.bottom) / 2

    def contains(self, other: BoundingBox) -> bool:
        """True when *other* lies fully inside this box (edges inclusive)."""
        return (
            self.left <= other.left
            and self.top <= other.top
            and self.right >= other.right
            and self.bottom >= other.bottom
        )

    def contains_point(self, x: float, y: float) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def iou(self, other: BoundingBox) -> float:
        """Calculate Intersection over Union between two bounding boxes."""
        x_left = max(self.left, other.left)
        y_top = max(self.top, other.top)
        x_right = min(self.right, other.right)
        y_bottom = min(self.bottom, other.bottom)

        if x_right < x_left or y_bottom < y_top:
            return 0.0

        intersection_area = (x_right - x_left) * (y_bottom - y_top)
        union_area = self.area() + other.area() - intersection_area
        return intersection_area / union_area if union_area > 0 else 0.0

    def union(self, other: BoundingBox) -> BoundingBox:
        return BoundingBox(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )

    def as_tuple(self) -> tuple[int, int, int, int]:
        """Return bounding box as ``(left, top, right, bottom)`` tuple."""
        return self.left, self.top, self.right, self.bottom

    def as_list(self) -> list[int]:
        return [self.left, self.top, self.right, self.bottom]


@dataclass(slots=True)
class DetectedElement:
    """Normalized output of every detection provider.

    Provider-specific result shapes are converted into this record before they
    reach the screen state builder.
    """

    type: str
    bbox: BoundingBox
    confidence: float
    text: str = ""
    source: str = "unknown"


@dataclass(slots=True)
class OCRWord:
    """A single word recognised by OCR."""

    text: str
    bbox: BoundingBox
    confidence: float


@dataclass(slots=True)
class OCRResult:
    words: list[OCRWord] = field(default_factory=list)
    width: int = 0
    height: int = 0
    from_cache: bool = False

    @property
    def text(self) -> str:
        return " ".join(word.text for word in self.words)


@dataclass(slots=True)
class WindowInfo:
    """The focused window at capture time."""

    app_name: str
    title: str = ""
    url: Optional[str] = None
    bounds: Optional[BoundingBox] = None


@dataclass(slots=True)
class ScreenDimensions:
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Screen dimensions must be positive, got {self.width}x{self.height}")


@dataclass(slots=True)
class NodeMetadata:
    """Context attached to every node."""

    app: Optional[str] = None
    url: Optional[str] = None
    window_title: Optional[str] = None
    screen_region: Optional[str] = None
    detection_source: Optional[str] = None
    detection_confidence: Optional[float] = None
    ocr_confidence: Optional[float] = None
    icon_type: Optional[str] = None
    z_index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "app": self.app,
            "url": self.url,
            "windowTitle": self.window_title,
            "screenRegion": self.screen_region,
            "detectionSource": self.detection_source,
            "detectionConfidence": self.detection_confidence,
            "ocrConfidence": self.ocr_confidence,
            "iconType": self.icon_type,
            "zIndex": self.z_index,
        }


@dataclass(slots=True)
class UISemanticNode:
    """One detected screen element.

    A node belongs to exactly one screen state. Its embedding is assigned at
    most once, by the semantic index; nodes are replaced as a whole per id.
    """

    id: str
    type: str
    bbox: BoundingBox
    screen_state_id: str
    text: str = ""
    description: str = ""
    normalized_bbox: Optional[BoundingBox] = None
    parent_id: Optional[str] = None
    embedding: Optional[np.ndarray] = None
    confidence: float = 0.0
    clickable: bool = False
    visible: bool = True
    interactive: bool = False
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    timestamp: int = 0
    score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "text": self.text,
            "description": self.description,
            "bbox": self.bbox.as_list(),
            "normalizedBbox": self.normalized_bbox.as_list() if self.normalized_bbox else None,
            "parentId": self.parent_id,
            "screenStateId": self.screen_state_id,
            "confidence": self.confidence,
            "clickable": self.clickable,
            "visible": self.visible,
            "interactive": self.interactive,
            "metadata": self.metadata.to_dict(),
            "timestamp": self.timestamp,
            "score": self.score,
        }


@dataclass(slots=True)
class UISubtree:
    """A grouping of related nodes (form, panel, dialog) within a screen state."""

    id: str
    type: str
    bbox: BoundingBox
    screen_state_id: str
    title: str = ""
    description: str = ""
    root_node_id: Optional[str] = None
    node_ids: list[str] = field(default_factory=list)
    embedding: Optional[np.ndarray] = None
    timestamp: int = 0
    score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "rootNodeId": self.root_node_id,
            "nodeIds": list(self.node_ids),
            "bbox": self.bbox.as_list(),
            "screenStateId": self.screen_state_id,
            "timestamp": self.timestamp,
            "score": self.score,
        }


@dataclass(slots=True)
class UIScreenState:
    """One timestamped capture of the screen with its detected elements."""

    id: str
    timestamp: int
    app: str
    screen_dimensions: ScreenDimensions
    window_title: str = ""
    url: Optional[str] = None
    description: str = ""
    embedding: Optional[np.ndarray] = None
    screenshot_path: Optional[str] = None
    nodes: list[UISemanticNode] = field(default_factory=list)
    subtrees: list[UISubtree] = field(default_factory=list)
    detection_method: str = "unknown"
    score: Optional[float] = None

    def attach_children(self) -> None:
        """Point every node and subtree at this screen state."""
        for node in self.nodes:
            node.screen_state_id = self.id
        for subtree in self.subtrees:
            subtree.screen_state_id = self.id

    def get_node(self, node_id: str) -> Optional[UISemanticNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self, include_nodes: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "app": self.app,
            "windowTitle": self.window_title,
            "url": self.url,
            "screenDimensions": {
                "width": self.screen_dimensions.width,
                "height": self.screen_dimensions.height,
            },
            "description": self.description,
            "screenshotPath": self.screenshot_path,
            "score": self.score,
        }
        if include_nodes:
            payload["nodes"] = [node.to_dict() for node in self.nodes]
            payload["subtrees"] = [subtree.to_dict() for subtree in self.subtrees]
        return payload
