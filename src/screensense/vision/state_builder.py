"""Assemble detections and OCR words into a :class:`UIScreenState`."""

from __future__ import annotations

import re
import statistics
from typing import Optional, Sequence

from loguru import logger

from ..utils.helpers import generate_id, now_ms
from .description import DescriptionGenerator
from .detection import CLICKABLE_TYPES
from .models import (
    CONTAINER_TYPES,
    BoundingBox,
    DetectedElement,
    NodeMetadata,
    OCRWord,
    ScreenDimensions,
    UIScreenState,
    UISemanticNode,
    UISubtree,
    WindowInfo,
)

_BUTTON_TEXT = re.compile(
    r"^(ok|cancel|submit|save|delete|send|create|add|remove|edit|update|close|confirm|next|back|continue)$",
    re.IGNORECASE,
)
_CLICKABLE_KEYWORDS = ("button", "link", "click", "submit", "ok", "cancel", "save", "delete", "send")
_INTERACTIVE_KEYWORDS = ("input", "search", "enter", "type", "field")
_INTERACTIVE_TYPES = frozenset({"input", "search", "checkbox", "radio", "dropdown"})
_PLACEHOLDER_PREFIXES = ("search ", "enter ", "type here", "type a ")


def normalize_bbox(bbox: BoundingBox, dimensions: ScreenDimensions) -> BoundingBox:
    """Scale *bbox* to the 0..999 range of the screen."""
    def scale(value: int, extent: int) -> int:
        return max(0, min(999, round(value / extent * 999)))

    return BoundingBox(
        scale(bbox.left, dimensions.width),
        scale(bbox.top, dimensions.height),
        scale(bbox.right, dimensions.width),
        scale(bbox.bottom, dimensions.height),
    )


def screen_region(normalized: BoundingBox) -> str:
    """Region tag such as ``top-left`` or ``middle-center``."""
    center_x, center_y = normalized.center()
    vertical = "top" if center_y < 333 else "middle" if center_y < 666 else "bottom"
    horizontal = "left" if center_x < 333 else "center" if center_x < 666 else "right"
    return f"{vertical}-{horizontal}"


def group_lines(words: Sequence[OCRWord]) -> list[list[OCRWord]]:
    """Group words into lines in reading order.

    Words share a line when their vertical centres are close and the
    horizontal gap between neighbours is small relative to the text height.
    """
    if not words:
        return []

    median_height = statistics.median(max(1, word.bbox.height()) for word in words)
    rows: list[list[OCRWord]] = []
    for word in sorted(words, key=lambda w: (w.bbox.center()[1], w.bbox.left)):
        center_y = word.bbox.center()[1]
        if rows:
            row_center = statistics.fmean(w.bbox.center()[1] for w in rows[-1])
            if abs(center_y - row_center) <= median_height / 2:
                rows[-1].append(word)
                continue
        rows.append([word])

    lines: list[list[OCRWord]] = []
    for row in rows:
        row.sort(key=lambda w: w.bbox.left)
        line = [row[0]]
        for word in row[1:]:
            gap = word.bbox.left - line[-1].bbox.right
            if gap <= 1.5 * max(median_height, line[-1].bbox.height()):
                line.append(word)
            else:
                lines.append(line)
                line = [word]
        lines.append(line)
    return lines


def _union(boxes: Sequence[BoundingBox]) -> BoundingBox:
    result = boxes[0]
    for box in boxes[1:]:
        result = result.union(box)
    return result


class ScreenStateBuilder:
    """Turn raw detections and OCR output into a described screen state."""

    def __init__(self, description_generator: Optional[DescriptionGenerator] = None) -> None:
        self.descriptions = description_generator or DescriptionGenerator()

    def build(
        self,
        detections: Sequence[DetectedElement],
        words: Sequence[OCRWord],
        window: WindowInfo,
        dimensions: ScreenDimensions,
        timestamp: Optional[int] = None,
        screen_id: Optional[str] = None,
        detection_method: str = "unknown",
        screenshot_path: Optional[str] = None,
    ) -> UIScreenState:
        timestamp = timestamp if timestamp is not None else now_ms()
        screen_state = UIScreenState(
            id=screen_id or generate_id("screen"),
            timestamp=timestamp,
            app=window.app_name or "Unknown",
            window_title=window.title or "",
            url=window.url,
            screen_dimensions=dimensions,
            screenshot_path=screenshot_path,
            detection_method=detection_method if detections else "ocr-only",
        )

        element_words, loose_words = self._assign_words(detections, words)

        nodes = [
            self._detection_node(element, element_words[index], screen_state)
            for index, element in enumerate(detections)
        ]
        nodes.extend(self._text_node(line, screen_state) for line in group_lines(loose_words))
        screen_state.nodes = nodes
        screen_state.subtrees = self._build_subtrees(nodes, screen_state)

        types_by_subtree = {subtree.id: subtree.type for subtree in screen_state.subtrees}
        for node in nodes:
            node.description = self.descriptions.node_description(
                node,
                app=screen_state.app,
                url=screen_state.url,
                parent_type=types_by_subtree.get(node.parent_id),
            )
        by_id = {node.id: node for node in nodes}
        for subtree in screen_state.subtrees:
            subtree.description = self.descriptions.subtree_description(
                subtree, [by_id[node_id] for node_id in subtree.node_ids], app=screen_state.app
            )
        screen_state.description = self.descriptions.screen_description(screen_state)

        logger.debug(
            f"Built screen state {screen_state.id}: {len(nodes)} nodes, "
            f"{len(screen_state.subtrees)} subtrees"
        )
        return screen_state

    # ------------------------------------------------------------------
    # Word assignment
    # ------------------------------------------------------------------
    @staticmethod
    def _assign_words(
        detections: Sequence[DetectedElement], words: Sequence[OCRWord]
    ) -> tuple[list[list[OCRWord]], list[OCRWord]]:
        """Give each word to the smallest non-text detection holding its centre."""
        assigned: list[list[OCRWord]] = [[] for _ in detections]
        loose: list[OCRWord] = []
        for word in words:
            center_x, center_y = word.bbox.center()
            owner = None
            for index, element in enumerate(detections):
                if element.type == "text" or not element.bbox.contains_point(center_x, center_y):
                    continue
                if owner is None or element.bbox.area() < detections[owner].bbox.area():
                    owner = index
            if owner is None:
                loose.append(word)
            else:
                assigned[owner].append(word)
        return assigned, loose

    # ------------------------------------------------------------------
    # Node construction
    # ------------------------------------------------------------------
    def _make_node(
        self,
        node_type: str,
        bbox: BoundingBox,
        text: str,
        confidence: float,
        source: str,
        ocr_confidence: Optional[float],
        screen_state: UIScreenState,
    ) -> UISemanticNode:
        normalized = normalize_bbox(bbox, screen_state.screen_dimensions)
        lowered = text.lower()
        return UISemanticNode(
            id=generate_id("node"),
            type=node_type,
            text=text,
            bbox=bbox,
            normalized_bbox=normalized,
            screen_state_id=screen_state.id,
            confidence=confidence,
            clickable=node_type in CLICKABLE_TYPES
            or any(keyword in lowered for keyword in _CLICKABLE_KEYWORDS),
            interactive=node_type in _INTERACTIVE_TYPES
            or any(keyword in lowered for keyword in _INTERACTIVE_KEYWORDS),
            metadata=NodeMetadata(
                app=screen_state.app,
                url=screen_state.url,
                window_title=screen_state.window_title or None,
                screen_region=screen_region(normalized),
                detection_source=source,
                detection_confidence=confidence if source != "ocr" else None,
                ocr_confidence=ocr_confidence,
            ),
            timestamp=screen_state.timestamp,
        )

    def _detection_node(
        self, element: DetectedElement, words: list[OCRWord], screen_state: UIScreenState
    ) -> UISemanticNode:
        ocr_text = " ".join(" ".join(word.text for word in line) for line in group_lines(words))
        text = " ".join(part for part in (element.text.strip(), ocr_text) if part)
        ocr_confidence = statistics.fmean(word.confidence for word in words) if words else None
        return self._make_node(
            element.type, element.bbox, text, element.confidence, element.source,
            ocr_confidence, screen_state,
        )

    def _text_node(self, line: list[OCRWord], screen_state: UIScreenState) -> UISemanticNode:
        text = " ".join(word.text for word in line)
        confidence = statistics.fmean(word.confidence for word in line)
        return self._make_node(
            self._infer_text_type(text), _union([word.bbox for word in line]), text,
            confidence, "ocr", confidence, screen_state,
        )

    @staticmethod
    def _infer_text_type(text: str) -> str:
        stripped = text.strip()
        if _BUTTON_TEXT.match(stripped):
            return "button"
        lowered = stripped.lower()
        if "http" in lowered or "www." in lowered:
            return "link"
        # Placeholder text such as "Search..." or "Enter your email"
        if lowered.startswith(_PLACEHOLDER_PREFIXES) or lowered.endswith("..."):
            return "input"
        return "text"

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------
    def _build_subtrees(
        self, nodes: list[UISemanticNode], screen_state: UIScreenState
    ) -> list[UISubtree]:
        """Group nodes under the smallest container holding them.

        Containers with at least two members become subtrees, and their
        members point at the subtree through ``parent_id``.
        """
        containers = [node for node in nodes if node.type in CONTAINER_TYPES]
        members: dict[str, list[UISemanticNode]] = {container.id: [] for container in containers}

        for node in nodes:
            parent = None
            for container in containers:
                if container is node or not container.bbox.contains(node.bbox):
                    continue
                if container.bbox.area() == node.bbox.area() and container.type == node.type:
                    continue
                if parent is None or container.bbox.area() < parent.bbox.area():
                    parent = container
            if parent is not None:
                members[parent.id].append(node)

        subtrees: list[UISubtree] = []
        for container in containers:
            children = members[container.id]
            if len(children) < 2:
                continue
            subtree = UISubtree(
                id=generate_id("subtree"),
                type=container.type,
                bbox=container.bbox,
                screen_state_id=screen_state.id,
                title=container.text or self._title_from(children),
                root_node_id=container.id,
                node_ids=[child.id for child in children],
                timestamp=screen_state.timestamp,
            )
            for child in children:
                child.parent_id = subtree.id
            subtrees.append(subtree)
        return subtrees

    @staticmethod
    def _title_from(children: list[UISemanticNode]) -> str:
        texts = [child for child in children if child.type in ("heading", "text") and child.text]
        if not texts:
            return ""
        return min(texts, key=lambda child: (child.bbox.top, child.bbox.left)).text
