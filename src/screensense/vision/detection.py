"""UI element detection providers.

Every provider returns :class:`DetectedElement` records, whatever model or
heuristic produced them. :class:`DetectionChain` tries providers in priority
order and falls back to the next one when a provider is unavailable, fails or
finds nothing.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import cv2  # type: ignore
import numpy as np
from loguru import logger

from ..core.exceptions import ModelUnavailableError
from .models import BoundingBox, DetectedElement

# Zero-shot prompts, most important UI types first.
UI_QUERIES = (
    "button",
    "icon",
    "input field",
    "search box",
    "checkbox",
    "dropdown menu",
    "menu",
    "toolbar",
    "tab",
    "panel",
    "card",
    "dialog box",
    "image",
    "logo",
    "notification",
    "link",
    "heading",
)

CLICKABLE_TYPES = frozenset(
    {"button", "icon", "link", "checkbox", "radio", "dropdown", "tab", "menu", "search"}
)

_LABEL_TYPES = (
    ("button", "button"),
    ("icon", "icon"),
    ("input", "input"),
    ("text box", "input"),
    ("search", "search"),
    ("checkbox", "checkbox"),
    ("radio", "radio"),
    ("dropdown", "dropdown"),
    ("menu", "menu"),
    ("toolbar", "toolbar"),
    ("tab", "tab"),
    ("panel", "panel"),
    ("card", "card"),
    ("dialog", "dialog"),
    ("modal", "modal"),
    ("image", "image"),
    ("logo", "logo"),
    ("notification", "notification"),
    ("alert", "notification"),
    ("link", "link"),
    ("heading", "heading"),
)


def label_to_type(label: str) -> str:
    """Map a free-text detector label onto an element type."""
    lowered = label.lower()
    if "icon" in lowered and "notification" in lowered:
        return "notification"
    for keyword, element_type in _LABEL_TYPES:
        if keyword in lowered:
            return element_type
    return "unknown"


def remove_overlaps(elements: list[DetectedElement], iou_threshold: float = 0.3) -> list[DetectedElement]:
    """Drop elements overlapping a more confident one by more than *iou_threshold*."""
    kept: list[DetectedElement] = []
    for element in sorted(elements, key=lambda e: e.confidence, reverse=True):
        if all(element.bbox.iou(other.bbox) <= iou_threshold for other in kept):
            kept.append(element)
    return kept


class DetectionProvider(ABC):
    """Interchangeable source of UI element detections."""

    name = "provider"

    def __init__(self) -> None:
        self.is_available = True

    async def initialize(self) -> None:
        """Load model resources. Raise :class:`ModelUnavailableError` on failure."""
        return None

    @abstractmethod
    def detect(self, image: np.ndarray) -> list[DetectedElement]:
        """Detect elements in an ``HxWx3`` RGB image."""


# ---------------------------------------------------------------------------
# Zero-shot detector
# ---------------------------------------------------------------------------

class Owlv2DetectionProvider(DetectionProvider):
    """Open-vocabulary detection with OWLv2 via ``transformers``."""

    name = "owlv2"

    def __init__(
        self,
        model_name: str = "google/owlv2-base-patch16-ensemble",
        queries: Sequence[str] = UI_QUERIES,
        confidence_threshold: float = 0.15,
        max_detections: int = 100,
        device: str = "cpu",
    ) -> None:
        super().__init__()
        self.model_name = model_name
        self.queries = list(queries)
        self.confidence_threshold = confidence_threshold
        self.max_detections = max_detections
        self.device = device
        self._processor: Optional[Any] = None
        self._model: Optional[Any] = None
        self._lock = threading.Lock()

    async def initialize(self) -> None:
        await asyncio.to_thread(self._load)

    def _load(self) -> None:
        with self._lock:
            if self._model is not None:
                return
            try:
                from transformers import Owlv2ForObjectDetection, Owlv2Processor

                logger.info(f"Loading OWLv2 model {self.model_name} (first run downloads weights)")
                self._processor = Owlv2Processor.from_pretrained(self.model_name)
                model = Owlv2ForObjectDetection.from_pretrained(self.model_name)
                model.to(self.device)
                model.eval()
                self._model = model
            except Exception as exc:
                self.is_available = False
                raise ModelUnavailableError(f"OWLv2 model could not be loaded: {exc}") from exc
            logger.info(f"OWLv2 ready with {len(self.queries)} UI queries")

    def detect(self, image: np.ndarray) -> list[DetectedElement]:
        self._load()
        import torch
        from PIL import Image

        height, width = image.shape[:2]
        pil_image = Image.fromarray(np.asarray(image, dtype=np.uint8))
        try:
            inputs = self._processor(text=[self.queries], images=pil_image, return_tensors="pt")
            inputs = {key: value.to(self.device) for key, value in inputs.items()}
            with torch.no_grad():
                outputs = self._model(**inputs)
            # OWLv2 pads inputs to a square, so boxes are scaled to the longer side.
            side = max(height, width)
            results = self._processor.post_process_object_detection(
                outputs=outputs,
                threshold=self.confidence_threshold,
                target_sizes=torch.tensor([[side, side]], device=self.device),
            )[0]
        except Exception as exc:
            raise ModelUnavailableError(f"OWLv2 inference failed: {exc}") from exc

        elements: list[DetectedElement] = []
        for box, score, label in zip(
            results["boxes"].tolist(), results["scores"].tolist(), results["labels"].tolist()
        ):
            x1, y1, x2, y2 = box
            bbox = BoundingBox(
                max(0, round(x1)), max(0, round(y1)), min(width, round(x2)), min(height, round(y2))
            )
            if bbox.area() <= 0:
                continue
            elements.append(
                DetectedElement(
                    type=label_to_type(self.queries[int(label)]),
                    bbox=bbox,
                    confidence=float(score),
                    source=self.name,
                )
            )

        elements.sort(key=lambda e: e.confidence, reverse=True)
        return elements[: self.max_detections]


# ---------------------------------------------------------------------------
# Pixel heuristics
# ---------------------------------------------------------------------------

class HeuristicDetectionProvider(DetectionProvider):
    """Detect clickable elements and panels from contours and colours."""

    name = "heuristic"

    # Common interactive colors (buttons, links, etc.) in OpenCV HSV.
    COLOR_RANGES = (
        (np.array([100, 50, 50]), np.array([130, 255, 255])),  # blue
        (np.array([0, 50, 50]), np.array([10, 255, 255])),  # red
        (np.array([40, 50, 50]), np.array([80, 255, 255])),  # green
        (np.array([10, 50, 50]), np.array([25, 255, 255])),  # orange
    )

    def __init__(
        self,
        min_button_size: int = 30,
        max_button_size: int = 300,
        edge_threshold: int = 50,
        max_detections: int = 100,
    ) -> None:
        super().__init__()
        self.min_button_size = min_button_size
        self.max_button_size = max_button_size
        self.edge_threshold = edge_threshold
        self.max_detections = max_detections

    def detect(self, image: np.ndarray) -> list[DetectedElement]:
        rgb = np.asarray(image, dtype=np.uint8)
        gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
        hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)
        screen_area = rgb.shape[0] * rgb.shape[1]

        elements: list[DetectedElement] = []
        elements.extend(self._detect_rectangles(gray, screen_area))
        elements.extend(self._detect_colored_elements(hsv))
        elements.extend(self._detect_edge_bounded_elements(gray))

        elements = remove_overlaps(elements)
        logger.debug(f"HeuristicDetectionProvider found {len(elements)} elements")
        return elements[: self.max_detections]

    def _button_sized(self, w: int, h: int) -> bool:
        return (
            self.min_button_size <= w <= self.max_button_size
            and self.min_button_size <= h <= self.max_button_size
        )

    def _detect_rectangles(self, gray: np.ndarray, screen_area: int) -> list[DetectedElement]:
        """Bordered rectangles: button-sized ones are buttons, large ones panels."""
        elements = []
        edges = cv2.Canny(gray, 50, 150)
        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

        for contour in contours:
            epsilon = 0.02 * cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, epsilon, True)
            if len(approx) != 4:
                continue

            x, y, w, h = cv2.boundingRect(contour)
            bbox = BoundingBox(x, y, x + w, y + h)
            if self._button_sized(w, h) and 0.2 <= w / h <= 5.0:
                elements.append(DetectedElement("button", bbox, 0.7, source=self.name))
            elif w > self.max_button_size and h > self.min_button_size * 2 and w * h < 0.9 * screen_area:
                elements.append(DetectedElement("panel", bbox, 0.4, source=self.name))
        return elements

    def _detect_colored_elements(self, hsv: np.ndarray) -> list[DetectedElement]:
        elements = []
        for lower, upper in self.COLOR_RANGES:
            mask = cv2.inRange(hsv, lower, upper)
            contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
            for contour in contours:
                x, y, w, h = cv2.boundingRect(contour)
                if self._button_sized(w, h):
                    elements.append(
                        DetectedElement("button", BoundingBox(x, y, x + w, y + h), 0.6, source=self.name)
                    )
        return elements

    def _detect_edge_bounded_elements(self, gray: np.ndarray) -> list[DetectedElement]:
        """Regions bounded by strong edges: wide thin ones are inputs, the rest icons."""
        elements = []
        edges = cv2.Canny(gray, self.edge_threshold, self.edge_threshold * 2)
        kernel = np.ones((3, 3), np.uint8)
        edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        for contour in contours:
            x, y, w, h = cv2.boundingRect(contour)
            if not self._button_sized(w, h):
                continue
            roi = edges[y:y + h, x:x + w]
            if np.sum(roi > 0) / (w * h) <= 0.1:  # At least 10% of pixels are edges
                continue
            element_type = "input" if w / h > 3 and h < 60 else "icon"
            elements.append(
                DetectedElement(element_type, BoundingBox(x, y, x + w, y + h), 0.5, source=self.name)
            )
        return elements


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class DetectionOutcome:
    elements: list[DetectedElement] = field(default_factory=list)
    provider: Optional[str] = None


class DetectionChain:
    """Run providers in priority order until one returns elements."""

    def __init__(self, providers: Sequence[DetectionProvider]) -> None:
        self.providers = list(providers)

    async def initialize(self) -> None:
        for provider in self.providers:
            try:
                await provider.initialize()
            except ModelUnavailableError as exc:
                provider.is_available = False
                logger.warning(f"Detection provider '{provider.name}' unavailable: {exc}")

    def available_providers(self) -> list[str]:
        return [provider.name for provider in self.providers if provider.is_available]

    async def detect(self, image: np.ndarray) -> DetectionOutcome:
        for provider in self.providers:
            if not provider.is_available:
                continue
            try:
                elements = await asyncio.to_thread(provider.detect, image)
            except Exception as exc:
                logger.warning(f"Detection provider '{provider.name}' failed, trying next: {exc}")
                continue
            if elements:
                return DetectionOutcome(elements=elements, provider=provider.name)
            logger.debug(f"Detection provider '{provider.name}' found nothing")
        return DetectionOutcome()
