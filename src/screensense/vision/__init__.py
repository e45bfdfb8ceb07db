"""Screen perception: capture, OCR, element detection and screen state assembly."""

from .description import DescriptionGenerator
from .detection import DetectionChain, HeuristicDetectionProvider, Owlv2DetectionProvider
from .models import (
    BoundingBox,
    DetectedElement,
    UIScreenState,
    UISemanticNode,
    UISubtree,
    WindowInfo,
)
from .ocr import OCREngine
from .screencap import ScreenGrabber
from .state_builder import ScreenStateBuilder
from .window import WindowDetector

__all__ = [
    "BoundingBox",
    "DescriptionGenerator",
    "DetectedElement",
    "DetectionChain",
    "HeuristicDetectionProvider",
    "OCREngine",
    "Owlv2DetectionProvider",
    "ScreenGrabber",
    "ScreenStateBuilder",
    "UIScreenState",
    "UISemanticNode",
    "UISubtree",
    "WindowDetector",
    "WindowInfo",
]
