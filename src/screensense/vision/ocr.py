"""OCR over screenshots with a content-addressed result cache."""

from __future__ import annotations

import asyncio
import concurrent.futures
import hashlib
from collections import OrderedDict
from typing import Any, Generic, Hashable, Optional, TypeVar

import cv2  # type: ignore
import numpy as np
import pytesseract  # type: ignore
from loguru import logger

from ..core.exceptions import ModelUnavailableError
from .models import BoundingBox, OCRResult, OCRWord

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Fixed-capacity mapping evicting the least recently used entry."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("LRU cache capacity must be at least 1")
        self.capacity = capacity
        self._data: OrderedDict[K, V] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: K) -> Optional[V]:
        if key not in self._data:
            self.misses += 1
            return None
        self._data.move_to_end(key)
        self.hits += 1
        return self._data[key]

    def put(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._data),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


def image_hash(image: np.ndarray) -> str:
    """Content hash of an image, including its shape."""
    digest = hashlib.md5(str(image.shape).encode())
    digest.update(np.ascontiguousarray(image).tobytes())
    return digest.hexdigest()


class OCREngine:
    """Run Tesseract OCR on screenshots without blocking the event loop."""

    def __init__(
        self,
        lang: str = "eng",
        tesseract_cmd: Optional[str] = None,
        cache_size: int = 50,
        min_confidence: float = 0.0,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.lang = lang
        self.min_confidence = min_confidence
        self.cache: LRUCache[str, OCRResult] = LRUCache(cache_size)
        # Use a thread pool for OCR to avoid blocking event loop.
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=2)
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        if self._available is None:
            try:
                version = pytesseract.get_tesseract_version()
                logger.info(f"OCREngine: Tesseract {version} found")
                self._available = True
            except (pytesseract.TesseractNotFoundError, OSError) as exc:
                logger.warning(f"OCREngine: Tesseract not available ({exc}). OCR disabled.")
                self._available = False
        return self._available

    async def analyze(self, image: np.ndarray) -> OCRResult:
        """Return the words recognised in *image* (an RGB array).

        Raises:
            ModelUnavailableError: If Tesseract is missing or fails.
        """
        key = image_hash(image)
        cached = self.cache.get(key)
        if cached is not None:
            return OCRResult(words=list(cached.words), width=cached.width, height=cached.height, from_cache=True)

        if not self.is_available():
            raise ModelUnavailableError("Tesseract OCR is not installed")

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(self._executor, self._run_ocr, image)
        except (pytesseract.TesseractError, cv2.error, OSError, RuntimeError) as exc:
            raise ModelUnavailableError(f"OCR failed: {exc}") from exc

        self.cache.put(key, result)
        logger.debug(f"OCREngine recognised {len(result.words)} words")
        return result

    def _run_ocr(self, image: np.ndarray) -> OCRResult:
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY) if image.ndim == 3 else image
        # Simple threshold to improve OCR contrast
        _, thresh = cv2.threshold(gray, 150, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)

        data = pytesseract.image_to_data(thresh, lang=self.lang, output_type=pytesseract.Output.DICT)
        return OCRResult(
            words=parse_tesseract_data(data, self.min_confidence),
            width=int(image.shape[1]),
            height=int(image.shape[0]),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.cache.clear()


def parse_tesseract_data(data: dict[str, list[Any]], min_confidence: float = 0.0) -> list[OCRWord]:
    """Convert ``image_to_data`` output into :class:`OCRWord` records."""
    words: list[OCRWord] = []
    for i in range(len(data.get("text", []))):
        text = str(data["text"][i]).strip()
        conf = float(data["conf"][i])
        if not text or conf < 0:
            continue  # skip empty / low confidence entries
        confidence = conf / 100.0
        if confidence < min_confidence:
            continue
        x, y, w, h = (int(data[key][i]) for key in ("left", "top", "width", "height"))
        words.append(OCRWord(text=text, bbox=BoundingBox(x, y, x + w, y + h), confidence=confidence))
    return words
