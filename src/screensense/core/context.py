"""Process-wide service context.

The entry point builds one :class:`AppContext` and hands it to whoever needs
the shared services: the HTTP routes, the watcher and the cleanup job all
reach the same embedding provider and vector store through it.
"""

from __future__ import annotations

from typing import Optional

from ..index.cleanup import CleanupService
from ..index.embedding import EmbeddingProvider, SentenceTransformerEmbeddingProvider
from ..index.semantic_index import SemanticIndex
from ..index.vector_store import VectorStore
from ..vision.detection import (
    DetectionChain,
    DetectionProvider,
    HeuristicDetectionProvider,
    Owlv2DetectionProvider,
)
from ..vision.ocr import OCREngine
from ..vision.screencap import ScreenGrabber
from ..vision.window import WindowDetector
from ..watcher.change_detector import ScreenChangeDetector
from ..watcher.pipeline import CapturePipeline
from ..watcher.screen_watcher import ScreenWatcher, WatcherConfig
from .config import Config
from .logger import log


class AppContext:
    """Owns the shared services and their lifecycle."""

    def __init__(
        self,
        config: Config,
        embedding_provider: Optional[EmbeddingProvider] = None,
        search_embedding_provider: Optional[EmbeddingProvider] = None,
        pipeline: Optional[CapturePipeline] = None,
        change_detector: Optional[ScreenChangeDetector] = None,
    ) -> None:
        self.config = config

        self.embedding_provider = embedding_provider or SentenceTransformerEmbeddingProvider(
            model_name=config.embedding_model,
            dimension=config.embedding_dimension,
            device=config.embedding_device,
            batch_size=config.embedding_batch_size,
        )
        self.vector_store = VectorStore(config.db_path, config.embedding_dimension)
        self.semantic_index = SemanticIndex(
            self.vector_store,
            self.embedding_provider,
            search_embedding_provider=search_embedding_provider,
            embed_timeout=config.watcher_stage_timeout,
        )

        grabber = ScreenGrabber()
        self.pipeline = pipeline or CapturePipeline(
            grabber=grabber,
            ocr_engine=OCREngine(
                lang=config.ocr_lang,
                tesseract_cmd=config.tesseract_cmd,
                cache_size=config.ocr_cache_size,
            ),
            detection_chain=DetectionChain(self._detection_providers()),
            window_detector=WindowDetector(),
            screenshot_dir=config.get_screenshot_path(),
            save_screenshots=config.save_screenshots,
        )
        self.change_detector = change_detector or ScreenChangeDetector(
            grabber.grab,
            method=config.change_detection_method,
            change_threshold=config.change_threshold,
            downscale_factor=config.change_downscale_factor,
            sample_grid=config.change_sample_grid,
            pixel_threshold=config.change_pixel_threshold,
            debounce_ms=config.change_debounce_ms,
        )
        self.watcher = ScreenWatcher(
            self.pipeline,
            self.semantic_index,
            change_detector=self.change_detector,
            config=WatcherConfig.from_config(config),
        )
        self.cleanup = CleanupService(
            self.semantic_index,
            screenshot_dir=config.get_screenshot_path(),
            node_retention_days=config.node_retention_days,
            screenshot_retention_hours=config.screenshot_retention_hours,
            cleanup_interval_hours=config.cleanup_interval_hours,
            vacuum_interval_hours=config.vacuum_interval_hours,
            max_database_size_gb=config.max_database_size_gb,
        )

    def _detection_providers(self) -> list[DetectionProvider]:
        providers: list[DetectionProvider] = []
        if self.config.use_owlv2:
            providers.append(
                Owlv2DetectionProvider(
                    model_name=self.config.owlv2_model,
                    confidence_threshold=self.config.detection_confidence_threshold,
                    max_detections=self.config.detection_max_elements,
                )
            )
        providers.append(HeuristicDetectionProvider(max_detections=self.config.detection_max_elements))
        return providers

    async def initialize(self) -> None:
        await self.semantic_index.initialize()
        log.success("Application context initialized")

    async def close(self) -> None:
        """Stop background work and release the store. Safe to call twice."""
        if self.watcher.is_running:
            await self.watcher.stop()
        if self.cleanup.is_running:
            await self.cleanup.stop()
        await self.semantic_index.close()
        self.embedding_provider.close()
        log.info("Application context closed")
