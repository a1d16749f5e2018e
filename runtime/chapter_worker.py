"""
Chapter Render Worker

Executes one claimed chapter end-to-end:
    1. synthesize narration (degrades to a placeholder asset)
    2. build the render specification
    3. submit it to the external renderer under a timeout
    4. record COMPLETED with video/audio URLs, or FAILED with the error text

Blocking network calls run in worker threads; the store is only touched
for the final complete/fail transition.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from agents.narration_synthesizer import NarrationSynthesizer
from agents.render_client import RenderClient
from models.chapter import Chapter
from runtime.failure_classifier import classify_render_failure
from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import RenderStore
from runtime.render_request_builder import RenderRequestBuilder

logger = logging.getLogger(__name__)


def default_chapter_video_url(chapter_id: str) -> str:
    return f"/videos/chapters/{chapter_id}.mp4"


class ChapterRenderWorker:
    def __init__(
        self,
        store: RenderStore,
        synthesizer: NarrationSynthesizer,
        renderer: RenderClient,
        builder: Optional[RenderRequestBuilder] = None,
        render_timeout_sec: Optional[float] = None,
        events=None,
    ):
        self.store = store
        self.synthesizer = synthesizer
        self.renderer = renderer
        self.builder = builder or RenderRequestBuilder()
        self.render_timeout_sec = render_timeout_sec
        self.events = events or NullEventStore()

    async def render(self, chapter: Chapter) -> bool:
        """Render a claimed chapter. Returns True when it ended COMPLETED."""
        if not chapter.queue_id:
            raise ValueError(f"Chapter {chapter.chapter_id} was not claimed")

        started = time.monotonic()
        try:
            audio_url = await asyncio.to_thread(
                self.synthesizer.synthesize, chapter.narration, chapter.chapter_id
            )
            spec = self.builder.build(chapter, audio_url)

            result = await asyncio.wait_for(
                asyncio.to_thread(self.renderer.render, spec.to_payload()),
                timeout=self.render_timeout_sec,
            )

            video_url = result.video_url
            if not video_url:
                video_url = default_chapter_video_url(chapter.chapter_id)
                logger.warning(
                    f"[ChapterWorker] renderer returned no URL for chapter {chapter.chapter_number}, "
                    f"using {video_url}"
                )
            duration = result.duration_seconds or chapter.target_duration_minutes * 60

            await asyncio.to_thread(
                self.store.complete_chapter_render,
                chapter.queue_id,
                video_url,
                duration,
                audio_url,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classification = classify_render_failure(e)
            if classification.failure_type == "unknown":
                logger.exception(f"[ChapterWorker] chapter {chapter.chapter_number} failed unexpectedly")
            else:
                logger.error(
                    f"[ChapterWorker] chapter {chapter.chapter_number} failed "
                    f"({classification.failure_type}, {classification.severity}): {classification.reason}"
                )
            await asyncio.to_thread(
                self.store.fail_chapter_render,
                chapter.queue_id,
                classification.reason,
                classification.failure_type,
            )
            await asyncio.to_thread(
                self.events.emit_render_event,
                chapter.script_id,
                "failed",
                chapter_id=chapter.chapter_id,
                chapter_number=chapter.chapter_number,
                error=classification.reason,
                error_kind=classification.failure_type,
                recoverable=classification.recoverable,
            )
            return False

        elapsed = round(time.monotonic() - started, 2)
        logger.info(f"[ChapterWorker] chapter {chapter.chapter_number} complete in {elapsed}s")
        await asyncio.to_thread(
            self.events.emit_render_event,
            chapter.script_id,
            "completed",
            chapter_id=chapter.chapter_id,
            chapter_number=chapter.chapter_number,
            video_url=video_url,
            duration_seconds=duration,
        )
        return True
