"""
Stitcher

Assembles the completed chapters of a script, in chapter-number order, into
one final video via the external renderer's stitch endpoint.

Policies:
    best_effort  stitch whatever is completed; failed/queued chapters are left out
    strict       refuse while any chapter is not completed

Precondition failures perform no writes. Renderer failures are recorded on
the script as a failed final render.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from agents.render_client import RenderClient, RendererError
from models.chapter import Chapter
from models.script import AssembledVideo, Script
from runtime.chapter_state import ChapterStatus
from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import RenderStore, ScriptNotFoundError
from runtime.render_request_builder import DEFAULT_MUSIC_TRACK, MUSIC_BED_VOLUME

logger = logging.getLogger(__name__)

ACKNOWLEDGMENTS = ["Produced with the documentary render pipeline"]
MUSIC_CREDITS = ["Royalty-free music from audio library"]


class StitchPolicy(str, Enum):
    BEST_EFFORT = "best_effort"
    STRICT = "strict"


class StitchError(Exception):
    pass


class NothingToStitchError(StitchError):
    pass


class IncompleteChaptersError(StitchError):
    def __init__(self, message: str, chapter_numbers: Optional[List[int]] = None):
        super().__init__(message)
        self.chapter_numbers = chapter_numbers or []


class StitchExecutionError(StitchError):
    pass


def default_final_video_url(script_id: str) -> str:
    return f"/videos/documentaries/{script_id}_final.mp4"


def default_credits(script: Script) -> Dict[str, Any]:
    return {
        "title": script.title,
        "sources": list(script.sources),
        "acknowledgments": list(ACKNOWLEDGMENTS),
        "music_credits": list(MUSIC_CREDITS),
    }


def default_music_config() -> Dict[str, Any]:
    return {"track": DEFAULT_MUSIC_TRACK, "volume": MUSIC_BED_VOLUME}


class Stitcher:
    def __init__(
        self,
        store: RenderStore,
        renderer: RenderClient,
        policy: StitchPolicy = StitchPolicy.BEST_EFFORT,
        output_format: str = "mp4",
        quality: str = "1080p",
        events=None,
    ):
        self.store = store
        self.renderer = renderer
        self.policy = StitchPolicy(policy)
        self.output_format = output_format
        self.quality = quality
        self.events = events or NullEventStore()

    def stitch(self, script_id: str, policy: Optional[StitchPolicy] = None) -> AssembledVideo:
        policy = StitchPolicy(policy or self.policy)

        script = self.store.get_script(script_id, with_chapters=True)
        if script is None:
            raise ScriptNotFoundError(f"Script {script_id} not found")

        completed = sorted(
            (c for c in script.chapters if c.render_status == ChapterStatus.COMPLETED),
            key=lambda c: c.chapter_number,
        )
        if not completed:
            raise NothingToStitchError(f"No completed chapters to stitch for script {script_id}")

        missing = [c.chapter_number for c in script.chapters if c.render_status != ChapterStatus.COMPLETED]
        if missing:
            if policy == StitchPolicy.STRICT:
                raise IncompleteChaptersError(
                    f"Chapters not completed: {sorted(missing)}",
                    chapter_numbers=sorted(missing),
                )
            logger.warning(
                f"[Stitcher] script {script_id}: stitching {len(completed)} of "
                f"{len(script.chapters)} chapters, excluding {sorted(missing)}"
            )

        credits = script.credits
        if not credits:
            credits = default_credits(script)
            logger.warning(f"[Stitcher] script {script_id} has no credits, using defaults")

        request = self.build_request(completed, credits, script.music_config)

        try:
            result = self.renderer.stitch(request)
        except RendererError as e:
            logger.error(f"[Stitcher] stitch failed for script {script_id} ({e.kind}): {e}")
            self.store.fail_stitch(script_id, str(e))
            raise StitchExecutionError(str(e)) from e

        video_url = result.video_url or default_final_video_url(script_id)
        duration = result.duration_seconds or sum(
            c.video_duration_seconds or 0 for c in completed
        )

        self.store.complete_stitch(script_id, video_url, duration, len(completed), credits)

        assembled = AssembledVideo(
            script_id=script_id,
            video_url=video_url,
            duration_seconds=duration,
            chapter_count=len(completed),
            chapter_numbers=[c.chapter_number for c in completed],
            credits=credits,
        )
        logger.info(
            f"[Stitcher] script {script_id} stitched: {assembled.chapter_count} chapters, "
            f"{round(duration)}s -> {video_url}"
        )
        self.events.emit_render_event(
            script_id,
            "stitched",
            video_url=video_url,
            duration_seconds=duration,
            chapter_numbers=assembled.chapter_numbers,
        )
        return assembled

    def build_request(
        self,
        chapters: List[Chapter],
        credits: Dict[str, Any],
        music_config: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return {
            "chapters": [
                {
                    "video_url": c.video_url,
                    "duration": c.video_duration_seconds,
                    "transition": c.transition_type,
                }
                for c in chapters
            ],
            "credits": credits,
            "music_config": music_config or default_music_config(),
            "output_format": self.output_format,
            "quality": self.quality,
        }
