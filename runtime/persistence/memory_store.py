# runtime/persistence/memory_store.py

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models.chapter import Chapter, DEFAULT_TRANSITION, RenderQueueEntry
from models.quality_check import QualityCheckResult
from models.script import Script
from runtime.chapter_state import ChapterStatus, IN_QUEUE_STATUSES
from runtime.persistence.render_store import (
    ChapterNotFoundError,
    RenderStore,
    ScriptNotFoundError,
    chapter_priority,
    count_progress,
)
from runtime.script_state import StitchState


class InMemoryRenderStore(RenderStore):
    """
    Process-local render store. Every operation runs under one lock, which
    makes claim/complete/fail atomic across threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._scripts: Dict[str, Script] = {}
        self._chapters: Dict[str, Chapter] = {}
        self._queue: Dict[str, RenderQueueEntry] = {}
        # queue_id -> enqueue sequence number
        self._order: Dict[str, int] = {}
        self._seq = 0

    # -------------------------------------------------
    # Scripts & chapters
    # -------------------------------------------------

    def create_script(self, title, chapters, credits=None, music_config=None, sources=None, script_id=None):
        script_id = script_id or str(uuid.uuid4())
        numbers = [int(c["chapter_number"]) for c in chapters]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Duplicate chapter numbers in script {script_id}")

        with self._lock:
            if script_id in self._scripts:
                raise ValueError(f"Script {script_id} already exists")
            self._scripts[script_id] = Script(
                script_id=script_id,
                title=title,
                credits=copy.deepcopy(credits),
                music_config=copy.deepcopy(music_config),
                sources=list(sources or []),
            )
            for spec in chapters:
                chapter_id = spec.get("chapter_id") or str(uuid.uuid4())
                self._chapters[chapter_id] = Chapter(
                    chapter_id=chapter_id,
                    script_id=script_id,
                    chapter_number=int(spec["chapter_number"]),
                    title=spec.get("title", ""),
                    narration=spec.get("narration", ""),
                    visual_markers=list(spec.get("visual_markers") or []),
                    template_config=copy.deepcopy(spec.get("template_config")),
                    transition_type=spec.get("transition_type") or DEFAULT_TRANSITION,
                    music_track=spec.get("music_track"),
                    duration_minutes=spec.get("duration_minutes"),
                )
        return script_id

    def get_script(self, script_id, with_chapters=True):
        with self._lock:
            script = self._scripts.get(script_id)
            if script is None:
                return None
            script = copy.deepcopy(script)
            if with_chapters:
                script.chapters = self._chapters_of(script_id)
            return script

    def get_chapter(self, chapter_id):
        with self._lock:
            chapter = self._chapters.get(chapter_id)
            return copy.deepcopy(chapter) if chapter else None

    def get_chapters(self, script_id, statuses=None):
        with self._lock:
            chapters = self._chapters_of(script_id)
        if statuses:
            wanted = {ChapterStatus(s) for s in statuses}
            chapters = [c for c in chapters if c.render_status in wanted]
        return chapters

    # -------------------------------------------------
    # Render queue
    # -------------------------------------------------

    def enqueue_script(self, script_id, max_concurrency):
        with self._lock:
            self._require_script(script_id)
            queued = 0
            for chapter in self._chapters.values():
                if chapter.script_id != script_id:
                    continue
                if chapter.render_status != ChapterStatus.NOT_QUEUED:
                    continue
                self._add_entry(chapter)
                queued += 1
            return queued

    def enqueue_chapter(self, chapter_id):
        with self._lock:
            chapter = self._chapters.get(chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(chapter_id)
            if chapter.render_status in IN_QUEUE_STATUSES:
                return False
            self._add_entry(chapter)
            return True

    def claim_next_chapter(self, max_concurrency, worker_id):
        with self._lock:
            rendering = sum(
                1 for e in self._queue.values() if e.status == ChapterStatus.RENDERING
            )
            if rendering >= max_concurrency:
                return None

            queued = [e for e in self._queue.values() if e.status == ChapterStatus.QUEUED]
            if not queued:
                return None

            # equal priorities (different scripts) are served in enqueue order
            entry = min(queued, key=lambda e: (-e.priority, self._order[e.queue_id]))
            entry.status = ChapterStatus.RENDERING
            entry.worker_id = worker_id
            entry.claimed_at = datetime.now(timezone.utc).isoformat()

            chapter = self._chapters[entry.chapter_id]
            chapter.render_status = ChapterStatus.RENDERING
            chapter.render_attempts = entry.attempt

            claimed = copy.deepcopy(chapter)
            claimed.queue_id = entry.queue_id
            claimed.worker_id = worker_id
            return claimed

    def complete_chapter_render(self, queue_id, video_url, video_duration_seconds, audio_url):
        with self._lock:
            entry = self._pop_rendering(queue_id)
            if entry is None:
                return None
            chapter = self._chapters[entry.chapter_id]
            chapter.render_status = ChapterStatus.COMPLETED
            chapter.video_url = video_url
            chapter.video_duration_seconds = video_duration_seconds
            chapter.narration_audio_url = audio_url
            chapter.render_error = None
            chapter.render_error_kind = None
            return copy.deepcopy(chapter)

    def fail_chapter_render(self, queue_id, error_message, error_kind=None):
        with self._lock:
            entry = self._pop_rendering(queue_id)
            if entry is None:
                return None
            chapter = self._chapters[entry.chapter_id]
            chapter.render_status = ChapterStatus.FAILED
            chapter.render_error = error_message
            chapter.render_error_kind = error_kind
            return copy.deepcopy(chapter)

    def get_queue_entries(self, script_id=None):
        with self._lock:
            entries = [
                copy.deepcopy(e) for e in self._queue.values()
                if script_id is None or e.script_id == script_id
            ]
        return sorted(entries, key=lambda e: (-e.priority, self._order.get(e.queue_id, 0)))

    def count_rendering(self):
        with self._lock:
            return sum(1 for e in self._queue.values() if e.status == ChapterStatus.RENDERING)

    # -------------------------------------------------
    # Progress
    # -------------------------------------------------

    def get_render_progress(self, script_id):
        with self._lock:
            self._require_script(script_id)
            return count_progress(
                c.render_status for c in self._chapters.values() if c.script_id == script_id
            )

    # -------------------------------------------------
    # Script-level writes
    # -------------------------------------------------

    def set_credits(self, script_id, credits):
        with self._lock:
            self._require_script(script_id).credits = copy.deepcopy(credits)

    def complete_stitch(self, script_id, final_video_url, total_duration_seconds, chapter_count, credits):
        with self._lock:
            script = self._require_script(script_id)
            script.final_render_status = StitchState.COMPLETED
            script.final_video_url = final_video_url
            script.final_duration_seconds = total_duration_seconds
            script.final_chapter_count = chapter_count
            script.final_render_error = None
            script.stitched_credits = copy.deepcopy(credits)

    def fail_stitch(self, script_id, error_message):
        with self._lock:
            script = self._require_script(script_id)
            script.final_render_status = StitchState.FAILED
            script.final_render_error = error_message

    def record_quality_check(self, result: QualityCheckResult):
        with self._lock:
            script = self._require_script(result.script_id)
            script.quality_check_passed = result.passed
            script.quality_checks = dict(result.checks)
            script.quality_check_notes = result.notes

    # -------------------------------------------------
    # Internal (caller holds the lock)
    # -------------------------------------------------

    def _require_script(self, script_id) -> Script:
        script = self._scripts.get(script_id)
        if script is None:
            raise ScriptNotFoundError(script_id)
        return script

    def _chapters_of(self, script_id) -> List[Chapter]:
        chapters = [copy.deepcopy(c) for c in self._chapters.values() if c.script_id == script_id]
        return sorted(chapters, key=lambda c: c.chapter_number)

    def _pop_rendering(self, queue_id) -> Optional[RenderQueueEntry]:
        entry = self._queue.get(queue_id)
        if entry is None or entry.status != ChapterStatus.RENDERING:
            return None
        self._order.pop(queue_id, None)
        return self._queue.pop(queue_id)

    def _add_entry(self, chapter: Chapter) -> None:
        self._seq += 1
        entry = RenderQueueEntry(
            queue_id=str(uuid.uuid4()),
            chapter_id=chapter.chapter_id,
            script_id=chapter.script_id,
            priority=chapter_priority(chapter.chapter_number),
            attempt=chapter.render_attempts + 1,
            queued_at=datetime.now(timezone.utc).isoformat(),
        )
        self._queue[entry.queue_id] = entry
        self._order[entry.queue_id] = self._seq
        chapter.render_status = ChapterStatus.QUEUED
        chapter.render_error = None
        chapter.render_error_kind = None
