"""
Render Store Contract

Persistence operations the render pipeline needs. Implementations must make
enqueue, claim, complete and fail atomic with respect to each other: two
concurrent claims never return the same chapter and never push the number of
RENDERING chapters above the requested concurrency bound.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from models.chapter import Chapter, RenderQueueEntry
from models.quality_check import QualityCheckResult
from models.script import Script
from runtime.chapter_state import ChapterStatus

# Earlier chapters get higher priority: priority = MAX_PRIORITY - chapter_number
MAX_PRIORITY = 100


class ScriptNotFoundError(LookupError):
    pass


class ChapterNotFoundError(LookupError):
    pass


def chapter_priority(chapter_number: int) -> int:
    return MAX_PRIORITY - int(chapter_number)


def empty_progress() -> Dict[str, int]:
    return {
        "total_chapters": 0,
        "not_queued_chapters": 0,
        "queued_chapters": 0,
        "rendering_chapters": 0,
        "completed_chapters": 0,
        "failed_chapters": 0,
    }


def count_progress(statuses: Iterable[Any]) -> Dict[str, int]:
    progress = empty_progress()
    for status in statuses:
        progress["total_chapters"] += 1
        progress[f"{ChapterStatus(status).value}_chapters"] += 1
    return progress


class RenderStore(ABC):

    # -------------------------------------------------
    # Scripts & chapters
    # -------------------------------------------------

    @abstractmethod
    def create_script(
        self,
        title: str,
        chapters: List[Dict[str, Any]],
        credits: Optional[Dict[str, Any]] = None,
        music_config: Optional[Dict[str, Any]] = None,
        sources: Optional[List[str]] = None,
        script_id: Optional[str] = None,
    ) -> str:
        """
        Persist a script and its chapters. Each chapter dict needs
        chapter_number and title; chapter numbers must be unique.
        Returns the script id.
        """

    @abstractmethod
    def get_script(self, script_id: str, with_chapters: bool = True) -> Optional[Script]:
        pass

    @abstractmethod
    def get_chapter(self, chapter_id: str) -> Optional[Chapter]:
        pass

    @abstractmethod
    def get_chapters(self, script_id: str, statuses=None) -> List[Chapter]:
        """Chapters of a script ordered by chapter_number, optionally filtered."""

    # -------------------------------------------------
    # Render queue
    # -------------------------------------------------

    @abstractmethod
    def enqueue_script(self, script_id: str, max_concurrency: int) -> int:
        """
        Queue every NOT_QUEUED chapter of a script. Returns the number queued.
        max_concurrency is accepted for parity with the claim call; the bound
        is enforced at claim time.
        """

    @abstractmethod
    def enqueue_chapter(self, chapter_id: str) -> bool:
        """
        Queue a single chapter (manual re-queue of failed/completed chapters).
        Returns False when the chapter already owns a queue entry.
        """

    @abstractmethod
    def claim_next_chapter(self, max_concurrency: int, worker_id: str) -> Optional[Chapter]:
        """
        Atomically pick the highest-priority QUEUED entry and mark it
        RENDERING for worker_id. Returns None when nothing is queued or when
        RENDERING count >= max_concurrency.
        """

    @abstractmethod
    def complete_chapter_render(
        self,
        queue_id: str,
        video_url: str,
        video_duration_seconds: float,
        audio_url: Optional[str],
    ) -> Optional[Chapter]:
        """Finalize a RENDERING entry as COMPLETED. None if the entry is gone."""

    @abstractmethod
    def fail_chapter_render(
        self,
        queue_id: str,
        error_message: str,
        error_kind: Optional[str] = None,
    ) -> Optional[Chapter]:
        """Finalize a RENDERING entry as FAILED. None if the entry is gone."""

    @abstractmethod
    def get_queue_entries(self, script_id: Optional[str] = None) -> List[RenderQueueEntry]:
        pass

    @abstractmethod
    def count_rendering(self) -> int:
        pass

    # -------------------------------------------------
    # Progress
    # -------------------------------------------------

    @abstractmethod
    def get_render_progress(self, script_id: str) -> Dict[str, int]:
        pass

    # -------------------------------------------------
    # Script-level writes
    # -------------------------------------------------

    @abstractmethod
    def set_credits(self, script_id: str, credits: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def complete_stitch(
        self,
        script_id: str,
        final_video_url: str,
        total_duration_seconds: float,
        chapter_count: int,
        credits: Dict[str, Any],
    ) -> None:
        pass

    @abstractmethod
    def fail_stitch(self, script_id: str, error_message: str) -> None:
        pass

    @abstractmethod
    def record_quality_check(self, result: QualityCheckResult) -> None:
        pass
