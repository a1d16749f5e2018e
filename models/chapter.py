"""
Chapter Model

One independently rendered segment of a documentary script, plus the
render queue entry that exists while the chapter is queued or rendering.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from runtime.chapter_state import ChapterStatus, TERMINAL_STATUSES

DEFAULT_TRANSITION = "fade"
DEFAULT_DURATION_MINUTES = 18.0


@dataclass
class Chapter:
    """
    A documentary chapter.

    Attributes:
        chapter_number: Unique within a script; defines stitch order
        template_config: Per-chapter overrides of the default render template
        duration_minutes: Runtime estimate sent to the renderer (not enforced)
        queue_id: Set only on chapters returned by a claim
    """
    chapter_id: str
    script_id: str
    chapter_number: int
    title: str
    narration: str = ""
    visual_markers: List[Any] = field(default_factory=list)
    template_config: Optional[Dict[str, Any]] = None
    transition_type: str = DEFAULT_TRANSITION
    music_track: Optional[str] = None
    duration_minutes: Optional[float] = None

    # Render outcome
    render_status: ChapterStatus = ChapterStatus.NOT_QUEUED
    video_url: Optional[str] = None
    video_duration_seconds: Optional[float] = None
    narration_audio_url: Optional[str] = None
    render_error: Optional[str] = None
    render_error_kind: Optional[str] = None
    render_attempts: int = 0

    # Claim context
    queue_id: Optional[str] = None
    worker_id: Optional[str] = None

    @property
    def target_duration_minutes(self) -> float:
        return float(self.duration_minutes or DEFAULT_DURATION_MINUTES)

    @property
    def is_terminal(self) -> bool:
        return self.render_status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter_id": self.chapter_id,
            "script_id": self.script_id,
            "chapter_number": self.chapter_number,
            "title": self.title,
            "transition_type": self.transition_type,
            "duration_minutes": self.duration_minutes,
            "render_status": ChapterStatus(self.render_status).value,
            "video_url": self.video_url,
            "video_duration_seconds": self.video_duration_seconds,
            "narration_audio_url": self.narration_audio_url,
            "render_error": self.render_error,
            "render_error_kind": self.render_error_kind,
            "render_attempts": self.render_attempts,
        }


@dataclass
class RenderQueueEntry:
    """The unit a worker claims. At most one per chapter at a time."""
    queue_id: str
    chapter_id: str
    script_id: str
    priority: int
    status: ChapterStatus = ChapterStatus.QUEUED
    worker_id: Optional[str] = None
    attempt: int = 1
    queued_at: Optional[str] = None
    claimed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_id": self.queue_id,
            "chapter_id": self.chapter_id,
            "script_id": self.script_id,
            "priority": self.priority,
            "status": ChapterStatus(self.status).value,
            "worker_id": self.worker_id,
            "attempt": self.attempt,
            "queued_at": self.queued_at,
            "claimed_at": self.claimed_at,
        }
