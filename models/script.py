"""
Script Model

The parent documentary: ordered chapters plus credits/music metadata and
the results of stitching and quality checking.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.chapter import Chapter
from runtime.script_state import StitchState


@dataclass
class Script:
    script_id: str
    title: str
    chapters: List[Chapter] = field(default_factory=list)
    credits: Optional[Dict[str, Any]] = None
    music_config: Optional[Dict[str, Any]] = None
    sources: List[str] = field(default_factory=list)

    # Stitch outcome
    final_render_status: StitchState = StitchState.PENDING
    final_video_url: Optional[str] = None
    final_duration_seconds: Optional[float] = None
    final_chapter_count: Optional[int] = None
    final_render_error: Optional[str] = None
    stitched_credits: Optional[Dict[str, Any]] = None

    # Quality gate outcome (overwritten on every run)
    quality_check_passed: Optional[bool] = None
    quality_checks: Optional[Dict[str, bool]] = None
    quality_check_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script_id": self.script_id,
            "title": self.title,
            "chapter_count": len(self.chapters),
            "credits": self.credits,
            "music_config": self.music_config,
            "sources": list(self.sources),
            "final_render_status": StitchState(self.final_render_status).value,
            "final_video_url": self.final_video_url,
            "final_duration_seconds": self.final_duration_seconds,
            "final_chapter_count": self.final_chapter_count,
            "final_render_error": self.final_render_error,
            "quality_check_passed": self.quality_check_passed,
            "quality_check_notes": self.quality_check_notes,
        }


@dataclass
class AssembledVideo:
    """Stitcher output, derived from the chapters completed at stitch time."""
    script_id: str
    video_url: str
    duration_seconds: float
    chapter_count: int
    chapter_numbers: List[int] = field(default_factory=list)
    credits: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script_id": self.script_id,
            "video_url": self.video_url,
            "duration_seconds": self.duration_seconds,
            "chapter_count": self.chapter_count,
            "chapter_numbers": list(self.chapter_numbers),
            "credits": self.credits,
        }
