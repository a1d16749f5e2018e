"""
Quality Gate

Advisory post-stitch checklist. The result is recorded on the script and
returned; a failing gate never touches the stitched video.
"""

import logging
from typing import Dict

from models.quality_check import QualityCheckResult, format_duration
from runtime.chapter_state import ChapterStatus
from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import RenderStore, ScriptNotFoundError

logger = logging.getLogger(__name__)

# Runtime band for a long-form documentary, in seconds
DEFAULT_MIN_DURATION_SEC = 6000
DEFAULT_MAX_DURATION_SEC = 12000


class QualityGate:
    def __init__(
        self,
        store: RenderStore,
        min_duration_sec: float = DEFAULT_MIN_DURATION_SEC,
        max_duration_sec: float = DEFAULT_MAX_DURATION_SEC,
        events=None,
    ):
        if min_duration_sec > max_duration_sec:
            raise ValueError("min_duration_sec must not exceed max_duration_sec")
        self.store = store
        self.min_duration_sec = min_duration_sec
        self.max_duration_sec = max_duration_sec
        self.events = events or NullEventStore()

    def run(self, script_id: str) -> QualityCheckResult:
        script = self.store.get_script(script_id, with_chapters=True)
        if script is None:
            raise ScriptNotFoundError(f"Script {script_id} not found")

        total_duration = sum(c.video_duration_seconds or 0 for c in script.chapters)

        checks: Dict[str, bool] = {
            # Placeholders until signal-level analysis exists
            "transitions_smooth": True,
            "audio_levels_consistent": True,
            "all_chapters_rendered": bool(script.chapters) and all(
                c.render_status == ChapterStatus.COMPLETED for c in script.chapters
            ),
            "video_quality_ok": True,
            "credits_present": bool(script.credits or script.stitched_credits),
            "total_duration_ok": self.min_duration_sec <= total_duration <= self.max_duration_sec,
        }

        failed = [name for name, ok in checks.items() if not ok]
        result = QualityCheckResult(
            script_id=script_id,
            passed=not failed,
            checks=checks,
            notes=", ".join(f"{name} failed" for name in failed) if failed else "All checks passed",
            total_duration_seconds=total_duration,
        )

        self.store.record_quality_check(result)

        if result.passed:
            logger.info(f"[QualityGate] script {script_id} passed ({format_duration(total_duration)})")
        else:
            logger.warning(f"[QualityGate] script {script_id} failed: {result.notes}")
        self.events.emit_render_event(
            script_id,
            "quality_checked",
            passed=result.passed,
            notes=result.notes,
        )
        return result
