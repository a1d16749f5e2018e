from typing import Any, Dict

from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import RenderStore, ScriptNotFoundError
from runtime.script_state import StitchState


class ProgressReporter:
    """Read-only render progress for pollers. Safe to call mid-render."""

    def __init__(self, store: RenderStore, events=None, recent_events: int = 20):
        self.store = store
        self.events = events or NullEventStore()
        self.recent_events = recent_events

    def report(self, script_id: str) -> Dict[str, Any]:
        script = self.store.get_script(script_id, with_chapters=True)
        if script is None:
            raise ScriptNotFoundError(f"Script {script_id} not found")

        progress = self.store.get_render_progress(script_id)
        total = progress["total_chapters"]

        return {
            "script_id": script_id,
            "title": script.title,
            **progress,
            "percent_complete": round(100.0 * progress["completed_chapters"] / total, 1) if total else 0.0,
            "is_settled": bool(script.chapters) and all(c.is_terminal for c in script.chapters),
            "chapters": [
                {
                    "chapter_id": c.chapter_id,
                    "chapter_number": c.chapter_number,
                    "title": c.title,
                    "status": c.render_status.value,
                    "video_url": c.video_url,
                    "video_duration_seconds": c.video_duration_seconds,
                    "error": c.render_error,
                    "error_kind": c.render_error_kind,
                }
                for c in sorted(script.chapters, key=lambda c: c.chapter_number)
            ],
            "final_render_status": StitchState(script.final_render_status).value,
            "final_video_url": script.final_video_url,
            "quality_check_passed": script.quality_check_passed,
            "events": self.events.recent_render_events(script_id, limit=self.recent_events),
        }
