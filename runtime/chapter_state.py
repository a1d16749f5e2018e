from enum import Enum


class ChapterStatus(str, Enum):
    """
    Chapter lifecycle in the render queue.

    not_queued -> queued -> rendering -> {completed | failed}

    IMPORTANT:
    - Only the scheduler and the chapter worker change chapter status
    - There is no automatic transition out of FAILED (manual re-queue only)
    """

    # Chapter exists but has no render queue entry
    NOT_QUEUED = "not_queued"

    # Chapter has a queue entry waiting for a free worker slot
    QUEUED = "queued"

    # Chapter was claimed by a worker and is in-flight at the renderer
    RENDERING = "rendering"

    # Renderer returned a chapter video
    COMPLETED = "completed"

    # Render submission errored or timed out
    FAILED = "failed"


TERMINAL_STATUSES = {ChapterStatus.COMPLETED, ChapterStatus.FAILED}

# Statuses that own a render queue entry
IN_QUEUE_STATUSES = {ChapterStatus.QUEUED, ChapterStatus.RENDERING}
