import threading
import time

import pytest

from agents.render_client import RenderResult, RendererError
from runtime.persistence.memory_store import InMemoryRenderStore


class FakeRenderer:
    """
    Thread-safe stand-in for RenderClient. Records submission order and the
    peak number of renders in flight at once.
    """

    def __init__(self, delay=0.01, fail_chapters=(), duration=1200.0, stitch_error=None):
        self.delay = delay
        self.fail_chapters = set(fail_chapters)
        self.duration = duration
        self.stitch_error = stitch_error
        self.rendered = []
        self.payloads = []
        self.stitch_requests = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def render(self, payload):
        number = int(payload["config"]["title_card"]["title"].split()[-1])
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.rendered.append(number)
            self.payloads.append(payload)
        try:
            time.sleep(self.delay)
            if number in self.fail_chapters:
                raise RendererError("Render failed: 500", status_code=500)
            return RenderResult(
                video_url=f"https://cdn.example.com/chapters/{number}.mp4",
                duration_seconds=self.duration,
            )
        finally:
            with self._lock:
                self.active -= 1

    def stitch(self, request):
        self.stitch_requests.append(request)
        if self.stitch_error is not None:
            raise self.stitch_error
        return RenderResult(video_url="https://cdn.example.com/final.mp4")


class FakeSynthesizer:
    def __init__(self):
        self.calls = []

    def synthesize(self, text, chapter_id):
        self.calls.append(chapter_id)
        return f"/audio/generated/{chapter_id}.mp3"


def chapter_specs(count, **overrides):
    return [
        {
            "chapter_id": f"ch-{n}",
            "chapter_number": n,
            "title": f"Part {n}",
            "narration": f"Narration for part {n}.",
            "visual_markers": [f"marker-{n}"],
            **overrides,
        }
        for n in range(1, count + 1)
    ]


def make_script(store, chapters=5, script_id="doc-1", **kwargs):
    return store.create_script(
        kwargs.pop("title", "Deep Oceans"),
        chapter_specs(chapters) if isinstance(chapters, int) else chapters,
        script_id=script_id,
        **kwargs,
    )


def settle_chapters(store, script_id, fail=(), duration=1200.0, order=None):
    """
    Queue, claim and finish every chapter of a script synchronously.
    order lists chapter numbers in completion order (default: claim order).
    """
    store.enqueue_script(script_id, 100)
    claimed = {}
    while True:
        chapter = store.claim_next_chapter(100, "test-worker")
        if chapter is None:
            break
        claimed[chapter.chapter_number] = chapter

    for number in order or sorted(claimed):
        chapter = claimed[number]
        if number in fail:
            store.fail_chapter_render(chapter.queue_id, "Render failed: 500", "renderer_error")
        else:
            store.complete_chapter_render(
                chapter.queue_id,
                f"https://cdn.example.com/chapters/{number}.mp4",
                duration,
                f"/audio/generated/{chapter.chapter_id}.mp3",
            )


@pytest.fixture
def store():
    return InMemoryRenderStore()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()
