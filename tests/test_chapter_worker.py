import time
from unittest.mock import MagicMock

import pytest

from agents.render_client import RenderResult
from conftest import FakeRenderer, make_script
from runtime.chapter_state import ChapterStatus
from runtime.chapter_worker import ChapterRenderWorker


def _claim(store, chapters=1):
    make_script(store, chapters)
    store.enqueue_script("doc-1", 4)
    return store.claim_next_chapter(4, "worker-1")


@pytest.mark.asyncio
async def test_successful_render_completes_chapter(store, renderer, synthesizer):
    chapter = _claim(store)
    events = MagicMock()
    worker = ChapterRenderWorker(store, synthesizer, renderer, events=events)

    assert await worker.render(chapter) is True

    saved = store.get_chapter("ch-1")
    assert saved.render_status == ChapterStatus.COMPLETED
    assert saved.video_url == "https://cdn.example.com/chapters/1.mp4"
    assert saved.video_duration_seconds == 1200.0
    assert saved.narration_audio_url == "/audio/generated/ch-1.mp3"
    assert synthesizer.calls == ["ch-1"]

    payload = renderer.payloads[0]
    assert payload["config"]["content"]["audio_url"] == "/audio/generated/ch-1.mp3"
    assert payload["config"]["content"]["narration"] == "Narration for part 1."
    events.emit_render_event.assert_called_once()
    assert events.emit_render_event.call_args.args == ("doc-1", "completed")


@pytest.mark.asyncio
async def test_missing_renderer_fields_fall_back_to_defaults(store, synthesizer):
    chapter = _claim(store)
    renderer = MagicMock()
    renderer.render.return_value = RenderResult()

    assert await ChapterRenderWorker(store, synthesizer, renderer).render(chapter) is True

    saved = store.get_chapter("ch-1")
    assert saved.video_url == "/videos/chapters/ch-1.mp4"
    assert saved.video_duration_seconds == 18 * 60


@pytest.mark.asyncio
async def test_renderer_error_fails_chapter_with_text(store, synthesizer):
    chapter = _claim(store)
    events = MagicMock()
    worker = ChapterRenderWorker(store, synthesizer, FakeRenderer(fail_chapters={1}), events=events)

    assert await worker.render(chapter) is False

    saved = store.get_chapter("ch-1")
    assert saved.render_status == ChapterStatus.FAILED
    assert saved.render_error == "Render failed: 500"
    assert saved.render_error_kind == "renderer_error"
    assert events.emit_render_event.call_args.args == ("doc-1", "failed")
    assert events.emit_render_event.call_args.kwargs["recoverable"] is False
    assert store.count_rendering() == 0


@pytest.mark.asyncio
async def test_render_timeout_fails_chapter(store, synthesizer):
    chapter = _claim(store)
    renderer = MagicMock()
    renderer.render.side_effect = lambda payload: time.sleep(0.5)
    worker = ChapterRenderWorker(store, synthesizer, renderer, render_timeout_sec=0.05)

    assert await worker.render(chapter) is False

    saved = store.get_chapter("ch-1")
    assert saved.render_status == ChapterStatus.FAILED
    assert saved.render_error_kind == "timeout"


@pytest.mark.asyncio
async def test_unexpected_error_is_recorded_as_unknown(store, synthesizer):
    chapter = _claim(store)
    renderer = MagicMock()
    renderer.render.side_effect = KeyError("video_url")

    assert await ChapterRenderWorker(store, synthesizer, renderer).render(chapter) is False
    assert store.get_chapter("ch-1").render_error_kind == "unknown"


@pytest.mark.asyncio
async def test_unclaimed_chapter_is_rejected(store, renderer, synthesizer):
    make_script(store, 1)
    chapter = store.get_chapter("ch-1")

    with pytest.raises(ValueError):
        await ChapterRenderWorker(store, synthesizer, renderer).render(chapter)
