"""
Tests for the bounded render pool: concurrency bound, drain, isolation of
failures and the settled hook.
"""
import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeRenderer, make_script
from runtime.chapter_state import ChapterStatus
from runtime.chapter_worker import ChapterRenderWorker
from runtime.persistence.render_store import ScriptNotFoundError
from runtime.quality_gate import QualityGate
from runtime.render_scheduler import RenderQueueScheduler, auto_stitch_hook
from runtime.script_state import StitchState
from runtime.stitcher import Stitcher


def _scheduler(store, renderer, synthesizer, max_concurrency=4, **kwargs):
    worker = ChapterRenderWorker(store, synthesizer, renderer, render_timeout_sec=5)
    return RenderQueueScheduler(store, worker, max_concurrency=max_concurrency, **kwargs)


def _statuses(store, script_id="doc-1"):
    return {c.chapter_number: c.render_status for c in store.get_chapters(script_id)}


@pytest.mark.asyncio
async def test_five_chapters_with_one_failure(store, synthesizer):
    make_script(store, 5)
    renderer = FakeRenderer(delay=0.02, fail_chapters={3})
    scheduler = _scheduler(store, renderer, synthesizer, max_concurrency=4)

    assert await scheduler.start("doc-1") == 5
    await scheduler.join()

    assert _statuses(store) == {
        1: ChapterStatus.COMPLETED,
        2: ChapterStatus.COMPLETED,
        3: ChapterStatus.FAILED,
        4: ChapterStatus.COMPLETED,
        5: ChapterStatus.COMPLETED,
    }
    assert store.get_chapter("ch-3").render_error == "Render failed: 500"
    assert renderer.peak <= 4

    video = Stitcher(store, renderer).stitch("doc-1")
    assert video.chapter_numbers == [1, 2, 4, 5]
    assert [c["video_url"] for c in renderer.stitch_requests[0]["chapters"]] == [
        f"https://cdn.example.com/chapters/{n}.mp4" for n in (1, 2, 4, 5)
    ]


@pytest.mark.asyncio
async def test_never_exceeds_concurrency_bound(store, synthesizer):
    make_script(store, 10)
    renderer = FakeRenderer(delay=0.03)
    scheduler = _scheduler(store, renderer, synthesizer, max_concurrency=3)

    await scheduler.start("doc-1")
    await scheduler.join()

    assert 1 <= renderer.peak <= 3
    assert sorted(renderer.rendered) == list(range(1, 11))
    assert set(_statuses(store).values()) == {ChapterStatus.COMPLETED}


@pytest.mark.asyncio
async def test_single_slot_renders_in_chapter_order(store, renderer, synthesizer):
    make_script(store, 5)
    scheduler = _scheduler(store, renderer, synthesizer, max_concurrency=1)

    await scheduler.start("doc-1")
    await scheduler.join()

    assert renderer.rendered == [1, 2, 3, 4, 5]
    assert renderer.peak == 1


@pytest.mark.asyncio
async def test_drain_leaves_nothing_to_claim(store, renderer, synthesizer):
    make_script(store, 6)
    scheduler = _scheduler(store, renderer, synthesizer)

    await scheduler.start("doc-1")
    await scheduler.join()

    assert await scheduler.claim_next() is None
    assert scheduler.in_flight == 0
    assert store.count_rendering() == 0
    assert store.get_queue_entries("doc-1") == []


@pytest.mark.asyncio
async def test_start_unknown_script(store, renderer, synthesizer):
    with pytest.raises(ScriptNotFoundError):
        await _scheduler(store, renderer, synthesizer).start("missing")


@pytest.mark.asyncio
async def test_start_twice_queues_nothing_new(store, renderer, synthesizer):
    make_script(store, 3)
    scheduler = _scheduler(store, renderer, synthesizer)

    assert await scheduler.start("doc-1") == 3
    await scheduler.join()
    assert await scheduler.start("doc-1") == 0
    await scheduler.join()

    assert sorted(renderer.rendered) == [1, 2, 3]


@pytest.mark.asyncio
async def test_manual_requeue_of_failed_chapter(store, synthesizer):
    make_script(store, 3)
    renderer = FakeRenderer(fail_chapters={2})
    scheduler = _scheduler(store, renderer, synthesizer)

    await scheduler.start("doc-1")
    await scheduler.join()
    assert store.get_chapter("ch-2").render_status == ChapterStatus.FAILED

    renderer.fail_chapters.clear()
    assert await scheduler.render_chapter("ch-2") is True
    await scheduler.join()

    chapter = store.get_chapter("ch-2")
    assert chapter.render_status == ChapterStatus.COMPLETED
    assert chapter.render_error is None
    assert chapter.render_attempts == 2


@pytest.mark.asyncio
async def test_manual_requeue_refuses_queued_chapter(store, renderer, synthesizer):
    make_script(store, 2)
    store.enqueue_script("doc-1", 4)
    scheduler = _scheduler(store, renderer, synthesizer)

    assert await scheduler.render_chapter("ch-1") is False
    assert renderer.rendered == []


@pytest.mark.asyncio
async def test_failure_in_one_script_does_not_block_another(store, synthesizer):
    make_script(store, [
        {"chapter_id": "a-1", "chapter_number": 1, "title": "A1"},
        {"chapter_id": "a-2", "chapter_number": 2, "title": "A2"},
    ], script_id="doc-a")
    make_script(store, [
        {"chapter_id": "b-1", "chapter_number": 1, "title": "B1"},
    ], script_id="doc-b")
    renderer = FakeRenderer()
    renderer.fail_chapters = {2}
    scheduler = _scheduler(store, renderer, synthesizer, max_concurrency=1)

    await scheduler.start("doc-a")
    await scheduler.start("doc-b")
    await scheduler.join()

    assert _statuses(store, "doc-a") == {1: ChapterStatus.COMPLETED, 2: ChapterStatus.FAILED}
    assert _statuses(store, "doc-b") == {1: ChapterStatus.COMPLETED}


@pytest.mark.asyncio
async def test_settled_hook_runs_once_per_script(store, renderer, synthesizer):
    make_script(store, 4)
    settled = []
    scheduler = _scheduler(store, renderer, synthesizer, on_script_settled=settled.append)

    await scheduler.start("doc-1")
    await scheduler.join()

    assert settled == ["doc-1"]


@pytest.mark.asyncio
async def test_auto_stitch_hook_stitches_and_checks(store, renderer, synthesizer):
    make_script(store, 3)
    stitcher = Stitcher(store, renderer)
    gate = QualityGate(store)
    scheduler = _scheduler(
        store, renderer, synthesizer, on_script_settled=auto_stitch_hook(stitcher, gate)
    )

    await scheduler.start("doc-1")
    await scheduler.join()

    script = store.get_script("doc-1")
    assert script.final_render_status == StitchState.COMPLETED
    assert script.final_chapter_count == 3
    # 3 x 20 minutes is below the long-form band
    assert script.quality_check_passed is False
    assert "total_duration_ok" in script.quality_check_notes


@pytest.mark.asyncio
async def test_worker_crash_fails_the_entry(store, renderer, synthesizer):
    make_script(store, 2)
    worker = MagicMock()
    worker.render = AsyncMock(side_effect=RuntimeError("store unavailable"))
    scheduler = RenderQueueScheduler(store, worker, max_concurrency=2)

    await scheduler.start("doc-1")
    await scheduler.join()

    chapter = store.get_chapter("ch-1")
    assert chapter.render_status == ChapterStatus.FAILED
    assert chapter.render_error_kind == "unknown"
    assert "store unavailable" in chapter.render_error
    assert store.count_rendering() == 0


@pytest.mark.asyncio
async def test_events_are_emitted(store, renderer, synthesizer):
    make_script(store, 1)
    events = MagicMock()
    scheduler = _scheduler(store, renderer, synthesizer, events=events)

    await scheduler.start("doc-1")
    await scheduler.join()

    emitted = [c.args[1] for c in events.emit_render_event.call_args_list]
    assert emitted == ["queued", "claimed"]


def test_invalid_concurrency(store, renderer, synthesizer):
    with pytest.raises(ValueError):
        _scheduler(store, renderer, synthesizer, max_concurrency=0)


@pytest.mark.asyncio
async def test_join_without_work_returns(store, renderer, synthesizer):
    await asyncio.wait_for(_scheduler(store, renderer, synthesizer).join(), timeout=1)


class SlowEventSink:
    """Event sink whose emit blocks like a Redis call against a dead server."""

    def __init__(self, delay):
        self.delay = delay
        self.emitted = []

    def emit_render_event(self, script_id, event, **fields):
        time.sleep(self.delay)
        self.emitted.append(event)


@pytest.mark.asyncio
async def test_slow_event_sink_does_not_stall_the_loop(store, synthesizer):
    make_script(store, 4)
    events = SlowEventSink(delay=0.2)
    renderer = FakeRenderer(delay=0.05)
    worker = ChapterRenderWorker(store, synthesizer, renderer, render_timeout_sec=5, events=events)
    scheduler = RenderQueueScheduler(store, worker, max_concurrency=4, events=events)

    gaps = []

    async def ticker():
        last = time.monotonic()
        while True:
            await asyncio.sleep(0.01)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    tick = asyncio.create_task(ticker())
    await scheduler.start("doc-1")
    await scheduler.join()
    tick.cancel()

    assert set(_statuses(store).values()) == {ChapterStatus.COMPLETED}
    assert sorted(events.emitted) == ["claimed"] * 4 + ["completed"] * 4 + ["queued"]
    assert max(gaps) < 0.15


@pytest.mark.asyncio
async def test_settled_hook_does_not_hold_a_render_slot(store, renderer, synthesizer):
    make_script(store, [{"chapter_id": "a-1", "chapter_number": 1, "title": "A1"}], script_id="doc-a")
    make_script(store, [{"chapter_id": "b-1", "chapter_number": 1, "title": "B1"}], script_id="doc-b")
    hook_started = asyncio.Event()
    release = asyncio.Event()

    async def slow_hook(script_id):
        if script_id == "doc-a":
            hook_started.set()
            await release.wait()

    scheduler = _scheduler(
        store, renderer, synthesizer, max_concurrency=1, on_script_settled=slow_hook
    )

    await scheduler.start("doc-a")
    await asyncio.wait_for(hook_started.wait(), timeout=2)
    await scheduler.start("doc-b")

    async def b_completed():
        while store.get_chapter("b-1").render_status != ChapterStatus.COMPLETED:
            await asyncio.sleep(0.01)

    # doc-b renders while doc-a's hook is still running
    await asyncio.wait_for(b_completed(), timeout=2)
    assert not release.is_set()

    release.set()
    await asyncio.wait_for(scheduler.join(), timeout=2)


@pytest.mark.asyncio
async def test_join_waits_for_settled_hook(store, renderer, synthesizer):
    make_script(store, 1)
    finished = []

    async def hook(script_id):
        await asyncio.sleep(0.05)
        finished.append(script_id)

    scheduler = _scheduler(store, renderer, synthesizer, on_script_settled=hook)

    await scheduler.start("doc-1")
    await scheduler.join()

    assert finished == ["doc-1"]
