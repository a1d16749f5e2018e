"""
Render Queue Scheduler

Bounded worker pool over the persistent render queue.

    start(script)  -> enqueue eligible chapters, fill free slots
    dispatcher     -> waits for any in-flight chapter, refills the freed slot
    drain          -> a claim returns nothing and no chapter is in flight

The concurrency bound is enforced twice: locally (no more than
max_concurrency in-flight tasks per scheduler) and globally by the store's
atomic claim (no more than max_concurrency RENDERING chapters overall).
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import os
from typing import Awaitable, Callable, Optional, Set

from models.chapter import Chapter
from runtime.chapter_worker import ChapterRenderWorker
from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import RenderStore, ScriptNotFoundError
from runtime.stitcher import StitchError

logger = logging.getLogger(__name__)

SettledHook = Callable[[str], Optional[Awaitable[None]]]


class RenderQueueScheduler:
    def __init__(
        self,
        store: RenderStore,
        worker: ChapterRenderWorker,
        max_concurrency: int = 4,
        events=None,
        on_script_settled: Optional[SettledHook] = None,
        worker_prefix: Optional[str] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.store = store
        self.worker = worker
        self.max_concurrency = max_concurrency
        self.events = events or NullEventStore()
        self.on_script_settled = on_script_settled
        self.worker_prefix = worker_prefix or f"render-worker-{os.getpid()}"

        self._in_flight: Set[asyncio.Task] = set()
        self._fill_lock = asyncio.Lock()
        self._dispatcher: Optional[asyncio.Task] = None
        self._hooks: Set[asyncio.Task] = set()
        self._worker_seq = itertools.count(1)
        # Scripts whose settled hook already ran since they were last queued
        self._settled: Set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # -------------------------------------------------
    # Entry points
    # -------------------------------------------------

    async def start(self, script_id: str) -> int:
        """Queue every not-yet-queued chapter of a script and begin rendering."""
        script = await asyncio.to_thread(self.store.get_script, script_id, False)
        if script is None:
            raise ScriptNotFoundError(f"Script {script_id} not found")

        queued = await asyncio.to_thread(self.store.enqueue_script, script_id, self.max_concurrency)
        logger.info(f"[RenderScheduler] script {script_id}: {queued} chapters queued")
        if queued:
            self._settled.discard(script_id)
            await asyncio.to_thread(
                self.events.emit_render_event, script_id, "queued", chapters_queued=queued
            )
        await self.kick()
        return queued

    async def render_chapter(self, chapter_id: str) -> bool:
        """
        Manually (re)queue one chapter. Returns False when the chapter is
        already queued or rendering.
        """
        queued = await asyncio.to_thread(self.store.enqueue_chapter, chapter_id)
        if not queued:
            logger.info(f"[RenderScheduler] chapter {chapter_id} already in queue")
            return False

        chapter = await asyncio.to_thread(self.store.get_chapter, chapter_id)
        logger.info(f"[RenderScheduler] chapter {chapter_id} re-queued")
        if chapter is not None:
            self._settled.discard(chapter.script_id)
            await asyncio.to_thread(
                self.events.emit_render_event,
                chapter.script_id,
                "queued",
                chapters_queued=1,
                chapter_id=chapter_id,
                chapter_number=chapter.chapter_number,
            )
        await self.kick()
        return True

    async def kick(self) -> int:
        """Fill free slots and make sure a dispatcher is draining the pool."""
        claimed = await self._fill_slots()
        self._ensure_dispatcher()
        return claimed

    async def claim_next(self) -> Optional[Chapter]:
        """
        Claim the next eligible chapter for a fresh worker id, or None when
        the pool is full, the global bound is reached or nothing is queued.
        """
        if len(self._in_flight) >= self.max_concurrency:
            return None

        worker_id = f"{self.worker_prefix}:{next(self._worker_seq)}"
        chapter = await asyncio.to_thread(
            self.store.claim_next_chapter, self.max_concurrency, worker_id
        )
        if chapter is None:
            return None

        logger.info(
            f"[RenderScheduler] {worker_id} claimed chapter {chapter.chapter_number} "
            f"of script {chapter.script_id}"
        )
        await asyncio.to_thread(
            self.events.emit_render_event,
            chapter.script_id,
            "claimed",
            chapter_id=chapter.chapter_id,
            chapter_number=chapter.chapter_number,
            worker_id=worker_id,
        )
        return chapter

    async def join(self) -> None:
        """
        Wait until the queue drains, every in-flight chapter has settled and
        every settled hook has finished.
        """
        while True:
            if self._dispatcher is not None and not self._dispatcher.done():
                await self._dispatcher
            elif self._in_flight:
                await asyncio.wait(set(self._in_flight))
            elif self._hooks:
                await asyncio.wait(set(self._hooks))
            else:
                return

    async def shutdown(self) -> None:
        """Cancel in-flight renders. Their queue entries stay RENDERING."""
        tasks = list(self._in_flight) + list(self._hooks)
        if self._dispatcher is not None:
            tasks.append(self._dispatcher)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.warning(f"[RenderScheduler] cancelled {len(self._in_flight)} in-flight renders")
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------
    # Pool
    # -------------------------------------------------

    async def _fill_slots(self) -> int:
        claimed = 0
        async with self._fill_lock:
            while len(self._in_flight) < self.max_concurrency:
                chapter = await self.claim_next()
                if chapter is None:
                    break
                self._spawn(chapter)
                claimed += 1
        return claimed

    def _spawn(self, chapter: Chapter) -> None:
        task = asyncio.create_task(
            self._run_chapter(chapter),
            name=f"render-chapter-{chapter.chapter_id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="render-dispatcher")

    async def _dispatch_loop(self) -> None:
        while True:
            await self._fill_slots()
            if not self._in_flight:
                break
            await asyncio.wait(set(self._in_flight), return_when=asyncio.FIRST_COMPLETED)
        logger.info("[RenderScheduler] render queue drained")

    async def _run_chapter(self, chapter: Chapter) -> None:
        try:
            await self.worker.render(chapter)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[RenderScheduler] worker crashed on chapter {chapter.chapter_number}")
            await asyncio.to_thread(
                self.store.fail_chapter_render,
                chapter.queue_id,
                f"Worker error: {e}",
                "unknown",
            )
        await self.check_settled(chapter.script_id)

    async def check_settled(self, script_id: str) -> None:
        """Run the settled hook once a script has nothing queued or rendering."""
        progress = await asyncio.to_thread(self.store.get_render_progress, script_id)
        if progress["queued_chapters"] or progress["rendering_chapters"]:
            return
        if script_id in self._settled:
            return
        self._settled.add(script_id)

        logger.info(
            f"[RenderScheduler] script {script_id} settled: "
            f"{progress['completed_chapters']} completed, {progress['failed_chapters']} failed"
        )
        if self.on_script_settled is None:
            return
        # Hook tasks are not counted against max_concurrency
        task = asyncio.create_task(
            self._run_settled_hook(script_id),
            name=f"settled-hook-{script_id}",
        )
        self._hooks.add(task)
        task.add_done_callback(self._hooks.discard)

    async def _run_settled_hook(self, script_id: str) -> None:
        try:
            outcome = self.on_script_settled(script_id)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"[RenderScheduler] settled hook failed for script {script_id}")


def auto_stitch_hook(stitcher, quality_gate) -> SettledHook:
    """Settled hook that stitches a script and runs the quality gate on it."""
    async def _stitch_and_check(script_id: str) -> None:
        try:
            await asyncio.to_thread(stitcher.stitch, script_id)
        except StitchError as e:
            logger.warning(f"[RenderScheduler] auto stitch skipped for {script_id}: {e}")
            return
        await asyncio.to_thread(quality_gate.run, script_id)

    return _stitch_and_check
