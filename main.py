import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

# Load .env from project root before config reads the environment
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(env_path)

import config
from agents.narration_synthesizer import NarrationConfig, NarrationSynthesizer
from agents.render_client import RenderClient, RenderClientConfig
from runtime.chapter_worker import ChapterRenderWorker
from runtime.persistence.null_event_store import NullEventStore
from runtime.persistence.render_store import ChapterNotFoundError, ScriptNotFoundError
from runtime.progress_reporter import ProgressReporter
from runtime.quality_gate import QualityGate
from runtime.render_request_builder import render_options
from runtime.render_scheduler import RenderQueueScheduler, auto_stitch_hook
from runtime.stitcher import (
    IncompleteChaptersError,
    NothingToStitchError,
    StitchExecutionError,
    StitchPolicy,
    Stitcher,
)

logger = logging.getLogger(__name__)

# DO NOT initialize stores or clients at import time
render_store = None
event_store = None
scheduler: Optional[RenderQueueScheduler] = None
stitcher: Optional[Stitcher] = None
quality_gate: Optional[QualityGate] = None
progress_reporter: Optional[ProgressReporter] = None

app = FastAPI(title="Documentary Render Pipeline")


def configure(
    store=None,
    renderer=None,
    synthesizer=None,
    events=None,
    max_concurrency: Optional[int] = None,
    stitch_policy: Optional[str] = None,
    auto_stitch: Optional[bool] = None,
    render_timeout_sec: Optional[float] = None,
):
    """
    Wire the pipeline. Anything not passed is built from config; tests pass
    an in-memory store and fake clients.
    """
    global render_store, event_store, scheduler, stitcher, quality_gate, progress_reporter

    if store is None:
        from runtime.persistence.sql_store import SQLStore
        store = SQLStore(database_url=config.DATABASE_URL, lazy=True)

    if events is None:
        if config.REDIS_URL:
            from runtime.persistence.redis_store import RedisStore
            events = RedisStore(url=config.REDIS_URL, lazy=True, max_events=config.RENDER_EVENTS_MAX)
        else:
            events = NullEventStore()

    renderer = renderer or RenderClient(
        RenderClientConfig(
            base_url=config.RENDERER_BASE_URL,
            render_timeout_sec=config.RENDER_TIMEOUT_SEC,
            stitch_timeout_sec=config.STITCH_TIMEOUT_SEC,
        )
    )
    synthesizer = synthesizer or NarrationSynthesizer(
        NarrationConfig(
            base_url=config.TTS_BASE_URL,
            api_key=config.TTS_API_KEY,
            model=config.TTS_MODEL,
            voice=config.TTS_VOICE,
            max_chars=config.TTS_MAX_CHARS,
            timeout_sec=config.TTS_TIMEOUT_SEC,
            audio_dir=config.NARRATION_AUDIO_DIR,
            audio_url_prefix=config.NARRATION_AUDIO_URL_PREFIX,
            placeholder_url=config.NARRATION_PLACEHOLDER_URL,
        )
    )

    render_store = store
    event_store = events
    stitcher = Stitcher(
        store,
        renderer,
        policy=StitchPolicy(stitch_policy or config.STITCH_POLICY),
        output_format=config.STITCH_OUTPUT_FORMAT,
        quality=config.STITCH_OUTPUT_QUALITY,
        events=events,
    )
    quality_gate = QualityGate(
        store,
        min_duration_sec=config.QUALITY_MIN_DURATION_SEC,
        max_duration_sec=config.QUALITY_MAX_DURATION_SEC,
        events=events,
    )
    progress_reporter = ProgressReporter(store, events=events)

    worker = ChapterRenderWorker(
        store,
        synthesizer,
        renderer,
        render_timeout_sec=render_timeout_sec or config.RENDER_TIMEOUT_SEC,
        events=events,
    )
    if auto_stitch is None:
        auto_stitch = config.AUTO_STITCH
    scheduler = RenderQueueScheduler(
        store,
        worker,
        max_concurrency=max_concurrency or config.MAX_RENDER_CONCURRENCY,
        events=events,
        on_script_settled=auto_stitch_hook(stitcher, quality_gate) if auto_stitch else None,
    )
    logger.info(
        f"[main] pipeline wired: max_concurrency={scheduler.max_concurrency} "
        f"stitch_policy={stitcher.policy.value} auto_stitch={auto_stitch}"
    )


@app.on_event("startup")
async def startup_event():
    config.configure_logging()
    if scheduler is None:
        configure()


@app.on_event("shutdown")
async def shutdown_event():
    if scheduler is not None:
        await scheduler.shutdown()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.get("/health")
async def health():
    """Minimal health check - no deps."""
    return {"status": "ok", "service": "documentary-render"}


@app.get("/render/options")
async def get_render_options():
    return {
        "success": True,
        **render_options(scheduler.max_concurrency, stitcher.policy.value),
    }


@app.post("/documentaries")
async def create_documentary(body: Dict[str, Any] = Body(...)):
    """
    Register a script with its chapters.

    Body: title, chapters[{chapter_number, title, narration, visual_markers,
    template_config, transition_type, music_track, duration_minutes}],
    optional credits, music_config, sources.
    """
    title = body.get("title")
    chapters = body.get("chapters")
    if not title or not isinstance(chapters, list) or not chapters:
        return _error(400, "title and a non-empty chapters list are required")
    if any(not isinstance(c, dict) or "chapter_number" not in c for c in chapters):
        return _error(400, "every chapter needs a chapter_number")

    try:
        script_id = await asyncio.to_thread(
            render_store.create_script,
            title,
            chapters,
            body.get("credits"),
            body.get("music_config"),
            body.get("sources"),
            body.get("script_id"),
        )
    except ValueError as e:
        return _error(400, str(e))

    return {"success": True, "script_id": script_id, "chapter_count": len(chapters)}


@app.post("/documentaries/{script_id}/render")
async def start_render(script_id: str):
    try:
        queued = await scheduler.start(script_id)
    except ScriptNotFoundError as e:
        return _error(404, str(e))
    return {"success": True, "script_id": script_id, "chapters_queued": queued}


@app.post("/chapters/{chapter_id}/render")
async def render_chapter(chapter_id: str):
    try:
        queued = await scheduler.render_chapter(chapter_id)
    except ChapterNotFoundError as e:
        return _error(404, str(e))
    if not queued:
        return _error(409, f"Chapter {chapter_id} is already queued or rendering")
    return {"success": True, "chapter_id": chapter_id, "queued": True}


@app.post("/render-queue/{queue_id}/complete")
async def complete_chapter(queue_id: str, body: Dict[str, Any] = Body(...)):
    """Completion callback for renderers that finish out of band."""
    video_url = body.get("video_url")
    if not video_url:
        return _error(400, "video_url is required")

    chapter = await asyncio.to_thread(
        render_store.complete_chapter_render,
        queue_id,
        video_url,
        body.get("video_duration"),
        body.get("audio_url"),
    )
    if chapter is None:
        return _error(404, f"No rendering queue entry {queue_id}")

    await asyncio.to_thread(
        event_store.emit_render_event,
        chapter.script_id,
        "completed",
        chapter_id=chapter.chapter_id,
        chapter_number=chapter.chapter_number,
        video_url=video_url,
    )
    await scheduler.kick()
    await scheduler.check_settled(chapter.script_id)
    return {"success": True, "chapter": chapter.to_dict()}


@app.put("/documentaries/{script_id}/credits")
async def set_credits(script_id: str, credits: Dict[str, Any] = Body(...)):
    try:
        await asyncio.to_thread(render_store.set_credits, script_id, credits)
    except ScriptNotFoundError as e:
        return _error(404, str(e))
    return {"success": True, "script_id": script_id}


@app.post("/documentaries/{script_id}/stitch")
async def stitch_documentary(script_id: str, policy: Optional[str] = None):
    try:
        stitch_policy = StitchPolicy(policy) if policy else None
    except ValueError:
        return _error(400, f"Unknown stitch policy '{policy}'")

    try:
        assembled = await asyncio.to_thread(stitcher.stitch, script_id, stitch_policy)
    except ScriptNotFoundError as e:
        return _error(404, str(e))
    except (NothingToStitchError, IncompleteChaptersError) as e:
        return _error(400, str(e))
    except StitchExecutionError as e:
        return _error(502, str(e))
    return {"success": True, **assembled.to_dict()}


@app.post("/documentaries/{script_id}/quality-check")
async def quality_check(script_id: str):
    try:
        result = await asyncio.to_thread(quality_gate.run, script_id)
    except ScriptNotFoundError as e:
        return _error(404, str(e))
    return {"success": True, **result.to_dict()}


@app.get("/documentaries/{script_id}/progress")
async def get_progress(script_id: str):
    try:
        report = await asyncio.to_thread(progress_reporter.report, script_id)
    except ScriptNotFoundError as e:
        return _error(404, str(e))
    return {"success": True, **report}
