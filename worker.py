"""
Standalone render worker.

    python worker.py <script_id> [--stitch] [--policy strict|best_effort]

Queues the script's chapters, drains the render queue with a bounded pool and
optionally stitches and quality-checks the result. Exits non-zero if any
chapter failed or the stitch failed.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

import config
import main as api
from runtime.persistence.render_store import ScriptNotFoundError
from runtime.stitcher import StitchError, StitchPolicy

logger = logging.getLogger("worker")


async def run(script_id: str, stitch: bool, policy=None, max_concurrency=None) -> int:
    api.configure(max_concurrency=max_concurrency, auto_stitch=False)

    try:
        queued = await api.scheduler.start(script_id)
    except ScriptNotFoundError as e:
        logger.error(f"[Worker] {e}")
        return 2

    logger.info(f"[Worker] {queued} chapters queued for {script_id}, draining")
    await api.scheduler.join()

    progress = await asyncio.to_thread(api.render_store.get_render_progress, script_id)
    logger.info(
        f"[Worker] render finished: {progress['completed_chapters']} completed, "
        f"{progress['failed_chapters']} failed of {progress['total_chapters']}"
    )
    exit_code = 1 if progress["failed_chapters"] else 0

    if stitch:
        try:
            video = await asyncio.to_thread(api.stitcher.stitch, script_id, policy)
        except StitchError as e:
            logger.error(f"[Worker] stitch failed: {e}")
            return 1
        logger.info(f"[Worker] final video: {video.video_url}")

        result = await asyncio.to_thread(api.quality_gate.run, script_id)
        logger.info(f"[Worker] quality gate: {result.notes}")

    return exit_code


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Render every chapter of a documentary script")
    parser.add_argument("script_id")
    parser.add_argument("--stitch", action="store_true", help="stitch and quality-check after rendering")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in StitchPolicy],
        default=None,
        help="stitch policy (default: STITCH_POLICY)",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        help="chapters rendered at once (default: MAX_RENDER_CONCURRENCY)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config.configure_logging()
    policy = StitchPolicy(args.policy) if args.policy else None
    return asyncio.run(run(args.script_id, args.stitch, policy, args.max_concurrency))


if __name__ == "__main__":
    sys.exit(main())
