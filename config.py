"""
Central configuration for the documentary render pipeline.
All production values come from environment variables with sensible defaults.
"""

import logging
import os


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes"):
        return True
    if val in ("false", "0", "no"):
        return False
    return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
# On Vercel/Fly, /tmp is writable (ephemeral)
_use_tmp = os.getenv("VERCEL") or os.getenv("FLY_APP_NAME")
_default_db = "sqlite:////tmp/render.db" if _use_tmp else "sqlite:///./render.db"
DATABASE_URL = os.getenv("DATABASE_URL", _default_db)

# Optional: render lifecycle events for pollers. Unset -> events are dropped.
REDIS_URL = os.getenv("REDIS_URL")
RENDER_EVENTS_KEY_PREFIX = os.getenv("RENDER_EVENTS_KEY_PREFIX", "docrender:events")
RENDER_EVENTS_MAX = _env_int("RENDER_EVENTS_MAX", 200)

# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------
MAX_RENDER_CONCURRENCY = _env_int("MAX_RENDER_CONCURRENCY", 4)
AUTO_STITCH = _env_bool("AUTO_STITCH", False)

# ---------------------------------------------------------------------------
# External renderer
# ---------------------------------------------------------------------------
RENDERER_BASE_URL = os.getenv("RENDERER_BASE_URL", "http://localhost:8106")
RENDER_TIMEOUT_SEC = _env_float("RENDER_TIMEOUT_SEC", 1800.0)
STITCH_TIMEOUT_SEC = _env_float("STITCH_TIMEOUT_SEC", 3600.0)

# ---------------------------------------------------------------------------
# Narration (text-to-speech)
# ---------------------------------------------------------------------------
TTS_BASE_URL = os.getenv("TTS_BASE_URL", "http://localhost:8105/v1")
TTS_API_KEY = os.getenv("TTS_API_KEY", "")
TTS_MODEL = os.getenv("TTS_MODEL", "tts-1-hd")
TTS_VOICE = os.getenv("TTS_VOICE", "onyx")
TTS_MAX_CHARS = _env_int("TTS_MAX_CHARS", 4096)
TTS_TIMEOUT_SEC = _env_float("TTS_TIMEOUT_SEC", 120.0)
NARRATION_AUDIO_DIR = os.getenv("NARRATION_AUDIO_DIR", "./artifacts/audio")
NARRATION_AUDIO_URL_PREFIX = os.getenv("NARRATION_AUDIO_URL_PREFIX", "/audio/generated")
NARRATION_PLACEHOLDER_URL = os.getenv("NARRATION_PLACEHOLDER_URL", "/audio/tts_placeholder.mp3")

# ---------------------------------------------------------------------------
# Stitching & quality gate
# ---------------------------------------------------------------------------
STITCH_POLICY = os.getenv("STITCH_POLICY", "best_effort").lower()
STITCH_OUTPUT_FORMAT = os.getenv("STITCH_OUTPUT_FORMAT", "mp4")
STITCH_OUTPUT_QUALITY = os.getenv("STITCH_OUTPUT_QUALITY", "1080p")

# Long-form documentary: roughly 2-3 hours with slack on both ends
QUALITY_MIN_DURATION_SEC = _env_float("QUALITY_MIN_DURATION_SEC", 6000.0)
QUALITY_MAX_DURATION_SEC = _env_float("QUALITY_MAX_DURATION_SEC", 12000.0)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = None) -> None:
    """Install a single timestamped stream handler on the root logger."""
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
