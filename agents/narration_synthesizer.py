"""
Narration Synthesizer

Turns chapter narration text into an audio asset URL via an OpenAI-style
text-to-speech endpoint (POST {base_url}/audio/speech).

Synthesis never fails a chapter: any error, empty narration or non-2xx
reply degrades to a placeholder asset URL.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class NarrationConfig:
    base_url: str = "http://localhost:8105/v1"
    api_key: str = ""
    model: str = "tts-1-hd"
    voice: str = "onyx"              # Documentary narration voice
    response_format: str = "mp3"
    max_chars: int = 4096            # Provider input limit
    timeout_sec: float = 120.0
    audio_dir: str = "./artifacts/audio"
    audio_url_prefix: str = "/audio/generated"
    placeholder_url: str = "/audio/tts_placeholder.mp3"


class NarrationSynthesizer:
    def __init__(self, config: Optional[NarrationConfig] = None, session=None):
        self.config = config or NarrationConfig()
        self.session = session or requests.Session()

    def synthesize(self, text: str, chapter_id: str) -> str:
        """Return an audio URL for the narration, or the placeholder URL."""
        if not (text or "").strip():
            logger.warning(f"[Narration] chapter {chapter_id} has no narration, using placeholder")
            return self.config.placeholder_url

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            resp = self.session.post(
                f"{self.config.base_url.rstrip('/')}/audio/speech",
                json={
                    "model": self.config.model,
                    "input": text[: self.config.max_chars],
                    "voice": self.config.voice,
                    "response_format": self.config.response_format,
                },
                headers=headers,
                timeout=self.config.timeout_sec,
            )
        except requests.RequestException as e:
            logger.warning(f"[Narration] TTS request failed for chapter {chapter_id}: {e}")
            return self.config.placeholder_url

        if not resp.ok or not resp.content:
            logger.warning(
                f"[Narration] TTS returned {resp.status_code} for chapter {chapter_id}, using placeholder"
            )
            return self.config.placeholder_url

        try:
            return self._store_audio(chapter_id, resp.content)
        except OSError as e:
            logger.warning(f"[Narration] Could not store audio for chapter {chapter_id}: {e}")
            return self.config.placeholder_url

    def _store_audio(self, chapter_id: str, audio: bytes) -> str:
        filename = f"{chapter_id}.{self.config.response_format}"
        os.makedirs(self.config.audio_dir, exist_ok=True)
        with open(os.path.join(self.config.audio_dir, filename), "wb") as f:
            f.write(audio)
        return f"{self.config.audio_url_prefix.rstrip('/')}/{filename}"
