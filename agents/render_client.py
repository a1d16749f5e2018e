"""
Render Client

HTTP client for the external video renderer:
- POST /render  renders one chapter from a render specification
- POST /stitch  assembles ordered chapter videos into the final documentary

Every call is bounded by a timeout. Failures are raised as RendererError
with a kind of "timeout", "network" or "renderer_error".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class RendererError(RuntimeError):
    def __init__(self, message: str, kind: str = "renderer_error", status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class RendererTimeoutError(RendererError):
    def __init__(self, message: str):
        super().__init__(message, kind="timeout")


@dataclass
class RenderClientConfig:
    base_url: str = "http://localhost:8106"
    render_timeout_sec: float = 1800.0
    stitch_timeout_sec: float = 3600.0
    connect_timeout_sec: float = 10.0


@dataclass
class RenderResult:
    """Renderer reply. Either field may be missing; callers substitute defaults."""
    video_url: Optional[str] = None
    duration_seconds: Optional[float] = None


class RenderClient:
    def __init__(self, config: Optional[RenderClientConfig] = None, session=None):
        self.config = config or RenderClientConfig()
        self.session = session or requests.Session()

    def render(self, spec_payload: Dict[str, Any]) -> RenderResult:
        """Submit one chapter render specification."""
        return self._post("render", spec_payload, self.config.render_timeout_sec)

    def stitch(self, stitch_request: Dict[str, Any]) -> RenderResult:
        """Submit ordered chapter videos plus credits and music for assembly."""
        return self._post("stitch", stitch_request, self.config.stitch_timeout_sec)

    def _post(self, endpoint: str, body: Dict[str, Any], read_timeout: float) -> RenderResult:
        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"
        try:
            resp = self.session.post(
                url,
                json=body,
                timeout=(self.config.connect_timeout_sec, read_timeout),
            )
        except requests.Timeout as e:
            raise RendererTimeoutError(f"{endpoint.capitalize()} timed out after {read_timeout}s") from e
        except requests.RequestException as e:
            raise RendererError(f"{endpoint.capitalize()} request failed: {e}", kind="network") from e

        if not resp.ok:
            raise RendererError(
                f"{endpoint.capitalize()} failed: {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json() if resp.content else {}
        except ValueError as e:
            raise RendererError(f"{endpoint.capitalize()} returned invalid JSON") from e
        if not isinstance(data, dict):
            data = {}

        duration = data.get("duration_seconds")
        try:
            duration = float(duration) if duration else None
        except (TypeError, ValueError) as e:
            raise RendererError(f"{endpoint.capitalize()} returned invalid duration: {duration!r}") from e
        video_url = data.get("video_url") or None
        if video_url is not None and not isinstance(video_url, str):
            raise RendererError(f"{endpoint.capitalize()} returned invalid video_url")

        result = RenderResult(video_url=video_url, duration_seconds=duration)
        logger.debug(f"[RenderClient] {endpoint} -> {result}")
        return result
