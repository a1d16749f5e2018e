"""
Render Request Builder

Turns one chapter's narration and configuration into a renderer-agnostic
render specification:
    title card -> intro animation -> main content -> summary overlay
    -> transition, with a looping low-volume music bed underneath.
"""

from typing import Any, Dict, List, Optional

from models.chapter import Chapter
from models.render_spec import RenderSpec, TemplateConfig

CHAPTER_TEMPLATE = "DocumentaryChapterTemplate"

DEFAULT_MUSIC_TRACK = "ambient_education"
MUSIC_BED_VOLUME = 0.15

MUSIC_TRACKS: List[Dict[str, str]] = [
    {"id": "ambient_education", "name": "Ambient Education", "url": "/audio/ambient_education.mp3"},
    {"id": "documentary_cinematic", "name": "Documentary Cinematic", "url": "/audio/documentary_cinematic.mp3"},
    {"id": "inspiring_journey", "name": "Inspiring Journey", "url": "/audio/inspiring_journey.mp3"},
    {"id": "calm_focus", "name": "Calm Focus", "url": "/audio/calm_focus.mp3"},
]


class RenderRequestBuilder:
    def __init__(self, default_template: Optional[TemplateConfig] = None):
        self.default_template = default_template or TemplateConfig()

    def template_for(self, chapter: Chapter) -> TemplateConfig:
        if not chapter.template_config:
            return self.default_template
        merged = {**self.default_template.to_dict(), **chapter.template_config}
        return TemplateConfig.from_overrides(merged)

    def build(self, chapter: Chapter, audio_url: str) -> RenderSpec:
        template = self.template_for(chapter)

        return RenderSpec(
            template=CHAPTER_TEMPLATE,
            title_card={
                "title": f"Chapter {chapter.chapter_number}",
                "subtitle": chapter.title,
                "duration": template.title_card_duration,
                "font": template.title_font,
                "color": template.title_color,
                "background": template.background_color,
            },
            intro_animation={
                "duration": template.intro_animation_duration,
                "accent_color": template.accent_color,
            },
            content={
                "narration": chapter.narration,
                "visual_markers": list(chapter.visual_markers or []),
                "audio_url": audio_url,
            },
            # Shown for the last `duration` seconds of the chapter
            summary_overlay={
                "duration": template.summary_overlay_duration,
                "position": "end",
            },
            transition={
                "type": chapter.transition_type or "fade",
                "duration": template.transition_duration,
            },
            music={
                "track": chapter.music_track or DEFAULT_MUSIC_TRACK,
                "volume": MUSIC_BED_VOLUME,
                "loop": True,
            },
            target_duration_minutes=chapter.target_duration_minutes,
        )


def render_options(max_concurrency: int, stitch_policy: str) -> Dict[str, Any]:
    """Catalogue exposed to callers choosing music and templates."""
    return {
        "music_tracks": MUSIC_TRACKS,
        "default_template": TemplateConfig().to_dict(),
        "max_concurrency": max_concurrency,
        "stitch_policy": stitch_policy,
    }
