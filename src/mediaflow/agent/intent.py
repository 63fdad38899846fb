"""Request intent detection.

Scans the user's request for inputs (YouTube URL, audio file) and optional
features (animation, music, style, background removal, subtitles) and
turns them into a hint block for the model's first turn.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

YOUTUBE_URL_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?(?:youtube\.com/(?:watch\?v=|shorts/|embed/)|youtu\.be/)"
    r"([a-zA-Z0-9_-]{11})(?:[?&]\S*)?",
    re.IGNORECASE,
)

AUDIO_FILE_PATTERN = re.compile(r"(?:^|\s)(\S+\.(?:mp3|wav|m4a|ogg|flac|aac))(?:\s|$)", re.IGNORECASE)

ANIMATION_KEYWORDS = (
    "animated",
    "animation",
    "motion",
    "moving",
    "dynamic",
    "animate",
    "movement",
    "kinetic",
    "live action",
    "motion graphics",
    "video clips",
    "moving images",
    "video loops",
)

MUSIC_KEYWORDS = (
    "music",
    "background music",
    "soundtrack",
    "bgm",
    "score",
    "musical",
    "audio track",
    "backing track",
    "instrumental",
    "melody",
)

BACKGROUND_REMOVAL_KEYWORDS = (
    "remove background",
    "transparent background",
    "no background",
    "cut out",
    "cutout",
    "isolated",
    "green screen",
)

SUBTITLE_KEYWORDS = (
    "subtitle",
    "subtitles",
    "caption",
    "captions",
    "closed caption",
    "cc",
    "srt",
    "vtt",
    "accessible",
    "accessibility",
)

# Checked in order; the first style with a matching keyword wins.
STYLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Cinematic": ("cinematic", "cinema", "film", "movie", "hollywood"),
    "Anime": ("anime", "manga", "japanese animation", "animated japanese"),
    "Watercolor": ("watercolor", "watercolour", "water color", "aquarelle"),
    "Oil Painting": ("oil painting", "oil paint", "painted", "classical painting"),
    "Documentary": ("documentary", "docu", "journalistic", "news style"),
    "Realistic": ("realistic", "photorealistic", "real", "lifelike", "natural"),
    "Vintage": ("vintage", "retro", "old school", "classic", "nostalgic"),
    "Modern": ("modern", "contemporary", "sleek", "minimalist"),
    "Fantasy": ("fantasy", "magical", "mythical", "enchanted"),
    "Sci-Fi": ("sci-fi", "science fiction", "futuristic", "cyberpunk", "space"),
    "Horror": ("horror", "dark", "creepy", "scary", "gothic"),
    "Noir": ("noir", "film noir", "black and white", "detective"),
}


def _keyword_pattern(keywords: tuple[str, ...], suffix: str = "") -> re.Pattern[str]:
    alternatives = "|".join(re.escape(k).replace(r"\ ", r"\s+") for k in keywords)
    return re.compile(rf"\b({alternatives}){suffix}\b", re.IGNORECASE)


ANIMATION_PATTERN = _keyword_pattern(ANIMATION_KEYWORDS)
MUSIC_PATTERN = _keyword_pattern(MUSIC_KEYWORDS)
BACKGROUND_REMOVAL_PATTERN = _keyword_pattern(BACKGROUND_REMOVAL_KEYWORDS)
SUBTITLE_PATTERN = _keyword_pattern(SUBTITLE_KEYWORDS, suffix="s?")


@dataclass
class IntentResult:
    """What the request asks for."""

    youtube_url: str | None = None
    audio_file_path: str | None = None
    wants_animation: bool = False
    wants_music: bool = False
    detected_style: str | None = None
    wants_background_removal: bool = False
    wants_subtitles: bool = False
    first_tool: str = "plan_video"
    optional_tools: list[str] = field(default_factory=list)

    @property
    def has_youtube_url(self) -> bool:
        return self.youtube_url is not None

    @property
    def has_audio_file(self) -> bool:
        return self.audio_file_path is not None


def detect_youtube_url(text: str) -> str | None:
    """Return the canonical watch URL for a YouTube link in ``text``."""
    match = YOUTUBE_URL_PATTERN.search(text)
    if match:
        return f"https://www.youtube.com/watch?v={match.group(1)}"
    return None


def detect_audio_file(text: str) -> str | None:
    match = AUDIO_FILE_PATTERN.search(text)
    return match.group(1) if match else None


def extract_style(text: str) -> str | None:
    lowered = text.lower()
    for style, keywords in STYLE_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return style
    return None


def analyze_intent(text: str) -> IntentResult:
    """Detect inputs and requested features in a production request."""
    result = IntentResult(
        youtube_url=detect_youtube_url(text),
        audio_file_path=detect_audio_file(text),
        wants_animation=bool(ANIMATION_PATTERN.search(text)),
        wants_music=bool(MUSIC_PATTERN.search(text)),
        detected_style=extract_style(text),
        wants_background_removal=bool(BACKGROUND_REMOVAL_PATTERN.search(text)),
        wants_subtitles=bool(SUBTITLE_PATTERN.search(text)),
    )

    if result.has_youtube_url:
        result.first_tool = "import_youtube_content"
    elif result.has_audio_file:
        result.first_tool = "transcribe_audio_file"

    if result.wants_animation:
        result.optional_tools.append("animate_image")
    if result.wants_music:
        result.optional_tools.append("generate_music")
    if result.wants_background_removal:
        result.optional_tools.append("remove_background")
    if result.wants_subtitles:
        result.optional_tools.append("generate_subtitles")

    return result


def generate_intent_hint(result: IntentResult) -> str:
    """Render detected intent as ``[DETECTED: ...]`` lines. Empty if nothing was found."""
    hints: list[str] = []

    if result.has_youtube_url:
        hints.append(f"[DETECTED: YouTube URL - Start with import_youtube_content using URL: {result.youtube_url}]")
    elif result.has_audio_file:
        hints.append(
            f"[DETECTED: Audio file - Start with transcribe_audio_file using path: {result.audio_file_path}]"
        )

    if result.wants_animation:
        hints.append("[DETECTED: Animation requested - Include animate_image for each scene]")
    if result.wants_music:
        hints.append("[DETECTED: Music requested - Include generate_music]")
    if result.detected_style:
        hints.append(f'[DETECTED: Style "{result.detected_style}" - Use this for generate_visuals]')
    if result.wants_background_removal:
        hints.append("[DETECTED: Background removal requested - Include remove_background]")
    if result.wants_subtitles:
        hints.append("[DETECTED: Subtitles requested - Include generate_subtitles]")

    return "\n".join(hints)


def get_available_styles() -> list[str]:
    return list(STYLE_KEYWORDS)
