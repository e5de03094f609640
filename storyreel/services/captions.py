"""
Caption Helpers
Word timestamps from narration alignment and drawtext filter generation
"""

import os
import re
from dataclasses import dataclass
from typing import List, Any, Optional, Sequence

from ..config import Settings
from ..models.video import WordTimestamp
from ..utils.logger import get_logger

logger = get_logger()

# Merged with the following word so a caption never flashes a lone article
SHORT_WORDS = {
    "A", "I", "AN", "TO", "IN", "IS", "IT", "OF", "ON",
    "OR", "BE", "AS", "AT", "BY", "MY", "WE", "HE", "SHE",
}

WORD_BREAK = re.compile(r"[.,;!?]")
PUNCTUATION_ONLY = re.compile(r"^[.,;!?]+$")
UNSAFE_CAPTION_CHARS = re.compile(r"[^A-Z0-9 .!?]")

SYSTEM_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "C:\\Windows\\Fonts\\arial.ttf",
]


@dataclass
class CaptionStyle:
    """Burned-in caption appearance"""
    font_size: int = 54
    color: str = "#FFD32C"
    outline_color: str = "black"
    border_width: int = 5
    font_path: Optional[str] = None
    y: str = "h-text_h-100"

    @classmethod
    def from_settings(cls, settings: Settings) -> "CaptionStyle":
        return cls(
            font_size=settings.caption_font_size,
            color=settings.caption_color,
            outline_color=settings.caption_outline_color,
            border_width=settings.caption_border_width,
            font_path=resolve_font_path(settings.caption_font_path),
        )


def resolve_font_path(custom_path: Optional[str] = None) -> Optional[str]:
    """Custom font if it exists, else the first installed system font, else None (fontconfig)"""
    if custom_path and os.path.exists(custom_path):
        return custom_path
    if custom_path:
        logger.warning(f"Caption font not found: {custom_path}")
    for path in SYSTEM_FONTS:
        if os.path.exists(path):
            return path
    return None


def _field(obj: Any, name: str):
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def words_from_alignment(alignment: Any) -> List[WordTimestamp]:
    """
    Convert character-level alignment into caption words

    A word ends before a space or one of .,;!? and at the end of the text.
    Words are upper-cased; standalone punctuation is dropped and short
    words are merged with the word that follows.
    """
    if alignment is None:
        return []

    characters = _field(alignment, "characters") or []
    starts = _field(alignment, "character_start_times_seconds") or []
    ends = _field(alignment, "character_end_times_seconds") or []
    if not characters:
        logger.warning("No character alignment data available")
        return []

    words: List[WordTimestamp] = []
    current = ""
    word_start = 0.0
    word_end = 0.0
    first_char = True

    for i, char in enumerate(characters):
        next_char = characters[i + 1] if i + 1 < len(characters) else None
        if first_char:
            word_start = float(starts[i])
            first_char = False

        current += char
        word_end = float(ends[i])

        if next_char is None or next_char == " " or WORD_BREAK.match(next_char):
            if current.strip():
                words.append(WordTimestamp(
                    word=current.strip().upper(),
                    start=word_start,
                    end=max(word_end, word_start),
                ))
            current = ""
            first_char = True

    return merge_short_words(words)


def merge_short_words(words: List[WordTimestamp]) -> List[WordTimestamp]:
    """Drop punctuation-only tokens and join short words with their successor"""
    filtered = [w for w in words if not PUNCTUATION_ONLY.match(w.word.strip())]

    merged: List[WordTimestamp] = []
    i = 0
    while i < len(filtered):
        current = filtered[i]
        if current.word in SHORT_WORDS and i + 1 < len(filtered):
            following = filtered[i + 1]
            merged.append(WordTimestamp(
                word=f"{current.word} {following.word}",
                start=current.start,
                end=following.end,
            ))
            i += 2
        else:
            merged.append(current)
            i += 1

    return merged


def sanitize_caption(text: str) -> str:
    """Upper-case and keep only characters that are safe inside a drawtext value"""
    cleaned = UNSAFE_CAPTION_CHARS.sub("", text.upper())
    return " ".join(cleaned.split())


def offset_words(
    scene_words: Sequence[Sequence[WordTimestamp]],
    durations: Sequence[float],
    transition_duration: float = 0.0
) -> List[WordTimestamp]:
    """
    Place scene-relative words on the stitched timeline

    Scene k starts at sum(durations[:k]) - k * transition_duration,
    matching the crossfade overlaps of the stitched video.
    """
    if len(scene_words) != len(durations):
        raise ValueError("scene_words and durations must have the same length")

    placed: List[WordTimestamp] = []
    scene_start = 0.0
    for words, duration in zip(scene_words, durations):
        for w in words:
            placed.append(WordTimestamp(word=w.word, start=w.start + scene_start, end=w.end + scene_start))
        scene_start += duration - transition_duration

    placed.sort(key=lambda w: w.start)
    return placed


def batch_words(words: Sequence[WordTimestamp], size: int) -> List[List[WordTimestamp]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(words[i:i + size]) for i in range(0, len(words), size)]


def _escape_filter_path(path: str) -> str:
    return path.replace("\\", "/").replace(":", "\\:").replace("'", "")


def build_drawtext_filter(words: Sequence[WordTimestamp], style: CaptionStyle) -> str:
    """
    One drawtext per word, joined into a single filter chain

    Words that sanitize to nothing are skipped. Returns an empty string
    when no word survives.
    """
    filters = []
    for w in words:
        text = sanitize_caption(w.word)
        if not text:
            continue
        parts = [
            f"drawtext=text='{text}'",
            f"fontcolor={style.color}",
            f"fontsize={style.font_size}",
        ]
        if style.font_path:
            parts.append(f"fontfile='{_escape_filter_path(style.font_path)}'")
        parts.extend([
            "x=(w-text_w)/2",
            f"y={style.y}",
            f"enable='between(t,{w.start:.3f},{w.end:.3f})'",
            f"borderw={style.border_width}",
            f"bordercolor={style.outline_color}",
        ])
        filters.append(":".join(parts))

    return ",".join(filters)
