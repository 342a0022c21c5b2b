"""Label width measurement for legend sizing."""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from PIL import ImageFont

DEFAULT_FONT_FAMILY = "sans-serif"
GENERIC_FONT_FALLBACKS = {
    "sans-serif": ["DejaVuSans.ttf", "Arial.ttf", "Helvetica.ttc", "LiberationSans-Regular.ttf"],
    "serif": ["DejaVuSerif.ttf", "Times New Roman.ttf", "LiberationSerif-Regular.ttf"],
    "monospace": ["DejaVuSansMono.ttf", "Courier New.ttf", "LiberationMono-Regular.ttf"],
}


class TextMeasurer:
    """Caches Pillow fonts and measures label widths."""

    def __init__(self) -> None:
        self._font_cache: Dict[Tuple[str, int], Optional[ImageFont.ImageFont]] = {}

    def font(self, size: float, family: Optional[str] = None) -> Optional[ImageFont.ImageFont]:
        key_size = max(1, int(round(size)))
        family = (family or DEFAULT_FONT_FAMILY).lower()
        cache_key = (family, key_size)
        if cache_key in self._font_cache:
            return self._font_cache[cache_key]

        candidates: List[str] = list(GENERIC_FONT_FALLBACKS.get(family, [family]))
        font: Optional[ImageFont.ImageFont] = None
        for candidate in candidates:
            try:
                font = ImageFont.truetype(candidate, key_size)
                break
            except OSError:
                continue
        if font is None:
            try:
                font = ImageFont.load_default(size=key_size)
            except OSError:
                font = None

        self._font_cache[cache_key] = font
        return font

    def measure(self, text: str, size: float, family: Optional[str] = None) -> float:
        font = self.font(size, family)
        if font is None:
            return heuristic_width(text, size)
        return float(font.getlength(text))


def heuristic_width(text: str, font_size: float) -> float:
    width = 0.0
    for ch in text:
        if ch.isspace():
            width += font_size * 0.33
        elif ch in "il":
            width += font_size * 0.3
        elif ch in "mwMW@#":
            width += font_size * 0.9
        else:
            width += font_size * 0.6
    return width


TEXT_MEASURER = TextMeasurer()


def text_width(text: str, font_size: float, family: Optional[str] = None) -> float:
    return TEXT_MEASURER.measure(text, font_size, family)
