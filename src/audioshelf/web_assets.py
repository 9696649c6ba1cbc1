from __future__ import annotations

from typing import Sequence
from urllib.parse import quote

WAVE_HEIGHTS = (10, 18, 26, 18, 10)
SHELF_COLOR = "#1f2937"
PAGE_COLOR = "#f3f4f6"
WAVE_COLOR = "#f59e0b"


def _wave_bars(heights: Sequence[int], *, center_y: int = 24, width: int = 4, gap: int = 3) -> str:
    total = len(heights) * width + (len(heights) - 1) * gap
    x = (64 - total) // 2
    bars = []
    for height in heights:
        y = center_y - height // 2
        bars.append(
            f'<rect x="{x}" y="{y}" width="{width}" height="{height}" rx="2" fill="{WAVE_COLOR}"/>'
        )
        x += width + gap
    return "".join(bars)


def shelf_icon_svg(heights: Sequence[int] = WAVE_HEIGHTS) -> str:
    """An open book under a small sound wave, sized for a 64x64 favicon."""
    pages = (
        f'<path d="M8 40 Q20 34 31 40 V56 Q20 50 8 56 Z" fill="{PAGE_COLOR}"/>'
        f'<path d="M56 40 Q44 34 33 40 V56 Q44 50 56 56 Z" fill="{PAGE_COLOR}"/>'
    )
    return (
        '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64">'
        f'<rect width="64" height="64" rx="14" fill="{SHELF_COLOR}"/>'
        f"{_wave_bars(heights)}{pages}</svg>"
    )


AUDIOSHELF_FAVICON_URL = "data:image/svg+xml," + quote(shelf_icon_svg())


__all__ = ["AUDIOSHELF_FAVICON_URL", "shelf_icon_svg"]
