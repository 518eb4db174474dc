"""Heading style resolution.

Resolves the effective :class:`~wordgen.models.HeaderStyle` of a heading
level from, in precedence order:

1. the caller-supplied style set, if it is complete and well-formed;
2. the selected template's style set, under the same check;
3. the compiled-in :data:`DEFAULT_HEADER_STYLES`.

All functions here are pure.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from wordgen.models import HEADER_LEVEL_KEYS, HeaderStyle, HeaderStyleSet

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"^[0-9A-Fa-f]{6}$")

_REQUIRED_FIELDS = ("size", "color", "font", "bold")

MIN_HEADER_SIZE = 8
MAX_HEADER_SIZE = 72

DEFAULT_HEADER_STYLES: dict[str, HeaderStyle] = {
    "h1": HeaderStyle(size=14, color="000000", font="Outfit", bold=True),
    "h2": HeaderStyle(size=12, color="000000", font="Outfit", bold=True),
    "h3": HeaderStyle(size=10, color="000000", font="Outfit", bold=True),
}


def clamp_heading_level(level: Any) -> int:
    """Return *level* if a style is defined for it, else level 1."""
    if isinstance(level, int) and not isinstance(level, bool) and 1 <= level <= len(HEADER_LEVEL_KEYS):
        return level
    return 1


def _valid_style(style: Any) -> bool:
    if not isinstance(style, dict):
        return False
    if any(style.get(name) is None for name in _REQUIRED_FIELDS):
        return False

    size = style["size"]
    if isinstance(size, bool) or not isinstance(size, (int, float)):
        return False
    if not MIN_HEADER_SIZE <= size <= MAX_HEADER_SIZE:
        return False
    if not isinstance(style["color"], str) or not _HEX_COLOR_RE.match(style["color"]):
        return False
    if not isinstance(style["font"], str) or not style["font"].strip():
        return False
    return isinstance(style["bold"], bool)


def validate_header_styles(styles: Any) -> bool:
    """Return ``True`` if *styles* defines h1-h3 with all four fields.

    Partial or malformed sets are invalid as a whole; there is no per-level
    merging with other sources.
    """
    if not isinstance(styles, dict):
        return False
    return all(_valid_style(styles.get(key)) for key in HEADER_LEVEL_KEYS)


def resolve_header_style(
    level: int,
    caller_styles: Optional[HeaderStyleSet] = None,
    template_styles: Optional[HeaderStyleSet] = None,
) -> HeaderStyle:
    """Return the effective style for heading *level*.

    Levels without a defined key are clamped to level 1.
    """
    key = f"h{clamp_heading_level(level)}"

    if caller_styles is not None:
        if validate_header_styles(caller_styles):
            return HeaderStyle.from_mapping(caller_styles[key])
        logger.warning("Ignoring incomplete or invalid caller header styles")

    if template_styles is not None:
        if validate_header_styles(template_styles):
            return HeaderStyle.from_mapping(template_styles[key])
        logger.warning("Ignoring incomplete or invalid template header styles")

    return DEFAULT_HEADER_STYLES[key]
