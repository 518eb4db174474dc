"""Settings loader bridging the word-settings YAML and document generation.

Loads the settings file (fonts, spacing, line heights, margin profiles,
numbering presets, template catalogue, image limits, export location) and
provides read-only lookups.  The loaded data is never mutated after
construction; one :class:`WordSettings` instance can be shared by every
request.

Classes
-------
WordSettings
    Loads and queries ``word-settings.yaml`` and builds per-request
    :class:`~wordgen.models.RenderConfig` values from caller input.
"""

from __future__ import annotations

import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Optional

import yaml

from wordgen.models import HEADER_LEVEL_KEYS, HeaderStyleSet, Margins, RenderConfig
from wordgen.nodes import NumberingLevel, NumberingPreset
from wordgen.styles import DEFAULT_HEADER_STYLES

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────

_PACKAGE_DIR = Path(__file__).resolve().parent
_DEFAULT_CONFIG_PATH = _PACKAGE_DIR / "config" / "word-settings.yaml"

# Flat per-level header style keys accepted in ``wordConfig``
# (``h1Font``, ``h1Size``, ``h1Bold``, ``h1Color`` ...).
_FLAT_STYLE_FIELDS = {"Font": "font", "Size": "size", "Bold": "bold", "Color": "color"}


def _truthy_flag(value: Any) -> bool:
    """Interpret a caller boolean that may arrive as a string."""
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    return bool(value)


def _flat_size(value: Any) -> Any:
    """Return a flat ``hNSize`` value as a number when it parses as one."""
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    return value


def _flat_color(value: Any) -> Any:
    """Strip a leading ``#`` from a flat ``hNColor`` value."""
    if isinstance(value, str):
        return value.strip().lstrip("#").upper()
    return value


# ── WordSettings ──────────────────────────────────────────────────────


class WordSettings:
    """Loads and queries the word-settings YAML configuration.

    Parameters
    ----------
    config_path : str or Path, optional
        Path to the YAML configuration file.  Defaults to the packaged
        ``config/word-settings.yaml``.
    overlay_path : str or Path or None, optional
        Path to an optional overlay YAML.  Values in the overlay are
        deep-merged on top of the base configuration.

    Raises
    ------
    FileNotFoundError
        If the requested configuration file does not exist.
    yaml.YAMLError
        If the YAML is malformed.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        overlay_path: str | Path | None = None,
    ) -> None:
        self._config_path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        self._raw: dict[str, Any] = self._read_mapping(self._config_path)

        if overlay_path is not None:
            overlay = self._read_mapping(Path(overlay_path))
            self._raw = self._deep_merge(self._raw, overlay)
            logger.info("Applied settings overlay from %s", overlay_path)

        self._presets = self._build_presets(self._raw.get("numbering", {}).get("presets", []))
        self._bullet = self._build_preset(self._raw.get("numbering", {}).get("bullet", {}))

        logger.info("WordSettings loaded from %s", self._config_path)

    # ── Loading / merging ──────────────────────────────────────────

    @staticmethod
    def _read_mapping(path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)

        if not isinstance(data, dict):
            raise ValueError(f"Expected a YAML mapping at the top level in {path}")
        return data

    @staticmethod
    def _deep_merge(base: dict, overlay: dict) -> dict:
        """Recursively merge *overlay* into a copy of *base*.

        Overlay values take precedence.  Nested dicts are merged rather than
        replaced outright.
        """
        result = deepcopy(base)
        for key, value in overlay.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = WordSettings._deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    @staticmethod
    def _build_preset(raw: dict[str, Any]) -> NumberingPreset:
        return NumberingPreset(
            label=str(raw.get("label", raw.get("reference", ""))),
            reference=str(raw.get("reference", "")),
            levels=[
                NumberingLevel(format=str(lvl["format"]), text=str(lvl.get("text", "")))
                for lvl in raw.get("levels", [])
            ],
        )

    @classmethod
    def _build_presets(cls, raw: list[dict[str, Any]]) -> list[NumberingPreset]:
        return [cls._build_preset(item) for item in raw]

    # ── Typography / spacing ───────────────────────────────────────

    def font(self, key: str, default: Any = None) -> Any:
        """Return a ``fonts`` entry (``family``, ``size``, ``title_size`` ...)."""
        return self._raw.get("fonts", {}).get(key, default)

    def spacing_twips(self, key: str, default: float = 0) -> int:
        """Return a ``spacing`` entry converted from points to twips."""
        return int(self._raw.get("spacing", {}).get(key, default) * 20)

    def line_height(self, key: Any) -> Optional[int]:
        """Return the twips value for a caller line-height key, or ``None``."""
        table = self._raw.get("line_heights", {})
        if key is None:
            return None
        for candidate in (str(key), self._normalise_number(key)):
            if candidate in table:
                return int(table[candidate])
        return None

    @staticmethod
    def _normalise_number(key: Any) -> str:
        try:
            value = float(key)
        except (TypeError, ValueError):
            return str(key)
        return f"{value:g}"

    @property
    def default_line_height(self) -> int:
        return self.line_height(self._raw.get("default_line_height", "1.15")) or 276

    def margins(self, profile: Optional[str]) -> Optional[Margins]:
        """Return the :class:`Margins` for a named profile, or ``None``."""
        if not profile:
            return None
        raw = self._raw.get("margins", {}).get(str(profile).lower())
        if raw is None:
            return None
        return Margins(**{k: int(v) for k, v in raw.items()})

    @property
    def default_margins(self) -> Margins:
        return self.margins(self._raw.get("default_margins", "normal")) or Margins()

    # ── Numbering ──────────────────────────────────────────────────

    @property
    def numbering_presets(self) -> list[NumberingPreset]:
        return list(self._presets)

    @property
    def bullet_preset(self) -> NumberingPreset:
        return self._bullet

    def numbering_preset(self, key: Optional[str]) -> Optional[NumberingPreset]:
        """Look up a preset by its display label or by its reference."""
        if not key:
            return None
        for preset in self._presets:
            if key in (preset.label, preset.reference):
                return preset
        logger.warning("Unknown numbering scheme %r; headings will not be numbered", key)
        return None

    @property
    def list_indent(self) -> tuple[int, int]:
        """``(indent_per_level, hanging_indent)`` in twips."""
        numbering = self._raw.get("numbering", {})
        return int(numbering.get("indent_per_level", 720)), int(numbering.get("hanging_indent", 360))

    # ── Misc sections ──────────────────────────────────────────────

    def section(self, name: str) -> dict[str, Any]:
        """Return a deep copy of a top-level settings section."""
        return deepcopy(self._raw.get(name, {}))

    def placeholder(self, kind: str) -> str:
        return str(self._raw.get("placeholders", {}).get(kind, ""))

    @property
    def images(self) -> dict[str, Any]:
        return self.section("images")

    @property
    def table_of_contents(self) -> dict[str, Any]:
        return self.section("table_of_contents")

    @property
    def exports(self) -> dict[str, Any]:
        return self.section("exports")

    @property
    def templates(self) -> dict[str, Any]:
        return self.section("templates")

    # ── Request configuration ──────────────────────────────────────

    def build_render_config(self, word_config: dict[str, Any]) -> RenderConfig:
        """Merge caller ``wordConfig`` input with defaults.

        The numbering reference is only honoured when
        ``showNumberingInHeader`` is set.  Unknown line heights and margin
        profiles fall back to the defaults.
        """
        numbering = None
        if _truthy_flag(word_config.get("showNumberingInHeader", False)):
            numbering = word_config.get("numberingReference") or None

        line_height = self.line_height(word_config.get("lineHeight"))
        if line_height is None:
            if word_config.get("lineHeight") is not None:
                logger.warning(
                    "Unknown lineHeight %r; using default", word_config.get("lineHeight")
                )
            line_height = self.default_line_height

        margins = self.margins(word_config.get("margins"))
        if margins is None:
            if word_config.get("margins"):
                logger.warning(
                    "Unknown margin profile %r; using default", word_config.get("margins")
                )
            margins = self.default_margins

        orientation = str(word_config.get("pageOrientation") or "portrait").lower()
        if orientation not in ("portrait", "landscape"):
            logger.warning("Unknown page orientation %r; using portrait", orientation)
            orientation = "portrait"

        return RenderConfig(
            numbering_reference=numbering,
            show_page_number=_truthy_flag(word_config.get("showPageNumber", False)),
            page_orientation=orientation,
            font_family=word_config.get("fontFamily") or self.font("family", "Arial"),
            font_size=word_config.get("fontSize") or self.font("size", 12),
            line_height=line_height,
            margins=margins,
            show_table_of_content=_truthy_flag(word_config.get("showTableOfContent", False)),
            header_styles=self._caller_header_styles(word_config),
            template=word_config.get("template") or None,
        )

    @staticmethod
    def _caller_header_styles(word_config: dict[str, Any]) -> Optional[HeaderStyleSet]:
        """Return the caller's header style set, or ``None`` if none given.

        A nested ``headerStyles`` object is passed through untouched (the
        style resolver validates it).  The flat ``h1Font``/``h1Size``/...
        form is completed with the built-in defaults; numeric strings in
        ``hNSize`` become numbers and ``hNColor`` may carry a leading ``#``.
        """
        nested = word_config.get("headerStyles")
        if nested is not None:
            return nested

        flat_keys = [
            f"{level}{suffix}"
            for level in HEADER_LEVEL_KEYS
            for suffix in _FLAT_STYLE_FIELDS
        ]
        if not any(key in word_config for key in flat_keys):
            return None

        styles: HeaderStyleSet = {}
        for level in HEADER_LEVEL_KEYS:
            default = DEFAULT_HEADER_STYLES[level]
            style = {
                "font": word_config.get(f"{level}Font") or default.font,
                "size": _flat_size(word_config.get(f"{level}Size")) or default.size,
                "color": _flat_color(word_config.get(f"{level}Color")) or default.color,
                "bold": default.bold,
            }
            if f"{level}Bold" in word_config:
                style["bold"] = _truthy_flag(word_config[f"{level}Bold"])
            styles[level] = style
        return styles
