"""Data models for a document generation request.

These models represent the caller's JSON payload (title, header/footer,
flat section list, per-request configuration) independently of the output
format, serving as the input of the assembly engine.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from wordgen.settings import WordSettings

logger = logging.getLogger(__name__)


class ContentType(Enum):
    PARAGRAPH = "paragraph"
    LISTING = "listing"
    TABLE = "table"
    PAGE_BREAK = "pageBreak"
    EMPTY_LINE = "emptyLine"
    IMAGE = "image"


class Alignment(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


# Heading-level keys of a header style set, in level order.
HEADER_LEVEL_KEYS = ("h1", "h2", "h3")

# A caller- or template-supplied style set, kept raw until validated by the
# style resolver: ``{"h1": {"size": .., "color": .., "font": .., "bold": ..}}``
HeaderStyleSet = dict[str, dict[str, Any]]

# Characters XML 1.0 cannot carry: C0 controls other than tab, LF and CR,
# lone surrogates, U+FFFE and U+FFFF.
_XML_ILLEGAL_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def clean_text(value: Any) -> Optional[str]:
    """Return *value* as a string safe to write into a document, or ``None``."""
    if value is None:
        return None
    text = str(value)
    cleaned = _XML_ILLEGAL_RE.sub("", text)
    if cleaned != text:
        logger.warning(
            "Removed %d control character(s) from text %r",
            len(text) - len(cleaned), cleaned[:40],
        )
    return cleaned


# ── Content ─────────────────────────────────────────────────────────


@dataclass
class TableRow:
    """One table row; each entry is the text of one cell."""
    cells: list[str] = field(default_factory=list)


@dataclass
class ContentItem:
    """One atomic unit of renderable material within a section.

    ``type`` is kept as the raw string so that unknown kinds stay
    representable (they render as an "unsupported" placeholder).
    """
    type: str
    text: Optional[str] = None
    items: Optional[list[str]] = None
    headers: Optional[list[str]] = None
    rows: Optional[list[TableRow]] = None
    url: Optional[str] = None
    alt: Optional[str] = None
    width: Optional[int] = None   # pixels
    height: Optional[int] = None  # pixels
    footnote: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentItem:
        rows = None
        if data.get("rows") is not None:
            rows = [
                TableRow(cells=[
                    clean_text(cell.get("text") or "") if isinstance(cell, dict) else clean_text(cell)
                    for cell in (row.get("cells") or [])
                ])
                for row in data["rows"]
            ]

        footnote = data.get("footnote")
        if isinstance(footnote, dict):
            footnote = footnote.get("note") or footnote.get("text")

        items = data.get("items")
        headers = data.get("headers")
        return cls(
            type=str(data.get("type", "")),
            text=clean_text(data.get("text")),
            items=[clean_text(i) for i in items] if items is not None else None,
            headers=[clean_text(h) for h in headers] if headers is not None else None,
            rows=rows,
            url=data.get("url"),
            alt=clean_text(data.get("alt")),
            width=data.get("width"),
            height=data.get("height"),
            footnote=clean_text(footnote) if footnote else None,
        )


# ── Sections ────────────────────────────────────────────────────────


@dataclass
class Section:
    """A titled or untitled block of content, possibly nested under another."""
    section_id: str
    heading: Optional[str] = None
    heading_level: int = 1
    parent_section_id: Optional[str] = None
    content: list[ContentItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Section:
        """Build a section from its JSON shape.

        Raises
        ------
        ValueError
            If ``sectionId`` is missing.
        """
        if data.get("sectionId") in (None, ""):
            raise ValueError("Every section needs a sectionId")

        level = data.get("headingLevel")
        if not isinstance(level, int) or isinstance(level, bool) or level < 1:
            if level is not None:
                logger.warning(
                    "Section %r has invalid headingLevel %r; using 1",
                    data.get("sectionId"), level,
                )
            level = 1

        return cls(
            section_id=str(data["sectionId"]),
            heading=clean_text(data.get("heading")) or None,
            heading_level=level,
            # An empty parent id means "no parent", as in the request format.
            parent_section_id=data.get("parentSectionId") or None,
            content=[ContentItem.from_dict(c) for c in data.get("content") or []],
        )


@dataclass
class HeaderFooter:
    """Caller-supplied running header or footer text."""
    text: str
    alignment: Alignment = Alignment.LEFT

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional[HeaderFooter]:
        if not data or not data.get("text"):
            return None
        raw = str(data.get("alignment") or "left").lower()
        try:
            alignment = Alignment(raw)
        except ValueError:
            logger.warning("Unknown alignment %r; using left", raw)
            alignment = Alignment.LEFT
        return cls(text=clean_text(data["text"]), alignment=alignment)


@dataclass
class FootnoteTable:
    """Footnotes of one request, numbered from 1 in encounter order.

    ``anchors`` maps ``(section position, item index)`` to the footnote id
    of that content item.
    """
    entries: dict[int, str] = field(default_factory=dict)
    anchors: dict[tuple[int, int], int] = field(default_factory=dict)

    @classmethod
    def collect(cls, sections: list[Section]) -> FootnoteTable:
        """Scan every item of every section, in input order."""
        table = cls()
        next_id = 1
        for position, section in enumerate(sections):
            for index, item in enumerate(section.content):
                if item.footnote:
                    table.entries[next_id] = item.footnote
                    table.anchors[(position, index)] = next_id
                    next_id += 1
        if table.entries:
            logger.debug("Collected %d footnote(s)", len(table.entries))
        return table

    def lookup(self, position: int, index: int) -> Optional[int]:
        return self.anchors.get((position, index))


# ── Styles and configuration ────────────────────────────────────────


@dataclass(frozen=True)
class HeaderStyle:
    """Visual style of one heading level."""
    size: float     # points
    color: str      # RRGGBB
    font: str
    bold: bool

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> HeaderStyle:
        return cls(
            size=data["size"],
            color=str(data["color"]).upper(),
            font=data["font"],
            bold=data["bold"],
        )


@dataclass(frozen=True)
class Margins:
    """Page margins in twips."""
    top: int = 1440
    bottom: int = 1440
    left: int = 1440
    right: int = 1440


@dataclass(frozen=True)
class RenderConfig:
    """Per-request configuration, immutable for the whole render pass.

    Recursive renderers receive it as-is; derived copies (e.g. with the
    resolved numbering reference) are made with :func:`dataclasses.replace`.
    """
    numbering_reference: Optional[str] = None
    show_page_number: bool = False
    page_orientation: str = "portrait"
    font_family: str = "Arial"
    font_size: float = 12
    line_height: int = 276  # twips, 240 = single
    margins: Margins = field(default_factory=Margins)
    show_table_of_content: bool = False
    header_styles: Optional[HeaderStyleSet] = None
    template: Optional[str] = None
    template_header_styles: Optional[HeaderStyleSet] = None


@dataclass
class DocumentRequest:
    """A complete generation request."""
    title: str
    sections: list[Section] = field(default_factory=list)
    header: Optional[HeaderFooter] = None
    footer: Optional[HeaderFooter] = None
    config: RenderConfig = field(default_factory=RenderConfig)

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        settings: WordSettings,
    ) -> DocumentRequest:
        """Build a request from the caller's JSON payload.

        Raises
        ------
        ValueError
            If the payload has no sections.
        """
        raw_sections = payload.get("sections") or []
        if not raw_sections:
            raise ValueError("Sections is required!")

        return cls(
            title=clean_text(payload.get("title")) or "",
            sections=[Section.from_dict(s) for s in raw_sections],
            header=HeaderFooter.from_dict(payload.get("header")),
            footer=HeaderFooter.from_dict(payload.get("footer")),
            config=settings.build_render_config(payload.get("wordConfig") or {}),
        )
