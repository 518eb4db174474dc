"""Render nodes: the serializer-agnostic output of the assembly engine.

The assembler produces a :class:`DocumentTree` whose ``nodes`` list holds one
entry per output block, in document order.  The ``.docx`` writer is the only
consumer that knows how a node becomes Word markup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from wordgen.models import Alignment, HeaderStyle, Margins


# ── Block-level nodes ───────────────────────────────────────────────


@dataclass
class RenderNode:
    """Base class of every output block."""


@dataclass
class TitleNode(RenderNode):
    text: str


@dataclass
class TocNode(RenderNode):
    """Table-of-contents block: a title line plus an auto-generated TOC."""
    title: str
    heading_levels: str = "1-4"


@dataclass
class HeadingNode(RenderNode):
    """A section heading.  ``style`` is ``None`` for the unstyled fallback."""
    text: str
    level: int = 1
    style: Optional[HeaderStyle] = None


@dataclass
class NumberedHeadingNode(RenderNode):
    """Heading repeated on an auto-numbering list at depth ``level``."""
    text: str
    reference: str
    level: int = 0


@dataclass
class TextNode(RenderNode):
    text: str
    footnote_id: Optional[int] = None


@dataclass
class BulletNode(RenderNode):
    text: str
    reference: str
    level: int = 0
    footnote_id: Optional[int] = None


@dataclass
class TableNode(RenderNode):
    """A table; ``header`` is the optional repeating header row."""
    header: Optional[list[str]] = None
    rows: list[list[str]] = field(default_factory=list)

    @property
    def column_count(self) -> int:
        widths = [len(r) for r in self.rows]
        if self.header:
            widths.append(len(self.header))
        return max(widths, default=0)


@dataclass
class ImageNode(RenderNode):
    data: bytes
    width: int = 400   # pixels
    height: int = 300  # pixels
    alt: str = ""
    footnote_id: Optional[int] = None


@dataclass
class PageBreakNode(RenderNode):
    pass


@dataclass
class EmptyLineNode(RenderNode):
    pass


@dataclass
class PlaceholderNode(RenderNode):
    """Visible text standing in for content that could not be rendered."""
    text: str
    footnote_id: Optional[int] = None


# ── Document-level blocks ───────────────────────────────────────────


@dataclass
class HeaderFooterBlock:
    """A running header or footer."""
    text: Optional[str] = None
    alignment: Alignment = Alignment.LEFT
    show_page_number: bool = False


@dataclass
class PageSetup:
    margins: Margins = field(default_factory=Margins)
    orientation: str = "portrait"


@dataclass
class StyleSheet:
    """Document-wide defaults applied to the Normal style."""
    font_family: str = "Arial"
    font_size: float = 12
    line_height: int = 276  # twips


@dataclass
class NumberingLevel:
    format: str   # OOXML w:numFmt value, e.g. "decimal", "upperRoman"
    text: str     # w:lvlText, e.g. "%1.%2"


@dataclass
class NumberingPreset:
    label: str
    reference: str
    levels: list[NumberingLevel] = field(default_factory=list)


@dataclass
class DocumentTree:
    """The complete, ordered, styled content of one output document."""
    title: str
    nodes: list[RenderNode] = field(default_factory=list)
    header: Optional[HeaderFooterBlock] = None
    footer: Optional[HeaderFooterBlock] = None
    page: PageSetup = field(default_factory=PageSetup)
    style_sheet: StyleSheet = field(default_factory=StyleSheet)
    numbering: list[NumberingPreset] = field(default_factory=list)
    footnotes: dict[int, str] = field(default_factory=dict)
    base_document: Any = None  # python-docx Document loaded from a template
    degraded: bool = False

    def summary(self) -> dict:
        """Return node counts by kind."""
        stats: dict = {
            "headings": 0,
            "paragraphs": 0,
            "list_items": 0,
            "tables": 0,
            "images": 0,
            "placeholders": 0,
            "page_breaks": 0,
            "footnotes": len(self.footnotes),
        }
        for node in self.nodes:
            match node:
                case HeadingNode():
                    stats["headings"] += 1
                case TextNode():
                    stats["paragraphs"] += 1
                case BulletNode():
                    stats["list_items"] += 1
                case TableNode():
                    stats["tables"] += 1
                case ImageNode():
                    stats["images"] += 1
                case PlaceholderNode():
                    stats["placeholders"] += 1
                case PageBreakNode():
                    stats["page_breaks"] += 1
        return stats
