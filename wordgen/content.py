"""Content item rendering.

Converts one :class:`~wordgen.models.ContentItem` into zero or more render
nodes.  Each item is rendered in isolation: whatever goes wrong with one item
is logged and contained, so siblings and the enclosing section still render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Protocol

from wordgen.models import ContentItem
from wordgen.nodes import (
    BulletNode,
    EmptyLineNode,
    ImageNode,
    PageBreakNode,
    PlaceholderNode,
    RenderNode,
    TableNode,
    TextNode,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_WIDTH = 400
DEFAULT_IMAGE_HEIGHT = 300
IMAGE_PLACEHOLDER = "<place image here>"
UNSUPPORTED_PLACEHOLDER = "Unsupported content type."


class ImageSource(Protocol):
    def fetch_and_resize(self, url: str) -> Optional[bytes]: ...


class ItemStatus(Enum):
    RENDERED = "rendered"
    SKIPPED = "skipped"      # nothing to render (e.g. empty paragraph)
    RECOVERED = "recovered"  # placeholder emitted instead of the content
    FAILED = "failed"        # unexpected error, nothing emitted


@dataclass
class ItemResult:
    """Outcome of rendering one content item."""
    nodes: list[RenderNode] = field(default_factory=list)
    status: ItemStatus = ItemStatus.RENDERED


class ContentRenderer:
    """Renders content items into render nodes.

    Parameters
    ----------
    images:
        Image collaborator; ``None`` makes every image a placeholder.
    bullet_reference:
        Numbering reference shared by all bulleted list items.
    image_placeholder, unsupported_placeholder:
        Visible texts for images that cannot be loaded and for unknown
        content types.
    default_image_size:
        ``(width, height)`` in pixels used when the item gives none.
    """

    def __init__(
        self,
        images: Optional[ImageSource] = None,
        *,
        bullet_reference: str = "my-listing-with-bullet-points",
        image_placeholder: str = IMAGE_PLACEHOLDER,
        unsupported_placeholder: str = UNSUPPORTED_PLACEHOLDER,
        default_image_size: tuple[int, int] = (DEFAULT_IMAGE_WIDTH, DEFAULT_IMAGE_HEIGHT),
    ) -> None:
        self._images = images
        self._bullet_reference = bullet_reference
        self._image_placeholder = image_placeholder
        self._unsupported_placeholder = unsupported_placeholder
        self._default_image_size = default_image_size

    # ── Public API ────────────────────────────────────────────────────

    def render(self, item: ContentItem, footnote_id: Optional[int] = None) -> list[RenderNode]:
        """Return the nodes for *item* (possibly none)."""
        return self.render_item(item, footnote_id).nodes

    def render_item(self, item: ContentItem, footnote_id: Optional[int] = None) -> ItemResult:
        """Render *item*, containing any failure at the item boundary."""
        try:
            result = self._dispatch(item)
        except Exception:
            logger.exception("Error processing content item of type %r", item.type)
            result = ItemResult(status=ItemStatus.FAILED)

        if footnote_id is not None:
            result.nodes = self._attach_footnote(result.nodes, footnote_id)
        return result

    # ── Dispatch ──────────────────────────────────────────────────────

    def _dispatch(self, item: ContentItem) -> ItemResult:
        match item.type:
            case "paragraph":
                return self._render_paragraph(item)
            case "listing":
                return self._render_listing(item)
            case "table":
                return ItemResult([self._render_table(item)])
            case "pageBreak":
                return ItemResult([PageBreakNode()])
            case "emptyLine":
                return ItemResult([EmptyLineNode()])
            case "image":
                return self._render_image(item)
            case _:
                logger.warning("Unsupported content type: %r", item.type)
                return ItemResult(
                    [PlaceholderNode(self._unsupported_placeholder)],
                    ItemStatus.RECOVERED,
                )

    # ── Item kinds ────────────────────────────────────────────────────

    @staticmethod
    def _render_paragraph(item: ContentItem) -> ItemResult:
        if not item.text:
            return ItemResult(status=ItemStatus.SKIPPED)
        return ItemResult([TextNode(item.text)])

    def _render_listing(self, item: ContentItem) -> ItemResult:
        if not item.items:
            return ItemResult(status=ItemStatus.SKIPPED)
        return ItemResult([
            BulletNode(text=entry, reference=self._bullet_reference, level=0)
            for entry in item.items
        ])

    @staticmethod
    def _render_table(item: ContentItem) -> TableNode:
        # Cell counts are not checked against the header; rows render as given.
        rows = [list(row.cells) for row in item.rows or []]
        header = list(item.headers) if item.headers else None
        logger.debug(
            "Table: %d header cell(s), %d row(s)", len(header or []), len(rows)
        )
        return TableNode(header=header, rows=rows)

    def _render_image(self, item: ContentItem) -> ItemResult:
        if not item.url:
            logger.debug("Image item without url; nothing to render")
            return ItemResult(status=ItemStatus.SKIPPED)

        data = None
        if self._images is not None:
            try:
                data = self._images.fetch_and_resize(item.url)
            except Exception:
                logger.exception("Image source failed for %s", item.url)
        if not data:
            return ItemResult(
                [PlaceholderNode(self._image_placeholder)], ItemStatus.RECOVERED
            )

        width, height = self._default_image_size
        return ItemResult([
            ImageNode(
                data=data,
                width=item.width or width,
                height=item.height or height,
                alt=item.alt or "",
            )
        ])

    # ── Footnotes ─────────────────────────────────────────────────────

    @staticmethod
    def _attach_footnote(nodes: list[RenderNode], footnote_id: int) -> list[RenderNode]:
        """Put the footnote mark on the last node that can carry one.

        Tables, breaks, empty lines and failed items carry no text, so the
        mark goes on an empty paragraph appended after them.
        """
        for index in range(len(nodes) - 1, -1, -1):
            if hasattr(nodes[index], "footnote_id"):
                nodes = list(nodes)
                nodes[index] = replace(nodes[index], footnote_id=footnote_id)
                return nodes
        logger.warning("Footnote %d has no text to anchor to; adding an empty paragraph", footnote_id)
        return [*nodes, TextNode("", footnote_id=footnote_id)]
