"""Recursive section rendering.

Renders a :class:`~wordgen.hierarchy.SectionNode` and all of its descendants
into a flat, ordered list of render nodes: the section's own heading and
content first, then each child section in turn (depth-first).
"""

from __future__ import annotations

import logging
from typing import Optional

from wordgen.content import ContentRenderer
from wordgen.hierarchy import SectionNode
from wordgen.models import FootnoteTable, RenderConfig, Section
from wordgen.nodes import HeadingNode, NumberedHeadingNode, RenderNode
from wordgen.styles import clamp_heading_level, resolve_header_style

logger = logging.getLogger(__name__)

# Deepest level (0-based) of a numbering preset.
MAX_NUMBERING_DEPTH = 3


class SectionRenderer:
    """Renders section trees.

    Parameters
    ----------
    content:
        Renderer used for every content item.
    footnotes:
        Footnote table of the current request, used to mark the items that
        carry a footnote.
    """

    def __init__(
        self,
        content: ContentRenderer,
        footnotes: Optional[FootnoteTable] = None,
    ) -> None:
        self._content = content
        self._footnotes = footnotes or FootnoteTable()

    def render(self, node: SectionNode, config: RenderConfig) -> list[RenderNode]:
        """Return the nodes of *node* followed by those of its descendants."""
        section = node.section
        output: list[RenderNode] = []

        if section.heading:
            output.append(self._render_heading(section, config))

        for index, item in enumerate(section.content):
            footnote_id = self._footnotes.lookup(node.position, index)
            output.extend(self._content.render(item, footnote_id))

        if config.numbering_reference and section.heading:
            output.append(
                NumberedHeadingNode(
                    text=section.heading,
                    reference=config.numbering_reference,
                    level=min(max(section.heading_level - 1, 0), MAX_NUMBERING_DEPTH),
                )
            )

        for child in node.children:
            output.extend(self.render(child, config))

        logger.debug(
            "Rendered section %s: %d node(s), %d child section(s)",
            section.section_id, len(output), len(node.children),
        )
        return output

    @staticmethod
    def _render_heading(section: Section, config: RenderConfig) -> HeadingNode:
        """Build the styled heading, or an unstyled one if styling fails."""
        level = clamp_heading_level(section.heading_level)
        try:
            style = resolve_header_style(
                section.heading_level,
                config.header_styles,
                config.template_header_styles,
            )
            return HeadingNode(text=section.heading, level=level, style=style)
        except Exception:
            logger.exception(
                "Error applying header styles to section %s, using default",
                section.section_id,
            )
            return HeadingNode(text=section.heading, level=level, style=None)
