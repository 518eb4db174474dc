"""Document assembly: from a generation request to a saved ``.docx`` file.

The assembler owns the whole pipeline of one request:

1. load the base document (company template, or a blank document);
2. build the running header and footer;
3. number the footnotes;
4. pick the numbering presets (bullets always, heading numbering on demand);
5. lay out the title, the optional table of contents and every section;
6. serialize the tree with :class:`~wordgen.writer.DocxWriter`;
7. save it under a fresh ``word-file-<timestamp>.docx`` name.

If anything in steps 1-6 fails, a one-page document holding only the title
is saved instead and the result is flagged as degraded.

Usage::

    from wordgen.assembler import generate

    name = generate("Report", sections=[{"sectionId": "a", "heading": "Intro"}])
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from wordgen.content import ContentRenderer, ImageSource
from wordgen.hierarchy import build_hierarchy
from wordgen.images import ImageFetcher
from wordgen.models import (
    Alignment,
    DocumentRequest,
    FootnoteTable,
    HeaderFooter,
    RenderConfig,
    Section,
    clean_text,
)
from wordgen.nodes import (
    DocumentTree,
    HeaderFooterBlock,
    HeadingNode,
    PageSetup,
    RenderNode,
    StyleSheet,
    TitleNode,
    TocNode,
)
from wordgen.sections import SectionRenderer
from wordgen.settings import WordSettings
from wordgen.storage import ExportStore
from wordgen.templates import TemplateCatalog
from wordgen.writer import DocxWriter

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_ID = "default"


@dataclass
class AssemblyResult:
    """Outcome of one request."""
    name: str
    path: Path
    tree: DocumentTree
    degraded: bool = False


class DocumentAssembler:
    """Turns :class:`DocumentRequest` values into saved documents.

    All collaborators are optional; missing ones are built from *settings*.

    Parameters
    ----------
    settings : WordSettings or None
        Shared, read-only settings.
    templates : TemplateCatalog or None
        Company template catalogue.
    image_fetcher : ImageSource or None
        Image collaborator for ``image`` content items.
    store : ExportStore or None
        Where finished documents are saved.
    writer : DocxWriter or None
        Serializer for the document tree.
    """

    def __init__(
        self,
        settings: WordSettings | None = None,
        templates: TemplateCatalog | None = None,
        image_fetcher: ImageSource | None = None,
        store: ExportStore | None = None,
        writer: DocxWriter | None = None,
    ) -> None:
        self._settings = settings if settings is not None else WordSettings()
        self._templates = templates or TemplateCatalog.from_settings(self._settings)
        self._images = image_fetcher or ImageFetcher.from_settings(self._settings.images)
        self._store = store or ExportStore.from_settings(self._settings)
        self._writer = writer or DocxWriter(self._settings)

    @property
    def settings(self) -> WordSettings:
        return self._settings

    @property
    def store(self) -> ExportStore:
        return self._store

    # ── Public API ────────────────────────────────────────────────────

    def assemble(self, request: DocumentRequest) -> str:
        """Generate, save, and return the artifact name of *request*."""
        return self.run(request).name

    def run(self, request: DocumentRequest) -> AssemblyResult:
        """Generate and save *request*, reporting whether it was degraded.

        Raises
        ------
        OSError
            If the document cannot be saved.
        """
        logger.info(
            "Generating %r: %d section(s), template=%s",
            request.title, len(request.sections), request.config.template,
        )
        degraded = False
        try:
            tree = self.build_tree(request)
            data = self._writer.serialize(tree)
        except Exception:
            logger.exception("Error in document generation; saving title-only document")
            tree = self.fallback_tree(request.title)
            data = self._writer.serialize(tree)
            degraded = True

        name = self._artifact_name()
        path = self._store.persist(name, data)
        return AssemblyResult(name=name, path=path, tree=tree, degraded=degraded)

    def build_tree(self, request: DocumentRequest) -> DocumentTree:
        """Lay out the complete document tree of *request*."""
        config = request.config

        # -- 1. Base document --------------------------------------------
        base_document = None
        if config.template and config.template != DEFAULT_TEMPLATE_ID:
            base_document = self._templates.load_document(config.template)
        config = replace(
            config, template_header_styles=self._templates.header_styles(config.template)
        )

        # -- 2. Header / footer ------------------------------------------
        header = None
        if request.header is not None:
            header = HeaderFooterBlock(text=request.header.text, alignment=request.header.alignment)

        footer = None
        if request.footer is not None or config.show_page_number:
            footer = HeaderFooterBlock(
                text=request.footer.text if request.footer else None,
                alignment=request.footer.alignment if request.footer else Alignment.LEFT,
                show_page_number=config.show_page_number,
            )

        # -- 3. Footnotes ------------------------------------------------
        footnotes = FootnoteTable.collect(request.sections)

        # -- 4. Numbering ------------------------------------------------
        numbering = [self._settings.bullet_preset]
        selected = self._settings.numbering_preset(config.numbering_reference)
        if selected is not None:
            numbering.append(selected)
        config = replace(config, numbering_reference=selected.reference if selected else None)

        # -- 5. Content --------------------------------------------------
        nodes: list[RenderNode] = [TitleNode(request.title)]
        if config.show_table_of_content:
            toc = self._settings.table_of_contents
            nodes.append(TocNode(
                title=str(toc.get("title", "Table of Contents")),
                heading_levels=str(toc.get("heading_levels", "1-4")),
            ))

        renderer = SectionRenderer(self._content_renderer(), footnotes)
        for root in build_hierarchy(request.sections):
            nodes.extend(renderer.render(root, config))

        tree = DocumentTree(
            title=request.title,
            nodes=nodes,
            header=header,
            footer=footer,
            page=PageSetup(margins=config.margins, orientation=config.page_orientation),
            style_sheet=StyleSheet(
                font_family=config.font_family,
                font_size=config.font_size,
                line_height=config.line_height,
            ),
            numbering=numbering,
            footnotes=dict(footnotes.entries),
            base_document=base_document,
        )
        logger.info("Document tree: %s", tree.summary())
        return tree

    @staticmethod
    def fallback_tree(title: str) -> DocumentTree:
        """Return the one-page, title-only document used after a failure."""
        return DocumentTree(title=title, nodes=[HeadingNode(text=title, level=1)], degraded=True)

    # ── Internals ─────────────────────────────────────────────────────

    def _content_renderer(self) -> ContentRenderer:
        images = self._settings.images
        return ContentRenderer(
            self._images,
            bullet_reference=self._settings.bullet_preset.reference,
            image_placeholder=self._settings.placeholder("image"),
            unsupported_placeholder=self._settings.placeholder("unsupported"),
            default_image_size=(
                int(images.get("default_width", 400)),
                int(images.get("default_height", 300)),
            ),
        )

    def _artifact_name(self) -> str:
        """Return an unused ``<prefix>-<UTC timestamp digits>.docx`` name.

        The timestamp has millisecond precision; on a clash it is moved
        forward one millisecond at a time.
        """
        prefix = self._settings.exports.get("file_prefix", "word-file")
        moment = datetime.now(timezone.utc)
        while True:
            digits = re.sub(r"\D", "", moment.isoformat(timespec="milliseconds").split("+")[0])
            name = f"{prefix}-{digits}.docx"
            if not self._store.exists(name):
                return name
            moment += timedelta(milliseconds=1)


# ── Module-level entry point ────────────────────────────────────────


def generate(
    title: str,
    header: HeaderFooter | dict[str, Any] | None = None,
    footer: HeaderFooter | dict[str, Any] | None = None,
    sections: Optional[list[Section | dict[str, Any]]] = None,
    config: RenderConfig | dict[str, Any] | None = None,
    *,
    assembler: DocumentAssembler | None = None,
) -> str:
    """Generate a document and return its artifact name.

    *header*, *footer*, *sections* and *config* accept either model
    instances or the raw request JSON shapes (``config`` then being the
    ``wordConfig`` object).

    Raises
    ------
    ValueError
        If no sections are given.
    """
    assembler = assembler or DocumentAssembler()
    if not sections:
        raise ValueError("Sections is required!")

    if not isinstance(config, RenderConfig):
        config = assembler.settings.build_render_config(config or {})

    request = DocumentRequest(
        title=clean_text(title) or "",
        sections=[s if isinstance(s, Section) else Section.from_dict(s) for s in sections],
        header=header if isinstance(header, HeaderFooter) or header is None else HeaderFooter.from_dict(header),
        footer=footer if isinstance(footer, HeaderFooter) or footer is None else HeaderFooter.from_dict(footer),
        config=config,
    )
    return assembler.assemble(request)
