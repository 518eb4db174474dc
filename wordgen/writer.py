"""``.docx`` writer for the word generator.

Takes a :class:`~wordgen.nodes.DocumentTree` produced by the assembler and
turns it into a python-docx document: page setup, document-wide text
defaults, numbering definitions, footnotes, running header and footer, and
one block of Word content per render node.

python-docx has no API for numbering definitions, footnotes, field codes or
repeating table header rows, so those are written as raw OOXML through
``OxmlElement`` and ``qn``.

Usage::

    from wordgen.writer import DocxWriter

    data = DocxWriter(settings).serialize(tree)
"""

from __future__ import annotations

import io
import logging
from typing import Any, Optional, TYPE_CHECKING

from docx import Document as new_docx
from docx.enum.section import WD_ORIENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.image.exceptions import UnrecognizedImageError
from docx.opc.constants import CONTENT_TYPE as CT, RELATIONSHIP_TYPE as RT
from docx.opc.packuri import PackURI
from docx.opc.part import XmlPart
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.parts.numbering import NumberingPart
from docx.shared import Emu, Pt, RGBColor, Twips
from lxml import etree

from wordgen.models import Alignment, HeaderStyle
from wordgen.nodes import (
    BulletNode,
    DocumentTree,
    EmptyLineNode,
    HeaderFooterBlock,
    HeadingNode,
    ImageNode,
    NumberedHeadingNode,
    NumberingPreset,
    PageBreakNode,
    PageSetup,
    PlaceholderNode,
    RenderNode,
    StyleSheet,
    TableNode,
    TextNode,
    TitleNode,
    TocNode,
)
from wordgen.settings import WordSettings

if TYPE_CHECKING:
    from docx.document import Document
    from docx.text.paragraph import Paragraph as DocxParagraph

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

EMU_PER_PIXEL = 9525

_ALIGNMENTS = {
    Alignment.LEFT: WD_ALIGN_PARAGRAPH.LEFT,
    Alignment.CENTER: WD_ALIGN_PARAGRAPH.CENTER,
    Alignment.RIGHT: WD_ALIGN_PARAGRAPH.RIGHT,
}

_FOOTNOTES_XML = (
    f"<w:footnotes {nsdecls('w')}>"
    '<w:footnote w:type="separator" w:id="-1">'
    '<w:p><w:pPr><w:spacing w:after="0" w:line="240" w:lineRule="auto"/></w:pPr>'
    "<w:r><w:separator/></w:r></w:p>"
    "</w:footnote>"
    '<w:footnote w:type="continuationSeparator" w:id="0">'
    '<w:p><w:pPr><w:spacing w:after="0" w:line="240" w:lineRule="auto"/></w:pPr>'
    "<w:r><w:continuationSeparator/></w:r></w:p>"
    "</w:footnote>"
    "</w:footnotes>"
)


def _hex_to_rgb(hex_color: str) -> RGBColor:
    """Convert a ``RRGGBB`` hex string to a python-docx *RGBColor*.

    A leading ``#`` is accepted.
    """
    hex_color = hex_color.lstrip("#")
    if len(hex_color) != 6:
        raise ValueError(f"Invalid hex color: #{hex_color}")
    return RGBColor.from_string(hex_color.upper())


def _set_table_borders(table: Any, color: str = "000000", size: int = 4) -> None:
    """Apply uniform single borders to all edges of a docx *table*.

    Used when the document has no ``Table Grid`` style.
    """
    tbl_pr = table._tbl.tblPr
    borders = OxmlElement("w:tblBorders")
    for edge in ("top", "left", "bottom", "right", "insideH", "insideV"):
        el = OxmlElement(f"w:{edge}")
        el.set(qn("w:val"), "single")
        el.set(qn("w:sz"), str(size))
        el.set(qn("w:space"), "0")
        el.set(qn("w:color"), color)
        borders.append(el)
    tbl_pr.append(borders)


def _set_table_full_width(table: Any) -> None:
    """Make *table* span 100 % of the text width."""
    tbl_pr = table._tbl.tblPr
    tbl_w = tbl_pr.find(qn("w:tblW"))
    if tbl_w is None:
        tbl_w = OxmlElement("w:tblW")
        tbl_pr.append(tbl_w)
    tbl_w.set(qn("w:type"), "pct")
    tbl_w.set(qn("w:w"), "5000")


def _mark_header_row(row: Any) -> None:
    """Flag a table row to repeat at the top of every page."""
    tr_pr = row._tr.get_or_add_trPr()
    el = OxmlElement("w:tblHeader")
    el.set(qn("w:val"), "true")
    tr_pr.append(el)


def _insert_simple_field(para: DocxParagraph, instr: str, placeholder: str = "1") -> None:
    """Insert a simple field (``PAGE``, ``NUMPAGES`` ...) into *para*.

    This creates the OOXML structure::

        <w:fldSimple w:instr=" PAGE ">
          <w:r><w:t>1</w:t></w:r>
        </w:fldSimple>
    """
    fld_simple = OxmlElement("w:fldSimple")
    fld_simple.set(qn("w:instr"), f" {instr} ")

    run_el = OxmlElement("w:r")
    text_el = OxmlElement("w:t")
    text_el.text = placeholder
    run_el.append(text_el)

    fld_simple.append(run_el)
    para._p.append(fld_simple)


def _add_field_char(para: DocxParagraph, char_type: str) -> None:
    run = para.add_run()
    fld_char = OxmlElement("w:fldChar")
    fld_char.set(qn("w:fldCharType"), char_type)
    if char_type == "begin":
        fld_char.set(qn("w:dirty"), "true")
    run._r.append(fld_char)


def _add_footnote_reference(para: DocxParagraph, footnote_id: int) -> None:
    """Append a superscript footnote reference mark to *para*."""
    run = para.add_run()
    run.font.superscript = True
    ref = OxmlElement("w:footnoteReference")
    ref.set(qn("w:id"), str(footnote_id))
    run._r.append(ref)


def _set_numbering(para: DocxParagraph, num_id: int, level: int) -> None:
    num_pr = para._p.get_or_add_pPr().get_or_add_numPr()
    num_pr.get_or_add_ilvl().val = level
    num_pr.get_or_add_numId().val = num_id


# ---------------------------------------------------------------------------
# DocxWriter
# ---------------------------------------------------------------------------


class DocxWriter:
    """Renders a :class:`DocumentTree` into a ``.docx`` document.

    Parameters
    ----------
    settings : WordSettings or None, optional
        Fonts, spacing and numbering layout.  When ``None`` the packaged
        defaults are loaded.
    """

    def __init__(self, settings: WordSettings | None = None) -> None:
        self._settings = settings if settings is not None else WordSettings()

    # ── Public API ────────────────────────────────────────────────────

    def serialize(self, tree: DocumentTree) -> bytes:
        """Render *tree* and return the ``.docx`` package bytes."""
        doc = self.build_document(tree)
        buffer = io.BytesIO()
        doc.save(buffer)
        data = buffer.getvalue()
        logger.debug("Serialized %r: %d bytes", tree.title, len(data))
        return data

    def build_document(self, tree: DocumentTree) -> Document:
        """Render *tree* into a python-docx document.

        When the tree carries a template document its styles, page setup
        and running header/footer are kept and its body content replaced.
        """
        if tree.base_document is not None:
            doc = tree.base_document
            self._clear_body(doc)
        else:
            doc = new_docx()

        doc.core_properties.title = tree.title
        self._apply_style_sheet(doc, tree.style_sheet)
        self._setup_page(doc, tree.page)

        num_ids = self._install_numbering(doc, tree.numbering)
        footnote_ids = self._install_footnotes(doc, tree.footnotes)

        for node in tree.nodes:
            try:
                self._render_node(doc, node, num_ids, footnote_ids)
            except Exception:
                logger.exception("Failed to render %s; writing placeholder", type(node).__name__)
                doc.add_paragraph(self._settings.placeholder("unsupported"))

        self._setup_header_footer(doc, tree.header, tree.footer)

        logger.info(
            "Rendered document %r: %d block(s), %d footnote(s)",
            tree.title, len(tree.nodes), len(footnote_ids),
        )
        return doc

    # ── Document setup ────────────────────────────────────────────────

    @staticmethod
    def _clear_body(doc: Document) -> None:
        body = doc.element.body
        for child in list(body):
            if child.tag != qn("w:sectPr"):
                body.remove(child)

    @staticmethod
    def _apply_style_sheet(doc: Document, sheet: StyleSheet) -> None:
        normal = doc.styles["Normal"]
        normal.font.name = sheet.font_family
        normal.font.size = Pt(sheet.font_size)
        normal.paragraph_format.line_spacing = sheet.line_height / 240
        logger.debug(
            "Normal style: %s %spt, line %d twips",
            sheet.font_family, sheet.font_size, sheet.line_height,
        )

    @staticmethod
    def _setup_page(doc: Document, page: PageSetup) -> None:
        for section in doc.sections:
            width, height = section.page_width, section.page_height
            if page.orientation == "landscape":
                section.orientation = WD_ORIENT.LANDSCAPE
                if width is not None and height is not None and width < height:
                    section.page_width, section.page_height = height, width
            else:
                section.orientation = WD_ORIENT.PORTRAIT
                if width is not None and height is not None and width > height:
                    section.page_width, section.page_height = height, width

            section.top_margin = Twips(page.margins.top)
            section.bottom_margin = Twips(page.margins.bottom)
            section.left_margin = Twips(page.margins.left)
            section.right_margin = Twips(page.margins.right)

        logger.debug(
            "Page: %s, margins T=%d B=%d L=%d R=%d",
            page.orientation, page.margins.top, page.margins.bottom,
            page.margins.left, page.margins.right,
        )

    # ── Numbering ─────────────────────────────────────────────────────

    @staticmethod
    def _numbering_element(doc: Document) -> Any:
        try:
            return doc.part.numbering_part.element
        except NotImplementedError:
            # The base document has no numbering part yet.
            part = NumberingPart(
                PackURI("/word/numbering.xml"),
                CT.WML_NUMBERING,
                parse_xml(f"<w:numbering {nsdecls('w')}/>"),
                doc.part.package,
            )
            doc.part.relate_to(part, RT.NUMBERING)
            return part.element

    def _install_numbering(self, doc: Document, presets: list[NumberingPreset]) -> dict[str, int]:
        """Add one abstract numbering definition per preset.

        Returns
        -------
        dict[str, int]
            Preset reference -> ``w:numId`` to use in paragraphs.
        """
        if not presets:
            return {}

        numbering = self._numbering_element(doc)
        existing = [
            int(el.get(qn("w:abstractNumId")))
            for el in numbering.findall(qn("w:abstractNum"))
        ]
        next_abstract_id = max(existing, default=-1) + 1
        indent, hanging = self._settings.list_indent

        num_ids: dict[str, int] = {}
        for preset in presets:
            if not preset.reference or preset.reference in num_ids:
                continue
            abstract = self._abstract_num(next_abstract_id, preset, indent, hanging)
            first_num = numbering.find(qn("w:num"))
            if first_num is not None:
                first_num.addprevious(abstract)
            else:
                numbering.append(abstract)
            num = numbering.add_num(next_abstract_id)
            num_ids[preset.reference] = num.numId
            logger.debug(
                "Numbering %s -> abstractNum %d, numId %d",
                preset.reference, next_abstract_id, num.numId,
            )
            next_abstract_id += 1
        return num_ids

    @staticmethod
    def _abstract_num(abstract_id: int, preset: NumberingPreset, indent: int, hanging: int) -> Any:
        abstract = OxmlElement("w:abstractNum")
        abstract.set(qn("w:abstractNumId"), str(abstract_id))
        multi = OxmlElement("w:multiLevelType")
        multi.set(qn("w:val"), "hybridMultilevel")
        abstract.append(multi)

        for ilvl, level in enumerate(preset.levels):
            lvl = OxmlElement("w:lvl")
            lvl.set(qn("w:ilvl"), str(ilvl))
            for tag, value in (
                ("w:start", "1"),
                ("w:numFmt", level.format),
                ("w:lvlText", level.text),
                ("w:lvlJc", "left"),
            ):
                el = OxmlElement(tag)
                el.set(qn("w:val"), value)
                lvl.append(el)
            p_pr = OxmlElement("w:pPr")
            ind = OxmlElement("w:ind")
            ind.set(qn("w:left"), str(indent * (ilvl + 1)))
            ind.set(qn("w:hanging"), str(hanging))
            p_pr.append(ind)
            lvl.append(p_pr)
            abstract.append(lvl)
        return abstract

    # ── Footnotes ─────────────────────────────────────────────────────

    def _install_footnotes(self, doc: Document, footnotes: dict[int, str]) -> dict[int, int]:
        """Write *footnotes* to the footnotes part.

        Returns
        -------
        dict[int, int]
            Tree footnote id -> ``w:id`` in the package.  Ids are offset past
            the footnotes a template may already hold.
        """
        if not footnotes:
            return {}

        try:
            part = doc.part.part_related_by(RT.FOOTNOTES)
        except KeyError:
            part = XmlPart(
                PackURI("/word/footnotes.xml"),
                CT.WML_FOOTNOTES,
                parse_xml(_FOOTNOTES_XML),
                doc.part.package,
            )
            doc.part.relate_to(part, RT.FOOTNOTES)

        root = part.element if isinstance(part, XmlPart) else etree.fromstring(part.blob)
        used = [int(el.get(qn("w:id"))) for el in root.findall(qn("w:footnote"))]
        offset = max([0, *used])

        ids: dict[int, int] = {}
        for footnote_id, text in sorted(footnotes.items()):
            xml_id = offset + footnote_id
            root.append(self._footnote(xml_id, text))
            ids[footnote_id] = xml_id

        if not isinstance(part, XmlPart):
            part._blob = etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)
        logger.debug("Wrote %d footnote(s)", len(ids))
        return ids

    @staticmethod
    def _footnote(xml_id: int, text: str) -> Any:
        footnote = OxmlElement("w:footnote")
        footnote.set(qn("w:id"), str(xml_id))
        para = OxmlElement("w:p")

        mark = OxmlElement("w:r")
        mark_pr = OxmlElement("w:rPr")
        vert = OxmlElement("w:vertAlign")
        vert.set(qn("w:val"), "superscript")
        mark_pr.append(vert)
        mark.append(mark_pr)
        mark.append(OxmlElement("w:footnoteRef"))
        para.append(mark)

        run = OxmlElement("w:r")
        text_el = OxmlElement("w:t")
        text_el.set(qn("xml:space"), "preserve")
        text_el.text = f" {text}"
        run.append(text_el)
        para.append(run)

        footnote.append(para)
        return footnote

    # ── Node dispatch ─────────────────────────────────────────────────

    def _render_node(
        self,
        doc: Document,
        node: RenderNode,
        num_ids: dict[str, int],
        footnote_ids: dict[int, int],
    ) -> None:
        """Route a render node to its type-specific renderer."""
        match node:
            case TitleNode():
                self._render_title(doc, node)
            case TocNode():
                self._render_toc(doc, node)
            case HeadingNode():
                self._render_heading(doc, node)
            case NumberedHeadingNode():
                self._render_numbered_heading(doc, node, num_ids)
            case TextNode() | PlaceholderNode():
                para = doc.add_paragraph(node.text)
                para.paragraph_format.space_after = Twips(self._settings.spacing_twips("paragraph_after"))
                self._add_footnote(para, node.footnote_id, footnote_ids)
            case BulletNode():
                self._render_bullet(doc, node, num_ids, footnote_ids)
            case TableNode():
                self._render_table(doc, node)
            case ImageNode():
                self._render_image(doc, node, footnote_ids)
            case PageBreakNode():
                doc.add_paragraph().paragraph_format.page_break_before = True
            case EmptyLineNode():
                doc.add_paragraph()
            case _:
                logger.warning("Unsupported render node: %s", type(node).__name__)

    @staticmethod
    def _add_footnote(para: DocxParagraph, footnote_id: Optional[int], footnote_ids: dict[int, int]) -> None:
        if footnote_id is None:
            return
        xml_id = footnote_ids.get(footnote_id)
        if xml_id is None:
            logger.warning("Footnote %d has no entry; mark skipped", footnote_id)
            return
        _add_footnote_reference(para, xml_id)

    @staticmethod
    def _add_styled_paragraph(doc: Document, style: str) -> DocxParagraph:
        """Add a paragraph in *style*, or a plain one if the style is missing."""
        para = doc.add_paragraph()
        try:
            para.style = style
        except KeyError:
            logger.debug("Style %r not in document; using Normal", style)
        return para

    # ── Title / table of contents ─────────────────────────────────────

    def _render_title(self, doc: Document, node: TitleNode) -> None:
        para = self._add_styled_paragraph(doc, "Title")
        run = para.add_run(node.text)
        run.font.size = Pt(self._settings.font("title_size", 32))
        para.paragraph_format.space_after = Twips(self._settings.spacing_twips("title_after"))

    def _render_toc(self, doc: Document, node: TocNode) -> None:
        """Render the TOC title and a ``TOC`` field over the heading styles.

        Word fills the field in when the document is opened.
        """
        title = doc.add_paragraph()
        run = title.add_run(node.title)
        run.bold = True
        run.font.size = Pt(self._settings.font("table_of_content_size", 16))
        title.paragraph_format.space_after = Twips(
            self._settings.spacing_twips("table_of_content_after")
        )

        para = doc.add_paragraph()
        _add_field_char(para, "begin")
        instr_run = para.add_run()
        instr = OxmlElement("w:instrText")
        instr.set(qn("xml:space"), "preserve")
        instr.text = f' TOC \\o "{node.heading_levels}" \\h \\z \\u '
        instr_run._r.append(instr)
        _add_field_char(para, "separate")
        para.add_run(str(self._settings.table_of_contents.get("placeholder", "")))
        _add_field_char(para, "end")

        settings = doc.settings.element
        if settings.find(qn("w:updateFields")) is None:
            update = OxmlElement("w:updateFields")
            update.set(qn("w:val"), "true")
            settings.append(update)
        logger.debug("Table of contents field over levels %s", node.heading_levels)

    # ── Headings ──────────────────────────────────────────────────────

    def _render_heading(self, doc: Document, node: HeadingNode) -> None:
        para = self._add_styled_paragraph(doc, f"Heading {node.level}")
        run = para.add_run(node.text)
        if node.style is not None:
            self._apply_header_style(run, node.style)
        para.paragraph_format.space_before = Twips(self._settings.spacing_twips("styled_heading_before"))
        para.paragraph_format.space_after = Twips(self._settings.spacing_twips("styled_heading_after"))

    @staticmethod
    def _apply_header_style(run: Any, style: HeaderStyle) -> None:
        run.bold = style.bold
        run.font.size = Pt(style.size)
        run.font.name = style.font
        run.font.color.rgb = _hex_to_rgb(style.color)

    def _render_numbered_heading(
        self, doc: Document, node: NumberedHeadingNode, num_ids: dict[str, int]
    ) -> None:
        para = doc.add_paragraph(node.text)
        para.paragraph_format.space_before = Twips(self._settings.spacing_twips("heading_before"))
        para.paragraph_format.space_after = Twips(self._settings.spacing_twips("heading_after"))
        num_id = num_ids.get(node.reference)
        if num_id is None:
            logger.warning("Numbering %r not defined; heading left unnumbered", node.reference)
            return
        _set_numbering(para, num_id, node.level)

    # ── Lists ─────────────────────────────────────────────────────────

    def _render_bullet(
        self,
        doc: Document,
        node: BulletNode,
        num_ids: dict[str, int],
        footnote_ids: dict[int, int],
    ) -> None:
        para = doc.add_paragraph(node.text)
        num_id = num_ids.get(node.reference)
        if num_id is not None:
            _set_numbering(para, num_id, node.level)
        else:
            logger.warning("Bullet numbering %r not defined", node.reference)
        self._add_footnote(para, node.footnote_id, footnote_ids)

    # ── Tables ────────────────────────────────────────────────────────

    @staticmethod
    def _render_table(doc: Document, node: TableNode) -> None:
        """Render a full-width table with an optional repeating header row.

        Rows shorter than the widest row are padded with empty cells.
        """
        col_count = node.column_count
        if col_count == 0:
            logger.warning("Skipping empty table (no columns)")
            return

        has_header = bool(node.header)
        table = doc.add_table(rows=len(node.rows) + (1 if has_header else 0), cols=col_count)
        try:
            table.style = "Table Grid"
        except KeyError:
            _set_table_borders(table)
        _set_table_full_width(table)

        current_row = 0
        if has_header:
            _mark_header_row(table.rows[0])
            for col_idx, text in enumerate(node.header):
                cell_para = table.cell(0, col_idx).paragraphs[0]
                cell_para.alignment = WD_ALIGN_PARAGRAPH.CENTER
                cell_para.add_run(text).bold = True
            current_row += 1

        for row_data in node.rows:
            for col_idx, text in enumerate(row_data):
                table.cell(current_row, col_idx).paragraphs[0].add_run(text)
            current_row += 1

        logger.debug(
            "Rendered table: %d col(s), %d data row(s), header=%s",
            col_count, len(node.rows), has_header,
        )

    # ── Images ────────────────────────────────────────────────────────

    def _render_image(self, doc: Document, node: ImageNode, footnote_ids: dict[int, int]) -> None:
        """Embed the image at its requested pixel size.

        Image data python-docx cannot read is replaced by the image
        placeholder text.
        """
        para = doc.add_paragraph()
        para.paragraph_format.space_after = Twips(self._settings.spacing_twips("image_after"))
        try:
            shape = para.add_run().add_picture(
                io.BytesIO(node.data),
                width=Emu(node.width * EMU_PER_PIXEL),
                height=Emu(node.height * EMU_PER_PIXEL),
            )
        except (UnrecognizedImageError, ValueError, OSError) as exc:
            logger.warning("Cannot embed image (%s); using placeholder", exc)
            para.clear()
            para.add_run(self._settings.placeholder("image"))
        else:
            if node.alt:
                shape._inline.docPr.set("descr", node.alt)
        self._add_footnote(para, node.footnote_id, footnote_ids)

    # ── Header / footer ───────────────────────────────────────────────

    def _setup_header_footer(
        self,
        doc: Document,
        header: Optional[HeaderFooterBlock],
        footer: Optional[HeaderFooterBlock],
    ) -> None:
        """Fill the running header and footer of every document section.

        The footer carries the text and, when enabled, a second paragraph
        reading "Page X of Y".
        """
        footer_cfg = self._settings.section("footer")
        for doc_section in doc.sections:
            if header is not None:
                target = doc_section.header
                target.is_linked_to_previous = False
                para = self._first_paragraph(target)
                para.alignment = _ALIGNMENTS[header.alignment]
                if header.text:
                    para.add_run(header.text)

            if footer is not None:
                target = doc_section.footer
                target.is_linked_to_previous = False
                para = self._first_paragraph(target)
                para.alignment = _ALIGNMENTS[footer.alignment]
                if footer.text:
                    para.add_run(footer.text)
                if footer.show_page_number:
                    if footer.text:
                        para = target.add_paragraph()
                        para.alignment = _ALIGNMENTS[footer.alignment]
                    para.add_run(footer_cfg.get("page_number_prefix", "Page "))
                    _insert_simple_field(para, "PAGE")
                    para.add_run(footer_cfg.get("page_number_separator", " of "))
                    _insert_simple_field(para, "NUMPAGES")

        logger.debug("Header=%s footer=%s", header is not None, footer is not None)

    @staticmethod
    def _first_paragraph(block: Any) -> DocxParagraph:
        """Return the emptied first paragraph of a header or footer.

        Any further paragraphs a template put there are removed.
        """
        paragraphs = block.paragraphs
        if not paragraphs:
            return block.add_paragraph()
        for extra in paragraphs[1:]:
            extra._p.getparent().remove(extra._p)
        first = paragraphs[0]
        first.clear()
        return first
