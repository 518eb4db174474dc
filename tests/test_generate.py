"""Test suite for the Word generator.

Tests cover request models, settings, style resolution, the section
hierarchy, content and section rendering, assembly, the ``.docx`` writer,
templates, images, export storage and the CLI.
"""

from __future__ import annotations

import io
import json
import os
import time
import zipfile
from pathlib import Path

import pytest
import requests
from docx import Document as open_docx
from docx.enum.section import WD_ORIENT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.shared import Emu, Pt, RGBColor, Twips
from PIL import Image

from wordgen.models import (
    Alignment,
    ContentItem,
    DocumentRequest,
    FootnoteTable,
    HeaderFooter,
    HeaderStyle,
    RenderConfig,
    Section,
    TableRow,
    clean_text,
)
from wordgen.nodes import (
    BulletNode,
    DocumentTree,
    EmptyLineNode,
    HeadingNode,
    ImageNode,
    NumberedHeadingNode,
    PageBreakNode,
    PlaceholderNode,
    TableNode,
    TextNode,
    TitleNode,
    TocNode,
)
from wordgen.settings import WordSettings

FIXTURES_DIR = Path(__file__).parent / "fixtures"

DOCUMENT_CT = b"application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"
TEMPLATE_CT = b"application/vnd.openxmlformats-officedocument.wordprocessingml.template.main+xml"

VALID_STYLES = {
    "h1": {"size": 20, "color": "112233", "font": "Georgia", "bold": True},
    "h2": {"size": 16, "color": "445566", "font": "Georgia", "bold": False},
    "h3": {"size": 12, "color": "778899", "font": "Georgia", "bold": False},
}


# ── Helpers ─────────────────────────────────────────────────────────


class FakeImages:
    """Image source returning fixed bytes (``None`` = always fails)."""

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data
        self.urls: list[str] = []

    def fetch_and_resize(self, url: str) -> bytes | None:
        self.urls.append(url)
        return self.data


class FakeResponse:
    def __init__(self, body: bytes, headers: dict | None = None, status: int = 200) -> None:
        self.body = body
        self.headers = headers or {}
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.headers: dict = {}
        self.response = response

    def get(self, url, stream=False, timeout=None):
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def png_bytes(size=(100, 50), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def section(section_id, heading=None, level=1, parent=None, content=None) -> Section:
    return Section(
        section_id=section_id,
        heading=heading,
        heading_level=level,
        parent_section_id=parent,
        content=content or [],
    )


def make_template(path: Path, text: str = "Template body", as_dotx: bool = False) -> Path:
    doc = open_docx()
    doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    if not as_dotx:
        path.write_bytes(buf.getvalue())
        return path

    buf.seek(0)
    with zipfile.ZipFile(buf) as src, zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as dst:
        for info in src.infolist():
            data = src.read(info.filename)
            if info.filename == "[Content_Types].xml":
                data = data.replace(DOCUMENT_CT, TEMPLATE_CT)
            dst.writestr(info, data)
    return path


def make_assembler(tmp_path: Path, images=None, templates=None, writer=None):
    from wordgen.assembler import DocumentAssembler
    from wordgen.storage import ExportStore
    from wordgen.templates import TemplateCatalog

    return DocumentAssembler(
        settings=WordSettings(),
        templates=templates or TemplateCatalog([], tmp_path / "templates"),
        image_fetcher=images or FakeImages(None),
        store=ExportStore(tmp_path / "exports"),
        writer=writer,
    )


def load_sample() -> dict:
    with open(FIXTURES_DIR / "sample_request.json", "r", encoding="utf-8") as fh:
        return json.load(fh)


# ── Model tests ─────────────────────────────────────────────────────


class TestModels:
    def test_content_item_table_from_dict(self):
        item = ContentItem.from_dict({
            "type": "table",
            "headers": ["A", "B"],
            "rows": [{"cells": [{"text": "1"}, {"text": "2"}]}, {"cells": []}],
        })
        assert item.headers == ["A", "B"]
        assert item.rows == [TableRow(cells=["1", "2"]), TableRow(cells=[])]

    def test_footnote_object_form(self):
        item = ContentItem.from_dict({"type": "paragraph", "text": "x", "footnote": {"note": "See annex"}})
        assert item.footnote == "See annex"

    def test_section_defaults(self):
        s = Section.from_dict({"sectionId": "a", "parentSectionId": ""})
        assert s.heading is None
        assert s.heading_level == 1
        assert s.parent_section_id is None
        assert s.content == []

    def test_invalid_heading_level_becomes_one(self):
        assert Section.from_dict({"sectionId": "a", "headingLevel": "two"}).heading_level == 1
        assert Section.from_dict({"sectionId": "a", "headingLevel": 0}).heading_level == 1

    def test_section_without_id_rejected(self):
        with pytest.raises(ValueError, match="sectionId"):
            Section.from_dict({"heading": "Orphan"})

    def test_header_footer(self):
        assert HeaderFooter.from_dict(None) is None
        assert HeaderFooter.from_dict({"text": ""}) is None
        hf = HeaderFooter.from_dict({"text": "Top", "alignment": "CENTER"})
        assert hf.alignment is Alignment.CENTER
        assert HeaderFooter.from_dict({"text": "Top", "alignment": "justify"}).alignment is Alignment.LEFT

    def test_request_requires_sections(self):
        with pytest.raises(ValueError, match="Sections is required"):
            DocumentRequest.from_dict({"title": "T", "sections": []}, WordSettings())

    def test_request_from_sample(self):
        request = DocumentRequest.from_dict(load_sample(), WordSettings())
        assert request.title == "Quarterly Proposal"
        assert [s.section_id for s in request.sections] == ["intro", "budget", "next"]
        assert request.header.alignment is Alignment.RIGHT
        assert request.config.show_table_of_content is True
        assert request.config.numbering_reference == "1.1.1.1 (Decimal)"

    def test_control_characters_removed(self):
        assert clean_text("a\x00b\tc\r\nd\x0ce\x1f") == "ab\tc\r\nde"
        assert clean_text(None) is None
        item = ContentItem.from_dict({
            "type": "table",
            "headers": ["H\x0b"],
            "rows": [{"cells": [{"text": "x\x08y"}]}],
            "footnote": "note\x07",
        })
        assert item.headers == ["H"]
        assert item.rows == [TableRow(cells=["xy"])]
        assert item.footnote == "note"

    def test_non_string_text_coerced(self):
        assert Section.from_dict({"sectionId": "a", "heading": 2024}).heading == "2024"
        item = ContentItem.from_dict({"type": "listing", "items": [1, "b"], "text": 42})
        assert item.items == ["1", "b"]
        assert item.text == "42"
        assert HeaderFooter.from_dict({"text": 7}).text == "7"

    def test_footnote_table_numbering(self):
        sections = [
            section("a", content=[ContentItem("paragraph", text="x", footnote="first")]),
            section("b", content=[
                ContentItem("paragraph", text="y"),
                ContentItem("paragraph", text="z", footnote="second"),
            ]),
        ]
        table = FootnoteTable.collect(sections)
        assert table.entries == {1: "first", 2: "second"}
        assert table.lookup(0, 0) == 1
        assert table.lookup(1, 1) == 2
        assert table.lookup(1, 0) is None


# ── Settings tests ──────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        settings = WordSettings()
        config = settings.build_render_config({})
        assert config.numbering_reference is None
        assert config.font_family == "Arial"
        assert config.font_size == 12
        assert config.line_height == 276
        assert config.margins.left == 1440
        assert config.page_orientation == "portrait"
        assert config.header_styles is None
        assert config.show_page_number is False

    def test_presets_loaded(self):
        settings = WordSettings()
        assert len(settings.numbering_presets) == 5
        assert settings.bullet_preset.reference == "my-listing-with-bullet-points"
        assert settings.numbering_preset("decimal-numbering").levels[1].text == "%1.%2"
        assert settings.numbering_preset("nope") is None

    def test_numbering_requires_flag(self):
        settings = WordSettings()
        assert settings.build_render_config({"numberingReference": "decimal-numbering"}).numbering_reference is None
        config = settings.build_render_config(
            {"numberingReference": "decimal-numbering", "showNumberingInHeader": True}
        )
        assert config.numbering_reference == "decimal-numbering"

    def test_line_height_lookup(self):
        settings = WordSettings()
        assert settings.build_render_config({"lineHeight": "1.5"}).line_height == 360
        assert settings.build_render_config({"lineHeight": 2}).line_height == 480
        assert settings.build_render_config({"lineHeight": "huge"}).line_height == 276

    def test_margins_and_orientation(self):
        settings = WordSettings()
        config = settings.build_render_config({"margins": "narrow", "pageOrientation": "landscape"})
        assert config.margins.top == 720
        assert config.page_orientation == "landscape"
        fallback = settings.build_render_config({"margins": "tiny", "pageOrientation": "diagonal"})
        assert fallback.margins.top == 1440
        assert fallback.page_orientation == "portrait"

    def test_flat_header_style_keys(self):
        styles = WordSettings().build_render_config({"h2Size": 16, "h1Bold": "false"}).header_styles
        assert styles["h1"]["bold"] is False
        assert styles["h2"]["size"] == 16
        assert styles["h3"] == {"font": "Outfit", "size": 10, "color": "000000", "bold": True}

    def test_flat_header_style_strings(self):
        from wordgen.styles import resolve_header_style

        config = WordSettings().build_render_config({"h1Size": "20", "h1Font": "Georgia", "h1Color": "#ff0000"})
        assert config.header_styles["h1"]["size"] == 20
        assert config.header_styles["h1"]["color"] == "FF0000"
        style = resolve_header_style(1, config.header_styles, None)
        assert style.font == "Georgia"
        assert style.size == 20
        assert style.color == "FF0000"

        half = WordSettings().build_render_config({"h2Size": "11.5"}).header_styles
        assert half["h2"]["size"] == 11.5
        assert resolve_header_style(2, half, None).size == 11.5

    def test_overlay(self, tmp_path):
        overlay = tmp_path / "overlay.yaml"
        overlay.write_text("fonts:\n  family: Calibri\n", encoding="utf-8")
        settings = WordSettings(overlay_path=overlay)
        assert settings.font("family") == "Calibri"
        assert settings.font("size") == 12

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            WordSettings(config_path=tmp_path / "missing.yaml")


# ── Style resolver tests ────────────────────────────────────────────


class TestStyleResolver:
    def test_defaults(self):
        from wordgen.styles import resolve_header_style

        assert resolve_header_style(1) == HeaderStyle(size=14, color="000000", font="Outfit", bold=True)
        assert resolve_header_style(3).size == 10

    def test_out_of_range_levels_clamp_to_h1(self):
        from wordgen.styles import resolve_header_style

        assert resolve_header_style(4) == resolve_header_style(1)
        assert resolve_header_style(0, VALID_STYLES).size == 20

    def test_caller_wins(self):
        from wordgen.styles import resolve_header_style

        other = {k: dict(v, font="Verdana") for k, v in VALID_STYLES.items()}
        style = resolve_header_style(2, VALID_STYLES, other)
        assert style.font == "Georgia"
        assert style.size == 16

    def test_invalid_caller_falls_back_to_template(self):
        from wordgen.styles import resolve_header_style

        partial = {"h1": VALID_STYLES["h1"]}
        assert resolve_header_style(1, partial, VALID_STYLES).font == "Georgia"
        assert resolve_header_style(1, partial).font == "Outfit"

    def test_validation(self):
        from wordgen.styles import validate_header_styles

        assert validate_header_styles(VALID_STYLES)
        bad_size = dict(VALID_STYLES, h2=dict(VALID_STYLES["h2"], size=100))
        bad_color = dict(VALID_STYLES, h3=dict(VALID_STYLES["h3"], color="red"))
        assert not validate_header_styles(bad_size)
        assert not validate_header_styles(bad_color)
        assert not validate_header_styles(None)


# ── Hierarchy tests ─────────────────────────────────────────────────


def _shape(roots):
    return [(n.section.section_id, _shape(n.children)) for n in roots]


class TestHierarchy:
    def test_children_in_input_order(self):
        from wordgen.hierarchy import build_hierarchy

        roots = build_hierarchy([
            section("c1", parent="p"),
            section("p"),
            section("c2", parent="p"),
            section("q"),
        ])
        assert _shape(roots) == [("p", [("c1", []), ("c2", [])]), ("q", [])]

    def test_orphan_becomes_root_once(self):
        from wordgen.hierarchy import build_hierarchy

        roots = build_hierarchy([section("a"), section("b", parent="missing")])
        assert _shape(roots) == [("a", []), ("b", [])]

    def test_cycle_broken_at_first_member(self):
        from wordgen.hierarchy import build_hierarchy

        roots = build_hierarchy([
            section("x"),
            section("a", parent="b"),
            section("b", parent="a"),
        ])
        assert _shape(roots) == [("x", []), ("a", [("b", [])])]

    def test_self_parent(self):
        from wordgen.hierarchy import build_hierarchy

        roots = build_hierarchy([section("a", parent="a")])
        assert _shape(roots) == [("a", [])]

    def test_duplicate_ids_all_rendered(self):
        from wordgen.hierarchy import build_hierarchy

        roots = build_hierarchy([section("d"), section("d"), section("k", parent="d")])
        assert _shape(roots) == [("d", [("k", [])]), ("d", [])]
        assert roots[1].position == 1

    def test_every_section_once_and_stable(self):
        from wordgen.hierarchy import build_hierarchy

        sections = [
            section("a", parent="c"),
            section("b", parent="a"),
            section("c", parent="b"),
            section("d", parent="zz"),
            section("e", parent="d"),
        ]
        first = build_hierarchy(sections)
        positions = sorted(node.position for root in first for node in root.walk())
        assert positions == [0, 1, 2, 3, 4]
        assert _shape(build_hierarchy(sections)) == _shape(first)


# ── Content renderer tests ──────────────────────────────────────────


class TestContentRenderer:
    def _renderer(self, images=None):
        from wordgen.content import ContentRenderer

        return ContentRenderer(images)

    def test_paragraph(self):
        assert self._renderer().render(ContentItem("paragraph", text="Hi")) == [TextNode("Hi")]
        assert self._renderer().render(ContentItem("paragraph", text="")) == []

    def test_listing(self):
        nodes = self._renderer().render(ContentItem("listing", items=["a", "b"]))
        assert [n.text for n in nodes] == ["a", "b"]
        assert all(isinstance(n, BulletNode) and n.level == 0 for n in nodes)
        assert {n.reference for n in nodes} == {"my-listing-with-bullet-points"}

    def test_table_rows_render_as_given(self):
        item = ContentItem(
            "table",
            headers=["H1", "H2"],
            rows=[TableRow(["a"]), TableRow(["b", "c", "d"])],
        )
        (table,) = self._renderer().render(item)
        assert table.header == ["H1", "H2"]
        assert table.rows == [["a"], ["b", "c", "d"]]
        assert table.column_count == 3

    def test_table_without_headers(self):
        (table,) = self._renderer().render(ContentItem("table", headers=[], rows=[TableRow(["x"])]))
        assert table.header is None

    def test_breaks_and_empty_lines(self):
        assert self._renderer().render(ContentItem("pageBreak")) == [PageBreakNode()]
        assert self._renderer().render(ContentItem("emptyLine")) == [EmptyLineNode()]

    def test_image_success(self):
        images = FakeImages(b"img")
        nodes = self._renderer(images).render(ContentItem("image", url="http://x/a.png", width=120))
        assert nodes == [ImageNode(data=b"img", width=120, height=300)]
        assert images.urls == ["http://x/a.png"]

    def test_image_failure_placeholder(self):
        from wordgen.content import ItemStatus

        result = self._renderer(FakeImages(None)).render_item(ContentItem("image", url="http://x/a.png"))
        assert result.nodes == [PlaceholderNode("<place image here>")]
        assert result.status is ItemStatus.RECOVERED

    def test_image_without_url(self):
        assert self._renderer(FakeImages(b"img")).render(ContentItem("image")) == []

    def test_unsupported_type(self):
        assert self._renderer().render(ContentItem("quiz")) == [PlaceholderNode("Unsupported content type.")]

    def test_failure_is_contained(self):
        from wordgen.content import ItemStatus

        result = self._renderer().render_item(ContentItem("listing", items=None, text="x"))
        assert result.status is ItemStatus.SKIPPED

        class Exploding:
            def fetch_and_resize(self, url):
                raise RuntimeError("boom")

        nodes = self._renderer(Exploding()).render(ContentItem("image", url="http://x"))
        assert nodes == [PlaceholderNode("<place image here>")]

    def test_footnote_attached_to_last_node(self):
        nodes = self._renderer().render(ContentItem("listing", items=["a", "b"]), footnote_id=4)
        assert [n.footnote_id for n in nodes] == [None, 4]

    def test_footnote_on_textless_item_gets_empty_paragraph(self):
        assert self._renderer().render(ContentItem("pageBreak"), footnote_id=1) == [
            PageBreakNode(), TextNode("", footnote_id=1),
        ]
        table = self._renderer().render(ContentItem("table", rows=[TableRow(["x"])]), footnote_id=2)
        assert isinstance(table[0], TableNode)
        assert table[1] == TextNode("", footnote_id=2)

    def test_footnote_on_failed_item_gets_empty_paragraph(self):
        from wordgen.content import ContentRenderer, ItemStatus

        class Failing(ContentRenderer):
            def _render_paragraph(self, item):
                raise RuntimeError("boom")

        result = Failing().render_item(ContentItem("paragraph", text="x"), footnote_id=3)
        assert result.status is ItemStatus.FAILED
        assert result.nodes == [TextNode("", footnote_id=3)]


# ── Section renderer tests ──────────────────────────────────────────


class TestSectionRenderer:
    def _render(self, sections, config=None, footnotes=None):
        from wordgen.content import ContentRenderer
        from wordgen.hierarchy import build_hierarchy
        from wordgen.sections import SectionRenderer

        renderer = SectionRenderer(ContentRenderer(FakeImages(None)), footnotes)
        nodes = []
        for root in build_hierarchy(sections):
            nodes.extend(renderer.render(root, config or RenderConfig()))
        return nodes

    def test_parent_before_children(self):
        nodes = self._render([
            section("child", "Child", level=2, parent="top"),
            section("top", "Top", content=[ContentItem("paragraph", text="body")]),
        ])
        assert [type(n) for n in nodes] == [HeadingNode, TextNode, HeadingNode]
        assert [n.text for n in nodes] == ["Top", "body", "Child"]
        assert nodes[2].level == 2

    def test_numbered_heading_follows_content(self):
        config = RenderConfig(numbering_reference="decimal-numbering")
        nodes = self._render([
            section("a", "A", content=[ContentItem("paragraph", text="x")]),
            section("b", "B", level=7, parent="a"),
        ], config)
        numbered = [n for n in nodes if isinstance(n, NumberedHeadingNode)]
        assert isinstance(nodes[2], NumberedHeadingNode)
        assert [(n.text, n.level) for n in numbered] == [("A", 0), ("B", 3)]

    def test_untitled_section(self):
        nodes = self._render([section("a", content=[ContentItem("emptyLine")])],
                             RenderConfig(numbering_reference="decimal-numbering"))
        assert nodes == [EmptyLineNode()]

    def test_failed_image_keeps_siblings(self):
        nodes = self._render([section("a", "A", content=[
            ContentItem("paragraph", text="before"),
            ContentItem("image", url="http://x/broken.png"),
            ContentItem("paragraph", text="after"),
        ])])
        assert [getattr(n, "text", None) for n in nodes] == ["A", "before", "<place image here>", "after"]

    def test_styled_heading(self):
        nodes = self._render([section("a", "A", level=2)], RenderConfig(header_styles=VALID_STYLES))
        assert nodes[0].style.font == "Georgia"
        assert nodes[0].style.color == "445566"

    def test_style_failure_falls_back(self, monkeypatch):
        import wordgen.sections

        def broken(*args, **kwargs):
            raise RuntimeError("bad styles")

        monkeypatch.setattr(wordgen.sections, "resolve_header_style", broken)
        nodes = self._render([section("a", "A")])
        assert nodes == [HeadingNode(text="A", level=1, style=None)]

    def test_footnotes_looked_up_by_position(self):
        sections = [
            section("a", "A", content=[ContentItem("paragraph", text="x", footnote="n1")]),
            section("b", "B", parent="a", content=[ContentItem("paragraph", text="y", footnote="n2")]),
        ]
        nodes = self._render(sections, footnotes=FootnoteTable.collect(sections))
        assert [n.footnote_id for n in nodes if isinstance(n, TextNode)] == [1, 2]


# ── Assembler tests ─────────────────────────────────────────────────


class TestAssembler:
    def test_minimal_request(self, tmp_path):
        from wordgen.assembler import generate

        assembler = make_assembler(tmp_path)
        name = generate(
            "Report",
            sections=[{"sectionId": "a", "heading": "Intro",
                       "content": [{"type": "paragraph", "text": "Hello"}]}],
            assembler=assembler,
        )
        path = assembler.store.path_for(name)
        assert path.is_file()

        doc = open_docx(str(path))
        texts = [p.text for p in doc.paragraphs if p.text]
        assert texts == ["Report", "Intro", "Hello"]

        intro = next(p for p in doc.paragraphs if p.text == "Intro")
        run = intro.runs[0]
        assert run.font.size == Pt(14)
        assert run.font.name == "Outfit"
        assert run.bold is True

    def test_control_character_keeps_siblings(self, tmp_path):
        payload = {
            "title": "Feeds",
            "sections": [{"sectionId": "a", "heading": "A", "content": [
                {"type": "paragraph", "text": "good one"},
                {"type": "paragraph", "text": "bad\x0cpage feed"},
                {"type": "paragraph", "text": "good two"},
            ]}],
        }
        assembler = make_assembler(tmp_path)
        result = assembler.run(DocumentRequest.from_dict(payload, assembler.settings))

        assert result.degraded is False
        texts = [p.text for p in open_docx(str(result.path)).paragraphs if p.text]
        assert texts == ["Feeds", "A", "good one", "badpage feed", "good two"]

    def test_numeric_heading_and_text(self, tmp_path):
        from wordgen.assembler import generate

        assembler = make_assembler(tmp_path)
        name = generate(
            2024,
            sections=[{"sectionId": "a", "heading": 2024,
                       "content": [{"type": "paragraph", "text": 42}]}],
            assembler=assembler,
        )
        doc = open_docx(str(assembler.store.path_for(name)))
        assert [p.text for p in doc.paragraphs if p.text] == ["2024", "2024", "42"]

    def test_footnote_on_table_is_referenced(self, tmp_path):
        payload = {
            "title": "T",
            "sections": [{"sectionId": "a", "content": [
                {"type": "table", "rows": [{"cells": [{"text": "x"}]}], "footnote": "Source: survey"},
                {"type": "pageBreak", "footnote": "After the break"},
            ]}],
        }
        assembler = make_assembler(tmp_path)
        result = assembler.run(DocumentRequest.from_dict(payload, assembler.settings))

        doc = open_docx(str(result.path))
        assert doc.element.body.xml.count("w:footnoteReference") == 2
        footnotes = doc.part.part_related_by(RT.FOOTNOTES).blob
        assert b"Source: survey" in footnotes
        assert b"After the break" in footnotes

    def test_artifact_name(self, tmp_path):
        import re

        assembler = make_assembler(tmp_path)
        request = DocumentRequest(title="T", sections=[section("a", "A")])
        first = assembler.assemble(request)
        second = assembler.assemble(request)
        assert re.fullmatch(r"word-file-\d{17}\.docx", first)
        assert first != second

    def test_generate_requires_sections(self, tmp_path):
        from wordgen.assembler import generate

        with pytest.raises(ValueError, match="Sections is required"):
            generate("T", sections=[], assembler=make_assembler(tmp_path))

    def test_sample_tree(self, tmp_path):
        assembler = make_assembler(tmp_path)
        request = DocumentRequest.from_dict(load_sample(), assembler.settings)
        tree = assembler.build_tree(request)

        assert tree.nodes[0] == TitleNode("Quarterly Proposal")
        assert isinstance(tree.nodes[1], TocNode)
        assert [p.reference for p in tree.numbering] == [
            "my-listing-with-bullet-points", "decimal-numbering",
        ]
        assert tree.footnotes == {1: "Figures are estimates."}
        assert tree.footer.show_page_number is True
        assert tree.footer.alignment is Alignment.CENTER
        assert tree.page.margins.left == 720
        assert tree.style_sheet.line_height == 360
        assert tree.summary() == {
            "headings": 3,
            "paragraphs": 2,
            "list_items": 3,
            "tables": 1,
            "images": 0,
            "placeholders": 1,
            "page_breaks": 1,
            "footnotes": 1,
        }

        headings = [n.text for n in tree.nodes if isinstance(n, HeadingNode)]
        assert headings == ["Introduction", "Budget", "Next steps"]
        numbered = [(n.text, n.level) for n in tree.nodes if isinstance(n, NumberedHeadingNode)]
        assert numbered == [("Introduction", 0), ("Budget", 1), ("Next steps", 0)]

    def test_no_toc_and_no_footer_by_default(self, tmp_path):
        tree = make_assembler(tmp_path).build_tree(DocumentRequest(title="T", sections=[section("a", "A")]))
        assert not any(isinstance(n, TocNode) for n in tree.nodes)
        assert tree.header is None
        assert tree.footer is None
        assert [p.reference for p in tree.numbering] == ["my-listing-with-bullet-points"]

    def test_page_number_footer_without_text(self, tmp_path):
        request = DocumentRequest(title="T", sections=[section("a")],
                                  config=RenderConfig(show_page_number=True))
        tree = make_assembler(tmp_path).build_tree(request)
        assert tree.footer.text is None
        assert tree.footer.show_page_number is True

    def test_failure_saves_title_only_document(self, tmp_path):
        from wordgen.writer import DocxWriter

        class FlakyWriter(DocxWriter):
            def serialize(self, tree):
                if not tree.degraded:
                    raise RuntimeError("serializer exploded")
                return super().serialize(tree)

        assembler = make_assembler(tmp_path, writer=FlakyWriter(WordSettings()))
        result = assembler.run(DocumentRequest(title="Broken", sections=[section("a", "A")]))

        assert result.degraded is True
        assert result.path.is_file()
        doc = open_docx(str(result.path))
        assert [p.text for p in doc.paragraphs if p.text] == ["Broken"]

    def test_template_base_and_styles(self, tmp_path):
        from wordgen.templates import TemplateCatalog, TemplateRecord

        templates_dir = tmp_path / "templates"
        templates_dir.mkdir()
        make_template(templates_dir / "acme-template.dotx", as_dotx=True)
        catalog = TemplateCatalog(
            [TemplateRecord("acme", "Acme", "", "acme-template.dotx", header_styles=VALID_STYLES)],
            templates_dir,
        )
        assembler = make_assembler(tmp_path, templates=catalog)
        request = DocumentRequest(title="T", sections=[section("a", "A")],
                                  config=RenderConfig(template="acme"))

        tree = assembler.build_tree(request)
        assert tree.base_document is not None
        assert tree.nodes[1].style.font == "Georgia"

        result = assembler.run(request)
        texts = [p.text for p in open_docx(str(result.path)).paragraphs]
        assert "Template body" not in texts
        assert "A" in texts

    def test_missing_template_uses_blank_document(self, tmp_path):
        from wordgen.templates import TemplateCatalog, TemplateRecord

        catalog = TemplateCatalog([TemplateRecord("gone", "Gone", "", "gone.dotx")], tmp_path)
        request = DocumentRequest(title="T", sections=[section("a", "A")],
                                  config=RenderConfig(template="gone"))
        result = make_assembler(tmp_path, templates=catalog).run(request)
        assert result.degraded is False
        assert result.tree.base_document is None


# ── Writer tests ────────────────────────────────────────────────────


class TestWriter:
    def _write(self, tmp_path, payload=None, images=None):
        assembler = make_assembler(tmp_path, images=images)
        request = DocumentRequest.from_dict(payload or load_sample(), assembler.settings)
        result = assembler.run(request)
        return open_docx(str(result.path))

    def test_sample_document_structure(self, tmp_path):
        doc = self._write(tmp_path)
        paragraphs = doc.paragraphs

        assert paragraphs[0].text == "Quarterly Proposal"
        assert paragraphs[0].style.name == "Title"
        assert paragraphs[1].text == "Table of Contents"

        intro = next(p for p in paragraphs if p.style.name == "Heading 1")
        assert intro.text == "Introduction"
        assert intro.runs[0].font.color.rgb == RGBColor(0x1F, 0x38, 0x64)

        bullets = [p for p in paragraphs if p.text in ("Scope", "Timeline", "Budget")
                   and p._p.pPr is not None and p._p.pPr.numPr is not None]
        assert len(bullets) >= 3
        assert any(p.text == "Unsupported content type." for p in paragraphs)

    def test_table(self, tmp_path):
        doc = self._write(tmp_path)
        assert len(doc.tables) == 1
        table = doc.tables[0]
        assert [c.text for c in table.rows[0].cells] == ["Item", "Cost"]
        assert [c.text for c in table.rows[2].cells] == ["Build", "4000"]
        assert "w:tblHeader" in table.rows[0]._tr.xml

    def test_fields_and_footnotes(self, tmp_path):
        doc = self._write(tmp_path)
        body = doc.element.body.xml
        assert 'TOC \\o "1-4"' in body
        assert "w:footnoteReference" in body

        footer = doc.sections[0].footer
        assert footer.paragraphs[0].text == "Acme Corp"
        assert 'w:instr=" PAGE "' in footer._element.xml
        assert 'w:instr=" NUMPAGES "' in footer._element.xml
        assert doc.sections[0].header.paragraphs[0].text == "Confidential"

        footnotes = doc.part.part_related_by(RT.FOOTNOTES)
        assert b"Figures are estimates." in footnotes.blob

    def test_page_setup_and_defaults(self, tmp_path):
        payload = {
            "title": "Wide",
            "sections": [{"sectionId": "a", "heading": "A"}],
            "wordConfig": {"pageOrientation": "landscape", "margins": "narrow",
                           "fontFamily": "Calibri", "fontSize": 11},
        }
        doc = self._write(tmp_path, payload)
        sec = doc.sections[0]
        assert sec.orientation == WD_ORIENT.LANDSCAPE
        assert sec.page_width > sec.page_height
        assert sec.left_margin == Twips(720)
        assert doc.styles["Normal"].font.name == "Calibri"
        assert doc.styles["Normal"].font.size.pt == 11

    def test_image_embedded_at_requested_size(self, tmp_path):
        payload = {
            "title": "Pics",
            "sections": [{"sectionId": "a", "content": [
                {"type": "image", "url": "http://x/a.png", "width": 200, "height": 100, "alt": "Chart"},
            ]}],
        }
        doc = self._write(tmp_path, payload, images=FakeImages(png_bytes()))
        assert len(doc.inline_shapes) == 1
        assert doc.inline_shapes[0].width == Emu(200 * 9525)
        assert doc.inline_shapes[0].height == Emu(100 * 9525)

    def test_unreadable_image_becomes_placeholder(self):
        from wordgen.writer import DocxWriter

        tree = DocumentTree(title="T", nodes=[ImageNode(data=b"not an image")])
        doc = DocxWriter(WordSettings()).build_document(tree)
        assert [p.text for p in doc.paragraphs] == ["<place image here>"]

    def test_failing_node_becomes_placeholder(self):
        from wordgen.writer import DocxWriter

        tree = DocumentTree(title="T", nodes=[
            TextNode("good one"), TextNode("bad\x0cpage feed"), TextNode("good two"),
        ])
        doc = DocxWriter(WordSettings()).build_document(tree)
        assert [p.text for p in doc.paragraphs if p.text] == [
            "good one", "Unsupported content type.", "good two",
        ]

    def test_empty_table_skipped(self):
        from wordgen.writer import DocxWriter

        tree = DocumentTree(title="T", nodes=[TableNode(header=None, rows=[])])
        doc = DocxWriter(WordSettings()).build_document(tree)
        assert len(doc.tables) == 0


# ── Template tests ──────────────────────────────────────────────────


class TestTemplates:
    def test_catalog_from_settings(self):
        from wordgen.templates import TemplateCatalog

        catalog = TemplateCatalog.from_settings(WordSettings())
        ids = [r.id for r in catalog.available()]
        assert ids[0] == "default"
        assert "datahive" in ids
        assert catalog.default().id == "default"
        assert catalog.get("nope") is None

    def test_load_docx_and_dotx(self, tmp_path):
        from wordgen.templates import TemplateCatalog, TemplateRecord

        make_template(tmp_path / "plain.docx", text="Plain")
        make_template(tmp_path / "tpl.dotx", text="Dotx", as_dotx=True)
        catalog = TemplateCatalog(
            [TemplateRecord("plain", "Plain", "", "plain.docx"),
             TemplateRecord("tpl", "Tpl", "", "tpl.dotx")],
            tmp_path,
        )
        assert catalog.load_document("plain").paragraphs[0].text == "Plain"
        assert catalog.load_document("tpl").paragraphs[0].text == "Dotx"

    def test_unavailable_templates(self, tmp_path):
        from wordgen.templates import TemplateCatalog, TemplateRecord

        (tmp_path / "broken.dotx").write_bytes(b"not a zip")
        catalog = TemplateCatalog(
            [TemplateRecord("missing", "M", "", "missing.dotx"),
             TemplateRecord("broken", "B", "", "broken.dotx")],
            tmp_path,
        )
        assert catalog.load_document("unknown") is None
        assert catalog.load_document("missing") is None
        assert catalog.load_document("broken") is None
        with pytest.raises(KeyError):
            catalog.file_path("unknown")


# ── Image tests ─────────────────────────────────────────────────────


class TestImages:
    def test_large_image_shrunk_into_box(self):
        from wordgen.images import ImageFetcher

        session = FakeSession(FakeResponse(png_bytes((1600, 1200))))
        data = ImageFetcher(session=session).fetch_and_resize("http://x/big.png")
        assert Image.open(io.BytesIO(data)).size == (800, 600)
        assert session.headers["User-Agent"] == "wordgen/1.0"

    def test_small_image_not_enlarged(self):
        from wordgen.images import ImageFetcher

        session = FakeSession(FakeResponse(png_bytes((100, 50))))
        data = ImageFetcher(session=session).fetch_and_resize("http://x/small.png")
        assert Image.open(io.BytesIO(data)).size == (100, 50)

    def test_oversize_download_rejected(self):
        from wordgen.images import ImageFetcher

        body = png_bytes((100, 50))
        assert ImageFetcher(max_bytes=10, session=FakeSession(FakeResponse(body))).fetch_and_resize("http://x") is None
        declared = FakeResponse(body, headers={"Content-Length": str(10 ** 9)})
        assert ImageFetcher(session=FakeSession(declared)).fetch_and_resize("http://x") is None

    def test_network_and_decode_failures(self):
        from wordgen.images import ImageFetcher

        assert ImageFetcher(session=FakeSession(requests.ConnectionError("down"))).fetch_and_resize("http://x") is None
        assert ImageFetcher(session=FakeSession(FakeResponse(b"", status=404))).fetch_and_resize("http://x") is None
        assert ImageFetcher(session=FakeSession(FakeResponse(b"garbage"))).fetch_and_resize("http://x") is None


# ── Storage tests ───────────────────────────────────────────────────


class TestStorage:
    def test_persist_and_sweep(self, tmp_path):
        from wordgen.storage import ExportStore

        store = ExportStore(tmp_path / "exports")
        old = store.persist("word-file-old.docx", b"old")
        store.persist("word-file-new.docx", b"new")
        now = time.time()
        os.utime(old, (now - 7200, now - 7200))

        removed = store.sweep(now=now)
        assert removed == ["word-file-old.docx"]
        assert not store.exists("word-file-old.docx")
        assert store.exists("word-file-new.docx")

    def test_sweep_missing_directory(self, tmp_path):
        from wordgen.storage import ExportStore

        assert ExportStore(tmp_path / "nowhere").sweep() == []

    def test_rejects_paths(self, tmp_path):
        from wordgen.storage import ExportStore

        with pytest.raises(ValueError):
            ExportStore(tmp_path).path_for("../escape.docx")


# ── CLI tests ───────────────────────────────────────────────────────


class TestCli:
    def test_generate_from_request(self, tmp_path, monkeypatch, capsys):
        import main

        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("RENDER_EXTERNAL_URL", raising=False)
        main.main([str(FIXTURES_DIR / "sample_request.json"), "-o", str(tmp_path / "out")])

        out = capsys.readouterr().out
        assert "Download URL: http://localhost:3000/word-generator/downloads/word-file-" in out
        assert len(list((tmp_path / "out").glob("word-file-*.docx"))) == 1

    def test_missing_request_exits_1(self, tmp_path, monkeypatch):
        import main

        monkeypatch.chdir(tmp_path)
        with pytest.raises(SystemExit) as exc:
            main.main([str(tmp_path / "nope.json")])
        assert exc.value.code == 1

    def test_request_without_sections_exits_1(self, tmp_path, monkeypatch):
        import main

        monkeypatch.chdir(tmp_path)
        request = tmp_path / "empty.json"
        request.write_text(json.dumps({"title": "T", "sections": []}), encoding="utf-8")
        with pytest.raises(SystemExit) as exc:
            main.main([str(request), "-o", str(tmp_path / "out")])
        assert exc.value.code == 1

    def test_download_url(self, monkeypatch):
        import main

        monkeypatch.setenv("RENDER_EXTERNAL_URL", "https://docs.example.com/")
        assert main.download_url("f.docx") == "https://docs.example.com/word-generator/downloads/f.docx"
        assert main.download_url("f.docx", "http://h") == "http://h/word-generator/downloads/f.docx"
