"""Test suite for the summary renderer.

Tests cover models, sanitizer, design system, styles, numbering, the tree
renderer and end-to-end document builds.
"""

from __future__ import annotations

import asyncio
import base64
import io
import json

import pytest
from docx import Document as open_docx
from docx.shared import Emu, Pt, Twips

from nts.builder import SummaryBuilder, build_summary
from nts.exceptions import SerializationError
from nts.models import Duration, Leaf, Mark, Node, ProjectRecord, parse_rich_text
from nts.numbering import NumberingAllocator
from nts.renderer import TreeRenderer
from nts.sanitizer import strip_invalid_xml_chars
from nts.styles import DesignSystem, StyleRegistry

PNG_1X1 = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


# ── Tree builders ───────────────────────────────────────────────────


def text(value: str, *marks: str) -> dict:
    return {
        "object": "text",
        "leaves": [{"text": value, "marks": [{"type": m} for m in marks]}],
    }


def block(type_: str, *nodes: dict, **data) -> dict:
    return {"object": "block", "type": type_, "data": data, "nodes": list(nodes)}


def para(*values: str) -> dict:
    return block("paragraph", *(text(v) for v in values))


def item(*nodes: dict) -> dict:
    return block("list-item", *nodes)


def rich(*nodes: dict) -> str:
    return json.dumps({"document": {"nodes": list(nodes)}})


def project(**data) -> dict:
    return {"project": {"title": "Mouse models of ageing"}, "data": data}


def num_pr(paragraph) -> tuple[int, int] | None:
    p_pr = paragraph._p.pPr
    if p_pr is None or p_pr.numPr is None:
        return None
    return p_pr.numPr.numId.val, p_pr.numPr.ilvl.val


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def design():
    return DesignSystem()


@pytest.fixture
def document():
    return open_docx()


@pytest.fixture
def styles(document, design):
    registry = StyleRegistry(design)
    registry.register_all(document)
    return registry


@pytest.fixture
def allocator(document, design):
    return NumberingAllocator(document, design.get_list_config())


@pytest.fixture
def renderer(styles, allocator, design):
    return TreeRenderer(styles, allocator, design)


def _render(renderer, document, *nodes: dict) -> list:
    before = len(document.paragraphs)
    for raw in nodes:
        renderer.render(document, Node.from_dict(raw))
    return document.paragraphs[before:]


# ── Model tests ─────────────────────────────────────────────────────


class TestModels:
    def test_node_from_dict(self):
        node = Node.from_dict(block("paragraph", text("hi", "bold", "italic")))
        assert node.type == "paragraph"
        assert len(node.nodes) == 1
        leaves = list(node.iter_leaves())
        assert leaves == [Leaf("hi", frozenset({Mark.BOLD, Mark.ITALIC}))]

    def test_marks_as_strings_and_aliases(self):
        leaf = Leaf.from_dict({"text": "x", "marks": ["bold", "underline", "strike"]})
        assert leaf.marks == frozenset({Mark.BOLD, Mark.UNDERLINE})

    def test_flattened_text_node(self):
        node = Node.from_dict({"object": "text", "text": "flat", "marks": ["italic"]})
        assert node.is_text
        assert list(node.iter_leaves()) == [Leaf("flat", frozenset({Mark.ITALIC}))]

    def test_inline_wrapper_leaves_are_flattened(self):
        node = Node.from_dict(block("paragraph", {
            "object": "inline", "type": "link", "nodes": [text("linked")],
        }))
        assert [leaf.text for leaf in node.iter_leaves()] == ["linked"]

    def test_first_text_falls_back_to_flat_text(self):
        nested = Node.from_dict(block("heading-one", text("Nested")))
        flat = Node.from_dict(block("heading-one", {"object": "text", "text": "Flat"}))
        empty = Node.from_dict(block("heading-one"))
        assert nested.first_text() == "Nested"
        assert flat.first_text() == "Flat"
        assert empty.first_text() == ""

    def test_span_parsing(self):
        assert Node(data={"rowSpan": "3"}).row_span == 3
        assert Node(data={"colSpan": 0}).col_span == 0
        assert Node(data={"colSpan": "2px"}).col_span == 2
        assert Node(data={"colSpan": "x"}).col_span is None
        assert Node(data={"rowSpan": -1}).row_span is None
        assert Node().row_span is None

    def test_parse_rich_text(self):
        nodes = parse_rich_text(rich(para("a"), para("b")))
        assert [n.type for n in nodes] == ["paragraph", "paragraph"]
        assert parse_rich_text(None) == []
        assert parse_rich_text("") == []
        assert parse_rich_text("{not json") == []
        assert parse_rich_text("[1, 2]") == []
        assert parse_rich_text({"document": {"nodes": [para("c")]}})[0].type == "paragraph"

    def test_duration_label(self):
        assert Duration(1, 1).label() == "1 Year 1 Month"
        assert Duration(2, 0).label() == "2 Years 0 Months"
        assert Duration.from_value(None) is None
        assert Duration.from_value({"years": 3}).label() == "3 Years 0 Months"

    def test_project_purposes(self):
        record = ProjectRecord.from_dict(project(**{
            "purpose": ["purpose-a", "purpose-c"],
            "purpose-b": "",
        }))
        assert record.title == "Mouse models of ageing"
        assert record.has_purpose("a")
        assert not record.has_purpose("b")
        assert record.has_purpose("c")
        assert not record.has_purpose("d")

        record.data["purpose-b"] = ["purpose-b1"]
        assert record.has_purpose("b")


# ── Sanitizer tests ─────────────────────────────────────────────────


class TestSanitizer:
    def test_clean_text_is_unchanged(self):
        clean = "Tab\tnew\nline\r café \U0001F42D"
        assert strip_invalid_xml_chars(clean) == clean

    def test_illegal_characters_removed_in_order(self):
        dirty = "a" + chr(0) + "b" + chr(0x0B) + "c" + chr(0x1F) + "d" + chr(0xFFFE)
        assert strip_invalid_xml_chars(dirty) == "abcd"

    def test_lone_surrogate_removed(self):
        assert strip_invalid_xml_chars("x" + chr(0xD800) + "y") == "xy"

    def test_idempotent(self):
        dirty = "one" + chr(0) + "two" + chr(0x08)
        once = strip_invalid_xml_chars(dirty)
        assert strip_invalid_xml_chars(once) == once

    def test_non_string_passthrough(self):
        assert strip_invalid_xml_chars(None) is None
        assert strip_invalid_xml_chars(42) == 42


# ── Design system / style registry tests ────────────────────────────


class TestDesignSystem:
    def test_resolve_color_chain(self, design):
        assert design.resolve_color("text") == "#000000"
        assert design.resolve_color("mid_gray") == "#999999"

    def test_resolve_hex_passthrough(self, design):
        assert design.resolve_color("#FF0000") == "#FF0000"

    def test_unknown_color_raises(self, design):
        with pytest.raises(KeyError):
            design.resolve_color("nonexistent_color")

    def test_style_specs_order_and_values(self, design):
        specs = {spec.name: spec for spec in design.get_style_specs()}
        names = list(specs)
        assert names.index("Body") < names.index("Aside")
        assert specs["Heading 1"].size == 36
        assert specs["Heading 1"].bold is True
        assert specs["Aside"].italic is True
        assert specs["Aside"].color == "#999999"
        assert specs["Aside"].base_style == "Body"
        assert specs["Body"].font == "Helvetica"

    def test_usable_width(self, design):
        assert design.usable_width == 11906 - 2 * 1440

    def test_theme_overlay(self, tmp_path):
        theme = tmp_path / "theme.yaml"
        theme.write_text(
            "typography:\n  font: Arial\nstyles:\n  Body:\n    size: 22\n",
            encoding="utf-8",
        )
        ds = DesignSystem(theme_path=theme)
        specs = {spec.name: spec for spec in ds.get_style_specs()}
        assert specs["Body"].size == 22
        assert specs["Body"].spacing_after == 200
        assert specs["Heading 2"].font == "Arial"

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DesignSystem(config_path=tmp_path / "missing.yaml")

    def test_non_mapping_config(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            DesignSystem(config_path=path)

    def test_component_style(self, design):
        assert design.get_component_style("table")["border_color"] == "#BFBFBF"
        with pytest.raises(KeyError):
            design.get_component_style("carousel")


class TestStyleRegistry:
    def test_styles_registered(self, document, styles):
        body = document.styles["Body"]
        assert body.font.name == "Helvetica"
        assert body.font.size == Pt(12)
        aside = document.styles["Aside"]
        assert aside.base_style.name == "Body"
        assert aside.font.italic is True
        heading = document.styles["Heading 1"]
        assert heading.font.size == Pt(18)
        assert heading.font.bold is True
        assert heading.font.name == "Helvetica"

    def test_get_and_apply(self, document, styles):
        assert styles.get("List Paragraph").spacing_before == 100
        paragraph = document.add_paragraph()
        styles.apply(paragraph, "Aside")
        assert paragraph.style.name == "Aside"

    def test_unknown_style(self, document, styles):
        with pytest.raises(KeyError):
            styles.get("Title Page")
        with pytest.raises(KeyError):
            styles.apply(document.add_paragraph(), "Title Page")


# ── Numbering tests ─────────────────────────────────────────────────


class TestNumbering:
    def test_definitions_get_distinct_ids(self, allocator):
        first = allocator.create_definition()
        second = allocator.create_definition()
        assert first.num_id != second.num_id
        assert first.abstract_id != second.abstract_id
        assert allocator.definitions == [first, second]

    def test_abstract_num_precedes_num(self, document, allocator):
        allocator.create_definition()
        numbering = document.part.numbering_part.element
        tags = [child.tag.rsplit("}", 1)[-1] for child in numbering]
        last_abstract = max(i for i, t in enumerate(tags) if t == "abstractNum")
        first_num = min(i for i, t in enumerate(tags) if t == "num")
        assert last_abstract < first_num

    def test_level_indent_grows_with_depth(self, allocator):
        levels = [allocator.ordered_level(depth) for depth in range(3)]
        indents = [level.indent for level in levels]
        assert indents == sorted(indents)
        assert len(set(indents)) == 3
        assert [level.text for level in levels] == ["%1.", "%2.", "%3."]

    def test_add_level_once_per_depth(self, allocator):
        definition = allocator.create_definition()
        assert definition.add_level(allocator.ordered_level(1)) is True
        assert definition.add_level(allocator.ordered_level(0)) is True
        assert definition.add_level(allocator.ordered_level(1)) is False
        assert sorted(definition.levels) == [0, 1]

    def test_bullet_definition_is_shared(self, allocator):
        bullet = allocator.bullet_definition()
        assert allocator.bullet_definition() is bullet
        assert sorted(bullet.levels) == list(range(9))
        assert all(level.num_format == "bullet" for level in bullet.levels.values())

    def test_attach(self, document, allocator):
        definition = allocator.create_definition()
        paragraph = document.add_paragraph()
        allocator.attach(paragraph, definition, 2)
        assert num_pr(paragraph) == (definition.num_id, 2)


# ── Renderer tests ──────────────────────────────────────────────────


class TestRenderer:
    def test_paragraph_with_marks(self, renderer, document):
        paragraphs = _render(renderer, document, block(
            "paragraph",
            text("plain"),
            text("both", "bold", "italic"),
            text("under", "underlined"),
            text("low", "subscript"),
            text("high", "superscript"),
        ))
        assert len(paragraphs) == 1
        runs = paragraphs[0].runs
        assert [r.text for r in runs] == ["plain", "both", "under", "low", "high"]
        assert runs[0].bold is None and runs[0].italic is None
        assert runs[1].bold is True and runs[1].italic is True
        assert runs[2].underline is True
        assert runs[3].font.subscript is True
        assert runs[4].font.superscript is True
        assert paragraphs[0].style.name == "Body"

    def test_text_is_sanitized_and_empty_runs_dropped(self, renderer, document):
        paragraphs = _render(renderer, document, block(
            "paragraph", text("a" + chr(0) + "b"), text(chr(1)), text(""),
        ))
        assert [r.text for r in paragraphs[0].runs] == ["ab"]

    def test_headings_and_quote(self, renderer, document):
        paragraphs = _render(
            renderer, document,
            block("heading-one", text("  Title  ")),
            block("heading-two", {"object": "text", "text": "Sub"}),
            block("block-quote", text("Aside text", "bold")),
        )
        assert [p.text for p in paragraphs] == ["Title", "Sub", "Aside text"]
        assert [p.style.name for p in paragraphs] == ["Heading 1", "Heading 2", "Aside"]
        assert paragraphs[2].runs[0].bold is None

    def test_nested_numbered_list(self, renderer, document, allocator):
        paragraphs = _render(renderer, document, block(
            "numbered-list",
            item(para("One")),
            item(para("Two"), block("numbered-list", item(para("Two A")))),
            item(para("Three")),
        ))
        assert [p.text for p in paragraphs] == ["One", "Two", "Two A", "Three"]

        outer, inner = allocator.definitions
        assert sorted(outer.levels) == [0]
        assert sorted(inner.levels) == [1]
        assert inner.levels[1].indent > outer.levels[0].indent

        assert num_pr(paragraphs[0]) == (outer.num_id, 0)
        assert num_pr(paragraphs[1]) == (outer.num_id, 0)
        assert num_pr(paragraphs[2]) == (inner.num_id, 1)
        assert num_pr(paragraphs[3]) == (outer.num_id, 0)

    def test_bulleted_list(self, renderer, document, allocator):
        paragraphs = _render(renderer, document, block(
            "bulleted-list", item(para("a")), item(para("b")),
        ))
        bullet = allocator.bullet_definition()
        assert [num_pr(p) for p in paragraphs] == [(bullet.num_id, 0)] * 2
        assert all(p.style.name == "Body" for p in paragraphs)

    def test_list_item_children_share_one_paragraph(self, renderer, document):
        paragraphs = _render(renderer, document, block(
            "bulleted-list",
            item(para("first "), text("loose "), para("second")),
        ))
        assert len(paragraphs) == 1
        assert [r.text for r in paragraphs[0].runs] == ["first ", "loose ", "second"]

    def test_non_item_in_list_rendered_as_ordinary_node(self, renderer, document):
        paragraphs = _render(renderer, document, block("bulleted-list", para("stray")))
        assert [p.text for p in paragraphs] == ["stray"]
        assert num_pr(paragraphs[0]) is None

    def test_bare_text_node_is_wrapped(self, renderer, document):
        paragraphs = _render(renderer, document, {"object": "text", "text": "loose"})
        assert [p.text for p in paragraphs] == ["loose"]

    def test_unknown_node_without_content_is_skipped(self, renderer, document):
        assert _render(renderer, document, {"object": "block", "type": "video"}) == []

    def test_unknown_node_does_not_stop_siblings(self, renderer, document):
        paragraphs = _render(renderer, document, block(
            "bulleted-list",
            item({"object": "block", "type": "video", "nodes": [block("embed")]},
                 para("kept")),
        ))
        assert [p.text for p in paragraphs] == ["kept"]

    def test_image_from_data_uri(self, renderer, document):
        paragraphs = _render(renderer, document, {
            "object": "block", "type": "image",
            "data": {"src": PNG_1X1, "width": 100, "height": 50},
        })
        assert len(paragraphs) == 1
        shapes = document.inline_shapes
        assert len(shapes) == 1
        assert shapes[0].width == Emu(100 * 9525)
        assert shapes[0].height == Emu(50 * 9525)

    def test_unloadable_image_is_skipped(self, renderer, document):
        paragraphs = _render(renderer, document, {
            "object": "block", "type": "image",
            "data": {"src": "data:image/png;base64,bm90IGFuIGltYWdl"},
        })
        assert paragraphs == []
        assert len(document.inline_shapes) == 0

    def test_truncated_image_is_skipped(self, renderer, document):
        truncated = b"\x89PNG\r\n\x1a\n\x00\x00\x00\x0dIHDR\x00"
        src = "data:image/png;base64," + base64.b64encode(truncated).decode("ascii")
        paragraphs = _render(
            renderer, document,
            {"object": "block", "type": "image", "data": {"src": src}},
            para("after"),
        )
        assert [p.text for p in paragraphs] == ["after"]
        assert len(document.inline_shapes) == 0

    def test_custom_image_loader(self, styles, allocator, design, document):
        seen = []

        def loader(src):
            seen.append(src)
            return None

        renderer = TreeRenderer(styles, allocator, design, image_loader=loader)
        renderer.render(document, Node.from_dict({
            "object": "block", "type": "image", "data": {"src": "https://x/y.png"},
        }))
        assert seen == ["https://x/y.png"]


# ── End-to-end tests ────────────────────────────────────────────────


def _open(content: bytes):
    return open_docx(io.BytesIO(content))


class TestSummaryBuilder:
    def test_purpose_rows(self):
        content = build_summary(project(**{
            "purpose": ["purpose-a", "purpose-c"],
            "purpose-b": "",
        }))
        table = _open(content).tables[0]
        marks = [table.cell(row, 1).text.strip() for row in range(3, 11)]
        assert marks == ["X", "", "X", "", "", "", "", ""]

    def test_single_bold_paragraph_field(self):
        value = json.dumps({"document": {"nodes": [{
            "object": "block", "type": "paragraph",
            "nodes": [{"object": "text",
                       "leaves": [{"text": "Hello", "marks": ["bold"]}]}],
        }]}})
        content = build_summary(project(**{"nts-objectives": value}))
        cell = _open(content).tables[0].cell(11, 1)

        assert len(cell.paragraphs) == 1
        runs = cell.paragraphs[0].runs
        assert len(runs) == 1
        run = runs[0]
        assert run.text == "Hello"
        assert run.bold is True
        assert run.italic is None
        assert run.underline is None
        assert run.font.subscript is None
        assert run.font.superscript is None

    def test_layout(self):
        content = build_summary(project(duration={"years": 1, "months": 6}))
        table = _open(content).tables[0]
        assert len(table.rows) == 19
        assert len(table.columns) == 3

        for row in (0, 1, 2, *range(11, 19)):
            assert table.cell(row, 1)._tc is table.cell(row, 2)._tc
        for row in range(4, 11):
            assert table.cell(row, 0)._tc is table.cell(3, 0)._tc
            assert table.cell(row, 1)._tc is not table.cell(row, 2)._tc

        assert table.cell(0, 0).text == "Project"
        assert table.cell(0, 1).text == "Mouse models of ageing"
        assert table.cell(0, 1).paragraphs[0].style.name == "Heading 2"
        assert table.cell(2, 1).text == "1 Year 6 Months"
        assert table.cell(10, 2).text == "Maintenance of colonies of genetically altered animals"
        assert table.cell(16, 0).paragraphs[0].text == "1. Replacement"
        assert table.cell(16, 0).paragraphs[0].style.name == "Heading 2"

    def test_narrative_fields_render_in_value_column(self):
        content = build_summary(project(**{
            "nts-benefits": rich(block("heading-two", text("Benefits")), para("Cures")),
            "nts-refinement": rich(block("bulleted-list", item(para("gentle")))),
            "nts-numbers": "{broken",
        }))
        table = _open(content).tables[0]
        assert [p.text for p in table.cell(12, 1).paragraphs] == ["Benefits", "Cures"]
        assert table.cell(18, 1).text == "gentle"
        assert table.cell(13, 1).text == ""

    def test_table_in_narrative_field(self):
        def cell(name, **spans):
            return block("table-cell", para(name), **spans)

        value = rich(block(
            "table",
            block("table-row", cell("head", colSpan=2)),
            block("table-row", cell("l"), cell("r")),
        ))
        content = build_summary(project(**{"nts-numbers": value}))
        outer = _open(content).tables[0]
        inner = outer.cell(13, 1).tables[0]
        assert inner.cell(0, 0)._tc is inner.cell(0, 1)._tc
        assert inner.cell(0, 0).text == "head"
        assert inner.cell(1, 1).text == "r"

    def test_title_is_sanitized(self):
        content = build_summary({
            "project": {"title": "Mice" + chr(0x0B) + "models" + chr(0)},
            "data": {},
        })
        assert _open(content).tables[0].cell(0, 1).text == "Micemodels"

    def test_broken_image_still_builds(self):
        truncated = b"\x89PNG\r\n\x1a\n\x00\x00\x00\x0dIHDR\x00"
        src = "data:image/png;base64," + base64.b64encode(truncated).decode("ascii")
        value = rich({"object": "block", "type": "image", "data": {"src": src}},
                     para("Objectives"))
        content = build_summary(project(**{"nts-objectives": value}))
        assert _open(content).tables[0].cell(11, 1).text == "Objectives"

    def test_page_setup_fits_table(self):
        document = SummaryBuilder().compose(project())
        section = document.sections[0]
        assert section.page_width == Twips(11906)
        assert section.page_height == Twips(16838)
        assert section.left_margin == Twips(1440)
        assert section.right_margin == Twips(1440)

        text_width = section.page_width - section.left_margin - section.right_margin
        table = document.tables[0]
        grid_width = sum(col.w for col in table._tbl.tblGrid.gridCol_lst)
        cell_width = sum(table.cell(4, c).width for c in range(3))
        assert grid_width <= text_width
        assert cell_width <= text_width

    def test_accepts_project_record(self):
        record = ProjectRecord(title="Direct", data={})
        content = SummaryBuilder().build(record)
        assert content[:2] == b"PK"
        assert _open(content).tables[0].cell(0, 1).text == "Direct"

    def test_build_async(self):
        content = asyncio.run(SummaryBuilder().build_async(project()))
        assert content[:2] == b"PK"
        assert len(_open(content).tables) == 1

    def test_builds_do_not_share_numbering(self):
        builder = SummaryBuilder()
        record = project(**{
            "nts-objectives": rich(block("numbered-list", item(para("a")))),
        })
        first = builder.compose(record)
        second = builder.compose(record)
        first_cell = first.tables[0].cell(11, 1).paragraphs[0]
        second_cell = second.tables[0].cell(11, 1).paragraphs[0]
        assert num_pr(first_cell) == num_pr(second_cell)

    def test_serialization_failure(self, monkeypatch):
        def broken_save(self, path_or_stream):
            raise OSError("disk full")

        monkeypatch.setattr("docx.document.Document.save", broken_save)
        with pytest.raises(SerializationError, match="disk full"):
            SummaryBuilder().build(project())
