"""Tests for AST and line-based chunking."""

import pytest

from semantic_grep.core.chunking import (
    LineChunker,
    chunk_files,
    chunk_source,
    count_tokens,
    detect_chunk_type,
    merge_consecutive_variables,
)
from semantic_grep.core.grammars import GrammarRegistry
from semantic_grep.core.models import ChunkType

from conftest import make_chunk


TS_CLASS_FILE = """export class Counter {
  private count = 0;

  constructor(start: number) {
    this.count = start;
  }

  increment(): number {
    this.count += 1;
    return this.count;
  }

  reset(): void {
    this.count = 0;
  }
}

function helper(): Counter {
  return new Counter(0);
}
"""

IMPORTS_FILE = """import a from "a";
import b from "b";
import { c } from "c";
import * as d from "d";
import e from "e";

function useAll() {
  return [a, b, c, d, e];
}
"""

PY_FILE = '''"""Module docstring."""
import os
import sys


def main(argv):
    return len(argv)


class Runner:
    def run(self):
        return main(sys.argv)
'''


@pytest.fixture(scope="module")
def registry():
    return GrammarRegistry()


def _spans(result):
    return [(c.start_line, c.end_line, c.type) for c in result.chunks]


class TestAstChunker:
    def test_import_run_is_one_chunk(self, registry):
        result = chunk_source(IMPORTS_FILE, "src/use.ts", registry=registry)
        assert result.parse_success
        assert result.parse_method == "tree-sitter"
        assert _spans(result) == [
            (1, 5, ChunkType.IMPORT),
            (7, 9, ChunkType.FUNCTION),
        ]

    def test_consecutive_constants_merge(self, registry):
        text = "const a = 1;\nconst b = 2;\nconst c = 3;\n"
        result = chunk_source(text, "consts.ts", registry=registry)
        assert len(result.chunks) == 1
        chunk = result.chunks[0]
        assert chunk.type == ChunkType.VARIABLE
        assert (chunk.start_line, chunk.end_line) == (1, 3)
        assert chunk.text == "const a = 1;\nconst b = 2;\nconst c = 3;"

    def test_constants_separated_by_blank_lines_merge(self, registry):
        text = "const a = 1;\n\nconst b = 2;\n\nconst c = 3;\n"
        result = chunk_source(text, "consts.ts", registry=registry)
        assert _spans(result) == [(1, 5, ChunkType.VARIABLE)]
        assert result.chunks[0].text == "const a = 1;\n\nconst b = 2;\n\nconst c = 3;"

    def test_distant_constants_stay_apart(self, registry):
        text = "const a = 1;\n\n\n\nconst b = 2;\n"
        result = chunk_source(text, "consts.ts", registry=registry)
        assert _spans(result) == [(1, 1, ChunkType.VARIABLE), (5, 5, ChunkType.VARIABLE)]

    def test_class_within_budget_is_not_split_at_methods(self, registry):
        result = chunk_source(TS_CLASS_FILE, "counter.ts", registry=registry)
        assert _spans(result) == [
            (1, 16, ChunkType.CLASS),
            (18, 20, ChunkType.FUNCTION),
        ]

    def test_leading_content_belongs_to_first_chunk(self, registry):
        text = '"use strict";\n\nfunction run() {\n  return 1;\n}\n'
        result = chunk_source(text, "run.js", registry=registry)
        assert len(result.chunks) == 1
        assert result.chunks[0].start_line == 1
        assert result.chunks[0].type == ChunkType.FUNCTION

    def test_comment_attaches_to_following_declaration(self, registry):
        text = (
            "const base = 1;\n"
            "\n"
            "// Adds two numbers\n"
            "function add(x: number, y: number): number {\n"
            "  return x + y;\n"
            "}\n"
        )
        result = chunk_source(text, "add.ts", registry=registry)
        assert _spans(result) == [(1, 1, ChunkType.VARIABLE), (3, 6, ChunkType.FUNCTION)]
        assert result.chunks[1].text.startswith("// Adds two numbers")

    def test_arrow_function_constant_is_function(self, registry):
        text = "export const double = (x: number) => {\n  return x * 2;\n};\n"
        result = chunk_source(text, "double.ts", registry=registry)
        assert [c.type for c in result.chunks] == [ChunkType.FUNCTION]

    def test_python_file(self, registry):
        result = chunk_source(PY_FILE, "tool/main.py", registry=registry)
        assert _spans(result) == [
            (1, 3, ChunkType.IMPORT),
            (6, 7, ChunkType.FUNCTION),
            (10, 12, ChunkType.CLASS),
        ]
        assert all(c.language == "py" for c in result.chunks)

    def test_oversized_function_is_split_within_budget(self, registry):
        body = "\n".join(f"    value_{i} = compute_value({i}, factor={i * 3})" for i in range(80))
        text = f"def big():\n{body}\n    return value_0\n"
        result = chunk_source(text, "big.py", token_budget=120, registry=registry)
        assert len(result.chunks) > 1
        assert all(count_tokens(c.text) <= 120 for c in result.chunks)
        assert result.chunks[0].type == ChunkType.FUNCTION

    def test_oversized_class_keeps_decorators_with_methods(self, registry):
        methods = "\n".join(
            f"    @property\n"
            f"    def field_{i}(self):\n"
            f"        value = self.load('field_{i}', default={i})\n"
            f"        return self.convert(value, kind='field_{i}')\n"
            for i in range(12)
        )
        text = f"class Record:\n{methods}"
        result = chunk_source(text, "record.py", token_budget=120, registry=registry)

        assert len(result.chunks) > 1
        for chunk in result.chunks:
            lines = [line.strip() for line in chunk.text.split("\n") if line.strip()]
            assert not lines[-1].startswith("@")
            if lines[0].startswith("@"):
                assert lines[1].startswith("def ")

    def test_chunks_do_not_overlap_and_are_ordered(self, registry):
        result = chunk_source(TS_CLASS_FILE + "\n" + IMPORTS_FILE, "mixed.ts", registry=registry)
        chunks = result.chunks
        for prev, cur in zip(chunks, chunks[1:]):
            assert prev.end_line < cur.start_line
        assert [c.sequence_index for c in chunks] == list(range(len(chunks)))

    def test_chunk_ids(self, registry):
        result = chunk_source(IMPORTS_FILE, "src/use.ts", registry=registry)
        assert [c.id for c in result.chunks] == ["src/use.ts:1-5", "src/use.ts:7-9"]

    def test_deterministic(self, registry):
        first = chunk_source(TS_CLASS_FILE, "counter.ts", registry=registry)
        second = chunk_source(TS_CLASS_FILE, "counter.ts", registry=registry)
        assert [(c.id, c.type, c.text) for c in first.chunks] == [(c.id, c.type, c.text) for c in second.chunks]

    def test_empty_input(self, registry):
        result = chunk_source("", "empty.ts", registry=registry)
        assert result.chunks == []
        assert result.parse_success

    def test_jsx_component(self, registry):
        text = (
            "export function Button({ label }) {\n"
            "  return (\n"
            "    <button className=\"btn\">\n"
            "      {label}\n"
            "    </button>\n"
            "  );\n"
            "}\n"
        )
        result = chunk_source(text, "Button.tsx", registry=registry)
        assert len(result.chunks) == 1
        assert result.chunks[0].type == ChunkType.FUNCTION

    def test_vue_single_file_component(self, registry):
        text = (
            "<template>\n"
            "  <div>{{ msg }}</div>\n"
            "</template>\n"
            "\n"
            "<script lang=\"ts\">\n"
            "import { defineComponent } from \"vue\";\n"
            "\n"
            "export default defineComponent({\n"
            "  data() { return { msg: \"hi\" }; },\n"
            "});\n"
            "</script>\n"
            "\n"
            "<style>\n"
            "div { color: red; }\n"
            "</style>\n"
        )
        result = chunk_source(text, "Hello.vue", registry=registry)
        assert result.parse_success
        starts = [c.start_line for c in result.chunks]
        assert starts[0] == 1
        assert 5 in starts
        script = next(c for c in result.chunks if c.start_line == 5)
        assert script.text.startswith("<script")
        assert result.chunks[-1].type == ChunkType.CSS


class TestFallback:
    def test_grammar_failure_falls_back_to_lines(self):
        def broken_loader(name):
            raise RuntimeError("grammar missing")

        result = chunk_source(TS_CLASS_FILE, "counter.ts", registry=GrammarRegistry(loader=broken_loader))
        assert result.parse_method == "fallback"
        assert result.error
        assert result.chunks
        assert result.chunks[0].start_line == 1

    def test_unsupported_extension_uses_line_chunker(self):
        result = chunk_source("first line\nsecond line\n", "notes.txt")
        assert result.parse_method == "fallback"
        assert result.error is None
        assert len(result.chunks) == 1
        assert result.chunks[0].type == ChunkType.BLOCK

    def test_line_chunker_trims_blank_edges(self):
        result = LineChunker().chunk("\n\nvalue\n\n", "txt", 100, file_path="a.txt")
        assert [(c.start_line, c.end_line) for c in result.chunks] == [(3, 3)]


class TestHeuristics:
    @pytest.mark.parametrize("text,extension,expected", [
        ("def handler(event):\n    pass", "py", ChunkType.FUNCTION),
        ("class Foo:\n    pass", "py", ChunkType.CLASS),
        ("from os import path", "py", ChunkType.IMPORT),
        ("interface Props {\n  label: string;\n}", "ts", ChunkType.INTERFACE),
        ("export default router;", "ts", ChunkType.EXPORT),
        ("export function Card() {\n  return <div />;\n}", "tsx", ChunkType.COMPONENT),
        ("fn main() {}", "rs", ChunkType.FUNCTION),
        ("x + y", "ts", ChunkType.BLOCK),
    ])
    def test_detect_chunk_type(self, text, extension, expected):
        assert detect_chunk_type(text, extension) == expected


def test_merge_consecutive_variables_respects_gap():
    lines = ["const a = 1;", "", "", "const b = 2;", "", "", "", "const c = 3;"]
    chunks = [
        make_chunk("v.ts", 1, lines[0], chunk_type=ChunkType.VARIABLE, language="ts"),
        make_chunk("v.ts", 4, lines[3], chunk_type=ChunkType.VARIABLE, language="ts"),
        make_chunk("v.ts", 8, lines[7], chunk_type=ChunkType.VARIABLE, language="ts"),
    ]
    merged = merge_consecutive_variables(chunks, lines)
    assert [(c.start_line, c.end_line) for c in merged] == [(1, 4), (8, 8)]
    assert merged[0].text == "const a = 1;\n\n\nconst b = 2;"


def test_chunk_files_keeps_input_order():
    files = [(f"f{i}.py", f"def f{i}():\n    return {i}\n") for i in range(6)]
    results = chunk_files(files, max_workers=3)
    assert [r.chunks[0].file_path for r in results] == [f"f{i}.py" for i in range(6)]
