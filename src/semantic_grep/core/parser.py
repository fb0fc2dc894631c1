"""Breakpoint extraction from tree-sitter syntax trees."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Any, List, Optional, Set

from .errors import ParseError
from .grammars import GrammarRegistry
from .languages import EMBEDDED_SCRIPT_LANGS, LanguageSpec, get_language_spec
from .models import ChunkType, PointOfInterest

logger = logging.getLogger(__name__)

MAX_NESTED_DEPTH = 3
MIN_JSX_LINES = 3

_JSX_TYPES = {"jsx_element", "jsx_self_closing_element", "jsx_fragment"}
_FUNCTION_VALUE_TYPES = {"arrow_function", "function", "function_expression", "generator_function"}
_VARIABLE_DECLARATIONS = {"lexical_declaration", "variable_declaration"}
_METHOD_TYPES = {"method_definition", "method_declaration", "constructor_declaration"}
_COMMENT_PREFIXES = ("//", "#", "/*", "*", "<!--", "--")
_LANG_ATTR = re.compile(r"""\blang\s*=\s*["']?([A-Za-z]+)""")


@dataclasses.dataclass
class ParsedFile:
    """Breakpoints of one file with rows in file coordinates (0-indexed)."""

    points: List[PointOfInterest]
    comment_rows: Set[int]
    has_error: bool = False


def _line_count(node: Any) -> int:
    return node.end_point[0] - node.start_point[0] + 1


def _function_node(node: Any) -> Optional[Any]:
    if node.type in _FUNCTION_VALUE_TYPES:
        return node
    if node.type in _VARIABLE_DECLARATIONS:
        for child in node.children:
            if child.type != "variable_declarator":
                continue
            for grandchild in child.children:
                if grandchild.type in _FUNCTION_VALUE_TYPES:
                    return grandchild
    return None


def _declaration_type(node: Any, spec: LanguageSpec) -> Optional[ChunkType]:
    chunk_type = spec.nodes_of_interest.get(node.type)
    if chunk_type is None:
        return None
    if node.type in _VARIABLE_DECLARATIONS and _function_node(node) is not None:
        return ChunkType.FUNCTION
    if node.type == "decorated_definition":
        for child in node.children:
            if child.type in ("function_definition", "class_definition"):
                return spec.nodes_of_interest[child.type]
    if node.type == "expression_statement":
        if not any(c.type in ("assignment", "augmented_assignment") for c in node.children):
            return None
    return chunk_type


def _top_level_type(node: Any, spec: LanguageSpec) -> Optional[ChunkType]:
    if node.type == "export_statement":
        for child in node.children:
            if child.type != "export_statement":
                inner = _declaration_type(child, spec)
                if inner is not None:
                    return inner
        return ChunkType.EXPORT
    return _declaration_type(node, spec)


def _nested_type(node: Any, spec: LanguageSpec) -> Optional[ChunkType]:
    if spec.jsx:
        if node.type == "return_statement" and _line_count(node) >= MIN_JSX_LINES:
            for child in node.children:
                if child.type in _JSX_TYPES:
                    return ChunkType.JSX
                if child.type == "parenthesized_expression" and any(
                    c.type in _JSX_TYPES for c in child.children
                ):
                    return ChunkType.JSX
        if node.type in _JSX_TYPES and _line_count(node) >= MIN_JSX_LINES:
            return ChunkType.JSX
    if node.type in _METHOD_TYPES:
        return ChunkType.METHOD
    if node.type in spec.function_nodes or _function_node(node) is not None:
        return ChunkType.FUNCTION
    return None


def extract_points_of_interest(root: Any, spec: LanguageSpec) -> List[PointOfInterest]:
    """Walk the tree and record breakpoints.

    Depth 0 records every node type the language declares interesting.
    Depths 1-3 record only function-like nodes and multi-line JSX blocks.
    """
    points: List[PointOfInterest] = []

    def walk(node: Any, depth: int) -> None:
        for child in node.children:
            if node.type == "decorated_definition":
                # the definition starts at its first decorator
                chunk_type = None
            elif depth == 0:
                chunk_type = _top_level_type(child, spec)
            else:
                chunk_type = _nested_type(child, spec)
            if chunk_type is not None:
                points.append(PointOfInterest(child, chunk_type, child.start_point[0], depth))
            if depth < MAX_NESTED_DEPTH:
                walk(child, depth + 1)

    walk(root, 0)
    points.sort(key=lambda p: (p.line, p.depth))
    logger.debug(f"Found {len(points)} points of interest in {spec.extension} tree")
    return points


def collapse_import_runs(points: List[PointOfInterest]) -> List[PointOfInterest]:
    """Keep only the first of each run of consecutive import/export breakpoints."""
    result: List[PointOfInterest] = []
    in_run = False
    for point in sorted(points, key=lambda p: (p.line, p.depth)):
        if point.depth == 0 and point.type in (ChunkType.IMPORT, ChunkType.EXPORT):
            if not in_run:
                result.append(point)
                in_run = True
            continue
        if point.depth == 0:
            in_run = False
        result.append(point)
    return result


def _collect_comment_rows(node: Any, spec: LanguageSpec, lines: List[str], offset: int, rows: Set[int]) -> None:
    if node.type in spec.comment_nodes:
        for row in range(node.start_point[0] + offset, node.end_point[0] + offset + 1):
            if 0 <= row < len(lines) and lines[row].lstrip().startswith(_COMMENT_PREFIXES):
                rows.add(row)
        return
    for child in node.children:
        _collect_comment_rows(child, spec, lines, offset, rows)


def _script_language(script_node: Any) -> str:
    for child in script_node.children:
        if child.type == "start_tag":
            match = _LANG_ATTR.search(child.text.decode("utf-8", errors="replace"))
            if match:
                return EMBEDDED_SCRIPT_LANGS.get(match.group(1).lower(), "js")
    return "js"


class CodeParser:
    """Parses source text and returns its breakpoints and comment rows."""

    def __init__(self, registry: GrammarRegistry) -> None:
        self.registry = registry

    def _parse_tree(self, text: str, extension: str) -> Any:
        parser = self.registry.parser(extension)
        if parser is None:
            raise ParseError(f"No grammar available for .{extension}")
        try:
            tree = parser.parse(text.encode("utf-8"))
        except Exception as e:
            raise ParseError(f"Failed to parse .{extension} source: {e}") from e
        if tree is None or tree.root_node is None:
            raise ParseError(f"Parser returned no tree for .{extension} source")
        return tree

    def parse(self, text: str, extension: str) -> ParsedFile:
        spec = get_language_spec(extension)
        if spec is None:
            raise ParseError(f"Unsupported language: {extension!r}")

        tree = self._parse_tree(text, spec.extension)
        root = tree.root_node
        lines = text.split("\n")

        points = extract_points_of_interest(root, spec)
        comment_rows: Set[int] = set()
        _collect_comment_rows(root, spec, lines, 0, comment_rows)

        if spec.family == "vue":
            points = self._expand_scripts(points, lines, comment_rows)

        if root.has_error:
            logger.debug(f"Syntax errors in .{spec.extension} source, keeping partial tree")
        return ParsedFile(collapse_import_runs(points), comment_rows, root.has_error)

    def _expand_scripts(
        self, points: List[PointOfInterest], lines: List[str], comment_rows: Set[int]
    ) -> List[PointOfInterest]:
        """Replace each script section breakpoint with the breakpoints of its code."""
        expanded: List[PointOfInterest] = []
        for point in points:
            if point.type != ChunkType.SCRIPT or point.depth != 0:
                expanded.append(point)
                continue
            embedded = self._parse_script(point, lines, comment_rows)
            first = next((i for i, p in enumerate(embedded) if p.depth == 0), None)
            if first is None:
                expanded.append(point)
                continue
            # the first top-level breakpoint of the script absorbs the opening tag
            embedded[first] = dataclasses.replace(embedded[first], line=point.line)
            expanded.extend(embedded)
        expanded.sort(key=lambda p: (p.line, p.depth))
        return expanded

    def _parse_script(
        self, script: PointOfInterest, lines: List[str], comment_rows: Set[int]
    ) -> List[PointOfInterest]:
        raw = next((c for c in script.node.children if c.type == "raw_text"), None)
        if raw is None:
            return []
        sub_ext = _script_language(script.node)
        sub_spec = get_language_spec(sub_ext)
        offset = raw.start_point[0]
        source = raw.text.decode("utf-8", errors="replace")
        try:
            tree = self._parse_tree(source, sub_ext)
        except ParseError as e:
            logger.warning(f"Could not parse <script lang={sub_ext}> section: {e}")
            return []

        sub_points = extract_points_of_interest(tree.root_node, sub_spec)
        _collect_comment_rows(tree.root_node, sub_spec, lines, offset, comment_rows)
        shifted = [dataclasses.replace(p, line=p.line + offset) for p in sub_points]
        logger.debug(f"Embedded {sub_ext} script at line {offset + 1}: {len(shifted)} breakpoints")
        return shifted
