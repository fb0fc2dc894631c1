"""Per-language tables used by the parser and the chunker.

Each supported extension maps to a ``LanguageSpec``: the tree-sitter grammar
that parses it, the top-level node types that start a chunk, the node types
that count as functions when nested, and the comment node types.
Supporting a new language means adding an entry here.
"""

from __future__ import annotations

import dataclasses
import os
from typing import Dict, FrozenSet, Optional

from .models import ChunkType


@dataclasses.dataclass(frozen=True)
class LanguageSpec:
    extension: str
    grammar: str
    family: str
    nodes_of_interest: Dict[str, ChunkType]
    function_nodes: FrozenSet[str] = frozenset()
    comment_nodes: FrozenSet[str] = frozenset({"comment"})
    jsx: bool = False


_JS_NODES: Dict[str, ChunkType] = {
    "import_statement": ChunkType.IMPORT,
    "export_statement": ChunkType.EXPORT,
    "class_declaration": ChunkType.CLASS,
    "function_declaration": ChunkType.FUNCTION,
    "generator_function_declaration": ChunkType.FUNCTION,
    "lexical_declaration": ChunkType.VARIABLE,
    "variable_declaration": ChunkType.VARIABLE,
}

_TS_NODES: Dict[str, ChunkType] = {
    **_JS_NODES,
    "abstract_class_declaration": ChunkType.CLASS,
    "function_signature": ChunkType.FUNCTION,
    "interface_declaration": ChunkType.INTERFACE,
    "type_alias_declaration": ChunkType.TYPE,
    "enum_declaration": ChunkType.TYPE,
    "module": ChunkType.NAMESPACE,
    "internal_module": ChunkType.NAMESPACE,
    "ambient_declaration": ChunkType.NAMESPACE,
}

_JSX_NODES: Dict[str, ChunkType] = {
    "jsx_element": ChunkType.JSX,
    "jsx_self_closing_element": ChunkType.JSX,
    "jsx_fragment": ChunkType.JSX,
}

_JS_FUNCTIONS = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "method_definition",
    "arrow_function",
    "function",
    "function_expression",
    "generator_function",
})

_PY_NODES: Dict[str, ChunkType] = {
    "import_statement": ChunkType.IMPORT,
    "import_from_statement": ChunkType.IMPORT,
    "future_import_statement": ChunkType.IMPORT,
    "class_definition": ChunkType.CLASS,
    "function_definition": ChunkType.FUNCTION,
    "decorated_definition": ChunkType.FUNCTION,
    # only assignments qualify, see parser._declaration_type
    "expression_statement": ChunkType.VARIABLE,
}

_GO_NODES: Dict[str, ChunkType] = {
    "import_declaration": ChunkType.IMPORT,
    "function_declaration": ChunkType.FUNCTION,
    "method_declaration": ChunkType.METHOD,
    "type_declaration": ChunkType.TYPE,
    "const_declaration": ChunkType.VARIABLE,
    "var_declaration": ChunkType.VARIABLE,
}

_RUST_NODES: Dict[str, ChunkType] = {
    "use_declaration": ChunkType.IMPORT,
    "function_item": ChunkType.FUNCTION,
    "struct_item": ChunkType.CLASS,
    "impl_item": ChunkType.CLASS,
    "trait_item": ChunkType.INTERFACE,
    "enum_item": ChunkType.TYPE,
    "type_item": ChunkType.TYPE,
    "mod_item": ChunkType.NAMESPACE,
    "const_item": ChunkType.VARIABLE,
    "static_item": ChunkType.VARIABLE,
}

_JAVA_NODES: Dict[str, ChunkType] = {
    "import_declaration": ChunkType.IMPORT,
    "class_declaration": ChunkType.CLASS,
    "record_declaration": ChunkType.CLASS,
    "interface_declaration": ChunkType.INTERFACE,
    "enum_declaration": ChunkType.TYPE,
}

_CSS_NODES: Dict[str, ChunkType] = {
    "import_statement": ChunkType.IMPORT,
    "rule_set": ChunkType.CSS,
    "media_statement": ChunkType.CSS,
    "keyframes_statement": ChunkType.CSS,
}

_VUE_NODES: Dict[str, ChunkType] = {
    "script_element": ChunkType.SCRIPT,
    "template_element": ChunkType.TEMPLATE,
    "style_element": ChunkType.CSS,
}

_BLOCK_COMMENTS = frozenset({"line_comment", "block_comment"})

LANGUAGES: Dict[str, LanguageSpec] = {
    "ts": LanguageSpec("ts", "typescript", "ts", _TS_NODES, _JS_FUNCTIONS),
    "tsx": LanguageSpec("tsx", "tsx", "ts", {**_TS_NODES, **_JSX_NODES}, _JS_FUNCTIONS, jsx=True),
    "js": LanguageSpec("js", "javascript", "ts", {**_JS_NODES, **_JSX_NODES}, _JS_FUNCTIONS, jsx=True),
    "jsx": LanguageSpec("jsx", "javascript", "ts", {**_JS_NODES, **_JSX_NODES}, _JS_FUNCTIONS, jsx=True),
    "mjs": LanguageSpec("mjs", "javascript", "ts", _JS_NODES, _JS_FUNCTIONS),
    "cjs": LanguageSpec("cjs", "javascript", "ts", _JS_NODES, _JS_FUNCTIONS),
    "py": LanguageSpec(
        "py", "python", "py", _PY_NODES,
        frozenset({"function_definition", "decorated_definition"}),
    ),
    "go": LanguageSpec(
        "go", "go", "go", _GO_NODES,
        frozenset({"function_declaration", "method_declaration", "func_literal"}),
    ),
    "rs": LanguageSpec(
        "rs", "rust", "rs", _RUST_NODES,
        frozenset({"function_item", "closure_expression"}),
        comment_nodes=_BLOCK_COMMENTS,
    ),
    "java": LanguageSpec(
        "java", "java", "java", _JAVA_NODES,
        frozenset({"method_declaration", "constructor_declaration", "lambda_expression"}),
        comment_nodes=_BLOCK_COMMENTS,
    ),
    "css": LanguageSpec("css", "css", "css", _CSS_NODES),
    "vue": LanguageSpec("vue", "vue", "vue", _VUE_NODES),
}

# Script sections of single-file components, keyed by their ``lang`` attribute.
EMBEDDED_SCRIPT_LANGS: Dict[str, str] = {
    "ts": "ts",
    "typescript": "ts",
    "tsx": "tsx",
    "js": "js",
    "javascript": "js",
    "jsx": "jsx",
}


def normalize_extension(extension: str) -> str:
    return extension.strip().lstrip(".").lower()


def get_language_spec(extension: str) -> Optional[LanguageSpec]:
    return LANGUAGES.get(normalize_extension(extension))


def language_for_path(file_path: str) -> str:
    """Return the normalized extension of ``file_path`` ('' when it has none)."""
    _, ext = os.path.splitext(file_path)
    return normalize_extension(ext)
