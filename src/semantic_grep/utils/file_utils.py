"""Filesystem helpers for walking and reading source trees."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

ROOT_MARKERS = (".git", ".semantic-grep")
BINARY_SNIFF_BYTES = 8192


def repo_root(start: Path) -> Path:
    """Closest ancestor of ``start`` holding a repository marker, else ``start`` itself."""
    start = start.resolve()
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in ROOT_MARKERS):
            return candidate
    return start


def is_binary_file(path: Path) -> bool:
    # unreadable files are skipped like binaries
    try:
        with path.open("rb") as f:
            return b"\x00" in f.read(BINARY_SNIFF_BYTES)
    except OSError:
        return True


def read_source(path: Path) -> str:
    """Read a source file as UTF-8; undecodable bytes are replaced and a BOM is dropped."""
    text = path.read_text(encoding="utf-8", errors="replace")
    return text[1:] if text.startswith("\ufeff") else text


def relative_key(path: Path, root: Optional[Path]) -> str:
    """POSIX path of ``path`` relative to ``root``; paths outside the root are kept as given."""
    if root is not None:
        try:
            return path.resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            pass
    return path.as_posix()
