"""
Code chunks in documents referenced with ``knitr_in()``.

A report that calls ``readd(model)`` inside a fenced code chunk depends
on ``model`` even though the plan command only mentions the report file.
This module finds those chunks and the target references inside them.

Chunks in Python are analyzed with ``ast``; chunks that do not parse
(other languages, templating) are scanned with a pattern for
``loadd(...)`` / ``readd(...)`` calls.
"""

from __future__ import annotations

import ast
import re
from pathlib import Path

from remake.core.logging import get_logger

logger = get_logger(__name__)

# ```python / ```{python echo=FALSE} / ~~~ / ```r ...
_FENCE = re.compile(
    r"^[ \t]*(?P<fence>`{3,}|~{3,})[ \t]*\{?[ \t]*(?P<lang>[\w.+-]*)[^\n]*\n(?P<body>.*?)^[ \t]*(?P=fence)[ \t]*$",
    re.MULTILINE | re.DOTALL,
)
_CALL = re.compile(r"\b(?:loadd|readd)\s*\(([^()]*)\)")
_ARG = re.compile(r"""^\s*(?:(?P<name>[A-Za-z_]\w*)|(?P<q>["'])(?P<lit>[A-Za-z_]\w*)(?P=q))\s*$""")


def extract_chunks(text: str) -> list[str]:
    """Return the bodies of all fenced code chunks in ``text``, in order."""
    return [m.group("body") for m in _FENCE.finditer(text)]


def _refs_from_tree(tree: ast.AST) -> set[str]:
    refs: set[str] = set()
    for node in ast.walk(tree):
        if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)):
            continue
        if node.func.id not in ("loadd", "readd"):
            continue
        for arg in node.args:
            if isinstance(arg, ast.Name):
                refs.add(arg.id)
            elif isinstance(arg, ast.Constant) and isinstance(arg.value, str):
                refs.add(arg.value)
    return refs


def _refs_from_pattern(chunk: str) -> set[str]:
    refs: set[str] = set()
    for call in _CALL.finditer(chunk):
        for piece in call.group(1).split(","):
            if "=" in piece:
                continue  # keyword arguments are options, not targets
            m = _ARG.match(piece)
            if m:
                refs.add(m.group("name") or m.group("lit"))
    return refs


def chunk_references(chunk: str) -> set[str]:
    """Target names referenced via ``loadd``/``readd`` in one chunk."""
    try:
        tree = ast.parse(chunk)
    except SyntaxError:
        return _refs_from_pattern(chunk)
    return _refs_from_tree(tree)


def document_references(path: str | Path) -> set[str]:
    """Target names referenced by all chunks of the document at ``path``.

    A missing document has no references; the missing file itself is
    picked up by file fingerprinting.
    """
    doc = Path(path)
    if not doc.is_file():
        logger.debug("chunks.document_missing", path=str(doc))
        return set()
    refs: set[str] = set()
    for chunk in extract_chunks(doc.read_text(encoding="utf-8")):
        refs |= chunk_references(chunk)
    return refs


__all__ = ["extract_chunks", "chunk_references", "document_references"]
