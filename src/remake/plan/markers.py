"""
Command markers.

Markers are ordinary functions that commands may call. At run time they
are (almost) identities; their meaning lies in how the analyzer reads
them. The analyzer recognises them by *call name*, so they work whether
or not the environment imports them.

    ====================  =====================================================
    ``file_in(*paths)``   the command reads these files
    ``file_out(*paths)``  the command writes these files
    ``knitr_in(path)``    a document whose code chunks reference targets
    ``ignore(expr)``      ``expr`` is invisible to analysis and fingerprints
    ``no_deps(expr)``     ``expr`` is fingerprinted but adds no dependencies
    ``readd(name)``       the value of another target
    ``loadd(*names)``     make other targets available to the command
    ====================  =====================================================
"""

from __future__ import annotations

from typing import Any

FILE_MARKERS = frozenset({"file_in", "file_out", "knitr_in"})
TARGET_MARKERS = frozenset({"readd", "loadd"})
MASK_MARKERS = frozenset({"ignore", "no_deps"})
MARKER_NAMES = FILE_MARKERS | TARGET_MARKERS | MASK_MARKERS


def _paths(paths: tuple[Any, ...]) -> Any:
    flat: list[str] = []
    for path in paths:
        if isinstance(path, list | tuple):
            flat.extend(str(p) for p in path)
        else:
            flat.append(str(path))
    return flat[0] if len(flat) == 1 else flat


def file_in(*paths: Any) -> Any:
    """Declare input files; returns the path (or list of paths)."""
    return _paths(paths)


def file_out(*paths: Any) -> Any:
    """Declare output files; returns the path (or list of paths)."""
    return _paths(paths)


def knitr_in(*paths: Any) -> Any:
    """Declare a document whose code chunks reference targets."""
    return _paths(paths)


def ignore(value: Any = None) -> Any:
    return value


def no_deps(value: Any = None) -> Any:
    return value


def readd(name: Any) -> Any:
    """Placeholder: replaced at build time by a lookup into dependency values."""
    raise RuntimeError("readd() can only be called inside a target command")


def loadd(*names: Any) -> None:
    """Placeholder: replaced at build time by a lookup into dependency values."""
    raise RuntimeError("loadd() can only be called inside a target command")


def runtime_markers(values: dict[str, Any]) -> dict[str, Any]:
    """Marker functions bound to ``values`` for evaluating a command."""

    def _readd(name: Any) -> Any:
        # A bare name has already been evaluated to the target's value.
        if isinstance(name, str) and name in values:
            return values[name]
        return name

    def _loadd(*names: Any) -> None:
        return None

    return {
        "file_in": file_in,
        "file_out": file_out,
        "knitr_in": knitr_in,
        "ignore": ignore,
        "no_deps": no_deps,
        "readd": _readd,
        "loadd": _loadd,
    }


__all__ = [
    "MARKER_NAMES",
    "FILE_MARKERS",
    "TARGET_MARKERS",
    "MASK_MARKERS",
    "file_in",
    "file_out",
    "knitr_in",
    "ignore",
    "no_deps",
    "readd",
    "loadd",
    "runtime_markers",
]
