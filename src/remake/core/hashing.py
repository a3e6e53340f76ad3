"""
Deterministic fingerprints for values, files, and code.

Fingerprints are the sole criterion for change detection, so they must be
stable across runs and across worker processes: the same content always
produces the same digest, whatever the dict insertion order, set iteration
order or process hash seed.

Manifesto:
    - **Deterministic:** canonical, type-tagged encoding before digesting
    - **Configurable:** any algorithm from ``SUPPORTED_ALGORITHMS``
    - **Code-aware:** function fingerprints ignore comments and formatting
    - **Composable:** ``combine_hashes`` folds many fingerprints into one

Architecture:
    ::

        value ──► canonical_bytes() ──► hashlib.new(algorithm) ──► hex digest
        file  ──► streamed chunks ────► hashlib.new(algorithm) ──► hex digest
        code  ──► ast.dump(no attrs) ─► hash_bytes()           ──► hex digest

        canonical_bytes tags each node with its type:
          None/bool/int/float/str/bytes      scalar tags
          list/tuple                         ordered children
          dict                               children sorted by key encoding
          set/frozenset                      children sorted by encoding
          pathlib.PurePath                   posix string
          classes, functions                 by reference (pickle)
          anything else                      __reduce_ex__(4) parts, recursively

Examples:
    >>> hash_value({"b": 1, "a": [1, 2]}) == hash_value({"a": [1, 2], "b": 1})
    True
    >>> hash_value({1, 2, 3}) == hash_value({3, 2, 1})
    True
    >>> len(hash_value("x", algorithm="md5"))
    32

Tags:
    hashing, fingerprint, change-detection, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import ast
import hashlib
import pickle
import struct
import types
from pathlib import Path, PurePath
from typing import Any

CHUNK = 1024 * 1024 * 8  # 8MB streaming chunks

# Containers and objects nested deeper than this are refused.
MAX_DEPTH = 200

_BY_REFERENCE = (type, types.FunctionType, types.BuiltinFunctionType)

DEFAULT_ALGORITHM = "sha256"

SUPPORTED_ALGORITHMS: tuple[str, ...] = (
    "sha256",
    "sha1",
    "md5",
    "sha512",
    "blake2b",
    "blake2s",
)


def check_algorithm(algorithm: str) -> str:
    """Return ``algorithm`` if supported, else raise ``ValueError``."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(
            f"Unsupported hash algorithm '{algorithm}'. "
            f"Choose one of: {', '.join(SUPPORTED_ALGORITHMS)}"
        )
    return algorithm


def _new_hasher(algorithm: str):
    return hashlib.new(check_algorithm(algorithm))


def hash_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Digest raw bytes."""
    hasher = _new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def hash_text(text: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Digest a UTF-8 string."""
    return hash_bytes(text.encode("utf-8"), algorithm)


def hash_file(path: str | Path, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """
    Stream a file and return its content digest.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    hasher = _new_hasher(algorithm)
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def canonical_bytes(value: Any) -> bytes:
    """
    Encode ``value`` into a canonical byte string.

    Equal values of the supported builtin types always encode identically.
    Other objects go through the pickle reduction protocol
    (``__reduce_ex__(4)``): the reconstructor by reference, then the
    arguments and state canonically, so sets and dicts held by an object
    are sorted like top-level ones. Classes and functions encode by
    reference.

    Raises:
        TypeError, pickle.PicklingError: For objects that cannot be pickled.
    """
    out = bytearray()
    _encode(value, out, [])
    return bytes(out)


def _canonical(value: Any, active: list[int]) -> bytes:
    out = bytearray()
    _encode(value, out, active)
    return bytes(out)


def _enter(value: Any, active: list[int]) -> None:
    if len(active) >= MAX_DEPTH:
        raise pickle.PicklingError(f"{type(value).__name__} nested deeper than {MAX_DEPTH} levels")
    active.append(id(value))


def _encode(value: Any, out: bytearray, active: list[int]) -> None:
    if value is None:
        out += b"N"
    elif value is True:
        out += b"T"
    elif value is False:
        out += b"F"
    elif type(value) is int:
        text = str(value).encode("ascii")
        out += b"i" + struct.pack(">I", len(text)) + text
    elif type(value) is float:
        text = repr(value).encode("ascii")
        out += b"f" + struct.pack(">I", len(text)) + text
    elif type(value) is str:
        data = value.encode("utf-8")
        out += b"s" + struct.pack(">I", len(data)) + data
    elif type(value) in (bytes, bytearray):
        out += b"b" + struct.pack(">I", len(value)) + bytes(value)
    elif id(value) in active:
        # back to an object that is still being encoded
        out += b"r" + struct.pack(">I", active.index(id(value)))
    elif type(value) in (list, tuple):
        out += (b"l" if type(value) is list else b"t") + struct.pack(">I", len(value))
        _enter(value, active)
        for item in value:
            _encode(item, out, active)
        active.pop()
    elif type(value) is dict:
        _enter(value, active)
        items = sorted((_canonical(k, active), _canonical(v, active)) for k, v in value.items())
        active.pop()
        out += b"d" + struct.pack(">I", len(items))
        for key, item in items:
            out += key + item
    elif type(value) in (set, frozenset):
        _enter(value, active)
        items = sorted(_canonical(v, active) for v in value)
        active.pop()
        out += b"S" + struct.pack(">I", len(items))
        for item in items:
            out += item
    elif isinstance(value, PurePath):
        data = value.as_posix().encode("utf-8")
        out += b"p" + struct.pack(">I", len(data)) + data
    elif isinstance(value, _BY_REFERENCE):
        data = pickle.dumps(value, protocol=4)
        out += b"g" + struct.pack(">I", len(data)) + data
    else:
        _encode_reduced(value, out, active)


def _encode_reduced(value: Any, out: bytearray, active: list[int]) -> None:
    reduced = value.__reduce_ex__(4)
    if isinstance(reduced, str):
        # module-level singleton, pickled by name
        data = pickle.dumps(value, protocol=4)
        out += b"g" + struct.pack(">I", len(data)) + data
        return
    func, args, state, listitems, dictitems = (tuple(reduced) + (None,) * 5)[:5]
    _enter(value, active)
    out += b"o"
    _encode(func, out, active)
    _encode(tuple(args), out, active)
    _encode(state, out, active)
    _encode(None if listitems is None else list(listitems), out, active)
    _encode(None if dictitems is None else dict(dictitems), out, active)
    active.pop()


def hash_value(value: Any, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Fingerprint an in-memory value."""
    return hash_bytes(canonical_bytes(value), algorithm)


def normalize_code(source: str) -> str:
    """
    Normalize Python source so formatting and comments do not matter.

    Raises:
        SyntaxError: If ``source`` does not parse.
    """
    tree = ast.parse(source)
    return ast.dump(tree, annotate_fields=False, include_attributes=False)


def hash_code(source: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Fingerprint Python source, ignoring whitespace and comments."""
    return hash_text(normalize_code(source), algorithm)


def combine_hashes(*hashes: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """
    Combine multiple fingerprints deterministically.

    Order matters: ``combine_hashes(a, b) != combine_hashes(b, a)``.
    """
    return hash_text("|".join(hashes), algorithm)


def combine_named(pairs: dict[str, str], algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Combine a name → fingerprint mapping independently of insertion order."""
    return combine_hashes(*(f"{name}={h}" for name, h in sorted(pairs.items())), algorithm=algorithm)


__all__ = [
    "DEFAULT_ALGORITHM",
    "SUPPORTED_ALGORITHMS",
    "check_algorithm",
    "hash_bytes",
    "hash_text",
    "hash_file",
    "canonical_bytes",
    "hash_value",
    "normalize_code",
    "hash_code",
    "combine_hashes",
    "combine_named",
]
