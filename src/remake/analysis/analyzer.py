"""
Static dependency analysis of commands and functions.

The analyzer answers one question without running anything: *which names,
files and targets does this code refer to?* Commands and the functions
they call are walked as ASTs; the result is a :class:`CodeDependencies`
value that the config resolver turns into graph edges.

Manifesto:
    - **Static:** code is data; nothing is executed during analysis
    - **Marker-aware:** ``file_in``/``file_out``/``knitr_in``/``loadd``/
      ``readd`` are read by pattern, ``ignore``/``no_deps`` hide code
    - **Conservative:** free names are every load not bound locally;
      over-approximation only costs an extra rebuild
    - **Total:** functions without source fall back to bytecode

Architecture:
    ::

        analyze_code("fit(clean(raw), k=3)")
          └─► _DependencyVisitor  ──►  free names per scope - markers = globals
                                       file_in / file_out / knitr_in
                                       loadd / readd
                                       knitr_in docs ─► chunks.document_references

        analyze_function(func)
          ├─ inspect.getsource ─► ast def node ─► _DependencyVisitor
          └─ (no source)        ─► dis LOAD_GLOBAL/LOAD_NAME

        function_code_text(func)   normalized AST dump, or bytecode signature
        is_library_object(obj)     stdlib / site-packages / remake itself

Examples:
    >>> deps = analyze_code("y = f(a)\\ny + file_in('x.csv').count('b')")
    >>> sorted(deps.globals)
    ['a', 'f']
    >>> sorted(deps.file_in)
    ['x.csv']

Tags:
    analysis, ast, dependencies, static-analysis, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import ast
import dis
import inspect
import os
import sys
import sysconfig
import textwrap
import types
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any

from remake.analysis.chunks import document_references
from remake.analysis.commands import Command
from remake.core.errors import AnalysisError
from remake.core.hashing import canonical_bytes
from remake.plan.markers import FILE_MARKERS, MARKER_NAMES, MASK_MARKERS, TARGET_MARKERS


@dataclass(frozen=True)
class CodeDependencies:
    """What a piece of code refers to.

    Attributes:
        globals: Free names (candidates for targets, imports or missing).
        file_in: Input files declared with ``file_in()``.
        file_out: Output files declared with ``file_out()``.
        knitr_in: Documents declared with ``knitr_in()``.
        loadd: Targets named in ``loadd()`` calls.
        readd: Targets named in ``readd()`` calls.
        knitr_refs: Targets referenced from chunks of ``knitr_in`` documents.
    """

    globals: frozenset[str] = field(default_factory=frozenset)
    file_in: frozenset[str] = field(default_factory=frozenset)
    file_out: frozenset[str] = field(default_factory=frozenset)
    knitr_in: frozenset[str] = field(default_factory=frozenset)
    loadd: frozenset[str] = field(default_factory=frozenset)
    readd: frozenset[str] = field(default_factory=frozenset)
    knitr_refs: frozenset[str] = field(default_factory=frozenset)

    @property
    def target_refs(self) -> frozenset[str]:
        """Names explicitly marked as target references."""
        return self.loadd | self.readd | self.knitr_refs

    @property
    def input_files(self) -> frozenset[str]:
        return self.file_in | self.knitr_in

    def merge(self, other: CodeDependencies) -> CodeDependencies:
        return CodeDependencies(
            globals=self.globals | other.globals,
            file_in=self.file_in | other.file_in,
            file_out=self.file_out | other.file_out,
            knitr_in=self.knitr_in | other.knitr_in,
            loadd=self.loadd | other.loadd,
            readd=self.readd | other.readd,
            knitr_refs=self.knitr_refs | other.knitr_refs,
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "globals": sorted(self.globals),
            "file_in": sorted(self.file_in),
            "file_out": sorted(self.file_out),
            "knitr_in": sorted(self.knitr_in),
            "loadd": sorted(self.loadd),
            "readd": sorted(self.readd),
            "knitr_refs": sorted(self.knitr_refs),
        }


EMPTY_DEPENDENCIES = CodeDependencies()


class _Scope:
    """Names loaded and bound in one function, class or comprehension body."""

    __slots__ = ("loads", "bound", "declared", "escaped", "kind")

    def __init__(self, kind: str = "function") -> None:
        self.loads: set[str] = set()
        self.bound: set[str] = set()
        # global / nonlocal names are never local
        self.declared: set[str] = set()
        # free names of bodies nested in a class skip the class namespace
        self.escaped: set[str] = set()
        self.kind = kind

    def free(self) -> set[str]:
        return (self.loads - (self.bound - self.declared)) | self.escaped


class _DependencyVisitor(ast.NodeVisitor):
    """Collect free names and marker arguments, one scope per body."""

    def __init__(self) -> None:
        self.scopes: list[_Scope] = [_Scope()]
        self.files: dict[str, set[str]] = {m: set() for m in FILE_MARKERS}
        self.targets: dict[str, set[str]] = {m: set() for m in TARGET_MARKERS}

    # ── Scopes ───────────────────────────────────────────────────

    @property
    def scope(self) -> _Scope:
        return self.scopes[-1]

    def _bind(self, name: str) -> None:
        self.scope.bound.add(name)

    def _push(self, kind: str = "function") -> None:
        self.scopes.append(_Scope(kind))

    def _pop(self) -> None:
        inner = self.scopes.pop()
        if self.scope.kind == "class":
            self.scope.escaped |= inner.free()
        else:
            self.scope.loads |= inner.free()

    # ── Names and bindings ───────────────────────────────────────

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Load):
            self.scope.loads.add(node.id)
        else:
            self._bind(node.id)

    def visit_Global(self, node: ast.Global | ast.Nonlocal) -> None:
        self.scope.declared.update(node.names)

    visit_Nonlocal = visit_Global

    def visit_NamedExpr(self, node: ast.NamedExpr) -> None:
        # := inside a comprehension binds in the enclosing body
        self.visit(node.value)
        owner = next(s for s in reversed(self.scopes) if s.kind != "comprehension")
        owner.bound.add(node.target.id)

    def _visit_signature(self, args: ast.arguments) -> None:
        for default in args.defaults + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)
        for arg in _all_arguments(args):
            if arg.annotation is not None:
                self.visit(arg.annotation)

    def _bind_arguments(self, args: ast.arguments) -> None:
        for arg in _all_arguments(args):
            self._bind(arg.arg)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._visit_signature(node.args)
        if node.returns is not None:
            self.visit(node.returns)
        self._bind(node.name)
        self._push()
        self._bind_arguments(node.args)
        for stmt in node.body:
            self.visit(stmt)
        self._pop()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_signature(node.args)
        self._push()
        self._bind_arguments(node.args)
        self.visit(node.body)
        self._pop()

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        for expr in node.decorator_list + node.bases + [kw.value for kw in node.keywords]:
            self.visit(expr)
        self._bind(node.name)
        self._push("class")
        for stmt in node.body:
            self.visit(stmt)
        self._pop()

    def _visit_comprehension(self, generators: list[ast.comprehension], results: list[ast.expr]) -> None:
        # the first iterable is evaluated in the enclosing body
        self.visit(generators[0].iter)
        self._push("comprehension")
        for index, generator in enumerate(generators):
            if index:
                self.visit(generator.iter)
            self.visit(generator.target)
            for condition in generator.ifs:
                self.visit(condition)
        for result in results:
            self.visit(result)
        self._pop()

    def visit_ListComp(self, node: ast.ListComp | ast.SetComp | ast.GeneratorExp) -> None:
        self._visit_comprehension(node.generators, [node.elt])

    visit_SetComp = visit_ListComp
    visit_GeneratorExp = visit_ListComp

    def visit_DictComp(self, node: ast.DictComp) -> None:
        self._visit_comprehension(node.generators, [node.key, node.value])

    def visit_Import(self, node: ast.Import | ast.ImportFrom) -> None:
        for alias in node.names:
            self._bind(alias.asname or alias.name.split(".")[0])

    visit_ImportFrom = visit_Import

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self._bind(node.name)
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self._bind(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self._bind(node.name)

    def visit_MatchMapping(self, node: ast.MatchMapping) -> None:
        if node.rest:
            self._bind(node.rest)
        self.generic_visit(node)

    # ── Markers ──────────────────────────────────────────────────

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if not isinstance(func, ast.Name) or func.id not in MARKER_NAMES:
            self.generic_visit(node)
            return
        marker = func.id
        if marker in MASK_MARKERS:
            return
        if marker in FILE_MARKERS:
            for arg in node.args:
                literals = _string_literals(arg)
                if literals is None:
                    self.visit(arg)
                else:
                    self.files[marker].update(literals)
        else:
            for arg in node.args:
                names = _target_literals(arg)
                if names is None:
                    self.visit(arg)
                else:
                    self.targets[marker].update(names)
        for kw in node.keywords:
            self.visit(kw.value)

    def result(self) -> CodeDependencies:
        return CodeDependencies(
            globals=frozenset(self.scopes[0].free() - MARKER_NAMES),
            file_in=frozenset(self.files["file_in"]),
            file_out=frozenset(self.files["file_out"]),
            knitr_in=frozenset(self.files["knitr_in"]),
            loadd=frozenset(self.targets["loadd"]),
            readd=frozenset(self.targets["readd"]),
        )


def _all_arguments(args: ast.arguments) -> list[ast.arg]:
    extra = [a for a in (args.vararg, args.kwarg) if a is not None]
    return args.posonlyargs + args.args + args.kwonlyargs + extra


def _string_literals(node: ast.AST) -> list[str] | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return [node.value]
    if isinstance(node, ast.List | ast.Tuple):
        out: list[str] = []
        for elt in node.elts:
            inner = _string_literals(elt)
            if inner is None:
                return None
            out.extend(inner)
        return out
    return None


def _target_literals(node: ast.AST) -> list[str] | None:
    if isinstance(node, ast.Name):
        return [node.id]
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return [node.value]
    if isinstance(node, ast.List | ast.Tuple):
        out: list[str] = []
        for elt in node.elts:
            inner = _target_literals(elt)
            if inner is None:
                return None
            out.extend(inner)
        return out
    return None


def _visit(tree: ast.AST) -> CodeDependencies:
    visitor = _DependencyVisitor()
    visitor.visit(tree)
    return visitor.result()


def analyze_code(code: str | Command | ast.AST) -> CodeDependencies:
    """
    Analyze a command (or any Python source) without running it.

    Documents named in ``knitr_in()`` are read and their code chunks
    scanned for ``loadd``/``readd`` references.

    Raises:
        AnalysisError: If the source does not parse.
    """
    if isinstance(code, ast.AST):
        tree: ast.AST = code
    else:
        command = code if isinstance(code, Command) else Command.parse(code)
        tree = command.require_tree()
    deps = _visit(tree)
    if deps.knitr_in:
        refs: set[str] = set()
        for doc in sorted(deps.knitr_in):
            refs |= document_references(doc)
        deps = replace(deps, knitr_refs=frozenset(refs))
    return deps


# =============================================================================
# FUNCTIONS
# =============================================================================


@lru_cache(maxsize=1)
def _library_roots() -> tuple[str, ...]:
    paths = sysconfig.get_paths()
    roots = {paths.get(key) for key in ("stdlib", "platstdlib", "purelib", "platlib")}
    roots.add(os.path.dirname(os.__file__))
    return tuple(sorted(os.path.realpath(r) for r in roots if r))


def is_library_object(obj: Any) -> bool:
    """True for builtins, the standard library, installed packages and remake.

    Library functions are fingerprinted by identity and never descended into.
    """
    if isinstance(obj, types.BuiltinFunctionType | types.BuiltinMethodType):
        return True
    module = getattr(obj, "__module__", None) or ""
    if module == "builtins" or module in sys.builtin_module_names:
        return True
    if module == "remake" or module.startswith("remake."):
        return True
    try:
        path = inspect.getsourcefile(obj) or inspect.getfile(obj)
    except TypeError:
        return True
    if path.startswith("<"):
        return False  # exec'd or interactive code belongs to the user
    real = os.path.realpath(path)
    return any(real.startswith(root + os.sep) for root in _library_roots())


def _source_node(func: Any) -> ast.AST | None:
    """The def/lambda/class node for ``func``, or None without usable source."""
    try:
        source = inspect.getsource(func)
    except (OSError, TypeError):
        return None
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return None
    name = getattr(func, "__name__", "")
    wanted: tuple[type, ...]
    if inspect.isclass(func):
        wanted = (ast.ClassDef,)
    elif name == "<lambda>":
        wanted = (ast.Lambda,)
    else:
        wanted = (ast.FunctionDef, ast.AsyncFunctionDef)
    for node in ast.walk(tree):
        if isinstance(node, wanted) and (name == "<lambda>" or getattr(node, "name", None) == name):
            return node
    return None


def _code_globals(code: types.CodeType) -> set[str]:
    names: set[str] = set()
    for instruction in dis.get_instructions(code):
        if instruction.opname in ("LOAD_GLOBAL", "LOAD_NAME") and isinstance(instruction.argval, str):
            names.add(instruction.argval)
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            names |= _code_globals(const)
    return names


def _code_signature(code: types.CodeType) -> tuple:
    consts = tuple(_code_signature(c) if isinstance(c, types.CodeType) else c for c in code.co_consts)
    return (
        code.co_name,
        code.co_code,
        consts,
        code.co_names,
        code.co_varnames,
        code.co_freevars,
        code.co_cellvars,
    )


def analyze_function(func: Any) -> CodeDependencies:
    """
    Analyze a user-defined function (or class) body.

    Uses the source when available; falls back to bytecode global loads
    for functions defined without a source file (``exec``, REPL).

    Raises:
        AnalysisError: If ``func`` has neither source nor bytecode.
    """
    func = inspect.unwrap(func)
    node = _source_node(func)
    if node is not None:
        deps = _visit(node)
        # A recursive function refers to itself by name.
        return replace(deps, globals=deps.globals - {getattr(func, "__name__", "")})
    if inspect.isclass(func):
        return EMPTY_DEPENDENCIES
    code = getattr(func, "__code__", None)
    if code is None:
        raise AnalysisError(f"Cannot analyze {func!r}: no source and no bytecode")
    return CodeDependencies(globals=frozenset(_code_globals(code) - MARKER_NAMES - {func.__name__}))


def function_code_text(func: Any) -> str:
    """
    Deterministic text describing a function's code, for fingerprinting.

    Comments and formatting do not matter; the body, signature and
    decorators do.
    """
    func = inspect.unwrap(func)
    node = _source_node(func)
    if node is not None:
        return ast.dump(node, annotate_fields=False, include_attributes=False)
    if inspect.isclass(func):
        return f"class:{func.__module__}.{func.__qualname__}"
    code = getattr(func, "__code__", None)
    if code is None:
        raise AnalysisError(f"Cannot fingerprint {func!r}: no source and no bytecode")
    return "bytecode:" + canonical_bytes(_code_signature(code)).hex()


def is_analyzable(obj: Any) -> bool:
    """Functions and classes whose bodies carry dependencies."""
    obj = inspect.unwrap(obj) if callable(obj) else obj
    return inspect.isfunction(obj) or inspect.isclass(obj)


__all__ = [
    "CodeDependencies",
    "EMPTY_DEPENDENCIES",
    "analyze_code",
    "analyze_function",
    "function_code_text",
    "is_library_object",
    "is_analyzable",
]
