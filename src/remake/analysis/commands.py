"""
Commands as structured values.

A command is Python source: one expression, or statements whose last
statement is an expression giving the target's value. :class:`Command`
keeps the text and its parsed AST side by side so the analyzer can walk
the tree and the builder can evaluate it, without either re-parsing.

Example::

    cmd = Command.parse("x = a + 1\\nx * 2")
    cmd.standardized          # 'x = a + 1\\nx * 2'
    cmd.evaluate({"a": 1})    # 4
"""

from __future__ import annotations

import ast
import textwrap
from typing import Any

from remake.core.errors import AnalysisError

_MASK = "ignore"


class _StripIgnored(ast.NodeTransformer):
    """Replace ``ignore(<anything>)`` with ``ignore()``."""

    def visit_Call(self, node: ast.Call) -> ast.AST:
        if isinstance(node.func, ast.Name) and node.func.id == _MASK:
            return ast.copy_location(ast.Call(func=node.func, args=[], keywords=[]), node)
        return self.generic_visit(node)


class Command:
    """Parsed command text.

    Parsing never raises: a syntax error is kept on the instance
    (``error``) and surfaces as an :class:`AnalysisError` from
    :meth:`require_tree`, or as ``SyntaxError`` when evaluated.
    """

    __slots__ = ("text", "tree", "error")

    def __init__(self, text: str, tree: ast.Module | None, error: SyntaxError | None):
        self.text = text
        self.tree = tree
        self.error = error

    @classmethod
    def parse(cls, text: str) -> Command:
        source = textwrap.dedent(text).strip()
        try:
            tree = ast.parse(source, mode="exec")
        except SyntaxError as exc:
            return cls(text, None, exc)
        return cls(text, tree, None)

    @property
    def ok(self) -> bool:
        return self.tree is not None

    def require_tree(self) -> ast.Module:
        if self.tree is None:
            raise AnalysisError(f"Cannot parse command: {self.error}", cause=self.error)
        return self.tree

    @property
    def standardized(self) -> str:
        """Canonical text for fingerprinting.

        Formatting and comments are normalized away and the arguments of
        ``ignore()`` are dropped. Unparsable commands standardize to their
        stripped text.
        """
        if self.tree is None:
            return self.text.strip()
        # Re-parse: the transformer mutates in place.
        stripped = _StripIgnored().visit(ast.parse(textwrap.dedent(self.text).strip(), mode="exec"))
        return ast.unparse(ast.fix_missing_locations(stripped))

    def evaluate(self, namespace: dict[str, Any], *, name: str = "command") -> Any:
        """Run the command in ``namespace`` and return its value.

        Returns the value of the final expression statement, or ``None``
        when the command ends with a non-expression statement.
        """
        if self.tree is None:
            raise self.error  # type: ignore[misc]
        filename = f"<remake:{name}>"
        body = list(self.tree.body)
        last = body.pop() if body and isinstance(body[-1], ast.Expr) else None
        if body:
            module = ast.Module(body=body, type_ignores=[])
            exec(compile(module, filename, "exec"), namespace)
        if last is None:
            return None
        expression = ast.Expression(body=last.value)
        return eval(compile(expression, filename, "eval"), namespace)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Command) and self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        state = "ok" if self.ok else "unparsable"
        return f"Command({self.text!r}, {state})"

    def __reduce__(self):
        return (Command.parse, (self.text,))


__all__ = ["Command"]
