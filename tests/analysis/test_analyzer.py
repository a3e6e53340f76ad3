"""Tests for static dependency analysis."""

from __future__ import annotations

import os
import textwrap

import pytest

from remake.analysis import analyze_code, analyze_function, function_code_text, is_library_object
from remake.analysis.analyzer import CodeDependencies, is_analyzable
from remake.core.errors import AnalysisError
from remake.plan import file_in

OFFSET = 10


def _scale(x):
    return x * 2


def helper(x):
    # the local name must not count as a dependency
    scaled = _scale(x)
    return scaled + OFFSET


class Model:
    def fit(self, data):
        return helper(data)


class TestAnalyzeCode:
    def test_free_names(self):
        assert analyze_code("fit(clean(raw), k=3)").globals == {"fit", "clean", "raw"}

    def test_locally_bound_names_excluded(self):
        deps = analyze_code("y = f(a)\ny + 1")
        assert deps.globals == {"f", "a"}

    def test_comprehension_and_lambda_bindings(self):
        assert analyze_code("[x * k for x in data]").globals == {"k", "data"}
        assert analyze_code("sorted(xs, key=lambda v: v - k)").globals == {"sorted", "xs", "k"}

    def test_comprehension_variable_does_not_hide_outer_name(self):
        assert analyze_code("[a for a in range(3)] + [a]").globals == {"range", "a"}
        assert analyze_code("{k: v for k, v in pairs.items()}, k").globals == {"pairs", "k"}

    def test_comprehension_iterable_resolves_outside(self):
        # the first iterable is evaluated before x is bound
        assert analyze_code("[x for x in x]").globals == {"x"}
        assert analyze_code("[y for x in xs for y in x]").globals == {"xs"}

    def test_lambda_and_def_arguments_stay_local(self):
        assert analyze_code("f = lambda a: a + 1\nf(a)").globals == {"a"}
        source = textwrap.dedent(
            """
            def g(b, *rest, scale=factor, **kw):
                return b * scale
            g(b)
            """
        )
        assert analyze_code(source).globals == {"factor", "b"}

    def test_walrus_in_comprehension_binds_outside(self):
        assert analyze_code("[(last := v) for v in values]\nlast").globals == {"values"}

    def test_global_declaration_is_not_local(self):
        source = textwrap.dedent(
            """
            def bump():
                global counter
                counter = counter + 1
            bump()
            """
        )
        assert analyze_code(source).globals == {"counter"}

    def test_class_names_are_not_visible_in_methods(self):
        source = textwrap.dedent(
            """
            class Scaler:
                k = 2
                size = k + 1
                def apply(self, x):
                    return x * k
            Scaler().apply(v)
            """
        )
        assert analyze_code(source).globals == {"k", "v"}

    def test_imports_and_defs_bind(self):
        source = textwrap.dedent(
            """
            import math
            def g(v):
                return math.sqrt(v) + w
            g(a)
            """
        )
        assert analyze_code(source).globals == {"w", "a"}

    def test_file_markers(self):
        deps = analyze_code("read(file_in('a.csv', ['b.csv', 'c.csv'])) or write(file_out('out.txt'))")
        assert deps.file_in == {"a.csv", "b.csv", "c.csv"}
        assert deps.file_out == {"out.txt"}
        assert deps.globals == {"read", "write"}

    def test_non_literal_file_arguments_are_dependencies(self):
        deps = analyze_code("file_in(path, encoding=enc)")
        assert deps.file_in == set()
        assert deps.globals == {"path", "enc"}

    def test_target_markers(self):
        deps = analyze_code("loadd(a, 'b')\nreadd(model) + c")
        assert deps.loadd == {"a", "b"}
        assert deps.readd == {"model"}
        assert deps.target_refs == {"a", "b", "model"}
        assert deps.globals == {"c"}

    def test_ignore_and_no_deps_hide_code(self):
        deps = analyze_code("f(ignore(secret), no_deps(expensive(x)))")
        assert deps.globals == {"f"}

    def test_marker_names_never_count_as_globals(self):
        assert "file_in" not in analyze_code("g = file_in\ng('x')").globals

    def test_syntax_error(self):
        with pytest.raises(AnalysisError):
            analyze_code("fit(")

    def test_merge_and_to_dict(self):
        merged = analyze_code("a").merge(analyze_code("file_in('x')"))
        assert merged.to_dict()["globals"] == ["a"]
        assert merged.to_dict()["file_in"] == ["x"]
        assert CodeDependencies().input_files == set()


class TestKnitrDocuments:
    def test_chunk_references_become_dependencies(self, tmp_path):
        report = tmp_path / "report.md"
        report.write_text(
            textwrap.dedent(
                """\
                # Report

                ```python
                readd(model)
                loadd(data, character_only=True)
                ```

                Some prose mentioning readd(not_code).

                ```{r echo=FALSE}
                fit <- function(x) { loadd(summary_stats) }
                ```
                """
            )
        )
        deps = analyze_code(f"render(knitr_in({str(report)!r}))")
        assert deps.knitr_in == {str(report)}
        assert deps.knitr_refs == {"model", "data", "summary_stats"}
        assert deps.input_files == {str(report)}

    def test_missing_document_has_no_references(self, tmp_path):
        deps = analyze_code(f"knitr_in({str(tmp_path / 'absent.md')!r})")
        assert deps.knitr_refs == set()


class TestAnalyzeFunction:
    def test_source_function(self):
        assert analyze_function(helper).globals == {"_scale", "OFFSET"}

    def test_class_body(self):
        assert analyze_function(Model).globals == {"helper"}

    def test_exec_function_uses_bytecode(self, exec_env):
        env = exec_env("def f(x):\n    return g(x) + K\n")
        assert analyze_function(env["f"]).globals == {"g", "K"}

    def test_recursion_is_not_a_dependency(self, exec_env):
        env = exec_env("def fact(n):\n    return 1 if n < 2 else n * fact(n - 1)\n")
        assert analyze_function(env["fact"]).globals == set()

    def test_nested_code_objects(self, exec_env):
        env = exec_env("def f(xs):\n    return [h(x) for x in xs]\n")
        assert "h" in analyze_function(env["f"]).globals

    def test_builtin_cannot_be_analyzed(self):
        with pytest.raises(AnalysisError):
            analyze_function(len)


class TestFunctionCodeText:
    def test_exec_functions_compare_by_bytecode(self, exec_env):
        one = exec_env("def f(x):\n    return x + 1\n")["f"]
        same = exec_env("def f(x):\n    return x + 1\n")["f"]
        other = exec_env("def f(x):\n    return x + 2\n")["f"]
        assert function_code_text(one) == function_code_text(same)
        assert function_code_text(one) != function_code_text(other)

    def test_source_functions_use_ast(self):
        text = function_code_text(helper)
        assert "FunctionDef" in text
        assert "the local name" not in text


class TestLibraryObjects:
    def test_library_and_user_code(self, exec_env):
        assert is_library_object(len)
        assert is_library_object(os.path.join)
        assert is_library_object(file_in)
        assert not is_library_object(helper)
        assert not is_library_object(exec_env("def f():\n    return 1\n")["f"])

    def test_is_analyzable(self):
        assert is_analyzable(helper)
        assert is_analyzable(Model)
        assert not is_analyzable(len)
        assert not is_analyzable(3)
