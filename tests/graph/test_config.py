"""Tests for resolving plans against an environment."""

from __future__ import annotations

import pytest

from remake.core.config import MakeOptions
from remake.core.errors import CycleDetectedError, PlanValidationError
from remake.graph import NodeKind, build_config
from remake.plan import plan, target, trigger

HELPERS = """
K = 3

def inner(x):
    return x * K

def helper(x):
    return inner(x) + 1

def load(path):
    return path

def save(value, path):
    return path
"""


class TestResolution:
    def test_target_and_import_dependencies(self, exec_env):
        env = exec_env(HELPERS)
        config = build_config(plan(a="2", b="helper(a)"), env)
        b = config.target("b")
        assert b.target_deps == ("a",)
        assert b.import_deps == ("helper",)
        assert b.dependencies == ("a", "helper")
        assert config.missing == ()

    def test_name_reused_by_a_comprehension_is_still_a_dependency(self):
        config = build_config(plan(b="[a for a in range(3)] + [a]", a="10"))
        assert config.target("b").target_deps == ("a",)
        assert config.graph.topological_order().index("a") < config.graph.topological_order().index("b")

    def test_nested_imports_are_followed(self, exec_env):
        env = exec_env(HELPERS)
        config = build_config(plan(b="helper(1)"), env)
        assert config.imports["helper"].kind == "function"
        assert set(config.imports["helper"].imports) == {"inner"}
        assert set(config.imports["inner"].imports) == {"K"}
        assert config.imports["K"].kind == "object"
        assert config.graph.kind("inner") == NodeKind.IMPORT
        assert config.graph.upstream("b") == ["helper", "inner", "K"]

    def test_builtins_and_modules_are_ignored(self, exec_env):
        import math

        config = build_config(plan(a="len(str(math.pi))"), {"math": math})
        assert config.imports == {}
        assert config.missing == ()

    def test_library_functions_fingerprinted_by_identity(self):
        from os.path import join

        config = build_config(plan(a="join('x', 'y')"), {"join": join})
        spec = config.imports["join"]
        assert spec.kind == "library"
        assert spec.identity.endswith(".join")

    def test_missing_names_reported(self):
        config = build_config(plan(a="fit(data)"))
        assert config.missing == ("data", "fit")

    def test_env_is_snapshotted(self, exec_env):
        env = exec_env(HELPERS)
        config = build_config(plan(a="K"), env)
        env["K"] = 99
        assert config.env["K"] == 3
        with pytest.raises(TypeError):
            config.env["K"] = 1  # type: ignore[index]

    def test_target_markers(self):
        config = build_config(plan(a="1", b="readd(a)", c="loadd(a, b)\nb", d="readd(ghost)"))
        assert config.target("b").target_deps == ("a",)
        assert config.target("c").target_deps == ("a", "b")
        assert "ghost" in config.missing

    def test_trigger_commands_add_dependencies(self, exec_env):
        env = exec_env("def stamp():\n    return 1\n")
        config = build_config(plan(a="1", b=target("2", trigger=trigger(change="stamp()", condition="a > 0"))), env)
        b = config.target("b")
        assert b.target_deps == ("a",)
        assert b.import_deps == ("stamp",)
        assert b.change is not None and b.condition is not None


class TestFiles:
    def test_file_out_producer_precedes_consumer(self, exec_env):
        env = exec_env(HELPERS)
        config = build_config(
            plan(
                used="load(file_in('data/raw.csv'))",
                raw="save(1, file_out('data/raw.csv'))",
            ),
            env,
        )
        assert config.target("used").target_deps == ("raw",)
        assert config.target("used").file_in == ("data/raw.csv",)
        assert config.target("raw").file_out == ("data/raw.csv",)
        order = config.graph.topological_order()
        assert order.index("raw") < order.index("used")

    def test_paths_are_normalized(self, exec_env):
        env = exec_env(HELPERS)
        config = build_config(
            plan(raw="save(1, file_out('data/raw.csv'))", used="load(file_in('./data/raw.csv'))"),
            env,
        )
        assert config.target("used").target_deps == ("raw",)

    def test_two_producers_rejected(self):
        with pytest.raises(PlanValidationError, match="both declare file_out"):
            build_config(plan(a="file_out('x.csv')", b="file_out('x.csv')"))


class TestValidation:
    def test_cycle_is_fatal(self):
        with pytest.raises(CycleDetectedError):
            build_config(plan(a="b + 1", b="a + 1"))

    def test_analysis_error_is_kept_per_target(self):
        config = build_config(plan(ok="1", bad="fit("))
        assert config.target("bad").analysis_error is not None
        assert config.target("ok").analysis_error is None

    def test_broken_trigger_command_is_an_analysis_error(self):
        config = build_config(plan(a=target("1", trigger=trigger(change="stamp("))))
        assert config.target("a").analysis_error.startswith("trigger:")


class TestLimits:
    def test_effective_limits(self):
        options = MakeOptions(timeout=5, retries=1)
        config = build_config(plan(a=target("1", elapsed=2), b=target("2", timeout=3, retries=0)), options=options)
        a, b = config.target("a"), config.target("b")
        assert (a.elapsed, a.cpu, a.retries, a.max_attempts) == (2.0, 5, 1, 2)
        assert (b.elapsed, b.cpu, b.retries, b.max_attempts) == (3.0, 3.0, 0, 1)

    def test_no_limits_by_default(self):
        a = build_config(plan(a="1")).target("a")
        assert (a.elapsed, a.cpu, a.retries) == (None, None, 0)


class TestSelection:
    def test_selected_targets_include_upstream(self):
        p = plan(a="1", b="a", c="2")
        assert build_config(p).selected_targets() == ["a", "b", "c"]
        assert build_config(p, options=MakeOptions(targets=("b",))).selected_targets() == ["a", "b"]

    def test_unknown_selection(self):
        config = build_config(plan(a="1"), options=MakeOptions(targets=("z",)))
        with pytest.raises(PlanValidationError, match="Unknown targets requested"):
            config.selected_targets()

    def test_unknown_target_lookup(self):
        config = build_config(plan(a="1"))
        with pytest.raises(PlanValidationError, match="Unknown target: nosuch") as info:
            config.target("nosuch")
        assert info.value.field_name == "target"


class TestLongChains:
    LENGTH = 1500

    def test_targets_in_reverse_plan_order(self):
        rows = {f"t{i}": f"t{i - 1} + 1" for i in range(self.LENGTH - 1, 0, -1)}
        rows["t0"] = "0"
        config = build_config(plan(**rows))
        assert config.target("t1499").target_deps == ("t1498",)
        assert config.graph.topological_order()[:3] == ["t0", "t1", "t2"]

    def test_nested_helper_chain(self, exec_env):
        source = "def f0(x):\n    return x\n" + "".join(
            f"def f{i}(x):\n    return f{i - 1}(x)\n" for i in range(1, self.LENGTH)
        )
        config = build_config(plan(a=f"f{self.LENGTH - 1}(1)"), exec_env(source))
        assert len(config.imports) == self.LENGTH
        assert config.imports["f1"].imports == ("f0",)
        assert config.graph.upstream("a")[-1] == "f0"
