"""Tests for plan generation helpers."""

from __future__ import annotations

import pytest

from remake.core.errors import PlanValidationError
from remake.plan import evaluate_plan, expand_plan, gather_plan, plan, target


class TestEvaluatePlan:
    def test_one_target_per_value(self):
        p = evaluate_plan(plan(data="load()", m="fit(data, k=K__)"), "K__", [1, 2])
        assert p.names == ("data", "m_1", "m_2")
        assert p["m_2"].command == "fit(data, k=2)"

    def test_strings_are_source_text(self):
        p = evaluate_plan(plan(m="fit(METHOD)"), "METHOD", ["ols", "ridge"])
        assert p["m_ols"].command == "fit(ols)"

    def test_overrides_are_kept(self):
        p = evaluate_plan(plan(m=target("f(X)", retries=3)), "X", [1])
        assert p["m_1"].retries == 3

    def test_suffix_is_sanitized(self):
        p = evaluate_plan(plan(m="f(X)"), "X", [0.5])
        assert p.names == ("m_0_5",)

    def test_empty_arguments(self):
        with pytest.raises(PlanValidationError):
            evaluate_plan(plan(m="f(X)"), "", [1])
        with pytest.raises(PlanValidationError):
            evaluate_plan(plan(m="f(X)"), "X", [])


class TestExpandPlan:
    def test_copies_every_target(self):
        p = expand_plan(plan(a="1", b="2"), ["x", "y"])
        assert p.names == ("a_x", "a_y", "b_x", "b_y")
        assert p["b_y"].command == "2"

    def test_bad_suffix(self):
        with pytest.raises(PlanValidationError):
            expand_plan(plan(a="1"), ["--"])


class TestGatherPlan:
    def test_list(self):
        p = gather_plan(plan(a="1", b="2"), target="all_")
        assert p.names == ("a", "b", "all_")
        assert p["all_"].command == "[a, b]"

    def test_dict_of_selected_names(self):
        p = gather_plan(plan(a="1", b="2", c="3"), target="both", gather="dict", names=["a", "c"])
        assert p["both"].command == "{'a': a, 'c': c}"

    def test_unknown_members_and_kind(self):
        with pytest.raises(PlanValidationError, match="unknown targets"):
            gather_plan(plan(a="1"), names=["z"])
        with pytest.raises(PlanValidationError, match="gather"):
            gather_plan(plan(a="1"), gather="set")
