"""Tests for rules and immutable rule sets."""

import pytest

from rulebook.classify import RuleKind
from rulebook.exceptions import (
    DuplicateRuleName,
    NotValidatingExpression,
    RuleSyntaxError,
    UnknownFunction,
    UnrecognizedOption,
)
from rulebook.expression import parse
from rulebook.rules import RuleSet, ruleset


class TestConstruction:
    def test_auto_names(self) -> None:
        rules = ruleset("x > 0", {"expr": "y > 0", "name": "V1"}, "z > 0")
        assert rules.names() == ["V2", "V1", "V3"]

    def test_rule_metadata(self) -> None:
        rules = ruleset({"expr": "turnover >= 0", "name": "to", "label": "non-negative"})
        rule = rules["to"]
        assert rule.kind is RuleKind.LINEAR
        assert rule.variables == ("turnover",)
        assert rule.label == "non-negative"
        assert rule.origin["source"] == "turnover >= 0"
        assert str(rule) == "to: turnover >= 0"

    def test_in_is_rewritten_to_vin(self) -> None:
        rule = ruleset('size %in% c("a", "b")')[0]
        assert rule.expression == parse('size %vin% c("a", "b")')
        assert rule.kind is RuleKind.SET_MEMBERSHIP

    def test_duplicate_names(self) -> None:
        with pytest.raises(DuplicateRuleName) as excinfo:
            ruleset({"expr": "x > 0", "name": "r"}, {"expr": "y > 0", "name": "r"})
        assert excinfo.value.names == ["r"]

    def test_structural_errors_are_fatal(self) -> None:
        with pytest.raises(RuleSyntaxError):
            ruleset("x > ")
        with pytest.raises(NotValidatingExpression):
            ruleset("x + 1")
        with pytest.raises(UnknownFunction):
            ruleset("is.whatever(x)")

    def test_unknown_rule_option(self) -> None:
        with pytest.raises(UnrecognizedOption):
            ruleset({"expr": "x > 0", "options": {"na.valu": True}})

    def test_variables_are_transitive_through_macros(self) -> None:
        rules = ruleset("m := mean(x)", "y > m")
        assert rules[0].variables == ("y", "x")
        assert rules.variables() == ["y", "x"]


class TestAccess:
    def test_lookup_by_index_name_and_slice(self) -> None:
        rules = ruleset("x > 0", "y > 0", "z > 0")
        assert rules[1].name == "V2"
        assert rules[-1].name == "V3"
        assert rules["V3"].expression == parse("z > 0")
        sliced = rules[:2]
        assert isinstance(sliced, RuleSet)
        assert sliced.names() == ["V1", "V2"]

    def test_missing_rule(self) -> None:
        rules = ruleset("x > 0")
        with pytest.raises(KeyError):
            rules["nope"]
        with pytest.raises(IndexError):
            rules[5]

    def test_container_protocol(self) -> None:
        rules = ruleset("x > 0", "y > 0")
        assert len(rules) == 2
        assert "V1" in rules
        assert [rule.name for rule in rules] == ["V1", "V2"]


class TestMutations:
    def test_add_returns_new_set(self) -> None:
        rules = ruleset("x > 0")
        more = rules.add("y > 0", "z > 0")
        assert rules.names() == ["V1"]
        assert more.names() == ["V1", "V2", "V3"]

    def test_add_avoids_taken_auto_names(self) -> None:
        rules = ruleset("x > 0", "y > 0").remove("V1")
        assert rules.add("z > 0").names() == ["V2", "V1"]

    def test_add_rejects_duplicates(self) -> None:
        rules = ruleset({"expr": "x > 0", "name": "r"})
        with pytest.raises(DuplicateRuleName):
            rules.add({"expr": "y > 0", "name": "r"})

    def test_remove(self) -> None:
        rules = ruleset("x > 0", "y > 0", "z > 0")
        assert rules.remove("V2").names() == ["V1", "V3"]
        assert rules.remove(0, "V3").names() == ["V2"]
        assert len(rules) == 3

    def test_replace_keeps_name(self) -> None:
        rules = ruleset("x > 0", "y > 0")
        replaced = rules.replace("V1", "x >= 0")
        assert replaced.names() == ["V1", "V2"]
        assert replaced["V1"].expression == parse("x >= 0")
        assert rules["V1"].expression == parse("x > 0")

    def test_replace_with_named_entry(self) -> None:
        rules = ruleset("x > 0", "y > 0")
        replaced = rules.replace(1, {"expr": "y >= 1", "name": "y_min"})
        assert replaced.names() == ["V1", "y_min"]

    def test_replace_must_be_one_rule(self) -> None:
        rules = ruleset("x > 0")
        with pytest.raises(ValueError):
            rules.replace(0, "G := var_group(a, b)")

    def test_union(self) -> None:
        left = ruleset({"expr": "x > 0", "name": "a"}, options={"raise": "errors"})
        right = ruleset({"expr": "y > 0", "name": "b"}, options={"na.value": True})
        union = left + right
        assert union.names() == ["a", "b"]
        assert union.options.raise_ == "errors"
        assert union.options.na_value is True

    def test_union_renumbers_generated_names(self) -> None:
        union = ruleset("x > 0") + ruleset("y > 0", "z > 0")
        assert union.names() == ["V1", "V3", "V2"]
        assert union["V3"].expression == parse("y > 0")
        assert all(rule.auto_named for rule in union)

    def test_union_keeps_declared_names(self) -> None:
        left = ruleset("x > 0", {"expr": "w > 0", "name": "V2"})
        right = ruleset("y > 0", {"expr": "z > 0", "name": "z"})
        union = left + right
        assert union.names() == ["V1", "V2", "V3", "z"]

    def test_union_rejects_declared_duplicates(self) -> None:
        with pytest.raises(DuplicateRuleName):
            ruleset({"expr": "x > 0", "name": "a"}) + ruleset({"expr": "y > 0", "name": "a"})

    def test_replace_keeps_generated_flag(self) -> None:
        replaced = ruleset("x > 0").replace("V1", "x >= 0")
        union = ruleset("y > 0") + replaced
        assert union.names() == ["V1", "V2"]
        assert union["V2"].expression == parse("x >= 0")

    def test_with_options(self) -> None:
        rules = ruleset("x > 0").with_options(sequential=True)
        assert rules.options.sequential is True


class TestExport:
    def test_to_frame(self) -> None:
        frame = ruleset("a > 0", "b > a", 'c %vin% c("x")').to_frame()
        assert list(frame["name"]) == ["V1", "V2", "V3"]
        assert list(frame["kind"]) == ["linear", "linear", "set_membership"]
        assert list(frame["block"]) == [0, 0, 1]
        assert list(frame["variables"]) == ["a", "b, a", "c"]

    def test_coefficients(self) -> None:
        frame = ruleset("2 * a + b <= 10", "a >= 0", "c == 'x'").coefficients()
        assert list(frame.index) == ["V1", "V2"]
        assert frame.loc["V1", "a"] == 2.0
        assert frame.loc["V2", "b"] == 0.0
        assert frame.loc["V1", "CONSTANT"] == -10.0
        assert list(frame["operator"]) == ["<=", ">="]
