"""Tests for option layering and environment-driven defaults."""

import pandas as pd
import pytest

from rulebook.config import clear_settings_cache, get_settings
from rulebook.exceptions import InvalidOptionValue, UnrecognizedOption
from rulebook.options import DEFAULT_OPTIONS, Options, resolve
from rulebook.rules import ruleset


class TestResolve:
    def test_defaults(self) -> None:
        options = resolve([])
        assert options == DEFAULT_OPTIONS
        assert options.raise_ == "none"
        assert options.na_value is None
        assert options.lin_ineq_eps == 1e-8
        assert options.lin_eq_eps == 1e-8
        assert options.sequential is False

    def test_later_layers_win_key_by_key(self) -> None:
        options = resolve(
            [
                {"raise": "errors", "na.value": True},
                {"na.value": False},
                None,
                {"lin.ineq.eps": 0.5},
            ]
        )
        assert options.raise_ == "errors"
        assert options.na_value is False
        assert options.lin_ineq_eps == 0.5

    def test_empty_rule_layer_falls_through(self) -> None:
        options = resolve([{"raise": "errors"}, {}], defaults=Options(raise_="none"))
        assert options.raise_ == "errors"

    def test_python_style_keys(self) -> None:
        assert resolve([{"na_value": True, "lin_eq_eps": 0.1}]).na_value is True
        assert resolve([{"raise_": "all"}]).raise_ == "all"

    def test_options_layer_contributes_only_set_keys(self) -> None:
        options = resolve([{"raise": "errors"}, Options(sequential=True)])
        assert options.raise_ == "errors"
        assert options.sequential is True

    def test_na_spellings(self) -> None:
        assert resolve([{"na.value": "NA"}]).na_value is None
        assert resolve([{"na.value": "TRUE"}]).na_value is True
        assert resolve([{"na.value": "false"}]).na_value is False

    def test_unknown_key(self) -> None:
        with pytest.raises(UnrecognizedOption) as excinfo:
            resolve([{"na.vlaue": True}])
        assert excinfo.value.key == "na.vlaue"
        assert "na.value" in str(excinfo.value)

    def test_unknown_key_ignored_on_request(self) -> None:
        options = resolve([{"colour": "blue", "raise": "all"}], ignore_unknown=True)
        assert options.raise_ == "all"

    @pytest.mark.parametrize(
        "layer",
        [{"raise": "sometimes"}, {"lin.ineq.eps": -1}, {"sequential": "perhaps"}, {"na.value": "maybe"}],
    )
    def test_invalid_value(self, layer) -> None:
        with pytest.raises(InvalidOptionValue):
            resolve([layer])

    def test_options_are_frozen(self) -> None:
        with pytest.raises(Exception):
            DEFAULT_OPTIONS.sequential = True  # type: ignore[misc]


class TestSettings:
    def test_environment_layer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULEBOOK_RAISE_POLICY", "errors")
        monkeypatch.setenv("RULEBOOK_LIN_INEQ_EPS", "0.01")
        clear_settings_cache()
        assert get_settings().option_layer() == {"raise": "errors", "lin.ineq.eps": 0.01}

    def test_empty_environment(self) -> None:
        settings = get_settings()
        assert settings.option_layer() == {}
        assert settings.workers == 1
        assert settings.timeout is None

    def test_settings_are_cached(self) -> None:
        assert get_settings() is get_settings()


class TestPrecedence:
    """defaults < environment < included layers < rule set < runtime < rule."""

    def test_environment_below_rule_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULEBOOK_RAISE_POLICY", "errors")
        monkeypatch.setenv("RULEBOOK_SEQUENTIAL", "true")
        clear_settings_cache()
        rules = ruleset("x > 0", options={"raise": "none"})
        assert rules.options.raise_ == "none"
        assert rules.options.sequential is True

    def test_included_layers_below_rule_set(self) -> None:
        rules = ruleset(
            "x > 0",
            options={"na.value": True},
            layers=[{"na.value": False, "lin.eq.eps": 0.5}],
        )
        assert rules.options.na_value is True
        assert rules.options.lin_eq_eps == 0.5

    def test_runtime_and_rule_overrides(self) -> None:
        rules = ruleset(
            {"expr": "x > 0", "name": "strict", "options": {"raise": "errors"}},
            {"expr": "y > 0", "name": "lenient"},
            options={"raise": "all"},
        )
        assert rules.effective_options("lenient").raise_ == "all"
        assert rules.effective_options("lenient", runtime={"raise": "none"}).raise_ == "none"
        assert rules.effective_options("strict", runtime={"raise": "none"}).raise_ == "errors"

    def test_rule_override_applies_during_confrontation(self) -> None:
        rules = ruleset(
            {"expr": "x > 0", "name": "counted", "options": {"na.value": True}},
            {"expr": "x > 0", "name": "plain"},
        )
        summary = rules.confront(pd.DataFrame({"x": [1.0, None]})).summary().set_index("name")
        assert summary.loc["counted", "passes"] == 2
        assert summary.loc["plain", "nNA"] == 1
