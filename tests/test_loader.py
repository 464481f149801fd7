"""Tests for loading rule sets from YAML rule files."""

from pathlib import Path
from textwrap import dedent

import pandas as pd
import pytest

from rulebook.exceptions import RuleFileError, UnrecognizedOption
from rulebook.loader import load_rule_file, read_rules, read_sources


def write(path: Path, text: str) -> Path:
    path.write_text(dedent(text))
    return path


@pytest.fixture
def rule_file(tmp_path: Path) -> Path:
    return write(
        tmp_path / "rules.yaml",
        """
        options:
          raise: errors
          lin.ineq.eps: 1.0e-6
        groups:
          amounts: [turnover, profit]
        rules:
          - "staff >= 0"
          - expr: amounts >= 0
            name: nonnegative
            label: non-negative amounts
          - "avg := mean(turnover, na.rm = TRUE)"
          - turnover <= 10 * avg
        """,
    )


class TestLoadRuleFile:
    def test_sections(self, rule_file: Path) -> None:
        source = load_rule_file(rule_file)
        assert source.options == {"raise": "errors", "lin.ineq.eps": 1.0e-6}
        assert source.groups == {"amounts": ("turnover", "profit")}
        assert len(source.entries) == 4
        assert source.includes == ()

    def test_bare_list_is_rules(self, tmp_path: Path) -> None:
        path = write(tmp_path / "list.yaml", '- "x > 0"\n- "y > 0"\n')
        assert len(load_rule_file(path).entries) == 2

    def test_empty_file(self, tmp_path: Path) -> None:
        path = write(tmp_path / "empty.yaml", "")
        assert load_rule_file(path).entries == ()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RuleFileError, match="not found"):
            load_rule_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = write(tmp_path / "bad.yaml", "rules: [unclosed\n")
        with pytest.raises(RuleFileError, match="invalid YAML"):
            load_rule_file(path)

    def test_malformed_sections(self, tmp_path: Path) -> None:
        path = write(tmp_path / "bad.yaml", "options: [1, 2]\n")
        with pytest.raises(RuleFileError):
            load_rule_file(path)

    def test_unknown_section_is_ignored(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = write(tmp_path / "extra.yaml", 'colour: blue\nrules: ["x > 0"]\n')
        with caplog.at_level("WARNING"):
            source = load_rule_file(path)
        assert len(source.entries) == 1
        assert "colour" in caplog.text


class TestReadRules:
    def test_rules_options_and_groups(self, rule_file: Path) -> None:
        rules = read_rules(rule_file)
        assert rules.names() == ["V1", "nonnegative.1", "nonnegative.2", "V2"]
        assert str(rules["V2"].expression) == "turnover <= 10 * mean(turnover, na.rm = TRUE)"
        assert rules["nonnegative.1"].label == "non-negative amounts"
        assert rules.options.raise_ == "errors"
        assert rules.options.lin_ineq_eps == 1.0e-6

    def test_origin_records_file(self, rule_file: Path) -> None:
        rules = read_rules(rule_file)
        assert rules["V1"].origin["file"] == str(rule_file.resolve())
        assert list(rules.to_frame()["source"].unique()) == [str(rule_file.resolve())]

    def test_caller_options_override_file(self, rule_file: Path) -> None:
        rules = read_rules(rule_file, options={"raise": "none"})
        assert rules.options.raise_ == "none"
        assert rules.options.lin_ineq_eps == 1.0e-6

    def test_unknown_option_in_file(self, tmp_path: Path) -> None:
        path = write(tmp_path / "opts.yaml", 'options:\n  na.valeu: true\nrules: ["x > 0"]\n')
        with pytest.raises(UnrecognizedOption):
            read_rules(path)

    def test_unknown_options_can_be_dropped(self, tmp_path: Path) -> None:
        write(tmp_path / "base.yaml", "options:\n  colour: blue\n  sequential: true\n")
        path = write(
            tmp_path / "main.yaml",
            """
            include: [base.yaml]
            options:
              na.valeu: true
              raise: none
            rules:
              - expr: x > 0
                options: {speed: fast, na.value: false}
            """,
        )
        rules = read_rules(path, ignore_unknown=True)
        assert rules.options.raise_ == "none"
        assert rules.options.sequential is True
        assert rules.options.na_value is None
        assert rules.effective_options("V1").na_value is False

    def test_confront_loaded_rules(self, rule_file: Path, retailers: pd.DataFrame) -> None:
        result = read_rules(rule_file, options={"raise": "none"}).confront(retailers)
        summary = result.summary().set_index("name")
        assert summary.loc["nonnegative.2", "fails"] == 1
        assert not summary["error"].any()


class TestIncludes:
    def test_included_rules_come_first(self, tmp_path: Path) -> None:
        write(
            tmp_path / "base.yaml",
            """
            options:
              na.value: true
              sequential: true
            groups:
              G: [a, b]
            rules:
              - expr: "c > 0"
                name: base
            """,
        )
        main = write(
            tmp_path / "main.yaml",
            """
            include: base.yaml
            options:
              na.value: false
            rules:
              - expr: G > 0
                name: main
            """,
        )
        rules = read_rules(main)
        assert rules.names() == ["base", "main.1", "main.2"]
        assert rules.options.na_value is False
        assert rules.options.sequential is True
        assert rules["base"].origin["file"] == str((tmp_path / "base.yaml").resolve())

    def test_nested_include_paths_are_relative(self, tmp_path: Path) -> None:
        (tmp_path / "shared").mkdir()
        write(tmp_path / "shared" / "leaf.yaml", 'rules: ["leaf > 0"]\n')
        write(tmp_path / "shared" / "mid.yaml", 'include: [leaf.yaml]\nrules: ["mid > 0"]\n')
        main = write(tmp_path / "main.yaml", 'include: [shared/mid.yaml]\nrules: ["top > 0"]\n')
        sources = read_sources(main)
        assert [source.path.name for source in sources] == ["leaf.yaml", "mid.yaml", "main.yaml"]
        assert read_rules(main).variables() == ["leaf", "mid", "top"]

    def test_include_cycle(self, tmp_path: Path) -> None:
        write(tmp_path / "a.yaml", 'include: b.yaml\nrules: ["x > 0"]\n')
        write(tmp_path / "b.yaml", 'include: a.yaml\nrules: ["y > 0"]\n')
        with pytest.raises(RuleFileError, match="include cycle"):
            read_rules(tmp_path / "a.yaml")

    def test_missing_include_names_includer(self, tmp_path: Path) -> None:
        main = write(tmp_path / "main.yaml", 'include: gone.yaml\nrules: ["x > 0"]\n')
        with pytest.raises(RuleFileError) as excinfo:
            read_rules(main)
        assert "included from" in excinfo.value.message
