"""Tests for confrontation results and their exports."""

import numpy as np
import pandas as pd
import pytest

from rulebook.results import SUMMARY_COLUMNS, Confrontation
from rulebook.rules import ruleset


@pytest.fixture
def data() -> pd.DataFrame:
    return pd.DataFrame({"x": [1.0, -1.0, None], "y": [1.0, 1.0, 1.0]})


@pytest.fixture
def rules():
    # record-level, record-level, dataset-level, erroring
    return ruleset("x > 0", "y > 0", "nrow(.) > 5", "z > 0")


@pytest.fixture
def confrontation(rules, data) -> Confrontation:
    return rules.confront(data)


class TestSummary:
    def test_columns_and_counts(self, confrontation: Confrontation) -> None:
        summary = confrontation.summary()
        assert list(summary.columns) == SUMMARY_COLUMNS
        assert list(summary["name"]) == ["V1", "V2", "V3", "V4"]
        assert list(summary["items"]) == [3, 3, 1, 0]
        assert list(summary["passes"]) == [1, 3, 0, 0]
        assert list(summary["fails"]) == [1, 0, 1, 0]
        assert list(summary["nNA"]) == [1, 0, 0, 0]
        assert list(summary["error"]) == [False, False, False, True]
        assert list(summary["expression"]) == ["x > 0", "y > 0", "nrow(.) > 5", "z > 0"]

    def test_na_value_true_counts_as_pass(self, rules, data) -> None:
        summary = rules.confront(data, options={"na.value": True}).summary()
        assert summary.loc[0, "passes"] == 2
        assert summary.loc[0, "nNA"] == 0

    def test_na_value_false_counts_as_fail(self, rules, data) -> None:
        summary = rules.confront(data, options={"na.value": False}).summary()
        assert summary.loc[0, "fails"] == 2
        assert summary.loc[0, "nNA"] == 0

    def test_stored_values_stay_three_valued(self, rules, data) -> None:
        result = rules.confront(data, options={"na.value": True})["V1"]
        assert pd.isna(result.values[2])
        assert bool(result.filled()[2]) is True

    def test_lookup(self, confrontation: Confrontation) -> None:
        assert len(confrontation) == 4
        assert confrontation["V2"] is confrontation[1]
        assert confrontation.names() == ["V1", "V2", "V3", "V4"]
        assert confrontation["V1"].counts() == (1, 1, 1)

    def test_repr(self, confrontation: Confrontation) -> None:
        assert repr(confrontation) == "Confrontation(4 rules, 3 records: 2 fails, 1 errors)"


class TestAggregate:
    def test_by_rule(self, confrontation: Confrontation) -> None:
        frame = confrontation.aggregate()
        assert list(frame.columns) == ["npass", "nfail", "nNA", "rel.pass", "rel.fail", "rel.NA"]
        assert frame.loc["V1", "npass"] == 1
        assert frame.loc["V1", "rel.pass"] == pytest.approx(1 / 3)
        assert np.isnan(frame.loc["V4", "rel.pass"])

    def test_by_record(self, confrontation: Confrontation) -> None:
        frame = confrontation.aggregate(by="record")
        assert list(frame["npass"]) == [2, 1, 1]
        assert list(frame["nfail"]) == [0, 1, 0]
        assert list(frame["nNA"]) == [0, 0, 1]
        assert frame.loc[1, "rel.fail"] == pytest.approx(0.5)

    def test_invalid_axis(self, confrontation: Confrontation) -> None:
        with pytest.raises(ValueError):
            confrontation.aggregate(by="column")  # type: ignore[arg-type]


class TestExports:
    def test_values_keep_record_level_rules(self, confrontation: Confrontation) -> None:
        values = confrontation.values()
        assert list(values.columns) == ["V1", "V2"]
        assert values.index.name == "record"
        assert str(values["V1"].dtype) == "boolean"
        assert values["V1"].isna().tolist() == [False, False, True]

    def test_to_frame_by_rule(self, confrontation: Confrontation) -> None:
        frame = confrontation.to_frame()
        assert list(frame["kind"]) == ["linear", "linear", "general", "linear"]
        assert frame["block"].isna().all()
        assert "label" in frame.columns and "description" in frame.columns

    def test_to_frame_by_record(self, confrontation: Confrontation) -> None:
        frame = confrontation.to_frame(by="record")
        assert list(frame.columns) == ["name", "record", "value"]
        assert len(frame) == 7
        assert frame["name"].tolist().count("V3") == 1
        first = frame[frame["name"] == "V1"]
        assert first["record"].tolist() == [0, 1, 2]
        assert first["value"].isna().tolist() == [False, False, True]

    def test_to_frame_by_record_when_every_rule_errors(self) -> None:
        frame = ruleset("nope > 0").confront(pd.DataFrame({"x": [1]})).to_frame(by="record")
        assert frame.empty
        assert list(frame.columns) == ["name", "record", "value"]

    def test_errors_and_warnings(self, confrontation: Confrontation) -> None:
        assert list(confrontation.errors()) == ["V4"]
        assert "'z'" in confrontation.errors()["V4"][0]
        assert confrontation.warnings() == {}


class TestSelection:
    def test_violating(self, confrontation: Confrontation, data: pd.DataFrame) -> None:
        assert list(confrontation.violating(data).index) == [1]
        assert list(confrontation.violating(data, include_missing=True).index) == [1, 2]

    def test_satisfying(self, confrontation: Confrontation, data: pd.DataFrame) -> None:
        assert list(confrontation.satisfying(data).index) == [0]
        assert list(confrontation.satisfying(data, include_missing=True).index) == [0, 2]

    def test_selection_checks_record_count(self, confrontation: Confrontation, data: pd.DataFrame) -> None:
        with pytest.raises(ValueError):
            confrontation.violating(data.head(2))


class TestVerdict:
    def test_failures_and_errors(self, confrontation: Confrontation) -> None:
        assert confrontation.all_passed() is False

    def test_clean_data(self) -> None:
        assert ruleset("x > 0").confront(pd.DataFrame({"x": [1, 2]})).all_passed() is True

    def test_missing_outcomes(self) -> None:
        result = ruleset("x > 0").confront(pd.DataFrame({"x": [1.0, None]}))
        assert result.all_passed() is False
        assert result.all_passed(na_rm=True) is True

    def test_missing_counted_by_na_value(self) -> None:
        data = pd.DataFrame({"x": [1.0, None]})
        assert ruleset("x > 0", options={"na.value": True}).confront(data).all_passed() is True
