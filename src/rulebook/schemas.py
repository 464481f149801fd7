# schemas.py - Pandera contracts for confrontation exports
# The summary and the long-form record export are the tables reporting tools
# consume; the rule name is the join key between them.

from __future__ import annotations

import pandas as pd
from pandera.pandas import DataFrameModel, Field
from pandera.typing import Series


class SummarySchema(DataFrameModel):
    """
    One row per rule, as returned by ``Confrontation.summary()``.

    Validates:
    - Unique rule names
    - Non-negative counts
    - Error and warning flags
    """

    name: Series[str] = Field(unique=True, nullable=False, description="Rule name")
    items: Series[int] = Field(ge=0, description="Number of outcomes (records, or 1 for dataset-level rules)")
    passes: Series[int] = Field(ge=0, description="Passing outcomes")
    fails: Series[int] = Field(ge=0, description="Failing outcomes")
    nNA: Series[int] = Field(ge=0, description="Indeterminate outcomes not counted as pass or fail")
    error: Series[bool] = Field(description="Whether the rule raised an error")
    warning: Series[bool] = Field(description="Whether the rule raised a warning")
    expression: Series[str] = Field(description="Rule expression text")

    class Config:
        strict = True
        coerce = True


class RecordSchema(DataFrameModel):
    """
    One row per rule and record, as returned by ``Confrontation.to_frame(by="record")``.

    ``value`` keeps three-valued outcomes, so it is nullable.
    """

    name: Series[str] = Field(nullable=False, description="Rule name")
    record: Series[int] = Field(ge=0, description="Zero-based record position")
    value: Series[pd.BooleanDtype] = Field(nullable=True, description="Outcome (True, False or NA)")

    class Config:
        strict = True
        coerce = True
