from __future__ import annotations


class AgeTrendError(Exception):
    """Base class for errors raised while processing one condition group."""


class EligibilityError(AgeTrendError):
    """Group has too few observations or too few distinct ages to fit."""


class FitFailure(AgeTrendError):
    """The age curve could not be fit for one group and complexity."""


class SchemaError(AgeTrendError, ValueError):
    def __init__(self, missing_columns: list[str]):
        self.missing_columns = list(missing_columns)
        super().__init__(f"Missing required columns: {self.missing_columns}")
