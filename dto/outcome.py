"""
MetricOutcome — the fetch result for one canonical id.

A discriminated union on ``kind`` so outcomes survive a JSON round trip
and can be matched with ``isinstance`` everywhere in the pipeline.  Only
the writer turns them into cell text.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, Field


class Success(BaseModel):
    kind: Literal["success"] = "success"
    views: int = Field(ge=0)


class NotAvailable(BaseModel):
    kind: Literal["not_available"] = "not_available"


class Error(BaseModel):
    kind: Literal["error"] = "error"
    reason: str = ""


MetricOutcome = Union[Success, NotAvailable, Error]


NOT_AVAILABLE_TEXT = "N/A"
ERROR_TEXT = "Error"


def is_failure(outcome: MetricOutcome) -> bool:
    """Anything other than a numeric result counts against ``failed_links``."""
    return not isinstance(outcome, Success)


def display_value(outcome: MetricOutcome):
    """Value written into the spreadsheet cell for *outcome*."""
    if isinstance(outcome, Success):
        return outcome.views
    if isinstance(outcome, NotAvailable):
        return NOT_AVAILABLE_TEXT
    return ERROR_TEXT
