"""
Exception taxonomy for summarization runs.

Errors are scoped to the smallest unit they can affect:
    - InvalidInput: a single feature row has a missing or malformed field
    - DegenerateFit: a test oracle produced an unreliable fit for one group
    - InputStructureError: the input tables are unusable, fails the whole run

A feature id missing from a NameMapping is not an error (pass-through).
"""

from __future__ import annotations

from typing import Any

__all__ = [
    'PbSummaryError',
    'InvalidInput',
    'DegenerateFit',
    'InputStructureError',
]


class PbSummaryError(Exception):
    """Base class for all pbsummary errors."""


class InvalidInput(PbSummaryError, ValueError):
    """A feature field is missing, not numeric, or a probability outside (0, 1]."""

    def __init__(
        self,
        feature_id: str,
        field_name: str,
        value: Any,
        reason: str = "must be in (0, 1]",
    ):
        self.feature_id = feature_id
        self.field_name = field_name
        self.value = value
        super().__init__(
            f"Invalid {field_name} for feature {feature_id!r}: {value!r} ({reason})"
        )


class DegenerateFit(PbSummaryError):
    """The statistical model for a group was singular or did not converge."""

    def __init__(self, group_id: str | None, reason: str):
        self.group_id = group_id
        self.reason = reason
        label = f"group {group_id!r}" if group_id is not None else "model"
        super().__init__(f"Degenerate fit for {label}: {reason}")


class InputStructureError(PbSummaryError, ValueError):
    """Required columns or labels are absent from an input table."""
