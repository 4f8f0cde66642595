"""Progress arithmetic for batch operations."""

from __future__ import annotations

from ..types import Progress


def progress_at(step: float, total: int, label: str) -> Progress:
    """Return the percentage reached after ``step`` of ``total`` sub-steps.

    ``step`` may be fractional so a single item can report a half-way point
    before its expensive call and a full point afterwards.
    """
    if total <= 0:
        raise ValueError("total must be positive")
    percent = min(100.0, max(0.0, step / total * 100.0))
    return Progress(percent=percent, status=label)


__all__ = ["progress_at"]
