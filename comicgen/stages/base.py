"""Shared plumbing for the stage units driven by the controller."""

from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from typing import Any

from ..utils.run_logger import RunLogger


def summarise(value: Any) -> Any:
    """Return a JSON friendly view of ``value`` with raw bytes elided."""
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        return {key: summarise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [summarise(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return value


@dataclass(slots=True)
class BaseStage:
    """Convenience base for stages needing prompt/response logging."""

    name: str
    run_id: str
    logger: RunLogger

    def log_prompt(self, prompt: str) -> None:
        """Persist the request sent for this stage."""
        self.logger.log_prompt(self.run_id, self.name, prompt)

    def log_response(self, response: object) -> None:
        """Persist the result produced by this stage."""
        self.logger.log_response(self.run_id, self.name, summarise(response))
