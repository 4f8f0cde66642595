"""Per-run prompt and response logs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .files import ensure_dir, write_json, write_text


@dataclass(slots=True)
class StepLogPaths:
    """Log file paths for one attempt of a stage."""

    prompt_path: Path
    response_path: Path


class RunLogger:
    """Persists prompts and responses under ``runs/<run_id>``.

    Stages can run more than once per project (character retries, a second
    approval attempt), so every prompt opens a new numbered attempt and the
    matching response is written next to it.
    """

    def __init__(self, base_dir: str | Path = "runs") -> None:
        self._base_dir = ensure_dir(base_dir)
        self._attempts: Counter[tuple[str, str]] = Counter()

    def step_paths(self, run_id: str, step_name: str) -> StepLogPaths:
        """Return the paths for the current attempt of ``step_name``."""
        run_root = ensure_dir(self._base_dir / run_id)
        attempt = max(1, self._attempts[(run_id, step_name)])
        stem = f"{step_name}-{attempt:02d}"
        return StepLogPaths(
            prompt_path=run_root / f"{stem}-prompt.txt",
            response_path=run_root / f"{stem}-response.json",
        )

    def log_prompt(self, run_id: str, step_name: str, prompt: str) -> None:
        self._attempts[(run_id, step_name)] += 1
        write_text(self.step_paths(run_id, step_name).prompt_path, prompt)

    def log_response(self, run_id: str, step_name: str, response: Any) -> None:
        write_json(self.step_paths(run_id, step_name).response_path, response)
