"""Shared fixtures for the comic movie maker tests."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from comicgen.config import PipelineConfig
from comicgen.services.gemini import GeminiClient


def mock_config(root: Path, **overrides) -> PipelineConfig:
    """Config rooted in a temp dir with mock generation and no pauses."""
    values = dict(
        assets_dir=str(root / "assets"),
        runs_dir=str(root / "runs"),
        outputs_dir=str(root / "outputs"),
        enable_mock_generation=True,
        page_delay_sec=0.0,
        video_delay_sec=0.0,
        poll_interval_sec=0.0,
        finalize_delay_sec=0.0,
    )
    values.update(overrides)
    return PipelineConfig(**values)


def no_sleep(_seconds: float) -> None:
    return None


class FlakyGemini(GeminiClient):
    """Mock Gemini client that can be told to fail individual calls.

    ``failures[name]`` is a queue consumed one entry per call; ``None``
    lets the call through, an exception instance is raised instead.
    """

    def __init__(self, assets_dir: str | Path) -> None:
        super().__init__(
            assets_dir,
            use_mock=True,
            page_delay_sec=0,
            poll_interval_sec=0,
            sleep=no_sleep,
        )
        self.failures: Dict[str, List[Optional[Exception]]] = {}
        self.calls: List[tuple] = []

    def fail(self, name: str, *outcomes: Optional[Exception]) -> None:
        self.failures.setdefault(name, []).extend(outcomes)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def _check(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        queue = self.failures.get(name)
        if queue:
            outcome = queue.pop(0)
            if outcome is not None:
                raise outcome

    def describe_character(self, idea):
        self._check("describe_character", idea)
        return super().describe_character(idea)

    def open_story_session(self, system_prompt=None):
        self._check("open_story_session")
        return super().open_story_session(system_prompt)

    def send_turn(self, session, message, *, record=True):
        self._check("send_turn", message)
        return super().send_turn(session, message, record=record)

    def extract_approved_story(self, session):
        self._check("extract_approved_story")
        return super().extract_approved_story(session)

    def render_story_pages(self, story, character_description, on_progress=None):
        self._check("render_story_pages")
        return super().render_story_pages(story, character_description, on_progress)

    def render_video_for_page(self, page):
        self._check("render_video_for_page", page.page_number)
        return super().render_video_for_page(page)
