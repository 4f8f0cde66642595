"""Stage generating the sixteen illustrated pages."""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Optional

from ..errors import PreconditionError, ProviderError
from ..services.base import GenerationProvider, ProgressCallback
from ..types import PAGE_COUNT, ProjectState
from .base import BaseStage


class CreatePages(BaseStage):
    """Runs the page batch and only publishes it once all pages exist."""

    def __init__(self, run_id: str, logger, provider: GenerationProvider) -> None:
        super().__init__(name="CreatePages", run_id=run_id, logger=logger)
        self._provider = provider

    def run(self, state: ProjectState, on_progress: Optional[ProgressCallback] = None) -> ProjectState:
        if state.story is None or state.character is None:
            raise PreconditionError("Pages need an approved story and character.")
        self.log_prompt(
            json.dumps(
                {
                    "title": state.story.title,
                    "chapters": [chapter.title for chapter in state.story.chapters],
                    "character": state.character.detailed_description,
                },
                ensure_ascii=False,
                indent=2,
            )
        )

        pages = self._provider.render_story_pages(
            state.story,
            state.character.detailed_description,
            on_progress,
        )
        numbers = [page.page_number for page in pages]
        if numbers != list(range(1, PAGE_COUNT + 1)):
            raise ProviderError(f"Page batch is incomplete or out of order: {numbers}")

        self.log_response({"pages": pages})
        return replace(state, pages=list(pages))
