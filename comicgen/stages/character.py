"""Stage producing the hero: description first, then the character sheet."""

from __future__ import annotations

import json
from dataclasses import replace

from ..errors import PreconditionError
from ..services.base import GenerationProvider
from ..types import Character, ProjectState
from .base import BaseStage, summarise


class CreateCharacter(BaseStage):
    """Derives a fresh Character from the submitted idea.

    Used both for the first run in the Spark stage and for "try again" in the
    Character Lab; in both cases the input is the original idea, never a
    previously generated character.
    """

    def __init__(self, run_id: str, logger, provider: GenerationProvider) -> None:
        super().__init__(name="CreateCharacter", run_id=run_id, logger=logger)
        self._provider = provider

    def run(self, state: ProjectState) -> ProjectState:
        if state.idea is None:
            raise PreconditionError("A character can only be created from a submitted idea.")
        self.log_prompt(json.dumps(summarise(state.idea), ensure_ascii=False, indent=2))

        description = self._provider.describe_character(state.idea)
        sheet = self._provider.render_character_sheet(description)
        character = Character(detailed_description=description, image=sheet)

        self.log_response({"character": character})
        return replace(state, character=character)
