"""Stage negotiating the story outline with the co-writer chat."""

from __future__ import annotations

from dataclasses import replace

from ..errors import PreconditionError
from ..services.base import GenerationProvider, StorySession
from ..types import APPROVAL_PHRASE, ProjectState
from ..utils.prompts import load_prompt
from .base import BaseStage


def is_approval(message: str) -> bool:
    """True when ``message`` contains the approval phrase, in any casing."""
    return APPROVAL_PHRASE in message.lower()


class Storyboard(BaseStage):
    """Opens the co-writer session, relays turns and extracts the final outline."""

    def __init__(self, run_id: str, logger, provider: GenerationProvider) -> None:
        super().__init__(name="Storyboard", run_id=run_id, logger=logger)
        self._provider = provider

    def open(self, state: ProjectState) -> StorySession:
        """Start a session and send the seed turn built from the character."""
        if state.character is None:
            raise PreconditionError("The storyboard needs an approved character.")
        seed = load_prompt("story_seed", {"description": state.character.detailed_description})
        self.log_prompt(seed)

        session = self._provider.open_story_session()
        reply = self._provider.send_turn(session, seed, record=False)
        session.record_model_message(reply)

        self.log_response({"reply": reply})
        return session

    def send(self, session: StorySession, message: str) -> str:
        self.log_prompt(message)
        reply = self._provider.send_turn(session, message)
        self.log_response({"reply": reply})
        return reply

    def approve(self, state: ProjectState, session: StorySession) -> ProjectState:
        """Request the structured outline; ``ParseError`` leaves the session usable."""
        self.log_prompt(load_prompt("story_extract"))
        story = self._provider.extract_approved_story(session)
        self.log_response({"story": story})
        return replace(state, story=story)
