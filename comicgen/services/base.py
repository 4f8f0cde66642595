"""Capability interface of the generative provider and the chat session wrapper."""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from ..errors import ProviderError, SessionBusyError
from ..types import Asset, ChatMessage, Idea, Page, Progress, Story

ProgressCallback = Callable[[Progress], None]


class ChatBackend(Protocol):
    """Anything that answers one conversational message at a time."""

    def send_message(self, message: str) -> str:
        ...


class StorySession:
    """Single-owner storyboard conversation with an append-only message log."""

    def __init__(self, backend: ChatBackend) -> None:
        self._backend = backend
        self._messages: List[ChatMessage] = []
        self._in_flight = False

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def exchange(self, message: str, *, record: bool = True) -> str:
        """Send ``message`` and return the reply text.

        ``record=False`` keeps bookkeeping turns (such as the structured
        extraction request) out of the visible transcript.
        """
        if self._in_flight:
            raise SessionBusyError("A storyboard turn is already in flight on this session.")
        self._in_flight = True
        try:
            reply = self._backend.send_message(message)
        finally:
            self._in_flight = False
        if not reply or not reply.strip():
            raise ProviderError("The story co-writer returned an empty reply.")
        if record:
            self._messages.append(ChatMessage(role="user", text=message))
            self._messages.append(ChatMessage(role="model", text=reply))
        return reply

    def record_model_message(self, text: str) -> None:
        """Append a model message produced outside a user turn (the seed reply)."""
        self._messages.append(ChatMessage(role="model", text=text))


class GenerationProvider(Protocol):
    """Operations the stages need from a generative content provider."""

    def describe_character(self, idea: Idea) -> str:
        ...

    def render_character_sheet(self, description: str) -> Asset:
        ...

    def open_story_session(self, system_prompt: Optional[str] = None) -> StorySession:
        ...

    def send_turn(self, session: StorySession, message: str, *, record: bool = True) -> str:
        ...

    def extract_approved_story(self, session: StorySession) -> Story:
        ...

    def render_story_pages(
        self,
        story: Story,
        character_description: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Page]:
        ...

    def render_video_for_page(self, page: Page) -> Asset:
        ...
