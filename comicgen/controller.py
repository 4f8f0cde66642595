"""Six-stage state machine owning the comic project."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Sequence

from .config import PipelineConfig
from .errors import PageAnimationError, ParseError, StageError
from .services.base import GenerationProvider, StorySession
from .services.gemini import GeminiClient
from .services.rate_limiter import RateLimiter
from .stages.animate import AnimatePages, validate_selection
from .stages.character import CreateCharacter
from .stages.creation import CreatePages
from .stages.premiere import FinalizeMovie
from .stages.storyboard import Storyboard, is_approval
from .types import ChatMessage, Idea, Page, Progress, ProjectState, ProjectView, Stage
from .utils.run_logger import RunLogger

logger = logging.getLogger(__name__)

Observer = Callable[[ProjectView], None]


class StageController:
    """Sequences the wizard and holds the single copy of the project state.

    Every public operation is allowed in exactly one stage. Provider failures
    are caught here, logged, and turned into ``error`` text while the state
    stays as it was after the last successful step. Calling an operation in
    the wrong stage, or while another one is running, raises ``StageError``.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        *,
        run_id: str,
        run_logger: RunLogger,
        video_limiter: RateLimiter,
        finalize_limiter: RateLimiter,
    ) -> None:
        self.run_id = run_id
        self._character = CreateCharacter(run_id=run_id, logger=run_logger, provider=provider)
        self._storyboard = Storyboard(run_id=run_id, logger=run_logger, provider=provider)
        self._pages = CreatePages(run_id=run_id, logger=run_logger, provider=provider)
        self._animate = AnimatePages(run_id=run_id, logger=run_logger, provider=provider, limiter=video_limiter)
        self._finalize = FinalizeMovie(run_id=run_id, logger=run_logger, limiter=finalize_limiter)

        self._state = ProjectState()
        self._stage = Stage.SPARK
        self._session: Optional[StorySession] = None
        self._busy = False
        self._error: Optional[str] = None
        self._progress = Progress()
        self._animation_status = ""
        self._finalized = False
        self._observers: List[Observer] = []

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        provider: Optional[GenerationProvider] = None,
        *,
        run_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "StageController":
        """Wire a controller with the services described by ``config``."""
        return cls(
            provider or GeminiClient.from_config(config, sleep=sleep),
            run_id=run_id or new_run_id(),
            run_logger=RunLogger(base_dir=config.runs_dir),
            video_limiter=RateLimiter(config.video_delay_sec, sleep=sleep),
            finalize_limiter=RateLimiter(config.finalize_delay_sec, sleep=sleep),
        )

    # ------------------------------------------------------------------ read side

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def progress(self) -> Progress:
        return self._progress

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self._session.messages if self._session else ()

    def view(self) -> ProjectView:
        """Return a read-only snapshot of the project for presentation code."""
        state = self._state
        return ProjectView(
            stage=self._stage,
            busy=self._busy,
            error=self._error,
            progress=self._progress,
            animation_status=self._animation_status,
            finalized=self._finalized,
            idea=state.idea,
            character=replace(state.character) if state.character else None,
            story=state.story,
            pages=tuple(replace(page) for page in state.pages),
            messages=self.messages,
        )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer`` with a fresh view after every change."""
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    # ------------------------------------------------------------------ stage 1 and 2

    def submit_idea(self, idea: Idea) -> bool:
        with self._operation(Stage.SPARK):
            try:
                self._state = self._character.run(replace(self._state, idea=idea))
            except Exception as exc:
                return self._fail("Failed to create character. Please try again.", exc)
            self._advance(Stage.CHARACTER_LAB)
            return True

    def retry_character(self) -> bool:
        """Regenerate the character from the original idea, replacing it on success."""
        with self._operation(Stage.CHARACTER_LAB):
            try:
                self._state = self._character.run(self._state)
            except Exception as exc:
                return self._fail("Failed to generate a new character. Please try again.", exc)
            return True

    def approve_character(self) -> bool:
        with self._operation(Stage.CHARACTER_LAB):
            if self._state.character is None:
                raise StageError("There is no character to approve.")
            self._advance(Stage.STORYBOARD)
            return self._start_storyboard()

    # ------------------------------------------------------------------ stage 3

    def open_storyboard(self) -> bool:
        """Re-run the storyboard entry action after it failed."""
        with self._operation(Stage.STORYBOARD):
            if self._session is not None:
                return True
            return self._start_storyboard()

    def send_story_message(self, text: str) -> bool:
        """Relay one user turn; the approval phrase triggers story extraction."""
        with self._operation(Stage.STORYBOARD):
            if self._session is None:
                raise StageError("The storyboard session has not been opened.")
            if not text or not text.strip():
                raise ValueError("Cannot send an empty message.")
            try:
                self._storyboard.send(self._session, text)
            except Exception as exc:
                return self._fail("Failed to send your message. Please try again.", exc)

            if not is_approval(text):
                return True
            try:
                self._state = self._storyboard.approve(self._state, self._session)
            except ParseError as exc:
                return self._fail("There was an issue finalizing the story. Please try approving again.", exc)
            except Exception as exc:
                return self._fail("Failed to finalize the story. Please try approving again.", exc)

            self._advance(Stage.CREATION_ENGINE)
            return self._generate_pages()

    def _start_storyboard(self) -> bool:
        try:
            self._session = self._storyboard.open(self._state)
        except Exception as exc:
            self._session = None
            return self._fail("Failed to start the storyboard session. Please try again.", exc)
        self._notify()
        return True

    # ------------------------------------------------------------------ stage 4

    def generate_pages(self) -> bool:
        """Re-run page generation after a failure in the Creation Engine."""
        with self._operation(Stage.CREATION_ENGINE):
            return self._generate_pages()

    def _generate_pages(self) -> bool:
        self._progress = Progress()
        self._notify()
        try:
            self._state = self._pages.run(self._state, self._record_progress)
        except Exception as exc:
            return self._fail("Failed to generate story pages. Please try again.", exc)
        self._advance(Stage.ANIMATE)
        return True

    def _record_progress(self, progress: Progress) -> None:
        percent = max(progress.percent, self._progress.percent)
        self._progress = Progress(percent=percent, status=progress.status)
        self._notify()

    # ------------------------------------------------------------------ stage 5 and 6

    def animate_pages(self, selection: Sequence[int]) -> bool:
        """Render videos for the selected 0-based page indices, in the given order.

        An invalid selection raises ``SelectionError`` before any provider call.
        A failed page halts the batch; pages animated before it keep their clips.
        """
        with self._operation(Stage.ANIMATE):
            indices = validate_selection(self._state, selection)
            try:
                self._animate.run(self._state, indices, self._record_animation_status)
            except PageAnimationError as exc:
                self._animation_status = ""
                return self._fail(str(exc), exc)
            self._animation_status = ""
            self._advance(Stage.PREMIERE)
            return True

    def _record_animation_status(self, status: str) -> None:
        self._animation_status = status
        self._notify()

    def finalize(self) -> bool:
        with self._operation(Stage.PREMIERE):
            if not self._finalized:
                self._finalize.run(self._state)
                self._finalized = True
            return True

    def pages_snapshot(self) -> List[Page]:
        """Copies of the current pages, for export utilities."""
        return [replace(page) for page in self._state.pages]

    # ------------------------------------------------------------------ plumbing

    @contextmanager
    def _operation(self, *stages: Stage) -> Iterator[None]:
        if self._busy:
            raise StageError("Another operation is still running.")
        if self._stage not in stages:
            raise StageError(f"This action is not available in the {self._stage.name} stage.")
        self._busy = True
        self._error = None
        self._notify()
        try:
            yield
        finally:
            self._busy = False
            self._notify()

    def _advance(self, stage: Stage) -> None:
        logger.info("Stage %s -> %s", self._stage.name, stage.name)
        self._stage = stage
        self._notify()

    def _fail(self, message: str, exc: BaseException) -> bool:
        logger.error("%s (stage %s)", message, self._stage.name, exc_info=exc)
        self._error = message
        return False

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.view()
        for observer in list(self._observers):
            observer(snapshot)


def new_run_id() -> str:
    """Return a simple unique run identifier."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
