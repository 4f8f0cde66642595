"""Premiere stage: the finalize step and the narrated movie player."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from ..errors import PreconditionError
from ..services.rate_limiter import RateLimiter
from ..types import Page, ProjectState
from .base import BaseStage

logger = logging.getLogger(__name__)

PAGE_GAP_SEC = 1.0


class FinalizeMovie(BaseStage):
    """Fixed-duration assembly step that precedes playback and downloads."""

    def __init__(self, run_id: str, logger, limiter: RateLimiter) -> None:
        super().__init__(name="FinalizeMovie", run_id=run_id, logger=logger)
        self._limiter = limiter

    def run(self, state: ProjectState) -> ProjectState:
        if not state.pages:
            raise PreconditionError("There are no pages to assemble.")
        self.log_prompt(f"Assembling {len(state.pages)} pages into the final movie.")
        self._limiter.wait()
        self.log_response({"animated_pages": [page.page_number for page in state.pages if page.video]})
        return state


class Narrator(Protocol):
    """Speech synthesis sink; ``speak`` returns once the utterance has ended."""

    def speak(self, text: str) -> None:
        ...


@dataclass(frozen=True, slots=True)
class Cue:
    """What the player shows and says for one page."""

    page_number: int
    media_path: str
    is_video: bool
    narration: str


def playback_cues(pages: Sequence[Page]) -> List[Cue]:
    """Return one cue per page, preferring the clip over the still image."""
    cues: List[Cue] = []
    for page in pages:
        media = page.video or page.image
        cues.append(
            Cue(
                page_number=page.page_number,
                media_path=media.local_path if media else "",
                is_video=page.video is not None,
                narration=page.narration_script,
            )
        )
    return cues


class MoviePlayer:
    """Plays the pages in order, one narrated utterance each, with a 1s gap."""

    def __init__(
        self,
        pages: Sequence[Page],
        narrator: Narrator,
        on_cue: Optional[Callable[[Cue], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cues = playback_cues(pages)
        self._narrator = narrator
        self._on_cue = on_cue or (lambda _cue: None)
        self._sleep = sleep
        self._stopped = False
        self.current: Optional[Cue] = None

    def play(self) -> int:
        """Play until the last page or ``stop()``; return the number of pages shown."""
        self._stopped = False
        shown = 0
        for cue in self._cues:
            if self._stopped:
                break
            self.current = cue
            self._on_cue(cue)
            self._narrator.speak(cue.narration)
            shown += 1
            self._sleep(PAGE_GAP_SEC)
        self.current = None
        return shown

    def stop(self) -> None:
        logger.info("Movie playback stopped")
        self._stopped = True
