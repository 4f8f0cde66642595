"""Stage turning the selected page illustrations into short video clips."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from ..errors import PageAnimationError, SelectionError
from ..services.base import GenerationProvider
from ..services.rate_limiter import RateLimiter
from ..types import ANIMATION_SLOTS, PAGE_COUNT, ProjectState
from .base import BaseStage

StatusCallback = Callable[[str], None]


def validate_selection(state: ProjectState, selection: Sequence[int]) -> List[int]:
    """Return ``selection`` as a list of 0-based page indices or raise ``SelectionError``."""
    indices = list(selection)
    if len(state.pages) != PAGE_COUNT:
        raise SelectionError("Animation needs the complete set of pages.")
    if len(indices) != ANIMATION_SLOTS:
        raise SelectionError(f"Select exactly {ANIMATION_SLOTS} pages to animate, got {len(indices)}.")
    if len(set(indices)) != len(indices):
        raise SelectionError("Each page can only be selected once.")
    for index in indices:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < PAGE_COUNT:
            raise SelectionError(f"Page index {index!r} is outside 0..{PAGE_COUNT - 1}.")
    return indices


class AnimatePages(BaseStage):
    """Renders one video per selected page, in selection order.

    Unlike the other stages this one writes into ``state.pages`` directly:
    each page is updated as soon as its clip arrives so that a failure
    further down the batch keeps the clips already produced.
    """

    def __init__(self, run_id: str, logger, provider: GenerationProvider, limiter: RateLimiter) -> None:
        super().__init__(name="AnimatePages", run_id=run_id, logger=logger)
        self._provider = provider
        self._limiter = limiter

    def run(
        self,
        state: ProjectState,
        selection: Sequence[int],
        on_status: Optional[StatusCallback] = None,
    ) -> ProjectState:
        notify = on_status or (lambda _status: None)
        indices = validate_selection(state, selection)
        self.log_prompt(f"Animating pages {[index + 1 for index in indices]}")

        total = len(indices)
        rendered: List[int] = []
        for position, index in enumerate(indices, start=1):
            page = state.pages[index]
            notify(
                f"Generating video {position} of {total} for page {index + 1}... This may take a moment."
            )
            try:
                video = self._provider.render_video_for_page(page)
            except Exception as exc:
                self.log_response({"rendered": rendered, "failed": index + 1, "error": str(exc)})
                raise PageAnimationError(index + 1, exc) from exc

            page.video = video
            page.animate = True
            rendered.append(index + 1)

            if position < total:
                notify(f"Pausing for {self._limiter.label} to cool down the video engine...")
                self._limiter.wait()

        self.log_response({"rendered": rendered})
        return state
