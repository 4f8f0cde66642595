"""Unattended orchestration of the six wizard stages."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, List, Optional, Sequence, TypedDict

from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, START, StateGraph

from .config import PipelineConfig
from .controller import StageController
from .errors import DEFAULT_ERROR_MESSAGE, PipelineHaltedError
from .services.base import GenerationProvider
from .stages.base import summarise
from .types import APPROVAL_PHRASE, Idea, Stage

logger = logging.getLogger(__name__)

DEFAULT_SELECTION = (0, 5, 10, 15)


class MovieRunState(TypedDict, total=False):
    """Graph state: the run inputs plus the names of the stages already passed."""

    idea: Idea
    selection: List[int]
    feedback: List[str]
    completed: List[str]


StepFn = Callable[[StageController, MovieRunState], bool]


class ComicMovieMaker:
    """High-level facade that drives one project from idea to premiere.

    Each wizard stage becomes a LangGraph node wrapping the matching
    controller operation. A stage whose operation reports failure
    stops the graph with ``PipelineHaltedError``.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        provider: Optional[GenerationProvider] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or PipelineConfig.from_env()
        self._provider = provider
        self._sleep = sleep

    def new_controller(self) -> StageController:
        return StageController.from_config(self.config, self._provider, sleep=self._sleep)

    def run(
        self,
        idea: Idea,
        *,
        selection: Sequence[int] = DEFAULT_SELECTION,
        feedback: Sequence[str] = (),
        controller: Optional[StageController] = None,
    ) -> StageController:
        """Execute all stages and return the controller holding the finished project."""
        controller = controller or self.new_controller()
        app = self._build_graph(controller).compile()
        app.invoke(
            {
                "idea": idea,
                "selection": list(selection),
                "feedback": list(feedback),
                "completed": [],
            }
        )
        return controller

    def _build_graph(self, controller: StageController) -> StateGraph:
        """Construct a linear LangGraph with one runnable per stage."""
        steps: List[tuple[Stage, StepFn]] = [
            (Stage.SPARK, _spark),
            (Stage.CHARACTER_LAB, _character_lab),
            (Stage.STORYBOARD, _storyboard),
            (Stage.CREATION_ENGINE, _creation_engine),
            (Stage.ANIMATE, _animate),
            (Stage.PREMIERE, _premiere),
        ]
        graph = StateGraph(MovieRunState)
        names: List[str] = []
        for stage, step in steps:
            name = stage.name.lower()
            graph.add_node(
                name,
                RunnableLambda(
                    lambda state, _name=name, _step=step: self._invoke_step(controller, _name, _step, state)
                ),
                metadata={"stage": int(stage), "may_block": stage in {Stage.CREATION_ENGINE, Stage.ANIMATE}},
            )
            names.append(name)

        graph.add_edge(START, names[0])
        for previous, current in zip(names, names[1:]):
            graph.add_edge(previous, current)
        graph.add_edge(names[-1], END)
        return graph

    def _invoke_step(
        self,
        controller: StageController,
        name: str,
        step: StepFn,
        state: MovieRunState,
    ) -> MovieRunState:
        """Run one stage while emitting structured IO traces."""
        self._log_step_io(name, "input", self._snapshot(controller))
        started = time.perf_counter()
        ok = step(controller, state)
        elapsed = time.perf_counter() - started
        self._log_step_io(name, "output", self._snapshot(controller), elapsed)
        if not ok:
            raise PipelineHaltedError(name, controller.error or DEFAULT_ERROR_MESSAGE)
        return {"completed": list(state.get("completed", [])) + [name]}

    def _snapshot(self, controller: StageController) -> Any:
        """Return a compact serialisable view of the project for logging."""
        return self._strip_empty(summarise(controller.view()))

    def _strip_empty(self, value: Any) -> Any:
        """Recursively remove empty containers for cleaner logging."""
        if isinstance(value, dict):
            return {k: self._strip_empty(v) for k, v in value.items() if not self._is_empty(v)}
        if isinstance(value, list):
            return [self._strip_empty(item) for item in value if not self._is_empty(item)]
        return value

    @staticmethod
    def _is_empty(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
            return True
        return False

    def _log_step_io(self, step: str, direction: str, payload: Any, elapsed: float | None = None) -> None:
        prefix = ">>" if direction == "input" else "<<"
        timing = f" [{elapsed:.2f}s]" if elapsed is not None else ""
        body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        logger.info("[%s] %s %s%s:\n%s", step, prefix, direction, timing, body)


def _spark(controller: StageController, state: MovieRunState) -> bool:
    return controller.submit_idea(state["idea"])


def _character_lab(controller: StageController, state: MovieRunState) -> bool:
    return controller.approve_character()


def _storyboard(controller: StageController, state: MovieRunState) -> bool:
    for message in state.get("feedback", []):
        if not controller.send_story_message(message):
            return False
    # Approval also enters the Creation Engine, whose outcome the next node checks.
    controller.send_story_message(APPROVAL_PHRASE)
    return controller.stage >= Stage.CREATION_ENGINE


def _creation_engine(controller: StageController, state: MovieRunState) -> bool:
    # Pages were generated on entry; a failure left the controller in stage 4.
    return controller.stage == Stage.ANIMATE


def _animate(controller: StageController, state: MovieRunState) -> bool:
    return controller.animate_pages(state.get("selection", list(DEFAULT_SELECTION)))


def _premiere(controller: StageController, state: MovieRunState) -> bool:
    return controller.finalize()
