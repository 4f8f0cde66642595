"""Core data models used across the comic movie pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List, Literal, Optional, Tuple

PAGE_COUNT = 16
ANIMATION_SLOTS = 4
APPROVAL_PHRASE = "i approve the story"

IdeaType = Literal["text", "voice", "image"]
IDEA_TYPES: Tuple[str, ...] = ("text", "voice", "image")


class Stage(IntEnum):
    """The six wizard stages, in order."""

    SPARK = 1
    CHARACTER_LAB = 2
    STORYBOARD = 3
    CREATION_ENGINE = 4
    ANIMATE = 5
    PREMIERE = 6


@dataclass(frozen=True, slots=True)
class Idea:
    """The seed concept submitted in the Spark stage."""

    type: IdeaType
    content: str
    image: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.type not in IDEA_TYPES:
            raise ValueError(f"Unknown idea type: {self.type!r}")
        if not self.content or not self.content.strip():
            raise ValueError("An idea always needs textual content.")
        if self.type == "image" and not self.image:
            raise ValueError("Image ideas require image bytes.")
        if self.type != "image" and self.image is not None:
            raise ValueError(f"{self.type} ideas cannot carry an image.")


@dataclass(frozen=True, slots=True)
class Asset:
    """An image or video artifact stored under the assets directory."""

    asset_id: str
    media_type: str
    local_path: str
    mime_type: str
    ext: Optional[str] = None
    sha256: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(slots=True)
class Character:
    """Generated protagonist: prose description plus the character sheet."""

    detailed_description: str
    image: Asset


@dataclass(frozen=True, slots=True)
class Chapter:
    title: str


@dataclass(frozen=True, slots=True)
class Story:
    """Approved outline extracted from the storyboard conversation."""

    title: str
    cover_concept: str
    chapters: Tuple[Chapter, ...]


@dataclass(slots=True)
class Page:
    """One comic panel with its text, artwork and optional animation."""

    page_number: int
    chapter: int
    text: str
    narration_script: str
    sfx: str
    image: Optional[Asset] = None
    animate: bool = False
    video: Optional[Asset] = None


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Literal["user", "model"]
    text: str


@dataclass(slots=True)
class GenerationJob:
    """Provider-side asynchronous render tracked by the poller."""

    handle: Any
    done: bool = False
    result_uri: Optional[str] = None
    error: Optional[Any] = None


@dataclass(frozen=True, slots=True)
class Progress:
    percent: float = 0.0
    status: str = ""


@dataclass(slots=True)
class ProjectState:
    """Canonical project data, owned by the stage controller."""

    idea: Optional[Idea] = None
    character: Optional[Character] = None
    story: Optional[Story] = None
    pages: List[Page] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ProjectView:
    """Read-only projection of the controller handed to observers."""

    stage: Stage
    busy: bool
    error: Optional[str]
    progress: Progress
    animation_status: str
    finalized: bool
    idea: Optional[Idea]
    character: Optional[Character]
    story: Optional[Story]
    pages: Tuple[Page, ...]
    messages: Tuple[ChatMessage, ...]
