"""Turning raw user input (typed text, a voice transcript, an upload) into an Idea."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from .types import IDEA_TYPES, Idea

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_IDEA = "A character from the image"
MAX_IDEA_IMAGE_DIM = 2048


def prepare_idea_image(raw_bytes: bytes, max_dim: int = MAX_IDEA_IMAGE_DIM) -> bytes:
    """Re-encode an uploaded picture as a PNG the provider accepts inline.

    Animated files contribute their first frame, EXIF rotation is applied and
    oversized images are scaled down to ``max_dim`` on their longest side.
    """
    try:
        with Image.open(BytesIO(raw_bytes)) as image:
            if getattr(image, "n_frames", 1) > 1:
                image.seek(0)
            image = ImageOps.exif_transpose(image)
            if image.mode not in {"RGB", "RGBA"}:
                image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
            if max(image.size) > max_dim:
                image.thumbnail((max_dim, max_dim), Image.LANCZOS)
            output = BytesIO()
            image.save(output, format="PNG", optimize=True)
            return output.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("The uploaded file is not a readable image.") from exc


def build_idea(input_type: str, text: str = "", image: Optional[bytes] = None) -> Idea:
    """Validate form input and build the matching ``Idea``.

    Text and voice ideas need non-blank text; image ideas need the picture and
    fall back to a generic caption when no text accompanies it.
    """
    if input_type not in IDEA_TYPES:
        raise ValueError(f"Unknown idea type: {input_type!r}")
    content = (text or "").strip()
    if input_type == "image":
        if not image:
            raise ValueError("Choose an image before submitting an image idea.")
        return Idea(type="image", content=content or DEFAULT_IMAGE_IDEA, image=prepare_idea_image(image))
    if not content:
        raise ValueError(f"A {input_type} idea needs some text.")
    return Idea(type=input_type, content=content)  # type: ignore[arg-type]


class SpeechRecognizer(Protocol):
    """Speech-to-text engine that reports back through a ``VoiceRecording``."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...


class VoiceRecording:
    """User-toggled recording session yielding at most one final transcript.

    The recognizer drives the ``on_*`` callbacks. Recognition errors such as
    ``no-speech`` or ``not-allowed`` simply end the session without a
    transcript.
    """

    def __init__(self, recognizer: Optional[SpeechRecognizer]) -> None:
        self._recognizer = recognizer
        self.recording = False
        self.transcript = ""

    @property
    def supported(self) -> bool:
        return self._recognizer is not None

    def toggle(self) -> None:
        if self._recognizer is None:
            logger.warning("Speech recognition is not available; voice ideas are disabled.")
            return
        if self.recording:
            self._recognizer.stop()
        else:
            self.transcript = ""
            self._recognizer.start()

    def on_start(self) -> None:
        self.recording = True

    def on_result(self, transcript: str) -> None:
        if self.recording and not self.transcript:
            self.transcript = transcript.strip()

    def on_error(self, code: str) -> None:
        if code == "no-speech":
            logger.info("No speech was detected.")
        elif code == "not-allowed":
            logger.warning("Microphone access was not granted.")
        else:
            logger.warning("Speech recognition error: %s", code)
        self.recording = False

    def on_end(self) -> None:
        self.recording = False

    def to_idea(self) -> Idea:
        return build_idea("voice", self.transcript)
