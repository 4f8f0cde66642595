"""Error taxonomy and normalisation of provider failures into user-facing text."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, Sequence

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


class ComicGenError(RuntimeError):
    """Base class for every error raised by the pipeline."""


class ProviderError(ComicGenError):
    """The provider returned an unusable or empty result."""


class ParseError(ComicGenError):
    """Structured output could not be decoded; the caller may retry."""


class PreconditionError(ComicGenError):
    """An operation ran on data missing a required prior artifact."""


class FetchError(ComicGenError):
    """A finished job's artifact could not be downloaded."""


class ResultMissingError(ComicGenError):
    """A job reported completion without a result locator."""


class JobTimeoutError(ComicGenError):
    """A job did not complete before the poll deadline."""


class SessionBusyError(ComicGenError):
    """A second turn was sent while one is still in flight on a chat session."""


class StageError(ComicGenError):
    """An operation was invoked in the wrong stage or while another is running."""


class SelectionError(ComicGenError, ValueError):
    """The set of pages chosen for animation is invalid."""


class ExportError(ComicGenError):
    """Packaging the finished pages into an archive or movie failed."""


class PipelineHaltedError(ComicGenError):
    """An unattended run stopped because a stage reported an error."""

    def __init__(self, stage_name: str, message: str) -> None:
        super().__init__(f"{stage_name}: {message}")
        self.stage_name = stage_name


class PageAnimationError(ComicGenError):
    """Rendering the video for one selected page failed; the batch stopped there."""

    def __init__(self, page_number: int, cause: BaseException) -> None:
        super().__init__(f"Failed to generate video for page {page_number}. {describe_error(cause)}")
        self.page_number = page_number
        self.cause = cause


def _from_json_body(err: Any) -> Optional[str]:
    text = str(err) if isinstance(err, BaseException) else err
    if not isinstance(text, str):
        return None
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    return _nested_message(payload)


def _from_exception(err: Any) -> Optional[str]:
    if isinstance(err, BaseException):
        return str(err) or None
    return None


def _nested_message(err: Any) -> Optional[str]:
    if isinstance(err, dict):
        inner = err.get("error")
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
        return None
    inner = getattr(err, "error", None)
    if isinstance(inner, dict) and inner.get("message"):
        return str(inner["message"])
    message = getattr(inner, "message", None)
    return str(message) if message else None


def _from_string(err: Any) -> Optional[str]:
    return err if isinstance(err, str) and err else None


_EXTRACTORS: Sequence[Callable[[Any], Optional[str]]] = (
    _from_json_body,
    _from_exception,
    _nested_message,
    _from_string,
)


def describe_error(err: Any) -> str:
    """Return the most specific human readable message for ``err``.

    Provider failures arrive as exceptions, exceptions whose message is a
    JSON body shaped like ``{"error": {"message": ...}}``, plain mappings with
    the same shape, or bare strings. The first extractor that yields text wins.
    """
    for extract in _EXTRACTORS:
        message = extract(err)
        if message:
            return message
    return DEFAULT_ERROR_MESSAGE


__all__ = [
    "ComicGenError",
    "DEFAULT_ERROR_MESSAGE",
    "ExportError",
    "FetchError",
    "JobTimeoutError",
    "PageAnimationError",
    "PipelineHaltedError",
    "ParseError",
    "PreconditionError",
    "ProviderError",
    "ResultMissingError",
    "SelectionError",
    "SessionBusyError",
    "StageError",
    "describe_error",
]
