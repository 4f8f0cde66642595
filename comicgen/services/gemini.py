"""Gemini / Imagen / Veo client covering every generation step of the wizard."""

from __future__ import annotations

import json
import logging
import re
import textwrap
import time
from dataclasses import replace
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from PIL import Image, ImageDraw, UnidentifiedImageError

from ..errors import ParseError, PreconditionError, ProviderError
from ..types import PAGE_COUNT, Asset, Chapter, GenerationJob, Idea, Page, Story
from ..utils.files import atomic_write, ensure_dir, read_binary, sha256_hex
from ..utils.progress import progress_at
from ..utils.prompts import load_prompt
from .base import ProgressCallback, StorySession
from .job_poller import JobPoller
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_IMAGE_SIZES = {"1:1": (512, 512), "4:3": (640, 480)}
_MOCK_SFX = (
    "[SOUND of wind whooshing]",
    "[SOUND of footsteps]",
    "[SOUND of a happy chime]",
    "[SOUND of a rumble]",
)
_MOCK_CHAPTERS = ("A Curious Beginning", "Into the Unknown", "The Big Challenge", "Home Again")


class GeminiClient:
    """Talks to the Google generative APIs, or fakes them locally.

    When ``use_mock`` is True every call is answered with deterministic local
    data (placeholder PNGs, a scripted co-writer, video jobs that finish after
    two polls) so the whole wizard can be exercised without network access.
    """

    def __init__(
        self,
        assets_dir: str | Path,
        api_key: Optional[str] = None,
        text_model: str = "gemini-2.5-flash",
        image_model: str = "imagen-4.0-generate-001",
        video_model: str = "veo-2.0-generate-001",
        use_mock: bool = True,
        page_delay_sec: float = 5.0,
        poll_interval_sec: float = 10.0,
        video_timeout_sec: Optional[float] = 900.0,
        timeout: int = 120,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._assets_dir = ensure_dir(assets_dir)
        self._api_key = api_key
        self._text_model = text_model
        self._image_model = image_model
        self._video_model = video_model
        self._use_mock = use_mock
        self._client = None
        self._page_limiter = RateLimiter(page_delay_sec, sleep=sleep)
        self._poller = JobPoller(
            poll_interval_sec=poll_interval_sec,
            timeout_sec=video_timeout_sec,
            api_key=api_key,
            request_timeout=timeout,
            fetcher=self._mock_fetch if use_mock else None,
            sleep=sleep,
        )

    @classmethod
    def from_config(cls, config, sleep: Callable[[float], None] = time.sleep) -> "GeminiClient":
        """Build a client from a ``PipelineConfig``."""
        return cls(
            config.assets_dir,
            api_key=config.gemini_api_key,
            text_model=config.text_model,
            image_model=config.image_model,
            video_model=config.video_model,
            use_mock=config.enable_mock_generation,
            page_delay_sec=config.page_delay_sec,
            poll_interval_sec=config.poll_interval_sec,
            video_timeout_sec=config.video_timeout_sec,
            timeout=config.request_timeout,
            sleep=sleep,
        )

    # ------------------------------------------------------------------ character

    def describe_character(self, idea: Idea) -> str:
        """Return a prose description of the hero implied by ``idea``."""
        if idea.type == "image":
            prompt = load_prompt("describe_character_image")
        else:
            prompt = load_prompt("describe_character_text", {"idea": idea.content})

        if self._use_mock:
            text = self._mock_description(idea)
        else:
            text = self._generate_text(prompt, image=idea.image)

        if not text or not text.strip():
            raise ProviderError("The provider returned no character description.")
        return text.strip()

    def render_character_sheet(self, description: str) -> Asset:
        prompt = load_prompt("character_sheet", {"description": description})
        return self._render_image(prompt, aspect_ratio="1:1", label="character sheet")

    # ------------------------------------------------------------------ storyboard

    def open_story_session(self, system_prompt: Optional[str] = None) -> StorySession:
        instruction = system_prompt or load_prompt("story_persona")
        if self._use_mock:
            return StorySession(_MockChat())

        client = self._resolve_client()
        types = self._types()
        chat = client.chats.create(
            model=self._text_model,
            config=types.GenerateContentConfig(system_instruction=instruction),
        )
        return StorySession(_GeminiChat(chat))

    def send_turn(self, session: StorySession, message: str, *, record: bool = True) -> str:
        return session.exchange(message, record=record)

    def extract_approved_story(self, session: StorySession) -> Story:
        """Ask for the agreed outline as JSON and decode it.

        Raises ``ParseError`` when the reply is not usable; the session stays
        open so the user can approve again.
        """
        reply = session.exchange(load_prompt("story_extract"), record=False)
        return parse_story(reply)

    # ------------------------------------------------------------------ pages

    def render_story_pages(
        self,
        story: Story,
        character_description: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Page]:
        """Draft all page texts in one call, then illustrate them one by one."""
        notify = on_progress or (lambda _progress: None)
        drafts = normalise_pages(self._draft_pages(story, character_description))

        rendered: List[Page] = []
        for index, page in enumerate(drafts):
            number = index + 1
            notify(progress_at(index + 0.5, PAGE_COUNT, f"Generating image for page {number}..."))
            prompt = load_prompt("page_image", {"description": character_description, "scene": page.text})
            image = self._render_image(prompt, aspect_ratio="4:3", label=f"image for page {number}")
            rendered.append(replace(page, image=image))
            notify(progress_at(number, PAGE_COUNT, f"Page {number} complete."))

            if number < PAGE_COUNT:
                notify(
                    progress_at(
                        number,
                        PAGE_COUNT,
                        f"Pausing for {self._page_limiter.label} to respect API limits...",
                    )
                )
                self._page_limiter.wait()
        return rendered

    def _draft_pages(self, story: Story, character_description: str) -> Any:
        chapter_count = max(1, len(story.chapters))
        prompt = load_prompt(
            "story_pages",
            {
                "page_count": PAGE_COUNT,
                "pages_per_chapter": max(1, PAGE_COUNT // chapter_count),
                "title": story.title,
                "chapters": ", ".join(chapter.title for chapter in story.chapters),
                "description": character_description,
            },
        )
        if self._use_mock:
            return self._mock_pages(story)

        client = self._resolve_client()
        types = self._types()
        response = client.models.generate_content(
            model=self._text_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=_page_batch_schema(types),
            ),
        )
        text = getattr(response, "text", None)
        if not text:
            raise ProviderError("The provider returned no page content.")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderError("The page batch could not be decoded as JSON.") from exc
        return payload.get("pages") if isinstance(payload, dict) else payload

    # ------------------------------------------------------------------ video

    def render_video_for_page(self, page: Page) -> Asset:
        """Animate the page illustration and return the downloaded clip."""
        label = f"page {page.page_number}"
        if page.image is None or not Path(page.image.local_path).is_file():
            raise PreconditionError(f"Page {page.page_number} is missing image data for video generation.")

        image_bytes = read_binary(page.image.local_path)
        prompt = load_prompt("page_video", {"scene": page.text})
        logger.info("Starting video generation for %s", label)

        if self._use_mock:
            job = GenerationJob(handle={"page": page.page_number, "polls": 0})
            data = self._poller.run(job, self._refresh_mock_job, label=label)
            return self._store_asset(data, media_type="video", ext="txt", mime_type="text/plain")

        job = self._submit_video(prompt, image_bytes)
        data = self._poller.run(job, self._refresh_video_job, label=label)
        logger.info("Video for %s downloaded (%d bytes)", label, len(data))
        return self._store_asset(data, media_type="video", ext="mp4", mime_type="video/mp4")

    def _submit_video(self, prompt: str, image_bytes: bytes) -> GenerationJob:
        client = self._resolve_client()
        types = self._types()
        operation = client.models.generate_videos(
            model=self._video_model,
            prompt=prompt,
            image=types.Image(image_bytes=image_bytes, mime_type=image_mime_type(image_bytes)),
            config=types.GenerateVideosConfig(number_of_videos=1),
        )
        return self._job_from_operation(operation)

    def _refresh_video_job(self, job: GenerationJob) -> GenerationJob:
        operation = self._resolve_client().operations.get(job.handle)
        return self._job_from_operation(operation)

    @staticmethod
    def _job_from_operation(operation: Any) -> GenerationJob:
        uri: Optional[str] = None
        response = getattr(operation, "response", None) or getattr(operation, "result", None)
        videos = getattr(response, "generated_videos", None) or []
        if videos:
            video = getattr(videos[0], "video", None)
            uri = getattr(video, "uri", None)
        return GenerationJob(
            handle=operation,
            done=bool(getattr(operation, "done", False)),
            result_uri=uri,
            error=getattr(operation, "error", None),
        )

    # ------------------------------------------------------------------ provider plumbing

    def _generate_text(self, prompt: str, image: Optional[bytes] = None) -> Optional[str]:
        client = self._resolve_client()
        types = self._types()
        contents: Any = prompt
        if image:
            contents = [types.Part.from_bytes(data=image, mime_type=image_mime_type(image)), prompt]
        response = client.models.generate_content(model=self._text_model, contents=contents)
        return getattr(response, "text", None)

    def _render_image(self, prompt: str, *, aspect_ratio: str, label: str) -> Asset:
        if self._use_mock:
            data: Optional[bytes] = self._mock_png(prompt, _IMAGE_SIZES.get(aspect_ratio, (512, 512)))
        else:
            client = self._resolve_client()
            types = self._types()
            response = client.models.generate_images(
                model=self._image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/png",
                    aspect_ratio=aspect_ratio,
                ),
            )
            data = self._first_image_bytes(response)

        if not data:
            raise ProviderError(f"Failed to generate {label}.")
        return self._store_asset(data, media_type="image", ext="png", mime_type="image/png")

    @staticmethod
    def _first_image_bytes(response: Any) -> Optional[bytes]:
        for generated in getattr(response, "generated_images", None) or []:
            image = getattr(generated, "image", None)
            data = getattr(image, "image_bytes", None)
            if data:
                return data
        return None

    def _store_asset(self, data: bytes, *, media_type: str, ext: str, mime_type: str) -> Asset:
        digest = sha256_hex(data)
        path = atomic_write(self._assets_dir / f"{digest}.{ext}", data)
        width = height = None
        if media_type == "image":
            try:
                with Image.open(BytesIO(data)) as image:
                    width, height = image.size
            except (UnidentifiedImageError, OSError):
                logger.warning("Stored image %s could not be inspected", digest)
        return Asset(
            asset_id=digest,
            media_type=media_type,
            local_path=str(path),
            mime_type=mime_type,
            ext=ext,
            sha256=digest,
            width=width,
            height=height,
        )

    def _resolve_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise RuntimeError("Gemini API key is missing; set GEMINI_API_KEY or enable mock generation.")
        try:
            from google import genai  # type: ignore
        except ImportError as exc:  # pragma: no cover - guarded dependency
            raise RuntimeError(
                "google-genai is required for real Gemini calls. Install via `pip install google-genai`."
            ) from exc
        self._client = genai.Client(api_key=self._api_key)
        return self._client

    @staticmethod
    def _types():
        from google.genai import types  # type: ignore

        return types

    # ------------------------------------------------------------------ mock fallbacks

    @staticmethod
    def _mock_description(idea: Idea) -> str:
        source = "the character in the uploaded picture" if idea.type == "image" else idea.content.strip()
        return (
            f"A cheerful young hero inspired by {source}. "
            "They wear a bright red scarf over a sky-blue jumpsuit with silver buttons, "
            "have big round eyes full of curiosity and a tuft of hair that never stays flat. "
            "A small star-shaped badge is always pinned to their chest."
        )

    @staticmethod
    def _mock_png(prompt: str, size: tuple[int, int]) -> bytes:
        digest = sha256_hex(prompt.encode("utf-8"))
        background = tuple(int(digest[offset : offset + 2], 16) for offset in (0, 2, 4))
        image = Image.new("RGB", size, background)
        draw = ImageDraw.Draw(image)
        caption = prompt[:240].encode("ascii", "replace").decode("ascii")
        draw.text((12, 12), "\n".join(textwrap.wrap(caption, 48)), fill=(255, 255, 255))
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    @staticmethod
    def _mock_pages(story: Story) -> List[Dict[str, Any]]:
        titles = [chapter.title for chapter in story.chapters] or list(_MOCK_CHAPTERS)
        per_chapter = max(1, PAGE_COUNT // len(titles))
        pages: List[Dict[str, Any]] = []
        for index in range(PAGE_COUNT):
            chapter = min(len(titles), index // per_chapter + 1)
            text = f"{titles[chapter - 1]}: scene {index % per_chapter + 1} of {story.title}."
            pages.append(
                {
                    "pageNumber": index + 1,
                    "chapter": chapter,
                    "text": text,
                    "narrationScript": text,
                    "sfx": _MOCK_SFX[index % len(_MOCK_SFX)],
                }
            )
        return pages

    @staticmethod
    def _refresh_mock_job(job: GenerationJob) -> GenerationJob:
        handle = dict(job.handle)
        handle["polls"] += 1
        done = handle["polls"] >= 2
        uri = f"mock://videos/page_{handle['page']:02d}" if done else None
        return GenerationJob(handle=handle, done=done, result_uri=uri)

    @staticmethod
    def _mock_fetch(uri: str) -> bytes:
        return f"[Mock video]\nSource: {uri}\n".encode("utf-8")


class _GeminiChat:
    """Adapts a ``google.genai`` chat to the ``ChatBackend`` protocol."""

    def __init__(self, chat: Any) -> None:
        self._chat = chat

    def send_message(self, message: str) -> str:
        response = self._chat.send_message(message)
        return getattr(response, "text", None) or ""


class _MockChat:
    """Scripted co-writer: proposes an outline, then returns it as fenced JSON."""

    def __init__(self) -> None:
        self._turns = 0

    def send_message(self, message: str) -> str:
        if message.strip() == load_prompt("story_extract"):
            outline = {
                "title": "The Great Adventure",
                "coverConcept": "Our hero stands on a hilltop under a sky full of stars.",
                "chapters": [{"title": title} for title in _MOCK_CHAPTERS],
            }
            return "```json\n" + json.dumps(outline, indent=2) + "\n```"

        self._turns += 1
        chapters = "\n".join(f"{index}. {title}" for index, title in enumerate(_MOCK_CHAPTERS, start=1))
        return (
            f"Draft {self._turns}!\n"
            "Title: The Great Adventure\n"
            "Cover: Our hero stands on a hilltop under a sky full of stars.\n"
            f"Chapters:\n{chapters}\n"
            "Happy with it? Say 'I approve the story' to continue."
        )


def parse_story(text: str) -> Story:
    """Decode the approved outline, tolerating a fenced code block wrapper."""
    match = _FENCED_BLOCK.search(text or "")
    payload = match.group(1) if match else (text or "")
    try:
        data = json.loads(payload.strip())
    except json.JSONDecodeError as exc:
        raise ParseError("The approved story outline is not valid JSON.") from exc

    if not isinstance(data, dict):
        raise ParseError("The approved story outline must be a JSON object.")
    title = data.get("title")
    raw_chapters = data.get("chapters")
    if not isinstance(title, str) or not title.strip():
        raise ParseError("The approved story outline has no title.")
    if not isinstance(raw_chapters, list) or not raw_chapters:
        raise ParseError("The approved story outline has no chapters.")

    chapters: List[Chapter] = []
    for entry in raw_chapters:
        chapter_title = entry.get("title") if isinstance(entry, dict) else entry
        if not isinstance(chapter_title, str) or not chapter_title.strip():
            raise ParseError("Every chapter in the approved outline needs a title.")
        chapters.append(Chapter(title=chapter_title.strip()))

    cover = data.get("coverConcept") or data.get("cover_concept") or ""
    return Story(title=title.strip(), cover_concept=str(cover).strip(), chapters=tuple(chapters))


def normalise_pages(raw: Any) -> List[Page]:
    """Turn drafted page dicts into exactly ``PAGE_COUNT`` numbered pages."""
    entries = [entry for entry in raw if isinstance(entry, dict)] if isinstance(raw, list) else []
    if len(entries) < PAGE_COUNT:
        raise ProviderError(f"Expected {PAGE_COUNT} pages but the provider drafted {len(entries)}.")
    if len(entries) > PAGE_COUNT:
        logger.warning("Provider drafted %d pages; keeping the first %d", len(entries), PAGE_COUNT)

    pages: List[Page] = []
    for index, entry in enumerate(entries[:PAGE_COUNT]):
        text = str(entry.get("text") or "").strip()
        if not text:
            raise ProviderError(f"Drafted page {index + 1} has no text.")
        pages.append(
            Page(
                page_number=index + 1,
                chapter=_as_int(entry.get("chapter"), default=index // 4 + 1),
                text=text,
                narration_script=str(entry.get("narrationScript") or text).strip(),
                sfx=str(entry.get("sfx") or "").strip(),
            )
        )
    return pages


def _as_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _page_batch_schema(types: Any) -> Any:
    page = types.Schema(
        type=types.Type.OBJECT,
        properties={
            "pageNumber": types.Schema(type=types.Type.INTEGER),
            "chapter": types.Schema(type=types.Type.INTEGER),
            "text": types.Schema(
                type=types.Type.STRING,
                description="The dialogue or story text for this comic panel.",
            ),
            "narrationScript": types.Schema(
                type=types.Type.STRING,
                description="The script for a narrator to read for this panel.",
            ),
            "sfx": types.Schema(
                type=types.Type.STRING,
                description="A simple sound effect cue, e.g., [SOUND of wind howling].",
            ),
        },
        required=["pageNumber", "chapter", "text", "narrationScript", "sfx"],
    )
    return types.Schema(
        type=types.Type.OBJECT,
        properties={"pages": types.Schema(type=types.Type.ARRAY, items=page)},
        required=["pages"],
    )


def image_mime_type(data: bytes, default: str = "image/png") -> str:
    """MIME type of encoded image bytes as reported by Pillow."""
    try:
        with Image.open(BytesIO(data)) as image:
            return Image.MIME.get(image.format or "", default)
    except (UnidentifiedImageError, OSError):
        return default
