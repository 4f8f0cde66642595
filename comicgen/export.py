"""Packaging finished pages: image archive, scene clips and a slideshow movie."""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
import zipfile
from io import BytesIO
from pathlib import Path
from typing import List, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ExportError
from .types import Page
from .utils.files import atomic_write, ensure_dir, read_binary

PAGES_ARCHIVE_NAME = "comic_book_pages.zip"
MOVIE_SIZE = (1024, 768)
MOVIE_FPS = 30
MIN_PAGE_SECONDS = 3.0
NARRATION_CHARS_PER_SECOND = 12.5
# Fixed member timestamp so identical pages always zip to identical bytes.
_ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


def page_image_name(page: Page) -> str:
    return f"page_{page.page_number:02d}.png"


def scene_video_name(page: Page) -> str:
    ext = (page.video.ext if page.video and page.video.ext else "mp4").lstrip(".")
    return f"comic_movie_scene_{page.page_number}.{ext}"


def movie_filename(title: str) -> str:
    """File name for the slideshow, derived from the story title."""
    stem = re.sub(r"\s+", "_", title.strip())
    return f"{stem or 'comic_book_movie'}.mp4"


def narration_seconds(text: str) -> float:
    """Estimated on-screen time for a page at a relaxed reading speed."""
    return max(MIN_PAGE_SECONDS, len(text) / NARRATION_CHARS_PER_SECOND)


def export_pages_zip(pages: Sequence[Page], output_path: str | Path) -> Path:
    """Write every illustrated page into a zip as ``page_NN.png``."""
    buffer = BytesIO()
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for page in sorted(pages, key=lambda item: item.page_number):
                if page.image is None:
                    continue
                info = zipfile.ZipInfo(page_image_name(page), date_time=_ZIP_TIMESTAMP)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, read_binary(page.image.local_path))
    except OSError as exc:
        raise ExportError(f"Failed to create zip file: {exc}") from exc
    return atomic_write(output_path, buffer.getvalue())


def export_scene_videos(pages: Sequence[Page], output_dir: str | Path) -> List[Path]:
    """Copy each animated page's clip to ``comic_movie_scene_<n>.<ext>``."""
    target_dir = ensure_dir(output_dir)
    written: List[Path] = []
    for page in pages:
        if page.video is None:
            continue
        target = target_dir / scene_video_name(page)
        try:
            shutil.copyfile(page.video.local_path, target)
        except OSError as exc:
            raise ExportError(f"Failed to export scene {page.page_number}: {exc}") from exc
        written.append(target)
    return written


def letterbox_frame(image_bytes: bytes, size: tuple[int, int] = MOVIE_SIZE) -> Image.Image:
    """Fit the page image inside ``size`` on a black background."""
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            return ImageOps.pad(image.convert("RGB"), size, color=(0, 0, 0))
    except (UnidentifiedImageError, OSError) as exc:
        raise ExportError("A page image could not be decoded for the movie.") from exc


def render_slideshow(pages: Sequence[Page], output_path: str | Path, fps: int = MOVIE_FPS) -> Path:
    """Mux a silent slideshow of all pages with ffmpeg.

    Each page stays on screen for ``narration_seconds`` of its narration.
    """
    illustrated = [page for page in pages if page.image is not None]
    if not illustrated:
        raise ExportError("There are no illustrated pages to render.")

    output = Path(output_path)
    ensure_dir(output.parent)
    with tempfile.TemporaryDirectory(prefix="comicgen-movie-") as workdir:
        work = Path(workdir)
        manifest_lines: List[str] = []
        last_frame = None
        for page in illustrated:
            frame_path = work / page_image_name(page)
            letterbox_frame(read_binary(page.image.local_path)).save(frame_path, format="PNG")
            manifest_lines.append(f"file '{frame_path.as_posix()}'")
            manifest_lines.append(f"duration {narration_seconds(page.narration_script):.3f}")
            last_frame = frame_path
        # The concat demuxer ignores the duration of the final entry unless it is repeated.
        manifest_lines.append(f"file '{last_frame.as_posix()}'")
        manifest_path = work / "frames.txt"
        manifest_path.write_text("\n".join(manifest_lines) + "\n", encoding="utf-8")

        cmd = [
            "ffmpeg",
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(manifest_path),
            "-vf",
            f"fps={fps},format=yuv420p",
            "-c:v",
            "libx264",
            str(output),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise ExportError("ffmpeg is required to render the movie. Please install ffmpeg and retry.") from exc
        if result.returncode != 0:
            raise ExportError(
                "ffmpeg slideshow failed: "
                f"{result.stderr.strip() or result.stdout.strip() or 'unknown error'}"
            )
    return output
