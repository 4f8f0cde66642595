"""Tests for the premiere: archive export, slideshow rendering and playback."""

from __future__ import annotations

import subprocess
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from PIL import Image

from comicgen.errors import ExportError
from comicgen.export import (
    export_pages_zip,
    export_scene_videos,
    movie_filename,
    narration_seconds,
    render_slideshow,
)
from comicgen.stages.premiere import MoviePlayer, playback_cues
from comicgen.types import Asset, Page


def _asset(path: Path, media_type: str = "image", ext: str = "png") -> Asset:
    return Asset(asset_id=path.stem, media_type=media_type, local_path=str(path), mime_type="", ext=ext)


class ExportTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.pages = []
        for number in range(1, 5):
            image_path = self.root / f"img{number}.png"
            Image.new("RGB", (80, 60), (number * 40, 0, 0)).save(image_path)
            self.pages.append(
                Page(
                    page_number=number,
                    chapter=1,
                    text=f"Page {number}",
                    narration_script="n" * (number * 25),
                    sfx="",
                    image=_asset(image_path),
                )
            )
        clip = self.root / "clip.mp4"
        clip.write_bytes(b"fake mp4")
        self.pages[1].video = _asset(clip, media_type="video", ext="mp4")
        self.pages[1].animate = True

    def tearDown(self) -> None:
        self._tmp.cleanup()


class ArchiveTest(ExportTestCase):
    def test_zip_contains_numbered_pngs(self) -> None:
        self.pages[3].image = None
        archive = export_pages_zip(self.pages, self.root / "out" / "comic_book_pages.zip")
        with zipfile.ZipFile(archive) as handle:
            self.assertEqual(handle.namelist(), ["page_01.png", "page_02.png", "page_03.png"])
            self.assertEqual(handle.read("page_02.png"), Path(self.pages[1].image.local_path).read_bytes())

    def test_zip_is_reproducible(self) -> None:
        first = export_pages_zip(self.pages, self.root / "a.zip").read_bytes()
        second = export_pages_zip(list(reversed(self.pages)), self.root / "b.zip").read_bytes()
        self.assertEqual(first, second)

    def test_scene_videos_use_page_numbers(self) -> None:
        written = export_scene_videos(self.pages, self.root / "scenes")
        self.assertEqual([path.name for path in written], ["comic_movie_scene_2.mp4"])
        self.assertEqual(written[0].read_bytes(), b"fake mp4")

    def test_movie_filename(self) -> None:
        self.assertEqual(movie_filename("The Great  Adventure"), "The_Great_Adventure.mp4")
        self.assertEqual(movie_filename("   "), "comic_book_movie.mp4")

    def test_narration_seconds_has_a_floor(self) -> None:
        self.assertEqual(narration_seconds("short"), 3.0)
        self.assertEqual(narration_seconds("x" * 125), 10.0)


class SlideshowTest(ExportTestCase):
    def test_ffmpeg_receives_a_concat_manifest(self) -> None:
        manifests = []

        def fake_run(cmd, **kwargs):
            manifest = Path(cmd[cmd.index("-i") + 1])
            manifests.append(manifest.read_text(encoding="utf-8"))
            return subprocess.CompletedProcess(cmd, 0, "", "")

        with mock.patch("comicgen.export.subprocess.run", side_effect=fake_run) as run:
            output = render_slideshow(self.pages, self.root / "movie" / "The_Great_Adventure.mp4")

        self.assertEqual(output.name, "The_Great_Adventure.mp4")
        cmd = run.call_args.args[0]
        self.assertEqual(cmd[0], "ffmpeg")
        self.assertIn("concat", cmd)
        lines = manifests[0].splitlines()
        self.assertEqual(sum(1 for line in lines if line.startswith("file ")), 5)
        self.assertIn("duration 3.000", lines)
        self.assertIn("duration 8.000", lines)

    def test_ffmpeg_failure_raises_export_error(self) -> None:
        failed = subprocess.CompletedProcess(["ffmpeg"], 1, "", "codec missing")
        with mock.patch("comicgen.export.subprocess.run", return_value=failed):
            with self.assertRaises(ExportError) as ctx:
                render_slideshow(self.pages, self.root / "movie.mp4")
        self.assertIn("codec missing", str(ctx.exception))

    def test_missing_ffmpeg_raises_export_error(self) -> None:
        with mock.patch("comicgen.export.subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with self.assertRaises(ExportError):
                render_slideshow(self.pages, self.root / "movie.mp4")

    def test_no_images_raises_export_error(self) -> None:
        for page in self.pages:
            page.image = None
        with self.assertRaises(ExportError):
            render_slideshow(self.pages, self.root / "movie.mp4")


class _Narrator:
    def __init__(self) -> None:
        self.spoken = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)


class MoviePlayerTest(ExportTestCase):
    def test_cues_prefer_video(self) -> None:
        cues = playback_cues(self.pages)
        self.assertEqual([cue.is_video for cue in cues], [False, True, False, False])
        self.assertTrue(cues[1].media_path.endswith("clip.mp4"))

    def test_plays_every_page_with_gaps(self) -> None:
        narrator = _Narrator()
        sleeps = []
        shown = MoviePlayer(self.pages, narrator, sleep=sleeps.append).play()
        self.assertEqual(shown, 4)
        self.assertEqual(narrator.spoken, [page.narration_script for page in self.pages])
        self.assertEqual(sleeps, [1.0] * 4)

    def test_stop_halts_playback(self) -> None:
        narrator = _Narrator()
        players = []

        def on_cue(cue) -> None:
            if cue.page_number == 2:
                players[0].stop()

        player = MoviePlayer(self.pages, narrator, on_cue=on_cue, sleep=lambda _s: None)
        players.append(player)
        self.assertEqual(player.play(), 2)
        self.assertIsNone(player.current)


if __name__ == "__main__":
    unittest.main()
