"""Command-line entry point for the comic movie maker."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from comicgen.config import PipelineConfig
from comicgen.errors import ComicGenError
from comicgen.export import (
    PAGES_ARCHIVE_NAME,
    export_pages_zip,
    export_scene_videos,
    movie_filename,
    render_slideshow,
)
from comicgen.ideas import build_idea
from comicgen.pipeline import DEFAULT_SELECTION, ComicMovieMaker


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Turn an idea into an illustrated, partly animated comic.")
    parser.add_argument("idea", nargs="?", default="", help="The story idea, e.g. 'a squirrel who is an astronaut'.")
    parser.add_argument("--image", help="Reference image for the main character.")
    parser.add_argument(
        "--voice",
        action="store_true",
        help="Treat the idea text as a voice transcript.",
    )
    parser.add_argument(
        "--select",
        type=int,
        nargs=4,
        metavar="PAGE",
        default=[index + 1 for index in DEFAULT_SELECTION],
        help="The four page numbers (1-16) to animate.",
    )
    parser.add_argument(
        "--feedback",
        action="append",
        default=[],
        help="A message for the story co-writer before approving. Repeatable.",
    )
    parser.add_argument("--live", action="store_true", help="Call the Google APIs instead of the local mocks.")
    parser.add_argument("--movie", action="store_true", help="Also render a slideshow movie with ffmpeg.")
    parser.add_argument("--output", help="Directory for the exported files (default: outputs/<run id>).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point used by ``python run.py``."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = PipelineConfig.from_env()
    if args.live:
        config = replace(config, enable_mock_generation=False)

    try:
        if args.image:
            idea = build_idea("image", args.idea, Path(args.image).read_bytes())
        else:
            idea = build_idea("voice" if args.voice else "text", args.idea)
    except (OSError, ValueError) as exc:
        print(f"Invalid idea: {exc}", file=sys.stderr)
        return 2

    maker = ComicMovieMaker(config)
    try:
        controller = maker.run(
            idea,
            selection=[number - 1 for number in args.select],
            feedback=args.feedback,
        )
        view = controller.view()
        output_dir = Path(args.output or Path(config.outputs_dir) / controller.run_id)
        archive = export_pages_zip(view.pages, output_dir / PAGES_ARCHIVE_NAME)
        scenes = export_scene_videos(view.pages, output_dir)
        movie = None
        if args.movie:
            movie = render_slideshow(view.pages, output_dir / movie_filename(view.story.title))
    except ComicGenError as exc:
        print(f"Generation failed: {exc}", file=sys.stderr)
        return 1

    print("Generation completed.")
    print(f"Story: {view.story.title}")
    print(f"Pages archive: {archive}")
    print(f"Animated scenes: {', '.join(str(path) for path in scenes) or 'N/A'}")
    if movie is not None:
        print(f"Movie: {movie}")
    print("Prompt and response logs are stored under runs/")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
