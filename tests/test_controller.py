"""Stage transitions and failure handling of the wizard controller."""

from __future__ import annotations

import tempfile
import unittest
from dataclasses import FrozenInstanceError
from pathlib import Path

from comicgen.controller import StageController
from comicgen.errors import ParseError, ProviderError, SelectionError, StageError
from comicgen.types import Idea, Stage

from support import FlakyGemini, mock_config, no_sleep

SQUIRREL = Idea(type="text", content="A squirrel who is an astronaut")


class ControllerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.config = mock_config(self.root)
        self.provider = FlakyGemini(self.config.assets_dir)
        self.controller = StageController.from_config(self.config, self.provider, run_id="test-run", sleep=no_sleep)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def drive_to(self, stage: Stage) -> None:
        c = self.controller
        if stage >= Stage.CHARACTER_LAB:
            self.assertTrue(c.submit_idea(SQUIRREL))
        if stage >= Stage.STORYBOARD:
            self.assertTrue(c.approve_character())
        if stage >= Stage.ANIMATE:
            self.assertTrue(c.send_story_message("I approve the story"))
        if stage >= Stage.PREMIERE:
            self.assertTrue(c.animate_pages([0, 5, 10, 15]))
        self.assertEqual(c.stage, stage)


class TransitionTest(ControllerTestCase):
    def test_happy_path_reaches_premiere(self) -> None:
        c = self.controller
        self.assertEqual(c.stage, Stage.SPARK)

        self.assertTrue(c.submit_idea(SQUIRREL))
        self.assertEqual(c.stage, Stage.CHARACTER_LAB)
        self.assertIn("squirrel", c.view().character.detailed_description.lower())
        self.assertTrue(Path(c.view().character.image.local_path).exists())

        self.assertTrue(c.approve_character())
        self.assertEqual(c.stage, Stage.STORYBOARD)
        self.assertEqual([m.role for m in c.messages], ["model"])

        self.assertTrue(c.send_story_message("Make it funnier please."))
        self.assertEqual(c.stage, Stage.STORYBOARD)
        self.assertEqual([m.role for m in c.messages], ["model", "user", "model"])

        self.assertTrue(c.send_story_message("Perfect, I approve the story!"))
        self.assertEqual(c.stage, Stage.ANIMATE)
        view = c.view()
        self.assertEqual(len(view.story.chapters), 4)
        self.assertEqual([p.page_number for p in view.pages], list(range(1, 17)))
        self.assertTrue(all(p.image is not None for p in view.pages))
        self.assertEqual(view.progress.percent, 100.0)

        self.assertTrue(c.animate_pages([15, 0, 5, 10]))
        self.assertEqual(c.stage, Stage.PREMIERE)
        animated = [p.page_number for p in c.view().pages if p.animate]
        self.assertEqual(animated, [1, 6, 11, 16])
        self.assertEqual(
            [call[1] for call in self.provider.calls if call[0] == "render_video_for_page"],
            [16, 1, 6, 11],
        )

        self.assertFalse(c.finalized)
        self.assertTrue(c.finalize())
        self.assertTrue(c.finalized)
        self.assertIsNone(c.error)

    def test_approval_phrase_is_case_insensitive(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        self.assertTrue(self.controller.send_story_message("OK. I APPROVE THE STORY."))
        self.assertEqual(self.controller.stage, Stage.ANIMATE)

    def test_empty_story_message_is_rejected(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        with self.assertRaises(ValueError):
            self.controller.send_story_message("   ")
        self.assertEqual(self.provider.count("send_turn"), 1)

    def test_view_pages_are_copies(self) -> None:
        self.drive_to(Stage.ANIMATE)
        page = self.controller.view().pages[0]
        page.text = "changed"
        self.assertNotEqual(self.controller.view().pages[0].text, "changed")

    def test_view_assets_cannot_reach_project_state(self) -> None:
        self.drive_to(Stage.ANIMATE)
        view = self.controller.view()
        with self.assertRaises(FrozenInstanceError):
            view.pages[3].image.local_path = "/nonexistent.png"
        with self.assertRaises(FrozenInstanceError):
            view.character.image.local_path = "/nonexistent.png"
        view.pages[3].image = None
        view.character.image = None
        snapshot = self.controller.pages_snapshot()
        snapshot[0].image = None

        self.assertIsNotNone(self.controller.view().character.image)
        self.assertTrue(self.controller.animate_pages([3, 0, 5, 10]))
        self.assertTrue(all(page.video is not None for page in self.controller.view().pages[0:11:5]))
        self.assertIsNotNone(self.controller.view().pages[3].video)

    def test_operation_in_wrong_stage_raises(self) -> None:
        with self.assertRaises(StageError):
            self.controller.animate_pages([0, 1, 2, 3])
        with self.assertRaises(StageError):
            self.controller.finalize()
        self.drive_to(Stage.CHARACTER_LAB)
        with self.assertRaises(StageError):
            self.controller.submit_idea(SQUIRREL)

    def test_operation_while_busy_raises(self) -> None:
        seen = []

        def observer(view) -> None:
            if view.busy and not seen:
                try:
                    self.controller.retry_character()
                except StageError as exc:
                    seen.append(exc)

        self.controller.subscribe(observer)
        self.assertTrue(self.controller.submit_idea(SQUIRREL))
        self.assertEqual(len(seen), 1)
        self.assertFalse(self.controller.busy)

    def test_unsubscribe_stops_notifications(self) -> None:
        views = []
        unsubscribe = self.controller.subscribe(views.append)
        self.controller.submit_idea(SQUIRREL)
        count = len(views)
        self.assertGreater(count, 0)
        unsubscribe()
        self.controller.retry_character()
        self.assertEqual(len(views), count)

    def test_finalize_is_idempotent(self) -> None:
        self.drive_to(Stage.PREMIERE)
        self.assertTrue(self.controller.finalize())
        self.assertTrue(self.controller.finalize())
        self.assertEqual(self.controller.stage, Stage.PREMIERE)


class CharacterFailureTest(ControllerTestCase):
    def test_failed_first_character_stays_in_spark(self) -> None:
        self.provider.fail("describe_character", ProviderError("quota"))
        self.assertFalse(self.controller.submit_idea(SQUIRREL))
        self.assertEqual(self.controller.stage, Stage.SPARK)
        self.assertEqual(self.controller.error, "Failed to create character. Please try again.")
        self.assertIsNone(self.controller.view().character)

        self.assertTrue(self.controller.submit_idea(SQUIRREL))
        self.assertIsNone(self.controller.error)
        self.assertEqual(self.controller.stage, Stage.CHARACTER_LAB)

    def test_try_again_uses_the_original_idea(self) -> None:
        self.drive_to(Stage.CHARACTER_LAB)
        self.assertTrue(self.controller.retry_character())
        ideas = [call[1] for call in self.provider.calls if call[0] == "describe_character"]
        self.assertEqual(ideas, [SQUIRREL, SQUIRREL])

    def test_failed_try_again_keeps_previous_character(self) -> None:
        self.drive_to(Stage.CHARACTER_LAB)
        before = self.controller.view().character
        self.provider.fail("describe_character", ProviderError("down"))
        self.assertFalse(self.controller.retry_character())
        self.assertEqual(self.controller.error, "Failed to generate a new character. Please try again.")
        self.assertEqual(self.controller.view().character, before)
        self.assertEqual(self.controller.stage, Stage.CHARACTER_LAB)


class StoryboardFailureTest(ControllerTestCase):
    def test_failed_session_start_can_be_retried(self) -> None:
        self.drive_to(Stage.CHARACTER_LAB)
        self.provider.fail("open_story_session", ProviderError("down"))
        self.assertFalse(self.controller.approve_character())
        self.assertEqual(self.controller.stage, Stage.STORYBOARD)
        self.assertEqual(self.controller.error, "Failed to start the storyboard session. Please try again.")
        with self.assertRaises(StageError):
            self.controller.send_story_message("hello")

        self.assertTrue(self.controller.open_storyboard())
        self.assertEqual(len(self.controller.messages), 1)

    def test_failed_turn_keeps_transcript(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        self.provider.fail("send_turn", ProviderError("hiccup"))
        self.assertFalse(self.controller.send_story_message("More dragons"))
        self.assertEqual(self.controller.error, "Failed to send your message. Please try again.")
        self.assertEqual(len(self.controller.messages), 1)

    def test_unparseable_outline_keeps_session_open(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        self.provider.fail("extract_approved_story", ParseError("bad json"))
        self.assertFalse(self.controller.send_story_message("I approve the story"))
        self.assertEqual(self.controller.stage, Stage.STORYBOARD)
        self.assertEqual(
            self.controller.error,
            "There was an issue finalizing the story. Please try approving again.",
        )
        self.assertIsNone(self.controller.view().story)
        transcript = len(self.controller.messages)
        self.assertEqual(transcript, 3)

        self.assertTrue(self.controller.send_story_message("I approve the story"))
        self.assertEqual(self.controller.stage, Stage.ANIMATE)
        self.assertEqual(self.controller.view().story.title, "The Great Adventure")


class CreationFailureTest(ControllerTestCase):
    def test_page_failure_publishes_nothing(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        self.provider.fail("render_story_pages", ProviderError("quota"))
        self.assertFalse(self.controller.send_story_message("I approve the story"))
        self.assertEqual(self.controller.stage, Stage.CREATION_ENGINE)
        self.assertEqual(self.controller.error, "Failed to generate story pages. Please try again.")
        self.assertEqual(self.controller.view().pages, ())

        self.assertTrue(self.controller.generate_pages())
        self.assertEqual(self.controller.stage, Stage.ANIMATE)
        self.assertEqual(len(self.controller.view().pages), 16)

    def test_progress_never_decreases(self) -> None:
        self.drive_to(Stage.STORYBOARD)
        percents = []
        self.controller.subscribe(
            lambda view: percents.append(view.progress.percent) if view.stage == Stage.CREATION_ENGINE else None
        )
        self.controller.send_story_message("I approve the story")
        self.assertEqual(percents, sorted(percents))
        self.assertEqual(percents[-1], 100.0)
        self.assertIn(50.0, percents)


class AnimationTest(ControllerTestCase):
    def test_second_video_failure_keeps_first_clip(self) -> None:
        self.drive_to(Stage.ANIMATE)
        self.provider.fail("render_video_for_page", None, ProviderError("Video quota exceeded"))
        self.assertFalse(self.controller.animate_pages([0, 5, 10, 15]))
        self.assertEqual(self.controller.stage, Stage.ANIMATE)
        self.assertEqual(self.controller.error, "Failed to generate video for page 6. Video quota exceeded")

        pages = self.controller.view().pages
        self.assertTrue(pages[0].animate)
        self.assertIsNotNone(pages[0].video)
        self.assertFalse(pages[5].animate)
        self.assertIsNone(pages[5].video)
        self.assertIsNone(pages[10].video)
        self.assertEqual(self.provider.count("render_video_for_page"), 2)

    def test_json_error_body_is_surfaced(self) -> None:
        self.drive_to(Stage.ANIMATE)
        self.provider.fail("render_video_for_page", ProviderError('{"error": {"message": "Quota hit"}}'))
        self.assertFalse(self.controller.animate_pages([0, 5, 10, 15]))
        self.assertEqual(self.controller.error, "Failed to generate video for page 1. Quota hit")

    def test_invalid_selections_make_no_provider_calls(self) -> None:
        self.drive_to(Stage.ANIMATE)
        for selection in ([0, 1, 2], [0, 1, 2, 3, 4], [0, 0, 1, 2], [0, 1, 2, 16], [-1, 1, 2, 3]):
            with self.subTest(selection=selection):
                with self.assertRaises(SelectionError):
                    self.controller.animate_pages(selection)
        self.assertEqual(self.provider.count("render_video_for_page"), 0)
        self.assertEqual(self.controller.stage, Stage.ANIMATE)
        self.assertFalse(self.controller.busy)


class PacingTest(unittest.TestCase):
    def test_delays_follow_the_configured_pacing(self) -> None:
        sleeps = []
        with tempfile.TemporaryDirectory() as tmp:
            config = mock_config(
                Path(tmp),
                page_delay_sec=5.0,
                video_delay_sec=60.0,
                poll_interval_sec=10.0,
                finalize_delay_sec=3.0,
            )
            controller = StageController.from_config(config, sleep=sleeps.append)
            controller.submit_idea(SQUIRREL)
            controller.approve_character()
            controller.send_story_message("I approve the story")
            controller.animate_pages([0, 5, 10, 15])
            controller.finalize()

        self.assertEqual(sleeps.count(5.0), 15)
        self.assertEqual(sleeps.count(60.0), 3)
        self.assertEqual(sleeps.count(10.0), 8)
        self.assertEqual(sleeps.count(3.0), 1)


if __name__ == "__main__":
    unittest.main()
