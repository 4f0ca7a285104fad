"""
Tests for the video manager: poll loop, continuation, flows, stitching and downloads.
Providers, ffmpeg and the clock are replaced by the doubles in _fakes.
Run from project root: python -m pytest tests/ -v
Or: python -m unittest discover -s tests -p "test_*.py" -v
"""
import json
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from _fakes import PNG_BYTES, FakeClock, FakeFrameExtractor, FakeStitcher, ScriptedProvider


def _config(data_dir: Path, **poll):
    from continuator.config import apply_overrides, load_config

    config = load_config(data_dir / "absent.yaml")
    config = apply_overrides(config, provider="sora", data_dir=str(data_dir), poll_interval=5.0, timeout=60.0)
    config["poll"].update(poll)
    return config


class ManagerTestCase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.data_dir = Path(tmp.name)
        self.clock = FakeClock()
        self.frames = FakeFrameExtractor()
        self.stitcher = FakeStitcher()

    def make_manager(self, provider: ScriptedProvider, **poll):
        from continuator.credentials import CredentialResolver
        from continuator.manager import VideoManager
        from continuator.models import ProviderKind

        return VideoManager(
            _config(self.data_dir, **poll),
            clients={ProviderKind.SORA: provider},
            credentials=CredentialResolver(explicit_tokens={ProviderKind.SORA: "test"}, env_vars={}),
            frames=self.frames,
            stitcher=self.stitcher,
            sleep=self.clock.sleep,
            clock=self.clock,
        )

    def request(self, local_id: str, prompt: str = "a lighthouse at dusk", **kwargs):
        from continuator.providers import GenerationRequest

        return GenerationRequest(local_id=local_id, prompt=prompt, **kwargs)

    def put_record(self, manager, clip_id: str, status, parent_id=None, with_file=False):
        from continuator.models import ClipRecord, ProviderKind

        record = ClipRecord(
            id=clip_id,
            provider=ProviderKind.SORA,
            remote_job_id=f"remote-{clip_id}",
            prompt="seeded",
            model="sora-2",
            size="1280x720",
            seconds=4,
            parent_id=parent_id,
        )
        if with_file:
            path = manager.video_path(clip_id)
            path.write_bytes(b"seeded-" + clip_id.encode())
            record = record.mark_ready(str(path))
        elif status.value == "failed":
            record = record.mark_failed("boom")
        return manager.registry.put(record)


class TestPollLoop(ManagerTestCase):
    def test_create_polls_until_success_and_stores_video(self):
        """Two in-progress answers then success: three polls, two sleeps, one ready file."""
        from continuator.models import ClipStatus
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.in_progress(10), JobStatus.in_progress(60), JobStatus.succeeded({})])
        manager = self.make_manager(provider)
        record = manager.create(self.request("intro"))

        self.assertEqual(provider.poll_calls, {"job-1": 3})
        self.assertEqual(self.clock.sleeps, [5.0, 5.0])
        self.assertEqual(record.status, ClipStatus.READY)
        self.assertEqual(Path(record.file_path), self.data_dir / "intro.mp4")
        self.assertEqual(Path(record.file_path).read_bytes(), b"VIDEO-job-1")
        self.assertEqual(record.remote_job_id, "job-1")

        on_disk = json.loads((self.data_dir / "registry.json").read_text(encoding="utf-8"))
        self.assertEqual([c["id"] for c in on_disk["clips"]], ["intro"])
        self.assertEqual(on_disk["clips"][0]["status"], "ready")

    def test_three_in_progress_then_success_polls_four_times_fetches_once(self):
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.in_progress()] * 3 + [JobStatus.succeeded({})])
        self.make_manager(provider).create(self.request("intro"))
        self.assertEqual(provider.poll_calls, {"job-1": 4})
        self.assertEqual(len(provider.fetch_calls), 1)

    def test_backoff_grows_interval_up_to_max(self):
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.in_progress()] * 3 + [JobStatus.succeeded({})])
        manager = self.make_manager(provider, backoff=2.0, max_interval_seconds=8.0)
        manager.create(self.request("intro"))
        self.assertEqual(self.clock.sleeps, [5.0, 8.0, 8.0])

    def test_defaults_fill_request_from_client(self):
        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        record = manager.create(self.request("intro"))
        sent = provider.submitted[0]
        self.assertEqual((sent.model, sent.size, sent.seconds), ("sora-2", "1280x720", 4))
        self.assertEqual((record.model, record.size, record.seconds), ("sora-2", "1280x720", 4))

    def test_asset_metadata_overrides_requested_values(self):
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.succeeded({"model": "sora-2-pro", "size": "720x1280", "seconds": 8})])
        record = self.make_manager(provider).create(self.request("intro"))
        self.assertEqual((record.model, record.size, record.seconds), ("sora-2-pro", "720x1280", 8))

    def test_timeout_marks_clip_failed_and_keeps_remote_id(self):
        """Deadline 12s at 5s interval: polls at t=0,5,10,12, then GenerationTimeoutError."""
        from continuator.errors import GenerationTimeoutError
        from continuator.models import ClipStatus
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.in_progress()])
        manager = self.make_manager(provider, timeout_seconds=12.0)
        with self.assertRaises(GenerationTimeoutError):
            manager.create(self.request("slow"))

        self.assertEqual(provider.poll_calls["job-1"], 4)
        self.assertEqual(self.clock.sleeps, [5.0, 5.0, 2.0])
        record = manager.get("slow")
        self.assertEqual(record.status, ClipStatus.FAILED)
        self.assertEqual(record.remote_job_id, "job-1")
        self.assertIsNone(record.file_path)
        self.assertFalse((self.data_dir / "slow.mp4").exists())

    def test_transport_error_while_polling_is_tolerated(self):
        from continuator.errors import TransportError
        from continuator.providers import JobStatus

        provider = ScriptedProvider([TransportError("connection reset"), JobStatus.succeeded({})])
        record = self.make_manager(provider).create(self.request("flaky"))
        self.assertTrue(record.is_ready)
        self.assertEqual(provider.poll_calls["job-1"], 2)

    def test_provider_failure_raises_job_failed(self):
        from continuator.errors import JobFailedError
        from continuator.models import ClipStatus
        from continuator.providers import JobStatus

        provider = ScriptedProvider([JobStatus.failed("moderation_blocked")])
        manager = self.make_manager(provider)
        with self.assertRaises(JobFailedError) as ctx:
            manager.create(self.request("blocked"))
        self.assertIn("moderation_blocked", str(ctx.exception))
        record = manager.get("blocked")
        self.assertEqual(record.status, ClipStatus.FAILED)
        self.assertIn("moderation_blocked", record.error)
        self.assertFalse((self.data_dir / "blocked.mp4").exists())

    def test_submit_error_registers_nothing(self):
        from continuator.errors import ValidationError

        provider = ScriptedProvider(submit_error=ValidationError("bad size"))
        manager = self.make_manager(provider)
        with self.assertRaises(ValidationError):
            manager.create(self.request("bad"))
        self.assertEqual(manager.list(), [])

    def test_existing_id_is_rejected_before_submit(self):
        from continuator.errors import ValidationError

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        manager.create(self.request("intro"))
        with self.assertRaises(ValidationError):
            manager.create(self.request("intro"))
        self.assertEqual(len(provider.submitted), 1)

    def test_failed_id_can_be_reused(self):
        from continuator.models import ClipStatus

        manager = self.make_manager(ScriptedProvider())
        self.put_record(manager, "retry", ClipStatus.FAILED)
        record = manager.create(self.request("retry"))
        self.assertTrue(record.is_ready)
        self.assertEqual(len(manager.list()), 1)

    def test_resume_finishes_pending_clip(self):
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "crashed", ClipStatus.PENDING)
        record = manager.resume("crashed")
        self.assertTrue(record.is_ready)
        self.assertEqual(provider.poll_calls, {"remote-crashed": 1})
        self.assertEqual(provider.submitted, [])

    def test_resume_ready_clip_is_noop(self):
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "done", ClipStatus.READY, with_file=True)
        self.assertTrue(manager.resume("done").is_ready)
        self.assertEqual(provider.poll_calls, {})


class TestContinue(ManagerTestCase):
    def test_continue_seeds_with_parent_last_frame(self):
        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        parent = manager.create(self.request("intro", size="720x1280", seconds=8))
        child = manager.continue_clip("intro", self.request("intro-2", prompt="the camera drifts"))

        self.assertEqual(self.frames.calls, [Path(parent.file_path)])
        sent = provider.submitted[1]
        self.assertEqual(sent.seed_image, PNG_BYTES)
        self.assertEqual(sent.seed_image_mime, "image/png")
        self.assertEqual((sent.size, sent.seconds), ("720x1280", 8))
        self.assertEqual(child.parent_id, "intro")
        self.assertTrue(child.is_ready)

    def test_continue_from_pending_parent_makes_no_remote_call(self):
        from continuator.errors import InvalidParentError
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "pending", ClipStatus.PENDING)
        with self.assertRaises(InvalidParentError):
            manager.continue_clip("pending", self.request("next"))
        self.assertEqual(provider.submitted, [])
        self.assertEqual(self.frames.calls, [])
        self.assertNotIn("next", manager.registry)

    def test_continue_from_failed_parent(self):
        from continuator.errors import InvalidParentError
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "broken", ClipStatus.FAILED)
        with self.assertRaises(InvalidParentError):
            manager.continue_clip("broken", self.request("next"))
        self.assertEqual(provider.submitted, [])

    def test_continue_from_unknown_parent(self):
        from continuator.errors import InvalidParentError

        manager = self.make_manager(ScriptedProvider())
        with self.assertRaises(InvalidParentError):
            manager.continue_clip("ghost", self.request("next"))

    def test_extraction_failure_propagates_without_submit(self):
        from continuator.errors import ExtractionError

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        manager.create(self.request("intro"))
        self.frames.error = ExtractionError("ffmpeg exited with status 1")
        with self.assertRaises(ExtractionError):
            manager.continue_clip("intro", self.request("next"))
        self.assertEqual(len(provider.submitted), 1)


class TestFlowAndStitch(ManagerTestCase):
    def test_flow_builds_chain_in_order_and_stitches(self):
        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        result = manager.flow(["first", "second", "third"], name="storm")

        self.assertEqual(result.chain_ids, ["storm-01", "storm-02", "storm-03"])
        self.assertEqual([p.prompt for p in provider.submitted], ["first", "second", "third"])
        self.assertIsNone(provider.submitted[0].seed_image)
        self.assertEqual(provider.submitted[1].seed_image, PNG_BYTES)
        self.assertEqual([r.parent_id for r in result.clips], [None, "storm-01", "storm-02"])

        self.assertEqual(len(self.stitcher.calls), 1)
        inputs, output = self.stitcher.calls[0]
        self.assertEqual(inputs, [self.data_dir / f"storm-0{i}.mp4" for i in (1, 2, 3)])
        self.assertEqual(output, self.data_dir / "storm.mp4")
        self.assertEqual(result.output_path, self.data_dir / "storm.mp4")
        self.assertNotIn("storm", manager.registry)

    def test_flow_failure_keeps_earlier_clips_and_skips_stitch(self):
        from continuator.errors import JobFailedError
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        provider.failing_prompts = {"second"}
        manager = self.make_manager(provider)
        with self.assertRaises(JobFailedError):
            manager.flow(["first", "second", "third"], name="storm")

        self.assertEqual(manager.get("storm-01").status, ClipStatus.READY)
        self.assertEqual(manager.get("storm-02").status, ClipStatus.FAILED)
        self.assertNotIn("storm-03", manager.registry)
        self.assertEqual(len(provider.submitted), 2)
        self.assertEqual(self.stitcher.calls, [])
        self.assertFalse((self.data_dir / "storm.mp4").exists())

    def test_flow_from_existing_chain_stitches_ancestors_first(self):
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "a", ClipStatus.READY, with_file=True)
        self.put_record(manager, "b", ClipStatus.READY, parent_id="a", with_file=True)
        result = manager.flow(["more"], name="tail", start_from="b", output_id="full")

        self.assertEqual(result.chain_ids, ["a", "b", "tail-01"])
        self.assertEqual(manager.get("tail-01").parent_id, "b")
        self.assertEqual(self.stitcher.calls[0][1], self.data_dir / "full.mp4")

    def test_flow_rejects_taken_ids_before_any_call(self):
        from continuator.errors import ValidationError
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "storm-02", ClipStatus.READY, with_file=True)
        with self.assertRaises(ValidationError):
            manager.flow(["first", "second"], name="storm")
        self.assertEqual(provider.submitted, [])

    def test_flow_output_may_not_reuse_its_own_clip_id(self):
        from continuator.errors import ValidationError

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        with self.assertRaises(ValidationError):
            manager.flow(["first", "second"], name="storm", output_id="storm-02")
        self.assertEqual(provider.submitted, [])
        self.assertEqual(manager.list(), [])

    def test_flow_needs_prompts(self):
        from continuator.errors import ValidationError

        with self.assertRaises(ValidationError):
            self.make_manager(ScriptedProvider()).flow([], name="empty")

    def test_stitch_unknown_clip_writes_nothing(self):
        from continuator.errors import MissingClipError

        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("intro"))
        with self.assertRaises(MissingClipError):
            manager.stitch("reel", ["intro", "ghost"])
        self.assertEqual(self.stitcher.calls, [])
        self.assertFalse((self.data_dir / "reel.mp4").exists())

    def test_stitch_pending_clip(self):
        from continuator.errors import MissingClipError
        from continuator.models import ClipStatus

        manager = self.make_manager(ScriptedProvider())
        self.put_record(manager, "pending", ClipStatus.PENDING)
        with self.assertRaises(MissingClipError):
            manager.stitch("reel", ["pending"])
        self.assertEqual(self.stitcher.calls, [])

    def test_stitch_missing_file_on_disk(self):
        from continuator.errors import MissingClipError

        manager = self.make_manager(ScriptedProvider())
        record = manager.create(self.request("intro"))
        Path(record.file_path).unlink()
        with self.assertRaises(MissingClipError):
            manager.stitch("reel", ["intro"])

    def test_stitch_output_may_not_shadow_clip(self):
        from continuator.errors import ValidationError

        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("intro"))
        with self.assertRaises(ValidationError):
            manager.stitch("intro", ["intro"])

    def test_stitch_concatenates_in_given_order(self):
        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("a"))
        manager.create(self.request("b"))
        path = manager.stitch("reel", ["b", "a"])
        self.assertEqual(path.read_bytes(), b"VIDEO-job-2VIDEO-job-1")


class TestDownload(ManagerTestCase):
    def test_download_twice_gives_identical_bytes(self):
        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("intro"))
        target = self.data_dir / "out" / "copy.mp4"
        manager.download("intro", "video", target)
        first = target.read_bytes()
        manager.download("intro", "video", target)
        self.assertEqual(target.read_bytes(), first)
        self.assertEqual(first, b"VIDEO-job-1")

    def test_download_thumbnail(self):
        from continuator.models import VideoVariant

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        manager.create(self.request("intro"))
        path = manager.download("intro", VideoVariant.THUMBNAIL, self.data_dir / "thumb.webp")
        self.assertEqual(path.read_bytes(), b"THUMB-job-1")
        self.assertEqual(provider.fetch_calls[-1], ("job-1", VideoVariant.THUMBNAIL))

    def test_download_missing_variant(self):
        from continuator.errors import NotFoundError

        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("intro"))
        target = self.data_dir / "sheet.jpg"
        with self.assertRaises(NotFoundError):
            manager.download("intro", "spritesheet", target)
        self.assertFalse(target.exists())

    def test_download_pending_clip(self):
        from continuator.errors import NotReadyError
        from continuator.models import ClipStatus

        provider = ScriptedProvider()
        manager = self.make_manager(provider)
        self.put_record(manager, "pending", ClipStatus.PENDING)
        with self.assertRaises(NotReadyError):
            manager.download("pending", "video", self.data_dir / "x.mp4")
        self.assertEqual(provider.fetch_calls, [])

    def put_veo_record(self, manager, clip_id: str, video: bytes | None):
        from continuator.models import ClipRecord, ProviderKind

        path = manager.video_path(clip_id)
        if video is not None:
            path.write_bytes(video)
        record = ClipRecord(
            id=clip_id,
            provider=ProviderKind.VEO,
            remote_job_id=f"projects/demo/locations/us-central1/publishers/google/models/veo/operations/{clip_id}",
            prompt="seeded",
            model="veo-3.0-generate-preview",
            size="1280x720",
            seconds=8,
        )
        return manager.registry.put(record.mark_ready(str(path)))

    def test_veo_video_is_copied_from_local_file(self):
        from unittest import mock

        manager = self.make_manager(ScriptedProvider())
        self.put_veo_record(manager, "shore", b"VEO-LOCAL")
        target = self.data_dir / "exports" / "shore.mp4"
        with mock.patch(
            "continuator.api_client.requests.request",
            side_effect=AssertionError("download must not call Vertex"),
        ) as req:
            path = manager.download("shore", "video", target)
        req.assert_not_called()
        self.assertEqual(path, target)
        self.assertEqual(target.read_bytes(), b"VEO-LOCAL")

    def test_veo_video_missing_on_disk(self):
        from unittest import mock

        from continuator.errors import NotFoundError

        manager = self.make_manager(ScriptedProvider())
        self.put_veo_record(manager, "shore", None)
        target = self.data_dir / "shore-copy.mp4"
        with mock.patch("continuator.api_client.requests.request") as req:
            with self.assertRaises(NotFoundError):
                manager.download("shore", "video", target)
        req.assert_not_called()
        self.assertFalse(target.exists())

    def test_unknown_variant_is_rejected(self):
        from continuator.errors import ValidationError

        manager = self.make_manager(ScriptedProvider())
        manager.create(self.request("intro"))
        with self.assertRaises(ValidationError):
            manager.download("intro", "poster", self.data_dir / "x")


if __name__ == "__main__":
    unittest.main()
