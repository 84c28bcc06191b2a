import shutil
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from video.errors import DependencyMissing, InvalidInput, OutputNotProduced, TranscodeFailed
from video.transcoder import QUALITY_TIERS, Transcoder, count_segments, segment_durations

from .fakes import SAMPLE_PLAYLIST, FakeRunner, fake_tools


class TranscoderTestCase(SimpleTestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.tmp, ignore_errors=True)
        self.source = self.tmp / "clip_x.mp4"
        self.source.write_bytes(b"video")
        self.hls_root = self.tmp / "hls"
        patcher = patch.object(Transcoder, "probe_duration", return_value=20.0)
        self.probe = patcher.start()
        self.addCleanup(patcher.stop)


class HlsCommandTests(TranscoderTestCase):
    def test_fixed_profile(self):
        cmd = Transcoder(FakeRunner(fake_tools())).build_hls_command(self.source, self.hls_root / "x")
        joined = " ".join(cmd)
        for fragment in [
            "-c:v libx264", "-c:a aac", "-preset veryfast", "-crf 23",
            "-start_number 0", "-hls_time 10", "-hls_list_size 0", "-f hls",
        ]:
            self.assertIn(fragment, joined)
        self.assertIn(str(self.hls_root / "x" / "segment%d.ts"), cmd)
        self.assertEqual(cmd[-1], str(self.hls_root / "x" / "playlist.m3u8"))

    def test_quality_tier(self):
        cmd = Transcoder(FakeRunner(fake_tools())).build_hls_command(self.source, self.hls_root / "x", "low")
        joined = " ".join(cmd)
        self.assertIn("-b:v 1000k", joined)
        self.assertIn("-b:a 96k", joined)
        self.assertIn("-vf scale=-2:480", joined)
        self.assertIn("-hls_time 10", joined)
        self.assertNotIn("-crf", cmd)

    def test_tiers(self):
        self.assertEqual(sorted(QUALITY_TIERS), ["high", "low", "medium"])
        self.assertEqual(QUALITY_TIERS["high"].height, 1080)


class ToHlsTests(TranscoderTestCase):
    def test_writes_playlist_under_input_stem(self):
        runner = FakeRunner(fake_tools())
        playlist = Transcoder(runner).to_hls(self.source, self.hls_root)
        self.assertEqual(playlist, self.hls_root / "clip_x" / "playlist.m3u8")
        self.assertTrue(playlist.is_file())
        self.assertEqual(runner.calls[0][runner.calls[0].index("-i") + 1], str(self.source))

    def test_output_name_override(self):
        playlist = Transcoder(FakeRunner(fake_tools())).to_hls(self.source, self.hls_root, output_name="job7")
        self.assertEqual(playlist, self.hls_root / "job7" / "playlist.m3u8")

    def test_reports_progress(self):
        progress = ["out_time_us=N/A", "frame=1", "out_time_us=5000000", "out_time_us=5100000",
                    "out_time_us=10000000", "progress=end"]
        seen = []
        Transcoder(FakeRunner(fake_tools(progress=progress))).to_hls(self.source, self.hls_root, on_progress=seen.append)
        self.assertEqual(seen, [25.0, 50.0, 100.0])

    def test_progress_without_duration(self):
        self.probe.return_value = None
        seen = []
        Transcoder(FakeRunner(fake_tools())).to_hls(self.source, self.hls_root, on_progress=seen.append)
        self.assertEqual(seen, [100.0])

    def test_unknown_tier_runs_nothing(self):
        runner = FakeRunner(fake_tools())
        with self.assertRaises(InvalidInput):
            Transcoder(runner).to_hls(self.source, self.hls_root, quality="ultra")
        self.assertEqual(runner.calls, [])
        self.assertFalse(self.hls_root.exists())

    def test_nonzero_exit(self):
        with self.assertRaises(TranscodeFailed) as ctx:
            Transcoder(FakeRunner(fake_tools(hls_code=1))).to_hls(self.source, self.hls_root)
        self.assertIn("code 1", ctx.exception.cause)
        self.assertIn("Conversion failed!", ctx.exception.cause)

    def test_missing_playlist(self):
        with self.assertRaises(OutputNotProduced):
            Transcoder(FakeRunner(fake_tools(write_playlist=False))).to_hls(self.source, self.hls_root)

    def test_missing_ffmpeg(self):
        def handler(args):
            raise FileNotFoundError(args[0])

        with self.assertRaises(DependencyMissing):
            Transcoder(FakeRunner(handler)).to_hls(self.source, self.hls_root)

    def test_timeout(self):
        def handler(args):
            raise subprocess.TimeoutExpired(args, 3600)

        with self.assertRaises(TranscodeFailed) as ctx:
            Transcoder(FakeRunner(handler)).to_hls(self.source, self.hls_root)
        self.assertIn("timed out", str(ctx.exception))

    def test_same_input_gives_same_segment_count(self):
        transcoder = Transcoder(FakeRunner(fake_tools()))
        first = count_segments(transcoder.to_hls(self.source, self.hls_root, "medium"))
        second = count_segments(transcoder.to_hls(self.source, self.hls_root, "medium"))
        self.assertEqual(first, second)


class TrimTests(TranscoderTestCase):
    def test_stream_copy_command(self):
        runner = FakeRunner(fake_tools())
        out = self.tmp / "out.mp4"
        Transcoder(runner).trim(self.source, out, "00:00:05", "00:00:15")
        self.assertEqual(runner.calls[0], [
            "ffmpeg", "-hide_banner",
            "-ss", "00:00:05", "-to", "00:00:15",
            "-i", str(self.source),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-y", str(out),
        ])
        self.assertTrue(out.is_file())

    def test_failure(self):
        with self.assertRaises(TranscodeFailed):
            Transcoder(FakeRunner(fake_tools(trim_code=1))).trim(self.source, self.tmp / "o.mp4", "x", "y")


class ProbeDurationTests(SimpleTestCase):
    def probe(self, handler):
        runner = FakeRunner(handler)
        return runner, Transcoder(runner, ffprobe="ffprobe").probe_duration(Path("a.mp4"))

    def test_parses_duration(self):
        runner, duration = self.probe(lambda args: (0, ["12.500000"]))
        self.assertEqual(duration, 12.5)
        self.assertEqual(runner.calls_to("ffprobe")[0][-1], "a.mp4")
        self.assertEqual(runner.timeouts, [60])

    def test_ignores_merged_warnings(self):
        _, duration = self.probe(lambda args: (0, ["[mov,mp4] stream 1, timescale not set", "8.000000"]))
        self.assertEqual(duration, 8.0)

    def test_unknown_duration(self):
        _, duration = self.probe(lambda args: (0, ["N/A"]))
        self.assertIsNone(duration)

    def test_nonzero_exit(self):
        _, duration = self.probe(lambda args: (1, ["a.mp4: No such file or directory"]))
        self.assertIsNone(duration)

    def test_missing_ffprobe(self):
        def handler(args):
            raise FileNotFoundError(args[0])

        _, duration = self.probe(handler)
        self.assertIsNone(duration)


class PlaylistParsingTests(SimpleTestCase):
    def test_segment_durations(self):
        with tempfile.TemporaryDirectory() as d:
            playlist = Path(d) / "playlist.m3u8"
            playlist.write_text(SAMPLE_PLAYLIST.replace(
                "#EXT-X-ENDLIST", "#EXTINF:4.500000,\nsegment1.ts\n#EXT-X-ENDLIST"
            ))
            self.assertEqual(segment_durations(playlist), [10.0, 4.5])
            self.assertEqual(count_segments(playlist), 2)
