import shutil
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from video.downloader import DEFAULT_FORMAT, MP4_FORMAT, Downloader, find_artifact
from video.errors import DependencyMissing, DownloadFailed, OutputNotProduced

from .fakes import FakeRunner, output_arg

URL = "https://youtu.be/abc"


class DownloaderTests(SimpleTestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.tmp, ignore_errors=True)

    def test_downloads_to_destination(self):
        dest = self.tmp / "job1_temp.mp4"

        def handler(args):
            output_arg(args).write_bytes(b"video")
            return 0, ["[download] 100%"]

        runner = FakeRunner(handler)
        result, artifact = Downloader(runner).download(URL, dest)

        self.assertTrue(result.ok)
        self.assertEqual(artifact, dest)
        self.assertEqual(runner.calls, [[
            "yt-dlp",
            "-f", DEFAULT_FORMAT,
            "--merge-output-format", "mp4",
            "--no-playlist",
            "-o", str(dest),
            URL,
        ]])

    def test_template_destination_is_found_by_job_prefix(self):
        def handler(args):
            (self.tmp / "job2.f137.mp4.part").write_bytes(b"")
            (self.tmp / "job2.mp4").write_bytes(b"video")
            return 0, []

        _, artifact = Downloader(FakeRunner(handler)).download(
            URL, self.tmp / "job2.%(ext)s", MP4_FORMAT, job_id="job2"
        )
        self.assertEqual(artifact, self.tmp / "job2.mp4")

    def test_success_without_file_is_output_not_produced(self):
        with self.assertRaises(OutputNotProduced):
            Downloader(FakeRunner(lambda args: (0, []))).download(URL, self.tmp / "job3.%(ext)s", job_id="job3")

    def test_nonzero_exit(self):
        with self.assertRaises(DownloadFailed) as ctx:
            Downloader(FakeRunner(lambda args: (1, ["ERROR: Video unavailable"]))).download(URL, self.tmp / "x.mp4")
        self.assertEqual(ctx.exception.exit_code, 1)
        self.assertEqual(str(ctx.exception), "yt-dlp exited with code 1")

    def test_missing_binary(self):
        def handler(args):
            raise FileNotFoundError(args[0])

        with self.assertRaises(DependencyMissing) as ctx:
            Downloader(FakeRunner(handler), binary="yt-dlp").download(URL, self.tmp / "x.mp4")
        self.assertEqual(ctx.exception.binary, "yt-dlp")

    def test_timeout(self):
        def handler(args):
            raise subprocess.TimeoutExpired(args, 5)

        with self.assertRaises(DownloadFailed) as ctx:
            Downloader(FakeRunner(handler)).download(URL, self.tmp / "x.mp4")
        self.assertIsNone(ctx.exception.exit_code)
        self.assertIn("timed out", str(ctx.exception))

    @patch("video.downloader.probe_version", return_value=None)
    def test_check_available_missing(self, _):
        with self.assertRaises(DependencyMissing):
            Downloader(FakeRunner(lambda args: (0, []))).check_available()

    @patch("video.downloader.probe_version", return_value="2024.10.07")
    def test_check_available(self, _):
        self.assertEqual(Downloader(FakeRunner(lambda args: (0, []))).check_available(), "2024.10.07")

    def test_version_probe_runs_through_runner(self):
        runner = FakeRunner(lambda args: (0, ["2024.10.07"]))
        self.assertEqual(Downloader(runner, binary="yt-dlp").check_available(), "2024.10.07")
        self.assertEqual(runner.calls, [["yt-dlp", "--version"]])

    def test_find_artifact_missing_directory(self):
        self.assertIsNone(find_artifact(self.tmp / "nope", "job"))
