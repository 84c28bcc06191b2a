import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import DependencyMissing, DownloadFailed, OutputNotProduced
from .process import ProcessResult, ProcessRunner, probe_version

logger = logging.getLogger(__name__)

# Best mp4 video + m4a audio, falling back to a single mp4, then anything.
DEFAULT_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
MP4_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/mp4"
ANY_FORMAT = "bestvideo+bestaudio/best"

MERGE_FORMAT = "mp4"

# yt-dlp's in-progress files
PARTIAL_SUFFIXES = {".part", ".ytdl", ".temp"}


def find_artifact(directory: Path, prefix: str) -> Optional[Path]:
    """First finished file in ``directory`` whose name starts with ``prefix``."""
    if not directory.is_dir():
        return None
    for p in sorted(directory.iterdir()):
        if p.is_file() and p.name.startswith(prefix) and p.suffix not in PARTIAL_SUFFIXES:
            return p
    return None


class Downloader:
    """Wraps the yt-dlp binary."""

    def __init__(self, runner: ProcessRunner, binary: str = "yt-dlp"):
        self.runner = runner
        self.binary = binary

    def check_available(self) -> str:
        version = probe_version(self.runner, self.binary)
        if version is None:
            raise DependencyMissing(self.binary)
        logger.debug("%s version %s", self.binary, version)
        return version

    def build_command(self, source_url: str, destination: Path, format_selector: str) -> list[str]:
        return [
            self.binary,
            "-f", format_selector,
            "--merge-output-format", MERGE_FORMAT,
            "--no-playlist",
            "-o", str(destination),
            source_url,
        ]

    def download(
        self,
        source_url: str,
        destination: Path,
        format_selector: str = DEFAULT_FORMAT,
        job_id: Optional[str] = None,
    ) -> tuple[ProcessResult, Path]:
        """
        Download ``source_url`` to ``destination`` and return the process result
        together with the file that was produced.

        ``destination`` may be a yt-dlp output template (``<id>.%(ext)s``); the
        artifact is then looked up by ``job_id`` prefix in its directory.
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(source_url, destination, format_selector)

        try:
            result = self.runner.run(cmd, on_line=lambda line: logger.debug("yt-dlp: %s", line))
        except FileNotFoundError:
            raise DependencyMissing(self.binary)
        except subprocess.TimeoutExpired as e:
            raise DownloadFailed(None, f"yt-dlp timed out after {e.timeout}s")

        if not result.ok:
            logger.error("yt-dlp failed (%s) for %s: %s", result.returncode, source_url, result.output[-2000:])
            raise DownloadFailed(result.returncode)

        artifact = self._locate(destination, job_id)
        if artifact is None:
            raise OutputNotProduced("yt-dlp reported success but produced no file")
        logger.info("Downloaded %s -> %s", source_url, artifact)
        return result, artifact

    def _locate(self, destination: Path, job_id: Optional[str]) -> Optional[Path]:
        if destination.is_file():
            return destination
        prefix = job_id or destination.name.split(".", 1)[0]
        return find_artifact(destination.parent, prefix)
