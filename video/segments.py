import glob
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .downloader import ANY_FORMAT, Downloader
from .errors import InvalidInput, OutputNotProduced
from .paths import new_job_id, resolve
from .transcoder import Transcoder
from .validators import is_empty_range

logger = logging.getLogger(__name__)


def remove_quietly(path: Path) -> None:
    """Best-effort delete; failures are logged and otherwise ignored."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to delete temp file %s: %s", path, e)


@contextmanager
def temporary_download(path: Path):
    """
    Yield ``path`` and, however the block exits, delete it along with any
    sibling sharing its stem (a merged file with another extension, yt-dlp's
    ``.part`` leftovers).
    """
    path = Path(path)
    try:
        yield path
    finally:
        for p in path.parent.glob(glob.escape(path.stem) + "*"):
            remove_quietly(p)


class SegmentExtractor:
    """Downloads a full source and stream-copies a time range out of it."""

    def __init__(self, downloader: Downloader, transcoder: Transcoder, root: Path):
        self.downloader = downloader
        self.transcoder = transcoder
        self.root = Path(root)

    def extract_segment(self, source_url: str, start: str, end: str, job_id: Optional[str] = None) -> Path:
        if is_empty_range(start, end):
            raise InvalidInput(f"end ({end}) must be after start ({start})")

        paths = resolve(job_id or new_job_id(), self.root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.downloader.check_available()

        with temporary_download(paths.temp_path) as temp:
            logger.info("Downloading full video for clip %s", paths.job_id)
            _, source = self.downloader.download(source_url, temp, ANY_FORMAT)

            logger.info("Cutting %s-%s for clip %s", start, end, paths.job_id)
            self.transcoder.trim(source, paths.clip_path, start, end)

        if not paths.clip_path.is_file():
            raise OutputNotProduced("Output file was not created")

        logger.info("Segment extraction complete: %s", paths.clip_path)
        return paths.clip_path
