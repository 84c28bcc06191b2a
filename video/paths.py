import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from .errors import InvalidInput

_JOB_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
# Served artifact names may carry an extension, but never a separator or a leading dot.
_FILENAME_RE = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]*")

PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "segment%d.ts"


def new_job_id() -> str:
    """Return a fresh, path-safe job identifier."""
    return uuid4().hex


def validate_job_id(job_id: str) -> str:
    if not job_id or not _JOB_ID_RE.fullmatch(job_id):
        raise InvalidInput(f"Invalid identifier: {job_id!r}")
    return job_id


def validate_filename(name: str) -> str:
    if not name or not _FILENAME_RE.fullmatch(name) or ".." in name:
        raise InvalidInput(f"Invalid file name: {name!r}")
    return name


@dataclass(frozen=True)
class WorkingPaths:
    job_id: str
    root: Path

    @property
    def download_path(self) -> Path:
        return self.root / f"{self.job_id}.mp4"

    @property
    def download_template(self) -> Path:
        # yt-dlp fills in the extension it ends up with
        return self.root / f"{self.job_id}.%(ext)s"

    @property
    def temp_path(self) -> Path:
        return self.root / f"{self.job_id}_temp.mp4"

    @property
    def clip_path(self) -> Path:
        return self.root / f"clip_{self.job_id}.mp4"

    @property
    def hls_root(self) -> Path:
        return self.root / "hls"

    @property
    def output_dir(self) -> Path:
        return self.hls_root / self.job_id

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / PLAYLIST_NAME

    @property
    def segment_pattern(self) -> Path:
        return self.output_dir / SEGMENT_PATTERN


def resolve(job_id: str, root) -> WorkingPaths:
    """
    Compute the working layout for a job. Pure: touches nothing on disk.
    Rejects identifiers that could escape ``root``.
    """
    return WorkingPaths(job_id=validate_job_id(job_id), root=Path(root))


def hls_file(root, video_id: str, name: str) -> Path:
    """Path of an HLS artifact (manifest or segment) under ``<root>/hls/<video_id>/``."""
    return resolve(video_id, root).output_dir / validate_filename(name)


def artifact_file(root, filename: str) -> Path:
    """Path of a loose artifact (download or clip) directly under ``root``."""
    return Path(root) / validate_filename(filename)
