"""
Job orchestration: sequences download and transcode steps for one request
and reports status as a stream of events.

A job moves PENDING -> DOWNLOADING -> TRANSCODING -> DONE, or ends in FAILED
from either working stage. There are no retries; a new request gets a new id.
Nothing about a job outlives the response that reports it.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from django.conf import settings

from .downloader import MP4_FORMAT, Downloader
from .errors import ResourceNotFound, VideoError
from .paths import new_job_id, resolve
from .process import ProcessRunner, get_runner
from .segments import SegmentExtractor, temporary_download
from .transcoder import Transcoder

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    TRANSCODING = "transcoding"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    JobState.PENDING: {JobState.DOWNLOADING},
    JobState.DOWNLOADING: {JobState.TRANSCODING, JobState.DONE, JobState.FAILED},
    JobState.TRANSCODING: {JobState.DONE, JobState.FAILED},
    JobState.DONE: set(),
    JobState.FAILED: set(),
}


@dataclass
class Job:
    id: str = field(default_factory=new_job_id)
    state: JobState = JobState.PENDING
    failed_stage: Optional[JobState] = None
    error: str = ""

    def advance(self, state: JobState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Job {self.id}: cannot go from {self.state.value} to {state.value}")
        logger.debug("Job %s: %s -> %s", self.id, self.state.value, state.value)
        self.state = state

    def fail(self, error: str) -> None:
        self.failed_stage = self.state
        self.error = error
        self.advance(JobState.FAILED)

    @property
    def finished(self) -> bool:
        return self.state in (JobState.DONE, JobState.FAILED)


# -----------------------------------------------------
# Status events (newline-delimited JSON on streaming routes)
# -----------------------------------------------------
@dataclass
class StatusEvent:
    id: str
    status = ""

    def as_dict(self) -> dict:
        return {"status": self.status, "id": self.id}

    def to_line(self) -> str:
        return json.dumps(self.as_dict()) + "\n"


@dataclass
class StartEvent(StatusEvent):
    status = "start"


@dataclass
class ProgressEvent(StatusEvent):
    stage: str = ""
    percent: float = 0.0
    status = "progress"

    def as_dict(self) -> dict:
        return {**super().as_dict(), "stage": self.stage, "percent": round(self.percent, 2)}


@dataclass
class DoneEvent(StatusEvent):
    fields: dict = field(default_factory=dict)
    status = "done"

    def as_dict(self) -> dict:
        return {**super().as_dict(), **self.fields}


@dataclass
class ErrorEvent(StatusEvent):
    message: str = ""
    stage: Optional[str] = None
    status = "error"

    def as_dict(self) -> dict:
        data = {**super().as_dict(), "message": self.message}
        if self.stage:
            data["stage"] = self.stage
        return data


def playlist_url(video_id: str) -> str:
    return f"/video/hls/{video_id}/playlist.m3u8"


class Orchestrator:
    def __init__(
        self,
        root: Path,
        downloader: Downloader,
        transcoder: Transcoder,
        extractor: Optional[SegmentExtractor] = None,
    ):
        self.root = Path(root)
        self.downloader = downloader
        self.transcoder = transcoder
        self.extractor = extractor or SegmentExtractor(downloader, transcoder, self.root)

    @classmethod
    def from_settings(cls, runner: Optional[ProcessRunner] = None) -> "Orchestrator":
        runner = runner or get_runner()
        return cls(
            root=settings.VIDEO_WORK_ROOT,
            downloader=Downloader(runner, binary=settings.YTDLP_BIN),
            transcoder=Transcoder(runner, ffmpeg=settings.FFMPEG_BIN, ffprobe=settings.FFPROBE_BIN),
        )

    @property
    def hls_root(self) -> Path:
        return self.root / "hls"

    # -----------------------------------------------------
    # Streaming jobs
    # -----------------------------------------------------
    def download(self, url: str, job: Optional[Job] = None) -> Iterator[StatusEvent]:
        """Download ``url`` as ``<root>/<id>.<ext>``; reports ``filename`` and ``size``."""
        job = job or Job()
        paths = resolve(job.id, self.root)
        yield StartEvent(job.id)
        try:
            job.advance(JobState.DOWNLOADING)
            _, artifact = self.downloader.download(url, paths.download_template, MP4_FORMAT, job_id=job.id)
            job.advance(JobState.DONE)
            yield DoneEvent(job.id, {"filename": artifact.name, "size": artifact.stat().st_size})
        except VideoError as e:
            yield self._failed(job, e)
        except Exception as e:
            logger.exception("Job %s: unexpected failure", job.id)
            yield self._failed(job, e)

    def direct(self, url: str, quality: Optional[str] = None, job: Optional[Job] = None) -> Iterator[StatusEvent]:
        """
        Download to a temp file and transcode it straight to HLS under
        ``hls/<id>/``. The temp file is removed once transcoding ends,
        whatever the outcome.
        """
        job = job or Job()
        paths = resolve(job.id, self.root)
        yield StartEvent(job.id)
        try:
            with temporary_download(paths.temp_path) as temp:
                job.advance(JobState.DOWNLOADING)
                _, source = self.downloader.download(url, temp)

                job.advance(JobState.TRANSCODING)
                encode = self.transcoder.iter_hls(source, paths.hls_root, quality, output_name=job.id)
                try:
                    while True:
                        try:
                            percent = next(encode)
                        except StopIteration as stop:
                            playlist = stop.value
                            break
                        yield ProgressEvent(job.id, stage=JobState.TRANSCODING.value, percent=percent)
                finally:
                    encode.close()

            job.advance(JobState.DONE)
            logger.info("Direct HLS conversion completed: %s", playlist)
            yield DoneEvent(job.id, {"playlistUrl": playlist_url(job.id), "m3u8Path": str(playlist)})
        except VideoError as e:
            yield self._failed(job, e)
        except Exception as e:
            logger.exception("Job %s: unexpected failure", job.id)
            yield self._failed(job, e)

    def _failed(self, job: Job, error: Exception) -> ErrorEvent:
        stage = job.state.value
        if not job.finished:
            job.fail(str(error))
        logger.error("Job %s failed while %s: %s", job.id, stage, error)
        return ErrorEvent(job.id, message=str(error), stage=stage)

    # -----------------------------------------------------
    # Blocking jobs
    # -----------------------------------------------------
    def clip(self, url: str, start: str, end: str) -> Path:
        return self.extractor.extract_segment(url, start, end)

    def hls_clip(self, url: str, start: str, end: str, quality: Optional[str] = None) -> Path:
        clip = self.extractor.extract_segment(url, start, end)
        return self.transcoder.to_hls(
            clip,
            self.hls_root,
            quality,
            on_progress=lambda p: logger.debug("Clip %s: %.2f%% done", clip.stem, p),
        )

    def stream(self, video_id: str, quality: Optional[str] = None) -> dict:
        """Transcode an already downloaded ``<root>/<video_id>.mp4`` to HLS."""
        paths = resolve(video_id, self.root)
        if not paths.download_path.is_file():
            raise ResourceNotFound("Video file not found")
        playlist = self.transcoder.to_hls(paths.download_path, paths.hls_root, quality)
        return {
            "status": "success",
            "message": "HLS conversion completed",
            "m3u8Path": str(playlist),
            "playlistUrl": playlist_url(video_id),
        }
