"""
ffmpeg wrapper: HLS renditions and stream-copy trims.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Optional

from .errors import DependencyMissing, InvalidInput, OutputNotProduced, TranscodeFailed
from .paths import PLAYLIST_NAME, SEGMENT_PATTERN
from .process import ProcessResult, ProcessRunner, drain

logger = logging.getLogger(__name__)

HLS_SEGMENT_SECONDS = 10
PROBE_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class QualityTier:
    name: str
    video_bitrate: str
    audio_bitrate: str
    height: int


QUALITY_TIERS = {
    "high": QualityTier("high", "5000k", "192k", 1080),
    "medium": QualityTier("medium", "2500k", "128k", 720),
    "low": QualityTier("low", "1000k", "96k", 480),
}


def get_tier(name: str) -> QualityTier:
    try:
        return QUALITY_TIERS[name]
    except KeyError:
        raise InvalidInput(f"Unknown quality {name!r}. Allowed: {sorted(QUALITY_TIERS)}")


def _hls_output_args(out_dir: Path) -> list[str]:
    return [
        "-start_number", "0",
        "-hls_time", str(HLS_SEGMENT_SECONDS),
        "-hls_list_size", "0",  # keep every segment: VOD playlist, not a live window
        "-hls_segment_filename", str(out_dir / SEGMENT_PATTERN),
        "-f", "hls",
    ]


def segment_durations(playlist: Path) -> list[float]:
    """Durations of the media segments listed in an m3u8 playlist."""
    durations = []
    for line in Path(playlist).read_text(encoding="utf-8").splitlines():
        if line.startswith("#EXTINF:"):
            value = line[len("#EXTINF:"):].split(",", 1)[0]
            durations.append(float(value))
    return durations


def count_segments(playlist: Path) -> int:
    return len(segment_durations(playlist))


class Transcoder:
    def __init__(self, runner: ProcessRunner, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe"):
        self.runner = runner
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    # -----------------------------------------------------
    # Probing
    # -----------------------------------------------------
    def probe_duration(self, input_file: Path) -> Optional[float]:
        """Container duration in seconds, or None if ffprobe can't tell."""
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(input_file),
        ]
        try:
            result = self.runner.run(cmd, timeout=PROBE_TIMEOUT_SECONDS)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("ffprobe failed for %s: %s", input_file, e)
            return None
        if not result.ok:
            logger.warning("ffprobe exited with code %s for %s", result.returncode, input_file)
            return None
        # stderr is merged in; the duration is the last line that parses
        for line in reversed(result.output_lines):
            try:
                duration = float(line.strip())
            except ValueError:
                continue
            return duration if duration > 0 else None
        return None

    # -----------------------------------------------------
    # HLS
    # -----------------------------------------------------
    def build_hls_command(self, input_file: Path, out_dir: Path, quality: Optional[str] = None) -> list[str]:
        cmd = [self.ffmpeg, "-hide_banner", "-y", "-i", str(input_file)]
        if quality is None:
            cmd += [
                "-c:v", "libx264",
                "-c:a", "aac",
                "-preset", "veryfast",
                "-crf", "23",
                # fixed GOP so segments cut on predictable keyframes
                "-sc_threshold", "0",
                "-g", "48",
                "-keyint_min", "48",
            ]
        else:
            tier = get_tier(quality)
            cmd += [
                "-c:v", "libx264",
                "-c:a", "aac",
                "-b:v", tier.video_bitrate,
                "-b:a", tier.audio_bitrate,
                "-vf", f"scale=-2:{tier.height}",
                "-preset", "fast",
            ]
        cmd += _hls_output_args(out_dir)
        cmd += ["-progress", "pipe:1", "-nostats"]
        cmd.append(str(out_dir / PLAYLIST_NAME))
        return cmd

    def iter_hls(
        self,
        input_file: Path,
        output_root: Path,
        quality: Optional[str] = None,
        output_name: Optional[str] = None,
    ) -> Generator[float, None, Path]:
        """
        Encode ``input_file`` to ``<output_root>/<name>/playlist.m3u8``, yielding
        percent-complete values while ffmpeg runs. Returns the playlist path.

        ``name`` defaults to the input's stem.
        """
        input_file = Path(input_file)
        if quality is not None:
            get_tier(quality)
        out_dir = Path(output_root) / (output_name or input_file.stem)
        out_dir.mkdir(parents=True, exist_ok=True)
        playlist = out_dir / PLAYLIST_NAME

        duration = self.probe_duration(input_file)
        cmd = self.build_hls_command(input_file, out_dir, quality)

        last_reported = -1
        stream = self.runner.stream(cmd)
        try:
            while True:
                try:
                    line = next(stream)
                except StopIteration as stop:
                    result = stop.value
                    break
                percent = _progress_percent(line, duration)
                if percent is None:
                    if not _is_progress_line(line):
                        logger.debug("ffmpeg: %s", line)
                    continue
                if int(percent) > last_reported:
                    last_reported = int(percent)
                    logger.debug("Processing %s: %.2f%% done", input_file.name, percent)
                    yield percent
        except FileNotFoundError:
            raise DependencyMissing(self.ffmpeg)
        except subprocess.TimeoutExpired as e:
            raise TranscodeFailed(f"ffmpeg timed out after {e.timeout}s")
        finally:
            stream.close()

        self._check(result)
        if not playlist.is_file():
            raise OutputNotProduced(f"ffmpeg finished but {playlist} was not written")
        logger.info("HLS conversion completed: %s", playlist)
        return playlist

    def to_hls(
        self,
        input_file: Path,
        output_root: Path,
        quality: Optional[str] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        output_name: Optional[str] = None,
    ) -> Path:
        return drain(self.iter_hls(input_file, output_root, quality, output_name), on_progress)

    # -----------------------------------------------------
    # Trim
    # -----------------------------------------------------
    def build_trim_command(self, source: Path, output: Path, start: str, end: str) -> list[str]:
        return [
            self.ffmpeg,
            "-hide_banner",
            "-ss", start,
            "-to", end,
            "-i", str(source),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-y", str(output),
        ]

    def trim(self, source: Path, output: Path, start: str, end: str) -> ProcessResult:
        """Cut ``[start, end]`` out of ``source`` without re-encoding."""
        cmd = self.build_trim_command(source, output, start, end)
        try:
            result = self.runner.run(cmd, on_line=lambda line: logger.debug("ffmpeg: %s", line))
        except FileNotFoundError:
            raise DependencyMissing(self.ffmpeg)
        except subprocess.TimeoutExpired as e:
            raise TranscodeFailed(f"ffmpeg timed out after {e.timeout}s")
        self._check(result)
        return result

    def _check(self, result: ProcessResult) -> None:
        if result.ok:
            return
        logger.error("ffmpeg exited with code %s: %s", result.returncode, result.output[-2000:])
        cause = f"ffmpeg exited with code {result.returncode}"
        if result.output_lines:
            cause += f": {result.output_lines[-1]}"
        raise TranscodeFailed(cause)


def _is_progress_line(line: str) -> bool:
    # -progress output is bare key=value pairs; log lines always contain spaces
    key, sep, _ = line.partition("=")
    return bool(sep) and " " not in key


def _progress_percent(line: str, duration: Optional[float]) -> Optional[float]:
    """Percent complete from an ffmpeg ``-progress`` line, if it carries one."""
    if line == "progress=end":
        return 100.0
    if not duration or not line.startswith("out_time_us="):
        return None
    try:
        micros = int(line.split("=", 1)[1])
    except ValueError:
        return None  # "N/A" before the first frame
    return max(0.0, min(100.0, micros / 1_000_000 / duration * 100))
