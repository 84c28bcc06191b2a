"""
Child process handling for the external tools (yt-dlp, ffmpeg, ffprobe).

Every invocation goes through a ProcessRunner, which
  - holds a slot of a process-wide semaphore while the child runs,
  - starts the child in its own session so the whole group can be killed,
  - kills the group when the timeout expires or when the consumer stops
    iterating (a closed streaming response closes the generator).
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Generator, Iterable, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

TAIL_LINES = 40
KILL_GRACE_SECONDS = 5


@dataclass
class ProcessResult:
    args: list[str]
    returncode: int
    output_lines: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(self.output_lines)


def _kill_group(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGTERM)
        proc.wait(timeout=KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        os.killpg(proc.pid, signal.SIGKILL)
        proc.wait()
    except ProcessLookupError:
        pass


class ProcessRunner:
    def __init__(self, max_concurrent: int = 2, timeout: Optional[float] = None):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.timeout = timeout or None
        self._slots = threading.BoundedSemaphore(max_concurrent)

    def stream(self, args: Iterable, timeout: Optional[float] = None) -> Generator[str, None, ProcessResult]:
        """
        Run ``args`` and yield its output lines (stdout and stderr merged).
        The generator's return value is the ProcessResult. ``timeout``
        overrides the runner's own for this one child.

        Raises FileNotFoundError when the binary is missing and
        subprocess.TimeoutExpired when the child outlives its timeout.
        """
        args = [str(a) for a in args]
        timeout = timeout or self.timeout
        with self._slots:
            logger.info("Starting: %s", shlex.join(args))
            proc = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
            expired = threading.Event()
            timer = None
            if timeout:
                def _expire():
                    expired.set()
                    logger.warning("Timed out after %ss, killing pid %s", timeout, proc.pid)
                    _kill_group(proc)

                timer = threading.Timer(timeout, _expire)
                timer.daemon = True
                timer.start()

            tail = deque(maxlen=TAIL_LINES)
            try:
                for raw in proc.stdout:
                    line = raw.rstrip()
                    if not line:
                        continue
                    tail.append(line)
                    yield line
                returncode = proc.wait()
            finally:
                if timer:
                    timer.cancel()
                # Consumer went away (or something raised) before the child finished.
                _kill_group(proc)
                proc.stdout.close()

        if expired.is_set():
            raise subprocess.TimeoutExpired(args, timeout, output="\n".join(tail))
        logger.info("Exited with code %s: %s", returncode, args[0])
        return ProcessResult(args=args, returncode=returncode, output_lines=list(tail))

    def run(
        self,
        args: Iterable,
        on_line: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        return drain(self.stream(args, timeout=timeout), on_line)


def drain(gen: Generator, on_item: Optional[Callable] = None):
    """Exhaust a generator, feeding each item to ``on_item``; return its return value."""
    while True:
        try:
            item = next(gen)
        except StopIteration as stop:
            return stop.value
        if on_item is not None:
            on_item(item)


def probe_version(runner: ProcessRunner, binary: str, timeout: float = 30) -> Optional[str]:
    """Return the first line of ``<binary> --version``, or None when it cannot be run."""
    try:
        result = runner.run([binary, "--version"], timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error("%s is not available: %s", binary, e)
        return None
    if not result.ok:
        logger.error("%s --version exited with code %s", binary, result.returncode)
        return None
    return result.output_lines[0] if result.output_lines else ""


_default_runner = None
_default_runner_lock = threading.Lock()


def get_runner() -> ProcessRunner:
    """The process-wide runner; its semaphore bounds children across all requests."""
    global _default_runner
    with _default_runner_lock:
        if _default_runner is None:
            _default_runner = ProcessRunner(
                max_concurrent=settings.VIDEO_MAX_CONCURRENT_PROCESSES,
                timeout=settings.VIDEO_PROCESS_TIMEOUT,
            )
        return _default_runner
