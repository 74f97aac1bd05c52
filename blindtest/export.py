"""Export driver that runs ffmpeg for one ExportRequest and yields progress events.

The driver is a pull-based state machine: every call to ``next()`` advances
it by at most one event, blocking only while ffprobe runs or while waiting for
the next line of ffmpeg's ``-progress`` output.  Callers that must not block
(e.g. the web UI) run it on a worker thread.

Malformed progress lines (anything that is not ``key=value``) are fatal;
unparseable ``frame`` values are skipped.
"""

import enum
import logging
import subprocess
import tempfile
from dataclasses import dataclass
from typing import IO, Iterator, Sequence, Union

from blindtest import ffutil
from blindtest.ffutil import ExportError
from blindtest.models import ExportRequest

logger = logging.getLogger(__name__)

# Seconds to wait for ffmpeg to exit on its own before escalating.
EXIT_TIMEOUT = 10.0
TERMINATE_TIMEOUT = 5.0
STDERR_TAIL = 500


class SpawnFailed(ExportError):
    """ffmpeg could not be launched."""


class StreamFormatError(ExportError):
    """A progress line was not of the form key=value."""


class EncoderExitedWithError(ExportError):
    """ffmpeg stopped without reporting progress=end."""


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class Frame:
    count: int


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Error:
    message: str


Progress = Union[Started, Frame, Done, Error]


class ExportState(enum.Enum):
    READY = "ready"
    EXPORTING = "exporting"
    FINISHED = "finished"


def parse_progress_line(line: str) -> tuple[str, str]:
    """Split a ``key=value`` progress line, raising StreamFormatError otherwise."""
    key, sep, value = line.strip().partition("=")
    if not sep or not key:
        raise StreamFormatError(f"ffmpeg output not of the form key=value: {line.strip()!r}")
    return key, value


def parse_frame(value: str) -> int | None:
    """Return the frame count in *value*, or None when it is not an unsigned integer."""
    try:
        count = int(value)
    except ValueError:
        return None
    return count if count >= 0 else None


class ExportDriver:
    """Owns one export from probe to reaped encoder process.

    Use as a context manager (or call ``close()``) so the ffmpeg process is
    terminated and reaped on every exit path::

        with ExportDriver(request) as driver:
            for event in driver:
                ...
    """

    def __init__(self, request: ExportRequest, extra_args: Sequence[str] = ()):
        self.request = request
        self.extra_args = list(extra_args)
        self.state = ExportState.READY
        self._process: subprocess.Popen | None = None
        self._stderr: IO[bytes] | None = None
        self._cancelled = False

    def __enter__(self) -> "ExportDriver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __iter__(self) -> Iterator[Progress]:
        return self

    def __next__(self) -> Progress:
        event = self.step()
        if event is None:
            raise StopIteration
        return event

    def step(self) -> Progress | None:
        """Advance by one event; None once the export is finished."""
        if self.state is ExportState.READY:
            if self._cancelled:
                return self._fail(EncoderExitedWithError("export cancelled"))
            return self._start()
        if self.state is ExportState.EXPORTING:
            return self._read_next()
        return None

    def cancel(self) -> None:
        """Ask a running encoder to stop. Safe to call from another thread."""
        self._cancelled = True
        process = self._process
        if process is not None and process.poll() is None:
            logger.info("Cancelling export to %s", self.request.output)
            process.terminate()

    def close(self) -> None:
        """Terminate (if still running) and reap the encoder process."""
        self.state = ExportState.FINISHED
        self._reap(graceful=False)
        self._release_stderr()

    # -- transitions ---------------------------------------------------------

    def _start(self) -> Progress:
        request = self.request
        try:
            countdown_duration = ffutil.probe_duration(request.countdown)
            cmd = ffutil.build_export_command(
                request.clip_duration,
                countdown_duration,
                request.countdown,
                request.items,
                request.output,
                extra_args=self.extra_args,
            )
        except ExportError as e:
            return self._fail(e)

        logger.debug("FFmpeg command: %s", " ".join(cmd))
        stderr = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            stderr.close()
            return self._fail(SpawnFailed(f"error launching ffmpeg: {e}"))

        self._stderr = stderr
        self.state = ExportState.EXPORTING
        if self._cancelled:
            self._process.terminate()
        logger.info("Started ffmpeg: %d items -> %s", len(request.items), request.output)
        return Started()

    def _read_next(self) -> Progress:
        assert self._process is not None and self._process.stdout is not None
        try:
            for line in self._process.stdout:
                if not line.strip():
                    continue
                key, value = parse_progress_line(line)

                if key == "frame":
                    count = parse_frame(value)
                    if count is None:
                        logger.warning("Could not parse frame count: %r", value)
                        continue
                    return Frame(count)
                if key == "progress" and value == "end":
                    self.state = ExportState.FINISHED
                    self._reap(graceful=True)
                    self._release_stderr()
                    logger.info("Export finished: %s", self.request.output)
                    return Done()
        except ExportError as e:
            return self._fail(e)
        except (OSError, ValueError) as e:
            # ValueError: read from a pipe closed by close() on another thread
            return self._fail(EncoderExitedWithError(f"error reading ffmpeg output: {e}"))

        return self._finish_without_end()

    def _finish_without_end(self) -> Progress:
        self.state = ExportState.FINISHED
        returncode = self._reap(graceful=True)
        if self._cancelled:
            return self._fail(EncoderExitedWithError("export cancelled"))
        if returncode == 0:
            logger.info("ffmpeg exited cleanly without progress=end: %s", self.request.output)
            self._release_stderr()
            return Done()
        tail = self._stderr_tail()
        message = f"ffmpeg exited with status {returncode}"
        if tail:
            message += f": {tail}"
        return self._fail(EncoderExitedWithError(message))

    def _fail(self, error: ExportError) -> Error:
        logger.error("Export to %s failed: %s", self.request.output, error)
        self.state = ExportState.FINISHED
        self._reap(graceful=False)
        self._release_stderr()
        return Error(str(error))

    # -- process lifetime ----------------------------------------------------

    def _reap(self, graceful: bool) -> int | None:
        process = self._process
        if process is None:
            return None

        if graceful:
            try:
                process.wait(timeout=EXIT_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning("ffmpeg did not exit after %.0fs, terminating", EXIT_TIMEOUT)

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

        if process.stdout is not None:
            process.stdout.close()
        returncode = process.returncode
        self._process = None
        return returncode

    def _stderr_tail(self) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        data = self._stderr.read()
        return data[-STDERR_TAIL:].decode(errors="replace").strip()

    def _release_stderr(self) -> None:
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None


def run_export(request: ExportRequest, extra_args: Sequence[str] = ()) -> Iterator[Progress]:
    """Yield the progress events of one export.

    Abandoning the generator (``close()`` or garbage collection) terminates
    and reaps the encoder.
    """
    with ExportDriver(request, extra_args) as driver:
        yield from driver
