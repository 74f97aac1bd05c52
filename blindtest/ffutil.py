"""FFmpeg/ffprobe subprocess helpers and the export filter graph builder."""

import math
import shutil
import subprocess
from pathlib import Path
from typing import Sequence

from blindtest.models import ExportItem

FRAME_WIDTH = 1920
FRAME_HEIGHT = 1080
FADE_SECONDS = 1


class FFmpegNotFoundError(RuntimeError):
    pass


class ExportError(RuntimeError):
    """Base class for every failure an export can report."""


class ProbeFailed(ExportError):
    """ffprobe could not be launched, failed, or printed something unparseable."""


class InvalidDuration(ExportError, ValueError):
    """The countdown is longer than the per-slot clip duration."""


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def duration_command(media_path: Path) -> list[str]:
    return [
        "ffprobe",
        "-i", str(media_path),
        "-show_entries", "format=duration",
        "-v", "quiet",
        "-of", "csv=p=0",
    ]


def parse_duration(output: str) -> int:
    """Parse ffprobe's duration output into whole seconds (truncated)."""
    try:
        seconds = float(output.strip())
    except ValueError:
        raise ProbeFailed(f"ffprobe printed an invalid duration: {output.strip()!r}") from None
    if not math.isfinite(seconds) or seconds < 0:
        raise ProbeFailed(f"ffprobe printed an invalid duration: {output.strip()!r}")
    return int(seconds)


def probe_duration(media_path: Path) -> int:
    """Return the container duration of *media_path* in whole seconds."""
    try:
        result = subprocess.run(duration_command(media_path), capture_output=True, text=True)
    except OSError as e:
        raise ProbeFailed(f"could not launch ffprobe: {e}") from e

    if result.returncode != 0:
        raise ProbeFailed(f"ffprobe failed on {media_path} (rc={result.returncode})")

    return parse_duration(result.stdout)


def _seconds(value: float) -> str:
    """Format a second count the way ffmpeg's -ss/-t options expect it."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def fade_scale_stream(input_index: int, label: int, duration: int) -> str:
    """Letterbox a video input to the canonical frame and fade it out at *duration*."""
    fade_start = max(duration - FADE_SECONDS, 0)
    return (
        f"[{input_index}:v]"
        f"scale={FRAME_WIDTH}:{FRAME_HEIGHT}:force_original_aspect_ratio=decrease,"
        f"pad={FRAME_WIDTH}:{FRAME_HEIGHT}:(ow-iw)/2:(oh-ih)/2,"
        f"setsar=1,"
        f"fade=t=out:st={fade_start}:d={FADE_SECONDS}"
        f"[v{label}]"
    )


def fade_audio_stream(input_index: int, label: int, duration: int) -> str:
    fade_start = max(duration - FADE_SECONDS, 0)
    return f"[{input_index}:a]afade=t=out:st={fade_start}:d={FADE_SECONDS}[a{label}]"


def check_durations(clip_duration: int, countdown_duration: int) -> None:
    """Raise InvalidDuration unless 0 <= countdown_duration <= clip_duration."""
    if countdown_duration < 0 or clip_duration < 0:
        raise InvalidDuration(
            f"durations must be non-negative (clip={clip_duration}, countdown={countdown_duration})"
        )
    if countdown_duration > clip_duration:
        raise InvalidDuration(
            f"countdown ({countdown_duration}s) can't be longer than the clip duration ({clip_duration}s)"
        )


def build_filter_graph(clip_duration: int, countdown_duration: int, item_count: int) -> str:
    """Build the -filter_complex graph for *item_count* timeline items.

    Input 0 is the countdown; item ``i`` owns input ``2i+1`` (looping image)
    and ``2i+2`` (music).  Every item is introduced by the countdown, so item
    ``i`` produces video labels ``v{2i}`` (countdown) and ``v{2i+1}`` (image)
    plus audio label ``a{i}`` spanning both.  With no items the graph is the
    countdown alone.
    """
    check_durations(clip_duration, countdown_duration)
    loop_duration = clip_duration - countdown_duration

    filter_parts: list[str] = []
    if item_count == 0:
        filter_parts.append(fade_scale_stream(0, 0, countdown_duration))
        filter_parts.append("[v0]concat=n=1:v=1:a=0[v]")
        return ";\n".join(filter_parts)

    for i in range(item_count):
        filter_parts.append(fade_scale_stream(0, 2 * i, countdown_duration))
        filter_parts.append(fade_scale_stream(2 * i + 1, 2 * i + 1, loop_duration))
        filter_parts.append(fade_audio_stream(2 * i + 2, i, clip_duration))

    video_streams = "".join(f"[v{i}]" for i in range(2 * item_count))
    filter_parts.append(f"{video_streams}concat=n={2 * item_count}:v=1:a=0[v]")

    audio_streams = "".join(f"[a{i}]" for i in range(item_count))
    filter_parts.append(f"{audio_streams}concat=n={item_count}:v=0:a=1[a]")

    return ";\n".join(filter_parts)


def build_export_command(
    clip_duration: int,
    countdown_duration: int,
    countdown: Path,
    items: Sequence[ExportItem],
    output: Path,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Return the full ffmpeg argument list for rendering *items*.

    Progress is reported as ``key=value`` lines on stdout (``-progress -``).
    *extra_args* (e.g. ``["-threads", "4"]``) are placed before the output.
    """
    filter_complex = build_filter_graph(clip_duration, countdown_duration, len(items))
    loop_duration = _seconds(clip_duration - countdown_duration)

    cmd = ["ffmpeg", "-i", str(countdown)]
    for item in items:
        cmd += [
            "-loop", "1",
            "-t", loop_duration,
            "-i", str(item.image_path),
            "-ss", _seconds(item.offset),
            "-t", _seconds(clip_duration),
            "-i", str(item.music_path),
        ]

    cmd += ["-filter_complex", filter_complex, "-map", "[v]"]
    cmd += ["-map", "[a]"] if items else ["-map", "0:a?"]
    cmd += [
        "-v", "error",
        "-nostats",
        "-progress", "-",
        "-shortest",
        *extra_args,
        "-y",
        str(output),
    ]
    return cmd
