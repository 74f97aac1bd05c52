"""Orchestrator — exports a Project and tracks progress for display."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from blindtest.export import Done, Error, ExportDriver, Frame, Progress, Started
from blindtest.project import Project
from blindtest.timeline import build_export_request

logger = logging.getLogger(__name__)

# Frames per second used to estimate the total frame count for progress
# display. Matches ffmpeg's typical reporting cadence, not the output's
# actual frame rate.
ASSUMED_FRAME_RATE = 25


def estimate_total_frames(clip_duration: int, item_count: int) -> int:
    return ASSUMED_FRAME_RATE * clip_duration * item_count


@dataclass
class ExportProgress:
    """UI-visible state of one export, updated from progress events."""

    total: int = 0
    frame: int = 0
    started: bool = False
    done: bool = False
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.done or self.error is not None

    @property
    def fraction(self) -> float:
        if self.done:
            return 1.0
        if self.total <= 0:
            return 0.0
        return min(self.frame / self.total, 1.0)

    def apply(self, event: Progress) -> None:
        if isinstance(event, Started):
            self.started = True
        elif isinstance(event, Frame):
            self.frame = event.count
        elif isinstance(event, Done):
            self.done = True
        elif isinstance(event, Error):
            self.error = event.message

    def to_dict(self) -> dict:
        return {
            "frame": self.frame,
            "total": self.total,
            "progress": round(self.fraction, 3),
            "started": self.started,
            "done": self.done,
            "error": self.error,
        }


@dataclass
class ExportResult:
    output_path: Path
    items: int = 0
    frames: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def export_project(
    project: Project,
    output: Path,
    threads: int | None = None,
    on_progress: Callable[[ExportProgress], None] | None = None,
    on_driver: Callable[[ExportDriver], None] | None = None,
) -> ExportResult:
    """Render *project*'s timeline to *output*.

    Args:
        project: Loaded project document.
        output: Destination video file.
        threads: Optional ffmpeg ``-threads`` value.
        on_progress: Optional callback receiving the tracker after every event.
        on_driver: Optional callback receiving the driver before it starts,
            so another thread can cancel it.
    """
    countdown = project.settings.countdown
    if countdown is None:
        raise ValueError("Project has no countdown")

    request = build_export_request(
        project.timeline_view(),
        project.registry(),
        countdown,
        project.settings.duration,
        output,
    )
    extra_args = ["-threads", str(threads)] if threads is not None else []
    tracker = ExportProgress(
        total=estimate_total_frames(request.clip_duration, len(request.items))
    )

    with ExportDriver(request, extra_args) as driver:
        if on_driver:
            on_driver(driver)
        for event in driver:
            tracker.apply(event)
            if on_progress:
                on_progress(tracker)

    if not tracker.finished:
        tracker.error = "export stopped before completion"

    return ExportResult(
        output_path=request.output,
        items=len(request.items),
        frames=tracker.frame,
        error=tracker.error,
    )
