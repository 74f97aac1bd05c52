"""Clip registry and timeline slots."""

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Iterator

from blindtest import ffutil
from blindtest.models import Clip, ExportItem, ExportRequest

logger = logging.getLogger(__name__)


def natural_key(text: str) -> list:
    """Sort key that orders "clip 2" before "clip 10"."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", text)]


def probe_clip(clip: Clip) -> Clip:
    """Return a copy of *clip* with its music duration filled in."""
    return replace(clip, duration=ffutil.probe_duration(clip.music_path))


class ClipRegistry:
    """Clips keyed by title. ``version`` changes on every mutation."""

    def __init__(self, clips: list[Clip] | None = None):
        self._clips: dict[str, Clip] = {}
        self.version = 0
        for clip in clips or []:
            self.add(clip)

    def __contains__(self, title: object) -> bool:
        return title in self._clips

    def __len__(self) -> int:
        return len(self._clips)

    def __iter__(self) -> Iterator[Clip]:
        return iter(self._clips.values())

    def get(self, title: str) -> Clip | None:
        return self._clips.get(title)

    def titles(self) -> list[str]:
        return sorted(self._clips, key=natural_key)

    def add(self, clip: Clip) -> None:
        if not clip.title:
            raise ValueError("Clip title can't be empty")
        if clip.title in self._clips:
            raise ValueError(f"Clip '{clip.title}' already exists")
        if clip.offset < 0:
            raise ValueError(f"Clip '{clip.title}' has a negative offset ({clip.offset})")
        self._clips[clip.title] = clip
        self.version += 1

    def remove(self, title: str) -> Clip:
        clip = self._clips.pop(title)
        self.version += 1
        return clip

    def replace(self, clip: Clip) -> None:
        """Swap in an updated copy of an existing clip (e.g. after probing)."""
        if clip.title not in self._clips:
            raise KeyError(clip.title)
        self._clips[clip.title] = clip
        self.version += 1

    def set_offset(self, title: str, offset: float) -> Clip:
        clip = self._clips[title]
        if offset < 0:
            raise ValueError(f"Offset must be non-negative, got {offset}")
        if clip.duration is not None and offset > clip.duration:
            raise ValueError(
                f"Offset {offset}s is past the end of '{title}' ({clip.duration}s)"
            )
        updated = replace(clip, offset=offset)
        self.replace(updated)
        return updated


class Timeline:
    """Ordered slots, each empty (None) or naming a clip."""

    def __init__(self, slots: list[str | None] | None = None):
        self.slots: list[str | None] = list(slots or [])

    def __len__(self) -> int:
        return len(self.slots)

    def add_start(self) -> None:
        self.slots.insert(0, None)

    def add_end(self) -> None:
        self.slots.append(None)

    def assign(self, index: int, title: str) -> None:
        self.slots[index] = title

    def clear(self, index: int) -> None:
        self.slots[index] = None

    def remove(self, index: int) -> None:
        del self.slots[index]

    def move_up(self, index: int) -> None:
        if index > 0:
            self.slots[index - 1], self.slots[index] = self.slots[index], self.slots[index - 1]

    def move_down(self, index: int) -> None:
        if index < len(self.slots) - 1:
            self.slots[index + 1], self.slots[index] = self.slots[index], self.slots[index + 1]

    def prune(self, registry: ClipRegistry) -> None:
        """Empty every slot whose clip no longer exists."""
        self.slots = [title if title in registry else None for title in self.slots]

    def titles(self, registry: ClipRegistry) -> list[str]:
        return [title for title in self.slots if title is not None and title in registry]


def build_export_request(
    timeline: Timeline,
    registry: ClipRegistry,
    countdown: Path,
    clip_duration: int,
    output: Path,
) -> ExportRequest:
    """Snapshot the timeline into an immutable ExportRequest.

    Empty slots and slots naming a deleted clip are skipped.
    """
    items: list[ExportItem] = []
    for index, title in enumerate(timeline.slots):
        if title is None:
            continue
        clip = registry.get(title)
        if clip is None:
            logger.warning("Skipping slot %d: clip '%s' does not exist", index, title)
            continue
        items.append(ExportItem.from_clip(clip))

    return ExportRequest(
        countdown=Path(countdown),
        output=Path(output),
        clip_duration=clip_duration,
        items=tuple(items),
        registry_version=registry.version,
    )
