"""Shared data types used across blindtest."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Clip:
    """A titled pairing of a music asset and an image asset."""

    title: str
    music_path: Path
    image_path: Path
    offset: float = 0.0
    duration: int | None = None


@dataclass(frozen=True)
class ExportItem:
    """One timeline entry as the encoder sees it."""

    offset: float
    music_path: Path
    image_path: Path

    @classmethod
    def from_clip(cls, clip: Clip) -> "ExportItem":
        return cls(offset=clip.offset, music_path=clip.music_path, image_path=clip.image_path)


@dataclass(frozen=True)
class ExportRequest:
    """Immutable snapshot of everything one export needs."""

    countdown: Path
    output: Path
    clip_duration: int
    items: tuple[ExportItem, ...] = ()
    registry_version: int | None = None
