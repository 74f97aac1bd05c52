"""Project (.bt) document: clips, timeline slots and global settings."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from blindtest.models import Clip
from blindtest.timeline import ClipRegistry, Timeline

NANOS_PER_SEC = 1_000_000_000


@dataclass
class Settings:
    """Settings shared by every slot of the timeline."""

    duration: int = 30
    countdown: Path | None = None


@dataclass
class Project:
    """Top-level project document."""

    clips: list[Clip] = field(default_factory=list)
    timeline: list[str | None] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    def registry(self) -> ClipRegistry:
        return ClipRegistry(self.clips)

    def timeline_view(self) -> Timeline:
        return Timeline(self.timeline)


def _offset_from_json(value) -> float:
    if value is None:
        return 0.0
    if isinstance(value, dict):
        secs, nanos = value.get("secs", 0), value.get("nanos", 0)
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (secs, nanos)):
            raise ValueError(f"Project clip offset must hold integer secs/nanos, got {value!r}")
        offset = secs + nanos / NANOS_PER_SEC
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        offset = float(value)
    else:
        raise ValueError(f"Project clip offset must be a number, got {value!r}")
    if offset < 0:
        raise ValueError(f"Project clip offset must be non-negative, got {offset}")
    return offset


def _offset_to_json(offset: float) -> dict:
    secs = int(offset)
    return {"secs": secs, "nanos": round((offset - secs) * NANOS_PER_SEC)}


def _clip_from_json(c) -> Clip:
    if not isinstance(c, dict):
        raise ValueError(f"Project clips must be objects, got {c!r}")
    for key in ("title", "music_path", "image_path"):
        if not isinstance(c.get(key), str):
            raise ValueError(f"Project clip field '{key}' must be a string")
    return Clip(
        title=c["title"],
        music_path=Path(c["music_path"]),
        image_path=Path(c["image_path"]),
        offset=_offset_from_json(c.get("offset")),
    )


def project_from_dict(data: dict) -> Project:
    if not isinstance(data, dict):
        raise ValueError("Project must be a JSON object")
    for key in ("clips", "timeline", "settings"):
        if key not in data:
            raise ValueError("Project must contain 'clips', 'timeline' and 'settings' fields")

    if not isinstance(data["clips"], list):
        raise ValueError("Project 'clips' must be a list")
    timeline = data["timeline"]
    if not isinstance(timeline, list) or not all(t is None or isinstance(t, str) for t in timeline):
        raise ValueError("Project 'timeline' must be a list of clip titles or nulls")
    settings = data["settings"]
    if not isinstance(settings, dict):
        raise ValueError("Project 'settings' must be an object")

    duration = settings.get("duration", Settings.duration)
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
        raise ValueError(f"Project duration must be a non-negative integer, got {duration!r}")
    countdown = settings.get("countdown")
    if countdown is not None and not isinstance(countdown, str):
        raise ValueError("Project countdown must be a path or null")

    return Project(
        clips=[_clip_from_json(c) for c in data["clips"]],
        timeline=list(timeline),
        settings=Settings(
            duration=duration,
            countdown=Path(countdown) if countdown is not None else None,
        ),
    )


def project_to_dict(project: Project) -> dict:
    countdown = project.settings.countdown
    return {
        "clips": [
            {
                "title": clip.title,
                "image_path": str(clip.image_path),
                "music_path": str(clip.music_path),
                "offset": _offset_to_json(clip.offset),
            }
            for clip in project.clips
        ],
        "timeline": list(project.timeline),
        "settings": {
            "duration": project.settings.duration,
            "countdown": str(countdown) if countdown is not None else None,
        },
    }


def load_project(path: str | Path) -> Project:
    """Load and validate a project from a JSON file."""
    path = Path(path)
    return project_from_dict(json.loads(path.read_text()))


def store_project(project: Project, path: str | Path) -> None:
    Path(path).write_text(json.dumps(project_to_dict(project)))
