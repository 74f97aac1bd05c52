#!/usr/bin/env python3
"""Generate synthetic media and a project file for end-to-end export runs.

Produces, in the target folder:
  countdown.mp4   5s countdown (white counter on black) with a beep track
  song1.mp3       30s 440 Hz tone
  song2.mp3       30s 660 Hz tone
  cover1.png      blue 640x480 still
  cover2.png      red 480x640 still (exercises letterboxing)
  project.bt      two clips on a three-slot timeline (middle slot empty)
"""

import json
import subprocess
import sys
from pathlib import Path


def _ffmpeg(*args: str) -> None:
    subprocess.run(["ffmpeg", "-y", "-v", "error", *args], check=True)


def generate_test_media(folder: Path) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    folder = folder.resolve()

    _ffmpeg(
        "-f", "lavfi", "-i", "color=c=black:s=640x360:d=5:r=25",
        "-f", "lavfi", "-i", "sine=f=1000:d=5",
        "-vf", "drawtext=text='%{eif\\:5-t\\:d}':fontcolor=white:fontsize=120:"
               "x=(w-text_w)/2:y=(h-text_h)/2",
        "-c:v", "libx264", "-c:a", "aac", "-shortest",
        str(folder / "countdown.mp4"),
    )
    for name, freq in (("song1", 440), ("song2", 660)):
        _ffmpeg("-f", "lavfi", "-i", f"sine=f={freq}:d=30", str(folder / f"{name}.mp3"))
    for name, color, size in (("cover1", "blue", "640x480"), ("cover2", "red", "480x640")):
        _ffmpeg("-f", "lavfi", "-i", f"color=c={color}:s={size}", "-frames:v", "1",
                str(folder / f"{name}.png"))

    project = {
        "clips": [
            {
                "title": "Song 1",
                "music_path": str(folder / "song1.mp3"),
                "image_path": str(folder / "cover1.png"),
                "offset": {"secs": 3, "nanos": 0},
            },
            {
                "title": "Song 2",
                "music_path": str(folder / "song2.mp3"),
                "image_path": str(folder / "cover2.png"),
                "offset": {"secs": 0, "nanos": 0},
            },
        ],
        "timeline": ["Song 2", None, "Song 1"],
        "settings": {"duration": 10, "countdown": str(folder / "countdown.mp4")},
    }
    project_path = folder / "project.bt"
    project_path.write_text(json.dumps(project, indent=2))
    print(f"Generated: {project_path}")
    return project_path


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/media")
    generate_test_media(out)
