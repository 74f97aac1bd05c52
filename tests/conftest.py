"""Shared test fixtures."""

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from blindtest.models import ExportItem, ExportRequest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_project_path() -> Path:
    return FIXTURES_DIR / "sample_project.bt"


@pytest.fixture
def export_request() -> ExportRequest:
    return ExportRequest(
        countdown=Path("countdown.mp4"),
        output=Path("out.mp4"),
        clip_duration=20,
        items=(
            ExportItem(offset=12.0, music_path=Path("a.mp3"), image_path=Path("a.png")),
            ExportItem(offset=0.0, music_path=Path("b.mp3"), image_path=Path("b.png")),
        ),
    )


def fake_process(stdout: str, returncode: int = 0) -> MagicMock:
    """A stand-in for subprocess.Popen that has already exited."""
    proc = MagicMock()
    proc.stdout = io.StringIO(stdout)
    proc.returncode = returncode
    proc.poll.return_value = returncode
    proc.wait.return_value = returncode
    return proc


@pytest.fixture
def make_process():
    return fake_process
