"""Bundle a project and its media into one tar archive, and unpack it again.

Inside the archive every clip's files live under a folder named after the
clip title (``<title>/music/<file>``, ``<title>/image/<file>``), the countdown
under ``countdown/``, and the rewritten project document as ``save.bt``.
"""

import io
import json
import logging
import tarfile
from dataclasses import replace
from pathlib import Path, PurePosixPath

from blindtest.project import load_project, project_to_dict, store_project

logger = logging.getLogger(__name__)

SAVE_NAME = "save.bt"
ARCHIVE_SUFFIX = ".bta"
COUNTDOWN_FOLDER = "countdown"


class ArchiveError(RuntimeError):
    pass


def default_archive_path(project_path: Path) -> Path:
    return Path(project_path.stem).with_suffix(ARCHIVE_SUFFIX)


def _member_name(folder: str, kind: str | None, source: Path) -> PurePosixPath:
    if not source.name:
        raise ArchiveError(f"{source} is not a file")
    if not folder or folder in (".", "..") or "/" in folder or "\\" in folder:
        raise ArchiveError(f"'{folder}' can't be used as an archive folder name")
    parts = [folder, kind, source.name] if kind else [folder, source.name]
    return PurePosixPath(*parts)


def _add(tar: tarfile.TarFile, source: Path, name: PurePosixPath) -> None:
    if not source.is_file():
        raise ArchiveError(f"could not add {source} to archive: not a file")
    logger.debug("Archiving %s as %s", source, name)
    tar.add(source, arcname=str(name), recursive=False)


def archive_project(project_path: str | Path, archive_path: str | Path) -> Path:
    """Write *project_path* and every asset it references into a tar archive."""
    project = load_project(project_path)
    archive_path = Path(archive_path)

    with tarfile.open(archive_path, "w") as tar:
        clips = []
        for clip in project.clips:
            if clip.title in (COUNTDOWN_FOLDER, SAVE_NAME):
                raise ArchiveError(f"'{clip.title}' is reserved and can't be used as a clip title")
            music = _member_name(clip.title, "music", clip.music_path)
            image = _member_name(clip.title, "image", clip.image_path)
            _add(tar, clip.music_path, music)
            _add(tar, clip.image_path, image)
            clips.append(replace(clip, music_path=Path(music), image_path=Path(image)))
        project.clips = clips

        countdown = project.settings.countdown
        if countdown is not None:
            countdown_name = _member_name(COUNTDOWN_FOLDER, None, countdown)
            _add(tar, countdown, countdown_name)
            project.settings.countdown = Path(countdown_name)

        data = json.dumps(project_to_dict(project)).encode()
        info = tarfile.TarInfo(SAVE_NAME)
        info.size = len(data)
        info.mode = 0o644
        tar.addfile(info, io.BytesIO(data))

    logger.info("Archived %d clips to %s", len(project.clips), archive_path)
    return archive_path


def open_archive(archive_path: str | Path, folder: str | Path) -> Path:
    """Unpack *archive_path* into *folder* and make its asset paths absolute.

    Returns the path of the rewritten project document.
    """
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r") as tar:
            tar.extractall(folder, filter="data")
    except tarfile.TarError as e:
        raise ArchiveError(f"could not unpack archive: {e}") from e

    save_path = folder / SAVE_NAME
    if not save_path.is_file():
        raise ArchiveError(f"archive has no {SAVE_NAME}")

    project = load_project(save_path)
    base = folder.resolve()
    project.clips = [
        replace(clip, music_path=base / clip.music_path, image_path=base / clip.image_path)
        for clip in project.clips
    ]
    if project.settings.countdown is not None:
        project.settings.countdown = base / project.settings.countdown

    store_project(project, save_path)
    logger.info("Opened archive %s into %s", archive_path, base)
    return save_path
