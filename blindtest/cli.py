"""Thin CLI entry point — loads a project and calls the engine."""

import argparse
import logging
import sys
from pathlib import Path

from blindtest import ffutil
from blindtest.archive import ArchiveError, archive_project, default_archive_path, open_archive
from blindtest.engine import ExportProgress, export_project
from blindtest.project import load_project


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="blindtest",
        description="Blind test builder: render music/image clips behind a shared countdown.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    exp = sub.add_parser("export", help="Render a project to a video file")
    exp.add_argument("project", type=Path, help="Project (.bt) file")
    exp.add_argument("--output", "-o", type=Path, default=Path("output.mp4"), help="Output file path")
    exp.add_argument("--threads", "-t", type=int, help="Number of ffmpeg threads")

    arc = sub.add_parser("archive", help="Bundle a project and its media into one archive")
    arc.add_argument("project", type=Path, help="Project (.bt) file")
    arc.add_argument("--output", "-o", type=Path, help="Archive path (default: <project>.bta)")

    opn = sub.add_parser("open", help="Unpack an archive and make its paths absolute")
    opn.add_argument("archive", type=Path, help="Archive (.bta) file")
    opn.add_argument("--output", "-o", type=Path, default=Path("bt_archive"), help="Destination folder")

    serve = sub.add_parser("serve", help="Launch the web UI")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from blindtest.web import create_app
        app = create_app()
        print(f"Blind test web UI: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    if args.command == "archive":
        archive = args.output or default_archive_path(args.project)
        try:
            archive_project(args.project, archive)
        except (ArchiveError, OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Archive: {archive}")
        return

    if args.command == "open":
        try:
            save_path = open_archive(args.archive, args.output)
        except (ArchiveError, OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Project: {save_path}")
        return

    try:
        ffutil.check_ffmpeg()
        project = load_project(args.project)
    except (ffutil.FFmpegNotFoundError, OSError, ValueError) as e:
        print(f"Error: could not open project: {e}", file=sys.stderr)
        sys.exit(1)

    def on_progress(progress: ExportProgress) -> None:
        if progress.done:
            print("  [100%] done")
        elif progress.frame:
            print(f"  [{progress.fraction:3.0%}] frame {progress.frame}/{progress.total}", end="\r")

    try:
        result = export_project(project, args.output, threads=args.threads, on_progress=on_progress)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    if not result.ok:
        print(f"Export failed: {result.error}", file=sys.stderr)
        sys.exit(1)
    print(f"Done! Output: {result.output_path}")
    print(f"  Clips: {result.items}, frames: {result.frames}")
