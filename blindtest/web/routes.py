"""Web UI routes: upload a project, export it and stream progress."""

import json
import logging
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    render_template,
    request,
    send_file,
)

from blindtest.engine import ExportProgress, export_project
from blindtest.export import ExportDriver
from blindtest.project import load_project

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__, template_folder="templates")

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


@bp.route("/")
def index():
    return render_template("index.html")


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    project_path = job_dir / "project.bt"
    f.save(project_path)

    try:
        project = load_project(project_path)
    except ValueError as e:
        return jsonify({"error": f"Invalid project: {e}"}), 400

    _jobs[job_id] = {
        "dir": job_dir,
        "project_path": project_path,
        "filename": f.filename,
        "status": "uploaded",
    }

    return jsonify({
        "job_id": job_id,
        "filename": f.filename,
        "clips": len(project.clips),
        "slots": len(project.timeline),
    })


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
def start_export(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] not in ("uploaded", "done", "error"):
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    config = request.get_json(silent=True) or {}
    threads = config.get("threads")
    output_path = job["dir"] / "output.mp4"

    project = load_project(job["project_path"])
    if project.settings.countdown is None:
        return jsonify({"error": "Project has no countdown"}), 400

    progress_queue: queue.Queue = queue.Queue()
    job["progress_queue"] = progress_queue
    job["status"] = "exporting"
    job["error"] = None
    job["driver"] = None

    def run():
        def on_driver(driver: ExportDriver) -> None:
            job["driver"] = driver

        def on_progress(progress: ExportProgress) -> None:
            progress_queue.put(progress.to_dict())

        try:
            result = export_project(
                project,
                output_path,
                threads=int(threads) if threads is not None else None,
                on_progress=on_progress,
                on_driver=on_driver,
            )
            if result.ok:
                job["result"] = {
                    "output_path": str(result.output_path),
                    "items": result.items,
                    "frames": result.frames,
                }
                job["status"] = "done"
            else:
                job["status"] = "error"
                job["error"] = result.error
        except Exception as e:
            logger.exception("Export job %s crashed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            job["driver"] = None
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_export(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    driver = job.get("driver")
    if job["status"] != "exporting" or driver is None:
        return jsonify({"error": "No export in progress"}), 409

    driver.cancel()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    output_path = Path(job["result"]["output_path"])
    return send_file(output_path, as_attachment=False)


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"], "filename": job.get("filename")}
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
