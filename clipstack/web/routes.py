"""Web API routes for ClipStack."""

import json
import logging
import queue
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from clipstack.engine import SUPPORTED_EXTENSIONS
from clipstack.errors import (
    CaptureBusyError,
    CaptureNotActiveError,
    ClipStackError,
)
from clipstack.manifest import timeline_from_dict

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)


def _state():
    return current_app.extensions["clipstack"]


def _work_dir() -> Path:
    return Path(current_app.config["WORK_DIR"])


def _output_path(name: str | None, job_id: str, default: str) -> Path:
    """Place a requested output file name inside a per-job work directory.

    Raises ValueError for anything other than a bare .mp4/.mov file name.
    """
    name = name or default
    if not isinstance(name, str) or "/" in name or "\\" in name or name in (".", ".."):
        raise ValueError("Output must be a bare file name")
    if Path(name).suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise ValueError("Output must end with .mp4 or .mov")
    job_dir = _work_dir() / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    return job_dir / name


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    media_id = uuid.uuid4().hex[:12]
    ext = Path(f.filename).suffix or ".mp4"
    path = _work_dir() / f"media_{media_id}{ext}"
    f.save(path)
    return jsonify({"media_id": media_id, "path": str(path), "filename": f.filename})


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

@bp.route("/api/exports", methods=["POST"])
def start_export():
    data = request.get_json(silent=True) or {}
    try:
        timeline = timeline_from_dict(data)
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    job_id = uuid.uuid4().hex[:12]
    try:
        output = _output_path(data.get("output"), job_id, "export.mp4")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    progress_queue: queue.Queue = queue.Queue()
    job = {
        "status": "processing",
        "output_path": output,
        "progress_queue": progress_queue,
        "error": None,
        "result": None,
    }
    _state().jobs[job_id] = job

    def on_progress(stage: str, frac: float) -> None:
        progress_queue.put({"stage": stage, "progress": round(frac, 3)})

    def on_done(future) -> None:
        try:
            result = future.result()
        except ClipStackError as e:
            job["status"] = "error"
            job["error"] = str(e)
        except Exception as e:
            logger.exception("Export %s crashed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        else:
            job["result"] = {
                "output_path": str(result.output_path),
                "strategy": result.strategy,
                "steps_run": result.steps_run,
                "duration": result.duration,
            }
            job["status"] = "done"
        finally:
            progress_queue.put(None)  # sentinel

    future = _state().exporter.submit(timeline, output, on_progress=on_progress)
    future.add_done_callback(on_done)
    return jsonify({"job_id": job_id, "status": "started"}), 202


def _job_or_404(job_id: str):
    job = _state().jobs.get(job_id)
    if job is None:
        return None, (jsonify({"error": "Job not found"}), 404)
    return job, None


@bp.route("/api/exports/<job_id>/progress")
def progress_stream(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err
    q = job["progress_queue"]

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
                    data = json.dumps({"stage": "complete", "progress": 1.0, "result": job["result"]})
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/exports/<job_id>/status")
def export_status(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err
    resp = {"status": job["status"]}
    if job["status"] == "done":
        resp["result"] = job["result"]
    if job["status"] == "error":
        resp["error"] = job["error"]
    return jsonify(resp)


@bp.route("/api/exports/<job_id>/result")
def download_result(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err
    if job["status"] != "done":
        return jsonify({"error": "Export not complete"}), 409
    return send_file(Path(job["result"]["output_path"]), as_attachment=False)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

def _status_json(status) -> dict:
    return {
        "state": status.state.value,
        "active": status.active,
        "output_path": str(status.output_path) if status.output_path else None,
        "audio_enabled": status.audio_enabled,
        "audio_error": status.audio_error,
        "elapsed": round(status.elapsed, 3),
    }


@bp.route("/api/capture/start", methods=["POST"])
def capture_start():
    data = request.get_json(silent=True) or {}
    try:
        output = _output_path(data.get("output"), f"recording_{uuid.uuid4().hex[:12]}", "recording.mp4")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    try:
        status = _state().capture.start(output)
    except CaptureBusyError as e:
        return jsonify({"error": str(e)}), 409
    except ClipStackError as e:
        return jsonify({"error": str(e)}), 500
    return jsonify(_status_json(status))


@bp.route("/api/capture/stop", methods=["POST"])
def capture_stop():
    try:
        result = _state().capture.stop()
    except CaptureNotActiveError as e:
        return jsonify({"error": str(e)}), 409
    except ClipStackError as e:
        return jsonify({"error": str(e)}), 500
    return jsonify({
        "output_path": str(result.output_path),
        "offset": result.offset,
        "muxed": result.muxed,
        "mux_error": result.mux_error,
        "audio_error": result.audio_error,
        "stop_state": result.stop_state.value,
    })


@bp.route("/api/capture/status")
def capture_status():
    return jsonify(_status_json(_state().capture.status()))
