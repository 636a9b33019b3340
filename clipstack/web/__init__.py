"""Flask application factory for the ClipStack web API."""

import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from flask import Flask, jsonify

from clipstack.capture.session import CaptureSessionManager
from clipstack.engine import Exporter
from clipstack.ffutil import FFmpeg
from clipstack.manifest import EngineConfig


@dataclass
class AppState:
    """Application-scoped collaborators shared by the routes."""

    exporter: Exporter
    capture: CaptureSessionManager
    jobs: dict[str, dict] = field(default_factory=dict)


def create_app(
    work_dir: Path | None = None,
    config: EngineConfig | None = None,
    exporter: Exporter | None = None,
    capture: CaptureSessionManager | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="clipstack_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB

    config = config or EngineConfig()
    ffmpeg = FFmpeg(config.ffmpeg_path, config.ffprobe_path)
    app.extensions["clipstack"] = AppState(
        exporter=exporter or Exporter(ffmpeg, config),
        capture=capture or CaptureSessionManager(ffmpeg, config),
    )

    from clipstack.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
