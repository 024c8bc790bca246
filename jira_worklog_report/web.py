import logging
from io import BytesIO
from typing import Callable

import requests
from flask import Flask, jsonify, request, send_file

from jira_worklog_report import core

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def create_app(cfg=None, session_factory: Callable[[], requests.Session] = None) -> Flask:
    """Build the Flask app serving the worklog report route.

    Args:
        cfg: Settings as returned by core.read_config(); read from the
            environment when omitted.
        session_factory: Returns a Jira session; called once per request so
            threaded workers never share a requests.Session.
    """
    cfg = cfg if cfg is not None else core.read_config(None)
    if session_factory is None:
        def session_factory():
            return core.session_from_config(cfg)

    app = Flask(__name__)
    app.config["JIRA"] = cfg

    @app.route("/")
    def index():
        return "Welcome to the JIRA Worklog Report API! Use /api/generate-report to generate reports."

    @app.route("/api/generate-report", methods=["POST"])
    def generate_report():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}
        start_date = body.get("startDate")
        end_date = body.get("endDate")

        session = session_factory()
        try:
            _, data = core.generate_report(session, cfg, start_date, end_date)
        except core.InvalidDateError as e:
            return jsonify({"error": str(e)}), 400
        except core.UpstreamError as e:
            return jsonify({"error": e.reason}), e.status_code
        except Exception:
            logger.exception("Failed to fetch or process JIRA data")
            return jsonify({"error": "Internal Server Error"}), 500
        finally:
            session.close()

        if cfg.get("report_dir"):
            try:
                path = core.save_report(data, cfg["report_dir"], str(start_date), str(end_date))
                logger.info("Archived report copy at %s", path)
            except OSError:
                logger.exception("Error archiving report for %s to %s", start_date, end_date)

        return send_file(
            BytesIO(data),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=core.report_filename(str(start_date), str(end_date)),
        )

    return app
