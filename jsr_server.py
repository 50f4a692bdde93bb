"""
HTTP API for sprint review exports and cached Jira lookups.

    POST   /api/export/<format>    file download
    POST   /api/export/metrics     executive summary from sprint metrics only
    POST   /api/export/quality     export, then return the quality report
    GET    /api/export/cache       export cache statistics
    DELETE /api/export/cache       drop cached exports (optional ?pattern=)
    POST   /api/epic-breakdown     epic aggregation of posted issues
    GET    /api/sprint-metrics     stored sprint metrics (?sprintId= or ?boardId=)
    POST   /api/sprint-metrics     validate and store one sprint's metrics
    DELETE /api/sprint-metrics     drop a sprint (?sprintId=)
    POST   /api/jira-batch         cached Jira operations
    GET    /health
"""

import asyncio
import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_file

from jira_api import JiraApi
from jira_epics import group_by_epic
from jira_metrics import SprintMetrics, enhance_sprint_metrics, validate_sprint_metrics
from jsr_errors import FORMAT_ERROR, VALIDATION_ERROR, ExportError, JsrError, UpstreamFetchError, ValidationError
from jsr_export import ExportService
from jsr_models import ExportOptions, GeneratedPresentation
from jsr_quality import QualityAssuranceChecker

logger = logging.getLogger(__name__)

bp = Blueprint("jsr", __name__)


def _state() -> Dict[str, Any]:
    return current_app.extensions["jsr"]


def _api() -> JiraApi:
    """The app's JiraApi, created on first use so the app starts without Jira settings."""
    state = _state()
    if state["api"] is None:
        state["api"] = JiraApi()
    return state["api"]


def _error(message: str, status: int, **extra):
    return jsonify({"error": message, **extra}), status


@bp.errorhandler(ValidationError)
def handle_validation_error(exc):
    return _error(str(exc), 400)


@bp.errorhandler(ExportError)
def handle_export_error(error):
    status = 400 if error.code in (VALIDATION_ERROR, FORMAT_ERROR) else 500
    return jsonify({
        "error": error.user_message,
        "code": error.code,
        "details": error.message,
        "recoverable": error.recoverable,
        "retryCount": error.retry_count,
    }), status


@bp.errorhandler(UpstreamFetchError)
def handle_upstream_error(exc):
    logger.error("Jira request failed: %s", exc)
    return _error(str(exc), 502, statusCode=exc.status_code)


@bp.errorhandler(JsrError)
def handle_internal_error(exc):
    logger.error("Request failed: %s", exc)
    return _error("Internal error", 500)


def _run_export(format: Optional[str]):
    """Parse the export payload and run the export.

    Returns:
        (result, presentation, options)

    Raises:
        ValidationError: If the payload has no usable presentation
        ExportError: If the export fails
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload.get("presentation"):
        raise ValidationError("Missing presentation data")
    try:
        presentation = GeneratedPresentation.from_dict(payload["presentation"])
    except ValueError as exc:
        raise ValidationError(f"Invalid presentation: {exc}") from exc

    try:
        options = ExportOptions.from_dict(payload.get("options"), format=format)
    except ValueError as exc:
        raise ValidationError(f"Invalid export options: {exc}") from exc
    result = _state()["service"].export_sync(
        presentation,
        payload.get("allIssues") or [],
        payload.get("upcomingIssues") or [],
        payload.get("sprintMetrics"),
        options,
    )
    return result, presentation, options


@bp.route("/health")
def health():
    service = _state()["service"]
    return jsonify({"status": "ok", "formats": service.formats()})


@bp.route("/api/export/quality", methods=["POST"])
def export_quality():
    payload = request.get_json(silent=True)
    options = payload.get("options") if isinstance(payload, dict) else None
    result, presentation, options = _run_export(options.get("format") if isinstance(options, dict) else None)
    report = _state()["checker"].validate_export(result, presentation, options)
    return jsonify({"result": result.to_dict(), "quality": report.to_dict()})


def _download(result, quality_score: Optional[int] = None):
    response = send_file(
        io.BytesIO(result.blob),
        mimetype=result.content_type,
        as_attachment=True,
        download_name=result.file_name,
    )
    if quality_score is not None:
        response.headers["X-Export-Quality-Score"] = str(quality_score)
    response.headers["X-Export-Processing-Time"] = str(result.metadata.processing_time)
    return response


@bp.route("/api/export/metrics", methods=["POST"])
def export_metrics():
    """Executive summary built from sprint metrics alone (no curated deck)."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload.get("sprintMetrics"):
        return _error("Sprint metrics data is required", 400)
    service = _state()["service"]
    result = asyncio.run(service.export_executive_metrics(
        payload["sprintMetrics"], payload.get("allIssues") or [], payload.get("options")))
    return _download(result)


@bp.route("/api/export/cache", methods=["GET"])
def export_cache_stats():
    return jsonify(_state()["service"].cache.stats())


@bp.route("/api/export/cache", methods=["DELETE"])
def clear_export_cache():
    removed = _state()["service"].cache.clear(request.args.get("pattern"))
    return jsonify({"success": True, "removed": removed})


@bp.route("/api/export/<format>", methods=["POST"])
def export(format):
    result, presentation, options = _run_export(format)
    report = _state()["checker"].validate_export(result, presentation, options)
    return _download(result, report.overall_score)


@bp.route("/api/epic-breakdown", methods=["POST"])
def epic_breakdown():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not isinstance(payload.get("issues"), list):
        return _error("Request body must contain an issues list", 400)
    aggregation = group_by_epic(payload["issues"])
    return jsonify(aggregation.to_dict(include_issues=bool(payload.get("includeIssues", False))))


SPRINT_REQUIRED_FIELDS = ("sprintId", "sprintName", "sprintNumber", "metrics")


@bp.route("/api/sprint-metrics", methods=["GET"])
def list_sprint_metrics():
    """One sprint (?sprintId=), a board's sprints (?boardId=) or the whole history."""
    history = _state()["history"]
    sprint_id = request.args.get("sprintId")
    if sprint_id:
        record = history.get(sprint_id)
        if record is None:
            return _error("Sprint not found", 404)
        return jsonify(record)
    records = list(history.values())
    board_id = request.args.get("boardId")
    if board_id:
        records = [record for record in records if record["boardId"] == board_id]
    return jsonify(records)


@bp.route("/api/sprint-metrics", methods=["POST"])
def save_sprint_metrics():
    """Validate, enrich and store one sprint's metrics; re-posting a sprint replaces it."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not all(payload.get(name) for name in SPRINT_REQUIRED_FIELDS):
        return _error("Missing required fields", 400)
    errors = validate_sprint_metrics(payload["metrics"])
    if errors:
        return _error("Invalid metrics data", 400, details=errors)

    history = _state()["history"]
    now = datetime.now(timezone.utc).isoformat()
    sprint_id = str(payload["sprintId"])
    board_id = payload.get("boardId") or payload["metrics"].get("boardId")
    previous = history.pop(sprint_id, None)
    record = {
        "sprintId": sprint_id,
        "sprintName": str(payload["sprintName"]),
        "sprintNumber": str(payload["sprintNumber"]),
        "boardId": str(board_id) if board_id else None,
        "startDate": payload.get("startDate") or now,
        "endDate": payload.get("endDate") or now,
        "metrics": enhance_sprint_metrics(SprintMetrics.from_dict(payload["metrics"])),
        "createdAt": previous["createdAt"] if previous else now,
        "updatedAt": now,
    }
    history[sprint_id] = record
    logger.info("Stored metrics for sprint %s (%s)", sprint_id, record["sprintName"])
    return jsonify(record), 201


@bp.route("/api/sprint-metrics", methods=["DELETE"])
def delete_sprint_metrics():
    sprint_id = request.args.get("sprintId")
    if not sprint_id:
        return _error("Sprint ID is required", 400)
    if _state()["history"].pop(sprint_id, None) is None:
        return _error("Sprint not found", 404)
    return jsonify({"message": "Sprint metrics deleted successfully"})


def _batch_test_connection(api: JiraApi, params: Dict[str, Any]):
    return api.test_connection()


def _batch_projects_with_boards(api: JiraApi, params: Dict[str, Any]):
    return api.fetch_projects_with_boards()


def _batch_sprint_with_issues(api: JiraApi, params: Dict[str, Any]):
    data = api.fetch_sprint_with_issues(params.get("boardId"), params.get("sprintId"))
    return {**data, "issues": [issue.to_dict() for issue in data["issues"]]}


def _batch_clear_cache(api: JiraApi, params: Dict[str, Any]):
    removed = api.clear_cache(params.get("pattern"))
    return {"success": True, "removed": removed}


def _batch_cache_stats(api: JiraApi, params: Dict[str, Any]):
    return api.get_cache_stats()


BATCH_OPERATIONS = {
    "test-connection": _batch_test_connection,
    "fetch-projects-with-boards": _batch_projects_with_boards,
    "fetch-sprint-with-issues": _batch_sprint_with_issues,
    "clear-cache": _batch_clear_cache,
    "get-cache-stats": _batch_cache_stats,
}


@bp.route("/api/jira-batch", methods=["POST"])
def jira_batch():
    payload = request.get_json(silent=True) or {}
    operation = payload.get("operation")
    handler = BATCH_OPERATIONS.get(operation)
    if handler is None:
        return _error(f"Unknown operation: {operation}", 400)
    params = payload.get("params") or {}
    try:
        api = _api()
    except ValueError as exc:
        logger.error("Jira is not configured: %s", exc)
        return _error("Jira connection is not configured", 503)
    return jsonify(handler(api, params))


def create_app(service: Optional[ExportService] = None, api: Optional[JiraApi] = None,
               checker: Optional[QualityAssuranceChecker] = None) -> Flask:
    """Create the Flask application.

    Each app owns its ExportService, QualityAssuranceChecker and JiraApi
    (and with it the Jira request cache). Sprint metrics history lives
    in memory for the life of the app.
    """
    app = Flask(__name__)
    app.extensions["jsr"] = {
        "service": service or ExportService(),
        "api": api,
        "checker": checker or QualityAssuranceChecker(),
        "history": {},
    }
    app.register_blueprint(bp)
    return app
