"""
Sprint Review export tool
-------------------------
Command line entry point: export a saved sprint review payload, print the
epic breakdown of an issue list, or serve the HTTP API.

    jsr export --input review.json --format pdf --quality high --report
    jsr epics --input issues.json
    jsr serve --port 5000

The payload is the same JSON the HTTP API accepts:
{"presentation": {...}, "allIssues": [...], "upcomingIssues": [...],
 "sprintMetrics": {...}, "options": {...}}
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from jira_epics import group_by_epic
from jsr_errors import ExportError
from jsr_export import ExportService
from jsr_models import QUALITY_LEVELS, ExportOptions, GeneratedPresentation, format_file_size
from jsr_quality import QualityAssuranceChecker

logger = logging.getLogger("jsr")


def configure_logging(verbose: bool = False) -> None:
    env_level = os.environ.get("JSR_VERBOSE")
    if verbose or (env_level and env_level not in ("", "0", "False", "false")):
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def _load_json(path: str):
    try:
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)
    except OSError as e:
        raise SystemExit(f"Cannot read {path}: {e}")
    except json.JSONDecodeError as e:
        raise SystemExit(f"{path} is not valid JSON: {e}")


def cmd_export(args) -> int:
    payload = _load_json(args.input)
    if not isinstance(payload, dict) or not payload.get("presentation"):
        print(f"{args.input} has no presentation data", file=sys.stderr)
        return 2
    try:
        presentation = GeneratedPresentation.from_dict(payload["presentation"])
    except ValueError as e:
        print(f"Invalid presentation: {e}", file=sys.stderr)
        return 2

    stored = payload.get("options") or {}
    if not isinstance(stored, dict):
        print(f"Invalid export options: expected an object, got {type(stored).__name__}", file=sys.stderr)
        return 2
    stored = dict(stored, quality=args.quality or stored.get("quality"))
    if args.no_compression:
        stored["compression"] = False
    if args.no_images:
        stored["includeImages"] = False
    try:
        options = ExportOptions.from_dict(stored, format=args.format)
    except ValueError as e:
        print(f"Invalid export options: {e}", file=sys.stderr)
        return 2

    def on_progress(progress):
        logger.debug("[%3d%%] %s: %s", progress.percentage, progress.stage, progress.message)

    service = ExportService()
    try:
        result = service.export_sync(
            presentation,
            payload.get("allIssues") or [],
            payload.get("upcomingIssues") or [],
            payload.get("sprintMetrics"),
            options,
            on_progress,
        )
    except ExportError as e:
        print(f"Export failed: {e.user_message} ({e.code}: {e.message})", file=sys.stderr)
        for action in service.error_handler.suggest_recovery_actions(e):
            print(f"  - {action}", file=sys.stderr)
        return 1

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / result.file_name
    target.write_bytes(result.blob)
    print(f"Saved {target} ({format_file_size(result.file_size)}, "
          f"{result.metadata.slide_count} slides, {result.metadata.processing_time:.0f} ms)")

    if args.report:
        report = QualityAssuranceChecker().validate_export(result, presentation, options)
        print(f"Quality score: {report.overall_score} ({report.rating})")
        for warning in report.metrics.warnings:
            print(f"  ! {warning}")
        for recommendation in report.recommendations:
            print(f"  - {recommendation}")
    return 0


def cmd_epics(args) -> int:
    data = _load_json(args.input)
    issues = data.get("issues", data.get("allIssues")) if isinstance(data, dict) else data
    if not isinstance(issues, list):
        print(f"{args.input} does not contain an issue list", file=sys.stderr)
        return 2
    aggregation = group_by_epic(issues)
    if args.json:
        print(json.dumps(aggregation.to_dict(include_issues=False), indent=2, ensure_ascii=False))
        return 0
    if not aggregation.has_data:
        print("No issues to group.")
        return 0
    for group in aggregation.groups:
        print(f"{group.epic_name:<40} {group.completed_issues:>3}/{len(group.issues):<3} issues  "
              f"{group.completed_story_points:g}/{group.total_story_points:g} pts  {group.completion_rate:>3}%")
    s = aggregation.summary
    print(f"\nSprint: {s.completed_issues}/{s.total_issues} issues, "
          f"{s.completed_story_points:g}/{s.total_story_points:g} pts ({s.completion_rate}%)")
    for warning in aggregation.warnings:
        print(f"Skipped issue #{warning.position}: {warning.reason}", file=sys.stderr)
    return 0


def cmd_serve(args) -> int:
    from jsr_server import create_app

    create_app().run(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sprint Review export tool")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging (or set JSR_VERBOSE=1)")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Export a saved sprint review payload")
    export.add_argument("--input", "-i", required=True, help="Payload JSON file")
    export.add_argument("--format", "-f", default="pdf",
                        help="pdf, html, markdown, executive, digest, advanced-digest or pptx (default: pdf)")
    export.add_argument("--quality", "-q", choices=QUALITY_LEVELS, help="Output quality (default: medium)")
    export.add_argument("--no-compression", action="store_true", help="Disable output compression")
    export.add_argument("--no-images", action="store_true", help="Do not embed corporate slide images")
    export.add_argument("--output-dir", "-o", default=".", help="Directory for the exported file")
    export.add_argument("--report", action="store_true", help="Print a quality report after exporting")
    export.set_defaults(func=cmd_export)

    epics = sub.add_parser("epics", help="Print the epic breakdown of an issue list")
    epics.add_argument("--input", "-i", required=True, help="JSON list of issues (or {\"issues\": [...]})")
    epics.add_argument("--json", action="store_true", help="Print the breakdown as JSON")
    epics.set_defaults(func=cmd_epics)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
