import argparse
import sys
from pathlib import Path
from typing import Any, Callable

from rich.console import Console

from compiletrace.config import config
from compiletrace.loggers.error_log import get_error_logger, setup_error_logger
from compiletrace.pipeline import run_multi_rank, run_report
from compiletrace.renderers.summary_renderer import render_run_summary
from compiletrace.settings import (
    CompileTraceSettings,
    ModuleConfig,
    ParseSettings,
    ReportSettings,
    read_compiletrace_env,
)

logger = get_error_logger("cli")


def _safe(logger, label: str, fn: Callable[[], Any]) -> Any:
    """Execute `fn()` and log exceptions; never raise."""
    try:
        return fn()
    except Exception as e:
        logger.error(f"[CompileTrace] {label}: {e}")
        return None


def validate_log_path(log_path: str) -> Path:
    p = Path(log_path)
    if not p.is_file():
        print(f"Error: log file '{log_path}' not found.", file=sys.stderr)
        sys.exit(1)
    return p.resolve()


def build_settings(args) -> CompileTraceSettings:
    custom_header = ""
    if args.custom_header_html:
        custom_header = Path(args.custom_header_html).read_text(encoding="utf-8")
    return CompileTraceSettings(
        modules=ModuleConfig(
            plain_text=args.plain_text,
            custom_header_html=custom_header,
            export_mode=getattr(args, "export", False),
        ),
        parse=ParseSettings(strict=args.strict),
        report=ReportSettings(
            render_workers=args.workers,
            skip_failed_modules=args.skip_failed_modules,
            materialize_lazy=not args.lazy,
            keep_intermediate=not args.no_intermediate,
        ),
        rank_workers=getattr(args, "rank_workers", None),
        logs_dir=args.logs_dir,
        enable_logging=args.enable_logging,
    )


def configure_logging(settings: CompileTraceSettings) -> None:
    """Apply the run's logging settings to the process config, then set up handlers."""
    config.enable_logging = settings.enable_logging
    config.logs_dir = settings.logs_dir
    setup_error_logger()


def _add_common(p: argparse.ArgumentParser, env: dict) -> None:
    p.add_argument("-o", "--output", default="compiletrace_out", help="Report directory.")
    p.add_argument("--overwrite", action="store_true", help="Replace an existing report directory.")
    p.add_argument(
        "--plain-text",
        action="store_true",
        default=env["plain_text"],
        help="Write generated code and graphs as .txt instead of HTML.",
    )
    p.add_argument("--custom-header-html", default="", help="File whose HTML is placed atop the index.")
    p.add_argument("--strict", action="store_true", default=env["strict"], help="Abort on the first malformed line.")
    p.add_argument("--workers", type=int, default=env["render_workers"], help="Module render threads.")
    p.add_argument("--skip-failed-modules", action="store_true", help="Skip failing modules instead of aborting.")
    p.add_argument("--lazy", action="store_true", help="Write placeholders for lazy artifacts.")
    p.add_argument("--no-intermediate", action="store_true", help="Do not copy intermediate streams into the report.")
    p.add_argument("--enable-logging", action="store_true", default=env["enable_logging"])
    p.add_argument("--logs-dir", default=env["logs_dir"])


def build_parser() -> argparse.ArgumentParser:
    env = read_compiletrace_env()
    parser = argparse.ArgumentParser(
        "compiletrace", description="Diagnostic reports from structured compiler trace logs."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    parse_p = sub.add_parser("parse", help="Build a report from one trace log.")
    parse_p.add_argument("log", help="Trace log file.")
    parse_p.add_argument("--export", action="store_true", default=env["export_mode"], help="Export-mode report.")
    _add_common(parse_p, env)

    ranks_p = sub.add_parser("ranks", help="Build per-rank reports and a multi-rank analysis.")
    ranks_p.add_argument("logs", nargs="+", help="One trace log per rank.")
    ranks_p.add_argument("--rank-workers", type=int, default=None, help="Parallel rank ingestion threads.")
    _add_common(ranks_p, env)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = build_settings(args)
    configure_logging(settings)

    if args.command == "parse":
        result = run_report(validate_log_path(args.log), Path(args.output), settings, args.overwrite)
    else:
        paths = [validate_log_path(p) for p in args.logs]
        result = run_multi_rank(paths, Path(args.output), settings, args.overwrite)

    _safe(logger, "run summary", lambda: Console().print(render_run_summary(result)))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
