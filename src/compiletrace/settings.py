"""
compiletrace settings (shared configuration schema).

This module defines the configuration dataclasses used by:
- CLI (builds settings from arguments and environment)
- ingestion (parse behaviour)
- module registry and report modules (rendering options)
- report writer (output behaviour)
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ModuleConfig:
    """
    Rendering options handed to every report module.

    Notes:
    - `plain_text` emits generated code as `.txt` instead of line-numbered HTML.
    - `custom_header_html` is injected verbatim at the top of the index page.
    - `export_mode` switches the registry to the export preset.
    """

    plain_text: bool = False
    custom_header_html: str = ""
    export_mode: bool = False


@dataclass(frozen=True)
class ParseSettings:
    """Ingestion behaviour."""

    strict: bool = False
    # Count per-line failures but stop logging them individually after this many.
    max_logged_failures: int = 20


@dataclass(frozen=True)
class ReportSettings:
    """
    Report rendering and writing behaviour.

    Notes:
    - `render_workers` > 1 renders modules on a thread pool; output order is
      unchanged.
    - `skip_failed_modules` logs and skips a failing module instead of
      aborting the report.
    - `materialize_lazy` writes lazy artifacts into the report; otherwise only
      placeholders and `lazy_artifacts.json` are written.
    - `keep_intermediate` leaves the intermediate streams next to the report.
    """

    render_workers: int = 1
    skip_failed_modules: bool = False
    materialize_lazy: bool = True
    keep_intermediate: bool = True


@dataclass(frozen=True)
class CompileTraceSettings:
    """High-level settings for one compiletrace run."""

    modules: ModuleConfig = field(default_factory=ModuleConfig)
    parse: ParseSettings = field(default_factory=ParseSettings)
    report: ReportSettings = field(default_factory=ReportSettings)
    rank_workers: Optional[int] = None
    logs_dir: str = "./logs"
    enable_logging: bool = False


def read_compiletrace_env() -> dict:
    """
    Read default configuration from COMPILETRACE_* environment variables.

    The CLI uses these as defaults so that batch jobs can configure runs
    without changing the command line.
    """
    return {
        "plain_text": os.environ.get("COMPILETRACE_PLAIN_TEXT", "") == "1",
        "export_mode": os.environ.get("COMPILETRACE_EXPORT", "") == "1",
        "strict": os.environ.get("COMPILETRACE_STRICT", "") == "1",
        "render_workers": int(os.environ.get("COMPILETRACE_RENDER_WORKERS", "1")),
        "enable_logging": os.environ.get("COMPILETRACE_ENABLE_LOGGING", "") == "1",
        "logs_dir": os.environ.get("COMPILETRACE_LOGS_DIR", "./logs"),
    }
