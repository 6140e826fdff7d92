"""
End-to-end runs.

    raw log -> ingest (normalize, route, write intermediate)
            -> ModuleContext -> ModuleRegistry.render_all
            -> lazy materialization + index page -> ReportWriter

Fatal failures are caught here and reported in `RunResult` with the stage
that produced them: "ingestion", "rendering", "analysis" or "writing".
"""

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from compiletrace.analysis.module import MultiRankModule
from compiletrace.analysis.runner import assign_ranks, ingest_ranks
from compiletrace.analysis.schema import MultiRankResult
from compiletrace.errors import CompileTraceError, ModuleRenderFailure, PipelineFailure
from compiletrace.ingest.driver import IngestResult, ingest_capture
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.modules.base import CombinedOutput, DirectoryEntry
from compiletrace.modules.context import ModuleContext
from compiletrace.modules.registry import ModuleRegistry
from compiletrace.report.index import build_index_html
from compiletrace.report.writer import ReportWriter, collect_files
from compiletrace.schema.compile_id import GLOBAL_KEY
from compiletrace.settings import CompileTraceSettings

logger = get_error_logger("pipeline")


@dataclass(frozen=True)
class RunResult:
    """What a run produced, for the CLI and for callers embedding the library."""

    success: bool
    output_dir: Optional[Path]
    files: List[Tuple[str, str]] = field(default_factory=list)
    envelopes_processed: int = 0
    dropped: int = 0
    malformed: int = 0
    unknown: int = 0
    dangling_references: int = 0
    compile_ids: int = 0
    modules_run: List[str] = field(default_factory=list)
    failed_stage: Optional[str] = None
    failed_component: Optional[str] = None
    error: Optional[str] = None
    multi_rank: Optional[MultiRankResult] = None

    @property
    def status(self) -> str:
        if self.success:
            return "ok"
        return f"failed in {self.failed_stage} ({self.failed_component})"


def _failed(failure: PipelineFailure, **counts) -> RunResult:
    logger.error(f"[CompileTrace] {failure}")
    return RunResult(
        success=False,
        output_dir=None,
        failed_stage=failure.stage,
        failed_component=failure.component,
        error=str(failure.cause),
        **counts,
    )


def _counts(results: Sequence[IngestResult]) -> Dict[str, int]:
    return {
        "envelopes_processed": sum(r.envelopes for r in results),
        "dropped": sum(r.dropped for r in results),
        "malformed": sum(r.malformed for r in results),
        "unknown": sum(r.unknown for r in results),
        "dangling_references": sum(r.dangling_references for r in results),
        "compile_ids": sum(len(r.manifest.compile_records) for r in results),
    }


def render_capture(
    ctx: ModuleContext,
    registry: ModuleRegistry,
    settings: CompileTraceSettings,
    prefix: str = "",
    title: str = "Compile Trace Report",
) -> Tuple[List[Tuple[str, str]], CombinedOutput]:
    """
    Render one capture into its final file list, paths prefixed by `prefix`.

    Raises
    ------
    PipelineFailure
        Stage "rendering" when a module fails.
    """
    try:
        combined = registry.render_all(
            ctx,
            max_workers=settings.report.render_workers,
            skip_failed=settings.report.skip_failed_modules,
        )
        index_html = build_index_html(combined, ctx.manifest, settings.modules, title=title)
        files = collect_files(
            combined, lambda ref: registry.materialize(ref, ctx), index_html, settings.report
        )
    except ModuleRenderFailure as e:
        raise PipelineFailure("rendering", e.module_id, e.cause) from e
    return [(f"{prefix}{path}", content) for path, content in files], combined


def run_report(
    input_path: Path,
    output_dir: Path,
    settings: Optional[CompileTraceSettings] = None,
    overwrite: bool = False,
) -> RunResult:
    """Parse one capture and write its report to `output_dir`."""
    settings = settings or CompileTraceSettings()
    with tempfile.TemporaryDirectory(prefix="compiletrace-") as work:
        intermediate = Path(work) / "intermediate"
        try:
            ingested = ingest_capture(Path(input_path), intermediate, settings.parse)
        except (OSError, CompileTraceError) as e:
            return _failed(PipelineFailure("ingestion", str(input_path), e))

        counts = _counts([ingested])
        ctx = ModuleContext(intermediate, ingested.manifest, settings.modules)
        registry = ModuleRegistry.for_config(settings.modules)
        try:
            files, combined = render_capture(ctx, registry, settings)
        except PipelineFailure as e:
            return _failed(e, **counts)

        extra = {"intermediate": intermediate} if settings.report.keep_intermediate else None
        try:
            written = ReportWriter(output_dir, settings.report, overwrite).write(files, extra)
        except (OSError, ValueError) as e:
            return _failed(PipelineFailure("writing", str(output_dir), e), **counts)

    return RunResult(
        success=True,
        output_dir=written,
        files=files,
        modules_run=combined.modules_run,
        **counts,
    )


def run_multi_rank(
    inputs: Sequence[Path],
    output_dir: Path,
    settings: Optional[CompileTraceSettings] = None,
    overwrite: bool = False,
) -> RunResult:
    """
    Parse every rank's capture, render one report per rank under
    ``rank_<N>/`` and a landing page with the multi-rank analysis.
    """
    settings = settings or CompileTraceSettings()
    try:
        captures = assign_ranks([Path(p) for p in inputs])
    except ValueError as e:
        return _failed(PipelineFailure("ingestion", "rank assignment", e))

    with tempfile.TemporaryDirectory(prefix="compiletrace-") as work:
        ingested, failures = ingest_ranks(
            captures, Path(work), settings.parse, max_workers=settings.rank_workers
        )
        counts = _counts(list(ingested.values()))

        files: List[Tuple[str, str]] = []
        contexts: Dict[int, ModuleContext] = {}
        modules_run: List[str] = []
        for rank, result in sorted(ingested.items()):
            ctx = ModuleContext(result.intermediate_dir, result.manifest, settings.modules)
            contexts[rank] = ctx
            try:
                rank_files, combined = render_capture(
                    ctx,
                    ModuleRegistry.for_config(settings.modules),
                    settings,
                    prefix=f"rank_{rank}/",
                    title=f"Compile Trace Report (rank {rank})",
                )
            except PipelineFailure as e:
                return _failed(
                    PipelineFailure(e.stage, f"rank {rank}: {e.component}", e.cause), **counts
                )
            files.extend(rank_files)
            modules_run.extend(combined.modules_run)

        analysis = MultiRankModule(settings.modules, contexts, failures)
        registry = ModuleRegistry([analysis])
        try:
            landing = registry.render_all(None)
        except ModuleRenderFailure as e:
            return _failed(PipelineFailure("analysis", e.module_id, e.cause), **counts)

        for rank in sorted(ingested):
            landing.directory_entries.setdefault(GLOBAL_KEY, []).append(
                DirectoryEntry(name=f"rank {rank}", url=f"rank_{rank}/index.html")
            )
        files.extend(
            collect_files(
                landing,
                lambda ref: registry.materialize(ref, None),
                build_index_html(landing, None, settings.modules, title="Multi-Rank Compile Trace Report"),
                settings.report,
            )
        )

        extra = None
        if settings.report.keep_intermediate:
            extra = {f"rank_{r}/intermediate": res.intermediate_dir for r, res in ingested.items()}
        try:
            written = ReportWriter(output_dir, settings.report, overwrite).write(files, extra)
        except (OSError, ValueError) as e:
            return _failed(PipelineFailure("writing", str(output_dir), e), **counts)

    return RunResult(
        success=True,
        output_dir=written,
        files=files,
        modules_run=modules_run + landing.modules_run,
        multi_rank=analysis.result,
        **counts,
    )
