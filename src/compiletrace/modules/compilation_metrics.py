"""
Compilation metrics module.

Hybrid: the index receives an eager failure/restart summary, while the
per-compile metrics pages and the failures table are rendered on demand.
"""

from html import escape
from typing import List

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.intermediate.manifest import METRICS_TYPES
from compiletrace.schema.metadata import CompilationMetricsMetadata, DynamoStartMetadata
from compiletrace.utils.formatting import fmt_seconds

from .base import DirectoryEntry, LazyReference, LoadingStrategy, Module, ModuleOutput
from .html import link, page, table, text_value
from .naming import UniquePaths, directory_key

FAILURES_PATH = "failures_and_restarts.html"
FAILURES_SECTION = "Failures and Restarts"

METRIC_FIELDS = (
    "co_name",
    "co_filename",
    "co_firstlineno",
    "graph_op_count",
    "graph_node_count",
    "graph_input_count",
    "guard_count",
    "shape_env_guard_count",
    "entire_frame_compile_time_s",
    "backend_compile_time_s",
    "inductor_compile_time_s",
    "code_gen_time_s",
    "fail_type",
    "fail_reason",
    "fail_user_frame_filename",
    "fail_user_frame_lineno",
)


class CompilationMetricsModule(Module):

    name = "Compilation Metrics"
    id = "compilation_metrics"
    subscriptions = (IntermediateFileType.COMPILATION_METRICS, IntermediateFileType.GUARDS)
    loading_strategy = LoadingStrategy.HYBRID

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        paths = UniquePaths()
        failures = restarts = 0

        for ordinal, envelope in ctx.read_indexed(IntermediateFileType.COMPILATION_METRICS):
            if envelope.entry_type not in METRICS_TYPES:
                continue
            metrics = envelope.typed_metadata
            if metrics.failed:
                failures += 1
            elif metrics.restart_reasons:
                restarts += 1

            key = directory_key(envelope)
            path = paths.path(key, envelope.entry_type, "html")
            output.add_lazy(
                self.lazy_reference(
                    path,
                    IntermediateFileType.COMPILATION_METRICS,
                    envelope.compile_key,
                    envelope.entry_type,
                    ordinal,
                )
            )
            output.add_directory_entry(
                key,
                DirectoryEntry(
                    name=path.rsplit("/", 1)[-1],
                    url=path,
                    outcome=metrics.outcome,
                ),
            )

        if failures or restarts:
            output.add_lazy(
                self.lazy_reference(
                    FAILURES_PATH, IntermediateFileType.COMPILATION_METRICS, entry_type="compilation_metrics"
                )
            )
            output.add_index(
                FAILURES_SECTION,
                f"<p>{failures} failed compilations, {restarts} restarts. "
                f"{link(FAILURES_PATH, 'Details')}</p>",
            )
        return output

    def materialize(self, reference: LazyReference, ctx) -> str:
        if reference.ordinal is None:
            return self._failures_page(ctx)
        return self._metrics_page(ctx.fetch(reference), ctx)

    def _metrics_page(self, envelope, ctx) -> str:
        metrics: CompilationMetricsMetadata = envelope.typed_metadata
        compile_key = envelope.compile_key or ""
        title = f"{envelope.entry_type} {compile_key}"

        rows = []
        for f in METRIC_FIELDS:
            value = getattr(metrics, f)
            if value is None:
                continue
            rows.append([f, fmt_seconds(value) if f.endswith("_time_s") else text_value(value)])
        parts: List[str] = [f"<h1>{escape(title)}</h1>", table(["Metric", "Value"], rows)]

        if metrics.restart_reasons:
            items = "".join(f"<li>{escape(r)}</li>" for r in metrics.restart_reasons)
            parts.append(f"<h2>Restart Reasons</h2><ul>{items}</ul>")
        if metrics.non_compliant_ops:
            items = "".join(f"<li>{escape(o)}</li>" for o in metrics.non_compliant_ops)
            parts.append(f"<h2>Non-compliant Ops</h2><ul>{items}</ul>")

        if envelope.compile_id is not None:
            for start in ctx.filter_by_compile_id(IntermediateFileType.COMPILATION_METRICS, envelope.compile_id):
                if start.entry_type != "dynamo_start":
                    continue
                stack: DynamoStartMetadata = start.typed_metadata
                frames = "\n".join(f"{f.filename}:{f.line} in {f.name}" for f in stack.stack)
                parts.append(f"<h2>Stack</h2><pre>{escape(frames)}</pre>")
                break

            specializations = [
                s.typed_metadata
                for s in ctx.filter_by_compile_id(IntermediateFileType.GUARDS, envelope.compile_id)
                if s.entry_type == "symbolic_shape_specialization"
            ]
            if specializations:
                parts.append("<h2>Symbolic Shape Specializations</h2>")
                parts.append(
                    table(["Symbol", "Value", "Reason"], [[s.symbol, s.value, s.reason] for s in specializations])
                )

        return page(title, "\n".join(parts))

    def _failures_page(self, ctx) -> str:
        rows = []
        for envelope in ctx.read(IntermediateFileType.COMPILATION_METRICS):
            if envelope.entry_type not in METRICS_TYPES:
                continue
            metrics: CompilationMetricsMetadata = envelope.typed_metadata
            compile_key = envelope.compile_key or ""
            target = link(f"index.html#{compile_key}", compile_key) if compile_key else ""
            if metrics.failed:
                frame = ""
                if metrics.fail_user_frame_filename:
                    frame = f"{metrics.fail_user_frame_filename}:{text_value(metrics.fail_user_frame_lineno)}"
                rows.append(
                    [
                        target,
                        "Failure",
                        escape(f"{metrics.fail_type}: {text_value(metrics.fail_reason)}"),
                        escape(frame),
                    ]
                )
            for reason in metrics.restart_reasons:
                rows.append([target, "Restart", escape(reason), ""])

        body = "<h1>Failures and Restarts</h1>\n" + table(
            ["Compile Id", "Kind", "Reason", "User Frame"], rows, escape_cells=False
        )
        return page("Failures and Restarts", body)
