from html import escape
from typing import Mapping, Optional

import msgspec

from compiletrace.errors import RankUnreadable
from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.modules.base import DirectoryEntry, LoadingStrategy, Module, ModuleOutput
from compiletrace.modules.html import link, table
from compiletrace.settings import ModuleConfig
from compiletrace.utils.formatting import fmt_ns

from .compute import MultiRankComputer
from .rank_store import RankSummaryStore
from .schema import MultiRankResult
from .summary import summarize_rank

ANALYSIS_PATH = "multi_rank/analysis.json"
SECTION = "Multi-Rank Analysis"


class MultiRankModule(Module):
    """
    Compares the per-rank captures of a distributed run.

    The module is built with every rank's context; the context passed to
    `render` (the landing report's) is not used.
    """

    name = "Multi-Rank Analysis"
    id = "multi_rank"
    subscriptions = (
        IntermediateFileType.ARTIFACTS,
        IntermediateFileType.TENSOR_METADATA,
        IntermediateFileType.COMPILATION_METRICS,
    )
    loading_strategy = LoadingStrategy.EAGER

    def __init__(
        self,
        config: Optional[ModuleConfig] = None,
        rank_contexts: Optional[Mapping[int, object]] = None,
        failures: Optional[Mapping[int, RankUnreadable]] = None,
    ):
        super().__init__(config)
        self.rank_contexts = dict(rank_contexts or {})
        self.failures = dict(failures or {})
        self.result: Optional[MultiRankResult] = None

    def analyze(self) -> MultiRankResult:
        store = RankSummaryStore()
        for rank, error in self.failures.items():
            store.record_failure(error)
        for rank, ctx in sorted(self.rank_contexts.items()):
            try:
                store.ingest(summarize_rank(rank, ctx))
            except Exception as e:
                store.record_failure(RankUnreadable(rank, e))
        return MultiRankComputer(store).compute()

    def render(self, ctx) -> ModuleOutput:
        result = self.analyze()
        self.result = result
        output = ModuleOutput()
        output.add_file(
            ANALYSIS_PATH,
            msgspec.json.format(msgspec.json.encode(result.to_wire()), indent=2).decode("utf-8"),
        )
        output.add_directory_entry(None, DirectoryEntry(name="analysis.json", url=ANALYSIS_PATH))
        output.add_index(SECTION, render_result_html(result))
        return output


def render_result_html(result: MultiRankResult) -> str:
    parts = [f"<p><b>{escape(result.status)}</b>: {escape(result.status_message)}</p>"]

    rank_links = ", ".join(link(f"rank_{r}/index.html", f"rank {r}") for r in result.ranks)
    if rank_links:
        parts.append(f"<p>Ranks: {rank_links}</p>")
    if result.excluded_ranks:
        rows = [[str(r), reason] for r, reason in result.excluded_ranks.items()]
        parts.append("<h3>Excluded Ranks</h3>" + table(["Rank", "Reason"], rows))
    if not result.comparable:
        return "\n".join(parts)

    if result.compile_ids is not None and result.compile_ids.diverged:
        rows = [
            [
                str(r),
                ", ".join(result.compile_ids.missing.get(r, [])),
                ", ".join(result.compile_ids.extra.get(r, [])),
            ]
            for r in result.compile_ids.divergent_ranks
        ]
        parts.append(
            f"<h3>Compile Id Divergence (baseline rank {result.compile_ids.baseline_rank})</h3>"
            + f"<p>Baseline: {escape(', '.join(result.compile_ids.baseline))}</p>"
            + table(["Rank", "Missing", "Extra"], rows)
        )

    diverged = [s for s in result.collective_schedules if s.diverged]
    if diverged:
        rows = []
        for schedule in diverged:
            for group in schedule.groups:
                rows.append([schedule.graph, ", ".join(map(str, group.ranks)), " → ".join(group.ops)])
        parts.append("<h3>Collective Schedule Groups</h3>" + table(["Graph", "Ranks", "Ops"], rows))

    if result.runtime_variance:
        rows = [
            [v.graph, fmt_ns(v.mean_ns), fmt_ns(v.std_ns), fmt_ns(v.min_ns), fmt_ns(v.max_ns)]
            for v in result.runtime_variance
        ]
        parts.append("<h3>Runtime Variance</h3>" + table(["Graph", "Mean", "Std", "Min", "Max"], rows))

    if result.tensor_metadata is not None and result.tensor_metadata.diverged:
        ranks = ", ".join(map(str, result.tensor_metadata.divergent_ranks))
        parts.append(
            f"<h3>Tensor Metadata</h3><p>Ranks {escape(ranks)} differ from rank "
            f"{result.tensor_metadata.baseline_rank}.</p>"
        )
    return "\n".join(parts)
