"""
Multi-rank computation (rank-agnostic).

Pure compute layer over a `RankSummaryStore`.

- Compile-id divergence: every rank's compile id set against the baseline
  (lowest usable rank, normally rank 0)
- Collective schedules: ranks grouped by identical ordered op sequence,
  per graph
- Runtime variance: population mean/std of each graph's estimated runtime
  over the ranks that report it
- Tensor metadata: per-rank fingerprint compared against the baseline
"""

from typing import Dict, FrozenSet, List, Tuple

import numpy as np

from compiletrace.loggers.error_log import get_error_logger

from .rank_store import RankSummaryStore
from .schema import (
    STATUS_DIVERGENT,
    STATUS_NO_COMPARISON,
    STATUS_OK,
    CollectiveGroup,
    CollectiveScheduleGroups,
    DivergenceResult,
    MultiRankResult,
    RankSummary,
    RuntimeVariance,
)


class MultiRankComputer:
    """
    Cross-rank comparison of independently parsed captures.
    """

    def __init__(self, store: RankSummaryStore):
        self.store = store
        self.logger = get_error_logger("MultiRankComputer")

    def compute(self) -> MultiRankResult:
        ranks = list(self.store.ranks())
        excluded = self.store.failures()

        if len(ranks) < 2:
            return MultiRankResult(
                ranks=ranks,
                excluded_ranks=excluded,
                status=STATUS_NO_COMPARISON,
                status_message=f"No comparison possible: {len(ranks)} usable rank(s)",
            )

        summaries = [self.store.get(r) for r in ranks]
        compile_ids = self.compile_id_divergence(summaries)
        schedules = self.collective_schedule_groups(summaries)
        variance = self.runtime_variance(summaries)
        tensors = self.tensor_metadata_divergence(summaries)

        findings = []
        if compile_ids.diverged:
            findings.append(f"compile ids differ on ranks {compile_ids.divergent_ranks}")
        diverged_graphs = [s.graph for s in schedules if s.diverged]
        if diverged_graphs:
            findings.append(f"collective schedules differ for {len(diverged_graphs)} graph(s)")
        if tensors.diverged:
            findings.append(f"tensor metadata differs on ranks {tensors.divergent_ranks}")

        return MultiRankResult(
            ranks=ranks,
            excluded_ranks=excluded,
            status=STATUS_DIVERGENT if findings else STATUS_OK,
            status_message="; ".join(findings) if findings else f"{len(ranks)} ranks consistent",
            compile_ids=compile_ids,
            collective_schedules=schedules,
            runtime_variance=variance,
            tensor_metadata=tensors,
        )

    @staticmethod
    def compile_id_divergence(summaries: List[RankSummary]) -> DivergenceResult:
        sets = {s.rank: frozenset(s.compile_ids) for s in summaries}
        return _set_divergence(sets)

    @staticmethod
    def tensor_metadata_divergence(summaries: List[RankSummary]) -> DivergenceResult:
        baseline = min(s.rank for s in summaries)
        fingerprints = {s.rank: s.tensor_fingerprint for s in summaries}
        divergent = [r for r in sorted(fingerprints) if fingerprints[r] != fingerprints[baseline]]
        return DivergenceResult(
            baseline_rank=baseline,
            divergent_ranks=divergent,
            baseline=[fingerprints[baseline]],
        )

    @staticmethod
    def collective_schedule_groups(summaries: List[RankSummary]) -> List[CollectiveScheduleGroups]:
        graphs = sorted({g for s in summaries for g in s.collective_schedules})
        results = []
        for graph in graphs:
            by_sequence: Dict[Tuple[str, ...], List[int]] = {}
            for s in sorted(summaries, key=lambda x: x.rank):
                ops = s.collective_schedules.get(graph, ())
                by_sequence.setdefault(ops, []).append(s.rank)
            groups = [CollectiveGroup(ranks=r, ops=ops) for ops, r in by_sequence.items()]
            groups.sort(key=lambda g: g.ranks[0])
            results.append(CollectiveScheduleGroups(graph=graph, groups=groups))
        return results

    @staticmethod
    def runtime_variance(summaries: List[RankSummary]) -> List[RuntimeVariance]:
        graphs = sorted({g for s in summaries for g in s.runtimes_ns})
        results = []
        for graph in graphs:
            ranks = [s.rank for s in summaries if graph in s.runtimes_ns]
            if len(ranks) < 2:
                continue
            values = np.asarray(
                [s.runtimes_ns[graph] for s in summaries if graph in s.runtimes_ns],
                dtype=np.float64,
            )
            results.append(
                RuntimeVariance(
                    graph=graph,
                    ranks=ranks,
                    mean_ns=float(np.mean(values)),
                    std_ns=float(np.std(values, ddof=0)),
                    min_ns=float(np.min(values)),
                    max_ns=float(np.max(values)),
                )
            )
        return results


def _set_divergence(sets: Dict[int, FrozenSet[str]]) -> DivergenceResult:
    baseline = min(sets)
    base = sets[baseline]
    divergent = []
    missing: Dict[int, List[str]] = {}
    extra: Dict[int, List[str]] = {}
    for rank in sorted(sets):
        if sets[rank] == base:
            continue
        divergent.append(rank)
        if base - sets[rank]:
            missing[rank] = sorted(base - sets[rank])
        if sets[rank] - base:
            extra[rank] = sorted(sets[rank] - base)
    return DivergenceResult(
        baseline_rank=baseline,
        divergent_ranks=divergent,
        baseline=sorted(base),
        missing=missing,
        extra=extra,
    )
