"""
Result schema for multi-rank analysis.

The renderer and report module consume ONLY these dataclasses.

Status values
-------------
- "ok": at least two ranks compared, no divergence found
- "divergent": at least one comparison found a difference
- "no_comparison_possible": fewer than two usable ranks
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

STATUS_OK = "ok"
STATUS_DIVERGENT = "divergent"
STATUS_NO_COMPARISON = "no_comparison_possible"


@dataclass(frozen=True)
class RankSummary:
    """
    Everything the analyzer needs from one rank's capture.

    `collective_schedules` maps graph key -> ordered collective op names.
    `runtimes_ns` maps graph key -> summed estimated runtime of its ops.
    """

    rank: int
    compile_ids: Tuple[str, ...] = ()
    collective_schedules: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    runtimes_ns: Dict[str, float] = field(default_factory=dict)
    tensor_fingerprint: str = ""
    tensor_count: int = 0


@dataclass(frozen=True)
class DivergenceResult:
    """
    Set comparison of every rank against the baseline rank.

    `baseline` is the baseline rank's sorted set (compile ids, or the
    single tensor fingerprint).
    """

    baseline_rank: int
    divergent_ranks: List[int]
    baseline: List[str] = field(default_factory=list)
    missing: Dict[int, List[str]] = field(default_factory=dict)
    extra: Dict[int, List[str]] = field(default_factory=dict)

    @property
    def diverged(self) -> bool:
        return bool(self.divergent_ranks)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "baseline_rank": self.baseline_rank,
            "divergent_ranks": list(self.divergent_ranks),
            "baseline": list(self.baseline),
            "missing": {str(r): v for r, v in self.missing.items()},
            "extra": {str(r): v for r, v in self.extra.items()},
        }


@dataclass(frozen=True)
class CollectiveGroup:
    ranks: List[int]
    ops: Tuple[str, ...]

    def to_wire(self) -> Dict[str, Any]:
        return {"ranks": list(self.ranks), "ops": list(self.ops)}


@dataclass(frozen=True)
class CollectiveScheduleGroups:
    """Ranks grouped by exact collective sequence for one graph."""

    graph: str
    groups: List[CollectiveGroup]

    @property
    def diverged(self) -> bool:
        return len(self.groups) > 1

    def to_wire(self) -> Dict[str, Any]:
        return {"graph": self.graph, "groups": [g.to_wire() for g in self.groups]}


@dataclass(frozen=True)
class RuntimeVariance:
    """Population statistics of one graph's estimated runtime across ranks."""

    graph: str
    ranks: List[int]
    mean_ns: float
    std_ns: float
    min_ns: float
    max_ns: float

    def to_wire(self) -> Dict[str, Any]:
        return {
            "graph": self.graph,
            "ranks": list(self.ranks),
            "mean_ns": self.mean_ns,
            "std_ns": self.std_ns,
            "min_ns": self.min_ns,
            "max_ns": self.max_ns,
        }


@dataclass(frozen=True)
class MultiRankResult:
    ranks: List[int]
    excluded_ranks: Dict[int, str]
    status: str
    status_message: str
    compile_ids: Optional[DivergenceResult] = None
    collective_schedules: List[CollectiveScheduleGroups] = field(default_factory=list)
    runtime_variance: List[RuntimeVariance] = field(default_factory=list)
    tensor_metadata: Optional[DivergenceResult] = None

    @property
    def comparable(self) -> bool:
        return self.status != STATUS_NO_COMPARISON

    def to_wire(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "status_message": self.status_message,
            "ranks": list(self.ranks),
            "excluded_ranks": {str(r): reason for r, reason in self.excluded_ranks.items()},
            "compile_id_divergence": self.compile_ids.to_wire() if self.compile_ids else None,
            "collective_schedules": [c.to_wire() for c in self.collective_schedules],
            "runtime_variance": [v.to_wire() for v in self.runtime_variance],
            "tensor_metadata_divergence": self.tensor_metadata.to_wire() if self.tensor_metadata else None,
        }
