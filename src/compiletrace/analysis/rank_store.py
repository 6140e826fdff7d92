from typing import Dict, Iterable, Optional

from compiletrace.errors import RankUnreadable
from compiletrace.loggers.error_log import get_error_logger

from .schema import RankSummary


class RankSummaryStore:
    """
    Per-rank summaries collected before multi-rank analysis.

    Internal layout
    ---------------
        self._summaries[rank] -> RankSummary
        self._failures[rank]  -> reason the rank was excluded

    Notes
    -----
    - A rank is either usable or excluded, never both; recording a failure
      drops any summary previously stored for that rank.
    - Filled from a single thread after all per-rank work has finished.
    """

    def __init__(self):
        self._summaries: Dict[int, RankSummary] = {}
        self._failures: Dict[int, str] = {}
        self.logger = get_error_logger("RankSummaryStore")

    def ingest(self, summary: RankSummary) -> None:
        if summary.rank < 0:
            raise ValueError(f"rank must be >= 0, got {summary.rank}")
        self._failures.pop(summary.rank, None)
        self._summaries[summary.rank] = summary

    def record_failure(self, error: RankUnreadable) -> None:
        self.logger.warning(f"[CompileTrace] excluding {error}")
        self._summaries.pop(error.rank, None)
        self._failures[error.rank] = str(error.cause)

    def ranks(self) -> Iterable[int]:
        return sorted(self._summaries)

    def get(self, rank: int) -> Optional[RankSummary]:
        return self._summaries.get(rank)

    def failures(self) -> Dict[int, str]:
        return dict(sorted(self._failures.items()))

    def __len__(self) -> int:
        return len(self._summaries)
