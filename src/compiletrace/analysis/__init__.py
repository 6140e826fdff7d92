from .compute import MultiRankComputer
from .module import MultiRankModule
from .rank_store import RankSummaryStore
from .runner import assign_ranks, ingest_ranks
from .schema import MultiRankResult, RankSummary
from .summary import summarize_rank

__all__ = [
    "MultiRankComputer",
    "MultiRankModule",
    "MultiRankResult",
    "RankSummary",
    "RankSummaryStore",
    "assign_ranks",
    "ingest_ranks",
    "summarize_rank",
]
