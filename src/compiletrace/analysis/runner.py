import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from compiletrace.errors import CompileTraceError, RankUnreadable
from compiletrace.ingest.driver import IngestResult, ingest_capture
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.settings import ParseSettings

RANK_IN_NAME = re.compile(r"rank_(\d+)")

logger = get_error_logger("analysis.runner")


def assign_ranks(paths: Sequence[Path]) -> Dict[int, Path]:
    """
    Map log files to ranks: ``rank_<N>`` in the file name wins, otherwise
    positional order.

    Raises
    ------
    ValueError
        If two files claim the same rank.
    """
    assigned: Dict[int, Path] = {}
    for position, path in enumerate(paths):
        match = RANK_IN_NAME.search(Path(path).name)
        rank = int(match.group(1)) if match else position
        if rank in assigned:
            raise ValueError(f"{path} and {assigned[rank]} both map to rank {rank}")
        assigned[rank] = Path(path)
    return dict(sorted(assigned.items()))


def _ingest_one(rank: int, path: Path, work_dir: Path, settings: ParseSettings) -> IngestResult:
    try:
        result = ingest_capture(path, work_dir / f"rank_{rank}", settings=settings, rank=rank)
    except (OSError, CompileTraceError) as e:
        raise RankUnreadable(rank, e) from e
    if result.envelopes == 0 and result.records > 0:
        raise RankUnreadable(rank, ValueError(f"no decodable envelopes in {path}"))
    return result


def ingest_ranks(
    captures: Mapping[int, Path],
    work_dir: Path,
    settings: Optional[ParseSettings] = None,
    max_workers: Optional[int] = None,
) -> Tuple[Dict[int, IngestResult], Dict[int, RankUnreadable]]:
    """
    Ingest every rank's capture in parallel into ``work_dir/rank_<N>``.

    Returns once all ranks are done (barrier). Ranks that cannot be read
    are returned separately instead of failing the batch.
    """
    settings = settings or ParseSettings()
    results: Dict[int, IngestResult] = {}
    failures: Dict[int, RankUnreadable] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            rank: pool.submit(_ingest_one, rank, Path(path), Path(work_dir), settings)
            for rank, path in captures.items()
        }
        for rank, future in sorted(futures.items()):
            try:
                results[rank] = future.result()
            except RankUnreadable as e:
                logger.warning(f"[CompileTrace] {e}")
                failures[rank] = e
    return results, failures
