import hashlib
from typing import Dict, List, Tuple

import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.schema.compile_id import GLOBAL_KEY

from .schema import RankSummary

COLLECTIVE_SCHEDULE_ARTIFACT = "inductor_collective_schedule"
RUNTIME_ARTIFACT = "inductor_runtime_and_tensor_meta"

logger = get_error_logger("analysis.summary")


def summarize_rank(rank: int, ctx) -> RankSummary:
    """
    Extract the comparable facts of one rank from its intermediate data.

    Collective schedules come from `inductor_collective_schedule` artifacts
    (payload: JSON list of op names), runtimes from
    `inductor_runtime_and_tensor_meta` artifacts (payload:
    ``{"ops": [{"name", "estimated_runtime_ns", ...}]}``) and tensor
    fingerprints from `describe_tensor` entries. Several artifacts of the
    same kind under one graph are concatenated (schedules) or summed
    (runtimes) in log order.
    """
    decoder = msgspec.json.Decoder()
    schedules: Dict[str, Tuple[str, ...]] = {}
    runtimes: Dict[str, float] = {}

    for envelope in ctx.entries_by_type(IntermediateFileType.ARTIFACTS, "artifact"):
        name = envelope.metadata.get("name")
        if name not in (COLLECTIVE_SCHEDULE_ARTIFACT, RUNTIME_ARTIFACT):
            continue
        graph = envelope.compile_key or GLOBAL_KEY
        try:
            data = decoder.decode(envelope.payload or "null")
        except msgspec.DecodeError as e:
            logger.warning(f"[CompileTrace] rank {rank}: bad {name} payload for {graph}: {e}")
            continue

        if name == COLLECTIVE_SCHEDULE_ARTIFACT and isinstance(data, list):
            schedules[graph] = schedules.get(graph, ()) + tuple(str(op) for op in data)
        elif name == RUNTIME_ARTIFACT and isinstance(data, dict):
            total = 0.0
            for op in data.get("ops") or []:
                if isinstance(op, dict):
                    value = op.get("estimated_runtime_ns")
                    if isinstance(value, (int, float)) and not isinstance(value, bool):
                        total += float(value)
            runtimes[graph] = runtimes.get(graph, 0.0) + total

    tensors: List[str] = []
    for envelope in ctx.entries_by_type(IntermediateFileType.TENSOR_METADATA, "describe_tensor"):
        tensor = envelope.typed_metadata
        tensors.append(
            f"{envelope.compile_key or GLOBAL_KEY}|{list(tensor.size)}|{tensor.dtype}|{tensor.device}"
        )
    digest = hashlib.sha256("\n".join(sorted(tensors)).encode("utf-8")).hexdigest()

    return RankSummary(
        rank=rank,
        compile_ids=tuple(str(cid) for cid in ctx.compile_ids()),
        collective_schedules=schedules,
        runtimes_ns=runtimes,
        tensor_fingerprint=digest,
        tensor_count=len(tensors),
    )
