"""
Typed metadata variants.

Envelope metadata is an open mapping on the wire. Consumers that need
specific fields go through `parse_metadata`, which returns one frozen
dataclass per known entry type and `GenericMetadata` for everything else.
Unknown or mistyped fields never raise; they fall back to defaults.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .frames import FrameSummary

CACHE_PREFIXES = (
    ("cache_hit_", "hit"),
    ("cache_miss_", "miss"),
    ("cache_bypass_", "bypass"),
)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    BYPASS = "bypass"
    UNKNOWN = "unknown"


def cache_status_for(name: str) -> CacheStatus:
    """Classify an artifact by its name prefix."""
    for prefix, status in CACHE_PREFIXES:
        if name.startswith(prefix):
            return CacheStatus(status)
    return CacheStatus.UNKNOWN


class CompileOutcome(str, Enum):
    OK = "ok"
    ERROR = "error"
    EMPTY = "empty"
    BREAK = "break"


def _str(data: Dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return default if value is None else str(value)


def _opt_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return None if value is None else str(value)


def _opt_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _opt_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _str_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


@dataclass(frozen=True)
class GenericMetadata:
    fields: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "GenericMetadata":
        return GenericMetadata(fields=dict(data))


@dataclass(frozen=True)
class CompilationMetricsMetadata:
    """
    Per-compilation metrics record.

    Used for `compilation_metrics`, `bwd_compilation_metrics` and
    `aot_autograd_backward_compilation_metrics`; the backward variants only
    populate a subset of the fields.
    """

    co_name: Optional[str] = None
    co_filename: Optional[str] = None
    co_firstlineno: Optional[int] = None
    graph_op_count: Optional[int] = None
    graph_node_count: Optional[int] = None
    graph_input_count: Optional[int] = None
    guard_count: Optional[int] = None
    shape_env_guard_count: Optional[int] = None
    entire_frame_compile_time_s: Optional[float] = None
    backend_compile_time_s: Optional[float] = None
    inductor_compile_time_s: Optional[float] = None
    code_gen_time_s: Optional[float] = None
    start_time: Optional[float] = None
    elapsed_time: Optional[float] = None
    fail_type: Optional[str] = None
    fail_reason: Optional[str] = None
    fail_user_frame_filename: Optional[str] = None
    fail_user_frame_lineno: Optional[int] = None
    restart_reasons: List[str] = field(default_factory=list)
    non_compliant_ops: List[str] = field(default_factory=list)

    @property
    def outcome(self) -> CompileOutcome:
        if self.fail_type:
            return CompileOutcome.ERROR
        if self.graph_op_count == 0:
            return CompileOutcome.EMPTY
        if self.restart_reasons:
            return CompileOutcome.BREAK
        return CompileOutcome.OK

    @property
    def failed(self) -> bool:
        return bool(self.fail_type)

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "CompilationMetricsMetadata":
        return CompilationMetricsMetadata(
            co_name=_opt_str(data, "co_name"),
            co_filename=_opt_str(data, "co_filename"),
            co_firstlineno=_opt_int(data, "co_firstlineno"),
            graph_op_count=_opt_int(data, "graph_op_count"),
            graph_node_count=_opt_int(data, "graph_node_count"),
            graph_input_count=_opt_int(data, "graph_input_count"),
            guard_count=_opt_int(data, "guard_count"),
            shape_env_guard_count=_opt_int(data, "shape_env_guard_count"),
            entire_frame_compile_time_s=_opt_float(data, "entire_frame_compile_time_s"),
            backend_compile_time_s=_opt_float(data, "backend_compile_time_s"),
            inductor_compile_time_s=_opt_float(data, "inductor_compile_time_s"),
            code_gen_time_s=_opt_float(data, "code_gen_time_s"),
            start_time=_opt_float(data, "start_time"),
            elapsed_time=_opt_float(data, "elapsed_time"),
            fail_type=_opt_str(data, "fail_type"),
            fail_reason=_opt_str(data, "fail_reason"),
            fail_user_frame_filename=_opt_str(data, "fail_user_frame_filename"),
            fail_user_frame_lineno=_opt_int(data, "fail_user_frame_lineno"),
            restart_reasons=_str_list(data, "restart_reasons"),
            non_compliant_ops=_str_list(data, "non_compliant_ops"),
        )


@dataclass(frozen=True)
class DynamoStartMetadata:
    stack: List[FrameSummary] = field(default_factory=list)

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "DynamoStartMetadata":
        frames = data.get("stack")
        if not isinstance(frames, list):
            return DynamoStartMetadata()
        return DynamoStartMetadata(
            stack=[FrameSummary.from_wire(f) for f in frames if isinstance(f, dict)]
        )


@dataclass(frozen=True)
class ArtifactMetadata:
    name: str = ""
    encoding: str = "string"

    @property
    def cache_status(self) -> CacheStatus:
        return cache_status_for(self.name)

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "ArtifactMetadata":
        return ArtifactMetadata(
            name=_str(data, "name"),
            encoding=_str(data, "encoding", "string"),
        )


@dataclass(frozen=True)
class NamedMetadata:
    """`dump_file`, `graph_dump` and `optimize_ddp_split_child`."""

    name: str = ""

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "NamedMetadata":
        return NamedMetadata(name=_str(data, "name"))


@dataclass(frozen=True)
class LinkMetadata:
    name: str = ""
    url: str = ""

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "LinkMetadata":
        return LinkMetadata(name=_str(data, "name"), url=_str(data, "url"))


@dataclass(frozen=True)
class OutputCodeMetadata:
    filename: str = ""

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "OutputCodeMetadata":
        return OutputCodeMetadata(filename=_str(data, "filename"))


@dataclass(frozen=True)
class SpecializationMetadata:
    symbol: str = ""
    value: str = ""
    reason: str = ""

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "SpecializationMetadata":
        return SpecializationMetadata(
            symbol=_str(data, "symbol"),
            value=_str(data, "value"),
            reason=_str(data, "reason"),
        )


@dataclass(frozen=True)
class SymbolicGuardMetadata:
    expr: Optional[str] = None
    symbol: Optional[str] = None
    user_stack: List[str] = field(default_factory=list)
    stack: List[str] = field(default_factory=list)
    expr_node_id: Optional[int] = None
    frame_locals: Any = None

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "SymbolicGuardMetadata":
        return SymbolicGuardMetadata(
            expr=_opt_str(data, "expr"),
            symbol=_opt_str(data, "symbol"),
            user_stack=_frame_lines(data.get("user_stack")),
            stack=_frame_lines(data.get("stack")),
            expr_node_id=_opt_int(data, "expr_node_id"),
            frame_locals=data.get("frame_locals"),
        )


@dataclass(frozen=True)
class ExpressionCreatedMetadata:
    id: Optional[int] = None
    result: Optional[str] = None
    method: Optional[str] = None
    arguments: List[str] = field(default_factory=list)
    argument_ids: List[int] = field(default_factory=list)

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "ExpressionCreatedMetadata":
        raw_ids = data.get("argument_ids")
        ids = [i for i in raw_ids if isinstance(i, int)] if isinstance(raw_ids, list) else []
        return ExpressionCreatedMetadata(
            id=_opt_int(data, "id"),
            result=_opt_str(data, "result"),
            method=_opt_str(data, "method"),
            arguments=_str_list(data, "arguments"),
            argument_ids=ids,
        )


@dataclass(frozen=True)
class TensorDescriptionMetadata:
    id: Optional[int] = None
    size: Tuple[Any, ...] = ()
    stride: Tuple[Any, ...] = ()
    dtype: str = ""
    device: str = ""
    requires_grad: bool = False

    def fingerprint(self) -> str:
        """Stable short digest of shape, dtype and device."""
        text = f"{list(self.size)}|{self.dtype}|{self.device}"
        return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "TensorDescriptionMetadata":
        size = data.get("size")
        stride = data.get("stride")
        return TensorDescriptionMetadata(
            id=_opt_int(data, "id"),
            size=tuple(size) if isinstance(size, list) else (),
            stride=tuple(stride) if isinstance(stride, list) else (),
            dtype=_str(data, "dtype"),
            device=_str(data, "device"),
            requires_grad=bool(data.get("requires_grad", False)),
        )


@dataclass(frozen=True)
class FakeKernelMetadata:
    op: str = ""
    reason: str = ""

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "FakeKernelMetadata":
        return FakeKernelMetadata(op=_str(data, "op"), reason=_str(data, "reason"))


def _frame_lines(value: Any) -> List[str]:
    """Stacks arrive either as preformatted strings or as frame objects."""
    if not isinstance(value, list):
        return []
    lines = []
    for frame in value:
        if isinstance(frame, str):
            lines.append(frame)
        elif isinstance(frame, dict):
            fs = FrameSummary.from_wire(frame)
            lines.append(f"{fs.filename}:{fs.line} in {fs.name}")
    return lines


METADATA_TYPES: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "compilation_metrics": CompilationMetricsMetadata.from_wire,
    "bwd_compilation_metrics": CompilationMetricsMetadata.from_wire,
    "aot_autograd_backward_compilation_metrics": CompilationMetricsMetadata.from_wire,
    "dynamo_start": DynamoStartMetadata.from_wire,
    "stack": DynamoStartMetadata.from_wire,
    "artifact": ArtifactMetadata.from_wire,
    "dump_file": NamedMetadata.from_wire,
    "graph_dump": NamedMetadata.from_wire,
    "optimize_ddp_split_child": NamedMetadata.from_wire,
    "link": LinkMetadata.from_wire,
    "inductor_output_code": OutputCodeMetadata.from_wire,
    "symbolic_shape_specialization": SpecializationMetadata.from_wire,
    "guard_added": SymbolicGuardMetadata.from_wire,
    "guard_added_fast": SymbolicGuardMetadata.from_wire,
    "propagate_real_tensors_provenance": SymbolicGuardMetadata.from_wire,
    "create_unbacked_symbol": SymbolicGuardMetadata.from_wire,
    "expression_created": ExpressionCreatedMetadata.from_wire,
    "describe_tensor": TensorDescriptionMetadata.from_wire,
    "missing_fake_kernel": FakeKernelMetadata.from_wire,
    "mismatched_fake_kernel": FakeKernelMetadata.from_wire,
}


def parse_metadata(entry_type: str, data: Dict[str, Any]):
    parser = METADATA_TYPES.get(entry_type, GenericMetadata.from_wire)
    return parser(data if isinstance(data, dict) else {})
