"""
Intermediate stream types and envelope routing.

Every known entry type maps to exactly one stream. Routing depends only on
the entry type, except for `artifact` entries whose name marks them as cache
events; those go to the Cache stream.
"""

from enum import Enum
from typing import Dict, Optional

from compiletrace.errors import UnknownEnvelopeType
from compiletrace.schema.envelope import Envelope
from compiletrace.schema.metadata import CacheStatus, cache_status_for


class IntermediateFileType(str, Enum):
    GRAPHS = "graphs"
    CODEGEN = "codegen"
    GUARDS = "guards"
    COMPILATION_METRICS = "compilation_metrics"
    CHROMIUM_EVENTS = "chromium_events"
    ARTIFACTS = "artifacts"
    TENSOR_METADATA = "tensor_metadata"
    EXPORT = "export"
    CACHE = "cache"

    @property
    def filename(self) -> str:
        return f"{self.value}.jsonl"


_F = IntermediateFileType

ROUTES: Dict[str, IntermediateFileType] = {
    # graphs
    "dynamo_output_graph": _F.GRAPHS,
    "optimize_ddp_split_graph": _F.GRAPHS,
    "optimize_ddp_split_child": _F.GRAPHS,
    "compiled_autograd_graph": _F.GRAPHS,
    "aot_forward_graph": _F.GRAPHS,
    "aot_backward_graph": _F.GRAPHS,
    "aot_inference_graph": _F.GRAPHS,
    "aot_joint_graph": _F.GRAPHS,
    "inductor_pre_grad_graph": _F.GRAPHS,
    "inductor_post_grad_graph": _F.GRAPHS,
    "graph_dump": _F.GRAPHS,
    # generated code
    "inductor_output_code": _F.CODEGEN,
    # guards and symbolic shapes
    "dynamo_guards": _F.GUARDS,
    "dynamo_cpp_guards_str": _F.GUARDS,
    "symbolic_shape_specialization": _F.GUARDS,
    "guard_added_fast": _F.GUARDS,
    "propagate_real_tensors_provenance": _F.GUARDS,
    "guard_added": _F.GUARDS,
    "create_unbacked_symbol": _F.GUARDS,
    "expression_created": _F.GUARDS,
    # metrics and compile start records
    "compilation_metrics": _F.COMPILATION_METRICS,
    "bwd_compilation_metrics": _F.COMPILATION_METRICS,
    "aot_autograd_backward_compilation_metrics": _F.COMPILATION_METRICS,
    "dynamo_start": _F.COMPILATION_METRICS,
    "stack": _F.COMPILATION_METRICS,
    # trace events
    "chromium_event": _F.CHROMIUM_EVENTS,
    # generic artifacts
    "artifact": _F.ARTIFACTS,
    "dump_file": _F.ARTIFACTS,
    "link": _F.ARTIFACTS,
    # tensor descriptions
    "describe_tensor": _F.TENSOR_METADATA,
    "describe_storage": _F.TENSOR_METADATA,
    "describe_source": _F.TENSOR_METADATA,
    # export
    "missing_fake_kernel": _F.EXPORT,
    "mismatched_fake_kernel": _F.EXPORT,
    "exported_program": _F.EXPORT,
}

# Entry type that updates the string table; consumed during normalization.
STRING_TABLE_ENTRY = "str"


def is_known_entry_type(entry_type: str) -> bool:
    return entry_type in ROUTES


def route_entry_type(entry_type: str) -> Optional[IntermediateFileType]:
    """Primary routing by type tag. Returns None for unknown types."""
    return ROUTES.get(entry_type)


def route(envelope: Envelope) -> IntermediateFileType:
    """
    Destination stream for an envelope.

    Raises
    ------
    UnknownEnvelopeType
        If the envelope's type tag is not in the routing table.
    """
    destination = ROUTES.get(envelope.entry_type)
    if destination is None:
        raise UnknownEnvelopeType(envelope.entry_type)
    if envelope.entry_type == "artifact":
        name = envelope.metadata.get("name")
        if isinstance(name, str) and cache_status_for(name) is not CacheStatus.UNKNOWN:
            return IntermediateFileType.CACHE
    return destination
