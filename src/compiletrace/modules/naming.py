"""
Artifact file naming.

Shared by the modules that emit per-compile artifacts and by the compile
directory so both agree on names.
"""

from pathlib import PurePosixPath
from typing import Dict, Optional, Tuple

from compiletrace.schema.compile_id import GLOBAL_KEY
from compiletrace.schema.envelope import Envelope
from compiletrace.settings import ModuleConfig

GRAPH_KINDS = {
    "dynamo_output_graph",
    "optimize_ddp_split_graph",
    "optimize_ddp_split_child",
    "compiled_autograd_graph",
    "aot_forward_graph",
    "aot_backward_graph",
    "aot_inference_graph",
    "aot_joint_graph",
    "inductor_pre_grad_graph",
    "inductor_post_grad_graph",
    "graph_dump",
}


def safe_component(name: str) -> str:
    """Make `name` usable as a single path component."""
    cleaned = "".join(c if c.isalnum() or c in "-_." else "_" for c in name)
    cleaned = cleaned.strip(".")
    return cleaned or "unnamed"


def artifact_stem(envelope: Envelope) -> str:
    t = envelope.entry_type
    md = envelope.metadata
    if t == "optimize_ddp_split_child":
        return f"optimize_ddp_split_child_{safe_component(str(md.get('name', '')))}"
    if t == "graph_dump":
        return safe_component(str(md.get("name") or "graph_dump"))
    if t == "inductor_output_code":
        filename = md.get("filename")
        if isinstance(filename, str) and filename:
            return f"inductor_output_code_{safe_component(PurePosixPath(filename).stem)}"
        return "inductor_output_code"
    if t in ("artifact", "dump_file"):
        return safe_component(str(md.get("name") or t))
    return safe_component(t)


def text_extension(config: ModuleConfig) -> str:
    return "txt" if config.plain_text else "html"


def directory_key(envelope: Envelope) -> str:
    return envelope.compile_key or GLOBAL_KEY


class UniquePaths:
    """
    Hands out report paths, suffixing repeats within one compile id.

    The first ``foo.txt`` stays ``foo.txt``; the second becomes ``foo_1.txt``.
    """

    def __init__(self):
        self._seen: Dict[Tuple[str, str], int] = {}

    def path(self, compile_key: Optional[str], stem: str, extension: str) -> str:
        key = compile_key or GLOBAL_KEY
        n = self._seen.get((key, f"{stem}.{extension}"), 0)
        self._seen[(key, f"{stem}.{extension}")] = n + 1
        name = f"{stem}.{extension}" if n == 0 else f"{stem}_{n}.{extension}"
        return f"{key}/{name}"
