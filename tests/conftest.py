import errno
import io
import json
from pathlib import Path
from typing import Iterable, List, Optional, Union

import pytest

from compiletrace.ingest.driver import ingest_lines
from compiletrace.modules.context import ModuleContext
from compiletrace.settings import ModuleConfig

# helpers


def record(
    entry_type: str,
    metadata: Optional[dict] = None,
    *,
    frame_id: Optional[int] = 0,
    frame_compile_id: Optional[int] = 0,
    attempt: Optional[int] = 0,
    rank: Optional[int] = None,
    payload: Optional[str] = None,
    **extra,
) -> str:
    """One keyed log record, as emitted by the compiler."""
    obj = {entry_type: metadata or {}}
    if frame_id is not None:
        obj["frame_id"] = frame_id
        obj["frame_compile_id"] = frame_compile_id
        obj["attempt"] = attempt
    if rank is not None:
        obj["rank"] = rank
    if payload is not None:
        obj["payload"] = payload
    obj.update(extra)
    return json.dumps(obj)


class FullDiskStream(io.BytesIO):
    """A binary stream whose writes fail like a full disk."""

    def write(self, data):
        raise OSError(errno.ENOSPC, "No space left on device")


def frame(filename: Union[str, int], line: int, name: str) -> dict:
    return {"filename": filename, "line": line, "name": name}


def write_log(path: Path, lines: Iterable[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def ingest(tmp_path: Path, lines: List[str], name: str = "intermediate", **kwargs):
    return ingest_lines(lines, tmp_path / name, source_file="test.log", **kwargs)


def make_context(tmp_path: Path, lines: List[str], config: Optional[ModuleConfig] = None) -> ModuleContext:
    result = ingest(tmp_path, lines)
    return ModuleContext(result.intermediate_dir, result.manifest, config)


def sample_capture() -> List[str]:
    """A small but complete capture touching every stream."""
    return [
        json.dumps({"string_table": {"0": "/src/train.py", "1": "/src/model.py"}}),
        record(
            "dynamo_start",
            {"stack": [frame(0, 10, "main"), frame(1, 42, "forward")]},
        ),
        record("dynamo_output_graph", {"sizes": {"l_x_": [4, 4]}}, payload="def forward(x):\n    return x + 1"),
        record("aot_forward_graph", {}, payload="graph():\n    add = x + 1"),
        record("inductor_output_code", {"filename": "/tmp/abc/cabc123.py"}, payload="# kernel\nprint('hi')"),
        record(
            "dynamo_guards",
            {},
            payload=json.dumps([{"code": "L['x'].size()[0] == 4", "type": "SHAPE_ENV", "guard_types": ["SHAPE_ENV"]}]),
        ),
        record("dynamo_cpp_guards_str", {}, payload="TREE_GUARD_MANAGER"),
        record("symbolic_shape_specialization", {"symbol": "s0", "value": "4", "reason": "x.size(0) == 4"}),
        record("expression_created", {"id": 1, "result": "s0 + 1", "method": "add", "arguments": ["s0", "1"], "argument_ids": [2]}),
        record("expression_created", {"id": 2, "result": "s0", "method": "create_symbol"}),
        record("guard_added", {"expr": "Eq(s0 + 1, 5)", "user_stack": ["train.py:10 in main"], "expr_node_id": 1}),
        record("artifact", {"name": "fx_graph_cache_hash", "encoding": "json"}, payload=json.dumps({"key": "abc"})),
        record("artifact", {"name": "cache_hit_fx_graph", "encoding": "json"}, payload=json.dumps({"key": "abc"})),
        record("artifact", {"name": "cache_miss_aotautograd", "encoding": "string"}, payload="miss"),
        record("describe_tensor", {"id": 0, "size": [4, 4], "stride": [4, 1], "dtype": "torch.float32", "device": "cpu"}),
        record(
            "chromium_event",
            {},
            frame_id=None,
            payload=json.dumps({"name": "dynamo", "ph": "B", "ts": 1, "pid": 0, "tid": 0}),
        ),
        record(
            "compilation_metrics",
            {
                "co_name": "forward",
                "co_filename": "/src/model.py",
                "co_firstlineno": 40,
                "graph_op_count": 3,
                "entire_frame_compile_time_s": 1.5,
                "fail_type": None,
                "restart_reasons": [],
            },
        ),
        record("dump_file", {"name": "eval_with_key_1"}, frame_id=None, payload="def forward(self):\n    pass"),
    ]


@pytest.fixture
def capture_lines() -> List[str]:
    return sample_capture()
