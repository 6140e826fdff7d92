"""
Compile directory document.

Built from the merged directory entries of all modules, so every descriptor
points at a file the report actually contains:

    {compile_id: [{"name", "url", "suffix", "cache_status"?}, ...]}

Compile ids are ordered by `CompileId.sort_key`; global entries come last
under ``__global__``. Entries keep their merge order.
"""

from typing import Any, Dict, List

import msgspec

from compiletrace.modules.base import CombinedOutput
from compiletrace.schema.compile_id import GLOBAL_KEY, CompileId

COMPILE_DIRECTORY_PATH = "compile_directory.json"


def build_compile_directory(combined: CombinedOutput) -> Dict[str, List[Dict[str, Any]]]:
    keys = sorted(
        (k for k in combined.directory_entries if k != GLOBAL_KEY),
        key=lambda k: CompileId.parse(k).sort_key(),
    )
    if combined.directory_entries.get(GLOBAL_KEY):
        keys.append(GLOBAL_KEY)
    return {k: [e.to_wire() for e in combined.directory_entries[k]] for k in keys}


def compile_directory_json(combined: CombinedOutput) -> str:
    return msgspec.json.format(
        msgspec.json.encode(build_compile_directory(combined)), indent=2
    ).decode("utf-8")
