"""
Intermediate manifest.

Built incrementally by the intermediate writer (one `record` call per
successful write), then sealed and serialized once to `manifest.json`.

Document
--------
{
    "version": "2.0",
    "generated_at": str,
    "source_file": str,
    "total_envelopes": int,
    "envelope_counts": {entry_type: int},
    "compile_ids": [{"id", "display_name", "has_metrics", "has_graphs",
                     "has_guards", "status"}],
    "files": {stream: {"path": str, "count": int}},
    "ranks": [int],
    "string_table_entries": int,
    "dropped": {"malformed": int, "unknown": {entry_type: int}, "dangling_references": int},
    "cache": {"hits": int, "misses": int, "bypasses": int},
}
"""

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import msgspec

from compiletrace.schema.compile_id import CompileId
from compiletrace.schema.envelope import Envelope
from compiletrace.schema.metadata import CacheStatus, cache_status_for

from .file_types import IntermediateFileType

MANIFEST_VERSION = "2.0"
MANIFEST_FILENAME = "manifest.json"

METRICS_TYPES = frozenset(
    {
        "compilation_metrics",
        "bwd_compilation_metrics",
        "aot_autograd_backward_compilation_metrics",
    }
)


@dataclass
class CompileRecord:
    """Per-compile flags accumulated while writing."""

    compile_id: CompileId
    has_metrics: bool = False
    has_graphs: bool = False
    has_guards: bool = False
    status: str = "unknown"

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": str(self.compile_id),
            "display_name": self.compile_id.display_name,
            "has_metrics": self.has_metrics,
            "has_graphs": self.has_graphs,
            "has_guards": self.has_guards,
            "status": self.status,
        }

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "CompileRecord":
        return CompileRecord(
            compile_id=CompileId.parse(data["id"]),
            has_metrics=bool(data.get("has_metrics", False)),
            has_graphs=bool(data.get("has_graphs", False)),
            has_guards=bool(data.get("has_guards", False)),
            status=str(data.get("status", "unknown")),
        )


@dataclass
class IntermediateManifest:
    """
    Summary of one intermediate directory.

    Mutated once per written envelope; `seal()` freezes it. Any mutation
    after sealing raises RuntimeError.
    """

    source_file: str = ""
    generated_at: str = ""
    version: str = MANIFEST_VERSION
    total_envelopes: int = 0
    envelope_counts: Dict[str, int] = field(default_factory=dict)
    stream_counts: Dict[str, int] = field(default_factory=dict)
    compile_records: Dict[CompileId, CompileRecord] = field(default_factory=dict)
    ranks: Set[int] = field(default_factory=set)
    string_table_entries: int = 0
    malformed_lines: int = 0
    unknown_types: Dict[str, int] = field(default_factory=dict)
    dangling_references: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_bypasses: int = 0
    sealed: bool = False

    def _check_open(self) -> None:
        if self.sealed:
            raise RuntimeError("manifest is sealed")

    def record(self, envelope: Envelope, destination: IntermediateFileType) -> None:
        """Account for one envelope written to `destination`."""
        self._check_open()
        self.total_envelopes += 1
        t = envelope.entry_type
        self.envelope_counts[t] = self.envelope_counts.get(t, 0) + 1
        key = destination.value
        self.stream_counts[key] = self.stream_counts.get(key, 0) + 1

        if envelope.rank is not None:
            self.ranks.add(envelope.rank)

        if destination is IntermediateFileType.CACHE:
            status = cache_status_for(str(envelope.metadata.get("name", "")))
            if status is CacheStatus.HIT:
                self.cache_hits += 1
            elif status is CacheStatus.MISS:
                self.cache_misses += 1
            elif status is CacheStatus.BYPASS:
                self.cache_bypasses += 1

        if envelope.compile_id is None:
            return
        rec = self.compile_records.get(envelope.compile_id)
        if rec is None:
            rec = CompileRecord(compile_id=envelope.compile_id)
            self.compile_records[envelope.compile_id] = rec

        if destination is IntermediateFileType.GRAPHS:
            rec.has_graphs = True
        elif destination is IntermediateFileType.GUARDS:
            rec.has_guards = True
        elif t in METRICS_TYPES:
            rec.has_metrics = True
            if envelope.metadata.get("fail_type"):
                rec.status = "failure"
            elif rec.status != "failure":
                rec.status = "success"

    def record_malformed(self) -> None:
        self._check_open()
        self.malformed_lines += 1

    def record_unknown(self, entry_type: str) -> None:
        self._check_open()
        self.unknown_types[entry_type] = self.unknown_types.get(entry_type, 0) + 1

    def record_dangling(self, count: int = 1) -> None:
        self._check_open()
        self.dangling_references += count

    @property
    def dropped(self) -> int:
        return self.malformed_lines + sum(self.unknown_types.values())

    def compile_ids(self) -> List[CompileId]:
        return sorted(self.compile_records, key=CompileId.sort_key)

    def count_for(self, file_type: IntermediateFileType) -> int:
        return self.stream_counts.get(file_type.value, 0)

    def seal(self, source_file: Optional[str] = None) -> None:
        self._check_open()
        if source_file is not None:
            self.source_file = source_file
        if not self.generated_at:
            self.generated_at = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.sealed = True

    def to_wire(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generated_at": self.generated_at,
            "source_file": self.source_file,
            "total_envelopes": self.total_envelopes,
            "envelope_counts": dict(sorted(self.envelope_counts.items())),
            "compile_ids": [
                self.compile_records[cid].to_wire() for cid in self.compile_ids()
            ],
            "files": {
                ft.value: {"path": ft.filename, "count": self.count_for(ft)}
                for ft in IntermediateFileType
            },
            "ranks": sorted(self.ranks),
            "string_table_entries": self.string_table_entries,
            "dropped": {
                "malformed": self.malformed_lines,
                "unknown": dict(sorted(self.unknown_types.items())),
                "dangling_references": self.dangling_references,
            },
            "cache": {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "bypasses": self.cache_bypasses,
            },
        }

    def write(self, directory: Path) -> Path:
        """Serialize the sealed manifest into `directory`."""
        if not self.sealed:
            raise RuntimeError("manifest must be sealed before it is written")
        path = Path(directory) / MANIFEST_FILENAME
        path.write_bytes(msgspec.json.format(msgspec.json.encode(self.to_wire())))
        return path

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "IntermediateManifest":
        dropped = data.get("dropped") or {}
        cache = data.get("cache") or {}
        records = [CompileRecord.from_wire(c) for c in data.get("compile_ids", [])]
        return IntermediateManifest(
            source_file=str(data.get("source_file", "")),
            generated_at=str(data.get("generated_at", "")),
            version=str(data.get("version", MANIFEST_VERSION)),
            total_envelopes=int(data.get("total_envelopes", 0)),
            envelope_counts=dict(data.get("envelope_counts") or {}),
            stream_counts={
                k: int(v.get("count", 0)) for k, v in (data.get("files") or {}).items()
            },
            compile_records={r.compile_id: r for r in records},
            ranks=set(data.get("ranks") or []),
            string_table_entries=int(data.get("string_table_entries", 0)),
            malformed_lines=int(dropped.get("malformed", 0)),
            unknown_types=dict(dropped.get("unknown") or {}),
            dangling_references=int(dropped.get("dangling_references", 0)),
            cache_hits=int(cache.get("hits", 0)),
            cache_misses=int(cache.get("misses", 0)),
            cache_bypasses=int(cache.get("bypasses", 0)),
            sealed=True,
        )

    @staticmethod
    def load(directory: Path) -> "IntermediateManifest":
        data = msgspec.json.decode((Path(directory) / MANIFEST_FILENAME).read_bytes())
        return IntermediateManifest.from_wire(data)
