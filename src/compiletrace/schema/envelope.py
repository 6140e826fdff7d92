"""
Envelope schema (shared contract).

An envelope is one parsed log record. The same shape is written, one JSON
object per line, into every intermediate stream:

{
    "type": str,                # entry type tag, e.g. "dynamo_output_graph"
    "compile_id": str | null,   # CompileId string form
    "rank": int | null,
    "timestamp": str,           # ISO-8601
    "thread": int,
    "pathname": str,
    "lineno": int,
    "metadata": {...},          # type-specific fields
    "payload": str,             # optional, omitted when absent
}
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .compile_id import CompileId
from .metadata import parse_metadata


@dataclass(frozen=True)
class Envelope:
    """
    One typed log record.

    Envelopes are immutable once built by the normalizer and are handed,
    unchanged, to the router and the intermediate writer.
    """

    entry_type: str
    compile_id: Optional[CompileId] = None
    rank: Optional[int] = None
    timestamp: str = ""
    thread_id: int = 0
    pathname: str = ""
    lineno: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    payload: Optional[str] = None

    @property
    def source_location(self) -> Tuple[str, int]:
        return (self.pathname, self.lineno)

    @property
    def typed_metadata(self):
        """Tagged-union view of `metadata` for this entry type."""
        return parse_metadata(self.entry_type, self.metadata)

    @property
    def compile_key(self) -> Optional[str]:
        return None if self.compile_id is None else str(self.compile_id)

    def to_wire(self) -> Dict[str, Any]:
        """
        Convert the envelope to an intermediate stream entry.
        """
        wire: Dict[str, Any] = {
            "type": self.entry_type,
            "compile_id": self.compile_key,
            "rank": self.rank,
            "timestamp": self.timestamp,
            "thread": int(self.thread_id),
            "pathname": self.pathname,
            "lineno": int(self.lineno),
            "metadata": self.metadata,
        }
        if self.payload is not None:
            wire["payload"] = self.payload
        return wire

    @staticmethod
    def from_wire(data: Dict[str, Any]) -> "Envelope":
        """
        Reconstruct an envelope from an intermediate stream entry.

        Raises
        ------
        ValueError
            If required fields are missing or have the wrong type.
        """
        entry_type = data.get("type")
        if not isinstance(entry_type, str) or not entry_type:
            raise ValueError("entry has no type tag")

        raw_cid = data.get("compile_id")
        compile_id = CompileId.parse(raw_cid) if isinstance(raw_cid, str) else None

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")

        payload = data.get("payload")
        if payload is not None and not isinstance(payload, str):
            raise ValueError("payload must be a string")

        rank = data.get("rank")
        return Envelope(
            entry_type=entry_type,
            compile_id=compile_id,
            rank=int(rank) if rank is not None else None,
            timestamp=str(data.get("timestamp") or ""),
            thread_id=int(data.get("thread") or 0),
            pathname=str(data.get("pathname") or ""),
            lineno=int(data.get("lineno") or 0),
            metadata=metadata,
            payload=payload,
        )
