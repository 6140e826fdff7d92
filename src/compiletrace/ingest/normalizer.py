"""
Envelope normalizer.

Turns one raw log record into an `Envelope`.

Accepted record shapes
----------------------
An optional glog-style prefix::

    V1018 12:00:00.123456 140031 torch/_dynamo/convert_frame.py:912] {...}

followed by one JSON object, either keyed by its entry type::

    {"dynamo_start": {"stack": [...]}, "frame_id": 0, "frame_compile_id": 0,
     "attempt": 0, "rank": 0}

or explicit (the intermediate stream form)::

    {"type": "dynamo_start", "compile_id": "0_0_0", "metadata": {...}}

String table records (`{"string_table": {...}}` header and
`{"str": ["<string>", <id>]}` updates) feed the table and produce no envelope.
"""

import re
from typing import Any, Callable, Dict, List, Optional

import msgspec

from compiletrace.errors import DanglingStringReference, MalformedLine, UnknownEnvelopeType
from compiletrace.intermediate.file_types import STRING_TABLE_ENTRY, is_known_entry_type
from compiletrace.schema.compile_id import CompileId
from compiletrace.schema.envelope import Envelope

from .string_table import StringTable

GLOG_PREFIX = re.compile(
    r"^(?P<level>[VIWEC])(?P<month>\d{2})(?P<day>\d{2}) "
    r"(?P<time>\d{2}:\d{2}:\d{2}\.\d{6}) +(?P<thread>\d+) "
    r"(?P<pathname>[^:\]]+):(?P<lineno>\d+)\] (?P<body>.*)$"
)

# Top-level keys of a keyed record that are not entry types.
RECORD_FIELDS = frozenset(
    {
        "frame_id",
        "frame_compile_id",
        "attempt",
        "compiled_autograd_id",
        "rank",
        "has_payload",
        "stack",
        "payload",
        "timestamp",
        "thread",
        "pathname",
        "lineno",
    }
)

STRING_TABLE_HEADER = "string_table"

DanglingHandler = Callable[[DanglingStringReference], None]


class EnvelopeNormalizer:
    """
    Per-record decoder bound to one capture's string table.

    Parameters
    ----------
    string_table : StringTable
        Table used to resolve interned ids. Header and `str` records
        update it in place.
    on_dangling : callable, optional
        Called with a `DanglingStringReference` whenever an interned id
        cannot be resolved. The field is left empty and decoding continues.
    """

    def __init__(
        self,
        string_table: Optional[StringTable] = None,
        on_dangling: Optional[DanglingHandler] = None,
    ):
        self.string_table = string_table if string_table is not None else StringTable()
        self._on_dangling = on_dangling
        self._decoder = msgspec.json.Decoder()

    def normalize(
        self,
        line: str,
        payload: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> Optional[Envelope]:
        """
        Decode one record.

        Returns
        -------
        Envelope or None
            None when the record only updated the string table.

        Raises
        ------
        MalformedLine
            The record is not a JSON object or has mistyped fields.
        UnknownEnvelopeType
            The record's type tag is not routable.
        """
        prefix: Dict[str, Any] = {}
        body = line.strip()
        match = GLOG_PREFIX.match(body)
        if match is not None:
            prefix = match.groupdict()
            body = prefix.pop("body")

        try:
            obj = self._decoder.decode(body)
        except msgspec.DecodeError as e:
            raise MalformedLine(f"invalid JSON: {e}", line_number) from None
        if not isinstance(obj, dict):
            raise MalformedLine("record is not a JSON object", line_number)

        if STRING_TABLE_HEADER in obj and len(obj) == 1:
            self.string_table.load_header(obj[STRING_TABLE_HEADER])
            return None
        if STRING_TABLE_ENTRY in obj:
            self._add_string(obj[STRING_TABLE_ENTRY], line_number)
            return None

        try:
            if isinstance(obj.get("type"), str):
                return self._explicit(obj, prefix, payload)
            return self._keyed(obj, prefix, payload, line_number)
        except (TypeError, ValueError) as e:
            raise MalformedLine(str(e), line_number) from None

    def _add_string(self, entry: Any, line_number: Optional[int]) -> None:
        if (
            not isinstance(entry, list)
            or len(entry) != 2
            or not isinstance(entry[0], str)
            or not isinstance(entry[1], int)
        ):
            raise MalformedLine("string table record must be [string, id]", line_number)
        self.string_table.add(entry[1], entry[0])

    def _explicit(self, obj: Dict[str, Any], prefix: Dict[str, Any], payload: Optional[str]) -> Envelope:
        entry_type = obj["type"]
        if not is_known_entry_type(entry_type):
            raise UnknownEnvelopeType(entry_type)

        metadata = obj.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")

        raw_cid = obj.get("compile_id")
        if isinstance(raw_cid, str):
            compile_id = CompileId.parse(raw_cid)
        elif raw_cid is None:
            compile_id = CompileId.from_fields(obj)
        else:
            raise ValueError("compile_id must be a string")

        return self._build(entry_type, obj, prefix, compile_id, metadata, payload)

    def _keyed(
        self,
        obj: Dict[str, Any],
        prefix: Dict[str, Any],
        payload: Optional[str],
        line_number: Optional[int],
    ) -> Envelope:
        type_keys = [k for k in obj if k not in RECORD_FIELDS]
        if not type_keys:
            if "stack" in obj:
                type_keys = ["stack"]
            else:
                raise MalformedLine("record carries no entry type", line_number)

        entry_type = next((k for k in type_keys if is_known_entry_type(k)), None)
        if entry_type is None:
            raise UnknownEnvelopeType(type_keys[0])

        if entry_type == "stack":
            metadata: Dict[str, Any] = {"stack": obj.get("stack")}
        else:
            raw = obj.get(entry_type)
            metadata = dict(raw) if isinstance(raw, dict) else {}
            if entry_type == "dynamo_start" and "stack" not in metadata and "stack" in obj:
                metadata["stack"] = obj["stack"]

        return self._build(
            entry_type, obj, prefix, CompileId.from_fields(obj), metadata, payload
        )

    def _build(
        self,
        entry_type: str,
        obj: Dict[str, Any],
        prefix: Dict[str, Any],
        compile_id: Optional[CompileId],
        metadata: Dict[str, Any],
        payload: Optional[str],
    ) -> Envelope:
        if isinstance(metadata.get("stack"), list):
            metadata = dict(metadata)
            metadata["stack"] = self._resolve_stack(metadata["stack"])

        rank = obj.get("rank")
        if rank is not None and (isinstance(rank, bool) or not isinstance(rank, int) or rank < 0):
            raise ValueError(f"rank must be a non-negative integer, got {rank!r}")

        inline_payload = obj.get("payload")
        if inline_payload is not None and not isinstance(inline_payload, str):
            raise ValueError("payload must be a string")

        pathname = obj.get("pathname", prefix.get("pathname", ""))
        if isinstance(pathname, int) and not isinstance(pathname, bool):
            pathname = self._resolve(pathname)

        return Envelope(
            entry_type=entry_type,
            compile_id=compile_id,
            rank=rank,
            timestamp=str(obj.get("timestamp") or _glog_timestamp(prefix)),
            thread_id=int(obj.get("thread", prefix.get("thread", 0)) or 0),
            pathname=str(pathname or ""),
            lineno=int(obj.get("lineno", prefix.get("lineno", 0)) or 0),
            metadata=metadata,
            payload=inline_payload if inline_payload is not None else payload,
        )

    def _resolve(self, string_id: int) -> str:
        try:
            return self.string_table.lookup(string_id)
        except DanglingStringReference as e:
            if self._on_dangling is not None:
                self._on_dangling(e)
            return ""

    def _resolve_stack(self, frames: List[Any]) -> List[Any]:
        resolved = []
        for frame in frames:
            if isinstance(frame, dict):
                filename = frame.get("filename")
                if isinstance(filename, int) and not isinstance(filename, bool):
                    frame = dict(frame)
                    frame["filename"] = self._resolve(filename)
            resolved.append(frame)
        return resolved


def _glog_timestamp(prefix: Dict[str, Any]) -> str:
    # glog omits the year; ISO-8601 allows the reduced "--MM-DD" date form.
    if not prefix:
        return ""
    return f"--{prefix['month']}-{prefix['day']}T{prefix['time']}"
