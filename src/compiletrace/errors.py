"""
Error taxonomy for compiletrace.

Per-line failures (`MalformedLine`, `UnknownEnvelopeType`,
`DanglingStringReference`) are counted by the ingestion driver and never stop
a run. `StreamWriteFailure` and `ModuleRenderFailure` are fatal to their stage.
`RankUnreadable` excludes one rank from multi-rank analysis.
"""

from typing import Optional


class CompileTraceError(Exception):
    """Base class for all compiletrace errors."""


class MalformedLine(CompileTraceError):
    """A log line that is not a decodable JSON envelope."""

    def __init__(self, reason: str, line_number: Optional[int] = None):
        self.reason = reason
        self.line_number = line_number
        where = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{where}{reason}")


class UnknownEnvelopeType(CompileTraceError):
    """An envelope whose type tag is not in the routing table."""

    def __init__(self, entry_type: str):
        self.entry_type = entry_type
        super().__init__(f"unknown envelope type {entry_type!r}")


class DanglingStringReference(CompileTraceError):
    """An interned string id that the string table does not contain."""

    def __init__(self, string_id: int):
        self.string_id = string_id
        super().__init__(f"string table has no entry {string_id}")


class StreamWriteFailure(CompileTraceError):
    """An intermediate stream could not be written."""

    def __init__(self, stream: str, cause: BaseException):
        self.stream = stream
        self.cause = cause
        super().__init__(f"failed writing intermediate stream {stream}: {cause}")


class IntermediateReadError(CompileTraceError):
    """An intermediate stream line could not be decoded."""

    def __init__(self, stream: str, line_number: int, reason: str):
        self.stream = stream
        self.line_number = line_number
        super().__init__(f"{stream}:{line_number}: {reason}")


class ModuleRenderFailure(CompileTraceError):
    """A report module raised while rendering."""

    def __init__(self, module_id: str, cause: BaseException):
        self.module_id = module_id
        self.cause = cause
        super().__init__(f"module {module_id!r} failed to render: {cause}")


class RankUnreadable(CompileTraceError):
    """A per-rank capture that could not be read or parsed."""

    def __init__(self, rank: int, cause: BaseException):
        self.rank = rank
        self.cause = cause
        super().__init__(f"rank {rank} is unreadable: {cause}")


class PipelineFailure(CompileTraceError):
    """A fatal failure tagged with the pipeline stage that produced it."""

    def __init__(self, stage: str, component: str, cause: BaseException):
        self.stage = stage
        self.component = component
        self.cause = cause
        super().__init__(f"[{stage}] {component}: {cause}")
