"""
Report module contract and output records.

A module turns intermediate streams into report artifacts. Its output is a
`ModuleOutput`; the registry folds outputs of all modules into one
`CombinedOutput` in registry order.

Loading strategies
------------------
- EAGER: every artifact is fully rendered into `files`.
- LAZY: only placeholders (`lazy` references plus directory entries) are
  emitted; content is produced on demand by `materialize`.
- HYBRID: a small eager summary (index entries, small files) plus lazy
  detail pages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.schema.compile_id import GLOBAL_KEY
from compiletrace.schema.metadata import CacheStatus, CompileOutcome
from compiletrace.settings import ModuleConfig


class LoadingStrategy(str, Enum):
    EAGER = "eager"
    LAZY = "lazy"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class DirectoryEntry:
    """
    One link in a compile id's listing of the compile directory.

    `cache_status` and `outcome` are left for the index page to render;
    only `cache_status` is part of the wire form.
    """

    name: str
    url: str
    suffix: str = ""
    cache_status: Optional[CacheStatus] = None
    outcome: Optional[CompileOutcome] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"name": self.name, "url": self.url, "suffix": self.suffix}
        if self.cache_status is not None:
            wire["cache_status"] = self.cache_status.value
        return wire


@dataclass(frozen=True)
class IndexEntry:
    """An HTML fragment contributed to a named section of the index page."""

    section: str
    html: str


@dataclass(frozen=True)
class LazyReference:
    """
    Where to find the data behind a lazy artifact.

    `ordinal` is the 0-based position of the entry in its stream, or None
    when the artifact aggregates the whole stream.
    """

    module_id: str
    path: str
    file_type: IntermediateFileType
    compile_id: Optional[str] = None
    entry_type: Optional[str] = None
    ordinal: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "module": self.module_id,
            "path": self.path,
            "stream": self.file_type.value,
            "compile_id": self.compile_id,
            "entry_type": self.entry_type,
            "ordinal": self.ordinal,
        }


@dataclass
class ModuleOutput:
    files: List[Tuple[str, str]] = field(default_factory=list)
    lazy: List[LazyReference] = field(default_factory=list)
    directory_entries: Dict[str, List[DirectoryEntry]] = field(default_factory=dict)
    index_entries: List[IndexEntry] = field(default_factory=list)

    def add_file(self, path: str, content: str) -> None:
        self.files.append((path, content))

    def add_lazy(self, reference: LazyReference) -> None:
        self.lazy.append(reference)

    def add_directory_entry(self, compile_key: Optional[str], entry: DirectoryEntry) -> None:
        key = GLOBAL_KEY if compile_key is None else compile_key
        self.directory_entries.setdefault(key, []).append(entry)

    def add_index(self, section: str, html: str) -> None:
        self.index_entries.append(IndexEntry(section=section, html=html))


@dataclass
class CombinedOutput:
    """
    Fold of module outputs in registry order.

    `merge` is associative and left-biased: concatenated lists keep the left
    operand's items first, and on duplicate file paths the left file wins
    when the report is written.
    """

    files: List[Tuple[str, str]] = field(default_factory=list)
    lazy: List[LazyReference] = field(default_factory=list)
    directory_entries: Dict[str, List[DirectoryEntry]] = field(default_factory=dict)
    index_entries: List[IndexEntry] = field(default_factory=list)
    modules_run: List[str] = field(default_factory=list)

    @staticmethod
    def from_module(module_id: str, output: ModuleOutput) -> "CombinedOutput":
        return CombinedOutput(
            files=list(output.files),
            lazy=list(output.lazy),
            directory_entries={k: list(v) for k, v in output.directory_entries.items()},
            index_entries=list(output.index_entries),
            modules_run=[module_id],
        )

    def merge(self, other: "CombinedOutput") -> "CombinedOutput":
        directory = {k: list(v) for k, v in self.directory_entries.items()}
        for key, entries in other.directory_entries.items():
            directory.setdefault(key, []).extend(entries)
        return CombinedOutput(
            files=self.files + other.files,
            lazy=self.lazy + other.lazy,
            directory_entries=directory,
            index_entries=self.index_entries + other.index_entries,
            modules_run=self.modules_run + other.modules_run,
        )

    def sections(self) -> Dict[str, List[str]]:
        """Index fragments grouped by section, sections in first-seen order."""
        grouped: Dict[str, List[str]] = {}
        for entry in self.index_entries:
            grouped.setdefault(entry.section, []).append(entry.html)
        return grouped

    def unique_files(self) -> List[Tuple[str, str]]:
        seen = set()
        unique = []
        for path, content in self.files:
            if path in seen:
                continue
            seen.add(path)
            unique.append((path, content))
        return unique


class Module:
    """
    Base class for report modules.

    Subclasses set the class attributes and implement `render`; lazy and
    hybrid modules also implement `materialize`.
    """

    name: str = ""
    id: str = ""
    subscriptions: Tuple[IntermediateFileType, ...] = ()
    loading_strategy: LoadingStrategy = LoadingStrategy.EAGER

    def __init__(self, config: Optional[ModuleConfig] = None):
        self.config = config or ModuleConfig()
        self.logger = get_error_logger(f"modules.{self.id or type(self).__name__}")

    def render(self, ctx) -> ModuleOutput:
        raise NotImplementedError("Subclasses must implement render()")

    def materialize(self, reference: LazyReference, ctx) -> str:
        raise NotImplementedError(
            f"module {self.id!r} has no lazy artifacts to materialize"
        )

    def lazy_reference(
        self,
        path: str,
        file_type: IntermediateFileType,
        compile_id: Optional[str] = None,
        entry_type: Optional[str] = None,
        ordinal: Optional[int] = None,
    ) -> LazyReference:
        return LazyReference(
            module_id=self.id,
            path=path,
            file_type=file_type,
            compile_id=compile_id,
            entry_type=entry_type,
            ordinal=ordinal,
        )
