from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import msgspec

from compiletrace.errors import IntermediateReadError
from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.intermediate.manifest import IntermediateManifest
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.schema.compile_id import CompileId
from compiletrace.schema.envelope import Envelope
from compiletrace.settings import ModuleConfig

from .base import LazyReference


class ModuleContext:
    """
    Read-only view of one intermediate directory, handed to every module.

    Every `read` call opens its stream afresh, so iteration is restartable
    and two modules (or two renders of the same module) never share reader
    state. All other accessors are compositions over `read`.

    Parameters
    ----------
    intermediate_dir : Path
        Directory written by `IntermediateWriter`.
    manifest : IntermediateManifest, optional
        Loaded from `intermediate_dir` when not given.
    config : ModuleConfig, optional
    """

    def __init__(
        self,
        intermediate_dir: Path,
        manifest: Optional[IntermediateManifest] = None,
        config: Optional[ModuleConfig] = None,
    ):
        self.intermediate_dir = Path(intermediate_dir)
        self.manifest = (
            manifest if manifest is not None else IntermediateManifest.load(self.intermediate_dir)
        )
        self.config = config or ModuleConfig()
        self.logger = get_error_logger("ModuleContext")

    def stream_path(self, file_type: IntermediateFileType) -> Path:
        return self.intermediate_dir / file_type.filename

    def read_indexed(self, file_type: IntermediateFileType) -> Iterator[Tuple[int, Envelope]]:
        """
        Yield ``(ordinal, envelope)`` pairs in file order.

        A missing stream yields nothing.

        Raises
        ------
        IntermediateReadError
            If a line cannot be decoded.
        """
        path = self.stream_path(file_type)
        if not path.exists():
            return
        decoder = msgspec.json.Decoder()
        ordinal = 0
        with open(path, "rb") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    envelope = Envelope.from_wire(decoder.decode(line))
                except (msgspec.DecodeError, ValueError, TypeError) as e:
                    raise IntermediateReadError(file_type.filename, number, str(e)) from None
                yield ordinal, envelope
                ordinal += 1

    def read(self, file_type: IntermediateFileType) -> Iterator[Envelope]:
        for _, envelope in self.read_indexed(file_type):
            yield envelope

    def filter_by_compile_id(
        self,
        file_type: IntermediateFileType,
        compile_id: Union[CompileId, str, None],
    ) -> Iterator[Envelope]:
        if isinstance(compile_id, str):
            compile_id = CompileId.parse(compile_id)
        for envelope in self.read(file_type):
            if envelope.compile_id == compile_id:
                yield envelope

    def entries_by_type(self, file_type: IntermediateFileType, *entry_types: str) -> Iterator[Envelope]:
        wanted = set(entry_types)
        for envelope in self.read(file_type):
            if envelope.entry_type in wanted:
                yield envelope

    def group_by_compile_id(self, file_type: IntermediateFileType) -> Dict[Optional[CompileId], List[Envelope]]:
        grouped: Dict[Optional[CompileId], List[Envelope]] = {}
        for envelope in self.read(file_type):
            grouped.setdefault(envelope.compile_id, []).append(envelope)
        return grouped

    def has_entries(self, file_type: IntermediateFileType) -> bool:
        return next(iter(self.read(file_type)), None) is not None

    def compile_ids(self) -> List[CompileId]:
        return self.manifest.compile_ids()

    def read_chromium_events(self) -> List[Any]:
        """
        Decoded chromium trace events, in log order.

        Events are carried in the payload when present, otherwise in the
        metadata. Undecodable payloads are skipped with a warning.
        """
        decoder = msgspec.json.Decoder()
        events: List[Any] = []
        for envelope in self.read(IntermediateFileType.CHROMIUM_EVENTS):
            if envelope.payload:
                try:
                    events.append(decoder.decode(envelope.payload))
                except msgspec.DecodeError as e:
                    self.logger.warning(f"[CompileTrace] skipping chromium event: {e}")
            elif envelope.metadata:
                events.append(envelope.metadata)
        return events

    def fetch(self, reference: LazyReference) -> Envelope:
        """
        Resolve a single-entry lazy reference to its envelope.

        Raises
        ------
        LookupError
            If the referenced entry is missing or has a different type.
        """
        if reference.ordinal is None:
            raise LookupError(f"reference {reference.path} does not name a single entry")
        for ordinal, envelope in self.read_indexed(reference.file_type):
            if ordinal == reference.ordinal:
                if reference.entry_type and envelope.entry_type != reference.entry_type:
                    break
                return envelope
        raise LookupError(
            f"{reference.file_type.filename} has no {reference.entry_type} entry at {reference.ordinal}"
        )
