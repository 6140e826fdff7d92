from pathlib import Path
from typing import BinaryIO, Dict, Mapping, Optional

import msgspec

from compiletrace.errors import StreamWriteFailure
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.schema.envelope import Envelope

from .file_types import IntermediateFileType
from .manifest import IntermediateManifest

STRING_TABLE_FILENAME = "string_table.json"


class IntermediateWriter:
    """
    Appends envelopes to the per-type intermediate streams.

    All streams are opened once when the writer is entered and stay open for
    the whole run; every successful write updates the manifest. Streams that
    receive no envelopes are still created (empty) so readers can rely on
    their presence.

    Usage
    -----
        with IntermediateWriter(out_dir) as writer:
            writer.write(envelope, route(envelope))
            ...
            writer.finalize(source_file="trace.log")
    """

    def __init__(self, output_dir: Path, manifest: Optional[IntermediateManifest] = None):
        self.output_dir = Path(output_dir)
        self.manifest = manifest if manifest is not None else IntermediateManifest()
        self._streams: Dict[IntermediateFileType, BinaryIO] = {}
        self._encoder = msgspec.json.Encoder()
        self._finalized = False
        self.logger = get_error_logger("IntermediateWriter")

    def open(self) -> "IntermediateWriter":
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for ft in IntermediateFileType:
            try:
                self._streams[ft] = open(self.output_dir / ft.filename, "wb")
            except OSError as e:
                self.close()
                raise StreamWriteFailure(ft.filename, e) from e
        return self

    def __enter__(self) -> "IntermediateWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write(self, envelope: Envelope, destination: IntermediateFileType) -> None:
        """
        Append one envelope to `destination` and record it in the manifest.

        Raises
        ------
        StreamWriteFailure
            If the stream is not open or the write fails.
        """
        stream = self._streams.get(destination)
        if stream is None:
            raise StreamWriteFailure(
                destination.filename, RuntimeError("stream is not open")
            )
        line = self._encoder.encode(envelope.to_wire())
        try:
            stream.write(line)
            stream.write(b"\n")
        except OSError as e:
            raise StreamWriteFailure(destination.filename, e) from e
        self.manifest.record(envelope, destination)

    def close(self) -> None:
        for ft, stream in list(self._streams.items()):
            try:
                stream.close()
            except OSError as e:
                self.logger.error(f"[CompileTrace] closing {ft.filename} failed: {e}")
        self._streams.clear()

    def finalize(
        self,
        source_file: str = "",
        string_table: Optional[Mapping[int, str]] = None,
    ) -> IntermediateManifest:
        """
        Flush and close all streams, then write the manifest and string table.
        """
        if self._finalized:
            raise RuntimeError("intermediate writer already finalized")
        for ft, stream in self._streams.items():
            try:
                stream.flush()
            except OSError as e:
                raise StreamWriteFailure(ft.filename, e) from e
        self.close()

        table = dict(string_table or {})
        self.manifest.string_table_entries = len(table)
        self.manifest.seal(source_file=source_file)
        try:
            self.manifest.write(self.output_dir)
            (self.output_dir / STRING_TABLE_FILENAME).write_bytes(
                msgspec.json.encode({str(k): v for k, v in sorted(table.items())})
            )
        except OSError as e:
            raise StreamWriteFailure("manifest.json", e) from e
        self._finalized = True
        return self.manifest
