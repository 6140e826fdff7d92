import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from compiletrace.errors import (
    DanglingStringReference,
    MalformedLine,
    UnknownEnvelopeType,
)
from compiletrace.intermediate.file_types import route
from compiletrace.intermediate.manifest import IntermediateManifest
from compiletrace.intermediate.writer import IntermediateWriter
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.settings import ParseSettings

from .normalizer import EnvelopeNormalizer
from .reader import iter_log_records
from .string_table import StringTable

logger = get_error_logger("ingest")


@dataclass(frozen=True)
class IngestResult:
    """Counts and manifest for one ingested capture."""

    intermediate_dir: Path
    manifest: IntermediateManifest
    records: int
    envelopes: int
    malformed: int
    unknown: int
    dangling_references: int
    string_table_records: int

    @property
    def dropped(self) -> int:
        return self.malformed + self.unknown


def ingest_lines(
    lines: Iterable[str],
    intermediate_dir: Path,
    *,
    source_file: str = "",
    settings: Optional[ParseSettings] = None,
    rank: Optional[int] = None,
) -> IngestResult:
    """
    Normalize, route and write every record of a capture.

    Per-record failures are counted and skipped unless `settings.strict`
    is set, in which case the first malformed record raises.

    Parameters
    ----------
    lines : iterable of str
        Raw log lines.
    intermediate_dir : Path
        Directory that receives the intermediate streams and manifest.
    source_file : str, optional
        Recorded in the manifest.
    settings : ParseSettings, optional
    rank : int, optional
        Rank assigned to envelopes that do not carry one.

    Raises
    ------
    StreamWriteFailure
        If any intermediate stream cannot be written.
    MalformedLine
        In strict mode only.
    """
    settings = settings or ParseSettings()
    manifest = IntermediateManifest()
    table = StringTable()
    failures_logged = 0

    def _log_failure(message: str) -> None:
        nonlocal failures_logged
        failures_logged += 1
        if failures_logged <= settings.max_logged_failures:
            logger.warning(f"[CompileTrace] {message}")

    def _on_dangling(err: DanglingStringReference) -> None:
        manifest.record_dangling()
        _log_failure(str(err))

    normalizer = EnvelopeNormalizer(table, on_dangling=_on_dangling)
    records = envelopes = table_records = 0

    with IntermediateWriter(intermediate_dir, manifest) as writer:
        for line_number, line, payload in iter_log_records(lines):
            records += 1
            try:
                envelope = normalizer.normalize(line, payload, line_number)
            except MalformedLine as e:
                if settings.strict:
                    raise
                manifest.record_malformed()
                _log_failure(f"skipping malformed record: {e}")
                continue
            except UnknownEnvelopeType as e:
                manifest.record_unknown(e.entry_type)
                _log_failure(f"line {line_number}: dropping {e}")
                continue

            if envelope is None:
                table_records += 1
                continue
            if rank is not None and envelope.rank is None:
                envelope = dataclasses.replace(envelope, rank=rank)

            writer.write(envelope, route(envelope))
            envelopes += 1

        writer.finalize(source_file=source_file, string_table=table.as_dict())

    if failures_logged > settings.max_logged_failures:
        logger.warning(
            f"[CompileTrace] {failures_logged - settings.max_logged_failures} "
            "further record failures were not logged individually"
        )

    return IngestResult(
        intermediate_dir=Path(intermediate_dir),
        manifest=manifest,
        records=records,
        envelopes=envelopes,
        malformed=manifest.malformed_lines,
        unknown=sum(manifest.unknown_types.values()),
        dangling_references=manifest.dangling_references,
        string_table_records=table_records,
    )


def ingest_capture(
    input_path: Path,
    intermediate_dir: Path,
    settings: Optional[ParseSettings] = None,
    rank: Optional[int] = None,
) -> IngestResult:
    """Ingest one log file. See `ingest_lines`."""
    input_path = Path(input_path)
    with open(input_path, "r", encoding="utf-8", errors="replace") as f:
        return ingest_lines(
            f,
            intermediate_dir,
            source_file=str(input_path),
            settings=settings,
            rank=rank,
        )
