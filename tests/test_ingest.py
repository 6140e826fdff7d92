import json

import msgspec
import pytest

from compiletrace.errors import MalformedLine, StreamWriteFailure
from compiletrace.ingest.driver import ingest_capture
from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.intermediate.manifest import IntermediateManifest
from compiletrace.intermediate.writer import IntermediateWriter
from compiletrace.schema.envelope import Envelope
from compiletrace.settings import ParseSettings

from conftest import FullDiskStream, ingest, record, write_log


def read_stream(path):
    decoder = msgspec.json.Decoder()
    return [decoder.decode(line) for line in path.read_bytes().splitlines() if line.strip()]


class TestIngest:

    def test_one_malformed_line_among_valid_ones(self, tmp_path):
        lines = [record("dynamo_output_graph", frame_id=i) for i in range(100)]
        lines.insert(50, "{this is not json")
        result = ingest(tmp_path, lines)

        assert result.envelopes == 100
        assert result.malformed == 1
        assert result.manifest.total_envelopes == 100
        assert len(read_stream(result.intermediate_dir / "graphs.jsonl")) == 100

    def test_manifest_counts_sum_to_decoded_envelopes(self, tmp_path, capture_lines):
        lines = capture_lines + ["garbage", record("mystery_type")]
        result = ingest(tmp_path, lines)
        manifest = IntermediateManifest.load(result.intermediate_dir)

        assert sum(manifest.envelope_counts.values()) == result.envelopes
        assert manifest.total_envelopes == result.envelopes
        assert sum(manifest.stream_counts.values()) == result.envelopes
        assert manifest.malformed_lines == 1
        assert manifest.unknown_types == {"mystery_type": 1}
        assert result.dropped == 2

    def test_manifest_document(self, tmp_path, capture_lines):
        result = ingest(tmp_path, capture_lines)
        doc = msgspec.json.decode((result.intermediate_dir / "manifest.json").read_bytes())

        assert doc["version"] == "2.0"
        assert doc["source_file"] == "test.log"
        assert doc["generated_at"]
        assert doc["string_table_entries"] == 2
        assert doc["cache"] == {"hits": 1, "misses": 1, "bypasses": 0}
        assert doc["files"]["cache"] == {"path": "cache.jsonl", "count": 2}
        assert doc["files"]["artifacts"]["count"] == 2

        [entry] = doc["compile_ids"]
        assert entry["id"] == "0_0_0"
        assert entry["display_name"] == "0/0"
        assert entry["has_metrics"] and entry["has_graphs"] and entry["has_guards"]
        assert entry["status"] == "success"

        table = msgspec.json.decode((result.intermediate_dir / "string_table.json").read_bytes())
        assert table == {"0": "/src/train.py", "1": "/src/model.py"}

    def test_stream_entries_carry_type_tag(self, tmp_path):
        result = ingest(tmp_path, [record("artifact", {"name": "a"}, payload="p", rank=1)])
        [entry] = read_stream(result.intermediate_dir / "artifacts.jsonl")
        assert entry["type"] == "artifact"
        assert entry["compile_id"] == "0_0_0"
        assert entry["rank"] == 1
        assert entry["payload"] == "p"
        assert Envelope.from_wire(entry).metadata == {"name": "a"}

    def test_every_stream_file_is_created(self, tmp_path):
        result = ingest(tmp_path, [])
        for ft in IntermediateFileType:
            assert (result.intermediate_dir / ft.filename).exists()

    def test_failed_compile_status(self, tmp_path):
        result = ingest(tmp_path, [record("compilation_metrics", {"fail_type": "RuntimeError"})])
        [entry] = result.manifest.to_wire()["compile_ids"]
        assert entry["status"] == "failure"

    def test_rank_is_filled_in(self, tmp_path):
        result = ingest(tmp_path, [record("dynamo_start")], rank=4)
        assert result.manifest.ranks == {4}

    def test_strict_mode_raises(self, tmp_path):
        with pytest.raises(MalformedLine):
            ingest(tmp_path, ["nope"], settings=ParseSettings(strict=True))

    def test_ingest_capture_reads_file(self, tmp_path, capture_lines):
        log = write_log(tmp_path / "trace.log", capture_lines)
        result = ingest_capture(log, tmp_path / "out")
        assert result.manifest.source_file == str(log)
        assert result.string_table_records == 1


class TestIntermediateWriter:

    def test_os_error_on_write_is_wrapped(self, tmp_path):
        with IntermediateWriter(tmp_path / "out") as writer:
            writer._streams[IntermediateFileType.GRAPHS].close()
            writer._streams[IntermediateFileType.GRAPHS] = FullDiskStream()
            with pytest.raises(StreamWriteFailure) as info:
                writer.write(Envelope(entry_type="dynamo_output_graph"), IntermediateFileType.GRAPHS)
        assert "graphs.jsonl" in str(info.value)
        assert isinstance(info.value.__cause__, OSError)
        assert writer.manifest.total_envelopes == 0

    def test_write_to_closed_stream_fails(self, tmp_path):
        writer = IntermediateWriter(tmp_path / "out")
        with pytest.raises(StreamWriteFailure):
            writer.write(Envelope(entry_type="dynamo_start"), IntermediateFileType.COMPILATION_METRICS)

    def test_manifest_is_sealed_after_finalize(self, tmp_path):
        with IntermediateWriter(tmp_path / "out") as writer:
            writer.write(Envelope(entry_type="dynamo_start"), IntermediateFileType.COMPILATION_METRICS)
            manifest = writer.finalize("x.log")
        assert manifest.sealed
        with pytest.raises(RuntimeError):
            manifest.record(Envelope(entry_type="dynamo_start"), IntermediateFileType.COMPILATION_METRICS)
        with pytest.raises(RuntimeError):
            writer.finalize("x.log")
