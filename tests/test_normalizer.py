import json

import pytest

from compiletrace.errors import MalformedLine, UnknownEnvelopeType
from compiletrace.ingest.normalizer import EnvelopeNormalizer
from compiletrace.ingest.reader import iter_log_records
from compiletrace.ingest.string_table import StringTable
from compiletrace.schema.compile_id import CompileId

from conftest import frame, record


class TestEnvelopeNormalizer:

    def test_keyed_record(self):
        env = EnvelopeNormalizer().normalize(
            record("dynamo_output_graph", {"sizes": {}}, frame_id=1, frame_compile_id=2, attempt=0, rank=3, payload="g")
        )
        assert env.entry_type == "dynamo_output_graph"
        assert env.compile_id == CompileId(1, 2, 0)
        assert env.rank == 3
        assert env.metadata == {"sizes": {}}
        assert env.payload == "g"

    def test_explicit_record(self):
        line = json.dumps(
            {"type": "artifact", "compile_id": "!1_0_0", "metadata": {"name": "x"}, "thread": 7, "lineno": 3}
        )
        env = EnvelopeNormalizer().normalize(line)
        assert env.entry_type == "artifact"
        assert env.compile_id == CompileId(0, 0, compiled_autograd_id=1)
        assert env.thread_id == 7
        assert env.source_location == ("", 3)

    def test_glog_prefix(self):
        line = "V1018 12:00:01.000123 140031 torch/_dynamo/convert_frame.py:912] " + record("dynamo_start")
        env = EnvelopeNormalizer().normalize(line)
        assert env.thread_id == 140031
        assert env.source_location == ("torch/_dynamo/convert_frame.py", 912)
        assert env.timestamp == "--10-18T12:00:01.000123"

    def test_string_table_header_and_updates(self):
        table = StringTable()
        norm = EnvelopeNormalizer(table)
        assert norm.normalize(json.dumps({"string_table": {"0": "a.py"}})) is None
        assert norm.normalize(json.dumps({"str": ["b.py", 1]})) is None
        assert table.as_dict() == {0: "a.py", 1: "b.py"}

        env = norm.normalize(record("dynamo_start", {"stack": [frame(0, 1, "f"), frame(1, 2, "g")]}))
        assert [f["filename"] for f in env.metadata["stack"]] == ["a.py", "b.py"]

    def test_top_level_stack_joins_dynamo_start(self):
        env = EnvelopeNormalizer(StringTable({0: "a.py"})).normalize(
            record("dynamo_start", {}, stack=[frame(0, 5, "main")])
        )
        assert env.typed_metadata.stack[0].filename == "a.py"

    def test_dangling_reference_is_counted_not_fatal(self):
        seen = []
        norm = EnvelopeNormalizer(StringTable(), on_dangling=seen.append)
        env = norm.normalize(record("dynamo_start", {"stack": [frame(99, 1, "f")]}))
        assert env.metadata["stack"][0]["filename"] == ""
        assert [e.string_id for e in seen] == [99]

    @pytest.mark.parametrize("line", ["not json", "[1, 2]", '{"frame_id": 0}', '{"artifact": {}, "rank": -1}'])
    def test_malformed(self, line):
        with pytest.raises(MalformedLine):
            EnvelopeNormalizer().normalize(line)

    def test_unknown_type(self):
        with pytest.raises(UnknownEnvelopeType) as exc:
            EnvelopeNormalizer().normalize(record("brand_new_thing"))
        assert exc.value.entry_type == "brand_new_thing"

        with pytest.raises(UnknownEnvelopeType):
            EnvelopeNormalizer().normalize(json.dumps({"type": "brand_new_thing"}))

    def test_continuation_payload(self):
        lines = [record("inductor_output_code", {"filename": "k.py"}), "\tline one", "\tline two", record("dynamo_start")]
        records = list(iter_log_records(lines))
        assert [r[0] for r in records] == [1, 4]
        assert records[0][2] == "line one\nline two"
        assert records[1][2] is None

        env = EnvelopeNormalizer().normalize(records[0][1], records[0][2])
        assert env.payload == "line one\nline two"
