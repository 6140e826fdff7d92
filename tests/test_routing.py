import pytest

from compiletrace.errors import UnknownEnvelopeType
from compiletrace.intermediate.file_types import ROUTES, IntermediateFileType, route, route_entry_type
from compiletrace.schema.envelope import Envelope
from compiletrace.schema.metadata import CacheStatus, cache_status_for


class TestRouting:

    def test_every_stream_is_reachable(self):
        assert set(ROUTES.values()) | {IntermediateFileType.CACHE} == set(IntermediateFileType)

    def test_stream_filenames(self):
        assert IntermediateFileType.GRAPHS.filename == "graphs.jsonl"
        assert IntermediateFileType.CHROMIUM_EVENTS.filename == "chromium_events.jsonl"
        assert IntermediateFileType.CACHE.filename == "cache.jsonl"

    @pytest.mark.parametrize(
        "entry_type,expected",
        [
            ("dynamo_output_graph", IntermediateFileType.GRAPHS),
            ("inductor_output_code", IntermediateFileType.CODEGEN),
            ("dynamo_guards", IntermediateFileType.GUARDS),
            ("dynamo_start", IntermediateFileType.COMPILATION_METRICS),
            ("chromium_event", IntermediateFileType.CHROMIUM_EVENTS),
            ("describe_tensor", IntermediateFileType.TENSOR_METADATA),
            ("exported_program", IntermediateFileType.EXPORT),
            ("link", IntermediateFileType.ARTIFACTS),
        ],
    )
    def test_primary_routes(self, entry_type, expected):
        assert route(Envelope(entry_type=entry_type)) is expected
        assert route_entry_type(entry_type) is expected

    def test_routing_depends_only_on_type(self):
        a = Envelope(entry_type="aot_forward_graph", rank=0, payload="x")
        b = Envelope(entry_type="aot_forward_graph", rank=7, metadata={"anything": 1})
        assert route(a) is route(b) is IntermediateFileType.GRAPHS

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("cache_hit_fx_graph", IntermediateFileType.CACHE),
            ("cache_miss_aotautograd", IntermediateFileType.CACHE),
            ("cache_bypass_inductor", IntermediateFileType.CACHE),
            ("fx_graph_cache_hit", IntermediateFileType.ARTIFACTS),
            ("", IntermediateFileType.ARTIFACTS),
        ],
    )
    def test_cache_artifacts(self, name, expected):
        assert route(Envelope(entry_type="artifact", metadata={"name": name})) is expected

    def test_cache_status(self):
        assert cache_status_for("cache_hit_x") is CacheStatus.HIT
        assert cache_status_for("cache_bypass_x") is CacheStatus.BYPASS
        assert cache_status_for("x_cache_hit") is CacheStatus.UNKNOWN

    def test_unknown_type(self):
        assert route_entry_type("nope") is None
        with pytest.raises(UnknownEnvelopeType):
            route(Envelope(entry_type="nope"))
