import json

import pytest

from compiletrace.modules.base import LoadingStrategy
from compiletrace.modules.cache import CacheModule
from compiletrace.modules.chromium_trace import CHROMIUM_EVENTS_PATH, ChromiumTraceModule
from compiletrace.modules.compilation_metrics import FAILURES_PATH, CompilationMetricsModule
from compiletrace.modules.compile_artifacts import CompileArtifactsModule
from compiletrace.modules.export import EXPORTED_PROGRAM_PATH, ExportModule
from compiletrace.modules.guards import GuardsModule
from compiletrace.modules.registry import ModuleRegistry
from compiletrace.modules.symbolic_shapes import SymbolicShapesModule
from compiletrace.modules.tensor_metadata import TensorMetadataModule
from compiletrace.report.directory import build_compile_directory
from compiletrace.schema.metadata import CacheStatus, CompileOutcome
from compiletrace.settings import ModuleConfig

from conftest import make_context, record

# helpers


def lazy_paths(output):
    return [ref.path for ref in output.lazy]


def entry_names(output, key):
    return [e.name for e in output.directory_entries.get(key, [])]


@pytest.fixture
def ctx(tmp_path, capture_lines):
    return make_context(tmp_path, capture_lines)


# tests


class TestCompileArtifacts:

    def test_lazy_paths(self, ctx):
        out = CompileArtifactsModule().render(ctx)
        assert out.files == []
        assert lazy_paths(out) == [
            "0_0_0/dynamo_output_graph.html",
            "0_0_0/aot_forward_graph.html",
            "0_0_0/inductor_output_code_cabc123.html",
            "0_0_0/fx_graph_cache_hash.json",
            "dump_file/eval_with_key_1.html",
        ]
        assert "eval_with_key_1.html" in entry_names(out, "__global__")

    def test_materialize(self, ctx):
        module = CompileArtifactsModule()
        refs = {ref.path: ref for ref in module.render(ctx).lazy}

        graph = module.materialize(refs["0_0_0/dynamo_output_graph.html"], ctx)
        assert "<html" in graph and "return x + 1" in graph

        data = module.materialize(refs["0_0_0/fx_graph_cache_hash.json"], ctx)
        assert json.loads(data) == {"key": "abc"}

    def test_plain_text(self, tmp_path, capture_lines):
        ctx = make_context(tmp_path, capture_lines, ModuleConfig(plain_text=True))
        module = CompileArtifactsModule(ModuleConfig(plain_text=True))
        out = module.render(ctx)
        assert "0_0_0/dynamo_output_graph.txt" in lazy_paths(out)
        ref = out.lazy[0]
        assert module.materialize(ref, ctx) == "def forward(x):\n    return x + 1"

    def test_repeated_names_are_suffixed(self, tmp_path):
        lines = [record("dynamo_output_graph", {}, payload="a"), record("dynamo_output_graph", {}, payload="b")]
        out = CompileArtifactsModule().render(make_context(tmp_path, lines))
        assert lazy_paths(out) == ["0_0_0/dynamo_output_graph.html", "0_0_0/dynamo_output_graph_1.html"]

    def test_link_entries(self, tmp_path):
        lines = [record("link", {"name": "profile", "url": "https://example.com/p"})]
        out = CompileArtifactsModule().render(make_context(tmp_path, lines))
        assert out.lazy == []
        assert out.directory_entries["0_0_0"][0].url == "https://example.com/p"


class TestGuards:

    def test_guard_pages(self, ctx):
        module = GuardsModule()
        out = module.render(ctx)
        assert module.loading_strategy is LoadingStrategy.LAZY
        assert lazy_paths(out) == ["0_0_0/dynamo_guards.html", "0_0_0/dynamo_cpp_guards_str.html"]

        page = module.materialize(out.lazy[0], ctx)
        assert "1 guards" in page
        assert "SHAPE_ENV" in page

        cpp = module.materialize(out.lazy[1], ctx)
        assert "TREE_GUARD_MANAGER" in cpp

    def test_unparseable_guards_fall_back_to_text(self, tmp_path):
        ctx = make_context(tmp_path, [record("dynamo_guards", {}, payload="not json")])
        module = GuardsModule()
        page = module.materialize(module.render(ctx).lazy[0], ctx)
        assert "not json" in page


class TestCache:

    def test_cache_files_and_summary(self, ctx):
        out = CacheModule().render(ctx)
        assert [p for p, _ in out.files] == ["0_0_0/cache_hit_fx_graph.json", "0_0_0/cache_miss_aotautograd.txt"]
        statuses = [e.cache_status for e in out.directory_entries["0_0_0"]]
        assert statuses == [CacheStatus.HIT, CacheStatus.MISS]
        assert all(e.suffix == "" for e in out.directory_entries["0_0_0"])
        assert [e.section for e in out.index_entries] == ["Cache Status"]

    def test_no_cache_entries(self, tmp_path):
        out = CacheModule().render(make_context(tmp_path, []))
        assert out.files == [] and out.index_entries == []


class TestCompilationMetrics:

    def test_success_has_no_failure_section(self, ctx):
        module = CompilationMetricsModule()
        out = module.render(ctx)
        assert lazy_paths(out) == ["0_0_0/compilation_metrics.html"]
        assert out.index_entries == []

        page = module.materialize(out.lazy[0], ctx)
        assert "forward" in page
        assert "Symbolic Shape Specializations" in page
        assert "/src/model.py:42 in forward" in page

    def test_failures_and_restarts(self, tmp_path):
        lines = [
            record("compilation_metrics", {"fail_type": "RuntimeError", "fail_reason": "bad op"}, frame_id=0),
            record("compilation_metrics", {"graph_op_count": 2, "restart_reasons": ["graph break"]}, frame_id=1),
        ]
        ctx = make_context(tmp_path, lines)
        module = CompilationMetricsModule()
        out = module.render(ctx)
        assert out.index_entries[0].section == "Failures and Restarts"
        assert "1 failed compilations, 1 restarts" in out.index_entries[0].html
        assert out.directory_entries["0_0_0"][0].outcome is CompileOutcome.ERROR

        failures = next(ref for ref in out.lazy if ref.path == FAILURES_PATH)
        page = module.materialize(failures, ctx)
        assert "RuntimeError: bad op" in page
        assert "graph break" in page


class TestChromiumTrace:

    def test_events_array(self, ctx):
        out = ChromiumTraceModule().render(ctx)
        (path, content), = out.files
        assert path == CHROMIUM_EVENTS_PATH
        assert json.loads(content) == [{"name": "dynamo", "ph": "B", "ts": 1, "pid": 0, "tid": 0}]

    def test_nothing_without_events(self, tmp_path):
        out = ChromiumTraceModule().render(make_context(tmp_path, []))
        assert out.files == []


class TestSymbolicShapes:

    def test_guard_page_with_expression_tree(self, ctx):
        module = SymbolicShapesModule()
        out = module.render(ctx)
        assert lazy_paths(out) == ["0_0_0/symbolic_guard_information_0.html"]
        page = module.materialize(out.lazy[0], ctx)
        assert "Eq(s0 + 1, 5)" in page
        assert "train.py:10 in main" in page
        assert "create_symbol" in page

    def test_self_referencing_expression_terminates(self, tmp_path):
        lines = [
            record("expression_created", {"id": 1, "result": "a", "argument_ids": [2]}),
            record("expression_created", {"id": 2, "result": "b", "argument_ids": [1]}),
            record("guard_added", {"expr": "a", "expr_node_id": 1}),
        ]
        ctx = make_context(tmp_path, lines)
        module = SymbolicShapesModule()
        page = module.materialize(module.render(ctx).lazy[0], ctx)
        assert "(max depth)" in page


class TestTensorMetadata:

    def test_table_per_compile(self, ctx):
        out = TensorMetadataModule().render(ctx)
        (path, content), = out.files
        assert path == "0_0_0/tensor_metadata.html"
        assert "torch.float32" in content
        assert out.directory_entries["0_0_0"][0].suffix == "1 tensors"


class TestCompileDirectory:

    def test_directory_document(self, ctx):
        combined = ModuleRegistry.with_defaults().render_all(ctx)
        doc = build_compile_directory(combined)
        assert list(doc) == ["0_0_0", "__global__"]
        entries = doc["0_0_0"]
        assert {"name": "dynamo_output_graph.html", "url": "0_0_0/dynamo_output_graph.html", "suffix": "2 lines"} in entries
        assert {
            "name": "cache_hit_fx_graph.json",
            "url": "0_0_0/cache_hit_fx_graph.json",
            "suffix": "",
            "cache_status": "hit",
        } in entries
        assert {"name": "eval_with_key_1.html", "url": "dump_file/eval_with_key_1.html", "suffix": ""} in doc["__global__"]

    def test_urls_match_rendered_paths(self, ctx):
        combined = ModuleRegistry.with_defaults().render_all(ctx)
        written = {p for p, _ in combined.files} | {ref.path for ref in combined.lazy}
        doc = build_compile_directory(combined)
        urls = [e["url"] for entries in doc.values() for e in entries]
        assert urls
        assert all(url in written for url in urls)

    def test_compile_ids_sorted_numerically(self, tmp_path):
        lines = [record("describe_tensor", {"id": 0}, frame_id=f) for f in (10, 2)]
        combined = ModuleRegistry.with_defaults().render_all(make_context(tmp_path, lines))
        assert list(build_compile_directory(combined)) == ["2_0_0", "10_0_0"]


class TestExport:

    def test_failures_and_program(self, tmp_path):
        lines = [
            record("missing_fake_kernel", {"op": "mylib::foo", "reason": "no fake impl"}),
            record("exported_program", {}, payload="ExportedProgram:\n  graph()"),
        ]
        out = ExportModule().render(make_context(tmp_path, lines))
        sections = [e.section for e in out.index_entries]
        assert sections == ["Export Failures", "Exported Program"]
        assert "mylib::foo" in out.index_entries[0].html
        assert [p for p, _ in out.files] == [EXPORTED_PROGRAM_PATH]

    def test_clean_export(self, tmp_path):
        out = ExportModule().render(make_context(tmp_path, []))
        assert "No export failures" in out.index_entries[0].html


class TestDefaultPresetOnCapture:

    def test_every_module_renders(self, ctx):
        out = ModuleRegistry.with_defaults().render_all(ctx, max_workers=4)
        assert len(out.modules_run) == 8
        assert set(out.sections()) >= {"Cache Status", "Chromium Events", "Stack Trie"}
