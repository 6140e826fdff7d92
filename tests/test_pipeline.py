import builtins
import json
from pathlib import Path

import pytest

import compiletrace.cli as cli_module
import compiletrace.intermediate.writer as writer_module
from compiletrace.cli import _safe, build_parser, build_settings, main
from compiletrace.config import config
from compiletrace.modules.base import CombinedOutput, DirectoryEntry
from compiletrace.modules.cache import CacheModule
from compiletrace.pipeline import run_multi_rank, run_report
from compiletrace.report.index import build_index_html, entry_glyph
from compiletrace.report.writer import LAZY_INDEX_PATH, ReportWriter, check_relative
from compiletrace.schema.metadata import CacheStatus, CompileOutcome
from compiletrace.settings import CompileTraceSettings, ModuleConfig, ParseSettings, ReportSettings

from conftest import FullDiskStream, record, sample_capture, write_log

# helpers


def boom(self, ctx):
    raise RuntimeError("render exploded")


# tests


class TestRunReport:

    def test_end_to_end(self, tmp_path):
        log = write_log(tmp_path / "trace.log", sample_capture())
        out = tmp_path / "report"
        result = run_report(log, out)

        assert result.success, result.error
        assert result.status == "ok"
        assert result.output_dir == out
        assert result.compile_ids == 1
        assert result.dropped == 0
        for rel in (
            "index.html",
            "0_0_0/dynamo_output_graph.html",
            "0_0_0/dynamo_guards.html",
            "0_0_0/cache_hit_fx_graph.json",
            "0_0_0/compilation_metrics.html",
            "0_0_0/symbolic_guard_information_0.html",
            "0_0_0/tensor_metadata.html",
            "dump_file/eval_with_key_1.html",
            "chromium_events.json",
            "compile_directory.json",
            "intermediate/manifest.json",
            "intermediate/graphs.jsonl",
        ):
            assert (out / rel).is_file(), rel

        index = (out / "index.html").read_text(encoding="utf-8")
        assert 'id="0_0_0"' in index
        assert "Stack Trie" in index
        assert index.index("Compile Directory") < index.index("Global Artifacts")
        assert 'href="compile_directory.json"' in index

        directory = json.loads((out / "compile_directory.json").read_text(encoding="utf-8"))
        assert list(directory) == ["0_0_0", "__global__"]
        for entries in directory.values():
            for entry in entries:
                assert set(entry) <= {"name", "url", "suffix", "cache_status"}
                assert (out / entry["url"]).is_file(), entry["url"]

    def test_dropped_records_are_counted(self, tmp_path):
        lines = sample_capture() + ["garbage", record("mystery_type")]
        result = run_report(write_log(tmp_path / "trace.log", lines), tmp_path / "report")
        assert result.success
        assert (result.malformed, result.unknown, result.dropped) == (1, 1, 2)

    def test_module_failure_leaves_no_report(self, tmp_path, monkeypatch):
        monkeypatch.setattr(CacheModule, "render", boom)
        out = tmp_path / "report"
        result = run_report(write_log(tmp_path / "trace.log", sample_capture()), out)

        assert not result.success
        assert result.failed_stage == "rendering"
        assert result.failed_component == "cache"
        assert "render exploded" in result.error
        assert not out.exists()
        assert list(tmp_path.iterdir()) == [tmp_path / "trace.log"]

    def test_failed_module_can_be_skipped(self, tmp_path, monkeypatch):
        monkeypatch.setattr(CacheModule, "render", boom)
        settings = CompileTraceSettings(report=ReportSettings(skip_failed_modules=True))
        result = run_report(write_log(tmp_path / "trace.log", sample_capture()), tmp_path / "report", settings)
        assert result.success
        assert "cache" not in result.modules_run

    def test_strict_mode_fails_ingestion(self, tmp_path):
        settings = CompileTraceSettings(parse=ParseSettings(strict=True))
        lines = sample_capture() + ["garbage"]
        result = run_report(write_log(tmp_path / "trace.log", lines), tmp_path / "report", settings)
        assert result.failed_stage == "ingestion"

    def test_stream_write_error_fails_ingestion(self, tmp_path, monkeypatch):
        real_open = builtins.open

        def open_with_full_disk(path, mode="r", *args, **kwargs):
            if Path(path).name == "graphs.jsonl":
                return FullDiskStream()
            return real_open(path, mode, *args, **kwargs)

        monkeypatch.setattr(writer_module, "open", open_with_full_disk, raising=False)
        out = tmp_path / "report"
        result = run_report(write_log(tmp_path / "trace.log", sample_capture()), out)

        assert not result.success
        assert result.failed_stage == "ingestion"
        assert "graphs.jsonl" in result.error
        assert not out.exists()

    def test_missing_input(self, tmp_path):
        result = run_report(tmp_path / "nope.log", tmp_path / "report")
        assert result.failed_stage == "ingestion"

    def test_existing_output_needs_overwrite(self, tmp_path):
        log = write_log(tmp_path / "trace.log", sample_capture())
        out = tmp_path / "report"
        out.mkdir()
        (out / "old.txt").write_text("old")

        result = run_report(log, out)
        assert result.failed_stage == "writing"
        assert (out / "old.txt").exists()

        result = run_report(log, out, overwrite=True)
        assert result.success
        assert not (out / "old.txt").exists()

    def test_lazy_placeholders(self, tmp_path):
        settings = CompileTraceSettings(
            report=ReportSettings(materialize_lazy=False, keep_intermediate=False)
        )
        out = tmp_path / "report"
        result = run_report(write_log(tmp_path / "trace.log", sample_capture()), out, settings)
        assert result.success
        refs = json.loads((out / LAZY_INDEX_PATH).read_text(encoding="utf-8"))
        assert any(r["module"] == "guards" and r["path"] == "0_0_0/dynamo_guards.html" for r in refs)
        assert "was not rendered" in (out / "0_0_0/dynamo_guards.html").read_text(encoding="utf-8")
        assert not (out / "intermediate").exists()

    def test_reports_are_reproducible(self, tmp_path):
        log = write_log(tmp_path / "trace.log", sample_capture())
        settings = CompileTraceSettings(report=ReportSettings(keep_intermediate=False, render_workers=4))
        first = run_report(log, tmp_path / "a", settings)
        second = run_report(log, tmp_path / "b", settings)
        assert [p for p, _ in first.files] == [p for p, _ in second.files]
        assert first.files == second.files

    def test_export_mode(self, tmp_path):
        lines = [
            record("missing_fake_kernel", {"op": "mylib::foo", "reason": "no fake impl"}),
            record("exported_program", {}, payload="ExportedProgram"),
        ]
        settings = CompileTraceSettings(modules=ModuleConfig(export_mode=True))
        result = run_report(write_log(tmp_path / "trace.log", lines), tmp_path / "report", settings)
        assert result.modules_run == ["export", "symbolic_shapes"]
        assert (tmp_path / "report" / "exported_program.html").is_file()


class TestRunMultiRank:

    def test_landing_page_and_rank_reports(self, tmp_path):
        rank0 = write_log(tmp_path / "trace_rank_0.log", sample_capture())
        rank1 = write_log(
            tmp_path / "trace_rank_1.log",
            sample_capture() + [record("compilation_metrics", {"graph_op_count": 1}, frame_id=1)],
        )
        out = tmp_path / "report"
        result = run_multi_rank([rank1, rank0], out)

        assert result.success, result.error
        assert (out / "index.html").is_file()
        assert (out / "rank_0" / "index.html").is_file()
        assert (out / "rank_1" / "0_0_0" / "dynamo_guards.html").is_file()
        assert (out / "rank_1" / "intermediate" / "manifest.json").is_file()

        analysis = json.loads((out / "multi_rank" / "analysis.json").read_text(encoding="utf-8"))
        assert analysis["status"] == "divergent"
        assert analysis["compile_id_divergence"]["extra"] == {"1": ["1_0_0"]}
        assert result.multi_rank.ranks == [0, 1]

    def test_single_rank_has_no_comparison(self, tmp_path):
        log = write_log(tmp_path / "rank_0.log", sample_capture())
        result = run_multi_rank([log], tmp_path / "report")
        assert result.success
        assert result.multi_rank.status == "no_comparison_possible"

    def test_unreadable_rank_is_excluded(self, tmp_path):
        logs = [
            write_log(tmp_path / "rank_0.log", sample_capture()),
            write_log(tmp_path / "rank_1.log", sample_capture()),
            write_log(tmp_path / "rank_2.log", ["<<binary junk>>"]),
        ]
        result = run_multi_rank(logs, tmp_path / "report")
        assert result.success
        assert result.multi_rank.ranks == [0, 1]
        assert 2 in result.multi_rank.excluded_ranks
        assert not (tmp_path / "report" / "rank_2").exists()


class TestIndexPage:

    def test_glyphs_come_from_status_fields(self):
        combined = CombinedOutput()
        combined.directory_entries["0_0_0"] = [
            DirectoryEntry(name="hit.json", url="0_0_0/hit.json", cache_status=CacheStatus.HIT),
            DirectoryEntry(name="metrics.html", url="0_0_0/metrics.html", outcome=CompileOutcome.ERROR),
            DirectoryEntry(name="ok.html", url="0_0_0/ok.html", outcome=CompileOutcome.OK, suffix="3 lines"),
        ]
        html = build_index_html(combined)
        assert '<span class="suffix">✅</span>' in html
        assert '<span class="suffix">❌</span>' in html
        assert '<span class="suffix">3 lines</span>' in html

    def test_glyph_helper(self):
        assert entry_glyph(DirectoryEntry(name="x", url="x", cache_status=CacheStatus.BYPASS)) == "⚠️"
        assert entry_glyph(DirectoryEntry(name="x", url="x")) == ""


class TestReportWriter:

    @pytest.mark.parametrize("path", ["/etc/passwd", "../escape.html", ""])
    def test_rejects_paths_outside_report(self, path):
        with pytest.raises(ValueError):
            check_relative(path)

    def test_failed_write_leaves_nothing(self, tmp_path):
        out = tmp_path / "report"
        with pytest.raises(ValueError):
            ReportWriter(out).write([("ok.html", "x"), ("../bad.html", "y")])
        assert list(tmp_path.iterdir()) == []


class TestCli:

    def test_parse_command(self, tmp_path):
        log = write_log(tmp_path / "trace.log", sample_capture())
        out = tmp_path / "report"
        assert main(["parse", str(log), "-o", str(out), "--plain-text", "--workers", "2"]) == 0
        assert (out / "0_0_0" / "dynamo_output_graph.txt").is_file()

    def test_ranks_command(self, tmp_path):
        logs = [write_log(tmp_path / f"rank_{r}.log", sample_capture()) for r in range(2)]
        out = tmp_path / "report"
        assert main(["ranks", *map(str, logs), "-o", str(out), "--no-intermediate"]) == 0
        assert (out / "rank_1" / "index.html").is_file()
        assert not (out / "rank_1" / "intermediate").exists()

    def test_failure_exit_code(self, tmp_path, monkeypatch):
        monkeypatch.setattr(CacheModule, "render", boom)
        log = write_log(tmp_path / "trace.log", sample_capture())
        assert main(["parse", str(log), "-o", str(tmp_path / "report")]) == 1

    def test_missing_log_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["parse", str(tmp_path / "missing.log")])

    def test_custom_header_and_flags(self, tmp_path):
        header = tmp_path / "header.html"
        header.write_text("<div>team header</div>", encoding="utf-8")
        args = build_parser().parse_args(
            ["parse", "x.log", "--custom-header-html", str(header), "--lazy", "--strict", "--export"]
        )
        settings = build_settings(args)
        assert settings.modules.custom_header_html == "<div>team header</div>"
        assert settings.modules.export_mode
        assert settings.parse.strict
        assert not settings.report.materialize_lazy

    def test_summary_failure_does_not_change_exit_code(self, tmp_path, monkeypatch):
        def broken_summary(result):
            raise RuntimeError("terminal gone")

        monkeypatch.setattr(cli_module, "render_run_summary", broken_summary)
        log = write_log(tmp_path / "trace.log", sample_capture())
        out = tmp_path / "report"
        assert main(["parse", str(log), "-o", str(out)]) == 0
        assert (out / "index.html").is_file()

    def test_safe_returns_value_or_none(self):
        def fail():
            raise ValueError("nope")

        assert _safe(cli_module.logger, "value", lambda: 7) == 7
        assert _safe(cli_module.logger, "failure", fail) is None

    def test_logging_settings_reach_process_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "enable_logging", False)
        monkeypatch.setattr(config, "logs_dir", "./logs")
        seen = []
        monkeypatch.setattr(cli_module, "setup_error_logger", lambda: seen.append((config.enable_logging, config.logs_dir)))

        log = write_log(tmp_path / "trace.log", sample_capture())
        logs = tmp_path / "logs"
        argv = ["parse", str(log), "-o", str(tmp_path / "report"), "--enable-logging", "--logs-dir", str(logs)]
        assert main(argv) == 0
        assert seen == [(True, str(logs))]
