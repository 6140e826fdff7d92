from html import escape

from compiletrace.intermediate.file_types import IntermediateFileType

from .base import DirectoryEntry, LoadingStrategy, Module, ModuleOutput
from .html import link, numbered_pre, page, table

EXPORTED_PROGRAM_PATH = "exported_program.html"


class ExportModule(Module):
    """Export-mode summary: fake kernel failures and the exported program."""

    name = "Export"
    id = "export"
    subscriptions = (IntermediateFileType.EXPORT,)
    loading_strategy = LoadingStrategy.EAGER

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        failures = []
        program = None

        for envelope in ctx.read(IntermediateFileType.EXPORT):
            if envelope.entry_type in ("missing_fake_kernel", "mismatched_fake_kernel"):
                kernel = envelope.typed_metadata
                failures.append(
                    [
                        "Missing fake kernel" if envelope.entry_type == "missing_fake_kernel" else "Mismatched fake kernel",
                        kernel.op,
                        kernel.reason,
                        envelope.compile_key or "",
                    ]
                )
            elif envelope.entry_type == "exported_program":
                program = envelope.payload or ""

        if failures:
            output.add_index(
                "Export Failures",
                f"<p>{len(failures)} issues found during export.</p>"
                + table(["Failure", "Operator", "Reason", "Compile Id"], failures),
            )
        else:
            output.add_index("Export Failures", "<p>No export failures.</p>")

        if program is not None:
            output.add_file(
                EXPORTED_PROGRAM_PATH,
                page("Exported Program", f"<h1>Exported Program</h1>\n{numbered_pre(program)}"),
            )
            output.add_directory_entry(
                None, DirectoryEntry(name=EXPORTED_PROGRAM_PATH, url=EXPORTED_PROGRAM_PATH)
            )
            output.add_index(
                "Exported Program",
                f"<p>{link(EXPORTED_PROGRAM_PATH)}</p>\n<pre>{escape(program[:2000])}</pre>",
            )
        return output
