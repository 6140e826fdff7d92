from html import escape

import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType

from .base import DirectoryEntry, LazyReference, LoadingStrategy, Module, ModuleOutput
from .html import numbered_pre, page, table
from .naming import UniquePaths, directory_key, text_extension

GUARDS_CSS = """
#guard-filter { margin-bottom: 12px; padding: 4px; width: 320px; }
"""

GUARDS_SCRIPT = """
<script>
function filterGuards() {
  var q = document.getElementById('guard-filter').value.toLowerCase();
  document.querySelectorAll('#guards tbody tr').forEach(function (row) {
    row.style.display = row.textContent.toLowerCase().indexOf(q) === -1 ? 'none' : '';
  });
}
</script>
"""


class GuardsModule(Module):
    """Dynamo guard listings per compile id."""

    name = "Guards"
    id = "guards"
    subscriptions = (IntermediateFileType.GUARDS,)
    loading_strategy = LoadingStrategy.LAZY

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        paths = UniquePaths()
        for ordinal, envelope in ctx.read_indexed(IntermediateFileType.GUARDS):
            if envelope.entry_type == "dynamo_guards":
                ext = "html"
            elif envelope.entry_type == "dynamo_cpp_guards_str":
                ext = text_extension(self.config)
            else:
                continue
            key = directory_key(envelope)
            path = paths.path(key, envelope.entry_type, ext)
            output.add_lazy(
                self.lazy_reference(
                    path, IntermediateFileType.GUARDS, envelope.compile_key, envelope.entry_type, ordinal
                )
            )
            output.add_directory_entry(key, DirectoryEntry(name=path.rsplit("/", 1)[-1], url=path))
        return output

    def materialize(self, reference: LazyReference, ctx) -> str:
        envelope = ctx.fetch(reference)
        payload = envelope.payload or ""
        if envelope.entry_type == "dynamo_cpp_guards_str":
            if reference.path.endswith(".txt"):
                return payload
            return page("C++ Guards", f"<h1>C++ Guards</h1>\n{numbered_pre(payload)}")
        return self._guards_page(reference.compile_id or "", payload)

    def _guards_page(self, compile_key: str, payload: str) -> str:
        try:
            guards = msgspec.json.decode(payload) if payload else []
        except msgspec.DecodeError:
            guards = None

        if not isinstance(guards, list):
            body = f"<h1>Guards {escape(compile_key)}</h1>\n{numbered_pre(payload)}"
            return page("Guards", body)

        rows = []
        for guard in guards:
            if not isinstance(guard, dict):
                rows.append([str(guard), "", ""])
                continue
            guard_types = guard.get("guard_types") or []
            rows.append(
                [
                    str(guard.get("code", "")),
                    str(guard.get("type", "")),
                    ", ".join(str(g) for g in guard_types) if isinstance(guard_types, list) else str(guard_types),
                ]
            )
        body = (
            f"<h1>Guards {escape(compile_key)}</h1>\n"
            f"<p>{len(rows)} guards</p>\n"
            '<input id="guard-filter" placeholder="Filter guards" onkeyup="filterGuards()">\n'
            + table(["Code", "Type", "Guard types"], rows, attrs='id="guards"')
            + GUARDS_SCRIPT
        )
        return page("Guards", body, GUARDS_CSS)
