from html import escape
from typing import List, Optional

from compiletrace.intermediate.manifest import IntermediateManifest
from compiletrace.modules.base import CombinedOutput, DirectoryEntry
from compiletrace.modules.html import link, page
from compiletrace.schema.compile_id import GLOBAL_KEY, CompileId
from compiletrace.schema.metadata import CacheStatus, CompileOutcome
from compiletrace.settings import ModuleConfig

from .directory import COMPILE_DIRECTORY_PATH

INDEX_CSS = """
.compile-id { margin-top: 16px; }
.suffix { color: #757575; margin-left: 6px; }
"""

CACHE_GLYPHS = {
    CacheStatus.HIT: "✅",
    CacheStatus.MISS: "❌",
    CacheStatus.BYPASS: "⚠️",
    CacheStatus.UNKNOWN: "❓",
}

OUTCOME_GLYPHS = {
    CompileOutcome.ERROR: "❌",
}


def entry_glyph(entry: DirectoryEntry) -> str:
    if entry.cache_status is not None:
        return CACHE_GLYPHS[entry.cache_status]
    if entry.outcome is not None:
        return OUTCOME_GLYPHS.get(entry.outcome, "")
    return ""


def _entries_html(entries: List[DirectoryEntry]) -> str:
    items = []
    for entry in entries:
        text = " ".join(t for t in (entry_glyph(entry), entry.suffix) if t)
        suffix = f'<span class="suffix">{escape(text)}</span>' if text else ""
        items.append(f"<li>{link(entry.url, entry.name)}{suffix}</li>")
    return "<ul>" + "".join(items) + "</ul>"


def build_index_html(
    combined: CombinedOutput,
    manifest: Optional[IntermediateManifest] = None,
    config: Optional[ModuleConfig] = None,
    title: str = "Compile Trace Report",
) -> str:
    """
    Landing page: custom header, run counts, the compile directory (sorted
    by compile id, global entries last) and every index section in the order
    modules contributed them.
    """
    config = config or ModuleConfig()
    parts = []
    if config.custom_header_html:
        parts.append(config.custom_header_html)
    parts.append(f"<h1>{escape(title)}</h1>")

    if manifest is not None:
        parts.append(
            f"<p>{manifest.total_envelopes} envelopes from "
            f"<code>{escape(manifest.source_file or 'unknown source')}</code>, "
            f"{len(manifest.compile_records)} compile ids, "
            f"{manifest.dropped} records dropped.</p>"
        )
    parts.append(f"<p>Compile directory: {link(COMPILE_DIRECTORY_PATH)}</p>")

    keys = [k for k in combined.directory_entries if k != GLOBAL_KEY]
    keys.sort(key=lambda k: CompileId.parse(k).sort_key())
    if keys:
        parts.append("<h2>Compile Directory</h2>")
        for key in keys:
            cid = CompileId.parse(key)
            status = ""
            if manifest is not None and cid in manifest.compile_records:
                status = f' <span class="suffix">{escape(manifest.compile_records[cid].status)}</span>'
            parts.append(
                f'<div class="compile-id"><h3 id="{escape(key, quote=True)}">{escape(cid.display_name)}{status}</h3>'
                + _entries_html(combined.directory_entries[key])
                + "</div>"
            )

    if combined.directory_entries.get(GLOBAL_KEY):
        parts.append("<h2>Global Artifacts</h2>")
        parts.append(_entries_html(combined.directory_entries[GLOBAL_KEY]))

    for section, fragments in combined.sections().items():
        parts.append(f"<h2>{escape(section)}</h2>")
        parts.extend(fragments)

    return page(title, "\n".join(parts), INDEX_CSS)
