from html import escape
from typing import Dict, List

import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.schema.metadata import ExpressionCreatedMetadata, SymbolicGuardMetadata

from .base import DirectoryEntry, LazyReference, LoadingStrategy, Module, ModuleOutput
from .html import page
from .naming import directory_key

MAX_EXPRESSION_DEPTH = 20

SYMBOLIC_CSS = """
details { margin: 10px 0; }
summary { cursor: pointer; font-weight: bold; }
.expr-tree { padding-left: 20px; }
.expr-node { margin: 5px 0; padding: 5px; border-left: 2px solid #ddd; }
"""

GUARD_TYPES = ("guard_added", "propagate_real_tensors_provenance")


class SymbolicShapesModule(Module):
    """One page per symbolic guard, with the expression tree behind it."""

    name = "Symbolic Shapes"
    id = "symbolic_shapes"
    subscriptions = (IntermediateFileType.GUARDS,)
    loading_strategy = LoadingStrategy.LAZY

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        count = 0
        for ordinal, envelope in ctx.read_indexed(IntermediateFileType.GUARDS):
            if envelope.entry_type not in GUARD_TYPES:
                continue
            key = directory_key(envelope)
            filename = f"symbolic_guard_information_{count}.html"
            path = f"{key}/{filename}"
            output.add_lazy(
                self.lazy_reference(
                    path, IntermediateFileType.GUARDS, envelope.compile_key, envelope.entry_type, ordinal
                )
            )
            output.add_directory_entry(key, DirectoryEntry(name=filename, url=path))
            count += 1
        return output

    def materialize(self, reference: LazyReference, ctx) -> str:
        envelope = ctx.fetch(reference)
        guard: SymbolicGuardMetadata = envelope.typed_metadata
        parts: List[str] = [f"<h1>Symbolic Guard Information - {escape(envelope.entry_type)}</h1>"]

        if guard.expr is not None:
            parts.append(f"<h2>Expression</h2>\n<pre>{escape(guard.expr)}</pre>")
        if guard.user_stack:
            parts.append(_details("User Stack", escape("\n".join(guard.user_stack)), is_open=True))
        if guard.stack:
            parts.append(_details("Framework Stack", escape("\n".join(guard.stack))))
        if guard.expr_node_id is not None:
            tree: List[str] = []
            _render_expression(tree, guard.expr_node_id, _expression_index(ctx), 0)
            parts.append(
                "<details>\n<summary>Expression Tree</summary>\n"
                f"<div class=\"expr-tree\">{''.join(tree)}</div>\n</details>"
            )
        if guard.frame_locals is not None:
            formatted = msgspec.json.format(msgspec.json.encode(guard.frame_locals), indent=2).decode("utf-8")
            parts.append(_details("Frame Locals", escape(formatted)))

        return page("Symbolic Guard Information", "\n".join(parts), SYMBOLIC_CSS)


def _details(summary: str, pre_html: str, is_open: bool = False) -> str:
    return f"<details{' open' if is_open else ''}>\n<summary>{summary}</summary>\n<pre>{pre_html}</pre>\n</details>"


def _expression_index(ctx) -> Dict[int, ExpressionCreatedMetadata]:
    index: Dict[int, ExpressionCreatedMetadata] = {}
    for envelope in ctx.entries_by_type(IntermediateFileType.GUARDS, "expression_created"):
        expr: ExpressionCreatedMetadata = envelope.typed_metadata
        if expr.id is not None:
            index[expr.id] = expr
    return index


def _render_expression(out: List[str], node_id: int, index: Dict[int, ExpressionCreatedMetadata], depth: int) -> None:
    if depth > MAX_EXPRESSION_DEPTH:
        out.append('<div class="expr-node">... (max depth)</div>')
        return
    info = index.get(node_id)
    if info is None:
        out.append(f'<div class="expr-node">#{node_id}</div>')
        return

    out.append('<div class="expr-node">')
    if info.result is not None:
        out.append(f"<strong>{escape(info.result)}</strong>")
    if info.method is not None:
        out.append(f" ({escape(info.method)})")
    if info.arguments:
        out.append("<br>Args: " + ", ".join(escape(a) for a in info.arguments))
    for arg_id in info.argument_ids:
        if arg_id != node_id:
            _render_expression(out, arg_id, index, depth + 1)
    out.append("</div>\n")
