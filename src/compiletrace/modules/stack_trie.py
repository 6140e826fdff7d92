"""
Stack trie.

Captured compile-start stacks are merged into a prefix tree so that
compilations triggered from the same user code share a path.

Stacks are outermost-first (the order of ``traceback.extract_stack``): the
root's children are outermost frames and a compile id is attached to the node
of its innermost frame. Trailing dynamo `convert_frame` frames are trimmed
before insertion.
"""

import re
from dataclasses import dataclass, field
from html import escape
from typing import Dict, List, Optional, Sequence, Set, Tuple

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.schema.compile_id import CompileId
from compiletrace.schema.frames import FrameSummary
from compiletrace.schema.metadata import CompilationMetricsMetadata, CompileOutcome

from .base import LoadingStrategy, Module, ModuleOutput

CONVERT_FRAME_FILE = "torch/_dynamo/convert_frame.py"
CONVERT_FRAME_SUFFIXES = (
    ("catch_errors", "_convert_frame", "_convert_frame_assert"),
    ("__call__", "__call__", "__call__"),
)

UNKNOWN_STACK_FRAME = FrameSummary(filename="(unknown stack)", line=0, name="")

EVAL_WITH_KEY = re.compile(r"<eval_with_key>\.([0-9]+)")

STATUS_CLASSES = {
    CompileOutcome.OK: "status-ok",
    CompileOutcome.ERROR: "status-error",
    CompileOutcome.EMPTY: "status-empty",
    CompileOutcome.BREAK: "status-break",
}

Terminal = Tuple[Optional[CompileId], Optional[CompilationMetricsMetadata]]


@dataclass
class StackTrieNode:
    frame: Optional[FrameSummary] = None
    children: Dict[Tuple[str, int, str, str], "StackTrieNode"] = field(default_factory=dict)
    terminals: List[Terminal] = field(default_factory=list)

    def child(self, frame: FrameSummary) -> "StackTrieNode":
        key = frame.key()
        node = self.children.get(key)
        if node is None:
            node = StackTrieNode(frame=frame)
            self.children[key] = node
        return node

    def aggregate(self) -> Tuple[int, int]:
        """(succeeded, failed) over every terminal in this subtree."""
        ok = failed = 0
        for _, metrics in self.terminals:
            if metrics is None:
                continue
            if metrics.outcome is CompileOutcome.ERROR:
                failed += 1
            else:
                ok += 1
        for node in self.children.values():
            c_ok, c_failed = node.aggregate()
            ok += c_ok
            failed += c_failed
        return ok, failed


def simplify_filename(filename: str) -> str:
    head, sep, tail = filename.partition("#link-tree/")
    return tail if sep else filename


def strip_convert_frame_suffix(frames: Sequence[FrameSummary]) -> List[FrameSummary]:
    frames = list(frames)
    for names in CONVERT_FRAME_SUFFIXES:
        if len(frames) < len(names):
            continue
        tail = frames[len(frames) - len(names):]
        if all(
            simplify_filename(f.filename).endswith(CONVERT_FRAME_FILE) and f.name == n
            for f, n in zip(tail, names)
        ):
            frames = frames[: len(frames) - len(names)]
    return frames


def terminal_status(metrics: Optional[CompilationMetricsMetadata]) -> str:
    if metrics is None:
        return "status-missing"
    return STATUS_CLASSES[metrics.outcome]


class StackTrie:
    def __init__(self):
        self.root = StackTrieNode()
        self._compile_ids: Set[CompileId] = set()

    def __contains__(self, compile_id: CompileId) -> bool:
        return compile_id in self._compile_ids

    def insert(
        self,
        stack: Sequence[FrameSummary],
        compile_id: Optional[CompileId],
        metrics: Optional[CompilationMetricsMetadata] = None,
    ) -> StackTrieNode:
        """
        Walk (creating as needed) one node per frame and attach the terminal
        to the last one. An empty stack attaches to the root.
        """
        node = self.root
        for frame in stack:
            node = node.child(frame)
        node.terminals.append((compile_id, metrics))
        if compile_id is not None:
            self._compile_ids.add(compile_id)
        return node

    def insert_unknown(
        self,
        compile_id: CompileId,
        metrics: Optional[CompilationMetricsMetadata] = None,
    ) -> StackTrieNode:
        return self.insert([UNKNOWN_STACK_FRAME], compile_id, metrics)

    def is_empty(self) -> bool:
        return not self.root.children and not self.root.terminals

    def render_html(self) -> str:
        out: List[str] = ['<div class="stack-trie">']
        if self.root.terminals:
            out.append(f"<div>{_terminals_html(self.root.terminals)}</div>")
        out.append("<ul>")
        for node in self.root.children.values():
            _render_node(out, node)
        out.append("</ul></div>")
        return "".join(out)


def _frame_html(frame: FrameSummary) -> str:
    filename = simplify_filename(frame.filename)
    label = escape(f"{filename}:{frame.line} in {frame.name}") if frame.name else escape(filename)
    match = EVAL_WITH_KEY.search(frame.filename)
    if match is not None:
        url = f"dump_file/eval_with_key_{match.group(1)}.html#L{frame.line}"
        return f'<a href="{url}">{label}</a>'
    return label


def _terminals_html(terminals: List[Terminal]) -> str:
    links = []
    for compile_id, metrics in terminals:
        css = terminal_status(metrics)
        if compile_id is None:
            links.append(f'<span class="{css}">(unknown)</span>')
        else:
            links.append(f'<a class="{css}" href="#{compile_id}">{compile_id}</a>')
    return " ".join(links)


def _render_node(out: List[str], node: StackTrieNode) -> None:
    ok, failed = node.aggregate()
    summary = _frame_html(node.frame) if node.frame is not None else ""
    if ok or failed:
        css = "status-error" if failed else "status-ok"
        summary += f' <span class="{css}">[{ok} ok / {failed} failed]</span>'
    if node.terminals:
        summary += " " + _terminals_html(node.terminals)

    if not node.children:
        out.append(f"<li>{summary}</li>")
        return
    out.append(f"<li><details open><summary>{summary}</summary><ul>")
    for child in node.children.values():
        _render_node(out, child)
    out.append("</ul></details></li>")


class StackTrieModule(Module):
    """Index section showing where in user code each compilation started."""

    name = "Stack Trie"
    id = "stack_trie"
    subscriptions = (IntermediateFileType.COMPILATION_METRICS,)
    loading_strategy = LoadingStrategy.EAGER

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        trie = build_stack_trie(ctx)
        if trie.is_empty():
            return output
        output.add_index(
            "Stack Trie",
            "<p>Compilations grouped by the user stack that triggered them. "
            "Colors mark the compile outcome.</p>" + trie.render_html(),
        )
        return output


def build_stack_trie(ctx) -> StackTrie:
    metrics_by_id: Dict[CompileId, CompilationMetricsMetadata] = {}
    starts = []
    for envelope in ctx.read(IntermediateFileType.COMPILATION_METRICS):
        if envelope.entry_type == "compilation_metrics" and envelope.compile_id is not None:
            metrics = envelope.typed_metadata
            previous = metrics_by_id.get(envelope.compile_id)
            if previous is None or not previous.failed:
                metrics_by_id[envelope.compile_id] = metrics
        elif envelope.entry_type == "dynamo_start":
            starts.append(envelope)

    trie = StackTrie()
    for envelope in starts:
        stack = strip_convert_frame_suffix(envelope.typed_metadata.stack)
        trie.insert(stack, envelope.compile_id, metrics_by_id.get(envelope.compile_id) if envelope.compile_id else None)

    known = set(ctx.compile_ids()) | set(metrics_by_id)
    for compile_id in sorted(known, key=CompileId.sort_key):
        if compile_id not in trie:
            trie.insert_unknown(compile_id, metrics_by_id.get(compile_id))
    return trie
