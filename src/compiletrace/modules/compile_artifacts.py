import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType

from .base import DirectoryEntry, LazyReference, LoadingStrategy, Module, ModuleOutput
from .html import numbered_pre, page
from .naming import UniquePaths, artifact_stem, directory_key, safe_component, text_extension


class CompileArtifactsModule(Module):
    """
    Graphs, generated code, generic artifacts, dump files and links.

    Payloads can be large, so every file is lazy: render only decides paths
    and directory entries; `materialize` produces the content.
    """

    name = "Compile Artifacts"
    id = "compile_artifacts"
    subscriptions = (
        IntermediateFileType.GRAPHS,
        IntermediateFileType.CODEGEN,
        IntermediateFileType.ARTIFACTS,
    )
    loading_strategy = LoadingStrategy.LAZY

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        paths = UniquePaths()
        text_ext = text_extension(self.config)

        for file_type in self.subscriptions:
            for ordinal, envelope in ctx.read_indexed(file_type):
                key = directory_key(envelope)

                if envelope.entry_type == "link":
                    url = str(envelope.metadata.get("url", ""))
                    name = str(envelope.metadata.get("name") or url)
                    if url:
                        output.add_directory_entry(key, DirectoryEntry(name=name, url=url))
                    continue

                if envelope.entry_type == "dump_file":
                    stem = artifact_stem(envelope)
                    path = paths.path("dump_file", stem, "html")
                    output.add_lazy(self.lazy_reference(path, file_type, None, envelope.entry_type, ordinal))
                    output.add_directory_entry(None, DirectoryEntry(name=f"{stem}.html", url=path))
                    continue

                ext = text_ext
                if envelope.entry_type == "artifact" and envelope.metadata.get("encoding") == "json":
                    ext = "json"
                path = paths.path(key, artifact_stem(envelope), ext)
                output.add_lazy(
                    self.lazy_reference(path, file_type, envelope.compile_key, envelope.entry_type, ordinal)
                )
                output.add_directory_entry(
                    key,
                    DirectoryEntry(name=path.rsplit("/", 1)[-1], url=path, suffix=_size_suffix(envelope.payload)),
                )
        return output

    def materialize(self, reference: LazyReference, ctx) -> str:
        envelope = ctx.fetch(reference)
        payload = envelope.payload or ""
        if reference.path.endswith(".json"):
            try:
                return msgspec.json.format(payload, indent=2)
            except msgspec.DecodeError:
                return payload
        if reference.path.endswith(".txt"):
            return payload
        title = safe_component(reference.path.rsplit("/", 1)[-1])
        return page(title, f"<h1>{title}</h1>\n{numbered_pre(payload)}")


def _size_suffix(payload) -> str:
    if not payload:
        return ""
    lines = payload.count("\n") + 1
    return f"{lines} lines"
