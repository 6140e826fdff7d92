from compiletrace.intermediate.file_types import IntermediateFileType

from .base import DirectoryEntry, LoadingStrategy, Module, ModuleOutput
from .html import page, table
from .naming import directory_key


class TensorMetadataModule(Module):
    """Per-compile table of described tensors."""

    name = "Tensor Metadata"
    id = "tensor_metadata"
    subscriptions = (IntermediateFileType.TENSOR_METADATA,)
    loading_strategy = LoadingStrategy.EAGER

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        rows_by_key = {}
        for envelope in ctx.entries_by_type(IntermediateFileType.TENSOR_METADATA, "describe_tensor"):
            tensor = envelope.typed_metadata
            rows_by_key.setdefault(directory_key(envelope), []).append(
                [
                    "" if tensor.id is None else str(tensor.id),
                    str(list(tensor.size)),
                    str(list(tensor.stride)),
                    tensor.dtype,
                    tensor.device,
                    "yes" if tensor.requires_grad else "no",
                ]
            )

        for key, rows in rows_by_key.items():
            path = f"{key}/tensor_metadata.html"
            body = f"<h1>Tensor Metadata {key}</h1>\n" + table(
                ["Id", "Size", "Stride", "Dtype", "Device", "Requires grad"], rows
            )
            output.add_file(path, page("Tensor Metadata", body))
            output.add_directory_entry(
                key, DirectoryEntry(name="tensor_metadata.html", url=path, suffix=f"{len(rows)} tensors")
            )
        return output
