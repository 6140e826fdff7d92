import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType
from compiletrace.schema.metadata import CacheStatus, cache_status_for

from .base import DirectoryEntry, LoadingStrategy, Module, ModuleOutput
from .html import table
from .naming import UniquePaths, artifact_stem, directory_key


class CacheModule(Module):
    """Cache hit/miss/bypass artifacts and a cache summary."""

    name = "Cache"
    id = "cache"
    subscriptions = (IntermediateFileType.CACHE,)
    loading_strategy = LoadingStrategy.EAGER

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        paths = UniquePaths()
        counts = {s: 0 for s in CacheStatus}

        for envelope in ctx.read(IntermediateFileType.CACHE):
            name = str(envelope.metadata.get("name", ""))
            status = cache_status_for(name)
            counts[status] += 1

            is_json = envelope.metadata.get("encoding") == "json"
            key = directory_key(envelope)
            path = paths.path(key, artifact_stem(envelope), "json" if is_json else "txt")
            output.add_file(path, _content(envelope.payload or "", is_json))
            output.add_directory_entry(
                key,
                DirectoryEntry(
                    name=path.rsplit("/", 1)[-1],
                    url=path,
                    cache_status=status,
                ),
            )

        total = sum(counts.values())
        if total:
            rows = [
                [s.value, str(counts[s])]
                for s in (CacheStatus.HIT, CacheStatus.MISS, CacheStatus.BYPASS)
            ]
            output.add_index("Cache Status", table(["Status", "Count"], rows))
        return output


def _content(payload: str, is_json: bool) -> str:
    if not is_json or not payload:
        return payload
    try:
        return msgspec.json.format(payload, indent=2)
    except msgspec.DecodeError:
        return payload
