import msgspec

from compiletrace.intermediate.file_types import IntermediateFileType

from .base import DirectoryEntry, LoadingStrategy, Module, ModuleOutput
from .html import link

CHROMIUM_EVENTS_PATH = "chromium_events.json"


class ChromiumTraceModule(Module):
    """Collects chromium trace events into one loadable JSON array."""

    name = "Chromium Trace"
    id = "chromium_trace"
    subscriptions = (IntermediateFileType.CHROMIUM_EVENTS,)
    loading_strategy = LoadingStrategy.EAGER

    def render(self, ctx) -> ModuleOutput:
        output = ModuleOutput()
        events = ctx.read_chromium_events()
        if not events:
            return output

        output.add_file(CHROMIUM_EVENTS_PATH, msgspec.json.encode(events).decode("utf-8"))
        output.add_directory_entry(
            None,
            DirectoryEntry(name=CHROMIUM_EVENTS_PATH, url=CHROMIUM_EVENTS_PATH, suffix=f"{len(events)} events"),
        )
        output.add_index(
            "Chromium Events",
            f"<p>{len(events)} trace events: {link(CHROMIUM_EVENTS_PATH)}. "
            "Load it in chrome://tracing or Perfetto.</p>",
        )
        return output
