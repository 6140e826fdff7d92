from .file_types import IntermediateFileType, route, route_entry_type
from .manifest import IntermediateManifest
from .writer import IntermediateWriter

__all__ = [
    "IntermediateFileType",
    "IntermediateManifest",
    "IntermediateWriter",
    "route",
    "route_entry_type",
]
