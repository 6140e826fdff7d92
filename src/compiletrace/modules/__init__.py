from .base import (
    CombinedOutput,
    DirectoryEntry,
    IndexEntry,
    LazyReference,
    LoadingStrategy,
    Module,
    ModuleOutput,
)
from .context import ModuleContext
from .registry import ModuleRegistry

__all__ = [
    "CombinedOutput",
    "DirectoryEntry",
    "IndexEntry",
    "LazyReference",
    "LoadingStrategy",
    "Module",
    "ModuleContext",
    "ModuleOutput",
    "ModuleRegistry",
]
